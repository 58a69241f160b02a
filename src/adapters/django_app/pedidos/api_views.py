"""
API Views JSON para o domínio de Pedidos.

Endpoints:
- POST /checkout/ - Criar pedido e emitir cobrança
- GET /checkout/status/<id>/ - Status do pedido (polling do cliente)
- POST /checkout/<id>/retentar/ - Reemitir cobrança que falhou
- POST /webhook/<trilho>/ - Notificações do gateway (cartao, pix, boleto)
- GET /pedidos/ - Pedidos do usuário (staff: todos)
- POST /pedidos/<id>/cancelar/ - Cancelamento manual (staff)
- GET /pedidos/<id>/historico/ - Trilha de auditoria (staff)

Formato:
- Entrada: JSON
- Saída: JSON com estrutura {success, data/error, meta}
"""

import json
import logging
from typing import Any, Dict, Optional

from django.views import View
from django.http import JsonResponse, HttpRequest
from django.utils.decorators import method_decorator
from django.views.decorators.csrf import csrf_exempt

from src.core.pedidos.dtos import CriarCheckoutInputDTO, DadosCartaoDTO
from src.core.pedidos.exceptions import (
    AssinaturaInvalidaError,
    CobrancaDesconhecidaError,
    GatewayError,
    GatewayIndisponivelError,
)
from src.core.shared.exceptions import (
    ValidationError,
    EntityNotFoundError,
    BusinessRuleViolationError,
    DomainException,
)
from src.config.container import get_container

logger = logging.getLogger(__name__)


# =============================================================================
# Helpers
# =============================================================================

def json_response(success: bool, data: Any = None, error: str = None,
                  status: int = 200, meta: Dict = None) -> JsonResponse:
    """
    Cria resposta JSON padronizada.

    Args:
        success: Se operação foi bem sucedida
        data: Dados da resposta
        error: Mensagem de erro (se aplicável)
        status: HTTP status code
        meta: Metadados adicionais
    """
    response = {'success': success}

    if data is not None:
        response['data'] = data

    if error is not None:
        response['error'] = error

    if meta is not None:
        response['meta'] = meta

    return JsonResponse(response, status=status)


def parse_json_body(request: HttpRequest) -> Dict:
    """
    Parseia body JSON do request.

    Raises:
        ValidationError: Se JSON inválido ou não for objeto
    """
    if not request.body:
        return {}

    try:
        data = json.loads(request.body)
    except json.JSONDecodeError as e:
        raise ValidationError(f"JSON inválido: {e}", field="corpo")

    if not isinstance(data, dict):
        raise ValidationError("Corpo deve ser um objeto JSON", field="corpo")
    return data


def get_user_id(request: HttpRequest) -> Optional[str]:
    """ID do usuário autenticado, None para visitante."""
    if request.user.is_authenticated:
        return str(request.user.id)
    return None


def get_ip_remoto(request: HttpRequest) -> Optional[str]:
    encaminhado = request.META.get('HTTP_X_FORWARDED_FOR', '')
    if encaminhado:
        return encaminhado.split(',')[0].strip()
    return request.META.get('REMOTE_ADDR')


# =============================================================================
# Base API View
# =============================================================================

@method_decorator(csrf_exempt, name='dispatch')
class BaseAPIView(View):
    """
    View base para APIs JSON.

    Fornece:
    - Parsing de JSON
    - Acesso ao container DI
    - Tratamento de erros padronizado
    """

    def get_service(self, service_name: str):
        """Obtém service do container."""
        return getattr(get_container(), service_name)()

    def parse_body(self, request: HttpRequest) -> Dict:
        return parse_json_body(request)

    def exigir_staff(self, request: HttpRequest) -> Optional[JsonResponse]:
        if not request.user.is_authenticated:
            return json_response(success=False, error="Autenticação necessária", status=401)
        if not request.user.is_staff:
            return json_response(success=False, error="Acesso restrito à equipe", status=403)
        return None

    def handle_exception(self, e: Exception) -> JsonResponse:
        """
        Trata exceções e retorna resposta apropriada.

        Mapeamento:
        - ValidationError → 400
        - AssinaturaInvalidaError → 401
        - EntityNotFoundError → 404
        - BusinessRuleViolationError → 422
        - GatewayError → 502 (503 se indisponível)
        - Demais → 500
        """
        if isinstance(e, ValidationError):
            return json_response(
                success=False,
                error=e.message,
                status=400,
                meta={'field': e.field, 'code': e.code}
            )

        if isinstance(e, AssinaturaInvalidaError):
            return json_response(success=False, error=e.message, status=401)

        if isinstance(e, EntityNotFoundError):
            return json_response(success=False, error=e.message, status=404)

        if isinstance(e, BusinessRuleViolationError):
            return json_response(
                success=False,
                error=e.message,
                status=422,
                meta={'rule': e.rule, 'code': e.code}
            )

        if isinstance(e, GatewayIndisponivelError):
            return json_response(
                success=False,
                error="Gateway de pagamento indisponível, tente novamente",
                status=503,
                meta={'code': e.code}
            )

        if isinstance(e, GatewayError):
            return json_response(success=False, error=e.message, status=502, meta={'code': e.code})

        if isinstance(e, DomainException):
            return json_response(success=False, error=e.message, status=400, meta={'code': e.code})

        # Erro inesperado
        logger.exception(f"Erro inesperado na API: {e}")
        return json_response(
            success=False,
            error="Erro interno do servidor",
            status=500
        )


# =============================================================================
# Checkout
# =============================================================================

class CheckoutAPIView(BaseAPIView):
    """
    POST /checkout/

    Body JSON:
    {
        "itens": [{"tipo": "course|paper|ebook", "produto_id": "..."}],
        "metodo_pagamento": "CREDIT_CARD|PIX|BOLETO",
        "cliente": {"nome", "email", "cpf_cnpj", ...},
        "cartao": {"titular", "numero", "mes_validade", "ano_validade", "cvv"},
        "parcelas": 1,
        "senha": "apenas para visitante que quer criar conta"
    }

    Respostas:
    - 201: pedido criado (cartão aprovado, ou PIX/boleto aguardando)
    - 402: cartão recusado (pedido CANCELADO, motivo em data)
    - 400: dados inválidos (nenhum pedido criado)
    """

    def post(self, request: HttpRequest) -> JsonResponse:
        try:
            data = self.parse_body(request)
            input_dto = CriarCheckoutInputDTO.from_dict(
                data,
                usuario_id=get_user_id(request),
                ip_remoto=get_ip_remoto(request),
            )

            output = self.get_service('criar_checkout_service').execute(input_dto)

            if output.recusado:
                logger.info(f"API: Checkout {output.pedido_id} recusado")
                return json_response(
                    success=False,
                    data=output.to_dict(),
                    error=output.motivo_recusa or "Pagamento recusado",
                    status=402
                )

            logger.info(f"API: Checkout criado: {output.pedido_id} ({output.status})")
            return json_response(success=True, data=output.to_dict(), status=201)

        except Exception as e:
            return self.handle_exception(e)


class CheckoutStatusAPIView(BaseAPIView):
    """
    GET /checkout/status/<id>/ - polling do status pelo cliente.

    Pedido com dono responde 404 para quem não é o dono (staff vê todos).
    """

    def get(self, request: HttpRequest, pk: str) -> JsonResponse:
        try:
            status = self.get_service('obter_status_pedido_service').execute(
                pk,
                solicitante_id=get_user_id(request),
                irrestrito=request.user.is_staff,
            )
            return json_response(success=True, data=status.to_dict())

        except Exception as e:
            return self.handle_exception(e)


class CheckoutRetentarAPIView(BaseAPIView):
    """
    POST /checkout/<id>/retentar/

    Reemite a cobrança de um pedido PENDENTE que ficou sem cobrança
    (gateway indisponível no checkout). Cartão exige os dados novamente.
    """

    def post(self, request: HttpRequest, pk: str) -> JsonResponse:
        try:
            data = self.parse_body(request)
            output = self.get_service('retentar_cobranca_service').execute(
                pk,
                cartao=DadosCartaoDTO.from_dict(data.get('cartao')),
                ip_remoto=get_ip_remoto(request),
            )

            if output.recusado:
                return json_response(
                    success=False,
                    data=output.to_dict(),
                    error=output.motivo_recusa or "Pagamento recusado",
                    status=402
                )
            return json_response(success=True, data=output.to_dict())

        except Exception as e:
            return self.handle_exception(e)


# =============================================================================
# Webhooks
# =============================================================================

class WebhookAPIView(BaseAPIView):
    """
    POST /webhook/<trilho>/

    Sempre 200 para notificações autenticadas (inclusive duplicadas,
    rejeitadas e de cobrança desconhecida) para o gateway não reenviar.
    """

    def post(self, request: HttpRequest, trilho: str) -> JsonResponse:
        try:
            resultado = self.get_service('processar_webhook_service').execute(
                trilho,
                dict(request.headers),
                request.body,
            )

            evento = resultado.evento
            return json_response(
                success=True,
                data={
                    'pedido_id': resultado.pedido.id,
                    'status': resultado.pedido.status.value,
                    'aceito': evento.aceito if evento else False,
                    'motivo_rejeicao': evento.motivo_rejeicao if evento else None,
                }
            )

        except CobrancaDesconhecidaError as e:
            return json_response(
                success=True,
                data={'aceito': False, 'cobranca_id': e.cobranca_id},
                meta={'code': e.code}
            )

        except Exception as e:
            return self.handle_exception(e)


# =============================================================================
# Pedidos
# =============================================================================

class PedidoListAPIView(BaseAPIView):
    """
    GET /pedidos/

    Query params:
    - status: Filtrar por status (PENDING, PROCESSING, COMPLETED, CANCELED)
    - usuario_id: Filtrar por usuário (apenas staff)
    - page: Página (default: 1)
    - per_page: Itens por página (default: 20)
    """

    def get(self, request: HttpRequest) -> JsonResponse:
        try:
            usuario_id = get_user_id(request)
            if usuario_id is None:
                return json_response(success=False, error="Autenticação necessária", status=401)

            if request.user.is_staff:
                usuario_id = request.GET.get('usuario_id') or None

            try:
                page = max(1, int(request.GET.get('page', 1)))
                per_page = int(request.GET.get('per_page', 20))
            except ValueError:
                raise ValidationError("Paginação inválida", field="page")

            pedidos, total = self.get_service('listar_pedidos_service').execute(
                usuario_id=usuario_id,
                status=request.GET.get('status') or None,
                offset=(page - 1) * per_page,
                limite=per_page,
            )

            return json_response(
                success=True,
                data=[p.to_dict() for p in pedidos],
                meta={
                    'total': total,
                    'page': page,
                    'per_page': per_page,
                    'total_pages': (total + per_page - 1) // per_page if per_page > 0 else 0,
                }
            )

        except Exception as e:
            return self.handle_exception(e)


class PedidoCancelarAPIView(BaseAPIView):
    """POST /pedidos/<id>/cancelar/ - Body: {"motivo": "..."}"""

    def post(self, request: HttpRequest, pk: str) -> JsonResponse:
        negado = self.exigir_staff(request)
        if negado:
            return negado

        try:
            data = self.parse_body(request)
            resultado = self.get_service('cancelar_pedido_service').execute(
                pk,
                motivo=data.get('motivo', ''),
                solicitado_por=get_user_id(request),
            )

            logger.info(f"API: Cancelamento manual do pedido {pk} por {request.user.id}")
            return json_response(
                success=True,
                data={
                    'pedido_id': resultado.pedido.id,
                    'status': resultado.pedido.status.value,
                    'aceito': resultado.efetivo,
                    'motivo_rejeicao': resultado.evento.motivo_rejeicao if resultado.evento else None,
                }
            )

        except Exception as e:
            return self.handle_exception(e)


class PedidoHistoricoAPIView(BaseAPIView):
    """GET /pedidos/<id>/historico/"""

    def get(self, request: HttpRequest, pk: str) -> JsonResponse:
        negado = self.exigir_staff(request)
        if negado:
            return negado

        try:
            eventos = self.get_service('obter_historico_pedido_service').execute(pk)
            return json_response(
                success=True,
                data=[evento.to_dict() for evento in eventos],
                meta={'total': len(eventos)}
            )

        except Exception as e:
            return self.handle_exception(e)
