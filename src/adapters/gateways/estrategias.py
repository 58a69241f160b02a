"""
Estratégias de webhook por trilho (cartão, PIX, boleto).

Cada estratégia implementa o port EstrategiaTrilho:
- verificar: autentica o webhook (token compartilhado do Asaas e,
  opcionalmente, assinatura HMAC-SHA256 do corpo)
- classificar: traduz {event, payment} para NotificacaoGateway

As estratégias são registradas num dicionário indexado pelo nome do
trilho, usado pela rota POST /webhook/<trilho>/.
"""

from typing import Any, Dict, Mapping, Optional
import hashlib
import hmac
import logging

from src.core.pedidos.dtos import NotificacaoGateway
from src.core.pedidos.entities import MetodoPagamento
from src.core.pedidos.exceptions import AssinaturaInvalidaError
from src.core.shared.exceptions import ValidationError

from .asaas import classificar_evento

logger = logging.getLogger(__name__)

CABECALHO_TOKEN = "asaas-access-token"
CABECALHO_ASSINATURA = "x-signature"


def _cabecalho(cabecalhos: Mapping[str, str], nome: str) -> str:
    """Busca cabeçalho ignorando maiúsculas/minúsculas."""
    for chave, valor in cabecalhos.items():
        if chave.lower() == nome:
            return valor or ""
    return ""


class EstrategiaAsaasBase:
    """
    Verificação e classificação comuns aos trilhos do Asaas.

    Subclasses definem `metodo` (o billingType aceito pelo trilho).

    Attributes:
        token_webhook: Token configurado no painel do Asaas
        segredo_hmac: Segredo da assinatura X-Signature (opcional)
    """

    metodo: MetodoPagamento

    def __init__(self, token_webhook: str, segredo_hmac: Optional[str] = None):
        self.token_webhook = token_webhook or ""
        self.segredo_hmac = segredo_hmac or ""

    @property
    def trilho(self) -> str:
        return self.metodo.trilho

    def verificar(self, cabecalhos: Mapping[str, str], corpo: bytes) -> None:
        if not self.token_webhook:
            raise AssinaturaInvalidaError(self.trilho, "token do webhook não configurado")

        recebido = _cabecalho(cabecalhos, CABECALHO_TOKEN)
        if not hmac.compare_digest(recebido.encode(), self.token_webhook.encode()):
            logger.warning(f"Webhook {self.trilho} com token inválido")
            raise AssinaturaInvalidaError(self.trilho)

        if self.segredo_hmac:
            esperado = hmac.new(self.segredo_hmac.encode(), corpo or b"", hashlib.sha256).hexdigest()
            assinatura = _cabecalho(cabecalhos, CABECALHO_ASSINATURA).lower()
            if assinatura.startswith("sha256="):
                assinatura = assinatura[len("sha256="):]
            if not hmac.compare_digest(assinatura.encode(), esperado.encode()):
                logger.warning(f"Webhook {self.trilho} com assinatura HMAC inválida")
                raise AssinaturaInvalidaError(self.trilho, "assinatura inválida")

    def classificar(self, payload: Mapping[str, Any]) -> NotificacaoGateway:
        evento = payload.get("event")
        pagamento = payload.get("payment")

        if not isinstance(pagamento, Mapping) or not pagamento.get("id"):
            raise ValidationError("Webhook sem dados do pagamento", field="payment")

        billing_type = str(pagamento.get("billingType") or "").upper()
        if billing_type != self.metodo.value:
            raise ValidationError(
                f"Pagamento {billing_type or '?'} não pertence ao trilho {self.trilho}",
                field="billingType",
            )

        return NotificacaoGateway(
            trilho=self.trilho,
            cobranca_id=str(pagamento["id"]),
            resultado=classificar_evento(evento, pagamento.get("status")),
            status_bruto=str(evento or pagamento.get("status") or ""),
            referencia_externa=pagamento.get("externalReference"),
            parcelamento_id=pagamento.get("installment"),
            payload=dict(payload),
        )


class EstrategiaCartao(EstrategiaAsaasBase):
    metodo = MetodoPagamento.CARTAO_CREDITO


class EstrategiaPix(EstrategiaAsaasBase):
    metodo = MetodoPagamento.PIX


class EstrategiaBoleto(EstrategiaAsaasBase):
    metodo = MetodoPagamento.BOLETO


def registro_estrategias(token_webhook: str, segredo_hmac: Optional[str] = None) -> Dict[str, EstrategiaAsaasBase]:
    """
    Monta o registro {trilho: estratégia}.

    Example:
        estrategias = registro_estrategias(settings.ASAAS_WEBHOOK_TOKEN)
        estrategias["pix"].verificar(request.headers, request.body)
    """
    estrategias = (
        EstrategiaCartao(token_webhook, segredo_hmac),
        EstrategiaPix(token_webhook, segredo_hmac),
        EstrategiaBoleto(token_webhook, segredo_hmac),
    )
    return {estrategia.trilho: estrategia for estrategia in estrategias}
