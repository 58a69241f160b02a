"""
Adapter do gateway Asaas (cartão, PIX e boleto).

Componentes:
- AsaasClient: cliente HTTP fino sobre requests (API v3)
- AsaasGateway: implementação do port GatewayPagamento
- classificar_status / classificar_evento: tradução dos status e
  eventos do Asaas para ResultadoGateway

Erros de transporte (timeout, conexão, 5xx, 429) viram
GatewayIndisponivelError; 4xx no pagamento com cartão vira
PagamentoRecusadoError; demais 4xx viram GatewayError.

Dados do cartão trafegam só no corpo do payWithCreditCard e nunca
aparecem em log.
"""

from datetime import datetime, timedelta, timezone
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Dict, Mapping, Optional
import logging

import requests

from src.core.pedidos.dtos import CobrancaCriada, DadosCartaoDTO, NotificacaoGateway
from src.core.pedidos.entities import MetodoPagamento, PedidoEntity, ResultadoGateway
from src.core.pedidos.exceptions import (
    CobrancaDesconhecidaError,
    GatewayError,
    GatewayIndisponivelError,
    PagamentoRecusadoError,
)
from src.core.shared.tempo import agora

logger = logging.getLogger(__name__)

# Horário de Brasília: datas de vencimento e expiração do PIX do Asaas
FUSO_ASAAS = timezone(timedelta(hours=-3))


# =============================================================================
# Classificação de status/eventos
# =============================================================================

STATUS_RESULTADO: Dict[str, ResultadoGateway] = {
    "RECEIVED": ResultadoGateway.PAGO,
    "CONFIRMED": ResultadoGateway.PAGO,
    "RECEIVED_IN_CASH": ResultadoGateway.PAGO,
    "DUNNING_RECEIVED": ResultadoGateway.PAGO,
    "PENDING": ResultadoGateway.PENDENTE,
    "DUNNING_REQUESTED": ResultadoGateway.PENDENTE,
    "AWAITING_RISK_ANALYSIS": ResultadoGateway.EM_PROCESSAMENTO,
    "OVERDUE": ResultadoGateway.EXPIRADO,
    "REFUNDED": ResultadoGateway.ESTORNADO,
    "REFUND_REQUESTED": ResultadoGateway.ESTORNADO,
    "REFUND_IN_PROGRESS": ResultadoGateway.ESTORNADO,
    "CHARGEBACK_REQUESTED": ResultadoGateway.ESTORNADO,
    "CHARGEBACK_DISPUTE": ResultadoGateway.ESTORNADO,
    "AWAITING_CHARGEBACK_REVERSAL": ResultadoGateway.ESTORNADO,
    "DELETED": ResultadoGateway.CANCELADO,
    "DECLINED": ResultadoGateway.RECUSADO,
    "FAILED": ResultadoGateway.RECUSADO,
}

EVENTO_RESULTADO: Dict[str, ResultadoGateway] = {
    "PAYMENT_RECEIVED": ResultadoGateway.PAGO,
    "PAYMENT_CONFIRMED": ResultadoGateway.PAGO,
    "PAYMENT_AWAITING_RISK_ANALYSIS": ResultadoGateway.EM_PROCESSAMENTO,
    "PAYMENT_OVERDUE": ResultadoGateway.EXPIRADO,
    "PAYMENT_DELETED": ResultadoGateway.CANCELADO,
    "PAYMENT_REFUNDED": ResultadoGateway.ESTORNADO,
    "PAYMENT_REFUND_IN_PROGRESS": ResultadoGateway.ESTORNADO,
    "PAYMENT_CHARGEBACK_REQUESTED": ResultadoGateway.ESTORNADO,
    "PAYMENT_CHARGEBACK_DISPUTE": ResultadoGateway.ESTORNADO,
    "PAYMENT_AWAITING_CHARGEBACK_REVERSAL": ResultadoGateway.ESTORNADO,
    "PAYMENT_CREDIT_CARD_CAPTURE_REFUSED": ResultadoGateway.RECUSADO,
    "PAYMENT_REPROVED_BY_RISK_ANALYSIS": ResultadoGateway.RECUSADO,
}


def classificar_status(status: Optional[str]) -> ResultadoGateway:
    """
    Traduz o status de uma cobrança Asaas.

    Status desconhecido é tratado como PENDENTE (nada mudou).
    """
    resultado = STATUS_RESULTADO.get((status or "").upper())
    if resultado is None:
        logger.warning(f"Status Asaas desconhecido: {status!r}")
        return ResultadoGateway.PENDENTE
    return resultado


def classificar_evento(evento: Optional[str], status: Optional[str]) -> ResultadoGateway:
    """
    Traduz um evento de webhook Asaas.

    Eventos sem significado próprio (PAYMENT_CREATED, PAYMENT_UPDATED,
    PAYMENT_APPROVED_BY_RISK_ANALYSIS...) seguem o status da cobrança.
    """
    resultado = EVENTO_RESULTADO.get((evento or "").upper())
    if resultado is not None:
        return resultado
    return classificar_status(status)


def trilho_do_billing_type(billing_type: Optional[str]) -> str:
    try:
        return MetodoPagamento.from_string(billing_type).trilho
    except ValueError:
        return ""


def centavos_para_reais(centavos: int) -> float:
    """Asaas recebe valores em reais com duas casas."""
    valor = (Decimal(centavos) / Decimal(100)).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)
    return float(valor)


def _parse_data_hora(valor: Optional[str]) -> Optional[datetime]:
    if not valor:
        return None
    for formato in ("%Y-%m-%d %H:%M:%S", "%Y-%m-%dT%H:%M:%S"):
        try:
            return datetime.strptime(valor, formato).replace(tzinfo=FUSO_ASAAS)
        except ValueError:
            continue
    logger.warning(f"Data de expiração em formato inesperado: {valor!r}")
    return None


# =============================================================================
# Cliente HTTP
# =============================================================================

class AsaasClient:
    """
    Cliente HTTP da API v3 do Asaas.

    Example:
        client = AsaasClient(api_key="$aact_...", ambiente="sandbox")
        cobranca = client.consultar_cobranca("pay_123")
    """

    URL_PRODUCAO = "https://api.asaas.com/v3"
    URL_SANDBOX = "https://sandbox.asaas.com/api/v3"

    def __init__(
        self,
        api_key: str,
        ambiente: str = "sandbox",
        timeout: float = 15,
        session: Optional[requests.Session] = None,
    ):
        self.base_url = self.URL_PRODUCAO if ambiente == "producao" else self.URL_SANDBOX
        self.timeout = timeout
        self.session = session or requests.Session()
        self.session.headers.update({
            "Content-Type": "application/json",
            "access_token": api_key,
        })

    def _request(self, metodo: str, caminho: str, **kwargs) -> Dict[str, Any]:
        url = f"{self.base_url}{caminho}"
        try:
            resp = self.session.request(metodo, url, timeout=self.timeout, **kwargs)
        except requests.RequestException as e:
            raise GatewayIndisponivelError(f"Falha de comunicação com o Asaas: {e}")

        if resp.status_code >= 500 or resp.status_code == 429:
            raise GatewayIndisponivelError(
                f"Asaas respondeu HTTP {resp.status_code} em {metodo} {caminho}",
                status_http=resp.status_code,
            )

        if resp.status_code >= 400:
            descricao = self._descricao_erro(resp)
            logger.warning(f"Asaas rejeitou {metodo} {caminho}: HTTP {resp.status_code} {descricao}")
            raise GatewayError(descricao, "GATEWAY_REQUEST_REJECTED", resp.status_code)

        if not resp.content:
            return {}
        try:
            return resp.json()
        except ValueError:
            raise GatewayIndisponivelError(f"Resposta inválida do Asaas em {metodo} {caminho}")

    @staticmethod
    def _descricao_erro(resp: requests.Response) -> str:
        try:
            return resp.json()["errors"][0]["description"]
        except (ValueError, KeyError, IndexError, TypeError):
            return resp.text[:200] or f"HTTP {resp.status_code}"

    # Clientes

    def criar_ou_atualizar_cliente(self, dados: Mapping[str, Any]) -> str:
        """Busca cliente pelo CPF/CNPJ; atualiza se existir, cria se não."""
        existentes = self._request("GET", "/customers", params={"cpfCnpj": dados["cpfCnpj"]})
        encontrados = existentes.get("data") or []

        if encontrados:
            cliente_id = encontrados[0]["id"]
            self._request("POST", f"/customers/{cliente_id}", json=dict(dados))
            return cliente_id

        return self._request("POST", "/customers", json=dict(dados))["id"]

    # Cobranças

    def criar_cobranca(self, dados: Mapping[str, Any]) -> Dict[str, Any]:
        return self._request("POST", "/payments", json=dict(dados))

    def pagar_com_cartao(self, cobranca_id: str, dados: Mapping[str, Any]) -> Dict[str, Any]:
        return self._request("POST", f"/payments/{cobranca_id}/payWithCreditCard", json=dict(dados))

    def obter_qr_code_pix(self, cobranca_id: str) -> Dict[str, Any]:
        return self._request("GET", f"/payments/{cobranca_id}/pixQrCode")

    def obter_linha_digitavel(self, cobranca_id: str) -> Dict[str, Any]:
        return self._request("GET", f"/payments/{cobranca_id}/identificationField")

    def consultar_cobranca(self, cobranca_id: str) -> Dict[str, Any]:
        return self._request("GET", f"/payments/{cobranca_id}")

    def remover_cobranca(self, cobranca_id: str) -> None:
        self._request("DELETE", f"/payments/{cobranca_id}")


# =============================================================================
# Port GatewayPagamento
# =============================================================================

class AsaasGateway:
    """
    Implementação do GatewayPagamento sobre o Asaas.

    Fluxo da cobrança:
    1. Cliente Asaas criado/atualizado pelo CPF/CNPJ
    2. POST /payments com externalReference = id do pedido
    3. Cartão: payWithCreditCard (autorização síncrona)
       PIX: busca QR Code; Boleto: busca linha digitável
    """

    def __init__(self, client: AsaasClient, dias_vencimento_boleto: int = 7):
        self.client = client
        self.dias_vencimento_boleto = dias_vencimento_boleto

    def criar_cobranca(
        self,
        pedido: PedidoEntity,
        cartao: Optional[DadosCartaoDTO] = None,
        ip_remoto: Optional[str] = None,
    ) -> CobrancaCriada:
        metodo = pedido.metodo_pagamento
        cliente_id = self.client.criar_ou_atualizar_cliente(self._dados_cliente(pedido))

        hoje = agora().astimezone(FUSO_ASAAS).date()
        vencimento = hoje
        if metodo == MetodoPagamento.BOLETO:
            vencimento = hoje + timedelta(days=self.dias_vencimento_boleto)

        dados = {
            "customer": cliente_id,
            "billingType": metodo.value,
            "value": centavos_para_reais(pedido.valor_total),
            "dueDate": vencimento.isoformat(),
            "description": self._descricao(pedido),
            "externalReference": pedido.id,
        }
        if pedido.parcelas > 1:
            # Asaas divide o total entre as parcelas
            dados["installmentCount"] = pedido.parcelas
            dados["totalValue"] = centavos_para_reais(pedido.valor_total)

        cobranca = self.client.criar_cobranca(dados)
        cobranca_id = cobranca["id"]
        logger.info(f"Cobrança Asaas {cobranca_id} criada para o pedido {pedido.id} ({metodo.value})")

        extras: Dict[str, Any] = {}
        if metodo == MetodoPagamento.CARTAO_CREDITO:
            cobranca = self._pagar_com_cartao(pedido, cobranca_id, cartao, ip_remoto)
        elif metodo == MetodoPagamento.PIX:
            extras = self._dados_pix(cobranca_id)
        else:
            extras = self._dados_boleto(cobranca_id, cobranca)

        return CobrancaCriada(
            cobranca_id=cobranca_id,
            resultado=classificar_status(cobranca.get("status")),
            status_bruto=cobranca.get("status", ""),
            vencimento=vencimento,
            payload=cobranca,
            **extras,
        )

    def consultar_cobranca(self, cobranca_id: str) -> NotificacaoGateway:
        try:
            cobranca = self.client.consultar_cobranca(cobranca_id)
        except GatewayError as e:
            if e.status_http == 404:
                raise CobrancaDesconhecidaError(cobranca_id)
            raise

        return NotificacaoGateway(
            trilho=trilho_do_billing_type(cobranca.get("billingType")),
            cobranca_id=cobranca_id,
            resultado=classificar_status(cobranca.get("status")),
            status_bruto=cobranca.get("status", ""),
            referencia_externa=cobranca.get("externalReference"),
            parcelamento_id=cobranca.get("installment"),
            payload=cobranca,
        )

    def cancelar_cobranca(self, cobranca_id: str) -> None:
        self.client.remover_cobranca(cobranca_id)
        logger.info(f"Cobrança Asaas {cobranca_id} removida")

    # -------------------------------------------------------------------------
    # Cartão
    # -------------------------------------------------------------------------

    def _pagar_com_cartao(
        self,
        pedido: PedidoEntity,
        cobranca_id: str,
        cartao: Optional[DadosCartaoDTO],
        ip_remoto: Optional[str],
    ) -> Dict[str, Any]:
        if cartao is None:
            raise GatewayError("Dados do cartão ausentes", "GATEWAY_CARD_MISSING")

        try:
            resposta = self.client.pagar_com_cartao(cobranca_id, self._dados_cartao(pedido, cartao, ip_remoto))
        except GatewayIndisponivelError:
            # Sem resposta da autorização: remove a cobrança para não
            # deixar um pagamento órfão pendente no Asaas
            self._remover_orfa(cobranca_id)
            raise
        except GatewayError as e:
            if e.status_http and 400 <= e.status_http < 500:
                raise PagamentoRecusadoError(
                    e.message,
                    cobranca_id=cobranca_id,
                    payload={"status_http": e.status_http, "descricao": e.message},
                )
            raise

        if classificar_status(resposta.get("status")) == ResultadoGateway.RECUSADO:
            raise PagamentoRecusadoError(
                "Pagamento não autorizado pela operadora",
                cobranca_id=cobranca_id,
                payload=resposta,
            )

        logger.info(
            f"Cartão final {cartao.final} do pedido {pedido.id}: {resposta.get('status')}"
        )
        return resposta

    def _remover_orfa(self, cobranca_id: str) -> None:
        try:
            self.client.remover_cobranca(cobranca_id)
        except GatewayError as e:
            logger.error(f"Cobrança órfã {cobranca_id} não removida do Asaas: {e}")

    @staticmethod
    def _dados_cartao(pedido: PedidoEntity, cartao: DadosCartaoDTO, ip_remoto: Optional[str]) -> Dict[str, Any]:
        cliente = pedido.cliente
        dados = {
            "creditCard": {
                "holderName": cartao.titular,
                "number": cartao.numero,
                "expiryMonth": cartao.mes_validade,
                "expiryYear": cartao.ano_validade,
                "ccv": cartao.cvv,
            },
            "creditCardHolderInfo": {
                "name": cliente.nome,
                "email": cliente.email,
                "cpfCnpj": cliente.cpf_cnpj,
                "postalCode": cliente.cep or "",
                "addressNumber": cliente.numero or "",
                "phone": cliente.telefone or "",
            },
        }
        if ip_remoto:
            dados["remoteIp"] = ip_remoto
        return dados

    # -------------------------------------------------------------------------
    # PIX / Boleto
    # -------------------------------------------------------------------------

    def _dados_pix(self, cobranca_id: str) -> Dict[str, Any]:
        try:
            qr = self.client.obter_qr_code_pix(cobranca_id)
        except GatewayError as e:
            logger.warning(f"QR Code PIX da cobrança {cobranca_id} indisponível: {e}")
            return {}

        return {
            "pix_copia_e_cola": qr.get("payload"),
            "pix_qr_code": qr.get("encodedImage"),
            "pix_expira_em": _parse_data_hora(qr.get("expirationDate")),
        }

    def _dados_boleto(self, cobranca_id: str, cobranca: Mapping[str, Any]) -> Dict[str, Any]:
        dados = {"boleto_url": cobranca.get("bankSlipUrl") or cobranca.get("invoiceUrl")}
        try:
            linha = self.client.obter_linha_digitavel(cobranca_id)
        except GatewayError as e:
            logger.warning(f"Linha digitável da cobrança {cobranca_id} indisponível: {e}")
        else:
            dados["boleto_codigo_barras"] = linha.get("identificationField") or linha.get("barCode")
        return dados

    # -------------------------------------------------------------------------
    # Auxiliares
    # -------------------------------------------------------------------------

    @staticmethod
    def _dados_cliente(pedido: PedidoEntity) -> Dict[str, Any]:
        cliente = pedido.cliente
        dados = {
            "name": cliente.nome,
            "cpfCnpj": cliente.cpf_cnpj,
            "email": cliente.email,
            "mobilePhone": cliente.telefone,
            "postalCode": cliente.cep,
            "address": cliente.endereco,
            "addressNumber": cliente.numero,
            "province": cliente.bairro,
        }
        return {chave: valor for chave, valor in dados.items() if valor}

    @staticmethod
    def _descricao(pedido: PedidoEntity) -> str:
        titulos = ", ".join(item.titulo for item in pedido.itens)
        return f"Pedido {pedido.id[:8]}: {titulos}"[:500]
