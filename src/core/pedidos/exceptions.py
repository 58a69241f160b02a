"""
Exceções do Domínio de Pedidos.

Taxonomia de erros do checkout e de como cada um se propaga:

    DomainException
    ├── GatewayError (erro genérico do gateway, ex: 4xx inesperado)
    │   ├── GatewayIndisponivelError  → pedido fica PENDENTE, retentável
    │   └── PagamentoRecusadoError    → pedido vai para CANCELADO
    ├── CobrancaDesconhecidaError     → logado, descartado, alerta operação
    ├── AssinaturaInvalidaError       → webhook rejeitado (401), sem efeito
    ├── FalhaConcessaoError           → reprocessado pela varredura
    ├── IdentidadeError               → reportado separado do pagamento
    └── BusinessRuleViolationError
        └── TransicaoIlegalError      → vira EventoStatus rejeitado

ValidationError e PagamentoRecusadoError chegam ao cliente; os demais
são absorvidos internamente ou viram alerta para a operação.
"""

from typing import Any, Dict, Optional

from src.core.shared.exceptions import DomainException, BusinessRuleViolationError


class GatewayError(DomainException):
    """Erro ao falar com o gateway de pagamento."""

    def __init__(self, message: str, code: str = None, status_http: Optional[int] = None):
        self.status_http = status_http
        super().__init__(message, code or "GATEWAY_ERROR")


class GatewayIndisponivelError(GatewayError):
    """
    Falha de rede/timeout/5xx no gateway.

    O pedido permanece PENDENTE (sem cobrança, se a falha foi na criação)
    e pode ser retentado com segurança.
    """

    def __init__(self, message: str, status_http: Optional[int] = None):
        super().__init__(message, "GATEWAY_UNAVAILABLE", status_http)


class PagamentoRecusadoError(GatewayError):
    """
    O trilho recusou explicitamente a cobrança.

    Attributes:
        motivo: Descrição da recusa devolvida pelo gateway
        cobranca_id: Cobrança recusada (quando o gateway chegou a emiti-la)
        payload: Resposta bruta do gateway (auditoria)
    """

    def __init__(
        self,
        motivo: str,
        cobranca_id: Optional[str] = None,
        payload: Optional[Dict[str, Any]] = None,
    ):
        self.motivo = motivo
        self.cobranca_id = cobranca_id
        self.payload = payload or {}
        super().__init__(f"Pagamento recusado: {motivo}", "GATEWAY_DECLINED")

    def to_dict(self) -> dict:
        result = super().to_dict()
        result["motivo"] = self.motivo
        return result


class CobrancaDesconhecidaError(DomainException):
    """Notificação referencia uma cobrança sem pedido correspondente."""

    def __init__(self, cobranca_id: str, trilho: Optional[str] = None):
        self.cobranca_id = cobranca_id
        self.trilho = trilho
        super().__init__(
            f"Cobrança {cobranca_id} não corresponde a nenhum pedido",
            "UNKNOWN_CHARGE",
        )


class TransicaoIlegalError(BusinessRuleViolationError):
    """
    Transição fora da tabela de estados (ou repetida).

    Só é lançada pela entidade quando alguém tenta mutá-la diretamente;
    o AplicarTransicaoService converte o caso em EventoStatus rejeitado.
    """

    def __init__(self, status_atual: str, status_destino: str, motivo: str = "transicao_ilegal"):
        self.status_atual = status_atual
        self.status_destino = status_destino
        self.motivo = motivo
        super().__init__(
            f"Transição {status_atual} -> {status_destino} não permitida ({motivo})",
            rule="transicao_de_status",
            code="ILLEGAL_TRANSITION",
        )


class FalhaConcessaoError(DomainException):
    """Falha ao liberar acesso de um pedido já pago."""

    def __init__(self, pedido_id: str, motivo: str):
        self.pedido_id = pedido_id
        self.motivo = motivo
        super().__init__(
            f"Falha ao conceder acesso do pedido {pedido_id}: {motivo}",
            "ENTITLEMENT_GRANT_FAILURE",
        )


class AssinaturaInvalidaError(DomainException):
    """Webhook sem autenticação válida."""

    def __init__(self, trilho: str, motivo: str = "token inválido"):
        self.trilho = trilho
        super().__init__(
            f"Webhook do trilho '{trilho}' rejeitado: {motivo}",
            "INVALID_WEBHOOK_SIGNATURE",
        )


class IdentidadeError(DomainException):
    """Falha ao criar usuário/sessão durante checkout de visitante."""

    def __init__(self, message: str):
        super().__init__(message, "IDENTITY_ERROR")
