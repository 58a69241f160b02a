"""
Domain Events do Domínio de Pedidos.

Eventos:
- PedidoCriadoEvent: Pedido registrado (PENDENTE)
- PedidoStatusAlteradoEvent: Transição aceita
- PedidoConcluidoEvent: Pedido chegou a CONCLUIDO (pago)
- TransicaoRejeitadaEvent: Evento duplicado/ilegal registrado como rejeitado
- AcessoConcedidoEvent: Concessão de acesso registrada
- FalhaConcessaoEvent: Liberação de acesso falhou após pagamento
- CobrancaDesconhecidaEvent: Webhook referenciando cobrança sem pedido

Uso:
    Eventos são criados nos use cases e publicados através do
    UnitOfWork após commit bem-sucedido.

    with uow:
        repo.save(pedido)
        uow.publish_event(PedidoCriadoEvent(aggregate_id=pedido.id, ...))
"""

from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from src.core.shared.events import DomainEvent


@dataclass
class PedidoCriadoEvent(DomainEvent):
    """
    Evento: Pedido foi registrado.

    Handlers típicos:
    - Métricas de funil de checkout

    Attributes:
        usuario_id: Dono do pedido (None para visitante)
        metodo_pagamento: Trilho escolhido
        valor_total: Total em centavos
        produtos: Chaves dos produtos comprados
    """

    usuario_id: Optional[str] = None
    metodo_pagamento: str = ""
    valor_total: int = 0
    produtos: List[str] = None

    def __post_init__(self):
        # aggregate_id sempre vem do pedido
        pass

    @property
    def aggregate_type(self) -> str:
        return "Pedido"

    def _get_event_data(self) -> Dict[str, Any]:
        return {
            "usuario_id": self.usuario_id,
            "metodo_pagamento": self.metodo_pagamento,
            "valor_total": self.valor_total,
            "produtos": list(self.produtos or []),
        }


@dataclass
class PedidoStatusAlteradoEvent(DomainEvent):
    """
    Evento: Transição de status aceita.

    Attributes:
        status_anterior: Status antes da transição
        status_novo: Status após a transição
        origem: webhook, poll, sync-response ou manual
    """

    status_anterior: str = ""
    status_novo: str = ""
    status_pagamento: str = ""
    origem: str = ""

    def __post_init__(self):
        pass

    @property
    def aggregate_type(self) -> str:
        return "Pedido"

    def _get_event_data(self) -> Dict[str, Any]:
        return {
            "status_anterior": self.status_anterior,
            "status_novo": self.status_novo,
            "status_pagamento": self.status_pagamento,
            "origem": self.origem,
        }


@dataclass
class PedidoConcluidoEvent(DomainEvent):
    """
    Evento: Pedido pago (CONCLUIDO pela primeira vez).

    Handlers típicos:
    - Email de confirmação da compra
    - Métrica de receita
    """

    usuario_id: Optional[str] = None
    email_cliente: Optional[str] = None
    valor_total: int = 0
    metodo_pagamento: str = ""

    def __post_init__(self):
        pass

    @property
    def aggregate_type(self) -> str:
        return "Pedido"

    def _get_event_data(self) -> Dict[str, Any]:
        return {
            "usuario_id": self.usuario_id,
            "email_cliente": self.email_cliente,
            "valor_total": self.valor_total,
            "metodo_pagamento": self.metodo_pagamento,
        }


@dataclass
class TransicaoRejeitadaEvent(DomainEvent):
    """
    Evento: Notificação não aplicada (duplicada ou fora da tabela).

    Não é erro: serve para auditoria e métricas de entregas repetidas.
    """

    status_atual: str = ""
    status_pretendido: str = ""
    motivo: str = ""
    origem: str = ""

    def __post_init__(self):
        pass

    @property
    def aggregate_type(self) -> str:
        return "Pedido"

    def _get_event_data(self) -> Dict[str, Any]:
        return {
            "status_atual": self.status_atual,
            "status_pretendido": self.status_pretendido,
            "motivo": self.motivo,
            "origem": self.origem,
        }


@dataclass
class AcessoConcedidoEvent(DomainEvent):
    """Evento: Acesso a um produto liberado para o comprador."""

    usuario_id: str = ""
    produto_tipo: str = ""
    produto_id: str = ""

    def __post_init__(self):
        pass

    @property
    def aggregate_type(self) -> str:
        return "Pedido"

    def _get_event_data(self) -> Dict[str, Any]:
        return {
            "usuario_id": self.usuario_id,
            "produto_tipo": self.produto_tipo,
            "produto_id": self.produto_id,
        }


@dataclass
class FalhaConcessaoEvent(DomainEvent):
    """
    Evento: Liberação de acesso falhou para pedido pago.

    Handlers típicos:
    - Alertar operação (o cliente pagou e ainda não tem acesso)
    """

    motivo: str = ""

    def __post_init__(self):
        pass

    @property
    def aggregate_type(self) -> str:
        return "Pedido"

    def _get_event_data(self) -> Dict[str, Any]:
        return {"motivo": self.motivo}


@dataclass
class CobrancaDesconhecidaEvent(DomainEvent):
    """
    Evento: Webhook autenticado para cobrança sem pedido.

    aggregate_id é o id da cobrança no gateway.
    """

    trilho: str = ""
    status_bruto: str = ""

    def __post_init__(self):
        pass

    @property
    def aggregate_type(self) -> str:
        return "Cobranca"

    def _get_event_data(self) -> Dict[str, Any]:
        return {
            "trilho": self.trilho,
            "status_bruto": self.status_bruto,
        }
