"""
Domain Events - Comunicação Assíncrona entre Domínios.

Este módulo define a infraestrutura base para Domain Events,
permitindo que o núcleo de checkout avise o resto do sistema
(notificações, alertas de operação, métricas) sem conhecê-lo.

Características:
- Auto-geração de ID e timestamp
- Serializáveis para transporte via Celery
- Rastreáveis via aggregate_id

Pattern:
    - Eventos são publicados após commit do UoW
    - Handlers assíncronos (Celery) processam eventos
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict
import uuid

from .tempo import agora


@dataclass(frozen=False)  # frozen=False para permitir inicialização customizada
class DomainEvent(ABC):
    """
    Classe base abstrata para Domain Events.

    Um Domain Event representa algo significativo que aconteceu
    no domínio e que pode ser relevante para outras partes do sistema.

    Características:
    - Nomeados no passado (PedidoConcluido, não ConcluirPedido)
    - Representam fatos históricos
    - Contêm dados necessários para os handlers

    Attributes:
        event_id: Identificador único do evento
        aggregate_id: ID do agregado que gerou o evento
        occurred_at: Momento em que o evento ocorreu
        version: Versão do schema do evento (para evolução)

    Example:
        @dataclass
        class PedidoCriadoEvent(DomainEvent):
            valor_total: int = 0

            @property
            def aggregate_type(self) -> str:
                return "Pedido"
    """

    # Campos comuns a todos os eventos
    event_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    aggregate_id: str = ""
    occurred_at: datetime = field(default_factory=agora)
    version: int = 1  # Para versionamento de schema

    def __post_init__(self):
        """Validação após inicialização."""
        if not self.aggregate_id:
            raise ValueError("aggregate_id é obrigatório")

    @property
    @abstractmethod
    def aggregate_type(self) -> str:
        """
        Retorna o tipo do agregado que gerou este evento.

        Returns:
            Nome do tipo do agregado (ex: "Pedido", "Cobranca")
        """
        ...

    @property
    def event_type(self) -> str:
        """Retorna o tipo do evento (nome da classe)."""
        return self.__class__.__name__

    def to_dict(self) -> Dict[str, Any]:
        """
        Serializa evento para dicionário.

        Útil para:
        - Envio via Celery (JSON)
        - Logging estruturado

        Returns:
            Dicionário com dados do evento
        """
        return {
            "event_id": self.event_id,
            "event_type": self.event_type,
            "aggregate_id": self.aggregate_id,
            "aggregate_type": self.aggregate_type,
            "occurred_at": self.occurred_at.isoformat(),
            "version": self.version,
            "data": self._get_event_data(),
        }

    def _get_event_data(self) -> Dict[str, Any]:
        """
        Retorna dados específicos do evento (para override em subclasses).

        Returns:
            Dicionário com dados específicos do evento
        """
        # Pega todos os campos que não são os da classe base
        base_fields = {"event_id", "aggregate_id", "occurred_at", "version"}
        return {
            key: value
            for key, value in self.__dict__.items()
            if key not in base_fields and not key.startswith("_")
        }

    def __repr__(self) -> str:
        """Representação string do evento para debugging."""
        return (
            f"{self.event_type}("
            f"event_id={self.event_id[:8]}..., "
            f"aggregate_id={self.aggregate_id}, "
            f"occurred_at={self.occurred_at.isoformat()}"
            f")"
        )
