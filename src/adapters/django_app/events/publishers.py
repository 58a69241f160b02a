"""
Event Publishers - Publicadores de Eventos de Domínio.

Responsável por entregar os eventos dos pedidos aos handlers assíncronos.
Implementações:
- LoggingEventPublisher: Apenas loga (desenvolvimento)
- CeleryEventPublisher: Publica via Celery (produção)
- InMemoryEventPublisher: Para testes

O modo é escolhido por EVENT_PUBLISHER_MODE (logging|celery).
"""

from abc import ABC, abstractmethod
from typing import Callable, Dict, List
import json
import logging

from src.core.shared.events import DomainEvent

logger = logging.getLogger(__name__)


# Eventos que exigem atenção da operação sobem para WARNING no log
EVENTOS_DE_ALERTA = frozenset({
    "FalhaConcessaoEvent",
    "CobrancaDesconhecidaEvent",
})


class EventPublisher(ABC):
    """Interface abstrata para publicadores de eventos."""

    @abstractmethod
    def publish(self, event: DomainEvent) -> None:
        raise NotImplementedError

    def publish_batch(self, events: List[DomainEvent]) -> None:
        for event in events:
            self.publish(event)


class LoggingEventPublisher(EventPublisher):
    """
    Publisher que apenas loga eventos.

    Usado em desenvolvimento para acompanhar o checkout sem
    broker de mensageria.
    """

    def __init__(self, log_level: int = logging.INFO):
        self._log_level = log_level

    def publish(self, event: DomainEvent) -> None:
        nivel = logging.WARNING if event.event_type in EVENTOS_DE_ALERTA else self._log_level
        logger.log(
            nivel,
            f"[EVENT] {event.event_type} | "
            f"aggregate={event.aggregate_id} | "
            f"data={json.dumps(event.to_dict(), default=str)}"
        )


class CeleryEventPublisher(EventPublisher):
    """
    Publisher que envia eventos para o Celery (dispatch_domain_event).

    Falha do broker não interrompe o checkout: o estado já foi gravado
    e as varreduras periódicas recuperam concessões e conciliação.
    """

    def __init__(self, also_log: bool = True):
        self._also_log = also_log

    def publish(self, event: DomainEvent) -> None:
        if self._also_log:
            logger.info(
                f"[EVENT->CELERY] {event.event_type} | "
                f"aggregate={event.aggregate_id}"
            )

        try:
            from src.adapters.django_app.events.handlers import dispatch_domain_event
            dispatch_domain_event.delay(event.event_type, event.to_dict())
        except Exception as e:
            logger.error(f"Falha ao publicar evento no Celery: {e}", exc_info=True)


class InMemoryEventPublisher(EventPublisher):
    """
    Publisher em memória para testes.

    Armazena eventos publicados e executa handlers registrados.
    """

    def __init__(self):
        self._published_events: List[DomainEvent] = []
        self._handlers: Dict[str, List[Callable[[DomainEvent], None]]] = {}

    def publish(self, event: DomainEvent) -> None:
        self._published_events.append(event)
        for handler in self._handlers.get(event.event_type, []):
            handler(event)

    @property
    def published_events(self) -> List[DomainEvent]:
        return self._published_events.copy()

    def clear(self) -> None:
        self._published_events.clear()

    def get_events_by_type(self, event_type: str) -> List[DomainEvent]:
        return [e for e in self._published_events if e.event_type == event_type]

    def register_handler(self, event_type: str, handler: Callable[[DomainEvent], None]) -> None:
        self._handlers.setdefault(event_type, []).append(handler)


def get_event_publisher(mode: str = "logging") -> EventPublisher:
    """
    Factory para obter publisher apropriado.

    Args:
        mode: "celery" para produção, "logging" para desenvolvimento

    Returns:
        Publisher configurado
    """
    if mode == "celery":
        return CeleryEventPublisher()
    return LoggingEventPublisher()
