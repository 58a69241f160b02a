"""
Unit of Work - Implementação Django.

Gerencia a transação em que o status do pedido e o EventoStatus
correspondente são gravados juntos.

Responsabilidades:
- Abrir/fechar transação (transaction.atomic)
- Commit/Rollback coordenado
- Publicar eventos após commit bem-sucedido

ACID Guarantees:
- Atomicidade: status do pedido e histórico gravados juntos
- Isolamento: lock de linha (select_for_update) dura até o commit
- Durabilidade: PostgreSQL garante
"""

from typing import List, Optional
import logging

from django.db import transaction

from src.core.shared.interfaces import UnitOfWork
from src.core.shared.events import DomainEvent

logger = logging.getLogger(__name__)


class DjangoUnitOfWork(UnitOfWork):
    """
    Implementação Django do Unit of Work.

    Cada bloco `with` abre um transaction.atomic(); dentro de outro
    atomic (ex: testes com pytest-django) vira um savepoint.
    Eventos são publicados apenas após commit bem-sucedido.

    Example:
        uow = DjangoUnitOfWork(event_publisher=publisher)
        with uow:
            repo.save(pedido)
            repo.adicionar_evento_status(evento)
            uow.publish_event(PedidoStatusAlteradoEvent(...))
        # Commit automático + eventos publicados

    Example com rollback:
        with uow:
            repo.save(pedido)
            raise Exception("Erro!")
        # Rollback automático, eventos descartados
    """

    def __init__(self, event_publisher: Optional["EventPublisher"] = None, using: Optional[str] = None):
        """
        Args:
            event_publisher: Publicador de eventos (Celery, logging, etc)
            using: Alias do banco (default do Django se None)
        """
        super().__init__()
        self._event_publisher = event_publisher
        self._using = using
        self._atomic = None
        self._committed = False
        self._rolled_back = False

    def _begin_transaction(self) -> None:
        if self._atomic is not None:
            raise RuntimeError("Unit of Work já está em uma transação")

        self._committed = False
        self._rolled_back = False
        self.clear_events()

        self._atomic = transaction.atomic(using=self._using)
        self._atomic.__enter__()
        logger.debug("Transaction started")

    def commit(self) -> None:
        """
        Persiste mudanças e publica eventos.

        Raises:
            Exception: Se o commit falhar (eventos são descartados)
        """
        if self._atomic is None:
            logger.warning("Transaction already finalized")
            return

        atomic, self._atomic = self._atomic, None
        try:
            atomic.__exit__(None, None, None)
        except Exception as e:
            logger.error(f"Commit failed: {e}")
            self._rolled_back = True
            self.clear_events()
            raise

        self._committed = True
        logger.debug("Transaction committed")

        if self._events:
            self._publish_events()

    def rollback(self) -> None:
        if self._atomic is None:
            return

        atomic, self._atomic = self._atomic, None
        try:
            # Sinaliza erro ao atomic para que ele desfaça a transação
            transaction.set_rollback(True, using=self._using)
            atomic.__exit__(None, None, None)
            logger.debug("Transaction rolled back")
        finally:
            self._rolled_back = True
            self.clear_events()

    def _publish_events(self) -> None:
        """
        Publica eventos para handlers assíncronos.

        Falha na publicação não desfaz o commit: o estado já foi gravado
        e as varreduras (conciliação, concessões) recuperam o efeito.
        """
        for event in self._events:
            logger.info(
                f"Publishing event: {event.event_type} "
                f"for aggregate {event.aggregate_id}"
            )

            if self._event_publisher:
                try:
                    self._event_publisher.publish(event)
                except Exception as e:
                    logger.error(f"Failed to publish event: {e}")

        self.clear_events()

    @property
    def is_committed(self) -> bool:
        return self._committed

    @property
    def is_rolled_back(self) -> bool:
        return self._rolled_back


class InMemoryUnitOfWork(UnitOfWork):
    """
    Unit of Work em memória para testes.

    Não persiste nada (os repositórios em memória gravam direto),
    apenas acumula os eventos "publicados".

    Example:
        uow = InMemoryUnitOfWork()
        with uow:
            uow.publish_event(event)

        assert uow.committed
        assert len(uow.published_events) == 1
    """

    def __init__(self, event_publisher: Optional["EventPublisher"] = None):
        super().__init__()
        self._event_publisher = event_publisher
        self._committed = False
        self._rolled_back = False
        self._published_events: List[DomainEvent] = []

    def _begin_transaction(self) -> None:
        self.clear_events()

    def commit(self) -> None:
        self._committed = True
        eventos = list(self._events)
        self.clear_events()
        self._published_events.extend(eventos)
        if self._event_publisher:
            for event in eventos:
                self._event_publisher.publish(event)

    def rollback(self) -> None:
        self._rolled_back = True
        self.clear_events()

    @property
    def committed(self) -> bool:
        return self._committed

    @property
    def rolled_back(self) -> bool:
        return self._rolled_back

    @property
    def published_events(self) -> List[DomainEvent]:
        """Retorna eventos que foram 'publicados'."""
        return self._published_events

    def eventos_do_tipo(self, event_type: str) -> List[DomainEvent]:
        return [e for e in self._published_events if e.event_type == event_type]

    def reset(self) -> None:
        """Reset para próximo teste."""
        self._committed = False
        self._rolled_back = False
        self._published_events.clear()
        self.clear_events()
