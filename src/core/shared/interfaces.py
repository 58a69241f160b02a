"""
Interfaces (Ports) - Contratos entre Core e Adapters.

Este módulo define as interfaces transversais que os Adapters devem
implementar. São os "Ports" da Arquitetura Hexagonal. Os ports
específicos de pedidos (repositórios, gateway, colaboradores) ficam em
src/core/pedidos/ports.py.

Princípio: Core define interfaces; Adapters implementam.
O fluxo de dependência sempre aponta para o Core.
"""

from abc import ABC, abstractmethod
from typing import List

from .events import DomainEvent


class UnitOfWork(ABC):
    """
    Unit of Work - Coordena transações atômicas.

    Garante que a escrita do novo status do pedido e o registro do
    EventoStatus correspondente sejam persistidos como uma única
    unidade: ou ambos são gravados ou nenhum é.

    Pattern: Context Manager
        with uow:
            repo.save(pedido)
            repo.adicionar_evento_status(evento)
            uow.publish_event(event)
        # Commit automático ao sair sem erro
        # Rollback automático se exceção

    A mesma instância pode ser reutilizada em blocos `with` sucessivos;
    cada bloco é uma transação independente.
    """

    def __init__(self):
        self._events: List[DomainEvent] = []

    def __enter__(self) -> "UnitOfWork":
        self._begin_transaction()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> bool:
        if exc_type is not None:
            self.rollback()
        else:
            self.commit()
        return False  # Não suprime exceções

    @abstractmethod
    def _begin_transaction(self) -> None:
        """Inicia uma nova transação."""
        raise NotImplementedError

    @abstractmethod
    def commit(self) -> None:
        """
        Persiste todas as mudanças e publica eventos.

        Ordem de execução:
        1. Commit da transação no banco
        2. Publicação de eventos enfileirados
        3. Limpeza de estado interno

        Note:
            Eventos só são publicados após commit bem-sucedido.
            Se commit falhar, eventos são descartados.
        """
        raise NotImplementedError

    @abstractmethod
    def rollback(self) -> None:
        """Desfaz todas as mudanças e descarta eventos."""
        raise NotImplementedError

    def publish_event(self, event: DomainEvent) -> None:
        """
        Enfileira evento para publicação após commit.

        Args:
            event: Evento de domínio a ser publicado
        """
        self._events.append(event)

    def collect_events(self) -> List[DomainEvent]:
        """Retorna eventos enfileirados (para testing/debugging)."""
        return list(self._events)

    def clear_events(self) -> None:
        """Limpa fila de eventos."""
        self._events.clear()
