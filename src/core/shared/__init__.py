"""
Shared Domain Components.

Contém componentes compartilhados pelo núcleo:
- Exceções de domínio
- Interfaces (Ports) transversais
- Base classes para Domain Events
- Relógio do domínio (UTC)
"""

from .exceptions import (
    DomainException,
    ValidationError,
    EntityNotFoundError,
    BusinessRuleViolationError,
)
from .events import DomainEvent
from .interfaces import UnitOfWork
from .tempo import agora

__all__ = [
    "DomainException",
    "ValidationError",
    "EntityNotFoundError",
    "BusinessRuleViolationError",
    "DomainEvent",
    "UnitOfWork",
    "agora",
]
