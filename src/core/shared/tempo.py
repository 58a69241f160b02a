"""Relógio do domínio: todos os timestamps do núcleo são UTC com timezone."""

from datetime import datetime, timezone


def agora() -> datetime:
    """Retorna o instante atual em UTC (timezone-aware)."""
    return datetime.now(timezone.utc)
