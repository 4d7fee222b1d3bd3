"""Core components for postgres access."""

from pg_access.core.facade import Database
from pg_access.core.health import Health

__all__ = [
    "Database",
    "Health",
]
