"""Postgres access layer shared by the migration engine."""

from pg_access.config import PostgresConfig
from pg_access.core import Database, Health

__all__ = [
    # Façade
    "Database",
    # Config
    "PostgresConfig",
    # Health
    "Health",
]
