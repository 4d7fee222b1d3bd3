"""Configuration dataclasses for the Postgres connection."""

import os
from dataclasses import dataclass
from typing import Optional


@dataclass
class PostgresConfig:
    """Postgres connection configuration."""

    host: str = "localhost"
    port: int = 5432
    database: str = "schemashift"
    user: str = "postgres"
    password: Optional[str] = None
    schema: str = "public"
    min_connections: int = 1
    max_connections: int = 5
    command_timeout: Optional[float] = None

    @classmethod
    def from_env(cls, prefix: str = "SCHEMASHIFT_DB_") -> "PostgresConfig":
        """Build a config from environment variables, falling back to defaults."""
        defaults = cls()
        timeout = os.environ.get(f"{prefix}COMMAND_TIMEOUT")
        return cls(
            host=os.environ.get(f"{prefix}HOST", defaults.host),
            port=int(os.environ.get(f"{prefix}PORT", defaults.port)),
            database=os.environ.get(f"{prefix}NAME", defaults.database),
            user=os.environ.get(f"{prefix}USER", defaults.user),
            password=os.environ.get(f"{prefix}PASSWORD", defaults.password),
            schema=os.environ.get(f"{prefix}SCHEMA", defaults.schema),
            min_connections=int(
                os.environ.get(f"{prefix}MIN_CONNECTIONS", defaults.min_connections)
            ),
            max_connections=int(
                os.environ.get(f"{prefix}MAX_CONNECTIONS", defaults.max_connections)
            ),
            command_timeout=float(timeout) if timeout else None,
        )
