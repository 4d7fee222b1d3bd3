"""SchemaShift - schema migration planning and execution for Postgres."""

from schemashift.app import create_app
from schemashift.config import AppConfig, EngineConfig
from schemashift.engine import MigrationEngine

__all__ = ["create_app", "AppConfig", "EngineConfig", "MigrationEngine"]
