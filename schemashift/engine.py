"""Engine - wires introspector, planner and executor to one database."""

import logging
from types import TracebackType
from typing import Any, Optional, Self

from pg_access import Database, PostgresConfig
from schemashift.config import EngineConfig
from schemashift.migration.backup import BackupWriter
from schemashift.migration.executor import MigrationExecutor
from schemashift.migration.lock import MigrationLock
from schemashift.migration.planner import MigrationPlanner
from schemashift.migration.registry import ExecutionRegistry
from schemashift.schema.introspector import SchemaIntrospector

logger = logging.getLogger(__name__)


class MigrationEngine:
    """The three engine components sharing one database connection.

    Usage:
        async with MigrationEngine.from_config(PostgresConfig.from_env()) as engine:
            plan = await engine.planner.generate_migration_plan(desired)
            result = await engine.executor.execute_migration_plan(plan, dry_run=True)
    """

    def __init__(
        self,
        database: Any,
        introspector: Any,
        planner: MigrationPlanner,
        executor: MigrationExecutor,
    ):
        self.database = database
        self.introspector = introspector
        self.planner = planner
        self.executor = executor

    @classmethod
    def from_config(
        cls,
        postgres_config: PostgresConfig,
        engine_config: Optional[EngineConfig] = None,
    ) -> "MigrationEngine":
        engine_config = engine_config or EngineConfig()
        database = Database(postgres_config)
        introspector = SchemaIntrospector(database, schema=postgres_config.schema)
        executor = MigrationExecutor(
            database,
            introspector,
            registry=ExecutionRegistry(database),
            lock=MigrationLock(database, engine_config.lock_stale_after_seconds),
            backup=BackupWriter(introspector, engine_config.backup_dir),
            config=engine_config,
        )
        return cls(
            database=database,
            introspector=introspector,
            planner=MigrationPlanner(introspector, engine_config),
            executor=executor,
        )

    async def start(self) -> None:
        """Connect and make sure the audit and lock tables exist."""
        await self.database.start()
        await self.executor.registry.ensure_schema()
        await self.executor.lock.ensure_schema()
        logger.info("Migration engine started")

    async def stop(self) -> None:
        await self.database.stop()
        logger.info("Migration engine stopped")

    async def __aenter__(self) -> Self:
        await self.start()
        return self

    async def __aexit__(
        self,
        exc_type: Optional[type[BaseException]],
        exc_val: Optional[BaseException],
        exc_tb: Optional[TracebackType],
    ) -> None:
        await self.stop()
