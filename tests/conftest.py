"""Pytest configuration and shared fixtures."""

import asyncio
from pathlib import Path
from typing import Any, Optional

import pytest

from pg_access.core.health import Health
from schemashift.config import EngineConfig
from schemashift.engine import MigrationEngine
from schemashift.errors import IntrospectionError
from schemashift.migration.executor import MigrationExecutor
from schemashift.migration.generators.postgres import PostgresGenerator
from schemashift.migration.planner import MigrationPlanner
from schemashift.migration.registry import ExecutionRegistry
from schemashift.schema.models import (
    Column,
    DatabaseSize,
    ForeignKey,
    Index,
    SchemaSnapshot,
    Table,
    TableSchema,
)


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


class FakeDatabase:
    """Stands in for ``pg_access.Database``.

    Records every statement. ``failures`` maps a substring of a statement to
    an exception (raised every time) or a list of exceptions (raised once
    each, in order).
    """

    def __init__(self) -> None:
        self.attempted: list[str] = []
        self.statements: list[str] = []
        self.failures: dict[str, Any] = {}
        self.started = False

    async def start(self) -> None:
        self.started = True

    async def stop(self) -> None:
        self.started = False

    async def execute(self, query: str, *args: Any, timeout: Optional[float] = None) -> str:
        # yield like a real round trip so concurrent runs interleave
        await asyncio.sleep(0)
        self.attempted.append(query)
        for marker, error in self.failures.items():
            if marker not in query:
                continue
            if isinstance(error, list):
                if error:
                    raise error.pop(0)
            else:
                raise error
        self.statements.append(query)
        return "OK"

    async def health(self) -> Health:
        return Health(ok=True, details={"postgres": "ok"}, server_version="16.2")


class FakeIntrospector:
    """Serves a fixed snapshot with the ``SchemaIntrospector`` interface."""

    schema = "public"

    def __init__(
        self,
        snapshot: SchemaSnapshot,
        row_counts: Optional[dict[str, int]] = None,
        orphans: Optional[dict[str, Optional[bool]]] = None,
    ):
        self.snapshot = snapshot
        self.row_counts = row_counts or {}
        # foreign key name -> result of the orphan check
        self.orphans = orphans or {}
        self.row_count_calls: list[str] = []

    async def get_full_schema(self) -> SchemaSnapshot:
        return self.snapshot

    async def get_table_schema(self, table_name: str) -> Optional[TableSchema]:
        table = self.snapshot.table_map().get(table_name)
        if table is None:
            return None
        return TableSchema(
            table=table,
            columns=self.snapshot.columns_for(table_name),
            indexes=self.snapshot.indexes_for(table_name),
            foreign_keys=self.snapshot.foreign_keys_for(table_name),
        )

    async def get_table_row_count(self, table_name: str) -> int:
        self.row_count_calls.append(table_name)
        return self.row_counts.get(table_name, 0)

    async def has_orphaned_references(
        self, foreign_key: ForeignKey, target_exists: bool = True
    ) -> Optional[bool]:
        return self.orphans.get(foreign_key.name, False)

    async def get_create_table_statement(self, table_name: str) -> str:
        table_schema = await self.get_table_schema(table_name)
        if table_schema is None:
            raise IntrospectionError(f"Table {table_name} does not exist")
        return PostgresGenerator(schema=self.schema).generate_table_definition(table_schema)

    async def get_database_size(self) -> DatabaseSize:
        return DatabaseSize(total_size=8192, data_size=4096, index_size=4096,
                            table_count=len(self.snapshot.tables))


def build_snapshot(**changes: Any) -> SchemaSnapshot:
    """The users/orders schema, with any field list replaced."""
    fields: dict[str, Any] = {
        "tables": [
            Table(name="orders", engine="heap", row_count_estimate=0),
            Table(name="users", engine="heap", row_count_estimate=120),
        ],
        "columns": [
            Column(table_name="users", name="id", data_type="integer", is_nullable=False,
                   default_value="nextval('users_id_seq'::regclass)", position=1),
            Column(table_name="users", name="email", data_type="character varying",
                   max_length=255, is_nullable=False, position=2),
            Column(table_name="users", name="nickname", data_type="text", position=3),
            Column(table_name="orders", name="id", data_type="integer", is_nullable=False,
                   position=1),
            Column(table_name="orders", name="user_id", data_type="integer", is_nullable=False,
                   position=2),
            Column(table_name="orders", name="total", data_type="numeric",
                   column_type="numeric(10,2)", default_value="0", position=3),
        ],
        "indexes": [
            Index(table_name="users", name="users_pkey", columns=["id"], unique=True,
                  primary=True),
            Index(table_name="users", name="users_email_key", columns=["email"], unique=True),
            Index(table_name="orders", name="orders_pkey", columns=["id"], unique=True,
                  primary=True),
            Index(table_name="orders", name="idx_orders_user_id", columns=["user_id"]),
        ],
        "foreign_keys": [
            ForeignKey(name="orders_user_id_fkey", table_name="orders", column="user_id",
                       referenced_table="users", referenced_column="id", on_delete="CASCADE"),
        ],
    }
    fields.update(changes)
    return SchemaSnapshot(**fields)


@pytest.fixture
def snapshot_factory():
    return build_snapshot


@pytest.fixture
def current_snapshot() -> SchemaSnapshot:
    return build_snapshot()


@pytest.fixture
def fake_db() -> FakeDatabase:
    return FakeDatabase()


@pytest.fixture
def fake_introspector(current_snapshot: SchemaSnapshot) -> FakeIntrospector:
    return FakeIntrospector(current_snapshot, row_counts={"users": 120, "orders": 40})


@pytest.fixture
def engine_config(tmp_path: Path) -> EngineConfig:
    return EngineConfig(backup_dir=tmp_path / "backups", retry_delay_seconds=0.0)


@pytest.fixture
def planner(fake_introspector: FakeIntrospector, engine_config: EngineConfig) -> MigrationPlanner:
    return MigrationPlanner(fake_introspector, engine_config)


@pytest.fixture
def registry() -> ExecutionRegistry:
    return ExecutionRegistry(database=None)  # In-memory


@pytest.fixture
def executor(
    fake_db: FakeDatabase,
    fake_introspector: FakeIntrospector,
    registry: ExecutionRegistry,
    engine_config: EngineConfig,
) -> MigrationExecutor:
    return MigrationExecutor(fake_db, fake_introspector, registry=registry, config=engine_config)


@pytest.fixture
def engine(
    fake_db: FakeDatabase,
    fake_introspector: FakeIntrospector,
    planner: MigrationPlanner,
    executor: MigrationExecutor,
) -> MigrationEngine:
    return MigrationEngine(
        database=fake_db,
        introspector=fake_introspector,
        planner=planner,
        executor=executor,
    )
