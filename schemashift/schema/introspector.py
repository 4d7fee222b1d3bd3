"""Schema introspector - reads the live catalog into a normalized snapshot."""

import logging
from typing import Any, Optional

import asyncpg

from schemashift.config import ENGINE_TABLES
from schemashift.errors import IntrospectionError, SchemaUnavailable
from schemashift.migration.generators.postgres import PostgresGenerator, quote_ident
from schemashift.schema.models import (
    Column,
    DatabaseSize,
    ForeignKey,
    Index,
    SchemaSnapshot,
    Table,
    TableSchema,
)

logger = logging.getLogger(__name__)

# Connection-level failures mean the catalog is unreachable as a whole.
_UNREACHABLE = (
    OSError,
    asyncpg.exceptions.InterfaceError,
    asyncpg.exceptions.PostgresConnectionError,
    RuntimeError,
)

_ON_DELETE_ACTIONS = {
    "a": "NO ACTION",
    "r": "RESTRICT",
    "c": "CASCADE",
    "n": "SET NULL",
    "d": "SET DEFAULT",
}

TABLES_QUERY = """
SELECT t.table_name AS name,
       COALESCE(am.amname, 'heap') AS engine,
       GREATEST(COALESCE(c.reltuples, 0), 0)::bigint AS row_count_estimate
FROM information_schema.tables t
JOIN pg_namespace n ON n.nspname = t.table_schema
JOIN pg_class c ON c.relname = t.table_name AND c.relnamespace = n.oid
LEFT JOIN pg_am am ON am.oid = c.relam
WHERE t.table_schema = $1 AND t.table_type = 'BASE TABLE'
ORDER BY t.table_name
"""

TABLE_QUERY = """
SELECT t.table_name AS name,
       COALESCE(am.amname, 'heap') AS engine,
       GREATEST(COALESCE(c.reltuples, 0), 0)::bigint AS row_count_estimate
FROM information_schema.tables t
JOIN pg_namespace n ON n.nspname = t.table_schema
JOIN pg_class c ON c.relname = t.table_name AND c.relnamespace = n.oid
LEFT JOIN pg_am am ON am.oid = c.relam
WHERE t.table_schema = $1 AND t.table_type = 'BASE TABLE' AND t.table_name = $2
"""

COLUMNS_QUERY = """
SELECT c.column_name AS name,
       c.ordinal_position AS position,
       c.column_default AS default_value,
       c.is_nullable,
       c.identity_generation AS identity,
       c.data_type,
       c.character_maximum_length AS max_length,
       format_type(a.atttypid, a.atttypmod) AS column_type
FROM information_schema.columns c
JOIN pg_namespace n ON n.nspname = c.table_schema
JOIN pg_class t ON t.relname = c.table_name AND t.relnamespace = n.oid
JOIN pg_attribute a ON a.attrelid = t.oid AND a.attname = c.column_name
WHERE c.table_schema = $1 AND c.table_name = $2
ORDER BY c.ordinal_position
"""

INDEXES_QUERY = """
SELECT i.relname AS name,
       ix.indisunique AS is_unique,
       ix.indisprimary AS is_primary,
       array_agg(a.attname ORDER BY k.ord) AS columns
FROM pg_index ix
JOIN pg_class t ON t.oid = ix.indrelid
JOIN pg_class i ON i.oid = ix.indexrelid
JOIN pg_namespace n ON n.oid = t.relnamespace
CROSS JOIN LATERAL unnest(ix.indkey) WITH ORDINALITY AS k(attnum, ord)
JOIN pg_attribute a ON a.attrelid = t.oid AND a.attnum = k.attnum
WHERE n.nspname = $1 AND t.relname = $2
GROUP BY i.relname, ix.indisunique, ix.indisprimary
ORDER BY i.relname
"""

FOREIGN_KEYS_QUERY = """
SELECT con.conname AS name,
       a.attname AS column_name,
       rt.relname AS referenced_table,
       ra.attname AS referenced_column,
       con.confdeltype::text AS on_delete
FROM pg_constraint con
JOIN pg_class t ON t.oid = con.conrelid
JOIN pg_namespace n ON n.oid = t.relnamespace
JOIN pg_class rt ON rt.oid = con.confrelid
JOIN pg_attribute a ON a.attrelid = con.conrelid AND a.attnum = con.conkey[1]
JOIN pg_attribute ra ON ra.attrelid = con.confrelid AND ra.attnum = con.confkey[1]
WHERE con.contype = 'f' AND n.nspname = $1 AND t.relname = $2
ORDER BY con.conname
"""

DATABASE_SIZE_QUERY = """
SELECT COALESCE(SUM(pg_total_relation_size(c.oid)), 0)::bigint AS total_size,
       COALESCE(SUM(pg_relation_size(c.oid)), 0)::bigint AS data_size,
       COALESCE(SUM(pg_indexes_size(c.oid)), 0)::bigint AS index_size,
       COUNT(*) AS table_count
FROM pg_class c
JOIN pg_namespace n ON n.oid = c.relnamespace
WHERE n.nspname = $1 AND c.relkind IN ('r', 'p')
"""

TABLE_EXISTS_QUERY = """
SELECT EXISTS (
  SELECT 1 FROM information_schema.tables
  WHERE table_schema = $1 AND table_name = $2
)
"""

COLUMN_EXISTS_QUERY = """
SELECT EXISTS (
  SELECT 1 FROM information_schema.columns
  WHERE table_schema = $1 AND table_name = $2 AND column_name = $3
)
"""

INDEX_EXISTS_QUERY = """
SELECT EXISTS (
  SELECT 1 FROM pg_indexes
  WHERE schemaname = $1 AND tablename = $2 AND indexname = $3
)
"""


class SchemaIntrospector:
    """Reads tables, columns, indexes and foreign keys of one postgres schema.

    The database object is passed in explicitly; it only needs asyncpg's
    ``fetch``/``fetchrow``/``fetchval`` coroutines plus ``consistent_read()``
    for full snapshots. Introspection only reads the catalog and is safe to
    run concurrently.
    """

    def __init__(
        self,
        database: Any,
        schema: str = "public",
        excluded_tables: frozenset[str] = ENGINE_TABLES,
    ):
        self._db = database
        self.schema = schema
        self.excluded_tables = excluded_tables
        self.generator = PostgresGenerator(schema=schema)

    def _table_ref(self, table_name: str) -> str:
        return f"{quote_ident(self.schema)}.{quote_ident(table_name)}"

    async def get_full_schema(self) -> SchemaSnapshot:
        """
        Capture every table of the schema in one consistent read.

        A table whose metadata cannot be read is left out and a warning is
        recorded on the snapshot instead of failing the whole capture.

        Raises:
            SchemaUnavailable: If the catalog cannot be reached at all
        """
        tables: list[Table] = []
        columns: list[Column] = []
        indexes: list[Index] = []
        foreign_keys: list[ForeignKey] = []
        warnings: list[str] = []
        skipped: list[str] = []

        try:
            async with self._db.consistent_read() as conn:
                rows = await conn.fetch(TABLES_QUERY, self.schema)
                for row in rows:
                    table = _table_from_row(row)
                    if table.name in self.excluded_tables:
                        continue
                    try:
                        # Savepoint per table so one failure doesn't abort the read.
                        async with conn.transaction():
                            detail = await self._read_table(conn, table)
                    except asyncpg.exceptions.PostgresConnectionError:
                        raise
                    except asyncpg.PostgresError as e:
                        message = f"Skipped table {table.name}: {e}"
                        logger.warning(message)
                        warnings.append(message)
                        skipped.append(table.name)
                        continue
                    tables.append(table)
                    columns.extend(detail.columns)
                    indexes.extend(detail.indexes)
                    foreign_keys.extend(detail.foreign_keys)
        except _UNREACHABLE as e:
            raise SchemaUnavailable(f"Schema catalog unreachable: {e}") from e
        except asyncpg.PostgresError as e:
            raise SchemaUnavailable(f"Schema catalog could not be read: {e}") from e

        logger.info(
            "Captured schema %s: %d tables, %d columns, %d indexes, %d foreign keys",
            self.schema,
            len(tables),
            len(columns),
            len(indexes),
            len(foreign_keys),
        )
        return SchemaSnapshot(
            tables=tables,
            columns=columns,
            indexes=indexes,
            foreign_keys=foreign_keys,
            warnings=warnings,
            skipped_tables=skipped,
        )

    async def _read_table(self, conn: Any, table: Table) -> TableSchema:
        column_rows = await conn.fetch(COLUMNS_QUERY, self.schema, table.name)
        index_rows = await conn.fetch(INDEXES_QUERY, self.schema, table.name)
        fk_rows = await conn.fetch(FOREIGN_KEYS_QUERY, self.schema, table.name)
        return TableSchema(
            table=table,
            columns=[_column_from_row(table.name, r) for r in column_rows],
            indexes=[_index_from_row(table.name, r) for r in index_rows],
            foreign_keys=[_foreign_key_from_row(table.name, r) for r in fk_rows],
        )

    async def get_table_schema(self, table_name: str) -> Optional[TableSchema]:
        """Structural detail for one table, or None if it does not exist."""
        try:
            row = await self._db.fetchrow(TABLE_QUERY, self.schema, table_name)
            if row is None:
                return None
            return await self._read_table(self._db, _table_from_row(row))
        except _UNREACHABLE as e:
            raise SchemaUnavailable(f"Schema catalog unreachable: {e}") from e
        except asyncpg.PostgresError as e:
            raise IntrospectionError(f"Could not read table {table_name}: {e}") from e

    async def get_database_size(self) -> DatabaseSize:
        """Aggregate storage statistics for the schema."""
        try:
            row = await self._db.fetchrow(DATABASE_SIZE_QUERY, self.schema)
        except (*_UNREACHABLE, asyncpg.PostgresError) as e:
            raise SchemaUnavailable(f"Schema catalog unreachable: {e}") from e
        return DatabaseSize(
            total_size=row["total_size"] or 0,
            data_size=row["data_size"] or 0,
            index_size=row["index_size"] or 0,
            table_count=row["table_count"] or 0,
        )

    async def get_table_row_count(self, table_name: str) -> int:
        """Exact row count; 0 with a warning if it cannot be read."""
        try:
            count = await self._db.fetchval(f"SELECT count(*) FROM {self._table_ref(table_name)}")
        except (*_UNREACHABLE, asyncpg.PostgresError) as e:
            logger.warning("Could not count rows of %s: %s", table_name, e)
            return 0
        return int(count or 0)

    async def get_create_table_statement(self, table_name: str) -> str:
        """
        Reconstruct the declarative definition of a table.

        Raises:
            IntrospectionError: If the table does not exist
        """
        table_schema = await self.get_table_schema(table_name)
        if table_schema is None:
            raise IntrospectionError(f"Table {table_name} does not exist")
        return self.generator.generate_table_definition(table_schema)

    async def table_exists(self, table_name: str) -> bool:
        return bool(await self._db.fetchval(TABLE_EXISTS_QUERY, self.schema, table_name))

    async def column_exists(self, table_name: str, column_name: str) -> bool:
        return bool(
            await self._db.fetchval(COLUMN_EXISTS_QUERY, self.schema, table_name, column_name)
        )

    async def index_exists(self, table_name: str, index_name: str) -> bool:
        return bool(
            await self._db.fetchval(INDEX_EXISTS_QUERY, self.schema, table_name, index_name)
        )

    async def has_orphaned_references(
        self, foreign_key: ForeignKey, target_exists: bool = True
    ) -> Optional[bool]:
        """
        Whether the referencing column holds values with no matching row.

        When the referenced column does not exist yet every non-null value is
        an orphan. Returns None if the check itself could not run.
        """
        child = self._table_ref(foreign_key.table_name)
        column = quote_ident(foreign_key.column)
        if target_exists:
            parent = self._table_ref(foreign_key.referenced_table)
            query = (
                f"SELECT EXISTS (SELECT 1 FROM {child} AS child "
                f"WHERE child.{column} IS NOT NULL AND NOT EXISTS ("
                f"SELECT 1 FROM {parent} AS parent "
                f"WHERE parent.{quote_ident(foreign_key.referenced_column)} = child.{column}))"
            )
        else:
            query = f"SELECT EXISTS (SELECT 1 FROM {child} WHERE {column} IS NOT NULL)"
        try:
            return bool(await self._db.fetchval(query))
        except (*_UNREACHABLE, asyncpg.PostgresError) as e:
            logger.warning("Orphan check for %s.%s failed: %s", foreign_key.table_name, foreign_key.name, e)
            return None


def _table_from_row(row: Any) -> Table:
    return Table(
        name=row["name"],
        engine=row["engine"],
        row_count_estimate=int(row["row_count_estimate"] or 0),
    )


def _column_from_row(table_name: str, row: Any) -> Column:
    return Column(
        table_name=table_name,
        name=row["name"],
        data_type=row["data_type"],
        column_type=row["column_type"],
        max_length=row["max_length"],
        is_nullable=row["is_nullable"],
        default_value=row["default_value"],
        identity=row["identity"],
        position=row["position"],
    )


def _index_from_row(table_name: str, row: Any) -> Index:
    return Index(
        table_name=table_name,
        name=row["name"],
        columns=list(row["columns"]),
        unique=row["is_unique"],
        primary=row["is_primary"],
    )


def _foreign_key_from_row(table_name: str, row: Any) -> ForeignKey:
    return ForeignKey(
        name=row["name"],
        table_name=table_name,
        column=row["column_name"],
        referenced_table=row["referenced_table"],
        referenced_column=row["referenced_column"],
        on_delete=_ON_DELETE_ACTIONS.get(row["on_delete"], "NO ACTION"),
    )
