"""Postgres SQL generator for migration operations.

Statement text is a pure function of the operation: the executor uses the
same generator for dry runs and for real runs.
"""

from typing import Callable, Optional

from schemashift.migration.models import MigrationOperation, MigrationOperationType
from schemashift.schema.models import Column, ForeignKey, Index, TableSchema


def quote_ident(name: str) -> str:
    """Quote an identifier for postgres."""
    return '"' + name.replace('"', '""') + '"'


class PostgresGenerator:
    """Generate Postgres SQL from migration operations."""

    def __init__(self, schema: Optional[str] = None):
        self.schema = schema

    def _table_ref(self, table: str) -> str:
        if self.schema:
            return f"{quote_ident(self.schema)}.{quote_ident(table)}"
        return quote_ident(table)

    def _column_type(self, column: Column) -> str:
        return column.column_type or column.data_type

    def column_definition(self, column: Column) -> str:
        """Render ``"name" TYPE [NOT NULL] [DEFAULT ...]``.

        Serial columns are rendered with their pseudo-type so the sequence
        is created along with the column; identity columns get their
        ``GENERATED ... AS IDENTITY`` clause instead of a default.
        """
        serial_type = column.serial_type
        definition = f"{quote_ident(column.name)} {serial_type or self._column_type(column)}"
        if column.identity is not None:
            definition += f" GENERATED {column.identity} AS IDENTITY"
        if not column.is_nullable:
            definition += " NOT NULL"
        if column.default_value is not None and serial_type is None and column.identity is None:
            definition += f" DEFAULT {column.default_value}"
        return definition

    def _sequence_ref(self, sequence: str) -> str:
        return self._table_ref(sequence)

    def _default_statements(self, table: str, current: Column, desired: Column) -> list[str]:
        column = quote_ident(desired.name)
        statements = []
        if current.identity is not None and desired.identity != current.identity:
            statements.append(f"ALTER TABLE {table} ALTER COLUMN {column} DROP IDENTITY IF EXISTS;")

        if desired.identity is not None:
            if current.identity is None:
                if current.default_value is not None:
                    statements.append(f"ALTER TABLE {table} ALTER COLUMN {column} DROP DEFAULT;")
                statements.append(
                    f"ALTER TABLE {table} ALTER COLUMN {column} "
                    f"ADD GENERATED {desired.identity} AS IDENTITY;"
                )
            else:
                statements.append(
                    f"ALTER TABLE {table} ALTER COLUMN {column} SET GENERATED {desired.identity};"
                )
        elif desired.owned_sequence is not None:
            sequence = self._sequence_ref(desired.owned_sequence)
            literal = sequence.replace("'", "''")
            statements.append(f"CREATE SEQUENCE IF NOT EXISTS {sequence};")
            statements.append(
                f"ALTER TABLE {table} ALTER COLUMN {column} SET DEFAULT nextval('{literal}');"
            )
            statements.append(f"ALTER SEQUENCE {sequence} OWNED BY {table}.{column};")
        elif desired.default_value is None:
            if current.identity is None:
                statements.append(f"ALTER TABLE {table} ALTER COLUMN {column} DROP DEFAULT;")
        else:
            statements.append(
                f"ALTER TABLE {table} ALTER COLUMN {column} SET DEFAULT {desired.default_value};"
            )
        return statements

    def generate_create_table_sql(self, operation: MigrationOperation) -> str:
        """Generate CREATE TABLE SQL."""
        columns = operation.table_columns()
        col_defs = [f"  {self.column_definition(c)}" for c in columns]
        if not col_defs:
            return f"CREATE TABLE {self._table_ref(operation.table)} ();"
        columns_sql = ",\n".join(col_defs)
        return f"CREATE TABLE {self._table_ref(operation.table)} (\n{columns_sql}\n);"

    def generate_drop_table_sql(self, operation: MigrationOperation) -> str:
        return f"DROP TABLE {self._table_ref(operation.table)};"

    def generate_add_column_sql(self, operation: MigrationOperation) -> str:
        """Generate ADD COLUMN SQL."""
        column = operation.column_definition()
        return (
            f"ALTER TABLE {self._table_ref(operation.table)} "
            f"ADD COLUMN {self.column_definition(column)};"
        )

    def generate_drop_column_sql(self, operation: MigrationOperation) -> str:
        """Generate DROP COLUMN SQL."""
        column = operation.details["column"]
        return f"ALTER TABLE {self._table_ref(operation.table)} DROP COLUMN {quote_ident(column)};"

    def generate_modify_column_sql(self, operation: MigrationOperation) -> str:
        """Generate ALTER COLUMN SQL.

        Emits one statement per changed attribute. Adding NOT NULL to a
        column that has a default backfills existing NULLs with that default
        first.
        """
        table = self._table_ref(operation.table)
        desired = operation.column_definition("to")
        column = quote_ident(desired.name)
        changes = operation.details.get("changes", [])

        statements = []

        if "columnType" in changes:
            new_type = self._column_type(desired)
            statements.append(
                f"ALTER TABLE {table} ALTER COLUMN {column} TYPE {new_type} USING {column}::{new_type};"
            )

        if "defaultValue" in changes:
            current = operation.column_definition("from")
            statements.extend(self._default_statements(table, current, desired))

        if "isNullable" in changes:
            if desired.is_nullable:
                statements.append(f"ALTER TABLE {table} ALTER COLUMN {column} DROP NOT NULL;")
            else:
                if desired.default_value is not None and desired.identity is None:
                    statements.append(
                        f"UPDATE {table} SET {column} = {desired.default_value} WHERE {column} IS NULL;"
                    )
                statements.append(f"ALTER TABLE {table} ALTER COLUMN {column} SET NOT NULL;")

        return "\n".join(statements)

    def _index_sql(self, index: Index) -> str:
        columns_str = ", ".join(quote_ident(c) for c in index.columns)
        if index.primary:
            return (
                f"ALTER TABLE {self._table_ref(index.table_name)} "
                f"ADD CONSTRAINT {quote_ident(index.name)} PRIMARY KEY ({columns_str});"
            )
        unique_clause = "UNIQUE " if index.unique else ""
        return (
            f"CREATE {unique_clause}INDEX {quote_ident(index.name)} "
            f"ON {self._table_ref(index.table_name)} ({columns_str});"
        )

    def generate_add_index_sql(self, operation: MigrationOperation) -> str:
        """Generate CREATE INDEX SQL (or ADD PRIMARY KEY)."""
        return self._index_sql(operation.index_definition())

    def generate_drop_index_sql(self, operation: MigrationOperation) -> str:
        """Generate DROP INDEX SQL (or DROP CONSTRAINT for a primary key)."""
        name = operation.details["index"]
        if operation.details.get("primary"):
            return (
                f"ALTER TABLE {self._table_ref(operation.table)} "
                f"DROP CONSTRAINT {quote_ident(name)};"
            )
        if self.schema:
            return f"DROP INDEX {quote_ident(self.schema)}.{quote_ident(name)};"
        return f"DROP INDEX {quote_ident(name)};"

    def _foreign_key_sql(self, foreign_key: ForeignKey) -> str:
        sql = (
            f"ALTER TABLE {self._table_ref(foreign_key.table_name)} "
            f"ADD CONSTRAINT {quote_ident(foreign_key.name)} "
            f"FOREIGN KEY ({quote_ident(foreign_key.column)}) "
            f"REFERENCES {self._table_ref(foreign_key.referenced_table)} "
            f"({quote_ident(foreign_key.referenced_column)})"
        )
        if foreign_key.on_delete and foreign_key.on_delete != "NO ACTION":
            sql += f" ON DELETE {foreign_key.on_delete}"
        return sql + ";"

    def generate_add_foreign_key_sql(self, operation: MigrationOperation) -> str:
        return self._foreign_key_sql(operation.foreign_key_definition())

    def generate_drop_foreign_key_sql(self, operation: MigrationOperation) -> str:
        name = operation.details["foreignKey"]
        return (
            f"ALTER TABLE {self._table_ref(operation.table)} "
            f"DROP CONSTRAINT {quote_ident(name)};"
        )

    def generate_operation_sql(self, operation: MigrationOperation) -> str:
        """
        Generate SQL for a single operation.

        Args:
            operation: Migration operation

        Returns:
            SQL statement(s); multiple statements are newline separated
        """
        handlers: dict[MigrationOperationType, Callable[[MigrationOperation], str]] = {
            MigrationOperationType.CREATE_TABLE: self.generate_create_table_sql,
            MigrationOperationType.DROP_TABLE: self.generate_drop_table_sql,
            MigrationOperationType.ADD_COLUMN: self.generate_add_column_sql,
            MigrationOperationType.DROP_COLUMN: self.generate_drop_column_sql,
            MigrationOperationType.MODIFY_COLUMN: self.generate_modify_column_sql,
            MigrationOperationType.ADD_INDEX: self.generate_add_index_sql,
            MigrationOperationType.DROP_INDEX: self.generate_drop_index_sql,
            MigrationOperationType.ADD_FOREIGN_KEY: self.generate_add_foreign_key_sql,
            MigrationOperationType.DROP_FOREIGN_KEY: self.generate_drop_foreign_key_sql,
        }
        handler = handlers.get(operation.type)
        if handler is None:
            raise ValueError(f"Unsupported operation type: {operation.type}")
        return handler(operation)

    def generate_migration_sql(self, operations: list[MigrationOperation]) -> str:
        """
        Generate complete migration SQL from operations.

        Args:
            operations: List of migration operations

        Returns:
            Complete SQL migration script
        """
        return "\n\n".join(self.generate_operation_sql(op) for op in operations)

    def generate_rollback_sql(self, operation: MigrationOperation) -> str:
        """SQL undoing one operation, built from the details it carries.

        Dropped data cannot be recreated: a dropped column comes back empty
        and a dropped table only as a note pointing at the backup.
        """
        table = self._table_ref(operation.table)
        if operation.type == MigrationOperationType.CREATE_TABLE:
            return f"DROP TABLE {table};"
        if operation.type == MigrationOperationType.DROP_TABLE:
            return (
                f"-- drop_table {operation.table} cannot be reversed from the plan; "
                "restore it from the structural backup"
            )
        if operation.type == MigrationOperationType.ADD_COLUMN:
            column = operation.details["column"]
            return f"ALTER TABLE {table} DROP COLUMN {quote_ident(column)};"
        if operation.type == MigrationOperationType.DROP_COLUMN:
            column = operation.column_definition()
            return (
                f"-- data of {operation.table}.{column.name} is not restored\n"
                f"ALTER TABLE {table} ADD COLUMN {self.column_definition(column)};"
            )
        if operation.type == MigrationOperationType.MODIFY_COLUMN:
            restore = MigrationOperation.modify_column(
                operation.column_definition("to"),
                operation.column_definition("from"),
                operation.details.get("changes", []),
                operation.risk_level,
            )
            return self.generate_modify_column_sql(restore)
        if operation.type == MigrationOperationType.ADD_INDEX:
            return self.generate_drop_index_sql(operation)
        if operation.type == MigrationOperationType.DROP_INDEX:
            return self._index_sql(operation.index_definition())
        if operation.type == MigrationOperationType.ADD_FOREIGN_KEY:
            return self.generate_drop_foreign_key_sql(operation)
        if operation.type == MigrationOperationType.DROP_FOREIGN_KEY:
            return self._foreign_key_sql(operation.foreign_key_definition())
        raise ValueError(f"Unsupported operation type: {operation.type}")

    def generate_rollback_statements(self, operations: list[MigrationOperation]) -> list[str]:
        """Rollback SQL for a plan, last operation first."""
        statements = []
        for operation in reversed(operations):
            sql = self.generate_rollback_sql(operation)
            if sql:
                statements.append(sql)
        return statements

    def generate_table_definition(self, table_schema: TableSchema) -> str:
        """Reconstruct the full definition of an existing table.

        Used for structural backups and documentation.
        """
        create = MigrationOperation.create_table(table_schema.table, table_schema.columns)
        statements = [self.generate_create_table_sql(create)]
        statements.extend(self._index_sql(index) for index in table_schema.indexes)
        statements.extend(self._foreign_key_sql(fk) for fk in table_schema.foreign_keys)
        return "\n".join(statements)
