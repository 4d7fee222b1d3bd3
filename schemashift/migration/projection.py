"""Apply migration operations to a snapshot without touching a database.

Used to validate a plan against the live schema operation by operation,
each check seeing the schema as the earlier operations left it.
"""

from typing import Optional

from schemashift.migration.models import MigrationOperation, MigrationOperationType
from schemashift.schema.models import SchemaSnapshot, Table


def check_operation(snapshot: SchemaSnapshot, operation: MigrationOperation) -> Optional[str]:
    """Why ``operation`` cannot be applied to ``snapshot``, or None if it can."""
    tables = snapshot.table_map()
    columns = snapshot.column_map()
    table = operation.table
    op_type = operation.type

    if op_type == MigrationOperationType.CREATE_TABLE:
        if table in tables:
            return f"table {table} already exists"
        return None

    if table not in tables:
        return f"table {table} does not exist"

    if op_type == MigrationOperationType.DROP_TABLE:
        return None

    if op_type == MigrationOperationType.ADD_COLUMN:
        if (table, operation.detail_key) in columns:
            return f"column {table}.{operation.detail_key} already exists"
        return None

    if op_type == MigrationOperationType.DROP_COLUMN:
        if (table, operation.detail_key) not in columns:
            return f"column {table}.{operation.detail_key} does not exist"
        return None

    if op_type == MigrationOperationType.MODIFY_COLUMN:
        live = columns.get((table, operation.detail_key))
        if live is None:
            return f"column {table}.{operation.detail_key} does not exist"
        if live.definition() != operation.column_definition("from").definition():
            return f"column {table}.{operation.detail_key} changed since the plan was made"
        return None

    if op_type == MigrationOperationType.ADD_INDEX:
        index = operation.index_definition()
        if index.key in snapshot.index_map():
            return f"index {index.name} already exists on {table}"
        missing = [c for c in index.columns if (table, c) not in columns]
        if missing:
            return f"index {index.name} references missing columns {', '.join(missing)}"
        return None

    if op_type == MigrationOperationType.DROP_INDEX:
        if (table, operation.detail_key) not in snapshot.index_map():
            return f"index {operation.detail_key} does not exist on {table}"
        return None

    if op_type == MigrationOperationType.ADD_FOREIGN_KEY:
        fk = operation.foreign_key_definition()
        if fk.key in snapshot.foreign_key_map():
            return f"foreign key {fk.name} already exists on {table}"
        if (table, fk.column) not in columns:
            return f"column {table}.{fk.column} does not exist"
        if (fk.referenced_table, fk.referenced_column) not in columns:
            return f"referenced column {fk.referenced_table}.{fk.referenced_column} does not exist"
        return None

    if op_type == MigrationOperationType.DROP_FOREIGN_KEY:
        if (table, operation.detail_key) not in snapshot.foreign_key_map():
            return f"foreign key {operation.detail_key} does not exist on {table}"
        return None

    return f"unsupported operation type {op_type.value}"


def apply_operation(snapshot: SchemaSnapshot, operation: MigrationOperation) -> SchemaSnapshot:
    """The snapshot as it would look after ``operation`` ran.

    Mirrors what postgres does implicitly: dropping a table drops its
    indexes and keys, dropping a column drops the indexes and keys on it.
    """
    tables = list(snapshot.tables)
    columns = list(snapshot.columns)
    indexes = list(snapshot.indexes)
    foreign_keys = list(snapshot.foreign_keys)
    table = operation.table
    name = operation.detail_key
    op_type = operation.type

    if op_type == MigrationOperationType.CREATE_TABLE:
        tables.append(Table(name=table, engine=operation.details.get("engine")))
        columns.extend(operation.table_columns())

    elif op_type == MigrationOperationType.DROP_TABLE:
        tables = [t for t in tables if t.name != table]
        columns = [c for c in columns if c.table_name != table]
        indexes = [i for i in indexes if i.table_name != table]
        foreign_keys = [
            fk for fk in foreign_keys if fk.table_name != table and fk.referenced_table != table
        ]

    elif op_type == MigrationOperationType.ADD_COLUMN:
        columns.append(operation.column_definition())

    elif op_type == MigrationOperationType.DROP_COLUMN:
        columns = [c for c in columns if c.key != (table, name)]
        indexes = [i for i in indexes if not (i.table_name == table and name in i.columns)]
        foreign_keys = [
            fk
            for fk in foreign_keys
            if not (fk.table_name == table and fk.column == name)
            and not (fk.referenced_table == table and fk.referenced_column == name)
        ]

    elif op_type == MigrationOperationType.MODIFY_COLUMN:
        desired = operation.column_definition("to")
        columns = [
            c.model_copy(
                update={
                    "data_type": desired.data_type,
                    "column_type": desired.column_type,
                    "max_length": desired.max_length,
                    "is_nullable": desired.is_nullable,
                    "default_value": desired.default_value,
                    "identity": desired.identity,
                }
            )
            if c.key == (table, name)
            else c
            for c in columns
        ]

    elif op_type == MigrationOperationType.ADD_INDEX:
        indexes.append(operation.index_definition())

    elif op_type == MigrationOperationType.DROP_INDEX:
        indexes = [i for i in indexes if i.key != (table, name)]

    elif op_type == MigrationOperationType.ADD_FOREIGN_KEY:
        foreign_keys.append(operation.foreign_key_definition())

    elif op_type == MigrationOperationType.DROP_FOREIGN_KEY:
        foreign_keys = [fk for fk in foreign_keys if fk.key != (table, name)]

    return SchemaSnapshot(
        tables=tables,
        columns=columns,
        indexes=indexes,
        foreign_keys=foreign_keys,
        warnings=list(snapshot.warnings),
        skipped_tables=list(snapshot.skipped_tables),
    )


def apply_plan(snapshot: SchemaSnapshot, operations: list[MigrationOperation]) -> SchemaSnapshot:
    for operation in operations:
        snapshot = apply_operation(snapshot, operation)
    return snapshot
