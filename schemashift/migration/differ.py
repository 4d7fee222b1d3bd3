"""Schema differ for detecting changes between two snapshots."""

import logging

from schemashift.migration.models import MigrationOperation, RiskLevel
from schemashift.schema.models import Column, SchemaSnapshot

logger = logging.getLogger(__name__)


def column_changes(current: Column, desired: Column) -> list[str]:
    """Names of the attributes that differ between two versions of a column."""
    current_type, current_nullable, current_default = current.definition()
    desired_type, desired_nullable, desired_default = desired.definition()
    changes = []
    if current_type != desired_type:
        changes.append("columnType")
    if current_nullable != desired_nullable:
        changes.append("isNullable")
    if current_default != desired_default:
        changes.append("defaultValue")
    return changes


class SchemaDiffer:
    """Detects differences between a current and a desired snapshot.

    The result is unordered and every operation carries the default (low)
    risk; the planner assigns risks and ordering afterwards. Tables the
    introspector could not read, in either snapshot, are left alone
    entirely.
    """

    def diff(self, current: SchemaSnapshot, desired: SchemaSnapshot) -> list[MigrationOperation]:
        """
        Diff two snapshots.

        Args:
            current: Snapshot of the live database
            desired: Target snapshot

        Returns:
            List of migration operations
        """
        # Unreadable on either side: the other side cannot say what to change
        unknown = set(current.skipped_tables) | set(desired.skipped_tables)
        for name in sorted(unknown & (set(current.table_map()) | set(desired.table_map()))):
            logger.warning("Table %s could not be introspected; leaving it unchanged", name)

        operations = []
        operations.extend(self.diff_tables(current, desired, unknown))
        operations.extend(self.diff_columns(current, desired, unknown))
        operations.extend(self.diff_indexes(current, desired, unknown))
        operations.extend(self.diff_foreign_keys(current, desired, unknown))
        return operations

    def diff_tables(
        self, current: SchemaSnapshot, desired: SchemaSnapshot, unknown: set[str]
    ) -> list[MigrationOperation]:
        operations = []
        current_tables = current.table_map()
        desired_tables = desired.table_map()

        # New tables are created with their full column list
        for name, table in desired_tables.items():
            if name not in current_tables and name not in unknown:
                operations.append(MigrationOperation.create_table(table, desired.columns_for(name)))

        for name, table in current_tables.items():
            if name not in desired_tables and name not in unknown:
                operations.append(MigrationOperation.drop_table(table, risk_level=RiskLevel.LOW))

        return operations

    def diff_columns(
        self, current: SchemaSnapshot, desired: SchemaSnapshot, unknown: set[str]
    ) -> list[MigrationOperation]:
        operations = []
        shared = (set(current.table_map()) & set(desired.table_map())) - unknown
        current_columns = current.column_map()
        desired_columns = desired.column_map()

        for key, column in desired_columns.items():
            if key[0] in shared and key not in current_columns:
                operations.append(MigrationOperation.add_column(column, risk_level=RiskLevel.LOW))

        for key, column in current_columns.items():
            if key[0] in shared and key not in desired_columns:
                operations.append(MigrationOperation.drop_column(column, risk_level=RiskLevel.LOW))

        for key, column in desired_columns.items():
            if key[0] not in shared or key not in current_columns:
                continue
            changes = column_changes(current_columns[key], column)
            if changes:
                operations.append(
                    MigrationOperation.modify_column(
                        current_columns[key], column, changes, risk_level=RiskLevel.LOW
                    )
                )

        return operations

    def diff_indexes(
        self, current: SchemaSnapshot, desired: SchemaSnapshot, unknown: set[str]
    ) -> list[MigrationOperation]:
        operations = []
        desired_tables = set(desired.table_map())
        current_indexes = current.index_map()
        desired_indexes = desired.index_map()

        for key, index in desired_indexes.items():
            if key[0] not in unknown and key not in current_indexes:
                operations.append(MigrationOperation.add_index(index))

        # Indexes of dropped tables go away with the table
        for key, index in current_indexes.items():
            if key[0] in desired_tables and key[0] not in unknown and key not in desired_indexes:
                operations.append(MigrationOperation.drop_index(index, risk_level=RiskLevel.LOW))

        return operations

    def diff_foreign_keys(
        self, current: SchemaSnapshot, desired: SchemaSnapshot, unknown: set[str]
    ) -> list[MigrationOperation]:
        operations = []
        current_fks = current.foreign_key_map()
        desired_fks = desired.foreign_key_map()

        for key, fk in desired_fks.items():
            if key[0] in unknown or fk.referenced_table in unknown:
                continue
            if key not in current_fks:
                operations.append(
                    MigrationOperation.add_foreign_key(fk, risk_level=RiskLevel.LOW)
                )

        # Dropped before their tables so drop order never trips over them
        for key, fk in current_fks.items():
            if key[0] in unknown or fk.referenced_table in unknown:
                continue
            if key not in desired_fks:
                operations.append(
                    MigrationOperation.drop_foreign_key(fk, risk_level=RiskLevel.LOW)
                )

        return operations
