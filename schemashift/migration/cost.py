"""Execution time estimates for migration plans."""

from typing import Optional

from schemashift.config import CostModel
from schemashift.migration.models import MigrationOperation, MigrationOperationType
from schemashift.migration.risk import DataProfile


class CostEstimator:
    """Estimate how long a list of operations takes, in milliseconds."""

    def __init__(self, model: Optional[CostModel] = None):
        self.model = model or CostModel()

    def operation_cost(self, operation: MigrationOperation, profile: DataProfile) -> float:
        model = self.model
        base = model.base_ms.get(operation.type, 0.0)
        rows = profile.rows(operation.table)

        if operation.type == MigrationOperationType.ADD_INDEX:
            return base + rows * model.index_build_ms_per_row

        if operation.type == MigrationOperationType.ADD_FOREIGN_KEY:
            # validating the constraint scans the referencing table
            return base + rows * model.scan_ms_per_row

        if operation.type == MigrationOperationType.ADD_COLUMN:
            column = operation.column_definition()
            if not column.is_nullable:
                return base + rows * model.scan_ms_per_row
            return base

        if operation.type == MigrationOperationType.MODIFY_COLUMN:
            changes = operation.details.get("changes", [])
            cost = base
            if "columnType" in changes:
                cost += rows * model.rewrite_ms_per_row
            if "isNullable" in changes and not operation.column_definition("to").is_nullable:
                cost += rows * model.scan_ms_per_row
            return cost

        return base

    def estimate(self, operations: list[MigrationOperation], profile: DataProfile) -> int:
        """Sum of per-operation costs, rounded to whole milliseconds."""
        return int(round(sum(self.operation_cost(op, profile) for op in operations)))
