"""Pydantic models for migration plans and executions."""

from datetime import datetime
from enum import Enum
from typing import Any, Optional
from pydantic import BaseModel, Field, computed_field

from schemashift.schema.models import Column, ForeignKey, Index, Table


class MigrationOperationType(str, Enum):
    """Types of migration operations."""

    CREATE_TABLE = "create_table"
    ADD_COLUMN = "add_column"
    MODIFY_COLUMN = "modify_column"
    DROP_COLUMN = "drop_column"
    ADD_INDEX = "add_index"
    DROP_INDEX = "drop_index"
    ADD_FOREIGN_KEY = "add_foreign_key"
    DROP_FOREIGN_KEY = "drop_foreign_key"
    DROP_TABLE = "drop_table"


class RiskLevel(str, Enum):
    """How dangerous an operation is to auto-apply."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    BLOCKING = "blocking"

    @property
    def rank(self) -> int:
        return _RISK_RANK[self]

    def at_least(self, other: "RiskLevel") -> bool:
        return self.rank >= other.rank


_RISK_RANK = {
    RiskLevel.LOW: 0,
    RiskLevel.MEDIUM: 1,
    RiskLevel.HIGH: 2,
    RiskLevel.BLOCKING: 3,
}


def column_document(column: Column) -> dict[str, Any]:
    return column.model_dump(by_alias=True, mode="json")


class MigrationOperation(BaseModel):
    """A single migration operation.

    Build instances through the per-type constructors below so ``details``
    always has the shape the statement generator and the plan validator
    expect.
    """

    type: MigrationOperationType
    table: str
    details: dict[str, Any] = Field(default_factory=dict)
    risk_level: RiskLevel = Field(default=RiskLevel.LOW, alias="riskLevel")

    class Config:
        populate_by_name = True
        frozen = True

    @property
    def detail_key(self) -> str:
        """Name of the column, index or constraint the operation targets."""
        for key in ("column", "index", "foreignKey"):
            if key in self.details:
                return str(self.details[key])
        return ""

    @property
    def sort_key(self) -> tuple[str, str, str]:
        return (self.table, self.type.value, self.detail_key)

    def with_risk(self, risk_level: RiskLevel) -> "MigrationOperation":
        return self.model_copy(update={"risk_level": risk_level})

    @classmethod
    def create_table(
        cls, table: Table, columns: list[Column], risk_level: RiskLevel = RiskLevel.LOW
    ) -> "MigrationOperation":
        return cls(
            type=MigrationOperationType.CREATE_TABLE,
            table=table.name,
            details={
                "engine": table.engine,
                "columns": [column_document(c) for c in columns],
            },
            risk_level=risk_level,
        )

    @classmethod
    def drop_table(cls, table: Table, risk_level: RiskLevel) -> "MigrationOperation":
        return cls(
            type=MigrationOperationType.DROP_TABLE,
            table=table.name,
            details={"rowCountEstimate": table.row_count_estimate},
            risk_level=risk_level,
        )

    @classmethod
    def add_column(cls, column: Column, risk_level: RiskLevel) -> "MigrationOperation":
        return cls(
            type=MigrationOperationType.ADD_COLUMN,
            table=column.table_name,
            details={"column": column.name, "definition": column_document(column)},
            risk_level=risk_level,
        )

    @classmethod
    def drop_column(cls, column: Column, risk_level: RiskLevel) -> "MigrationOperation":
        return cls(
            type=MigrationOperationType.DROP_COLUMN,
            table=column.table_name,
            details={"column": column.name, "definition": column_document(column)},
            risk_level=risk_level,
        )

    @classmethod
    def modify_column(
        cls,
        current: Column,
        desired: Column,
        changes: list[str],
        risk_level: RiskLevel,
    ) -> "MigrationOperation":
        return cls(
            type=MigrationOperationType.MODIFY_COLUMN,
            table=desired.table_name,
            details={
                "column": desired.name,
                "changes": changes,
                "from": column_document(current),
                "to": column_document(desired),
            },
            risk_level=risk_level,
        )

    @classmethod
    def add_index(cls, index: Index, risk_level: RiskLevel = RiskLevel.LOW) -> "MigrationOperation":
        return cls(
            type=MigrationOperationType.ADD_INDEX,
            table=index.table_name,
            details={
                "index": index.name,
                "columns": list(index.columns),
                "unique": index.unique,
                "primary": index.primary,
            },
            risk_level=risk_level,
        )

    @classmethod
    def drop_index(cls, index: Index, risk_level: RiskLevel) -> "MigrationOperation":
        return cls(
            type=MigrationOperationType.DROP_INDEX,
            table=index.table_name,
            details={
                "index": index.name,
                "columns": list(index.columns),
                "unique": index.unique,
                "primary": index.primary,
            },
            risk_level=risk_level,
        )

    @classmethod
    def add_foreign_key(
        cls,
        foreign_key: ForeignKey,
        risk_level: RiskLevel,
        orphan_check: Optional[str] = None,
    ) -> "MigrationOperation":
        details = _foreign_key_details(foreign_key)
        if orphan_check is not None:
            details["orphanCheck"] = orphan_check
        return cls(
            type=MigrationOperationType.ADD_FOREIGN_KEY,
            table=foreign_key.table_name,
            details=details,
            risk_level=risk_level,
        )

    @classmethod
    def drop_foreign_key(cls, foreign_key: ForeignKey, risk_level: RiskLevel) -> "MigrationOperation":
        return cls(
            type=MigrationOperationType.DROP_FOREIGN_KEY,
            table=foreign_key.table_name,
            details=_foreign_key_details(foreign_key),
            risk_level=risk_level,
        )

    def column_definition(self, key: str = "definition") -> Column:
        return Column.model_validate(self.details[key])

    def table_columns(self) -> list[Column]:
        return [Column.model_validate(c) for c in self.details.get("columns", [])]

    def index_definition(self) -> Index:
        return Index(
            table_name=self.table,
            name=self.details["index"],
            columns=self.details.get("columns", []),
            unique=self.details.get("unique", False),
            primary=self.details.get("primary", False),
        )

    def foreign_key_definition(self) -> ForeignKey:
        return ForeignKey(
            name=self.details["foreignKey"],
            table_name=self.table,
            column=self.details["column"],
            referenced_table=self.details["referencedTable"],
            referenced_column=self.details["referencedColumn"],
            on_delete=self.details.get("onDelete", "NO ACTION"),
        )


def _foreign_key_details(foreign_key: ForeignKey) -> dict[str, Any]:
    return {
        "foreignKey": foreign_key.name,
        "column": foreign_key.column,
        "referencedTable": foreign_key.referenced_table,
        "referencedColumn": foreign_key.referenced_column,
        "onDelete": foreign_key.on_delete,
    }


class PlanSummary(BaseModel):
    """Operation counts for a plan."""

    counts_by_type: dict[str, int] = Field(default_factory=dict, alias="countsByType")
    counts_by_risk: dict[str, int] = Field(default_factory=dict, alias="countsByRisk")
    total: int = 0

    class Config:
        populate_by_name = True
        frozen = True

    @classmethod
    def for_operations(cls, operations: list[MigrationOperation]) -> "PlanSummary":
        by_type = {t.value: 0 for t in MigrationOperationType}
        by_risk = {r.value: 0 for r in RiskLevel}
        for op in operations:
            by_type[op.type.value] += 1
            by_risk[op.risk_level.value] += 1
        return cls(counts_by_type=by_type, counts_by_risk=by_risk, total=len(operations))


class MigrationPlan(BaseModel):
    """Ordered, risk-annotated operations turning one schema into another.

    Plans carry no timestamps or identifiers: the same pair of snapshots
    always serializes to the same document.
    """

    migrations: list[MigrationOperation] = Field(default_factory=list)
    summary: PlanSummary = Field(default_factory=PlanSummary)
    risks: list[MigrationOperation] = Field(default_factory=list)
    estimated_time_ms: int = Field(default=0, alias="estimatedTimeMs")
    warnings: list[str] = Field(default_factory=list)
    # Statements undoing the plan, last operation first
    rollback_statements: list[str] = Field(default_factory=list, alias="rollbackStatements")

    class Config:
        populate_by_name = True
        frozen = True

    @classmethod
    def from_operations(
        cls,
        operations: list[MigrationOperation],
        estimated_time_ms: int,
        warnings: Optional[list[str]] = None,
        rollback_statements: Optional[list[str]] = None,
    ) -> "MigrationPlan":
        return cls(
            migrations=operations,
            summary=PlanSummary.for_operations(operations),
            risks=[op for op in operations if op.risk_level.at_least(RiskLevel.MEDIUM)],
            estimated_time_ms=estimated_time_ms,
            warnings=warnings or [],
            rollback_statements=rollback_statements or [],
        )

    @property
    def is_empty(self) -> bool:
        return not self.migrations

    @property
    def blocking_operations(self) -> list[tuple[int, MigrationOperation]]:
        return [
            (i, op) for i, op in enumerate(self.migrations) if op.risk_level == RiskLevel.BLOCKING
        ]

    def to_document(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, mode="json")

    @classmethod
    def from_document(cls, document: dict[str, Any]) -> "MigrationPlan":
        return cls.model_validate(document)


class ExecutionMode(str, Enum):
    """How the executor treats a plan."""

    VALIDATE = "validate"
    DRY_RUN = "dry_run"
    EXECUTE = "execute"


class OperationStatus(str, Enum):
    """Outcome of a single operation within one run."""

    APPLIED = "applied"
    SIMULATED = "simulated"
    SKIPPED = "skipped"
    FAILED = "failed"


class ExecutionStatus(str, Enum):
    """Overall outcome of one run."""

    RUNNING = "running"
    SUCCESS = "success"
    PARTIAL_FAILURE = "partial_failure"
    FAILED = "failed"
    VALIDATED = "validated"
    VALIDATION_FAILED = "validation_failed"
    SIMULATED = "simulated"
    ABORTED = "aborted"


class OperationResult(BaseModel):
    """What happened to one operation of a plan."""

    operation_index: int = Field(alias="operationIndex")
    type: MigrationOperationType
    table: str
    status: OperationStatus
    sql: Optional[str] = None
    error: Optional[str] = None
    duration_ms: Optional[int] = Field(default=None, alias="durationMs")
    attempts: int = 0

    class Config:
        populate_by_name = True


class InvalidOperation(BaseModel):
    """An operation that no longer applies to the live schema."""

    operation_index: int = Field(alias="operationIndex")
    type: MigrationOperationType
    table: str
    reason: str

    class Config:
        populate_by_name = True


class ValidationReport(BaseModel):
    """Result of checking a plan against the live schema."""

    valid: bool
    invalid_operations: list[InvalidOperation] = Field(
        default_factory=list, alias="invalidOperations"
    )

    class Config:
        populate_by_name = True


class ExecutionRecord(BaseModel):
    """Audit entry for one execution attempt."""

    execution_id: str = Field(alias="executionId")
    mode: ExecutionMode
    status: ExecutionStatus = ExecutionStatus.RUNNING
    plan_summary: PlanSummary = Field(alias="planSummary")
    results: list[OperationResult] = Field(default_factory=list)
    duration_ms: Optional[int] = Field(default=None, alias="durationMs")
    backup_path: Optional[str] = Field(default=None, alias="backupPath")
    dry_run: bool = Field(default=False, alias="dryRun")
    error_message: Optional[str] = Field(default=None, alias="errorMessage")
    created_at: datetime = Field(alias="createdAt")

    class Config:
        populate_by_name = True
        from_attributes = True

    @property
    def finalized(self) -> bool:
        return self.status != ExecutionStatus.RUNNING


class ExecutionResult(BaseModel):
    """Returned to the caller of ``MigrationExecutor.execute_migration_plan``."""

    execution_id: str = Field(alias="executionId")
    mode: ExecutionMode
    status: ExecutionStatus
    results: list[OperationResult] = Field(default_factory=list)
    duration_ms: int = Field(default=0, alias="durationMs")
    backup_path: Optional[str] = Field(default=None, alias="backupPath")
    data_backup_recommended: list[str] = Field(
        default_factory=list, alias="dataBackupRecommended"
    )
    validation: Optional[ValidationReport] = None
    error_message: Optional[str] = Field(default=None, alias="errorMessage")
    failed_operation_index: Optional[int] = Field(default=None, alias="failedOperationIndex")

    class Config:
        populate_by_name = True

    def _indexes_with(self, status: OperationStatus) -> list[int]:
        return [r.operation_index for r in self.results if r.status == status]

    @computed_field
    @property
    def applied(self) -> list[int]:
        return self._indexes_with(OperationStatus.APPLIED)

    @computed_field
    @property
    def failed(self) -> list[int]:
        return self._indexes_with(OperationStatus.FAILED)

    @computed_field
    @property
    def skipped(self) -> list[int]:
        return self._indexes_with(OperationStatus.SKIPPED)

    @property
    def ok(self) -> bool:
        return self.status in (
            ExecutionStatus.SUCCESS,
            ExecutionStatus.VALIDATED,
            ExecutionStatus.SIMULATED,
        )
