"""Error taxonomy for the migration engine.

Introspection and planning errors happen before anything is written and are
safe to retry. Execution-time errors carry the index of the operation that
caused them so the audit trail can point at it.
"""

from typing import Any, Optional


class SchemaShiftError(Exception):
    """Base class for all engine errors."""

    def __init__(
        self,
        message: str,
        operation_index: Optional[int] = None,
        details: Optional[dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.message = message
        self.operation_index = operation_index
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        return {
            "error": type(self).__name__,
            "message": self.message,
            "operationIndex": self.operation_index,
            "details": self.details,
        }


class IntrospectionError(SchemaShiftError):
    """The structural catalog could not be read."""


class SchemaUnavailable(IntrospectionError):
    """The catalog itself is unreachable (no connection, no permission)."""


class PlanningError(SchemaShiftError):
    """A plan could not be computed."""


class InvalidDesiredSchema(PlanningError):
    """The desired-schema document is malformed or inconsistent."""

    def __init__(self, problems: list[dict[str, Any]]):
        first = problems[0] if problems else {}
        message = "Invalid desired schema"
        if first:
            message = f"Invalid desired schema: {first.get('entity')} {first.get('key')}: {first.get('problem')}"
        super().__init__(message, details={"problems": problems})
        self.problems = problems


class PlanValidationError(SchemaShiftError):
    """The live schema has drifted from what the plan assumed."""

    def __init__(self, invalid_operations: list[dict[str, Any]]):
        first_index = invalid_operations[0]["operationIndex"] if invalid_operations else None
        super().__init__(
            f"{len(invalid_operations)} operation(s) no longer apply to the live schema",
            operation_index=first_index,
            details={"invalidOperations": invalid_operations},
        )
        self.invalid_operations = invalid_operations


class BlockingRiskError(SchemaShiftError):
    """The plan contains a blocking operation and force was not given."""


class BackupError(SchemaShiftError):
    """The structural backup could not be written."""


class ExecutionError(SchemaShiftError):
    """A structural statement failed while executing a plan."""


class StatementFailure(ExecutionError):
    """An individual statement was rejected by the database."""

    def __init__(self, message: str, operation_index: int, sql: str):
        super().__init__(message, operation_index=operation_index, details={"sql": sql})
        self.sql = sql


class ConcurrencyError(SchemaShiftError):
    """Another execution holds the advisory lock."""
