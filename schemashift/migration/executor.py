"""Migration executor for applying plans to the target database."""

import asyncio
import logging
import time
import uuid
from datetime import datetime, timezone
from typing import Any, Optional

import asyncpg

from schemashift.config import EngineConfig
from schemashift.errors import (
    BlockingRiskError,
    PlanValidationError,
    SchemaShiftError,
    StatementFailure,
)
from schemashift.migration.backup import BackupWriter
from schemashift.migration.generators.postgres import PostgresGenerator
from schemashift.migration.lock import InMemoryMigrationLock, MigrationLock
from schemashift.migration.models import (
    ExecutionMode,
    ExecutionRecord,
    ExecutionResult,
    ExecutionStatus,
    InvalidOperation,
    MigrationOperation,
    MigrationPlan,
    OperationResult,
    OperationStatus,
    RiskLevel,
    ValidationReport,
)
from schemashift.migration.projection import apply_operation, apply_plan, check_operation
from schemashift.migration.registry import ExecutionRegistry
from schemashift.schema.models import SchemaSnapshot

logger = logging.getLogger(__name__)

# Only lock contention is worth another attempt; anything else fails the same way again.
_RETRYABLE = (
    asyncpg.exceptions.LockNotAvailableError,
    asyncpg.exceptions.DeadlockDetectedError,
)
_STATEMENT_ERRORS = (
    asyncpg.PostgresError,
    asyncpg.exceptions.InterfaceError,
    OSError,
)


def new_execution_id() -> str:
    return f"mig_{int(time.time() * 1000)}_{uuid.uuid4().hex[:9]}"


def _elapsed_ms(started: float) -> int:
    return int((time.monotonic() - started) * 1000)


class MigrationExecutor:
    """Execute migration plans against the target database.

    Every run, whatever its mode, holds the advisory lock and leaves exactly
    one finalized audit record behind. Structural statements commit on their
    own, so a failed run halts at the failing operation instead of rolling
    back; the audit record says which operations were applied.
    """

    def __init__(
        self,
        database: Any,
        introspector: Any,
        registry: Optional[ExecutionRegistry] = None,
        lock: Optional[MigrationLock | InMemoryMigrationLock] = None,
        backup: Optional[BackupWriter] = None,
        config: Optional[EngineConfig] = None,
        generator: Optional[PostgresGenerator] = None,
    ):
        self.config = config or EngineConfig()
        self._db = database
        self.introspector = introspector
        self.registry = registry or ExecutionRegistry()
        self.lock = lock or InMemoryMigrationLock(self.config.lock_stale_after_seconds)
        self.backup = backup or BackupWriter(introspector, self.config.backup_dir)
        self.generator = generator or PostgresGenerator(schema=getattr(introspector, "schema", None))

    async def execute_migration_plan(
        self,
        plan: MigrationPlan,
        validate_only: bool = False,
        dry_run: bool = False,
        force: bool = False,
    ) -> ExecutionResult:
        """
        Run a plan in one of three modes.

        Args:
            plan: Plan produced by ``MigrationPlanner``
            validate_only: Only check the plan against the live schema
            dry_run: Compose every statement without running it
            force: Allow blocking-risk operations in execute mode

        Returns:
            ExecutionResult describing every operation's outcome

        Raises:
            ConcurrencyError: If another run holds the lock
            BlockingRiskError: If the plan has blocking operations and force is not set
            PlanValidationError: If the live schema drifted from the plan (execute mode)
            BackupError: If the structural backup could not be written
        """
        if validate_only:
            mode = ExecutionMode.VALIDATE
        elif dry_run:
            mode = ExecutionMode.DRY_RUN
        else:
            mode = ExecutionMode.EXECUTE

        started = time.monotonic()
        record = ExecutionRecord(
            execution_id=new_execution_id(),
            mode=mode,
            plan_summary=plan.summary,
            dry_run=mode != ExecutionMode.EXECUTE,
            created_at=datetime.now(timezone.utc),
        )
        await self.registry.create_record(record)
        logger.info(
            "Execution %s started in %s mode with %d operations",
            record.execution_id,
            mode.value,
            plan.summary.total,
        )

        try:
            async with self.lock.hold(record.execution_id):
                if mode == ExecutionMode.VALIDATE:
                    result = await self._validate(record.execution_id, plan)
                elif mode == ExecutionMode.DRY_RUN:
                    result = self._dry_run(record.execution_id, plan)
                else:
                    result = await self._execute(record.execution_id, plan, force)
        except Exception as e:
            message = e.message if isinstance(e, SchemaShiftError) else str(e)
            logger.error("Execution %s aborted: %s", record.execution_id, message)
            await self.registry.finalize_record(
                record.model_copy(
                    update={
                        "status": ExecutionStatus.ABORTED,
                        "duration_ms": _elapsed_ms(started),
                        "error_message": f"{type(e).__name__}: {message}",
                    }
                )
            )
            raise

        result = result.model_copy(update={"duration_ms": _elapsed_ms(started)})
        await self.registry.finalize_record(
            record.model_copy(
                update={
                    "status": result.status,
                    "results": result.results,
                    "duration_ms": result.duration_ms,
                    "backup_path": result.backup_path,
                    "error_message": result.error_message,
                }
            )
        )
        logger.info(
            "Execution %s finished with status %s in %d ms",
            result.execution_id,
            result.status.value,
            result.duration_ms,
        )
        return result

    async def validate_plan(self, plan: MigrationPlan) -> ValidationReport:
        """
        Check every operation against the live schema.

        Operations are replayed onto a projected snapshot so each one is
        checked against the schema the earlier operations leave behind.
        """
        report, _ = await self._check_against_live(plan)
        return report

    async def _check_against_live(
        self, plan: MigrationPlan
    ) -> tuple[ValidationReport, SchemaSnapshot]:
        live = await self.introspector.get_full_schema()
        unknown = set(live.skipped_tables)
        snapshot = live
        invalid = []
        for index, op in enumerate(plan.migrations):
            if op.table in unknown:
                reason = f"table {op.table} could not be introspected"
            else:
                reason = check_operation(snapshot, op)
            if reason is not None:
                invalid.append(
                    InvalidOperation(
                        operation_index=index, type=op.type, table=op.table, reason=reason
                    )
                )
                continue
            snapshot = apply_operation(snapshot, op)
        return ValidationReport(valid=not invalid, invalid_operations=invalid), live

    async def _validate(self, execution_id: str, plan: MigrationPlan) -> ExecutionResult:
        report = await self.validate_plan(plan)
        for invalid in report.invalid_operations:
            logger.warning("Operation %d is invalid: %s", invalid.operation_index, invalid.reason)
        return ExecutionResult(
            execution_id=execution_id,
            mode=ExecutionMode.VALIDATE,
            status=ExecutionStatus.VALIDATED if report.valid else ExecutionStatus.VALIDATION_FAILED,
            validation=report,
            error_message=None
            if report.valid
            else f"{len(report.invalid_operations)} operation(s) no longer apply",
        )

    def _dry_run(self, execution_id: str, plan: MigrationPlan) -> ExecutionResult:
        results = []
        for index, op in enumerate(plan.migrations):
            sql = self.generator.generate_operation_sql(op)
            logger.info("[dry run] operation %d: %s", index, sql)
            results.append(
                OperationResult(
                    operation_index=index,
                    type=op.type,
                    table=op.table,
                    status=OperationStatus.SIMULATED,
                    sql=sql,
                )
            )
        return ExecutionResult(
            execution_id=execution_id,
            mode=ExecutionMode.DRY_RUN,
            status=ExecutionStatus.SIMULATED,
            results=results,
        )

    async def _execute(self, execution_id: str, plan: MigrationPlan, force: bool) -> ExecutionResult:
        blocking = plan.blocking_operations
        if blocking and not force:
            index, op = blocking[0]
            raise BlockingRiskError(
                f"Operation {index} ({op.type.value} on {op.table}) is blocking; "
                "pass force to apply it anyway",
                operation_index=index,
                details={"operationIndexes": [i for i, _ in blocking]},
            )
        for index, op in blocking:
            logger.warning("Forcing blocking operation %d (%s on %s)", index, op.type.value, op.table)

        report, before = await self._check_against_live(plan)
        if not report.valid:
            raise PlanValidationError(
                [i.model_dump(by_alias=True, mode="json") for i in report.invalid_operations]
            )
        backup_path = await self.backup.write(execution_id, plan)
        recommended = self._data_backup_recommendations(plan)

        results: list[OperationResult] = []
        failure: Optional[StatementFailure] = None
        for index, op in enumerate(plan.migrations):
            if failure is not None:
                results.append(
                    OperationResult(
                        operation_index=index,
                        type=op.type,
                        table=op.table,
                        status=OperationStatus.SKIPPED,
                    )
                )
                continue
            result = await self._apply(index, op)
            results.append(result)
            if result.status == OperationStatus.FAILED:
                failure = StatementFailure(result.error or "", index, result.sql or "")

        if failure is None:
            status = ExecutionStatus.SUCCESS
            await self._verify(before, plan)
        elif any(r.status == OperationStatus.APPLIED for r in results):
            status = ExecutionStatus.PARTIAL_FAILURE
        else:
            status = ExecutionStatus.FAILED

        error_message = None
        if failure is not None:
            op = plan.migrations[failure.operation_index]
            error_message = (
                f"Operation {failure.operation_index} ({op.type.value} on {op.table}) "
                f"failed: {failure.message}"
            )

        return ExecutionResult(
            execution_id=execution_id,
            mode=ExecutionMode.EXECUTE,
            status=status,
            results=results,
            backup_path=str(backup_path),
            data_backup_recommended=recommended,
            error_message=error_message,
            failed_operation_index=failure.operation_index if failure else None,
        )

    def _data_backup_recommendations(self, plan: MigrationPlan) -> list[str]:
        recommended = []
        for index, op in enumerate(plan.migrations):
            if op.risk_level.at_least(RiskLevel.MEDIUM):
                target = f"{op.table}.{op.detail_key}" if op.detail_key else op.table
                note = f"operation {index}: {op.type.value} {target} ({op.risk_level.value})"
                logger.warning("Data backup recommended before %s", note)
                recommended.append(note)
        return recommended

    async def _apply(self, index: int, op: MigrationOperation) -> OperationResult:
        sql = self.generator.generate_operation_sql(op)
        started = time.monotonic()
        attempts = 0
        error = None
        while True:
            attempts += 1
            try:
                await self._db.execute(sql, timeout=self.config.statement_timeout_seconds)
                break
            except _RETRYABLE as e:
                if attempts > self.config.max_retries:
                    error = f"{type(e).__name__}: {e}"
                    break
                logger.warning(
                    "Operation %d hit %s, retrying (attempt %d)", index, type(e).__name__, attempts
                )
                await asyncio.sleep(self.config.retry_delay_seconds * attempts)
            except _STATEMENT_ERRORS as e:
                error = f"{type(e).__name__}: {e}"
                break

        status = OperationStatus.APPLIED if error is None else OperationStatus.FAILED
        if error is None:
            logger.info("Applied operation %d: %s on %s", index, op.type.value, op.table)
        else:
            logger.error("Operation %d (%s on %s) failed: %s", index, op.type.value, op.table, error)
        return OperationResult(
            operation_index=index,
            type=op.type,
            table=op.table,
            status=status,
            sql=sql,
            error=error,
            duration_ms=_elapsed_ms(started),
            attempts=attempts,
        )

    async def _verify(self, before: SchemaSnapshot, plan: MigrationPlan) -> None:
        # Post-run check only reports; the statements are already committed.
        try:
            after = await self.introspector.get_full_schema()
        except SchemaShiftError as e:
            logger.warning("Could not re-read schema after execution: %s", e)
            return
        if not after.structurally_equal(apply_plan(before, plan.migrations)):
            logger.warning("Live schema differs from the planned result after execution")

    async def get_execution_history(self, limit: Optional[int] = None) -> list[ExecutionRecord]:
        """Most recent execution records, newest first."""
        return await self.registry.list_executions(
            self.config.history_limit if limit is None else limit
        )

    async def get_execution(self, execution_id: str) -> Optional[ExecutionRecord]:
        return await self.registry.get_execution(execution_id)
