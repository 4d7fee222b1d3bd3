"""Execution registry - the append-only audit trail of migration runs."""

import json
import logging
from typing import Any, Optional

from schemashift.config import AUDIT_TABLE
from schemashift.errors import SchemaShiftError
from schemashift.migration.models import ExecutionRecord, ExecutionStatus

logger = logging.getLogger(__name__)

CREATE_AUDIT_TABLE = f"""
CREATE TABLE IF NOT EXISTS {AUDIT_TABLE} (
    id BIGSERIAL PRIMARY KEY,
    execution_id TEXT NOT NULL UNIQUE,
    mode TEXT NOT NULL,
    status TEXT NOT NULL,
    plan_summary JSONB NOT NULL,
    results JSONB NOT NULL DEFAULT '[]'::jsonb,
    duration_ms INTEGER,
    backup_path TEXT,
    dry_run BOOLEAN NOT NULL DEFAULT FALSE,
    error_message TEXT,
    created_at TIMESTAMPTZ NOT NULL DEFAULT now()
)
"""

INSERT_RECORD = f"""
INSERT INTO {AUDIT_TABLE}
    (execution_id, mode, status, plan_summary, results, dry_run, created_at)
VALUES ($1, $2, $3, $4::jsonb, $5::jsonb, $6, $7)
"""

FINALIZE_RECORD = f"""
UPDATE {AUDIT_TABLE}
SET status = $2, results = $3::jsonb, duration_ms = $4, backup_path = $5, error_message = $6
WHERE execution_id = $1 AND status = '{ExecutionStatus.RUNNING.value}'
"""

SELECT_COLUMNS = (
    "execution_id, mode, status, plan_summary, results, duration_ms, "
    "backup_path, dry_run, error_message, created_at"
)


class ExecutionRegistry:
    """Registry for execution records.

    For testing, can use in-memory storage (database=None).
    For production, stores records in the audit table through asyncpg.
    A record is created when a run starts and finalized exactly once.
    """

    def __init__(self, database: Any = None):
        """Initialize the execution registry.

        Args:
            database: ``pg_access.Database`` or None for in-memory storage
        """
        self._db = database
        # In-memory storage for testing
        self._records: dict[str, ExecutionRecord] = {}

    async def ensure_schema(self) -> None:
        """Create the audit table if it does not exist yet."""
        if self._db is not None:
            await self._db.execute(CREATE_AUDIT_TABLE)

    async def create_record(self, record: ExecutionRecord) -> ExecutionRecord:
        """Persist a new, running record."""
        if self._db is None:
            if record.execution_id in self._records:
                raise SchemaShiftError(f"Execution {record.execution_id} already recorded")
            self._records[record.execution_id] = record
            return record

        await self._db.execute(
            INSERT_RECORD,
            record.execution_id,
            record.mode.value,
            record.status.value,
            json.dumps(record.plan_summary.model_dump(by_alias=True, mode="json")),
            json.dumps(_results_document(record)),
            record.dry_run,
            record.created_at,
        )
        return record

    async def finalize_record(self, record: ExecutionRecord) -> ExecutionRecord:
        """
        Store the final outcome of a run.

        Raises:
            SchemaShiftError: If the record is unknown or already finalized
        """
        if not record.finalized:
            raise SchemaShiftError(f"Execution {record.execution_id} has no final status")

        if self._db is None:
            stored = self._records.get(record.execution_id)
            if stored is None:
                raise SchemaShiftError(f"Execution {record.execution_id} not found")
            if stored.finalized:
                raise SchemaShiftError(f"Execution {record.execution_id} already finalized")
            self._records[record.execution_id] = record
            return record

        status = await self._db.execute(
            FINALIZE_RECORD,
            record.execution_id,
            record.status.value,
            json.dumps(_results_document(record)),
            record.duration_ms,
            record.backup_path,
            record.error_message,
        )
        if status != "UPDATE 1":
            raise SchemaShiftError(
                f"Execution {record.execution_id} not found or already finalized"
            )
        logger.debug("Finalized execution %s as %s", record.execution_id, record.status.value)
        return record

    async def get_execution(self, execution_id: str) -> Optional[ExecutionRecord]:
        """Get an execution record by ID.

        Args:
            execution_id: Execution ID

        Returns:
            ExecutionRecord or None if not found
        """
        if self._db is None:
            return self._records.get(execution_id)

        row = await self._db.fetchrow(
            f"SELECT {SELECT_COLUMNS} FROM {AUDIT_TABLE} WHERE execution_id = $1", execution_id
        )
        return _record_from_row(row) if row is not None else None

    async def list_executions(self, limit: int = 50) -> list[ExecutionRecord]:
        """Most recent records, newest first."""
        if limit <= 0:
            return []

        if self._db is None:
            records = sorted(
                self._records.values(),
                key=lambda r: (r.created_at, r.execution_id),
                reverse=True,
            )
            return records[:limit]

        rows = await self._db.fetch(
            f"SELECT {SELECT_COLUMNS} FROM {AUDIT_TABLE} "
            "ORDER BY created_at DESC, execution_id DESC LIMIT $1",
            limit,
        )
        return [_record_from_row(row) for row in rows]


def _results_document(record: ExecutionRecord) -> list[dict[str, Any]]:
    return [r.model_dump(by_alias=True, mode="json") for r in record.results]


def _json_value(value: Any) -> Any:
    # asyncpg hands jsonb back as text unless a codec is registered
    if isinstance(value, str):
        return json.loads(value)
    return value


def _record_from_row(row: Any) -> ExecutionRecord:
    return ExecutionRecord(
        execution_id=row["execution_id"],
        mode=row["mode"],
        status=row["status"],
        plan_summary=_json_value(row["plan_summary"]),
        results=_json_value(row["results"]) or [],
        duration_ms=row["duration_ms"],
        backup_path=row["backup_path"],
        dry_run=row["dry_run"],
        error_message=row["error_message"],
        created_at=row["created_at"],
    )
