"""Reading and writing baseline and plan documents."""

import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional, Union

from pydantic import ValidationError

from schemashift.errors import InvalidDesiredSchema, PlanningError
from schemashift.migration.models import MigrationPlan
from schemashift.schema.models import SchemaSnapshot

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]


def baseline_document(
    snapshot: SchemaSnapshot, database: str, captured_at: Optional[datetime] = None
) -> dict[str, Any]:
    """Wrap a snapshot in the baseline envelope."""
    captured_at = captured_at or datetime.now(timezone.utc)
    return {
        "capturedAt": captured_at.isoformat(),
        "database": database,
        "schema": snapshot.to_document(),
    }


def _read_json(path: PathLike) -> Any:
    try:
        return json.loads(Path(path).read_text())
    except json.JSONDecodeError as e:
        raise PlanningError(f"{path} is not valid JSON: {e}") from e


def _write_json(path: PathLike, document: Any) -> Path:
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(document, indent=2) + "\n")
    return path


def save_baseline(path: PathLike, snapshot: SchemaSnapshot, database: str) -> Path:
    path = _write_json(path, baseline_document(snapshot, database))
    logger.info("Saved baseline of %d tables to %s", len(snapshot.tables), path)
    return path


def load_baseline(path: PathLike) -> dict[str, Any]:
    """
    Read a baseline file and return its snapshot document.

    Accepts both the ``{capturedAt, database, schema}`` envelope and a bare
    snapshot document. The result is unvalidated; hand it to the planner.
    """
    document = _read_json(path)
    if not isinstance(document, dict):
        raise InvalidDesiredSchema(
            [{"entity": "document", "key": str(path), "problem": "must be a JSON object"}]
        )
    if "schema" in document and "tables" not in document:
        return document["schema"]
    return document


def save_plan(path: PathLike, plan: MigrationPlan) -> Path:
    path = _write_json(path, plan.to_document())
    logger.info("Saved plan with %d operations to %s", plan.summary.total, path)
    return path


def load_plan(path: PathLike) -> MigrationPlan:
    """
    Read a plan written by ``save_plan``.

    Raises:
        PlanningError: If the file does not hold a plan document
    """
    document = _read_json(path)
    try:
        return MigrationPlan.from_document(document)
    except ValidationError as e:
        raise PlanningError(f"{path} is not a migration plan: {e}") from e


def save_plan_sql(path: PathLike, plan: MigrationPlan, migration_sql: str) -> Path:
    """Write a plan's statements as a reviewable script, rollback section last."""
    path = Path(path)
    sections = [
        f"-- {plan.summary.total} operations, estimated {plan.estimated_time_ms} ms",
        migration_sql,
    ]
    if plan.rollback_statements:
        rollback = "\n".join(
            f"-- {line}" for sql in plan.rollback_statements for line in sql.split("\n")
        )
        sections.append("-- Rollback (not executed)\n" + rollback)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text("\n\n".join(s for s in sections if s) + "\n")
    logger.info("Saved plan SQL to %s", path)
    return path
