"""Structural backups taken before a plan touches the database."""

import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from schemashift.errors import BackupError, SchemaShiftError
from schemashift.migration.models import MigrationPlan, MigrationOperationType

logger = logging.getLogger(__name__)


def affected_tables(plan: MigrationPlan) -> list[str]:
    """Existing tables the plan alters or drops, in name order.

    Tables the plan creates have nothing to back up, including when their
    indexes and foreign keys arrive as separate operations.
    """
    created = {
        op.table for op in plan.migrations if op.type == MigrationOperationType.CREATE_TABLE
    }
    return sorted({op.table for op in plan.migrations if op.table not in created})


class BackupWriter:
    """Writes the definition of every affected table to a ``.sql`` file."""

    def __init__(self, introspector: Any, backup_dir: Path):
        self.introspector = introspector
        self.backup_dir = Path(backup_dir)

    def backup_path(self, execution_id: str, now: datetime) -> Path:
        stamp = now.strftime("%Y%m%dT%H%M%SZ")
        return self.backup_dir / f"migration_backup_{execution_id}_{stamp}.sql"

    async def write(self, execution_id: str, plan: MigrationPlan) -> Path:
        """
        Capture the structural backup for a run.

        Returns:
            Path of the written backup file

        Raises:
            BackupError: If a definition cannot be read or the file cannot be written
        """
        now = datetime.now(timezone.utc)
        tables = affected_tables(plan)
        statements = []
        for table in tables:
            try:
                statements.append(await self.introspector.get_create_table_statement(table))
            except SchemaShiftError as e:
                raise BackupError(f"Could not capture definition of {table}: {e}") from e

        header = [
            f"-- Structural backup for execution {execution_id}",
            f"-- Taken {now.isoformat()}",
            f"-- Tables: {', '.join(tables) if tables else '(none)'}",
        ]
        path = self.backup_path(execution_id, now)
        try:
            self.backup_dir.mkdir(parents=True, exist_ok=True)
            path.write_text("\n".join(header) + "\n\n" + "\n\n".join(statements) + "\n")
        except OSError as e:
            raise BackupError(f"Could not write backup {path}: {e}") from e

        logger.info("Wrote structural backup of %d tables to %s", len(tables), path)
        return path
