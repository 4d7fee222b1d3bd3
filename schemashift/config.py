"""Engine and application configuration."""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from schemashift.migration.models import MigrationOperationType, RiskLevel

AUDIT_TABLE = "migration_executions"
LOCK_TABLE = "migration_lock"
ENGINE_TABLES = frozenset({AUDIT_TABLE, LOCK_TABLE})


@dataclass(frozen=True)
class RiskPolicy:
    """Risk levels assigned by the planner. Tunable per deployment."""

    create_table: RiskLevel = RiskLevel.LOW
    drop_table: RiskLevel = RiskLevel.HIGH
    add_nullable_column: RiskLevel = RiskLevel.LOW
    add_required_column: RiskLevel = RiskLevel.MEDIUM
    drop_empty_column: RiskLevel = RiskLevel.MEDIUM
    drop_populated_column: RiskLevel = RiskLevel.HIGH
    lossy_column_change: RiskLevel = RiskLevel.HIGH
    safe_column_change: RiskLevel = RiskLevel.LOW
    add_index: RiskLevel = RiskLevel.LOW
    drop_index: RiskLevel = RiskLevel.MEDIUM
    add_foreign_key: RiskLevel = RiskLevel.LOW
    add_foreign_key_with_orphans: RiskLevel = RiskLevel.BLOCKING
    add_foreign_key_unchecked: RiskLevel = RiskLevel.MEDIUM
    drop_foreign_key: RiskLevel = RiskLevel.LOW


def _default_base_costs() -> dict[MigrationOperationType, float]:
    return {
        MigrationOperationType.CREATE_TABLE: 5.0,
        MigrationOperationType.ADD_COLUMN: 1.0,
        MigrationOperationType.MODIFY_COLUMN: 2.0,
        MigrationOperationType.DROP_COLUMN: 1.0,
        MigrationOperationType.ADD_INDEX: 2.0,
        MigrationOperationType.DROP_INDEX: 1.0,
        MigrationOperationType.ADD_FOREIGN_KEY: 2.0,
        MigrationOperationType.DROP_FOREIGN_KEY: 1.0,
        MigrationOperationType.DROP_TABLE: 2.0,
    }


@dataclass(frozen=True)
class CostModel:
    """Per-operation time estimates in milliseconds.

    Metadata-only changes cost their base value. Changes that rewrite or scan
    table storage add a per-row cost on top.
    """

    base_ms: dict[MigrationOperationType, float] = field(default_factory=_default_base_costs)
    rewrite_ms_per_row: float = 0.02
    index_build_ms_per_row: float = 0.01
    scan_ms_per_row: float = 0.002


@dataclass
class EngineConfig:
    """Configuration for planning and execution."""

    backup_dir: Path = field(default_factory=lambda: Path("./backups"))
    lock_stale_after_seconds: float = 3600.0
    statement_timeout_seconds: Optional[float] = None
    max_retries: int = 2
    retry_delay_seconds: float = 1.0
    history_limit: int = 50
    risk_policy: RiskPolicy = field(default_factory=RiskPolicy)
    cost_model: CostModel = field(default_factory=CostModel)

    @classmethod
    def from_env(cls, prefix: str = "SCHEMASHIFT_") -> "EngineConfig":
        defaults = cls()
        timeout = os.environ.get(f"{prefix}STATEMENT_TIMEOUT")
        return cls(
            backup_dir=Path(os.environ.get(f"{prefix}BACKUP_DIR", defaults.backup_dir)),
            lock_stale_after_seconds=float(
                os.environ.get(f"{prefix}LOCK_STALE_AFTER", defaults.lock_stale_after_seconds)
            ),
            statement_timeout_seconds=float(timeout) if timeout else None,
            max_retries=int(os.environ.get(f"{prefix}MAX_RETRIES", defaults.max_retries)),
            retry_delay_seconds=float(
                os.environ.get(f"{prefix}RETRY_DELAY", defaults.retry_delay_seconds)
            ),
            history_limit=int(os.environ.get(f"{prefix}HISTORY_LIMIT", defaults.history_limit)),
        )


@dataclass
class AppConfig:
    """Configuration for the admin API."""

    title: str = "SchemaShift Admin"
    debug: bool = False
