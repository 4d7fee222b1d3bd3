"""Risk classification for migration operations."""

import re
from dataclasses import dataclass, field
from typing import Optional

from schemashift.config import RiskPolicy
from schemashift.migration.models import MigrationOperation, MigrationOperationType, RiskLevel
from schemashift.schema.models import normalize_type

_INTEGER_WIDTH = {"smallint": 1, "integer": 2, "bigint": 3}
_FLOAT_WIDTH = {"real": 1, "double precision": 2}
_STRING_TYPES = ("character varying", "character")
_TYPE_WITH_PARAMS = re.compile(r"^(?P<base>[^(]+)(\((?P<params>[^)]*)\))?(?P<rest>.*)$")

# (from, to) pairs that never lose information
_LOSSLESS_CONVERSIONS = {
    ("smallint", "real"),
    ("smallint", "double precision"),
    ("integer", "double precision"),
    ("date", "timestamp without time zone"),
    ("date", "timestamp with time zone"),
    ("timestamp without time zone", "timestamp with time zone"),
    ("json", "jsonb"),
}


def _split_type(type_text: str) -> tuple[str, list[int], str]:
    match = _TYPE_WITH_PARAMS.match(normalize_type(type_text))
    if match is None:
        return type_text, [], ""
    params = []
    for part in (match.group("params") or "").split(","):
        part = part.strip()
        if part.isdigit():
            params.append(int(part))
    return match.group("base").strip(), params, match.group("rest").strip()


def is_lossy_type_change(old_type: str, new_type: str) -> bool:
    """
    Whether converting a column from ``old_type`` to ``new_type`` can
    discard or reject existing values.

    Anything not known to be a widening counts as lossy.
    """
    if normalize_type(old_type) == normalize_type(new_type):
        return False

    old_base, old_params, old_rest = _split_type(old_type)
    new_base, new_params, new_rest = _split_type(new_type)

    if old_rest != new_rest:
        # array dimensions or time zone qualifiers differ
        old_full = f"{old_base} {old_rest}".strip()
        new_full = f"{new_base} {new_rest}".strip()
        return (old_full, new_full) not in _LOSSLESS_CONVERSIONS

    if new_base == "text":
        return False

    if old_base in _INTEGER_WIDTH and new_base in _INTEGER_WIDTH:
        return _INTEGER_WIDTH[new_base] < _INTEGER_WIDTH[old_base]

    if old_base in _FLOAT_WIDTH and new_base in _FLOAT_WIDTH:
        return _FLOAT_WIDTH[new_base] < _FLOAT_WIDTH[old_base]

    if old_base in _INTEGER_WIDTH and new_base == "numeric":
        if not new_params:
            return False
        precision = new_params[0]
        scale = new_params[1] if len(new_params) > 1 else 0
        digits = {"smallint": 5, "integer": 10, "bigint": 19}[old_base]
        return precision - scale < digits

    if old_base == "numeric" and new_base == "numeric":
        if not new_params:
            return False
        if not old_params:
            return True
        old_scale = old_params[1] if len(old_params) > 1 else 0
        new_scale = new_params[1] if len(new_params) > 1 else 0
        return new_scale < old_scale or (new_params[0] - new_scale) < (old_params[0] - old_scale)

    if old_base in _STRING_TYPES and new_base in _STRING_TYPES:
        if new_base == "character" and old_base != "character":
            # char pads and truncates to a fixed width
            return True
        if not new_params:
            return False
        if not old_params:
            return True
        return new_params[0] < old_params[0]

    if old_base == "text" and new_base == "character varying":
        return bool(new_params)

    return (old_base, new_base) not in _LOSSLESS_CONVERSIONS


@dataclass
class DataProfile:
    """Facts about the live data that risk and cost depend on."""

    row_counts: dict[str, int] = field(default_factory=dict)
    # (table, foreign key) -> True (orphans), False (clean), None (check failed)
    orphans: dict[tuple[str, str], Optional[bool]] = field(default_factory=dict)

    def rows(self, table: str) -> int:
        return self.row_counts.get(table, 0)


class RiskAssessor:
    """Assigns a risk level to each operation according to a ``RiskPolicy``."""

    def __init__(self, policy: Optional[RiskPolicy] = None):
        self.policy = policy or RiskPolicy()

    def assess(self, operation: MigrationOperation, profile: DataProfile) -> RiskLevel:
        policy = self.policy
        op_type = operation.type

        if op_type == MigrationOperationType.CREATE_TABLE:
            return policy.create_table

        if op_type == MigrationOperationType.DROP_TABLE:
            return policy.drop_table

        if op_type == MigrationOperationType.ADD_COLUMN:
            column = operation.column_definition()
            if column.is_nullable or column.default_value is not None:
                return policy.add_nullable_column
            return policy.add_required_column

        if op_type == MigrationOperationType.DROP_COLUMN:
            if profile.rows(operation.table) > 0:
                return policy.drop_populated_column
            return policy.drop_empty_column

        if op_type == MigrationOperationType.MODIFY_COLUMN:
            return self._assess_modify(operation, profile)

        if op_type == MigrationOperationType.ADD_INDEX:
            return policy.add_index

        if op_type == MigrationOperationType.DROP_INDEX:
            return policy.drop_index

        if op_type == MigrationOperationType.ADD_FOREIGN_KEY:
            orphans = profile.orphans.get((operation.table, operation.detail_key), False)
            if orphans is None:
                return policy.add_foreign_key_unchecked
            if orphans:
                return policy.add_foreign_key_with_orphans
            return policy.add_foreign_key

        if op_type == MigrationOperationType.DROP_FOREIGN_KEY:
            return policy.drop_foreign_key

        raise ValueError(f"Unsupported operation type: {op_type}")

    def _assess_modify(self, operation: MigrationOperation, profile: DataProfile) -> RiskLevel:
        changes = operation.details.get("changes", [])
        current = operation.column_definition("from")
        desired = operation.column_definition("to")

        if "columnType" in changes and is_lossy_type_change(
            current.column_type or current.data_type, desired.column_type or desired.data_type
        ):
            return self.policy.lossy_column_change

        adds_not_null = "isNullable" in changes and not desired.is_nullable
        if adds_not_null and profile.rows(operation.table) > 0:
            return self.policy.lossy_column_change

        return self.policy.safe_column_change
