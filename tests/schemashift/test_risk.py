"""Tests for risk classification."""

import pytest

from schemashift.config import RiskPolicy
from schemashift.migration.models import MigrationOperation, RiskLevel
from schemashift.migration.risk import DataProfile, RiskAssessor, is_lossy_type_change
from schemashift.schema.models import Column, ForeignKey, Index, Table


@pytest.mark.parametrize(
    "old, new, lossy",
    [
        ("integer", "bigint", False),
        ("bigint", "integer", True),
        ("smallint", "double precision", False),
        ("double precision", "real", True),
        ("character varying(50)", "character varying(255)", False),
        ("character varying(255)", "character varying(50)", True),
        ("character varying(255)", "text", False),
        ("text", "character varying(100)", True),
        ("integer", "numeric(12,0)", False),
        ("integer", "numeric(5,2)", True),
        ("numeric(10,2)", "numeric(12,2)", False),
        ("numeric(10,2)", "numeric(10,0)", True),
        ("timestamp", "timestamptz", False),
        ("timestamptz", "timestamp", True),
        ("text", "integer", True),
        ("json", "jsonb", False),
    ],
)
def test_is_lossy_type_change(old, new, lossy):
    assert is_lossy_type_change(old, new) is lossy


@pytest.fixture
def assessor():
    return RiskAssessor()


def _column(**overrides):
    fields = {"table_name": "users", "name": "phone", "data_type": "text"}
    fields.update(overrides)
    return Column(**fields)


def test_create_and_drop_table(assessor):
    table = Table(name="users", row_count_estimate=10)
    assert assessor.assess(MigrationOperation.create_table(table, []), DataProfile()) == RiskLevel.LOW
    assert (
        assessor.assess(MigrationOperation.drop_table(table, RiskLevel.LOW), DataProfile())
        == RiskLevel.HIGH
    )


def test_add_column(assessor):
    nullable = MigrationOperation.add_column(_column(), RiskLevel.LOW)
    required = MigrationOperation.add_column(_column(is_nullable=False), RiskLevel.LOW)
    defaulted = MigrationOperation.add_column(
        _column(is_nullable=False, default_value="''"), RiskLevel.LOW
    )

    assert assessor.assess(nullable, DataProfile()) == RiskLevel.LOW
    assert assessor.assess(required, DataProfile()) == RiskLevel.MEDIUM
    assert assessor.assess(defaulted, DataProfile()) == RiskLevel.LOW


def test_drop_column_depends_on_rows(assessor):
    op = MigrationOperation.drop_column(_column(name="nickname"), RiskLevel.LOW)

    assert assessor.assess(op, DataProfile(row_counts={"users": 0})) == RiskLevel.MEDIUM
    assert assessor.assess(op, DataProfile(row_counts={"users": 5})) == RiskLevel.HIGH


def test_modify_column(assessor):
    widen = MigrationOperation.modify_column(
        _column(data_type="integer"), _column(data_type="bigint"), ["columnType"], RiskLevel.LOW
    )
    narrow = MigrationOperation.modify_column(
        _column(data_type="bigint"), _column(data_type="integer"), ["columnType"], RiskLevel.LOW
    )
    not_null = MigrationOperation.modify_column(
        _column(), _column(is_nullable=False), ["isNullable"], RiskLevel.LOW
    )

    populated = DataProfile(row_counts={"users": 3})
    assert assessor.assess(widen, populated) == RiskLevel.LOW
    assert assessor.assess(narrow, populated) == RiskLevel.HIGH
    assert assessor.assess(not_null, populated) == RiskLevel.HIGH
    assert assessor.assess(not_null, DataProfile()) == RiskLevel.LOW


def test_indexes(assessor):
    index = Index(table_name="users", name="idx", columns=["phone"])
    assert assessor.assess(MigrationOperation.add_index(index), DataProfile()) == RiskLevel.LOW
    assert (
        assessor.assess(MigrationOperation.drop_index(index, RiskLevel.LOW), DataProfile())
        == RiskLevel.MEDIUM
    )


def test_foreign_key_orphans(assessor):
    fk = ForeignKey(name="orders_user_id_fkey", table_name="orders", column="user_id",
                    referenced_table="users", referenced_column="id")
    op = MigrationOperation.add_foreign_key(fk, RiskLevel.LOW)
    key = ("orders", "orders_user_id_fkey")

    assert assessor.assess(op, DataProfile(orphans={key: False})) == RiskLevel.LOW
    assert assessor.assess(op, DataProfile(orphans={key: True})) == RiskLevel.BLOCKING
    assert assessor.assess(op, DataProfile(orphans={key: None})) == RiskLevel.MEDIUM
    assert (
        assessor.assess(MigrationOperation.drop_foreign_key(fk, RiskLevel.LOW), DataProfile())
        == RiskLevel.LOW
    )


def test_policy_is_tunable():
    assessor = RiskAssessor(RiskPolicy(drop_table=RiskLevel.BLOCKING))
    op = MigrationOperation.drop_table(Table(name="users"), RiskLevel.LOW)
    assert assessor.assess(op, DataProfile()) == RiskLevel.BLOCKING


def test_risk_level_ordering():
    assert RiskLevel.HIGH.at_least(RiskLevel.MEDIUM)
    assert not RiskLevel.LOW.at_least(RiskLevel.MEDIUM)
    assert RiskLevel.BLOCKING.rank > RiskLevel.HIGH.rank
