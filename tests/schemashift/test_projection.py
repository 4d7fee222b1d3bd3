"""Tests for projecting operations onto snapshots."""

from schemashift.migration.models import MigrationOperation, RiskLevel
from schemashift.migration.projection import apply_operation, check_operation
from schemashift.schema.models import Column, ForeignKey, Index, Table


def test_create_existing_table_is_rejected(current_snapshot):
    op = MigrationOperation.create_table(Table(name="users"), [])
    assert check_operation(current_snapshot, op) == "table users already exists"


def test_operation_on_missing_table(current_snapshot):
    op = MigrationOperation.add_column(
        Column(table_name="ghosts", name="id", data_type="integer"), RiskLevel.LOW
    )
    assert check_operation(current_snapshot, op) == "table ghosts does not exist"


def test_add_existing_column_is_rejected(current_snapshot):
    op = MigrationOperation.add_column(
        Column(table_name="users", name="email", data_type="text"), RiskLevel.LOW
    )
    assert "already exists" in check_operation(current_snapshot, op)


def test_modify_detects_drift(current_snapshot):
    live = current_snapshot.column_map()[("users", "nickname")]
    stale = live.model_copy(update={"column_type": "character varying(20)"})
    op = MigrationOperation.modify_column(
        stale, live.model_copy(update={"is_nullable": False}), ["isNullable"], RiskLevel.HIGH
    )

    assert check_operation(current_snapshot, op) == (
        "column users.nickname changed since the plan was made"
    )


def test_foreign_key_to_missing_column(current_snapshot):
    op = MigrationOperation.add_foreign_key(
        ForeignKey(name="fk", table_name="orders", column="user_id",
                   referenced_table="users", referenced_column="uuid"),
        RiskLevel.LOW,
    )
    assert "users.uuid" in check_operation(current_snapshot, op)


def test_valid_operations_pass(current_snapshot):
    ops = [
        MigrationOperation.drop_index(current_snapshot.index_map()[("orders", "idx_orders_user_id")],
                                      RiskLevel.MEDIUM),
        MigrationOperation.drop_foreign_key(current_snapshot.foreign_keys[0], RiskLevel.LOW),
        MigrationOperation.add_index(Index(table_name="users", name="idx_nick", columns=["nickname"])),
    ]
    assert [check_operation(current_snapshot, op) for op in ops] == [None, None, None]


def test_drop_column_takes_its_indexes_and_keys(current_snapshot):
    column = current_snapshot.column_map()[("orders", "user_id")]

    after = apply_operation(current_snapshot, MigrationOperation.drop_column(column, RiskLevel.HIGH))

    assert ("orders", "user_id") not in after.column_map()
    assert ("orders", "idx_orders_user_id") not in after.index_map()
    assert after.foreign_keys == []


def test_drop_table_takes_referencing_keys(current_snapshot):
    users = current_snapshot.table_map()["users"]

    after = apply_operation(current_snapshot, MigrationOperation.drop_table(users, RiskLevel.HIGH))

    assert list(after.table_map()) == ["orders"]
    assert all(c.table_name == "orders" for c in after.columns)
    assert after.foreign_keys == []


def test_projection_does_not_mutate_input(current_snapshot):
    op = MigrationOperation.add_column(
        Column(table_name="users", name="phone", data_type="text"), RiskLevel.LOW
    )

    after = apply_operation(current_snapshot, op)

    assert ("users", "phone") in after.column_map()
    assert ("users", "phone") not in current_snapshot.column_map()
