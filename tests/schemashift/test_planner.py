"""Tests for the migration planner."""

import pytest

from schemashift.errors import InvalidDesiredSchema
from schemashift.migration.generators.postgres import PostgresGenerator
from schemashift.migration.models import MigrationOperationType, RiskLevel
from schemashift.migration.planner import MigrationPlanner
from schemashift.migration.projection import apply_plan
from schemashift.schema.models import Column, ForeignKey, Index, SchemaSnapshot, Table


def _tags_schema(current):
    """Desired schema touching every kind of object."""
    columns = [
        c.model_copy(update={"column_type": "numeric(12,2)"}) if c.key == ("orders", "total") else c
        for c in current.columns
        if c.key != ("users", "nickname")
    ]
    columns += [
        Column(table_name="users", name="phone", data_type="text", position=4),
        Column(table_name="tags", name="id", data_type="integer", is_nullable=False, position=1),
        Column(table_name="tags", name="user_id", data_type="integer", position=2),
        Column(table_name="tags", name="label", data_type="character varying", max_length=40,
               position=3),
    ]
    indexes = [i for i in current.indexes if i.name != "idx_orders_user_id"] + [
        Index(table_name="tags", name="tags_pkey", columns=["id"], unique=True, primary=True),
        Index(table_name="users", name="idx_users_phone", columns=["phone"]),
    ]
    fks = list(current.foreign_keys) + [
        ForeignKey(name="tags_user_id_fkey", table_name="tags", column="user_id",
                   referenced_table="users", referenced_column="id", on_delete="SET NULL"),
    ]
    return dict(
        tables=list(current.tables) + [Table(name="tags")],
        columns=columns,
        indexes=indexes,
        foreign_keys=fks,
    )


async def test_no_changes_gives_empty_plan(planner, snapshot_factory):
    plan = await planner.generate_migration_plan(snapshot_factory())

    assert plan.is_empty
    assert plan.summary.total == 0
    assert plan.estimated_time_ms == 0
    assert plan.risks == []


async def test_add_nullable_column(planner, current_snapshot, snapshot_factory):
    """Adding a nullable column is a single low-risk operation."""
    desired = snapshot_factory(
        columns=current_snapshot.columns
        + [Column(table_name="users", name="phone", data_type="text", position=4)]
    )

    plan = await planner.generate_migration_plan(desired)

    assert len(plan.migrations) == 1
    op = plan.migrations[0]
    assert op.type == MigrationOperationType.ADD_COLUMN
    assert op.table == "users"
    assert op.risk_level == RiskLevel.LOW
    assert plan.summary.counts_by_type["add_column"] == 1
    assert plan.risks == []


async def test_drop_populated_column(planner, current_snapshot, snapshot_factory):
    """Dropping a column holding data is flagged."""
    desired = snapshot_factory(
        columns=[c for c in current_snapshot.columns if c.key != ("users", "nickname")]
    )

    plan = await planner.generate_migration_plan(desired)

    assert len(plan.migrations) == 1
    op = plan.migrations[0]
    assert op.type == MigrationOperationType.DROP_COLUMN
    assert op.risk_level.at_least(RiskLevel.MEDIUM)
    assert plan.risks == [op]


async def test_accepts_snapshot_document(planner, current_snapshot):
    document = current_snapshot.to_document()
    document["columns"].append({"tableName": "users", "name": "phone", "dataType": "text"})

    plan = await planner.generate_migration_plan(document)

    assert [op.type for op in plan.migrations] == [MigrationOperationType.ADD_COLUMN]


async def test_invalid_desired_schema(planner):
    with pytest.raises(InvalidDesiredSchema):
        await planner.generate_migration_plan({"tables": [{"name": ""}]})


async def test_inconsistent_desired_snapshot(planner, snapshot_factory):
    desired = snapshot_factory(
        indexes=[Index(table_name="users", name="idx_ghost", columns=["ghost"])]
    )

    with pytest.raises(InvalidDesiredSchema):
        await planner.generate_migration_plan(desired)


async def test_plan_is_deterministic(planner, current_snapshot, snapshot_factory):
    desired = snapshot_factory(**_tags_schema(current_snapshot))

    first = await planner.generate_migration_plan(desired)
    second = await planner.generate_migration_plan(desired)

    assert first.to_document() == second.to_document()


async def test_applying_plan_leaves_nothing_to_do(
    planner, fake_introspector, current_snapshot, snapshot_factory
):
    desired = snapshot_factory(**_tags_schema(current_snapshot))
    plan = await planner.generate_migration_plan(desired)
    assert not plan.is_empty

    fake_introspector.snapshot = apply_plan(current_snapshot, plan.migrations)
    replanned = await planner.generate_migration_plan(desired)

    assert replanned.is_empty
    assert fake_introspector.snapshot.structurally_equal(desired)


async def test_dependency_ordering(planner, current_snapshot, snapshot_factory):
    desired = snapshot_factory(**_tags_schema(current_snapshot))

    plan = await planner.generate_migration_plan(desired)
    position = {(op.type, op.table, op.detail_key): i for i, op in enumerate(plan.migrations)}

    create_tags = position[(MigrationOperationType.CREATE_TABLE, "tags", "")]
    add_fk = position[(MigrationOperationType.ADD_FOREIGN_KEY, "tags", "tags_user_id_fkey")]
    add_phone = position[(MigrationOperationType.ADD_COLUMN, "users", "phone")]
    phone_index = position[(MigrationOperationType.ADD_INDEX, "users", "idx_users_phone")]
    drop_index = position[(MigrationOperationType.DROP_INDEX, "orders", "idx_orders_user_id")]
    drop_column = position[(MigrationOperationType.DROP_COLUMN, "users", "nickname")]

    assert create_tags < add_fk
    assert add_phone < phone_index
    assert drop_index < drop_column
    assert all(
        op.type not in (MigrationOperationType.DROP_TABLE, MigrationOperationType.DROP_FOREIGN_KEY)
        for op in plan.migrations
    )


async def test_new_tables_are_created_referenced_first(planner, current_snapshot, snapshot_factory):
    desired = snapshot_factory(
        tables=list(current_snapshot.tables) + [Table(name="a_items"), Table(name="z_lists")],
        columns=list(current_snapshot.columns)
        + [
            Column(table_name="z_lists", name="id", data_type="integer", position=1),
            Column(table_name="a_items", name="list_id", data_type="integer", position=1),
        ],
        foreign_keys=list(current_snapshot.foreign_keys)
        + [
            ForeignKey(name="a_items_list_fkey", table_name="a_items", column="list_id",
                       referenced_table="z_lists", referenced_column="id"),
        ],
    )

    plan = await planner.generate_migration_plan(desired)

    created = [op.table for op in plan.migrations if op.type == MigrationOperationType.CREATE_TABLE]
    assert created == ["z_lists", "a_items"]
    assert plan.migrations[-1].type == MigrationOperationType.ADD_FOREIGN_KEY


async def test_orphaned_rows_block_foreign_key(fake_introspector, engine_config, current_snapshot,
                                               snapshot_factory):
    fake_introspector.orphans["orders_user_fk"] = True
    planner = MigrationPlanner(fake_introspector, engine_config)
    desired = snapshot_factory(
        foreign_keys=list(current_snapshot.foreign_keys)
        + [
            ForeignKey(name="orders_user_fk", table_name="orders", column="user_id",
                       referenced_table="users", referenced_column="id"),
        ]
    )

    plan = await planner.generate_migration_plan(desired)

    assert plan.migrations[0].risk_level == RiskLevel.BLOCKING
    assert plan.blocking_operations == [(0, plan.migrations[0])]


async def test_failed_orphan_check_is_medium(fake_introspector, engine_config, current_snapshot,
                                             snapshot_factory):
    fake_introspector.orphans["orders_user_fk"] = None
    planner = MigrationPlanner(fake_introspector, engine_config)
    desired = snapshot_factory(
        foreign_keys=list(current_snapshot.foreign_keys)
        + [
            ForeignKey(name="orders_user_fk", table_name="orders", column="user_id",
                       referenced_table="users", referenced_column="id"),
        ]
    )

    plan = await planner.generate_migration_plan(desired)

    assert plan.migrations[0].risk_level == RiskLevel.MEDIUM


async def test_exact_count_used_when_estimate_is_empty(planner, fake_introspector, current_snapshot,
                                                       snapshot_factory):
    desired = snapshot_factory(
        columns=[c for c in current_snapshot.columns if c.key != ("orders", "total")]
    )

    plan = await planner.generate_migration_plan(desired)

    # orders has no estimate; its exact count (40) makes the drop high risk
    assert fake_introspector.row_count_calls == ["orders"]
    assert plan.migrations[0].risk_level == RiskLevel.HIGH


async def test_partial_read_warnings_are_carried(
    planner, fake_introspector, current_snapshot, snapshot_factory
):
    fake_introspector.snapshot = snapshot_factory(warnings=["Skipped table audit: permission denied"])

    plan = await planner.generate_migration_plan(current_snapshot)

    assert plan.warnings == ["Skipped table audit: permission denied"]


async def test_serial_columns_are_recreated_as_serial(
    planner, fake_introspector, current_snapshot
):
    fake_introspector.snapshot = SchemaSnapshot()

    plan = await planner.generate_migration_plan(current_snapshot)
    generator = PostgresGenerator(schema="public")
    [create_users] = [
        op for op in plan.migrations
        if op.type == MigrationOperationType.CREATE_TABLE and op.table == "users"
    ]
    sql = generator.generate_operation_sql(create_users)

    assert '"id" serial NOT NULL' in sql
    assert "nextval" not in sql

    fake_introspector.snapshot = apply_plan(SchemaSnapshot(), plan.migrations)
    assert (await planner.generate_migration_plan(current_snapshot)).is_empty


async def test_serial_default_from_another_schema_matches(
    planner, current_snapshot, snapshot_factory
):
    desired = snapshot_factory(columns=[
        c.model_copy(update={"default_value": "nextval('app.users_id_seq'::regclass)"})
        if c.key == ("users", "id") else c
        for c in current_snapshot.columns
    ])

    plan = await planner.generate_migration_plan(desired)

    assert plan.is_empty


async def test_baseline_with_skipped_table_keeps_it(planner, current_snapshot, snapshot_factory):
    desired = snapshot_factory(
        tables=[t for t in current_snapshot.tables if t.name != "orders"],
        columns=[c for c in current_snapshot.columns if c.table_name != "orders"],
        indexes=[i for i in current_snapshot.indexes if i.table_name != "orders"],
        foreign_keys=[],
        skipped_tables=["orders"],
    )

    plan = await planner.generate_migration_plan(desired.to_document())

    assert plan.is_empty


async def test_plan_carries_rollback_statements(planner, current_snapshot, snapshot_factory):
    desired = snapshot_factory(**_tags_schema(current_snapshot))

    plan = await planner.generate_migration_plan(desired)
    again = await planner.generate_migration_plan(desired)

    assert len(plan.rollback_statements) == len(plan.migrations)
    assert plan.rollback_statements[-1] == 'DROP TABLE "public"."tags";'
    assert 'ALTER TABLE "public"."users" DROP COLUMN "phone";' in plan.rollback_statements
    assert plan.to_document()["rollbackStatements"] == again.rollback_statements
