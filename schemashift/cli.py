"""Command line interface for capturing baselines, planning and executing migrations."""

import asyncio
import logging
from collections.abc import Callable

import click

from pg_access import PostgresConfig
from schemashift.config import EngineConfig
from schemashift.engine import MigrationEngine
from schemashift.errors import PlanValidationError, SchemaShiftError
from schemashift.migration.documents import (
    load_baseline,
    load_plan,
    save_baseline,
    save_plan,
    save_plan_sql,
)
from schemashift.migration.models import ExecutionResult, MigrationPlan

logger = logging.getLogger(__name__)

MODES = ("validate", "dry-run", "execute")


def _default_engine_factory() -> MigrationEngine:
    return MigrationEngine.from_config(PostgresConfig.from_env(), EngineConfig.from_env())


def _engine(ctx: click.Context) -> MigrationEngine:
    factory: Callable[[], MigrationEngine] = ctx.obj.get("engine_factory", _default_engine_factory)
    return factory()


def _fail(error: SchemaShiftError) -> None:
    click.echo(f"Error: {type(error).__name__}: {error.message}", err=True)
    if error.operation_index is not None:
        click.echo(f"  operation index: {error.operation_index}", err=True)
    if isinstance(error, PlanValidationError):
        for invalid in error.invalid_operations:
            click.echo(f"  [{invalid['operationIndex']}] {invalid['reason']}", err=True)


def _print_plan(plan: MigrationPlan) -> None:
    click.echo(f"Migrations: {plan.summary.total}")
    for risk, count in plan.summary.counts_by_risk.items():
        if count:
            click.echo(f"  {risk}: {count}")
    click.echo(f"Estimated time: {plan.estimated_time_ms} ms")
    if plan.rollback_statements:
        click.echo(f"Rollback statements: {len(plan.rollback_statements)}")
    for index, op in enumerate(plan.migrations):
        target = f"{op.table}.{op.detail_key}" if op.detail_key else op.table
        click.echo(f"  [{index}] {op.type.value} {target} ({op.risk_level.value})")
    for warning in plan.warnings:
        click.echo(f"Warning: {warning}")


def _print_result(result: ExecutionResult) -> None:
    click.echo(f"Execution {result.execution_id}: {result.status.value}")
    for op_result in result.results:
        line = (
            f"  [{op_result.operation_index}] {op_result.type.value} "
            f"{op_result.table}: {op_result.status.value}"
        )
        if op_result.error:
            line += f" ({op_result.error})"
        click.echo(line)
    if result.validation is not None:
        for invalid in result.validation.invalid_operations:
            click.echo(f"  [{invalid.operation_index}] invalid: {invalid.reason}")
    if result.backup_path:
        click.echo(f"Backup: {result.backup_path}")
    for note in result.data_backup_recommended:
        click.echo(f"Data backup recommended: {note}")
    if result.error_message:
        click.echo(f"Error: {result.error_message}", err=True)


@click.group()
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging")
@click.pass_context
def cli(ctx, verbose):
    """SchemaShift - plan and apply schema migrations."""
    ctx.ensure_object(dict)
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


@cli.command("capture-baseline")
@click.option("--output", "-o", type=click.Path(), default="baseline.json",
              help="Where to write the baseline document")
@click.pass_context
def capture_baseline(ctx, output):
    """Capture the live schema as a baseline document."""

    async def run():
        async with _engine(ctx) as engine:
            snapshot = await engine.introspector.get_full_schema()
            database = getattr(engine.database, "config", None)
            name = database.database if database is not None else "unknown"
            return save_baseline(output, snapshot, name), snapshot

    try:
        path, snapshot = asyncio.run(run())
    except SchemaShiftError as e:
        _fail(e)
        ctx.exit(1)
    click.echo(f"Captured {len(snapshot.tables)} tables to {path}")
    for warning in snapshot.warnings:
        click.echo(f"Warning: {warning}")


@cli.command()
@click.argument("desired", type=click.Path(exists=True))
@click.option("--output", "-o", type=click.Path(), default="plan.json",
              help="Where to write the plan document")
@click.option("--sql-output", type=click.Path(), default=None,
              help="Also write the plan as a SQL script")
@click.pass_context
def plan(ctx, desired, output, sql_output):
    """Plan the migration from the live schema to DESIRED."""

    async def run():
        document = load_baseline(desired)
        async with _engine(ctx) as engine:
            migration_plan = await engine.planner.generate_migration_plan(document)
            return migration_plan, engine.executor.generator.generate_migration_sql(
                migration_plan.migrations
            )

    try:
        migration_plan, migration_sql = asyncio.run(run())
    except SchemaShiftError as e:
        _fail(e)
        ctx.exit(1)
    _print_plan(migration_plan)
    path = save_plan(output, migration_plan)
    click.echo(f"Plan saved to {path}")
    if sql_output:
        sql_path = save_plan_sql(sql_output, migration_plan, migration_sql)
        click.echo(f"SQL saved to {sql_path}")


@cli.command()
@click.argument("plan_file", type=click.Path(exists=True))
@click.option("--mode", type=click.Choice(MODES), default="execute", show_default=True)
@click.option("--force", is_flag=True, help="Apply blocking-risk operations")
@click.pass_context
def execute(ctx, plan_file, mode, force):
    """Validate, dry-run or execute a saved plan."""

    async def run():
        migration_plan = load_plan(plan_file)
        async with _engine(ctx) as engine:
            return await engine.executor.execute_migration_plan(
                migration_plan,
                validate_only=mode == "validate",
                dry_run=mode == "dry-run",
                force=force,
            )

    try:
        result = asyncio.run(run())
    except SchemaShiftError as e:
        _fail(e)
        ctx.exit(1)
    _print_result(result)
    ctx.exit(0 if result.ok else 1)


@cli.command()
@click.option("--limit", "-n", type=int, default=20, show_default=True)
@click.pass_context
def history(ctx, limit):
    """Show recent executions, newest first."""

    async def run():
        async with _engine(ctx) as engine:
            return await engine.executor.get_execution_history(limit)

    try:
        records = asyncio.run(run())
    except SchemaShiftError as e:
        _fail(e)
        ctx.exit(1)
    if not records:
        click.echo("No executions recorded")
    for record in records:
        duration = f"{record.duration_ms} ms" if record.duration_ms is not None else "-"
        click.echo(
            f"{record.execution_id}  {record.created_at.isoformat()}  "
            f"{record.mode.value:<9} {record.status.value:<17} {duration}"
        )
        if record.error_message:
            click.echo(f"    {record.error_message}")


if __name__ == "__main__":
    cli(obj={})
