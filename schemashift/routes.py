"""FastAPI routes for the migration admin API."""

from typing import Any, Optional
from fastapi import APIRouter, Body, HTTPException, Query
from pydantic import BaseModel

from schemashift.dependencies import EngineDep
from schemashift.migration.models import MigrationPlan

router = APIRouter(prefix="/migrations", tags=["migrations"])


class PlanRun(BaseModel):
    """Body of the validate, dry-run and execute endpoints."""

    plan: MigrationPlan
    force: bool = False


def _dump(model: BaseModel) -> dict[str, Any]:
    return model.model_dump(by_alias=True, mode="json")


@router.get("/schema")
async def get_schema(engine: EngineDep):
    """Snapshot of the live schema."""
    snapshot = await engine.introspector.get_full_schema()
    return snapshot.to_document()


@router.get("/schema/{table_name}")
async def get_table_schema(table_name: str, engine: EngineDep):
    """Structural detail for one table."""
    table_schema = await engine.introspector.get_table_schema(table_name)
    if table_schema is None:
        raise HTTPException(status_code=404, detail=f"Table {table_name} not found")
    return _dump(table_schema)


@router.get("/size")
async def get_database_size(engine: EngineDep):
    size = await engine.introspector.get_database_size()
    return _dump(size)


@router.get("/create-statements")
async def get_create_statements(
    engine: EngineDep,
    tables: Optional[list[str]] = Query(default=None),
):
    """Reconstructed definitions for the given tables, or for every table."""
    if not tables:
        snapshot = await engine.introspector.get_full_schema()
        tables = [t.name for t in snapshot.tables]
    statements = {}
    for table in sorted(set(tables)):
        statements[table] = await engine.introspector.get_create_table_statement(table)
    return statements


@router.post("/plan")
async def create_plan(engine: EngineDep, desired: dict[str, Any] = Body(...)):
    """Plan the migration from the live schema to the posted snapshot document."""
    plan = await engine.planner.generate_migration_plan(desired)
    return plan.to_document()


@router.post("/validate")
async def validate_plan(run: PlanRun, engine: EngineDep):
    result = await engine.executor.execute_migration_plan(run.plan, validate_only=True)
    return _dump(result)


@router.post("/dry-run")
async def dry_run_plan(run: PlanRun, engine: EngineDep):
    result = await engine.executor.execute_migration_plan(run.plan, dry_run=True)
    return _dump(result)


@router.post("/execute")
async def execute_plan(run: PlanRun, engine: EngineDep):
    """Apply a plan. Partial failures come back as a result, not an error."""
    result = await engine.executor.execute_migration_plan(run.plan, force=run.force)
    return _dump(result)


@router.get("/history")
async def get_history(engine: EngineDep, limit: Optional[int] = Query(default=None, ge=1)):
    records = await engine.executor.get_execution_history(limit)
    return [_dump(r) for r in records]


@router.get("/history/{execution_id}")
async def get_execution(execution_id: str, engine: EngineDep):
    record = await engine.executor.get_execution(execution_id)
    if record is None:
        raise HTTPException(status_code=404, detail=f"Execution {execution_id} not found")
    return _dump(record)
