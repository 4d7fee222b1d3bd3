"""FastAPI application factory."""

from contextlib import asynccontextmanager
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from pg_access import PostgresConfig
from schemashift.config import AppConfig, EngineConfig
from schemashift.engine import MigrationEngine
from schemashift.errors import (
    BackupError,
    BlockingRiskError,
    ConcurrencyError,
    IntrospectionError,
    PlanningError,
    PlanValidationError,
    SchemaShiftError,
)

# First match wins, so subclasses come before their bases.
ERROR_STATUS: list[tuple[type[SchemaShiftError], int]] = [
    (ConcurrencyError, 409),
    (PlanningError, 422),
    (BlockingRiskError, 422),
    (PlanValidationError, 422),
    (IntrospectionError, 503),
    (BackupError, 500),
]


def status_for(error: SchemaShiftError) -> int:
    for error_type, status in ERROR_STATUS:
        if isinstance(error, error_type):
            return status
    return 500


def create_app(
    app_config: AppConfig | None = None,
    postgres_config: PostgresConfig | None = None,
    engine_config: EngineConfig | None = None,
    engine: MigrationEngine | None = None,
) -> FastAPI:
    """Create and configure the FastAPI application.

    Pass ``engine`` to serve an already running engine; otherwise one is
    built from ``postgres_config`` and started with the app.
    """

    app_config = app_config or AppConfig()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        # Startup: connect the engine
        owned = None
        if engine is not None:
            app.state.engine = engine
        elif postgres_config:
            owned = MigrationEngine.from_config(postgres_config, engine_config)
            await owned.start()
            app.state.engine = owned
        yield
        # Shutdown: disconnect what we started
        if owned is not None:
            await owned.stop()

    app = FastAPI(
        title=app_config.title,
        lifespan=lifespan,
        debug=app_config.debug,
    )
    app.state.app_config = app_config
    if engine is not None:
        app.state.engine = engine

    @app.exception_handler(SchemaShiftError)
    async def handle_engine_error(request: Request, exc: SchemaShiftError):
        return JSONResponse(status_code=status_for(exc), content=exc.to_dict())

    @app.get("/health")
    async def health(request: Request):
        current = getattr(request.app.state, "engine", None)
        if current is None:
            return JSONResponse(
                status_code=503, content={"ok": False, "details": {"engine": "not configured"}}
            )
        result = await current.database.health()
        body = {
            "ok": result.ok,
            "details": dict(result.details),
            "serverVersion": result.server_version,
        }
        return JSONResponse(status_code=200 if result.ok else 503, content=body)

    # Register routes
    from schemashift.routes import router as migration_router

    app.include_router(migration_router)

    return app
