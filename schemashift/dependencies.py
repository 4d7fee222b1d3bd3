"""FastAPI dependency injection."""

from typing import Annotated
from fastapi import Depends, Request

from schemashift.engine import MigrationEngine


async def get_engine(request: Request) -> MigrationEngine:
    """Get the MigrationEngine instance from app state."""
    return request.app.state.engine


EngineDep = Annotated[MigrationEngine, Depends(get_engine)]
