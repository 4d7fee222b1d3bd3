"""Health check types."""

from dataclasses import dataclass
from typing import Any, Mapping, Optional


@dataclass(frozen=True)
class Health:
    """Connection health as reported by ``Database.health()``."""

    ok: bool
    details: Mapping[str, Any]
    server_version: Optional[str] = None
