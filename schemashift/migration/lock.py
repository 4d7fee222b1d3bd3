"""Advisory lock serializing migration runs against one database."""

import logging
import time
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Optional

import asyncpg

from schemashift.config import LOCK_TABLE
from schemashift.errors import ConcurrencyError

logger = logging.getLogger(__name__)

CREATE_LOCK_TABLE = f"""
CREATE TABLE IF NOT EXISTS {LOCK_TABLE} (
    id INTEGER PRIMARY KEY CHECK (id = 1),
    holder TEXT,
    token BIGINT NOT NULL DEFAULT 0,
    acquired_at TIMESTAMPTZ
)
"""

SEED_LOCK_ROW = f"INSERT INTO {LOCK_TABLE} (id) VALUES (1) ON CONFLICT (id) DO NOTHING"

# Takes the marker when free or stale; the token only ever grows.
ACQUIRE_LOCK = f"""
UPDATE {LOCK_TABLE}
SET holder = $1, token = token + 1, acquired_at = now()
WHERE id = 1
  AND (holder IS NULL OR acquired_at < now() - make_interval(secs => $2))
RETURNING token
"""

RELEASE_LOCK = f"""
UPDATE {LOCK_TABLE}
SET holder = NULL, acquired_at = NULL
WHERE id = 1 AND holder = $1 AND token = $2
"""

CURRENT_HOLDER = f"SELECT holder FROM {LOCK_TABLE} WHERE id = 1"


class _LockBase:
    async def acquire(self, holder: str) -> int:
        raise NotImplementedError

    async def release(self, holder: str, token: int) -> bool:
        raise NotImplementedError

    @asynccontextmanager
    async def hold(self, holder: str) -> AsyncIterator[int]:
        """
        Hold the lock for the duration of the block.

        Raises:
            ConcurrencyError: If another run holds the lock
        """
        token = await self.acquire(holder)
        try:
            yield token
        finally:
            # An unreleased marker goes stale and is taken over
            try:
                released = await self.release(holder, token)
            except (asyncpg.PostgresError, asyncpg.exceptions.InterfaceError, OSError) as e:
                logger.warning("Could not release lock for %s: %s", holder, e)
            else:
                if not released:
                    logger.warning("Lock for %s was taken over before release", holder)


class MigrationLock(_LockBase):
    """A single-row marker in the target database with a fenced token.

    A second run fails immediately instead of waiting. A marker older than
    ``stale_after_seconds`` is treated as left behind by a crashed run and
    may be taken over; the old holder's release is then a no-op because its
    token no longer matches.
    """

    def __init__(self, database: Any, stale_after_seconds: float = 3600.0):
        self._db = database
        self.stale_after_seconds = stale_after_seconds

    async def ensure_schema(self) -> None:
        await self._db.execute(CREATE_LOCK_TABLE)
        await self._db.execute(SEED_LOCK_ROW)

    async def acquire(self, holder: str) -> int:
        token = await self._db.fetchval(ACQUIRE_LOCK, holder, float(self.stale_after_seconds))
        if token is None:
            current = await self._db.fetchval(CURRENT_HOLDER)
            raise ConcurrencyError(
                f"Another migration run is in progress ({current or 'unknown holder'})",
                details={"holder": current},
            )
        logger.debug("Lock acquired by %s with token %s", holder, token)
        return int(token)

    async def release(self, holder: str, token: int) -> bool:
        status = await self._db.execute(RELEASE_LOCK, holder, token)
        return status == "UPDATE 1"


class InMemoryMigrationLock(_LockBase):
    """Process-local lock with the same semantics, for tests and database-less use."""

    def __init__(self, stale_after_seconds: float = 3600.0):
        self.stale_after_seconds = stale_after_seconds
        self.holder: Optional[str] = None
        self.token = 0
        self._acquired_at = 0.0

    async def ensure_schema(self) -> None:
        return None

    async def acquire(self, holder: str) -> int:
        now = time.monotonic()
        if self.holder is not None and now - self._acquired_at < self.stale_after_seconds:
            raise ConcurrencyError(
                f"Another migration run is in progress ({self.holder})",
                details={"holder": self.holder},
            )
        self.holder = holder
        self.token += 1
        self._acquired_at = now
        return self.token

    async def release(self, holder: str, token: int) -> bool:
        if self.holder != holder or self.token != token:
            return False
        self.holder = None
        return True
