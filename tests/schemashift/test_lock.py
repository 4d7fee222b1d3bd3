"""Tests for the migration lock."""

import logging
from unittest.mock import AsyncMock

import asyncpg
import pytest

from schemashift.errors import ConcurrencyError
from schemashift.migration.lock import (
    ACQUIRE_LOCK,
    RELEASE_LOCK,
    InMemoryMigrationLock,
    MigrationLock,
)


async def test_second_holder_is_rejected():
    lock = InMemoryMigrationLock()
    await lock.acquire("run-1")

    with pytest.raises(ConcurrencyError) as exc_info:
        await lock.acquire("run-2")

    assert exc_info.value.details == {"holder": "run-1"}


async def test_hold_releases_on_error():
    lock = InMemoryMigrationLock()

    with pytest.raises(RuntimeError):
        async with lock.hold("run-1"):
            raise RuntimeError("boom")

    assert lock.holder is None
    assert await lock.acquire("run-2") == 2


async def test_stale_holder_is_taken_over():
    lock = InMemoryMigrationLock(stale_after_seconds=0)
    first = await lock.acquire("crashed")

    second = await lock.acquire("run-2")

    assert second > first
    assert lock.holder == "run-2"
    # The crashed run's late release must not free the new holder
    assert not await lock.release("crashed", first)
    assert lock.holder == "run-2"


async def test_database_lock_acquire_and_release():
    db = AsyncMock()
    db.fetchval.return_value = 7
    db.execute.return_value = "UPDATE 1"
    lock = MigrationLock(db, stale_after_seconds=60)

    async with lock.hold("run-1") as token:
        assert token == 7

    db.fetchval.assert_awaited_once_with(ACQUIRE_LOCK, "run-1", 60.0)
    db.execute.assert_awaited_once_with(RELEASE_LOCK, "run-1", 7)


async def test_database_lock_busy():
    db = AsyncMock()
    db.fetchval.side_effect = [None, "mig_other"]
    lock = MigrationLock(db)

    with pytest.raises(ConcurrencyError) as exc_info:
        await lock.acquire("run-1")

    assert exc_info.value.details == {"holder": "mig_other"}
    db.execute.assert_not_awaited()


async def test_database_lock_lost_release():
    db = AsyncMock()
    db.execute.return_value = "UPDATE 0"
    lock = MigrationLock(db)

    assert not await lock.release("run-1", 3)


async def test_failed_release_does_not_fail_the_block(caplog):
    db = AsyncMock()
    db.fetchval.return_value = 4
    db.execute.side_effect = asyncpg.exceptions.InterfaceError("connection is closed")
    lock = MigrationLock(db)

    with caplog.at_level(logging.WARNING, logger="schemashift.migration.lock"):
        async with lock.hold("run-1") as token:
            assert token == 4

    assert "Could not release lock for run-1" in caplog.text


async def test_failed_release_keeps_the_original_error():
    db = AsyncMock()
    db.fetchval.return_value = 4
    db.execute.side_effect = OSError("connection reset")
    lock = MigrationLock(db)

    with pytest.raises(RuntimeError, match="boom"):
        async with lock.hold("run-1"):
            raise RuntimeError("boom")
