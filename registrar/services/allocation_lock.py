"""
Serialization of allocation runs.

Two admins triggering a bulk allocation at the same time would otherwise race
on section occupancy. Runs are serialized per key:

- inside one process with an asyncio.Lock
- across processes, on PostgreSQL, with a session-level advisory lock held on
  a dedicated connection for the duration of the run (the run itself commits
  many times, so a transaction-scoped lock would not cover it)
"""
import asyncio
import hashlib
import logging
import weakref
from contextlib import asynccontextmanager
from typing import AsyncIterator, Dict

from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession

logger = logging.getLogger(__name__)

SECTIONS_KEY = "sections"

_locks: "weakref.WeakKeyDictionary[asyncio.AbstractEventLoop, Dict[str, asyncio.Lock]]" = (
    weakref.WeakKeyDictionary()
)


def school_year_key(school_year_id: int) -> str:
    return f"school_year:{school_year_id}"


def advisory_key(key: str) -> int:
    """Stable signed 64-bit key for pg_advisory_lock."""
    digest = hashlib.sha256(key.encode("utf-8")).digest()
    return int.from_bytes(digest[:8], "big", signed=True)


def _process_lock(key: str) -> asyncio.Lock:
    loop = asyncio.get_running_loop()
    per_loop = _locks.get(loop)
    if per_loop is None:
        per_loop = {}
        _locks[loop] = per_loop
    lock = per_loop.get(key)
    if lock is None:
        lock = asyncio.Lock()
        per_loop[key] = lock
    return lock


def _engine_of(db: AsyncSession):
    bind = db.bind
    if bind is None:
        return None
    if isinstance(bind, AsyncEngine):
        return bind
    return getattr(bind, "engine", None)


@asynccontextmanager
async def allocation_lock(db: AsyncSession, key: str) -> AsyncIterator[None]:
    """Hold the allocation lock for ``key`` until the block exits."""
    lock = _process_lock(key)
    if lock.locked():
        logger.info(f"[LOCK] waiting for {key}")

    async with lock:
        engine = _engine_of(db)
        conn = None
        if engine is not None and engine.dialect.name == "postgresql":
            conn = await engine.connect()
            await conn.execute(select(func.pg_advisory_lock(advisory_key(key))))
        logger.debug(f"[LOCK] acquired {key}")
        try:
            yield
        finally:
            if conn is not None:
                try:
                    await conn.execute(select(func.pg_advisory_unlock(advisory_key(key))))
                finally:
                    await conn.close()
            logger.debug(f"[LOCK] released {key}")
