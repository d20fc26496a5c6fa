"""Named in-process locks shared by deployment preparation steps."""
from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Dict, Iterable, List, Optional

logger = logging.getLogger(__name__)


class LockTimeoutError(TimeoutError):
    """Raised when a named lock cannot be acquired in time."""

    def __init__(self, name: str, timeout: float):
        super().__init__(f"Failed to acquire lock for {name} after {timeout:.1f}s")
        self.name = name
        self.timeout = timeout


def release_lock_name(release_name: str) -> str:
    return f"lock:release:{release_name}"


class LockService:
    """Scoped mutual exclusion over named resources."""

    def __init__(self) -> None:
        self._locks: Dict[str, asyncio.Lock] = {}

    def _lock_for(self, name: str) -> asyncio.Lock:
        if name not in self._locks:
            self._locks[name] = asyncio.Lock()
        return self._locks[name]

    def is_locked(self, name: str) -> bool:
        lock = self._locks.get(name)
        return bool(lock and lock.locked())

    @asynccontextmanager
    async def acquire(
        self, names: Iterable[str], timeout: Optional[float] = None
    ) -> AsyncIterator[List[str]]:
        """Hold every named lock for the duration of the block.

        Locks are taken in sorted order so overlapping callers cannot deadlock.
        """

        ordered = sorted(set(names))
        held: List[asyncio.Lock] = []
        try:
            for name in ordered:
                lock = self._lock_for(name)
                try:
                    if timeout is None:
                        await lock.acquire()
                    else:
                        await asyncio.wait_for(lock.acquire(), timeout=timeout)
                except asyncio.TimeoutError as exc:
                    logger.warning("Timed out waiting for %s", name)
                    raise LockTimeoutError(name, timeout) from exc
                held.append(lock)
                logger.debug("Acquired %s", name)
            yield ordered
        finally:
            for lock in reversed(held):
                lock.release()


lock_service = LockService()

__all__ = ["LockService", "LockTimeoutError", "lock_service", "release_lock_name"]
