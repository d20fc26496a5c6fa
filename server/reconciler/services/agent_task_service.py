"""Bounded worker pool for blocking agent calls.

Every blocking call (an agent round trip) runs in a worker thread while a
semaphore caps how many of them are in flight at once. Callers never wait on
each other beyond that cap and results come back in completion order.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Callable, Dict, Optional, TypeVar

from ..core.config import settings

logger = logging.getLogger(__name__)

T = TypeVar("T")


class AgentTaskTimeoutError(TimeoutError):
    """Raised when an agent task exceeds its allotted execution window."""


class AgentTaskService:
    """Fixed-size pool executing blocking agent calls."""

    def __init__(self, max_workers: Optional[int] = None) -> None:
        self._requested_workers = max_workers
        self._max_workers = max_workers or 0
        self._semaphore: Optional[asyncio.Semaphore] = None

        # Service state
        self._started = False
        self._start_lock = asyncio.Lock()

        # Metrics
        self._inflight = 0
        self._completed = 0
        self._failed = 0

    @property
    def started(self) -> bool:
        return self._started

    async def start(self) -> None:
        """Initialise the worker semaphore."""

        async with self._start_lock:
            if self._started:
                return

            configured = self._requested_workers or settings.max_threads
            self._max_workers = max(1, int(configured))
            self._semaphore = asyncio.Semaphore(self._max_workers)

            self._inflight = 0
            self._completed = 0
            self._failed = 0

            self._started = True
            logger.info("Agent task service started (max_workers=%d)", self._max_workers)

    async def stop(self) -> None:
        """Stop accepting work. In-flight calls finish on their own threads."""

        async with self._start_lock:
            if not self._started:
                return

            self._started = False
            self._semaphore = None

        logger.info("Agent task service stopped")

    async def run_blocking(
        self,
        target: str,
        func: Callable[..., T],
        *args: Any,
        description: str,
        timeout: Optional[float] = None,
        **kwargs: Any,
    ) -> T:
        """Run a blocking callable once a worker slot is free.

        Args:
            target: VM the call talks to, used for logging
            func: Blocking callable to execute
            *args: Positional arguments for func
            description: Human-readable description for logging
            timeout: Optional timeout in seconds
            **kwargs: Keyword arguments for func

        Returns:
            Result from func execution

        Raises:
            AgentTaskTimeoutError: If the call exceeds timeout
        """

        if not self._started:
            await self.start()

        if timeout is not None:
            timeout = max(0.1, float(timeout))

        semaphore = self._semaphore
        assert semaphore is not None

        async with semaphore:
            self._inflight += 1
            try:
                result = await self._execute(target, func, args, kwargs, description, timeout)
            except Exception:
                self._failed += 1
                raise
            else:
                self._completed += 1
                return result
            finally:
                self._inflight -= 1

    async def _execute(
        self,
        target: str,
        func: Callable[..., T],
        args: tuple,
        kwargs: Dict[str, Any],
        description: str,
        timeout: Optional[float],
    ) -> T:
        """Execute a call in a worker thread with timeout handling."""

        logger.debug("Starting agent task on %s: %s", target, description)

        run_coro = asyncio.to_thread(func, *args, **kwargs)
        try:
            if timeout is not None:
                result = await asyncio.wait_for(run_coro, timeout=timeout)
            else:
                result = await run_coro
        except asyncio.TimeoutError as exc:
            message = (
                f"Agent task '{description}' on {target} timed out after {timeout:.1f}s"
            )
            logger.warning(message)
            raise AgentTaskTimeoutError(message) from exc
        except Exception as exc:
            logger.debug(
                "Agent task '%s' on %s raised %s", description, target, type(exc).__name__
            )
            raise
        else:
            logger.debug("Agent task on %s completed: %s", target, description)
            return result

    def get_metrics(self) -> Dict[str, Any]:
        """Return a snapshot of the service state for diagnostics."""

        return {
            "started": self._started,
            "max_workers": self._max_workers,
            "inflight": self._inflight,
            "completed": self._completed,
            "failed": self._failed,
        }


agent_task_service = AgentTaskService()

__all__ = [
    "agent_task_service",
    "AgentTaskService",
    "AgentTaskTimeoutError",
]
