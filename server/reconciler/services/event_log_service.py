"""Stage/task event log for deployment preparation."""
import logging
import uuid
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Iterator, List, Optional

from ..core.models import Event, EventState

logger = logging.getLogger(__name__)


class EventLog:
    """Records the progress of named stages and the tasks within them."""

    def __init__(self):
        self.events: List[Event] = []
        self._stage: Optional[str] = None
        self._total: Optional[int] = None
        self._index = 0

    @property
    def current_stage(self) -> Optional[str]:
        return self._stage

    def begin_stage(self, stage: str, total: Optional[int] = None) -> None:
        """Start a new stage; subsequent tasks are numbered from 1."""
        self._stage = stage
        self._total = total
        self._index = 0
        logger.info("Started stage '%s'%s", stage, f" ({total} tasks)" if total else "")

    @contextmanager
    def track(self, task: str) -> Iterator[None]:
        """Record a task as started, then finished or failed."""
        if self._stage is None:
            raise RuntimeError("track() called before begin_stage()")

        self._index += 1
        index = self._index
        self._record(task, index, EventState.STARTED)
        try:
            yield
        except Exception as exc:
            self._record(task, index, EventState.FAILED, error=str(exc))
            logger.error("Stage '%s' task '%s' failed: %s", self._stage, task, exc)
            raise
        self._record(task, index, EventState.FINISHED)

    def events_for(self, stage: str) -> List[Event]:
        return [event for event in self.events if event.stage == stage]

    def _record(
        self, task: str, index: int, state: EventState, error: Optional[str] = None
    ) -> Event:
        event = Event(
            id=str(uuid.uuid4()),
            stage=self._stage,
            task=task,
            index=index,
            total=self._total,
            state=state,
            created_at=datetime.now(timezone.utc),
            error=error,
        )
        self.events.append(event)
        logger.debug("Event %s: %s/%s %s", event.id, event.stage, task, state.value)
        return event
