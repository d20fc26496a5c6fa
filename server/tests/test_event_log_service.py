import pytest

from reconciler.core.models import EventState
from reconciler.services.event_log_service import EventLog


def test_track_records_started_and_finished():
    log = EventLog()
    log.begin_stage("Binding links", total=2)

    with log.track("web"):
        pass
    with log.track("db"):
        pass

    assert [(event.task, event.index, event.state) for event in log.events] == [
        ("web", 1, EventState.STARTED),
        ("web", 1, EventState.FINISHED),
        ("db", 2, EventState.STARTED),
        ("db", 2, EventState.FINISHED),
    ]
    assert all(event.total == 2 for event in log.events)
    assert all(event.stage == "Binding links" for event in log.events)


def test_failed_task_is_recorded_and_reraised():
    log = EventLog()
    log.begin_stage("Binding links")

    with pytest.raises(ValueError, match="missing provider"):
        with log.track("web"):
            raise ValueError("missing provider")

    started, failed = log.events
    assert started.state is EventState.STARTED
    assert failed.state is EventState.FAILED
    assert failed.error == "missing provider"


def test_track_requires_a_stage():
    log = EventLog()

    with pytest.raises(RuntimeError):
        with log.track("web"):
            pass

    assert log.events == []


def test_new_stage_restarts_numbering():
    log = EventLog()
    log.begin_stage("one")
    with log.track("a"):
        pass
    log.begin_stage("two")
    with log.track("b"):
        pass

    assert log.current_stage == "two"
    assert [event.index for event in log.events_for("two")] == [1, 1]
    assert [event.task for event in log.events_for("one")] == ["a", "a"]
