import asyncio
import threading
import time

import pytest

from reconciler.services import agent_task_service as task_module
from reconciler.services.agent_task_service import AgentTaskService, AgentTaskTimeoutError


@pytest.mark.anyio
async def test_run_blocking_starts_lazily_and_returns_result():
    service = AgentTaskService(max_workers=3)

    result = await service.run_blocking("vm-1", lambda a, b: a + b, 2, 3, description="add")

    assert result == 5
    metrics = service.get_metrics()
    assert metrics == {
        "started": True,
        "max_workers": 3,
        "inflight": 0,
        "completed": 1,
        "failed": 0,
    }
    await service.stop()
    assert service.get_metrics()["started"] is False


@pytest.mark.anyio
async def test_default_worker_count_comes_from_settings(monkeypatch):
    monkeypatch.setattr(task_module.settings, "max_threads", 5)
    service = AgentTaskService()

    await service.start()

    assert service.get_metrics()["max_workers"] == 5
    await service.stop()


@pytest.mark.anyio
async def test_exceptions_propagate_and_are_counted():
    service = AgentTaskService(max_workers=1)

    def explode():
        raise ValueError("bad payload")

    with pytest.raises(ValueError, match="bad payload"):
        await service.run_blocking("vm-1", explode, description="explode")

    assert service.get_metrics()["failed"] == 1
    await service.stop()


@pytest.mark.anyio
async def test_timeout_raises_agent_task_timeout_error():
    service = AgentTaskService(max_workers=1)

    with pytest.raises(AgentTaskTimeoutError) as exc:
        await service.run_blocking(
            "vm-slow", time.sleep, 0.5, description="sleep", timeout=0.1
        )

    assert "vm-slow" in str(exc.value)
    await service.stop()


@pytest.mark.anyio
async def test_concurrency_is_capped_at_max_workers():
    service = AgentTaskService(max_workers=2)
    lock = threading.Lock()
    counters = {"inflight": 0, "peak": 0}

    def work():
        with lock:
            counters["inflight"] += 1
            counters["peak"] = max(counters["peak"], counters["inflight"])
        time.sleep(0.05)
        with lock:
            counters["inflight"] -= 1

    await asyncio.gather(
        *(service.run_blocking(f"vm-{n}", work, description="work") for n in range(6))
    )

    assert counters["peak"] == 2
    assert service.get_metrics()["completed"] == 6
    await service.stop()
