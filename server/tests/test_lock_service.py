import asyncio

import pytest

from reconciler.services.lock_service import LockService, LockTimeoutError, release_lock_name


def test_release_lock_name():
    assert release_lock_name("appcloud") == "lock:release:appcloud"


@pytest.mark.anyio
async def test_acquire_yields_sorted_unique_names():
    service = LockService()

    async with service.acquire(["b", "a", "b"]) as names:
        assert names == ["a", "b"]
        assert service.is_locked("a")
        assert service.is_locked("b")

    assert not service.is_locked("a")
    assert not service.is_locked("b")


@pytest.mark.anyio
async def test_second_holder_waits_for_the_first():
    service = LockService()
    order = []

    async def holder(label, delay):
        async with service.acquire(["lock:release:appcloud"]):
            order.append(f"{label}-in")
            await asyncio.sleep(delay)
            order.append(f"{label}-out")

    first = asyncio.create_task(holder("first", 0.05))
    await asyncio.sleep(0)
    await holder("second", 0)
    await first

    assert order == ["first-in", "first-out", "second-in", "second-out"]


@pytest.mark.anyio
async def test_timeout_raises_lock_timeout_error():
    service = LockService()

    async with service.acquire(["lock:release:appcloud"]):
        with pytest.raises(LockTimeoutError) as exc:
            async with service.acquire(["lock:release:appcloud"], timeout=0.05):
                pass

    assert exc.value.name == "lock:release:appcloud"
    assert not service.is_locked("lock:release:appcloud")


@pytest.mark.anyio
async def test_partial_acquisition_is_released_on_timeout():
    service = LockService()

    async with service.acquire(["b"]):
        with pytest.raises(LockTimeoutError):
            async with service.acquire(["a", "b"], timeout=0.05):
                pass
        assert not service.is_locked("a")


@pytest.mark.anyio
async def test_locks_are_released_when_the_block_raises():
    service = LockService()

    with pytest.raises(ValueError):
        async with service.acquire(["a"]):
            raise ValueError("boom")

    assert not service.is_locked("a")


def test_unknown_lock_is_not_locked():
    assert LockService().is_locked("missing") is False
