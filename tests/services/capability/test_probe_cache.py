import asyncio
from unittest.mock import AsyncMock

import pytest

from src.services.capability.probe_cache import CapabilityProbeCache


def make_cache(probe, clock, freshness: float = 300.0, timeout: float = 1.0) -> CapabilityProbeCache:
    return CapabilityProbeCache(
        probe, freshness_seconds=freshness, probe_timeout=timeout, name="test", clock=clock
    )


@pytest.mark.asyncio
async def test_probe_runs_at_most_once_within_window(clock) -> None:
    probe = AsyncMock(return_value=True)
    cache = make_cache(probe, clock)

    assert await cache.is_available() is True
    clock.advance(299)
    assert await cache.is_available() is True

    assert probe.await_count == 1


@pytest.mark.asyncio
async def test_probe_reruns_after_window(clock) -> None:
    probe = AsyncMock(side_effect=[True, False])
    cache = make_cache(probe, clock)

    assert await cache.is_available() is True
    clock.advance(300)
    assert await cache.is_available() is False

    assert probe.await_count == 2
    assert cache.record is not None
    assert cache.record.available is False
    assert cache.record.checked_at == clock.now


@pytest.mark.asyncio
async def test_probe_failure_means_unavailable(clock) -> None:
    probe = AsyncMock(side_effect=OSError("drawio: command not found"))
    cache = make_cache(probe, clock)

    assert await cache.is_available() is False
    # 失败结果同样被缓存
    assert await cache.is_available() is False
    assert probe.await_count == 1


@pytest.mark.asyncio
async def test_probe_timeout_means_unavailable(clock) -> None:
    async def hanging_probe() -> bool:
        await asyncio.sleep(10)
        return True

    cache = make_cache(hanging_probe, clock, timeout=0.05)
    assert await cache.is_available() is False
    assert cache.record is not None


@pytest.mark.asyncio
async def test_invalidate_forces_new_probe(clock) -> None:
    probe = AsyncMock(return_value=True)
    cache = make_cache(probe, clock)

    await cache.is_available()
    cache.invalidate()
    assert cache.record is None
    assert cache.is_fresh() is False

    await cache.is_available()
    assert probe.await_count == 2
