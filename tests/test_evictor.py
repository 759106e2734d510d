import asyncio
import os
from pathlib import Path

import pytest

from conftest import FakeClock, StubFetcher
from services.evictor import CacheEvictor
from services.image_store import ImageStore
from services.radar_keys import CacheKey

pytestmark = pytest.mark.anyio

DAY = 24 * 3600


def _drop(store: ImageStore, name: str, size: int, mtime: float) -> Path:
    store.cache_dir.mkdir(parents=True, exist_ok=True)
    path = store.cache_dir / name
    path.write_bytes(b"x" * size)
    os.utime(path, (mtime, mtime))
    return path


async def test_ttl_sweep_removes_expired_and_next_get_is_remote(
    store: ImageStore, fetcher: StubFetcher, clock: FakeClock
) -> None:
    key = CacheKey.parse("IDR023", "202410220000")
    expired = _drop(store, key.cache_filename, 10, clock() - DAY)
    kept = _drop(store, "IDR713_202410230000.png", 10, clock() - DAY + 60)
    evictor = CacheEvictor(store, ttl_seconds=DAY, max_bytes=10_000)

    report = await evictor.sweep_expired()

    assert report.kind == "ttl"
    assert report.scanned == 2
    assert report.deleted == 1
    assert report.freed_bytes == 10
    assert not expired.exists()
    assert kept.exists()

    fetcher.publish(key.remote_filename)
    result = await store.get(key)
    assert result.from_cache is False


async def test_size_sweep_deletes_oldest_until_target(store: ImageStore, clock: FakeClock) -> None:
    for index in range(10):
        _drop(store, f"IDR023_2024102300{index:02d}.png", 100, clock() - 1000 + index)
    evictor = CacheEvictor(store, ttl_seconds=DAY, max_bytes=900, target_ratio=0.8)

    report = await evictor.sweep_oversize()

    remaining = sorted(path.name for path in store.cache_dir.iterdir())
    assert report.total_bytes_before == 1000
    assert report.total_bytes_after == 700
    assert report.total_bytes_after <= 0.8 * 900
    assert report.deleted == 3
    assert remaining == [f"IDR023_2024102300{index:02d}.png" for index in range(3, 10)]


async def test_size_sweep_is_noop_under_budget(store: ImageStore, clock: FakeClock) -> None:
    _drop(store, "IDR023_202410230000.png", 100, clock())
    evictor = CacheEvictor(store, ttl_seconds=DAY, max_bytes=1000)

    report = await evictor.sweep("size")

    assert report.deleted == 0
    assert report.total_bytes_after == 100


async def test_failed_delete_is_skipped(
    store: ImageStore, clock: FakeClock, monkeypatch: pytest.MonkeyPatch
) -> None:
    stuck = _drop(store, "IDR023_202410220000.png", 10, clock() - 2 * DAY)
    gone = _drop(store, "IDR713_202410220000.png", 10, clock() - 2 * DAY)
    original_remove = store.remove

    def _remove(path: Path) -> None:
        if path == stuck:
            raise PermissionError("read-only")
        original_remove(path)

    monkeypatch.setattr(store, "remove", _remove)
    evictor = CacheEvictor(store, ttl_seconds=DAY, max_bytes=10_000)

    report = await evictor.sweep("ttl")

    assert report.failed == 1
    assert report.deleted == 1
    assert stuck.exists()
    assert not gone.exists()


async def test_stats_report_usage_against_budget(store: ImageStore, clock: FakeClock) -> None:
    _drop(store, "IDR023_202410230000.png", 512 * 1024, clock())
    evictor = CacheEvictor(store, ttl_seconds=DAY, max_bytes=1024 * 1024)

    stats = await evictor.stats()

    assert stats == {
        "image_count": 1,
        "total_bytes": 512 * 1024,
        "total_size_mb": 0.5,
        "max_size_mb": 1.0,
        "utilization": 50,
    }


async def test_request_size_check_runs_in_background(store: ImageStore, clock: FakeClock) -> None:
    for index in range(4):
        _drop(store, f"IDR023_2024102300{index:02d}.png", 100, clock() - 100 + index)
    evictor = CacheEvictor(store, ttl_seconds=DAY, max_bytes=300, target_ratio=0.5)

    evictor.request_size_check()
    evictor.request_size_check()
    await evictor.stop()

    assert sorted(path.name for path in store.cache_dir.iterdir()) == ["IDR023_202410230003.png"]


async def test_periodic_sweeps_start_and_stop(store: ImageStore, clock: FakeClock) -> None:
    expired = _drop(store, "IDR023_202410220000.png", 10, clock() - 2 * DAY)
    evictor = CacheEvictor(
        store,
        ttl_seconds=DAY,
        max_bytes=10_000,
        ttl_interval_seconds=0.02,
        size_interval_seconds=0.02,
    )

    await evictor.start()
    assert evictor.running is True
    for _ in range(100):
        if not expired.exists():
            break
        await asyncio.sleep(0.02)
    await evictor.stop()

    assert evictor.running is False
    assert not expired.exists()
