from __future__ import annotations

import asyncio
import logging
from dataclasses import asdict, dataclass
from typing import Awaitable, Callable, Literal, Optional

from .image_store import ImageStore, StoredFile

logger = logging.getLogger("radarproxy.janitor")

SweepKind = Literal["ttl", "size"]
BYTES_PER_MB = 1024 * 1024


@dataclass(slots=True)
class SweepReport:
    kind: SweepKind
    scanned: int = 0
    deleted: int = 0
    failed: int = 0
    freed_bytes: int = 0
    total_bytes_before: int = 0
    total_bytes_after: int = 0

    def to_payload(self) -> dict[str, object]:
        return asdict(self)


class CacheEvictor:
    """Periodic maintenance for the image cache.

    The TTL sweep removes images whose storage age reached the disk TTL. The
    size sweep runs when the cache outgrows its budget and deletes the oldest
    images (by mtime) until usage falls to ``target_ratio`` of the budget.
    A failing delete is logged and skipped; the next run picks it up again.
    """

    def __init__(
        self,
        store: ImageStore,
        *,
        ttl_seconds: float,
        max_bytes: int,
        target_ratio: float = 0.8,
        ttl_interval_seconds: float = 3600.0,
        size_interval_seconds: float = 600.0,
        clock: Optional[Callable[[], float]] = None,
    ) -> None:
        self._store = store
        self._ttl = float(ttl_seconds)
        self._max_bytes = max(1, int(max_bytes))
        self._target_ratio = min(max(float(target_ratio), 0.0), 1.0)
        self._ttl_interval = max(float(ttl_interval_seconds), 0.01)
        self._size_interval = max(float(size_interval_seconds), 0.01)
        self._clock = clock or store.clock
        self._stop: Optional[asyncio.Event] = None
        self._tasks: list[asyncio.Task[None]] = []
        self._size_check: Optional[asyncio.Task[None]] = None

    @property
    def max_bytes(self) -> int:
        return self._max_bytes

    @property
    def running(self) -> bool:
        return any(not task.done() for task in self._tasks)

    async def sweep_expired(self) -> SweepReport:
        return await asyncio.to_thread(self._sweep_expired)

    async def sweep_oversize(self) -> SweepReport:
        return await asyncio.to_thread(self._sweep_oversize)

    async def sweep(self, kind: SweepKind) -> SweepReport:
        if kind == "ttl":
            return await self.sweep_expired()
        return await self.sweep_oversize()

    def request_size_check(self) -> None:
        """Schedule a size sweep without waiting for it; repeated calls coalesce."""
        if self._size_check is not None and not self._size_check.done():
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            return
        self._size_check = loop.create_task(self._guarded("size", self.sweep_oversize), name="cache-size-check")

    async def stats(self) -> dict[str, object]:
        usage = await self._store.usage()
        return {
            "image_count": usage.image_count,
            "total_bytes": usage.total_bytes,
            "total_size_mb": round(usage.total_bytes / BYTES_PER_MB, 2),
            "max_size_mb": round(self._max_bytes / BYTES_PER_MB, 2),
            "utilization": round(usage.total_bytes / self._max_bytes * 100),
        }

    async def start(self) -> None:
        if self.running:
            return
        self._stop = asyncio.Event()
        self._tasks = [
            asyncio.create_task(
                self._periodic("ttl", self._ttl_interval, self.sweep_expired, self._stop),
                name="cache-ttl-sweep",
            ),
            asyncio.create_task(
                self._periodic("size", self._size_interval, self.sweep_oversize, self._stop),
                name="cache-size-sweep",
            ),
        ]
        logger.info(
            "Cache janitor started (ttl sweep every %.0fs, size sweep every %.0fs)",
            self._ttl_interval,
            self._size_interval,
        )

    async def stop(self) -> None:
        if self._stop is not None:
            self._stop.set()
        tasks = list(self._tasks)
        if self._size_check is not None:
            tasks.append(self._size_check)
        self._tasks = []
        self._stop = None
        self._size_check = None
        for task in tasks:
            try:
                await task
            except asyncio.CancelledError:
                pass
            except Exception as exc:
                logger.warning("Cache janitor task %s ended with error: %s", task.get_name(), exc)
        if tasks:
            logger.info("Cache janitor stopped")

    async def _periodic(
        self,
        kind: SweepKind,
        interval: float,
        sweep: Callable[[], Awaitable[SweepReport]],
        stop_event: asyncio.Event,
    ) -> None:
        while not stop_event.is_set():
            try:
                await asyncio.wait_for(stop_event.wait(), timeout=interval)
            except asyncio.TimeoutError:
                pass
            if stop_event.is_set():
                break
            await self._guarded(kind, sweep)
        logger.debug("Cache %s sweep loop exiting", kind)

    async def _guarded(self, kind: SweepKind, sweep: Callable[[], Awaitable[SweepReport]]) -> None:
        try:
            await sweep()
        except Exception as exc:
            logger.warning("Cache %s sweep failed: %s", kind, exc)

    def _sweep_expired(self) -> SweepReport:
        entries = self._store.entries()
        now = self._clock()
        report = SweepReport(kind="ttl", scanned=len(entries))
        report.total_bytes_before = sum(item.size for item in entries)
        remaining = report.total_bytes_before
        for entry in entries:
            if now - entry.mtime < self._ttl:
                continue
            if self._delete(entry, report):
                remaining -= entry.size
        report.total_bytes_after = remaining
        if report.deleted:
            logger.info(
                "Cleaned up %d expired cache files (freed %dMB)",
                report.deleted,
                round(report.freed_bytes / BYTES_PER_MB),
            )
        return report

    def _sweep_oversize(self) -> SweepReport:
        entries = self._store.entries()
        report = SweepReport(kind="size", scanned=len(entries))
        total = sum(item.size for item in entries)
        report.total_bytes_before = total
        report.total_bytes_after = total
        if total <= self._max_bytes:
            return report

        logger.warning(
            "Cache size %dMB exceeds limit %dMB, cleaning up...",
            round(total / BYTES_PER_MB),
            round(self._max_bytes / BYTES_PER_MB),
        )
        target = self._max_bytes * self._target_ratio
        for entry in sorted(entries, key=lambda item: (item.mtime, item.path.name)):
            if total <= target:
                break
            if self._delete(entry, report):
                total -= entry.size
        report.total_bytes_after = total
        logger.info(
            "Cleaned up %d old files, freed %dMB",
            report.deleted,
            round(report.freed_bytes / BYTES_PER_MB),
        )
        return report

    def _delete(self, entry: StoredFile, report: SweepReport) -> bool:
        try:
            self._store.remove(entry.path)
        except OSError as exc:
            report.failed += 1
            logger.warning("Failed to delete cached file %s: %s", entry.path.name, exc)
            return False
        report.deleted += 1
        report.freed_bytes += entry.size
        return True


__all__ = ["CacheEvictor", "SweepKind", "SweepReport"]
