"""Disk cache for radar images keyed by radar id, timestamp and resolution.

Freshness is decided from two ages computed at read time:

* content age: now minus the time encoded in the image timestamp
* storage age: now minus the cached file's modification time

Images older than the current threshold never change at the origin, so one
download per key is enough until the disk TTL expires. Current images are
re-downloaded once their cached copy is older than the refresh window.
Storage age comes from the file mtime only, so files dropped into the cache
directory by hand are aged and evicted like any other.
"""

from __future__ import annotations

import asyncio
import logging
import os
import time
from dataclasses import dataclass
from datetime import tzinfo
from functools import partial
from pathlib import Path
from typing import Callable, Optional, Protocol
from uuid import uuid4

from .radar_keys import CacheKey

logger = logging.getLogger("radarproxy.images")

IMAGE_SUFFIX = ".png"


class ImageDownloader(Protocol):
    def resolve(self, name: str) -> str:
        ...

    async def download(self, path: str) -> bytes:
        ...


@dataclass(frozen=True, slots=True)
class ImageResult:
    key: CacheKey
    data: bytes
    from_cache: bool
    content_age: int
    storage_age: int

    @property
    def served_from(self) -> str:
        return "cache" if self.from_cache else "remote"


@dataclass(frozen=True, slots=True)
class StoredFile:
    path: Path
    size: int
    mtime: float


@dataclass(frozen=True, slots=True)
class CacheUsage:
    image_count: int
    total_bytes: int


class ImageStore:
    def __init__(
        self,
        cache_dir: Path | str,
        downloader: ImageDownloader,
        *,
        source_tz: tzinfo,
        disk_ttl_seconds: float = 24 * 3600.0,
        current_threshold_seconds: float = 1800.0,
        current_refresh_seconds: float = 600.0,
        clock: Callable[[], float] = time.time,
        on_stored: Optional[Callable[[], None]] = None,
    ) -> None:
        self._cache_dir = Path(cache_dir)
        self._downloader = downloader
        self._source_tz = source_tz
        self._disk_ttl = float(disk_ttl_seconds)
        self._current_threshold = float(current_threshold_seconds)
        self._current_refresh = float(current_refresh_seconds)
        self._clock = clock
        self._on_stored = on_stored
        self._inflight: dict[CacheKey, asyncio.Task[bytes]] = {}

    @property
    def cache_dir(self) -> Path:
        return self._cache_dir

    @property
    def clock(self) -> Callable[[], float]:
        return self._clock

    def set_on_stored(self, callback: Optional[Callable[[], None]]) -> None:
        self._on_stored = callback

    def path_for(self, key: CacheKey) -> Path:
        return self._cache_dir / key.cache_filename

    async def ensure_dir(self) -> None:
        await asyncio.to_thread(self._cache_dir.mkdir, parents=True, exist_ok=True)
        logger.info("Cache directory ready: %s", self._cache_dir)

    async def get(self, key: CacheKey) -> ImageResult:
        now = self._clock()
        content_age = now - key.content_time(self._source_tz).timestamp()
        is_current = content_age < self._current_threshold

        cached = await asyncio.to_thread(self._read_if_usable, key, now, content_age, is_current)
        if cached is not None:
            data, storage_age = cached
            return ImageResult(
                key=key,
                data=data,
                from_cache=True,
                content_age=int(content_age),
                storage_age=int(storage_age),
            )

        logger.info("Downloading radar image: %s (timestamp is %ds old)", key, int(content_age))
        data = await self._download_shared(key)
        return ImageResult(key=key, data=data, from_cache=False, content_age=int(content_age), storage_age=0)

    def entries(self) -> list[StoredFile]:
        """Snapshot of the cached images; files vanishing mid-scan are skipped."""
        if not self._cache_dir.exists():
            return []
        found: list[StoredFile] = []
        for path in self._cache_dir.iterdir():
            if path.suffix != IMAGE_SUFFIX or path.name.startswith("."):
                continue
            try:
                stat = path.stat()
            except OSError:
                continue
            if not path.is_file():
                continue
            found.append(StoredFile(path=path, size=stat.st_size, mtime=stat.st_mtime))
        return found

    def remove(self, path: Path) -> None:
        path.unlink(missing_ok=True)

    async def usage(self) -> CacheUsage:
        entries = await asyncio.to_thread(self.entries)
        return CacheUsage(image_count=len(entries), total_bytes=sum(item.size for item in entries))

    def _read_if_usable(
        self,
        key: CacheKey,
        now: float,
        content_age: float,
        is_current: bool,
    ) -> Optional[tuple[bytes, float]]:
        path = self.path_for(key)
        try:
            stat = path.stat()
        except FileNotFoundError:
            logger.debug("Cache miss: %s", key)
            return None

        storage_age = now - stat.st_mtime
        if storage_age >= self._disk_ttl:
            logger.info("Cache expired: %s (file age: %ds)", key, int(storage_age))
            path.unlink(missing_ok=True)
            return None

        if is_current and storage_age >= self._current_refresh:
            logger.info(
                "Current image past refresh window: %s (cached %ds ago)",
                key,
                int(storage_age),
            )
            path.unlink(missing_ok=True)
            return None

        try:
            data = path.read_bytes()
        except FileNotFoundError:
            # Evicted between stat and read; fall back to the miss path
            logger.debug("Cache entry vanished before read: %s", key)
            return None

        logger.info(
            "Cache hit: %s (image timestamp %ds ago, cached %ds ago, current: %s)",
            key,
            int(content_age),
            int(storage_age),
            is_current,
        )
        return data, storage_age

    async def _download_shared(self, key: CacheKey) -> bytes:
        task = self._inflight.get(key)
        if task is None:
            task = asyncio.create_task(self._download_and_store(key), name=f"radar-download-{key}")
            self._inflight[key] = task
            task.add_done_callback(partial(self._release, key))
        else:
            logger.debug("Joining in-flight download: %s", key)
        # A cancelled caller must not cancel the shared download
        return await asyncio.shield(task)

    def _release(self, key: CacheKey, task: asyncio.Task[bytes]) -> None:
        if self._inflight.get(key) is task:
            del self._inflight[key]
        if not task.cancelled() and task.exception() is not None:
            logger.debug("Download for %s failed: %s", key, task.exception())

    async def _download_and_store(self, key: CacheKey) -> bytes:
        try:
            data = await self._downloader.download(self._downloader.resolve(key.remote_filename))
        except Exception as exc:
            logger.error("Failed to download %s: %s", key, exc)
            raise
        stored_at = self._clock()
        await asyncio.to_thread(self._persist, self.path_for(key), data, stored_at)
        logger.info("Cached: %s (%dKB)", key, len(data) // 1024)
        if self._on_stored is not None:
            self._on_stored()
        return data

    def _persist(self, path: Path, data: bytes, stored_at: float) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = path.with_name(f".{path.name}.{uuid4().hex}.tmp")
        try:
            tmp_path.write_bytes(data)
            os.utime(tmp_path, (stored_at, stored_at))
            os.replace(tmp_path, path)
        except BaseException:
            tmp_path.unlink(missing_ok=True)
            raise


__all__ = ["CacheUsage", "ImageResult", "ImageStore", "StoredFile"]
