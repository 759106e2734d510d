from __future__ import annotations

import logging
import math
import time
from dataclasses import dataclass
from typing import Callable, Optional, Protocol

from .radar_keys import listing_pattern
from .remote_fetcher import DirEntry

logger = logging.getLogger("radarproxy.timestamps")


class DirectoryLister(Protocol):
    async def list(self, path: Optional[str] = None) -> list[DirEntry]:
        ...


class RateLimited(RuntimeError):
    """Raised when a listing refresh is not yet allowed and nothing is cached."""

    def __init__(self, radar_id: str, retry_after: int) -> None:
        super().__init__(f"Rate limit: Please wait {retry_after} seconds before refreshing timestamps for {radar_id}")
        self.radar_id = radar_id
        self.retry_after = retry_after


@dataclass(frozen=True, slots=True)
class TimestampSet:
    """Timestamps known for one radar/resolution, newest first."""

    radar_id: str
    resolution: Optional[int]
    timestamps: tuple[str, ...]
    listed_at: float


@dataclass(frozen=True, slots=True)
class TimestampListing:
    timestamps: list[str]
    from_cache: bool
    next_refresh_in: int
    rate_limited: bool = False


class MetadataCache:
    """Caches origin directory listings per radar behind a refresh rate limiter.

    Listings are cached per ``(radar_id, resolution)`` and stay fresh for one
    refresh interval. The limiter is keyed by radar id alone, so every
    resolution of a radar shares one listing budget. Stale listings are kept
    as a fallback for rate-limited callers and are only ever replaced whole.
    """

    def __init__(
        self,
        lister: DirectoryLister,
        *,
        refresh_interval: float = 600.0,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._lister = lister
        self._refresh_interval = max(float(refresh_interval), 0.0)
        self._clock = clock
        self._sets: dict[tuple[str, Optional[int]], TimestampSet] = {}
        self._last_refresh: dict[str, float] = {}

    @property
    def refresh_interval(self) -> float:
        return self._refresh_interval

    def can_refresh(self, radar_id: str) -> bool:
        last = self._last_refresh.get(radar_id)
        if last is None:
            return True
        return self._clock() - last >= self._refresh_interval

    def seconds_until_refresh(self, radar_id: str) -> int:
        last = self._last_refresh.get(radar_id)
        if last is None:
            return 0
        remaining = self._refresh_interval - (self._clock() - last)
        return max(0, math.ceil(remaining))

    async def list(
        self,
        radar_id: str,
        *,
        resolution: Optional[int] = None,
        limit: int = 20,
        force: bool = False,
    ) -> TimestampListing:
        limit = max(1, int(limit))
        cached = self._sets.get((radar_id, resolution))
        label = _label(radar_id, resolution)

        if cached is not None and not force and self._is_fresh(cached):
            next_refresh = self.seconds_until_refresh(radar_id)
            logger.info("Timestamp cache hit: %s (next refresh in %ss)", label, next_refresh)
            return TimestampListing(
                timestamps=list(cached.timestamps[:limit]),
                from_cache=True,
                next_refresh_in=next_refresh,
            )

        if not force and not self.can_refresh(radar_id):
            wait = self.seconds_until_refresh(radar_id)
            logger.warning("Timestamp refresh rate limited for %s, %ss remaining", label, wait)
            if cached is not None:
                return TimestampListing(
                    timestamps=list(cached.timestamps[:limit]),
                    from_cache=True,
                    next_refresh_in=wait,
                    rate_limited=True,
                )
            raise RateLimited(radar_id, wait)

        fresh = await self._refresh(radar_id, resolution)
        logger.info("Retrieved %d timestamps for %s", len(fresh.timestamps), label)
        return TimestampListing(
            timestamps=list(fresh.timestamps[:limit]),
            from_cache=False,
            next_refresh_in=math.ceil(self._refresh_interval),
        )

    def stats(self) -> dict[str, int]:
        return {
            "active_radars": len(self._last_refresh),
            "entries": len(self._sets),
        }

    def clear(self) -> None:
        self._sets = {}
        self._last_refresh = {}

    def _is_fresh(self, entry: TimestampSet) -> bool:
        return self._clock() - entry.listed_at < self._refresh_interval

    async def _refresh(self, radar_id: str, resolution: Optional[int]) -> TimestampSet:
        entries = await self._lister.list()
        pattern = listing_pattern(radar_id, resolution)
        found: set[str] = set()
        for entry in entries:
            if not entry.is_file:
                continue
            match = pattern.match(entry.name)
            if match:
                found.add(match.group(1))

        now = self._clock()
        fresh = TimestampSet(
            radar_id=radar_id,
            resolution=resolution,
            timestamps=tuple(sorted(found, reverse=True)),
            listed_at=now,
        )
        # Swap whole entries so readers never see a half-built listing
        self._sets = {**self._sets, (radar_id, resolution): fresh}
        self._last_refresh = {**self._last_refresh, radar_id: now}
        return fresh


def _label(radar_id: str, resolution: Optional[int]) -> str:
    if resolution is None:
        return radar_id
    return f"{radar_id} {resolution}km"


__all__ = ["MetadataCache", "RateLimited", "TimestampListing", "TimestampSet"]
