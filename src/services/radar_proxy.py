"""Wiring for the radar cache components.

``build_radar_proxy`` constructs every component once from settings; the
FastAPI app keeps the result on ``app.state`` and routers reach it through a
dependency, so tests can assemble a proxy around stub fetchers instead.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Optional
from zoneinfo import ZoneInfo

from config import Settings
from .evictor import CacheEvictor
from .image_store import ImageStore
from .metadata_cache import MetadataCache
from .radar_sites import RadarSiteCatalog
from .remote_fetcher import FetchError, RemoteFetcher

logger = logging.getLogger("radarproxy.hub")


@dataclass(slots=True)
class RadarProxy:
    fetcher: RemoteFetcher
    images: ImageStore
    timestamps: MetadataCache
    evictor: CacheEvictor
    sites: RadarSiteCatalog

    async def start(self, *, janitor: bool = True, probe_origin: bool = True) -> None:
        await self.images.ensure_dir()
        if janitor:
            await self.evictor.start()
        if probe_origin:
            await self.probe_origin()

    async def close(self) -> None:
        await self.evictor.stop()

    async def probe_origin(self) -> bool:
        try:
            client = await self.fetcher.connect()
        except FetchError as exc:
            logger.error("FTP connection test: FAILED (%s)", exc)
            return False
        client.close()
        logger.info("FTP connection test: SUCCESS")
        return True


def build_radar_proxy(
    settings: Settings,
    *,
    fetcher: Optional[RemoteFetcher] = None,
    clock: Callable[[], float] = time.time,
) -> RadarProxy:
    fetcher = fetcher or RemoteFetcher(
        host=settings.ftp_host,
        port=settings.ftp_port,
        base_path=settings.ftp_path,
        user=settings.ftp_user,
        password=settings.ftp_password,
        connect_timeout=settings.ftp_timeout_seconds,
        operation_timeout=settings.ftp_operation_timeout_seconds,
    )
    images = ImageStore(
        Path(settings.cache_dir),
        fetcher,
        source_tz=ZoneInfo(settings.source_timezone),
        disk_ttl_seconds=settings.disk_ttl_seconds,
        current_threshold_seconds=settings.current_image_threshold_seconds,
        current_refresh_seconds=settings.current_image_refresh_seconds,
        clock=clock,
    )
    evictor = CacheEvictor(
        images,
        ttl_seconds=settings.disk_ttl_seconds,
        max_bytes=settings.max_cache_bytes,
        target_ratio=settings.cache_cleanup_target_ratio,
        ttl_interval_seconds=settings.ttl_sweep_interval_seconds,
        size_interval_seconds=settings.size_sweep_interval_seconds,
    )
    images.set_on_stored(evictor.request_size_check)
    timestamps = MetadataCache(fetcher, refresh_interval=settings.timestamp_refresh_interval, clock=clock)
    return RadarProxy(
        fetcher=fetcher,
        images=images,
        timestamps=timestamps,
        evictor=evictor,
        sites=RadarSiteCatalog(settings.radar_sites_path),
    )


__all__ = ["RadarProxy", "build_radar_proxy"]
