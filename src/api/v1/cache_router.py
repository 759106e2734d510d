from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field

from services.evictor import SweepKind
from services.radar_proxy import RadarProxy
from .dependencies import get_radar_proxy

logger = logging.getLogger("radarproxy.hub.api.cache")
router = APIRouter(prefix="/cache", tags=["cache"])


class CacheStatsResponse(BaseModel):
    imageCount: int = Field(ge=0)
    totalBytes: int = Field(ge=0)
    totalSizeMB: float = Field(ge=0.0)
    maxSizeMB: float = Field(ge=0.0)
    utilization: int = Field(ge=0, description="Disk usage as a percentage of the size budget.")
    activeRadars: int = Field(ge=0, description="Radars listed at least once since startup.")
    metadataEntries: int = Field(ge=0, description="Cached timestamp listings (radar and resolution pairs).")


class SweepReportResponse(BaseModel):
    kind: SweepKind
    scanned: int = Field(ge=0)
    deleted: int = Field(ge=0)
    failed: int = Field(ge=0)
    freed_bytes: int = Field(ge=0)
    total_bytes_before: int = Field(ge=0)
    total_bytes_after: int = Field(ge=0)


@router.get("/stats", response_model=CacheStatsResponse)
async def cache_stats(proxy: RadarProxy = Depends(get_radar_proxy)):
    disk = await proxy.evictor.stats()
    metadata = proxy.timestamps.stats()
    return CacheStatsResponse(
        imageCount=disk["image_count"],
        totalBytes=disk["total_bytes"],
        totalSizeMB=disk["total_size_mb"],
        maxSizeMB=disk["max_size_mb"],
        utilization=disk["utilization"],
        activeRadars=metadata["active_radars"],
        metadataEntries=metadata["entries"],
    )


@router.post("/sweep", response_model=SweepReportResponse)
async def run_sweep(
    kind: SweepKind = Query("ttl", description="ttl removes expired images, size enforces the disk budget"),
    proxy: RadarProxy = Depends(get_radar_proxy),
):
    report = await proxy.evictor.sweep(kind)
    logger.info("Manual %s sweep removed %d of %d cached images", kind, report.deleted, report.scanned)
    return SweepReportResponse(**report.to_payload())
