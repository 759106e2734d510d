import time
from datetime import datetime, timezone

from fastapi import APIRouter, Request

from config import settings
from .cache_router import router as cache_router
from .radar_router import router as radar_router

router = APIRouter(prefix="/api/v1", tags=["v1"])
router.include_router(radar_router)
router.include_router(cache_router)


def health_payload(request: Request) -> dict:
    started = getattr(request.app.state, "started_at", None)
    uptime = time.monotonic() - started if started is not None else 0.0
    return {
        "status": "ok",
        "version": settings.app_version,
        "uptime": round(uptime, 1),
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "cacheDir": settings.cache_dir,
        "config": {
            "timestampRefreshInterval": f"{settings.timestamp_refresh_interval}s",
            "currentImageRefreshInterval": f"{settings.current_image_refresh_seconds}s",
            "currentImageThreshold": f"{settings.current_image_threshold_seconds}s",
            "diskCacheTTL": f"{settings.cache_ttl_hours:g}h",
            "maxCacheSizeMB": settings.max_cache_size_mb,
        },
    }


@router.get("/health")
async def health(request: Request):
    return health_payload(request)


@router.get("/info")
async def info():
    return {
        "name": settings.app_name,
        "version": settings.app_version,
        "debug": settings.debug,
        "cors_origins": settings.cors_origins,
        "ftp_host": settings.ftp_host,
        "ftp_path": settings.ftp_path,
        "janitor_enabled": settings.janitor_enabled,
    }
