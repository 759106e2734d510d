from __future__ import annotations

import logging
from typing import Any, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Response, status
from pydantic import BaseModel, Field

from config import settings
from services.metadata_cache import RateLimited
from services.radar_keys import CacheKey, InvalidKeyError
from services.radar_proxy import RadarProxy
from services.remote_fetcher import FetchError, FetchNotFound, FetchTimeout
from .dependencies import get_radar_proxy, parse_resolution, valid_radar_id

logger = logging.getLogger("radarproxy.hub.api.radar")
router = APIRouter(tags=["radar"])

IMAGE_CACHE_CONTROL = "public, max-age=600"


class TimestampListResponse(BaseModel):
    radarId: str
    resolution: int | None = None
    timestamps: list[str] = Field(default_factory=list, description="Available image timestamps, newest first.")
    count: int = Field(ge=0)
    fromCache: bool
    nextRefreshIn: int = Field(ge=0, description="Seconds until the origin may be listed again for this radar.")
    rateLimited: bool = False


class ClosestRadarResponse(BaseModel):
    id: str
    name: str | None = None
    state: str | None = None
    distance: float = Field(ge=0.0, description="Great-circle distance from the requested point in kilometres.")
    lat: float
    lon: float


@router.get(
    "/radar/{radar_id}/{timestamp}",
    response_class=Response,
    responses={200: {"content": {"image/png": {}}}},
)
async def get_radar_image(radar_id: str, timestamp: str, proxy: RadarProxy = Depends(get_radar_proxy)):
    return await _serve_image(proxy, radar_id, timestamp, None)


@router.get(
    "/radar/{radar_id}/{timestamp}/{resolution}",
    response_class=Response,
    responses={200: {"content": {"image/png": {}}}},
)
async def get_radar_image_at_resolution(
    radar_id: str,
    timestamp: str,
    resolution: str,
    proxy: RadarProxy = Depends(get_radar_proxy),
):
    return await _serve_image(proxy, radar_id, timestamp, parse_resolution(resolution))


@router.get("/timestamps/{radar_id}", response_model=TimestampListResponse)
async def list_timestamps(
    response: Response,
    radar_id: str,
    limit: Optional[int] = Query(None, ge=1, le=500),
    force: bool = Query(False, description="Bypass the cached listing and the refresh rate limit"),
    proxy: RadarProxy = Depends(get_radar_proxy),
):
    return await _list_timestamps(proxy, response, radar_id, None, limit, force)


@router.get("/timestamps/{radar_id}/{resolution}", response_model=TimestampListResponse)
async def list_timestamps_at_resolution(
    response: Response,
    radar_id: str,
    resolution: str,
    limit: Optional[int] = Query(None, ge=1, le=500),
    force: bool = Query(False, description="Bypass the cached listing and the refresh rate limit"),
    proxy: RadarProxy = Depends(get_radar_proxy),
):
    return await _list_timestamps(proxy, response, radar_id, parse_resolution(resolution), limit, force)


@router.get("/radars")
async def list_radars(response: Response, proxy: RadarProxy = Depends(get_radar_proxy)) -> dict[str, Any]:
    try:
        document = proxy.sites.document()
    except (OSError, ValueError) as exc:
        logger.error("Failed to load radar sites: %s", exc)
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Failed to load radar data") from exc
    response.headers["Cache-Control"] = "public, max-age=86400"
    return document


@router.get("/radars/closest", response_model=ClosestRadarResponse)
async def closest_radar(
    response: Response,
    lat: float = Query(..., ge=-90.0, le=90.0),
    lon: float = Query(..., ge=-180.0, le=180.0),
    proxy: RadarProxy = Depends(get_radar_proxy),
):
    try:
        closest = proxy.sites.closest(lat, lon)
    except (OSError, ValueError) as exc:
        logger.error("Failed to load radar sites: %s", exc)
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Failed to find closest radar") from exc
    if closest is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="No radar sites configured")
    response.headers["Cache-Control"] = "public, max-age=3600"
    return ClosestRadarResponse(**closest.to_payload())


async def _serve_image(proxy: RadarProxy, radar_id: str, timestamp: str, resolution: int | None) -> Response:
    try:
        key = CacheKey.parse(radar_id, timestamp, resolution)
    except InvalidKeyError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc

    try:
        result = await proxy.images.get(key)
    except FetchNotFound as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Radar image not yet published") from exc
    except FetchTimeout as exc:
        raise HTTPException(status_code=status.HTTP_504_GATEWAY_TIMEOUT, detail="Radar origin timed out") from exc
    except FetchError as exc:
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail="Radar origin temporarily unreachable",
        ) from exc

    headers = {
        "Cache-Control": IMAGE_CACHE_CONTROL,
        "X-From-Cache": "true" if result.from_cache else "false",
        "X-Cache-Age": str(result.storage_age),
        "X-Image-Age": str(result.content_age),
        "ETag": key.etag,
    }
    if key.resolution is not None:
        headers["X-Resolution"] = str(key.resolution)
    return Response(content=result.data, media_type="image/png", headers=headers)


async def _list_timestamps(
    proxy: RadarProxy,
    response: Response,
    radar_id: str,
    resolution: int | None,
    limit: int | None,
    force: bool,
) -> TimestampListResponse:
    clean_id = valid_radar_id(radar_id)
    try:
        listing = await proxy.timestamps.list(
            clean_id,
            resolution=resolution,
            limit=limit or settings.default_timestamp_limit,
            force=force,
        )
    except RateLimited as exc:
        raise HTTPException(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail={"error": str(exc), "retryAfter": exc.retry_after},
            headers={"Retry-After": str(exc.retry_after)},
        ) from exc
    except FetchTimeout as exc:
        raise HTTPException(status_code=status.HTTP_504_GATEWAY_TIMEOUT, detail="Radar origin timed out") from exc
    except FetchError as exc:
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail="Radar origin temporarily unreachable",
        ) from exc

    response.headers["Cache-Control"] = IMAGE_CACHE_CONTROL
    response.headers["X-From-Cache"] = "true" if listing.from_cache else "false"
    return TimestampListResponse(
        radarId=clean_id,
        resolution=resolution,
        timestamps=listing.timestamps,
        count=len(listing.timestamps),
        fromCache=listing.from_cache,
        nextRefreshIn=listing.next_refresh_in,
        rateLimited=listing.rate_limited,
    )
