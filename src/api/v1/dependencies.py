from __future__ import annotations

from fastapi import HTTPException, Request, status

from services.radar_keys import InvalidKeyError, validate_radar_id, validate_resolution
from services.radar_proxy import RadarProxy


def get_radar_proxy(request: Request) -> RadarProxy:
    proxy = getattr(request.app.state, "radar_proxy", None)
    if proxy is None:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Radar cache not initialised")
    return proxy


def valid_radar_id(radar_id: str) -> str:
    try:
        return validate_radar_id(radar_id)
    except InvalidKeyError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc


def parse_resolution(resolution: str | None) -> int | None:
    """Path resolutions arrive as text so malformed values map to 400, not 422."""
    if resolution is None:
        return None
    try:
        value = int(resolution.strip())
    except ValueError:
        value = -1
    try:
        return validate_resolution(value)
    except InvalidKeyError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
