from __future__ import annotations

import json
import logging
import math
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Optional

logger = logging.getLogger("radarproxy.sites")


@dataclass(frozen=True, slots=True)
class RadarSite:
    id: str
    name: str | None
    state: str | None
    lat: float
    lon: float


@dataclass(frozen=True, slots=True)
class ClosestRadar:
    site: RadarSite
    distance_km: float

    def to_payload(self) -> dict[str, Any]:
        return {
            "id": self.site.id,
            "name": self.site.name,
            "state": self.site.state,
            "distance": self.distance_km,
            "lat": self.site.lat,
            "lon": self.site.lon,
        }


class RadarSiteCatalog:
    """Static GeoJSON catalogue of radar sites, loaded lazily from disk."""

    def __init__(self, path: Path | str) -> None:
        self._path = Path(path)
        self._document: Optional[dict[str, Any]] = None
        self._sites: Optional[list[RadarSite]] = None

    def document(self) -> dict[str, Any]:
        if self._document is None:
            self._document = json.loads(self._path.read_text(encoding="utf-8"))
            logger.debug("Loaded radar sites from %s", self._path)
        return self._document

    def sites(self) -> list[RadarSite]:
        if self._sites is None:
            self._sites = [site for site in map(_site_from_feature, self.document().get("features", [])) if site]
        return self._sites

    def closest(self, lat: float, lon: float) -> Optional[ClosestRadar]:
        best: Optional[ClosestRadar] = None
        for site in self.sites():
            distance = haversine_km(lat, lon, site.lat, site.lon)
            if best is None or distance < best.distance_km:
                best = ClosestRadar(site=site, distance_km=distance)
        if best is None:
            return None
        return ClosestRadar(site=best.site, distance_km=round(best.distance_km, 1))


def haversine_km(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Compute great-circle distance between two points in kilometers."""
    radius_km = 6371.0
    lat1_rad = math.radians(lat1)
    lon1_rad = math.radians(lon1)
    lat2_rad = math.radians(lat2)
    lon2_rad = math.radians(lon2)

    dlat = lat2_rad - lat1_rad
    dlon = lon2_rad - lon1_rad

    a = math.sin(dlat / 2) ** 2 + math.cos(lat1_rad) * math.cos(lat2_rad) * math.sin(dlon / 2) ** 2
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))
    return radius_km * c


def _site_from_feature(feature: Any) -> Optional[RadarSite]:
    if not isinstance(feature, dict):
        return None
    props = feature.get("properties", {}) if isinstance(feature.get("properties"), dict) else {}
    geometry = feature.get("geometry", {}) if isinstance(feature.get("geometry"), dict) else {}
    coordinates = geometry.get("coordinates")
    site_id = props.get("id")
    if not site_id or not isinstance(coordinates, (list, tuple)) or len(coordinates) < 2:
        return None
    try:
        lon_val = float(coordinates[0])
        lat_val = float(coordinates[1])
    except (TypeError, ValueError):
        return None
    return RadarSite(id=str(site_id), name=props.get("name"), state=props.get("state"), lat=lat_val, lon=lon_val)


__all__ = ["ClosestRadar", "RadarSite", "RadarSiteCatalog", "haversine_km"]
