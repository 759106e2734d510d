"""Identifiers for radar images and the file names derived from them.

A radar image is addressed by the radar product id (``IDR023``), the 12-digit
``YYYYMMDDhhmm`` timestamp encoded in the origin file name and an optional range
resolution in kilometres. The origin publishes
``{radar}{suffix}.T.{timestamp}.png`` where the suffix is empty or a single digit
selecting the resolution.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import datetime, timezone, tzinfo
from functools import total_ordering
from typing import Optional

RADAR_ID_RE = re.compile(r"^[A-Z]{3}\d{3}$")
TIMESTAMP_RE = re.compile(r"^\d{12}$")
TIMESTAMP_FORMAT = "%Y%m%d%H%M"

RESOLUTION_SUFFIX: dict[int, str] = {
    64: "1",
    128: "2",
    256: "3",
    512: "4",  # national composite
}
SUPPORTED_RESOLUTIONS: tuple[int, ...] = (64, 128, 256)


class InvalidKeyError(ValueError):
    """Raised when a radar id, timestamp or resolution is malformed."""


def validate_radar_id(radar_id: str) -> str:
    value = (radar_id or "").strip()
    if not RADAR_ID_RE.match(value):
        raise InvalidKeyError("Invalid radar ID format")
    return value


def validate_resolution(resolution: Optional[int]) -> Optional[int]:
    if resolution is None:
        return None
    if resolution not in SUPPORTED_RESOLUTIONS:
        supported = ", ".join(str(item) for item in SUPPORTED_RESOLUTIONS)
        raise InvalidKeyError(f"Invalid resolution. Supported: {supported}km")
    return resolution


def parse_timestamp(timestamp: str, tz: tzinfo) -> datetime:
    """Return the aware datetime encoded in a 12-digit timestamp."""
    value = (timestamp or "").strip()
    if not TIMESTAMP_RE.match(value):
        raise InvalidKeyError("Invalid timestamp format")
    try:
        parsed = datetime.strptime(value, TIMESTAMP_FORMAT)
    except ValueError as exc:
        raise InvalidKeyError("Invalid timestamp format") from exc
    return parsed.replace(tzinfo=tz)


def resolution_suffix(resolution: Optional[int]) -> str:
    if resolution is None:
        return ""
    try:
        return RESOLUTION_SUFFIX[resolution]
    except KeyError as exc:
        raise InvalidKeyError(f"Invalid resolution: {resolution}") from exc


def listing_pattern(radar_id: str, resolution: Optional[int] = None) -> re.Pattern[str]:
    """Pattern matching origin file names for one radar, capturing the timestamp."""
    prefix = re.escape(radar_id + resolution_suffix(resolution))
    return re.compile(rf"^{prefix}\.T\.(\d{{12}})\.png$")


@total_ordering
@dataclass(frozen=True, slots=True)
class CacheKey:
    radar_id: str
    timestamp: str
    resolution: Optional[int] = None

    @classmethod
    def parse(cls, radar_id: str, timestamp: str, resolution: Optional[int] = None) -> "CacheKey":
        clean_id = validate_radar_id(radar_id)
        clean_ts = (timestamp or "").strip()
        # Rejects impossible calendar values such as month 13 as well
        parse_timestamp(clean_ts, timezone.utc)
        return cls(radar_id=clean_id, timestamp=clean_ts, resolution=validate_resolution(resolution))

    @property
    def suffix(self) -> str:
        return resolution_suffix(self.resolution)

    @property
    def remote_filename(self) -> str:
        return f"{self.radar_id}{self.suffix}.T.{self.timestamp}.png"

    @property
    def stem(self) -> str:
        if self.resolution is None:
            return f"{self.radar_id}_{self.timestamp}"
        return f"{self.radar_id}_{self.timestamp}_{self.resolution}"

    @property
    def cache_filename(self) -> str:
        return f"{self.stem}.png"

    @property
    def etag(self) -> str:
        if self.resolution is None:
            return f"{self.radar_id}-{self.timestamp}"
        return f"{self.radar_id}-{self.timestamp}-{self.resolution}"

    def content_time(self, tz: tzinfo) -> datetime:
        return parse_timestamp(self.timestamp, tz)

    def _order(self) -> tuple[str, str, int]:
        return (self.timestamp, self.radar_id, self.resolution or 0)

    def __lt__(self, other: object) -> bool:
        if not isinstance(other, CacheKey):
            return NotImplemented
        return self._order() < other._order()

    def __str__(self) -> str:
        return self.stem
