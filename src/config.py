from pathlib import Path
from typing import List

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

SRC_ROOT = Path(__file__).resolve().parent


class Settings(BaseSettings):
    # Load .env from the working directory and accept env keys in any case
    model_config = SettingsConfigDict(env_file=".env", extra="ignore", case_sensitive=False)

    app_name: str = "BoM Radar Proxy"
    app_version: str = "0.1.0"
    debug: bool = False
    cors_origins: List[str] = Field(default_factory=lambda: ["*"])
    host: str = "0.0.0.0"
    port: int = 3000
    log_level: str = Field(default="INFO", description="Log level applied to the radarproxy logger tree.")

    # Origin (anonymous FTP)
    ftp_host: str = Field(default="ftp.bom.gov.au", description="FTP host publishing radar imagery.")
    ftp_port: int = Field(default=21, ge=1, le=65535)
    ftp_path: str = Field(default="/anon/gen/radar/", description="Directory holding the radar PNG files.")
    ftp_user: str = "anonymous"
    ftp_password: str = "guest"
    ftp_timeout_seconds: float = Field(
        default=30.0,
        gt=0.0,
        description="Bound applied to connecting and logging in to the origin.",
    )
    ftp_operation_timeout_seconds: float = Field(
        default=60.0,
        gt=0.0,
        description="Hard bound on one complete listing or download, including its session setup.",
    )
    origin_probe_on_startup: bool = Field(
        default=True,
        description="Open and close one FTP session at startup and log the result.",
    )

    # Image cache
    cache_dir: str = Field(default="data/cache", description="Flat directory holding cached radar images.")
    cache_ttl_hours: float = Field(default=24.0, gt=0.0, description="Images older than this on disk are discarded.")
    max_cache_size_mb: float = Field(default=1000.0, gt=0.0, description="Disk budget for cached images.")
    cache_cleanup_target_ratio: float = Field(
        default=0.8,
        gt=0.0,
        le=1.0,
        description="Fraction of the budget the size sweep shrinks the cache to.",
    )
    current_image_threshold_seconds: int = Field(
        default=1800,
        ge=0,
        description="Images whose timestamp is younger than this are treated as current.",
    )
    current_image_refresh_seconds: int = Field(
        default=600,
        ge=0,
        description="Current images older than this on disk are downloaded again.",
    )
    source_timezone: str = Field(default="UTC", description="Zone used to interpret the 12-digit image timestamps.")

    # Timestamp listings
    timestamp_refresh_interval: int = Field(
        default=600,
        ge=0,
        description="Minimum spacing in seconds between FTP listings for one radar.",
    )
    default_timestamp_limit: int = Field(default=20, ge=1, le=500)

    # Background sweeps
    janitor_enabled: bool = Field(default=True, description="Run the periodic TTL and size sweeps.")
    ttl_sweep_interval_seconds: float = Field(default=3600.0, gt=0.0)
    size_sweep_interval_seconds: float = Field(default=600.0, gt=0.0)

    radar_sites_path: str = Field(
        default=str(SRC_ROOT / "data" / "radars.json"),
        description="GeoJSON feature collection describing the radar sites.",
    )

    @field_validator("cors_origins", mode="before")
    @classmethod
    def normalize_cors(cls, v):
        if isinstance(v, str):
            s = v.strip()
            if s.startswith("["):
                import json
                return json.loads(s)
            if s in ("", "*"):
                return ["*"]
            return [p.strip() for p in s.split(",")]
        return v

    @property
    def disk_ttl_seconds(self) -> float:
        return self.cache_ttl_hours * 3600.0

    @property
    def max_cache_bytes(self) -> int:
        return int(self.max_cache_size_mb * 1024 * 1024)


settings = Settings()
