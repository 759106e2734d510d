import asyncio
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Dict, Optional

import pytest
from fastapi.testclient import TestClient

ROOT = Path(__file__).resolve().parents[1]
SRC_PATH = ROOT / "src"
if str(SRC_PATH) not in sys.path:
    sys.path.insert(0, str(SRC_PATH))

from config import settings  # noqa: E402
from main import create_app  # noqa: E402
from services.image_store import ImageStore  # noqa: E402
from services.radar_proxy import build_radar_proxy  # noqa: E402
from services.remote_fetcher import DirEntry, FetchNotFound  # noqa: E402

RADAR_BASE = "/anon/gen/radar"


def utc(year: int, month: int, day: int, hour: int = 0, minute: int = 0) -> float:
    return datetime(year, month, day, hour, minute, tzinfo=timezone.utc).timestamp()


class FakeClock:
    def __init__(self, start: float) -> None:
        self.now = float(start)

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds

    def set(self, value: float) -> None:
        self.now = float(value)


class StubFetcher:
    """In-memory origin keyed by remote file name."""

    def __init__(self) -> None:
        self.files: Dict[str, bytes] = {}
        self.downloads: list[str] = []
        self.list_calls = 0
        self.error: Optional[Exception] = None
        self.gate: Optional[asyncio.Event] = None

    def publish(self, name: str, data: bytes = b"\x89PNG radar") -> None:
        self.files[name] = data

    def resolve(self, name: str) -> str:
        return f"{RADAR_BASE}/{name}"

    async def download(self, path: str) -> bytes:
        self.downloads.append(path)
        if self.gate is not None:
            await self.gate.wait()
        if self.error is not None:
            raise self.error
        name = path.rsplit("/", 1)[-1]
        if name not in self.files:
            raise FetchNotFound(f"FTP RETR {path}: not found")
        return self.files[name]

    async def list(self, path: Optional[str] = None) -> list[DirEntry]:
        self.list_calls += 1
        if self.error is not None:
            raise self.error
        entries = [DirEntry(name=name, is_file=True, size=len(data)) for name, data in self.files.items()]
        entries.append(DirEntry(name="IDR023.T.202410231400.png.d", is_file=False))
        return entries


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


@pytest.fixture
def settings_override() -> Callable[..., None]:
    original: Dict[str, Any] = {}

    def _apply(**overrides: Any) -> None:
        for key, value in overrides.items():
            if key not in original:
                original[key] = getattr(settings, key)
            setattr(settings, key, value)

    yield _apply

    for key, value in original.items():
        setattr(settings, key, value)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock(utc(2024, 10, 23, 14, 31))


@pytest.fixture
def fetcher() -> StubFetcher:
    return StubFetcher()


@pytest.fixture
def store(tmp_path: Path, fetcher: StubFetcher, clock: FakeClock) -> ImageStore:
    return ImageStore(tmp_path / "cache", fetcher, source_tz=timezone.utc, clock=clock)


@pytest.fixture
def client(
    tmp_path: Path,
    fetcher: StubFetcher,
    clock: FakeClock,
    settings_override: Callable[..., None],
) -> TestClient:
    settings_override(
        cache_dir=str(tmp_path / "cache"),
        janitor_enabled=False,
        origin_probe_on_startup=False,
    )
    proxy = build_radar_proxy(settings, fetcher=fetcher, clock=clock)
    app = create_app(proxy)
    with TestClient(app) as test_client:
        yield test_client
