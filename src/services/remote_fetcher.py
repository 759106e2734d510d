"""Anonymous FTP access to the radar origin.

Every operation opens its own session, performs exactly one listing or
download and closes the session again. Transport failures are translated into
the small ``FetchError`` family so callers never see aioftp exceptions.
"""

from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass
from pathlib import PurePosixPath
from typing import AsyncIterator, Awaitable, Optional, TypeVar

import aioftp

logger = logging.getLogger("radarproxy.ftp")

NOT_FOUND_CODE = "550"

T = TypeVar("T")


class FetchError(RuntimeError):
    """Base class for failures talking to the origin."""


class FetchNotFound(FetchError):
    """Raised when the origin has no object at the requested path."""


class FetchTimeout(FetchError):
    """Raised when connecting or transferring exceeds its time bound."""


class FetchTransportError(FetchError):
    """Raised for any other protocol or network failure."""


@dataclass(frozen=True, slots=True)
class DirEntry:
    name: str
    is_file: bool
    size: Optional[int] = None


class RemoteFetcher:
    def __init__(
        self,
        *,
        host: str,
        port: int = 21,
        base_path: str = "/",
        user: str = "anonymous",
        password: str = "guest",
        connect_timeout: float = 30.0,
        operation_timeout: float = 60.0,
    ) -> None:
        self._host = host
        self._port = int(port)
        self._base_path = PurePosixPath(base_path or "/")
        self._user = user
        self._password = password
        self._connect_timeout = max(float(connect_timeout), 0.001)
        self._operation_timeout = max(float(operation_timeout), self._connect_timeout)

    @property
    def host(self) -> str:
        return self._host

    @property
    def base_path(self) -> str:
        return str(self._base_path)

    def resolve(self, name: str) -> str:
        """Join a file name onto the configured base directory."""
        return str(self._base_path / name)

    async def connect(self) -> aioftp.Client:
        """Open and log in a session, bounded by the connect timeout."""
        client = aioftp.Client(socket_timeout=self._connect_timeout, path_timeout=self._connect_timeout)
        try:
            await asyncio.wait_for(self._login(client), timeout=self._connect_timeout)
        except (asyncio.TimeoutError, aioftp.AIOFTPException, OSError) as exc:
            client.close()
            raise self._translate(exc, context=f"connect {self._host}") from exc
        except BaseException:
            client.close()
            raise
        return client

    async def list(self, path: Optional[str] = None) -> list[DirEntry]:
        target = path or self.base_path

        async def _do() -> list[DirEntry]:
            async with self._session() as client:
                listing = await client.list(target)
            entries: list[DirEntry] = []
            for entry_path, info in listing:
                size_raw = info.get("size")
                try:
                    size = int(size_raw) if size_raw is not None else None
                except (TypeError, ValueError):
                    size = None
                entries.append(
                    DirEntry(
                        name=PurePosixPath(str(entry_path)).name,
                        is_file=info.get("type") == "file",
                        size=size,
                    )
                )
            return entries

        entries = await self._bounded(_do(), context=f"LIST {target}")
        logger.debug("Listed %d entries under %s", len(entries), target)
        return entries

    async def download(self, path: str) -> bytes:
        """Fetch one file fully into memory."""

        async def _do() -> bytes:
            chunks: list[bytes] = []
            async with self._session() as client:
                async with client.download_stream(path) as stream:
                    async for block in stream.iter_by_block():
                        chunks.append(block)
            return b"".join(chunks)

        logger.info("Downloading: %s", path)
        return await self._bounded(_do(), context=f"RETR {path}")

    async def _login(self, client: aioftp.Client) -> None:
        await client.connect(self._host, self._port)
        await client.login(self._user, self._password)

    @asynccontextmanager
    async def _session(self) -> AsyncIterator[aioftp.Client]:
        client = await self.connect()
        try:
            yield client
        except BaseException:
            # Timeouts and cancellation tear the connection down without QUIT
            client.close()
            raise
        await self._close(client)

    async def _close(self, client: aioftp.Client) -> None:
        try:
            await asyncio.wait_for(client.quit(), timeout=self._connect_timeout)
        except (asyncio.TimeoutError, aioftp.AIOFTPException, OSError) as exc:
            logger.debug("FTP session did not close cleanly: %s", exc)
            client.close()

    async def _bounded(self, operation: Awaitable[T], *, context: str) -> T:
        try:
            return await asyncio.wait_for(operation, timeout=self._operation_timeout)
        except FetchError:
            raise
        except (asyncio.TimeoutError, aioftp.AIOFTPException, OSError) as exc:
            raise self._translate(exc, context=context) from exc

    def _translate(self, exc: BaseException, *, context: str) -> FetchError:
        # TimeoutError subclasses OSError on current interpreters, so test it first
        if isinstance(exc, asyncio.TimeoutError):
            return FetchTimeout(f"FTP {context} timed out")
        if isinstance(exc, aioftp.StatusCodeError) and _is_not_found(exc):
            return FetchNotFound(f"FTP {context}: not found")
        return FetchTransportError(f"FTP {context} failed: {exc}")


def _is_not_found(exc: aioftp.StatusCodeError) -> bool:
    received = getattr(exc, "received_codes", ()) or ()
    if isinstance(received, str):
        received = (received,)
    return any(str(code) == NOT_FOUND_CODE for code in received)


__all__ = [
    "DirEntry",
    "FetchError",
    "FetchNotFound",
    "FetchTimeout",
    "FetchTransportError",
    "RemoteFetcher",
]
