"""File-transfer transport contract and FTP implementation.

This module declares the session protocol consumed by listing connectors.
The default implementation wraps ``ftplib`` and runs its blocking calls
in worker threads so the event loop never blocks on the network.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
import ftplib
from pathlib import Path
import random
from typing import Awaitable, Callable, Protocol

from core.constants import DEFAULT_COPY_BUFFER_SIZE, DEFAULT_FTP_PORT, DEFAULT_FTP_USER
from core.errors import HarvestConnectionError, HarvestFetchError
from core.logging_config import get_logger

_LOGGER = get_logger(__name__)


@dataclass(frozen=True)
class FtpEndpoint:
    """Network location of a file-transfer server."""

    host: str
    port: int = DEFAULT_FTP_PORT


@dataclass(frozen=True)
class FtpCredentials:
    """Login credentials for a file-transfer server."""

    user: str = DEFAULT_FTP_USER
    password: str = ""


class TransportSession(Protocol):
    """One open transport session."""

    async def change_location(self, path: str) -> None: ...

    async def current_location(self) -> str: ...

    async def list_names(self) -> list[str]: ...

    async def retrieve(self, name: str, destination: Path) -> None: ...

    async def close(self) -> None: ...


class TransportClient(Protocol):
    """Factory for transport sessions."""

    async def open(
        self,
        endpoint: FtpEndpoint,
        credentials: FtpCredentials,
    ) -> TransportSession: ...


class FtpTransportClient:
    """Transport client backed by the standard library FTP client."""

    def __init__(
        self,
        timeout: float | None = None,
        connect_jitter: float = 0.0,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._timeout = timeout
        self._connect_jitter = connect_jitter
        self._sleep = sleep

    async def open(self, endpoint: FtpEndpoint, credentials: FtpCredentials) -> "FtpSession":
        """Connect and log in to an FTP server.

        Args:
            endpoint: Server host and port.
            credentials: Login user and password.

        Returns:
            An open FTP session.

        Raises:
            HarvestConnectionError: If the server cannot be reached or login fails.
        """
        if self._connect_jitter > 0:
            await self._sleep(random.uniform(0, self._connect_jitter))
        ftp = ftplib.FTP(timeout=self._timeout) if self._timeout else ftplib.FTP()
        try:
            await asyncio.to_thread(ftp.connect, endpoint.host, endpoint.port)
            await asyncio.to_thread(ftp.login, credentials.user, credentials.password)
        except ftplib.all_errors as error:
            ftp.close()
            _LOGGER.error("ftp_connect_failed", host=endpoint.host, error=str(error))
            raise HarvestConnectionError(
                f"Failed to connect to ftp://{endpoint.host}:{endpoint.port}: {error}. "
                "Check the host, credentials, and network access."
            ) from error
        return FtpSession(ftp, endpoint.host)


class FtpSession:
    """Open FTP session implementing the transport session protocol."""

    def __init__(self, ftp: ftplib.FTP, host: str) -> None:
        self._ftp = ftp
        self._host = host

    async def change_location(self, path: str) -> None:
        try:
            await asyncio.to_thread(self._ftp.cwd, path)
        except ftplib.all_errors as error:
            raise HarvestConnectionError(
                f"Failed to change into '{path}' on {self._host}: {error}. "
                "Check that the remote directory exists."
            ) from error

    async def current_location(self) -> str:
        try:
            return await asyncio.to_thread(self._ftp.pwd)
        except ftplib.all_errors as error:
            raise HarvestConnectionError(
                f"Failed to read working directory on {self._host}: {error}."
            ) from error

    async def list_names(self) -> list[str]:
        try:
            names = await asyncio.to_thread(self._ftp.nlst)
        except ftplib.error_perm as error:
            # Some servers answer an empty directory with 550.
            if str(error).startswith("550"):
                return []
            raise HarvestConnectionError(
                f"Failed to list directory on {self._host}: {error}."
            ) from error
        except ftplib.all_errors as error:
            raise HarvestConnectionError(
                f"Failed to list directory on {self._host}: {error}."
            ) from error
        return [name.rsplit("/", 1)[-1] for name in names]

    async def retrieve(self, name: str, destination: Path) -> None:
        try:
            await asyncio.to_thread(self._retrieve_blocking, name, destination)
        except ftplib.all_errors as error:
            raise HarvestFetchError(
                name,
                f"Failed to download '{name}' from {self._host}: {error}. "
                "Retry the fetch or check the remote file.",
            ) from error

    def _retrieve_blocking(self, name: str, destination: Path) -> None:
        destination.parent.mkdir(parents=True, exist_ok=True)
        with destination.open("wb") as handle:
            self._ftp.retrbinary(f"RETR {name}", handle.write, DEFAULT_COPY_BUFFER_SIZE)

    async def close(self) -> None:
        try:
            await asyncio.to_thread(self._ftp.quit)
        except ftplib.all_errors:
            self._ftp.close()
