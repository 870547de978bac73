"""Protocol-polymorphic source connectors.

This module lists remote entries and drives their fetch, decompress,
and cleanup lifecycle. Two variants share one interface: a listing
connector over a file-transfer directory and an archive connector over
a single zip file fetched with HTTP.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
import asyncio
from contextlib import asynccontextmanager
import gzip
from pathlib import Path
import shutil
from typing import Any, AsyncIterator, Awaitable, Callable
import zipfile
import zlib

import httpx

from core.constants import (
    DEFAULT_COPY_BUFFER_SIZE,
    DEFAULT_TEXT_ENCODING,
    PARTIAL_DOWNLOAD_SUFFIX,
)
from core.errors import (
    HarvestConfigError,
    HarvestConnectionError,
    HarvestDecompressError,
    HarvestError,
    HarvestFetchError,
    HarvestPathMismatchError,
)
from core.logging_config import get_logger
from core.types import ArchiveSourceOptions, ListingSourceOptions
from sources.entry import EntryRecord, RemoteEntry, is_metadata_name
from sources.transport import (
    FtpCredentials,
    FtpEndpoint,
    FtpTransportClient,
    TransportClient,
    TransportSession,
)

_LOGGER = get_logger(__name__)

EntryOperation = Callable[[EntryRecord], Awaitable[Any]]
EntryContentHandler = Callable[[EntryRecord, "str | None"], Awaitable[Any]]


class SourceConnector(ABC):
    """Shared listing, batching, and cleanup behavior for all variants.

    A connector owns the entry records it produces. Records are created
    once by ``list()`` and mutated only by this connector's fetch,
    decompress, and cleanup operations.
    """

    protocol: str = ""

    def __init__(self, tmp_root: Path, concurrency: int, max_entries: int | None) -> None:
        if concurrency < 1:
            raise HarvestConfigError(
                f"Invalid source concurrency {concurrency}: must be at least 1."
            )
        self._tmp_root = tmp_root
        self._concurrency = concurrency
        self._max_entries = max_entries
        self._records: list[EntryRecord] | None = None
        self.downloaded: list[str] = []

    @property
    def concurrency(self) -> int:
        """Default number of entry operations allowed in flight."""
        return self._concurrency

    async def list(self) -> list[EntryRecord]:
        """List remote entries, loading them on the first call only.

        Returns:
            Data entries in listing order, truncated to ``max_entries``.

        Raises:
            HarvestConnectionError: If the remote listing cannot be obtained.
        """
        if self._records is None:
            self._records = await self._load_records()
            _LOGGER.info(
                "source_listed",
                protocol=self.protocol,
                listed=len(self._records),
                selected=len(self.entries()),
            )
        return self.entries()

    def entries(self) -> list[EntryRecord]:
        """Return listed data entries after filtering and truncation.

        Raises:
            HarvestError: If ``list()`` has not completed yet.
        """
        if self._records is None:
            raise HarvestError(
                f"The {self.protocol} source has not been listed yet. Call list() first."
            )
        selected = [record for record in self._records if not record.is_metadata_file]
        if self._max_entries is None:
            return selected
        return selected[: self._max_entries]

    async def for_each(self, operation: EntryOperation, concurrency: int | None = None) -> None:
        """Apply an operation to every entry with bounded concurrency.

        Dispatch stops at the first failure. Operations already in flight
        run to completion, then the first error is raised.

        Args:
            operation: Coroutine function called with each entry.
            concurrency: Optional cap overriding the connector default.

        Raises:
            HarvestConfigError: If the cap is smaller than one.
            Exception: The first error raised by ``operation``.
        """
        limit = self._concurrency if concurrency is None else concurrency
        if limit < 1:
            raise HarvestConfigError(f"Invalid concurrency {limit}: must be at least 1.")
        entries = self.entries()
        pending = iter(entries)
        errors: list[Exception] = []

        async def _worker() -> None:
            for entry in pending:
                if errors:
                    return
                try:
                    await operation(entry)
                except Exception as error:
                    errors.append(error)
                    return

        await asyncio.gather(*(_worker() for _ in range(min(limit, len(entries)))))
        if errors:
            raise errors[0]

    async def fetch_all(self, concurrency: int | None = None) -> None:
        """Fetch every listed entry."""
        await self.for_each(self.fetch_one, concurrency)

    async def decompress_all(
        self,
        handler: EntryContentHandler | None = None,
        concurrency: int | None = None,
    ) -> None:
        """Decompress every entry and hand each usable result to ``handler``.

        The handler receives the entry and, for in-memory archive members,
        the member text. Entries skipped by decompression are not handed on.
        """

        async def _decompress_then_handle(entry: EntryRecord) -> None:
            content = await self.decompress_one(entry)
            if handler is not None and (entry.decompressed or content is not None):
                await handler(entry, content)

        await self.for_each(_decompress_then_handle, concurrency)

    async def cleanup_all(self) -> None:
        """Remove every local artifact owned by this connector.

        All entries are attempted even when one fails. Container-level
        artifacts are removed last.

        Raises:
            HarvestError: Wrapping the first cleanup failure.
        """
        failures: list[tuple[str, Exception]] = []
        for entry in self._records or []:
            try:
                await self.cleanup_one(entry)
            except (HarvestError, OSError) as error:
                _LOGGER.error("entry_cleanup_failed", entry=entry.name, error=str(error))
                failures.append((entry.name, error))
        try:
            await self._cleanup_container()
        except (HarvestError, OSError) as error:
            _LOGGER.error("container_cleanup_failed", protocol=self.protocol, error=str(error))
            failures.append((self.protocol, error))
        if failures:
            name, first_error = failures[0]
            raise HarvestError(
                f"Failed to clean up '{name}': {first_error}. "
                f"{len(failures)} cleanup step(s) failed; remove leftovers under {self._tmp_root}."
            ) from first_error

    def _require_owned(self, entry: EntryRecord) -> None:
        if self._records is None or not any(record is entry for record in self._records):
            raise HarvestFetchError(
                entry.name,
                f"Entry '{entry.name}' does not belong to this {self.protocol} source. "
                "List the source and use the entries it returns.",
            )

    @abstractmethod
    async def _load_records(self) -> list[EntryRecord]:
        """Produce the full ordered entry set for this source."""

    @abstractmethod
    async def fetch_one(self, entry: EntryRecord) -> None:
        """Make one entry available on local storage."""

    @abstractmethod
    async def decompress_one(self, entry: EntryRecord) -> str | None:
        """Decompress one entry; may return in-memory content."""

    @abstractmethod
    async def cleanup_one(self, entry: EntryRecord) -> None:
        """Remove local artifacts for one entry."""

    def artifact_path(self, entry: EntryRecord) -> Path:
        """Local file holding the readable content of a decompressed entry."""
        return entry.decompressed_path

    async def _cleanup_container(self) -> None:
        return None


class ListingConnector(SourceConnector):
    """Connector over a directory of files on a file-transfer server."""

    protocol = "ftp"

    def __init__(
        self,
        options: ListingSourceOptions,
        transport: TransportClient | None = None,
    ) -> None:
        super().__init__(options.tmp_root, options.concurrency, options.max_entries)
        self._options = options
        self._transport = transport or FtpTransportClient(connect_jitter=options.connect_jitter)
        self._endpoint = FtpEndpoint(host=options.host, port=options.port)
        self._credentials = FtpCredentials(user=options.user, password=options.password)

    async def _load_records(self) -> list[EntryRecord]:
        session = await self._open_session()
        try:
            names = await session.list_names()
        finally:
            await session.close()
        return [
            EntryRecord.from_remote(
                RemoteEntry(name=name, is_metadata_file=is_metadata_name(name)),
                self._tmp_root,
            )
            for name in names
        ]

    async def fetch_one(self, entry: EntryRecord) -> None:
        """Download one entry over a dedicated session.

        Raises:
            HarvestFetchError: If the session or the transfer fails.
        """
        self._require_owned(entry)
        _LOGGER.info("entry_fetching", entry=entry.name, host=self._options.host)
        try:
            session = await self._open_session()
        except HarvestConnectionError as error:
            raise HarvestFetchError(
                entry.name,
                f"Failed to open a session for '{entry.name}': {error}",
            ) from error
        try:
            await session.retrieve(entry.name, entry.local_path)
        except HarvestFetchError:
            raise
        except HarvestConnectionError as error:
            raise HarvestFetchError(
                entry.name,
                f"Failed to download '{entry.name}': {error}",
            ) from error
        finally:
            await session.close()
        entry.fetched = True
        self.downloaded.append(entry.name)
        _LOGGER.info("entry_fetched", entry=entry.name, path=str(entry.local_path))

    async def decompress_one(self, entry: EntryRecord) -> None:
        """Gunzip a downloaded entry next to itself and drop the ``.gz`` file.

        Entries without the gzip suffix are left untouched.

        Raises:
            HarvestDecompressError: If the gzip stream cannot be decoded.
        """
        self._require_owned(entry)
        if not entry.is_gzip:
            _LOGGER.info("entry_decompress_skipped", entry=entry.name, reason="not a .gz file")
            return None
        target_path = entry.decompressed_path
        try:
            await asyncio.to_thread(_gunzip_file, entry.local_path, target_path)
        except (OSError, EOFError, zlib.error) as error:
            raise HarvestDecompressError(
                entry.name,
                f"Failed to gunzip '{entry.name}' at {entry.local_path}: {error}. "
                "Fetch the entry again and retry.",
            ) from error
        entry.decompressed = True
        _LOGGER.info("entry_decompressed", entry=entry.name, path=str(target_path))
        return None

    async def cleanup_one(self, entry: EntryRecord) -> None:
        await asyncio.to_thread(_unlink_if_present, entry.local_path)
        await asyncio.to_thread(_unlink_if_present, entry.decompressed_path)
        entry.decompressed = False

    async def _open_session(self) -> TransportSession:
        session = await self._transport.open(self._endpoint, self._credentials)
        try:
            await session.change_location(self._options.path)
            location = await session.current_location()
        except BaseException:
            await session.close()
            raise
        if _normalize_remote_path(location) != _normalize_remote_path(self._options.path):
            await session.close()
            raise HarvestPathMismatchError(
                f"Unable to verify remote path on {self._options.host}: "
                f"expected '{self._options.path}', server reports '{location}'."
            )
        return session


class ArchiveConnector(SourceConnector):
    """Connector over the members of one downloaded zip archive."""

    protocol = "zip"

    def __init__(
        self,
        options: ArchiveSourceOptions,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        super().__init__(options.tmp_root, options.concurrency, options.max_entries)
        self._options = options
        self._http_client = http_client
        self._archive_path = options.archive_path
        self._container: zipfile.ZipFile | None = None

    @property
    def archive_path(self) -> Path:
        """Local path of the downloaded archive."""
        return self._archive_path

    async def download(self) -> Path:
        """Download the archive unless it is already on local storage.

        Returns:
            Local archive path.

        Raises:
            HarvestConnectionError: If the HTTP download fails.
        """
        if self._archive_path.exists():
            _LOGGER.info("archive_reused", path=str(self._archive_path))
            return self._archive_path
        partial_path = self._archive_path.with_name(
            self._archive_path.name + PARTIAL_DOWNLOAD_SUFFIX
        )
        partial_path.parent.mkdir(parents=True, exist_ok=True)
        try:
            async with self._client() as client:
                await _stream_to_file(client, self._options, partial_path)
        except httpx.HTTPError as error:
            _unlink_if_present(partial_path)
            raise HarvestConnectionError(
                f"Failed to download archive from {self._options.url}: {error}. "
                "Check the URL and network access."
            ) from error
        except HarvestConnectionError:
            _unlink_if_present(partial_path)
            raise
        partial_path.replace(self._archive_path)
        _LOGGER.info("archive_downloaded", url=self._options.url, path=str(self._archive_path))
        return self._archive_path

    async def _load_records(self) -> list[EntryRecord]:
        await self.download()
        try:
            container = await asyncio.to_thread(zipfile.ZipFile, self._archive_path)
        except (zipfile.BadZipFile, OSError) as error:
            raise HarvestConnectionError(
                f"Failed to open archive {self._archive_path}: {error}. "
                "Delete the local file and download it again."
            ) from error
        self._container = container
        return [
            EntryRecord.from_remote(RemoteEntry(name=info.filename), self._tmp_root)
            for info in container.infolist()
            if not info.is_dir()
        ]

    async def fetch_one(self, entry: EntryRecord) -> None:
        """Mark a member as fetched; the container is already local."""
        self._require_owned(entry)
        entry.fetched = True
        self.downloaded.append(entry.name)

    async def decompress_one(self, entry: EntryRecord) -> str | None:
        """Extract one member to disk, or return its text when not inflating.

        Returns:
            Member text when the connector does not inflate, else None.

        Raises:
            HarvestDecompressError: If the member cannot be read.
        """
        self._require_owned(entry)
        container = self._require_container(entry)
        if not self._options.inflate:
            return await self._read_member_text(container, entry)
        target_path = self._member_target(entry)
        try:
            await asyncio.to_thread(_extract_member, container, entry.name, target_path)
        except (KeyError, zipfile.BadZipFile, OSError, EOFError, zlib.error) as error:
            raise HarvestDecompressError(
                entry.name,
                f"Failed to extract '{entry.name}' from {self._archive_path}: {error}.",
            ) from error
        entry.decompressed = True
        _LOGGER.info("member_extracted", entry=entry.name, path=str(target_path))
        return None

    def artifact_path(self, entry: EntryRecord) -> Path:
        return entry.local_path

    async def cleanup_one(self, entry: EntryRecord) -> None:
        if self._options.inflate:
            await asyncio.to_thread(_unlink_if_present, entry.local_path)
        entry.decompressed = False

    async def _cleanup_container(self) -> None:
        if self._container is not None:
            self._container.close()
            self._container = None
        await asyncio.to_thread(_unlink_if_present, self._archive_path)
        if self._options.inflate:
            member_paths = [entry.local_path for entry in self._records or []]
            await asyncio.to_thread(_prune_empty_dirs, member_paths, self._tmp_root)

    async def _read_member_text(self, container: zipfile.ZipFile, entry: EntryRecord) -> str:
        try:
            payload = await asyncio.to_thread(container.read, entry.name)
            return payload.decode(DEFAULT_TEXT_ENCODING)
        except (KeyError, zipfile.BadZipFile, OSError, EOFError, zlib.error) as error:
            raise HarvestDecompressError(
                entry.name,
                f"Failed to read '{entry.name}' from {self._archive_path}: {error}.",
            ) from error
        except UnicodeDecodeError as error:
            raise HarvestDecompressError(
                entry.name,
                f"Member '{entry.name}' is not valid {DEFAULT_TEXT_ENCODING} text: {error}.",
            ) from error

    def _require_container(self, entry: EntryRecord) -> zipfile.ZipFile:
        if self._container is None:
            raise HarvestDecompressError(
                entry.name,
                f"Archive {self._archive_path} is not open. List the source before extracting.",
            )
        return self._container

    def _member_target(self, entry: EntryRecord) -> Path:
        root = self._tmp_root.resolve()
        target = entry.local_path.resolve()
        if root not in target.parents:
            raise HarvestDecompressError(
                entry.name,
                f"Member '{entry.name}' would extract outside {root}. Refusing to write it.",
            )
        return entry.local_path

    @asynccontextmanager
    async def _client(self) -> AsyncIterator[httpx.AsyncClient]:
        if self._http_client is not None:
            yield self._http_client
            return
        async with httpx.AsyncClient() as client:
            yield client


def create_connector(
    options: ListingSourceOptions | ArchiveSourceOptions,
    transport: TransportClient | None = None,
    http_client: httpx.AsyncClient | None = None,
) -> SourceConnector:
    """Build the connector variant matching the options type.

    Raises:
        HarvestConfigError: For unsupported option types.
    """
    if isinstance(options, ListingSourceOptions):
        return ListingConnector(options, transport=transport)
    if isinstance(options, ArchiveSourceOptions):
        return ArchiveConnector(options, http_client=http_client)
    raise HarvestConfigError(
        f"Unsupported source options {type(options).__name__}. "
        "Use ListingSourceOptions or ArchiveSourceOptions."
    )


async def _stream_to_file(
    client: httpx.AsyncClient,
    options: ArchiveSourceOptions,
    destination: Path,
) -> None:
    async with client.stream(
        "GET", options.url, timeout=options.timeout, follow_redirects=True
    ) as response:
        if response.status_code >= 400:
            raise HarvestConnectionError(
                f"Failed to download archive from {options.url}: "
                f"HTTP {response.status_code} {response.reason_phrase}."
            )
        with destination.open("wb") as handle:
            async for chunk in response.aiter_bytes(DEFAULT_COPY_BUFFER_SIZE):
                handle.write(chunk)


def _gunzip_file(source_path: Path, target_path: Path) -> None:
    try:
        with gzip.open(source_path, "rb") as source, target_path.open("wb") as target:
            shutil.copyfileobj(source, target, DEFAULT_COPY_BUFFER_SIZE)
    except BaseException:
        _unlink_if_present(target_path)
        raise
    source_path.unlink()


def _extract_member(container: zipfile.ZipFile, name: str, target_path: Path) -> None:
    target_path.parent.mkdir(parents=True, exist_ok=True)
    try:
        with container.open(name) as source, target_path.open("wb") as target:
            shutil.copyfileobj(source, target, DEFAULT_COPY_BUFFER_SIZE)
    except BaseException:
        _unlink_if_present(target_path)
        raise


def _unlink_if_present(path: Path) -> bool:
    if not path.exists():
        return False
    path.unlink()
    return True


def _prune_empty_dirs(paths: list[Path], root: Path) -> None:
    """Remove directories under ``root`` left empty by extracted members, deepest first."""
    directories = {parent for path in paths for parent in path.parents if root in parent.parents}
    for directory in sorted(directories, key=lambda item: len(item.parts), reverse=True):
        if directory.is_dir() and not any(directory.iterdir()):
            directory.rmdir()


def _normalize_remote_path(path: str) -> str:
    return path.strip().strip("/")
