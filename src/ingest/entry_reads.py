"""Reads that turn one source entry into documents."""

from __future__ import annotations

import asyncio
from typing import AsyncIterable, Callable, Protocol

from core.constants import INVALID_RESULT_REASON, READ_FAILED_ERROR, TIMEOUT_REASON
from core.documents import documents_from
from core.errors import (
    HarvestDecompressError,
    HarvestError,
    HarvestFetchError,
    HarvestStreamError,
)
from core.logging_config import get_logger
from core.types import Document, ReadOutcome, ReadStatus
from sources.connector import SourceConnector
from sources.entry import EntryRecord
from sources.line_reader import LineStreamReader, iter_text_lines, read_by_line

_LOGGER = get_logger(__name__)

_ERROR_KINDS: dict[type[HarvestError], str] = {
    HarvestFetchError: "fetch_failed",
    HarvestDecompressError: "decompress_failed",
    HarvestStreamError: "stream_failed",
}


class DocumentCollector(Protocol):
    """Line handler that yields documents once the stream ends."""

    def line(self, text: str) -> None: ...

    def records(self) -> list[Document]: ...


CollectorFactory = Callable[[EntryRecord], DocumentCollector]


class EntryReadSource:
    """Read source that fetches, decompresses, and streams one entry.

    Fetch and decompress are bounded by the connector's concurrency, so
    pipeline workers above that limit wait for a slot. ``timeout`` bounds
    the fetch, decompress and stream steps of one entry; waiting for a
    slot does not count against it. The entry's local artifacts are
    removed once its documents have been collected.
    """

    def __init__(
        self,
        connector: SourceConnector,
        collector_factory: CollectorFactory,
        cleanup: bool = True,
        timeout: float | None = None,
    ) -> None:
        self._connector = connector
        self._collector_factory = collector_factory
        self._cleanup = cleanup
        self._timeout = timeout
        self._slots = asyncio.Semaphore(connector.concurrency)

    async def read(self, entry: EntryRecord) -> ReadOutcome:
        """Collect the documents held by one entry.

        Returns:
            DONE with documents, SKIPPED when the entry held none, or
            FAILED when fetching, decompressing, or streaming failed or
            ran past the timeout.
        """
        try:
            collector = await self._collect(entry)
        except asyncio.TimeoutError:
            _LOGGER.error(
                "entry_read_timed_out", entry=entry.name, timeout_seconds=self._timeout
            )
            return ReadOutcome(
                label=entry.name,
                status=ReadStatus.FAILED,
                error=READ_FAILED_ERROR,
                reason=TIMEOUT_REASON,
            )
        except (HarvestFetchError, HarvestDecompressError, HarvestStreamError) as error:
            kind = _error_kind(error)
            _LOGGER.error("entry_read_failed", entry=entry.name, error=kind, reason=str(error))
            return ReadOutcome(
                label=entry.name, status=ReadStatus.FAILED, error=kind, reason=str(error)
            )
        finally:
            if self._cleanup:
                await self._release(entry)
        documents = documents_from(collector.records())
        if not documents:
            return ReadOutcome(
                label=entry.name, status=ReadStatus.SKIPPED, reason=INVALID_RESULT_REASON
            )
        _LOGGER.info("entry_read", entry=entry.name, documents=len(documents))
        return ReadOutcome(label=entry.name, status=ReadStatus.DONE, records=tuple(documents))

    async def _collect(self, entry: EntryRecord) -> DocumentCollector:
        loop = asyncio.get_running_loop()
        async with self._slots:
            started = loop.time()
            content = await asyncio.wait_for(self._materialize(entry), self._timeout)
        remaining = None
        if self._timeout is not None:
            remaining = max(self._timeout - (loop.time() - started), 0.0)
        return await asyncio.wait_for(
            read_by_line(self._lines(entry, content), self._collector_factory(entry)),
            remaining,
        )

    async def _materialize(self, entry: EntryRecord) -> str | None:
        await self._connector.fetch_one(entry)
        return await self._connector.decompress_one(entry)

    def _lines(self, entry: EntryRecord, content: str | None) -> AsyncIterable[str]:
        if content is not None:
            return iter_text_lines(content)
        return LineStreamReader(self._connector.artifact_path(entry))

    async def _release(self, entry: EntryRecord) -> None:
        try:
            await self._connector.cleanup_one(entry)
        except (HarvestError, OSError) as error:
            # Leftovers are retried by the connector's final cleanup.
            _LOGGER.warning("entry_cleanup_failed", entry=entry.name, error=str(error))


def _error_kind(error: HarvestError) -> str:
    for error_type, kind in _ERROR_KINDS.items():
        if isinstance(error, error_type):
            return kind
    return type(error).__name__
