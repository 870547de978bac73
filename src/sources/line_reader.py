"""Lazy line streaming over decompressed artifacts.

This module exposes local files and in-memory member text as async
sequences of lines so callers can aggregate very large documents
block by block without loading them whole.
"""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import AsyncIterable, AsyncIterator, Callable, Protocol, TypeVar

from core.constants import DEFAULT_LINE_CHUNK_HINT, DEFAULT_TEXT_ENCODING
from core.documents import documents_from
from core.errors import HarvestStreamError
from core.types import Document

HandlerT = TypeVar("HandlerT", bound="LineHandler")


class LineHandler(Protocol):
    """Receiver for streamed lines."""

    def line(self, text: str) -> None: ...


class LineStreamReader:
    """Async iterable of text lines read from a local file.

    Each ``async for`` opens the file again, so one reader can be
    iterated more than once. Lines are yielded without trailing newlines.
    """

    def __init__(
        self,
        path: Path,
        encoding: str = DEFAULT_TEXT_ENCODING,
        chunk_hint: int = DEFAULT_LINE_CHUNK_HINT,
    ) -> None:
        self._path = path
        self._encoding = encoding
        self._chunk_hint = chunk_hint

    @property
    def path(self) -> Path:
        return self._path

    def __aiter__(self) -> AsyncIterator[str]:
        return self._iterate()

    async def _iterate(self) -> AsyncIterator[str]:
        try:
            handle = await asyncio.to_thread(self._path.open, "r", encoding=self._encoding)
        except OSError as error:
            raise HarvestStreamError(
                f"Failed to open {self._path} for line streaming: {error}. "
                "Check that the entry was fetched and decompressed."
            ) from error
        try:
            while True:
                try:
                    chunk = await asyncio.to_thread(handle.readlines, self._chunk_hint)
                except (OSError, UnicodeDecodeError) as error:
                    raise HarvestStreamError(
                        f"Failed to read lines from {self._path}: {error}."
                    ) from error
                if not chunk:
                    return
                for raw_line in chunk:
                    yield raw_line.rstrip("\r\n")
        finally:
            handle.close()


async def iter_text_lines(text: str) -> AsyncIterator[str]:
    """Yield lines of an in-memory text payload.

    Line boundaries are the universal newlines a text-mode file read by
    ``LineStreamReader`` sees; other Unicode line separators stay inside lines.
    """
    raw_lines = text.replace("\r\n", "\n").replace("\r", "\n").split("\n")
    if raw_lines[-1] == "":
        raw_lines.pop()
    for raw_line in raw_lines:
        yield raw_line


async def read_by_line(lines: AsyncIterable[str], handler: HandlerT) -> HandlerT:
    """Feed every streamed line to ``handler`` and return it.

    Args:
        lines: Async line source.
        handler: Receiver whose ``line`` method sees every line in order.

    Returns:
        The same handler, after the stream ended.

    Raises:
        HarvestStreamError: If the underlying stream fails.
    """
    async for text in lines:
        handler.line(text)
    return handler


class MarkedBlockCollector:
    """Line handler that parses blocks delimited by start/end markers.

    Lines are trimmed and joined from the line containing the start marker
    through the line containing the end marker. Each block is handed to
    ``parse``; non-empty results are kept as records.
    """

    def __init__(
        self,
        start_marker: str,
        end_marker: str,
        parse: Callable[[str], object],
    ) -> None:
        self._start_marker = start_marker
        self._end_marker = end_marker
        self._parse = parse
        self._pending: list[str] = []
        self._records: list[Document] = []
        self.block_count = 0

    def line(self, text: str) -> None:
        text = text.strip()
        if self._start_marker in text:
            self._pending = [text]
            if self._end_marker in text:
                self._close_block()
        elif self._end_marker in text and self._pending:
            self._pending.append(text)
            self._close_block()
        elif self._pending:
            self._pending.append(text)

    def records(self) -> list[Document]:
        return list(self._records)

    def _close_block(self) -> None:
        block = "".join(self._pending)
        self._pending = []
        self.block_count += 1
        self._records.extend(documents_from(self._parse(block)))

