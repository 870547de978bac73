"""Shared typed models.

This module defines immutable option and result models used by the
source, ingest, and store layers to keep interfaces explicit and stable.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Mapping

from core.constants import (
    DEFAULT_BACKOFF_UNIT_SECONDS,
    DEFAULT_BUCKET_SIZE,
    DEFAULT_BULK_CHUNK_SIZE,
    DEFAULT_BULK_PARALLELISM,
    DEFAULT_FTP_PORT,
    DEFAULT_FTP_USER,
    DEFAULT_MAX_READ_ATTEMPTS,
    DEFAULT_PIPELINE_MODULE,
    DEFAULT_PIPELINE_WORKERS,
    DEFAULT_SOURCE_CONCURRENCY,
    DEFAULT_TMP_ROOT,
)

Document = dict[str, Any]


@dataclass(frozen=True)
class ListingSourceOptions:
    """Options for a directory-listing (FTP) source.

    Attributes:
        host: FTP server host name.
        path: Remote directory holding the data files.
        tmp_root: Local directory for downloaded artifacts.
        user: Login user name.
        password: Login password (anonymous FTP uses an e-mail address).
        port: FTP control port.
        concurrency: Maximum simultaneous entry operations.
        max_entries: Optional cap on listed entries.
        connect_jitter: Upper bound in seconds of a random delay before connecting.
    """

    host: str
    path: str
    tmp_root: Path = DEFAULT_TMP_ROOT
    user: str = DEFAULT_FTP_USER
    password: str = ""
    port: int = DEFAULT_FTP_PORT
    concurrency: int = DEFAULT_SOURCE_CONCURRENCY
    max_entries: int | None = None
    connect_jitter: float = 0.0


@dataclass(frozen=True)
class ArchiveSourceOptions:
    """Options for a single-archive (HTTP zip) source.

    Attributes:
        url: Full URL of the remote zip archive.
        archive_name: Local file name for the downloaded archive.
        tmp_root: Local directory for the archive and inflated members.
        concurrency: Maximum simultaneous entry operations.
        max_entries: Optional cap on listed members.
        inflate: Write members to disk; when false, members are returned as text.
        timeout: Optional download timeout in seconds.
    """

    url: str
    archive_name: str
    tmp_root: Path = DEFAULT_TMP_ROOT
    concurrency: int = DEFAULT_SOURCE_CONCURRENCY
    max_entries: int | None = None
    inflate: bool = True
    timeout: float | None = None

    @property
    def archive_path(self) -> Path:
        """Local path of the downloaded archive."""
        return self.tmp_root / self.archive_name


@dataclass(frozen=True)
class PipelineOptions:
    """Ingestion pipeline options.

    Attributes:
        workers: Number of logical reads in flight at once.
        bucket_size: Buffered record count that triggers a flush.
        max_attempts: Total attempts for a read that keeps seeing overload.
        backoff_unit_seconds: Length in seconds of one backoff unit.
        timeout: Optional default per-read timeout in seconds.
        job_status: Log progress every hundred completed reads.
        module: Name reported in progress logs.
        stop_on_retry_exhausted: Stop admitting reads after one exhausts its retries.
    """

    workers: int = DEFAULT_PIPELINE_WORKERS
    bucket_size: int = DEFAULT_BUCKET_SIZE
    max_attempts: int = DEFAULT_MAX_READ_ATTEMPTS
    backoff_unit_seconds: float = DEFAULT_BACKOFF_UNIT_SECONDS
    timeout: float | None = None
    job_status: bool = False
    module: str = DEFAULT_PIPELINE_MODULE
    stop_on_retry_exhausted: bool = False


@dataclass(frozen=True)
class BulkWriteOptions:
    """Bulk write options.

    Attributes:
        chunk_size: Maximum documents per bulk request.
        parallelism: Maximum bulk requests in flight.
        silent: Suppress per-chunk outcome logging.
        ascii_only: Drop non-ASCII characters from string values before saving.
    """

    chunk_size: int = DEFAULT_BULK_CHUNK_SIZE
    parallelism: int = DEFAULT_BULK_PARALLELISM
    silent: bool = False
    ascii_only: bool = False


@dataclass(frozen=True)
class ReadQuery:
    """One logical HTTP read.

    Attributes:
        url: Target URL.
        method: HTTP method.
        body: JSON body sent with POST/PUT requests.
        headers: Extra request headers.
        timeout: Optional timeout overriding the pipeline default.
        parse: Optional callable turning the response body into documents.
    """

    url: str
    method: str = "GET"
    body: object | None = None
    headers: Mapping[str, str] | None = None
    timeout: float | None = None
    parse: Callable[[object], object] | None = None


class ReadStatus(str, Enum):
    """Terminal state of one logical read."""

    DONE = "done"
    SKIPPED = "skipped"
    FAILED = "failed"
    RETRY_EXHAUSTED = "retry_exhausted"


@dataclass(frozen=True)
class ReadOutcome:
    """Tagged result of one logical read.

    Attributes:
        label: URL or entry name identifying the read.
        status: Terminal state reached.
        records: Accepted documents when status is DONE.
        error: Error kind when the read did not complete.
        reason: Human-readable reason for skips and failures.
        attempts: Number of attempts made.
        status_code: Last HTTP status observed, when any.
    """

    label: str
    status: ReadStatus
    records: tuple[Document, ...] = ()
    error: str | None = None
    reason: str | None = None
    attempts: int = 1
    status_code: int | None = None

    @property
    def accepted(self) -> bool:
        """Whether the read produced documents for the batch buffer."""
        return self.status is ReadStatus.DONE

    @property
    def failed(self) -> bool:
        """Whether the read ended in a failure state."""
        return self.status in (ReadStatus.FAILED, ReadStatus.RETRY_EXHAUSTED)


@dataclass(frozen=True)
class WriteOutcome:
    """Aggregated result of one bulk save.

    Attributes:
        ok_count: Documents the store accepted.
        reason_counts: Document count per outcome reason; ``ok`` marks success.
        results: Flattened per-document store responses.
    """

    ok_count: int = 0
    reason_counts: Mapping[str, int] = field(default_factory=dict)
    results: tuple[Document, ...] = ()


@dataclass(frozen=True)
class PipelineSummary:
    """Observational summary of one pipeline run.

    Attributes:
        run_id: Identifier used in progress logs.
        reads_completed: Reads that reached a terminal state.
        total_saved: Documents the store accepted.
        total_written: Documents handed to the writer.
        flush_count: Writer calls issued.
        failures_by_reason: Failed read count per reason.
        skipped_by_reason: Skipped read count per reason.
        write_failures: Flushes whose bulk request failed.
        write_reasons: Written document count per store outcome reason.
        elapsed_seconds: Wall time of the run.
        records_per_second: Throughput of saved documents.
        first_error: First failed read outcome, when any.
    """

    run_id: str
    reads_completed: int
    total_saved: int
    flush_count: int
    failures_by_reason: Mapping[str, int]
    skipped_by_reason: Mapping[str, int]
    write_failures: int
    elapsed_seconds: float
    records_per_second: float
    first_error: ReadOutcome | None = None
    total_written: int = 0
    write_reasons: Mapping[str, int] = field(default_factory=dict)
