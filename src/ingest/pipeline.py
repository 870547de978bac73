"""Bounded-concurrency read pipeline with batched writes.

This module drives a read source over a sequence of queries with a
fixed number of workers, buffers accepted documents, and hands them to
a writer in bucket-sized flushes.
"""

from __future__ import annotations

import asyncio
import uuid
from collections import Counter
from dataclasses import dataclass, field
from typing import Any, Callable, Iterable, Protocol, Sequence

from core.constants import JOB_STATUS_INTERVAL
from core.errors import HarvestBulkWriteError, HarvestConfigError, HarvestStoreError
from core.logging_config import get_logger
from core.types import (
    Document,
    PipelineOptions,
    PipelineSummary,
    ReadOutcome,
    ReadStatus,
    WriteOutcome,
)
from ingest.batch_buffer import BatchBuffer
from ingest.run_timer import RunTimer

_LOGGER = get_logger(__name__)

ReadCallback = Callable[[ReadOutcome], None]
SaveCallback = Callable[[Sequence[Document], WriteOutcome], None]


class ReadSource(Protocol):
    """Anything that turns one query into a terminal read outcome."""

    async def read(self, query: Any) -> ReadOutcome: ...


class RecordWriter(Protocol):
    """Sink for flushed document batches."""

    async def save(self, records: Sequence[Document]) -> WriteOutcome: ...


@dataclass
class _PipelineRun:
    run_id: str
    buffer: BatchBuffer
    timer: RunTimer
    on_read: ReadCallback | None = None
    on_save: SaveCallback | None = None
    reads_completed: int = 0
    total_saved: int = 0
    total_written: int = 0
    flush_count: int = 0
    write_failures: int = 0
    failures: Counter = field(default_factory=Counter)
    skipped: Counter = field(default_factory=Counter)
    write_reasons: Counter = field(default_factory=Counter)
    first_error: ReadOutcome | None = None
    stopped: bool = False

    def record(self, outcome: ReadOutcome) -> None:
        self.reads_completed += 1
        if outcome.accepted:
            self.buffer.append(outcome.records)
        elif outcome.status is ReadStatus.SKIPPED:
            self.skipped[outcome.reason or outcome.error or "unknown"] += 1
        else:
            self.failures[outcome.reason or outcome.error or "unknown"] += 1
            if self.first_error is None:
                self.first_error = outcome

    def record_write(self, outcome: WriteOutcome) -> None:
        self.total_saved += outcome.ok_count
        self.write_reasons.update(outcome.reason_counts)

    def summary(self) -> PipelineSummary:
        elapsed = self.timer.stop(self.run_id)
        return PipelineSummary(
            run_id=self.run_id,
            reads_completed=self.reads_completed,
            total_saved=self.total_saved,
            flush_count=self.flush_count,
            failures_by_reason=dict(self.failures),
            skipped_by_reason=dict(self.skipped),
            write_failures=self.write_failures,
            elapsed_seconds=elapsed,
            records_per_second=_rate(self.total_saved, elapsed),
            first_error=self.first_error,
            total_written=self.total_written,
            write_reasons=dict(self.write_reasons),
        )


class IngestionPipeline:
    """Run reads with a fixed worker pool and flush documents in buckets.

    Each worker appends a finished read's documents to the shared buffer
    and flushes a full bucket before taking its next query. The final
    partial bucket is flushed once every read has finished.
    """

    def __init__(
        self,
        source: ReadSource,
        writer: RecordWriter,
        options: PipelineOptions | None = None,
    ) -> None:
        self._source = source
        self._writer = writer
        self._options = options or PipelineOptions()
        if self._options.workers < 1:
            raise HarvestConfigError(
                f"Invalid worker count {self._options.workers}: must be at least 1."
            )
        if self._options.max_attempts < 1:
            raise HarvestConfigError(
                f"Invalid max_attempts {self._options.max_attempts}: must be at least 1."
            )

    async def go(
        self,
        queries: Iterable[Any],
        on_read: ReadCallback | None = None,
        on_save: SaveCallback | None = None,
    ) -> PipelineSummary:
        """Run every query to a terminal outcome and flush the results.

        Args:
            queries: Read inputs, consumed in order.
            on_read: Optional callback invoked with each read outcome.
            on_save: Optional callback invoked with each flushed batch and
                the store's outcome for it, conflicts included.

        Returns:
            Summary of reads, saved documents, and failures.

        Raises:
            HarvestConfigError: If the bucket size is invalid.
        """
        run = _PipelineRun(
            run_id=uuid.uuid4().hex[:8],
            buffer=BatchBuffer(self._options.bucket_size),
            timer=RunTimer(),
            on_read=on_read,
            on_save=on_save,
        )
        run.timer.start(run.run_id)
        pending: asyncio.Queue[Any] = asyncio.Queue()
        for query in queries:
            pending.put_nowait(query)
        total = pending.qsize()
        _LOGGER.info(
            "pipeline_started",
            module=self._options.module,
            run_id=run.run_id,
            queries=total,
            workers=self._options.workers,
            bucket_size=self._options.bucket_size,
        )
        worker_count = min(self._options.workers, total)
        await asyncio.gather(*(self._worker(run, pending) for _ in range(worker_count)))
        await self._flush(run, run.buffer.take())
        summary = run.summary()
        _LOGGER.info(
            "pipeline_completed",
            module=self._options.module,
            run_id=run.run_id,
            reads_completed=summary.reads_completed,
            total_saved=summary.total_saved,
            total_written=summary.total_written,
            write_reasons=summary.write_reasons,
            failures=summary.failures_by_reason,
            skipped=summary.skipped_by_reason,
            elapsed=round(summary.elapsed_seconds, 3),
            docs_per_second=summary.records_per_second,
        )
        return summary

    async def _worker(
        self,
        run: _PipelineRun,
        pending: asyncio.Queue[Any],
    ) -> None:
        while not run.stopped:
            try:
                query = pending.get_nowait()
            except asyncio.QueueEmpty:
                return
            outcome = await self._read_one(run, query)
            run.record(outcome)
            if run.on_read is not None:
                run.on_read(outcome)
            self._log_job_status(run)
            if (
                outcome.status is ReadStatus.RETRY_EXHAUSTED
                and self._options.stop_on_retry_exhausted
                and not run.stopped
            ):
                run.stopped = True
                _LOGGER.error(
                    "pipeline_stopping",
                    run_id=run.run_id,
                    query=outcome.label,
                    remaining=pending.qsize(),
                )
            if run.buffer.ready:
                await self._flush(run, run.buffer.take())

    async def _read_one(self, run: _PipelineRun, query: Any) -> ReadOutcome:
        try:
            return await self._source.read(query)
        except Exception as error:
            label = _query_label(query)
            _LOGGER.error(
                "read_crashed",
                run_id=run.run_id,
                query=label,
                error_type=type(error).__name__,
                error=str(error),
            )
            return ReadOutcome(
                label=label,
                status=ReadStatus.FAILED,
                error=type(error).__name__,
                reason=str(error) or type(error).__name__,
            )

    async def _flush(self, run: _PipelineRun, documents: list[Document]) -> None:
        if not documents:
            return
        run.flush_count += 1
        run.total_written += len(documents)
        elapsed = run.timer.elapsed(run.run_id)
        _LOGGER.info(
            "bulk_saving",
            module=self._options.module,
            run_id=run.run_id,
            saving=len(documents),
            total_written=run.total_written,
            elapsed=round(elapsed, 3),
            docs_per_second=_rate(run.total_written, elapsed),
        )
        try:
            outcome = await self._writer.save(documents)
        except HarvestStoreError as error:
            run.write_failures += 1
            if isinstance(error, HarvestBulkWriteError) and isinstance(
                error.outcome, WriteOutcome
            ):
                run.record_write(error.outcome)
            _LOGGER.error(
                "bulk_save_failed",
                run_id=run.run_id,
                saving=len(documents),
                error=str(error),
            )
            return
        run.record_write(outcome)
        if run.on_save is not None:
            run.on_save(documents, outcome)

    def _log_job_status(self, run: _PipelineRun) -> None:
        if self._options.job_status and run.reads_completed % JOB_STATUS_INTERVAL == 0:
            _LOGGER.info(
                "jobs_completed",
                module=self._options.module,
                run_id=run.run_id,
                completed=run.reads_completed,
                elapsed=round(run.timer.elapsed(run.run_id), 3),
            )


def _query_label(query: Any) -> str:
    if isinstance(query, str):
        return query
    for attribute in ("url", "name"):
        value = getattr(query, attribute, None)
        if isinstance(value, str):
            return value
    return repr(query)


def _rate(count: int, elapsed: float) -> float:
    if elapsed <= 0:
        return 0.0
    return round(count / elapsed, 2)
