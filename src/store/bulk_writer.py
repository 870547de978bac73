"""Chunked bulk writes to the document store.

This module splits arbitrary document sets into size-bounded requests,
issues them with limited parallelism, and tallies per-document outcomes.
"""

from __future__ import annotations

import asyncio
from collections import Counter
from typing import Iterable, Sequence

from core.constants import WRITE_OK_REASON
from core.errors import HarvestBulkWriteError, HarvestConfigError, HarvestStoreError
from core.logging_config import get_logger
from core.types import BulkWriteOptions, Document, WriteOutcome
from store.document_cleaning import clean_document
from store.document_store import DocumentStore

_LOGGER = get_logger(__name__)


class BulkWriter:
    """Persist document sets through ``_bulk_docs`` in bounded chunks.

    The writer does not deduplicate or retry documents. Callers provide
    ``_id`` (and ``_rev`` when updating); stale revisions come back as
    ``conflict`` outcomes in the tally.
    """

    def __init__(self, store: DocumentStore, options: BulkWriteOptions | None = None) -> None:
        self._store = store
        self._options = options or BulkWriteOptions()
        self._total_ok = 0

    async def save(
        self,
        records: Iterable[Document],
        chunk_size: int | None = None,
        parallelism: int | None = None,
    ) -> WriteOutcome:
        """Save documents in contiguous chunks.

        A failed chunk request does not cancel its siblings. Once every
        chunk has finished, the first failure is raised.

        Args:
            records: Documents to persist.
            chunk_size: Maximum documents per request.
            parallelism: Maximum requests in flight.

        Returns:
            Tally of per-document outcomes across all chunks.

        Raises:
            HarvestConfigError: If chunk size or parallelism is below one.
            HarvestBulkWriteError: If any chunk request failed.
        """
        size = chunk_size if chunk_size is not None else self._options.chunk_size
        limit = parallelism if parallelism is not None else self._options.parallelism
        if size < 1 or limit < 1:
            raise HarvestConfigError(
                f"Invalid bulk write settings chunk_size={size}, parallelism={limit}: "
                "both must be at least 1."
            )
        docs = list(records)
        if self._options.ascii_only:
            docs = [clean_document(doc) for doc in docs]
        if not docs:
            return WriteOutcome()
        chunks = [docs[start : start + size] for start in range(0, len(docs), size)]
        slots = asyncio.Semaphore(limit)
        chunk_results = await asyncio.gather(
            *(self._save_chunk(slots, index, chunk) for index, chunk in enumerate(chunks))
        )
        failures = [result for result in chunk_results if isinstance(result, HarvestStoreError)]
        outcome = _merge_results(
            [result for result in chunk_results if not isinstance(result, HarvestStoreError)]
        )
        if failures:
            raise HarvestBulkWriteError(
                f"{len(failures)} of {len(chunks)} bulk request(s) failed: {failures[0]}",
                failed_chunks=len(failures),
                outcome=outcome,
            ) from failures[0]
        return outcome

    async def _save_chunk(
        self,
        slots: asyncio.Semaphore,
        index: int,
        chunk: Sequence[Document],
    ) -> list[Document] | HarvestStoreError:
        async with slots:
            try:
                results = await self._store.bulk_docs(chunk)
            except HarvestStoreError as error:
                _LOGGER.error("bulk_chunk_failed", chunk=index, size=len(chunk), error=str(error))
                return error
        self._log_chunk(results)
        return results

    def _log_chunk(self, results: Sequence[Document]) -> None:
        self._total_ok += sum(1 for row in results if row.get("ok") is True)
        if self._options.silent:
            return
        for reason, rows in _group_by_reason(results).items():
            if reason == WRITE_OK_REASON:
                _LOGGER.info("bulk_chunk_saved", success=len(rows), total=self._total_ok)
            else:
                _LOGGER.warning(
                    "bulk_chunk_rejected",
                    error=reason,
                    reason=rows[0].get("reason"),
                    count=len(rows),
                )


def outcome_reason(row: Document) -> str:
    """Return the tally key for one ``_bulk_docs`` result row."""
    error = row.get("error")
    if error:
        return str(error)
    return WRITE_OK_REASON


def _group_by_reason(results: Sequence[Document]) -> dict[str, list[Document]]:
    grouped: dict[str, list[Document]] = {}
    for row in results:
        grouped.setdefault(outcome_reason(row), []).append(row)
    return grouped


def _merge_results(chunk_results: Sequence[Sequence[Document]]) -> WriteOutcome:
    flattened = tuple(row for rows in chunk_results for row in rows)
    reason_counts = Counter(outcome_reason(row) for row in flattened)
    return WriteOutcome(
        ok_count=sum(1 for row in flattened if row.get("ok") is True),
        reason_counts=dict(reason_counts),
        results=flattened,
    )
