"""Revision-aware bulk update and removal.

This module looks up current document revisions in key chunks and
issues updates or tombstones through the bulk writer.
"""

from __future__ import annotations

from typing import Callable, Iterable, Sequence

from core.constants import ALL_DOCS_KEY_CHUNK_SIZE
from core.logging_config import get_logger
from core.types import Document, WriteOutcome
from store.bulk_writer import BulkWriter
from store.document_store import DocumentStore

_LOGGER = get_logger(__name__)

DocumentTransform = Callable[[list[Document]], list[Document]]


async def fetch_revisions(store: DocumentStore, doc_ids: Sequence[str]) -> dict[str, str]:
    """Map existing, non-deleted document ids to their current revision.

    Args:
        store: Document store to query.
        doc_ids: Ids to look up.

    Returns:
        Revision per id; ids the store does not know are absent.

    Raises:
        HarvestStoreError: If a lookup request fails.
    """
    revisions: dict[str, str] = {}
    for start in range(0, len(doc_ids), ALL_DOCS_KEY_CHUNK_SIZE):
        keys = doc_ids[start : start + ALL_DOCS_KEY_CHUNK_SIZE]
        rows = await store.all_docs(keys)
        _LOGGER.info("revisions_fetched", requested=len(keys), rows=len(rows))
        for row in rows:
            value = row.get("value")
            if not isinstance(value, dict) or value.get("deleted"):
                continue
            if row.get("id") and value.get("rev"):
                revisions[str(row["id"])] = str(value["rev"])
    return revisions


async def update_documents(
    store: DocumentStore,
    writer: BulkWriter,
    docs: Iterable[Document],
    transform: DocumentTransform | None = None,
) -> WriteOutcome:
    """Create or update documents, stamping their current revisions.

    Documents without an ``_id`` are ignored. When an id repeats, the
    last document wins.
    """
    docs_by_id = {
        str(doc["_id"]): doc for doc in docs if isinstance(doc, dict) and doc.get("_id")
    }
    revisions = await fetch_revisions(store, list(docs_by_id))
    updated: list[Document] = []
    for doc_id, doc in docs_by_id.items():
        stamped = dict(doc)
        if doc_id in revisions:
            stamped["_rev"] = revisions[doc_id]
        updated.append(stamped)
    if transform is not None:
        updated = transform(updated)
    _LOGGER.info("documents_updating", count=len(updated), existing=len(revisions))
    return await writer.save(updated)


async def remove_documents(
    store: DocumentStore,
    writer: BulkWriter,
    doc_ids: Iterable[str],
) -> WriteOutcome:
    """Delete existing documents by writing revision-stamped tombstones."""
    revisions = await fetch_revisions(store, list(dict.fromkeys(doc_ids)))
    tombstones: list[Document] = [
        {"_id": doc_id, "_rev": rev, "_deleted": True} for doc_id, rev in revisions.items()
    ]
    _LOGGER.info("documents_removing", count=len(tombstones))
    return await writer.save(tombstones)
