"""Flush-sized buffer of parsed documents."""

from __future__ import annotations

from typing import Iterable

from core.errors import HarvestConfigError
from core.types import Document


class BatchBuffer:
    """Ordered documents awaiting a bulk write.

    ``take`` swaps the contents out in one step, so a document is never
    part of two flushes and nothing appended after the swap is lost.
    """

    def __init__(self, bucket_size: int) -> None:
        if bucket_size < 1:
            raise HarvestConfigError(f"Invalid bucket size {bucket_size}: must be at least 1.")
        self._bucket_size = bucket_size
        self._items: list[Document] = []

    def __len__(self) -> int:
        return len(self._items)

    @property
    def ready(self) -> bool:
        """Whether the buffer holds at least one bucket of documents."""
        return len(self._items) >= self._bucket_size

    def append(self, documents: Iterable[Document]) -> None:
        self._items.extend(documents)

    def take(self) -> list[Document]:
        documents = self._items
        self._items = []
        return documents
