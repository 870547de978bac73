"""HTTP client for a CouchDB-style document database.

This module wraps the two database endpoints the harvest needs:
``_bulk_docs`` for chunked writes and ``_all_docs`` for revision lookup.
"""

from __future__ import annotations

from typing import Any, Protocol, Sequence

import httpx

from core.constants import ALL_DOCS_PATH, BULK_DOCS_PATH
from core.errors import HarvestStoreError
from core.types import Document


class DocumentStore(Protocol):
    """Document database operations used by bulk writers."""

    async def bulk_docs(self, docs: Sequence[Document]) -> list[Document]: ...

    async def all_docs(self, keys: Sequence[str]) -> list[Document]: ...


class DocumentStoreClient:
    """Document store bound to one database URL."""

    def __init__(
        self,
        db_url: str,
        http_client: httpx.AsyncClient,
        auth: tuple[str, str] | None = None,
        timeout: float | None = None,
    ) -> None:
        self._db_url = db_url.rstrip("/")
        self._client = http_client
        self._auth = auth
        self._timeout = timeout

    @property
    def db_url(self) -> str:
        return self._db_url

    async def bulk_docs(self, docs: Sequence[Document]) -> list[Document]:
        """Write documents in one request.

        Args:
            docs: Documents to create, update, or delete.

        Returns:
            One result row per input document, in input order.

        Raises:
            HarvestStoreError: If the request fails or the reply is malformed.
        """
        payload = await self._post(BULK_DOCS_PATH, {"docs": list(docs)})
        if not isinstance(payload, list):
            raise HarvestStoreError(
                f"Unexpected {BULK_DOCS_PATH} reply from {self._db_url}: expected a list."
            )
        return payload

    async def all_docs(self, keys: Sequence[str]) -> list[Document]:
        """Look up current revisions for document ids.

        Raises:
            HarvestStoreError: If the request fails or the reply is malformed.
        """
        payload = await self._post(ALL_DOCS_PATH, {"keys": list(keys)})
        rows = payload.get("rows") if isinstance(payload, dict) else None
        if not isinstance(rows, list):
            raise HarvestStoreError(
                f"Unexpected {ALL_DOCS_PATH} reply from {self._db_url}: missing 'rows'."
            )
        return rows

    async def _post(self, path: str, body: Document) -> Any:
        url = f"{self._db_url}/{path}"
        request_kwargs: dict[str, Any] = {"json": body}
        if self._auth is not None:
            request_kwargs["auth"] = self._auth
        if self._timeout is not None:
            request_kwargs["timeout"] = self._timeout
        try:
            response = await self._client.post(url, **request_kwargs)
        except httpx.HTTPError as error:
            raise HarvestStoreError(
                f"Request to {url} failed: {error}. Check that the database is reachable."
            ) from error
        if response.status_code >= 400:
            raise HarvestStoreError(
                f"Request to {url} failed with HTTP {response.status_code}: "
                f"{response.text[:200]}"
            )
        try:
            return response.json()
        except ValueError as error:
            raise HarvestStoreError(f"Reply from {url} is not valid JSON: {error}.") from error
