"""Public SDK surface for stream-harvest.

This module provides a stable import path for library users.
It exposes the harvest client and re-exports the typed option models.
"""

from __future__ import annotations

from typing import Any, Iterable

import httpx

from core.config import HarvestConfig
from core.errors import HarvestConfigError, HarvestError
from core.run_spec import HarvestRunSpec, ParseSpec, StoreSpec, load_run_spec
from core.types import (
    ArchiveSourceOptions,
    BulkWriteOptions,
    ListingSourceOptions,
    PipelineOptions,
    PipelineSummary,
    ReadOutcome,
    ReadQuery,
    ReadStatus,
    WriteOutcome,
)
from ingest.harvest import build_entry_pipeline, harvest_source, xml_block_collector
from ingest.http_reads import HttpReadSource
from ingest.pipeline import IngestionPipeline, ReadCallback, SaveCallback
from sources.connector import SourceConnector, create_connector
from sources.transport import TransportClient
from store.bulk_writer import BulkWriter
from store.document_store import DocumentStoreClient


class HarvestClient:
    """Entry point wiring sources, pipelines, and the document store.

    ``transport`` and ``http_transport`` replace the FTP and HTTP layers,
    which lets tests run whole harvests without a network.
    """

    def __init__(
        self,
        config: HarvestConfig | None = None,
        transport: TransportClient | None = None,
        http_transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._config = config or HarvestConfig.from_env()
        self._transport = transport
        self._http_transport = http_transport

    @property
    def config(self) -> HarvestConfig:
        return self._config

    def connector(
        self,
        options: ListingSourceOptions | ArchiveSourceOptions,
        http_client: httpx.AsyncClient | None = None,
    ) -> SourceConnector:
        """Build the source connector matching ``options``."""
        return create_connector(options, transport=self._transport, http_client=http_client)

    def document_store(
        self,
        http_client: httpx.AsyncClient,
        db_url: str | None = None,
    ) -> DocumentStoreClient:
        """Build a document store client for ``db_url`` or the configured database.

        Raises:
            HarvestConfigError: If no database URL is available.
        """
        target_url = db_url or self._config.db_url
        if not target_url:
            raise HarvestConfigError(
                "No document database configured. Set HARVEST_DB_URL or pass a db_url."
            )
        return DocumentStoreClient(
            target_url,
            http_client,
            auth=self._config.db_auth(),
            timeout=self._config.request_timeout,
        )

    def http_client(self) -> httpx.AsyncClient:
        """Create an HTTP client honoring the configured timeout."""
        client_kwargs: dict[str, Any] = {"transport": self._http_transport}
        if self._config.request_timeout is not None:
            client_kwargs["timeout"] = self._config.request_timeout
        return httpx.AsyncClient(**client_kwargs)

    async def list_entries(
        self,
        options: ListingSourceOptions | ArchiveSourceOptions,
    ) -> list[str]:
        """Return the data entry names of a source and remove any local artifacts."""
        async with self.http_client() as client:
            connector = self.connector(options, http_client=client)
            try:
                return [entry.name for entry in await connector.list()]
            finally:
                await connector.cleanup_all()

    async def harvest(
        self,
        spec: HarvestRunSpec,
        on_read: ReadCallback | None = None,
        on_save: SaveCallback | None = None,
    ) -> PipelineSummary:
        """Run one harvest spec end to end.

        Args:
            spec: Validated harvest spec.
            on_read: Optional callback invoked with each entry outcome.
            on_save: Optional callback invoked with each flushed batch and its outcome.

        Returns:
            Pipeline summary for the harvest.

        Raises:
            HarvestConfigError: If no database URL is available.
            HarvestConnectionError: If the source cannot be listed.
        """
        async with self.http_client() as client:
            store = self.document_store(client, spec.store.db_url)
            connector = self.connector(spec.source, http_client=client)
            pipeline = build_entry_pipeline(
                connector,
                BulkWriter(store, spec.store.write),
                xml_block_collector(
                    spec.parse.start_marker,
                    spec.parse.end_marker,
                    spec.parse.force_array,
                ),
                spec.pipeline,
            )
            return await harvest_source(connector, pipeline, on_read, on_save)

    async def harvest_file(
        self,
        spec_path: str,
        on_read: ReadCallback | None = None,
        on_save: SaveCallback | None = None,
    ) -> PipelineSummary:
        """Load a YAML harvest spec and run it."""
        spec = load_run_spec(spec_path, default_tmp_root=self._config.tmp_root)
        return await self.harvest(spec, on_read, on_save)

    async def read(
        self,
        queries: Iterable[ReadQuery],
        db_url: str | None = None,
        options: PipelineOptions | None = None,
        write_options: BulkWriteOptions | None = None,
        on_read: ReadCallback | None = None,
        on_save: SaveCallback | None = None,
    ) -> PipelineSummary:
        """Run HTTP reads and bulk save the parsed responses.

        Raises:
            HarvestConfigError: If no database URL is available.
        """
        pipeline_options = options or PipelineOptions(timeout=self._config.request_timeout)
        async with self.http_client() as client:
            store = self.document_store(client, db_url)
            pipeline = IngestionPipeline(
                HttpReadSource(client, pipeline_options),
                BulkWriter(store, write_options),
                pipeline_options,
            )
            return await pipeline.go(queries, on_read, on_save)


__all__ = [
    "ArchiveSourceOptions",
    "BulkWriteOptions",
    "HarvestClient",
    "HarvestConfig",
    "HarvestError",
    "HarvestRunSpec",
    "ListingSourceOptions",
    "ParseSpec",
    "PipelineOptions",
    "PipelineSummary",
    "ReadOutcome",
    "ReadQuery",
    "ReadStatus",
    "StoreSpec",
    "WriteOutcome",
    "load_run_spec",
]
