"""End-to-end harvest of one source connector."""

from __future__ import annotations

from functools import partial
from typing import Iterable

from core.logging_config import get_logger
from core.types import PipelineOptions, PipelineSummary
from ingest.entry_reads import CollectorFactory, EntryReadSource
from ingest.pipeline import IngestionPipeline, ReadCallback, RecordWriter, SaveCallback
from sources.connector import SourceConnector
from sources.entry import EntryRecord
from sources.line_reader import MarkedBlockCollector
from sources.xml_records import parse_xml

_LOGGER = get_logger(__name__)


def xml_block_collector(
    start_marker: str,
    end_marker: str,
    force_array: Iterable[str] = (),
) -> CollectorFactory:
    """Return a factory of collectors parsing marked XML blocks per entry."""
    forced = tuple(force_array)

    def _factory(entry: EntryRecord) -> MarkedBlockCollector:
        return MarkedBlockCollector(
            start_marker,
            end_marker,
            partial(parse_xml, force_array=forced, error_handler=partial(_log_diagnostic, entry)),
        )

    return _factory


def build_entry_pipeline(
    connector: SourceConnector,
    writer: RecordWriter,
    collector_factory: CollectorFactory,
    options: PipelineOptions | None = None,
) -> IngestionPipeline:
    """Create a pipeline whose reads are the entries of ``connector``.

    The pipeline timeout, when set, bounds each entry read.
    """
    options = options or PipelineOptions()
    source = EntryReadSource(connector, collector_factory, timeout=options.timeout)
    return IngestionPipeline(source, writer, options)


async def harvest_source(
    connector: SourceConnector,
    pipeline: IngestionPipeline,
    on_read: ReadCallback | None = None,
    on_save: SaveCallback | None = None,
) -> PipelineSummary:
    """List a source, read every entry, and remove all local artifacts.

    Args:
        connector: Source whose entries are read.
        pipeline: Pipeline reading entries of ``connector``.
        on_read: Optional callback invoked with each read outcome.
        on_save: Optional callback invoked with each flushed batch and its outcome.

    Returns:
        Pipeline summary for the harvest.

    Raises:
        HarvestConnectionError: If the source cannot be listed.
        HarvestError: If final cleanup fails.
    """
    try:
        entries = await connector.list()
        _LOGGER.info("harvest_started", protocol=connector.protocol, entries=len(entries))
        return await pipeline.go(entries, on_read, on_save)
    finally:
        await connector.cleanup_all()


def _log_diagnostic(entry: EntryRecord, message: str) -> None:
    _LOGGER.warning("xml_block_diagnostic", entry=entry.name, message=message)
