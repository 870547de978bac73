"""Integration tests for end-to-end harvests through the SDK client."""

from __future__ import annotations

import asyncio
import gzip
import json
from pathlib import Path

import httpx

from core.run_spec import parse_run_spec
from core.types import ReadStatus
from harvester import HarvestClient
from tests.fixture_paths import fixture_path
from tests.transport_fakes import InMemoryTransport


class _BulkEndpoint:
    def __init__(self) -> None:
        self.requests: list[list[dict]] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        if not request.url.path.endswith("/_bulk_docs"):
            return httpx.Response(404)
        docs = json.loads(request.content)["docs"]
        self.requests.append(docs)
        rows = [{"ok": True, "id": str(index)} for index in range(len(docs))]
        return httpx.Response(201, json=rows)


def _ftp_spec(tmp_root: Path, bucket_size: int = 2) -> dict:
    return {
        "version": 1,
        "source": {
            "protocol": "ftp",
            "host": "ftp.example.org",
            "path": "/pubmed/baseline",
            "tmp_root": str(tmp_root),
            "concurrency": 2,
        },
        "pipeline": {"workers": 3, "bucket_size": bucket_size},
        "parse": {
            "start_marker": "<PubmedArticle>",
            "end_marker": "</PubmedArticle>",
            "force_array": ["Author"],
        },
        "store": {"db_url": "http://db.local:5984/pubmed", "chunk_size": 2},
    }


def test_ftp_harvest_saves_every_article_and_leaves_no_artifacts(
    tmp_path: Path, harvest_config
) -> None:
    """Gzip files are fetched, parsed, bulk saved, and removed from local storage."""
    payload = gzip.compress(fixture_path("pubmed/sample_articles.xml").read_bytes())
    transport = InMemoryTransport(
        {
            "pubmed0001.xml.gz": payload,
            "pubmed0002.xml.gz": payload,
            "pubmed0001.xml.gz.md5": b"d41d8cd98f00b204e9800998ecf8427e",
        }
    )
    endpoint = _BulkEndpoint()
    client = HarvestClient(
        harvest_config,
        transport=transport,
        http_transport=httpx.MockTransport(endpoint),
    )
    outcomes = []

    summary = asyncio.run(client.harvest(parse_run_spec(_ftp_spec(tmp_path)), outcomes.append))

    saved = [doc for request in endpoint.requests for doc in request]
    assert summary.reads_completed == 2 and summary.total_saved == 6
    assert summary.write_failures == 0 and summary.first_error is None
    assert all(len(request) <= 2 for request in endpoint.requests)
    assert sorted(doc["PubmedArticle"]["MedlineCitation"]["PMID"]["#text"] for doc in saved) == [
        "1001",
        "1001",
        "1002",
        "1002",
        "1003",
        "1003",
    ]
    assert {outcome.status for outcome in outcomes} == {ReadStatus.DONE}
    assert sorted(transport.retrievals) == ["pubmed0001.xml.gz", "pubmed0002.xml.gz"]
    assert transport.peak_retrievals <= 2
    assert list(tmp_path.iterdir()) == []


def test_ftp_harvest_reports_failed_entries_and_keeps_going(
    tmp_path: Path, harvest_config
) -> None:
    """One interrupted transfer fails its entry while the rest are saved."""
    payload = gzip.compress(fixture_path("pubmed/sample_articles.xml").read_bytes())
    transport = InMemoryTransport(
        {"good.xml.gz": payload, "bad.xml.gz": payload},
        failing_names=["bad.xml.gz"],
    )
    endpoint = _BulkEndpoint()
    client = HarvestClient(
        harvest_config,
        transport=transport,
        http_transport=httpx.MockTransport(endpoint),
    )

    summary = asyncio.run(client.harvest(parse_run_spec(_ftp_spec(tmp_path, bucket_size=10))))

    assert summary.total_saved == 3
    assert summary.first_error is not None and summary.first_error.label == "bad.xml.gz"
    assert sum(summary.failures_by_reason.values()) == 1
    assert list(tmp_path.iterdir()) == []
