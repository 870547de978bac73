"""Unit tests for HTTP reads with overload retry."""

from __future__ import annotations

import asyncio
import json
from typing import Callable

import httpx
import pytest

from core.types import PipelineOptions, ReadQuery, ReadStatus
from ingest.http_reads import HttpReadSource, backoff_delay

Handler = Callable[[httpx.Request], httpx.Response]


class _Sleeps:
    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


def _read(
    handler: Handler,
    query: ReadQuery,
    options: PipelineOptions | None = None,
    sleeps: _Sleeps | None = None,
):
    async def _scenario():
        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            source = HttpReadSource(client, options, sleep=sleeps or _Sleeps())
            return await source.read(query)

    return asyncio.run(_scenario())


class _Sequence:
    """Handler replying with a fixed list of responses, repeating the last."""

    def __init__(self, *responses: httpx.Response) -> None:
        self.responses = list(responses)
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        index = min(len(self.requests), len(self.responses)) - 1
        return self.responses[index]


def test_backoff_delay_waits_one_unit_then_quarter_steps() -> None:
    """First retry waits one unit, later retries a quarter unit per attempt."""
    assert [backoff_delay(attempt) for attempt in (1, 2, 3, 4)] == [1.0, 0.5, 0.75, 1.0]
    assert backoff_delay(2, unit_seconds=0.1) == pytest.approx(0.05)


def test_read_retries_overload_until_success() -> None:
    """Two overload replies followed by success complete the read."""
    handler = _Sequence(
        httpx.Response(503),
        httpx.Response(503),
        httpx.Response(200, json={"_id": "a", "title": "ok"}),
    )
    sleeps = _Sleeps()

    outcome = _read(handler, ReadQuery("https://api.example.org/a"), sleeps=sleeps)

    assert outcome.status is ReadStatus.DONE
    assert outcome.records == ({"_id": "a", "title": "ok"},)
    assert outcome.attempts == 3 and len(handler.requests) == 3
    assert sleeps.delays == [1.0, 0.5]


def test_read_gives_up_after_max_attempts() -> None:
    """Persistent overload ends in retry exhaustion after exactly max_attempts."""
    handler = _Sequence(httpx.Response(503))
    sleeps = _Sleeps()

    outcome = _read(handler, ReadQuery("https://api.example.org/busy"), sleeps=sleeps)

    assert outcome.status is ReadStatus.RETRY_EXHAUSTED
    assert (outcome.error, outcome.reason) == ("read_failed", "too_many_retries")
    assert len(handler.requests) == 10 and outcome.attempts == 10
    assert len(sleeps.delays) == 9 and sleeps.delays[0] == 1.0
    assert outcome.status_code == 503


def test_read_respects_custom_attempt_cap_and_unit() -> None:
    """Attempt cap and backoff unit come from pipeline options."""
    handler = _Sequence(httpx.Response(503))
    sleeps = _Sleeps()
    options = PipelineOptions(max_attempts=3, backoff_unit_seconds=0.01)

    outcome = _read(handler, ReadQuery("https://api.example.org/busy"), options, sleeps)

    assert outcome.status is ReadStatus.RETRY_EXHAUSTED and len(handler.requests) == 3
    assert sleeps.delays == pytest.approx([0.01, 0.005])


def test_read_skips_not_found_without_retry() -> None:
    """404 is a skip, not a failure, and is not retried."""
    handler = _Sequence(httpx.Response(404))

    outcome = _read(handler, ReadQuery("https://api.example.org/missing"))

    assert outcome.status is ReadStatus.SKIPPED and outcome.error == "not_found"
    assert len(handler.requests) == 1 and not outcome.failed


def test_read_fails_on_other_http_errors_without_retry() -> None:
    """Other error statuses end the read immediately."""
    handler = _Sequence(httpx.Response(500))

    outcome = _read(handler, ReadQuery("https://api.example.org/error"))

    assert outcome.status is ReadStatus.FAILED and outcome.reason == "http_500"
    assert len(handler.requests) == 1


def test_read_maps_timeouts_to_failed() -> None:
    """Timeouts fail the read with the timeout reason and are not retried."""
    calls: list[httpx.Request] = []

    def _handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        raise httpx.ReadTimeout("timed out", request=request)

    outcome = _read(_handler, ReadQuery("https://api.example.org/slow", timeout=0.5))

    assert outcome.status is ReadStatus.FAILED and outcome.reason == "timeout"
    assert len(calls) == 1


def test_read_maps_transport_errors_to_empty_response() -> None:
    """Connection failures fail the read as empty responses."""

    def _handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    outcome = _read(_handler, ReadQuery("https://api.example.org/down"))

    assert outcome.status is ReadStatus.FAILED and outcome.reason == "empty_response"


def test_read_fails_on_missing_body() -> None:
    """A success reply without a body is a failure."""
    outcome = _read(_Sequence(httpx.Response(200)), ReadQuery("https://api.example.org/a"))

    assert outcome.status is ReadStatus.FAILED and outcome.reason == "missing_body"


def test_read_skips_empty_parse_results() -> None:
    """A parse callable returning nothing makes the read a skip."""
    handler = _Sequence(httpx.Response(200, json={"items": []}))
    query = ReadQuery("https://api.example.org/a", parse=lambda body: body["items"])

    outcome = _read(handler, query)

    assert outcome.status is ReadStatus.SKIPPED and outcome.reason == "invalid"


def test_read_parse_list_keeps_only_documents() -> None:
    """List results keep non-empty mappings only."""
    handler = _Sequence(httpx.Response(200, json={"rows": [{"_id": "1"}, {}, "x", {"_id": "2"}]}))
    query = ReadQuery("https://api.example.org/a", parse=lambda body: body["rows"])

    outcome = _read(handler, query)

    assert outcome.records == ({"_id": "1"}, {"_id": "2"})


def test_read_text_bodies_reach_the_parse_callable() -> None:
    """Non-JSON replies are handed to parse as text."""
    handler = _Sequence(httpx.Response(200, text="<Doc><Id>7</Id></Doc>"))
    query = ReadQuery("https://api.example.org/doc.xml", parse=lambda body: {"raw": body})

    outcome = _read(handler, query)

    assert outcome.records == ({"raw": "<Doc><Id>7</Id></Doc>"},)


def test_read_sends_json_body_for_post() -> None:
    """POST queries carry their body as JSON with the given headers."""
    handler = _Sequence(httpx.Response(200, json={"_id": "q"}))
    query = ReadQuery(
        "https://api.example.org/search",
        method="post",
        body={"term": "sleep"},
        headers={"X-Api-Key": "k"},
    )

    _read(handler, query)

    request = handler.requests[0]
    assert request.method == "POST"
    assert json.loads(request.content) == {"term": "sleep"}
    assert request.headers["X-Api-Key"] == "k"


def test_overloaded_read_does_not_block_other_reads() -> None:
    """Backoff waits yield the loop so other reads complete meanwhile."""
    finished: list[str] = []

    def _handler(request: httpx.Request) -> httpx.Response:
        if request.url.path == "/busy":
            return httpx.Response(503)
        return httpx.Response(200, json={"_id": request.url.path})

    async def _scenario() -> None:
        async with httpx.AsyncClient(transport=httpx.MockTransport(_handler)) as client:
            options = PipelineOptions(max_attempts=3, backoff_unit_seconds=0.05)
            source = HttpReadSource(client, options)

            async def _track(url: str) -> None:
                outcome = await source.read(ReadQuery(url))
                finished.append(outcome.label)

            await asyncio.gather(
                _track("https://api.example.org/busy"),
                _track("https://api.example.org/fast"),
            )

    asyncio.run(_scenario())

    assert finished == ["https://api.example.org/fast", "https://api.example.org/busy"]
