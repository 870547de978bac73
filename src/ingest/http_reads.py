"""HTTP reads with overload-aware retry.

This module turns one ``ReadQuery`` into a terminal ``ReadOutcome``.
A 503 reply schedules another attempt after a growing delay until the
attempt cap is reached; 404 is a skip; other failures end the read.
"""

from __future__ import annotations

import asyncio
import json
from dataclasses import dataclass
from typing import Any, Awaitable, Callable

import httpx

from core.constants import (
    BACKOFF_FIRST_RETRY,
    BACKOFF_STEP,
    EMPTY_RESPONSE_ERROR,
    INVALID_RESULT_REASON,
    MISSING_BODY_REASON,
    NOT_FOUND_ERROR,
    NOT_FOUND_STATUS,
    READ_FAILED_ERROR,
    SERVICE_UNAVAILABLE_STATUS,
    TIMEOUT_REASON,
    TOO_MANY_RETRIES_REASON,
)
from core.documents import documents_from
from core.errors import (
    HarvestNotFoundError,
    HarvestReadError,
    HarvestRetryExhaustedError,
    HarvestTransientOverloadError,
)
from core.logging_config import get_logger
from core.types import Document, PipelineOptions, ReadOutcome, ReadQuery, ReadStatus

_LOGGER = get_logger(__name__)

_BODY_METHODS = ("POST", "PUT", "PATCH")


@dataclass
class RetryState:
    """Per-read attempt bookkeeping.

    Attributes:
        attempt_count: Attempts issued so far.
        last_status_code: HTTP status of the latest reply, when any.
    """

    attempt_count: int = 0
    last_status_code: int | None = None


def backoff_delay(attempt: int, unit_seconds: float = 1.0) -> float:
    """Return the wait before retrying after failed attempt ``attempt``.

    The first retry waits one unit; later retries wait a quarter unit per
    attempt made so far.
    """
    if attempt <= 1:
        return BACKOFF_FIRST_RETRY * unit_seconds
    return BACKOFF_STEP * attempt * unit_seconds


class HttpReadSource:
    """Read source issuing ``ReadQuery`` requests over a shared HTTP client.

    Waiting between attempts goes through ``sleep`` and never blocks
    other reads running on the same loop.
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        options: PipelineOptions | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self._client = client
        self._options = options or PipelineOptions()
        self._sleep = sleep

    async def read(self, query: ReadQuery) -> ReadOutcome:
        """Run one logical read to a terminal outcome.

        Args:
            query: Request description and optional parse callable.

        Returns:
            DONE with the parsed documents, SKIPPED for 404 and empty
            parse results, FAILED for other errors, or RETRY_EXHAUSTED
            when overload outlasted the attempt cap.
        """
        retry = RetryState()
        try:
            documents = await self._read_with_retries(query, retry)
        except HarvestRetryExhaustedError as error:
            _LOGGER.error(
                "read_retries_exhausted",
                url=query.url,
                attempts=error.attempts,
                status_code=retry.last_status_code,
            )
            return self._outcome(query, retry, ReadStatus.RETRY_EXHAUSTED, error)
        except HarvestNotFoundError as error:
            _LOGGER.warning("read_not_found", url=query.url, reason=str(error))
            return ReadOutcome(
                label=query.url,
                status=ReadStatus.SKIPPED,
                error=NOT_FOUND_ERROR,
                reason=error.reason,
                attempts=retry.attempt_count,
                status_code=retry.last_status_code,
            )
        except HarvestReadError as error:
            _LOGGER.error(
                "read_failed",
                url=query.url,
                reason=error.reason,
                attempts=retry.attempt_count,
                status_code=retry.last_status_code,
                error=str(error),
            )
            return self._outcome(query, retry, ReadStatus.FAILED, error)
        if not documents:
            return ReadOutcome(
                label=query.url,
                status=ReadStatus.SKIPPED,
                reason=INVALID_RESULT_REASON,
                attempts=retry.attempt_count,
                status_code=retry.last_status_code,
            )
        return ReadOutcome(
            label=query.url,
            status=ReadStatus.DONE,
            records=tuple(documents),
            attempts=retry.attempt_count,
            status_code=retry.last_status_code,
        )

    async def _read_with_retries(self, query: ReadQuery, retry: RetryState) -> list[Document]:
        while True:
            retry.attempt_count += 1
            try:
                return await self._attempt(query, retry)
            except HarvestTransientOverloadError as error:
                if retry.attempt_count >= self._options.max_attempts:
                    raise HarvestRetryExhaustedError(
                        retry.attempt_count,
                        f"Read of {query.url} still overloaded after "
                        f"{retry.attempt_count} attempt(s).",
                        reason=TOO_MANY_RETRIES_REASON,
                    ) from error
                delay = backoff_delay(retry.attempt_count, self._options.backoff_unit_seconds)
                _LOGGER.info(
                    "read_retry",
                    url=query.url,
                    status_code=error.status_code,
                    attempt=retry.attempt_count,
                    delay_seconds=delay,
                )
                await self._sleep(delay)

    async def _attempt(self, query: ReadQuery, retry: RetryState) -> list[Document]:
        response = await self._send(query)
        retry.last_status_code = response.status_code
        if response.status_code == SERVICE_UNAVAILABLE_STATUS:
            raise HarvestTransientOverloadError(
                response.status_code, f"Server overloaded while reading {query.url}."
            )
        if response.status_code == NOT_FOUND_STATUS:
            raise HarvestNotFoundError(
                f"Nothing found at {query.url}.", reason=response.reason_phrase or None
            )
        if response.status_code >= 400:
            raise HarvestReadError(
                f"Read of {query.url} failed with HTTP {response.status_code}.",
                reason=f"http_{response.status_code}",
            )
        if not response.content:
            raise HarvestReadError(
                f"Read of {query.url} returned no body.", reason=MISSING_BODY_REASON
            )
        body = _decode_body(response)
        parsed = query.parse(body) if query.parse is not None else body
        return documents_from(parsed)

    async def _send(self, query: ReadQuery) -> httpx.Response:
        request_kwargs: dict[str, Any] = {}
        if query.headers:
            request_kwargs["headers"] = dict(query.headers)
        if query.body is not None and query.method.upper() in _BODY_METHODS:
            request_kwargs["json"] = query.body
        timeout = query.timeout if query.timeout is not None else self._options.timeout
        if timeout is not None:
            request_kwargs["timeout"] = timeout
        try:
            return await self._client.request(query.method.upper(), query.url, **request_kwargs)
        except httpx.TimeoutException as error:
            raise HarvestReadError(
                f"Read of {query.url} timed out: {error}.", reason=TIMEOUT_REASON
            ) from error
        except httpx.HTTPError as error:
            raise HarvestReadError(
                f"Read of {query.url} got no response: {error}.", reason=EMPTY_RESPONSE_ERROR
            ) from error

    def _outcome(
        self,
        query: ReadQuery,
        retry: RetryState,
        status: ReadStatus,
        error: HarvestReadError,
    ) -> ReadOutcome:
        return ReadOutcome(
            label=query.url,
            status=status,
            error=READ_FAILED_ERROR,
            reason=error.reason,
            attempts=retry.attempt_count,
            status_code=retry.last_status_code,
        )


def _decode_body(response: httpx.Response) -> object:
    """Decode JSON bodies; anything else is returned as text."""
    try:
        return json.loads(response.content)
    except ValueError:
        return response.text
