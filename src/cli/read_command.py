"""HTTP read CLI command wiring.

This module registers the read subcommand, which runs the HTTP read
pipeline over a JSON-lines file of queries and bulk saves the results.
"""

from __future__ import annotations

import argparse
import asyncio
import json
from pathlib import Path
from typing import Any, Mapping

from cli.harvest_command import render_summary
from core.constants import (
    DEFAULT_BUCKET_SIZE,
    DEFAULT_BULK_CHUNK_SIZE,
    DEFAULT_BULK_PARALLELISM,
    DEFAULT_MAX_READ_ATTEMPTS,
    DEFAULT_PIPELINE_WORKERS,
)
from core.errors import HarvestError, HarvestRunSpecError
from core.types import BulkWriteOptions, PipelineOptions, ReadQuery
from harvester import HarvestClient

_QUERY_KEYS = {"url", "method", "body", "headers", "timeout"}


def add_read_command(subparsers: Any) -> None:
    """Register read subcommand."""
    parser = subparsers.add_parser(
        "read",
        help="Run HTTP reads from a JSON-lines query file and bulk save the replies",
    )
    parser.add_argument("queries_file", help="JSON-lines file of {url, method?, body?} queries")
    parser.add_argument("--db", help="Document database URL (defaults to HARVEST_DB_URL)")
    parser.add_argument(
        "--workers",
        type=int,
        default=DEFAULT_PIPELINE_WORKERS,
        help="Reads in flight at once",
    )
    parser.add_argument(
        "--bucket-size",
        type=int,
        default=DEFAULT_BUCKET_SIZE,
        help="Buffered documents that trigger a bulk save",
    )
    parser.add_argument(
        "--max-attempts",
        type=int,
        default=DEFAULT_MAX_READ_ATTEMPTS,
        help="Attempts per read while the server reports overload",
    )
    parser.add_argument(
        "--chunk-size",
        type=int,
        default=DEFAULT_BULK_CHUNK_SIZE,
        help="Documents per bulk request",
    )
    parser.add_argument(
        "--parallelism",
        type=int,
        default=DEFAULT_BULK_PARALLELISM,
        help="Bulk requests in flight",
    )
    parser.add_argument(
        "--ascii-only",
        action="store_true",
        help="Drop non-ASCII characters from saved string values",
    )
    parser.add_argument(
        "--job-status",
        action="store_true",
        help="Log progress every hundred completed reads",
    )


def run_read_command(client: HarvestClient, args: argparse.Namespace) -> int:
    """Handle read command invocation."""
    options = PipelineOptions(
        workers=args.workers,
        bucket_size=args.bucket_size,
        max_attempts=args.max_attempts,
        timeout=client.config.request_timeout,
        job_status=args.job_status,
        module="read",
    )
    write_options = BulkWriteOptions(
        chunk_size=args.chunk_size,
        parallelism=args.parallelism,
        ascii_only=args.ascii_only,
    )
    try:
        queries = load_queries(Path(args.queries_file))
        summary = asyncio.run(
            client.read(queries, db_url=args.db, options=options, write_options=write_options)
        )
    except HarvestError as error:
        print(f"read_error={error}")
        return 1
    for line in render_summary(summary):
        print(line)
    return 0 if summary.first_error is None and summary.write_failures == 0 else 1


def load_queries(path: Path) -> list[ReadQuery]:
    """Load read queries from a JSON-lines file; blank lines are ignored.

    Raises:
        HarvestRunSpecError: If the file cannot be read or a line is invalid.
    """
    try:
        raw_lines = path.read_text(encoding="utf-8").splitlines()
    except OSError as error:
        raise HarvestRunSpecError(
            f"Failed to read query file {path}: {error}. Check the path and retry."
        ) from error
    queries = []
    for line_number, raw_line in enumerate(raw_lines, start=1):
        if not raw_line.strip():
            continue
        try:
            payload = json.loads(raw_line)
        except ValueError as error:
            raise HarvestRunSpecError(
                f"Invalid JSON on line {line_number} of {path}: {error}."
            ) from error
        queries.append(_query_from_payload(payload, f"line {line_number} of {path}"))
    return queries


def _query_from_payload(payload: object, context: str) -> ReadQuery:
    if not isinstance(payload, Mapping):
        raise HarvestRunSpecError(f"Invalid query on {context}: expected a JSON object.")
    unknown_keys = sorted(set(payload) - _QUERY_KEYS)
    if unknown_keys:
        raise HarvestRunSpecError(
            f"Query on {context} contains unknown fields: {', '.join(unknown_keys)}."
        )
    url = payload.get("url")
    if not isinstance(url, str) or not url.strip():
        raise HarvestRunSpecError(f"Query on {context} must define a non-empty 'url'.")
    method = payload.get("method", "GET")
    if not isinstance(method, str):
        raise HarvestRunSpecError(f"Query on {context} has a non-string 'method'.")
    headers = payload.get("headers")
    if headers is not None and not isinstance(headers, Mapping):
        raise HarvestRunSpecError(f"Query on {context} has non-object 'headers'.")
    timeout = payload.get("timeout")
    if timeout is not None and (isinstance(timeout, bool) or not isinstance(timeout, (int, float))):
        raise HarvestRunSpecError(f"Query on {context} has a non-numeric 'timeout'.")
    return ReadQuery(
        url=url.strip(),
        method=method.upper(),
        body=payload.get("body"),
        headers={str(key): str(value) for key, value in headers.items()} if headers else None,
        timeout=float(timeout) if timeout is not None else None,
    )
