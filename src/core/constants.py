"""Core constants used across harvest modules.

This module centralizes non-domain-specific constants.
Keeping values here avoids magic literals in business logic.
"""

from __future__ import annotations

from pathlib import Path

DEFAULT_TMP_ROOT = Path("/tmp")
DEFAULT_FTP_PORT = 21
DEFAULT_FTP_USER = "anonymous"
GZIP_SUFFIX = ".gz"
PARTIAL_DOWNLOAD_SUFFIX = ".part"
NON_DATA_SUFFIXES = (".md5", ".txt")
SUPPORTED_PROTOCOLS = ("ftp", "zip")
DEFAULT_SOURCE_CONCURRENCY = 1
DEFAULT_COPY_BUFFER_SIZE = 1024 * 1024
DEFAULT_LINE_CHUNK_HINT = 64 * 1024
DEFAULT_TEXT_ENCODING = "utf-8"

DEFAULT_PIPELINE_WORKERS = 1
DEFAULT_BUCKET_SIZE = 1
DEFAULT_MAX_READ_ATTEMPTS = 10
BACKOFF_STEP = 0.25
BACKOFF_FIRST_RETRY = 1.0
DEFAULT_BACKOFF_UNIT_SECONDS = 1.0
JOB_STATUS_INTERVAL = 100
SERVICE_UNAVAILABLE_STATUS = 503
NOT_FOUND_STATUS = 404
DEFAULT_PIPELINE_MODULE = "pipeline"

DEFAULT_BULK_CHUNK_SIZE = 1000
DEFAULT_BULK_PARALLELISM = 5
ALL_DOCS_KEY_CHUNK_SIZE = 10000
BULK_DOCS_PATH = "_bulk_docs"
ALL_DOCS_PATH = "_all_docs"
WRITE_OK_REASON = "ok"
WRITE_CONFLICT_REASON = "conflict"

READ_FAILED_ERROR = "read_failed"
TOO_MANY_RETRIES_REASON = "too_many_retries"
MISSING_BODY_REASON = "missing_body"
EMPTY_RESPONSE_ERROR = "empty_response"
TIMEOUT_REASON = "timeout"
INVALID_RESULT_REASON = "invalid"
NOT_FOUND_ERROR = "not_found"
