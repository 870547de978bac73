"""Typed harvest-spec parsing for declarative harvest runs.

This module loads and validates YAML harvest specs used by CLI workflows.
It provides one strict schema so the CLI and SDK execution paths consume
the same harvest description safely.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path, PurePosixPath
from typing import Mapping, cast
from urllib.parse import urlparse

import yaml

from core.constants import (
    DEFAULT_BACKOFF_UNIT_SECONDS,
    DEFAULT_BUCKET_SIZE,
    DEFAULT_BULK_CHUNK_SIZE,
    DEFAULT_BULK_PARALLELISM,
    DEFAULT_FTP_PORT,
    DEFAULT_FTP_USER,
    DEFAULT_MAX_READ_ATTEMPTS,
    DEFAULT_PIPELINE_MODULE,
    DEFAULT_PIPELINE_WORKERS,
    DEFAULT_SOURCE_CONCURRENCY,
    DEFAULT_TMP_ROOT,
    SUPPORTED_PROTOCOLS,
)
from core.errors import HarvestRunSpecError
from core.run_spec_fields import (
    optional_bool,
    optional_float,
    optional_int,
    optional_string,
    positive_int,
    required_string,
    string_tuple,
)
from core.types import (
    ArchiveSourceOptions,
    BulkWriteOptions,
    ListingSourceOptions,
    PipelineOptions,
)

SourceOptions = ListingSourceOptions | ArchiveSourceOptions

_ROOT_KEYS = {"version", "source", "pipeline", "parse", "store"}
_LISTING_KEYS = {
    "protocol",
    "host",
    "path",
    "user",
    "password",
    "port",
    "concurrency",
    "max_entries",
    "connect_jitter",
    "tmp_root",
}
_ARCHIVE_KEYS = {
    "protocol",
    "url",
    "archive_name",
    "concurrency",
    "max_entries",
    "inflate",
    "timeout",
    "tmp_root",
}
_PIPELINE_KEYS = {
    "workers",
    "bucket_size",
    "max_attempts",
    "backoff_unit_seconds",
    "timeout",
    "job_status",
    "module",
    "stop_on_retry_exhausted",
}
_PARSE_KEYS = {"start_marker", "end_marker", "force_array"}
_STORE_KEYS = {"db_url", "chunk_size", "parallelism", "ascii_only", "silent"}


@dataclass(frozen=True)
class ParseSpec:
    """How streamed lines are grouped into XML blocks."""

    start_marker: str
    end_marker: str
    force_array: tuple[str, ...] = ()


@dataclass(frozen=True)
class StoreSpec:
    """Document store target and bulk write settings."""

    db_url: str | None = None
    write: BulkWriteOptions = field(default_factory=BulkWriteOptions)


@dataclass(frozen=True)
class HarvestRunSpec:
    """Validated harvest spec root object."""

    version: int
    source: SourceOptions
    pipeline: PipelineOptions
    parse: ParseSpec
    store: StoreSpec


def load_run_spec(spec_path: str, default_tmp_root: Path = DEFAULT_TMP_ROOT) -> HarvestRunSpec:
    """Load and validate a YAML harvest spec from disk.

    Args:
        spec_path: File path to YAML harvest spec.
        default_tmp_root: Download directory used when the source sets none.

    Returns:
        Fully validated harvest spec.

    Raises:
        HarvestRunSpecError: If file is invalid or schema checks fail.
    """
    payload = _load_yaml_payload(spec_path)
    return parse_run_spec(payload, default_tmp_root)


def parse_run_spec(payload: object, default_tmp_root: Path = DEFAULT_TMP_ROOT) -> HarvestRunSpec:
    """Validate an already-decoded harvest spec payload."""
    root_mapping = _expect_mapping(payload, "harvest spec root")
    _validate_keys(root_mapping, _ROOT_KEYS, "harvest spec root")
    version = _parse_version(root_mapping)
    source = _parse_source(_required_section(root_mapping, "source"), default_tmp_root)
    pipeline = _parse_pipeline(_optional_section(root_mapping, "pipeline"))
    parse = _parse_parse(_required_section(root_mapping, "parse"))
    store = _parse_store(_optional_section(root_mapping, "store"))
    return HarvestRunSpec(
        version=version,
        source=source,
        pipeline=pipeline,
        parse=parse,
        store=store,
    )


def _load_yaml_payload(spec_path: str) -> object:
    spec_file = Path(spec_path).expanduser().resolve()
    if not spec_file.exists():
        raise HarvestRunSpecError(
            f"Harvest spec file does not exist at {spec_file}. Provide a valid YAML file path."
        )
    try:
        payload = cast(object, yaml.safe_load(spec_file.read_text(encoding="utf-8")))
    except OSError as error:
        raise HarvestRunSpecError(
            f"Failed to read harvest spec at {spec_file}: {error}. "
            "Check file permissions and retry."
        ) from error
    except yaml.YAMLError as error:
        raise HarvestRunSpecError(
            f"Failed to parse YAML harvest spec at {spec_file}: {error}. "
            "Fix YAML syntax and retry."
        ) from error
    if payload is None:
        raise HarvestRunSpecError(
            f"Harvest spec at {spec_file} is empty. Define 'version', 'source' and 'parse'."
        )
    return payload


def _expect_mapping(value: object, context: str) -> Mapping[str, object]:
    if isinstance(value, Mapping):
        normalized_mapping = {}
        for key, payload in value.items():
            if not isinstance(key, str):
                raise HarvestRunSpecError(
                    f"Invalid {context}: expected string keys, got {type(key).__name__}."
                )
            normalized_mapping[key] = payload
        return normalized_mapping
    raise HarvestRunSpecError(
        f"Invalid {context}: expected object mapping, got {type(value).__name__}."
    )


def _required_section(root_mapping: Mapping[str, object], name: str) -> Mapping[str, object]:
    if root_mapping.get(name) is None:
        raise HarvestRunSpecError(f"Harvest spec missing required section '{name}'.")
    return _expect_mapping(root_mapping[name], f"harvest spec section '{name}'")


def _optional_section(root_mapping: Mapping[str, object], name: str) -> Mapping[str, object]:
    if root_mapping.get(name) is None:
        return {}
    return _expect_mapping(root_mapping[name], f"harvest spec section '{name}'")


def _parse_version(root_mapping: Mapping[str, object]) -> int:
    raw_version = root_mapping.get("version")
    if not isinstance(raw_version, int) or isinstance(raw_version, bool):
        raise HarvestRunSpecError(
            "Harvest spec field 'version' must be an integer. Set version: 1."
        )
    if raw_version != 1:
        raise HarvestRunSpecError(
            f"Unsupported harvest spec version {raw_version}. Use version: 1."
        )
    return raw_version


def _parse_source(section: Mapping[str, object], default_tmp_root: Path) -> SourceOptions:
    protocol = required_string(section, "protocol")
    if protocol not in SUPPORTED_PROTOCOLS:
        supported_rows = ", ".join(SUPPORTED_PROTOCOLS)
        raise HarvestRunSpecError(
            f"Unsupported source protocol '{protocol}'. Use one of: {supported_rows}."
        )
    tmp_root_value = optional_string(section, "tmp_root")
    tmp_root = Path(tmp_root_value).expanduser() if tmp_root_value else default_tmp_root
    concurrency = positive_int(section, "concurrency", DEFAULT_SOURCE_CONCURRENCY)
    max_entries = _max_entries(section)
    if protocol == "ftp":
        _validate_keys(section, _LISTING_KEYS, "ftp source")
        return ListingSourceOptions(
            host=required_string(section, "host"),
            path=required_string(section, "path"),
            tmp_root=tmp_root,
            user=optional_string(section, "user") or DEFAULT_FTP_USER,
            password=_raw_string(section, "password"),
            port=positive_int(section, "port", DEFAULT_FTP_PORT),
            concurrency=concurrency,
            max_entries=max_entries,
            connect_jitter=_non_negative_float(section, "connect_jitter", 0.0),
        )
    _validate_keys(section, _ARCHIVE_KEYS, "zip source")
    url = required_string(section, "url")
    return ArchiveSourceOptions(
        url=url,
        archive_name=optional_string(section, "archive_name") or _archive_name_from_url(url),
        tmp_root=tmp_root,
        concurrency=concurrency,
        max_entries=max_entries,
        inflate=optional_bool(section, "inflate", True),
        timeout=_optional_timeout(section),
    )


def _parse_pipeline(section: Mapping[str, object]) -> PipelineOptions:
    _validate_keys(section, _PIPELINE_KEYS, "pipeline section")
    return PipelineOptions(
        workers=positive_int(section, "workers", DEFAULT_PIPELINE_WORKERS),
        bucket_size=positive_int(section, "bucket_size", DEFAULT_BUCKET_SIZE),
        max_attempts=positive_int(section, "max_attempts", DEFAULT_MAX_READ_ATTEMPTS),
        backoff_unit_seconds=_non_negative_float(
            section, "backoff_unit_seconds", DEFAULT_BACKOFF_UNIT_SECONDS
        ),
        timeout=_optional_timeout(section),
        job_status=optional_bool(section, "job_status", False),
        module=optional_string(section, "module") or DEFAULT_PIPELINE_MODULE,
        stop_on_retry_exhausted=optional_bool(section, "stop_on_retry_exhausted", False),
    )


def _parse_parse(section: Mapping[str, object]) -> ParseSpec:
    _validate_keys(section, _PARSE_KEYS, "parse section")
    return ParseSpec(
        start_marker=required_string(section, "start_marker"),
        end_marker=required_string(section, "end_marker"),
        force_array=string_tuple(section, "force_array"),
    )


def _parse_store(section: Mapping[str, object]) -> StoreSpec:
    _validate_keys(section, _STORE_KEYS, "store section")
    return StoreSpec(
        db_url=optional_string(section, "db_url"),
        write=BulkWriteOptions(
            chunk_size=positive_int(section, "chunk_size", DEFAULT_BULK_CHUNK_SIZE),
            parallelism=positive_int(section, "parallelism", DEFAULT_BULK_PARALLELISM),
            silent=optional_bool(section, "silent", False),
            ascii_only=optional_bool(section, "ascii_only", False),
        ),
    )


def _max_entries(section: Mapping[str, object]) -> int | None:
    value = optional_int(section, "max_entries")
    if value is not None and value < 0:
        raise HarvestRunSpecError(f"Harvest spec field 'max_entries' must be >= 0, got {value}.")
    return value


def _optional_timeout(section: Mapping[str, object]) -> float | None:
    value = optional_float(section, "timeout")
    if value is not None and value <= 0:
        raise HarvestRunSpecError(f"Harvest spec field 'timeout' must be > 0, got {value}.")
    return value


def _non_negative_float(section: Mapping[str, object], field_name: str, default: float) -> float:
    value = optional_float(section, field_name)
    if value is None:
        return default
    if value < 0:
        raise HarvestRunSpecError(f"Harvest spec field '{field_name}' must be >= 0, got {value}.")
    return value


def _raw_string(section: Mapping[str, object], field_name: str) -> str:
    value = section.get(field_name)
    if value is None:
        return ""
    if isinstance(value, str):
        return value
    raise HarvestRunSpecError(f"Harvest spec field '{field_name}' must be a string when provided.")


def _archive_name_from_url(url: str) -> str:
    name = PurePosixPath(urlparse(url).path).name
    if not name:
        raise HarvestRunSpecError(
            f"Cannot derive an archive name from {url}. Set 'archive_name' in the source section."
        )
    return name


def _validate_keys(mapping: Mapping[str, object], allowed: set[str], context: str) -> None:
    unknown_keys = sorted(set(mapping) - allowed)
    if unknown_keys:
        raise HarvestRunSpecError(
            f"Harvest spec {context} contains unknown fields: {', '.join(unknown_keys)}."
        )
