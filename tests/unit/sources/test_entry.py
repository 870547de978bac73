"""Unit tests for entry records."""

from __future__ import annotations

from pathlib import Path

from sources.entry import EntryRecord, RemoteEntry, is_metadata_name


def test_from_remote_places_record_under_tmp_root(tmp_path: Path) -> None:
    """Local paths are derived from the tmp root and entry name."""
    record = EntryRecord.from_remote(RemoteEntry("pubmed24n0001.xml.gz"), tmp_path)

    assert record.local_path == tmp_path / "pubmed24n0001.xml.gz"
    assert record.decompressed_path == tmp_path / "pubmed24n0001.xml"
    assert record.is_gzip and not record.fetched and not record.decompressed


def test_decompressed_path_is_local_path_without_gzip_suffix(tmp_path: Path) -> None:
    """Plain files decompress to themselves."""
    record = EntryRecord.from_remote(RemoteEntry("records.xml"), tmp_path)

    assert record.decompressed_path == record.local_path and not record.is_gzip


def test_metadata_names_are_recognized_case_insensitively() -> None:
    """Checksum and text sidecars are metadata."""
    assert is_metadata_name("a.xml.gz.md5")
    assert is_metadata_name("README.TXT")
    assert not is_metadata_name("a.xml.gz")


def test_to_remote_round_trips_identity(tmp_path: Path) -> None:
    """The listing identity survives lifecycle changes."""
    remote = RemoteEntry("a.xml.gz.md5", is_metadata_file=True)
    record = EntryRecord.from_remote(remote, tmp_path)
    record.fetched = True

    assert record.to_remote() == remote
