"""Pytest configuration for harvest test runs."""

from __future__ import annotations

import sys
from pathlib import Path

import pytest


def pytest_sessionstart() -> None:
    """Put the src tree ahead of installed copies on sys.path."""
    src_path = Path(__file__).resolve().parent.parent / "src"
    if str(src_path) not in sys.path:
        sys.path.insert(0, str(src_path))


@pytest.fixture
def harvest_config(tmp_path: Path):
    """Config rooted in the test's temporary directory, with no database."""
    from core.config import HarvestConfig

    return HarvestConfig(
        tmp_root=tmp_path,
        db_url=None,
        db_user=None,
        db_password=None,
        request_timeout=None,
    )
