"""Normalization of parse results into store documents."""

from __future__ import annotations

from core.types import Document


def documents_from(parsed: object) -> list[Document]:
    """Return the non-empty mappings contained in a parse result.

    A mapping yields itself, a list yields its non-empty mappings, and
    anything else yields nothing.
    """
    if isinstance(parsed, dict):
        return [parsed] if parsed else []
    if isinstance(parsed, list):
        return [item for item in parsed if isinstance(item, dict) and item]
    return []
