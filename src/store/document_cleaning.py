"""Document text cleanup."""

from __future__ import annotations

from typing import Any


def clean_document(doc: dict[str, Any]) -> dict[str, Any]:
    """Return a copy of ``doc`` with non-ASCII characters dropped from strings.

    Strings nested in lists and dictionaries are cleaned too; other
    values are kept as they are.
    """
    return {key: _clean_value(value) for key, value in doc.items()}


def _clean_value(value: Any) -> Any:
    if isinstance(value, str):
        return _ascii_only(value)
    if isinstance(value, list):
        return [_clean_value(item) for item in value]
    if isinstance(value, dict):
        return clean_document(value)
    return value


def _ascii_only(text: str) -> str:
    return "".join(char for char in text if ord(char) <= 127)
