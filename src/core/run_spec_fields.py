"""Typed field readers for harvest spec sections.

Every reader returns ``None`` (or its default) for an absent field and
raises ``HarvestRunSpecError`` naming the field when the YAML value has
the wrong type. YAML booleans never pass as numbers.
"""

from __future__ import annotations

from typing import Mapping, Sequence

from core.errors import HarvestRunSpecError

Section = Mapping[str, object]


def _typed(section: Section, field_name: str, kinds: tuple[type, ...], expected: str) -> object:
    value = section.get(field_name)
    if value is None:
        return None
    if (isinstance(value, bool) and bool not in kinds) or not isinstance(value, kinds):
        raise HarvestRunSpecError(
            f"Harvest spec field '{field_name}' must be {expected}, "
            f"got {type(value).__name__}."
        )
    return value


def optional_string(section: Section, field_name: str) -> str | None:
    """Return the stripped string value; blank strings count as absent."""
    value = _typed(section, field_name, (str,), "a string")
    if value is None:
        return None
    return str(value).strip() or None


def required_string(section: Section, field_name: str) -> str:
    value = optional_string(section, field_name)
    if value is None:
        raise HarvestRunSpecError(f"Harvest spec is missing required field '{field_name}'.")
    return value


def optional_int(section: Section, field_name: str) -> int | None:
    value = _typed(section, field_name, (int,), "an integer")
    return None if value is None else int(value)  # type: ignore[call-overload]


def positive_int(section: Section, field_name: str, default: int) -> int:
    value = optional_int(section, field_name)
    if value is None:
        return default
    if value < 1:
        raise HarvestRunSpecError(f"Harvest spec field '{field_name}' must be >= 1, got {value}.")
    return value


def optional_float(section: Section, field_name: str) -> float | None:
    value = _typed(section, field_name, (int, float), "a number")
    return None if value is None else float(value)  # type: ignore[arg-type]


def optional_bool(section: Section, field_name: str, default: bool) -> bool:
    value = _typed(section, field_name, (bool,), "true or false")
    return default if value is None else bool(value)


def string_tuple(section: Section, field_name: str) -> tuple[str, ...]:
    """Return a list field of non-blank strings as a tuple."""
    value = section.get(field_name)
    if value is None:
        return ()
    if isinstance(value, (str, bytes)) or not isinstance(value, Sequence):
        raise HarvestRunSpecError(f"Harvest spec field '{field_name}' must be a list of strings.")
    if not all(isinstance(item, str) and item.strip() for item in value):
        raise HarvestRunSpecError(
            f"Harvest spec field '{field_name}' must only contain non-empty strings."
        )
    return tuple(item.strip() for item in value)
