"""XML to document conversion.

This module turns XML fragments into plain nested dictionaries ready
for the document store, using a recovering lxml parser so one malformed
block does not abort a whole file.
"""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Callable, Iterable

from lxml import etree

from core.constants import DEFAULT_TEXT_ENCODING
from core.errors import HarvestStreamError
from core.logging_config import get_logger

_LOGGER = get_logger(__name__)

ErrorHandler = Callable[[str], None]


def parse_xml(
    raw_text: str,
    force_array: Iterable[str] = (),
    error_handler: ErrorHandler | None = None,
) -> dict[str, object]:
    """Parse an XML string into nested dictionaries.

    Attributes become ``-name`` keys, element text becomes the value of
    leaf elements (or ``#text`` next to attributes and children), and
    repeated tags become lists. Tags named in ``force_array`` are always lists.

    Args:
        raw_text: XML document or fragment with a single root.
        force_array: Tag names that must always map to lists.
        error_handler: Receives each parser diagnostic; may ignore warnings.

    Returns:
        ``{root_tag: value}``, or an empty dict when nothing could be parsed.
    """
    forced = frozenset(force_array)
    parser = etree.XMLParser(recover=True, resolve_entities=False, no_network=True, huge_tree=True)
    try:
        root = etree.fromstring(raw_text.encode(DEFAULT_TEXT_ENCODING), parser)
    except etree.XMLSyntaxError as error:
        _report(str(error), error_handler)
        return {}
    for entry in parser.error_log:
        _report(f"{entry.level_name.lower()}: line {entry.line}: {entry.message}", error_handler)
    if root is None:
        return {}
    return {_local_name(root): _element_value(root, forced)}


async def read_xml_file(
    path: Path,
    force_array: Iterable[str] = (),
    error_handler: ErrorHandler | None = None,
) -> dict[str, object]:
    """Read and parse a whole XML file.

    Raises:
        HarvestStreamError: If the file cannot be read.
    """
    try:
        raw_text = await asyncio.to_thread(path.read_text, encoding=DEFAULT_TEXT_ENCODING)
    except (OSError, UnicodeDecodeError) as error:
        raise HarvestStreamError(f"Failed to read XML file {path}: {error}.") from error
    return parse_xml(raw_text, force_array=force_array, error_handler=error_handler)


def _element_value(element: etree._Element, forced: frozenset[str]) -> object:
    attributes = {f"-{_local_name_of(key)}": value for key, value in element.attrib.items()}
    children = [child for child in element if isinstance(child.tag, str)]
    text = (element.text or "").strip()
    if not children and not attributes:
        return text
    grouped: dict[str, list[object]] = {}
    for child in children:
        grouped.setdefault(_local_name(child), []).append(_element_value(child, forced))
    value: dict[str, object] = dict(attributes)
    for name, items in grouped.items():
        value[name] = items if name in forced or len(items) > 1 else items[0]
    if text:
        value["#text"] = text
    return value


def _local_name(element: etree._Element) -> str:
    return etree.QName(element).localname


def _local_name_of(key: str) -> str:
    return etree.QName(key).localname if key.startswith("{") else key


def _report(message: str, error_handler: ErrorHandler | None) -> None:
    if error_handler is not None:
        error_handler(message)
        return
    _LOGGER.warning("xml_parse_diagnostic", message=message)
