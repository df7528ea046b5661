"""S3 XML request rendering and response parsing helpers for s3wire."""

from __future__ import annotations

import urllib.parse
import xml.etree.ElementTree as ET
from datetime import datetime, timezone
from typing import Callable, TypeVar
from xml.sax.saxutils import escape as _sax_escape

from s3wire.errors import ResponseFormatError, S3Error

S3_NAMESPACE = "http://s3.amazonaws.com/doc/2006-03-01/"
XML_DECLARATION = '<?xml version="1.0" encoding="UTF-8"?>'

T = TypeVar("T")


def _escape_xml(value: object) -> str:
    """Escape special XML characters in a string value."""
    return _sax_escape(str(value))


def element(tag: str, value: object) -> str:
    """Render ``<tag>value</tag>`` with the value escaped."""
    return f"<{tag}>{_escape_xml(value)}</{tag}>"


def open_root(tag: str, namespace: bool = True) -> list[str]:
    """Start a ``parts`` list for a request document rooted at ``tag``."""
    if namespace:
        return [XML_DECLARATION, f'<{tag} xmlns="{S3_NAMESPACE}">']
    return [XML_DECLARATION, f"<{tag}>"]


# ---------------------------------------------------------------------------
# Parsing
# ---------------------------------------------------------------------------


def _strip_namespaces(root: ET.Element) -> ET.Element:
    for elem in root.iter():
        if isinstance(elem.tag, str) and elem.tag.startswith("{"):
            elem.tag = elem.tag[elem.tag.index("}") + 1 :]
    return root


def parse_xml(data: bytes | str, status: int = 200, content_type: str | None = None) -> ET.Element:
    """Parse an XML document and strip namespaces from every tag.

    Raises:
        ResponseFormatError: If the document is not well-formed XML.
    """
    try:
        root = ET.fromstring(data)
    except ET.ParseError:
        text = data.decode("utf-8", "replace") if isinstance(data, bytes) else data
        raise ResponseFormatError(status, content_type, text)
    return _strip_namespaces(root)


def try_parse_xml(data: bytes | str) -> ET.Element | None:
    """Parse an XML document, returning None when it is not well-formed."""
    if not data:
        return None
    try:
        root = ET.fromstring(data)
    except ET.ParseError:
        return None
    return _strip_namespaces(root)


def parse_error_or_result(
    data: bytes | str,
    root_tag: str,
    parse: Callable[[ET.Element], T],
    http_status: int | None = None,
) -> S3Error | T | None:
    """Classify a 200 response body that may embed an error document.

    The error schema is checked first. The success schema is used only when
    the root element is ``root_tag``.

    Returns:
        An ``S3Error`` for an ``<Error>`` document, ``parse(root)`` for a
        ``root_tag`` document, or None when neither schema matches.
    """
    root = try_parse_xml(data)
    if root is None:
        return None
    if root.tag == "Error":
        return S3Error.from_element(root, http_status=http_status)
    if root.tag == root_tag:
        return parse(root)
    return None


def findtext(elem: ET.Element, path: str, default: str | None = None) -> str | None:
    """Return the text of ``path`` under ``elem``, or ``default`` when absent."""
    text = elem.findtext(path)
    return default if text is None else text


def findint(elem: ET.Element, path: str, default: int = 0) -> int:
    text = elem.findtext(path)
    return int(text) if text else default


def findbool(elem: ET.Element, path: str) -> bool:
    return (elem.findtext(path) or "").lower() == "true"


def url_decode(value: str | None, encoding_type: str | None) -> str | None:
    """Decode a key returned under ``encoding-type=url``."""
    if value is None or encoding_type != "url":
        return value
    return urllib.parse.unquote_plus(value)


# ---------------------------------------------------------------------------
# Timestamps
# ---------------------------------------------------------------------------


def from_iso8601utc(value: str | None) -> datetime | None:
    """Parse an S3 ISO 8601 timestamp such as ``2009-10-12T17:50:30.000Z``."""
    if not value:
        return None
    for fmt in ("%Y-%m-%dT%H:%M:%S.%fZ", "%Y-%m-%dT%H:%M:%SZ"):
        try:
            return datetime.strptime(value, fmt).replace(tzinfo=timezone.utc)
        except ValueError:
            continue
    raise ValueError(f"invalid ISO 8601 timestamp '{value}'")


def to_iso8601utc(value: datetime) -> str:
    """Format a datetime as an S3 ISO 8601 timestamp with milliseconds."""
    value = value.astimezone(timezone.utc)
    return value.strftime("%Y-%m-%dT%H:%M:%S.") + f"{value.microsecond // 1000:03d}Z"
