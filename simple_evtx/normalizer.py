"""Payload normalization: record XML to a single line of ``name: value`` text.

The payload is parsed with xmltodict, which maps attributes to ``@name`` keys
and element text to ``#text``. The resulting tree is walked into an ordered
list of ``(label, value)`` pairs:

    <EventData>
      <Data Name="SubjectUserSid">S-1-5-18</Data>
      <Data Name="LogonType">5</Data>
    </EventData>

becomes ``SubjectUserSid: S-1-5-18, LogonType: 5``.
"""

from __future__ import annotations

from typing import Any, List, Tuple
from xml.parsers.expat import ExpatError

import xmltodict

from .exceptions import MalformedPayloadError

WRAPPER_ELEMENTS = frozenset({"EventData", "UserData"})
NAME_ATTRIBUTE = "@Name"
TEXT_KEY = "#text"
PAIR_SEPARATOR = ", "
VALUE_SEPARATOR = ": "


def _join(path: str, name: str) -> str:
    return f"{path}.{name}" if path else name


def _is_namespace(key: str) -> bool:
    return key == "@xmlns" or key.startswith("@xmlns:")


def _walk(label: str, node: Any, pairs: List[Tuple[str, str]]) -> None:
    if node is None:
        pairs.append((label, ""))
        return

    if isinstance(node, list):
        for item in node:
            _walk(label, item, pairs)
        return

    if not isinstance(node, dict):
        pairs.append((label, str(node)))
        return

    # <Data Name="X"> is labelled "X", not by its element path.
    name = node.get(NAME_ATTRIBUTE)
    if name is not None:
        label = name

    children = [
        (key, value)
        for key, value in node.items()
        if key != NAME_ATTRIBUTE and not _is_namespace(key)
    ]
    if not children:
        pairs.append((label, ""))
        return

    for key, value in children:
        if key == TEXT_KEY:
            pairs.append((label, value))
        elif key.startswith("@"):
            pairs.append((_join(label, key[1:]), value))
        else:
            _walk(_join(label, key), value, pairs)


def payload_pairs(payload: str) -> List[Tuple[str, str]]:
    """Parse a payload into ordered ``(label, value)`` pairs.

    Raises:
        MalformedPayloadError: If the payload is not well formed XML.
    """
    try:
        document = xmltodict.parse(payload)
    except (ExpatError, TypeError, ValueError) as e:
        raise MalformedPayloadError(str(e))

    pairs: List[Tuple[str, str]] = []
    for root_name, root in document.items():
        _walk("" if root_name in WRAPPER_ELEMENTS else root_name, root, pairs)
    return pairs


def normalize(payload: str) -> str:
    """Flatten an XML payload into comma separated ``name: value`` text.

    Args:
        payload: The record's EventData/UserData XML.

    Returns:
        The flattened text; empty when the payload carries no data.

    Raises:
        MalformedPayloadError: If the payload is not well formed XML.

    Example:
        >>> normalize('<EventData><Data Name="LogonType">5</Data></EventData>')
        'LogonType: 5'
    """
    return PAIR_SEPARATOR.join(
        f"{label}{VALUE_SEPARATOR}{value}" if label else value
        for label, value in payload_pairs(payload)
    )
