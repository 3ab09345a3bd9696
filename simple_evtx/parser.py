"""EVTX decoder adapter built on python-evtx.

This module turns an open byte stream into the record sequence the pipeline
consumes. The binary work (chunk headers, record framing, template expansion
into XML) is done by ``python-evtx``; this adapter only:

- checks the file signature so non-EVTX files are told apart from damaged ones
- reads the file header for a human-readable summary
- converts each record's XML into an ``EventRecord``
- collects per-record decode failures instead of raising them

The EVTX file header layout (128 bytes used of a 4096 byte block):
- 0x00  signature "ElfFile\\0"
- 0x08  first chunk number, 0x10 last chunk number, 0x18 next record id
- 0x20  header size, 0x24 minor version, 0x26 major version
- 0x28  header block size, 0x2A chunk count
- 0x78  file flags (0x1 dirty, 0x2 full), 0x7C checksum
"""

from __future__ import annotations

import io
import mmap
import re
import struct
from collections import Counter
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, BinaryIO, Dict, Iterator, List, Optional, Union
from xml.etree import ElementTree as ET

from Evtx.Evtx import FileHeader

from .exceptions import CorruptedEvtxError, InvalidSignatureError, ParserError


EVTX_SIGNATURE = b"ElfFile\x00"
EVTX_HEADER_SIZE = 128
EVTX_FLAG_DIRTY = 0x01
EVTX_FLAG_FULL = 0x02

PAYLOAD_ELEMENTS = ("EventData", "UserData")

_SYSTEM_TIME = re.compile(
    r"^(?P<base>\d{4}-\d{2}-\d{2})[ T](?P<clock>\d{2}:\d{2}:\d{2})"
    r"(?:\.(?P<fraction>\d+))?\s*(?P<offset>Z|[+-]\d{2}:?\d{2})?$"
)


@dataclass
class EvtxHeader:
    """Parsed EVTX file header."""

    first_chunk_number: int
    last_chunk_number: int
    next_record_number: int
    header_size: int
    minor_version: int
    major_version: int
    header_block_size: int
    chunk_count: int
    flags: int
    checksum: int

    @property
    def is_dirty(self) -> bool:
        return bool(self.flags & EVTX_FLAG_DIRTY)

    @property
    def is_full(self) -> bool:
        return bool(self.flags & EVTX_FLAG_FULL)


@dataclass
class EventRecord:
    """A decoded event record, ready for filtering and normalization."""

    record_number: int
    event_id: int
    time_created: datetime
    provider: str = ""
    channel: str = ""
    computer: str = ""
    payload: str = ""
    source_file: Optional[Path] = None

    def __setattr__(self, name: str, value: Any) -> None:
        if name == "record_number" and "record_number" in self.__dict__:
            raise AttributeError("record_number cannot be changed once read")
        super().__setattr__(name, value)


def validate_evtx_signature(data: bytes) -> None:
    """Validate that a buffer starts with the EVTX signature.

    Raises:
        InvalidSignatureError: If the signature is missing or the buffer is too small.
    """
    found = bytes(data[: len(EVTX_SIGNATURE)])
    if found != EVTX_SIGNATURE:
        raise InvalidSignatureError(found, EVTX_SIGNATURE)


def _parse_header(data: bytes) -> EvtxHeader:
    """Parse the EVTX file header (first 128 bytes)."""
    validate_evtx_signature(data)

    if len(data) < EVTX_HEADER_SIZE:
        raise CorruptedEvtxError(f"file too small for EVTX header: {len(data)} bytes")

    (
        first_chunk_number,
        last_chunk_number,
        next_record_number,
        header_size,
        minor_version,
        major_version,
        header_block_size,
        chunk_count,
    ) = struct.unpack_from("<QQQIHHHH", data, 0x08)
    flags, checksum = struct.unpack_from("<II", data, 0x78)

    return EvtxHeader(
        first_chunk_number=first_chunk_number,
        last_chunk_number=last_chunk_number,
        next_record_number=next_record_number,
        header_size=header_size,
        minor_version=minor_version,
        major_version=major_version,
        header_block_size=header_block_size,
        chunk_count=chunk_count,
        flags=flags,
        checksum=checksum,
    )


def parse_system_time(text: str) -> datetime:
    """Parse a ``TimeCreated/@SystemTime`` value.

    Accepts the python-evtx rendering (``2016-07-08 18:12:51.681640``) as well
    as ISO-8601 text with a ``T`` separator, ``Z`` or numeric offsets and up to
    seven fraction digits. Values without an offset are taken as UTC.

    Raises:
        ValueError: If the text is not a recognizable timestamp.
    """
    match = _SYSTEM_TIME.match(text.strip())
    if match is None:
        raise ValueError(f"Unrecognized SystemTime: {text!r}")

    fraction = (match.group("fraction") or "").ljust(6, "0")[:6]
    offset = match.group("offset")
    if offset is None or offset == "Z":
        offset = "+00:00"
    elif ":" not in offset:
        offset = f"{offset[:3]}:{offset[3:]}"

    return datetime.fromisoformat(
        f"{match.group('base')} {match.group('clock')}.{fraction}{offset}"
    )


def _strip_namespaces(element: ET.Element) -> None:
    for node in element.iter():
        if isinstance(node.tag, str) and "}" in node.tag:
            node.tag = node.tag.split("}", 1)[1]


def record_from_xml(record_number: int, xml: str) -> EventRecord:
    """Build an EventRecord from a rendered event XML document.

    Args:
        record_number: The record number reported by the container.
        xml: The ``<Event>`` document.

    Returns:
        EventRecord whose payload is the ``EventData`` or ``UserData`` element.

    Raises:
        ParserError: If the XML cannot be parsed or lacks an EventID/TimeCreated.
    """
    try:
        root = ET.fromstring(xml)
    except ET.ParseError as e:
        raise ParserError(f"Record XML is not well formed: {e}")

    _strip_namespaces(root)
    system = root.find("System")
    if system is None:
        raise ParserError("Record XML has no System element")

    event_id_text = system.findtext("EventID")
    if event_id_text is None or not event_id_text.strip().isdigit():
        raise ParserError(f"Record has no usable EventID: {event_id_text!r}")

    time_created = system.find("TimeCreated")
    system_time = time_created.get("SystemTime") if time_created is not None else None
    if not system_time:
        raise ParserError("Record has no TimeCreated/@SystemTime")
    try:
        timestamp = parse_system_time(system_time)
    except ValueError as e:
        raise ParserError(str(e))

    provider = system.find("Provider")

    payload_element = None
    for name in PAYLOAD_ELEMENTS:
        payload_element = root.find(name)
        if payload_element is not None:
            break
    if payload_element is None:
        payload_element = ET.Element("EventData")
    payload_element.tail = None

    return EventRecord(
        record_number=record_number,
        event_id=int(event_id_text.strip()),
        time_created=timestamp,
        provider=provider.get("Name", "") if provider is not None else "",
        channel=(system.findtext("Channel") or "").strip(),
        computer=(system.findtext("Computer") or "").strip(),
        payload=ET.tostring(payload_element, encoding="unicode"),
    )


def _map_stream(stream: BinaryIO) -> Union[bytes, mmap.mmap]:
    """Memory-map a file-backed stream, or read an in-memory one."""
    try:
        return mmap.mmap(stream.fileno(), 0, access=mmap.ACCESS_READ)
    except (AttributeError, OSError, ValueError, io.UnsupportedOperation):
        return stream.read()


class EvtxLog:
    """Decoder over one EVTX container.

    Construction validates the container; ``records()`` is a lazy, single-pass
    iterator. Records python-evtx cannot reconstruct are not raised but
    collected in ``error_records`` (record number -> message). Failures that
    have no record number of their own (a damaged chunk, a record whose
    header cannot be read) go to ``chunk_errors`` instead.

    Example:
        >>> with open("Security.evtx", "rb") as f, EvtxLog(f) as log:
        ...     for record in log.records():
        ...         print(record.event_id)
    """

    def __init__(self, stream: BinaryIO) -> None:
        self._buf = _map_stream(stream)
        try:
            self.header = _parse_header(self._buf[:EVTX_HEADER_SIZE])
            self._file_header = FileHeader(self._buf, 0x0)
        except ParserError:
            self.close()
            raise
        except Exception as e:
            self.close()
            raise CorruptedEvtxError(f"file header could not be read: {e}")
        self.error_records: Dict[int, str] = {}
        self.chunk_errors: List[str] = []
        self.event_id_metrics: Counter = Counter()
        self.records_read = 0

    def records(self) -> Iterator[EventRecord]:
        """Yield decoded records in container order."""
        for chunk_index, chunk in enumerate(self._file_header.chunks()):
            try:
                for raw in chunk.records():
                    try:
                        record_number = raw.record_num()
                    except Exception as e:
                        self.chunk_errors.append(
                            f"Chunk {chunk_index}: record header could not be read: {e}"
                        )
                        continue

                    try:
                        record = record_from_xml(record_number, raw.xml())
                    except Exception as e:
                        self.error_records[record_number] = str(e)
                        continue

                    self.records_read += 1
                    self.event_id_metrics[record.event_id] += 1
                    yield record
            except Exception as e:
                # A damaged chunk ends that chunk only; the next one may be fine.
                self.chunk_errors.append(f"Chunk {chunk_index} could not be read: {e}")

    def close(self) -> None:
        if isinstance(self._buf, mmap.mmap):
            self._buf.close()

    def __enter__(self) -> "EvtxLog":
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()

    def __str__(self) -> str:
        header = self.header
        errors = len(self.error_records) + len(self.chunk_errors)
        lines = [
            f"Version: {header.major_version}.{header.minor_version}",
            f"Chunk count: {header.chunk_count}",
            f"First chunk: {header.first_chunk_number} Last chunk: {header.last_chunk_number}",
            f"Next record number: {header.next_record_number}",
            f"Is dirty: {header.is_dirty}",
            f"Is full: {header.is_full}",
            f"Records read: {self.records_read} Errors: {errors}",
        ]
        return "\n".join(lines)
