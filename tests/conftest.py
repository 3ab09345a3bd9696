from __future__ import annotations

import io
from datetime import datetime, timezone
from pathlib import Path
from typing import BinaryIO, Dict, Iterator, List, Optional

import pytest

from simple_evtx.exceptions import InvalidSignatureError
from simple_evtx.parser import EVTX_SIGNATURE, EventRecord
from simple_evtx.streams import RawReader


def make_record(
    record_number: int,
    event_id: int,
    time_created: Optional[datetime] = None,
    payload: Optional[str] = None,
) -> EventRecord:
    return EventRecord(
        record_number=record_number,
        event_id=event_id,
        time_created=time_created or datetime(2024, 3, 1, 12, 0, tzinfo=timezone.utc),
        provider="Microsoft-Windows-Security-Auditing",
        channel="Security",
        computer="WKS01",
        payload=(
            payload
            if payload is not None
            else f'<EventData><Data Name="RecordNumber">{record_number}</Data></EventData>'
        ),
    )


class FakeLog:
    """Stands in for EvtxLog: yields prepared records for one stream."""

    def __init__(
        self,
        records: List[EventRecord],
        error_records: Optional[Dict[int, str]] = None,
        chunk_errors: Optional[List[str]] = None,
        fail_after: Optional[int] = None,
    ) -> None:
        self._records = records
        self.error_records = dict(error_records or {})
        self.chunk_errors = list(chunk_errors or [])
        self.fail_after = fail_after
        self.closed = False

    def records(self) -> Iterator[EventRecord]:
        for index, record in enumerate(self._records):
            if self.fail_after is not None and index >= self.fail_after:
                raise ValueError("chunk header checksum mismatch")
            yield record

    def close(self) -> None:
        self.closed = True

    def __str__(self) -> str:
        return f"Fake log with {len(self._records)} records"


class FakeDecoder:
    """Decoder factory keyed by file name.

    Files registered with ``add`` decode to the given records; anything whose
    bytes do not start with the EVTX signature raises InvalidSignatureError,
    like the real decoder.
    """

    def __init__(self) -> None:
        self.logs: Dict[str, FakeLog] = {}
        self.streams: List[BinaryIO] = []

    def add(self, directory: Path, name: str, log: FakeLog) -> Path:
        path = directory / name
        path.write_bytes(EVTX_SIGNATURE + b"\x00" * 120)
        self.logs[name] = log
        return path

    def __call__(self, stream: BinaryIO) -> FakeLog:
        self.streams.append(stream)
        head = stream.read(len(EVTX_SIGNATURE))
        if head != EVTX_SIGNATURE:
            raise InvalidSignatureError(head, EVTX_SIGNATURE)
        return self.logs[Path(stream.name).name]


@pytest.fixture
def decoder() -> FakeDecoder:
    return FakeDecoder()


class ReplayRawReader(RawReader):
    """Raw reader that always has privileges and replays the file's bytes."""

    def __init__(self) -> None:
        self.opened: List[Path] = []

    def is_available(self) -> bool:
        return True

    def open(self, path: Path) -> BinaryIO:
        self.opened.append(path)
        stream = io.BytesIO(path.read_bytes())
        stream.name = str(path)
        return stream
