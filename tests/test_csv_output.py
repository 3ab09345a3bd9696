from __future__ import annotations

import csv
from datetime import datetime, timezone
from pathlib import Path

import pytest

from simple_evtx.exceptions import OutputFormatError, SinkOpenError
from simple_evtx.sink import CSV_COLUMNS, CsvSink, open_sink

from conftest import make_record


def read_rows(path: Path) -> list:
    with path.open(newline="", encoding="utf-8") as f:
        return list(csv.reader(f))


def test_header_and_row_follow_fixed_column_order(tmp_path: Path) -> None:
    destination = tmp_path / "out.csv"
    record = make_record(
        7,
        4624,
        datetime(2024, 3, 1, 8, 5, 9, 123456, tzinfo=timezone.utc),
        payload="LogonType: 5",
    )
    record.source_file = Path("C:/Logs/Security.evtx")

    with open_sink(destination) as sink:
        sink.write_header()
        sink.write(record)

    header, row = read_rows(destination)
    assert header == CSV_COLUMNS
    assert row == [
        "2024-03-01 08:05:09.1234560",
        "4624",
        "Microsoft-Windows-Security-Auditing",
        "Security",
        "WKS01",
        "LogonType: 5",
        str(Path("C:/Logs/Security.evtx")),
    ]


def test_header_is_written_once(tmp_path: Path) -> None:
    destination = tmp_path / "out.csv"
    with open_sink(destination) as sink:
        sink.write_header()
        sink.write_header()

    assert read_rows(destination) == [CSV_COLUMNS]


def test_custom_timestamp_format(tmp_path: Path) -> None:
    destination = tmp_path / "out.csv"
    record = make_record(1, 1, datetime(2024, 3, 1, 20, 5, tzinfo=timezone.utc), payload="")

    with open_sink(destination, timestamp_format="dd/MM/yyyy hh:mm tt") as sink:
        sink.write(record)

    assert read_rows(destination)[0][0] == "01/03/2024 08:05 PM"


def test_cells_are_single_line(tmp_path: Path) -> None:
    destination = tmp_path / "out.csv"
    record = make_record(1, 1, payload="Message: line one\r\nline two\tend")

    with open_sink(destination) as sink:
        sink.write(record)

    text = destination.read_text(encoding="utf-8")
    assert text.count("\n") == 1
    assert read_rows(destination)[0][5] == "Message: line one\\nline two\\tend"


def test_missing_parent_directory_is_created(tmp_path: Path) -> None:
    destination = tmp_path / "nested" / "deeper" / "out.csv"
    with open_sink(destination) as sink:
        sink.write_header()

    assert destination.exists()


def test_open_fails_when_file_blocks_directory(tmp_path: Path) -> None:
    blocker = tmp_path / "csv"
    blocker.write_text("not a directory", encoding="utf-8")

    with pytest.raises(SinkOpenError):
        open_sink(blocker / "out.csv")


def test_open_fails_when_destination_is_directory(tmp_path: Path) -> None:
    with pytest.raises(SinkOpenError):
        open_sink(tmp_path)


def test_write_requires_open_sink(tmp_path: Path) -> None:
    sink = CsvSink(tmp_path / "out.csv")
    with pytest.raises(OutputFormatError):
        sink.write(make_record(1, 1))


def test_close_on_error_path_and_is_idempotent(tmp_path: Path) -> None:
    destination = tmp_path / "out.csv"
    sink = CsvSink(destination)

    with pytest.raises(RuntimeError):
        with sink:
            sink.write_header()
            raise RuntimeError("boom")

    assert not sink.is_open
    sink.close()
    assert read_rows(destination) == [CSV_COLUMNS]


def test_flush_makes_rows_visible_before_close(tmp_path: Path) -> None:
    destination = tmp_path / "out.csv"
    with open_sink(destination) as sink:
        sink.write_header()
        sink.write(make_record(1, 4624, payload="a: b"))
        sink.flush()
        assert len(read_rows(destination)) == 2
        assert sink.rows_written == 1
