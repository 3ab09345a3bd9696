"""CSV record sink.

Rows are streamed to disk as records are accepted; nothing is buffered beyond
the file object's own buffer, which ``flush()`` forces to durable storage.
"""

import csv
import logging
import os
from pathlib import Path
from typing import Any, List, Optional, TextIO, Union

from .exceptions import OutputFormatError, SinkOpenError
from .parser import EventRecord
from .utils import DEFAULT_TIMESTAMP_FORMAT, format_timestamp

CSV_COLUMNS = [
    "TimeCreated",
    "EventId",
    "Provider",
    "Channel",
    "Computer",
    "Payload",
    "SourceFile",
]


class CsvSink:
    """Writes accepted, normalized records as CSV rows.

    The column order is fixed (``CSV_COLUMNS``). Use as a context manager so
    the file is closed on every exit path:

        >>> with open_sink(Path("out/events.csv")) as sink:
        ...     sink.write_header()
        ...     sink.write(record)
    """

    def __init__(
        self,
        destination: Union[str, Path],
        timestamp_format: str = DEFAULT_TIMESTAMP_FORMAT,
        delimiter: str = ",",
    ):
        """Initialize the sink; nothing is opened until ``open()``.

        Args:
            destination: Path of the CSV file to create (overwritten if present).
            timestamp_format: .NET style pattern for the TimeCreated column.
            delimiter: Field delimiter character.
        """
        self.destination = Path(destination)
        self.timestamp_format = timestamp_format
        self.delimiter = delimiter
        self.rows_written = 0
        self._handle: Optional[TextIO] = None
        self._writer: Any = None
        self._header_written = False

    @property
    def is_open(self) -> bool:
        return self._handle is not None

    def open(self) -> "CsvSink":
        """Create the parent directory if needed and open the file for writing.

        Raises:
            SinkOpenError: If the directory or file cannot be created.
        """
        logger = logging.getLogger(__name__)

        parent = self.destination.parent
        if not parent.exists():
            logger.warning(f"Path to '{parent}' doesn't exist. Creating...")
        try:
            parent.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise SinkOpenError(
                parent, f"cannot create directory, does a file with the same name exist? {e}"
            )

        try:
            self._handle = self.destination.open("w", newline="", encoding="utf-8")
        except OSError as e:
            raise SinkOpenError(self.destination, f"is it in use? {e}")

        self._writer = csv.writer(self._handle, delimiter=self.delimiter)
        logger.info(f"CSV output will be saved to '{self.destination}'")
        return self

    def write_header(self) -> None:
        """Write the header row; later calls are ignored."""
        if self._header_written:
            return
        self._require_open()
        self._writer.writerow(CSV_COLUMNS)
        self._header_written = True

    def write(self, record: EventRecord) -> None:
        """Append one record as a row in ``CSV_COLUMNS`` order."""
        self._require_open()
        self._writer.writerow(self._to_row(record))
        self.rows_written += 1

    def flush(self) -> None:
        """Force buffered rows to disk."""
        if self._handle is None:
            return
        self._handle.flush()
        os.fsync(self._handle.fileno())

    def close(self) -> None:
        if self._handle is None:
            return
        try:
            self._handle.close()
        finally:
            self._handle = None
            self._writer = None

    def __enter__(self) -> "CsvSink":
        if not self.is_open:
            self.open()
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()

    def _require_open(self) -> None:
        if self._handle is None:
            raise OutputFormatError(f"Sink for '{self.destination}' is not open", "csv")

    def _to_row(self, record: EventRecord) -> List[Any]:
        try:
            timestamp = format_timestamp(record.time_created, self.timestamp_format)
        except (AttributeError, TypeError, ValueError) as e:
            raise OutputFormatError(
                f"Cannot format timestamp of record #{record.record_number}: {e}", "csv"
            )

        return [
            timestamp,
            record.event_id,
            self._sanitize_csv_cell(record.provider),
            self._sanitize_csv_cell(record.channel),
            self._sanitize_csv_cell(record.computer),
            self._sanitize_csv_cell(record.payload),
            str(record.source_file) if record.source_file else "",
        ]

    @staticmethod
    def _sanitize_csv_cell(value: str) -> str:
        """Make a value safe for strict CSV consumers.

        - Avoid literal newlines/tabs within cells (some importers mis-handle them).
        - Preserve meaning by using escape sequences.
        """
        if not value:
            return value

        value = value.replace("\r\n", "\\n").replace("\r", "\\n").replace("\n", "\\n")
        value = value.replace("\t", "\\t")

        sanitized: list[str] = []
        for ch in value:
            code = ord(ch)
            if code < 0x20:
                sanitized.append(f"\\x{code:02x}")
            else:
                sanitized.append(ch)
        return "".join(sanitized)


def open_sink(
    destination: Union[str, Path],
    timestamp_format: str = DEFAULT_TIMESTAMP_FORMAT,
) -> CsvSink:
    """Create and open a CSV sink.

    Raises:
        SinkOpenError: If the destination cannot be created.
    """
    return CsvSink(destination, timestamp_format=timestamp_format).open()
