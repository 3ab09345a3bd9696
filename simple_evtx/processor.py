"""Per-file record processing and the batch run loop.

``process_file`` runs one event log through filter, normalizer and sink and
reports what happened in a ``FileResult``. ``run`` owns the sink for a batch,
processes each path in order and aggregates ``RunMetrics``.

Failures are contained at the narrowest level that can absorb them: a bad
record is skipped, a bad file is skipped, and only ``FatalError`` (unwritable
destination, locked file without privileges) ends the run.
"""

import logging
import time
from collections import Counter
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, BinaryIO, Callable, Dict, Iterable, List, Optional, Union

from .exceptions import FatalError, InvalidSignatureError, PrivilegeRequiredError
from .filters import FilterConfig, accepts
from .normalizer import normalize
from .parser import EvtxLog
from .sink import CsvSink, open_sink
from .streams import RawReader, StreamStatus, acquire_stream
from .utils import DEFAULT_TIMESTAMP_FORMAT

DecoderFactory = Callable[[BinaryIO], Any]
ProgressCallback = Callable[[int, int, Path], None]


class FileStatus(Enum):
    """Status of a single file.

    Attributes:
        PROCESSED: The record sequence was read to the end.
        SKIPPED: The file was missing or is not an EVTX container.
        FAILED: The file could not be opened or decoding broke off.
    """

    PROCESSED = "processed"
    SKIPPED = "skipped"
    FAILED = "failed"


@dataclass
class FileResult:
    """Result of processing one file.

    Attributes:
        path: The source file.
        status: PROCESSED, SKIPPED or FAILED.
        records_seen: Rows written to the sink for this file.
        errors: Record-level failures (record number -> message).
        decoder_errors: Records the decoder could not reconstruct.
        chunk_errors: Decoder failures not tied to a record number.
        event_id_counts: Rows written per event id.
        summary: The decoder's description of the container.
        message: Why the file was skipped or failed.
        duration_seconds: Time spent on the file.
        via_raw_reader: True if the locked-file fallback was used.
    """

    path: Path
    status: FileStatus = FileStatus.PROCESSED
    records_seen: int = 0
    errors: Dict[int, str] = field(default_factory=dict)
    decoder_errors: Dict[int, str] = field(default_factory=dict)
    chunk_errors: List[str] = field(default_factory=list)
    event_id_counts: Counter = field(default_factory=Counter)
    summary: Optional[str] = None
    message: Optional[str] = None
    duration_seconds: Optional[float] = None
    via_raw_reader: bool = False

    @property
    def error_count(self) -> int:
        return len(self.errors) + len(self.decoder_errors) + len(self.chunk_errors)

    @property
    def success(self) -> bool:
        return self.status == FileStatus.PROCESSED


@dataclass
class RunMetrics:
    """Aggregated outcome of a run.

    Attributes:
        files_processed: Files whose records were read to the end.
        files_skipped: Missing files and non-EVTX files.
        files_failed: Files that could not be opened or fully decoded.
        error_files: Files with at least one error, mapped to the error count.
        record_counts: Rows written per file.
        event_id_counts: Rows written per file and event id.
        results: Individual FileResult objects, in processing order.
        total_duration_seconds: Wall time of the run.
    """

    files_processed: int = 0
    files_skipped: int = 0
    files_failed: int = 0
    error_files: Dict[Path, int] = field(default_factory=dict)
    record_counts: Dict[Path, int] = field(default_factory=dict)
    event_id_counts: Dict[Path, Dict[int, int]] = field(default_factory=dict)
    results: List[FileResult] = field(default_factory=list)
    total_duration_seconds: float = 0.0

    @property
    def total(self) -> int:
        return len(self.results)

    @property
    def total_records(self) -> int:
        return sum(self.record_counts.values())

    def add(self, result: FileResult) -> None:
        """Fold one file's result into the run totals."""
        self.results.append(result)

        if result.status == FileStatus.PROCESSED:
            self.files_processed += 1
        elif result.status == FileStatus.SKIPPED:
            self.files_skipped += 1
        else:
            self.files_failed += 1

        if result.error_count > 0:
            self.error_files[result.path] = result.error_count

        if result.status != FileStatus.SKIPPED:
            self.record_counts[result.path] = result.records_seen
            self.event_id_counts[result.path] = dict(result.event_id_counts)


def _close_quietly(resource: Any) -> None:
    close = getattr(resource, "close", None)
    if close is None:
        return
    try:
        close()
    except OSError as e:
        logging.getLogger(__name__).debug(f"Error while closing {resource!r}: {e}")


def process_file(
    path: Union[str, Path],
    config: FilterConfig,
    sink: CsvSink,
    decoder_factory: DecoderFactory = EvtxLog,
    raw_reader: Optional[RawReader] = None,
) -> FileResult:
    """Run one event log file through the pipeline.

    Args:
        path: The event log file.
        config: Selection settings.
        sink: Open sink that accepted records are written to.
        decoder_factory: Builds a decoder over an open stream (default EvtxLog).
        raw_reader: Optional reader used when the file is locked.

    Returns:
        FileResult describing the outcome.

    Raises:
        PrivilegeRequiredError: If the file is locked and no raw reader is usable.
        FatalError: Propagated unchanged from the sink.
    """
    logger = logging.getLogger(__name__)
    file_path = Path(path)
    start_time = time.time()

    if not file_path.exists():
        logger.warning(f"'{file_path}' does not exist! Skipping")
        return FileResult(
            path=file_path, status=FileStatus.SKIPPED, message="File does not exist"
        )

    if file_path.is_dir():
        logger.warning(f"'{file_path}' is a directory! Skipping")
        return FileResult(
            path=file_path, status=FileStatus.SKIPPED, message="Path is a directory"
        )

    logger.info(f"Processing '{file_path}'...")

    acquisition = acquire_stream(file_path, raw_reader)
    if acquisition.status == StreamStatus.FATAL:
        raise PrivilegeRequiredError(file_path, acquisition.error_message)
    if not acquisition.success:
        logger.error(f"Unable to open '{file_path}': {acquisition.error_message}")
        return FileResult(
            path=file_path,
            status=FileStatus.FAILED,
            message=acquisition.error_message,
            duration_seconds=time.time() - start_time,
        )

    result = FileResult(path=file_path, via_raw_reader=acquisition.via_raw)
    stream = acquisition.stream
    log = None

    try:
        log = decoder_factory(stream)

        for record in log.records():
            record.source_file = file_path

            if not accepts(record, config):
                continue

            try:
                record.payload = normalize(record.payload)
                sink.write(record)
            except FatalError:
                raise
            except Exception as e:
                result.errors[record.record_number] = str(e)
                logger.error(f"Error processing record #{record.record_number}: {e}")
                continue

            result.records_seen += 1
            result.event_id_counts[record.event_id] += 1

        sink.flush()
        result.summary = str(log)

    except InvalidSignatureError as e:
        logger.info(f"'{file_path}' is not an evtx file! Message: {e} Skipping...")
        result.status = FileStatus.SKIPPED
        result.message = str(e)

    except FatalError:
        raise

    except Exception as e:
        logger.error(f"Error processing '{file_path}'! Message: {e}")
        result.status = FileStatus.FAILED
        result.message = str(e)
        sink.flush()

    finally:
        if log is not None:
            result.decoder_errors = dict(log.error_records)
            result.chunk_errors = list(log.chunk_errors)
            _close_quietly(log)
        _close_quietly(stream)
        result.duration_seconds = time.time() - start_time

    return result


def run(
    paths: Iterable[Union[str, Path]],
    config: FilterConfig,
    destination: Union[str, Path],
    timestamp_format: str = DEFAULT_TIMESTAMP_FORMAT,
    decoder_factory: DecoderFactory = EvtxLog,
    raw_reader: Optional[RawReader] = None,
    progress_callback: Optional[ProgressCallback] = None,
) -> RunMetrics:
    """Process a batch of event log files into one CSV file.

    The sink is opened (and its header written) before the first file and
    closed after the last one, including when a fatal error aborts the run.
    Files are processed strictly one after another.

    Args:
        paths: Event log files, already discovered by the caller.
        config: Selection settings.
        destination: CSV file path.
        timestamp_format: .NET style pattern for the TimeCreated column.
        decoder_factory: Builds a decoder over an open stream (default EvtxLog).
        raw_reader: Optional reader used for locked files.
        progress_callback: Optional callback called before each file.
                          Signature: callback(current: int, total: int, file: Path)

    Returns:
        RunMetrics with per-file results and totals.

    Raises:
        SinkOpenError: If the destination cannot be opened.
        PrivilegeRequiredError: If a locked file cannot be read.

    Example:
        >>> metrics = run(find_evtx_files(Path("C:/Logs")), FilterConfig(), "out/events.csv")
        >>> print(f"Processed {metrics.files_processed} files")
    """
    logger = logging.getLogger(__name__)

    file_paths = [Path(p) for p in paths]
    total = len(file_paths)
    metrics = RunMetrics()
    start_time = time.time()

    try:
        with open_sink(destination, timestamp_format) as sink:
            sink.write_header()

            for index, file_path in enumerate(file_paths, start=1):
                if progress_callback:
                    progress_callback(index, total, file_path)

                try:
                    result = process_file(
                        file_path,
                        config,
                        sink,
                        decoder_factory=decoder_factory,
                        raw_reader=raw_reader,
                    )
                except FatalError:
                    raise
                except Exception as e:
                    logger.exception(f"Unexpected error processing '{file_path}'")
                    result = FileResult(
                        path=file_path, status=FileStatus.FAILED, message=str(e)
                    )

                metrics.add(result)
    finally:
        metrics.total_duration_seconds = time.time() - start_time

    return metrics
