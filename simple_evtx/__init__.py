"""simple-evtx - export Windows Event Log (.evtx) records to CSV.

This library provides functionality to:
- Decode .evtx files (via python-evtx) into event records
- Select records by event id (include or exclude lists) and time window
- Flatten each record's EventData/UserData XML into ``name: value`` text
- Stream the results into a single CSV file with per-file and per-run metrics

The library offers:
- Batch processing where a bad record or a bad file never stops the run
- Two-stage file access with a pluggable raw reader for locked logs
- .NET style timestamp patterns for the TimeCreated column

Basic Usage:
    Process a directory of logs:
        >>> from pathlib import Path
        >>> from simple_evtx import FilterConfig, find_evtx_files, run
        >>> config = FilterConfig.from_strings(include="4624,4625")
        >>> metrics = run(find_evtx_files(Path("C:/Logs")), config, "out/events.csv")
        >>> print(f"Wrote {metrics.total_records} rows")

    Normalize a single payload:
        >>> from simple_evtx import normalize
        >>> normalize('<EventData><Data Name="LogonType">5</Data></EventData>')
        'LogonType: 5'
"""

from .processor import (
    FileStatus,
    FileResult,
    RunMetrics,
    process_file,
    run,
)

from .exceptions import (
    SimpleEvtxError,
    FatalError,
    SinkOpenError,
    PrivilegeRequiredError,
    RawReaderError,
    FileValidationError,
    FilterConfigError,
    ParserError,
    InvalidSignatureError,
    CorruptedEvtxError,
    MalformedPayloadError,
    OutputFormatError,
)

from .parser import (
    EvtxHeader,
    EventRecord,
    EvtxLog,
    record_from_xml,
    parse_system_time,
)

from .filters import (
    FilterConfig,
    accepts,
    counts_toward_metrics,
)

from .normalizer import normalize, payload_pairs

from .sink import CSV_COLUMNS, CsvSink, open_sink

from .streams import (
    RawReader,
    StreamStatus,
    StreamAcquisition,
    open_shared,
    acquire_stream,
    load_raw_reader,
)

from .utils import (
    DEFAULT_TIMESTAMP_FORMAT,
    format_timestamp,
    parse_event_ids,
    parse_boundary_timestamp,
    generate_output_path,
    find_evtx_files,
    is_elevated,
)

__version__ = "1.0.0"
__license__ = "MIT"

__all__ = [
    # Pipeline
    "process_file",
    "run",
    "FileStatus",
    "FileResult",
    "RunMetrics",
    # Decoder
    "EvtxHeader",
    "EventRecord",
    "EvtxLog",
    "record_from_xml",
    "parse_system_time",
    # Filtering and normalization
    "FilterConfig",
    "accepts",
    "counts_toward_metrics",
    "normalize",
    "payload_pairs",
    # Output
    "CSV_COLUMNS",
    "CsvSink",
    "open_sink",
    # File access
    "RawReader",
    "StreamStatus",
    "StreamAcquisition",
    "open_shared",
    "acquire_stream",
    "load_raw_reader",
    # Exceptions
    "SimpleEvtxError",
    "FatalError",
    "SinkOpenError",
    "PrivilegeRequiredError",
    "RawReaderError",
    "FileValidationError",
    "FilterConfigError",
    "ParserError",
    "InvalidSignatureError",
    "CorruptedEvtxError",
    "MalformedPayloadError",
    "OutputFormatError",
    # Utility functions
    "DEFAULT_TIMESTAMP_FORMAT",
    "format_timestamp",
    "parse_event_ids",
    "parse_boundary_timestamp",
    "generate_output_path",
    "find_evtx_files",
    "is_elevated",
    # Metadata
    "__version__",
    "__license__",
]
