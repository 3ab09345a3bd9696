"""Command-line interface for simple-evtx.

Processes one .evtx file or every .evtx file under a directory into a single
CSV file, with optional event id and time window filtering.
"""

import argparse
import logging
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import List, Optional, Sequence

from .exceptions import (
    FileValidationError,
    FilterConfigError,
    OutputFormatError,
    PrivilegeRequiredError,
    RawReaderError,
    SimpleEvtxError,
    SinkOpenError,
)
from .filters import FilterConfig, counts_toward_metrics
from .processor import FileResult, FileStatus, RunMetrics, run
from .streams import RawReader, load_raw_reader
from .utils import (
    BOUNDARY_TIMESTAMP_DISPLAY,
    DEFAULT_TIMESTAMP_FORMAT,
    find_evtx_files,
    format_timestamp,
    generate_output_path,
)
from . import __version__


# Progress symbols
SYMBOL_SUCCESS = "[+]"
SYMBOL_FAILURE = "[X]"
SYMBOL_SKIPPED = "[-]"


def setup_logging(verbose: bool = False, quiet: bool = False) -> None:
    """Configure logging based on verbosity level.

    Args:
        verbose: If True, enable DEBUG level logging.
        quiet: If True, suppress all logging except errors.
    """
    if quiet:
        level = logging.ERROR
    elif verbose:
        level = logging.DEBUG
    else:
        level = logging.INFO

    logging.basicConfig(
        level=level, format="%(levelname)s: %(message)s", stream=sys.stderr
    )


def print_file_report(
    result: FileResult, config: FilterConfig, show_metrics: bool, verbose: bool
) -> None:
    """Print what happened to one file: counts, errors and event id metrics."""
    if result.status == FileStatus.SKIPPED:
        print(f"{SYMBOL_SKIPPED} {result.path}: {result.message}")
        return

    symbol = SYMBOL_SUCCESS if result.success else SYMBOL_FAILURE
    print(f"\n{symbol} {result.path}")
    if result.message:
        print(f"    {result.message}")
    if result.via_raw_reader:
        print("    Read through raw volume access (file was in use)")
    if verbose and result.summary:
        print("    Event log details")
        for line in result.summary.splitlines():
            print(f"      {line}")

    print(f"    Records processed: {result.records_seen:,} Errors: {result.error_count:,}")

    if result.error_count:
        print("    Errors")
        failures = {**result.decoder_errors, **result.errors}
        for record_number in sorted(failures):
            print(f"      Record #{record_number}: Error: {failures[record_number]}")
        for message in result.chunk_errors:
            print(f"      {message}")

    if show_metrics and result.event_id_counts:
        print("    Metrics")
        print("      Event Id\tCount")
        for event_id in sorted(result.event_id_counts):
            if not counts_toward_metrics(event_id, config):
                continue
            print(f"      {event_id}\t\t{result.event_id_counts[event_id]:,}")


def print_run_summary(metrics: RunMetrics, destination: Path) -> None:
    """Print the totals for the whole run."""
    suffix = "" if metrics.files_processed == 1 else "s"

    print("\n" + "=" * 60)
    print("RUN SUMMARY")
    print("=" * 60)
    print(
        f"Processed {metrics.files_processed:,} file{suffix} "
        f"in {metrics.total_duration_seconds:.4f} seconds"
    )
    print(f"{SYMBOL_SUCCESS} Rows written:          {metrics.total_records:,}")
    print(f"{SYMBOL_SKIPPED} Skipped:               {metrics.files_skipped}")
    print(f"{SYMBOL_FAILURE} Failed:                {metrics.files_failed}")
    print(f"Output:                  {destination}")
    print("=" * 60)

    if metrics.error_files:
        print("\nFiles with errors")
        for path, count in metrics.error_files.items():
            print(f"  '{path}' error count: {count:,}")


def resolve_inputs(file: Optional[str], directory: Optional[str]) -> List[Path]:
    """Turn the -f/-d options into the list of files to process.

    Raises:
        FileValidationError: If the file or directory does not exist.
    """
    logger = logging.getLogger(__name__)

    if file:
        file_path = Path(file)
        if not file_path.exists():
            raise FileValidationError(f"'{file_path}' does not exist!")
        return [file_path]

    assert directory is not None
    logger.info(f"Looking for event log files in '{directory}'")
    return find_evtx_files(Path(directory).resolve(), recursive=True)


def main(
    argv: Optional[Sequence[str]] = None, raw_reader: Optional[RawReader] = None
) -> int:
    """Main entry point for the CLI tool.

    Args:
        argv: Optional argument list to parse instead of sys.argv.
        raw_reader: Raw volume reader for locked files; takes precedence over
                    --raw-reader.

    Returns:
        Exit code: 0 when the run completed (recoverable errors are reported,
        not fatal), 1 for invalid input or a fatal error.
    """
    parser = argparse.ArgumentParser(
        prog="simple-evtx",
        description="Export Windows event logs (.evtx) to CSV",
        epilog="""
Examples:
  %(prog)s -f C:\\Temp\\Application.evtx --csv C:\\Temp\\out
  %(prog)s -d C:\\Logs --csv C:\\Temp\\out --inc 4624,4625
  %(prog)s -d C:\\Logs --csv out --from "2024/03/01 00:00" --to "2024/03/02 00:00"
        """,
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )

    parser.add_argument(
        "--version", action="version", version=f"%(prog)s {__version__}"
    )

    source = parser.add_mutually_exclusive_group(required=True)
    source.add_argument("-f", "--file", metavar="FILE", help="File to process")
    source.add_argument(
        "-d",
        "--directory",
        metavar="DIR",
        help="Directory to process that contains evtx files (searched recursively)",
    )

    parser.add_argument(
        "--csv",
        metavar="DIR",
        required=True,
        help="Directory to save CSV formatted results to (created if missing)",
    )

    parser.add_argument(
        "--csvf",
        metavar="NAME",
        help="File name to save CSV formatted results to (default: timestamped)",
    )

    parser.add_argument(
        "--dt",
        metavar="FORMAT",
        default=DEFAULT_TIMESTAMP_FORMAT,
        help=f"Custom date/time format for time stamps (default: {DEFAULT_TIMESTAMP_FORMAT})",
    )

    parser.add_argument(
        "--inc",
        metavar="IDS",
        default="",
        help="Event IDs to process, all others are ignored. Overrides --exc. Format: 4624,4625",
    )

    parser.add_argument(
        "--exc",
        metavar="IDS",
        default="",
        help="Event IDs to ignore, all others are included. Format: 4624,4625",
    )

    parser.add_argument(
        "--from",
        dest="start",
        metavar="TIMESTAMP",
        help=f"Earliest timestamp to include, UTC ({BOUNDARY_TIMESTAMP_DISPLAY})",
    )

    parser.add_argument(
        "--to",
        dest="end",
        metavar="TIMESTAMP",
        help=f"Latest timestamp to include, UTC ({BOUNDARY_TIMESTAMP_DISPLAY})",
    )

    parser.add_argument(
        "--raw-reader",
        metavar="MODULE:CLASS",
        help="RawReader implementation used to read files that are in use "
        "(none is built in, so locked files cannot be read without one)",
    )

    parser.add_argument(
        "--no-metrics",
        action="store_true",
        help="Do not show per event id metrics for processed files",
    )

    parser.add_argument(
        "-v", "--verbose", action="store_true", help="Enable verbose output"
    )

    parser.add_argument(
        "-q", "--quiet", action="store_true", help="Suppress informational output"
    )

    args = parser.parse_args(argv)

    if args.verbose and args.quiet:
        print("Error: Cannot use --verbose and --quiet together", file=sys.stderr)
        return 1

    setup_logging(verbose=args.verbose, quiet=args.quiet)
    logger = logging.getLogger(__name__)

    try:
        if raw_reader is None and args.raw_reader:
            raw_reader = load_raw_reader(args.raw_reader)
        config = FilterConfig.from_strings(
            include=args.inc, exclude=args.exc, start=args.start, end=args.end
        )
        format_timestamp(datetime.now(timezone.utc), args.dt)
        paths = resolve_inputs(args.file, args.directory)
    except FilterConfigError as e:
        print(f"{SYMBOL_FAILURE} Error: {e}", file=sys.stderr)
        logger.error(f"Invalid filter: {e}")
        return 1
    except FileValidationError as e:
        print(f"{SYMBOL_FAILURE} Error: {e}", file=sys.stderr)
        logger.error(f"Input validation failed: {e}")
        return 1
    except OutputFormatError as e:
        print(f"{SYMBOL_FAILURE} Error: {e}", file=sys.stderr)
        logger.error(f"Invalid --dt pattern: {e}")
        return 1
    except RawReaderError as e:
        print(f"{SYMBOL_FAILURE} Error: {e}", file=sys.stderr)
        logger.error(str(e))
        return 1

    if raw_reader is None:
        logger.info(
            "No raw volume reader configured (--raw-reader). Files in use cannot be read."
        )
    elif not raw_reader.is_available():
        logger.warning("Administrator privileges not found! Files in use cannot be read.")

    destination = generate_output_path(
        Path(args.csv), args.csvf, datetime.now(timezone.utc)
    )

    try:
        metrics = run(
            paths, config, destination, timestamp_format=args.dt, raw_reader=raw_reader
        )
    except SinkOpenError as e:
        print(f"{SYMBOL_FAILURE} Error: {e}", file=sys.stderr)
        logger.critical(f"{e}. Exiting!")
        return 1
    except PrivilegeRequiredError as e:
        print(f"{SYMBOL_FAILURE} Error: {e}", file=sys.stderr)
        logger.critical(f"{e}. Exiting!")
        return 1
    except SimpleEvtxError as e:
        print(f"{SYMBOL_FAILURE} Error: {e}", file=sys.stderr)
        logger.error(f"Run aborted: {e}")
        return 1
    except Exception as e:
        print(f"{SYMBOL_FAILURE} Unexpected error: {e}", file=sys.stderr)
        logger.exception("Unexpected error during processing")
        return 1

    if not args.quiet:
        for result in metrics.results:
            print_file_report(
                result, config, show_metrics=not args.no_metrics, verbose=args.verbose
            )
    print_run_summary(metrics, destination)

    return 0


if __name__ == "__main__":
    sys.exit(main())
