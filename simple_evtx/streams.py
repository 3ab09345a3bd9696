"""Two-stage acquisition of a readable stream for an event log file.

Stage one opens the file normally for shared reading. If another process
holds it with an incompatible lock (live logs under ``winevt\\Logs`` always
are), stage two asks a raw volume reader for the bytes instead. The fallback
is attempted once; without a usable raw reader the outcome is ``FATAL``.
"""

import importlib
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import BinaryIO, Optional

from .exceptions import RawReaderError
from .utils import is_elevated

# ERROR_SHARING_VIOLATION, ERROR_LOCK_VIOLATION
LOCK_WINERRORS = frozenset({32, 33})

NO_RAW_READER_MESSAGE = "no raw volume reader is configured"
NOT_ELEVATED_MESSAGE = "administrator privileges not found"


class StreamStatus(Enum):
    """Outcome of a stream acquisition.

    Attributes:
        OK: A readable stream was obtained.
        LOCKED: The file is held by another process (retry via raw reader).
        FAILED: The file could not be opened for another reason.
        FATAL: The file is locked and no raw reader can be used.
    """

    OK = "ok"
    LOCKED = "locked"
    FAILED = "failed"
    FATAL = "fatal"


@dataclass
class StreamAcquisition:
    """Result of opening a source file."""

    status: StreamStatus
    path: Path
    stream: Optional[BinaryIO] = None
    error_message: Optional[str] = None
    via_raw: bool = False

    @property
    def success(self) -> bool:
        return self.status == StreamStatus.OK


class RawReader(ABC):
    """Reads a file's bytes directly from the volume, bypassing share locks.

    Implementations need elevated privileges; ``is_available()`` reports
    whether this process has them.
    """

    def is_available(self) -> bool:
        return is_elevated()

    @abstractmethod
    def open(self, path: Path) -> BinaryIO:
        """Return a readable binary stream with the file's contents."""
        pass


def _is_lock_error(error: OSError) -> bool:
    if getattr(error, "winerror", None) in LOCK_WINERRORS:
        return True
    return isinstance(error, PermissionError)


def open_shared(path: Path) -> StreamAcquisition:
    """Open a file for shared reading.

    Returns:
        StreamAcquisition with status OK, LOCKED or FAILED.
    """
    try:
        return StreamAcquisition(StreamStatus.OK, path, stream=path.open("rb"))
    except OSError as e:
        status = StreamStatus.LOCKED if _is_lock_error(e) else StreamStatus.FAILED
        return StreamAcquisition(status, path, error_message=str(e))


def acquire_stream(path: Path, raw_reader: Optional[RawReader] = None) -> StreamAcquisition:
    """Open a file, falling back to a raw volume read when it is locked.

    Args:
        path: The event log file.
        raw_reader: Optional raw volume reader used for locked files.

    Returns:
        StreamAcquisition with status OK, FAILED or FATAL. On fallback success
        ``via_raw`` is True. A FATAL result's ``error_message`` says whether
        no reader was configured or the process lacks privileges.
    """
    logger = logging.getLogger(__name__)

    acquisition = open_shared(path)
    if acquisition.status != StreamStatus.LOCKED:
        return acquisition

    if raw_reader is None:
        logger.critical(f"'{path}' is in use and no raw volume reader is configured.")
        return StreamAcquisition(
            StreamStatus.FATAL, path, error_message=NO_RAW_READER_MESSAGE
        )

    if not raw_reader.is_available():
        logger.critical("Administrator privileges not found! Cannot read locked file.")
        return StreamAcquisition(
            StreamStatus.FATAL, path, error_message=NOT_ELEVATED_MESSAGE
        )

    logger.warning(f"'{path}' is in use. Rerouting...")
    try:
        stream = raw_reader.open(path)
    except OSError as e:
        return StreamAcquisition(StreamStatus.FAILED, path, error_message=f"Raw read failed: {e}")

    return StreamAcquisition(StreamStatus.OK, path, stream=stream, via_raw=True)


def load_raw_reader(spec: str) -> RawReader:
    """Instantiate a raw reader named as ``package.module:ClassName``.

    Raises:
        RawReaderError: If the class cannot be imported or is not a RawReader.
    """
    module_name, _, attr = spec.partition(":")
    if not module_name or not attr:
        raise RawReaderError(spec, "expected 'package.module:ClassName'")

    try:
        reader_class = getattr(importlib.import_module(module_name), attr)
    except (ImportError, AttributeError) as e:
        raise RawReaderError(spec, str(e))

    if not (isinstance(reader_class, type) and issubclass(reader_class, RawReader)):
        raise RawReaderError(spec, "not a RawReader subclass")
    return reader_class()
