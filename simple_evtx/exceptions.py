"""Custom exceptions for the simple-evtx record pipeline.

This module defines the exception hierarchy used throughout the library.
Errors fall into two camps:

- ``FatalError`` subclasses abort the whole run (the output destination cannot
  be opened, or a locked file cannot be read without elevated privileges).
- Everything else is recoverable and is reported against a single record or a
  single file while the run carries on.
"""

from __future__ import annotations

from pathlib import Path
from typing import Optional, Union


class SimpleEvtxError(Exception):
    """Base exception for all simple-evtx errors.

    All custom exceptions in this library inherit from this base class,
    allowing users to catch all library errors with a single except block.
    """

    pass


class FatalError(SimpleEvtxError):
    """Base class for errors that terminate the entire run."""

    pass


class SinkOpenError(FatalError):
    """Raised when the output destination cannot be created or opened.

    Typical causes are a file standing where the output directory should be,
    missing permissions, or the output file being held open by another process.
    """

    def __init__(self, destination: Union[str, Path], reason: Optional[str] = None) -> None:
        self.destination = Path(destination)
        self.reason = reason
        message = f"Unable to open '{self.destination}' for writing"
        if reason:
            message += f" ({reason})"
        super().__init__(message)


class PrivilegeRequiredError(FatalError):
    """Raised when a file is locked and no elevated raw-read fallback exists.

    Locked event logs (for example the live logs under ``winevt\\Logs``) can
    only be read through a raw volume reader, which needs administrator rights.
    """

    def __init__(self, file_path: Union[str, Path], reason: Optional[str] = None) -> None:
        self.file_path = Path(file_path)
        self.reason = reason or "no usable raw volume reader"
        super().__init__(f"'{self.file_path}' is in use and cannot be read: {self.reason}")


class RawReaderError(SimpleEvtxError):
    """Raised when a configured raw volume reader cannot be loaded."""

    def __init__(self, spec: str, reason: str) -> None:
        self.spec = spec
        super().__init__(f"Cannot load raw reader '{spec}': {reason}")


class FileValidationError(SimpleEvtxError):
    """Raised when an input path cannot be used.

    This can occur when:
    - The input file or directory does not exist
    - A directory was expected but a file was given (or the reverse)
    - The file cannot be read due to permissions
    """

    pass


class FilterConfigError(SimpleEvtxError):
    """Raised when user supplied filter values cannot be parsed."""

    def __init__(self, option: str, value: str, expected: str) -> None:
        self.option = option
        self.value = value
        super().__init__(
            f"Invalid '{option}' value '{value}'. Expected format: {expected}"
        )


class ParserError(SimpleEvtxError):
    """Base exception for EVTX decoding errors."""

    pass


class InvalidSignatureError(ParserError):
    """Raised when a stream does not start with the EVTX file signature.

    This is the "not an event log at all" case and is reported as
    informational rather than as a processing error.
    """

    def __init__(self, found: bytes, expected: bytes) -> None:
        self.found = found
        self.expected = expected
        super().__init__(
            f"Invalid signature! Expected {expected!r}, found {found!r}"
        )


class CorruptedEvtxError(ParserError):
    """Raised when an EVTX container is structurally damaged.

    The signature is present but the file header cannot be read.
    """

    def __init__(self, details: str) -> None:
        self.details = details
        super().__init__(f"Corrupted EVTX file ({details})")


class MalformedPayloadError(SimpleEvtxError):
    """Raised when a record payload is not parseable XML."""

    def __init__(self, details: str, record_number: Optional[int] = None) -> None:
        self.details = details
        self.record_number = record_number
        message = "Malformed payload"
        if record_number is not None:
            message += f" in record #{record_number}"
        super().__init__(f"{message}: {details}")


class OutputFormatError(SimpleEvtxError):
    """Raised when output formatting or writing fails.

    This can occur when:
    - A row is written to a sink that is not open
    - A value cannot be rendered into its CSV cell
    """

    def __init__(self, message: str, format_name: Optional[str] = None) -> None:
        self.format_name = format_name
        if format_name:
            message = f"[{format_name}] {message}"
        super().__init__(message)
