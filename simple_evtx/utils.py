"""Utility functions for privilege checks, value parsing and file operations.

This module provides helper functions used throughout the library for
privilege detection, timestamp rendering, parsing of user supplied filter
values, output naming, and directory scanning.
"""

import os
import platform
import re
from datetime import datetime, timezone
from pathlib import Path
from typing import FrozenSet, List, Optional

from .exceptions import FileValidationError, FilterConfigError, OutputFormatError

DEFAULT_TIMESTAMP_FORMAT = "yyyy-MM-dd HH:mm:ss.fffffff"
BOUNDARY_TIMESTAMP_FORMAT = "%Y/%m/%d %H:%M"  # yyyy/MM/dd HH:mm
BOUNDARY_TIMESTAMP_DISPLAY = "yyyy/MM/dd HH:mm"
DEFAULT_OUTPUT_SUFFIX = "-simple-evtx.csv"
EVTX_EXTENSION = ".evtx"

# .NET style custom date/time specifiers: a run of one repeated format letter
# is one token ("yyyy", "MMM", "h"); quoted text and backslash escapes are literal.
_TIMESTAMP_TOKEN = re.compile(
    r"'[^']*'|\"[^\"]*\"|\\.|([dfFghHKmMstyz])\1*|.",
    re.DOTALL,
)

MAX_FRACTION_DIGITS = 7
_DAY_NAMES = ("Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday", "Sunday")
_MONTH_NAMES = (
    "January", "February", "March", "April", "May", "June",
    "July", "August", "September", "October", "November", "December",
)


def is_elevated() -> bool:
    """Check whether the current process runs with administrative rights.

    On Windows this asks the shell whether the user is an administrator; on
    other platforms it checks for an effective user id of 0.

    Returns:
        True if the process is elevated, False otherwise.
    """
    if platform.system() == "Windows":
        import ctypes

        try:
            return bool(ctypes.windll.shell32.IsUserAnAdmin())  # type: ignore[attr-defined]
        except (AttributeError, OSError):
            return False

    geteuid = getattr(os, "geteuid", None)
    return geteuid is not None and geteuid() == 0


def _utc_offset(value: datetime, width: int) -> str:
    offset = value.utcoffset()
    if offset is None:
        return ""
    minutes = int(offset.total_seconds() // 60)
    sign = "+" if minutes >= 0 else "-"
    hours, minutes = divmod(abs(minutes), 60)
    if width == 1:
        return f"{sign}{hours}"
    if width == 2:
        return f"{sign}{hours:02d}"
    return f"{sign}{hours:02d}:{minutes:02d}"


def _number(value: int, width: int) -> str:
    return f"{value:0{width}d}" if width > 1 else str(value)


def format_timestamp(value: datetime, pattern: str = DEFAULT_TIMESTAMP_FORMAT) -> str:
    """Render a datetime using a .NET style custom format pattern.

    Supported specifiers: ``d``/``dd`` (day), ``ddd``/``dddd`` (day name),
    ``M``/``MM`` (month), ``MMM``/``MMMM`` (month name), ``y`` to ``yyyyy``,
    ``h``/``hh``, ``H``/``HH``, ``m``/``mm``, ``s``/``ss``, ``f`` and ``F``
    (up to seven fraction digits, 100ns resolution; ``F`` drops trailing
    zeros), ``t``/``tt``, ``z``/``zz``/``zzz``, ``K`` and ``g``. Text in
    single or double quotes and characters escaped with a backslash are
    copied literally, as is anything else. Names are in English.

    Args:
        value: The datetime to render.
        pattern: The custom format pattern.

    Returns:
        The formatted timestamp.

    Raises:
        OutputFormatError: If a fraction specifier asks for more than seven digits.

    Example:
        >>> format_timestamp(datetime(2024, 3, 1, 8, 5, 9, 123456))
        '2024-03-01 08:05:09.1234560'
        >>> format_timestamp(datetime(2024, 3, 1, 17, 5), "M/d/yyyy h:mm tt")
        '3/1/2024 5:05 PM'
    """
    ticks = f"{value.microsecond * 10:07d}"
    parts: List[str] = []

    for match in _TIMESTAMP_TOKEN.finditer(pattern):
        token = match.group(0)
        letter = match.group(1)
        width = len(token)

        if letter == "d":
            if width <= 2:
                parts.append(_number(value.day, width))
            else:
                name = _DAY_NAMES[value.weekday()]
                parts.append(name[:3] if width == 3 else name)
        elif letter == "M":
            if width <= 2:
                parts.append(_number(value.month, width))
            else:
                name = _MONTH_NAMES[value.month - 1]
                parts.append(name[:3] if width == 3 else name)
        elif letter == "y":
            if width <= 2:
                parts.append(_number(value.year % 100, width))
            else:
                parts.append(_number(value.year, width))
        elif letter == "h":
            parts.append(_number(value.hour % 12 or 12, min(width, 2)))
        elif letter == "H":
            parts.append(_number(value.hour, min(width, 2)))
        elif letter == "m":
            parts.append(_number(value.minute, min(width, 2)))
        elif letter == "s":
            parts.append(_number(value.second, min(width, 2)))
        elif letter in ("f", "F"):
            if width > MAX_FRACTION_DIGITS:
                raise OutputFormatError(
                    f"'{token}' asks for more than {MAX_FRACTION_DIGITS} fraction digits"
                )
            digits = ticks[:width]
            if letter == "F":
                digits = digits.rstrip("0")
                # Like .NET, an empty F fraction also drops the preceding dot.
                if not digits and parts and parts[-1] == ".":
                    parts.pop()
            parts.append(digits)
        elif letter == "t":
            designator = "AM" if value.hour < 12 else "PM"
            parts.append(designator[0] if width == 1 else designator)
        elif letter == "z":
            parts.append(_utc_offset(value, min(width, 3)))
        elif letter == "K":
            offset = value.utcoffset()
            if offset is not None and not offset:
                parts.append("Z" * width)
            else:
                parts.append(_utc_offset(value, 3) * width)
        elif letter == "g":
            parts.append("A.D.")
        elif width >= 2 and token[0] == token[-1] and token[0] in "'\"":
            parts.append(token[1:-1])
        elif token.startswith("\\") and width == 2:
            parts.append(token[1:])
        elif token == "%":
            continue
        else:
            parts.append(token)

    return "".join(parts)


def parse_event_ids(text: Optional[str]) -> FrozenSet[int]:
    """Parse a comma separated list of event ids.

    Segments that are not integers are ignored, so ``"4624, x,4625"`` yields
    ``{4624, 4625}``.

    Args:
        text: Comma separated ids, or None/empty for no ids.

    Returns:
        The set of parsed ids.
    """
    if not text:
        return frozenset()

    ids = set()
    for segment in text.split(","):
        try:
            ids.add(int(segment.strip()))
        except ValueError:
            continue
    return frozenset(ids)


def parse_boundary_timestamp(text: Optional[str], option: str = "from") -> Optional[datetime]:
    """Parse a ``yyyy/MM/dd HH:mm`` boundary timestamp.

    Boundaries carry no offset and are interpreted as UTC.

    Args:
        text: The timestamp text, or None/empty when the bound is unset.
        option: The option name used in error messages.

    Returns:
        A timezone-aware datetime, or None when no text was given.

    Raises:
        FilterConfigError: If the text does not match the expected pattern.
    """
    if not text:
        return None

    try:
        parsed = datetime.strptime(text.strip(), BOUNDARY_TIMESTAMP_FORMAT)
    except ValueError:
        raise FilterConfigError(option, text, BOUNDARY_TIMESTAMP_DISPLAY)

    return parsed.replace(tzinfo=timezone.utc)


def generate_output_path(
    csv_dir: Path,
    csv_name: Optional[str] = None,
    timestamp: Optional[datetime] = None,
) -> Path:
    """Generate the CSV output path for a run.

    Uses ``csv_name`` when given (only its final component is kept), otherwise
    a name prefixed with the run start time, e.g.
    ``20240301080509-simple-evtx.csv``.

    Args:
        csv_dir: Directory the CSV file is written to.
        csv_name: Optional explicit file name.
        timestamp: Run start time (defaults to now, UTC).

    Returns:
        Path object for the CSV file.

    Example:
        >>> generate_output_path(Path("out"), "events.csv")
        Path("out/events.csv")
    """
    if csv_name:
        return csv_dir / Path(csv_name).name

    if timestamp is None:
        timestamp = datetime.now(timezone.utc)
    return csv_dir / f"{timestamp:%Y%m%d%H%M%S}{DEFAULT_OUTPUT_SUFFIX}"


def find_evtx_files(directory: Path, recursive: bool = True) -> List[Path]:
    """Find all .evtx files in a directory.

    The extension check is case-insensitive and symbolic links are skipped.

    Args:
        directory: Path to the directory to search.
        recursive: If True, search subdirectories recursively.

    Returns:
        List of Path objects for all .evtx files found, sorted alphabetically.

    Raises:
        FileValidationError: If the directory does not exist or is not a directory.
    """
    if not directory.exists():
        raise FileValidationError(f"Directory does not exist: {directory}")

    if not directory.is_dir():
        raise FileValidationError(f"Path is not a directory: {directory}")

    candidates = directory.rglob("*") if recursive else directory.glob("*")

    return sorted(
        path
        for path in candidates
        if path.suffix.lower() == EVTX_EXTENSION
        and not path.is_symlink()
        and path.is_file()
    )
