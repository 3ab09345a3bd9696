"""Record selection by event id and time window."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import FrozenSet, Optional

from .parser import EventRecord
from .utils import parse_boundary_timestamp, parse_event_ids


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


@dataclass(frozen=True)
class FilterConfig:
    """Selection settings for one run.

    Attributes:
        include_ids: Event ids to keep. When non-empty, every other id is
                     dropped and ``exclude_ids`` is ignored.
        exclude_ids: Event ids to drop (only when ``include_ids`` is empty).
        start: Earliest accepted ``time_created`` (inclusive), or None.
        end: Latest accepted ``time_created`` (inclusive), or None.
    """

    include_ids: FrozenSet[int] = field(default_factory=frozenset)
    exclude_ids: FrozenSet[int] = field(default_factory=frozenset)
    start: Optional[datetime] = None
    end: Optional[datetime] = None

    @classmethod
    def from_strings(
        cls,
        include: Optional[str] = None,
        exclude: Optional[str] = None,
        start: Optional[str] = None,
        end: Optional[str] = None,
    ) -> "FilterConfig":
        """Build a config from command line style values.

        Args:
            include: Comma separated ids, e.g. ``"4624,4625"``.
            exclude: Comma separated ids.
            start: ``yyyy/MM/dd HH:mm`` lower bound (UTC).
            end: ``yyyy/MM/dd HH:mm`` upper bound (UTC).

        Raises:
            FilterConfigError: If a bound cannot be parsed.
        """
        include_ids = parse_event_ids(include)
        return cls(
            include_ids=include_ids,
            exclude_ids=frozenset() if include_ids else parse_event_ids(exclude),
            start=parse_boundary_timestamp(start, "from"),
            end=parse_boundary_timestamp(end, "to"),
        )


def counts_toward_metrics(event_id: int, config: FilterConfig) -> bool:
    """Apply only the event id rules of ``accepts``."""
    if config.include_ids:
        return event_id in config.include_ids
    if config.exclude_ids:
        return event_id not in config.exclude_ids
    return True


def accepts(record: EventRecord, config: FilterConfig) -> bool:
    """Decide whether a record is in scope for this run.

    Id rules come first: a non-empty include list is absolute, otherwise the
    exclude list applies. Then whichever time bounds are set are enforced,
    inclusive at both ends.
    """
    if not counts_toward_metrics(record.event_id, config):
        return False

    created = _as_utc(record.time_created)

    if config.start is not None and config.end is not None:
        return _as_utc(config.start) <= created <= _as_utc(config.end)

    if config.start is not None:
        return created >= _as_utc(config.start)

    if config.end is not None:
        return created <= _as_utc(config.end)

    return True
