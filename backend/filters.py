import logging
import re
from dataclasses import dataclass
from datetime import MAXYEAR, MINYEAR, date, datetime, timezone, tzinfo
from typing import Collection, Iterable, List, Optional, Union

from config import AnalysisConfig
from models import EntityKind, PlayEvent

logger = logging.getLogger(__name__)

SKIP_END_REASONS = frozenset({"forward-button", "back-button"})
COMPLETED_END_REASON = "track-finished"


def _duration_of(event: PlayEvent) -> int:
    duration = getattr(event, "duration_ms", None)
    if isinstance(duration, bool) or not isinstance(duration, (int, float)):
        return 0
    return int(duration)


def passes(event: PlayEvent, config: AnalysisConfig) -> bool:
    """Return True when a single event survives the play filters."""
    if _duration_of(event) < config.min_play_duration_ms:
        return False
    if config.exclude_skips and event.end_reason in SKIP_END_REASONS:
        return False
    if config.completed_only and event.end_reason != COMPLETED_END_REASON:
        return False
    return True


def is_skip(event: PlayEvent) -> bool:
    return event.end_reason in SKIP_END_REASONS


def sort_events(events: Iterable[PlayEvent]) -> List[PlayEvent]:
    """Deterministic chronological order, independent of input order."""
    return sorted(events, key=lambda e: (e.timestamp_ms, e.entity_key, e.duration_ms))


# Date filters are parsed once at the boundary; downstream code switches on the type.

@dataclass(frozen=True)
class AllTime:
    def contains(self, moment: datetime) -> bool:
        return True


@dataclass(frozen=True)
class Year:
    year: int

    def contains(self, moment: datetime) -> bool:
        return moment.year == self.year


@dataclass(frozen=True)
class Month:
    year: int
    month: int

    def contains(self, moment: datetime) -> bool:
        return moment.year == self.year and moment.month == self.month


@dataclass(frozen=True)
class Day:
    year: int
    month: int
    day: int

    def contains(self, moment: datetime) -> bool:
        return moment.date() == date(self.year, self.month, self.day)


@dataclass(frozen=True)
class YearRange:
    start_year: int
    end_year: int

    def contains(self, moment: datetime) -> bool:
        return self.start_year <= moment.year <= self.end_year


DateFilter = Union[AllTime, Year, Month, Day, YearRange]

_YEAR = re.compile(r"^(\d{4})$")
_MONTH = re.compile(r"^(\d{4})-(\d{1,2})$")
_DAY = re.compile(r"^(\d{4})-(\d{1,2})-(\d{1,2})$")
_RANGE = re.compile(r"^(\d{4})\s*[:/]\s*(\d{4})$")


def parse_date_filter(value: Union[str, int, None]) -> DateFilter:
    """
    Parse a date selection into a DateFilter.

    Accepts 'all', 'YYYY', 'YYYY-MM', 'YYYY-MM-DD' and year ranges 'YYYY:YYYY'.
    Unparsable or impossible values degrade to AllTime.
    """
    if value is None:
        return AllTime()
    if isinstance(value, int) and not isinstance(value, bool):
        return Year(value)
    if not isinstance(value, str):
        logger.warning("Invalid date filter %r, using all time", value)
        return AllTime()

    text = value.strip().lower()
    if text in ("", "all"):
        return AllTime()

    try:
        match = _YEAR.match(text)
        if match:
            return Year(int(match.group(1)))
        match = _MONTH.match(text)
        if match:
            year, month = int(match.group(1)), int(match.group(2))
            date(year, month, 1)
            return Month(year, month)
        match = _DAY.match(text)
        if match:
            year, month, day = (int(g) for g in match.groups())
            date(year, month, day)
            return Day(year, month, day)
        match = _RANGE.match(text)
        if match:
            start, end = int(match.group(1)), int(match.group(2))
            return YearRange(min(start, end), max(start, end))
    except ValueError:
        pass

    logger.warning("Invalid date filter %r, using all time", value)
    return AllTime()


def filter_events(
    events: Iterable[PlayEvent],
    config: AnalysisConfig,
    date_filter: Optional[DateFilter] = None,
    kinds: Optional[Collection[EntityKind]] = None,
    shows: Optional[Collection[str]] = None,
    tz: Optional[tzinfo] = None,
) -> List[PlayEvent]:
    """Apply the play filters plus optional date, kind and show restrictions."""
    tz = tz or config.tz
    date_filter = date_filter or AllTime()
    kept = []
    unplaceable = 0
    for event in events:
        if not passes(event, config):
            continue
        if kinds and event.entity_kind not in kinds:
            continue
        if shows and event.show not in shows:
            continue
        try:
            moment = event.datetime_in(tz)
        except (OverflowError, OSError, ValueError):
            moment = None
        if moment is None or not MINYEAR < moment.year < MAXYEAR:
            unplaceable += 1
            continue
        if not date_filter.contains(moment):
            continue
        kept.append(event)

    if unplaceable:
        logger.warning("Dropped %d events with timestamps outside the calendar", unplaceable)
    return sort_events(kept)


def available_years(events: Iterable[PlayEvent], tz: tzinfo = timezone.utc) -> List[int]:
    return sorted({event.datetime_in(tz).year for event in events})
