import calendar
import logging
from collections import Counter
from datetime import date, datetime, timedelta, timezone, tzinfo
from typing import Dict, Iterable, List, Mapping, Optional, Set, Tuple

from models import EntityTally, Granularity, PlayEvent, TimeBucket, entity_value

logger = logging.getLogger(__name__)

WEEKDAYS = [
    ("Mon", "Monday"), ("Tue", "Tuesday"), ("Wed", "Wednesday"), ("Thu", "Thursday"),
    ("Fri", "Friday"), ("Sat", "Saturday"), ("Sun", "Sunday"),
]
MONTHS = [
    ("Jan", "January"), ("Feb", "February"), ("Mar", "March"), ("Apr", "April"),
    ("May", "May"), ("Jun", "June"), ("Jul", "July"), ("Aug", "August"),
    ("Sep", "September"), ("Oct", "October"), ("Nov", "November"), ("Dec", "December"),
]
SEASONS = [
    ("Spring", "Spring (Mar-May)"),
    ("Summer", "Summer (Jun-Aug)"),
    ("Fall", "Fall (Sep-Nov)"),
    ("Winter", "Winter (Dec-Feb)"),
]
TIME_OF_DAY = [
    ("Morning", "Morning (5-11)"),
    ("Afternoon", "Afternoon (12-16)"),
    ("Evening", "Evening (17-21)"),
    ("Night", "Night (22-4)"),
]

UNKNOWN_ARTIST = "Unknown Artist"
UNKNOWN_ALBUM = "Unknown Album"


def season_of(month: int) -> str:
    if 3 <= month <= 5:
        return "Spring"
    if 6 <= month <= 8:
        return "Summer"
    if 9 <= month <= 11:
        return "Fall"
    return "Winter"


def time_of_day(hour: int) -> str:
    if 5 <= hour <= 11:
        return "Morning"
    if 12 <= hour <= 16:
        return "Afternoon"
    if 17 <= hour <= 21:
        return "Evening"
    return "Night"


def week_start(moment: date) -> date:
    """Monday of the ISO week containing ``moment``."""
    iso_year, iso_week, _ = moment.isocalendar()
    # ISO week 1 contains Jan 4, and weeks start on Monday
    jan4 = date(iso_year, 1, 4)
    return jan4 - timedelta(days=jan4.weekday()) + timedelta(weeks=iso_week - 1)


def week_key(moment: date) -> str:
    iso_year, iso_week, _ = moment.isocalendar()
    return f"{iso_year}-W{iso_week:02d}"


def bucket_key_for(
    moment: datetime,
    granularity: Granularity,
    year: Optional[int] = None,
    month: Optional[int] = None,
) -> Optional[str]:
    """Bucket a local datetime falls into, or None when outside the drill-down."""
    if granularity == Granularity.HOUR:
        return str(moment.hour)
    if granularity == Granularity.WEEKDAY:
        return WEEKDAYS[moment.weekday()][0]
    if granularity == Granularity.MONTH:
        return MONTHS[moment.month - 1][0]
    if granularity == Granularity.SEASON:
        return season_of(moment.month)
    if granularity == Granularity.TIME_OF_DAY:
        return time_of_day(moment.hour)
    if granularity == Granularity.DAY:
        if year is None or month is None or moment.year != year or moment.month != month:
            return None
        return moment.strftime("%Y-%m-%d")
    if granularity == Granularity.CALENDAR_MONTH:
        if year is not None and moment.year != year:
            return None
        return moment.strftime("%Y-%m")
    if granularity == Granularity.YEAR:
        if year is not None and moment.year != year:
            return None
        return str(moment.year)
    if granularity == Granularity.WEEK:
        return week_key(moment.date())
    raise ValueError(f"Unknown granularity: {granularity}")


def preallocated_buckets(
    granularity: Granularity,
    year: Optional[int] = None,
    month: Optional[int] = None,
) -> List[Tuple[str, str]]:
    """Fixed (key, label) bucket set for a granularity; empty when it is data-driven."""
    if granularity == Granularity.HOUR:
        return [(str(h), f"{h}:00") for h in range(24)]
    if granularity == Granularity.WEEKDAY:
        return list(WEEKDAYS)
    if granularity == Granularity.MONTH:
        return list(MONTHS)
    if granularity == Granularity.SEASON:
        return list(SEASONS)
    if granularity == Granularity.TIME_OF_DAY:
        return list(TIME_OF_DAY)
    if granularity == Granularity.DAY:
        if year is None or month is None or not 1 <= month <= 12:
            return []
        days = calendar.monthrange(year, month)[1]
        return [(f"{year:04d}-{month:02d}-{d:02d}", str(d)) for d in range(1, days + 1)]
    if granularity == Granularity.CALENDAR_MONTH and year is not None:
        return [(f"{year:04d}-{m:02d}", f"{MONTHS[m - 1][1]} {year}") for m in range(1, 13)]
    return []


def _dynamic_label(key: str, granularity: Granularity) -> str:
    if granularity == Granularity.CALENDAR_MONTH:
        year, month = key.split("-")
        return f"{MONTHS[int(month) - 1][1]} {year}"
    if granularity == Granularity.WEEK:
        year, week = key.split("-W")
        return date.fromisocalendar(int(year), int(week), 1).isoformat()
    return key


class _Slot:
    __slots__ = ("label", "play_count", "total_ms", "artist_plays", "artist_ms", "album_plays", "album_ms",
                 "entities", "days")

    def __init__(self, label: str):
        self.label = label
        self.play_count = 0
        self.total_ms = 0
        self.artist_plays: Counter = Counter()
        self.artist_ms: Counter = Counter()
        self.album_plays: Counter = Counter()
        self.album_ms: Counter = Counter()
        self.entities: Set[str] = set()
        self.days: Set[date] = set()


def _top(plays: Counter, played_ms: Counter) -> Optional[EntityTally]:
    if not plays:
        return None
    # most_common keeps the first-seen entity on ties
    key, count = plays.most_common(1)[0]
    return EntityTally(key=key, play_count=count, total_played_ms=played_ms[key])


class BucketAccumulator:
    """
    Single-pass fold of events into one granularity's buckets.

    Feed events in a deterministic order (see filters.sort_events) so that
    top-entity ties resolve the same way on every run.
    """

    def __init__(
        self,
        granularity: Granularity,
        tz: tzinfo = timezone.utc,
        year: Optional[int] = None,
        month: Optional[int] = None,
    ):
        self.granularity = Granularity(granularity)
        self.tz = tz
        self.year = year
        self.month = month
        self.ignored = 0
        self._fixed = bool(preallocated_buckets(self.granularity, year, month))
        self._slots: Dict[str, _Slot] = {
            key: _Slot(label) for key, label in preallocated_buckets(self.granularity, year, month)
        }
        if self.granularity == Granularity.DAY and not self._fixed:
            logger.warning("Day buckets need a selected year and month; nothing will be bucketed")

    def add(self, event: PlayEvent) -> None:
        moment = event.datetime_in(self.tz)
        key = bucket_key_for(moment, self.granularity, self.year, self.month)
        if key is None or (self._fixed and key not in self._slots):
            self.ignored += 1
            return

        slot = self._slots.get(key)
        if slot is None:
            slot = self._slots[key] = _Slot(_dynamic_label(key, self.granularity))

        slot.play_count += 1
        slot.total_ms += event.duration_ms
        slot.entities.add(event.entity_key)
        slot.days.add(moment.date())

        artist = event.artist or UNKNOWN_ARTIST
        slot.artist_plays[artist] += 1
        slot.artist_ms[artist] += event.duration_ms
        album = entity_value(event, "album") or UNKNOWN_ALBUM
        slot.album_plays[album] += 1
        slot.album_ms[album] += event.duration_ms

    def finish(self, discovery_counts: Optional[Mapping[str, int]] = None) -> List[TimeBucket]:
        discovery_counts = discovery_counts or {}
        keys = list(self._slots) if self._fixed else sorted(self._slots)
        return [
            TimeBucket(
                bucket_key=key,
                label=self._slots[key].label,
                play_count=self._slots[key].play_count,
                total_played_ms=self._slots[key].total_ms,
                top_entity=_top(self._slots[key].artist_plays, self._slots[key].artist_ms),
                top_album=_top(self._slots[key].album_plays, self._slots[key].album_ms),
                unique_entity_count=len(self._slots[key].entities),
                discovery_count=discovery_counts.get(key, 0),
                active_days=len(self._slots[key].days),
            )
            for key in keys
        ]


def aggregate(
    events: Iterable[PlayEvent],
    granularity: Granularity,
    tz: tzinfo = timezone.utc,
    year: Optional[int] = None,
    month: Optional[int] = None,
    discovery_index: Optional[Mapping[str, int]] = None,
) -> List[TimeBucket]:
    """
    Bucket events by one time granularity.

    Args:
        events: Filtered events, ideally sorted with filters.sort_events
        granularity: Which bucket set to fill
        tz: Timezone used to read hours, days and months
        year: Selected year for DAY and CALENDAR_MONTH drill-downs
        month: Selected month for DAY drill-downs
        discovery_index: Optional first-occurrence index; fills discovery_count

    Returns:
        List of TimeBucket in calendar order
    """
    accumulator = BucketAccumulator(granularity, tz, year, month)
    for event in events:
        accumulator.add(event)

    counts = None
    if discovery_index is not None:
        counts = assign_discoveries(discovery_index, granularity, tz, year, month)
    return accumulator.finish(counts)


class FirstOccurrenceIndex:
    """Earliest timestamp per entity; a value only moves earlier."""

    def __init__(self, field_name: str = "artist"):
        self.field_name = field_name
        self._first: Dict[str, int] = {}

    def add(self, event: PlayEvent) -> None:
        key = entity_value(event, self.field_name)
        if not key:
            return
        seen = self._first.get(key)
        if seen is None or event.timestamp_ms < seen:
            self._first[key] = event.timestamp_ms

    def as_dict(self) -> Dict[str, int]:
        return {key: self._first[key] for key in sorted(self._first)}


def build_first_occurrence_index(events: Iterable[PlayEvent], field_name: str = "artist") -> Dict[str, int]:
    """Map each entity to the earliest timestamp it was played, in one pass."""
    index = FirstOccurrenceIndex(field_name)
    for event in events:
        index.add(event)
    return index.as_dict()


def assign_discoveries(
    index: Mapping[str, int],
    granularity: Granularity,
    tz: tzinfo = timezone.utc,
    year: Optional[int] = None,
    month: Optional[int] = None,
) -> Dict[str, int]:
    """
    Count discoveries per bucket.

    Each entity lands in exactly one bucket: the one holding its global first
    timestamp. Entities first heard outside a drill-down are not counted.
    """
    counts: Counter = Counter()
    for timestamp_ms in index.values():
        moment = datetime.fromtimestamp(timestamp_ms / 1000, tz=tz)
        key = bucket_key_for(moment, granularity, year, month)
        if key is not None:
            counts[key] += 1
    return dict(counts)
