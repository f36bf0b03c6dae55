from dataclasses import dataclass, field
from datetime import date, datetime, timezone, tzinfo
from enum import Enum
from typing import List, Optional, Tuple

from matching import album_key, track_key

GLOBAL_SCOPE = "global"


class EntityKind(str, Enum):
    TRACK = "track"
    EPISODE = "episode"


class Granularity(str, Enum):
    HOUR = "hour"
    WEEKDAY = "weekday"
    MONTH = "month"
    SEASON = "season"
    TIME_OF_DAY = "time_of_day"
    DAY = "day"
    CALENDAR_MONTH = "calendar_month"
    YEAR = "year"
    WEEK = "week"


class RankingMetric(str, Enum):
    TOTAL_PLAYED_MS = "total_played_ms"
    PLAY_COUNT = "play_count"


@dataclass(frozen=True)
class PlayEvent:
    timestamp_ms: int
    duration_ms: int
    entity_key: str
    entity_kind: EntityKind = EntityKind.TRACK
    artist: Optional[str] = None
    album: Optional[str] = None
    show: Optional[str] = None
    track: Optional[str] = None  # track or episode title
    end_reason: Optional[str] = None
    start_reason: Optional[str] = None
    platform: Optional[str] = None
    shuffle: bool = False
    source: Optional[str] = None

    @property
    def ends_at_ms(self) -> int:
        return self.timestamp_ms + self.duration_ms

    def datetime_in(self, tz: tzinfo = timezone.utc) -> datetime:
        return datetime.fromtimestamp(self.timestamp_ms / 1000, tz=tz)


@dataclass(frozen=True)
class Session:
    scope_key: str
    start_ms: int
    end_ms: int
    total_played_ms: int
    event_count: int
    merged_duplicate_count: int = 0

    @property
    def span_ms(self) -> int:
        return self.end_ms - self.start_ms


@dataclass(frozen=True)
class EntityTally:
    key: str
    play_count: int = 0
    total_played_ms: int = 0


@dataclass(frozen=True)
class EpisodeStats:
    entity_key: str
    total_played_ms: int
    segment_count: int
    longest_session_ms: int
    duplicates_removed: int
    zero_duration_dropped: int
    unique_platforms: Tuple[str, ...]
    merged_played_ms: int = 0  # every merged segment, floor ignored
    title: Optional[str] = None
    show: Optional[str] = None
    segments: Tuple[Tuple[int, int], ...] = ()  # (start_ms, played_ms)
    play_count: int = field(init=False)
    average_segment_ms: int = field(init=False)

    def __post_init__(self):
        object.__setattr__(self, "play_count", self.segment_count)
        average = round(self.total_played_ms / self.segment_count) if self.segment_count else 0
        object.__setattr__(self, "average_segment_ms", average)


@dataclass(frozen=True)
class TimeBucket:
    bucket_key: str
    label: str
    play_count: int = 0
    total_played_ms: int = 0
    top_entity: Optional[EntityTally] = None  # top artist
    top_album: Optional[EntityTally] = None
    unique_entity_count: int = 0
    discovery_count: int = 0
    active_days: int = 0
    avg_plays_per_day: float = field(init=False)

    def __post_init__(self):
        average = self.play_count / self.active_days if self.active_days else 0.0
        object.__setattr__(self, "avg_plays_per_day", average)


@dataclass(frozen=True)
class RankedEntry:
    key: str
    rank: int
    metric_value: float
    share_of_total: float


@dataclass(frozen=True)
class StreakInfo:
    streak_length: int = 0
    streak_start: Optional[date] = None
    streak_end: Optional[date] = None
    current_streak: int = 0


@dataclass
class SessionSummary:
    total_sessions: int
    average_session_minutes: int
    average_events_per_session: int
    longest_session_minutes: int
    most_events: int
    duration_groups: List[Tuple[str, int]]  # (label, session_count)
    sessions_by_hour: List[int] = field(default_factory=lambda: [0] * 24)
    sessions_by_weekday: List[int] = field(default_factory=lambda: [0] * 7)


ENTITY_FIELDS = ("artist", "album", "track", "show", "platform")


def entity_value(event: PlayEvent, field_name: str) -> Optional[str]:
    """Grouping value of an event for one entity dimension."""
    if field_name == "track":
        return track_key(event.track, event.artist, event.entity_key)
    if field_name == "album":
        return album_key(event.album, event.artist)
    if field_name == "platform":
        return event.platform or "unknown"
    if field_name not in ENTITY_FIELDS:
        raise ValueError(f"Unknown entity field: {field_name}")
    return getattr(event, field_name)
