from collections import Counter
from dataclasses import dataclass, field
from datetime import date, datetime, timezone, tzinfo
from typing import Dict, Iterable, List, Mapping, Tuple

from aggregation import MONTHS, week_key, week_start
from models import PlayEvent, RankingMetric, entity_value
from ranking import tally_by, top_n

# minimum plays before a timeframe gets a variety score
VARIETY_MIN_PLAYS = {"day": 5, "week": 10, "month": 20}


@dataclass(frozen=True)
class DiscoveryMonth:
    month_key: str  # YYYY-MM
    label: str
    count: int


@dataclass(frozen=True)
class Loyalty:
    top_artists: Tuple[Tuple[str, int], ...]  # (artist, total_played_ms)
    top_played_ms: int
    other_played_ms: int
    top_percentage: int
    unique_artist_count: int


@dataclass(frozen=True)
class ArtistDepth:
    artist: str
    unique_tracks: int
    total_plays: int
    depth_score: float


@dataclass(frozen=True)
class Depth:
    artist_depths: Tuple[ArtistDepth, ...]
    average_depth: int
    most_replayed: Tuple[Tuple[str, int], ...]  # (track key, plays)


@dataclass(frozen=True)
class VarietyPoint:
    timeframe: str
    start: date
    unique_tracks: int
    total_plays: int
    variety_score: float


@dataclass
class Variety:
    daily: List[VarietyPoint] = field(default_factory=list)
    weekly: List[VarietyPoint] = field(default_factory=list)
    monthly: List[VarietyPoint] = field(default_factory=list)
    avg_daily: float = 0.0
    avg_weekly: float = 0.0
    avg_monthly: float = 0.0


def _mean_score(points: List[VarietyPoint]) -> float:
    if not points:
        return 0.0
    return sum(p.variety_score for p in points) / len(points)


def discoveries_by_month(index: Mapping[str, int], tz: tzinfo = timezone.utc) -> List[DiscoveryMonth]:
    """Discovery timeline: how many entities were first heard in each calendar month."""
    counts = Counter(
        datetime.fromtimestamp(timestamp_ms / 1000, tz=tz).strftime("%Y-%m") for timestamp_ms in index.values()
    )

    timeline = []
    for key in sorted(counts):
        year, month = key.split("-")
        timeline.append(DiscoveryMonth(month_key=key, label=f"{MONTHS[int(month) - 1][1]} {year}", count=counts[key]))
    return timeline


def peak_discovery_month(timeline: List[DiscoveryMonth]):
    """Month with the most discoveries; earliest month wins ties."""
    best = None
    for point in timeline:
        if best is None or point.count > best.count:
            best = point
    return best


def loyalty(events: Iterable[PlayEvent], top: int = 5) -> Loyalty:
    """Share of listening time that goes to the top artists."""
    tallies = tally_by(events, "artist")
    ranked = top_n(tallies, len(tallies), RankingMetric.TOTAL_PLAYED_MS)
    total = sum(t.total_played_ms for t in tallies.values())
    leaders = tuple((entry.key, int(entry.metric_value)) for entry in ranked[:top])
    top_played = sum(ms for _, ms in leaders)
    return Loyalty(
        top_artists=leaders,
        top_played_ms=top_played,
        other_played_ms=total - top_played,
        top_percentage=round(top_played / total * 100) if total else 0,
        unique_artist_count=len(tallies),
    )


def listening_depth(events: Iterable[PlayEvent], top_artists: int = 20, top_tracks: int = 10) -> Depth:
    """
    How deep listening goes into each of the most played artists.

    depth_score is unique tracks scaled so that twenty distinct tracks scores
    around 67 and very deep catalogues approach 100.
    """
    events = list(events)
    artist_tracks: Dict[str, set] = {}
    for event in events:
        if not event.artist:
            continue
        artist_tracks.setdefault(event.artist, set()).add(entity_value(event, "track"))

    plays = tally_by(events, "artist")
    leaders = top_n(plays, top_artists, RankingMetric.PLAY_COUNT)

    depths = []
    for entry in leaders:
        unique = len(artist_tracks.get(entry.key, ()))
        if not unique:
            continue
        depths.append(ArtistDepth(
            artist=entry.key,
            unique_tracks=unique,
            total_plays=int(entry.metric_value),
            depth_score=unique * 100 / max(20, unique * 1.5),
        ))
    depths.sort(key=lambda d: (-d.depth_score, d.artist))

    track_plays = tally_by(events, "track")
    replayed = top_n(track_plays, top_tracks, RankingMetric.PLAY_COUNT)

    return Depth(
        artist_depths=tuple(depths),
        average_depth=round(sum(d.depth_score for d in depths) / (len(depths) or 1)),
        most_replayed=tuple((entry.key, int(entry.metric_value)) for entry in replayed),
    )


def variety(events: Iterable[PlayEvent], tz: tzinfo = timezone.utc) -> Variety:
    """Unique-track ratio per day, ISO week and month."""
    plays: Counter = Counter()
    tracks: Dict[Tuple[str, str], set] = {}
    starts: Dict[Tuple[str, str], date] = {}

    for event in events:
        day = event.datetime_in(tz).date()
        for timeframe, key, start in (
            ("day", day.isoformat(), day),
            ("week", week_key(day), week_start(day)),
            ("month", day.strftime("%Y-%m"), day.replace(day=1)),
        ):
            slot = (timeframe, key)
            plays[slot] += 1
            tracks.setdefault(slot, set()).add(entity_value(event, "track"))
            starts[slot] = start

    result = Variety()
    targets = {"day": result.daily, "week": result.weekly, "month": result.monthly}
    for slot in sorted(plays, key=lambda s: (s[0], starts[s])):
        timeframe, key = slot
        if plays[slot] < VARIETY_MIN_PLAYS[timeframe]:
            continue
        targets[timeframe].append(VarietyPoint(
            timeframe=key,
            start=starts[slot],
            unique_tracks=len(tracks[slot]),
            total_plays=plays[slot],
            variety_score=len(tracks[slot]) / plays[slot] * 100,
        ))

    result.avg_daily = _mean_score(result.daily)
    result.avg_weekly = _mean_score(result.weekly)
    result.avg_monthly = _mean_score(result.monthly)
    return result
