from collections import Counter
from dataclasses import dataclass
from datetime import date, datetime, timezone, tzinfo
from typing import Any, Dict, Iterable, List, Mapping, Optional, Union

from models import EntityTally, PlayEvent, RankedEntry, RankingMetric, StreakInfo, entity_value


class TallyAccumulator:
    """Incremental form of tally_by."""

    def __init__(self, field_name: str):
        self.field_name = field_name
        self._plays: Counter = Counter()
        self._played_ms: Counter = Counter()

    def add(self, event: PlayEvent) -> None:
        key = entity_value(event, self.field_name)
        if not key:
            return
        self._plays[key] += 1
        self._played_ms[key] += event.duration_ms

    def finish(self) -> Dict[str, EntityTally]:
        return {
            key: EntityTally(key=key, play_count=self._plays[key], total_played_ms=self._played_ms[key])
            for key in sorted(self._plays)
        }


def tally_by(events: Iterable[PlayEvent], field_name: str) -> Dict[str, EntityTally]:
    """Play count and played time per entity (artist, album, track, show or platform)."""
    accumulator = TallyAccumulator(field_name)
    for event in events:
        accumulator.add(event)
    return accumulator.finish()


def metric_value(item: Any, metric: Union[RankingMetric, str]) -> float:
    if isinstance(item, (int, float)) and not isinstance(item, bool):
        return item
    return getattr(item, RankingMetric(metric).value)


def top_n(
    aggregate: Mapping[str, Any],
    n: Optional[int],
    metric: Union[RankingMetric, str] = RankingMetric.TOTAL_PLAYED_MS,
) -> List[RankedEntry]:
    """
    Rank an aggregate map by one metric.

    Args:
        aggregate: key -> tally, episode stats or plain number
        n: How many entries to return (None for all)
        metric: total_played_ms or play_count

    Returns:
        RankedEntry list, metric descending, ties broken by key ascending.
        share_of_total is relative to the whole map, not just the top n.
    """
    if n is not None and n <= 0:
        return []

    values = [(key, metric_value(item, metric)) for key, item in aggregate.items()]
    total = sum(value for _, value in values)
    values.sort(key=lambda kv: (-kv[1], kv[0]))
    if n is not None:
        values = values[:n]

    return [
        RankedEntry(
            key=key,
            rank=position,
            metric_value=value,
            share_of_total=value / total if total else 0.0,
        )
        for position, (key, value) in enumerate(values, 1)
    ]


def display_share(entry: RankedEntry, digits: int = 1) -> float:
    """Share of total as a rounded percentage, for display only."""
    return round(entry.share_of_total * 100, digits)


def detect_streak(days: Iterable[date], today: Optional[date] = None) -> StreakInfo:
    """
    Longest run of consecutive calendar days, plus the run still active.

    current_streak is the run ending at the most recent day, and only counts
    when that day is no more than one day before ``today``.
    """
    ordered = sorted(set(days))
    if not ordered:
        return StreakInfo()

    today = today or date.today()
    longest = 0
    longest_start = longest_end = None
    run = 0
    run_start = ordered[0]
    previous = None
    for day in ordered:
        if previous is not None and (day - previous).days == 1:
            run += 1
        else:
            run = 1
            run_start = day
        if run > longest:
            longest = run
            longest_start, longest_end = run_start, day
        previous = day

    current = run if (today - ordered[-1]).days <= 1 else 0
    return StreakInfo(
        streak_length=longest,
        streak_start=longest_start,
        streak_end=longest_end,
        current_streak=current,
    )


def streaks_by_entity(
    events: Iterable[PlayEvent],
    field_name: str = "artist",
    tz: tzinfo = timezone.utc,
    today: Optional[date] = None,
    keys: Optional[Iterable[str]] = None,
) -> Dict[str, StreakInfo]:
    """Streak info per entity, optionally restricted to ``keys``."""
    wanted = set(keys) if keys is not None else None
    days: Dict[str, set] = {}
    for event in events:
        key = entity_value(event, field_name)
        if not key or (wanted is not None and key not in wanted):
            continue
        days.setdefault(key, set()).add(event.datetime_in(tz).date())
    return {key: detect_streak(days[key], today) for key in sorted(days)}


@dataclass(frozen=True)
class Obsession:
    key: str
    play_count: int
    week_start: date
    plays_in_week: int


def brief_obsessions(
    events: Iterable[PlayEvent],
    tz: tzinfo = timezone.utc,
    max_total_plays: int = 50,
    min_week_plays: int = 5,
    limit: int = 100,
) -> List[Obsession]:
    """
    Tracks with a short, intense burst of plays.

    Only tracks with at most ``max_total_plays`` overall are considered; the
    busiest 7-day window ending at any of their plays must hold at least
    ``min_week_plays`` plays.
    """
    history: Dict[str, List[int]] = {}
    for event in events:
        history.setdefault(entity_value(event, "track"), []).append(event.timestamp_ms)

    week_ms = 7 * 24 * 60 * 60 * 1000
    found = []
    for key, stamps in history.items():
        if len(stamps) > max_total_plays:
            continue
        stamps.sort()
        best = 0
        best_end = stamps[0]
        left = 0
        for right, end in enumerate(stamps):
            while stamps[left] < end - week_ms:
                left += 1
            if right - left + 1 > best:
                best = right - left + 1
                best_end = end
        if best >= min_week_plays:
            start = datetime.fromtimestamp((best_end - week_ms) / 1000, tz=tz).date()
            found.append(Obsession(key=key, play_count=len(stamps), week_start=start, plays_in_week=best))

    found.sort(key=lambda o: (-o.plays_in_week, o.week_start, o.key))
    return found[:limit]
