"""
Chunked, abandonable analysis runs.

Every view's numbers come out of one pass over the filtered events. The work
is cut into chunks so a host can hand control back to its event loop (or poll
for a newer request) between them; chunk boundaries never change the result
because every accumulator is a sequential fold.
"""

import asyncio
import logging
import threading
from dataclasses import dataclass, field
from datetime import MAXYEAR, MINYEAR, date
from typing import Callable, Dict, Generator, Iterator, List, Optional, Sequence, Union

import orjson

from aggregation import BucketAccumulator, FirstOccurrenceIndex, assign_discoveries
from behavior import BehaviorSummary, summarize_behavior
from config import AnalysisConfig
from discovery import DiscoveryMonth, Depth, Loyalty, Variety, discoveries_by_month, listening_depth, loyalty, variety
from filters import DateFilter, Month, Year, filter_events, parse_date_filter, sort_events
from models import EntityKind, EpisodeStats, Granularity, PlayEvent, RankedEntry, Session, SessionSummary, StreakInfo, TimeBucket
from ranking import Obsession, TallyAccumulator, brief_obsessions, streaks_by_entity, top_n
from sessions import EntityMergeBuilder, SessionBuilder, summarize_sessions

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[int], None]


class AnalysisSuperseded(Exception):
    """Raised when a newer request made this run's result irrelevant."""
    pass


class RequestToken:
    def __init__(self, owner: "LatestRequest", generation: int):
        self._owner = owner
        self.generation = generation

    def is_stale(self) -> bool:
        return self._owner.generation != self.generation


class LatestRequest:
    """
    Latest-wins bookkeeping for one consumer (a dashboard, an upload session).

    Each new request bumps the generation; tokens from older generations
    report stale and their runs stop at the next chunk boundary.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self.generation = 0

    def begin(self) -> RequestToken:
        with self._lock:
            self.generation += 1
            return RequestToken(self, self.generation)


def iter_chunks(items: Sequence, size: int) -> Iterator[Sequence]:
    size = max(1, size)
    for start in range(0, len(items), size):
        yield items[start:start + size]


# bucket sets every run produces; DAY is added when a month is selected
STANDARD_GRANULARITIES = (
    Granularity.HOUR,
    Granularity.WEEKDAY,
    Granularity.MONTH,
    Granularity.SEASON,
    Granularity.TIME_OF_DAY,
    Granularity.CALENDAR_MONTH,
    Granularity.YEAR,
    Granularity.WEEK,
)


@dataclass
class AnalysisResult:
    config: AnalysisConfig
    event_count: int = 0
    filtered_count: int = 0
    sessions: List[Session] = field(default_factory=list)
    session_summary: Optional[SessionSummary] = None
    episodes: Dict[str, EpisodeStats] = field(default_factory=dict)
    top_episodes: List[RankedEntry] = field(default_factory=list)
    buckets: Dict[str, List[TimeBucket]] = field(default_factory=dict)
    first_listens: Dict[str, int] = field(default_factory=dict)  # artist -> first timestamp
    discovery_timeline: List[DiscoveryMonth] = field(default_factory=list)
    top_artists: List[RankedEntry] = field(default_factory=list)
    top_albums: List[RankedEntry] = field(default_factory=list)
    top_tracks: List[RankedEntry] = field(default_factory=list)
    artist_streaks: Dict[str, StreakInfo] = field(default_factory=dict)
    behavior: Optional[BehaviorSummary] = None
    loyalty: Optional[Loyalty] = None
    depth: Optional[Depth] = None
    variety: Optional[Variety] = None
    obsessions: List[Obsession] = field(default_factory=list)

    def to_json(self) -> bytes:
        return orjson.dumps(self, option=orjson.OPT_NON_STR_KEYS)


def _analysis_steps(
    events: Sequence[PlayEvent],
    config: AnalysisConfig,
    date_filter: DateFilter,
    year: Optional[int],
    month: Optional[int],
    today: Optional[date],
) -> Generator[int, None, AnalysisResult]:
    tz = config.tz
    size = max(1, config.chunk_size)
    result = AnalysisResult(config=config, event_count=len(events))
    chunks = max(1, -(-len(events) // size))

    kept: List[PlayEvent] = []
    for done, chunk in enumerate(iter_chunks(events, size), 1):
        kept.extend(filter_events(chunk, config, date_filter, tz=tz))
        yield round(done / chunks * 30)
    kept = sort_events(kept)
    result.filtered_count = len(kept)

    sessions = SessionBuilder(config.session_gap_threshold_ms)
    episodes = EntityMergeBuilder(config.episode_overlap_threshold_ms, config.episode_min_segment_ms)
    granularities = list(STANDARD_GRANULARITIES)
    if year is not None and month is not None:
        granularities.append(Granularity.DAY)
    accumulators = {g: BucketAccumulator(g, tz, year, month) for g in granularities}
    first_listens = FirstOccurrenceIndex("artist")
    tallies = {name: TallyAccumulator(name) for name in ("artist", "album", "track")}

    chunks = max(1, -(-len(kept) // size))
    for done, chunk in enumerate(iter_chunks(kept, size), 1):
        for event in chunk:
            sessions.add(event)
            if event.entity_kind == EntityKind.EPISODE:
                episodes.add(event)
                continue
            for accumulator in accumulators.values():
                accumulator.add(event)
            first_listens.add(event)
            for tally in tallies.values():
                tally.add(event)
        yield 30 + round(done / chunks * 50)

    result.sessions = sessions.finish()
    result.session_summary = summarize_sessions(result.sessions, tz)
    result.episodes = episodes.finish()
    result.top_episodes = top_n(result.episodes, config.top_n, config.ranking_metric)
    yield 85

    result.first_listens = first_listens.as_dict()
    result.discovery_timeline = discoveries_by_month(result.first_listens, tz)
    for granularity, accumulator in accumulators.items():
        counts = assign_discoveries(result.first_listens, granularity, tz, year, month)
        result.buckets[granularity.value] = accumulator.finish(counts)

    finished = {name: tally.finish() for name, tally in tallies.items()}
    result.top_artists = top_n(finished["artist"], config.top_n, config.ranking_metric)
    result.top_albums = top_n(finished["album"], config.top_n, config.ranking_metric)
    result.top_tracks = top_n(finished["track"], config.top_n, config.ranking_metric)
    yield 90

    tracks = [event for event in kept if event.entity_kind == EntityKind.TRACK]
    result.artist_streaks = streaks_by_entity(
        tracks, "artist", tz, today, keys=[entry.key for entry in result.top_artists])
    result.behavior = summarize_behavior(kept)
    result.loyalty = loyalty(tracks)
    result.depth = listening_depth(tracks)
    result.variety = variety(tracks, tz)
    result.obsessions = brief_obsessions(tracks, tz)
    yield 100

    return result


def _in_range(value, low, high) -> bool:
    return isinstance(value, int) and not isinstance(value, bool) and low <= value <= high


def _steps_for(events, config, date_filter, year, month, today):
    if date_filter is None or isinstance(date_filter, (str, int)):
        date_filter = parse_date_filter(date_filter)
    # a selected month or year doubles as the calendar drill-down
    if year is None and isinstance(date_filter, (Year, Month)):
        year = date_filter.year
    if month is None and isinstance(date_filter, Month):
        month = date_filter.month
    if year is not None and not _in_range(year, MINYEAR, MAXYEAR):
        logger.warning("Ignoring drill-down year %r", year)
        year = None
    if month is not None and not _in_range(month, 1, 12):
        logger.warning("Ignoring drill-down month %r", month)
        month = None
    return _analysis_steps(list(events), config or AnalysisConfig(), date_filter, year, month, today)


def run_analysis(
    events: Sequence[PlayEvent],
    config: Optional[AnalysisConfig] = None,
    *,
    date_filter: Union[DateFilter, str, int, None] = None,
    year: Optional[int] = None,
    month: Optional[int] = None,
    today: Optional[date] = None,
    token: Optional[RequestToken] = None,
    on_progress: Optional[ProgressCallback] = None,
) -> AnalysisResult:
    """
    Run every aggregation for one (events, config) pair.

    Raises:
        AnalysisSuperseded: If ``token`` goes stale before the run completes
    """
    steps = _steps_for(events, config, date_filter, year, month, today)
    while True:
        try:
            percent = next(steps)
        except StopIteration as done:
            return done.value
        if token is not None and token.is_stale():
            steps.close()
            logger.info("Analysis generation %d superseded at %d%%", token.generation, percent)
            raise AnalysisSuperseded(f"generation {token.generation} superseded")
        if on_progress is not None:
            on_progress(percent)


async def run_analysis_async(
    events: Sequence[PlayEvent],
    config: Optional[AnalysisConfig] = None,
    *,
    date_filter: Union[DateFilter, str, int, None] = None,
    year: Optional[int] = None,
    month: Optional[int] = None,
    today: Optional[date] = None,
    token: Optional[RequestToken] = None,
    on_progress: Optional[ProgressCallback] = None,
) -> AnalysisResult:
    """Same as run_analysis, yielding to the event loop between chunks."""
    steps = _steps_for(events, config, date_filter, year, month, today)
    while True:
        try:
            percent = next(steps)
        except StopIteration as done:
            return done.value
        if on_progress is not None:
            on_progress(percent)
        await asyncio.sleep(0)  # Yield to event loop
        if token is not None and token.is_stale():
            steps.close()
            logger.info("Analysis generation %d superseded at %d%%", token.generation, percent)
            raise AnalysisSuperseded(f"generation {token.generation} superseded")
