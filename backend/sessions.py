"""
Session reconstruction.

Two modes share the same gap-driven walk over chronologically sorted events:

* global mode folds every event into cross-entity listening sessions;
* per-entity mode groups by entity key first, removes zero-length and exact
  repeat events, then merges overlapping replays into play segments without
  counting overlapping time twice.

Both are exposed as incremental builders (``add`` / ``finish``) so the runner
can feed them in chunks, and as plain functions for one-shot use.
"""

import logging
from datetime import datetime, timezone, tzinfo
from typing import Dict, Iterable, List, Optional, Set, Tuple

from config import DEFAULT_EPISODE_MIN_SEGMENT_MS, DEFAULT_EPISODE_OVERLAP_MS, DEFAULT_SESSION_GAP_MS
from models import GLOBAL_SCOPE, EpisodeStats, PlayEvent, Session, SessionSummary
from parser import dedupe_key

logger = logging.getLogger(__name__)

# (label, upper bound in minutes, exclusive)
SESSION_DURATION_GROUPS = [
    ("< 15 min", 15),
    ("15-30 min", 30),
    ("30-60 min", 60),
    ("1-2 hours", 120),
    ("> 2 hours", None),
]


class SessionBuilder:
    """Global session mode. Expects events in chronological order."""

    def __init__(self, gap_threshold_ms: int = DEFAULT_SESSION_GAP_MS, scope_key: str = GLOBAL_SCOPE):
        self.gap_threshold_ms = gap_threshold_ms
        self.scope_key = scope_key
        self.sessions: List[Session] = []
        self.zero_duration_skipped = 0
        self._start: Optional[int] = None
        self._end = 0
        self._played = 0
        self._count = 0
        self._duplicates = 0
        self._seen: Set[Tuple[int, int, str]] = set()

    def add(self, event: PlayEvent) -> None:
        if event.duration_ms <= 0:
            self.zero_duration_skipped += 1
            return

        if self._start is None or event.timestamp_ms - self._end > self.gap_threshold_ms:
            self._close()
            self._start = event.timestamp_ms
            self._end = event.ends_at_ms
            self._played = event.duration_ms
            self._count = 1
            self._duplicates = 0
            self._seen = {dedupe_key(event)}
            return

        key = dedupe_key(event)
        if key in self._seen:
            self._duplicates += 1
            return
        self._seen.add(key)

        self._end = max(self._end, event.ends_at_ms)
        self._played += event.duration_ms
        self._count += 1

    def _close(self) -> None:
        if self._start is None:
            return
        self.sessions.append(Session(
            scope_key=self.scope_key,
            start_ms=self._start,
            end_ms=self._end,
            total_played_ms=self._played,
            event_count=self._count,
            merged_duplicate_count=self._duplicates,
        ))
        self._start = None

    def finish(self) -> List[Session]:
        self._close()
        return list(self.sessions)


def reconstruct_sessions(events: Iterable[PlayEvent], gap_threshold_ms: int = DEFAULT_SESSION_GAP_MS) -> List[Session]:
    """Fold sorted events into global listening sessions."""
    builder = SessionBuilder(gap_threshold_ms)
    for event in events:
        builder.add(event)
    return builder.finish()


def _merge_group(
    entity_key: str,
    events: List[PlayEvent],
    overlap_threshold_ms: int,
    min_segment_ms: int,
) -> EpisodeStats:
    events = sorted(events, key=lambda e: (e.timestamp_ms, e.duration_ms))

    zero_dropped = 0
    duplicates = 0
    seen = set()
    kept = []
    for event in events:
        if event.duration_ms == 0:
            zero_dropped += 1
            continue
        key = dedupe_key(event)
        if key in seen:
            duplicates += 1
            continue
        seen.add(key)
        kept.append(event)

    segments: List[Tuple[int, int]] = []
    seg_start: Optional[int] = None
    seg_end = 0
    seg_played = 0
    for event in kept:
        if seg_start is not None and event.timestamp_ms - seg_end <= overlap_threshold_ms:
            overlap = max(0, seg_end - event.timestamp_ms)
            # a replay entirely inside the segment adds nothing
            seg_played += max(0, event.duration_ms - overlap)
            seg_end = max(seg_end, event.ends_at_ms)
            continue
        if seg_start is not None:
            segments.append((seg_start, seg_played))
        seg_start = event.timestamp_ms
        seg_end = event.ends_at_ms
        seg_played = event.duration_ms
    if seg_start is not None:
        segments.append((seg_start, seg_played))

    counted = tuple(seg for seg in segments if seg[1] >= min_segment_ms)
    title = next((e.track for e in kept if e.track), None)
    show = next((e.show for e in kept if e.show), None)

    return EpisodeStats(
        entity_key=entity_key,
        total_played_ms=sum(played for _, played in counted),
        segment_count=len(counted),
        longest_session_ms=max((e.duration_ms for e in kept), default=0),
        duplicates_removed=duplicates,
        zero_duration_dropped=zero_dropped,
        unique_platforms=tuple(sorted({e.platform or "unknown" for e in kept})),
        merged_played_ms=sum(played for _, played in segments),
        title=title,
        show=show,
        segments=counted,
    )


class EntityMergeBuilder:
    """Per-entity dedup/merge mode. Events may arrive in any order."""

    def __init__(
        self,
        overlap_threshold_ms: int = DEFAULT_EPISODE_OVERLAP_MS,
        min_segment_ms: int = DEFAULT_EPISODE_MIN_SEGMENT_MS,
    ):
        self.overlap_threshold_ms = overlap_threshold_ms
        self.min_segment_ms = min_segment_ms
        self._groups: Dict[str, List[PlayEvent]] = {}

    def add(self, event: PlayEvent) -> None:
        self._groups.setdefault(event.entity_key, []).append(event)

    def finish(self) -> Dict[str, EpisodeStats]:
        results = {}
        for key in sorted(self._groups):
            results[key] = _merge_group(key, self._groups[key], self.overlap_threshold_ms, self.min_segment_ms)

        if results:
            logger.debug(
                "Merged %d entities: %d duplicates, %d zero-length events removed",
                len(results),
                sum(r.duplicates_removed for r in results.values()),
                sum(r.zero_duration_dropped for r in results.values()),
            )
        return results


def merge_entity_plays(
    events: Iterable[PlayEvent],
    overlap_threshold_ms: int = DEFAULT_EPISODE_OVERLAP_MS,
    min_segment_ms: int = DEFAULT_EPISODE_MIN_SEGMENT_MS,
) -> Dict[str, EpisodeStats]:
    """Deduplicate and interval-merge plays per entity key."""
    builder = EntityMergeBuilder(overlap_threshold_ms, min_segment_ms)
    for event in events:
        builder.add(event)
    return builder.finish()


def summarize_sessions(sessions: List[Session], tz: tzinfo = timezone.utc) -> SessionSummary:
    """
    Headline numbers for the sessions view.

    Minutes are based on played time, not wall-clock span.
    """
    groups = [[label, 0] for label, _ in SESSION_DURATION_GROUPS]
    by_hour = [0] * 24
    by_weekday = [0] * 7
    minutes = []
    counts = []

    for session in sessions:
        duration_minutes = round(session.total_played_ms / 60000)
        minutes.append(duration_minutes)
        counts.append(session.event_count)

        for index, (_, upper) in enumerate(SESSION_DURATION_GROUPS):
            if upper is None or duration_minutes < upper:
                groups[index][1] += 1
                break

        started = datetime.fromtimestamp(session.start_ms / 1000, tz=tz)
        by_hour[started.hour] += 1
        by_weekday[started.weekday()] += 1

    total = len(sessions)
    return SessionSummary(
        total_sessions=total,
        average_session_minutes=round(sum(minutes) / total) if total else 0,
        average_events_per_session=round(sum(counts) / total) if total else 0,
        longest_session_minutes=max(minutes, default=0),
        most_events=max(counts, default=0),
        duration_groups=[(label, count) for label, count in groups],
        sessions_by_hour=by_hour,
        sessions_by_weekday=by_weekday,
    )
