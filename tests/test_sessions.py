"""
Tests for session reconstruction.

Covers the global gap-driven mode, the per-entity dedup/merge mode used for
episodes, and the session summary.
"""

from __future__ import annotations

from datetime import timezone

import pytest

from factories import HOUR, MINUTE, episode, play, ts
from models import GLOBAL_SCOPE
from sessions import (
    EntityMergeBuilder,
    SessionBuilder,
    merge_entity_plays,
    reconstruct_sessions,
    summarize_sessions,
)

GAP = 30 * MINUTE
OVERLAP = 180 * MINUTE


# --- Global Mode Tests ---


class TestReconstructSessions:
    """Test cross-entity listening sessions."""

    def test_empty_input_has_no_sessions(self) -> None:
        """No events produce no sessions."""
        assert reconstruct_sessions([], GAP) == []

    def test_gap_splits_sessions(self) -> None:
        """A silence longer than the gap starts a new session."""
        events = [
            play(0, 3 * MINUTE, key="a"),
            play(10 * MINUTE, 3 * MINUTE, key="b"),
            play(44 * MINUTE, 3 * MINUTE, key="c"),
        ]

        sessions = reconstruct_sessions(events, GAP)

        assert len(sessions) == 2
        first, second = sessions
        assert first.scope_key == GLOBAL_SCOPE
        assert first.start_ms == 0
        assert first.end_ms == 13 * MINUTE
        assert first.event_count == 2
        assert first.total_played_ms == 6 * MINUTE
        assert second.start_ms == 44 * MINUTE
        assert second.event_count == 1

    def test_gap_equal_to_threshold_continues_session(self) -> None:
        """Only a gap strictly greater than the threshold splits."""
        events = [
            play(0, 3 * MINUTE, key="a"),
            play(33 * MINUTE, 3 * MINUTE, key="b"),
        ]

        sessions = reconstruct_sessions(events, GAP)

        assert len(sessions) == 1
        assert sessions[0].end_ms == 36 * MINUTE

    def test_overlapping_event_does_not_shrink_end(self) -> None:
        """Session end only ever moves forward."""
        events = [
            play(0, 10 * MINUTE, key="a"),
            play(2 * MINUTE, 1 * MINUTE, key="b"),
        ]

        session = reconstruct_sessions(events, GAP)[0]

        assert session.end_ms == 10 * MINUTE
        assert session.span_ms == 10 * MINUTE

    def test_exact_repeats_are_counted_not_played(self) -> None:
        """An exact (timestamp, duration, key) repeat counts as a merged duplicate."""
        events = [play(0, 3 * MINUTE, key="a"), play(0, 3 * MINUTE, key="a")]

        session = reconstruct_sessions(events, GAP)[0]

        assert session.event_count == 1
        assert session.merged_duplicate_count == 1
        assert session.total_played_ms == 3 * MINUTE

    def test_zero_duration_events_are_skipped(self) -> None:
        """Zero-length events neither open nor extend a session."""
        builder = SessionBuilder(GAP)
        builder.add(play(0, 0, key="a"))
        builder.add(play(5 * MINUTE, 2 * MINUTE, key="b"))

        sessions = builder.finish()

        assert builder.zero_duration_skipped == 1
        assert len(sessions) == 1
        assert sessions[0].start_ms == 5 * MINUTE

    def test_sessions_are_ordered_and_disjoint(self) -> None:
        """Consecutive sessions never overlap."""
        events = [play(i * 40 * MINUTE, (i % 3 + 1) * MINUTE, key=f"k{i}") for i in range(10)]

        sessions = reconstruct_sessions(events, GAP)

        for earlier, later in zip(sessions, sessions[1:]):
            assert earlier.end_ms < later.start_ms
            assert later.start_ms - earlier.end_ms > GAP


# --- Per-Entity Merge Tests ---


class TestMergeEntityPlays:
    """Test per-entity dedup and overlap merging."""

    def test_identical_events_merge_to_one(self) -> None:
        """Two identical plays keep one and report the duplicate."""
        events = [play(1000, 60000, key="songA"), play(1000, 60000, key="songA")]

        stats = merge_entity_plays(events, OVERLAP, min_segment_ms=0)["songA"]

        assert stats.duplicates_removed == 1
        assert stats.total_played_ms == 60000
        assert stats.segment_count == 1

    def test_overlapping_replay_adds_only_new_time(self) -> None:
        """Overlapping time between two plays is counted once."""
        events = [episode(0, 600000), episode(500000, 600000)]

        stats = merge_entity_plays(events, OVERLAP)["ep1"]

        assert stats.total_played_ms == 1100000
        assert stats.segment_count == 1
        assert stats.segments == ((0, 1100000),)

    def test_replay_inside_segment_adds_nothing(self) -> None:
        """A shorter replay that starts and ends inside the segment contributes zero."""
        events = [episode(0, 600000), episode(100000, 200000)]

        stats = merge_entity_plays(events, OVERLAP)["ep1"]

        assert stats.total_played_ms == 600000
        assert stats.segment_count == 1

    def test_gap_beyond_overlap_threshold_opens_segment(self) -> None:
        """Plays further apart than the overlap threshold are separate segments."""
        second = 600000 + OVERLAP + 1
        events = [episode(0, 600000), episode(second, 600000)]

        stats = merge_entity_plays(events, OVERLAP)["ep1"]

        assert stats.segment_count == 2
        assert stats.play_count == 2
        assert stats.total_played_ms == 1200000
        assert stats.average_segment_ms == 600000

    def test_short_segments_fall_under_floor(self) -> None:
        """Segments below the minimum are not counted but still reported as merged time."""
        stats = merge_entity_plays([episode(0, MINUTE)], OVERLAP)["ep1"]

        assert stats.segment_count == 0
        assert stats.total_played_ms == 0
        assert stats.merged_played_ms == MINUTE

    def test_zero_duration_events_are_dropped(self) -> None:
        """Zero-length plays are removed before merging."""
        events = [episode(0, 0), episode(1000, 600000)]

        stats = merge_entity_plays(events, OVERLAP)["ep1"]

        assert stats.zero_duration_dropped == 1
        assert stats.segments == ((1000, 600000),)

    def test_metadata_is_collected(self) -> None:
        """Title, show, platforms and the longest single play come from the kept events."""
        events = [
            episode(0, 600000, track="Pilot", platform="ios"),
            episode(HOUR * 10, 900000),
        ]

        stats = merge_entity_plays(events, OVERLAP)["ep1"]

        assert stats.title == "Pilot"
        assert stats.show == "Show One"
        assert stats.unique_platforms == ("ios", "unknown")
        assert stats.longest_session_ms == 900000

    def test_input_order_does_not_matter(self) -> None:
        """Merging sorts each group itself."""
        events = [
            episode(0, 600000),
            episode(500000, 600000),
            episode(ts(2024, 1, 1), 400000, key="ep2"),
        ]

        forward = merge_entity_plays(events, OVERLAP)
        backward = merge_entity_plays(list(reversed(events)), OVERLAP)

        assert forward == backward
        assert list(forward) == ["ep1", "ep2"]

    def test_merged_time_never_exceeds_raw_time(self) -> None:
        """Merging can only remove double-counted time."""
        events = [episode(i * 200000, 500000) for i in range(8)]

        stats = merge_entity_plays(events, OVERLAP, min_segment_ms=0)["ep1"]

        assert stats.total_played_ms <= sum(e.duration_ms for e in events)
        assert stats.total_played_ms == 7 * 200000 + 500000

    def test_builder_matches_function(self) -> None:
        """Feeding the builder piecewise gives the one-shot result."""
        events = [episode(0, 600000), episode(500000, 600000), episode(0, 600000)]
        builder = EntityMergeBuilder(OVERLAP)
        for event in events:
            builder.add(event)

        assert builder.finish() == merge_entity_plays(events, OVERLAP)


# --- Summary Tests ---


class TestSummarizeSessions:
    """Test the session headline numbers."""

    def test_empty_summary(self) -> None:
        """No sessions give zeroed figures."""
        summary = summarize_sessions([])

        assert summary.total_sessions == 0
        assert summary.average_session_minutes == 0
        assert summary.longest_session_minutes == 0
        assert all(count == 0 for _, count in summary.duration_groups)

    @pytest.mark.parametrize(
        "minutes,label",
        [(5, "< 15 min"), (20, "15-30 min"), (45, "30-60 min"), (90, "1-2 hours"), (150, "> 2 hours")],
    )
    def test_duration_groups(self, minutes: int, label: str) -> None:
        """Each session lands in the group for its played minutes."""
        sessions = reconstruct_sessions([play(0, minutes * MINUTE)], GAP)

        summary = summarize_sessions(sessions)

        assert dict(summary.duration_groups)[label] == 1

    def test_start_hour_and_weekday(self) -> None:
        """Sessions are counted by the local hour and weekday they start in."""
        # 2024-03-04 is a Monday
        events = [play(ts(2024, 3, 4, 8), 3 * MINUTE), play(ts(2024, 3, 5, 21), 6 * MINUTE)]

        summary = summarize_sessions(reconstruct_sessions(events, GAP), timezone.utc)

        assert summary.total_sessions == 2
        assert summary.sessions_by_hour[8] == 1
        assert summary.sessions_by_hour[21] == 1
        assert summary.sessions_by_weekday[:2] == [1, 1]
        assert summary.longest_session_minutes == 6
        assert summary.most_events == 1
