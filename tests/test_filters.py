"""
Tests for play filters and date selection parsing.
"""

from __future__ import annotations

from datetime import timedelta, timezone

import pytest

from config import AnalysisConfig
from factories import episode, play, ts
from filters import (
    AllTime,
    Day,
    Month,
    Year,
    YearRange,
    available_years,
    filter_events,
    parse_date_filter,
    passes,
    sort_events,
)
from models import EntityKind


# --- Play Filter Tests ---


class TestPasses:
    """Test the per-event play filters."""

    def test_minimum_duration_boundary(self) -> None:
        """Events shorter than the minimum are excluded, equal ones kept."""
        config = AnalysisConfig(min_play_duration_ms=30000)

        assert not passes(play(0, 29999), config)
        assert passes(play(0, 30000), config)

    def test_exclude_skips(self) -> None:
        """Forward and back button ends are skips."""
        config = AnalysisConfig(exclude_skips=True)

        assert not passes(play(0, end_reason="forward-button"), config)
        assert not passes(play(0, end_reason="back-button"), config)
        assert passes(play(0, end_reason="endplay"), config)
        assert passes(play(0), config)

    def test_completed_only(self) -> None:
        """Only finished tracks survive when completed_only is set."""
        config = AnalysisConfig(completed_only=True)

        assert passes(play(0, end_reason="track-finished"), config)
        assert not passes(play(0), config)

    def test_defaults_keep_everything(self, config: AnalysisConfig) -> None:
        """The default config filters nothing out."""
        assert passes(play(0, 0, end_reason="forward-button"), config)


class TestFilterEvents:
    """Test whole-list filtering."""

    def test_short_play_excluded_everywhere(self, week_of_plays) -> None:
        """A play under the minimum never reaches the output."""
        config = AnalysisConfig(min_play_duration_ms=30000)

        kept = filter_events(week_of_plays, config)

        assert len(kept) == len(week_of_plays) - 1
        assert all(event.entity_key != "song-e" for event in kept)

    def test_output_is_sorted(self, config: AnalysisConfig) -> None:
        """Results come back in chronological order whatever the input order."""
        events = [play(30, key="b"), play(10, key="c"), play(30, key="a")]

        kept = filter_events(events, config)

        assert [(e.timestamp_ms, e.entity_key) for e in kept] == [(10, "c"), (30, "a"), (30, "b")]
        assert kept == sort_events(events)

    def test_date_filter(self, week_of_plays, config: AnalysisConfig) -> None:
        """Only events inside the selected day remain."""
        kept = filter_events(week_of_plays, config, Day(2024, 3, 4))

        assert {e.entity_key for e in kept} == {"song-a", "song-b", "song-c"}

    def test_date_filter_uses_timezone(self, config: AnalysisConfig) -> None:
        """A late-evening UTC play belongs to the next local day further east."""
        event = play(ts(2024, 3, 31, 23))
        plus_two = timezone(timedelta(hours=2))

        assert filter_events([event], config, Month(2024, 3)) == [event]
        assert filter_events([event], config, Month(2024, 3), tz=plus_two) == []

    def test_out_of_range_timestamp_is_dropped(self, config: AnalysisConfig) -> None:
        """Events beyond the calendar are dropped rather than raising."""
        events = [play(ts(2024, 3, 4)), play(10 ** 16, key="far"), play(-(10 ** 16), key="before")]

        kept = filter_events(events, config)

        assert [e.entity_key for e in kept] == ["song-a"]

    def test_kind_and_show_filters(self, config: AnalysisConfig) -> None:
        """Kinds and shows narrow the selection."""
        events = [
            play(0),
            episode(1, 600000, show="Show One"),
            episode(2, 600000, key="ep2", show="Show Two"),
        ]

        episodes = filter_events(events, config, kinds={EntityKind.EPISODE})
        one_show = filter_events(events, config, shows={"Show Two"})

        assert len(episodes) == 2
        assert [e.entity_key for e in one_show] == ["ep2"]

    def test_available_years(self) -> None:
        """Years with data are listed once, ascending."""
        events = [play(ts(2024, 1, 1)), play(ts(2022, 5, 5)), play(ts(2024, 8, 8))]

        assert available_years(events) == [2022, 2024]


# --- Date Filter Parsing Tests ---


class TestParseDateFilter:
    """Test turning date selections into typed filters."""

    @pytest.mark.parametrize(
        "value,expected",
        [
            (None, AllTime()),
            ("", AllTime()),
            ("all", AllTime()),
            ("2024", Year(2024)),
            (2024, Year(2024)),
            ("2024-03", Month(2024, 3)),
            ("2024-3", Month(2024, 3)),
            ("2024-03-15", Day(2024, 3, 15)),
            ("2021:2023", YearRange(2021, 2023)),
            ("2023/2021", YearRange(2021, 2023)),
        ],
    )
    def test_valid_values(self, value, expected) -> None:
        """Recognised shapes parse to their variant."""
        assert parse_date_filter(value) == expected

    @pytest.mark.parametrize("value", ["2024-13", "2023-02-30", "last week", True, 3.5])
    def test_invalid_values_mean_all_time(self, value) -> None:
        """Anything unparsable degrades to all time."""
        assert parse_date_filter(value) == AllTime()

    def test_contains(self) -> None:
        """Each variant checks its own span."""
        moment = play(ts(2024, 3, 15, 12)).datetime_in()

        assert Year(2024).contains(moment)
        assert Month(2024, 3).contains(moment)
        assert not Month(2024, 4).contains(moment)
        assert Day(2024, 3, 15).contains(moment)
        assert YearRange(2020, 2024).contains(moment)
        assert not YearRange(2020, 2023).contains(moment)
