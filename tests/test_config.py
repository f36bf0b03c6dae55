"""
Tests for analysis settings: normalization, clamping and environment loading.
"""

from __future__ import annotations

from datetime import timezone

import pytest

from config import (
    DEFAULT_CHUNK_SIZE,
    DEFAULT_SESSION_GAP_MS,
    DEFAULT_TOP_N,
    MAX_CHUNK_SIZE,
    MAX_TOP_N,
    MIN_CHUNK_SIZE,
    AnalysisConfig,
    normalize_config,
    resolve_timezone,
)
from models import RankingMetric


class TestNormalizeConfig:
    """Test clamping of caller-supplied settings."""

    def test_empty_gives_defaults(self) -> None:
        """Nothing supplied means the defaults."""
        assert normalize_config(None) == AnalysisConfig()
        assert normalize_config({}) == AnalysisConfig()

    def test_negative_min_duration_clamps_to_zero(self) -> None:
        """A negative minimum means no minimum."""
        assert normalize_config({"min_play_duration_ms": -5}).min_play_duration_ms == 0

    def test_camel_case_keys(self) -> None:
        """camelCase keys from JSON callers are accepted."""
        config = normalize_config({
            "minPlayDurationMs": 30000,
            "excludeSkips": True,
            "topN": 5,
            "rankingMetric": "play_count",
        })

        assert config.min_play_duration_ms == 30000
        assert config.exclude_skips is True
        assert config.top_n == 5
        assert config.ranking_metric is RankingMetric.PLAY_COUNT

    @pytest.mark.parametrize("value", [-1, "abc", None, [1]])
    def test_invalid_gap_uses_default(self, value) -> None:
        """Bad session gaps fall back to the default."""
        config = normalize_config({"session_gap_threshold_ms": value})

        assert config.session_gap_threshold_ms == DEFAULT_SESSION_GAP_MS

    def test_numeric_strings_are_accepted(self) -> None:
        """Numbers sent as strings still count."""
        assert normalize_config({"session_gap_threshold_ms": "60000"}).session_gap_threshold_ms == 60000

    def test_top_n_bounds(self) -> None:
        """top_n stays between one and the maximum."""
        assert normalize_config({"top_n": 0}).top_n == DEFAULT_TOP_N
        assert normalize_config({"top_n": 10 ** 6}).top_n == MAX_TOP_N

    def test_chunk_size_is_clamped(self) -> None:
        """Chunk sizes are pulled into range rather than rejected."""
        assert normalize_config({"chunk_size": 10}).chunk_size == MIN_CHUNK_SIZE
        assert normalize_config({"chunk_size": 10 ** 6}).chunk_size == MAX_CHUNK_SIZE
        assert normalize_config({"chunk_size": "x"}).chunk_size == DEFAULT_CHUNK_SIZE

    def test_non_finite_numbers_use_defaults(self) -> None:
        """Infinite and NaN values are treated as invalid, not clamped."""
        assert normalize_config({"top_n": float("inf")}).top_n == DEFAULT_TOP_N
        assert normalize_config({"chunk_size": float("nan")}).chunk_size == DEFAULT_CHUNK_SIZE
        assert normalize_config({"session_gap_threshold_ms": float("-inf")}).session_gap_threshold_ms == DEFAULT_SESSION_GAP_MS
        assert normalize_config({"top_n": 12.0}).top_n == 12

    def test_unknown_metric_and_keys(self) -> None:
        """Unknown metrics fall back and unknown keys are ignored."""
        config = normalize_config({"ranking_metric": "loudness", "colour": "blue"})

        assert config.ranking_metric is RankingMetric.TOTAL_PLAYED_MS

    def test_string_booleans(self) -> None:
        """Boolean flags accept common string spellings."""
        assert normalize_config({"completed_only": "true"}).completed_only is True
        assert normalize_config({"completed_only": "no"}).completed_only is False

    def test_unknown_timezone_falls_back(self) -> None:
        """Zones that do not resolve become UTC."""
        assert normalize_config({"timezone": "Nowhere/Special"}).timezone == "UTC"
        assert normalize_config({"timezone": 5}).timezone == "UTC"

    def test_merged_with_keeps_base(self) -> None:
        """Overlaying a partial mapping keeps the other base values."""
        base = AnalysisConfig(top_n=7, exclude_skips=True)

        merged = base.merged_with({"minPlayDurationMs": 1000})

        assert merged.top_n == 7
        assert merged.exclude_skips is True
        assert merged.min_play_duration_ms == 1000
        assert base.merged_with(None) is base


class TestFromEnv:
    """Test loading host defaults from the environment."""

    def test_reads_variables(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """ANALYSIS_* variables override the defaults."""
        monkeypatch.setenv("ANALYSIS_TOP_N", "7")
        monkeypatch.setenv("ANALYSIS_EXCLUDE_SKIPS", "true")
        monkeypatch.setenv("ANALYSIS_RANKING_METRIC", "play_count")

        config = AnalysisConfig.from_env()

        assert config.top_n == 7
        assert config.exclude_skips is True
        assert config.ranking_metric is RankingMetric.PLAY_COUNT

    def test_bad_integer_is_ignored(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """Non-numeric values leave the default in place."""
        monkeypatch.setenv("ANALYSIS_CHUNK_SIZE", "lots")

        assert AnalysisConfig.from_env().chunk_size == DEFAULT_CHUNK_SIZE


class TestResolveTimezone:
    """Test zone name resolution."""

    def test_utc_and_empty(self) -> None:
        """UTC and missing names map to the UTC singleton."""
        assert resolve_timezone(None) is timezone.utc
        assert resolve_timezone("utc") is timezone.utc
        assert resolve_timezone("Nowhere/Special") is timezone.utc
