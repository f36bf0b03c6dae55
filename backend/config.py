import logging
import math
import os
from dataclasses import dataclass, fields, replace
from datetime import timezone, tzinfo
from typing import Any, Mapping, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from dotenv import load_dotenv

from models import RankingMetric

load_dotenv()

logger = logging.getLogger(__name__)

DEFAULT_SESSION_GAP_MS = 30 * 60 * 1000
DEFAULT_EPISODE_OVERLAP_MS = 180 * 60 * 1000
DEFAULT_EPISODE_MIN_SEGMENT_MS = 5 * 60 * 1000
DEFAULT_TOP_N = 50
DEFAULT_CHUNK_SIZE = 400

MIN_CHUNK_SIZE = 50
MAX_CHUNK_SIZE = 5000
MAX_TOP_N = 1000


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None or value.strip() == "":
        return default
    try:
        return int(value)
    except ValueError:
        logger.warning("Ignoring %s=%r, expected an integer", name, value)
        return default


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None or value.strip() == "":
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


def _as_int(value: Any) -> Optional[int]:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float) and math.isfinite(value):
        return int(value)
    if isinstance(value, str):
        try:
            return int(value.strip())
        except ValueError:
            return None
    return None


def as_bool(value: Any) -> bool:
    """Loose truthiness for flags that may arrive as strings."""
    if isinstance(value, str):
        return value.strip().lower() in ("1", "true", "yes", "on")
    return bool(value)


def resolve_timezone(name: Optional[str]) -> tzinfo:
    """Map a zone name to a tzinfo, falling back to UTC for unknown zones."""
    if not name or name.upper() == "UTC":
        return timezone.utc
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError):
        logger.warning("Unknown timezone %r, using UTC", name)
        return timezone.utc


@dataclass(frozen=True)
class AnalysisConfig:
    min_play_duration_ms: int = 0
    exclude_skips: bool = False
    completed_only: bool = False
    session_gap_threshold_ms: int = DEFAULT_SESSION_GAP_MS
    episode_overlap_threshold_ms: int = DEFAULT_EPISODE_OVERLAP_MS
    episode_min_segment_ms: int = DEFAULT_EPISODE_MIN_SEGMENT_MS
    top_n: int = DEFAULT_TOP_N
    ranking_metric: RankingMetric = RankingMetric.TOTAL_PLAYED_MS
    chunk_size: int = DEFAULT_CHUNK_SIZE
    timezone: str = "UTC"

    @property
    def tz(self) -> tzinfo:
        return resolve_timezone(self.timezone)

    @classmethod
    def from_env(cls) -> "AnalysisConfig":
        """Defaults for the host, overridable through ANALYSIS_* variables."""
        metric = os.getenv("ANALYSIS_RANKING_METRIC", RankingMetric.TOTAL_PLAYED_MS.value)
        return normalize_config({
            "min_play_duration_ms": _env_int("ANALYSIS_MIN_PLAY_DURATION_MS", 0),
            "exclude_skips": _env_bool("ANALYSIS_EXCLUDE_SKIPS", False),
            "completed_only": _env_bool("ANALYSIS_COMPLETED_ONLY", False),
            "session_gap_threshold_ms": _env_int("ANALYSIS_SESSION_GAP_MS", DEFAULT_SESSION_GAP_MS),
            "episode_overlap_threshold_ms": _env_int("ANALYSIS_EPISODE_OVERLAP_MS", DEFAULT_EPISODE_OVERLAP_MS),
            "episode_min_segment_ms": _env_int("ANALYSIS_EPISODE_MIN_SEGMENT_MS", DEFAULT_EPISODE_MIN_SEGMENT_MS),
            "top_n": _env_int("ANALYSIS_TOP_N", DEFAULT_TOP_N),
            "ranking_metric": metric,
            "chunk_size": _env_int("ANALYSIS_CHUNK_SIZE", DEFAULT_CHUNK_SIZE),
            "timezone": os.getenv("ANALYSIS_TIMEZONE", "UTC"),
        })

    def merged_with(self, raw: Optional[Mapping[str, Any]]) -> "AnalysisConfig":
        """Overlay caller-supplied values on top of this config."""
        if not raw:
            return self
        return normalize_config(raw, base=self)


_CAMEL_ALIASES = {
    "minPlayDurationMs": "min_play_duration_ms",
    "excludeSkips": "exclude_skips",
    "completedOnly": "completed_only",
    "sessionGapThresholdMs": "session_gap_threshold_ms",
    "episodeOverlapThresholdMs": "episode_overlap_threshold_ms",
    "episodeMinSegmentMs": "episode_min_segment_ms",
    "topN": "top_n",
    "rankingMetric": "ranking_metric",
    "chunkSize": "chunk_size",
}


def _clamped(name: str, value: Any, default: int, low: int = 0, high: Optional[int] = None) -> int:
    number = _as_int(value)
    if number is None or number < low:
        if value is not None:
            logger.warning("Config %s=%r out of range, using %d", name, value, default)
        return default
    if high is not None and number > high:
        logger.warning("Config %s=%r above %d, clamping", name, value, high)
        return high
    return number


def normalize_config(raw: Optional[Mapping[str, Any]], base: Optional[AnalysisConfig] = None) -> AnalysisConfig:
    """
    Build an AnalysisConfig from a loose mapping.

    Unknown keys are ignored, camelCase keys are accepted and out-of-range
    values fall back to the default (or the value in ``base``). Never raises.
    """
    base = base or AnalysisConfig()
    if not raw:
        return base

    known = {f.name for f in fields(AnalysisConfig)}
    values = {}
    for key, value in raw.items():
        key = _CAMEL_ALIASES.get(key, key)
        if key in known:
            values[key] = value

    updates = {}
    if "min_play_duration_ms" in values:
        # negative thresholds clamp to "no threshold"
        number = _as_int(values["min_play_duration_ms"])
        if number is None or number < 0:
            logger.warning("Config min_play_duration_ms=%r out of range, using 0", values["min_play_duration_ms"])
            number = 0
        updates["min_play_duration_ms"] = number
    for key in ("exclude_skips", "completed_only"):
        if key in values:
            updates[key] = as_bool(values[key])
    if "session_gap_threshold_ms" in values:
        updates["session_gap_threshold_ms"] = _clamped(
            "session_gap_threshold_ms", values["session_gap_threshold_ms"], DEFAULT_SESSION_GAP_MS)
    if "episode_overlap_threshold_ms" in values:
        updates["episode_overlap_threshold_ms"] = _clamped(
            "episode_overlap_threshold_ms", values["episode_overlap_threshold_ms"], DEFAULT_EPISODE_OVERLAP_MS)
    if "episode_min_segment_ms" in values:
        updates["episode_min_segment_ms"] = _clamped(
            "episode_min_segment_ms", values["episode_min_segment_ms"], DEFAULT_EPISODE_MIN_SEGMENT_MS)
    if "top_n" in values:
        updates["top_n"] = _clamped("top_n", values["top_n"], DEFAULT_TOP_N, low=1, high=MAX_TOP_N)
    if "chunk_size" in values:
        number = _as_int(values["chunk_size"])
        if number is None:
            number = DEFAULT_CHUNK_SIZE
        updates["chunk_size"] = min(max(number, MIN_CHUNK_SIZE), MAX_CHUNK_SIZE)
    if "ranking_metric" in values:
        try:
            updates["ranking_metric"] = RankingMetric(values["ranking_metric"])
        except ValueError:
            logger.warning("Unknown ranking metric %r, using total_played_ms", values["ranking_metric"])
            updates["ranking_metric"] = RankingMetric.TOTAL_PLAYED_MS
    if "timezone" in values:
        name = values["timezone"] if isinstance(values["timezone"], str) else "UTC"
        # keep the name only if it resolves
        updates["timezone"] = name if resolve_timezone(name) is not timezone.utc else "UTC"

    return replace(base, **updates)
