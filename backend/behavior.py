from collections import Counter
from dataclasses import dataclass, field
from typing import Iterable, List

from filters import COMPLETED_END_REASON, is_skip
from models import PlayEvent

# plays shorter than this are too brief to say anything about behaviour
MIN_BEHAVIOR_DURATION_MS = 1000


@dataclass(frozen=True)
class ReasonCount:
    name: str
    count: int
    percentage: int


@dataclass
class BehaviorSummary:
    total_plays: int = 0
    skipped: int = 0
    completed: int = 0
    shuffle_plays: int = 0
    end_reasons: List[ReasonCount] = field(default_factory=list)
    start_reasons: List[ReasonCount] = field(default_factory=list)
    platforms: List[ReasonCount] = field(default_factory=list)
    normal_plays: int = 0
    other_ends: int = 0

    def percentage(self, count: int) -> int:
        if not self.total_plays:
            return 0
        return round(count / self.total_plays * 100)


def _breakdown(counts: Counter, total: int) -> List[ReasonCount]:
    ordered = sorted(counts.items(), key=lambda kv: (-kv[1], kv[0]))
    return [
        ReasonCount(name=name, count=count, percentage=round(count / total * 100) if total else 0)
        for name, count in ordered
    ]


def summarize_behavior(events: Iterable[PlayEvent], min_duration_ms: int = MIN_BEHAVIOR_DURATION_MS) -> BehaviorSummary:
    """Shuffle, skip and completion habits plus end/start reason and platform breakdowns."""
    summary = BehaviorSummary()
    end_reasons: Counter = Counter()
    start_reasons: Counter = Counter()
    platforms: Counter = Counter()

    for event in events:
        if event.duration_ms < min_duration_ms:
            continue
        summary.total_plays += 1
        if event.shuffle:
            summary.shuffle_plays += 1
        if is_skip(event):
            summary.skipped += 1
        if event.end_reason == COMPLETED_END_REASON:
            summary.completed += 1

        end_reasons[event.end_reason or "unknown"] += 1
        start_reasons[event.start_reason or "unknown"] += 1
        platforms[event.platform or "unknown"] += 1

    summary.end_reasons = _breakdown(end_reasons, summary.total_plays)
    summary.start_reasons = _breakdown(start_reasons, summary.total_plays)
    summary.platforms = _breakdown(platforms, summary.total_plays)
    summary.normal_plays = summary.total_plays - summary.shuffle_plays
    summary.other_ends = summary.total_plays - summary.completed - summary.skipped
    return summary
