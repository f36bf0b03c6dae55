import logging
from dataclasses import dataclass, field
from datetime import MAXYEAR, MINYEAR, datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

import orjson

from config import as_bool
from models import EntityKind, PlayEvent

logger = logging.getLogger(__name__)


class ParseError(Exception):
    """Raised when the payload as a whole cannot be read."""
    pass


@dataclass
class ParseReport:
    total: int = 0
    accepted: int = 0
    invalid_timestamp: int = 0
    invalid_duration: int = 0
    missing_key: int = 0
    not_an_object: int = 0

    @property
    def dropped(self) -> int:
        return self.total - self.accepted


@dataclass
class ParsedEvents:
    events: List[PlayEvent] = field(default_factory=list)
    report: ParseReport = field(default_factory=ParseReport)


# canonical field -> accepted spellings
_FIELDS = {
    'timestamp_ms': ('timestampMs', 'timestamp_ms', 'ts'),
    'duration_ms': ('durationMs', 'duration_ms'),
    'entity_key': ('entityKey', 'entity_key'),
    'entity_kind': ('entityKind', 'entity_kind'),
    'artist': ('artist',),
    'album': ('album',),
    'show': ('show',),
    'track': ('track', 'title'),
    'end_reason': ('endReason', 'end_reason'),
    'start_reason': ('startReason', 'start_reason'),
    'platform': ('platform',),
    'shuffle': ('shuffle',),
    'source': ('source',),
}


def _pick(entry: Dict[str, Any], name: str) -> Any:
    for alias in _FIELDS[name]:
        if alias in entry:
            return entry[alias]
    return None


def _representable(timestamp_ms: int) -> bool:
    # stay clear of MINYEAR and MAXYEAR in every timezone
    try:
        moment = datetime.fromtimestamp(timestamp_ms / 1000, tz=timezone.utc)
    except (OverflowError, OSError, ValueError):
        return False
    return MINYEAR < moment.year < MAXYEAR


def parse_timestamp_ms(value: Any) -> Optional[int]:
    """Epoch milliseconds or an ISO 8601 string; None when unparsable or out of range."""
    timestamp_ms = _timestamp_value(value)
    if timestamp_ms is None or not _representable(timestamp_ms):
        return None
    return timestamp_ms


def _timestamp_value(value: Any) -> Optional[int]:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        if value != value or value in (float("inf"), float("-inf")):
            return None
        return int(value)
    if isinstance(value, str):
        try:
            parsed = datetime.fromisoformat(value.strip().replace('Z', '+00:00'))
        except ValueError:
            return None
        if parsed.tzinfo is None:
            parsed = parsed.replace(tzinfo=timezone.utc)
        return int(parsed.timestamp() * 1000)
    return None


def _parse_duration(value: Any) -> Optional[int]:
    if value is None:
        # missing duration counts as a zero-length play
        return 0
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        if value != value or value < 0 or value == float("inf"):
            return None
        return int(value)
    return None


def _optional_str(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _parse_kind(value: Any) -> EntityKind:
    try:
        return EntityKind(str(value).lower())
    except ValueError:
        return EntityKind.TRACK


def event_from_dict(entry: Any, report: Optional[ParseReport] = None) -> Optional[PlayEvent]:
    """
    Build a PlayEvent from one canonical record.

    Returns None (and counts the reason in ``report``) for malformed records:
    unparsable timestamp, negative or non-numeric duration, empty entity key.
    """
    report = report if report is not None else ParseReport()
    if not isinstance(entry, dict):
        report.not_an_object += 1
        return None

    timestamp_ms = parse_timestamp_ms(_pick(entry, 'timestamp_ms'))
    if timestamp_ms is None:
        report.invalid_timestamp += 1
        return None

    duration_ms = _parse_duration(_pick(entry, 'duration_ms'))
    if duration_ms is None:
        report.invalid_duration += 1
        return None

    entity_key = _optional_str(_pick(entry, 'entity_key'))
    if entity_key is None:
        report.missing_key += 1
        return None

    return PlayEvent(
        timestamp_ms=timestamp_ms,
        duration_ms=duration_ms,
        entity_key=entity_key,
        entity_kind=_parse_kind(_pick(entry, 'entity_kind')),
        artist=_optional_str(_pick(entry, 'artist')),
        album=_optional_str(_pick(entry, 'album')),
        show=_optional_str(_pick(entry, 'show')),
        track=_optional_str(_pick(entry, 'track')),
        end_reason=_optional_str(_pick(entry, 'end_reason')),
        start_reason=_optional_str(_pick(entry, 'start_reason')),
        platform=_optional_str(_pick(entry, 'platform')),
        shuffle=as_bool(_pick(entry, 'shuffle')),
        source=_optional_str(_pick(entry, 'source')),
    )


def events_from_records(records: List[Any]) -> ParsedEvents:
    parsed = ParsedEvents()
    for entry in records:
        parsed.report.total += 1
        event = event_from_dict(entry, parsed.report)
        if event is None:
            continue
        parsed.events.append(event)
        parsed.report.accepted += 1

    if parsed.report.dropped:
        logger.info(
            "Dropped %d of %d events (timestamp=%d, duration=%d, key=%d, shape=%d)",
            parsed.report.dropped, parsed.report.total,
            parsed.report.invalid_timestamp, parsed.report.invalid_duration,
            parsed.report.missing_key, parsed.report.not_an_object,
        )
    return parsed


def parse_events_json(file_content: bytes) -> ParsedEvents:
    """
    Parse a JSON array of canonical play events.

    Args:
        file_content: Raw bytes of the JSON document

    Returns:
        ParsedEvents with the accepted events and a drop report

    Raises:
        ParseError: If the JSON is malformed or not an array
    """
    try:
        data = orjson.loads(file_content)
    except orjson.JSONDecodeError as e:
        raise ParseError(f"Invalid JSON: {e}")

    if isinstance(data, dict) and isinstance(data.get('events'), list):
        data = data['events']

    if not isinstance(data, list):
        raise ParseError("Expected JSON array of play events")

    return events_from_records(data)


def event_to_dict(event: PlayEvent) -> Dict[str, Any]:
    return {
        'timestampMs': event.timestamp_ms,
        'durationMs': event.duration_ms,
        'entityKey': event.entity_key,
        'entityKind': event.entity_kind.value,
        'artist': event.artist,
        'album': event.album,
        'show': event.show,
        'track': event.track,
        'endReason': event.end_reason,
        'startReason': event.start_reason,
        'platform': event.platform,
        'shuffle': event.shuffle,
        'source': event.source,
    }


def dedupe_key(event: PlayEvent) -> Tuple[int, int, str]:
    """Identity of an exact repeat: (timestamp, duration, entity key)."""
    return (event.timestamp_ms, event.duration_ms, event.entity_key)
