"""
Tolerant decoding of usage log lines.

The log is written by an external, evolving tool and may contain partial
lines from an interrupted write. Every line is decoded independently and
anything that is not a well-formed usage record is dropped.
"""

import json
import logging
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Iterable, Iterator, List, Optional

from ..core.token_counter import TokenCounts
from ..storage.models import UNKNOWN_MODEL, UsageEvent

logger = logging.getLogger(__name__)

USAGE_RECORD_TYPE = "assistant"

# Instants that can still be shifted into any local timezone
_EARLIEST = datetime.min.replace(tzinfo=timezone.utc) + timedelta(days=1)
_LATEST = datetime.max.replace(tzinfo=timezone.utc) - timedelta(days=1)


def parse_timestamp(value: Any) -> Optional[datetime]:
    """Parse an ISO-8601 timestamp into an aware UTC datetime.

    Accepts fractional seconds and a trailing ``Z``. Naive values are taken
    to be UTC. Returns None when the value cannot be parsed.
    """
    if not isinstance(value, str) or not value:
        return None
    text = value.strip()
    if text.endswith(("Z", "z")):
        text = text[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(text)
        if parsed.tzinfo is None:
            parsed = parsed.replace(tzinfo=timezone.utc)
        parsed = parsed.astimezone(timezone.utc)
    except (ValueError, OverflowError):
        # Offsets at the edges of the datetime range do not convert to UTC
        return None
    if not _EARLIEST <= parsed <= _LATEST:
        return None
    return parsed


def _count(usage: dict, key: str) -> int:
    value = usage.get(key)
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        return 0
    return value


def _optional_str(value: Any) -> Optional[str]:
    if isinstance(value, str) and value:
        return value
    return None


def parse_line(line: str) -> Optional[UsageEvent]:
    """Decode one log line into a usage event.

    Args:
        line: Raw line, with or without its trailing newline

    Returns:
        UsageEvent, or None if the line is not a usage record
    """
    line = line.strip()
    if not line:
        return None
    try:
        record = json.loads(line)
    except (ValueError, RecursionError):
        return None
    if not isinstance(record, dict):
        return None

    record_type = record.get("type")
    if record_type is not None and record_type != USAGE_RECORD_TYPE:
        return None

    message = record.get("message")
    if not isinstance(message, dict):
        return None
    usage = message.get("usage")
    if not isinstance(usage, dict):
        return None

    timestamp = parse_timestamp(record.get("timestamp"))
    if timestamp is None:
        return None

    tokens = TokenCounts(
        input_tokens=_count(usage, "input_tokens"),
        output_tokens=_count(usage, "output_tokens"),
        cache_creation_tokens=_count(usage, "cache_creation_input_tokens"),
        cache_read_tokens=_count(usage, "cache_read_input_tokens"),
    )
    return UsageEvent(
        timestamp=timestamp,
        model=_optional_str(message.get("model")) or UNKNOWN_MODEL,
        tokens=tokens,
        session_id=_optional_str(record.get("sessionId")),
        project_path=_optional_str(record.get("cwd")),
    )


def parse_lines(lines: Iterable[str]) -> Iterator[UsageEvent]:
    """Yield the usage events found in a sequence of lines."""
    skipped = 0
    for line in lines:
        event = parse_line(line)
        if event is None:
            skipped += 1
            continue
        yield event
    if skipped:
        logger.debug("Skipped %d lines without usage data", skipped)


def parse_file(path: Path) -> List[UsageEvent]:
    """Read all usage events from one log file.

    An unreadable file contributes no events; the rest of the scan continues.
    Undecodable bytes only spoil the line they are on.
    """
    try:
        with open(path, "r", encoding="utf-8", errors="replace") as f:
            return list(parse_lines(f))
    except OSError as e:
        logger.warning("Skipping unreadable log file %s: %s", path, e)
        return []
