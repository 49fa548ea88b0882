"""
Usage aggregation by day, hour and session.

Stateless folds over an already parsed event stream. Calendar dates and hours
are taken in the supplied timezone, which defaults to the system local one.
"""

from collections import defaultdict
from datetime import date, datetime, time, timedelta, tzinfo
from typing import Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from .pricing import ModelPricing, calculate_cost, resolve_model_pricing
from .token_counter import TokenCounts
from ..storage.models import (
    UNKNOWN_SESSION,
    DailyUsageAggregate,
    HourlyAggregate,
    ModelBreakdown,
    SessionAggregate,
    UsageEvent,
)

# Inactivity longer than this on one session identifier starts a new window
SESSION_GAP = timedelta(hours=5)
HOURS_PER_DAY = 24


def _local(timestamp: datetime, tz: Optional[tzinfo]) -> datetime:
    # astimezone(None) converts to the system local timezone
    return timestamp.astimezone(tz)


def _midnight(day: date, tz: Optional[tzinfo]) -> datetime:
    midnight = datetime.combine(day, time.min)
    return midnight.replace(tzinfo=tz) if tz is not None else midnight.astimezone()


def day_bounds(target_date: date, tz: Optional[tzinfo] = None) -> Tuple[datetime, datetime]:
    """Return the half-open ``[start, end)`` instants of a calendar date.

    Both ends are local midnights, so a DST transition day spans 23 or 25 hours.
    """
    return _midnight(target_date, tz), _midnight(target_date + timedelta(days=1), tz)


def filter_time_range(
    events: Iterable[UsageEvent],
    since: Optional[datetime] = None,
    until: Optional[datetime] = None,
) -> List[UsageEvent]:
    """Keep events with ``since <= timestamp < until``; None leaves a side open."""
    kept = []
    for event in events:
        if since is not None and event.timestamp < since:
            continue
        if until is not None and event.timestamp >= until:
            continue
        kept.append(event)
    return kept


def aggregate_daily(
    events: Iterable[UsageEvent],
    rates: Mapping[str, ModelPricing],
    tz: Optional[tzinfo] = None,
) -> List[DailyUsageAggregate]:
    """Sum tokens and cost per calendar date, broken down by model.

    Pricing is resolved once per distinct model. Dates without events are
    not emitted.

    Args:
        events: Parsed usage events
        rates: Pricing snapshot used to cost each model
        tz: Timezone defining calendar dates

    Returns:
        Daily aggregates ordered by date, breakdowns ordered by model
    """
    by_date: Dict[str, Dict[str, TokenCounts]] = defaultdict(dict)
    for event in events:
        day_key = _local(event.timestamp, tz).date().isoformat()
        models = by_date[day_key]
        models[event.model] = models.get(event.model, TokenCounts()) + event.tokens

    distinct_models = {model for models in by_date.values() for model in models}
    resolved = {model: resolve_model_pricing(model, rates) for model in distinct_models}

    aggregates = []
    for day_key in sorted(by_date):
        breakdowns = tuple(
            ModelBreakdown(
                model=model,
                tokens=tokens,
                cost=calculate_cost(tokens, resolved[model]),
            )
            for model, tokens in sorted(by_date[day_key].items())
        )
        total_tokens = sum((b.tokens for b in breakdowns), TokenCounts())
        aggregates.append(DailyUsageAggregate(
            date=day_key,
            tokens=total_tokens,
            total_cost=sum(b.cost for b in breakdowns),
            model_breakdowns=breakdowns,
        ))
    return aggregates


def aggregate_hourly(
    events: Iterable[UsageEvent],
    target_date: date,
    tz: Optional[tzinfo] = None,
) -> List[HourlyAggregate]:
    """Bucket one date's tokens by hour of day.

    Always returns 24 entries, hours 0 to 23, with zeroes for idle hours.
    """
    buckets = [TokenCounts() for _ in range(HOURS_PER_DAY)]
    for event in events:
        local = _local(event.timestamp, tz)
        if local.date() != target_date:
            continue
        buckets[local.hour] = buckets[local.hour] + event.tokens
    return [HourlyAggregate(hour=hour, tokens=tokens) for hour, tokens in enumerate(buckets)]


def split_windows(events: Sequence[UsageEvent], gap: timedelta = SESSION_GAP) -> List[List[UsageEvent]]:
    """Split time-ordered events wherever consecutive events are more than ``gap`` apart."""
    windows: List[List[UsageEvent]] = []
    for event in events:
        if windows and event.timestamp - windows[-1][-1].timestamp <= gap:
            windows[-1].append(event)
        else:
            windows.append([event])
    return windows


def _summarize_window(
    session_id: str,
    window: Sequence[UsageEvent],
    rates: Mapping[str, ModelPricing],
) -> SessionAggregate:
    models: List[str] = []
    project_path = None
    tokens = TokenCounts()
    for event in window:
        tokens = tokens + event.tokens
        if event.model not in models:
            models.append(event.model)
        if project_path is None and event.project_path:
            project_path = event.project_path

    # Whole window is priced at the first model's rates
    cost = calculate_cost(tokens, resolve_model_pricing(models[0], rates))
    return SessionAggregate(
        session_id=session_id,
        start=window[0].timestamp,
        end=window[-1].timestamp,
        tokens=tokens,
        cost=cost,
        models_used=tuple(models),
        project_path=project_path,
    )


def aggregate_sessions(
    events: Iterable[UsageEvent],
    target_date: date,
    rates: Mapping[str, ModelPricing],
    tz: Optional[tzinfo] = None,
    gap: timedelta = SESSION_GAP,
) -> List[SessionAggregate]:
    """Reconstruct usage sessions active on one calendar date.

    Events inside the date are grouped by session identifier, ordered by
    time, and split into separate windows at gaps longer than ``gap``.
    Each window is costed with the rates of the first model it used.

    Args:
        events: Parsed usage events
        target_date: Date whose ``[start, start + 1 day)`` range is considered
        rates: Pricing snapshot
        tz: Timezone defining the date boundaries
        gap: Maximum inactivity inside one window

    Returns:
        Session aggregates ordered by cost, most expensive first
    """
    start, end = day_bounds(target_date, tz)
    groups: Dict[str, List[UsageEvent]] = defaultdict(list)
    for event in filter_time_range(events, start, end):
        groups[event.session_id or UNKNOWN_SESSION].append(event)

    sessions = []
    for session_id, group in groups.items():
        group.sort(key=lambda e: e.timestamp)
        for window in split_windows(group, gap):
            sessions.append(_summarize_window(session_id, window, rates))

    sessions.sort(key=lambda s: (-s.cost, s.start, s.session_id))
    return sessions
