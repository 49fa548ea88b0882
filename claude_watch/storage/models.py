"""
Data models for usage events and aggregates.

Defines the parsed log record and the read-only results of an aggregation pass.
"""

from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Dict, Optional, Tuple

from ..core.pricing import ModelPricing
from ..core.token_counter import TokenCounts

UNKNOWN_MODEL = "unknown"
UNKNOWN_SESSION = "unknown"
UNKNOWN_PROJECT = "Unknown Project"


@dataclass(frozen=True)
class UsageEvent:
    """Immutable record of one API call's token consumption.

    Produced from a single log line and discarded after aggregation.
    """
    timestamp: datetime
    model: str
    tokens: TokenCounts
    session_id: Optional[str] = None
    project_path: Optional[str] = None


@dataclass(frozen=True)
class ModelBreakdown:
    """Tokens and cost attributed to one model within a day."""
    model: str
    tokens: TokenCounts
    cost: float


@dataclass(frozen=True)
class DailyUsageAggregate:
    """Usage totals for one calendar date.

    ``total_cost`` is the sum of the breakdown costs and ``tokens`` the sum of
    the breakdown tokens, category by category.
    """
    date: str
    tokens: TokenCounts
    total_cost: float
    model_breakdowns: Tuple[ModelBreakdown, ...] = ()

    @property
    def models_used(self) -> Tuple[str, ...]:
        return tuple(breakdown.model for breakdown in self.model_breakdowns)


@dataclass(frozen=True)
class HourlyAggregate:
    """Token totals for one hour (0-23) of a single date."""
    hour: int
    tokens: TokenCounts

    def __post_init__(self):
        if not 0 <= self.hour <= 23:
            raise ValueError("hour must be between 0 and 23")


@dataclass(frozen=True)
class SessionAggregate:
    """Totals for one usage window of a session identifier."""
    session_id: str
    start: datetime
    end: datetime
    tokens: TokenCounts
    cost: float
    models_used: Tuple[str, ...] = ()
    project_path: Optional[str] = None

    def __post_init__(self):
        """Validate time window is logical."""
        if self.start > self.end:
            raise ValueError("start must not be after end")

    @property
    def display_name(self) -> str:
        """Last segment of the project path, or a placeholder when unknown."""
        if not self.project_path:
            return UNKNOWN_PROJECT
        name = self.project_path.rstrip("/\\").replace("\\", "/").rsplit("/", 1)[-1]
        return name or UNKNOWN_PROJECT


@dataclass(frozen=True)
class IngestionResult:
    """Everything produced by one complete ingestion pass."""
    target_date: date
    daily: Tuple[DailyUsageAggregate, ...]
    hourly: Tuple[HourlyAggregate, ...]
    sessions: Tuple[SessionAggregate, ...]
    pricing: Dict[str, ModelPricing] = field(default_factory=dict)
    files_scanned: int = 0
    events_parsed: int = 0
