"""
Ingestion pass orchestration.

Scans the log root, parses every file, and folds the events into the daily,
hourly and session aggregates together with the pricing snapshot used.
"""

import asyncio
import logging
from datetime import date, datetime, timedelta, tzinfo
from pathlib import Path
from typing import Callable, List, Optional

from ..core.aggregator import (
    SESSION_GAP,
    aggregate_daily,
    aggregate_hourly,
    aggregate_sessions,
    day_bounds,
    filter_time_range,
)
from ..core.pricing_resolver import PricingResolver
from ..storage.models import IngestionResult, UsageEvent
from .parser import parse_file
from .scanner import LogScanner

logger = logging.getLogger(__name__)

# Number of days, today included, covered by a default pass
ROLLING_FETCH_DAYS = 7


class IngestionPipeline:
    """Runs complete ingestion passes, one at a time.

    A pass either completes and returns a full IngestionResult or returns
    nothing; partial aggregates are never handed out.
    """

    def __init__(
        self,
        scanner: LogScanner,
        resolver: PricingResolver,
        session_gap: timedelta = SESSION_GAP,
        rolling_fetch_days: int = ROLLING_FETCH_DAYS,
        tz: Optional[tzinfo] = None,
        clock: Callable[[], datetime] = datetime.now,
    ):
        """Initialize the pipeline.

        Args:
            scanner: Source of log file paths
            resolver: Pricing table owner
            session_gap: Inactivity that splits a session into two windows
            rolling_fetch_days: Days covered when no range is given
            tz: Timezone for calendar dates and hours, None for system local
            clock: Returns the current time (naive values are local)
        """
        self.scanner = scanner
        self.resolver = resolver
        self.session_gap = session_gap
        self.rolling_fetch_days = rolling_fetch_days
        self.tz = tz
        self._clock = clock
        self._running = False

    @property
    def is_running(self) -> bool:
        return self._running

    def _today(self) -> date:
        now = self._clock()
        if now.tzinfo is not None:
            now = now.astimezone(self.tz)
        return now.date()

    async def load_events(self) -> List[UsageEvent]:
        """Parse every log file, reading files concurrently.

        Returns:
            All parsed events ordered by timestamp
        """
        return await self._parse_files(self.scanner.scan())

    async def _parse_files(self, files: List[Path]) -> List[UsageEvent]:
        per_file = await asyncio.gather(
            *(asyncio.to_thread(parse_file, path) for path in files)
        )
        events = [event for file_events in per_file for event in file_events]
        # Stable sort keeps file and line order for equal timestamps
        events.sort(key=lambda e: e.timestamp)
        logger.debug("Parsed %d usage events from %d files", len(events), len(files))
        return events

    async def run(
        self,
        target_date: Optional[date] = None,
        since: Optional[datetime] = None,
        until: Optional[datetime] = None,
    ) -> Optional[IngestionResult]:
        """Run one ingestion pass.

        A call made while another pass is in flight returns None at once.

        Args:
            target_date: Date for the hourly and session views, default today
            since: Inclusive lower bound; defaults to the start of the rolling
                window, extended back to the target date if needed
            until: Exclusive upper bound, None for no bound

        Returns:
            IngestionResult, or None if a pass was already running
        """
        if self._running:
            logger.debug("Ingestion pass already running, ignoring trigger")
            return None

        self._running = True
        try:
            return await self._run(target_date, since, until)
        finally:
            self._running = False

    async def _run(
        self,
        target_date: Optional[date],
        since: Optional[datetime],
        until: Optional[datetime],
    ) -> IngestionResult:
        today = self._today()
        if target_date is None:
            target_date = today
        if since is None:
            rolling_start, _ = day_bounds(today - timedelta(days=self.rolling_fetch_days - 1), self.tz)
            target_start, _ = day_bounds(target_date, self.tz)
            since = min(rolling_start, target_start)

        rates = await self.resolver.get_rates()
        files = self.scanner.scan()
        events = filter_time_range(await self._parse_files(files), since, until)

        daily = aggregate_daily(events, rates, self.tz)
        hourly = aggregate_hourly(events, target_date, self.tz)
        sessions = aggregate_sessions(events, target_date, rates, self.tz, self.session_gap)

        logger.info(
            "Ingestion pass complete: %d events, %d days, %d sessions on %s",
            len(events), len(daily), len(sessions), target_date.isoformat(),
        )
        return IngestionResult(
            target_date=target_date,
            daily=tuple(daily),
            hourly=tuple(hourly),
            sessions=tuple(sessions),
            pricing=dict(rates),
            files_scanned=len(files),
            events_parsed=len(events),
        )
