"""
Unit tests for storage layer.

Tests schema creation, daily upserts and the closed-day session cache.
"""

import os
import tempfile
from datetime import date, datetime, timezone

import pytest

from claude_watch.core.token_counter import TokenCounts
from claude_watch.storage.db import get_connection
from claude_watch.storage.models import DailyUsageAggregate, ModelBreakdown, SessionAggregate
from claude_watch.storage.repository import (
    UsageRepository,
    cache_sessions,
    fetch_cached_sessions,
    fetch_daily_usage,
    initialize_schema,
    upsert_daily_usage,
)

UTC = timezone.utc


def _daily(day, input_tokens=100, cost=0.5, models=("claude-sonnet-4-20250514",)):
    per_model = TokenCounts(input_tokens=input_tokens)
    breakdowns = tuple(ModelBreakdown(model=m, tokens=per_model, cost=cost) for m in models)
    total = sum((b.tokens for b in breakdowns), TokenCounts())
    return DailyUsageAggregate(
        date=day,
        tokens=total,
        total_cost=cost * len(models),
        model_breakdowns=breakdowns,
    )


def _session(session_id, hour, cost):
    return SessionAggregate(
        session_id=session_id,
        start=datetime(2026, 1, 20, hour, tzinfo=UTC),
        end=datetime(2026, 1, 20, hour, 45, tzinfo=UTC),
        tokens=TokenCounts(10, 20, 30, 40),
        cost=cost,
        models_used=("claude-opus-4-5-20251101", "claude-sonnet-4-20250514"),
        project_path="/work/claude-watch",
    )


class TestStorageSchema:
    """Test database schema creation and structure."""

    def test_schema_creation(self):
        """Verify tables are created and creation is repeatable."""
        with tempfile.TemporaryDirectory() as temp_dir:
            db_path = os.path.join(temp_dir, "test.db")
            initialize_schema(db_path)
            initialize_schema(db_path)

            conn = get_connection(db_path)
            try:
                cursor = conn.execute("""
                    SELECT name FROM sqlite_master
                    WHERE type='table' AND name NOT LIKE 'sqlite_%'
                    ORDER BY name
                """)
                tables = [row[0] for row in cursor.fetchall()]
                assert tables == ["daily_usage", "model_usage", "session_usage"]
            finally:
                conn.close()

    def test_parent_directory_created(self):
        """Verify a missing parent directory is created on connect."""
        with tempfile.TemporaryDirectory() as temp_dir:
            db_path = os.path.join(temp_dir, "nested", "dir", "test.db")
            initialize_schema(db_path)
            assert os.path.exists(db_path)


class TestDailyUpsert:
    """Test date-keyed upserts of daily aggregates."""

    def test_insert_and_fetch(self):
        """Verify stored days come back with their breakdowns."""
        with tempfile.TemporaryDirectory() as temp_dir:
            db_path = os.path.join(temp_dir, "test.db")
            initialize_schema(db_path)

            day = _daily("2026-01-24", models=("claude-b", "claude-a"))
            assert upsert_daily_usage([day], db_path) == 1

            [stored] = fetch_daily_usage(db_path=db_path)
            assert stored.date == "2026-01-24"
            assert stored.tokens == day.tokens
            assert stored.total_cost == pytest.approx(day.total_cost)
            assert stored.models_used == ("claude-a", "claude-b")

    def test_upsert_replaces_existing_day(self):
        """Verify a second write replaces fields and breakdowns."""
        with tempfile.TemporaryDirectory() as temp_dir:
            db_path = os.path.join(temp_dir, "test.db")
            initialize_schema(db_path)

            upsert_daily_usage([_daily("2026-01-24", input_tokens=100, models=("claude-a", "claude-b"))], db_path)
            upsert_daily_usage([_daily("2026-01-24", input_tokens=999, cost=2.0, models=("claude-c",))], db_path)

            [stored] = fetch_daily_usage(db_path=db_path)
            assert stored.tokens.input_tokens == 999
            assert stored.total_cost == pytest.approx(2.0)
            assert stored.models_used == ("claude-c",)

    def test_other_days_untouched(self):
        """Verify an upsert only affects the dates it carries."""
        with tempfile.TemporaryDirectory() as temp_dir:
            db_path = os.path.join(temp_dir, "test.db")
            initialize_schema(db_path)

            upsert_daily_usage([_daily("2026-01-20"), _daily("2026-01-21")], db_path)
            upsert_daily_usage([_daily("2026-01-21", input_tokens=5)], db_path)

            stored = fetch_daily_usage(db_path=db_path)
            assert [d.date for d in stored] == ["2026-01-20", "2026-01-21"]
            assert stored[0].tokens.input_tokens == 100
            assert stored[1].tokens.input_tokens == 5

    def test_fetch_since(self):
        """Verify the since bound is inclusive."""
        with tempfile.TemporaryDirectory() as temp_dir:
            db_path = os.path.join(temp_dir, "test.db")
            initialize_schema(db_path)
            upsert_daily_usage([_daily("2026-01-20"), _daily("2026-01-22"), _daily("2026-01-24")], db_path)

            stored = fetch_daily_usage(since="2026-01-22", db_path=db_path)
            assert [d.date for d in stored] == ["2026-01-22", "2026-01-24"]

    def test_empty_upsert(self):
        """Verify writing nothing is a no-op."""
        with tempfile.TemporaryDirectory() as temp_dir:
            db_path = os.path.join(temp_dir, "test.db")
            initialize_schema(db_path)
            assert upsert_daily_usage([], db_path) == 0
            assert fetch_daily_usage(db_path=db_path) == []


class TestSessionCache:
    """Test caching of closed-day sessions."""

    def test_closed_day_cached_and_fetched(self):
        """Verify sessions of a past date round-trip in cost order."""
        with tempfile.TemporaryDirectory() as temp_dir:
            db_path = os.path.join(temp_dir, "test.db")
            initialize_schema(db_path)
            sessions = [_session("cheap", 9, 0.1), _session("pricey", 10, 3.0)]

            assert cache_sessions(date(2026, 1, 20), sessions, date(2026, 1, 24), db_path)

            cached = fetch_cached_sessions(date(2026, 1, 20), db_path)
            assert [s.session_id for s in cached] == ["pricey", "cheap"]
            assert cached[0] == sessions[1]

    def test_current_day_not_cached(self):
        """Verify today's still-changing sessions are not stored."""
        with tempfile.TemporaryDirectory() as temp_dir:
            db_path = os.path.join(temp_dir, "test.db")
            initialize_schema(db_path)

            stored = cache_sessions(date(2026, 1, 24), [_session("s", 9, 1.0)], date(2026, 1, 24), db_path)

            assert stored is False
            assert fetch_cached_sessions(date(2026, 1, 24), db_path) is None

    def test_recache_replaces_rows(self):
        """Verify caching a date again replaces its sessions."""
        with tempfile.TemporaryDirectory() as temp_dir:
            db_path = os.path.join(temp_dir, "test.db")
            initialize_schema(db_path)
            today = date(2026, 1, 24)

            cache_sessions(date(2026, 1, 20), [_session("a", 9, 1.0), _session("b", 10, 2.0)], today, db_path)
            cache_sessions(date(2026, 1, 20), [_session("c", 11, 0.5)], today, db_path)

            cached = fetch_cached_sessions(date(2026, 1, 20), db_path)
            assert [s.session_id for s in cached] == ["c"]

    def test_uncached_date_is_none(self):
        """Verify an unknown date or missing schema yields None."""
        with tempfile.TemporaryDirectory() as temp_dir:
            db_path = os.path.join(temp_dir, "test.db")
            assert fetch_cached_sessions(date(2026, 1, 20), db_path) is None

            initialize_schema(db_path)
            assert fetch_cached_sessions(date(2026, 1, 20), db_path) is None


class TestUsageRepository:
    """Test the path-bound repository wrapper."""

    def test_repository_round_trip(self):
        """Verify the wrapper forwards to the module functions."""
        with tempfile.TemporaryDirectory() as temp_dir:
            repo = UsageRepository(os.path.join(temp_dir, "test.db"))
            repo.initialize()

            assert repo.upsert_daily([_daily("2026-01-24")]) == 1
            assert [d.date for d in repo.get_daily()] == ["2026-01-24"]
            assert repo.cache_sessions(date(2026, 1, 20), [_session("s", 9, 1.0)], date(2026, 1, 21))
            assert len(repo.get_sessions(date(2026, 1, 20))) == 1
