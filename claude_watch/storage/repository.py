"""
Repository pattern for aggregate persistence.

Stores daily aggregates by date-key upsert and caches the sessions of
closed days.
"""

import json
import sqlite3
from datetime import date, datetime, timezone
from typing import Iterable, List, Optional

from ..core.token_counter import TokenCounts
from .db import DEFAULT_DB_PATH, get_connection
from .models import DailyUsageAggregate, ModelBreakdown, SessionAggregate

_TOKEN_COLUMNS = "input_tokens, output_tokens, cache_creation_tokens, cache_read_tokens"


def _token_values(tokens: TokenCounts) -> tuple:
    return (
        tokens.input_tokens,
        tokens.output_tokens,
        tokens.cache_creation_tokens,
        tokens.cache_read_tokens,
    )


def _tokens_from_row(row: tuple) -> TokenCounts:
    return TokenCounts(
        input_tokens=row[0],
        output_tokens=row[1],
        cache_creation_tokens=row[2],
        cache_read_tokens=row[3],
    )


def initialize_schema(db_path: str = DEFAULT_DB_PATH) -> None:
    """Create the usage tables if they don't exist.

    ``daily_usage`` holds one row per date; ``model_usage`` rows belong to a
    date and are removed with it; ``session_usage`` caches closed days only.

    Args:
        db_path: Path to SQLite database file
    """
    conn = get_connection(db_path)
    try:
        conn.execute("""
            CREATE TABLE IF NOT EXISTS daily_usage (
                date TEXT PRIMARY KEY,
                input_tokens INTEGER NOT NULL,
                output_tokens INTEGER NOT NULL,
                cache_creation_tokens INTEGER NOT NULL,
                cache_read_tokens INTEGER NOT NULL,
                total_tokens INTEGER NOT NULL,
                total_cost REAL NOT NULL,
                last_updated TEXT NOT NULL
            )
        """)
        conn.execute("""
            CREATE TABLE IF NOT EXISTS model_usage (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                date TEXT NOT NULL REFERENCES daily_usage(date) ON DELETE CASCADE,
                model TEXT NOT NULL,
                input_tokens INTEGER NOT NULL,
                output_tokens INTEGER NOT NULL,
                cache_creation_tokens INTEGER NOT NULL,
                cache_read_tokens INTEGER NOT NULL,
                cost REAL NOT NULL
            )
        """)
        conn.execute("""
            CREATE TABLE IF NOT EXISTS session_usage (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                date TEXT NOT NULL,
                session_id TEXT NOT NULL,
                started_at TEXT NOT NULL,
                ended_at TEXT NOT NULL,
                input_tokens INTEGER NOT NULL,
                output_tokens INTEGER NOT NULL,
                cache_creation_tokens INTEGER NOT NULL,
                cache_read_tokens INTEGER NOT NULL,
                cost REAL NOT NULL,
                models_used TEXT NOT NULL,
                project_path TEXT
            )
        """)
        conn.execute("CREATE INDEX IF NOT EXISTS idx_model_usage_date ON model_usage(date)")
        conn.execute("CREATE INDEX IF NOT EXISTS idx_session_usage_date ON session_usage(date)")
        conn.commit()
    finally:
        conn.close()


def upsert_daily_usage(
    aggregates: Iterable[DailyUsageAggregate],
    db_path: str = DEFAULT_DB_PATH,
) -> int:
    """Merge daily aggregates into storage by date.

    An existing date has all of its fields and model breakdowns replaced;
    a new date is inserted. All dates are written in a single transaction.

    Args:
        aggregates: Daily aggregates from an ingestion pass
        db_path: Path to SQLite database file

    Returns:
        Number of dates written
    """
    aggregates = list(aggregates)
    if not aggregates:
        return 0

    now = datetime.now(timezone.utc).isoformat()
    conn = get_connection(db_path)
    try:
        conn.execute("BEGIN TRANSACTION")
        for aggregate in aggregates:
            conn.execute(f"""
                INSERT INTO daily_usage
                (date, {_TOKEN_COLUMNS}, total_tokens, total_cost, last_updated)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(date) DO UPDATE SET
                    input_tokens = excluded.input_tokens,
                    output_tokens = excluded.output_tokens,
                    cache_creation_tokens = excluded.cache_creation_tokens,
                    cache_read_tokens = excluded.cache_read_tokens,
                    total_tokens = excluded.total_tokens,
                    total_cost = excluded.total_cost,
                    last_updated = excluded.last_updated
            """, (
                aggregate.date,
                *_token_values(aggregate.tokens),
                aggregate.tokens.total_tokens,
                aggregate.total_cost,
                now,
            ))
            conn.execute("DELETE FROM model_usage WHERE date = ?", (aggregate.date,))
            for breakdown in aggregate.model_breakdowns:
                conn.execute(f"""
                    INSERT INTO model_usage (date, model, {_TOKEN_COLUMNS}, cost)
                    VALUES (?, ?, ?, ?, ?, ?, ?)
                """, (
                    aggregate.date,
                    breakdown.model,
                    *_token_values(breakdown.tokens),
                    breakdown.cost,
                ))
        conn.commit()
    except Exception:
        conn.rollback()
        raise
    finally:
        conn.close()
    return len(aggregates)


def fetch_daily_usage(
    since: Optional[str] = None,
    db_path: str = DEFAULT_DB_PATH,
) -> List[DailyUsageAggregate]:
    """Fetch stored daily aggregates with their model breakdowns.

    Args:
        since: Optional earliest date (``yyyy-mm-dd``) to include
        db_path: Path to SQLite database file

    Returns:
        Daily aggregates ordered by date
    """
    conn = get_connection(db_path)
    try:
        query = f"SELECT date, {_TOKEN_COLUMNS}, total_cost FROM daily_usage"
        params = []
        if since:
            query += " WHERE date >= ?"
            params.append(since)
        query += " ORDER BY date"

        aggregates = []
        for row in conn.execute(query, params).fetchall():
            breakdown_rows = conn.execute(f"""
                SELECT model, {_TOKEN_COLUMNS}, cost FROM model_usage
                WHERE date = ? ORDER BY model
            """, (row[0],)).fetchall()
            breakdowns = tuple(
                ModelBreakdown(model=b[0], tokens=_tokens_from_row(b[1:5]), cost=b[5])
                for b in breakdown_rows
            )
            aggregates.append(DailyUsageAggregate(
                date=row[0],
                tokens=_tokens_from_row(row[1:5]),
                total_cost=row[5],
                model_breakdowns=breakdowns,
            ))
        return aggregates
    finally:
        conn.close()


def cache_sessions(
    target_date: date,
    sessions: Iterable[SessionAggregate],
    today: date,
    db_path: str = DEFAULT_DB_PATH,
) -> bool:
    """Store the sessions of a closed date, replacing earlier rows.

    The current day is still accumulating usage, so only dates before
    ``today`` are cached.

    Args:
        target_date: Date the sessions belong to
        sessions: Session aggregates for that date
        today: Current calendar date
        db_path: Path to SQLite database file

    Returns:
        True if the sessions were stored
    """
    if target_date >= today:
        return False

    day_key = target_date.isoformat()
    conn = get_connection(db_path)
    try:
        conn.execute("BEGIN TRANSACTION")
        conn.execute("DELETE FROM session_usage WHERE date = ?", (day_key,))
        for session in sessions:
            conn.execute(f"""
                INSERT INTO session_usage
                (date, session_id, started_at, ended_at, {_TOKEN_COLUMNS}, cost, models_used, project_path)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """, (
                day_key,
                session.session_id,
                session.start.isoformat(),
                session.end.isoformat(),
                *_token_values(session.tokens),
                session.cost,
                json.dumps(list(session.models_used)),
                session.project_path,
            ))
        conn.commit()
    except Exception:
        conn.rollback()
        raise
    finally:
        conn.close()
    return True


def fetch_cached_sessions(
    target_date: date,
    db_path: str = DEFAULT_DB_PATH,
) -> Optional[List[SessionAggregate]]:
    """Fetch cached sessions for a date.

    Returns:
        Sessions ordered by cost (highest first), or None if the date was
        never cached
    """
    conn = get_connection(db_path)
    try:
        rows = conn.execute(f"""
            SELECT session_id, started_at, ended_at, {_TOKEN_COLUMNS}, cost, models_used, project_path
            FROM session_usage WHERE date = ?
            ORDER BY cost DESC, started_at, session_id
        """, (target_date.isoformat(),)).fetchall()
    except sqlite3.OperationalError as e:
        if "no such table" in str(e).lower():
            return None
        raise
    finally:
        conn.close()

    if not rows:
        return None
    return [
        SessionAggregate(
            session_id=row[0],
            start=datetime.fromisoformat(row[1]),
            end=datetime.fromisoformat(row[2]),
            tokens=_tokens_from_row(row[3:7]),
            cost=row[7],
            models_used=tuple(json.loads(row[8])),
            project_path=row[9],
        )
        for row in rows
    ]


class UsageRepository:
    """Repository bound to one database file.

    Thin wrapper so callers don't have to thread ``db_path`` through every
    call.
    """

    def __init__(self, db_path: str = DEFAULT_DB_PATH):
        self.db_path = str(db_path)

    def initialize(self) -> None:
        initialize_schema(self.db_path)

    def upsert_daily(self, aggregates: Iterable[DailyUsageAggregate]) -> int:
        return upsert_daily_usage(aggregates, self.db_path)

    def get_daily(self, since: Optional[str] = None) -> List[DailyUsageAggregate]:
        return fetch_daily_usage(since, self.db_path)

    def cache_sessions(self, target_date: date, sessions: Iterable[SessionAggregate], today: date) -> bool:
        return cache_sessions(target_date, sessions, today, self.db_path)

    def get_sessions(self, target_date: date) -> Optional[List[SessionAggregate]]:
        return fetch_cached_sessions(target_date, self.db_path)
