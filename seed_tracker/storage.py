from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

import aiosqlite

from .logic import StreakRecord, is_seeding
from .state import Session

logger = logging.getLogger(__name__)

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS seeder_totals (
  player_id TEXT PRIMARY KEY,
  display_name TEXT NOT NULL,
  total_minutes INTEGER NOT NULL DEFAULT 0,
  last_seen TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS seeding_streaks (
  player_id TEXT PRIMARY KEY,
  display_name TEXT NOT NULL,
  current_streak INTEGER NOT NULL DEFAULT 0,
  longest_streak INTEGER NOT NULL DEFAULT 0,
  last_active_date TEXT,
  total_active_days INTEGER NOT NULL DEFAULT 0
);

CREATE TABLE IF NOT EXISTS seeding_analytics (
  date TEXT NOT NULL,
  hour INTEGER NOT NULL,
  player_count INTEGER NOT NULL,
  seeding_active INTEGER NOT NULL,
  eligible_count INTEGER NOT NULL,
  server_full INTEGER NOT NULL,
  UNIQUE (date, hour)
);

CREATE TABLE IF NOT EXISTS seeding_sessions (
  id INTEGER PRIMARY KEY AUTOINCREMENT,
  player_id TEXT NOT NULL,
  display_name TEXT NOT NULL,
  started_at TEXT NOT NULL,
  ended_at TEXT NOT NULL,
  minutes INTEGER NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_totals_last_seen ON seeder_totals (last_seen);
CREATE INDEX IF NOT EXISTS idx_streaks_last_active ON seeding_streaks (last_active_date);
CREATE INDEX IF NOT EXISTS idx_sessions_player ON seeding_sessions (player_id, ended_at);
"""


@dataclass
class PlayerTotal:
    player_id: str
    display_name: str
    total_minutes: int
    last_seen: datetime


@dataclass
class AnalyticsSample:
    date: date
    hour: int
    player_count: int
    seeding_active: bool
    eligible_count: int
    server_full: bool


def _ts(value: datetime) -> str:
    # Stored as UTC text so plain string comparison orders timestamps.
    return value.astimezone(timezone.utc).strftime("%Y-%m-%d %H:%M:%S")


def _parse_ts(value: str) -> datetime:
    return datetime.strptime(value, "%Y-%m-%d %H:%M:%S").replace(tzinfo=timezone.utc)


def _parse_date(value: Optional[str]) -> Optional[date]:
    if not value:
        return None
    return date.fromisoformat(value)


class SeedStore:
    """SQLite persistence for totals, streaks, hourly analytics and sessions."""

    def __init__(self, path: str) -> None:
        self.path = path
        self.db: Optional[aiosqlite.Connection] = None

    async def connect(self) -> None:
        self.db = await aiosqlite.connect(self.path)
        await self.db.executescript(SCHEMA_SQL)
        await self.db.commit()
        logger.info("Seed store ready at %s", self.path)

    async def close(self) -> None:
        if self.db is not None:
            await self.db.close()
            self.db = None

    @property
    def conn(self) -> aiosqlite.Connection:
        if self.db is None:
            raise RuntimeError("Seed store not connected")
        return self.db

    # ---- totals ----

    async def accumulate(self, player_id: str, display_name: str, minutes: int, now: datetime) -> None:
        if minutes < 0:
            raise ValueError("minutes must not be negative")
        await self.conn.execute(
            """
            INSERT INTO seeder_totals (player_id, display_name, total_minutes, last_seen)
            VALUES (?, ?, ?, ?)
            ON CONFLICT(player_id) DO UPDATE SET
              display_name=excluded.display_name,
              total_minutes=seeder_totals.total_minutes + excluded.total_minutes,
              last_seen=MAX(seeder_totals.last_seen, excluded.last_seen)
            """,
            (player_id, display_name, minutes, _ts(now)),
        )
        await self.conn.commit()

    async def get_total(self, player_id: str) -> Optional[PlayerTotal]:
        async with self.conn.execute(
            "SELECT player_id, display_name, total_minutes, last_seen FROM seeder_totals WHERE player_id=?",
            (player_id,),
        ) as cur:
            row = await cur.fetchone()
        if row is None:
            return None
        return PlayerTotal(row[0], row[1], row[2], _parse_ts(row[3]))

    async def top_totals(self, limit: int, lookback_days: int, now: datetime) -> List[PlayerTotal]:
        since = _ts(now - timedelta(days=lookback_days))
        async with self.conn.execute(
            """
            SELECT player_id, display_name, total_minutes, last_seen
            FROM seeder_totals
            WHERE last_seen >= ?
            ORDER BY total_minutes DESC, rowid ASC
            LIMIT ?
            """,
            (since, limit),
        ) as cur:
            rows = await cur.fetchall()
        return [PlayerTotal(r[0], r[1], r[2], _parse_ts(r[3])) for r in rows]

    async def count_totals(self) -> int:
        async with self.conn.execute("SELECT COUNT(*) FROM seeder_totals") as cur:
            row = await cur.fetchone()
        return row[0]

    async def purge_totals(self, older_than_days: int, now: datetime) -> int:
        # Strictly older than the cutoff; a row exactly on it survives.
        cutoff = _ts(now - timedelta(days=older_than_days))
        cur = await self.conn.execute("DELETE FROM seeder_totals WHERE last_seen < ?", (cutoff,))
        await self.conn.commit()
        return cur.rowcount

    async def reset_totals(self) -> int:
        cur = await self.conn.execute("DELETE FROM seeder_totals")
        await self.conn.commit()
        return cur.rowcount

    # ---- streaks ----

    async def get_streak(self, player_id: str) -> Optional[StreakRecord]:
        async with self.conn.execute(
            """
            SELECT player_id, display_name, current_streak, longest_streak, last_active_date, total_active_days
            FROM seeding_streaks WHERE player_id=?
            """,
            (player_id,),
        ) as cur:
            row = await cur.fetchone()
        if row is None:
            return None
        return StreakRecord(row[0], row[1], row[2], row[3], _parse_date(row[4]), row[5])

    async def save_streak(self, record: StreakRecord) -> None:
        await self.conn.execute(
            """
            INSERT INTO seeding_streaks
              (player_id, display_name, current_streak, longest_streak, last_active_date, total_active_days)
            VALUES (?, ?, ?, ?, ?, ?)
            ON CONFLICT(player_id) DO UPDATE SET
              display_name=excluded.display_name,
              current_streak=excluded.current_streak,
              longest_streak=excluded.longest_streak,
              last_active_date=excluded.last_active_date,
              total_active_days=excluded.total_active_days
            """,
            (
                record.player_id,
                record.display_name,
                record.current_streak,
                record.longest_streak,
                record.last_active_date.isoformat() if record.last_active_date else None,
                record.total_active_days,
            ),
        )
        await self.conn.commit()

    async def top_streaks(self, limit: int) -> List[StreakRecord]:
        async with self.conn.execute(
            """
            SELECT player_id, display_name, current_streak, longest_streak, last_active_date, total_active_days
            FROM seeding_streaks
            ORDER BY current_streak DESC, longest_streak DESC, total_active_days DESC, rowid ASC
            LIMIT ?
            """,
            (limit,),
        ) as cur:
            rows = await cur.fetchall()
        return [StreakRecord(r[0], r[1], r[2], r[3], _parse_date(r[4]), r[5]) for r in rows]

    async def purge_streaks(self, older_than_days: int, today: date) -> int:
        cutoff = (today - timedelta(days=older_than_days)).isoformat()
        cur = await self.conn.execute("DELETE FROM seeding_streaks WHERE last_active_date < ?", (cutoff,))
        await self.conn.commit()
        return cur.rowcount

    # ---- hourly analytics ----

    async def record_sample(
        self,
        day: date,
        hour: int,
        player_count: int,
        seed_start: int,
        seed_end: int,
        eligible_count: int,
    ) -> AnalyticsSample:
        """Write the (day, hour) snapshot, replacing any earlier sample for that hour."""
        if not 0 <= hour <= 23:
            raise ValueError(f"hour out of range: {hour}")
        sample = AnalyticsSample(
            date=day,
            hour=hour,
            player_count=player_count,
            seeding_active=is_seeding(player_count, seed_start, seed_end),
            eligible_count=eligible_count,
            server_full=player_count >= seed_end,
        )
        await self.conn.execute(
            """
            INSERT INTO seeding_analytics
              (date, hour, player_count, seeding_active, eligible_count, server_full)
            VALUES (?, ?, ?, ?, ?, ?)
            ON CONFLICT(date, hour) DO UPDATE SET
              player_count=excluded.player_count,
              seeding_active=excluded.seeding_active,
              eligible_count=excluded.eligible_count,
              server_full=excluded.server_full
            """,
            (
                sample.date.isoformat(),
                sample.hour,
                sample.player_count,
                int(sample.seeding_active),
                sample.eligible_count,
                int(sample.server_full),
            ),
        )
        await self.conn.commit()
        return sample

    async def samples_since(self, since: date) -> List[AnalyticsSample]:
        async with self.conn.execute(
            """
            SELECT date, hour, player_count, seeding_active, eligible_count, server_full
            FROM seeding_analytics
            WHERE date >= ?
            ORDER BY date ASC, hour ASC
            """,
            (since.isoformat(),),
        ) as cur:
            rows = await cur.fetchall()
        return [
            AnalyticsSample(
                date=date.fromisoformat(r[0]),
                hour=r[1],
                player_count=r[2],
                seeding_active=bool(r[3]),
                eligible_count=r[4],
                server_full=bool(r[5]),
            )
            for r in rows
        ]

    async def purge_samples(self, older_than_days: int, today: date) -> int:
        cutoff = (today - timedelta(days=older_than_days)).isoformat()
        cur = await self.conn.execute("DELETE FROM seeding_analytics WHERE date < ?", (cutoff,))
        await self.conn.commit()
        return cur.rowcount

    async def effective_seeders(self, limit: int, lookback_days: int, now: datetime) -> List[Dict[str, Any]]:
        """Rank recent seeders by distinct active days, then by minutes."""
        since = _ts(now - timedelta(days=lookback_days))
        async with self.conn.execute(
            """
            SELECT t.player_id, t.display_name, t.total_minutes,
                   COALESCE(s.total_active_days, 0), COALESCE(s.longest_streak, 0)
            FROM seeder_totals t
            LEFT JOIN seeding_streaks s ON s.player_id = t.player_id
            WHERE t.last_seen >= ?
            ORDER BY COALESCE(s.total_active_days, 0) DESC, t.total_minutes DESC, t.rowid ASC
            LIMIT ?
            """,
            (since, limit),
        ) as cur:
            rows = await cur.fetchall()
        seeders = []
        for player_id, name, minutes, active_days, longest in rows:
            seeders.append(
                {
                    "player_id": player_id,
                    "display_name": name,
                    "total_minutes": minutes,
                    "active_days": active_days,
                    "longest_streak": longest,
                    "minutes_per_active_day": round(minutes / active_days, 1) if active_days else float(minutes),
                }
            )
        return seeders

    # ---- sessions ----

    async def record_session(self, session: Session) -> None:
        await self.conn.execute(
            """
            INSERT INTO seeding_sessions (player_id, display_name, started_at, ended_at, minutes)
            VALUES (?, ?, ?, ?, ?)
            """,
            (session.player_id, session.display_name, _ts(session.started_at), _ts(session.last_tick), session.minutes),
        )
        await self.conn.commit()

    async def purge_sessions(self, older_than_days: int, now: datetime) -> int:
        cutoff = _ts(now - timedelta(days=older_than_days))
        cur = await self.conn.execute("DELETE FROM seeding_sessions WHERE ended_at < ?", (cutoff,))
        await self.conn.commit()
        return cur.rowcount

    async def session_stats(self, player_id: str) -> Dict[str, int]:
        async with self.conn.execute(
            "SELECT COUNT(*), COALESCE(MAX(minutes), 0) FROM seeding_sessions WHERE player_id=?",
            (player_id,),
        ) as cur:
            row = await cur.fetchone()
        return {"sessions": row[0], "longest_session_minutes": row[1]}

    async def purge(self, older_than_days: int, now: datetime) -> Dict[str, int]:
        """Apply the retention window to every aggregate relation."""
        today = now.date()
        return {
            "seeder_totals": await self.purge_totals(older_than_days, now),
            "seeding_streaks": await self.purge_streaks(older_than_days, today),
            "seeding_analytics": await self.purge_samples(older_than_days, today),
            "seeding_sessions": await self.purge_sessions(older_than_days, now),
        }
