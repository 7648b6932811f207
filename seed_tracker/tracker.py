from __future__ import annotations

import functools
import logging
from dataclasses import asdict, dataclass
from datetime import date, datetime, timedelta
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple

import aiosqlite
import httpx

from . import analytics
from .config import ALERT_SETTINGS, TUNABLE_SETTINGS, Config, ConfigError
from .filters import PlayerListMode, add_entry, normalize_player_id, remove_entry, should_track
from .leaderboard import LeaderboardSync
from .logic import ALERT_TIERS, TIER_CRITICAL, Alert, StreakRecord, advance_streak, evaluate_alert, is_seeding
from .notifier import DiscordNotifier
from .roster import player_from_mapping
from .scheduler import Scheduler
from .state import AlertState, SessionTracker, localnow
from .storage import SeedStore

logger = logging.getLogger(__name__)

NOT_INITIALIZED = "Seed tracker is not initialized."
RECOMMENDATION_WINDOW_DAYS = 14


@dataclass
class Result:
    success: bool
    message: str
    data: Any = None


def admin_operation(func: Callable[..., Awaitable[Result]]) -> Callable[..., Awaitable[Result]]:
    """Refuse calls before initialization and turn storage errors into failed results."""

    @functools.wraps(func)
    async def wrapper(self: "SeedTracker", *args, **kwargs) -> Result:
        if not self.initialized:
            return Result(False, NOT_INITIALIZED)
        try:
            return await func(self, *args, **kwargs)
        except aiosqlite.Error as e:
            logger.error("%s failed: %s", func.__name__, e)
            return Result(False, f"Database error: {e}")

    return wrapper


class SeedTracker:
    """
    Samples the roster each tick and keeps seeding totals, streaks, hourly
    analytics, alerts and the published leaderboard up to date.

    One instance is built by the host and handed to whatever needs it; it
    owns its alert cooldowns, open sessions and leaderboard snapshot.
    """

    def __init__(
        self,
        config: Config,
        store: SeedStore,
        notifier: DiscordNotifier,
        roster,
        *,
        now: Callable[[], datetime] = localnow,
    ) -> None:
        self._config = config
        self.store = store
        self.notifier = notifier
        self.roster = roster
        self.now = now
        self.scheduler: Optional[Scheduler] = None

        self.alert_state = AlertState()
        self.sessions = SessionTracker()
        self.leaderboard = LeaderboardSync(notifier, config.leaderboard_message_id)

        self.initialized = False
        self._tick_in_progress = False
        self.last_tick_at: Optional[datetime] = None
        self.last_player_count: Optional[int] = None
        self.last_purge: Optional[Dict[str, int]] = None

    @property
    def config(self) -> Config:
        return self._config

    async def initialize(self) -> bool:
        try:
            await self.store.connect()
        except (aiosqlite.Error, OSError) as e:
            logger.error("Seed tracker initialization failed: %s", e)
            await self.store.close()
            self.initialized = False
            return False
        self.initialized = True
        logger.info(
            "Seed tracker initialized (seeding band %s-%s, every %s min)",
            self._config.seed_start,
            self._config.seed_end,
            self._config.interval_minutes,
        )
        return True

    async def close(self) -> None:
        if self.scheduler is not None:
            self.scheduler.stop()
        if self.initialized:
            for session in self.sessions.close_all():
                await self._save_session(session)
        await self.store.close()
        self.initialized = False

    # ---- tick ----

    def select_eligible(self, players, cfg: Config) -> List[Tuple[str, str]]:
        """(player_id, display_name) of trackable players, in roster order, once per id."""
        eligible: List[Tuple[str, str]] = []
        seen = set()
        for entry in players or []:
            # Hosts may push plain {id, displayName} mappings instead of RosterPlayer.
            p = player_from_mapping(entry) if isinstance(entry, dict) else entry
            player_id = normalize_player_id(getattr(p, "id", None))
            name = str(getattr(p, "display_name", None) or "").strip()
            if not player_id or not name:
                logger.warning("Skipping roster entry without an id or name: %r", entry)
                continue
            if player_id in seen:
                continue
            seen.add(player_id)
            if should_track(player_id, cfg.player_list, cfg.player_list_mode):
                eligible.append((player_id, name))
        return eligible

    async def tick(self) -> bool:
        """Run one sampling pass. Returns False when the tick was skipped."""
        if not self.initialized:
            logger.warning("Tick skipped: %s", NOT_INITIALIZED)
            return False
        if self._tick_in_progress:
            logger.warning("Tick skipped: previous tick still running")
            return False

        self._tick_in_progress = True
        try:
            await self._tick(self._config, self.now())
        finally:
            self._tick_in_progress = False
        return True

    async def _tick(self, cfg: Config, now: datetime) -> None:
        players = self.roster.current_players()
        player_count = len(players) if players is not None else 0
        seeding = players is not None and is_seeding(player_count, cfg.seed_start, cfg.seed_end)

        trackable = self.select_eligible(players, cfg)
        eligible = trackable if seeding else []

        for player_id, name in eligible:
            await self._record_player(player_id, name, cfg, now)

        await self._guarded("sessions", self._update_sessions(eligible, cfg, now))
        await self._guarded(
            "analytics",
            self.store.record_sample(now.date(), now.hour, player_count, cfg.seed_start, cfg.seed_end, len(trackable)),
        )
        if players is not None and cfg.alerts_enabled:
            await self._guarded("alerts", self._check_alerts(player_count, cfg, now))
        await self._guarded("leaderboard", self.sync_leaderboard(cfg, now))

        self.last_tick_at = now
        self.last_player_count = player_count if players is not None else None
        logger.info(
            "Tick: %s players, seeding=%s, %s tracked",
            player_count if players is not None else "unknown",
            seeding,
            len(eligible),
        )

    async def _guarded(self, phase: str, job: Awaitable[Any]) -> None:
        try:
            await job
        except Exception:
            logger.exception("Tick phase %r failed", phase)

    async def _record_player(self, player_id: str, name: str, cfg: Config, now: datetime) -> None:
        try:
            await self.store.accumulate(player_id, name, cfg.interval_minutes, now)
        except aiosqlite.Error as e:
            logger.error("Error updating totals for %s (%s): %s", name, player_id, e)
        try:
            await self.record_activity(player_id, name, now.date())
        except aiosqlite.Error as e:
            logger.error("Error updating streak for %s (%s): %s", name, player_id, e)

    async def record_activity(self, player_id: str, name: str, today: date) -> Optional[StreakRecord]:
        record = await self.store.get_streak(player_id)
        updated = advance_streak(record, player_id, name, today)
        if updated is not None:
            await self.store.save_streak(updated)
        return updated

    async def _update_sessions(self, eligible: List[Tuple[str, str]], cfg: Config, now: datetime) -> None:
        for session in self.sessions.observe(eligible, now, cfg.interval_minutes):
            await self._save_session(session)

    async def _save_session(self, session) -> None:
        try:
            await self.store.record_session(session)
        except aiosqlite.Error as e:
            logger.warning("Dropping session for %s: %s", session.player_id, e)

    async def _check_alerts(self, player_count: int, cfg: Config, now: datetime) -> Optional[Alert]:
        alert = evaluate_alert(
            self.alert_state,
            player_count,
            critical_threshold=cfg.alert_critical_threshold,
            low_threshold=cfg.alert_low_threshold,
            cooldown=timedelta(minutes=cfg.alert_cooldown_minutes),
            now=now,
        )
        if alert is None:
            return None

        if alert.tier == TIER_CRITICAL:
            title = "🚨 Server population critical"
        else:
            title = "⚠️ Server population low"
        content = (
            f"Only {alert.player_count} player(s) online (alert at {alert.threshold} or fewer). "
            f"Seeding starts at {cfg.seed_start} players. Join now to help seed the server!"
        )
        try:
            await self.notifier.send(content, title=title)
            logger.info("Fired %s population alert at %s players", alert.tier, alert.player_count)
        except httpx.HTTPError as e:
            logger.error("Failed to deliver %s alert: %s", alert.tier, e)
        return alert

    async def sync_leaderboard(self, cfg: Config, now: datetime) -> bool:
        totals = await self.store.top_totals(cfg.leaderboard_size, cfg.lookback_days, now)
        return await self.leaderboard.sync(totals, cfg.lookback_days)

    async def purge(self) -> Dict[str, int]:
        if not self.initialized:
            logger.warning("Purge skipped: %s", NOT_INITIALIZED)
            return {}
        purge_days = self._config.purge_days
        removed = await self.store.purge(purge_days, self.now())
        self.last_purge = removed
        logger.info("Purged records older than %s days: %s", purge_days, removed)
        return removed

    # ---- administrative API ----

    def _apply(self, **changes) -> Config:
        self._config = self._config.with_updates(**changes)
        return self._config

    @admin_operation
    async def add_to_list(self, player_id: str) -> Result:
        cfg = self._config
        entries, message = add_entry(cfg.player_list, player_id, cfg.player_list_limit)
        if entries is None:
            return Result(False, message)
        self._apply(player_list=entries)
        return Result(True, message, list(entries))

    @admin_operation
    async def remove_from_list(self, player_id: str) -> Result:
        entries, message = remove_entry(self._config.player_list, player_id)
        if entries is None:
            return Result(False, message)
        self._apply(player_list=entries)
        return Result(True, message, list(entries))

    @admin_operation
    async def clear_list(self) -> Result:
        removed = len(self._config.player_list)
        self._apply(player_list=())
        return Result(True, f"Cleared {removed} entries from the player list.", [])

    @admin_operation
    async def list_entries(self) -> Result:
        cfg = self._config
        data = {
            "mode": cfg.player_list_mode.value,
            "entries": list(cfg.player_list),
            "limit": cfg.player_list_limit,
        }
        return Result(True, f"{len(cfg.player_list)}/{cfg.player_list_limit} entries ({cfg.player_list_mode.value}).", data)

    @admin_operation
    async def set_list_mode(self, mode: str) -> Result:
        try:
            parsed = PlayerListMode(str(mode).strip().lower())
        except ValueError:
            return Result(False, f"Unknown player list mode: {mode!r}. Use 'blacklist' or 'whitelist'.")
        self._apply(player_list_mode=parsed)
        return Result(True, f"Player list mode set to {parsed.value}.", parsed.value)

    @admin_operation
    async def get_top_streaks(self, limit: int = 10) -> Result:
        if limit < 1 or limit > 100:
            return Result(False, "limit must be between 1 and 100")
        records = await self.store.top_streaks(limit)
        data = []
        for r in records:
            row = asdict(r)
            row["last_active_date"] = r.last_active_date.isoformat() if r.last_active_date else None
            data.append(row)
        return Result(True, f"Top {len(data)} seeding streaks.", data)

    @admin_operation
    async def get_analytics(self, days: int = 7) -> Result:
        if days < 1 or days > 365:
            return Result(False, "days must be between 1 and 365")
        today = self.now().date()
        samples = await self.store.samples_since(today - timedelta(days=days - 1))
        summary = analytics.summarize(samples, days)
        summary["effective_seeders"] = await self.store.effective_seeders(
            10, self._config.lookback_days, self.now()
        )
        return Result(True, f"Seeding analytics for the last {days} day(s).", summary)

    @admin_operation
    async def get_smart_recommendations(self) -> Result:
        cfg = self._config
        now = self.now()
        samples = await self.store.samples_since(now.date() - timedelta(days=RECOMMENDATION_WINDOW_DAYS - 1))
        seeders = await self.store.effective_seeders(5, cfg.lookback_days, now)
        recommendations = analytics.build_recommendations(samples, seeders, seed_start=cfg.seed_start)
        return Result(True, f"{len(recommendations)} recommendation(s).", recommendations)

    @admin_operation
    async def get_alert_status(self) -> Result:
        cfg = self._config
        now = self.now()
        cooldown = timedelta(minutes=cfg.alert_cooldown_minutes)
        tiers = {}
        for tier in ALERT_TIERS:
            fired = self.alert_state.last_fired(tier)
            tiers[tier] = {
                "last_fired": fired.isoformat() if fired else None,
                "cooldown_remaining_seconds": int(self.alert_state.cooldown_remaining(tier, now, cooldown).total_seconds()),
            }
        data = {
            "enabled": cfg.alerts_enabled,
            "critical_threshold": cfg.alert_critical_threshold,
            "low_threshold": cfg.alert_low_threshold,
            "cooldown_minutes": cfg.alert_cooldown_minutes,
            "tiers": tiers,
        }
        return Result(True, "Alerts enabled." if cfg.alerts_enabled else "Alerts disabled.", data)

    @admin_operation
    async def update_alert_config(self, **changes) -> Result:
        return self._update_settings(changes, ALERT_SETTINGS)

    @admin_operation
    async def update_config(self, **changes) -> Result:
        previous = self._config
        result = self._update_settings(changes, TUNABLE_SETTINGS)
        if not result.success:
            return result

        cfg = self._config
        if (cfg.lookback_days, cfg.leaderboard_size) != (previous.lookback_days, previous.leaderboard_size):
            self.leaderboard.reset()
        if cfg.interval_minutes != previous.interval_minutes and self.scheduler is not None and self.scheduler.running:
            self.scheduler.start(cfg.interval_minutes)
        return result

    def _update_settings(self, changes: Dict[str, Any], allowed: Tuple[str, ...]) -> Result:
        if not changes:
            return Result(False, "No settings given.")
        unknown = sorted(set(changes) - set(allowed))
        if unknown:
            return Result(False, f"Setting(s) cannot be changed here: {', '.join(unknown)}")
        try:
            cfg = self._apply(**changes)
        except (ConfigError, TypeError) as e:
            return Result(False, f"Invalid setting: {e}")
        applied = ", ".join(f"{k}={getattr(cfg, k)}" for k in sorted(changes))
        logger.info("Configuration updated: %s", applied)
        return Result(True, f"Updated {applied}.", {k: getattr(cfg, k) for k in allowed})

    @admin_operation
    async def get_leaderboard(self) -> Result:
        cfg = self._config
        totals = await self.store.top_totals(cfg.leaderboard_size, cfg.lookback_days, self.now())
        if not totals:
            return Result(True, f"No seeding data found for the last {cfg.lookback_days} days.", [])
        data = [
            {"rank": idx, "player_id": t.player_id, "display_name": t.display_name, "total_minutes": t.total_minutes}
            for idx, t in enumerate(totals, start=1)
        ]
        return Result(True, f"Top {len(data)} seeders (last {cfg.lookback_days} days).", data)

    @admin_operation
    async def get_player_stats(self, player_id: str) -> Result:
        normalized = normalize_player_id(player_id)
        if not normalized:
            return Result(False, "A player ID is required.")
        total = await self.store.get_total(normalized)
        streak = await self.store.get_streak(normalized)
        if total is None and streak is None:
            return Result(False, f"No seeding data for `{normalized}`.")
        data: Dict[str, Any] = {"player_id": normalized}
        if total is not None:
            data.update(
                display_name=total.display_name,
                total_minutes=total.total_minutes,
                last_seen=total.last_seen.isoformat(),
            )
        if streak is not None:
            data.setdefault("display_name", streak.display_name)
            data.update(
                current_streak=streak.current_streak,
                longest_streak=streak.longest_streak,
                total_active_days=streak.total_active_days,
            )
        data.update(await self.store.session_stats(normalized))
        return Result(True, f"Seeding stats for {data['display_name']}.", data)

    @admin_operation
    async def get_status(self) -> Result:
        cfg = self._config
        data = {
            "running": self.scheduler is not None and self.scheduler.running,
            "interval_minutes": cfg.interval_minutes,
            "seed_start": cfg.seed_start,
            "seed_end": cfg.seed_end,
            "lookback_days": cfg.lookback_days,
            "purge_days": cfg.purge_days,
            "player_list_mode": cfg.player_list_mode.value,
            "player_list_size": len(cfg.player_list),
            "player_list_limit": cfg.player_list_limit,
            "tracked_players": await self.store.count_totals(),
            "open_sessions": self.sessions.size(),
            "last_tick_at": self.last_tick_at.isoformat() if self.last_tick_at else None,
            "last_player_count": self.last_player_count,
            "leaderboard_message_id": self.leaderboard.message_id,
            "leaderboard_published_at": (
                self.leaderboard.last_published_at.isoformat() if self.leaderboard.last_published_at else None
            ),
            "last_purge": self.last_purge,
        }
        return Result(True, "Seed tracker is running." if data["running"] else "Seed tracker is idle.", data)

    @admin_operation
    async def reset_all_totals(self) -> Result:
        removed = await self.store.reset_totals()
        self.leaderboard.reset()
        logger.info("Seeder totals reset (%s rows removed)", removed)
        return Result(True, f"Seed leaderboard reset ({removed} player totals cleared).", removed)

    @admin_operation
    async def run_tick(self) -> Result:
        ran = await self.tick()
        if not ran:
            return Result(False, "A tick is already running.")
        return Result(True, "Tick completed.", self.last_player_count)

    @admin_operation
    async def run_purge(self) -> Result:
        removed = await self.purge()
        return Result(True, f"Purged {sum(removed.values())} stale record(s).", removed)
