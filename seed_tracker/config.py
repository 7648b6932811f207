import os
from dataclasses import dataclass, fields, replace
from typing import Optional, Tuple

from dotenv import load_dotenv

from .filters import PlayerListMode, normalize_player_id


class ConfigError(ValueError):
    """Raised when a runtime configuration update is rejected."""


def _get_env_text(name: str, default: Optional[str] = None) -> Optional[str]:
    value = os.getenv(name)
    if value is None or value == "":
        return default
    return value


def _get_env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    try:
        return int(value) if value is not None else default
    except (TypeError, ValueError):
        return default


def _get_env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    lowered = value.strip().lower()
    if lowered in {"1", "true", "t", "yes", "y", "on"}:
        return True
    if lowered in {"0", "false", "f", "no", "n", "off"}:
        return False
    return default


def _get_env_list(name: str) -> Tuple[str, ...]:
    value = os.getenv(name) or ""
    entries = []
    for raw in value.split(","):
        entry = normalize_player_id(raw)
        if entry and entry not in entries:
            entries.append(entry)
    return tuple(entries)


def _get_env_mode(name: str, default: PlayerListMode) -> PlayerListMode:
    value = os.getenv(name)
    try:
        return PlayerListMode(value.strip().lower()) if value else default
    except ValueError:
        return default


# Settings an administrator may change while the tracker runs.
TUNABLE_SETTINGS = (
    "interval_minutes",
    "seed_start",
    "seed_end",
    "lookback_days",
    "purge_days",
    "player_list_limit",
    "leaderboard_size",
)

ALERT_SETTINGS = (
    "alerts_enabled",
    "alert_critical_threshold",
    "alert_low_threshold",
    "alert_cooldown_minutes",
)

INT_SETTINGS = (
    "interval_minutes",
    "seed_start",
    "seed_end",
    "lookback_days",
    "purge_days",
    "leaderboard_size",
    "player_list_limit",
    "alert_critical_threshold",
    "alert_low_threshold",
    "alert_cooldown_minutes",
    "request_timeout_seconds",
)

BOOL_SETTINGS = ("alerts_enabled", "dry_run")


@dataclass(frozen=True)
class Config:
    interval_minutes: int = 15
    seed_start: int = 5
    seed_end: int = 40
    lookback_days: int = 30
    purge_days: int = 45
    leaderboard_size: int = 10
    player_list: Tuple[str, ...] = ()
    player_list_mode: PlayerListMode = PlayerListMode.BLACKLIST
    player_list_limit: int = 10
    alerts_enabled: bool = True
    alert_critical_threshold: int = 2
    alert_low_threshold: int = 4
    alert_cooldown_minutes: int = 30
    leaderboard_webhook_url: Optional[str] = None
    leaderboard_message_id: Optional[str] = None
    alert_webhook_url: Optional[str] = None
    roster_url: Optional[str] = None
    database_path: str = "seed_tracker.db"
    dry_run: bool = True
    user_agent: str = "Mozilla/5.0"
    request_timeout_seconds: int = 30
    log_level: str = "INFO"

    @staticmethod
    def from_env() -> "Config":
        load_dotenv()

        seed_start = max(0, _get_env_int("SEED_START", 5))
        critical = max(0, _get_env_int("ALERT_CRITICAL_THRESHOLD", 2))
        limit = max(1, _get_env_int("PLAYER_LIST_LIMIT", 10))

        return Config(
            interval_minutes=max(1, _get_env_int("SEED_INTERVAL_MIN", 15)),
            seed_start=seed_start,
            seed_end=max(seed_start, _get_env_int("SEED_END", 40)),
            lookback_days=max(1, _get_env_int("LOOKBACK_DAYS", 30)),
            purge_days=max(1, _get_env_int("PURGE_DAYS", 45)),
            leaderboard_size=max(1, _get_env_int("LEADERBOARD_SIZE", 10)),
            # Only the first `limit` entries are honoured, like a list edited at runtime.
            player_list=_get_env_list("PLAYER_LIST")[:limit],
            player_list_mode=_get_env_mode("PLAYER_LIST_MODE", PlayerListMode.BLACKLIST),
            player_list_limit=limit,
            alerts_enabled=_get_env_bool("ALERTS_ENABLED", True),
            alert_critical_threshold=critical,
            alert_low_threshold=max(critical + 1, _get_env_int("ALERT_LOW_THRESHOLD", 4)),
            alert_cooldown_minutes=max(1, _get_env_int("ALERT_COOLDOWN_MIN", 30)),
            leaderboard_webhook_url=_get_env_text("LEADERBOARD_WEBHOOK_URL"),
            leaderboard_message_id=_get_env_text("LEADERBOARD_MESSAGE_ID"),
            alert_webhook_url=_get_env_text("ALERT_WEBHOOK_URL"),
            roster_url=_get_env_text("ROSTER_URL"),
            database_path=_get_env_text("DATABASE_PATH", "seed_tracker.db"),
            dry_run=_get_env_bool("DRY_RUN", True),
            user_agent=_get_env_text("USER_AGENT", "Mozilla/5.0"),
            request_timeout_seconds=_get_env_int("REQUEST_TIMEOUT_SECONDS", 30),
            log_level=(_get_env_text("LOG_LEVEL", "INFO") or "INFO").upper(),
        )

    def with_updates(self, **changes) -> "Config":
        """
        Return a new snapshot with `changes` applied.

        Raises ConfigError for unknown settings or values that would leave the
        snapshot inconsistent (e.g. seed_end below seed_start). The current
        snapshot is never modified.
        """
        known = {f.name for f in fields(self)}
        unknown = sorted(set(changes) - known)
        if unknown:
            raise ConfigError(f"Unknown setting(s): {', '.join(unknown)}")

        updated = replace(self, **changes)
        updated.validate()
        return updated

    def validate(self) -> None:
        for name in INT_SETTINGS:
            value = getattr(self, name)
            # bool is an int subclass; True must not pass as a count of minutes.
            if isinstance(value, bool) or not isinstance(value, int):
                raise ConfigError(f"{name} must be a whole number, got {value!r}")
        for name in BOOL_SETTINGS:
            value = getattr(self, name)
            if not isinstance(value, bool):
                raise ConfigError(f"{name} must be true or false, got {value!r}")
        if not isinstance(self.player_list_mode, PlayerListMode):
            raise ConfigError(f"player_list_mode must be a PlayerListMode, got {self.player_list_mode!r}")
        if self.interval_minutes < 1:
            raise ConfigError("interval_minutes must be at least 1")
        if self.seed_start < 0:
            raise ConfigError("seed_start cannot be negative")
        if self.seed_end < self.seed_start:
            raise ConfigError(
                f"seed_end ({self.seed_end}) must not be below seed_start ({self.seed_start})"
            )
        if self.lookback_days < 1:
            raise ConfigError("lookback_days must be at least 1")
        if self.purge_days < 1:
            raise ConfigError("purge_days must be at least 1")
        if self.leaderboard_size < 1:
            raise ConfigError("leaderboard_size must be at least 1")
        if self.player_list_limit < 1:
            raise ConfigError("player_list_limit must be at least 1")
        if len(self.player_list) > self.player_list_limit:
            raise ConfigError(
                f"player list holds {len(self.player_list)} entries, "
                f"more than the limit of {self.player_list_limit}"
            )
        if self.alert_critical_threshold < 0:
            raise ConfigError("alert_critical_threshold cannot be negative")
        if self.alert_critical_threshold >= self.alert_low_threshold:
            raise ConfigError("alert_critical_threshold must be below alert_low_threshold")
        if self.alert_cooldown_minutes < 1:
            raise ConfigError("alert_cooldown_minutes must be at least 1")
