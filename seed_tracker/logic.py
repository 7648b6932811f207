from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from datetime import date, datetime, timedelta
from typing import Iterable, Optional, Tuple

from .state import AlertState

logger = logging.getLogger(__name__)

TIER_CRITICAL = "critical"
TIER_LOW = "low"
ALERT_TIERS = (TIER_CRITICAL, TIER_LOW)


@dataclass(frozen=True)
class StreakRecord:
    player_id: str
    display_name: str
    current_streak: int
    longest_streak: int
    last_active_date: Optional[date]
    total_active_days: int


@dataclass
class Alert:
    tier: str
    player_count: int
    threshold: int
    fired_at: datetime


def is_seeding(player_count: int, seed_start: int, seed_end: int) -> bool:
    return seed_start <= player_count <= seed_end


def advance_streak(
    record: Optional[StreakRecord],
    player_id: str,
    display_name: str,
    today: date,
) -> Optional[StreakRecord]:
    """
    Apply one day of activity to a streak record.

    Returns the updated record, or None when the player was already counted
    today. A `today` earlier than the last active date (clock skew) resets the
    current streak instead of failing.
    """
    if record is None:
        return StreakRecord(
            player_id=player_id,
            display_name=display_name,
            current_streak=1,
            longest_streak=1,
            last_active_date=today,
            total_active_days=1,
        )

    if record.last_active_date is None:
        day_diff = None
    else:
        day_diff = (today - record.last_active_date).days

    if day_diff == 0:
        return None

    if day_diff is not None and day_diff < 0:
        logger.warning(
            "Activity for %s dated %s precedes last active date %s; resetting current streak",
            player_id,
            today,
            record.last_active_date,
        )
        return replace(
            record,
            display_name=display_name,
            current_streak=1,
            longest_streak=max(record.longest_streak, 1),
            last_active_date=today,
            total_active_days=max(record.total_active_days, 1),
        )

    if day_diff == 1:
        current = record.current_streak + 1
    else:
        current = 1

    return replace(
        record,
        display_name=display_name,
        current_streak=current,
        longest_streak=max(record.longest_streak, current),
        last_active_date=today,
        total_active_days=record.total_active_days + 1,
    )


def classify_alert_tier(player_count: int, critical_threshold: int, low_threshold: int) -> Optional[Tuple[str, int]]:
    if player_count <= critical_threshold:
        return TIER_CRITICAL, critical_threshold
    if player_count <= low_threshold:
        return TIER_LOW, low_threshold
    return None


def evaluate_alert(
    state: AlertState,
    player_count: int,
    *,
    critical_threshold: int,
    low_threshold: int,
    cooldown: timedelta,
    now: datetime,
) -> Optional[Alert]:
    """
    Classify the population and fire at most one alert for its tier.

    The tier's last-fired time is recorded as soon as the alert is produced,
    so a failed delivery still counts against the cooldown window.
    """
    classified = classify_alert_tier(player_count, critical_threshold, low_threshold)
    if classified is None:
        return None

    tier, threshold = classified
    if state.is_cooling_down(tier, now, cooldown):
        return None

    state.mark_fired(tier, now)
    return Alert(tier=tier, player_count=player_count, threshold=threshold, fired_at=now)


def leaderboard_fingerprint(totals: Iterable) -> Tuple[Tuple[str, int], ...]:
    return tuple((t.display_name, int(t.total_minutes)) for t in totals)
