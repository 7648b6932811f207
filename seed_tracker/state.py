from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Dict, Iterable, List, Optional, Tuple


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def localnow() -> datetime:
    return datetime.now().astimezone()


class AlertState:
    """Last-fired time per alert tier. Lives only as long as the engine."""

    def __init__(self) -> None:
        self.tier_to_last_fired: Dict[str, datetime] = {}

    def last_fired(self, tier: str) -> Optional[datetime]:
        return self.tier_to_last_fired.get(tier)

    def is_cooling_down(self, tier: str, now: datetime, cooldown: timedelta) -> bool:
        fired = self.tier_to_last_fired.get(tier)
        if fired is None:
            return False
        return now - fired < cooldown

    def mark_fired(self, tier: str, now: datetime) -> None:
        self.tier_to_last_fired[tier] = now

    def cooldown_remaining(self, tier: str, now: datetime, cooldown: timedelta) -> timedelta:
        fired = self.tier_to_last_fired.get(tier)
        if fired is None:
            return timedelta(0)
        return max(cooldown - (now - fired), timedelta(0))


@dataclass
class Session:
    player_id: str
    display_name: str
    started_at: datetime
    last_tick: datetime
    minutes: int


class SessionTracker:
    """
    Groups consecutive eligible ticks into seeding sessions.

    Sessions are held in memory only; a session closes when its player is
    missing from a tick's eligible set. Closed sessions are handed back to the
    caller for best-effort persistence.
    """

    def __init__(self) -> None:
        self.player_id_to_session: Dict[str, Session] = {}

    def observe(self, eligible: Iterable[Tuple[str, str]], now: datetime, minutes: int) -> List[Session]:
        seen = set()
        for player_id, display_name in eligible:
            seen.add(player_id)
            session = self.player_id_to_session.get(player_id)
            if session is None:
                self.player_id_to_session[player_id] = Session(
                    player_id=player_id,
                    display_name=display_name,
                    started_at=now,
                    last_tick=now,
                    minutes=minutes,
                )
            else:
                session.display_name = display_name
                session.last_tick = now
                session.minutes += minutes

        closed = []
        for player_id in list(self.player_id_to_session.keys()):
            if player_id not in seen:
                closed.append(self.player_id_to_session.pop(player_id))
        return closed

    def close_all(self) -> List[Session]:
        closed = list(self.player_id_to_session.values())
        self.player_id_to_session.clear()
        return closed

    def size(self) -> int:
        return len(self.player_id_to_session)
