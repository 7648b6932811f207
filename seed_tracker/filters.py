from __future__ import annotations

import enum
from typing import Iterable, Optional, Tuple


class PlayerListMode(str, enum.Enum):
    BLACKLIST = "blacklist"
    WHITELIST = "whitelist"


def normalize_player_id(player_id: Optional[str]) -> str:
    if player_id is None:
        return ""
    return str(player_id).strip().lower()


def should_track(player_id: Optional[str], entries: Iterable[str], mode: PlayerListMode) -> bool:
    """
    Decide whether a player counts as a seeder.

    In blacklist mode the list names players to skip; in whitelist mode it
    names the only players that are tracked. Comparison is case-insensitive.
    """
    normalized = normalize_player_id(player_id)
    listed = normalized in {normalize_player_id(e) for e in entries}
    if mode == PlayerListMode.WHITELIST:
        return listed
    return not listed


def add_entry(entries: Tuple[str, ...], player_id: str, limit: int) -> Tuple[Optional[Tuple[str, ...]], str]:
    """Return (new_entries, reason); new_entries is None when the add is refused."""
    normalized = normalize_player_id(player_id)
    if not normalized:
        return None, "A player ID is required."
    if normalized in entries:
        return None, f"Player ID `{normalized}` is already in the list."
    if len(entries) >= limit:
        return None, f"The player list is full ({limit} entries)."
    return entries + (normalized,), f"Player ID `{normalized}` added to the list."


def remove_entry(entries: Tuple[str, ...], player_id: str) -> Tuple[Optional[Tuple[str, ...]], str]:
    normalized = normalize_player_id(player_id)
    if not normalized:
        return None, "A player ID is required."
    if normalized not in entries:
        return None, f"Player ID `{normalized}` is not in the list."
    return tuple(e for e in entries if e != normalized), f"Player ID `{normalized}` removed from the list."
