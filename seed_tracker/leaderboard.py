from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import List, Optional, Sequence, Tuple

import httpx

from .logic import leaderboard_fingerprint
from .notifier import DiscordNotifier
from .storage import PlayerTotal

logger = logging.getLogger(__name__)


def build_leaderboard_embed(totals: Sequence[PlayerTotal], lookback_days: int) -> dict:
    fields = []
    for idx, t in enumerate(totals, start=1):
        hours = t.total_minutes / 60
        fields.append(
            {
                "name": f"{idx}. {t.display_name}",
                "value": f"{hours:.2f} hours ({t.total_minutes} minutes)",
            }
        )
    return {
        "title": f"🏆 Top {len(totals)} Seeders (Last {lookback_days} Days)",
        "color": 0x00AE86,
        "fields": fields,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }


class LeaderboardSync:
    """
    Keeps one published leaderboard message in step with the ranking.

    Publishing is skipped while the ranking is unchanged. An existing message
    is edited in place; if the edit fails a new message is posted and its id
    adopted.
    """

    def __init__(self, notifier: DiscordNotifier, message_id: Optional[str] = None) -> None:
        self.notifier = notifier
        self.message_id = message_id
        self.last_fingerprint: Optional[Tuple[Tuple[str, int], ...]] = None
        self.last_published_at: Optional[datetime] = None

    def reset(self) -> None:
        self.last_fingerprint = None

    async def sync(self, totals: List[PlayerTotal], lookback_days: int) -> bool:
        """Return True when a message was edited or published."""
        if not totals:
            return False

        fingerprint = leaderboard_fingerprint(totals)
        if fingerprint == self.last_fingerprint:
            return False

        embeds = [build_leaderboard_embed(totals, lookback_days)]

        if self.message_id is not None:
            try:
                edited = await self.notifier.edit(self.message_id, embeds)
            except httpx.HTTPError as e:
                logger.warning("Leaderboard edit failed: %s", e)
                edited = False
            if edited:
                self._published(fingerprint)
                return True
            logger.info("Leaderboard message %s not editable; posting a new one", self.message_id)

        try:
            new_id = await self.notifier.publish(embeds)
        except httpx.HTTPError as e:
            logger.error("Failed to publish leaderboard: %s", e)
            return False

        if new_id is None:
            logger.error("Leaderboard publish returned no message id")
            return False

        self.message_id = new_id
        self._published(fingerprint)
        return True

    def _published(self, fingerprint: Tuple[Tuple[str, int], ...]) -> None:
        self.last_fingerprint = fingerprint
        self.last_published_at = datetime.now(timezone.utc)
