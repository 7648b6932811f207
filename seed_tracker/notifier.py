from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, List, Optional

import httpx

logger = logging.getLogger(__name__)

DRY_RUN_MESSAGE_ID = "dry-run"


class DiscordNotifier:
    """
    Posts leaderboard and alert messages through Discord webhooks.

    The leaderboard webhook is used for publish/edit; alerts go to the alert
    webhook, falling back to the leaderboard webhook when none is set.
    """

    def __init__(
        self,
        webhook_url: Optional[str],
        dry_run: bool,
        *,
        alert_webhook_url: Optional[str] = None,
        timeout_seconds: int = 30,
        max_retries: int = 3,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.webhook_url = webhook_url
        self.alert_webhook_url = alert_webhook_url or webhook_url
        self.dry_run = dry_run or not webhook_url
        self.timeout_seconds = timeout_seconds
        self.max_retries = max_retries
        self.transport = transport

    async def publish(self, embeds: List[dict]) -> Optional[str]:
        """Post a new leaderboard message and return its id."""
        if self.dry_run:
            self._print_dry_run(embeds)
            return DRY_RUN_MESSAGE_ID
        data = await self._request("POST", self.webhook_url, {"embeds": embeds}, params={"wait": "true"})
        return _message_id(data)

    async def edit(self, message_id: str, embeds: List[dict]) -> bool:
        """Edit a previously published message; False when it can no longer be edited."""
        if self.dry_run:
            self._print_dry_run(embeds)
            return True
        url = f"{self.webhook_url.split('?', 1)[0].rstrip('/')}/messages/{message_id}"
        try:
            await self._request("PATCH", url, {"embeds": embeds})
        except httpx.HTTPStatusError as e:
            logger.warning("Editing message %s failed with HTTP %s", message_id, e.response.status_code)
            return False
        return True

    async def send(self, content: str, *, title: Optional[str] = None, color: int = 0xE67E22) -> Optional[str]:
        embeds = [{"title": title or "Seed Tracker Alert", "description": content, "color": color}]
        if self.dry_run or not self.alert_webhook_url:
            self._print_dry_run(embeds)
            return DRY_RUN_MESSAGE_ID
        data = await self._request("POST", self.alert_webhook_url, {"embeds": embeds}, params={"wait": "true"})
        return _message_id(data)

    def _print_dry_run(self, embeds: List[dict]) -> None:
        for e in embeds:
            title = e.get("title", "")
            desc = e.get("description", "")
            lines = [f"{f['name']}: {f['value']}" for f in e.get("fields", [])]
            body = "\n".join([desc] + lines) if desc else "\n".join(lines)
            print(f"[DRY_RUN] {title}\n{body}")

    async def _request(
        self,
        method: str,
        url: str,
        payload: Dict[str, Any],
        *,
        params: Optional[Dict[str, str]] = None,
    ) -> Optional[Dict[str, Any]]:
        attempt = 0
        backoff = 1.0
        async with httpx.AsyncClient(timeout=self.timeout_seconds, transport=self.transport) as client:
            while True:
                attempt += 1
                resp = await client.request(method, url, json=payload, params=params)
                # Only rate limits are retried; any other error goes straight back to the caller.
                if resp.status_code == 429 and attempt <= self.max_retries:
                    retry_after = resp.headers.get("Retry-After")
                    delay = float(retry_after) if retry_after else backoff
                    await asyncio.sleep(delay)
                    backoff = min(backoff * 2, 10.0)
                    continue
                resp.raise_for_status()
                if resp.status_code == 204 or not resp.content:
                    return None
                return resp.json()


def _message_id(data: Optional[Dict[str, Any]]) -> Optional[str]:
    if not data or "id" not in data:
        return None
    return str(data["id"])
