from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Iterable, List, Optional, Tuple

import httpx
from bs4 import BeautifulSoup

logger = logging.getLogger(__name__)

ID_HEADERS = ("uid", "id", "guid", "identity")
NAME_HEADERS = ("displayname", "name", "player")


@dataclass(frozen=True)
class RosterPlayer:
    id: str
    display_name: str


class StaticRoster:
    """
    Roster snapshot pushed in by the host (e.g. an RCON or game-event hook).

    `None` means the roster is unknown, which is different from an empty
    server.
    """

    def __init__(self, players: Optional[Iterable[RosterPlayer]] = None) -> None:
        self.players: Optional[List[RosterPlayer]] = list(players) if players is not None else None

    def update(self, players: Optional[Iterable[RosterPlayer]]) -> None:
        self.players = list(players) if players is not None else None

    def current_players(self) -> Optional[List[RosterPlayer]]:
        return list(self.players) if self.players is not None else None


def player_from_mapping(item: Any) -> Optional[RosterPlayer]:
    """Build a player from a mapping such as `{"id": ..., "displayName": ...}`; keys are case-insensitive."""
    if not isinstance(item, dict):
        return None
    lowered = {str(k).lower(): v for k, v in item.items()}
    uid = next((lowered.get(k) for k in ID_HEADERS if lowered.get(k)), None)
    name = next((lowered.get(k) for k in NAME_HEADERS if lowered.get(k)), None)
    if not uid or not name:
        return None
    return RosterPlayer(id=str(uid), display_name=str(name))


def parse_roster_json(data: Any) -> List[RosterPlayer]:
    """Accept either a bare list of players or an object with a `players` list."""
    if isinstance(data, dict):
        data = data.get("players", [])
    if not isinstance(data, list):
        return []
    players = []
    for item in data:
        player = player_from_mapping(item)
        if player is not None:
            players.append(player)
    return players


def _find_table_by_headers(soup: BeautifulSoup) -> Optional[Tuple[object, object, int, int]]:
    """
    Find a table whose header row has both a player-id and a player-name column.
    Returns (table, header_row, id_index, name_index). Header matching is case-insensitive.
    """
    for table in soup.find_all("table"):
        header_row = None
        header_cells = None
        thead = table.find("thead")
        if thead:
            header_row = thead.find("tr")
            if header_row:
                header_cells = header_row.find_all(["th", "td"]) or []
        if not header_cells:
            header_row = table.find("tr")
            if not header_row:
                continue
            header_cells = header_row.find_all(["th", "td"]) or []

        labels = [(cell.get_text(" ", strip=True) or "").lower() for cell in header_cells]

        def find_index_for(candidates: Tuple[str, ...], exclude: Optional[int] = None) -> Optional[int]:
            for wanted in candidates:
                for idx, label in enumerate(labels):
                    if idx != exclude and label == wanted:
                        return idx
            for wanted in candidates:
                for idx, label in enumerate(labels):
                    if idx != exclude and wanted in label:
                        return idx
            return None

        id_idx = find_index_for(ID_HEADERS)
        name_idx = find_index_for(NAME_HEADERS, exclude=id_idx)
        if id_idx is not None and name_idx is not None:
            return table, header_row, id_idx, name_idx
    return None


def parse_roster_html(html: str) -> List[RosterPlayer]:
    soup = BeautifulSoup(html, "lxml")
    found = _find_table_by_headers(soup)
    if not found:
        return []

    table, header_row, id_idx, name_idx = found
    tbody = table.find("tbody") or table
    players = []
    for tr in tbody.find_all("tr"):
        if tr is header_row:
            continue
        cells = tr.find_all("td") or []
        if len(cells) <= max(id_idx, name_idx):
            continue
        uid = cells[id_idx].get_text(" ", strip=True)
        name = cells[name_idx].get_text(" ", strip=True)
        if uid and name:
            players.append(RosterPlayer(id=uid, display_name=name))
    return players


class HttpRoster:
    """
    Roster read from a server status endpoint (JSON API or HTML player page).

    `refresh()` is awaited before each tick; `current_players()` returns the
    snapshot from the last successful refresh, or None after a failed one.
    """

    def __init__(
        self,
        url: str,
        *,
        user_agent: str,
        timeout_seconds: int,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.url = url
        self.user_agent = user_agent
        self.timeout_seconds = timeout_seconds
        self.transport = transport
        self.players: Optional[List[RosterPlayer]] = None

    async def refresh(self) -> Optional[List[RosterPlayer]]:
        headers = {
            "User-Agent": self.user_agent,
            "Accept": "application/json,text/html;q=0.9,*/*;q=0.8",
        }
        try:
            async with httpx.AsyncClient(
                timeout=self.timeout_seconds,
                headers=headers,
                follow_redirects=True,
                transport=self.transport,
            ) as client:
                response = await client.get(self.url)
                response.raise_for_status()
        except httpx.HTTPError as e:
            logger.warning("Roster fetch from %s failed: %s", self.url, e)
            self.players = None
            return None

        content_type = response.headers.get("content-type", "")
        if "json" in content_type:
            try:
                self.players = parse_roster_json(response.json())
            except ValueError:
                logger.warning("Roster endpoint %s returned invalid JSON", self.url)
                self.players = None
        else:
            self.players = parse_roster_html(response.text)
        return self.current_players()

    def current_players(self) -> Optional[List[RosterPlayer]]:
        return list(self.players) if self.players is not None else None
