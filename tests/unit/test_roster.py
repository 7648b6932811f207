"""Unit tests for roster parsing and the HTTP roster source."""

import httpx

from seed_tracker.roster import (
    HttpRoster,
    RosterPlayer,
    StaticRoster,
    parse_roster_html,
    parse_roster_json,
    player_from_mapping,
)

PLAYER_PAGE = """
<html><body>
<table><tr><td>Server</td><td>Everon #1</td></tr></table>
<table>
  <thead><tr><th>#</th><th>Name</th><th>UID</th><th>Ping</th></tr></thead>
  <tbody>
    <tr><td>1</td><td><a href="/p/1">Alice</a></td><td>ABC123</td><td>40</td></tr>
    <tr><td>2</td><td>Bob</td><td>def456</td><td>55</td></tr>
    <tr><td>3</td><td></td><td>ghost</td><td>0</td></tr>
  </tbody>
</table>
</body></html>
"""


class TestParsing:
    def test_html_player_table(self):
        players = parse_roster_html(PLAYER_PAGE)

        assert players == [RosterPlayer("ABC123", "Alice"), RosterPlayer("def456", "Bob")]

    def test_html_header_row_without_thead(self):
        html = "<table><tr><td>Player</td><td>Player ID</td></tr><tr><td>Carol</td><td>c1</td></tr></table>"

        assert parse_roster_html(html) == [RosterPlayer("c1", "Carol")]

    def test_html_without_player_table(self):
        assert parse_roster_html("<p>Server offline</p>") == []

    def test_json_object_with_players(self):
        data = {"players": [{"uid": "abc123", "name": "Alice"}, {"name": "NoId"}, "junk"]}

        assert parse_roster_json(data) == [RosterPlayer("abc123", "Alice")]

    def test_json_bare_list(self):
        assert parse_roster_json([{"id": 7, "name": "Dan"}]) == [RosterPlayer("7", "Dan")]

    def test_mapping_keys_are_case_insensitive(self):
        assert player_from_mapping({"ID": "abc123", "displayName": "Alice"}) == RosterPlayer("abc123", "Alice")
        assert player_from_mapping({"displayName": "NoId"}) is None

    def test_json_unexpected_shape(self):
        assert parse_roster_json("nope") == []


class TestStaticRoster:
    def test_unknown_until_updated(self):
        roster = StaticRoster()

        assert roster.current_players() is None

        roster.update([RosterPlayer("a", "A")])
        assert roster.current_players() == [RosterPlayer("a", "A")]

    def test_snapshot_is_a_copy(self):
        roster = StaticRoster([RosterPlayer("a", "A")])

        roster.current_players().clear()

        assert len(roster.current_players()) == 1


class TestHttpRoster:
    async def test_refresh_json(self):
        def handler(request):
            assert request.headers["User-Agent"] == "seed-test"
            return httpx.Response(200, json={"players": [{"uid": "abc123", "name": "Alice"}]})

        roster = HttpRoster(
            "https://status.example/players",
            user_agent="seed-test",
            timeout_seconds=5,
            transport=httpx.MockTransport(handler),
        )

        players = await roster.refresh()

        assert players == [RosterPlayer("abc123", "Alice")]
        assert roster.current_players() == players

    async def test_refresh_html(self):
        transport = httpx.MockTransport(
            lambda request: httpx.Response(200, text=PLAYER_PAGE, headers={"content-type": "text/html"})
        )
        roster = HttpRoster("https://status.example/", user_agent="x", timeout_seconds=5, transport=transport)

        assert len(await roster.refresh()) == 2

    async def test_failed_refresh_makes_roster_unknown(self):
        transport = httpx.MockTransport(lambda request: httpx.Response(503))
        roster = HttpRoster("https://status.example/", user_agent="x", timeout_seconds=5, transport=transport)
        roster.players = [RosterPlayer("old", "Old")]

        assert await roster.refresh() is None
        assert roster.current_players() is None
