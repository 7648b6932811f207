"""
Integration tests for SeedTracker: full ticks against in-memory SQLite with
a mocked notifier, plus the administrative API.
"""

import aiosqlite
import httpx
import pytest

from seed_tracker.config import Config
from seed_tracker.filters import PlayerListMode
from seed_tracker.logic import TIER_CRITICAL, TIER_LOW
from seed_tracker.roster import RosterPlayer, StaticRoster
from seed_tracker.storage import SeedStore
from seed_tracker.tracker import NOT_INITIALIZED, SeedTracker
from tests.conftest import make_roster

pytestmark = pytest.mark.integration

ALICE = RosterPlayer(id="abc123", display_name="Alice")


def roster_with_alice(size=6):
    return [ALICE] + make_roster(size - 1)


class TestTick:
    async def test_end_to_end_first_tick(self, tracker, roster, mock_notifier):
        """Six players inside the 5-40 band: Alice is credited and the board is published."""
        roster.update(roster_with_alice(6))

        assert await tracker.tick() is True

        total = await tracker.store.get_total("abc123")
        streak = await tracker.store.get_streak("abc123")
        assert total.total_minutes == tracker.config.interval_minutes
        assert streak.current_streak == 1
        mock_notifier.publish.assert_awaited_once()
        mock_notifier.send.assert_not_awaited()

    async def test_unchanged_board_is_not_republished(self, tracker, roster, mock_notifier):
        roster.update(roster_with_alice(6))
        await tracker.tick()

        # Below the band: nothing accumulates, so the ranking is unchanged.
        roster.update(make_roster(3))
        await tracker.tick()

        assert mock_notifier.publish.await_count + mock_notifier.edit.await_count == 1

    async def test_second_tick_edits_board(self, tracker, roster, mock_notifier, clock):
        roster.update(roster_with_alice(6))
        await tracker.tick()
        clock.advance(minutes=15)

        await tracker.tick()

        assert (await tracker.store.get_total("abc123")).total_minutes == 30
        mock_notifier.edit.assert_awaited_once()

    async def test_outside_band_records_sample_only(self, tracker, roster, clock):
        roster.update(make_roster(45))

        await tracker.tick()

        assert await tracker.store.count_totals() == 0
        samples = await tracker.store.samples_since(clock().date())
        assert samples[0].player_count == 45
        assert samples[0].seeding_active is False
        assert samples[0].server_full is True

    async def test_unknown_roster(self, tracker, roster, mock_notifier, mocker, clock):
        """Unknown roster: zero-player sample, no alerts, leaderboard still synced."""
        spy = mocker.spy(tracker.store, "top_totals")

        await tracker.tick()

        samples = await tracker.store.samples_since(clock().date())
        assert samples[0].player_count == 0
        assert samples[0].eligible_count == 0
        mock_notifier.send.assert_not_awaited()
        assert spy.call_count == 1
        assert tracker.last_player_count is None

    async def test_blacklisted_player_is_skipped(self, tracker, roster):
        result = await tracker.add_to_list("  ABC123 ")
        roster.update(roster_with_alice(6))

        await tracker.tick()

        assert result.success
        assert await tracker.store.get_total("abc123") is None
        assert await tracker.store.count_totals() == 5

    async def test_whitelist_tracks_only_listed(self, tracker, roster):
        await tracker.add_to_list("abc123")
        await tracker.set_list_mode("whitelist")
        roster.update(roster_with_alice(6))

        await tracker.tick()

        assert await tracker.store.count_totals() == 1
        assert await tracker.store.get_total("abc123") is not None

    async def test_duplicate_roster_entries_count_once(self, tracker, roster):
        roster.update([ALICE, RosterPlayer("ABC123", "Alice"), *make_roster(4)])

        await tracker.tick()

        assert (await tracker.store.get_total("abc123")).total_minutes == 15

    async def test_entries_without_id_or_name_are_ignored(self, tracker, roster):
        roster.update([RosterPlayer("", "NoId"), RosterPlayer("x1", " "), *roster_with_alice(4)])

        await tracker.tick()

        assert await tracker.store.count_totals() == 4

    async def test_pushed_mappings_are_tracked(self, tracker, roster, caplog):
        """A host may push {id, displayName} dicts; broken entries are logged, not silently dropped."""
        entries = [{"id": f"p{i}", "displayName": f"Player {i}"} for i in range(5)]
        roster.update([{"id": "abc123", "displayName": "Alice"}, {"displayName": "NoId"}, *entries])

        await tracker.tick()

        assert (await tracker.store.get_total("abc123")).display_name == "Alice"
        assert await tracker.store.count_totals() == 6
        assert "Skipping roster entry" in caplog.text
        assert "NoId" in caplog.text

    async def test_player_failure_does_not_abort_tick(self, tracker, roster, mocker):
        original = tracker.store.accumulate

        async def flaky(player_id, *args, **kwargs):
            if player_id == "player0":
                raise aiosqlite.OperationalError("database is locked")
            return await original(player_id, *args, **kwargs)

        mocker.patch.object(tracker.store, "accumulate", side_effect=flaky)
        roster.update([RosterPlayer("player0", "P0"), ALICE, *make_roster(4, prefix="other")])

        await tracker.tick()

        assert await tracker.store.get_total("player0") is None
        assert await tracker.store.get_total("abc123") is not None

    async def test_failing_phase_does_not_block_alerts(self, tracker, roster, mocker, mock_notifier):
        mocker.patch.object(tracker.store, "record_sample", side_effect=RuntimeError("disk full"))
        roster.update(make_roster(1))

        await tracker.tick()

        mock_notifier.send.assert_awaited_once()

    async def test_streak_grows_across_days(self, tracker, roster, clock):
        roster.update(roster_with_alice(6))
        await tracker.tick()
        clock.advance(minutes=15)
        await tracker.tick()
        clock.advance(days=1)
        await tracker.tick()

        streak = await tracker.store.get_streak("abc123")
        assert streak.current_streak == 2
        assert streak.total_active_days == 2

    async def test_overlapping_tick_is_skipped(self, tracker):
        tracker._tick_in_progress = True

        assert await tracker.tick() is False
        result = await tracker.run_tick()
        assert not result.success

    async def test_closed_sessions_are_saved(self, tracker, roster, clock):
        roster.update(roster_with_alice(6))
        await tracker.tick()
        clock.advance(minutes=15)
        await tracker.tick()
        clock.advance(minutes=15)
        roster.update(make_roster(6))
        await tracker.tick()

        stats = await tracker.get_player_stats("abc123")
        assert stats.data["sessions"] == 1
        assert stats.data["longest_session_minutes"] == 30


class TestAlerts:
    async def test_low_population_alerts_respect_cooldown(self, tracker, roster, mock_notifier, clock):
        roster.update(make_roster(1))
        await tracker.tick()
        clock.advance(minutes=10)
        await tracker.tick()
        clock.advance(minutes=21)
        await tracker.tick()

        assert mock_notifier.send.await_count == 2
        assert "critical" in mock_notifier.send.await_args.kwargs["title"]

    async def test_tiers_fire_independently(self, tracker, roster, mock_notifier, clock):
        roster.update(make_roster(1))
        await tracker.tick()
        clock.advance(minutes=5)
        roster.update(make_roster(3))
        await tracker.tick()

        status = await tracker.get_alert_status()
        assert mock_notifier.send.await_count == 2
        assert status.data["tiers"][TIER_CRITICAL]["last_fired"] is not None
        assert status.data["tiers"][TIER_LOW]["last_fired"] is not None

    async def test_delivery_failure_still_starts_cooldown(self, tracker, roster, mock_notifier, clock):
        mock_notifier.send.side_effect = httpx.ConnectError("webhook unreachable")
        roster.update(make_roster(0))

        await tracker.tick()
        clock.advance(minutes=5)
        await tracker.tick()

        assert mock_notifier.send.await_count == 1
        status = await tracker.get_alert_status()
        assert status.data["tiers"][TIER_CRITICAL]["cooldown_remaining_seconds"] == 25 * 60

    async def test_alerts_can_be_disabled(self, tracker, roster, mock_notifier):
        result = await tracker.update_alert_config(alerts_enabled=False)
        roster.update(make_roster(0))

        await tracker.tick()

        assert result.success
        mock_notifier.send.assert_not_awaited()

    async def test_string_flag_is_rejected(self, tracker):
        """alerts_enabled="false" is refused rather than stored as a truthy string."""
        result = await tracker.update_alert_config(alerts_enabled="false")
        status = await tracker.get_alert_status()

        assert not result.success
        assert tracker.config.alerts_enabled is True
        assert status.data["enabled"] is True

    async def test_non_integer_threshold_is_rejected(self, tracker):
        result = await tracker.update_alert_config(alert_cooldown_minutes="30")

        assert not result.success
        assert tracker.config.alert_cooldown_minutes == 30

    async def test_invalid_alert_thresholds_rejected(self, tracker):
        result = await tracker.update_alert_config(alert_critical_threshold=10, alert_low_threshold=3)

        assert not result.success
        assert tracker.config.alert_critical_threshold == 2


class TestInitialization:
    async def test_uninitialized_engine_refuses_operations(self, config, mock_notifier):
        engine = SeedTracker(config, SeedStore(":memory:"), mock_notifier, StaticRoster())

        result = await engine.add_to_list("abc123")

        assert result.success is False
        assert result.message == NOT_INITIALIZED
        assert await engine.tick() is False
        assert await engine.purge() == {}

    async def test_storage_failure_leaves_engine_uninitialized(self, tmp_path, config, mock_notifier):
        bad_path = str(tmp_path / "missing" / "seed.db")
        engine = SeedTracker(config, SeedStore(bad_path), mock_notifier, StaticRoster())

        assert await engine.initialize() is False
        assert (await engine.get_status()).success is False


class TestAdministration:
    async def test_list_editing_results(self, tracker):
        await tracker.update_config(player_list_limit=2)

        assert (await tracker.add_to_list("a")).success
        assert not (await tracker.add_to_list("A")).success
        assert (await tracker.add_to_list("b")).success
        full = await tracker.add_to_list("c")
        missing = await tracker.remove_from_list("zzz")

        assert not full.success and "full" in full.message
        assert not missing.success
        assert (await tracker.list_entries()).data["entries"] == ["a", "b"]
        assert (await tracker.clear_list()).success
        assert tracker.config.player_list == ()

    async def test_set_list_mode(self, tracker):
        assert not (await tracker.set_list_mode("greylist")).success
        assert (await tracker.set_list_mode("WHITELIST")).success
        assert tracker.config.player_list_mode is PlayerListMode.WHITELIST

    async def test_update_config_validation(self, tracker):
        bad = await tracker.update_config(seed_start=50)
        unknown = await tracker.update_config(database_path="/tmp/x.db")
        empty = await tracker.update_config()
        good = await tracker.update_config(seed_start=3, seed_end=20)

        assert not bad.success
        assert not unknown.success
        assert not empty.success
        assert good.success
        assert (tracker.config.seed_start, tracker.config.seed_end) == (3, 20)

    async def test_interval_change_restarts_running_scheduler(self, tracker, mocker):
        scheduler = mocker.MagicMock()
        scheduler.running = True
        tracker.scheduler = scheduler

        await tracker.update_config(interval_minutes=5)

        scheduler.start.assert_called_once_with(5)

    async def test_config_snapshot_is_replaced_not_mutated(self, tracker):
        before = tracker.config

        await tracker.update_config(lookback_days=7)

        assert before.lookback_days == 30
        assert tracker.config.lookback_days == 7
        assert isinstance(tracker.config, Config)

    async def test_reset_all_totals(self, tracker, roster, mock_notifier):
        roster.update(roster_with_alice(6))
        await tracker.tick()

        result = await tracker.reset_all_totals()
        board = await tracker.get_leaderboard()

        assert result.success and result.data == 6
        assert board.data == []
        assert tracker.leaderboard.last_fingerprint is None

    async def test_reporting_queries(self, tracker, roster, clock):
        roster.update(roster_with_alice(6))
        await tracker.tick()
        clock.advance(hours=1)
        roster.update(roster_with_alice(8))
        await tracker.tick()

        board = await tracker.get_leaderboard()
        streaks = await tracker.get_top_streaks(3)
        report = await tracker.get_analytics(7)
        tips = await tracker.get_smart_recommendations()
        status = await tracker.get_status()

        assert board.data[0]["display_name"] == "Alice"
        assert len(streaks.data) == 3
        assert report.data["samples"] == 2
        assert report.data["success_rate"] == 1.0
        assert tips.success and tips.data
        assert status.data["tracked_players"] == 8
        assert status.data["leaderboard_message_id"] == "1001"

    async def test_query_argument_validation(self, tracker):
        assert not (await tracker.get_top_streaks(0)).success
        assert not (await tracker.get_analytics(0)).success
        assert not (await tracker.get_player_stats("  ")).success
        assert not (await tracker.get_player_stats("nobody")).success

    async def test_run_purge(self, tracker, roster, clock):
        roster.update(roster_with_alice(6))
        await tracker.tick()
        clock.advance(days=46)

        result = await tracker.run_purge()

        assert result.success
        assert result.data["seeder_totals"] == 6
        assert await tracker.store.count_totals() == 0
