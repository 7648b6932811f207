from __future__ import annotations

import asyncio
import signal
import logging
from typing import Optional

from .config import Config
from .notifier import DiscordNotifier
from .roster import HttpRoster, StaticRoster
from .scheduler import Scheduler
from .storage import SeedStore
from .tracker import SeedTracker


def build_tracker(cfg: Config) -> SeedTracker:
    if cfg.roster_url:
        roster = HttpRoster(cfg.roster_url, user_agent=cfg.user_agent, timeout_seconds=cfg.request_timeout_seconds)
    else:
        logging.warning("ROSTER_URL not set; the roster stays unknown until the host pushes one")
        roster = StaticRoster()
    notifier = DiscordNotifier(
        cfg.leaderboard_webhook_url,
        cfg.dry_run,
        alert_webhook_url=cfg.alert_webhook_url,
        timeout_seconds=cfg.request_timeout_seconds,
    )
    return SeedTracker(cfg, SeedStore(cfg.database_path), notifier, roster)


async def refresh_and_tick(tracker: SeedTracker) -> None:
    if isinstance(tracker.roster, HttpRoster):
        players = await tracker.roster.refresh()
        logging.info(f"Fetched roster from {tracker.roster.url}: {'unknown' if players is None else len(players)} players")
    await tracker.tick()


async def run_loop(tracker: SeedTracker) -> None:
    stop_event = asyncio.Event()

    def _handle_stop():
        stop_event.set()

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, _handle_stop)
        except NotImplementedError:
            # Windows event loops do not support signal handlers
            pass

    scheduler = Scheduler(lambda: refresh_and_tick(tracker), tracker.purge, tracker.config.interval_minutes)
    tracker.scheduler = scheduler
    scheduler.start()
    logging.info(f"Seed tracking every {tracker.config.interval_minutes} minutes; Ctrl+C to stop")
    await stop_event.wait()
    logging.info("Stopping seed tracker")


async def run_iterations(tracker: SeedTracker, iterations: int, interval_seconds: Optional[int]) -> None:
    sleep_seconds = interval_seconds if interval_seconds is not None else tracker.config.interval_minutes * 60

    for i in range(iterations):
        logging.info(f"[iter {i+1}/{iterations}] Sampling roster")
        await refresh_and_tick(tracker)
        if i < iterations - 1:
            await asyncio.sleep(max(0, sleep_seconds))


async def main_async(cfg: Config, once: bool, iterations: int, interval_seconds: Optional[int], db_path: Optional[str]) -> int:
    if db_path:
        cfg = cfg.with_updates(database_path=db_path)

    tracker = build_tracker(cfg)
    if not await tracker.initialize():
        logging.error("Seed tracker could not start; check DATABASE_PATH")
        return 1

    try:
        if iterations and iterations > 1:
            await run_iterations(tracker, iterations=iterations, interval_seconds=interval_seconds)
        elif once:
            await refresh_and_tick(tracker)
        else:
            await run_loop(tracker)
    finally:
        await tracker.close()
    return 0


def main() -> None:
    import argparse

    parser = argparse.ArgumentParser(description="Game server seeding tracker")
    parser.add_argument("--once", dest="once", action="store_true", help="Run a single tick and exit")
    parser.add_argument("--iterations", dest="iterations", type=int, default=1, help="Run N ticks in one process (state persists)")
    parser.add_argument("--interval-seconds", dest="interval_seconds", type=int, default=None, help="Seconds to wait between iterations (default: SEED_INTERVAL_MIN * 60)")
    parser.add_argument("--db", dest="db_path", default=None, help="SQLite database path (overrides DATABASE_PATH)")
    args = parser.parse_args()
    cfg = Config.from_env()
    logging.basicConfig(level=getattr(logging, cfg.log_level, logging.INFO), format="[%(levelname)s] %(message)s")
    raise SystemExit(asyncio.run(main_async(cfg, once=args.once, iterations=args.iterations, interval_seconds=args.interval_seconds, db_path=args.db_path)))


if __name__ == "__main__":
    main()
