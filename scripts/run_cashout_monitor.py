#!/usr/bin/env python3
"""Cash-out monitor runner.

Values a user's open wagers, prints the offers, and (in watch mode) keeps
polling, firing auto cash-out rules as they match.

Usage:
    python scripts/run_cashout_monitor.py --user-id <uuid>              # one pass
    python scripts/run_cashout_monitor.py watch --user-id <uuid>
    python scripts/run_cashout_monitor.py watch --user-id <uuid> --interval 60
"""

import argparse
import asyncio
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent))

import structlog

from config.settings import settings
from config.validators import validate_cashout_settings
from skycast.cashout.auto_rules import AutoCashoutRuleEngine
from skycast.cashout.engine import PollingOrchestrator
from skycast.cashout.valuation import CashoutValuationEngine
from skycast.db.database import close_db_async, init_db_async
from skycast.db.wagers import WagerStore
from skycast.feeds.openweather import OpenWeatherProvider
from skycast.notifications.push import PushNotifier
from skycast.realtime.channel import LocalBroadcastChannel
from skycast.utils.logging import configure_logging

logger = structlog.get_logger()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Cash-out monitor")
    parser.add_argument("mode", choices=["once", "watch"], default="once", nargs="?")
    parser.add_argument("--user-id", required=True, help="User whose wagers to value.")
    parser.add_argument(
        "--interval", type=float,
        default=settings.CASHOUT_POLL_INTERVAL_SECONDS,
        help="Watch mode polling interval (seconds).",
    )
    parser.add_argument(
        "--db-url", type=str, default=settings.DATABASE_URL,
        help="Async database URL.",
    )
    parser.add_argument(
        "--no-auto-rules", action="store_true",
        help="Value wagers without firing auto cash-out rules.",
    )
    parser.add_argument(
        "--currency", choices=["virtual", "real"], default="virtual",
        help="Wallet credited by auto cash-outs.",
    )
    return parser


def print_offers(valuations: dict) -> None:
    if not valuations:
        print("No open wagers to value")
        return
    for bet_id, v in valuations.items():
        arrow = {"up": "+", "down": "-"}.get(v.trend, "=")
        print(f"{bet_id[:8]}  {v.amount:>8}  {v.percentage:>3}%  "
              f"t+{v.time_bonus_pct}% w+{v.weather_bonus_pct}%  [{arrow}]  "
              f"{v.reasoning}")


async def run(args: argparse.Namespace) -> None:
    structlog.contextvars.bind_contextvars(user_id=args.user_id)
    validate_cashout_settings()
    await init_db_async(args.db_url)

    store = WagerStore(args.db_url)
    provider = OpenWeatherProvider()
    notifier = PushNotifier()
    orchestrator = PollingOrchestrator(
        user_id=args.user_id,
        store=store,
        valuation=CashoutValuationEngine.from_settings(provider),
        channel=LocalBroadcastChannel(),
        interval=args.interval,
    )
    rules = AutoCashoutRuleEngine(
        store=store, notifier=notifier, user_id=args.user_id,
        mode=args.currency)
    if not args.no_auto_rules:
        orchestrator.subscribe(rules.run)
    orchestrator.subscribe(print_offers)

    try:
        if args.mode == "once":
            await orchestrator.tick()
        else:
            await orchestrator.start()
            await asyncio.Event().wait()
    finally:
        await orchestrator.stop()
        await rules.drain()
        await notifier.close()
        await provider.close()
        await close_db_async()


def main() -> None:
    configure_logging()
    args = build_parser().parse_args()
    try:
        asyncio.run(run(args))
    except KeyboardInterrupt:
        logger.info("cashout_monitor_interrupted")


if __name__ == "__main__":
    main()
