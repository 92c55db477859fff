"""Command-line entry point.

Usage:
    python -m dex_buy_tracker run [--dry-run]
    python -m dex_buy_tracker config
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import signal
import sys

from pydantic import ValidationError

from dex_buy_tracker.config import Settings, get_settings
from dex_buy_tracker.pipeline import BuyTracker
from dex_buy_tracker.storage.settings_store import SettingsStoreError

logger = logging.getLogger("dex_buy_tracker")


def configure_logging(settings: Settings) -> None:
    logging.basicConfig(
        level=settings.get_logging_level(),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("websockets").setLevel(logging.WARNING)


async def _run_tracker(settings: Settings, *, dry_run: bool) -> None:
    tracker = BuyTracker(settings, dry_run=dry_run)
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, tracker.request_stop)
        except NotImplementedError:
            # Windows event loops have no signal handler support.
            pass
    await tracker.run()


def cmd_run(args: argparse.Namespace, settings: Settings) -> int:
    dry_run = bool(args.dry_run) or settings.dry_run
    try:
        settings.validate_requirements()
    except ValueError as e:
        if not (dry_run and settings.chains.configured()):
            logger.error("Invalid configuration: %s", e)
            return 2

    logger.info("Configuration: %s", json.dumps(settings.redacted_summary()))
    try:
        asyncio.run(_run_tracker(settings, dry_run=dry_run))
    except SettingsStoreError as e:
        logger.error("%s", e)
        return 1
    except KeyboardInterrupt:
        pass
    return 0


def cmd_config(args: argparse.Namespace, settings: Settings) -> int:
    print(json.dumps(settings.redacted_summary(), indent=2))
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="dex-buy-tracker",
        description="Watch DEX pools for buys of configured tokens and post Telegram alerts",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    run_parser = subparsers.add_parser("run", help="Start live buy tracking")
    run_parser.add_argument("--dry-run", action="store_true", help="Log alerts instead of sending them")
    run_parser.set_defaults(func=cmd_run)

    config_parser = subparsers.add_parser("config", help="Print the redacted configuration")
    config_parser.set_defaults(func=cmd_config)
    return parser


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    try:
        settings = get_settings()
    except ValidationError as e:
        print(f"Invalid configuration:\n{e}", file=sys.stderr)
        return 2
    configure_logging(settings)
    return int(args.func(args, settings))


if __name__ == "__main__":
    sys.exit(main())
