"""Periodic scanner to send due reminders.

Run via a cron schedule every minute:
    python -m app.scripts.scan_due_reminders
or keep it running and polling on its own:
    python -m app.scripts.scan_due_reminders --loop
"""

from __future__ import annotations

import argparse
import asyncio
import signal
import sys

from app.services.dispatcher import ReminderDispatcher
from app.utils.logging import get_logger
from config import settings
import db

logger = get_logger(__name__)


async def main(loop: bool = False) -> int:
    dispatcher = ReminderDispatcher.from_settings(settings)
    try:
        if not loop:
            summary = await dispatcher.run_once()
            return 0 if summary is not None else 1

        stop = asyncio.Event()
        running = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            running.add_signal_handler(sig, stop.set)
        await dispatcher.run_forever(settings.poll_interval_seconds, stop)
        return 0
    finally:
        await dispatcher.aclose()
        await db.dispose_engine()


def _parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Dispatch due reminders.")
    parser.add_argument(
        "--loop",
        action="store_true",
        help="poll every POLL_INTERVAL_MINUTES until SIGINT/SIGTERM instead of running one pass",
    )
    return parser.parse_args(argv)


if __name__ == "__main__":  # pragma: no cover
    args = _parse_args()
    logger.info("scan_due_reminders_started", loop=args.loop)
    sys.exit(asyncio.run(main(loop=args.loop)))
