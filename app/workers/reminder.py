"""Beat-driven reminder dispatch.

Every worker process may pick up a ``dispatch_due`` tick. The dispatcher built
here takes the shared Redis pass lock in ``run_once``, so a tick that lands
while any other runner is mid-pass is skipped.
"""

from __future__ import annotations

import asyncio
from dataclasses import asdict

from app.celery_app import celery_app
from app.services.dispatcher import ReminderDispatcher
from config import settings
import db


async def _run_pass() -> dict | None:
    dispatcher = ReminderDispatcher.from_settings(settings)
    try:
        summary = await dispatcher.run_once()
    finally:
        await dispatcher.aclose()
        await db.dispose_engine()
    return asdict(summary) if summary is not None else None


# ---------------------------------------------------------------------------
# Celery Tasks
# ---------------------------------------------------------------------------

@celery_app.task(name="app.workers.reminder.dispatch_due", bind=True)
def dispatch_due(self):  # noqa: D401
    """Run one dispatch pass and return its summary (None if skipped or failed)."""
    return asyncio.run(_run_pass())
