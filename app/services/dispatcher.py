"""Reminder dispatch loop.

A *pass* reads every due reminder from the store, sends each one through the
channel that matches its owner's contact kind and writes the new delivery
state back, one reminder at a time:

* delivered            → ``is_completed = True``
* failed / timed out   → ``retry_count += 1``; at ``max_retries`` the reminder
                         is exhausted and drops out of due-selection for good
* no channel for kind  → left untouched and logged as unroutable

Passes never overlap. ``run_once`` skips a tick while a pass is running and
``process_due_pass`` serialises direct callers on the same lock. When the
dispatcher is given a shared ``PassLock``, ``run_once`` also skips the tick
while a pass is running in any other process.
"""

from __future__ import annotations

import asyncio
from dataclasses import asdict, dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Callable, Dict, List, Mapping, Optional, Protocol, Tuple, Union

from app.errors import StoreUnavailable, TransientDeliveryFailure, UnknownContactKind
from app.services.notifications import NotificationChannel, build_channels
from app.services.pass_lock import PassLock, RedisPassLock
from app.types.reminder_contract import ContactKind, DueReminder
from app.utils.logging import get_logger
from config import settings
import db

logger = get_logger(__name__)

MESSAGE_TEMPLATE = "Reminder: {message}"


class ReminderStore(Protocol):
    async def fetch_due_reminders(self, now: datetime, max_retries: int) -> List[DueReminder]:
        ...

    async def save_reminder_state(
        self,
        reminder_id: int,
        is_completed: bool,
        retry_count: int,
        updated_at: datetime,
    ) -> bool:
        ...


class Outcome(str, Enum):
    COMPLETED = "completed"
    RETRY = "retry"
    EXHAUSTED = "exhausted"
    UNROUTABLE = "unroutable"


@dataclass
class PassSummary:
    selected: int = 0
    completed: int = 0
    retried: int = 0
    exhausted: int = 0
    unroutable: int = 0
    save_failed: int = 0


class ReminderDispatcher:
    def __init__(
        self,
        store: ReminderStore,
        channels: Mapping[ContactKind, NotificationChannel],
        *,
        max_retries: int = 3,
        send_timeout: float = 30.0,
        max_concurrent_sends: int = 10,
        clock: Optional[Callable[[], datetime]] = None,
        pass_lock: Optional[PassLock] = None,
    ):
        if max_retries <= 0:
            raise ValueError("max_retries must be positive")
        if send_timeout <= 0:
            raise ValueError("send_timeout must be positive")
        if max_concurrent_sends <= 0:
            raise ValueError("max_concurrent_sends must be positive")

        self._store = store
        self._channels: Dict[ContactKind, NotificationChannel] = dict(channels)
        self.max_retries = max_retries
        self.send_timeout = send_timeout
        self.max_concurrent_sends = max_concurrent_sends
        self._clock = clock or settings.now
        self._pass_lock = asyncio.Lock()
        self._shared_lock = pass_lock

    @classmethod
    def from_settings(cls, cfg=settings) -> "ReminderDispatcher":
        """Wire the SQL store, the real channels and the Redis pass lock."""
        shared = None
        if cfg.PASS_LOCK_ENABLED:
            shared = RedisPassLock.from_url(cfg.REDIS_URL, timeout=cfg.PASS_LOCK_TIMEOUT_SECONDS)
        return cls(
            db,
            build_channels(),
            max_retries=cfg.MAX_RETRIES,
            send_timeout=cfg.SEND_TIMEOUT_SECONDS,
            max_concurrent_sends=cfg.MAX_CONCURRENT_SENDS,
            clock=cfg.now,
            pass_lock=shared,
        )

    @property
    def pass_in_progress(self) -> bool:
        return self._pass_lock.locked()

    async def aclose(self) -> None:
        close = getattr(self._shared_lock, "aclose", None)
        if close is not None:
            await close()

    # ------------------------------------------------------------------
    # Loop
    # ------------------------------------------------------------------

    async def run_forever(
        self,
        interval: Union[float, timedelta],
        stop_event: asyncio.Event,
    ) -> None:
        """Run a pass now and then every *interval* until *stop_event* is set.

        Setting the event cuts the wait short but never interrupts a pass that
        is already running.
        """
        seconds = interval.total_seconds() if isinstance(interval, timedelta) else float(interval)
        logger.info(
            "reminder_dispatcher_started",
            interval_seconds=seconds,
            max_retries=self.max_retries,
        )
        while not stop_event.is_set():
            await self.run_once()
            try:
                await asyncio.wait_for(stop_event.wait(), timeout=seconds)
            except asyncio.TimeoutError:
                continue
        logger.info("reminder_dispatcher_stopped")

    async def run_once(self, now: Optional[datetime] = None) -> Optional[PassSummary]:
        """One tick: run a pass unless one is already running.

        Pass-level failures are logged here and never propagate, so a broken
        store only costs the current tick.
        """
        if self.pass_in_progress:
            logger.warning("dispatch_tick_skipped", reason="pass_in_progress")
            return None

        now = now or self._clock()
        try:
            if self._shared_lock is None:
                return await self.process_due_pass(now)
            async with self._shared_lock.hold() as acquired:
                if not acquired:
                    logger.warning("dispatch_tick_skipped", reason="pass_lock_held")
                    return None
                return await self.process_due_pass(now)
        except StoreUnavailable as exc:
            logger.error("reminder_store_unavailable", error=str(exc))
        except Exception:  # noqa: BLE001
            logger.exception("dispatch_pass_failed")
        return None

    # ------------------------------------------------------------------
    # Pass
    # ------------------------------------------------------------------

    async def process_due_pass(self, now: datetime) -> PassSummary:
        async with self._pass_lock:
            return await self._process(now)

    async def _process(self, now: datetime) -> PassSummary:
        due = await self._store.fetch_due_reminders(now, self.max_retries)

        candidates: Dict[int, DueReminder] = {}
        for reminder in due:
            if reminder.is_completed or reminder.retry_count >= self.max_retries:
                continue
            candidates.setdefault(reminder.id, reminder)

        summary = PassSummary(selected=len(candidates))
        if not candidates:
            logger.debug("no_due_reminders", now=now.isoformat())
            return summary

        logger.info("due_reminders_found", count=len(candidates))

        semaphore = asyncio.Semaphore(self.max_concurrent_sends)
        results = await asyncio.gather(
            *(self._handle(reminder, now, semaphore) for reminder in candidates.values())
        )

        for outcome, saved in results:
            if outcome is Outcome.COMPLETED:
                summary.completed += 1
            elif outcome is Outcome.RETRY:
                summary.retried += 1
            elif outcome is Outcome.EXHAUSTED:
                summary.exhausted += 1
            else:
                summary.unroutable += 1
            if not saved:
                summary.save_failed += 1

        logger.info("dispatch_pass_finished", **asdict(summary))
        return summary

    def _channel_for(self, reminder: DueReminder) -> NotificationChannel:
        try:
            kind = ContactKind(reminder.contact_kind)
        except ValueError:
            raise UnknownContactKind(reminder.contact_kind, reminder.id) from None
        channel = self._channels.get(kind)
        if channel is None:
            raise UnknownContactKind(kind.value, reminder.id)
        return channel

    async def _handle(
        self,
        reminder: DueReminder,
        now: datetime,
        semaphore: asyncio.Semaphore,
    ) -> Tuple[Outcome, bool]:
        try:
            channel = self._channel_for(reminder)
        except UnknownContactKind as exc:
            logger.error(
                "reminder_unroutable",
                reminder_id=reminder.id,
                contact_kind=exc.kind,
                error=str(exc),
            )
            return Outcome.UNROUTABLE, True

        text = MESSAGE_TEMPLATE.format(message=reminder.message)
        failure = ""
        async with semaphore:
            try:
                await self._deliver(channel, reminder, text)
                delivered = True
            except TransientDeliveryFailure as exc:
                delivered = False
                failure = str(exc)

        if delivered:
            saved = await self._save(reminder, True, reminder.retry_count, now)
            logger.info(
                "reminder_dispatched",
                reminder_id=reminder.id,
                contact_kind=reminder.contact_kind,
                retry_count=reminder.retry_count,
            )
            return Outcome.COMPLETED, saved

        retry_count = reminder.retry_count + 1
        saved = await self._save(reminder, False, retry_count, now)
        if retry_count >= self.max_retries:
            if not saved:
                # still stored with its old count; the save failure is already logged
                return Outcome.EXHAUSTED, saved
            logger.error(
                "reminder_retries_exhausted",
                reminder_id=reminder.id,
                contact_kind=reminder.contact_kind,
                retry_count=retry_count,
                max_retries=self.max_retries,
                error=failure,
            )
            return Outcome.EXHAUSTED, saved

        logger.warning(
            "reminder_dispatch_failed",
            reminder_id=reminder.id,
            contact_kind=reminder.contact_kind,
            retry_count=retry_count,
            max_retries=self.max_retries,
            error=failure,
        )
        return Outcome.RETRY, saved

    async def _deliver(self, channel: NotificationChannel, reminder: DueReminder, text: str) -> None:
        """Send once; every kind of failure surfaces as TransientDeliveryFailure."""
        try:
            ok = await asyncio.wait_for(
                channel.send(reminder.contact_address, text),
                timeout=self.send_timeout,
            )
        except asyncio.TimeoutError:
            raise TransientDeliveryFailure(
                f"send timed out after {self.send_timeout}s"
            ) from None
        except Exception as exc:  # noqa: BLE001
            raise TransientDeliveryFailure(f"send raised {exc!r}") from exc
        if not ok:
            raise TransientDeliveryFailure("channel declined the message")

    async def _save(
        self,
        reminder: DueReminder,
        is_completed: bool,
        retry_count: int,
        now: datetime,
    ) -> bool:
        try:
            await self._store.save_reminder_state(reminder.id, is_completed, retry_count, now)
        except Exception as exc:  # noqa: BLE001
            logger.error(
                "reminder_state_save_failed",
                reminder_id=reminder.id,
                is_completed=is_completed,
                retry_count=retry_count,
                error=str(exc),
            )
            return False
        return True
