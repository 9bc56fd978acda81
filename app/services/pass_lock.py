"""Deployment-wide guard for dispatch passes.

The API loop, the Celery beat task and the cron script may all run at once,
and the API may run with several uvicorn workers. They all point at the same
store, so they share one Redis lock: a process that cannot take it skips its
tick. While a pass runs, a keeper task pushes the lock's expiry forward, so
a slow pass never outlives its lock.
"""

from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager, suppress
from typing import AsyncContextManager, AsyncIterator, Protocol

import redis.asyncio as aioredis
from redis.exceptions import LockError, RedisError

from app.utils.logging import get_logger

logger = get_logger(__name__)

PASS_LOCK_NAME = "procrastinator:dispatch-pass"


class PassLock(Protocol):
    def hold(self) -> AsyncContextManager[bool]:
        ...


class RedisPassLock:
    """Non-blocking Redis lock held for the length of one pass."""

    def __init__(self, client: aioredis.Redis, *, name: str = PASS_LOCK_NAME, timeout: float = 300.0):
        if timeout <= 0:
            raise ValueError("timeout must be positive")
        self._client = client
        self.name = name
        self.timeout = timeout

    @classmethod
    def from_url(cls, url: str, *, timeout: float) -> "RedisPassLock":
        return cls(aioredis.Redis.from_url(url), timeout=timeout)

    @property
    def renew_interval(self) -> float:
        return self.timeout / 3

    @asynccontextmanager
    async def hold(self) -> AsyncIterator[bool]:
        """Yield True while holding the lock, False if another process has it."""
        lock = self._client.lock(self.name, timeout=self.timeout, blocking=False)
        if not await lock.acquire():
            yield False
            return

        keeper = asyncio.create_task(self._keep_alive(lock))
        try:
            yield True
        finally:
            keeper.cancel()
            with suppress(asyncio.CancelledError):
                await keeper
            try:
                await lock.release()
            except LockError:
                logger.warning("dispatch_pass_lock_expired", lock=self.name)

    async def _keep_alive(self, lock) -> None:
        while True:
            await asyncio.sleep(self.renew_interval)
            try:
                # resets the expiry to the full timeout
                await lock.reacquire()
            except LockError:
                logger.error("dispatch_pass_lock_lost", lock=self.name)
                return
            except RedisError as exc:
                logger.warning("dispatch_pass_lock_renew_failed", lock=self.name, error=str(exc))

    async def aclose(self) -> None:
        await self._client.aclose()
