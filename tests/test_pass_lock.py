import asyncio

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import LockNotOwnedError

from app.services.pass_lock import PASS_LOCK_NAME, RedisPassLock


class FakeLock:
    def __init__(self, available=True, expire_on_release=False, renew_errors=()):
        self.available = available
        self.expire_on_release = expire_on_release
        self.renew_errors = list(renew_errors)
        self.renewals = 0
        self.released = False

    async def acquire(self):
        return self.available

    async def reacquire(self):
        self.renewals += 1
        if self.renew_errors:
            raise self.renew_errors.pop(0)
        return True

    async def release(self):
        if self.expire_on_release:
            raise LockNotOwnedError("expired")
        self.released = True


class FakeRedis:
    def __init__(self, lock):
        self._lock = lock
        self.lock_args = None
        self.closed = False

    def lock(self, name, **kwargs):
        self.lock_args = (name, kwargs)
        return self._lock

    async def aclose(self):
        self.closed = True


@pytest.mark.asyncio
async def test_hold_takes_non_blocking_lock_and_releases():
    lock = FakeLock()
    client = FakeRedis(lock)

    async with RedisPassLock(client, timeout=30).hold() as acquired:
        assert acquired is True
        assert not lock.released

    assert lock.released
    name, kwargs = client.lock_args
    assert name == PASS_LOCK_NAME
    assert kwargs == {"timeout": 30, "blocking": False}


@pytest.mark.asyncio
async def test_hold_yields_false_when_lock_is_taken():
    lock = FakeLock(available=False)

    async with RedisPassLock(FakeRedis(lock)).hold() as acquired:
        assert acquired is False

    assert not lock.released


@pytest.mark.asyncio
async def test_lock_is_renewed_while_pass_runs():
    lock = FakeLock()
    guard = RedisPassLock(FakeRedis(lock), timeout=0.03)

    async with guard.hold():
        await asyncio.sleep(0.1)
    renewed = lock.renewals

    assert renewed >= 2
    await asyncio.sleep(0.05)
    assert lock.renewals == renewed


@pytest.mark.asyncio
async def test_renewal_survives_a_redis_hiccup():
    lock = FakeLock(renew_errors=[RedisConnectionError("reset")])

    async with RedisPassLock(FakeRedis(lock), timeout=0.03).hold():
        await asyncio.sleep(0.1)

    assert lock.renewals >= 2
    assert lock.released


@pytest.mark.asyncio
async def test_lost_or_expired_lock_does_not_break_the_pass():
    lock = FakeLock(expire_on_release=True, renew_errors=[LockNotOwnedError("gone")])

    async with RedisPassLock(FakeRedis(lock), timeout=0.03).hold() as acquired:
        assert acquired
        await asyncio.sleep(0.05)

    # renewal stops once the lock is lost
    assert lock.renewals == 1


@pytest.mark.asyncio
async def test_aclose_closes_client():
    client = FakeRedis(FakeLock())
    await RedisPassLock(client).aclose()
    assert client.closed


def test_rejects_non_positive_timeout():
    with pytest.raises(ValueError):
        RedisPassLock(FakeRedis(FakeLock()), timeout=0)
