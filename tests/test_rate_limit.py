from __future__ import annotations

import time

import anyio
import pytest

from checklist.infra.rate_limit import BucketRegistry
from checklist.infra.rate_limit import TokenBucket
from checklist.infra.rate_limit import random_jitter


class FakeClock:
    """假时钟：sleep 只推进时间并记录时长，不真的睡。"""

    def __init__(self, start: float = 0.0) -> None:
        self.now = start
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


def _no_jitter() -> float:
    return 0.0


@pytest.mark.anyio
async def test_full_bucket_grants_capacity_without_waiting_then_waits_one_interval() -> None:
    clock = FakeClock()
    bucket = TokenBucket(capacity=5, refill_rate=5, clock=clock, sleep=clock.sleep, jitter=_no_jitter)

    for _ in range(5):
        await bucket.acquire()
    assert clock.sleeps == [0.0] * 5

    await bucket.acquire()
    assert clock.sleeps[5] == pytest.approx(0.2)
    assert clock.sleeps[6:] == [0.0]
    assert bucket.tokens >= 0


@pytest.mark.anyio
async def test_wait_includes_jitter() -> None:
    clock = FakeClock()
    bucket = TokenBucket(capacity=1, refill_rate=2, clock=clock, sleep=clock.sleep, jitter=lambda: 0.1)

    await bucket.acquire()
    await bucket.acquire()
    assert clock.sleeps[0] == pytest.approx(0.1)
    # 第一次 jitter 期间已经补了 0.2 个 token，还差 0.8 个 -> 0.4s
    assert clock.sleeps[1] == pytest.approx(0.4 + 0.1)


def test_refill_is_capped_at_capacity() -> None:
    clock = FakeClock()
    bucket = TokenBucket(capacity=3, refill_rate=1, clock=clock, sleep=clock.sleep, jitter=_no_jitter)
    bucket.tokens = 0.5
    clock.now += 3600
    bucket.refill()
    assert bucket.tokens == 3.0


def test_refill_ignores_clock_going_backwards() -> None:
    clock = FakeClock()
    bucket = TokenBucket(capacity=3, refill_rate=1, clock=clock, sleep=clock.sleep, jitter=_no_jitter)
    bucket.tokens = 1.0
    clock.now -= 10
    bucket.refill()
    assert bucket.tokens == 1.0


def test_bucket_rejects_invalid_parameters() -> None:
    with pytest.raises(ValueError):
        TokenBucket(capacity=0, refill_rate=1)
    with pytest.raises(ValueError):
        TokenBucket(capacity=1, refill_rate=0)


def test_random_jitter_stays_in_range() -> None:
    jitter = random_jitter(0.25)
    values = [jitter() for _ in range(200)]
    assert all(0.0 <= v <= 0.25 for v in values)


def test_registry_creates_one_bucket_per_caller() -> None:
    registry = BucketRegistry(global_rate=5, per_caller_rate=2)
    a = registry.for_caller("alice")
    assert registry.for_caller("alice") is a
    assert registry.for_caller("bob") is not a
    assert registry.for_caller(None) is registry.for_caller("anonymous")
    assert a.capacity == 2
    assert registry.global_bucket.capacity == 5


@pytest.mark.anyio
async def test_registry_acquire_debits_global_and_caller_bucket() -> None:
    clock = FakeClock()
    registry = BucketRegistry(global_rate=5, per_caller_rate=2, clock=clock, sleep=clock.sleep, jitter=_no_jitter)

    await registry.acquire("alice")

    assert registry.global_bucket.tokens == 4
    assert registry.for_caller("alice").tokens == 1
    assert registry.for_caller("bob").tokens == 2


@pytest.mark.anyio
async def test_one_caller_waiting_does_not_block_another() -> None:
    registry = BucketRegistry(global_rate=100, per_caller_rate=2, jitter=_no_jitter)
    finished: dict[str, float] = {}
    start = time.monotonic()

    async def busy_user() -> None:
        for _ in range(3):
            await registry.acquire("alice")
        finished["alice"] = time.monotonic() - start

    async def other_user() -> None:
        await anyio.sleep(0.05)
        await registry.acquire("bob")
        finished["bob"] = time.monotonic() - start

    async with anyio.create_task_group() as tg:
        tg.start_soon(busy_user)
        tg.start_soon(other_user)

    assert finished["alice"] >= 0.4
    assert finished["bob"] < finished["alice"]
    assert finished["bob"] < 0.3
