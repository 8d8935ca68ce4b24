"""
限流：令牌桶（Token Bucket）+ 按调用方划分的桶注册表。

为什么需要这个模块：
- Blizzard API 有全局配额，超了会直接 429
- 同一个用户连点同步按钮，不能把其他用户的配额也吃光

约定：
- 一个请求必须同时拿到「全局桶」和「调用方桶」各 1 个 token 才能发出
- token 数量永远不会为负，也不会超过 capacity
- 时钟/sleep/jitter 都可注入，便于单元测试（不真的睡）
"""

from __future__ import annotations

import logging
import random
import time
from collections.abc import Awaitable, Callable

import anyio

logger = logging.getLogger(__name__)

DEFAULT_JITTER_SECONDS = 0.25
ANONYMOUS_CALLER_ID = "anonymous"

Clock = Callable[[], float]
Sleep = Callable[[float], Awaitable[None]]
Jitter = Callable[[], float]


def random_jitter(max_seconds: float = DEFAULT_JITTER_SECONDS) -> Jitter:
    """返回一个 0 ~ max_seconds 的随机抖动函数，用来打散同一时刻醒来的请求。"""

    def jitter() -> float:
        return random.uniform(0.0, max_seconds)

    return jitter


class TokenBucket:
    """
    单个令牌桶。

    - capacity: 桶容量（同时也是突发上限）
    - refill_rate: 每秒补充多少 token
    - 初始是满的
    """

    def __init__(
        self,
        capacity: float,
        refill_rate: float,
        clock: Clock = time.monotonic,
        sleep: Sleep = anyio.sleep,
        jitter: Jitter | None = None,
    ) -> None:
        if capacity <= 0:
            raise ValueError("capacity must be > 0")
        if refill_rate <= 0:
            raise ValueError("refill_rate must be > 0")
        self.capacity = float(capacity)
        self.refill_rate = float(refill_rate)
        self.tokens = float(capacity)
        self._clock = clock
        self._sleep = sleep
        self._jitter = jitter or random_jitter()
        self.last_refill = clock()

    def refill(self) -> None:
        """按流逝时间补 token（纯函数：只依赖 now - last_refill）。"""
        now = self._clock()
        elapsed = now - self.last_refill
        if elapsed <= 0:
            return
        self.tokens = min(self.capacity, self.tokens + elapsed * self.refill_rate)
        self.last_refill = now

    async def acquire(self) -> None:
        """
        挂起直到拿到 1 个 token。

        注意：
        - refill -> 判断 -> 扣减 之间没有 await，在单个事件循环里是原子的
        - 拿到 token 后仍会随机 sleep 一小段，避免一批请求同时打出去
        """
        while True:
            self.refill()
            if self.tokens >= 1:
                self.tokens -= 1
                await self._sleep(self._jitter())
                return
            missing = 1 - self.tokens
            wait_seconds = missing / self.refill_rate + self._jitter()
            logger.debug(f"Token bucket empty, waiting {wait_seconds:.3f}s")
            await self._sleep(wait_seconds)


class BucketRegistry:
    """
    全局桶 + 每个调用方一个桶。

    调用方的桶第一次用到时创建，进程内永不删除。
    """

    def __init__(
        self,
        global_rate: float,
        per_caller_rate: float,
        clock: Clock = time.monotonic,
        sleep: Sleep = anyio.sleep,
        jitter: Jitter | None = None,
    ) -> None:
        self._per_caller_rate = per_caller_rate
        self._clock = clock
        self._sleep = sleep
        self._jitter = jitter
        self.global_bucket = self._new_bucket(global_rate)
        self._caller_buckets: dict[str, TokenBucket] = {}

    def _new_bucket(self, rate: float) -> TokenBucket:
        return TokenBucket(capacity=rate, refill_rate=rate, clock=self._clock, sleep=self._sleep, jitter=self._jitter)

    def for_caller(self, caller_id: str | None) -> TokenBucket:
        key = caller_id or ANONYMOUS_CALLER_ID
        bucket = self._caller_buckets.get(key)
        if bucket is None:
            bucket = self._new_bucket(self._per_caller_rate)
            self._caller_buckets[key] = bucket
            logger.debug(f"Created rate limit bucket for caller {key}")
        return bucket

    async def acquire(self, caller_id: str | None) -> None:
        """同时向全局桶和调用方桶申请 token；两个都拿到才返回。"""
        caller_bucket = self.for_caller(caller_id)
        async with anyio.create_task_group() as tg:
            tg.start_soon(self.global_bucket.acquire)
            tg.start_soon(caller_bucket.acquire)
