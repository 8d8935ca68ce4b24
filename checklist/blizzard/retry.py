"""
带重试的 HTTP 执行器。

约定：
- 429 / 5xx：指数退避 + 抖动后重试，最多 `max_attempts` 次
- 重试用完：把最后一次的 response 原样返回（由调用方解读状态码）
- Classic 变体下的 403/404：立即返回，不消耗重试
- 其它状态码：立即返回
- HTTP 层面的失败永远不抛异常，状态码就是数据
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

import anyio
import httpx

from checklist.blizzard.classifier import is_endpoint_unavailable
from checklist.infra.rate_limit import Jitter
from checklist.infra.rate_limit import Sleep
from checklist.infra.rate_limit import random_jitter

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RetryPolicy:
    max_attempts: int = 4
    backoff_base_seconds: float = 1.0
    max_backoff_seconds: float = 8.0
    jitter_seconds: float = 0.25


def is_retryable_status(status: int) -> bool:
    return status == 429 or 500 <= status <= 599


def backoff_delay(attempt: int, policy: RetryPolicy) -> float:
    """第 attempt 次失败后的基础等待时间（不含抖动）：base * 2^(attempt-1)，封顶 max_backoff。"""
    return min(policy.backoff_base_seconds * 2 ** (attempt - 1), policy.max_backoff_seconds)


async def fetch_with_retry(
    http_client: httpx.AsyncClient,
    request: httpx.Request,
    policy: RetryPolicy,
    namespace: str | None = None,
    sleep: Sleep = anyio.sleep,
    jitter: Jitter | None = None,
) -> httpx.Response:
    jitter = jitter or random_jitter(policy.jitter_seconds)
    url = str(request.url)
    attempt = 0
    while True:
        attempt += 1
        response = await http_client.send(request)
        status = response.status_code

        if is_retryable_status(status):
            if attempt >= policy.max_attempts:
                logger.warning(f"Giving up on {request.method} {url} after {attempt} attempts: status={status}")
                return response
            delay = backoff_delay(attempt, policy) + jitter()
            logger.warning(
                f"Retryable status {status} from {request.method} {url} "
                f"(attempt {attempt}/{policy.max_attempts}), waiting {delay:.2f}s"
            )
            await sleep(delay)
            continue

        if is_endpoint_unavailable(status=status, url=url, namespace=namespace):
            logger.info(f"Endpoint unavailable for this data variant: {url} status={status}")
        return response
