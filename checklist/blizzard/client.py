"""
Blizzard API 客户端（带限流 + 两级缓存 + 重试）。

所有对 Blizzard 的出站请求都走 `BlizzardClient.get_cached`：
cache 命中 -> 直接返回；miss -> 拿 token（全局 + 调用方）-> 带重试请求 -> 判定失败类型 -> 写缓存

约定：
- 客户端显式构造（`build_blizzard_client`），缓存和桶注册表都归它所有，不用模块级全局变量
- 失败只有两种异常：`EndpointUnavailableError`（该数据变体下没有这个接口）和 `RequestFailedError`
- 相同请求并发时不做合并，每个请求各自消耗 token
"""

from __future__ import annotations

import logging
import re
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

import anyio
import httpx
from pydantic import BaseModel, ValidationError

from checklist.blizzard.classifier import is_endpoint_unavailable
from checklist.blizzard.retry import RetryPolicy
from checklist.blizzard.retry import fetch_with_retry
from checklist.config import AppConfig
from checklist.infra.cache import TwoTierCache
from checklist.infra.cache import build_two_tier_cache
from checklist.infra.rate_limit import ANONYMOUS_CALLER_ID
from checklist.infra.rate_limit import BucketRegistry
from checklist.infra.rate_limit import Jitter
from checklist.infra.rate_limit import Sleep
from checklist.infra.rate_limit import random_jitter

logger = logging.getLogger(__name__)

_MAX_AGE_PATTERN = re.compile(r"max-age=(\d+)", re.IGNORECASE)


class BlizzardApiError(RuntimeError):
    """Blizzard 请求失败。`endpoint_unavailable` 为 True 时前端应提示「该版本没有这项数据」。"""

    def __init__(self, message: str, status: int, endpoint_unavailable: bool = False) -> None:
        super().__init__(message)
        self.status = status
        self.endpoint_unavailable = endpoint_unavailable


class EndpointUnavailableError(BlizzardApiError):
    def __init__(self, status: int, url: str) -> None:
        super().__init__(f"Blizzard endpoint unavailable for this data variant (status {status}): {url}", status, True)


class RequestFailedError(BlizzardApiError):
    def __init__(self, message: str, status: int) -> None:
        super().__init__(message, status, False)


@dataclass(frozen=True)
class FetchOptions:
    """
    单次请求选项。

    - token_user_id: 选择调用方限流桶 + 缓存 key 分区；不传按 anonymous 处理
    - access_token: 有则以 Bearer 方式发送
    - headers: 调用方自定义头（最后合并，可覆盖默认头）
    """

    method: str = "GET"
    namespace: str | None = None
    locale: str | None = None
    token_user_id: str | None = None
    access_token: str | None = None
    headers: Mapping[str, str] | None = None


def with_query_params(url: str, namespace: str | None = None, locale: str | None = None) -> str:
    """
    补齐 namespace/locale 查询参数（已有的不覆盖），并按 key 排序，保证同一请求得到同一个 URL。
    """
    target = httpx.URL(url)
    params = target.params
    if namespace and "namespace" not in params:
        params = params.set("namespace", namespace)
    if locale and "locale" not in params:
        params = params.set("locale", locale)
    # 只按 key 排序，同名参数保持原有顺序
    normalized = httpx.QueryParams(sorted(params.multi_items(), key=lambda item: item[0]))
    return str(target.copy_with(params=normalized))


def build_cache_key(
    method: str,
    url: str,
    namespace: str | None = None,
    locale: str | None = None,
    token_user_id: str | None = None,
) -> str:
    return "::".join([method.upper(), url, namespace or "", locale or "", token_user_id or ANONYMOUS_CALLER_ID])


def resolve_ttl(headers: httpx.Headers, default_ttl: float) -> float:
    """优先使用服务端 `Cache-Control: max-age`，没有或不是数字时用调用方给的 TTL。"""
    cache_control = headers.get("cache-control")
    if not cache_control:
        return default_ttl
    match = _MAX_AGE_PATTERN.search(cache_control)
    if match is None:
        return default_ttl
    return int(match.group(1))


class BlizzardClient:
    """唯一的出站入口。每个进程构造一次，通过依赖注入传给路由/服务。"""

    def __init__(
        self,
        http_client: httpx.AsyncClient,
        cache: TwoTierCache,
        buckets: BucketRegistry,
        retry_policy: RetryPolicy | None = None,
        sleep: Sleep = anyio.sleep,
        jitter: Jitter | None = None,
    ) -> None:
        """
        - http_client: 复用的 httpx.AsyncClient
        - cache / buckets: 进程内共享状态，由本对象持有
        - sleep / jitter: 重试退避用，测试里可替换为不真的睡的实现
        """
        self._http_client = http_client
        self._cache = cache
        self._buckets = buckets
        self._retry_policy = retry_policy or RetryPolicy()
        self._sleep = sleep
        self._jitter = jitter

    @property
    def cache(self) -> TwoTierCache:
        return self._cache

    @property
    def buckets(self) -> BucketRegistry:
        return self._buckets

    def _headers(self, options: FetchOptions) -> dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if options.access_token:
            headers["Authorization"] = f"Bearer {options.access_token}"
        if options.headers:
            headers.update(options.headers)
        return headers

    async def get_cached(
        self,
        url: str,
        ttl_seconds: float,
        options: FetchOptions | None = None,
        response_model: type[BaseModel] | None = None,
    ) -> Any:
        """
        带缓存的 GET（或其它 method）。

        - 命中缓存：不限流、不发请求
        - 负缓存命中：直接抛 `EndpointUnavailableError`
        - 2xx：解析 JSON（传了 response_model 则做 schema 校验），按 max-age 或 ttl_seconds 写缓存
        - 其它：Classic 变体下的 403/404 写 2 倍 TTL 的负缓存后抛 `EndpointUnavailableError`，否则抛 `RequestFailedError`
        """
        options = options or FetchOptions()
        final_url = with_query_params(url, namespace=options.namespace, locale=options.locale)
        cache_key = build_cache_key(
            method=options.method,
            url=final_url,
            namespace=options.namespace,
            locale=options.locale,
            token_user_id=options.token_user_id,
        )

        cached = await self._cache.get(cache_key)
        if cached is not None:
            logger.debug(f"Cache hit: {cache_key}")
            if cached.unavailable_status is not None:
                raise EndpointUnavailableError(status=cached.unavailable_status, url=final_url)
            return _validate(cached.value, response_model, status=200, url=final_url)

        await self._buckets.acquire(options.token_user_id)

        logger.info(f"Blizzard request: {options.method} {final_url}")
        request = self._http_client.build_request(options.method, final_url, headers=self._headers(options))
        try:
            response = await fetch_with_retry(
                http_client=self._http_client,
                request=request,
                policy=self._retry_policy,
                namespace=options.namespace,
                sleep=self._sleep,
                jitter=self._jitter,
            )
        except httpx.HTTPError as exc:
            logger.error(f"Blizzard HTTP error: {exc}")
            raise RequestFailedError(f"Blizzard API request failed: {exc}", status=0) from exc

        status = response.status_code
        if not response.is_success:
            if is_endpoint_unavailable(status=status, url=final_url, namespace=options.namespace):
                await self._cache.set_negative(cache_key, status=status, ttl_seconds=ttl_seconds * 2)
                raise EndpointUnavailableError(status=status, url=final_url)
            raise RequestFailedError(f"Blizzard API request failed with status {status}", status=status)

        try:
            data = response.json()
        except ValueError as exc:
            logger.error(f"Invalid JSON from Blizzard API: {final_url}")
            raise RequestFailedError(f"Blizzard API returned invalid JSON: {exc}", status=status) from exc

        value = _validate(data, response_model, status=status, url=final_url)
        ttl = resolve_ttl(response.headers, ttl_seconds)
        await self._cache.set(cache_key, data, ttl_seconds=ttl)
        logger.info(f"Blizzard response cached: {final_url} ttl={ttl}s")
        return value


def _validate(data: Any, response_model: type[BaseModel] | None, status: int, url: str) -> Any:
    if response_model is None:
        return data
    try:
        return response_model.model_validate(data)
    except ValidationError as exc:
        logger.error(f"Schema validation failed for {url}: {exc}")
        raise RequestFailedError(f"Blizzard response does not match {response_model.__name__}: {exc}", status=status) from exc


def build_blizzard_client(config: AppConfig, http_client: httpx.AsyncClient) -> BlizzardClient:
    """按配置组装客户端：两级缓存 + 全局/单用户令牌桶 + 重试策略。"""
    cache = build_two_tier_cache(
        cache_dir=config.cache.cache_dir,
        file_name=config.cache.file_name,
        max_memory_entries=config.cache.max_memory_entries,
    )
    buckets = BucketRegistry(
        global_rate=config.rate_limit.global_rps,
        per_caller_rate=config.rate_limit.per_user_rps,
        jitter=random_jitter(config.retry.jitter_ms / 1000),
    )
    return BlizzardClient(http_client=http_client, cache=cache, buckets=buckets, retry_policy=config.retry.to_policy())
