"""
应用配置加载。

设计目标：
- **有默认值**：不配置任何环境变量也能本地跑起来（只是同步功能需要用户自己的 access token）
- **类型安全**：使用 Pydantic 校验数值范围，非法值启动时直接报错
- **可测试**：核心加载函数接收 `environ` 显式输入，便于单元测试
"""

from __future__ import annotations

from collections.abc import Mapping
from pathlib import Path

from pydantic import BaseModel, Field, field_validator

from checklist.blizzard.retry import RetryPolicy

LOG_LEVELS = ("CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG")


class BlizzardConfig(BaseModel):
    """Blizzard profile API 相关配置。"""

    region: str = "eu"
    api_base_url_template: str = "https://{region}.api.blizzard.com"
    default_locale: str = "en_US"
    default_namespace: str = "profile-classic1"

    def api_base_url(self, region: str | None = None) -> str:
        return self.api_base_url_template.format(region=region or self.region).rstrip("/")


class CacheConfig(BaseModel):
    cache_dir: Path = Path(".cache")
    file_name: str = "blizzard-cache.json"
    max_memory_entries: int = Field(default=300, gt=0)


class RateLimitConfig(BaseModel):
    """全局与单用户的每秒请求数（同时也是桶容量）。"""

    global_rps: float = Field(default=5, gt=0)
    per_user_rps: float = Field(default=2, gt=0)


class RetryConfig(BaseModel):
    max_attempts: int = Field(default=4, ge=1)
    backoff_base_ms: int = Field(default=1000, ge=0)
    max_backoff_ms: int = Field(default=8000, ge=0)
    jitter_ms: int = Field(default=250, ge=0)

    def to_policy(self) -> RetryPolicy:
        return RetryPolicy(
            max_attempts=self.max_attempts,
            backoff_base_seconds=self.backoff_base_ms / 1000,
            max_backoff_seconds=self.max_backoff_ms / 1000,
            jitter_seconds=self.jitter_ms / 1000,
        )


class AppConfig(BaseModel):
    blizzard: BlizzardConfig = Field(default_factory=BlizzardConfig)
    cache: CacheConfig = Field(default_factory=CacheConfig)
    rate_limit: RateLimitConfig = Field(default_factory=RateLimitConfig)
    retry: RetryConfig = Field(default_factory=RetryConfig)
    http_timeout_seconds: float = Field(default=30.0, gt=0)
    log_level: str = "INFO"

    @field_validator("log_level")
    @classmethod
    def _known_log_level(cls, value: str) -> str:
        level = value.strip().upper()
        if level not in LOG_LEVELS:
            raise ValueError(f"LOG_LEVEL must be one of {', '.join(LOG_LEVELS)}")
        return level


def _pick(environ: Mapping[str, str], mapping: Mapping[str, str]) -> dict[str, str]:
    """只取出已设置且非空的环境变量，交给 Pydantic 用默认值补齐其余字段。"""
    return {field: environ[key] for key, field in mapping.items() if environ.get(key)}


def load_config_from_env(environ: Mapping[str, str]) -> AppConfig:
    """
    从环境变量加载并校验配置。

    - **输入**：`environ`（例如 `os.environ`）
    - **输出**：`AppConfig`
    - **失败**：数值非法时抛 `ValueError`（Pydantic ValidationError 是它的子类）
    """
    blizzard = BlizzardConfig(
        **_pick(
            environ,
            {
                "BATTLENET_REGION": "region",
                "BLIZZARD_API_BASE_URL": "api_base_url_template",
                "BLIZZARD_DEFAULT_LOCALE": "default_locale",
                "BLIZZARD_DEFAULT_NAMESPACE": "default_namespace",
            },
        )
    )
    cache = CacheConfig(
        **_pick(
            environ,
            {
                "BLIZZARD_CACHE_DIR": "cache_dir",
                "BLIZZARD_CACHE_FILE": "file_name",
                "BLIZZARD_CACHE_MAX_ENTRIES": "max_memory_entries",
            },
        )
    )
    rate_limit = RateLimitConfig(
        **_pick(environ, {"BLIZZARD_GLOBAL_RPS": "global_rps", "BLIZZARD_PER_USER_RPS": "per_user_rps"})
    )
    retry = RetryConfig(
        **_pick(
            environ,
            {
                "BLIZZARD_MAX_ATTEMPTS": "max_attempts",
                "BLIZZARD_BACKOFF_BASE_MS": "backoff_base_ms",
                "BLIZZARD_MAX_BACKOFF_MS": "max_backoff_ms",
                "BLIZZARD_JITTER_MS": "jitter_ms",
            },
        )
    )
    if retry.max_backoff_ms < retry.backoff_base_ms:
        raise ValueError("BLIZZARD_MAX_BACKOFF_MS must be >= BLIZZARD_BACKOFF_BASE_MS")

    # 交给 Pydantic 做类型校验（例如数值范围）
    return AppConfig(
        blizzard=blizzard,
        cache=cache,
        rate_limit=rate_limit,
        retry=retry,
        **_pick(environ, {"HTTP_TIMEOUT_SECONDS": "http_timeout_seconds", "LOG_LEVEL": "log_level"}),
    )
