"""
FastAPI 服务入口。

这里做三件事：
- 加载配置（环境变量 -> Pydantic 校验）
- 组装外部依赖（HTTP Client / BlizzardClient：两级缓存 + 令牌桶）
- 装配路由（health + blizzard 同步）

注意：
- 业务流程不写在这里（由 `blizzard/sync.py` 负责）
- `httpx.AsyncClient` 和 `BlizzardClient` 整个进程只有一份，所有请求共享限流与缓存
"""

from __future__ import annotations

import logging
import os
from collections.abc import AsyncIterator, Mapping
from contextlib import asynccontextmanager

import httpx
from fastapi import FastAPI

from checklist.blizzard.client import build_blizzard_client
from checklist.blizzard.routes import build_blizzard_router
from checklist.config import load_config_from_env


def build_app(environ: Mapping[str, str] | None = None) -> FastAPI:
    """创建并返回 FastAPI app（便于测试/复用）。"""

    # 1) 配置：非法值会直接抛错，启动失败（这是期望行为）
    config = load_config_from_env(os.environ if environ is None else environ)
    logging.basicConfig(level=config.log_level)

    # 2) 可复用的 HTTP client：所有 Blizzard 调用共用连接池
    http_client = httpx.AsyncClient(timeout=httpx.Timeout(config.http_timeout_seconds))

    # 3) 唯一的出站入口：缓存 / 令牌桶都挂在它身上
    blizzard_client = build_blizzard_client(config=config, http_client=http_client)

    @asynccontextmanager
    async def lifespan(_: FastAPI) -> AsyncIterator[None]:
        yield
        await http_client.aclose()

    app = FastAPI(title="Progress Checklist Sync", version="0.1.0", lifespan=lifespan)

    @app.get("/health")
    async def health() -> dict[str, str]:
        """健康检查：用于 k8s / LB 探活。"""
        return {"status": "ok"}

    app.include_router(build_blizzard_router(config=config.blizzard, client=blizzard_client))
    return app


# Uvicorn 默认会从模块级变量 `app` 读取 ASGI 应用
app = build_app()
