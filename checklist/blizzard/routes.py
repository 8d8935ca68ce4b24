"""
Blizzard 同步相关的 HTTP 路由。

职责：
- 从 `Authorization: Bearer` 取用户的 access token（登录流程不在本服务）
- 从 `X-Token-User-Id` 取调用方身份（限流桶 + 缓存分区），缺省 anonymous
- 调用 `sync.py` 的业务函数，把 `BlizzardApiError` 映射成 HTTP 状态码
"""

from __future__ import annotations

from fastapi import APIRouter
from fastapi import Header
from fastapi import HTTPException

from checklist.blizzard.client import BlizzardApiError
from checklist.blizzard.client import BlizzardClient
from checklist.blizzard.schemas import CharacterListResponse
from checklist.blizzard.schemas import SyncRequest
from checklist.blizzard.schemas import SyncResult
from checklist.blizzard.sync import list_characters
from checklist.blizzard.sync import sync_character
from checklist.config import BlizzardConfig
from checklist.infra.rate_limit import ANONYMOUS_CALLER_ID


def _bearer_token(authorization: str | None) -> str:
    if not authorization:
        return ""
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer":
        return ""
    return token.strip()


def _require_token(authorization: str | None) -> str:
    token = _bearer_token(authorization)
    if not token:
        raise HTTPException(status_code=401, detail="Missing Blizzard access token.")
    return token


def _upstream_error_status(exc: BlizzardApiError) -> int:
    """上游给的 4xx/5xx 原样透传；没有响应（0）或 2xx 但内容不可用时一律 502。"""
    if 400 <= exc.status <= 599:
        return exc.status
    return 502


def build_blizzard_router(config: BlizzardConfig, client: BlizzardClient) -> APIRouter:
    router = APIRouter(prefix="/api/blizzard")

    @router.get("/characters")
    async def characters(
        region: str | None = None,
        locale: str | None = None,
        namespace: str | None = None,
        authorization: str | None = Header(default=None),
        x_token_user_id: str | None = Header(default=None, alias="X-Token-User-Id"),
    ) -> CharacterListResponse:
        access_token = _require_token(authorization)
        try:
            result = await list_characters(
                client=client,
                api_base_url=config.api_base_url(region),
                locale=locale or config.default_locale,
                namespace=namespace or config.default_namespace,
                access_token=access_token,
                token_user_id=x_token_user_id or ANONYMOUS_CALLER_ID,
            )
        except BlizzardApiError as exc:
            raise HTTPException(status_code=_upstream_error_status(exc), detail="Failed to load characters.") from exc
        return CharacterListResponse(characters=result)

    @router.post("/sync")
    async def sync(
        payload: SyncRequest,
        authorization: str | None = Header(default=None),
        x_token_user_id: str | None = Header(default=None, alias="X-Token-User-Id"),
    ) -> SyncResult:
        access_token = _require_token(authorization)
        if not payload.realm_slug or not payload.character_name:
            raise HTTPException(status_code=400, detail="Missing character selection.")
        return await sync_character(
            client=client,
            api_base_url=config.api_base_url(payload.region),
            realm_slug=payload.realm_slug,
            character_name=payload.character_name,
            locale=payload.locale or config.default_locale,
            namespace=payload.namespace or config.default_namespace,
            access_token=access_token,
            token_user_id=x_token_user_id or ANONYMOUS_CALLER_ID,
        )

    return router
