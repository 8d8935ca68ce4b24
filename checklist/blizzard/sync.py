"""
角色数据同步（Blizzard -> 清单页面需要的扁平结构）。

职责：
- 列出账号下全部角色
- 拉取单个角色的装备 / 声望 / PvP 概况，单个接口失败不影响其它接口
"""

from __future__ import annotations

import logging
from typing import Any

from pydantic import BaseModel

from checklist.blizzard.client import BlizzardApiError
from checklist.blizzard.client import BlizzardClient
from checklist.blizzard.client import FetchOptions
from checklist.blizzard.schemas import BlizzardAccountProfile
from checklist.blizzard.schemas import BlizzardEquipment
from checklist.blizzard.schemas import BlizzardReputations
from checklist.blizzard.schemas import CharacterSummary
from checklist.blizzard.schemas import ReputationSummary
from checklist.blizzard.schemas import SyncError
from checklist.blizzard.schemas import SyncResult

logger = logging.getLogger(__name__)

PROFILE_TTL_SECONDS = 300
EQUIPMENT_TTL_SECONDS = 600
REPUTATIONS_TTL_SECONDS = 900
PVP_SUMMARY_TTL_SECONDS = 900


async def list_characters(
    client: BlizzardClient,
    api_base_url: str,
    locale: str,
    namespace: str,
    access_token: str,
    token_user_id: str,
) -> list[CharacterSummary]:
    """拉取账号 profile，拍平所有 wow 账号下的角色，按名字排序（不区分大小写）。"""
    profile = await client.get_cached(
        f"{api_base_url}/profile/user/wow",
        PROFILE_TTL_SECONDS,
        FetchOptions(namespace=namespace, locale=locale, access_token=access_token, token_user_id=token_user_id),
        response_model=BlizzardAccountProfile,
    )
    characters = [
        CharacterSummary(
            id=character.id,
            name=character.name,
            level=character.level,
            realm=(character.realm.name if character.realm else None) or "Unknown",
            realm_slug=(character.realm.slug if character.realm else None) or "unknown",
            playable_class=(character.playable_class.name if character.playable_class else None) or "",
        )
        for account in profile.wow_accounts
        for character in account.characters
    ]
    return sorted(characters, key=lambda c: c.name.casefold())


async def _safe_fetch(
    client: BlizzardClient,
    url: str,
    ttl_seconds: int,
    options: FetchOptions,
    response_model: type[BaseModel] | None,
    endpoint: str,
    errors: list[SyncError],
) -> Any:
    """
    单接口容错：Blizzard 失败记到 errors 里返回 None，其它异常照常抛出。
    """
    try:
        return await client.get_cached(url, ttl_seconds, options, response_model=response_model)
    except BlizzardApiError as exc:
        logger.warning(f"Sync endpoint {endpoint} failed: status={exc.status} unavailable={exc.endpoint_unavailable}")
        errors.append(
            SyncError(
                endpoint=endpoint,
                status=exc.status,
                message="Classic endpoint unavailable" if exc.endpoint_unavailable else "Request failed",
            )
        )
        return None


async def sync_character(
    client: BlizzardClient,
    api_base_url: str,
    realm_slug: str,
    character_name: str,
    locale: str,
    namespace: str,
    access_token: str,
    token_user_id: str,
) -> SyncResult:
    if not realm_slug or not character_name:
        raise ValueError("realm_slug and character_name are required")

    base_url = f"{api_base_url}/profile/wow/character/{realm_slug}/{character_name.lower()}"
    options = FetchOptions(namespace=namespace, locale=locale, access_token=access_token, token_user_id=token_user_id)
    errors: list[SyncError] = []

    equipment = await _safe_fetch(
        client, f"{base_url}/equipment", EQUIPMENT_TTL_SECONDS, options, BlizzardEquipment, "equipment", errors
    )
    reputations = await _safe_fetch(
        client, f"{base_url}/reputations", REPUTATIONS_TTL_SECONDS, options, BlizzardReputations, "reputations", errors
    )
    pvp_summary = await _safe_fetch(
        client, f"{base_url}/pvp-summary", PVP_SUMMARY_TTL_SECONDS, options, None, "pvp-summary", errors
    )

    equipment_items = [
        slot.item.name for slot in (equipment.equipped_items if equipment else []) if slot.item and slot.item.name
    ]
    reputation_list = [
        ReputationSummary(
            name=rep.faction.name,
            standing_name=(rep.standing.name if rep.standing else None) or "",
            standing_value=rep.standing.value if rep.standing else 0,
            standing_max=rep.standing.max if rep.standing else 0,
            standing_tier=rep.standing.tier if rep.standing else 0,
        )
        for rep in (reputations.reputations if reputations else [])
        if rep.faction and rep.faction.name
    ]
    return SyncResult(
        equipment_items=equipment_items,
        reputations=reputation_list,
        pvp_summary=pvp_summary if isinstance(pvp_summary, dict) else None,
        errors=errors,
    )
