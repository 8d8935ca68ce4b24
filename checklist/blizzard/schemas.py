"""
Blizzard profile API response schemas + 本服务对外的请求/响应模型（Pydantic）。

说明：
- 字段只覆盖同步功能需要的子集，其余字段忽略
- Blizzard 返回的嵌套对象经常缺字段，所以上游模型基本都是可选字段
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class NamedRef(BaseModel):
    name: str | None = None
    slug: str | None = None


class BlizzardCharacter(BaseModel):
    id: int | None = None
    name: str
    level: int | None = None
    realm: NamedRef | None = None
    playable_class: NamedRef | None = None


class BlizzardWowAccount(BaseModel):
    characters: list[BlizzardCharacter] = Field(default_factory=list)


class BlizzardAccountProfile(BaseModel):
    """GET /profile/user/wow"""

    wow_accounts: list[BlizzardWowAccount] = Field(default_factory=list)


class EquippedItem(BaseModel):
    item: NamedRef | None = None


class BlizzardEquipment(BaseModel):
    """GET /profile/wow/character/{realm}/{name}/equipment"""

    equipped_items: list[EquippedItem] = Field(default_factory=list)


class ReputationStanding(BaseModel):
    name: str | None = None
    value: int = 0
    max: int = 0
    tier: int = 0


class BlizzardReputation(BaseModel):
    faction: NamedRef | None = None
    standing: ReputationStanding | None = None


class BlizzardReputations(BaseModel):
    """GET /profile/wow/character/{realm}/{name}/reputations"""

    reputations: list[BlizzardReputation] = Field(default_factory=list)


class ServiceModel(BaseModel):
    """本服务对外的 JSON 用 camelCase（前端约定），Python 侧仍用 snake_case 字段名。"""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class CharacterSummary(ServiceModel):
    id: int | None = None
    name: str
    level: int | None = None
    realm: str
    realm_slug: str
    playable_class: str


class CharacterListResponse(ServiceModel):
    characters: list[CharacterSummary]


class SyncRequest(ServiceModel):
    """
    同步请求体。

    region/locale/namespace 不传时使用服务端默认配置。
    """

    region: str | None = None
    locale: str | None = None
    namespace: str | None = None
    realm_slug: str = ""
    character_name: str = ""


class ReputationSummary(ServiceModel):
    name: str
    standing_name: str
    standing_value: int
    standing_max: int
    standing_tier: int


class SyncError(ServiceModel):
    endpoint: str
    status: int | None = None
    message: str


class SyncResult(ServiceModel):
    equipment_items: list[str]
    reputations: list[ReputationSummary]
    pvp_summary: dict[str, Any] | None
    errors: list[SyncError]
