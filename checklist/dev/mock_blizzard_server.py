"""
本地 Mock Blizzard profile API server（只覆盖同步功能用到的接口）。

用途：
- 没有 Battle.net 账号/token 的情况下，本地跑通：
  characters -> sync（equipment / reputations / pvp-summary）
- Classic namespace 下 pvp-summary 固定返回 404，用来观察负缓存
- 可以通过 `/__debug__/fail` 让接下来 N 次请求返回 429/5xx，观察重试退避

启动：
  python -m checklist.dev.mock_blizzard_server
然后把 `BLIZZARD_API_BASE_URL=http://127.0.0.1:9003` 配给主服务
"""

from __future__ import annotations

from typing import Any

import uvicorn
from fastapi import FastAPI
from fastapi import Query
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field


class ForcedFailure(BaseModel):
    status: int = Field(default=429, ge=400, le=599)
    count: int = Field(default=1, ge=0)


app = FastAPI(title="Mock Blizzard API", version="0.1.0")

_requests: list[dict[str, object]] = []
_forced: dict[str, int] = {"status": 429, "remaining": 0}


def _default_account_profile() -> dict[str, object]:
    return {
        "wow_accounts": [
            {
                "characters": [
                    {
                        "id": 101,
                        "name": "Thrall",
                        "level": 60,
                        "realm": {"name": "Firemaw", "slug": "firemaw"},
                        "playable_class": {"name": "Shaman"},
                    },
                    {
                        "id": 102,
                        "name": "jaina",
                        "level": 58,
                        "realm": {"name": "Golemagg", "slug": "golemagg"},
                        "playable_class": {"name": "Mage"},
                    },
                ]
            }
        ]
    }


def _record(path: str, namespace: str | None) -> JSONResponse | None:
    _requests.append({"path": path, "namespace": namespace})
    if _forced["remaining"] > 0:
        _forced["remaining"] -= 1
        return JSONResponse(status_code=_forced["status"], content={"code": _forced["status"]})
    return None


@app.get("/profile/user/wow")
async def account_profile(namespace: str | None = Query(default=None)) -> Any:
    forced = _record("/profile/user/wow", namespace)
    return forced or _default_account_profile()


@app.get("/profile/wow/character/{realm_slug}/{name}/equipment")
async def equipment(realm_slug: str, name: str, namespace: str | None = Query(default=None)) -> Any:
    forced = _record(f"/profile/wow/character/{realm_slug}/{name}/equipment", namespace)
    return forced or {
        "equipped_items": [
            {"item": {"name": "Lionheart Helm"}},
            {"item": {"name": "Onyxia Tooth Pendant"}},
            {"item": {}},
        ]
    }


@app.get("/profile/wow/character/{realm_slug}/{name}/reputations")
async def reputations(realm_slug: str, name: str, namespace: str | None = Query(default=None)) -> Any:
    forced = _record(f"/profile/wow/character/{realm_slug}/{name}/reputations", namespace)
    return forced or {
        "reputations": [
            {"faction": {"name": "Argent Dawn"}, "standing": {"name": "Honored", "value": 3200, "max": 12000, "tier": 4}},
            {"faction": {"name": "Cenarion Circle"}, "standing": {"name": "Friendly", "value": 900, "max": 6000, "tier": 3}},
        ]
    }


@app.get("/profile/wow/character/{realm_slug}/{name}/pvp-summary")
async def pvp_summary(realm_slug: str, name: str, namespace: str | None = Query(default=None)) -> Any:
    forced = _record(f"/profile/wow/character/{realm_slug}/{name}/pvp-summary", namespace)
    if forced is not None:
        return forced
    if namespace and "classic" in namespace.lower():
        return JSONResponse(status_code=404, content={"code": 404, "detail": "Not Found"})
    return JSONResponse(
        content={"honor_level": 12, "pvp_map_statistics": []},
        headers={"Cache-Control": "max-age=120"},
    )


@app.post("/__debug__/fail")
async def debug_fail(req: ForcedFailure) -> dict[str, int]:
    _forced["status"] = req.status
    _forced["remaining"] = req.count
    return {"status": req.status, "remaining": req.count}


@app.get("/__debug__/requests")
async def debug_requests() -> dict[str, object]:
    return {"count": len(_requests), "requests": _requests}


def main() -> None:
    uvicorn.run(app, host="127.0.0.1", port=9003)


if __name__ == "__main__":
    main()
