from __future__ import annotations

from pathlib import Path

import httpx
from fastapi import FastAPI
from fastapi.testclient import TestClient

from checklist.blizzard.client import BlizzardClient
from checklist.blizzard.routes import build_blizzard_router
from checklist.config import BlizzardConfig
from checklist.infra.cache import build_two_tier_cache
from checklist.infra.rate_limit import BucketRegistry


def _no_jitter() -> float:
    return 0.0


def _app(tmp_path: Path, handler, seen: list[httpx.Request] | None = None) -> FastAPI:
    def recording(request: httpx.Request) -> httpx.Response:
        if seen is not None:
            seen.append(request)
        return handler(request)

    client = BlizzardClient(
        http_client=httpx.AsyncClient(transport=httpx.MockTransport(recording)),
        cache=build_two_tier_cache(cache_dir=tmp_path, file_name="cache.json", max_memory_entries=50),
        buckets=BucketRegistry(global_rate=100, per_caller_rate=100, jitter=_no_jitter),
        jitter=_no_jitter,
    )
    app = FastAPI()
    app.include_router(build_blizzard_router(config=BlizzardConfig(region="eu"), client=client))
    return app


def _profile(request: httpx.Request) -> httpx.Response:
    return httpx.Response(200, json={"wow_accounts": [{"characters": [{"id": 7, "name": "Thrall", "level": 60}]}]})


def test_characters_requires_bearer_token(tmp_path: Path) -> None:
    with TestClient(_app(tmp_path, _profile)) as client:
        response = client.get("/api/blizzard/characters")
    assert response.status_code == 401
    assert response.json() == {"detail": "Missing Blizzard access token."}


def test_characters_uses_defaults_and_caller_id(tmp_path: Path) -> None:
    seen: list[httpx.Request] = []
    with TestClient(_app(tmp_path, _profile, seen)) as client:
        response = client.get(
            "/api/blizzard/characters?region=us",
            headers={"Authorization": "Bearer tok", "X-Token-User-Id": "alice"},
        )

    assert response.status_code == 200
    assert response.json()["characters"][0]["name"] == "Thrall"
    sent = seen[0]
    assert sent.url.host == "us.api.blizzard.com"
    assert sent.url.params["namespace"] == "profile-classic1"
    assert sent.url.params["locale"] == "en_US"
    assert sent.headers["Authorization"] == "Bearer tok"


def test_characters_maps_upstream_status(tmp_path: Path) -> None:
    with TestClient(_app(tmp_path, lambda request: httpx.Response(401))) as client:
        response = client.get("/api/blizzard/characters", headers={"Authorization": "Bearer expired"})
    assert response.status_code == 401
    assert response.json() == {"detail": "Failed to load characters."}


def test_characters_without_upstream_response_is_bad_gateway(tmp_path: Path) -> None:
    def boom(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("down", request=request)

    with TestClient(_app(tmp_path, boom)) as client:
        response = client.get("/api/blizzard/characters", headers={"Authorization": "Bearer tok"})
    assert response.status_code == 502


def test_characters_with_unparseable_body_is_bad_gateway(tmp_path: Path) -> None:
    def html(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, content=b"<html>")

    with TestClient(_app(tmp_path, html)) as client:
        response = client.get("/api/blizzard/characters", headers={"Authorization": "Bearer tok"})
    assert response.status_code == 502
    assert response.json() == {"detail": "Failed to load characters."}


def test_characters_with_schema_mismatch_is_bad_gateway(tmp_path: Path) -> None:
    def nameless(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"wow_accounts": [{"characters": [{"id": 1}]}]})

    with TestClient(_app(tmp_path, nameless)) as client:
        response = client.get("/api/blizzard/characters", headers={"Authorization": "Bearer tok"})
    assert response.status_code == 502


def test_sync_requires_character_selection(tmp_path: Path) -> None:
    with TestClient(_app(tmp_path, _profile)) as client:
        response = client.post(
            "/api/blizzard/sync",
            json={"realmSlug": "firemaw"},
            headers={"Authorization": "Bearer tok"},
        )
    assert response.status_code == 400


def test_sync_returns_partial_result_with_errors(tmp_path: Path) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path.endswith("/equipment"):
            return httpx.Response(200, json={"equipped_items": [{"item": {"name": "Lionheart Helm"}}]})
        if request.url.path.endswith("/reputations"):
            return httpx.Response(200, json={"reputations": []})
        return httpx.Response(404)

    with TestClient(_app(tmp_path, handler)) as client:
        response = client.post(
            "/api/blizzard/sync",
            json={"realmSlug": "firemaw", "characterName": "Thrall"},
            headers={"Authorization": "Bearer tok"},
        )

    assert response.status_code == 200
    body = response.json()
    assert body["equipmentItems"] == ["Lionheart Helm"]
    assert body["pvpSummary"] is None
    assert body["errors"] == [{"endpoint": "pvp-summary", "status": 404, "message": "Classic endpoint unavailable"}]


def test_wire_format_is_camel_case_and_accepts_snake_case_body(tmp_path: Path) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path == "/profile/user/wow":
            return httpx.Response(
                200,
                json={
                    "wow_accounts": [
                        {"characters": [{"id": 7, "name": "Thrall", "realm": {"name": "Firemaw", "slug": "firemaw"}}]}
                    ]
                },
            )
        if request.url.path.endswith("/reputations"):
            return httpx.Response(
                200,
                json={"reputations": [{"faction": {"name": "Argent Dawn"}, "standing": {"name": "Honored", "tier": 4}}]},
            )
        return httpx.Response(200, json={})

    with TestClient(_app(tmp_path, handler)) as client:
        characters = client.get("/api/blizzard/characters", headers={"Authorization": "Bearer tok"})
        synced = client.post(
            "/api/blizzard/sync",
            json={"realm_slug": "firemaw", "character_name": "Thrall"},
            headers={"Authorization": "Bearer tok"},
        )

    assert characters.json()["characters"][0]["realmSlug"] == "firemaw"
    assert "playableClass" in characters.json()["characters"][0]
    assert synced.status_code == 200
    assert synced.json()["reputations"][0]["standingName"] == "Honored"
    assert synced.json()["reputations"][0]["standingTier"] == 4
