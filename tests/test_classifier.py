from __future__ import annotations

import pytest

from checklist.blizzard.classifier import is_endpoint_unavailable
from checklist.blizzard.classifier import is_legacy_endpoint


@pytest.mark.parametrize(
    ("url", "namespace", "expected"),
    [
        ("https://eu.api.blizzard.com/profile/wow/character/firemaw/thrall/pvp-summary", "profile-classic1-eu", True),
        ("https://eu.api.blizzard.com/profile/wow/character/firemaw/thrall/pvp-summary", "PROFILE-CLASSIC-EU", True),
        ("https://eu.api.blizzard.com/data/wow/Classic/realm/index", None, True),
        ("https://eu.api.blizzard.com/profile/user/wow?namespace=profile-classic1-eu", None, True),
        ("https://eu.api.blizzard.com/profile/wow/character/firemaw/thrall/pvp-summary", "profile-eu", False),
        ("https://eu.api.blizzard.com/profile/user/wow", None, False),
    ],
)
def test_is_legacy_endpoint(url: str, namespace: str | None, expected: bool) -> None:
    assert is_legacy_endpoint(url=url, namespace=namespace) is expected


def test_only_403_and_404_count_as_unavailable() -> None:
    url = "https://eu.api.blizzard.com/profile/wow/character/firemaw/thrall/pvp-summary"
    assert is_endpoint_unavailable(404, url, "profile-classic1-eu")
    assert is_endpoint_unavailable(403, url, "profile-classic1-eu")
    assert not is_endpoint_unavailable(429, url, "profile-classic1-eu")
    assert not is_endpoint_unavailable(500, url, "profile-classic1-eu")
    assert not is_endpoint_unavailable(404, url, "profile-eu")
