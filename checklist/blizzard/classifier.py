"""
接口可用性判断（纯字符串匹配，不发网络请求）。

Classic 系列的 profile namespace 下，很多接口本来就不存在（例如 pvp-summary），
这时 Blizzard 会回 403/404。这类失败不是临时故障：重试没用，只会浪费配额。
"""

from __future__ import annotations

LEGACY_NAMESPACE_HINT = "classic"
LEGACY_URL_MARKERS: tuple[str, ...] = ("/classic", "profile-classic")
UNAVAILABLE_STATUSES = frozenset({403, 404})


def is_legacy_endpoint(url: str, namespace: str | None = None) -> bool:
    if namespace and LEGACY_NAMESPACE_HINT in namespace.lower():
        return True
    lowered = url.lower()
    return any(marker in lowered for marker in LEGACY_URL_MARKERS)


def is_endpoint_unavailable(status: int, url: str, namespace: str | None = None) -> bool:
    """403/404 且请求的是 Classic 数据变体 -> 视为「该接口在这个变体下不存在」。"""
    return status in UNAVAILABLE_STATUSES and is_legacy_endpoint(url=url, namespace=namespace)
