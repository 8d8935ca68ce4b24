"""
两级缓存：进程内 LRU + 磁盘 JSON 快照。

当前提供：
- `CacheEntry`：不可变缓存项（正常值 / 负缓存）
- `LruCache`：内存层，按最近使用淘汰，只是读加速
- `DiskCache`：磁盘层，不限条数，是跨重启的唯一事实来源
- `TwoTierCache`：对外的组合缓存，负责 read-through 与写穿透

注意：
- 每次写都会把整份快照重写（先写临时文件再 `os.replace`）
- 只保证单进程安全；多个进程共用一个快照文件需要外部加锁
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
import time
from collections import OrderedDict
from collections.abc import Callable
from dataclasses import dataclass
from functools import partial
from pathlib import Path
from typing import Any

import anyio

logger = logging.getLogger(__name__)

DEFAULT_MAX_MEMORY_ENTRIES = 300


@dataclass(frozen=True)
class CacheEntry:
    """
    缓存项。

    - value: 任意可 JSON 序列化的数据
    - expires_at: 过期时间（epoch 秒，绝对时间）
    - unavailable_status: 非空表示负缓存（该接口在这个数据变体下不存在），记录当时的 HTTP 状态码
    """

    value: Any
    expires_at: float
    unavailable_status: int | None = None

    @property
    def is_negative(self) -> bool:
        return self.unavailable_status is not None

    def is_expired(self, now: float) -> bool:
        return self.expires_at <= now

    def to_json(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"value": self.value, "expiresAt": self.expires_at}
        if self.unavailable_status is not None:
            payload["unavailableStatus"] = self.unavailable_status
        return payload

    @classmethod
    def from_json(cls, payload: Any) -> CacheEntry:
        if not isinstance(payload, dict) or "expiresAt" not in payload:
            raise ValueError(f"Malformed cache entry: {payload!r}")
        status = payload.get("unavailableStatus")
        return cls(
            value=payload.get("value"),
            expires_at=float(payload["expiresAt"]),
            unavailable_status=int(status) if status is not None else None,
        )


class LruCache:
    """内存缓存：get/set 都会刷新最近使用顺序，超过 max_entries 淘汰最久未用的。"""

    def __init__(self, max_entries: int = DEFAULT_MAX_MEMORY_ENTRIES) -> None:
        if max_entries <= 0:
            raise ValueError("max_entries must be > 0")
        self.max_entries = max_entries
        self._store: OrderedDict[str, CacheEntry] = OrderedDict()

    def __len__(self) -> int:
        return len(self._store)

    def __contains__(self, key: object) -> bool:
        return key in self._store

    def get(self, key: str) -> CacheEntry | None:
        entry = self._store.get(key)
        if entry is None:
            return None
        self._store.move_to_end(key)
        return entry

    def set(self, key: str, entry: CacheEntry) -> None:
        self._store[key] = entry
        self._store.move_to_end(key)
        while len(self._store) > self.max_entries:
            evicted, _ = self._store.popitem(last=False)
            logger.debug(f"Evicted {evicted} from memory cache")


class DiskCache:
    """
    磁盘缓存：整份 dict 存成一个 JSON 文件。

    - 第一次访问时才读文件（每个实例只读一次）
    - 文件不存在 = 空缓存；文件损坏 = 丢弃后按空缓存继续（只打 warning）
    - 内存操作和落盘分开：`set/delete` 只改内存 dict，`save()` 负责写文件
    """

    def __init__(self, path: Path) -> None:
        self.path = Path(path)
        self._entries: dict[str, CacheEntry] = {}
        self._loaded = False

    def __len__(self) -> int:
        self.load()
        return len(self._entries)

    @property
    def loaded(self) -> bool:
        return self._loaded

    def load(self) -> None:
        if self._loaded:
            return
        self._loaded = True
        if not self.path.exists():
            return
        try:
            raw = json.loads(self.path.read_text(encoding="utf-8"))
            if not isinstance(raw, dict):
                raise ValueError("cache snapshot root must be an object")
            self._entries = {str(key): CacheEntry.from_json(value) for key, value in raw.items()}
        except (OSError, ValueError, TypeError) as exc:
            logger.warning(f"Discarding unreadable cache snapshot {self.path}: {exc}")
            self._entries = {}
        else:
            logger.info(f"Loaded {len(self._entries)} cache entries from {self.path}")

    def get(self, key: str) -> CacheEntry | None:
        self.load()
        return self._entries.get(key)

    def set(self, key: str, entry: CacheEntry) -> None:
        self.load()
        self._entries[key] = entry

    def delete(self, key: str) -> bool:
        self.load()
        return self._entries.pop(key, None) is not None

    def snapshot(self) -> dict[str, dict[str, Any]]:
        return {key: entry.to_json() for key, entry in self._entries.items()}

    def save(self) -> None:
        """整份重写快照：写临时文件后原子替换，避免半截文件。"""
        write_snapshot(self.path, self.snapshot())


def write_snapshot(path: Path, payload: dict[str, dict[str, Any]]) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=path.parent)
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as handle:
            json.dump(payload, handle, indent=2)
        os.replace(tmp_name, path)
    except BaseException:
        Path(tmp_name).unlink(missing_ok=True)
        raise


class TwoTierCache:
    """
    对外使用的两级缓存。

    读：内存 -> 磁盘（命中则提升到内存）-> miss
    写：内存 + 磁盘 + 立即重写快照

    过期处理：
    - 内存里的过期项不主动删（不会被返回，之后被 LRU 挤掉或被 set 覆盖）
    - 磁盘里的过期项读到时删除并重写快照，防止文件无限增长
    """

    def __init__(
        self,
        memory: LruCache,
        disk: DiskCache,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.memory = memory
        self.disk = disk
        self._clock = clock
        self._disk_lock = anyio.Lock()

    async def get(self, key: str) -> CacheEntry | None:
        now = self._clock()
        entry = self.memory.get(key)
        if entry is not None and not entry.is_expired(now):
            return entry

        async with self._disk_lock:
            await self._ensure_loaded_locked()
            persisted = self.disk.get(key)
            if persisted is None:
                return None
            if not persisted.is_expired(now):
                self.memory.set(key, persisted)
                return persisted
            self.disk.delete(key)
            logger.debug(f"Dropped expired cache entry {key}")
            await self._save_locked()
        return None

    async def set(self, key: str, value: Any, ttl_seconds: float) -> CacheEntry:
        entry = CacheEntry(value=value, expires_at=self._clock() + ttl_seconds)
        await self._put(key, entry)
        return entry

    async def set_negative(self, key: str, status: int, ttl_seconds: float) -> CacheEntry:
        """写入负缓存（"这里没有数据"），TTL 由调用方决定（通常是正常 TTL 的 2 倍）。"""
        entry = CacheEntry(value=None, expires_at=self._clock() + ttl_seconds, unavailable_status=status)
        await self._put(key, entry)
        return entry

    async def _put(self, key: str, entry: CacheEntry) -> None:
        self.memory.set(key, entry)
        async with self._disk_lock:
            await self._ensure_loaded_locked()
            self.disk.set(key, entry)
            await self._save_locked()

    async def _ensure_loaded_locked(self) -> None:
        if not self.disk.loaded:
            await anyio.to_thread.run_sync(self.disk.load)

    async def _save_locked(self) -> None:
        # 在锁内先拍快照，落盘放到 worker 线程，不阻塞事件循环
        payload = self.disk.snapshot()
        try:
            await anyio.to_thread.run_sync(partial(write_snapshot, self.disk.path, payload))
        except OSError as exc:
            logger.warning(f"Failed to write cache snapshot {self.disk.path}: {exc}")


def build_two_tier_cache(cache_dir: Path, file_name: str, max_memory_entries: int) -> TwoTierCache:
    return TwoTierCache(memory=LruCache(max_entries=max_memory_entries), disk=DiskCache(path=Path(cache_dir) / file_name))
