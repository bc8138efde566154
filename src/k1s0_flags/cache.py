"""リモート評価結果の TTL キャッシュ"""

from __future__ import annotations

import copy
import time
from typing import Any, Callable

import structlog

from .storage import KeyValueStore, read_entry, write_entry

logger = structlog.get_logger(__name__)

ANONYMOUS = "anonymous"


class _CacheEntry:
    __slots__ = ("value", "timestamp")

    def __init__(self, value: dict[str, Any], timestamp: float) -> None:
        self.value = value
        self.timestamp = timestamp


def flag_cache_key(flag_key: str, targeting_key: str | None) -> str:
    return f"flag:{flag_key}:{targeting_key or ANONYMOUS}"


def snapshot_cache_key(targeting_key: str | None) -> str:
    return f"snapshot:{targeting_key or ANONYMOUS}"


class EvaluationCache:
    """API レスポンス辞書を TTL 付きで保持するキャッシュ。

    store を渡すと内容を storage_key に {payload, timestamp} 形式で永続化し、
    生成時に期限内のエントリだけを復元する。
    """

    def __init__(
        self,
        ttl_seconds: float = 60.0,
        store: KeyValueStore | None = None,
        storage_key: str = "",
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._ttl_seconds = ttl_seconds
        self._store = store
        self._storage_key = storage_key
        self._clock = clock
        self._entries: dict[str, _CacheEntry] = {}
        if store is not None:
            self._load()

    def __len__(self) -> int:
        return len(self._entries)

    def _is_expired(self, entry: _CacheEntry, now: float) -> bool:
        return now - entry.timestamp > self._ttl_seconds

    def get(self, key: str) -> dict[str, Any] | None:
        entry = self._entries.get(key)
        if entry is None:
            return None
        if self._is_expired(entry, self._clock()):
            del self._entries[key]
            return None
        # 呼び出し側の変更がキャッシュ内容に及ばないようコピーを返す
        return copy.deepcopy(entry.value)

    def set(self, key: str, value: dict[str, Any]) -> None:
        now = self._clock()
        self._prune(now)
        self._entries[key] = _CacheEntry(copy.deepcopy(value), now)
        self._save()

    def _prune(self, now: float) -> None:
        """期限切れのエントリをまとめて削除する。"""
        expired = [k for k, entry in self._entries.items() if self._is_expired(entry, now)]
        for key in expired:
            del self._entries[key]

    def clear(self) -> None:
        self._entries.clear()
        if self._store is not None:
            self._store.remove(self._storage_key)

    def _load(self) -> None:
        if self._store is None:
            return
        now = self._clock()
        payload = read_entry(self._store, self._storage_key, self._ttl_seconds, now)
        if not isinstance(payload, dict):
            return
        for key, raw in payload.items():
            try:
                entry = _CacheEntry(dict(raw["value"]), float(raw["timestamp"]))
            except (KeyError, TypeError, ValueError):
                continue
            if not self._is_expired(entry, now):
                self._entries[key] = entry
        logger.debug("Restored flags cache", entries=len(self._entries))

    def _save(self) -> None:
        if self._store is None:
            return
        payload = {
            key: {"value": entry.value, "timestamp": entry.timestamp}
            for key, entry in self._entries.items()
        }
        try:
            write_entry(self._store, self._storage_key, payload, self._clock())
        except (OSError, TypeError, ValueError) as e:
            logger.warning("Failed to persist flags cache", error=str(e))
