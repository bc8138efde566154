"""永続キャッシュ用のキーバリューストア"""

from __future__ import annotations

import hashlib
import json
import re
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any

import structlog

logger = structlog.get_logger(__name__)


class KeyValueStore(ABC):
    """キーバリューストア抽象基底クラス。"""

    @abstractmethod
    def get(self, key: str) -> str | None:
        """キーに対応する値を取得する。存在しなければ None。"""
        ...

    @abstractmethod
    def set(self, key: str, value: str) -> None:
        """キーと値を保存する。"""
        ...

    @abstractmethod
    def remove(self, key: str) -> None:
        """キーを削除する。存在しなくてもエラーにしない。"""
        ...


class InMemoryKeyValueStore(KeyValueStore):
    """プロセス内で完結するキーバリューストア。テストや共有用。"""

    def __init__(self) -> None:
        self._store: dict[str, str] = {}

    def get(self, key: str) -> str | None:
        return self._store.get(key)

    def set(self, key: str, value: str) -> None:
        self._store[key] = value

    def remove(self, key: str) -> None:
        self._store.pop(key, None)

    def keys(self) -> list[str]:
        return list(self._store)


class FileKeyValueStore(KeyValueStore):
    """ディレクトリ配下にキーごとのファイルを置くストア。"""

    def __init__(self, directory: Path) -> None:
        self._directory = directory

    def _path(self, key: str) -> Path:
        return self._directory / (re.sub(r"[^A-Za-z0-9_.-]", "_", key) + ".json")

    def get(self, key: str) -> str | None:
        try:
            return self._path(key).read_text(encoding="utf-8")
        except FileNotFoundError:
            return None

    def set(self, key: str, value: str) -> None:
        self._directory.mkdir(parents=True, exist_ok=True)
        path = self._path(key)
        tmp = path.with_suffix(".tmp")
        tmp.write_text(value, encoding="utf-8")
        tmp.replace(path)

    def remove(self, key: str) -> None:
        self._path(key).unlink(missing_ok=True)


def credential_hash(token: str) -> str:
    """API キーからストレージキー用の短いハッシュを作る。"""
    return hashlib.sha256(token.encode("utf-8")).hexdigest()[:16]


def read_entry(store: KeyValueStore, key: str, ttl_seconds: float, now: float) -> Any | None:
    """{payload, timestamp} 形式のエントリを読み出す。

    期限切れ・破損したエントリは削除して None を返す。
    """
    raw = store.get(key)
    if raw is None:
        return None
    try:
        data = json.loads(raw)
        timestamp = float(data["timestamp"])
        payload = data["payload"]
    except (ValueError, KeyError, TypeError) as e:
        logger.warning("Discarding corrupt persisted flags entry", key=key, error=str(e))
        store.remove(key)
        return None
    if now - timestamp > ttl_seconds:
        store.remove(key)
        return None
    return payload


def write_entry(store: KeyValueStore, key: str, payload: Any, now: float) -> None:
    """{payload, timestamp} 形式でエントリを書き込む。"""
    store.set(key, json.dumps({"payload": payload, "timestamp": now}))
