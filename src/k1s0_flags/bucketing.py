"""パーセンテージロールアウト用の決定的バケット計算"""

from __future__ import annotations

import hashlib

BUCKET_RESOLUTION = 10_000


def bucket(targeting_key: str, flag_key: str) -> int:
    """(targeting_key, flag_key) を [0, BUCKET_RESOLUTION) のバケットへ写像する。

    フラグキーを含めてハッシュするため、同じユーザーでもフラグごとに
    ロールアウト対象が独立する。プロセスをまたいで同じ値を返す。
    """
    digest = hashlib.sha256(f"{flag_key}:{targeting_key}".encode("utf-8")).digest()
    return int.from_bytes(digest[:8], "big") % BUCKET_RESOLUTION


def in_rollout(targeting_key: str | None, flag_key: str, percentage: float) -> bool:
    """ロールアウト対象に含まれるか判定する。"""
    if percentage >= 100:
        return True
    if percentage <= 0 or not targeting_key:
        return False
    return bucket(targeting_key, flag_key) < percentage * (BUCKET_RESOLUTION / 100)
