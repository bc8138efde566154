"""クライアントのライフサイクルイベントとリスナー管理"""

from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum
from typing import Callable

import structlog

from .configuration import Configuration

logger = structlog.get_logger(__name__)


class FlagsEventType(StrEnum):
    """イベント種別。"""

    READY = "ready"
    CONFIGURATION_CHANGED = "configurationChanged"
    ERROR = "error"


@dataclass(frozen=True)
class FlagsEvent:
    """リスナーに通知されるイベント。"""

    type: FlagsEventType
    configuration: Configuration | None = None
    error: Exception | None = None


FlagsListener = Callable[[FlagsEvent], None]


class EventEmitter:
    """リスナーへのイベント配信。

    リスナーの例外は個別に握りつぶし、他のリスナーや呼び出し元へは伝播しない。
    """

    def __init__(self) -> None:
        self._listeners: list[FlagsListener] = []

    def on(self, listener: FlagsListener) -> Callable[[], None]:
        """リスナーを登録し、登録解除用の関数を返す。"""
        if listener not in self._listeners:
            self._listeners.append(listener)
        return lambda: self.off(listener)

    def off(self, listener: FlagsListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def clear(self) -> None:
        self._listeners.clear()

    def __len__(self) -> int:
        return len(self._listeners)

    def emit(self, event: FlagsEvent) -> None:
        # 配信中の登録・解除に影響されないようコピーを走査する
        for listener in list(self._listeners):
            call_safely(listener, event)


def call_safely(callback: Callable[..., None], *args: object) -> None:
    """コールバックを呼び出し、例外はログに残して破棄する。"""
    try:
        callback(*args)
    except Exception as e:
        logger.warning("Flags listener raised", error=str(e), exc_info=True)
