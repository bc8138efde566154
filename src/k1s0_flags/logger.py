"""structlog ベースのロガー設定

ライブラリ内部は structlog.get_logger(__name__) でログを出す。new_logger は
"k1s0_flags" 配下の標準 logging ロガーだけに出力先を設定し、ホスト
アプリケーションのルートロガーには触れない。
"""

from __future__ import annotations

import logging
import sys
from typing import TextIO

import structlog

LOGGER_NAME = "k1s0_flags"


def _install_handler(level: int, stream: TextIO) -> None:
    base = logging.getLogger(LOGGER_NAME)
    for handler in [h for h in base.handlers if getattr(h, "_k1s0_flags", False)]:
        base.removeHandler(handler)
    handler = logging.StreamHandler(stream)
    handler.setFormatter(logging.Formatter("%(message)s"))
    handler._k1s0_flags = True  # type: ignore[attr-defined]
    base.addHandler(handler)
    base.setLevel(level)
    base.propagate = False


def new_logger(
    level: str = "INFO",
    format: str = "json",
    stream: TextIO | None = None,
) -> structlog.stdlib.BoundLogger:
    """ライブラリのログ出力を設定し、"k1s0_flags" ロガーを返す。

    繰り返し呼んでもハンドラは 1 つだけに保たれる。

    Args:
        level: ログレベル ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")
        format: 出力形式 ("json" or "text")
        stream: 出力先。省略時は標準出力
    """
    log_level = getattr(logging, level.upper(), logging.INFO)
    _install_handler(log_level, stream or sys.stdout)

    processors: list[structlog.types.Processor] = [
        structlog.stdlib.filter_by_level,
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
    ]
    if format == "json":
        processors += [
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ]
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=False))

    # モジュール単位のロガーは import 時に生成されるため、初回利用時に
    # 設定を固定すると後からの new_logger が反映されない
    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=False,
    )

    return structlog.stdlib.get_logger(LOGGER_NAME)
