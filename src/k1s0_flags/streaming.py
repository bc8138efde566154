"""Server-Sent Events による設定のプッシュ受信"""

from __future__ import annotations

import asyncio
import contextlib
from abc import ABC, abstractmethod
from collections.abc import AsyncIterator
from dataclasses import dataclass
from typing import Callable

import httpx
import structlog

from .exceptions import ApiError, AuthenticationError

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class SseMessage:
    """SSE の 1 メッセージ。"""

    event: str = "message"
    data: str = ""
    id: str | None = None


MessageHandler = Callable[[SseMessage], None]
ErrorHandler = Callable[[Exception], None]


async def iter_sse(lines: AsyncIterator[str]) -> AsyncIterator[SseMessage]:
    """行ストリームを SSE メッセージへ組み立てる。

    空行でメッセージを確定する。複数の data 行は改行で連結し、
    ":" で始まるコメント行は無視する。
    """
    event = ""
    data: list[str] = []
    last_id: str | None = None
    async for raw in lines:
        line = raw.rstrip("\r")
        if not line:
            if data or event:
                yield SseMessage(event=event or "message", data="\n".join(data), id=last_id)
            event = ""
            data = []
            continue
        if line.startswith(":"):
            continue
        name, _, value = line.partition(":")
        if value.startswith(" "):
            value = value[1:]
        if name == "event":
            event = value
        elif name == "data":
            data.append(value)
        elif name == "id":
            last_id = value


class EventSource(ABC):
    """サーバープッシュ接続の抽象基底クラス。

    open 後は自身で再接続を行い、接続エラーは on_error で通知する。
    """

    @abstractmethod
    def open(self, on_message: MessageHandler, on_error: ErrorHandler) -> None:
        """接続を開始する。"""
        ...

    @abstractmethod
    async def close(self) -> None:
        """接続を閉じ、再接続も停止する。"""
        ...


EventSourceFactory = Callable[[str, dict[str, str]], EventSource]


class HttpEventSource(EventSource):
    """httpx のストリーミングレスポンスを使った EventSource。"""

    def __init__(
        self,
        url: str,
        headers: dict[str, str],
        reconnect_delay_seconds: float = 3.0,
        connect_timeout_seconds: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._url = url
        self._headers = headers
        self._reconnect_delay_seconds = reconnect_delay_seconds
        self._connect_timeout_seconds = connect_timeout_seconds
        self._transport = transport
        self._task: asyncio.Task[None] | None = None

    @property
    def is_open(self) -> bool:
        return self._task is not None and not self._task.done()

    def open(self, on_message: MessageHandler, on_error: ErrorHandler) -> None:
        if self._task is not None:
            return
        self._task = asyncio.create_task(self._run(on_message, on_error))

    async def close(self) -> None:
        if self._task is not None:
            self._task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._task
            self._task = None

    async def _run(self, on_message: MessageHandler, on_error: ErrorHandler) -> None:
        while True:
            try:
                await self._consume(on_message)
                logger.info("Flag stream closed by server, reconnecting", url=self._url)
            except Exception as e:
                logger.warning("Flag stream connection error", url=self._url, error=str(e))
                on_error(e)
            await asyncio.sleep(self._reconnect_delay_seconds)

    async def _consume(self, on_message: MessageHandler) -> None:
        timeout = httpx.Timeout(self._connect_timeout_seconds, read=None)
        async with httpx.AsyncClient(timeout=timeout, transport=self._transport) as client:
            async with client.stream("GET", self._url, headers=self._headers) as resp:
                if resp.status_code == 401:
                    raise AuthenticationError()
                if not resp.is_success:
                    await resp.aread()
                    raise ApiError(
                        message=f"stream: HTTP {resp.status_code}",
                        status_code=resp.status_code,
                        body=resp.text,
                    )
                logger.debug("Flag stream connected", url=self._url)
                async for message in iter_sse(resp.aiter_lines()):
                    on_message(message)


def http_event_source_factory(
    reconnect_delay_seconds: float = 3.0,
    connect_timeout_seconds: float = 30.0,
    transport: httpx.AsyncBaseTransport | None = None,
) -> EventSourceFactory:
    """HttpEventSource を生成するファクトリを返す。"""

    def factory(url: str, headers: dict[str, str]) -> EventSource:
        return HttpEventSource(
            url,
            headers,
            reconnect_delay_seconds=reconnect_delay_seconds,
            connect_timeout_seconds=connect_timeout_seconds,
            transport=transport,
        )

    return factory
