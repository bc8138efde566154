"""SyncController — フラグ設定の取得・更新とライフサイクルイベント管理"""

from __future__ import annotations

import asyncio
import contextlib
import json
import time
from typing import Callable

import structlog

from .configuration import Configuration, parse_configuration
from .events import EventEmitter, FlagsEvent, FlagsEventType, FlagsListener, call_safely
from .exceptions import ParseError, ValidationError
from .http_client import FlagsHttpClient
from .models import ClientState
from .storage import KeyValueStore, read_entry, write_entry
from .store import ConfigurationStore
from .streaming import EventSource, EventSourceFactory, SseMessage

logger = structlog.get_logger(__name__)


class SyncController:
    """ConfigurationStore を最新に保ち、変更をリスナーへ通知する。

    更新方式はポーリングとストリーミングのどちらか一方。ストリーミングを
    要求されても EventSource を生成できない場合はポーリングに切り替える。
    """

    def __init__(
        self,
        http: FlagsHttpClient,
        store: ConfigurationStore,
        *,
        polling_interval_seconds: float = 60.0,
        streaming: bool = False,
        event_source_factory: EventSourceFactory | None = None,
        on_configuration_change: Callable[[Configuration], None] | None = None,
        on_error: Callable[[Exception], None] | None = None,
        persistence: KeyValueStore | None = None,
        persistence_key: str = "",
        persistence_ttl_seconds: float = 60.0,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._http = http
        self._store = store
        self._polling_interval_seconds = polling_interval_seconds
        self._streaming = streaming
        self._event_source_factory = event_source_factory
        self._on_configuration_change = on_configuration_change
        self._on_error = on_error
        self._persistence = persistence
        self._persistence_key = persistence_key
        self._persistence_ttl_seconds = persistence_ttl_seconds
        self._clock = clock

        self._emitter = EventEmitter()
        self._state = ClientState.UNINITIALIZED
        self._init_task: asyncio.Task[None] | None = None
        self._fetch_task: asyncio.Task[bool] | None = None
        self._poll_task: asyncio.Task[None] | None = None
        self._event_source: EventSource | None = None

        if persistence is not None and not store.is_ready():
            self._restore_persisted()

    @property
    def state(self) -> ClientState:
        return self._state

    @property
    def closed(self) -> bool:
        return self._state == ClientState.CLOSED

    def is_ready(self) -> bool:
        return self._state == ClientState.READY and self._store.is_ready()

    def on(self, listener: FlagsListener) -> Callable[[], None]:
        """イベントリスナーを登録する。戻り値で登録解除できる。"""
        return self._emitter.on(listener)

    def off(self, listener: FlagsListener) -> None:
        self._emitter.off(listener)

    # ==================== 初期化 ====================

    async def initialize(self) -> None:
        """初期設定を取得して更新を開始する。

        同時に呼ばれた場合は進行中の初期化を共有し、取得は 1 回だけ行う。
        既に設定を保持している場合（初期設定・永続化済み設定）は取得しない。

        Raises:
            ValidationError: close 済みの場合
            AuthenticationError: API キーが無効な場合
            ApiError: API がエラーを返した場合
            RequestTimeoutError: リクエストが期限切れになった場合
        """
        if self.closed:
            raise ValidationError("Client is closed", field="client")
        if self._state == ClientState.READY:
            return
        if self._init_task is None:
            self._state = ClientState.INITIALIZING
            self._init_task = asyncio.create_task(self._do_initialize())
        await asyncio.shield(self._init_task)

    async def _do_initialize(self) -> None:
        try:
            if not self._store.is_ready():
                await self.fetch_configuration()
        except Exception:
            self._init_task = None
            if not self.closed:
                self._state = ClientState.UNINITIALIZED
            raise

        if self.closed:
            return
        self._state = ClientState.READY
        self._start_updates()
        configuration = self._store.configuration
        if configuration is not None:
            self._emitter.emit(FlagsEvent(FlagsEventType.READY, configuration=configuration))

    # ==================== 取得 ====================

    async def fetch_configuration(self) -> bool:
        """etag を使った条件付き取得を行い、設定が置き換わったら True。

        取得は常に 1 件までで、実行中に呼ばれた場合はその結果を共有する。
        """
        if self.closed:
            return False
        if self._fetch_task is None:
            task = asyncio.create_task(self._do_fetch())
            task.add_done_callback(self._release_fetch_task)
            self._fetch_task = task
        return await asyncio.shield(self._fetch_task)

    def _release_fetch_task(self, task: asyncio.Task[bool]) -> None:
        if self._fetch_task is task:
            self._fetch_task = None

    async def _do_fetch(self) -> bool:
        current = self._store.configuration
        configuration = await self._http.fetch_configuration(self._store.get_etag())
        if configuration is None:
            return False
        if self.closed:
            logger.debug("Discarding flag configuration fetched after close")
            return False
        if self._store.configuration is not current:
            # 取得中にストリームで新しい設定が適用された
            logger.debug("Discarding superseded flag configuration", etag=configuration.etag)
            return False
        self.apply_configuration(configuration)
        return True

    async def refresh(self) -> None:
        """明示的に設定を再取得する。失敗は呼び出し元へ伝播する。"""
        await self.fetch_configuration()

    def apply_configuration(self, configuration: Configuration) -> None:
        """設定を差し替え、etag が変わっていれば変更を通知する。"""
        previous = self._store.configuration
        self._store.set_configuration(configuration)
        self._persist(configuration)
        logger.info(
            "Flag configuration updated",
            etag=configuration.etag,
            flags=len(configuration.flags),
            segments=len(configuration.segments),
        )
        if previous is not None and previous.etag != configuration.etag:
            self._emitter.emit(
                FlagsEvent(FlagsEventType.CONFIGURATION_CHANGED, configuration=configuration)
            )
            if self._on_configuration_change is not None:
                call_safely(self._on_configuration_change, configuration)

    # ==================== 更新方式 ====================

    def _start_updates(self) -> None:
        if self._streaming:
            self._start_streaming()
        elif self._polling_interval_seconds > 0:
            self._start_polling()

    def _start_polling(self) -> None:
        if self._poll_task is not None or self._polling_interval_seconds <= 0:
            return
        self._poll_task = asyncio.create_task(self._poll_loop())

    async def _poll_loop(self) -> None:
        while not self.closed:
            await asyncio.sleep(self._polling_interval_seconds)
            try:
                await self.fetch_configuration()
            except Exception as e:
                self._handle_error(e)

    def _start_streaming(self) -> None:
        if self._event_source_factory is None:
            logger.warning("Flag streaming is not available, falling back to polling")
            self._start_polling()
            return
        self._event_source = self._event_source_factory(
            self._http.stream_url(), self._http.stream_headers()
        )
        self._event_source.open(self._on_stream_message, self._handle_error)

    def _on_stream_message(self, message: SseMessage) -> None:
        if self.closed or message.event == "heartbeat":
            return
        if message.event != "config":
            logger.debug("Ignoring unknown flag stream event", event=message.event)
            return
        try:
            configuration = parse_configuration(json.loads(message.data))
        except ValueError as e:
            self._handle_error(ParseError(f"Invalid configuration message: {e}", cause=e))
            return
        except ParseError as e:
            self._handle_error(e)
            return
        self.apply_configuration(configuration)

    def _handle_error(self, error: Exception) -> None:
        if self.closed:
            return
        logger.warning("Flag configuration update failed", error=str(error))
        self._emitter.emit(FlagsEvent(FlagsEventType.ERROR, error=error))
        if self._on_error is not None:
            call_safely(self._on_error, error)

    # ==================== 永続化 ====================

    def _restore_persisted(self) -> None:
        if self._persistence is None:
            return
        payload = read_entry(
            self._persistence,
            self._persistence_key,
            self._persistence_ttl_seconds,
            self._clock(),
        )
        if payload is None:
            return
        try:
            configuration = parse_configuration(payload)
        except ParseError as e:
            logger.warning("Discarding persisted flag configuration", error=str(e))
            self._persistence.remove(self._persistence_key)
            return
        self._store.set_configuration(configuration)
        logger.debug("Restored persisted flag configuration", etag=configuration.etag)

    def _persist(self, configuration: Configuration) -> None:
        if self._persistence is None:
            return
        try:
            write_entry(
                self._persistence,
                self._persistence_key,
                configuration.to_dict(),
                self._clock(),
            )
        except OSError as e:
            logger.warning("Failed to persist flag configuration", error=str(e))

    # ==================== 終了 ====================

    async def close(self) -> None:
        """タイマーとストリーム接続を停止し、リスナーを全て解除する。

        最後に取得した設定は close 後も参照できる。
        """
        if self.closed:
            return
        self._state = ClientState.CLOSED
        self._emitter.clear()
        if self._poll_task is not None:
            self._poll_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._poll_task
            self._poll_task = None
        if self._event_source is not None:
            await self._event_source.close()
            self._event_source = None
