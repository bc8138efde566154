"""FlagsClient — フィーチャーフラグクライアント

リモート評価モード（既定）とローカル評価モードを持つ。
"""

from __future__ import annotations

import time
from collections.abc import Mapping
from datetime import datetime, timezone
from typing import Any, Callable, TypeVar

import httpx
import structlog

from .cache import EvaluationCache, flag_cache_key, snapshot_cache_key
from .configuration import Configuration, FlagValueType, parse_configuration
from .evaluator import FlagEvaluator, flag_not_found
from .events import FlagsListener
from .exceptions import ApiError, TypeMismatchError, ValidationError
from .http_client import EVALUATE_PATH, SNAPSHOT_PATH, FlagsHttpClient
from .models import (
    ClientState,
    ErrorCode,
    EvaluatedFlag,
    EvaluationContext,
    FlagSnapshot,
    ResolutionDetails,
    ResolutionReason,
    coerce_context,
)
from .settings import FlagsConfig
from .storage import KeyValueStore, credential_hash
from .store import ConfigurationStore
from .streaming import EventSourceFactory, http_event_source_factory
from .sync import SyncController

logger = structlog.get_logger(__name__)

T = TypeVar("T")

ContextLike = EvaluationContext | Mapping[str, Any] | None

CACHE_STORAGE_PREFIX = "k1s0:flags:cache:"
CONFIG_STORAGE_PREFIX = "k1s0:flags:config:"


def _to_resolution_details(
    flag: EvaluatedFlag, default_value: T, expected_type: FlagValueType
) -> ResolutionDetails[T]:
    if flag.error_code == ErrorCode.FLAG_NOT_FOUND:
        return ResolutionDetails(
            value=default_value,
            reason=ResolutionReason.ERROR,
            error_code=flag.error_code,
            error_message=flag.error_message,
            flag_metadata=flag.flag_metadata,
        )
    if flag.value_type != expected_type:
        raise TypeMismatchError(flag.flag_key, str(expected_type), str(flag.value_type))
    value = flag.value if flag.enabled and flag.value is not None else default_value
    return ResolutionDetails(
        value=value,
        reason=flag.reason,
        variant=flag.variant,
        error_code=flag.error_code,
        error_message=flag.error_message,
        flag_metadata=flag.flag_metadata,
    )


def _request_payload(context: EvaluationContext) -> dict[str, Any]:
    payload: dict[str, Any] = {}
    if context.targeting_key:
        payload["identityId"] = context.targeting_key
    if context.attributes:
        payload["context"] = dict(context.attributes)
    return payload


class FlagsClient:
    """フィーチャーフラグクライアント。

    リモートモードでは評価ごとに API を呼び、結果を TTL キャッシュに保持する。
    ローカルモードでは設定を同期し、評価はネットワークなしで行う。
    ローカルモードは最初の評価で自動的に初期化される。

    使い方:
        async with FlagsClient(token="sdk_...", local_evaluation=True) as client:
            enabled = await client.get_boolean_value("new-checkout", False, {"targetingKey": "user-1"})
    """

    def __init__(
        self,
        config: FlagsConfig | None = None,
        *,
        token: str | None = None,
        local_evaluation: bool | None = None,
        initial_configuration: Configuration | Mapping[str, Any] | None = None,
        storage: KeyValueStore | None = None,
        event_source_factory: EventSourceFactory | None = None,
        on_configuration_change: Callable[[Configuration], None] | None = None,
        on_error: Callable[[Exception], None] | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        if config is None:
            if not token or not token.strip():
                raise ValidationError("API key is required", field="token")
            config = FlagsConfig(token=token)
        elif not config.token.strip():
            raise ValidationError("API key is required", field="token")
        if local_evaluation is not None:
            config = config.model_copy(update={"local_evaluation": local_evaluation})
        self._config = config

        if config.enable_persistent_cache and storage is None:
            logger.warning("Persistent cache enabled without a storage, persistence disabled")
        persistence = storage if config.enable_persistent_cache else None
        key_hash = credential_hash(config.token)

        self._http = FlagsHttpClient(
            token=config.token,
            base_url=config.base_url,
            timeout_seconds=config.timeout_seconds,
            transport=transport,
        )

        if isinstance(initial_configuration, Mapping):
            initial_configuration = parse_configuration(dict(initial_configuration))
        self._store = ConfigurationStore(initial_configuration)
        self._evaluator = FlagEvaluator(self._store)

        if event_source_factory is None:
            event_source_factory = http_event_source_factory(
                reconnect_delay_seconds=config.stream_reconnect_delay_seconds,
                connect_timeout_seconds=config.timeout_seconds,
                transport=transport,
            )
        self._sync = SyncController(
            self._http,
            self._store,
            polling_interval_seconds=config.polling_interval_seconds,
            streaming=config.streaming,
            event_source_factory=event_source_factory,
            on_configuration_change=on_configuration_change,
            on_error=on_error,
            persistence=persistence if config.local_evaluation else None,
            persistence_key=f"{CONFIG_STORAGE_PREFIX}{key_hash}",
            persistence_ttl_seconds=config.cache_ttl_seconds,
            clock=clock,
        )
        self._cache = EvaluationCache(
            ttl_seconds=config.cache_ttl_seconds,
            store=persistence if not config.local_evaluation else None,
            storage_key=f"{CACHE_STORAGE_PREFIX}{key_hash}",
            clock=clock,
        )
        self._closed = False
        logger.debug(
            "Flags client created",
            mode="local" if config.local_evaluation else "remote",
            base_url=self._http.base_url,
        )

    @property
    def config(self) -> FlagsConfig:
        return self._config

    @property
    def local_evaluation(self) -> bool:
        return self._config.local_evaluation

    @property
    def state(self) -> ClientState:
        if self.local_evaluation:
            return self._sync.state
        return ClientState.CLOSED if self._closed else ClientState.READY

    def is_ready(self) -> bool:
        if self.local_evaluation:
            return self._sync.is_ready()
        return not self._closed

    # ==================== ライフサイクル ====================

    async def initialize(self) -> None:
        """ローカルモードで設定を取得して更新を開始する。リモートモードでは何もしない。"""
        if self.local_evaluation:
            await self._sync.initialize()

    async def refresh(self) -> None:
        """ローカルモードで設定を再取得する。リモートモードでは何もしない。"""
        if self.local_evaluation:
            await self._sync.refresh()

    async def close(self) -> None:
        """バックグラウンド処理を停止する。最後の設定は引き続き参照できる。"""
        self._closed = True
        await self._sync.close()

    async def __aenter__(self) -> FlagsClient:
        await self.initialize()
        return self

    async def __aexit__(self, *exc: object) -> None:
        await self.close()

    def on(self, listener: FlagsListener) -> Callable[[], None]:
        """ready / configurationChanged / error イベントを購読する。"""
        return self._sync.on(listener)

    def off(self, listener: FlagsListener) -> None:
        self._sync.off(listener)

    # ==================== 評価 ====================

    async def evaluate_flag(
        self,
        flag_key: str,
        context: ContextLike = None,
        default_value: Any = None,
    ) -> EvaluatedFlag:
        """単一フラグを評価する。

        Raises:
            ValidationError: flag_key が空、または close 済みで設定がない場合
            AuthenticationError: API キーが無効な場合
            ApiError: API がエラーを返した場合
            RequestTimeoutError: リクエストが期限切れになった場合
        """
        if not flag_key:
            raise ValidationError("Flag key is required", field="flag_key")
        ctx = coerce_context(context)
        if self.local_evaluation:
            await self._ensure_local_ready()
            return self._evaluator.evaluate(flag_key, ctx)
        self._ensure_open()
        return await self._evaluate_remote(flag_key, ctx, default_value)

    async def get_snapshot(self, context: ContextLike = None) -> FlagSnapshot:
        """全フラグの評価結果を取得する。"""
        ctx = coerce_context(context)
        if self.local_evaluation:
            await self._ensure_local_ready()
            return self._local_snapshot(ctx)
        self._ensure_open()
        key = snapshot_cache_key(ctx.targeting_key)
        cached = self._cache.get(key)
        if cached is not None:
            return FlagSnapshot.from_dict(cached)
        data = await self._http.post(SNAPSHOT_PATH, _request_payload(ctx))
        self._cache.set(key, data)
        return FlagSnapshot.from_dict(data)

    def get_cached_snapshot(self, context: ContextLike = None) -> FlagSnapshot | None:
        """ネットワークにアクセスせず、手元の情報だけでスナップショットを返す。"""
        ctx = coerce_context(context)
        if self.local_evaluation:
            if not self._store.is_ready():
                return None
            return self._local_snapshot(ctx)
        cached = self._cache.get(snapshot_cache_key(ctx.targeting_key))
        return FlagSnapshot.from_dict(cached) if cached is not None else None

    async def get_boolean_value(
        self, flag_key: str, default_value: bool, context: ContextLike = None
    ) -> bool:
        details = await self.get_boolean_details(flag_key, default_value, context)
        return details.value

    async def get_boolean_details(
        self, flag_key: str, default_value: bool, context: ContextLike = None
    ) -> ResolutionDetails[bool]:
        return await self._resolve(flag_key, default_value, FlagValueType.BOOLEAN, context)

    async def get_string_value(
        self, flag_key: str, default_value: str, context: ContextLike = None
    ) -> str:
        details = await self.get_string_details(flag_key, default_value, context)
        return details.value

    async def get_string_details(
        self, flag_key: str, default_value: str, context: ContextLike = None
    ) -> ResolutionDetails[str]:
        return await self._resolve(flag_key, default_value, FlagValueType.STRING, context)

    async def get_number_value(
        self, flag_key: str, default_value: float, context: ContextLike = None
    ) -> float:
        details = await self.get_number_details(flag_key, default_value, context)
        return details.value

    async def get_number_details(
        self, flag_key: str, default_value: float, context: ContextLike = None
    ) -> ResolutionDetails[float]:
        return await self._resolve(flag_key, default_value, FlagValueType.NUMBER, context)

    async def get_json_value(
        self, flag_key: str, default_value: Any, context: ContextLike = None
    ) -> Any:
        details = await self.get_json_details(flag_key, default_value, context)
        return details.value

    async def get_json_details(
        self, flag_key: str, default_value: Any, context: ContextLike = None
    ) -> ResolutionDetails[Any]:
        return await self._resolve(flag_key, default_value, FlagValueType.JSON, context)

    # ==================== 参照 ====================

    def get_configuration(self) -> Configuration | None:
        return self._store.configuration

    def has_flag(self, flag_key: str) -> bool:
        return self._evaluator.has_flag(flag_key)

    def get_flag_keys(self) -> list[str]:
        return self._evaluator.flag_keys()

    def clear_cache(self) -> None:
        """リモート評価キャッシュ（永続化分を含む）を破棄する。"""
        self._cache.clear()

    # ==================== 内部処理 ====================

    async def _resolve(
        self,
        flag_key: str,
        default_value: T,
        expected_type: FlagValueType,
        context: ContextLike,
    ) -> ResolutionDetails[T]:
        flag = await self.evaluate_flag(flag_key, context, default_value)
        return _to_resolution_details(flag, default_value, expected_type)

    async def _ensure_local_ready(self) -> None:
        state = self._sync.state
        if state == ClientState.CLOSED:
            if not self._store.is_ready():
                raise ValidationError("Client is closed and has no configuration", field="client")
            return
        if state != ClientState.READY:
            await self._sync.initialize()

    def _ensure_open(self) -> None:
        if self._closed:
            raise ValidationError("Client is closed", field="client")

    def _local_snapshot(self, context: EvaluationContext) -> FlagSnapshot:
        configuration = self._store.configuration
        return FlagSnapshot(
            environment_id=configuration.environment_id if configuration else "",
            evaluated_at=datetime.now(timezone.utc).isoformat(),
            flags=self._evaluator.evaluate_all(context),
        )

    async def _evaluate_remote(
        self, flag_key: str, context: EvaluationContext, default_value: Any
    ) -> EvaluatedFlag:
        key = flag_cache_key(flag_key, context.targeting_key)
        cached = self._cache.get(key)
        if cached is not None:
            return EvaluatedFlag.from_dict(cached)

        payload = {"flagKey": flag_key, **_request_payload(context)}
        if default_value is not None:
            payload["defaultValue"] = default_value
        try:
            data = await self._http.post(EVALUATE_PATH, payload)
        except ApiError as e:
            if e.status_code == 404 and isinstance(e.body, dict) and "flagKey" in e.body:
                logger.debug("Flag not found", flag_key=flag_key)
                return flag_not_found(flag_key)
            raise
        self._cache.set(key, data)
        return EvaluatedFlag.from_dict(data)
