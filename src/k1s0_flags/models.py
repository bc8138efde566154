"""flags データモデル"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any, Generic, TypeVar

T = TypeVar("T")

TARGETING_KEY_FIELDS = ("targetingKey", "identityId")


class ResolutionReason(StrEnum):
    """評価結果の理由（OpenFeature 互換）。"""

    STATIC = "STATIC"
    DEFAULT = "DEFAULT"
    TARGETING_MATCH = "TARGETING_MATCH"
    SPLIT = "SPLIT"
    CACHED = "CACHED"
    DISABLED = "DISABLED"
    UNKNOWN = "UNKNOWN"
    STALE = "STALE"
    ERROR = "ERROR"


class ErrorCode(StrEnum):
    """評価エラーコード（OpenFeature 互換）。"""

    PROVIDER_NOT_READY = "PROVIDER_NOT_READY"
    FLAG_NOT_FOUND = "FLAG_NOT_FOUND"
    PARSE_ERROR = "PARSE_ERROR"
    TYPE_MISMATCH = "TYPE_MISMATCH"
    TARGETING_KEY_MISSING = "TARGETING_KEY_MISSING"
    INVALID_CONTEXT = "INVALID_CONTEXT"
    GENERAL = "GENERAL"


class ClientState(StrEnum):
    """クライアントのライフサイクル状態。"""

    UNINITIALIZED = "UNINITIALIZED"
    INITIALIZING = "INITIALIZING"
    READY = "READY"
    CLOSED = "CLOSED"


@dataclass(frozen=True)
class EvaluationContext:
    """フラグ評価コンテキスト。評価処理からは変更されない。"""

    targeting_key: str | None = None
    attributes: Mapping[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> EvaluationContext:
        """{"targetingKey": ..., ...} 形式の辞書から生成する。"""
        attributes = {k: v for k, v in data.items() if k != "targetingKey"}
        targeting_key = data.get("targetingKey")
        return cls(
            targeting_key=str(targeting_key) if targeting_key is not None else None,
            attributes=attributes,
        )

    def has(self, name: str) -> bool:
        """属性キーが存在するか（値は問わない）。"""
        if name in TARGETING_KEY_FIELDS:
            return self.targeting_key is not None
        return name in self.attributes

    def get(self, name: str) -> Any:
        if name in TARGETING_KEY_FIELDS:
            return self.targeting_key
        return self.attributes.get(name)


@dataclass
class EvaluatedFlag:
    """単一フラグの評価結果。"""

    flag_key: str
    enabled: bool
    value_type: str
    value: Any = None
    reason: str = ResolutionReason.UNKNOWN
    variant: str | None = None
    error_code: str | None = None
    error_message: str | None = None
    flag_metadata: dict[str, Any] | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> EvaluatedFlag:
        """API レスポンス辞書から EvaluatedFlag を生成する。"""
        return cls(
            flag_key=data.get("flagKey", ""),
            enabled=bool(data.get("enabled", False)),
            value_type=data.get("valueType", "boolean"),
            value=data.get("value"),
            reason=data.get("reason", ResolutionReason.UNKNOWN),
            variant=data.get("variant"),
            error_code=data.get("errorCode"),
            error_message=data.get("errorMessage"),
            flag_metadata=data.get("flagMetadata"),
        )

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "flagKey": self.flag_key,
            "enabled": self.enabled,
            "valueType": str(self.value_type),
            "value": self.value,
            "reason": str(self.reason),
        }
        if self.variant is not None:
            data["variant"] = self.variant
        if self.error_code is not None:
            data["errorCode"] = str(self.error_code)
        if self.error_message is not None:
            data["errorMessage"] = self.error_message
        if self.flag_metadata is not None:
            data["flagMetadata"] = self.flag_metadata
        return data


@dataclass
class ResolutionDetails(Generic[T]):
    """型付きアクセサの戻り値。値と評価メタデータを保持する。"""

    value: T
    reason: str
    variant: str | None = None
    error_code: str | None = None
    error_message: str | None = None
    flag_metadata: dict[str, Any] | None = None


@dataclass
class FlagSnapshot:
    """全フラグの評価結果スナップショット。"""

    environment_id: str
    evaluated_at: str
    flags: list[EvaluatedFlag] = field(default_factory=list)
    project_id: str = ""

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> FlagSnapshot:
        return cls(
            project_id=data.get("projectId", ""),
            environment_id=data.get("environmentId", ""),
            evaluated_at=data.get("evaluatedAt", ""),
            flags=[EvaluatedFlag.from_dict(f) for f in data.get("flags", [])],
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "projectId": self.project_id,
            "environmentId": self.environment_id,
            "evaluatedAt": self.evaluated_at,
            "flags": [f.to_dict() for f in self.flags],
        }

    def get(self, flag_key: str) -> EvaluatedFlag | None:
        """フラグキーで評価結果を引く。"""
        for flag in self.flags:
            if flag.flag_key == flag_key:
                return flag
        return None


def coerce_context(
    context: EvaluationContext | Mapping[str, Any] | None,
) -> EvaluationContext:
    """None や辞書形式のコンテキストを EvaluationContext に揃える。"""
    if context is None:
        return EvaluationContext()
    if isinstance(context, EvaluationContext):
        return context
    return EvaluationContext.from_dict(context)
