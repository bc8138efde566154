"""フラグ設定スナップショットの型定義（pydantic BaseModel, frozen）"""

from __future__ import annotations

from enum import StrEnum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic import ValidationError as PydanticValidationError
from pydantic.alias_generators import to_camel

from .exceptions import ParseError


class FlagValueType(StrEnum):
    """フラグ値の型。"""

    BOOLEAN = "boolean"
    STRING = "string"
    NUMBER = "number"
    JSON = "json"


class SegmentOperator(StrEnum):
    """セグメント条件の演算子。"""

    EQ = "eq"
    NEQ = "neq"
    CONTAINS = "contains"
    NOT_CONTAINS = "not_contains"
    STARTS_WITH = "starts_with"
    ENDS_WITH = "ends_with"
    GT = "gt"
    GTE = "gte"
    LT = "lt"
    LTE = "lte"
    EXISTS = "exists"
    NOT_EXISTS = "not_exists"
    IN = "in"
    NOT_IN = "not_in"


class _WireModel(BaseModel):
    model_config = ConfigDict(
        frozen=True,
        populate_by_name=True,
        alias_generator=to_camel,
    )


class SegmentRule(_WireModel):
    """セグメントを構成する属性条件。"""

    field: str
    # 未知の演算子は評価時に不一致として扱う
    operator: str
    value: Any = None


class Segment(_WireModel):
    """名前付きオーディエンスセグメント（条件は AND 結合）。"""

    key: str
    name: str | None = None
    rules: tuple[SegmentRule, ...] = ()


class FlagRule(_WireModel):
    """ターゲティングルール。priority が小さいほど優先。"""

    priority: int = 0
    segment_key: str | None = None
    rollout_percentage: float | None = Field(default=None, ge=0.0, le=100.0)
    enabled: bool = True
    value: Any = None


class FlagDefinition(_WireModel):
    """フラグ定義。"""

    key: str
    value_type: FlagValueType = FlagValueType.BOOLEAN
    default_enabled: bool = False
    default_value: Any = None
    rules: tuple[FlagRule, ...] = ()


class Configuration(_WireModel):
    """ローカル評価用のフラグ設定全体。etag で識別される。"""

    environment_id: str = ""
    schema_version: str = "1.0"
    generated_at: str = ""
    etag: str | None = None
    flags: tuple[FlagDefinition, ...] = ()
    segments: tuple[Segment, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        """API と同じ camelCase の辞書に変換する。"""
        return self.model_dump(by_alias=True, mode="json")


def parse_configuration(data: Any) -> Configuration:
    """API レスポンス辞書から Configuration を生成する。

    Raises:
        ParseError: 構造が不正な場合
    """
    if not isinstance(data, dict):
        raise ParseError(f"Configuration payload must be an object, got {type(data).__name__}")
    try:
        return Configuration.model_validate(data)
    except PydanticValidationError as e:
        raise ParseError(f"Invalid flag configuration: {e}", cause=e) from e
