"""ローカル評価エンジン

ConfigurationStore が保持する設定に対してフラグを評価する。ネットワークには
アクセスせず、ルール数とセグメント条件数に比例するコストで同期的に完了する。
"""

from __future__ import annotations

import copy
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

from .bucketing import in_rollout
from .configuration import FlagDefinition, FlagRule, FlagValueType, Segment
from .models import ErrorCode, EvaluatedFlag, EvaluationContext, ResolutionReason
from .segments import SegmentMatcher
from .store import ConfigurationStore

_matcher = SegmentMatcher()


@dataclass
class LocalEvaluationResult:
    """評価結果と、一致したルール・セグメント。"""

    flag: EvaluatedFlag
    matched_rule: FlagRule | None = None
    matched_segment: str | None = None


def _rule_matches(
    rule: FlagRule,
    flag_key: str,
    context: EvaluationContext,
    segments_by_key: Mapping[str, Segment],
) -> bool:
    if rule.segment_key:
        segment = segments_by_key.get(rule.segment_key)
        if segment is None or not _matcher.matches(context, segment):
            return False
    if rule.rollout_percentage is not None:
        # セグメントと併用された場合は両方の条件を満たす必要がある
        if not in_rollout(context.targeting_key, flag_key, rule.rollout_percentage):
            return False
    return True


def _detached(value: Any) -> Any:
    # 保持中の設定と dict / list を共有しない
    if isinstance(value, (dict, list)):
        return copy.deepcopy(value)
    return value


def _reason_for(rule: FlagRule) -> ResolutionReason:
    if rule.segment_key:
        return ResolutionReason.TARGETING_MATCH
    if rule.rollout_percentage is not None:
        return ResolutionReason.SPLIT
    return ResolutionReason.STATIC


def evaluate_flag(
    flag: FlagDefinition,
    context: EvaluationContext,
    segments_by_key: Mapping[str, Segment],
) -> LocalEvaluationResult:
    """フラグ定義をコンテキストに対して評価する。"""
    # sorted は安定ソートなので同一 priority は定義順を保つ
    for rule in sorted(flag.rules, key=lambda r: r.priority):
        if _rule_matches(rule, flag.key, context, segments_by_key):
            return LocalEvaluationResult(
                flag=EvaluatedFlag(
                    flag_key=flag.key,
                    enabled=rule.enabled,
                    value_type=flag.value_type,
                    value=_detached(rule.value) if rule.enabled else None,
                    reason=_reason_for(rule),
                ),
                matched_rule=rule,
                matched_segment=rule.segment_key,
            )

    return LocalEvaluationResult(
        flag=EvaluatedFlag(
            flag_key=flag.key,
            enabled=flag.default_enabled,
            value_type=flag.value_type,
            value=_detached(flag.default_value) if flag.default_enabled else None,
            reason=ResolutionReason.DEFAULT,
        )
    )


def flag_not_found(flag_key: str) -> EvaluatedFlag:
    """FLAG_NOT_FOUND を表す評価結果を返す。"""
    return EvaluatedFlag(
        flag_key=flag_key,
        enabled=False,
        value_type=FlagValueType.BOOLEAN,
        value=None,
        reason=ResolutionReason.ERROR,
        error_code=ErrorCode.FLAG_NOT_FOUND,
        error_message=f"Flag '{flag_key}' not found",
    )


class FlagEvaluator:
    """ConfigurationStore に対するフラグ評価器。"""

    def __init__(self, store: ConfigurationStore) -> None:
        self._store = store

    def evaluate(
        self, flag_key: str, context: EvaluationContext | None = None
    ) -> EvaluatedFlag:
        flags = self._store.flags_by_key
        segments = self._store.segments_by_key
        flag = flags.get(flag_key)
        if flag is None:
            return flag_not_found(flag_key)
        return evaluate_flag(flag, context or EvaluationContext(), segments).flag

    def evaluate_all(self, context: EvaluationContext | None = None) -> list[EvaluatedFlag]:
        """全フラグを評価する（設定内の定義順）。"""
        flags = self._store.flags_by_key
        segments = self._store.segments_by_key
        ctx = context or EvaluationContext()
        return [evaluate_flag(flag, ctx, segments).flag for flag in flags.values()]

    def has_flag(self, flag_key: str) -> bool:
        return flag_key in self._store.flags_by_key

    def flag_keys(self) -> list[str]:
        return list(self._store.flags_by_key)
