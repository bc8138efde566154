"""セグメント条件マッチング"""

from __future__ import annotations

import json
import math
from typing import Any

from .configuration import Segment, SegmentOperator, SegmentRule
from .models import EvaluationContext


def normalize(value: Any) -> str:
    """比較用に値を文字列へ正規化する。"""
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    if isinstance(value, (dict, list, tuple)):
        return json.dumps(value, separators=(",", ":"), sort_keys=True)
    return str(value)


def _to_number(value: Any) -> float | None:
    if isinstance(value, bool):
        return None
    try:
        number = float(normalize(value).strip())
    except ValueError:
        return None
    return None if math.isnan(number) else number


def _split_list(value: Any) -> list[str]:
    return [item.strip() for item in normalize(value).split(",")]


def match_rule(context: EvaluationContext, rule: SegmentRule) -> bool:
    """単一の条件を評価する。"""
    operator = rule.operator
    present = context.has(rule.field)

    if operator == SegmentOperator.NOT_EXISTS:
        return not present
    if not present:
        return False
    if operator == SegmentOperator.EXISTS:
        return True

    actual = normalize(context.get(rule.field))
    expected = normalize(rule.value)

    match operator:
        case SegmentOperator.EQ:
            return actual == expected
        case SegmentOperator.NEQ:
            return actual != expected
        case SegmentOperator.CONTAINS:
            return expected in actual
        case SegmentOperator.NOT_CONTAINS:
            return expected not in actual
        case SegmentOperator.STARTS_WITH:
            return actual.startswith(expected)
        case SegmentOperator.ENDS_WITH:
            return actual.endswith(expected)
        case SegmentOperator.IN:
            return actual in _split_list(rule.value)
        case SegmentOperator.NOT_IN:
            return actual not in _split_list(rule.value)
        case SegmentOperator.GT | SegmentOperator.GTE | SegmentOperator.LT | SegmentOperator.LTE:
            left = _to_number(context.get(rule.field))
            right = _to_number(rule.value)
            if left is None or right is None:
                return False
            if operator == SegmentOperator.GT:
                return left > right
            if operator == SegmentOperator.GTE:
                return left >= right
            if operator == SegmentOperator.LT:
                return left < right
            return left <= right
        case _:
            return False


class SegmentMatcher:
    """コンテキストがセグメントを満たすか判定する。副作用なし。"""

    def matches(self, context: EvaluationContext, segment: Segment) -> bool:
        """全条件が一致する場合のみ True（条件なしは常に一致）。"""
        return all(match_rule(context, rule) for rule in segment.rules)
