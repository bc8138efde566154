"""SegmentMatcher のユニットテスト"""

from typing import Any

import pytest
from k1s0_flags.configuration import Segment, SegmentRule
from k1s0_flags.models import EvaluationContext
from k1s0_flags.segments import SegmentMatcher, match_rule, normalize


def ctx(**attributes: Any) -> EvaluationContext:
    return EvaluationContext(targeting_key="user-1", attributes=attributes)


def rule(field: str, operator: str, value: Any = None) -> SegmentRule:
    return SegmentRule(field=field, operator=operator, value=value)


@pytest.mark.parametrize(
    ("operator", "actual", "expected", "result"),
    [
        ("eq", "premium", "premium", True),
        ("eq", "free", "premium", False),
        ("eq", 42, "42", True),
        ("eq", True, "true", True),
        ("neq", "free", "premium", True),
        ("neq", "premium", "premium", False),
        ("contains", "alice@example.com", "@example", True),
        ("contains", "alice@test.dev", "@example", False),
        ("not_contains", "alice@test.dev", "@example", True),
        ("starts_with", "ja-JP", "ja", True),
        ("starts_with", "en-US", "ja", False),
        ("ends_with", "alice@example.com", ".com", True),
        ("ends_with", "alice@example.org", ".com", False),
        ("gt", 30, 18, True),
        ("gt", 18, 18, False),
        ("gte", 18, 18, True),
        ("lt", "5", 10, True),
        ("lte", 10.0, "10", True),
        ("lte", 11, 10, False),
        ("in", "JP", "US, JP ,DE", True),
        ("in", "FR", "US,JP,DE", False),
        ("not_in", "FR", "US,JP,DE", True),
        ("not_in", "JP", "US,JP,DE", False),
    ],
)
def test_operators(operator: str, actual: Any, expected: Any, result: bool) -> None:
    """各演算子の評価。"""
    assert match_rule(ctx(attr=actual), rule("attr", operator, expected)) is result


def test_numeric_operator_with_non_number_is_false() -> None:
    """数値に変換できない値の比較は不一致。"""
    assert match_rule(ctx(age="old"), rule("age", "gt", 10)) is False
    assert match_rule(ctx(age=20), rule("age", "lt", "abc")) is False


def test_missing_field_never_matches_except_not_exists() -> None:
    """属性が存在しない場合は not_exists 以外すべて不一致。"""
    empty = ctx()
    for operator in ["eq", "neq", "contains", "not_contains", "starts_with",
                     "ends_with", "gt", "gte", "lt", "lte", "exists", "in", "not_in"]:
        assert match_rule(empty, rule("plan", operator, "x")) is False, operator
    assert match_rule(empty, rule("plan", "not_exists")) is True


def test_exists_ignores_value() -> None:
    """exists はキーの存在のみを見る（値が None でも一致）。"""
    context = ctx(plan=None)
    assert match_rule(context, rule("plan", "exists")) is True
    assert match_rule(context, rule("plan", "not_exists")) is False


def test_targeting_key_fields() -> None:
    """targetingKey / identityId はターゲティングキーを参照する。"""
    context = EvaluationContext(targeting_key="user-42")
    assert match_rule(context, rule("targetingKey", "eq", "user-42")) is True
    assert match_rule(context, rule("identityId", "starts_with", "user-")) is True
    assert match_rule(EvaluationContext(), rule("targetingKey", "exists")) is False


def test_unknown_operator_does_not_match() -> None:
    """未知の演算子は不一致。"""
    assert match_rule(ctx(plan="premium"), rule("plan", "regex", ".*")) is False


def test_segment_rules_are_and_combined() -> None:
    """セグメント内の条件は全て満たす必要がある。"""
    segment = Segment(
        key="jp-premium",
        rules=(rule("plan", "eq", "premium"), rule("country", "eq", "JP")),
    )
    matcher = SegmentMatcher()
    assert matcher.matches(ctx(plan="premium", country="JP"), segment) is True
    assert matcher.matches(ctx(plan="premium", country="US"), segment) is False


def test_segment_without_rules_matches_everyone() -> None:
    """条件なしのセグメントは常に一致。"""
    assert SegmentMatcher().matches(ctx(), Segment(key="all")) is True


def test_matching_does_not_mutate_context() -> None:
    """評価でコンテキストが変更されないこと。"""
    attributes = {"plan": "premium"}
    context = ctx(**attributes)
    SegmentMatcher().matches(context, Segment(key="s", rules=(rule("plan", "eq", "premium"),)))
    assert dict(context.attributes) == attributes


def test_normalize() -> None:
    """比較用の正規化。"""
    assert normalize(None) == ""
    assert normalize(False) == "false"
    assert normalize(3.0) == "3"
    assert normalize(3.5) == "3.5"
    assert normalize({"b": 1, "a": 2}) == '{"a":2,"b":1}'
