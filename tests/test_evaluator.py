"""ローカル評価エンジンのユニットテスト"""

from typing import Any

from conftest import make_config_payload
from k1s0_flags.bucketing import in_rollout
from k1s0_flags.configuration import FlagDefinition, FlagRule, Segment, SegmentRule, parse_configuration
from k1s0_flags.evaluator import FlagEvaluator, evaluate_flag, flag_not_found
from k1s0_flags.models import ErrorCode, EvaluationContext, ResolutionReason
from k1s0_flags.store import ConfigurationStore

PREMIUM = Segment(
    key="premium-users",
    rules=(SegmentRule(field="plan", operator="eq", value="premium"),),
)
SEGMENTS = {"premium-users": PREMIUM}


def make_flag(rules: list[FlagRule], **kwargs: Any) -> FlagDefinition:
    return FlagDefinition(key=kwargs.pop("key", "flag"), rules=tuple(rules), **kwargs)


def ctx(targeting_key: str | None = "user-1", **attributes: Any) -> EvaluationContext:
    return EvaluationContext(targeting_key=targeting_key, attributes=attributes)


def test_premium_feature_end_to_end() -> None:
    """premium-feature のシナリオ。"""
    evaluator = FlagEvaluator(ConfigurationStore(parse_configuration(make_config_payload())))

    premium = evaluator.evaluate("premium-feature", EvaluationContext.from_dict(
        {"targetingKey": "user-1", "plan": "premium"}
    ))
    assert premium.enabled is True
    assert premium.value is True
    assert premium.reason == ResolutionReason.TARGETING_MATCH

    free = evaluator.evaluate("premium-feature", EvaluationContext.from_dict(
        {"targetingKey": "user-2", "plan": "free"}
    ))
    assert free.enabled is False
    assert free.value is None
    assert free.reason == ResolutionReason.DEFAULT


def test_rules_evaluated_by_priority_not_list_order() -> None:
    """priority の小さいルールが優先される（定義順に依存しない）。"""
    flag = make_flag(
        [
            FlagRule(priority=5, value="low"),
            FlagRule(priority=1, segment_key="premium-users", value="high"),
        ],
        value_type="string",
    )
    result = evaluate_flag(flag, ctx(plan="premium"), SEGMENTS)
    assert result.flag.value == "high"
    assert result.matched_segment == "premium-users"

    fallback = evaluate_flag(flag, ctx(plan="free"), SEGMENTS)
    assert fallback.flag.value == "low"
    assert fallback.flag.reason == ResolutionReason.STATIC


def test_equal_priority_keeps_definition_order() -> None:
    """同一 priority は定義順。"""
    flag = make_flag(
        [FlagRule(priority=0, value="first"), FlagRule(priority=0, value="second")],
        value_type="string",
    )
    assert evaluate_flag(flag, ctx(), SEGMENTS).flag.value == "first"


def test_default_when_no_rule_matches() -> None:
    """一致するルールがなければ DEFAULT。"""
    enabled = make_flag([], default_enabled=True, default_value=True)
    result = evaluate_flag(enabled, ctx(), SEGMENTS).flag
    assert (result.enabled, result.value, result.reason) == (True, True, ResolutionReason.DEFAULT)

    disabled = make_flag([], default_enabled=False, default_value=True)
    result = evaluate_flag(disabled, ctx(), SEGMENTS).flag
    assert (result.enabled, result.value, result.reason) == (False, None, ResolutionReason.DEFAULT)


def test_disabled_rule_yields_no_value() -> None:
    """無効ルールに一致した場合は値なし。"""
    flag = make_flag([FlagRule(enabled=False, value=True)], default_enabled=True, default_value=True)
    result = evaluate_flag(flag, ctx(), SEGMENTS)
    assert result.flag.enabled is False
    assert result.flag.value is None
    assert result.matched_rule is flag.rules[0]


def test_json_values_are_not_shared_with_definition() -> None:
    """JSON 値は定義と共有しないコピーを返す。"""
    flag = make_flag(
        [FlagRule(segment_key="premium-users", value={"tier": ["gold"]})],
        value_type="json",
        default_enabled=True,
        default_value={"tier": ["basic"]},
    )

    matched = evaluate_flag(flag, ctx(plan="premium"), SEGMENTS).flag
    matched.value["tier"].append("platinum")
    fallback = evaluate_flag(flag, ctx(plan="free"), SEGMENTS).flag
    fallback.value["tier"].clear()

    assert flag.rules[0].value == {"tier": ["gold"]}
    assert flag.default_value == {"tier": ["basic"]}
    assert evaluate_flag(flag, ctx(plan="premium"), SEGMENTS).flag.value == {"tier": ["gold"]}


def test_unknown_segment_skips_rule() -> None:
    """存在しないセグメントを参照するルールはスキップ。"""
    flag = make_flag([FlagRule(segment_key="missing", value=True)])
    assert evaluate_flag(flag, ctx(), SEGMENTS).flag.reason == ResolutionReason.DEFAULT


def test_rollout_rule_reason_is_split() -> None:
    """ロールアウトのみのルールは SPLIT。"""
    flag = make_flag([FlagRule(rollout_percentage=100, value=True)])
    result = evaluate_flag(flag, ctx(), SEGMENTS).flag
    assert result.reason == ResolutionReason.SPLIT
    assert result.value is True

    none = make_flag([FlagRule(rollout_percentage=0, value=True)])
    assert evaluate_flag(none, ctx(), SEGMENTS).flag.reason == ResolutionReason.DEFAULT


def test_segment_and_rollout_are_both_required() -> None:
    """セグメントとロールアウトを併用したルールは両方を満たす必要がある。"""
    flag = make_flag([FlagRule(segment_key="premium-users", rollout_percentage=50, value=True)])
    for i in range(100):
        key = f"user-{i}"
        result = evaluate_flag(flag, ctx(key, plan="premium"), SEGMENTS).flag
        if in_rollout(key, "flag", 50):
            assert result.reason == ResolutionReason.TARGETING_MATCH
        else:
            assert result.reason == ResolutionReason.DEFAULT
        outside = evaluate_flag(flag, ctx(key, plan="free"), SEGMENTS).flag
        assert outside.reason == ResolutionReason.DEFAULT


def test_flag_not_found() -> None:
    """未定義フラグは FLAG_NOT_FOUND。"""
    evaluator = FlagEvaluator(ConfigurationStore())
    result = evaluator.evaluate("nope")
    assert result == flag_not_found("nope")
    assert result.reason == ResolutionReason.ERROR
    assert result.error_code == ErrorCode.FLAG_NOT_FOUND
    assert result.enabled is False


def test_evaluate_all_and_keys(config_payload: dict[str, Any]) -> None:
    """全フラグ評価とキー一覧。"""
    evaluator = FlagEvaluator(ConfigurationStore(parse_configuration(config_payload)))
    keys = [f["key"] for f in config_payload["flags"]]
    assert evaluator.flag_keys() == keys
    assert [f.flag_key for f in evaluator.evaluate_all(ctx())] == keys
    assert evaluator.has_flag("banner-text") is True
    assert evaluator.has_flag("nope") is False
