import math

import pytest

from conftest import make_config, make_result
from leadroute.enums import ClassificationEnum, ReviewReasonEnum, TerminalStateEnum
from leadroute.exceptions import ClassificationUnknown, InvalidConfidence, InvalidRolloutDraw, PolicyViolation
from leadroute.policy import (
    SENT_BY_BOT,
    SENT_BY_SYSTEM,
    AutoForward,
    AutoSend,
    RequireReview,
    draw_rollout,
    evaluate,
    parse_classification,
    terminal_state_for,
    threshold_for,
)
from leadroute.schemas import ClassificationResult

THRESHOLDED = [
    ClassificationEnum.HIGH_QUALITY,
    ClassificationEnum.LOW_QUALITY,
    ClassificationEnum.SUPPORT,
]


def test_scenario_low_quality_auto_sends_generic():
    """low-quality at 0.95 over a 0.85 threshold with full rollout is sent automatically."""
    config = make_config(low_quality=0.85, rollout=1.0)
    result = make_result(ClassificationEnum.LOW_QUALITY, 0.95)

    decision = evaluate(result, config, rollout_draw=0.42)

    assert isinstance(decision, AutoSend)
    assert decision.terminal_state == TerminalStateEnum.SENT_GENERIC
    assert decision.applied_threshold == 0.85
    assert decision.sent_by == SENT_BY_BOT
    assert decision.rollout.proceeded is True


def test_scenario_high_quality_held_when_auto_send_disabled():
    config = make_config(high_quality=0.98, rollout=1.0, allow_high_quality_auto_send=False)
    result = make_result(ClassificationEnum.HIGH_QUALITY, 0.99)

    decision = evaluate(result, config, rollout_draw=0.0)

    assert isinstance(decision, RequireReview)
    assert decision.reason == ReviewReasonEnum.HIGH_QUALITY_GATE
    assert decision.applied_threshold == 0.98


def test_high_quality_auto_sends_meeting_offer_when_allowed():
    config = make_config(high_quality=0.98, allow_high_quality_auto_send=True)
    result = make_result(ClassificationEnum.HIGH_QUALITY, 0.99)

    decision = evaluate(result, config, rollout_draw=0.5)

    assert isinstance(decision, AutoSend)
    assert decision.terminal_state == TerminalStateEnum.SENT_MEETING_OFFER


def test_support_is_forwarded_not_sent():
    decision = evaluate(make_result(ClassificationEnum.SUPPORT, 0.95), make_config(support=0.9), 0.1)

    assert isinstance(decision, AutoForward)
    assert decision.terminal_state == TerminalStateEnum.FORWARDED_SUPPORT
    assert decision.sent_by == SENT_BY_BOT


@pytest.mark.parametrize("classification", list(ClassificationEnum))
@pytest.mark.parametrize("confidence", [0.0, 0.2, 0.5, 0.99, 1.0])
def test_existing_customer_always_forwarded_to_account_team(classification, confidence):
    """The CRM match wins over every threshold, rollout setting and gate."""
    config = make_config(high_quality=1.0, low_quality=1.0, support=1.0, rollout=0.0)
    result = make_result(classification, confidence, is_existing_customer=True)

    decision = evaluate(result, config, rollout_draw=0.99)

    assert isinstance(decision, AutoForward)
    assert decision.terminal_state == TerminalStateEnum.FORWARDED_ACCOUNT_TEAM
    assert decision.sent_by == SENT_BY_SYSTEM
    assert decision.rollout is None


@pytest.mark.parametrize("classification", THRESHOLDED)
@pytest.mark.parametrize("rollout", [0.0, 0.5, 1.0])
@pytest.mark.parametrize("draw", [0.0, 0.3, 0.999])
def test_below_threshold_requires_review_regardless_of_rollout(classification, rollout, draw):
    config = make_config(high_quality=0.8, low_quality=0.8, support=0.8, rollout=rollout,
                         allow_high_quality_auto_send=True)

    decision = evaluate(make_result(classification, 0.79), config, rollout_draw=draw)

    assert isinstance(decision, RequireReview)
    assert decision.reason == ReviewReasonEnum.BELOW_THRESHOLD
    assert decision.applied_threshold == 0.8
    assert decision.rollout is None


def test_confidence_equal_to_threshold_clears_it():
    config = make_config(low_quality=0.85)

    decision = evaluate(make_result(ClassificationEnum.LOW_QUALITY, 0.85), config, 0.0)

    assert isinstance(decision, AutoSend)


@pytest.mark.parametrize("confidence", [0.98, 0.99, 1.0])
@pytest.mark.parametrize("draw", [0.0, 0.5])
def test_high_quality_gate_forces_review_with_confidence_and_rollout_fixed(confidence, draw):
    result = make_result(ClassificationEnum.HIGH_QUALITY, confidence)

    allowed = evaluate(result, make_config(allow_high_quality_auto_send=True), draw)
    gated = evaluate(result, make_config(allow_high_quality_auto_send=False), draw)

    assert isinstance(allowed, AutoSend)
    assert isinstance(gated, RequireReview)


def test_rollout_miss_holds_for_review_and_records_draw():
    config = make_config(low_quality=0.5, rollout=0.25)

    decision = evaluate(make_result(ClassificationEnum.LOW_QUALITY, 0.9), config, rollout_draw=0.25)

    assert isinstance(decision, RequireReview)
    assert decision.reason == ReviewReasonEnum.ROLLOUT_HELD
    assert decision.rollout.percentage == 0.25
    assert decision.rollout.draw == 0.25
    assert decision.rollout.proceeded is False


def test_rollout_zero_never_proceeds():
    config = make_config(low_quality=0.5, rollout=0.0)

    decision = evaluate(make_result(ClassificationEnum.LOW_QUALITY, 0.9), config, rollout_draw=0.0)

    assert isinstance(decision, RequireReview)


@pytest.mark.parametrize("draw", [0.0, 0.2499, 0.25, 0.7])
def test_same_draw_gives_same_decision(draw):
    config = make_config(low_quality=0.5, rollout=0.25)
    result = make_result(ClassificationEnum.LOW_QUALITY, 0.9)

    assert evaluate(result, config, draw) == evaluate(result, config, draw)


def test_draw_rollout_calls_rng_once():
    calls = []

    def rng():
        calls.append(1)
        return 0.37

    assert draw_rollout(rng) == 0.37
    assert len(calls) == 1


def test_existing_without_crm_match_has_no_threshold():
    decision = evaluate(make_result(ClassificationEnum.EXISTING, 1.0), make_config(), 0.0)

    assert isinstance(decision, RequireReview)
    assert decision.reason == ReviewReasonEnum.NO_THRESHOLD
    assert decision.applied_threshold is None


@pytest.mark.parametrize("confidence", [-0.01, 1.01, 2, math.nan, math.inf])
def test_out_of_range_confidence_rejected(confidence):
    result = ClassificationResult.model_construct(
        classification=ClassificationEnum.LOW_QUALITY,
        confidence=confidence,
        reasoning="",
        is_existing_customer=False,
    )

    with pytest.raises(InvalidConfidence):
        evaluate(result, make_config(), 0.0)


@pytest.mark.parametrize("confidence", [True, "0.9", None])
def test_non_numeric_confidence_rejected(confidence):
    result = ClassificationResult.model_construct(
        classification=ClassificationEnum.LOW_QUALITY,
        confidence=confidence,
        reasoning="",
        is_existing_customer=False,
    )

    with pytest.raises(InvalidConfidence):
        evaluate(result, make_config(), 0.0)


def test_unknown_classification_never_falls_through():
    result = ClassificationResult.model_construct(
        classification="spam",
        confidence=0.99,
        reasoning="",
        is_existing_customer=False,
    )

    with pytest.raises(ClassificationUnknown) as exc_info:
        evaluate(result, make_config(rollout=1.0), 0.0)
    assert exc_info.value.value == "spam"


def test_parse_classification_accepts_wire_values():
    assert parse_classification("high-quality") == ClassificationEnum.HIGH_QUALITY
    assert parse_classification(ClassificationEnum.SUPPORT) == ClassificationEnum.SUPPORT
    with pytest.raises(ClassificationUnknown):
        parse_classification("high_quality")


def test_terminal_state_mapping():
    assert terminal_state_for(ClassificationEnum.HIGH_QUALITY) == TerminalStateEnum.SENT_MEETING_OFFER
    assert terminal_state_for(ClassificationEnum.LOW_QUALITY) == TerminalStateEnum.SENT_GENERIC
    assert terminal_state_for(ClassificationEnum.SUPPORT) == TerminalStateEnum.FORWARDED_SUPPORT
    assert terminal_state_for(ClassificationEnum.EXISTING) == TerminalStateEnum.FORWARDED_ACCOUNT_TEAM


def test_threshold_lookup_uses_configuration():
    config = make_config(high_quality=0.7, low_quality=0.6, support=0.5)

    assert threshold_for(ClassificationEnum.HIGH_QUALITY, config) == 0.7
    assert threshold_for(ClassificationEnum.LOW_QUALITY, config) == 0.6
    assert threshold_for(ClassificationEnum.SUPPORT, config) == 0.5
    assert threshold_for(ClassificationEnum.EXISTING, config) is None


@pytest.mark.parametrize("draw", [-0.5, -0.0001, 1.0, 1.5, math.nan, math.inf, True, "0.3", None])
def test_out_of_range_rollout_draw_rejected(draw):
    """A draw outside [0, 1) never reaches the rollout comparison."""
    config = make_config(low_quality=0.5, rollout=0.0)

    with pytest.raises(InvalidRolloutDraw) as exc_info:
        evaluate(make_result(ClassificationEnum.LOW_QUALITY, 0.9), config, rollout_draw=draw)

    assert isinstance(exc_info.value, PolicyViolation)
    assert exc_info.value.code == "invalid_rollout_draw"


def test_rollout_draw_checked_for_existing_customers_too():
    result = make_result(ClassificationEnum.EXISTING, 1.0, is_existing_customer=True)

    with pytest.raises(InvalidRolloutDraw):
        evaluate(result, make_config(), rollout_draw=1.0)
