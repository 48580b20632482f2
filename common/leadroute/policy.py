"""
Classification policy evaluator.

Turns a classification result and the active configuration into a routing
decision: send automatically, forward automatically, or hold for review.

Order of checks:
    1. existing customer (CRM match)  -> forward to account team, always
    2. threshold for the classification
    3. rollout draw
    4. high-quality auto-send gate
"""
import logging
import math
import random
from typing import Callable, Optional, Union

from pydantic import BaseModel, ConfigDict

from leadroute.enums import ClassificationEnum, ReviewReasonEnum, TerminalStateEnum
from leadroute.exceptions import ClassificationUnknown, InvalidConfidence, InvalidRolloutDraw
from leadroute.schemas import ClassificationResult, Configuration, RolloutRecord

logger = logging.getLogger(__name__)

SENT_BY_BOT = "bot"
SENT_BY_SYSTEM = "system"


class AutoSend(BaseModel):
    """Send the customer-facing message without human review."""
    model_config = ConfigDict(frozen=True)

    terminal_state: TerminalStateEnum
    applied_threshold: Optional[float] = None
    rollout: Optional[RolloutRecord] = None
    sent_by: str = SENT_BY_BOT


class AutoForward(BaseModel):
    """Forward the lead to an internal team without human review."""
    model_config = ConfigDict(frozen=True)

    terminal_state: TerminalStateEnum
    applied_threshold: Optional[float] = None
    rollout: Optional[RolloutRecord] = None
    sent_by: str = SENT_BY_BOT


class RequireReview(BaseModel):
    """Hold the lead for a human to approve or override."""
    model_config = ConfigDict(frozen=True)

    reason: ReviewReasonEnum
    applied_threshold: Optional[float] = None
    rollout: Optional[RolloutRecord] = None


Decision = Union[AutoSend, AutoForward, RequireReview]


def parse_classification(value) -> ClassificationEnum:
    """Map a raw classifier value onto the fixed set, failing loudly otherwise."""
    if isinstance(value, ClassificationEnum):
        return value
    try:
        return ClassificationEnum(value)
    except ValueError:
        raise ClassificationUnknown(value) from None


def terminal_state_for(classification: ClassificationEnum) -> TerminalStateEnum:
    """Terminal state reached when a lead is done with this classification."""
    if classification == ClassificationEnum.HIGH_QUALITY:
        return TerminalStateEnum.SENT_MEETING_OFFER
    if classification == ClassificationEnum.LOW_QUALITY:
        return TerminalStateEnum.SENT_GENERIC
    if classification == ClassificationEnum.SUPPORT:
        return TerminalStateEnum.FORWARDED_SUPPORT
    if classification == ClassificationEnum.EXISTING:
        return TerminalStateEnum.FORWARDED_ACCOUNT_TEAM
    raise ClassificationUnknown(classification)


def threshold_for(classification: ClassificationEnum, config: Configuration) -> Optional[float]:
    """
    Confidence threshold for a classification.

    Returns None for existing customers: they are only ever forwarded through
    the deterministic CRM match, never on model confidence.
    """
    if classification == ClassificationEnum.HIGH_QUALITY:
        return config.thresholds.high_quality
    if classification == ClassificationEnum.LOW_QUALITY:
        return config.thresholds.low_quality
    if classification == ClassificationEnum.SUPPORT:
        return config.thresholds.support
    if classification == ClassificationEnum.EXISTING:
        return None
    raise ClassificationUnknown(classification)


def validate_confidence(confidence) -> float:
    if isinstance(confidence, bool) or not isinstance(confidence, (int, float)):
        raise InvalidConfidence(confidence)
    if math.isnan(confidence) or not 0.0 <= confidence <= 1.0:
        raise InvalidConfidence(confidence)
    return float(confidence)


def validate_rollout_draw(draw) -> float:
    if isinstance(draw, bool) or not isinstance(draw, (int, float)):
        raise InvalidRolloutDraw(draw)
    if math.isnan(draw) or not 0.0 <= draw < 1.0:
        raise InvalidRolloutDraw(draw)
    return float(draw)


def draw_rollout(rng: Callable[[], float] = random.random) -> float:
    """Draw the rollout value for a lead. Call once per lead and persist the outcome."""
    return rng()


def _automatic(classification: ClassificationEnum, **fields) -> Decision:
    terminal_state = terminal_state_for(classification)
    if terminal_state in (
        TerminalStateEnum.FORWARDED_SUPPORT,
        TerminalStateEnum.FORWARDED_ACCOUNT_TEAM,
    ):
        return AutoForward(terminal_state=terminal_state, **fields)
    return AutoSend(terminal_state=terminal_state, **fields)


def evaluate(
    result: ClassificationResult,
    config: Configuration,
    rollout_draw: float,
) -> Decision:
    """
    Decide what to do with a classified lead.

    Args:
        result: Latest automatic classification of the lead
        config: Active configuration
        rollout_draw: Value in [0, 1) drawn once for this lead by draw_rollout();
            passing the same value again reproduces the same decision

    Returns:
        Decision: AutoSend, AutoForward or RequireReview

    Raises:
        InvalidConfidence: If the confidence is outside [0, 1]
        InvalidRolloutDraw: If the rollout draw is outside [0, 1)
        ClassificationUnknown: If the classification is not one of the fixed set
    """
    classification = parse_classification(result.classification)
    confidence = validate_confidence(result.confidence)
    rollout_draw = validate_rollout_draw(rollout_draw)

    if result.is_existing_customer:
        logger.info("Existing customer detected, forwarding to account team")
        return AutoForward(
            terminal_state=TerminalStateEnum.FORWARDED_ACCOUNT_TEAM,
            sent_by=SENT_BY_SYSTEM,
        )

    threshold = threshold_for(classification, config)
    if threshold is None:
        logger.info("No threshold for %s without CRM match, holding for review", classification.value)
        return RequireReview(reason=ReviewReasonEnum.NO_THRESHOLD)

    if confidence < threshold:
        logger.info(
            "Needs review: confidence %.3f < threshold %.3f for %s",
            confidence, threshold, classification.value,
        )
        return RequireReview(reason=ReviewReasonEnum.BELOW_THRESHOLD, applied_threshold=threshold)

    percentage = config.rollout.percentage
    rollout = RolloutRecord(
        percentage=percentage,
        draw=rollout_draw,
        proceeded=rollout_draw < percentage,
    )
    if not rollout.proceeded:
        logger.info(
            "Rollout held: draw %.3f >= percentage %.3f for %s",
            rollout_draw, percentage, classification.value,
        )
        return RequireReview(
            reason=ReviewReasonEnum.ROLLOUT_HELD,
            applied_threshold=threshold,
            rollout=rollout,
        )

    if classification == ClassificationEnum.HIGH_QUALITY and not config.allow_high_quality_auto_send:
        logger.info("High-quality auto-send disabled, holding for review")
        return RequireReview(
            reason=ReviewReasonEnum.HIGH_QUALITY_GATE,
            applied_threshold=threshold,
            rollout=rollout,
        )

    return _automatic(classification, applied_threshold=threshold, rollout=rollout)
