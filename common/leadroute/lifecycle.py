"""
Lead lifecycle state machine.

    processing -> review | classify | done
    review     -> done      (approve / override)
    classify   -> done      (human classification)
    done       -> classify  (reroute, at most once)

transition() is pure: it returns a new Lead and never mutates its input.
The classification history is only ever prepended to.
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Dict, FrozenSet, Optional, Tuple, Type

from leadroute.enums import AuthorEnum, ClassificationEnum, LeadStatusEnum, TerminalStateEnum
from leadroute.exceptions import AlreadyRerouted, InvalidTransition
from leadroute.policy import (
    AutoForward,
    AutoSend,
    Decision,
    RequireReview,
    parse_classification,
    terminal_state_for,
    validate_confidence,
)
from leadroute.schemas import (
    ClassificationEntry,
    ClassificationResult,
    Email,
    Lead,
    Reroute,
    StatusInfo,
    Submission,
    utcnow,
)

logger = logging.getLogger(__name__)

PROCESSING = LeadStatusEnum.PROCESSING
CLASSIFY = LeadStatusEnum.CLASSIFY
REVIEW = LeadStatusEnum.REVIEW
DONE = LeadStatusEnum.DONE


@dataclass(frozen=True)
class Classified:
    """The policy evaluator produced a decision for an automatic classification."""
    result: ClassificationResult
    decision: Decision
    email_text: Optional[str] = None
    at: datetime = field(default_factory=utcnow)


@dataclass(frozen=True)
class ClassifierFailed:
    """The classification service could not produce a usable result."""
    at: datetime = field(default_factory=utcnow)


@dataclass(frozen=True)
class SampledForValidation:
    """The lead was drawn into the human-validation lane; the bot call is kept as a shadow."""
    result: ClassificationResult
    at: datetime = field(default_factory=utcnow)


@dataclass(frozen=True)
class Approve:
    reviewer: str
    at: datetime = field(default_factory=utcnow)


@dataclass(frozen=True)
class Override:
    reviewer: str
    classification: ClassificationEnum
    at: datetime = field(default_factory=utcnow)


@dataclass(frozen=True)
class HumanClassify:
    reviewer: str
    classification: ClassificationEnum
    at: datetime = field(default_factory=utcnow)


@dataclass(frozen=True)
class EditEmail:
    editor: str
    text: str
    at: datetime = field(default_factory=utcnow)


@dataclass(frozen=True)
class Reopened:
    """A done lead was disputed. Only leadroute.reroute should build this event."""
    reroute: Reroute


def create_lead(submission: Submission, received_at: Optional[datetime] = None) -> Lead:
    """New lead in processing with an empty history."""
    return Lead(
        submission=submission,
        status=StatusInfo(status=PROCESSING, received_at=received_at or utcnow()),
    )


def current_classification(lead: Lead) -> Optional[ClassificationEnum]:
    entry = lead.classifications.current()
    return entry.classification if entry else None


def was_reclassified(lead: Lead) -> bool:
    return len(lead.classifications) > 1


def derive_terminal_state(lead: Lead) -> Optional[TerminalStateEnum]:
    """Terminal state of a lead; None unless its status is done."""
    if lead.status.status != DONE:
        return None
    entry = lead.classifications.current()
    if entry is None:
        return None
    return terminal_state_for(entry.classification)


def _classification_of(decision: Decision, result: ClassificationResult) -> ClassificationEnum:
    if isinstance(decision, (AutoSend, AutoForward)):
        # existing-customer forwarding overrides whatever the model said
        if decision.terminal_state == TerminalStateEnum.FORWARDED_ACCOUNT_TEAM:
            return ClassificationEnum.EXISTING
    return parse_classification(result.classification)


def _on_classified(lead: Lead, event: Classified) -> Lead:
    decision = event.decision
    confidence = validate_confidence(event.result.confidence)
    needs_review = isinstance(decision, RequireReview)
    entry = ClassificationEntry(
        author=AuthorEnum.BOT,
        classification=_classification_of(decision, event.result),
        timestamp=event.at,
        needs_review=needs_review,
        applied_threshold=decision.applied_threshold,
        confidence=confidence,
    )
    if needs_review:
        status = lead.status.model_copy(update={"status": REVIEW})
    else:
        status = lead.status.model_copy(update={
            "status": DONE,
            "sent_at": event.at,
            "sent_by": decision.sent_by,
        })

    update = {
        "classification_result": event.result,
        "classifications": lead.classifications.prepend(entry),
        "status": status,
        "rollout": decision.rollout,
    }
    if event.email_text is not None:
        update["email"] = Email(text=event.email_text, created_at=event.at, edited_at=event.at)
    return lead.model_copy(update=update)


def _on_classifier_failed(lead: Lead, event: ClassifierFailed) -> Lead:
    return lead.model_copy(update={"status": lead.status.model_copy(update={"status": CLASSIFY})})


def _on_sampled(lead: Lead, event: SampledForValidation) -> Lead:
    validate_confidence(event.result.confidence)
    parse_classification(event.result.classification)
    return lead.model_copy(update={
        "classification_result": event.result,
        "validation_sampled": True,
        "status": lead.status.model_copy(update={"status": CLASSIFY}),
    })


def _mark_done(lead: Lead, by: str, at: datetime) -> StatusInfo:
    return lead.status.model_copy(update={"status": DONE, "sent_at": at, "sent_by": by})


def _on_approve(lead: Lead, event: Approve) -> Lead:
    if lead.classifications.current() is None:
        raise InvalidTransition(lead.status.status, "Approve")
    return lead.model_copy(update={"status": _mark_done(lead, event.reviewer, event.at)})


def _human_entry(reviewer: str, classification: ClassificationEnum, at: datetime) -> ClassificationEntry:
    return ClassificationEntry(
        author=AuthorEnum.HUMAN,
        classification=parse_classification(classification),
        timestamp=at,
        author_name=reviewer,
    )


def _on_human_call(lead: Lead, event) -> Lead:
    entry = _human_entry(event.reviewer, event.classification, event.at)
    return lead.model_copy(update={
        "classifications": lead.classifications.prepend(entry),
        "status": _mark_done(lead, event.reviewer, event.at),
    })


def _on_edit_email(lead: Lead, event: EditEmail) -> Lead:
    if lead.email is None:
        email = Email(text=event.text, created_at=event.at, edited_at=event.at, last_edited_by=event.editor)
    else:
        email = lead.email.model_copy(update={
            "text": event.text,
            "edited_at": event.at,
            "last_edited_by": event.editor,
        })
    return lead.model_copy(update={"email": email})


def _on_reopened(lead: Lead, event: Reopened) -> Lead:
    if lead.reroute is not None:
        raise AlreadyRerouted(lead.id)
    return lead.model_copy(update={
        "reroute": event.reroute,
        "status": lead.status.model_copy(update={"status": CLASSIFY}),
    })


_Handler = Callable[[Lead, object], Lead]

TRANSITIONS: Dict[Type, Tuple[FrozenSet[LeadStatusEnum], _Handler]] = {
    Classified: (frozenset({PROCESSING}), _on_classified),
    ClassifierFailed: (frozenset({PROCESSING}), _on_classifier_failed),
    SampledForValidation: (frozenset({PROCESSING}), _on_sampled),
    Approve: (frozenset({REVIEW}), _on_approve),
    Override: (frozenset({REVIEW}), _on_human_call),
    HumanClassify: (frozenset({CLASSIFY}), _on_human_call),
    EditEmail: (frozenset({PROCESSING, CLASSIFY, REVIEW}), _on_edit_email),
    Reopened: (frozenset({DONE}), _on_reopened),
}


def transition(lead: Lead, event) -> Lead:
    """
    Apply an event to a lead.

    Args:
        lead: Current lead
        event: One of the event types in TRANSITIONS

    Returns:
        Lead: New lead with the event applied

    Raises:
        InvalidTransition: If the event is not valid from the lead's status
        TypeError: If the event type is unknown
    """
    try:
        allowed, handler = TRANSITIONS[type(event)]
    except KeyError:
        raise TypeError(f"Unknown lifecycle event: {type(event).__name__}") from None

    current = lead.status.status
    if current not in allowed:
        raise InvalidTransition(current, type(event).__name__)

    updated = handler(lead, event)
    logger.debug(
        "Lead %s: %s %s -> %s",
        lead.id, type(event).__name__, current.value, updated.status.status.value,
    )
    return updated
