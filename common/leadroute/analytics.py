"""
Human vs. automation agreement analytics.

A read-only fold over a snapshot of leads. Each finished lead that carries
both a bot call and a human call yields one comparison:

  - override: the bot call is in the classification history and a human saw
    it (approved it, overrode it, or reclassified after a reroute)
  - blind: the lead was sampled into the human-validation lane, the human
    classified it from scratch and the bot call was kept as a shadow

Rates are exact Fractions; percent values are rounded for display only.
"""
import math
from collections import Counter
from dataclasses import dataclass, field
from fractions import Fraction
from typing import Dict, Iterable, Optional, Sequence, Tuple
from uuid import UUID

from leadroute.enums import AuthorEnum, ClassificationEnum, ComparisonTypeEnum, LeadStatusEnum
from leadroute.lifecycle import was_reclassified
from leadroute.policy import SENT_BY_BOT, SENT_BY_SYSTEM
from leadroute.schemas import Lead

# (label, lower bound inclusive, upper bound exclusive; None = up to and including 1.0)
Bucket = Tuple[str, float, Optional[float]]

DEFAULT_BUCKETS: Tuple[Bucket, ...] = (
    ("<60%", 0.0, 0.60),
    ("60–80%", 0.60, 0.80),
    ("80–95%", 0.80, 0.95),
    ("≥95%", 0.95, None),
)
UNKNOWN_BUCKET = "unknown"


def to_percent(rate: Fraction) -> int:
    """Round half up to a whole percentage."""
    return math.floor(rate * 100 + Fraction(1, 2))


@dataclass
class Tally:
    total: int = 0
    agreements: int = 0

    def add(self, agrees: bool) -> None:
        self.total += 1
        if agrees:
            self.agreements += 1

    @property
    def disagreements(self) -> int:
        return self.total - self.agreements

    @property
    def rate(self) -> Fraction:
        if self.total == 0:
            return Fraction(0)
        return Fraction(self.agreements, self.total)

    @property
    def percent(self) -> int:
        return to_percent(self.rate)


@dataclass(frozen=True)
class Comparison:
    lead_id: UUID
    comparison_type: ComparisonTypeEnum
    bot_classification: ClassificationEnum
    human_classification: ClassificationEnum
    bot_confidence: Optional[float]

    @property
    def agrees(self) -> bool:
        return self.bot_classification == self.human_classification


@dataclass
class AgreementStats:
    overall: Tally = field(default_factory=Tally)
    by_comparison_type: Dict[ComparisonTypeEnum, Tally] = field(
        default_factory=lambda: {t: Tally() for t in ComparisonTypeEnum}
    )
    by_confidence_bucket: Dict[str, Tally] = field(default_factory=dict)
    by_classification: Dict[ClassificationEnum, Tally] = field(default_factory=dict)
    confusion_matrix: Counter = field(default_factory=Counter)
    leads_scanned: int = 0
    reclassified_leads: int = 0

    @property
    def total_comparisons(self) -> int:
        return self.overall.total

    @property
    def agreements(self) -> int:
        return self.overall.agreements

    @property
    def agreement_rate(self) -> Fraction:
        return self.overall.rate

    @property
    def human_override_rate(self) -> Fraction:
        if self.leads_scanned == 0:
            return Fraction(0)
        return Fraction(self.reclassified_leads, self.leads_scanned)

    def disagreements(self) -> Dict[Tuple[ClassificationEnum, ClassificationEnum], int]:
        """Off-diagonal cells of the confusion matrix."""
        return {
            (bot, human): count
            for (bot, human), count in self.confusion_matrix.items()
            if bot != human
        }

    def row_total(self, bot_classification: ClassificationEnum) -> int:
        return sum(
            count for (bot, _), count in self.confusion_matrix.items()
            if bot == bot_classification
        )


def bucket_for(confidence: Optional[float], buckets: Sequence[Bucket] = DEFAULT_BUCKETS) -> str:
    if confidence is None:
        return UNKNOWN_BUCKET
    for label, lower, upper in buckets:
        if confidence >= lower and (upper is None or confidence < upper):
            return label
    return UNKNOWN_BUCKET


def extract_comparison(lead: Lead) -> Optional[Comparison]:
    """Bot-vs-human comparison for a lead, or None if it has no such pair."""
    if lead.status.status != LeadStatusEnum.DONE:
        return None

    history = lead.classifications
    bot_entry = history.latest_by(AuthorEnum.BOT)
    human_entry = history.latest_by(AuthorEnum.HUMAN)
    result = lead.classification_result

    if bot_entry is not None:
        if human_entry is not None:
            human_call = human_entry.classification
        elif bot_entry.needs_review and lead.status.sent_by not in (None, SENT_BY_BOT, SENT_BY_SYSTEM):
            # approved as-is by the reviewer
            human_call = bot_entry.classification
        else:
            return None
        confidence = bot_entry.confidence
        if confidence is None and result is not None:
            confidence = result.confidence
        return Comparison(
            lead_id=lead.id,
            comparison_type=ComparisonTypeEnum.OVERRIDE,
            bot_classification=bot_entry.classification,
            human_classification=human_call,
            bot_confidence=confidence,
        )

    if lead.validation_sampled and result is not None and human_entry is not None:
        return Comparison(
            lead_id=lead.id,
            comparison_type=ComparisonTypeEnum.BLIND,
            bot_classification=result.classification,
            human_classification=human_entry.classification,
            bot_confidence=result.confidence,
        )

    return None


def compute_agreement(
    leads: Iterable[Lead],
    buckets: Sequence[Bucket] = DEFAULT_BUCKETS,
) -> AgreementStats:
    """
    Compute agreement between automatic and human classification.

    Args:
        leads: Point-in-time snapshot of leads
        buckets: Confidence buckets as (label, lower, upper) tuples

    Returns:
        AgreementStats: Overall, per comparison type, per confidence bucket
            and per bot classification tallies plus the confusion matrix
    """
    stats = AgreementStats()
    stats.by_confidence_bucket = {label: Tally() for label, _, _ in buckets}

    for lead in leads:
        stats.leads_scanned += 1
        if was_reclassified(lead):
            stats.reclassified_leads += 1

        comparison = extract_comparison(lead)
        if comparison is None:
            continue

        agrees = comparison.agrees
        stats.overall.add(agrees)
        stats.by_comparison_type[comparison.comparison_type].add(agrees)
        bucket = bucket_for(comparison.bot_confidence, buckets)
        stats.by_confidence_bucket.setdefault(bucket, Tally()).add(agrees)
        stats.by_classification.setdefault(comparison.bot_classification, Tally()).add(agrees)
        stats.confusion_matrix[(comparison.bot_classification, comparison.human_classification)] += 1

    return stats
