from typing import Dict, Iterable, List, Optional

from leadroute.enums import ClassificationEnum
from leadroute.schemas import ClassificationResult, Submission
from .base import BaseClassifierAdapter


class RuleBasedClassifier(BaseClassifierAdapter):
    """
    Keyword-matching classifier.
    Needs no external API calls and runs locally.
    """

    def __init__(self, existing_customer_domains: Optional[Iterable[str]] = None):
        self.existing_customer_domains = {
            domain.lower().lstrip("@") for domain in (existing_customer_domains or [])
        }

        self.classification_rules: Dict[ClassificationEnum, List[str]] = {
            ClassificationEnum.SUPPORT: [
                'help', 'bug', 'error', 'not working', 'broken', 'outage',
                'login', 'invoice', 'billing', 'support', 'ticket',
            ],
            ClassificationEnum.HIGH_QUALITY: [
                'enterprise', 'seats', 'migrate', 'migration', 'demo', 'pricing',
                'budget', 'scale', 'procurement', 'team of', 'rollout',
            ],
            ClassificationEnum.LOW_QUALITY: [
                'seo', 'backlinks', 'guest post', 'crypto', 'http://', 'https://',
                'partnership', 'student', 'free',
            ],
        }

    async def classify(self, submission: Submission) -> ClassificationResult:
        """
        Classifies the submission message by keywords.
        """
        message = submission.message.lower()

        if self._is_existing_customer(submission.email):
            return ClassificationResult(
                classification=ClassificationEnum.EXISTING,
                confidence=1.0,
                reasoning=f"Email domain of {submission.email} matches an existing customer",
                is_existing_customer=True,
            )

        classification, matches = self._detect_classification(message)
        confidence = self._calculate_confidence(matches)
        if matches:
            reasoning = f"Matched keywords: {', '.join(matches)}"
        else:
            reasoning = "No qualifying keywords found"

        return ClassificationResult(
            classification=classification,
            confidence=confidence,
            reasoning=reasoning,
            is_existing_customer=False,
        )

    def _is_existing_customer(self, email: str) -> bool:
        domain = email.rsplit('@', 1)[-1].lower()
        return domain in self.existing_customer_domains

    def _detect_classification(self, message: str):
        """
        Picks the classification with the most keyword matches.
        Falls back to low-quality when nothing matches.
        """
        best = ClassificationEnum.LOW_QUALITY
        best_matches: List[str] = []
        for classification, keywords in self.classification_rules.items():
            matches = [keyword for keyword in keywords if keyword in message]
            if len(matches) > len(best_matches):
                best, best_matches = classification, matches
        return best, best_matches

    def _calculate_confidence(self, matches: List[str]) -> float:
        """
        Confidence in the result (0.0 - 1.0).
        """
        if not matches:
            return 0.3
        return min(0.5 + len(matches) * 0.15, 0.95)
