from abc import ABC, abstractmethod
from leadroute.schemas import ClassificationResult, Submission


class BaseClassifierAdapter(ABC):
    """Abstract base class for all classifier adapters"""

    @abstractmethod
    async def classify(self, submission: Submission) -> ClassificationResult:
        """
        Classifies an inbound submission.

        Args:
            submission: The lead's form submission

        Returns:
            ClassificationResult with classification, confidence, reasoning
            and is_existing_customer

        Raises:
            ClassifierServiceError: In case of processing errors
        """
        pass
