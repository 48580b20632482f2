import logging

from triage_worker.classifier_adapters.rule_based import RuleBasedClassifier
from triage_worker.classifier_adapters.base import BaseClassifierAdapter
from leadroute.config import settings

logger = logging.getLogger(__name__)


def get_classifier_adapter() -> BaseClassifierAdapter:
    """
    Factory for creating classifier adapters.
    Returns an adapter from the CLASSIFIER_ADAPTER variable in config.
    """
    adapter_type = settings.CLASSIFIER_ADAPTER.lower()

    if adapter_type != "rule_based":
        logger.warning("Unknown CLASSIFIER_ADAPTER '%s', using rule_based", adapter_type)
    return RuleBasedClassifier(settings.EXISTING_CUSTOMER_DOMAINS)
