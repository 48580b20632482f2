import logging
import random
from typing import Any, Callable, Dict, Optional

from pydantic import ValidationError
from sqlalchemy.ext.asyncio import AsyncSession

from leadroute.configuration import ConfigurationProvider
from leadroute.enums import LeadStatusEnum
from leadroute.exceptions import ConcurrencyConflict, LeadNotFound, PolicyViolation
from leadroute.lifecycle import Classified, ClassifierFailed, SampledForValidation, transition
from leadroute.policy import draw_rollout, evaluate, parse_classification, validate_confidence
from leadroute.repository import LeadRepository
from leadroute.schemas import Lead, LeadEvent
from triage_worker.classifier_adapters import BaseClassifierAdapter, get_classifier_adapter

logger = logging.getLogger(__name__)


class MessageProcessor:
    """
    Redis Streams message handler.
    Responsible for turning lead.created events into routing decisions.
    """

    def __init__(
        self,
        db_session: AsyncSession,
        config_provider: ConfigurationProvider,
        classifier: Optional[BaseClassifierAdapter] = None,
        rng: Callable[[], float] = random.random,
    ):
        self.repository = LeadRepository(db_session)
        self.config_provider = config_provider
        self.classifier = classifier or get_classifier_adapter()
        self.rng = rng

    async def process_message(self, message_data: Dict[str, Any]) -> bool:
        """
        Processes a single message from the queue.

        Args:
            message_data: Raw message data from Redis

        Returns:
            bool: True if the message can be acknowledged,
                  False if it should be retried
        """
        try:
            # 1. Validate and parse message
            event = LeadEvent(**message_data)

            # 2. Skip leads that already left processing (replayed message)
            current = await self.repository.get(event.lead_id)
            if current.lead.status.status != LeadStatusEnum.PROCESSING:
                logger.info(
                    "Lead %s already in status %s, skipping",
                    event.lead_id, current.lead.status.status.value,
                )
                return True

            # 3. Classify and decide; draws happen here, once per lead
            lifecycle_event = await self._decide(current.lead)

            # 4. Persist the decision with a conditional write
            updated = transition(current.lead, lifecycle_event)
            await self.repository.compare_and_swap(event.lead_id, current.version, updated)
            logger.info(
                "Lead %s routed to %s", event.lead_id, updated.status.status.value,
                extra={"lead_id": event.lead_id, "event": event.type},
            )
            return True

        except ValidationError as e:
            # Retrying cannot fix a malformed event; acknowledge it so it is not reclaimed
            logger.error("Dropping malformed message %s: %s", message_data, e)
            return True
        except LeadNotFound as e:
            logger.warning("Dropping message: %s", e)
            return True
        except ConcurrencyConflict as e:
            logger.info("Lead changed while processing, leaving it to the other writer: %s", e)
            return True
        except Exception:
            logger.exception("Error while processing message %s", message_data)
            return False

    async def _decide(self, lead: Lead):
        """
        Builds the lifecycle event for a freshly submitted lead.

        Classifier failures and malformed classifier output both send the
        lead to a human (classify); neither is turned into an automatic action.
        """
        try:
            result = await self.classifier.classify(lead.submission)
        except Exception as e:
            logger.warning("Classifier failed for lead %s: %s", lead.id, e)
            return ClassifierFailed()

        try:
            parse_classification(result.classification)
            validate_confidence(result.confidence)
        except PolicyViolation as e:
            logger.error("Classifier returned an unusable result for lead %s: %s", lead.id, e)
            return ClassifierFailed()

        config = await self.config_provider.get()

        if not result.is_existing_customer and self.rng() < config.human_validation_rate:
            logger.info("Lead %s sampled into the human-validation lane", lead.id)
            return SampledForValidation(result=result)

        decision = evaluate(result, config, draw_rollout(self.rng))
        return Classified(result=result, decision=decision)
