import logging
from datetime import datetime
from typing import List, Optional
from uuid import UUID

from leadroute.enums import RerouteSourceEnum
from leadroute.lifecycle import create_lead, transition
from leadroute.repository import LeadRepository
from leadroute.reroute import reroute
from leadroute.schemas import Lead, Submission

logger = logging.getLogger(__name__)


class LeadService:
    """
    Applies lifecycle changes to stored leads.

    Every change is read -> pure transition -> conditional write. A
    ConcurrencyConflict from the write is passed to the caller; nothing here
    retries, since the decision was taken on a state that is now stale.
    """

    def __init__(self, repository: LeadRepository):
        self.repository = repository

    async def submit(self, submission: Submission, received_at: Optional[datetime] = None) -> Lead:
        lead = create_lead(submission, received_at)
        await self.repository.create(lead)
        logger.info("Lead %s received from %s", lead.id, submission.company)
        return lead

    async def get(self, lead_id: UUID) -> Lead:
        return (await self.repository.get(lead_id)).lead

    async def apply(self, lead_id: UUID, event) -> Lead:
        """
        Applies a lifecycle event to a stored lead.

        Raises:
            LeadNotFound: If the lead does not exist
            StateViolation: If the event is not valid from the lead's status
            ConcurrencyConflict: If the lead changed while the event was applied
        """
        current = await self.repository.get(lead_id)
        updated = transition(current.lead, event)
        await self.repository.compare_and_swap(lead_id, current.version, updated)
        return updated

    async def reroute(
        self,
        lead_id: UUID,
        source: RerouteSourceEnum,
        reason: Optional[str] = None,
    ) -> Lead:
        current = await self.repository.get(lead_id)
        updated = reroute(current.lead, source, reason)
        await self.repository.compare_and_swap(lead_id, current.version, updated)
        return updated

    async def snapshot(
        self,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> List[Lead]:
        return await self.repository.list_received_between(start, end)
