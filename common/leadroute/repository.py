from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from leadroute.enums import LeadStatusEnum
from leadroute.exceptions import ConcurrencyConflict, LeadNotFound
from leadroute.models import LeadRecord
from leadroute.schemas import Lead


@dataclass(frozen=True)
class VersionedLead:
    """A lead together with the stored version it was read at."""
    lead: Lead
    version: int


def _columns(lead: Lead) -> dict:
    return {
        "status": lead.status.status,
        "received_at": lead.status.received_at,
        "document": lead.model_dump(mode="json"),
    }


class LeadRepository:
    """Lead persistence with compare-and-swap updates."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(self, lead: Lead) -> VersionedLead:
        record = LeadRecord(id=lead.id, version=1, **_columns(lead))
        self.session.add(record)
        await self.session.commit()
        return VersionedLead(lead=lead, version=1)

    async def get(self, lead_id: UUID) -> VersionedLead:
        """
        Reads a lead and its current version.

        Raises:
            LeadNotFound: If no lead has this id
        """
        stmt = select(LeadRecord.document, LeadRecord.version).where(LeadRecord.id == lead_id)
        result = await self.session.execute(stmt)
        row = result.one_or_none()
        if row is None:
            raise LeadNotFound(lead_id)
        return VersionedLead(lead=Lead.model_validate(row.document), version=row.version)

    async def compare_and_swap(self, lead_id: UUID, expected_version: int, lead: Lead) -> int:
        """
        Writes the lead only if the stored version still matches.

        Args:
            lead_id: Lead to update
            expected_version: Version the caller read before computing `lead`
            lead: New lead state

        Returns:
            int: The new version

        Raises:
            ConcurrencyConflict: If the lead changed since it was read
        """
        new_version = expected_version + 1
        stmt = (
            update(LeadRecord)
            .where(LeadRecord.id == lead_id, LeadRecord.version == expected_version)
            .values(version=new_version, **_columns(lead))
            .execution_options(synchronize_session=False)
        )
        result = await self.session.execute(stmt)
        if result.rowcount != 1:
            await self.session.rollback()
            raise ConcurrencyConflict(lead_id, expected_version)
        await self.session.commit()
        return new_version

    async def list_by_status(self, status: LeadStatusEnum) -> List[VersionedLead]:
        stmt = (
            select(LeadRecord.document, LeadRecord.version)
            .where(LeadRecord.status == status)
            .order_by(LeadRecord.received_at)
        )
        result = await self.session.execute(stmt)
        return [
            VersionedLead(lead=Lead.model_validate(row.document), version=row.version)
            for row in result.all()
        ]

    async def list_received_between(
        self,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> List[Lead]:
        """Leads received in [start, end); either bound may be omitted."""
        stmt = select(LeadRecord.document).order_by(LeadRecord.received_at)
        if start is not None:
            stmt = stmt.where(LeadRecord.received_at >= start)
        if end is not None:
            stmt = stmt.where(LeadRecord.received_at < end)
        result = await self.session.execute(stmt)
        return [Lead.model_validate(document) for document in result.scalars().all()]
