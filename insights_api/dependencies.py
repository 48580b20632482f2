from fastapi import Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from leadroute.configuration import ConfigurationProvider
from leadroute.database import get_async_session
from leadroute.lead_service import LeadService
from leadroute.repository import LeadRepository


def get_config_provider(request: Request) -> ConfigurationProvider:
    """Dependency providing the process-wide configuration provider"""
    return request.app.state.config_provider


async def get_lead_service(
    session: AsyncSession = Depends(get_async_session)
) -> LeadService:
    return LeadService(LeadRepository(session))
