import json
import logging
import uuid
from redis.asyncio import Redis
from fastapi import Depends, HTTPException, Request, status
from sqlalchemy.ext.asyncio import AsyncSession
from typing import Optional, Tuple

from leadroute.database import get_async_session
from leadroute.lead_service import LeadService
from leadroute.repository import LeadRepository

logger = logging.getLogger(__name__)


def get_redis(request: Request) -> Redis:
    """Dependency providing the Redis client opened in the app lifespan"""
    return request.app.state.redis


async def get_lead_service(
    session: AsyncSession = Depends(get_async_session)
) -> LeadService:
    """Dependency providing a LeadService bound to the request's session"""
    return LeadService(LeadRepository(session))


async def verify_idempotency_key(
    redis: Redis,
    idempotency_key: uuid.UUID,
    current_request_data: Optional[dict] = None
) -> Tuple[bool, Optional[dict]]:
    """
    Checks the Idempotency-Key and returns:
    - (False, None): the key does not exist (new request)
    - (True, cached_data): the key exists (duplicate request)
    - Raise 409: the key exists but the data is different (conflict)
    """
    redis_key = f"idempotency:{idempotency_key}"
    cached_data_str = await redis.get(redis_key)

    if not cached_data_str:
        return False, None

    cached_data = json.loads(cached_data_str)

    if current_request_data is not None:
        cached_request_data = cached_data.get("request_data", {})
        if cached_request_data != current_request_data:
            logger.info("Idempotency-Key %s reused with different data", idempotency_key)
            raise HTTPException(
                status_code=status.HTTP_409_CONFLICT,
                detail="Idempotency-Key already used with different data"
            )

    logger.debug("Idempotency-Key %s matched a cached response", idempotency_key)
    return True, cached_data
