import json
import logging
import uuid
from fastapi import APIRouter, Depends, HTTPException, Header, status
from fastapi.responses import JSONResponse
from redis.asyncio import Redis

from leadroute.config import settings
from leadroute.enums import LeadStatusEnum
from leadroute.exceptions import LeadRoutingError
from leadroute.lead_service import LeadService
from leadroute.lifecycle import Approve, EditEmail, HumanClassify, Override, derive_terminal_state
from leadroute.schemas import (
    ApproveRequest,
    ClassifyRequest,
    EditEmailRequest,
    Lead,
    LeadCreate,
    LeadEvent,
    LeadResponse,
    OverrideRequest,
    RerouteRequest,
    Submission,
    utcnow,
)
from intake_api.dependencies import get_lead_service, get_redis, verify_idempotency_key
from intake_api.errors import to_http_exception

logger = logging.getLogger(__name__)

leads_router = APIRouter(
    prefix="/leads",
    tags=["leads"],
)

ERROR_RESPONSES = {
    404: {"description": "Lead not found"},
    409: {"description": "Action not allowed in the lead's state, or concurrent modification"},
    422: {"description": "Invalid request or policy violation"},
}


def to_response(lead: Lead) -> LeadResponse:
    return LeadResponse.model_validate(
        {**lead.model_dump(), "terminal_state": derive_terminal_state(lead)}
    )


async def publish_lead_created(redis: Redis, lead_id: uuid.UUID) -> None:
    """Publishes a lead.created event for the triage worker."""
    event = LeadEvent(
        event_id=uuid.uuid4(),
        type="lead.created",
        lead_id=lead_id,
        occurred_at=utcnow(),
    )
    await redis.xadd(settings.REDIS_STREAM, event.model_dump(mode="json"))
    logger.info("Published lead.created for lead %s", lead_id)


@leads_router.post(
    "/",
    response_model=LeadResponse,
    status_code=status.HTTP_201_CREATED,
    responses={
        200: {"model": LeadResponse, "description": "Idempotent response"},
        409: {"description": "Idempotency-Key conflict"},
        422: {"description": "Invalid lead data or Idempotency-Key"}
    }
)
async def create_lead(
    lead_data: LeadCreate,
    idempotency_key: str = Header(..., alias="Idempotency-Key"),
    redis: Redis = Depends(get_redis),
    service: LeadService = Depends(get_lead_service)
):
    """
    Creates a new lead with idempotency support.

    The lead is stored in processing status and a lead.created event is
    published to the stream for the triage worker.

    Args:
        lead_data: Lead data to create
        idempotency_key: UUID idempotency key from header (required)
        redis: Redis client (injected)
        service: Lead service (injected)

    Returns:
        LeadResponse: Created lead data (201) or cached response (200)

    Raises:
        HTTPException: 422 if idempotency key is not a valid UUID
        HTTPException: 409 if idempotency key used with different data
        HTTPException: 500 on internal errors
    """
    try:
        try:
            validated_idempotency_key = uuid.UUID(idempotency_key)
        except ValueError:
            raise HTTPException(
                status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
                detail="Idempotency-Key must be a valid UUID",
            )

        request_data = lead_data.model_dump()
        is_duplicate, cached_data = await verify_idempotency_key(
            redis,
            validated_idempotency_key,
            request_data
        )

        if is_duplicate:
            # A failed publish on the first attempt leaves the lead in processing
            cached_lead = await service.get(uuid.UUID(cached_data["response_data"]["id"]))
            if cached_lead.status.status == LeadStatusEnum.PROCESSING:
                await publish_lead_created(redis, cached_lead.id)
            return JSONResponse(
                content=cached_data["response_data"],
                status_code=status.HTTP_200_OK
            )

        lead = await service.submit(Submission(**request_data))
        response = to_response(lead)

        cache_payload = {
            "status_code": status.HTTP_201_CREATED,
            "response_data": response.model_dump(mode="json"),
            "request_data": request_data
        }

        # Save to Redis cache (24 hours TTL)
        await redis.setex(
            f"idempotency:{validated_idempotency_key}",
            86400,
            json.dumps(cache_payload)
        )

        await publish_lead_created(redis, lead.id)

        return response

    except HTTPException:
        raise
    except Exception as e:
        logger.exception("Error creating lead")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Error creating lead: {str(e)}"
        )


@leads_router.get(
    "/{lead_id}",
    response_model=LeadResponse,
    responses={
        200: {"description": "Lead found"},
        404: {"description": "Lead not found"}
    }
)
async def get_lead(
    lead_id: uuid.UUID,
    service: LeadService = Depends(get_lead_service)
):
    """
    Retrieves a lead by UUID, including its derived terminal state.

    Raises:
        HTTPException: 404 if lead not found
    """
    try:
        return to_response(await service.get(lead_id))
    except LeadRoutingError as e:
        raise to_http_exception(e)


async def _apply(service: LeadService, lead_id: uuid.UUID, event) -> LeadResponse:
    try:
        lead = await service.apply(lead_id, event)
    except LeadRoutingError as e:
        logger.info("Rejected %s for lead %s: %s", type(event).__name__, lead_id, e)
        raise to_http_exception(e)
    return to_response(lead)


@leads_router.post(
    "/{lead_id}/review/approve",
    response_model=LeadResponse,
    responses=ERROR_RESPONSES,
)
async def approve_lead(
    lead_id: uuid.UUID,
    body: ApproveRequest,
    service: LeadService = Depends(get_lead_service)
):
    """Approves the bot's call for a lead in review; the lead is done."""
    return await _apply(service, lead_id, Approve(reviewer=body.reviewer))


@leads_router.post(
    "/{lead_id}/review/override",
    response_model=LeadResponse,
    responses=ERROR_RESPONSES,
)
async def override_lead(
    lead_id: uuid.UUID,
    body: OverrideRequest,
    service: LeadService = Depends(get_lead_service)
):
    """Replaces the bot's call for a lead in review with the reviewer's."""
    event = Override(reviewer=body.reviewer, classification=body.classification)
    return await _apply(service, lead_id, event)


@leads_router.post(
    "/{lead_id}/classify",
    response_model=LeadResponse,
    responses=ERROR_RESPONSES,
)
async def classify_lead(
    lead_id: uuid.UUID,
    body: ClassifyRequest,
    service: LeadService = Depends(get_lead_service)
):
    """Records a human classification for a lead waiting in classify."""
    event = HumanClassify(reviewer=body.reviewer, classification=body.classification)
    return await _apply(service, lead_id, event)


@leads_router.post(
    "/{lead_id}/email",
    response_model=LeadResponse,
    responses=ERROR_RESPONSES,
)
async def edit_email(
    lead_id: uuid.UUID,
    body: EditEmailRequest,
    service: LeadService = Depends(get_lead_service)
):
    """Edits the outgoing message of a lead that is not done yet."""
    return await _apply(service, lead_id, EditEmail(editor=body.editor, text=body.text))


@leads_router.post(
    "/{lead_id}/reroute",
    response_model=LeadResponse,
    responses=ERROR_RESPONSES,
)
async def reroute_lead(
    lead_id: uuid.UUID,
    body: RerouteRequest,
    service: LeadService = Depends(get_lead_service)
):
    """
    Disputes the disposition of a done lead and sends it back to classify.

    Raises:
        HTTPException: 404 if lead not found
        HTTPException: 409 with code already_rerouted on a second reroute,
            or lead_not_done if the lead is not done
    """
    try:
        lead = await service.reroute(lead_id, body.source, body.reason)
    except LeadRoutingError as e:
        logger.info("Rejected reroute for lead %s: %s", lead_id, e)
        raise to_http_exception(e)
    return to_response(lead)
