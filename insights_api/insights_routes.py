import logging
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status

from leadroute.analytics import AgreementStats, compute_agreement, to_percent
from leadroute.configuration import ConfigurationProvider
from leadroute.lead_service import LeadService
from leadroute.schemas import (
    AgreementStatsResponse,
    BucketResponse,
    ClassificationTallyResponse,
    Configuration,
    ConfigurationUpdate,
    ConfusionCellResponse,
    TallyResponse,
)
from insights_api.dependencies import get_config_provider, get_lead_service

logger = logging.getLogger(__name__)

analytics_router = APIRouter(
    prefix="/analytics",
    tags=["analytics"],
)

configuration_router = APIRouter(
    prefix="/configuration",
    tags=["configuration"],
)


def to_stats_response(stats: AgreementStats) -> AgreementStatsResponse:
    """Flattens AgreementStats into the API shape; rates become whole percentages."""
    def tally(t):
        return {"total": t.total, "agreements": t.agreements, "agreement_rate": t.percent}

    return AgreementStatsResponse(
        total_comparisons=stats.total_comparisons,
        agreements=stats.agreements,
        disagreements=stats.overall.disagreements,
        agreement_rate=to_percent(stats.agreement_rate),
        by_comparison_type={
            comparison_type.value: TallyResponse(**tally(t))
            for comparison_type, t in stats.by_comparison_type.items()
        },
        by_confidence_bucket=[
            BucketResponse(bucket=label, **tally(t))
            for label, t in stats.by_confidence_bucket.items()
        ],
        by_classification=[
            ClassificationTallyResponse(classification=classification, **tally(t))
            for classification, t in stats.by_classification.items()
        ],
        confusion_matrix=[
            ConfusionCellResponse(bot_classification=bot, human_classification=human, count=count)
            for (bot, human), count in sorted(
                stats.confusion_matrix.items(), key=lambda item: (item[0][0].value, item[0][1].value)
            )
        ],
        leads_scanned=stats.leads_scanned,
        human_override_rate=float(stats.human_override_rate),
    )


@analytics_router.get(
    "/agreement",
    response_model=AgreementStatsResponse,
    status_code=status.HTTP_200_OK,
    responses={
        422: {"description": "Invalid time range"},
    }
)
async def get_agreement(
    start: Optional[datetime] = Query(None, description="Only leads received at or after this time"),
    end: Optional[datetime] = Query(None, description="Only leads received before this time"),
    service: LeadService = Depends(get_lead_service)
) -> AgreementStatsResponse:
    """
    Computes human vs. automation agreement over leads received in [start, end).

    Args:
        start: Lower bound of the received time, inclusive
        end: Upper bound of the received time, exclusive
        service: Lead service (injected)

    Returns:
        AgreementStatsResponse: Overall, per comparison type, per confidence
            bucket and per classification agreement plus the confusion matrix

    Raises:
        HTTPException: 422 if start is not before end
    """
    if start is not None and end is not None and start >= end:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail="start must be before end",
        )

    leads = await service.snapshot(start, end)
    stats = compute_agreement(leads)
    logger.info(
        "Agreement computed over %d leads: %d comparisons",
        stats.leads_scanned, stats.total_comparisons,
    )
    return to_stats_response(stats)


@configuration_router.get(
    "",
    response_model=Configuration,
    status_code=status.HTTP_200_OK,
)
async def get_configuration(
    provider: ConfigurationProvider = Depends(get_config_provider)
) -> Configuration:
    """Returns the active routing configuration."""
    return await provider.get()


@configuration_router.put(
    "",
    response_model=Configuration,
    status_code=status.HTTP_200_OK,
    responses={
        422: {"description": "Invalid configuration"},
        503: {"description": "Configuration store unavailable"},
    }
)
async def update_configuration(
    body: ConfigurationUpdate,
    provider: ConfigurationProvider = Depends(get_config_provider)
) -> Configuration:
    """
    Replaces the routing configuration.

    The change is visible to this process immediately and to the triage
    workers once their cached copy expires.
    """
    config = Configuration(
        thresholds=body.thresholds,
        rollout=body.rollout,
        allow_high_quality_auto_send=body.allow_high_quality_auto_send,
        human_validation_rate=body.human_validation_rate,
    )
    try:
        return await provider.update(config, updated_by=body.updated_by)
    except Exception as e:
        logger.exception("Failed to save configuration")
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=f"Error saving configuration: {str(e)}"
        )
