import logging
from datetime import datetime
from typing import Optional

from leadroute.enums import LeadStatusEnum, RerouteSourceEnum
from leadroute.exceptions import AlreadyRerouted, LeadNotDone
from leadroute.lifecycle import Reopened, derive_terminal_state, transition
from leadroute.schemas import Lead, Reroute, utcnow

logger = logging.getLogger(__name__)


def reroute(
    lead: Lead,
    source: RerouteSourceEnum,
    reason: Optional[str] = None,
    now: Optional[datetime] = None,
) -> Lead:
    """
    Record that a lead's disposition was disputed and reopen it for classification.

    Only one dispute is tracked per lead. The classification history is left
    as it is; the new call is prepended once a human reclassifies the lead.

    Args:
        lead: Lead to reroute
        source: Who disputed the disposition
        reason: Optional free-text reason
        now: Timestamp of the reroute (defaults to the current time)

    Returns:
        Lead: The lead in classify status with its reroute record set

    Raises:
        AlreadyRerouted: If the lead already carries a reroute record
        LeadNotDone: If the lead is not done
    """
    if lead.reroute is not None:
        raise AlreadyRerouted(lead.id)
    if lead.status.status != LeadStatusEnum.DONE:
        raise LeadNotDone(lead.id, lead.status.status)

    record = Reroute(
        source=RerouteSourceEnum(source),
        reason=reason,
        original_classification=lead.classifications[0].classification,
        previous_terminal_state=derive_terminal_state(lead),
        timestamp=now or utcnow(),
    )
    updated = transition(lead, Reopened(reroute=record))
    logger.info(
        "Lead %s rerouted by %s (was %s)",
        lead.id, record.source.value,
        record.previous_terminal_state.value if record.previous_terminal_state else None,
    )
    return updated
