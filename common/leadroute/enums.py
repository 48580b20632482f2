from enum import Enum


class ClassificationEnum(Enum):
    """What kind of lead this is."""
    HIGH_QUALITY = "high-quality"
    LOW_QUALITY = "low-quality"
    SUPPORT = "support"
    EXISTING = "existing"


class LeadStatusEnum(Enum):
    """Where the lead is in the workflow."""
    PROCESSING = "processing"
    CLASSIFY = "classify"
    REVIEW = "review"
    DONE = "done"


class TerminalStateEnum(Enum):
    """Final disposition of a lead, derived once status is done."""
    SENT_MEETING_OFFER = "sent_meeting_offer"
    SENT_GENERIC = "sent_generic"
    FORWARDED_SUPPORT = "forwarded_support"
    FORWARDED_ACCOUNT_TEAM = "forwarded_account_team"


class AuthorEnum(Enum):
    """Who made a classification call."""
    HUMAN = "human"
    BOT = "bot"


class RerouteSourceEnum(Enum):
    """Who disputed the disposition of a lead."""
    CUSTOMER = "customer"
    SUPPORT = "support"
    SALES = "sales"


class ReviewReasonEnum(Enum):
    """Why the policy held a lead for human review."""
    BELOW_THRESHOLD = "below_threshold"
    ROLLOUT_HELD = "rollout_held"
    HIGH_QUALITY_GATE = "high_quality_gate"
    NO_THRESHOLD = "no_threshold"


class ComparisonTypeEnum(Enum):
    """How a human call relates to the bot call it is compared with."""
    BLIND = "blind"
    OVERRIDE = "override"
