from datetime import datetime, timezone
from uuid import UUID, uuid4
from typing import Any, Dict, Iterator, List, Literal, Optional, Tuple
from pydantic import BaseModel, ConfigDict, EmailStr, Field, RootModel

from leadroute.enums import (
    AuthorEnum,
    ClassificationEnum,
    LeadStatusEnum,
    RerouteSourceEnum,
    TerminalStateEnum,
)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Submission(BaseModel):
    """Snapshot of the original inquiry."""
    model_config = ConfigDict(frozen=True)

    name: str
    email: EmailStr
    company: str
    message: str


class ClassificationResult(BaseModel):
    """Output of one automatic classification."""
    model_config = ConfigDict(frozen=True)

    classification: ClassificationEnum
    confidence: float
    reasoning: str = ""
    is_existing_customer: bool = False


class Email(BaseModel):
    """Generated or edited message text for a lead."""
    model_config = ConfigDict(frozen=True)

    text: str
    created_at: datetime
    edited_at: datetime
    last_edited_by: Optional[str] = None


class StatusInfo(BaseModel):
    model_config = ConfigDict(frozen=True)

    status: LeadStatusEnum = LeadStatusEnum.PROCESSING
    received_at: datetime = Field(default_factory=utcnow)
    sent_at: Optional[datetime] = None
    sent_by: Optional[str] = None


class ClassificationEntry(BaseModel):
    """One classification call, by the bot or by a human."""
    model_config = ConfigDict(frozen=True)

    author: AuthorEnum
    classification: ClassificationEnum
    timestamp: datetime = Field(default_factory=utcnow)
    needs_review: Optional[bool] = None
    applied_threshold: Optional[float] = None
    confidence: Optional[float] = None  # bot only, as recorded at classification time
    author_name: Optional[str] = None  # human only


class ClassificationHistory(RootModel[Tuple[ClassificationEntry, ...]]):
    """
    Append-only classification log, newest first.

    The only way to add an entry is prepend(), which returns a new history;
    index 0 is the current classification.
    """
    model_config = ConfigDict(frozen=True)

    root: Tuple[ClassificationEntry, ...] = ()

    def prepend(self, entry: ClassificationEntry) -> "ClassificationHistory":
        return ClassificationHistory((entry,) + self.root)

    def current(self) -> Optional[ClassificationEntry]:
        return self.root[0] if self.root else None

    def latest_by(self, author: AuthorEnum) -> Optional[ClassificationEntry]:
        for entry in self.root:
            if entry.author == author:
                return entry
        return None

    def __iter__(self) -> Iterator[ClassificationEntry]:
        return iter(self.root)

    def __len__(self) -> int:
        return len(self.root)

    def __getitem__(self, index: int) -> ClassificationEntry:
        return self.root[index]


class Reroute(BaseModel):
    """A dispute that a lead's disposition was wrong."""
    model_config = ConfigDict(frozen=True)

    source: RerouteSourceEnum
    reason: Optional[str] = None
    original_classification: ClassificationEnum
    previous_terminal_state: Optional[TerminalStateEnum] = None
    timestamp: datetime = Field(default_factory=utcnow)


class RolloutRecord(BaseModel):
    """Outcome of the one-time rollout draw for a lead."""
    model_config = ConfigDict(frozen=True)

    percentage: float
    draw: float
    proceeded: bool


class Lead(BaseModel):
    """One inbound inquiry and its full decision trail."""
    model_config = ConfigDict(frozen=True)

    id: UUID = Field(default_factory=uuid4)
    submission: Submission
    classification_result: Optional[ClassificationResult] = None
    email: Optional[Email] = None
    status: StatusInfo = Field(default_factory=StatusInfo)
    classifications: ClassificationHistory = Field(default_factory=ClassificationHistory)
    reroute: Optional[Reroute] = None
    eval_results: Optional[Dict[str, Any]] = None
    rollout: Optional[RolloutRecord] = None
    validation_sampled: bool = False


# Configuration


class Thresholds(BaseModel):
    """Minimum confidence per classification for automatic action."""
    model_config = ConfigDict(frozen=True)

    high_quality: float = Field(default=0.98, ge=0.0, le=1.0)
    low_quality: float = Field(default=0.51, ge=0.0, le=1.0)
    support: float = Field(default=0.9, ge=0.0, le=1.0)


class Rollout(BaseModel):
    model_config = ConfigDict(frozen=True)

    percentage: float = Field(default=1.0, ge=0.0, le=1.0)


class Configuration(BaseModel):
    """Active routing policy."""
    model_config = ConfigDict(frozen=True)

    thresholds: Thresholds = Field(default_factory=Thresholds)
    rollout: Rollout = Field(default_factory=Rollout)
    allow_high_quality_auto_send: bool = False
    human_validation_rate: float = Field(default=0.0, ge=0.0, le=1.0)
    updated_at: Optional[datetime] = None
    updated_by: Optional[str] = None


DEFAULT_CONFIGURATION = Configuration()


# API and stream payloads


class LeadCreate(BaseModel):
    """Schema for creating a new lead."""
    name: str = Field(min_length=1)
    email: EmailStr
    company: str = Field(min_length=1)
    message: str = Field(min_length=10)


class LeadResponse(Lead):
    """Schema for lead API responses."""
    terminal_state: Optional[TerminalStateEnum] = None


class LeadEvent(BaseModel):
    """Schema for lead.created events in Redis Stream."""
    event_id: UUID
    type: Literal["lead.created"]
    lead_id: UUID
    occurred_at: datetime


class ApproveRequest(BaseModel):
    reviewer: str = Field(min_length=1)


class OverrideRequest(BaseModel):
    reviewer: str = Field(min_length=1)
    classification: ClassificationEnum


class ClassifyRequest(BaseModel):
    reviewer: str = Field(min_length=1)
    classification: ClassificationEnum


class EditEmailRequest(BaseModel):
    editor: str = Field(min_length=1)
    text: str


class RerouteRequest(BaseModel):
    source: RerouteSourceEnum
    reason: Optional[str] = None


class ConfigurationUpdate(BaseModel):
    """Administrative update of the routing policy."""
    thresholds: Thresholds
    rollout: Rollout
    allow_high_quality_auto_send: bool
    human_validation_rate: float = Field(default=0.0, ge=0.0, le=1.0)
    updated_by: str = Field(min_length=1)


class TallyResponse(BaseModel):
    total: int
    agreements: int
    agreement_rate: int


class BucketResponse(TallyResponse):
    bucket: str


class ClassificationTallyResponse(TallyResponse):
    classification: ClassificationEnum


class ConfusionCellResponse(BaseModel):
    bot_classification: ClassificationEnum
    human_classification: ClassificationEnum
    count: int


class AgreementStatsResponse(BaseModel):
    """Schema for agreement analytics responses."""
    total_comparisons: int
    agreements: int
    disagreements: int
    agreement_rate: int
    by_comparison_type: Dict[str, TallyResponse]
    by_confidence_bucket: List[BucketResponse]
    by_classification: List[ClassificationTallyResponse]
    confusion_matrix: List[ConfusionCellResponse]
    leads_scanned: int
    human_override_rate: float
