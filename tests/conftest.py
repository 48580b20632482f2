from datetime import datetime, timedelta, timezone
from typing import AsyncGenerator, Optional

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from leadroute.configuration import ConfigurationStore
from leadroute.enums import AuthorEnum, ClassificationEnum, LeadStatusEnum
from leadroute.models import Base
from leadroute.schemas import (
    ClassificationEntry,
    ClassificationHistory,
    ClassificationResult,
    Configuration,
    Lead,
    Rollout,
    StatusInfo,
    Submission,
    Thresholds,
)
from triage_worker.classifier_adapters.base import BaseClassifierAdapter

TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

RECEIVED_AT = datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc)


def make_submission(
    message: str = "We are evaluating your product for our team of 40.",
    email: str = "jane@prospect.io",
) -> Submission:
    return Submission(name="Jane Doe", email=email, company="Prospect Inc", message=message)


def make_result(
    classification: ClassificationEnum = ClassificationEnum.LOW_QUALITY,
    confidence: float = 0.9,
    is_existing_customer: bool = False,
) -> ClassificationResult:
    return ClassificationResult(
        classification=classification,
        confidence=confidence,
        reasoning="test",
        is_existing_customer=is_existing_customer,
    )


def make_config(
    high_quality: float = 0.98,
    low_quality: float = 0.51,
    support: float = 0.9,
    rollout: float = 1.0,
    allow_high_quality_auto_send: bool = False,
    human_validation_rate: float = 0.0,
) -> Configuration:
    return Configuration(
        thresholds=Thresholds(high_quality=high_quality, low_quality=low_quality, support=support),
        rollout=Rollout(percentage=rollout),
        allow_high_quality_auto_send=allow_high_quality_auto_send,
        human_validation_rate=human_validation_rate,
    )


def bot_entry(
    classification: ClassificationEnum,
    confidence: Optional[float] = 0.9,
    needs_review: bool = True,
) -> ClassificationEntry:
    return ClassificationEntry(
        author=AuthorEnum.BOT,
        classification=classification,
        timestamp=RECEIVED_AT + timedelta(minutes=1),
        needs_review=needs_review,
        confidence=confidence,
    )


def human_entry(classification: ClassificationEnum, reviewer: str = "reviewer@company.com") -> ClassificationEntry:
    return ClassificationEntry(
        author=AuthorEnum.HUMAN,
        classification=classification,
        timestamp=RECEIVED_AT + timedelta(minutes=5),
        author_name=reviewer,
    )


def make_lead(
    status: LeadStatusEnum = LeadStatusEnum.PROCESSING,
    entries=(),
    sent_by: Optional[str] = None,
    classification_result: Optional[ClassificationResult] = None,
    validation_sampled: bool = False,
    received_at: datetime = RECEIVED_AT,
) -> Lead:
    """Builds a lead directly in the given state; entries are newest first."""
    return Lead(
        submission=make_submission(),
        classification_result=classification_result,
        status=StatusInfo(
            status=status,
            received_at=received_at,
            sent_at=received_at + timedelta(minutes=10) if status == LeadStatusEnum.DONE else None,
            sent_by=sent_by,
        ),
        classifications=ClassificationHistory(tuple(entries)),
        validation_sampled=validation_sampled,
    )


class FakeClock:
    """Monotonic clock the tests move by hand."""

    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class StaticStore(ConfigurationStore):
    def __init__(self, config):
        self.config = config

    async def load(self):
        return self.config

    async def save(self, config):
        self.config = config


class FakeClassifier(BaseClassifierAdapter):
    def __init__(self, result=None, error=None):
        self.result = result
        self.error = error
        self.calls = 0

    async def classify(self, submission):
        self.calls += 1
        if self.error:
            raise self.error
        return self.result


class FakeRedis:
    """In-memory stand-in for the handful of Redis calls the APIs make."""

    def __init__(self):
        self.values = {}
        self.streams = {}
        self.acked = []
        self.xadd_failures = 0

    async def get(self, key):
        return self.values.get(key)

    async def set(self, key, value):
        self.values[key] = value
        return True

    async def setex(self, key, ttl, value):
        self.values[key] = value
        return True

    async def xadd(self, stream, fields):
        if self.xadd_failures:
            self.xadd_failures -= 1
            raise ConnectionError("stream unavailable")
        entries = self.streams.setdefault(stream, [])
        message_id = f"{len(entries) + 1}-0"
        entries.append((message_id, dict(fields)))
        return message_id

    async def xack(self, stream, group, message_id):
        self.acked.append(message_id)
        return 1

    async def close(self):
        pass


@pytest.fixture(scope="function")
async def db_engine():
    """In-memory SQLite engine with schema created."""
    engine = create_async_engine(TEST_DATABASE_URL, poolclass=StaticPool)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture(scope="function")
def session_factory(db_engine):
    return async_sessionmaker(db_engine, expire_on_commit=False)


@pytest.fixture(scope="function")
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    """Creates a database session for direct access in tests."""
    async with session_factory() as session:
        yield session


@pytest.fixture(scope="function")
def fake_redis() -> FakeRedis:
    return FakeRedis()
