import uuid

import pytest

from conftest import FakeClassifier, FakeClock, StaticStore, make_config, make_result, make_submission
from leadroute.configuration import ConfigurationProvider
from leadroute.enums import ClassificationEnum, LeadStatusEnum
from leadroute.lead_service import LeadService
from leadroute.repository import LeadRepository
from leadroute.schemas import ClassificationResult
from triage_worker.exceptions import ClassifierServiceError
from triage_worker.processor import MessageProcessor


def sequence_rng(*values):
    draws = iter(values)
    return lambda: next(draws)


def provider_for(**config):
    return ConfigurationProvider(StaticStore(make_config(**config)), clock=FakeClock())


def message_for(lead_id):
    return {
        "event_id": str(uuid.uuid4()),
        "type": "lead.created",
        "lead_id": str(lead_id),
        "occurred_at": "2026-03-02T09:00:00+00:00",
    }


@pytest.fixture
async def submitted_lead(db_session):
    return await LeadService(LeadRepository(db_session)).submit(make_submission())


async def stored(db_session, lead_id):
    return (await LeadRepository(db_session).get(lead_id)).lead


async def test_confident_low_quality_is_sent(db_session, submitted_lead):
    processor = MessageProcessor(
        db_session,
        provider_for(low_quality=0.85),
        classifier=FakeClassifier(make_result(ClassificationEnum.LOW_QUALITY, 0.95)),
        rng=sequence_rng(0.5, 0.3),
    )

    assert await processor.process_message(message_for(submitted_lead.id)) is True

    lead = await stored(db_session, submitted_lead.id)
    assert lead.status.status == LeadStatusEnum.DONE
    assert lead.status.sent_by == "bot"
    assert lead.rollout.draw == 0.3
    assert lead.classifications[0].applied_threshold == 0.85


async def test_rollout_miss_is_persisted_for_review(db_session, submitted_lead):
    processor = MessageProcessor(
        db_session,
        provider_for(low_quality=0.5, rollout=0.2),
        classifier=FakeClassifier(make_result(ClassificationEnum.LOW_QUALITY, 0.95)),
        rng=sequence_rng(0.9, 0.6),
    )

    await processor.process_message(message_for(submitted_lead.id))

    lead = await stored(db_session, submitted_lead.id)
    assert lead.status.status == LeadStatusEnum.REVIEW
    assert lead.rollout.proceeded is False
    assert lead.rollout.draw == 0.6


async def test_replayed_message_does_not_redraw(db_session, submitted_lead):
    classifier = FakeClassifier(make_result(ClassificationEnum.LOW_QUALITY, 0.95))
    processor = MessageProcessor(
        db_session, provider_for(), classifier=classifier, rng=sequence_rng(0.9, 0.1),
    )
    message = message_for(submitted_lead.id)

    assert await processor.process_message(message) is True
    assert await processor.process_message(message) is True

    assert classifier.calls == 1
    assert (await stored(db_session, submitted_lead.id)).rollout.draw == 0.1


async def test_classifier_failure_goes_to_classify(db_session, submitted_lead):
    processor = MessageProcessor(
        db_session,
        provider_for(),
        classifier=FakeClassifier(error=ClassifierServiceError("timeout")),
        rng=sequence_rng(),
    )

    assert await processor.process_message(message_for(submitted_lead.id)) is True

    lead = await stored(db_session, submitted_lead.id)
    assert lead.status.status == LeadStatusEnum.CLASSIFY
    assert len(lead.classifications) == 0


async def test_malformed_classifier_output_goes_to_classify(db_session, submitted_lead):
    broken = ClassificationResult.model_construct(
        classification="spam", confidence=0.99, reasoning="", is_existing_customer=False,
    )
    processor = MessageProcessor(
        db_session, provider_for(), classifier=FakeClassifier(broken), rng=sequence_rng(),
    )

    await processor.process_message(message_for(submitted_lead.id))

    assert (await stored(db_session, submitted_lead.id)).status.status == LeadStatusEnum.CLASSIFY


async def test_sampled_lead_goes_to_classify_with_shadow_result(db_session, submitted_lead):
    result = make_result(ClassificationEnum.HIGH_QUALITY, 0.99)
    processor = MessageProcessor(
        db_session,
        provider_for(human_validation_rate=0.5),
        classifier=FakeClassifier(result),
        rng=sequence_rng(0.2),
    )

    await processor.process_message(message_for(submitted_lead.id))

    lead = await stored(db_session, submitted_lead.id)
    assert lead.status.status == LeadStatusEnum.CLASSIFY
    assert lead.validation_sampled is True
    assert lead.classification_result.classification == ClassificationEnum.HIGH_QUALITY


async def test_existing_customer_never_sampled(db_session, submitted_lead):
    processor = MessageProcessor(
        db_session,
        provider_for(human_validation_rate=1.0),
        classifier=FakeClassifier(make_result(ClassificationEnum.EXISTING, 1.0, is_existing_customer=True)),
        rng=sequence_rng(0.0),
    )

    await processor.process_message(message_for(submitted_lead.id))

    lead = await stored(db_session, submitted_lead.id)
    assert lead.status.status == LeadStatusEnum.DONE
    assert lead.status.sent_by == "system"
    assert lead.validation_sampled is False


async def test_high_quality_held_by_gate(db_session, submitted_lead):
    processor = MessageProcessor(
        db_session,
        provider_for(),
        classifier=FakeClassifier(make_result(ClassificationEnum.HIGH_QUALITY, 0.99)),
        rng=sequence_rng(0.9, 0.1),
    )

    await processor.process_message(message_for(submitted_lead.id))

    lead = await stored(db_session, submitted_lead.id)
    assert lead.status.status == LeadStatusEnum.REVIEW
    assert lead.rollout.proceeded is True
    assert lead.classifications[0].needs_review is True


async def test_malformed_message_is_acknowledged(db_session):
    classifier = FakeClassifier(make_result())
    processor = MessageProcessor(db_session, provider_for(), classifier=classifier)

    assert await processor.process_message({"type": "lead.created"}) is True
    assert await processor.process_message({**message_for(uuid.uuid4()), "type": "lead.deleted"}) is True
    assert classifier.calls == 0


async def test_unknown_lead_is_acknowledged(db_session):
    classifier = FakeClassifier(make_result())
    processor = MessageProcessor(db_session, provider_for(), classifier=classifier)

    assert await processor.process_message(message_for(uuid.uuid4())) is True
    assert classifier.calls == 0
