"""Tests for the intake ledger."""

import pytest

from resident_sync.db.enums import EventStatus, JobStatus
from resident_sync.db.models import Company, EventLog, Job
from resident_sync.schemas import AlisEvent
from resident_sync.services import event_service, job_service


def _event(factory, *args, **kwargs) -> AlisEvent:
    return AlisEvent.model_validate(factory(*args, **kwargs))


def test_record_incoming_event_creates_company_and_entry(db, event_factory):
    recorded = event_service.record_incoming_event(
        db, _event(event_factory, event_message_id="m-1", company_key="beta")
    )

    assert recorded.is_duplicate is False
    assert recorded.company.company_key == "beta"
    assert recorded.event_log.status == EventStatus.RECEIVED.value
    assert recorded.event_log.event_type == "residents.move_in"
    assert db.query(Company).count() == 1


def test_record_incoming_event_duplicate_changes_nothing(db, event_factory):
    first = event_service.record_incoming_event(db, _event(event_factory, event_message_id="m-1"))
    event_service.mark_processed(db, "m-1")

    second = event_service.record_incoming_event(
        db, _event(event_factory, "residents.move_out", event_message_id="m-1")
    )

    assert second.is_duplicate is True
    assert second.event_log.id == first.event_log.id
    assert second.event_log.status == EventStatus.PROCESSED.value
    assert second.event_log.event_type == "residents.move_in"
    assert db.query(EventLog).count() == 1


def test_get_or_create_company_is_stable(db):
    first = event_service.get_or_create_company(db, "acme")
    second = event_service.get_or_create_company(db, "acme")
    assert first.id == second.id


def test_mark_failed_truncates_error(db, event_factory):
    event_service.record_incoming_event(db, _event(event_factory, event_message_id="m-1"))

    event_log = event_service.mark_failed(db, "m-1", "x" * 2000)

    assert event_log.status == EventStatus.FAILED.value
    assert len(event_log.error) == event_service.ERROR_MAX_LENGTH


def test_mark_failed_uses_exception_type_when_message_empty(db, event_factory):
    event_service.record_incoming_event(db, _event(event_factory, event_message_id="m-1"))
    event_log = event_service.mark_failed(db, "m-1", TimeoutError())
    assert event_log.error == "TimeoutError"


def test_mark_processed_clears_error(db, event_factory):
    event_service.record_incoming_event(db, _event(event_factory, event_message_id="m-1"))
    event_service.mark_failed(db, "m-1", "first attempt failed")

    event_log = event_service.mark_processed(db, "m-1")

    assert event_log.status == EventStatus.PROCESSED.value
    assert event_log.error is None
    assert event_log.processed_at is not None


def test_status_update_for_unknown_event_returns_none(db):
    assert event_service.mark_queued(db, "missing") is None


def test_status_summary_counts_every_status(db, event_factory):
    for emid in ("a", "b", "c"):
        event_service.record_incoming_event(db, _event(event_factory, event_message_id=emid))
    event_service.mark_ignored(db, "c", "Test event acknowledged")

    summary = event_service.status_summary(db)

    assert summary == {
        "received": 2,
        "queued": 0,
        "processed": 0,
        "failed": 0,
        "ignored": 1,
    }


def test_list_events_filters_by_type(db, event_factory):
    event_service.record_incoming_event(db, _event(event_factory, event_message_id="a"))
    event_service.record_incoming_event(
        db, _event(event_factory, "residents.leave_start", event_message_id="b")
    )

    events = event_service.list_events(db, event_type="residents.leave_start")

    assert [e.event_message_id for e in events] == ["b"]


def test_queue_event_is_idempotent(db, event_factory):
    recorded = event_service.record_incoming_event(db, _event(event_factory, event_message_id="q-1"))

    first = event_service.queue_event(db, recorded.event_log)
    second = event_service.queue_event(db, recorded.event_log)

    assert first.id == second.id
    assert db.query(Job).count() == 1
    assert recorded.event_log.status == EventStatus.QUEUED.value


def test_requeue_event_revives_failed_job(db, event_factory):
    recorded = event_service.record_incoming_event(db, _event(event_factory, event_message_id="q-1"))
    job = event_service.queue_event(db, recorded.event_log)
    job.attempts = job.max_attempts
    job_service.mark_job_failed(db, job, "Caspio 500")
    event_service.mark_failed(db, "q-1", "Caspio 500")

    requeued = event_service.requeue_event(db, recorded.event_log)

    assert requeued.id == job.id
    assert requeued.status == JobStatus.PENDING.value
    assert requeued.attempts == 0
    assert recorded.event_log.status == EventStatus.QUEUED.value


def test_requeue_event_rejects_processed(db, event_factory):
    recorded = event_service.record_incoming_event(db, _event(event_factory, event_message_id="q-1"))
    event_service.mark_processed(db, "q-1")

    with pytest.raises(ValueError):
        event_service.requeue_event(db, recorded.event_log)
