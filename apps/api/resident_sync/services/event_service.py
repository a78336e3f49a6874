"""Intake ledger - durable record of every webhook event keyed by EventMessageId."""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from uuid import UUID

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from resident_sync.db.enums import EventStatus, JobStatus, JobType
from resident_sync.db.models import Company, EventLog, Job
from resident_sync.schemas.webhooks import AlisEvent
from resident_sync.services import job_service

logger = logging.getLogger(__name__)

ERROR_MAX_LENGTH = 500


@dataclass
class RecordedEvent:
    event_log: EventLog
    company: Company
    is_duplicate: bool


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def get_or_create_company(db: Session, company_key: str) -> Company:
    """Upsert a company by CompanyKey."""
    company = db.query(Company).filter(Company.company_key == company_key).first()
    if company:
        return company
    company = Company(company_key=company_key)
    db.add(company)
    try:
        db.commit()
    except IntegrityError:
        # Another request created it first
        db.rollback()
        company = db.query(Company).filter(Company.company_key == company_key).one()
        return company
    db.refresh(company)
    logger.info("Company created for company_key=%s", company_key)
    return company


def get_event(db: Session, event_message_id: str) -> EventLog | None:
    return db.query(EventLog).filter(EventLog.event_message_id == event_message_id).first()


def get_event_by_id(db: Session, event_id: UUID) -> EventLog | None:
    return db.query(EventLog).filter(EventLog.id == event_id).first()


def record_incoming_event(db: Session, event: AlisEvent) -> RecordedEvent:
    """
    Record a webhook event in the ledger.

    The first delivery of an EventMessageId creates a 'received' row. Any later
    delivery returns the existing row with is_duplicate=True and changes nothing.
    """
    company = get_or_create_company(db, event.company_key)

    existing = get_event(db, event.event_message_id)
    if existing:
        logger.info(
            "Event already recorded: event_message_id=%s type=%s",
            event.event_message_id,
            event.event_type,
        )
        return RecordedEvent(event_log=existing, company=company, is_duplicate=True)

    event_log = EventLog(
        company_id=company.id,
        community_id=event.community_id,
        event_type=event.event_type,
        event_message_id=event.event_message_id,
        payload=event.model_dump(mode="json", by_alias=True),
        status=EventStatus.RECEIVED.value,
    )
    db.add(event_log)
    try:
        db.commit()
    except IntegrityError:
        # Concurrent delivery won the unique constraint
        db.rollback()
        existing = get_event(db, event.event_message_id)
        if existing is None:
            raise
        return RecordedEvent(event_log=existing, company=company, is_duplicate=True)
    db.refresh(event_log)

    logger.info(
        "Event recorded: event_message_id=%s type=%s",
        event_log.event_message_id,
        event_log.event_type,
    )
    return RecordedEvent(event_log=event_log, company=company, is_duplicate=False)


def _update_status(
    db: Session,
    event_message_id: str,
    status: EventStatus,
    **values,
) -> EventLog | None:
    event_log = get_event(db, event_message_id)
    if event_log is None:
        logger.warning(
            "Ledger entry not found for event_message_id=%s (status=%s)",
            event_message_id,
            status.value,
        )
        return None
    event_log.status = status.value
    for key, value in values.items():
        setattr(event_log, key, value)
    db.commit()
    db.refresh(event_log)
    return event_log


def mark_queued(db: Session, event_message_id: str) -> EventLog | None:
    return _update_status(db, event_message_id, EventStatus.QUEUED)


def mark_processed(db: Session, event_message_id: str) -> EventLog | None:
    return _update_status(
        db,
        event_message_id,
        EventStatus.PROCESSED,
        processed_at=_utcnow(),
        error=None,
    )


def mark_failed(db: Session, event_message_id: str, reason: str | BaseException) -> EventLog | None:
    message = str(reason) or type(reason).__name__
    return _update_status(
        db,
        event_message_id,
        EventStatus.FAILED,
        error=message[:ERROR_MAX_LENGTH],
    )


def mark_ignored(db: Session, event_message_id: str, reason: str) -> EventLog | None:
    return _update_status(
        db,
        event_message_id,
        EventStatus.IGNORED,
        error=reason[:ERROR_MAX_LENGTH],
        processed_at=_utcnow(),
    )


def list_events(
    db: Session,
    status: EventStatus | None = None,
    event_type: str | None = None,
    limit: int = 50,
    offset: int = 0,
) -> list[EventLog]:
    """List ledger entries, newest first."""
    query = db.query(EventLog)
    if status:
        query = query.filter(EventLog.status == status.value)
    if event_type:
        query = query.filter(EventLog.event_type == event_type)
    return (
        query.order_by(EventLog.received_at.desc())
        .offset(offset)
        .limit(limit)
        .all()
    )


def status_summary(db: Session) -> dict[str, int]:
    """Count ledger entries per status (every status present, zero-filled)."""
    rows = (
        db.query(EventLog.status, func.count(EventLog.id))
        .group_by(EventLog.status)
        .all()
    )
    summary = {status.value: 0 for status in EventStatus}
    for status, count in rows:
        summary[status] = count
    return summary


# =============================================================================
# Dispatch
# =============================================================================

REQUEUEABLE_STATUSES = {EventStatus.RECEIVED.value, EventStatus.FAILED.value}


def event_job_key(event_message_id: str) -> str:
    return f"event-{event_message_id}"


def queue_event(db: Session, event_log: EventLog) -> Job:
    """
    Enqueue the processing job for a ledger entry and mark it queued.

    Raises EnqueueError when the job cannot be written; the entry then keeps
    its current status.
    """
    job, created = job_service.enqueue_job(
        db,
        job_type=JobType.PROCESS_ALIS_EVENT,
        payload={
            "event_message_id": event_log.event_message_id,
            "company_id": str(event_log.company_id),
            "company_key": event_log.company.company_key,
            "event": event_log.payload,
        },
        idempotency_key=event_job_key(event_log.event_message_id),
    )
    if not created and job.status in (JobStatus.FAILED.value, JobStatus.COMPLETED.value):
        job = job_service.requeue_job(db, job)
    mark_queued(db, event_log.event_message_id)
    return job


def requeue_event(db: Session, event_log: EventLog) -> Job:
    """Send a failed or never-queued ledger entry back through the queue."""
    if event_log.status not in REQUEUEABLE_STATUSES:
        raise ValueError(
            f"Event {event_log.event_message_id} is {event_log.status}; "
            "only received or failed events can be requeued"
        )
    logger.info("Requeueing event_message_id=%s", event_log.event_message_id)
    return queue_event(db, event_log)
