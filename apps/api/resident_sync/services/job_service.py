"""Job service - durable dispatch queue backed by the jobs table."""

import logging
from datetime import datetime, timedelta, timezone
from uuid import UUID

from sqlalchemy import or_
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from resident_sync.core.config import settings
from resident_sync.db.enums import JobStatus, JobType
from resident_sync.db.models import Job

logger = logging.getLogger(__name__)

LAST_ERROR_MAX_LENGTH = 2000


class EnqueueError(Exception):
    """A job could not be written to the queue."""


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def schedule_job(
    db: Session,
    job_type: JobType,
    payload: dict,
    run_at: datetime | None = None,
    idempotency_key: str | None = None,
    max_attempts: int | None = None,
) -> Job:
    """
    Schedule a new background job.

    If run_at is None, the job runs immediately.
    If idempotency_key is provided, duplicate jobs with same key will fail
    with IntegrityError (caller should catch and handle).
    """
    job = Job(
        job_type=job_type.value,
        payload=payload,
        run_at=run_at or _utcnow(),
        status=JobStatus.PENDING.value,
        max_attempts=max_attempts or settings.JOB_MAX_ATTEMPTS,
        idempotency_key=idempotency_key,
    )
    db.add(job)
    db.commit()
    db.refresh(job)
    return job


def get_job_by_idempotency_key(db: Session, idempotency_key: str) -> Job | None:
    return db.query(Job).filter(Job.idempotency_key == idempotency_key).first()


def enqueue_job(
    db: Session,
    job_type: JobType,
    payload: dict,
    idempotency_key: str,
    run_at: datetime | None = None,
) -> tuple[Job, bool]:
    """
    Enqueue a job keyed by idempotency_key.

    Returns (job, created). A second enqueue with the same key returns the
    existing job with created=False. Any other storage failure raises
    EnqueueError so intake can refuse to acknowledge the event.
    """
    try:
        return (
            schedule_job(
                db,
                job_type=job_type,
                payload=payload,
                run_at=run_at,
                idempotency_key=idempotency_key,
            ),
            True,
        )
    except IntegrityError:
        db.rollback()
        existing = get_job_by_idempotency_key(db, idempotency_key)
        if existing is None:
            raise EnqueueError(f"Could not enqueue job {idempotency_key}")
        logger.info("Duplicate job skipped for key=%s", idempotency_key)
        return existing, False
    except SQLAlchemyError as exc:
        db.rollback()
        raise EnqueueError(f"Could not enqueue job {idempotency_key}: {type(exc).__name__}") from exc


def claim_pending_jobs(db: Session, limit: int = 10) -> list[Job]:
    """
    Claim due pending jobs for this worker (pending -> running, attempts + 1).

    Uses SKIP LOCKED on PostgreSQL so concurrent workers never claim the same row.
    """
    now = _utcnow()
    query = (
        db.query(Job)
        .filter(
            Job.status == JobStatus.PENDING.value,
            Job.run_at <= now,
        )
        .order_by(Job.run_at)
        .limit(limit)
    )
    if db.get_bind().dialect.name == "postgresql":
        query = query.with_for_update(skip_locked=True)
    jobs = query.all()
    for job in jobs:
        job.status = JobStatus.RUNNING.value
        job.attempts += 1
        job.started_at = now
    db.commit()
    return jobs


def touch_running_job(db: Session, job_id: UUID) -> bool:
    """Heartbeat: push a running job's started_at forward so it keeps its lease."""
    count = (
        db.query(Job)
        .filter(Job.id == job_id, Job.status == JobStatus.RUNNING.value)
        .update({Job.started_at: _utcnow()}, synchronize_session=False)
    )
    db.commit()
    return bool(count)


def release_stale_running_jobs(db: Session, stale_after_seconds: float | None = None) -> int:
    """
    Return running jobs whose lease has lapsed to the queue.

    Live workers heartbeat their jobs through touch_running_job, so only jobs
    left behind by a worker that died are older than the lease.
    """
    if stale_after_seconds is None:
        stale_after_seconds = settings.JOB_STALE_AFTER_SECONDS
    now = _utcnow()
    cutoff = now - timedelta(seconds=stale_after_seconds)
    count = (
        db.query(Job)
        .filter(
            Job.status == JobStatus.RUNNING.value,
            or_(Job.started_at.is_(None), Job.started_at < cutoff),
        )
        .update(
            {Job.status: JobStatus.PENDING.value, Job.run_at: now},
            synchronize_session=False,
        )
    )
    db.commit()
    if count:
        logger.warning("Released %s stale running jobs", count)
    return count


def get_job(db: Session, job_id: UUID) -> Job | None:
    """Get a job by ID."""
    return db.query(Job).filter(Job.id == job_id).first()


def list_jobs(
    db: Session,
    status: JobStatus | None = None,
    job_type: JobType | None = None,
    limit: int = 50,
) -> list[Job]:
    """List jobs with optional filters."""
    query = db.query(Job)
    if status:
        query = query.filter(Job.status == status.value)
    if job_type:
        query = query.filter(Job.job_type == job_type.value)
    return query.order_by(Job.created_at.desc()).limit(limit).all()


def mark_job_completed(db: Session, job: Job, result: dict | None = None) -> Job:
    """Mark a job as completed."""
    job.status = JobStatus.COMPLETED.value
    job.completed_at = _utcnow()
    job.last_error = None
    if result is not None:
        job.result = result
    db.commit()
    db.refresh(job)
    return job


def retry_delay_seconds(attempts: int) -> float:
    """Exponential backoff: base, 2*base, 4*base, ... for attempts 1, 2, 3, ..."""
    return settings.JOB_BACKOFF_BASE_SECONDS * (2 ** max(attempts - 1, 0))


def mark_job_failed(db: Session, job: Job, error: str) -> Job:
    """
    Mark a job attempt as failed.

    If attempts < max_attempts, reset to pending with a backed-off run_at.
    Otherwise the job stays 'failed' for operator inspection.
    """
    job.last_error = error[:LAST_ERROR_MAX_LENGTH]
    if job.attempts < job.max_attempts:
        job.status = JobStatus.PENDING.value
        job.run_at = _utcnow() + timedelta(seconds=retry_delay_seconds(job.attempts))
    else:
        job.status = JobStatus.FAILED.value
        job.completed_at = _utcnow()
    db.commit()
    db.refresh(job)
    return job


def requeue_job(db: Session, job: Job) -> Job:
    """Give a failed job a fresh attempt budget and run it now."""
    job.status = JobStatus.PENDING.value
    job.attempts = 0
    job.run_at = _utcnow()
    job.completed_at = None
    db.commit()
    db.refresh(job)
    return job
