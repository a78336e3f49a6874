"""
Operator endpoints for the event ledger and job queue.

Protected by the X-Admin-Token header.
"""

from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import ValidationError
from sqlalchemy.orm import Session

from resident_sync.core.config import settings
from resident_sync.core.deps import get_db, require_admin_token
from resident_sync.db.enums import EventStatus, JobStatus, JobType
from resident_sync.routers.webhooks import ingest_event, invalid_payload
from resident_sync.schemas import AlisEvent, BackfillRequest, EventLogDetail, EventLogRead, JobRead
from resident_sync.services import event_service, job_service

router = APIRouter(
    prefix="/admin",
    tags=["admin"],
    dependencies=[Depends(require_admin_token)],
)


@router.get("/events")
def list_events(
    status: EventStatus | None = Query(None),
    event_type: str | None = Query(None),
    limit: int = Query(50, ge=1, le=500),
    offset: int = Query(0, ge=0),
    db: Session = Depends(get_db),
):
    """Ledger entries, newest first, with a per-status count."""
    events = event_service.list_events(
        db, status=status, event_type=event_type, limit=limit, offset=offset
    )
    return {
        "summary": event_service.status_summary(db),
        "events": [EventLogRead.model_validate(e).model_dump(mode="json") for e in events],
    }


@router.get("/events/{event_id}", response_model=EventLogDetail)
def get_event(event_id: UUID, db: Session = Depends(get_db)):
    event_log = event_service.get_event_by_id(db, event_id)
    if not event_log:
        raise HTTPException(status_code=404, detail="Event not found")
    return event_log


@router.post("/events/{event_id}/requeue", status_code=202)
def requeue_event(event_id: UUID, db: Session = Depends(get_db)):
    """Put a failed or never-queued event back on the queue."""
    event_log = event_service.get_event_by_id(db, event_id)
    if not event_log:
        raise HTTPException(status_code=404, detail="Event not found")
    try:
        job = event_service.requeue_event(db, event_log)
    except ValueError as exc:
        raise HTTPException(status_code=409, detail=str(exc))
    except job_service.EnqueueError:
        raise HTTPException(status_code=503, detail="Queue unavailable")
    return {"status": "queued", "id": str(event_log.id), "job_id": str(job.id)}


@router.get("/jobs/failed", response_model=list[JobRead])
def list_failed_jobs(
    limit: int = Query(50, ge=1, le=500),
    db: Session = Depends(get_db),
):
    return job_service.list_jobs(db, status=JobStatus.FAILED, limit=limit)


@router.post("/backfill", status_code=202)
def enqueue_backfill(data: BackfillRequest, db: Session = Depends(get_db)):
    """Queue a resident backfill for one community."""
    event_service.get_or_create_company(db, data.company_key)
    job = job_service.schedule_job(
        db,
        job_type=JobType.RESIDENT_BACKFILL,
        payload=data.model_dump(),
    )
    return {"status": "queued", "job_id": str(job.id)}


@router.post("/simulate")
def simulate_webhook(body: dict, db: Session = Depends(get_db)):
    """Run a webhook body through intake without basic auth (dev only)."""
    if not settings.is_dev:
        raise HTTPException(status_code=404, detail="Not found")
    try:
        event = AlisEvent.model_validate(body)
    except ValidationError as exc:
        return invalid_payload(exc.errors(include_url=False, include_context=False, include_input=False))
    return ingest_event(db, event)
