"""Webhooks router - ALIS event intake."""

import json
import logging

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from pydantic import ValidationError
from sqlalchemy.orm import Session

from resident_sync.core.deps import get_db, require_webhook_auth
from resident_sync.core.structured_logging import build_log_context
from resident_sync.db.enums import AlisEventType
from resident_sync.schemas.webhooks import AlisEvent
from resident_sync.services import event_service, job_service

router = APIRouter()
logger = logging.getLogger(__name__)

TEST_EVENT_REASON = "Test event acknowledged"


def invalid_payload(details) -> JSONResponse:
    return JSONResponse(status_code=400, content={"error": "Invalid payload", "details": details})


def enqueue_event(db: Session, recorded: event_service.RecordedEvent) -> JSONResponse:
    """Queue a recorded ledger entry for processing."""
    event_log = recorded.event_log
    try:
        event_service.queue_event(db, event_log)
    except job_service.EnqueueError as exc:
        # Ledger stays 'received' so an operator can requeue it.
        logger.error("Failed to enqueue event %s: %s", event_log.event_message_id, exc)
        return JSONResponse(status_code=503, content={"error": "Queue unavailable"})
    return JSONResponse(status_code=202, content={"status": "queued", "id": str(event_log.id)})


def ingest_event(db: Session, event: AlisEvent) -> JSONResponse:
    """
    Ledger first, then queue.

    - first delivery of a supported type: 202 queued
    - repeated EventMessageId: 200 duplicate, nothing else happens
    - unsupported or test event types: 202 ignored
    """
    context = build_log_context(
        event_message_id=event.event_message_id,
        event_type=event.event_type,
        company_key=event.company_key,
        community_id=event.community_id,
    )
    recorded = event_service.record_incoming_event(db, event)
    event_log = recorded.event_log

    if recorded.is_duplicate:
        logger.info("Duplicate ALIS event %s", context)
        return JSONResponse(
            status_code=200, content={"status": "duplicate", "id": str(event_log.id)}
        )

    if AlisEventType.is_test(event.event_type):
        event_service.mark_ignored(db, event.event_message_id, TEST_EVENT_REASON)
        return JSONResponse(status_code=202, content={"status": "ignored", "id": str(event_log.id)})

    if not AlisEventType.is_supported(event.event_type):
        logger.info("Unsupported ALIS event type %s", context)
        event_service.mark_ignored(
            db, event.event_message_id, f"Unsupported event type: {event.event_type}"
        )
        return JSONResponse(status_code=202, content={"status": "ignored", "id": str(event_log.id)})

    return enqueue_event(db, recorded)


@router.post("/alis", dependencies=[Depends(require_webhook_auth)])
async def receive_alis_webhook(request: Request, db: Session = Depends(get_db)):
    """
    Receive an ALIS resident event.

    Responds quickly: the event is written to the ledger and a job is queued;
    the Caspio sync happens in the worker.
    """
    body = await request.body()
    try:
        data = json.loads(body)
    except ValueError:
        logger.warning("ALIS webhook body is not valid JSON")
        return invalid_payload([{"msg": "Body must be a JSON object"}])
    if not isinstance(data, dict):
        return invalid_payload([{"msg": "Body must be a JSON object"}])

    try:
        event = AlisEvent.model_validate(data)
    except ValidationError as exc:
        logger.warning("ALIS webhook validation failed (%s errors)", exc.error_count())
        return invalid_payload(json.loads(exc.json(include_url=False)))

    return ingest_event(db, event)
