"""ALIS webhook event job handler."""

from __future__ import annotations

import logging
from uuid import UUID

from resident_sync.core.structured_logging import build_log_context
from resident_sync.jobs.utils import get_caspio_client, snapshot_fetcher
from resident_sync.schemas.webhooks import AlisEvent
from resident_sync.services import event_orchestrator, event_service

logger = logging.getLogger(__name__)


async def process_alis_event(db, job) -> dict:
    """
    Apply one ledgered ALIS event to Caspio.

    Payload:
        - event_message_id: ledger key
        - company_id / company_key: tenant resolved at intake
        - event: webhook body as received

    On failure the ledger is marked failed and the error re-raised so the
    queue can retry; a later successful attempt marks it processed.
    """
    payload = job.payload or {}
    event_message_id = payload.get("event_message_id")
    if not event_message_id:
        raise ValueError("Missing event_message_id in job payload")

    event_log = event_service.get_event(db, event_message_id)
    body = payload.get("event") or (event_log.payload if event_log else None)
    if not body:
        raise ValueError(f"No event body for event_message_id={event_message_id}")

    event = AlisEvent.model_validate(body)
    company_id = payload.get("company_id") or (str(event_log.company_id) if event_log else None)
    if not company_id:
        raise ValueError(f"No company for event_message_id={event_message_id}")
    company_key = payload.get("company_key") or event.company_key

    logger.info(
        "Processing ALIS event %s",
        build_log_context(
            event_message_id=event_message_id,
            event_type=event.event_type,
            company_key=company_key,
            job_id=str(job.id),
        ),
    )

    try:
        result = await event_orchestrator.handle_alis_event(
            event,
            caspio=get_caspio_client(),
            fetch_snapshot=snapshot_fetcher(db, UUID(str(company_id)), company_key),
        )
    except Exception as exc:
        db.rollback()
        event_service.mark_failed(db, event_message_id, exc)
        raise

    event_service.mark_processed(db, event_message_id)
    return result.as_dict()
