"""Apply one ALIS event to the Caspio resident table."""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass
from datetime import date, datetime, timezone
from typing import Any, Awaitable, Callable

from resident_sync.core.config import settings
from resident_sync.core.structured_logging import build_log_context
from resident_sync.db.enums import AlisEventType
from resident_sync.schemas.webhooks import AlisEvent
from resident_sync.services.caspio_client import (
    CaspioApiError,
    CaspioClient,
    LookupResult,
    extract_row_id,
)
from resident_sync.services.community_enrichment import get_community_enrichment
from resident_sync.services.field_mapper import (
    build_leave_end_patch,
    build_leave_start_patch,
    build_move_out_patch,
    build_update_patch,
    build_vacancy_record,
    map_snapshot_to_record,
    redact_for_logs,
)
from resident_sync.services.record_fields import RESIDENT_ID_KEYS, first_int_id
from resident_sync.services.resident_aggregator import ResidentSnapshot

logger = logging.getLogger(__name__)

SnapshotFetcher = Callable[[int, int], Awaitable[ResidentSnapshot]]


@dataclass
class SyncResult:
    action: str
    caspio_id: str | None = None
    reason: str | None = None
    vacancy_id: str | None = None

    def as_dict(self) -> dict[str, Any]:
        return {key: value for key, value in asdict(self).items() if value is not None}


def extract_resident_id(event: AlisEvent) -> int | None:
    return first_int_id(event.notification_data, RESIDENT_ID_KEYS)


def _utc_today() -> date:
    return datetime.now(timezone.utc).date()


async def _enrichment_for(
    caspio: CaspioClient, community_id: int, room_number: Any
) -> dict[str, str]:
    try:
        return await get_community_enrichment(caspio, community_id, room_number)
    except CaspioApiError as exc:
        logger.warning(
            "Community enrichment unavailable for community_id=%s: %s", community_id, exc
        )
        return {}


async def upsert_resident_snapshot(
    caspio: CaspioClient,
    snapshot: ResidentSnapshot,
    community_id: int,
    existing: LookupResult | None = None,
) -> SyncResult:
    """
    Write a full snapshot: patch the existing row (Move_in_Date untouched)
    or insert a new, community-enriched one.
    """
    table = settings.CASPIO_TABLE_NAME
    if existing is None:
        existing = await caspio.find_resident_record(table, snapshot.resident_id, community_id)

    if existing.found and existing.id:
        patch = build_update_patch(snapshot, existing.record, community_id=community_id)
        await caspio.update_record_by_id(table, existing.id, patch)
        logger.info(
            "Updated row %s for resident=%s community=%s",
            existing.id,
            snapshot.resident_id,
            community_id,
        )
        return SyncResult(action="updated", caspio_id=existing.id)

    if existing.found:
        logger.warning(
            "Caspio row for resident=%s community=%s has no row id; not inserting a duplicate",
            snapshot.resident_id,
            community_id,
        )
        return SyncResult(action="skipped", reason="existing row has no id")

    provisional = map_snapshot_to_record(snapshot, community_id=community_id)
    enrichment = await _enrichment_for(caspio, community_id, provisional.get("Room_number"))
    record = map_snapshot_to_record(snapshot, community_id=community_id, enrichment=enrichment)
    logger.debug("Inserting resident record %s", redact_for_logs(record))
    response = await caspio.insert_record(table, record)
    caspio_id = extract_row_id(response)
    logger.info(
        "Inserted row %s for resident=%s community=%s",
        caspio_id,
        snapshot.resident_id,
        community_id,
    )
    return SyncResult(action="inserted", caspio_id=caspio_id)


async def _handle_move_in(
    event: AlisEvent,
    caspio: CaspioClient,
    fetch_snapshot: SnapshotFetcher,
    resident_id: int,
    community_id: int,
) -> SyncResult:
    existing = await caspio.find_resident_record(
        settings.CASPIO_TABLE_NAME, resident_id, community_id
    )
    snapshot = await fetch_snapshot(resident_id, community_id)
    return await upsert_resident_snapshot(caspio, snapshot, community_id, existing=existing)


async def _handle_move_out(
    event: AlisEvent,
    caspio: CaspioClient,
    resident_id: int,
    community_id: int,
    today: date,
) -> SyncResult:
    table = settings.CASPIO_TABLE_NAME
    existing = await caspio.find_resident_record(table, resident_id, community_id)
    if not existing.found or not existing.id:
        logger.warning(
            "Move-out for resident=%s community=%s has no Caspio row; skipping",
            resident_id,
            community_id,
        )
        return SyncResult(action="skipped", reason="resident not found")

    patch = build_move_out_patch(
        existing.record, resident_id=resident_id, community_id=community_id, today=today
    )
    await caspio.update_record_by_id(table, existing.id, patch)

    vacancy = build_vacancy_record(
        event,
        resident_id=resident_id,
        community_id=community_id,
        existing=existing.record,
        today=today,
    )
    response = await caspio.insert_record(table, vacancy)
    vacancy_id = extract_row_id(response)
    logger.info(
        "Move-out closed row %s and inserted vacancy %s for resident=%s",
        existing.id,
        vacancy_id or vacancy["Resident_ID"],
        resident_id,
    )
    return SyncResult(action="moved_out", caspio_id=existing.id, vacancy_id=vacancy_id)


async def _handle_leave(
    event: AlisEvent,
    caspio: CaspioClient,
    resident_id: int,
    community_id: int,
) -> SyncResult:
    table = settings.CASPIO_TABLE_NAME
    existing = await caspio.find_resident_record(table, resident_id, community_id)
    if not existing.found or not existing.id:
        logger.info(
            "%s for resident=%s community=%s has no Caspio row; ignoring",
            event.event_type,
            resident_id,
            community_id,
        )
        return SyncResult(action="skipped", reason="resident not found")

    if event.event_type == AlisEventType.LEAVE_START.value:
        patch = build_leave_start_patch(event)
    else:
        patch = build_leave_end_patch(event)
    if patch is None:
        return SyncResult(action="skipped", reason="no parsable leave timestamp")

    await caspio.update_record_by_id(table, existing.id, patch)
    logger.info("%s applied to row %s", event.event_type, existing.id)
    return SyncResult(action="updated", caspio_id=existing.id)


async def _handle_update(
    event: AlisEvent,
    caspio: CaspioClient,
    fetch_snapshot: SnapshotFetcher,
    resident_id: int,
    community_id: int,
) -> SyncResult:
    table = settings.CASPIO_TABLE_NAME
    existing = await caspio.find_resident_record(table, resident_id, community_id)
    if not existing.found or not existing.id:
        logger.info(
            "%s for resident=%s community=%s has no Caspio row; ignoring",
            event.event_type,
            resident_id,
            community_id,
        )
        return SyncResult(action="skipped", reason="resident not found")

    snapshot = await fetch_snapshot(resident_id, community_id)
    patch = build_update_patch(snapshot, existing.record, community_id=community_id)
    await caspio.update_record_by_id(table, existing.id, patch)
    logger.info("%s patched row %s", event.event_type, existing.id)
    return SyncResult(action="updated", caspio_id=existing.id)


async def handle_alis_event(
    event: AlisEvent,
    *,
    caspio: CaspioClient,
    fetch_snapshot: SnapshotFetcher,
    today: date | None = None,
) -> SyncResult:
    """
    Route an event to its handler.

    "Nothing to do" cases return a skipped result. Errors from ALIS or
    Caspio propagate so the job is retried.
    """
    resident_id = extract_resident_id(event)
    community_id = event.community_id
    context = build_log_context(
        event_message_id=event.event_message_id,
        event_type=event.event_type,
        company_key=event.company_key,
        community_id=community_id,
        resident_id=resident_id,
    )

    if resident_id is None:
        logger.warning("Event has no ResidentId; dropping %s", context)
        return SyncResult(action="skipped", reason="missing resident id")
    if not community_id:
        logger.warning("Event has no CommunityId; dropping %s", context)
        return SyncResult(action="skipped", reason="missing community id")

    logger.info("Handling ALIS event %s", context)
    today = today or _utc_today()
    event_type = event.event_type

    try:
        if event_type == AlisEventType.MOVE_IN.value:
            result = await _handle_move_in(event, caspio, fetch_snapshot, resident_id, community_id)
        elif event_type == AlisEventType.MOVE_OUT.value:
            result = await _handle_move_out(event, caspio, resident_id, community_id, today)
        elif event_type in (AlisEventType.LEAVE_START.value, AlisEventType.LEAVE_END.value):
            result = await _handle_leave(event, caspio, resident_id, community_id)
        else:
            result = await _handle_update(event, caspio, fetch_snapshot, resident_id, community_id)
    except Exception:
        logger.exception(
            "ALIS event failed %s payload=%s",
            context,
            redact_for_logs(event.model_dump(by_alias=True)),
        )
        raise

    logger.info("ALIS event done action=%s %s", result.action, context)
    return result
