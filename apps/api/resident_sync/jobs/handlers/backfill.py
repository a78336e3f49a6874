"""Resident backfill job handler."""

from __future__ import annotations

import asyncio
import logging

from resident_sync.core.config import settings
from resident_sync.jobs.utils import get_caspio_client
from resident_sync.services.alis_client import AlisClient
from resident_sync.services.credential_service import resolve_alis_credentials
from resident_sync.services.event_orchestrator import upsert_resident_snapshot
from resident_sync.services.event_service import get_or_create_company
from resident_sync.services.record_fields import RESIDENT_ID_KEYS, first_int_id
from resident_sync.services.resident_aggregator import fetch_all_resident_data

logger = logging.getLogger(__name__)

DEFAULT_PAGE_SIZE = 100


async def run_backfill(
    alis: AlisClient,
    caspio,
    *,
    company_key: str,
    community_id: int,
    page_size: int = DEFAULT_PAGE_SIZE,
    delay_seconds: float = 0.0,
    sleep=asyncio.sleep,
) -> dict[str, int]:
    """Page through a community's residents and upsert each one into Caspio."""
    summary = {"total": 0, "succeeded": 0, "failed": 0, "skipped": 0, "page_size": page_size}
    page = 1
    while True:
        result = await alis.list_residents(
            company_key=company_key,
            community_id=community_id,
            page=page,
            page_size=page_size,
        )
        if not result.residents:
            break

        for resident in result.residents:
            summary["total"] += 1
            resident_id = first_int_id(resident, RESIDENT_ID_KEYS)
            if resident_id is None:
                summary["skipped"] += 1
                continue
            try:
                snapshot = await fetch_all_resident_data(alis, resident_id, community_id)
                await upsert_resident_snapshot(caspio, snapshot, community_id)
                summary["succeeded"] += 1
            except Exception as exc:
                summary["failed"] += 1
                logger.warning(
                    "Backfill failed for resident=%s community=%s: %s",
                    resident_id,
                    community_id,
                    type(exc).__name__,
                )
            if delay_seconds:
                await sleep(delay_seconds)

        if not result.has_more:
            break
        page += 1

    logger.info(
        "Backfill finished company_key=%s community=%s summary=%s",
        company_key,
        community_id,
        summary,
    )
    return summary


async def process_resident_backfill(db, job) -> dict:
    """
    Backfill every resident of one community.

    Payload:
        - company_key
        - community_id
        - page_size (optional, default 100)
    """
    payload = job.payload or {}
    company_key = payload.get("company_key")
    community_id = payload.get("community_id")
    if not company_key or not community_id:
        raise ValueError("Missing company_key or community_id in job payload")

    company = get_or_create_company(db, company_key)
    credentials = resolve_alis_credentials(db, company.id, company_key)
    async with AlisClient(credentials) as alis:
        return await run_backfill(
            alis,
            get_caspio_client(),
            company_key=company_key,
            community_id=int(community_id),
            page_size=int(payload.get("page_size") or DEFAULT_PAGE_SIZE),
            delay_seconds=settings.BACKFILL_DELAY_SECONDS,
        )
