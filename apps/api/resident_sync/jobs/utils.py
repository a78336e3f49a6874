"""Shared helpers for worker job handlers."""

from __future__ import annotations

from uuid import UUID

from sqlalchemy.orm import Session

from resident_sync.services.alis_client import AlisClient
from resident_sync.services.caspio_client import CaspioClient
from resident_sync.services.credential_service import resolve_alis_credentials
from resident_sync.services.event_orchestrator import SnapshotFetcher
from resident_sync.services.resident_aggregator import ResidentSnapshot, fetch_all_resident_data

_caspio_client: CaspioClient | None = None


def get_caspio_client() -> CaspioClient:
    """Process-wide Caspio client; its token cache is shared by every job."""
    global _caspio_client
    if _caspio_client is None:
        _caspio_client = CaspioClient()
    return _caspio_client


def set_caspio_client(client: CaspioClient | None) -> None:
    global _caspio_client
    _caspio_client = client


async def close_caspio_client() -> None:
    global _caspio_client
    if _caspio_client is not None:
        await _caspio_client.aclose()
        _caspio_client = None


def snapshot_fetcher(db: Session, company_id: UUID, company_key: str) -> SnapshotFetcher:
    """Fetcher that resolves ALIS credentials only when a snapshot is needed."""

    async def fetch(resident_id: int, community_id: int) -> ResidentSnapshot:
        credentials = resolve_alis_credentials(db, company_id, company_key)
        async with AlisClient(credentials) as client:
            return await fetch_all_resident_data(client, resident_id, community_id)

    return fetch
