"""Pydantic schemas for API request/response models."""

from resident_sync.schemas.jobs import BackfillRequest, JobRead
from resident_sync.schemas.webhooks import (
    AlisEvent,
    EventLogDetail,
    EventLogRead,
)

__all__ = [
    "AlisEvent",
    "BackfillRequest",
    "EventLogDetail",
    "EventLogRead",
    "JobRead",
]
