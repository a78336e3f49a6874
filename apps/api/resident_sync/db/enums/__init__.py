"""Enum definitions for application constants."""

from resident_sync.db.enums.events import (
    DEFAULT_EVENT_STATUS,
    AlisEventType,
    EventStatus,
)
from resident_sync.db.enums.jobs import DEFAULT_JOB_STATUS, JobStatus, JobType

__all__ = [
    "AlisEventType",
    "DEFAULT_EVENT_STATUS",
    "DEFAULT_JOB_STATUS",
    "EventStatus",
    "JobStatus",
    "JobType",
]
