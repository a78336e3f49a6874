"""Job handler registry."""

from __future__ import annotations

from typing import Awaitable, Callable, Mapping

from resident_sync.db.enums import JobType
from resident_sync.jobs.handlers import alis_events, backfill

JobHandler = Callable[[object, object], Awaitable[dict | None]]

JOB_HANDLERS: Mapping[str, JobHandler] = {
    JobType.PROCESS_ALIS_EVENT.value: alis_events.process_alis_event,
    JobType.RESIDENT_BACKFILL.value: backfill.process_resident_backfill,
}


def resolve_job_handler(job_type: str) -> JobHandler:
    handler = JOB_HANDLERS.get(job_type)
    if not handler:
        raise ValueError(f"Unknown job type: {job_type}")
    return handler
