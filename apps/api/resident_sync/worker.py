"""
Background worker for processing queued jobs.

Usage:
    python -m resident_sync.worker

The worker claims due jobs from the jobs table into free slots, keeping at
most WORKER_CONCURRENCY of them in flight. A slow job only holds its own
slot. Run it as a separate process from the API; several workers may share
one database.
"""

import asyncio
import logging
import time
from uuid import UUID

from sqlalchemy.exc import SQLAlchemyError

from resident_sync.core.config import settings
from resident_sync.core.structured_logging import build_log_context, configure_logging
from resident_sync.db.session import session_scope
from resident_sync.jobs.registry import resolve_job_handler
from resident_sync.jobs.utils import close_caspio_client
from resident_sync.services import job_service

logger = logging.getLogger(__name__)


async def process_job(db, job) -> dict | None:
    """Process a single job based on its type."""
    logger.info(
        "Processing job %s (type=%s, attempt=%s)", job.id, job.job_type, job.attempts
    )
    handler = resolve_job_handler(job.job_type)
    return await handler(db, job)


def heartbeat_interval() -> float:
    return max(settings.JOB_STALE_AFTER_SECONDS / 3, 1.0)


async def _heartbeat(job_id: UUID) -> None:
    """Keep a running job's lease alive until cancelled."""
    while True:
        await asyncio.sleep(heartbeat_interval())
        try:
            with session_scope() as db:
                job_service.touch_running_job(db, job_id)
        except SQLAlchemyError as e:
            logger.warning("Heartbeat for job %s failed: %s", job_id, type(e).__name__)


async def run_job(job_id: UUID) -> None:
    """Run one claimed job in its own session and record the outcome."""
    heartbeat = asyncio.create_task(_heartbeat(job_id))
    try:
        with session_scope() as db:
            job = job_service.get_job(db, job_id)
            if job is None:
                logger.warning("Claimed job %s disappeared", job_id)
                return
            try:
                result = await process_job(db, job)
            except Exception as e:
                db.rollback()
                job = job_service.get_job(db, job_id)
                job_service.mark_job_failed(db, job, str(e) or type(e).__name__)
                logger.error(
                    "Job %s failed: %s %s",
                    job_id,
                    type(e).__name__,
                    build_log_context(job_id=str(job_id)),
                )
                return
            job_service.mark_job_completed(db, job, result)
            logger.info("Job %s completed successfully", job_id)
    finally:
        heartbeat.cancel()


async def run_once(in_flight: set[asyncio.Task], concurrency: int, batch_size: int) -> int:
    """
    Claim due jobs into the free slots and start them without waiting.

    Started tasks are added to `in_flight` and drop out of it when they
    finish. Returns how many jobs were claimed.
    """
    free = min(batch_size, concurrency - len(in_flight))
    if free <= 0:
        return 0

    with session_scope() as db:
        job_ids = [job.id for job in job_service.claim_pending_jobs(db, limit=free)]

    if job_ids:
        logger.info("Claimed %s pending jobs (%s already running)", len(job_ids), len(in_flight))
    for job_id in job_ids:
        task = asyncio.create_task(run_job(job_id))
        in_flight.add(task)
        task.add_done_callback(in_flight.discard)
    return len(job_ids)


def release_stale_jobs() -> None:
    with session_scope() as db:
        job_service.release_stale_running_jobs(db)


async def worker_loop() -> None:
    """Main worker loop - polls for and processes pending jobs."""
    logger.info(
        "Worker starting (poll interval: %ss, batch size: %s, concurrency: %s)",
        settings.WORKER_POLL_INTERVAL,
        settings.WORKER_BATCH_SIZE,
        settings.WORKER_CONCURRENCY,
    )
    if not settings.caspio_configured:
        logger.warning("Caspio credentials not configured - sync jobs will fail")

    in_flight: set[asyncio.Task] = set()
    last_release = 0.0
    try:
        while True:
            try:
                if time.monotonic() - last_release >= heartbeat_interval():
                    release_stale_jobs()
                    last_release = time.monotonic()
                claimed = await run_once(
                    in_flight, settings.WORKER_CONCURRENCY, settings.WORKER_BATCH_SIZE
                )
            except Exception as e:
                logger.error("Error in worker loop: %s", e)
                claimed = 0
            if claimed:
                continue
            if in_flight:
                # Wake as soon as a slot frees up, or at the next poll
                await asyncio.wait(
                    in_flight,
                    timeout=settings.WORKER_POLL_INTERVAL,
                    return_when=asyncio.FIRST_COMPLETED,
                )
            else:
                await asyncio.sleep(settings.WORKER_POLL_INTERVAL)
    finally:
        for task in in_flight:
            task.cancel()
        await asyncio.gather(*in_flight, return_exceptions=True)
        await close_caspio_client()


def main() -> None:
    """Entry point for the worker."""
    configure_logging()
    try:
        asyncio.run(worker_loop())
    except KeyboardInterrupt:
        logger.info("Worker shutting down")


if __name__ == "__main__":
    main()
