"""Tests for the worker loop, job handlers and resident backfill."""

import asyncio

import pytest

from resident_sync.db.enums import EventStatus, JobStatus, JobType
from resident_sync.db.models import EventLog, Job
from resident_sync.jobs import registry
from resident_sync.jobs.handlers import backfill
from resident_sync.jobs.registry import resolve_job_handler
from resident_sync.jobs.utils import set_caspio_client
from resident_sync.schemas import AlisEvent
from resident_sync.services import event_service, job_service
from resident_sync.services.alis_client import ResidentPage
from resident_sync.services.caspio_client import NOT_FOUND, CaspioApiError, LookupResult
from resident_sync.services.resident_aggregator import FetchOk, ResidentSnapshot
from resident_sync.worker import run_once


class FakeCaspio:
    def __init__(self, error: Exception | None = None, existing: LookupResult = NOT_FOUND):
        self.error = error
        self.existing = existing
        self.inserted: list[dict] = []
        self.updated: list[tuple] = []

    async def find_resident_record(self, table, resident_id, community_id):
        if self.error:
            raise self.error
        return self.existing

    async def update_record_by_id(self, table, row_id, patch):
        self.updated.append((row_id, patch))
        return {}

    async def insert_record(self, table, record):
        self.inserted.append(record)
        return {"PK_ID": len(self.inserted)}

    async def find_community_by_id(self, community_id):
        return NOT_FOUND

    async def find_community_by_id_and_room(self, community_id, room_number):
        return NOT_FOUND


async def _drain_queue(concurrency: int = 5, batch_size: int = 10) -> int:
    in_flight: set[asyncio.Task] = set()
    claimed = await run_once(in_flight, concurrency, batch_size)
    await asyncio.gather(*in_flight)
    return claimed


def _queue(db, event_factory, event_type="residents.move_out", emid="w-1"):
    recorded = event_service.record_incoming_event(
        db, AlisEvent.model_validate(event_factory(event_type, event_message_id=emid))
    )
    return event_service.queue_event(db, recorded.event_log)


def test_resolve_job_handler_rejects_unknown_type():
    assert resolve_job_handler(JobType.RESIDENT_BACKFILL.value) is backfill.process_resident_backfill
    with pytest.raises(ValueError):
        resolve_job_handler("send_email")


@pytest.mark.asyncio
async def test_worker_processes_queued_event(db, event_factory):
    job = _queue(db, event_factory)
    set_caspio_client(FakeCaspio())

    claimed = await _drain_queue()

    assert claimed == 1
    db.expire_all()
    job = db.query(Job).filter(Job.id == job.id).one()
    assert job.status == JobStatus.COMPLETED.value
    assert job.result == {"action": "skipped", "reason": "resident not found"}
    event_log = db.query(EventLog).one()
    assert event_log.status == EventStatus.PROCESSED.value


@pytest.mark.asyncio
async def test_worker_failure_marks_ledger_and_schedules_retry(db, event_factory):
    job = _queue(db, event_factory)
    set_caspio_client(FakeCaspio(error=CaspioApiError("Caspio search failed with status 503")))

    await _drain_queue()

    db.expire_all()
    job = db.query(Job).filter(Job.id == job.id).one()
    assert job.status == JobStatus.PENDING.value
    assert job.attempts == 1
    assert "503" in job.last_error
    event_log = db.query(EventLog).one()
    assert event_log.status == EventStatus.FAILED.value
    assert "503" in event_log.error


@pytest.mark.asyncio
async def test_worker_gives_up_after_max_attempts(db, event_factory):
    job = _queue(db, event_factory)
    job.max_attempts = 1
    db.commit()
    set_caspio_client(FakeCaspio(error=CaspioApiError("Caspio unauthorized after token refresh (401)")))

    await _drain_queue()

    db.expire_all()
    job = db.query(Job).filter(Job.id == job.id).one()
    assert job.status == JobStatus.FAILED.value
    assert job_service.list_jobs(db, status=JobStatus.FAILED)[0].id == job.id


@pytest.mark.asyncio
async def test_leave_event_needs_no_alis_credentials(db, event_factory):
    _queue(db, event_factory, "residents.leave_start", emid="w-leave")
    caspio = FakeCaspio(
        existing=LookupResult(found=True, id="42", record={"PK_ID": 42, "Resident_ID": "1001"})
    )
    set_caspio_client(caspio)

    await _drain_queue()

    db.expire_all()
    assert db.query(EventLog).one().status == EventStatus.PROCESSED.value
    assert caspio.updated[0][1]["Off_Prem"] is True


# =============================================================================
# Concurrency
# =============================================================================


class GatedHandler:
    """Job handler whose "slow" jobs block until the gate opens."""

    def __init__(self):
        self.gate = asyncio.Event()
        self.running: set = set()
        self.peak = 0

    async def __call__(self, db, job):
        self.running.add(job.id)
        self.peak = max(self.peak, len(self.running))
        try:
            if job.payload.get("slow"):
                await self.gate.wait()
        finally:
            self.running.discard(job.id)
        return {"action": "done"}


async def _eventually(predicate, timeout: float = 2.0) -> None:
    async def wait():
        while not predicate():
            await asyncio.sleep(0.01)

    await asyncio.wait_for(wait(), timeout)


@pytest.mark.asyncio
async def test_worker_never_exceeds_concurrency(db, monkeypatch):
    handler = GatedHandler()
    monkeypatch.setitem(registry.JOB_HANDLERS, JobType.PROCESS_ALIS_EVENT.value, handler)
    for _ in range(4):
        job_service.schedule_job(db, JobType.PROCESS_ALIS_EVENT, {"slow": True})
    in_flight: set[asyncio.Task] = set()

    assert await run_once(in_flight, concurrency=3, batch_size=10) == 3
    await _eventually(lambda: len(handler.running) == 3)
    assert await run_once(in_flight, concurrency=3, batch_size=10) == 0

    handler.gate.set()
    await asyncio.gather(*in_flight)
    assert await run_once(in_flight, concurrency=3, batch_size=10) == 1
    await asyncio.gather(*in_flight)

    assert handler.peak == 3
    db.expire_all()
    assert len(job_service.list_jobs(db, status=JobStatus.COMPLETED)) == 4


@pytest.mark.asyncio
async def test_slow_job_does_not_hold_up_new_events(db, monkeypatch):
    handler = GatedHandler()
    monkeypatch.setitem(registry.JOB_HANDLERS, JobType.PROCESS_ALIS_EVENT.value, handler)
    slow_id = job_service.schedule_job(db, JobType.PROCESS_ALIS_EVENT, {"slow": True}).id
    in_flight: set[asyncio.Task] = set()

    assert await run_once(in_flight, concurrency=2, batch_size=10) == 1
    await _eventually(lambda: slow_id in handler.running)

    fast_id = job_service.schedule_job(db, JobType.PROCESS_ALIS_EVENT, {}).id
    assert await run_once(in_flight, concurrency=2, batch_size=10) == 1
    await _eventually(lambda: len(in_flight) == 1)

    db.expire_all()
    assert job_service.get_job(db, fast_id).status == JobStatus.COMPLETED.value
    assert job_service.get_job(db, slow_id).status == JobStatus.RUNNING.value

    handler.gate.set()
    await asyncio.gather(*in_flight)
    db.expire_all()
    assert job_service.get_job(db, slow_id).status == JobStatus.COMPLETED.value


# =============================================================================
# Backfill
# =============================================================================


class FakeAlis:
    def __init__(self, pages: list[list[dict]]):
        self.pages = pages
        self.requested: list[int] = []

    async def list_residents(self, *, company_key, community_id, page, page_size):
        self.requested.append(page)
        residents = self.pages[page - 1] if page <= len(self.pages) else []
        return ResidentPage(residents=residents, has_more=page < len(self.pages))


def _snapshot(resident_id: int, community_id: int) -> ResidentSnapshot:
    return ResidentSnapshot(
        resident_id=resident_id,
        community_id=community_id,
        resident={"FirstName": f"R{resident_id}"},
        basic_info={},
        insurance=FetchOk([]),
        room_assignments=FetchOk([]),
        diagnoses_and_allergies=FetchOk([]),
        diagnoses_and_allergies_full=FetchOk({}),
        contacts=FetchOk([]),
    )


@pytest.mark.asyncio
async def test_run_backfill_summarizes_pages(monkeypatch):
    async def fake_fetch(alis, resident_id, community_id=None):
        if resident_id == 3:
            raise RuntimeError("ALIS timeout")
        return _snapshot(resident_id, community_id)

    monkeypatch.setattr(backfill, "fetch_all_resident_data", fake_fetch)
    alis = FakeAlis([[{"ResidentId": 1}, {"ResidentId": 2}], [{"ResidentId": 3}, {"Name": "x"}]])
    caspio = FakeCaspio()
    sleeps = []

    async def fake_sleep(delay):
        sleeps.append(delay)

    summary = await backfill.run_backfill(
        alis,
        caspio,
        company_key="acme",
        community_id=77,
        page_size=2,
        delay_seconds=0.2,
        sleep=fake_sleep,
    )

    assert summary == {"total": 4, "succeeded": 2, "failed": 1, "skipped": 1, "page_size": 2}
    assert alis.requested == [1, 2]
    assert [r["Resident_ID"] for r in caspio.inserted] == ["1", "2"]
    assert sleeps == [0.2, 0.2, 0.2]


@pytest.mark.asyncio
async def test_run_backfill_stops_on_empty_page():
    alis = FakeAlis([])

    summary = await backfill.run_backfill(alis, FakeCaspio(), company_key="acme", community_id=77)

    assert summary["total"] == 0
    assert alis.requested == [1]


@pytest.mark.asyncio
async def test_worker_service_health_before_startup():
    from httpx import ASGITransport, AsyncClient

    from resident_sync.worker_service import app as worker_app

    async with AsyncClient(transport=ASGITransport(app=worker_app), base_url="http://test") as c:
        res = await c.get("/health")

    assert res.status_code == 200
    assert res.json() == {"status": "ok", "worker_running": False}
