"""Tests for the ALIS webhook intake endpoint."""

import pytest

from resident_sync.core.config import settings
from resident_sync.db.enums import EventStatus, JobStatus, JobType
from resident_sync.db.models import Company, EventLog, Job
from resident_sync.services import job_service

WEBHOOK_AUTH = ("alis-hook", "hook-secret")


@pytest.mark.asyncio
async def test_webhook_requires_basic_auth(client, move_in_body):
    res = await client.post("/webhook/alis", json=move_in_body)
    assert res.status_code == 401
    assert res.headers["www-authenticate"].startswith("Basic")


@pytest.mark.asyncio
async def test_webhook_rejects_wrong_password(client, move_in_body, db):
    res = await client.post("/webhook/alis", json=move_in_body, auth=("alis-hook", "nope"))
    assert res.status_code == 401
    assert db.query(EventLog).count() == 0


@pytest.mark.asyncio
async def test_webhook_unconfigured_auth_returns_503(client, move_in_body, monkeypatch):
    monkeypatch.setattr(settings, "WEBHOOK_BASIC_PASS", "")
    res = await client.post("/webhook/alis", json=move_in_body, auth=WEBHOOK_AUTH)
    assert res.status_code == 503


@pytest.mark.asyncio
async def test_webhook_blocks_ip_outside_allowlist(client, move_in_body, monkeypatch):
    monkeypatch.setattr(settings, "IP_ALLOWLIST", "10.0.0.0/8")
    res = await client.post("/webhook/alis", json=move_in_body, auth=WEBHOOK_AUTH)
    assert res.status_code == 403


@pytest.mark.asyncio
async def test_webhook_allows_ip_in_allowlist(client, move_in_body, monkeypatch):
    monkeypatch.setattr(settings, "IP_ALLOWLIST", "10.0.0.0/8, 127.0.0.1")
    res = await client.post("/webhook/alis", json=move_in_body, auth=WEBHOOK_AUTH)
    assert res.status_code == 202, res.text


@pytest.mark.asyncio
async def test_webhook_invalid_json_returns_400(client, db):
    res = await client.post(
        "/webhook/alis",
        content=b"{not json",
        headers={"Content-Type": "application/json"},
        auth=WEBHOOK_AUTH,
    )
    assert res.status_code == 400
    assert res.json()["error"] == "Invalid payload"
    assert db.query(EventLog).count() == 0


@pytest.mark.asyncio
async def test_webhook_missing_fields_returns_400_with_details(client, move_in_body, db):
    del move_in_body["EventMessageId"]
    res = await client.post("/webhook/alis", json=move_in_body, auth=WEBHOOK_AUTH)
    assert res.status_code == 400
    body = res.json()
    assert body["error"] == "Invalid payload"
    assert any("EventMessageId" in detail["loc"] for detail in body["details"])
    assert db.query(EventLog).count() == 0


@pytest.mark.asyncio
async def test_webhook_queues_supported_event(client, move_in_body, db):
    res = await client.post("/webhook/alis", json=move_in_body, auth=WEBHOOK_AUTH)
    assert res.status_code == 202, res.text
    data = res.json()
    assert data["status"] == "queued"

    event_log = db.query(EventLog).filter(EventLog.event_message_id == "msg-move-in-1").one()
    assert str(event_log.id) == data["id"]
    assert event_log.status == EventStatus.QUEUED.value
    assert event_log.community_id == 77
    assert event_log.payload["NotificationData"]["ResidentId"] == 1001

    company = db.query(Company).one()
    assert company.company_key == "acme"

    job = db.query(Job).one()
    assert job.job_type == JobType.PROCESS_ALIS_EVENT.value
    assert job.status == JobStatus.PENDING.value
    assert job.idempotency_key == "event-msg-move-in-1"
    assert job.payload["company_key"] == "acme"
    assert job.payload["event"]["EventType"] == "residents.move_in"


@pytest.mark.asyncio
async def test_webhook_duplicate_delivery_is_noop(client, move_in_body, db):
    first = await client.post("/webhook/alis", json=move_in_body, auth=WEBHOOK_AUTH)
    second = await client.post("/webhook/alis", json=move_in_body, auth=WEBHOOK_AUTH)

    assert first.status_code == 202
    assert second.status_code == 200
    assert second.json() == {"status": "duplicate", "id": first.json()["id"]}
    assert db.query(EventLog).count() == 1
    assert db.query(Job).count() == 1


@pytest.mark.asyncio
async def test_webhook_accepts_numeric_event_message_id(client, event_factory, db):
    body = event_factory()
    body["EventMessageId"] = 123456
    res = await client.post("/webhook/alis", json=body, auth=WEBHOOK_AUTH)
    assert res.status_code == 202, res.text
    assert db.query(EventLog).one().event_message_id == "123456"


@pytest.mark.asyncio
async def test_webhook_acknowledges_test_event(client, event_factory, db):
    body = event_factory("test.event", event_message_id="msg-test-1")
    res = await client.post("/webhook/alis", json=body, auth=WEBHOOK_AUTH)

    assert res.status_code == 202
    assert res.json()["status"] == "ignored"
    event_log = db.query(EventLog).one()
    assert event_log.status == EventStatus.IGNORED.value
    assert event_log.error == "Test event acknowledged"
    assert db.query(Job).count() == 0


@pytest.mark.asyncio
async def test_webhook_ignores_unsupported_event_type(client, event_factory, db):
    body = event_factory("residents.photo_updated", event_message_id="msg-photo-1")
    res = await client.post("/webhook/alis", json=body, auth=WEBHOOK_AUTH)

    assert res.status_code == 202
    assert res.json()["status"] == "ignored"
    event_log = db.query(EventLog).one()
    assert event_log.status == EventStatus.IGNORED.value
    assert event_log.error == "Unsupported event type: residents.photo_updated"
    assert db.query(Job).count() == 0


@pytest.mark.asyncio
async def test_webhook_enqueue_failure_returns_503_and_keeps_ledger(
    client, move_in_body, db, monkeypatch
):
    def broken_enqueue(*args, **kwargs):
        raise job_service.EnqueueError("queue down")

    monkeypatch.setattr(job_service, "enqueue_job", broken_enqueue)
    res = await client.post("/webhook/alis", json=move_in_body, auth=WEBHOOK_AUTH)

    assert res.status_code == 503
    assert res.json() == {"error": "Queue unavailable"}
    event_log = db.query(EventLog).one()
    assert event_log.status == EventStatus.RECEIVED.value
