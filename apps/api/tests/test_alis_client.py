"""Tests for the ALIS client and its retry helper."""

import httpx
import pytest

from resident_sync.services.alis_client import (
    AlisApiError,
    AlisClient,
    AlisCredentials,
    unwrap_list,
)
from resident_sync.services.http_service import request_with_retries

CREDENTIALS = AlisCredentials(username="api-user", password="api-pass")


async def _no_sleep(_delay: float) -> None:
    return None


def _client(handler, **kwargs) -> AlisClient:
    return AlisClient(
        CREDENTIALS,
        base_url="https://alis.test",
        transport=httpx.MockTransport(handler),
        sleep=_no_sleep,
        **kwargs,
    )


def test_unwrap_list_accepts_bare_and_wrapped():
    assert unwrap_list([{"a": 1}], "Items") == [{"a": 1}]
    assert unwrap_list({"Items": [{"a": 1}]}, "items", "Items") == [{"a": 1}]
    assert unwrap_list({"Other": 1}, "Items") == []
    assert unwrap_list(None, "Items") == []


def test_credentials_repr_hides_password():
    assert "api-pass" not in repr(CREDENTIALS)


@pytest.mark.asyncio
async def test_request_with_retries_retries_retryable_status():
    calls = []
    sleeps = []

    async def request_fn():
        calls.append(1)
        status = 503 if len(calls) < 3 else 200
        return httpx.Response(status)

    async def fake_sleep(delay):
        sleeps.append(delay)

    response = await request_with_retries(request_fn, max_attempts=3, sleep=fake_sleep)

    assert response.status_code == 200
    assert len(calls) == 3
    assert len(sleeps) == 2


@pytest.mark.asyncio
async def test_request_with_retries_returns_last_retryable_response():
    async def request_fn():
        return httpx.Response(502)

    response = await request_with_retries(request_fn, max_attempts=2, sleep=_no_sleep)
    assert response.status_code == 502


@pytest.mark.asyncio
async def test_request_with_retries_reraises_transport_error():
    async def request_fn():
        raise httpx.ConnectError("refused")

    with pytest.raises(httpx.ConnectError):
        await request_with_retries(request_fn, max_attempts=2, sleep=_no_sleep)


@pytest.mark.asyncio
async def test_get_resident_uses_basic_auth():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["path"] = request.url.path
        seen["auth"] = request.headers.get("authorization")
        return httpx.Response(200, json={"ResidentId": 5, "FirstName": "Ada"})

    async with _client(handler) as client:
        resident = await client.get_resident(5)

    assert resident["FirstName"] == "Ada"
    assert seen["path"] == "/v1/integration/residents/5"
    assert seen["auth"].startswith("Basic ")


@pytest.mark.asyncio
async def test_unauthorized_raises_auth_error():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(401)

    async with _client(handler) as client:
        with pytest.raises(AlisApiError) as exc_info:
            await client.get_resident_basic_info(5)

    assert exc_info.value.status == 401
    assert exc_info.value.is_auth_error
    assert str(exc_info.value) == "Unauthorized to call ALIS API (401)"


@pytest.mark.asyncio
async def test_server_errors_are_retried():
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        if len(calls) == 1:
            return httpx.Response(500)
        return httpx.Response(200, json={"Contacts": [{"Name": "Bo"}]})

    async with _client(handler, max_attempts=2) as client:
        contacts = await client.get_resident_contacts(5)

    assert contacts == [{"Name": "Bo"}]
    assert len(calls) == 2


@pytest.mark.asyncio
async def test_invalid_json_raises():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, content=b"<html>")

    async with _client(handler) as client:
        with pytest.raises(AlisApiError) as exc_info:
            await client.get_resident(5)
    assert exc_info.value.code == "INVALID_JSON"


@pytest.mark.asyncio
async def test_list_residents_pagination_flags():
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.params["CommunityId"] == "77"
        page = int(request.url.params["Page"])
        return httpx.Response(
            200,
            json={"Residents": [{"ResidentId": page}], "Page": page, "TotalPages": 2},
        )

    async with _client(handler) as client:
        first = await client.list_residents(community_id=77, page=1, page_size=50)
        second = await client.list_residents(community_id=77, page=2, page_size=50)

    assert first.has_more is True
    assert second.has_more is False
    assert second.residents == [{"ResidentId": 2}]


@pytest.mark.asyncio
async def test_leave_endpoints():
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path == "/v1/integration/residents/5/leaves":
            return httpx.Response(200, json={"Leaves": [{"LeaveId": 9}]})
        if request.url.path == "/v1/integration/leaves/9":
            return httpx.Response(200, json={"LeaveId": 9, "StartDateTime": "2026-01-18T07:00:00"})
        return httpx.Response(404)

    async with _client(handler) as client:
        leaves = await client.get_resident_leaves(5)
        leave = await client.get_leave(9)

    assert leaves == [{"LeaveId": 9}]
    assert leave["StartDateTime"] == "2026-01-18T07:00:00"
