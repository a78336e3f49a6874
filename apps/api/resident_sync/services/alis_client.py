"""ALIS integration client.

Read-only access to the ALIS integration API. Every request is authenticated
with per-company basic credentials resolved by credential_service.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

import httpx

from resident_sync.core.config import settings
from resident_sync.services.http_service import Sleep, request_with_retries

logger = logging.getLogger(__name__)

INTEGRATION_PREFIX = "/v1/integration"


@dataclass(frozen=True)
class AlisCredentials:
    username: str
    password: str = field(repr=False)


@dataclass
class ResidentPage:
    residents: list[dict[str, Any]]
    has_more: bool
    raw: Any = None


class AlisApiError(Exception):
    """An ALIS call failed. status is the HTTP status when one was received."""

    def __init__(self, message: str, status: int | None = None, code: str | None = None):
        super().__init__(message)
        self.message = message
        self.status = status
        self.code = code

    @property
    def is_auth_error(self) -> bool:
        return self.status in (401, 403)


def _error_message(status: int, action: str) -> str:
    if status == 401:
        return "Unauthorized to call ALIS API (401)"
    if status == 403:
        return "Forbidden calling ALIS API (403)"
    return f"ALIS API {action} failed with status {status}"


def unwrap_list(data: Any, *keys: str) -> list[dict[str, Any]]:
    """Return the list payload, either bare or under the first matching wrapper key."""
    if isinstance(data, list):
        return data
    if isinstance(data, dict):
        for key in keys:
            value = data.get(key)
            if isinstance(value, list):
                return value
    return []


class AlisClient:
    """Async ALIS API client bound to one set of credentials."""

    def __init__(
        self,
        credentials: AlisCredentials,
        *,
        base_url: str | None = None,
        timeout: float | None = None,
        max_attempts: int | None = None,
        retry_base_delay: float = 0.5,
        transport: httpx.AsyncBaseTransport | None = None,
        sleep: Sleep | None = None,
    ):
        self.base_url = (base_url or settings.ALIS_API_BASE).rstrip("/")
        self.max_attempts = max_attempts or settings.ALIS_RETRY_MAX
        self.retry_base_delay = retry_base_delay
        self._sleep = sleep
        self._http = httpx.AsyncClient(
            base_url=self.base_url,
            auth=(credentials.username, credentials.password),
            headers={"Accept": "application/json"},
            timeout=timeout or settings.ALIS_TIMEOUT_SECONDS,
            transport=transport,
        )

    async def __aenter__(self) -> "AlisClient":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._http.aclose()

    async def _get(self, path: str, action: str, params: dict | None = None) -> Any:
        retry_kwargs: dict[str, Any] = {}
        if self._sleep is not None:
            retry_kwargs["sleep"] = self._sleep
        try:
            response = await request_with_retries(
                lambda: self._http.get(path, params=params),
                max_attempts=self.max_attempts,
                base_delay=self.retry_base_delay,
                label=f"ALIS {action}",
                **retry_kwargs,
            )
        except httpx.RequestError as exc:
            logger.warning("ALIS %s transport error: %s", action, type(exc).__name__)
            raise AlisApiError(
                f"ALIS API {action} request failed: {type(exc).__name__}",
                code=type(exc).__name__,
            ) from exc

        if response.status_code >= 400:
            logger.warning("ALIS %s returned %s", action, response.status_code)
            raise AlisApiError(
                _error_message(response.status_code, action),
                status=response.status_code,
                code=f"HTTP_{response.status_code}",
            )

        try:
            return response.json()
        except ValueError as exc:
            raise AlisApiError(
                f"Invalid JSON from ALIS during {action}",
                status=response.status_code,
                code="INVALID_JSON",
            ) from exc

    # -- resident scoped ---------------------------------------------------

    async def get_resident(self, resident_id: int) -> dict[str, Any]:
        return await self._get(f"{INTEGRATION_PREFIX}/residents/{resident_id}", "getResident")

    async def get_resident_basic_info(self, resident_id: int) -> dict[str, Any]:
        return await self._get(
            f"{INTEGRATION_PREFIX}/residents/{resident_id}/basicInfo", "getResidentBasicInfo"
        )

    async def get_resident_leaves(self, resident_id: int) -> list[dict[str, Any]]:
        data = await self._get(
            f"{INTEGRATION_PREFIX}/residents/{resident_id}/leaves", "getResidentLeaves"
        )
        return unwrap_list(data, "Leaves", "leaves")

    async def get_resident_insurance(self, resident_id: int) -> list[dict[str, Any]]:
        data = await self._get(
            f"{INTEGRATION_PREFIX}/residents/{resident_id}/insurance", "getResidentInsurance"
        )
        return unwrap_list(data, "Insurance", "insurance", "Insurances", "insurances")

    async def get_resident_room_assignments(self, resident_id: int) -> list[dict[str, Any]]:
        data = await self._get(
            f"{INTEGRATION_PREFIX}/residents/{resident_id}/roomAssignments",
            "getResidentRoomAssignments",
        )
        return unwrap_list(data, "RoomAssignments", "roomAssignments")

    async def get_resident_diagnoses_and_allergies(self, resident_id: int) -> list[dict[str, Any]]:
        data = await self._get(
            f"{INTEGRATION_PREFIX}/residents/{resident_id}/diagnosesAndAllergies",
            "getResidentDiagnosesAndAllergies",
        )
        return unwrap_list(data, "DiagnosesAndAllergies", "diagnosesAndAllergies", "Items", "items")

    async def get_resident_diagnoses_and_allergies_full(self, resident_id: int) -> Any:
        """Full diagnosis records; the summary fields live on the top-level object."""
        return await self._get(
            f"{INTEGRATION_PREFIX}/residents/{resident_id}/diagnosesAndAllergies/full",
            "getResidentDiagnosesAndAllergiesFull",
        )

    async def get_resident_contacts(self, resident_id: int) -> list[dict[str, Any]]:
        data = await self._get(
            f"{INTEGRATION_PREFIX}/residents/{resident_id}/contacts", "getResidentContacts"
        )
        return unwrap_list(data, "Contacts", "contacts")

    # -- other resources ---------------------------------------------------

    async def get_leave(self, leave_id: int) -> dict[str, Any]:
        return await self._get(f"{INTEGRATION_PREFIX}/leaves/{leave_id}", "getLeave")

    async def get_communities(self) -> list[dict[str, Any]]:
        data = await self._get(f"{INTEGRATION_PREFIX}/communities", "listCommunities")
        return unwrap_list(data, "Communities", "communities")

    async def list_residents(
        self,
        *,
        company_key: str | None = None,
        community_id: int | None = None,
        page: int | None = None,
        page_size: int | None = None,
    ) -> ResidentPage:
        params = {
            key: value
            for key, value in {
                "CompanyKey": company_key,
                "CommunityId": community_id,
                "Page": page,
                "PageSize": page_size,
            }.items()
            if value is not None
        }
        data = await self._get(f"{INTEGRATION_PREFIX}/residents", "listResidents", params=params)

        residents = unwrap_list(data, "Residents", "residents")
        if isinstance(data, dict) and isinstance(data.get("HasMore"), bool):
            has_more = data["HasMore"]
        else:
            current = (data.get("Page") if isinstance(data, dict) else None) or page or 1
            total_pages = (data.get("TotalPages") if isinstance(data, dict) else None) or current
            has_more = current < total_pages or (
                page_size is not None and len(residents) == page_size
            )
        return ResidentPage(residents=residents, has_more=has_more, raw=data)
