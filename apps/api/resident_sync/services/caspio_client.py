"""Caspio REST v3 client.

Handles the OAuth client-credentials token lifecycle, composite-key record
lookup (Resident_ID + Community_ID), insert/update, and the retry policy:

- 401: invalidate the token and retry once
- 429, 5xx, timeouts: exponential backoff (1s, 2s, 4s, ...) up to max_attempts
- anything else >= 400: raise immediately
"""

from __future__ import annotations

import asyncio
import json
import logging
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable

import httpx

from resident_sync.core.config import settings
from resident_sync.services.record_fields import first_text

logger = logging.getLogger(__name__)

RECORDS_PATH = "/integrations/rest/v3/tables/{table}/records"
TOKEN_REFRESH_MARGIN_SECONDS = 60
DEFAULT_TOKEN_TTL_SECONDS = 3600

ROW_ID_KEYS = ("PK_ID", "PK", "_id", "id", "Id")
RESULT_WRAPPER_KEYS = ("Result", "records", "data")
RESIDENT_ID_KEYS = ("Resident_ID", "resident_ID", "resident_id")
COMMUNITY_ID_KEYS = ("Community_ID", "community_ID", "community_id")
SYSTEM_FIELDS = ("PK_ID",)


class CaspioApiError(Exception):
    """A Caspio call failed after the retry policy was applied."""

    def __init__(self, message: str, status: int | None = None, body: Any = None):
        super().__init__(message)
        self.message = message
        self.status = status
        self.body = body


class CaspioAuthError(CaspioApiError):
    """Token exchange failed or client credentials are missing."""


# =============================================================================
# Token cache
# =============================================================================


@dataclass
class CachedToken:
    access_token: str
    refresh_after: float  # clock() value after which a new token is fetched


TokenFetcher = Callable[[], Awaitable[tuple[str, int]]]


class TokenCache:
    """
    In-process access token cache owned by one CaspioClient.

    Reads are lock-free; the refresh decision is re-checked under a lock so
    concurrent callers share a single token exchange.
    """

    def __init__(
        self,
        fetch_token: TokenFetcher,
        *,
        margin_seconds: float = TOKEN_REFRESH_MARGIN_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._fetch_token = fetch_token
        self._margin = margin_seconds
        self._clock = clock
        self._token: CachedToken | None = None
        self._lock = asyncio.Lock()
        self.refresh_count = 0

    def _valid(self, token: CachedToken | None) -> bool:
        return token is not None and self._clock() < token.refresh_after

    async def get_token(self) -> str:
        token = self._token
        if self._valid(token):
            return token.access_token

        async with self._lock:
            token = self._token
            if self._valid(token):
                return token.access_token
            access_token, expires_in = await self._fetch_token()
            self._token = CachedToken(
                access_token=access_token,
                refresh_after=self._clock() + expires_in - self._margin,
            )
            self.refresh_count += 1
            logger.debug("Caspio token refreshed (expires_in=%s)", expires_in)
            return access_token

    def invalidate(self) -> None:
        self._token = None


# =============================================================================
# Record helpers
# =============================================================================


@dataclass
class LookupResult:
    found: bool
    id: str | None = None
    record: dict[str, Any] | None = None
    matches: int = 0
    legacy: bool = False


NOT_FOUND = LookupResult(found=False)


def build_where_filter(conditions: dict[str, Any]) -> str:
    """JSON filter for the `q` query parameter: {"where": {field: {"eq": value}}}."""
    return json.dumps(
        {"where": {field: {"eq": value} for field, value in conditions.items()}},
        separators=(",", ":"),
    )


def extract_records(data: Any) -> list[dict[str, Any]]:
    """Rows from a search response, bare or under a wrapper key."""
    if isinstance(data, list):
        return [row for row in data if isinstance(row, dict)]
    if isinstance(data, dict):
        for key in RESULT_WRAPPER_KEYS:
            value = data.get(key)
            if isinstance(value, list):
                return [row for row in value if isinstance(row, dict)]
    return []


def extract_row_id(row: dict[str, Any] | None) -> str | None:
    return first_text(row, ROW_ID_KEYS)


def record_resident_id(row: dict[str, Any]) -> str | None:
    return first_text(row, RESIDENT_ID_KEYS)


def record_community_id(row: dict[str, Any]) -> str | None:
    return first_text(row, COMMUNITY_ID_KEYS)


def strip_system_fields(record: dict[str, Any]) -> dict[str, Any]:
    return {key: value for key, value in record.items() if key not in SYSTEM_FIELDS}


# =============================================================================
# Client
# =============================================================================


class CaspioClient:
    """Async Caspio client. One instance per worker process."""

    def __init__(
        self,
        *,
        base_url: str | None = None,
        token_url: str | None = None,
        client_id: str | None = None,
        client_secret: str | None = None,
        timeout: float | None = None,
        max_attempts: int | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
        token_cache: TokenCache | None = None,
    ):
        self.base_url = (base_url if base_url is not None else settings.CASPIO_BASE_URL).rstrip("/")
        self.token_url = token_url if token_url is not None else settings.CASPIO_TOKEN_URL
        self.client_id = client_id if client_id is not None else settings.CASPIO_CLIENT_ID
        self.client_secret = (
            client_secret if client_secret is not None else settings.CASPIO_CLIENT_SECRET
        )
        self.max_attempts = max_attempts or settings.CASPIO_RETRY_MAX
        self._sleep = sleep
        self._http = httpx.AsyncClient(
            base_url=self.base_url,
            timeout=timeout or settings.CASPIO_TIMEOUT_SECONDS,
            transport=transport,
        )
        self.token_cache = token_cache or TokenCache(self._fetch_token, clock=clock)

    async def __aenter__(self) -> "CaspioClient":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._http.aclose()

    # -- auth --------------------------------------------------------------

    async def _fetch_token(self) -> tuple[str, int]:
        if not self.client_id or not self.client_secret:
            raise CaspioAuthError("CASPIO_CLIENT_ID and CASPIO_CLIENT_SECRET are required")
        if not self.token_url:
            raise CaspioAuthError("CASPIO_TOKEN_URL is required")

        try:
            response = await self._http.post(
                self.token_url,
                data={
                    "grant_type": "client_credentials",
                    "client_id": self.client_id,
                    "client_secret": self.client_secret,
                },
                headers={"Accept": "application/json"},
            )
        except httpx.RequestError as exc:
            raise CaspioAuthError(f"Caspio token request failed: {type(exc).__name__}") from exc

        if response.status_code >= 400:
            raise CaspioAuthError(
                f"Caspio token request returned {response.status_code}",
                status=response.status_code,
            )
        try:
            data = response.json()
        except ValueError as exc:
            raise CaspioAuthError("Caspio token response was not JSON") from exc

        access_token = data.get("access_token")
        if not access_token:
            raise CaspioAuthError("Caspio token response missing access_token")
        expires_in = data.get("expires_in") or DEFAULT_TOKEN_TTL_SECONDS
        return access_token, int(expires_in)

    async def get_access_token(self) -> str:
        return await self.token_cache.get_token()

    # -- retry state machine -----------------------------------------------

    async def _backoff(self, attempt: int, label: str, reason: str) -> None:
        delay = 2 ** (attempt - 1)
        logger.warning(
            "Caspio %s %s (attempt %s/%s), retrying in %ss",
            label,
            reason,
            attempt,
            self.max_attempts,
            delay,
        )
        await self._sleep(delay)

    async def request(
        self,
        method: str,
        path: str,
        *,
        params: dict[str, Any] | None = None,
        json_body: Any = None,
        label: str = "request",
    ) -> httpx.Response:
        """Send a request through the retry policy and return the 2xx response."""
        attempt = 0
        auth_retried = False
        while True:
            attempt += 1
            token = await self.token_cache.get_token()
            try:
                response = await self._http.request(
                    method,
                    path,
                    params=params,
                    json=json_body,
                    headers={
                        "Authorization": f"Bearer {token}",
                        "Accept": "application/json",
                    },
                )
            except httpx.TimeoutException as exc:
                if attempt < self.max_attempts:
                    await self._backoff(attempt, label, "timed out")
                    continue
                raise CaspioApiError(
                    f"Caspio {label} timed out after {attempt} attempts"
                ) from exc
            except httpx.RequestError as exc:
                raise CaspioApiError(
                    f"Caspio {label} request failed: {type(exc).__name__}"
                ) from exc

            status = response.status_code
            if status == 401:
                if not auth_retried:
                    auth_retried = True
                    logger.warning("Caspio %s returned 401, refreshing token", label)
                    self.token_cache.invalidate()
                    continue
                raise CaspioApiError(
                    f"Caspio {label} unauthorized after token refresh (401)",
                    status=status,
                    body=_safe_body(response),
                )
            if status == 429 or status >= 500:
                if attempt < self.max_attempts:
                    await self._backoff(attempt, label, f"returned {status}")
                    continue
                raise CaspioApiError(
                    f"Caspio {label} failed with status {status} after {attempt} attempts",
                    status=status,
                    body=_safe_body(response),
                )
            if status >= 400:
                raise CaspioApiError(
                    f"Caspio {label} failed with status {status}",
                    status=status,
                    body=_safe_body(response),
                )
            return response

    # -- search ------------------------------------------------------------

    async def search_records(self, table: str, conditions: dict[str, Any]) -> list[dict[str, Any]]:
        """Rows matching every condition; a 404 means no rows."""
        try:
            response = await self.request(
                "GET",
                RECORDS_PATH.format(table=table),
                params={"q": build_where_filter(conditions)},
                label=f"search {table}",
            )
        except CaspioApiError as exc:
            if exc.status == 404:
                logger.debug("Caspio search on %s returned 404; treating as no rows", table)
                return []
            raise
        return extract_records(_safe_body(response))

    async def find_record_by_resident_and_community(
        self, table: str, resident_id: int | str, community_id: int
    ) -> LookupResult:
        rows = await self.search_records(
            table, {"Resident_ID": str(resident_id), "Community_ID": community_id}
        )
        exact = [
            row
            for row in rows
            if record_resident_id(row) == str(resident_id)
            and record_community_id(row) == str(community_id)
        ]
        if not exact:
            return NOT_FOUND
        if len(exact) > 1:
            logger.warning(
                "Caspio %s has %s rows for resident=%s community=%s; using the first",
                table,
                len(exact),
                resident_id,
                community_id,
            )
        row = exact[0]
        return LookupResult(found=True, id=extract_row_id(row), record=row, matches=len(exact))

    async def find_resident_record(
        self, table: str, resident_id: int | str, community_id: int
    ) -> LookupResult:
        """
        Composite-key lookup with a legacy fallback.

        A row keyed by Resident_ID alone is reused only when it has no
        Community_ID or the same one.
        """
        result = await self.find_record_by_resident_and_community(table, resident_id, community_id)
        if result.found:
            return result

        rows = await self.search_records(table, {"Resident_ID": str(resident_id)})
        matching = [row for row in rows if record_resident_id(row) == str(resident_id)]
        reusable = [
            row
            for row in matching
            if record_community_id(row) in (None, str(community_id))
        ]
        if not reusable:
            if matching:
                logger.debug(
                    "Resident=%s exists only in communities %s; not reusing for community=%s",
                    resident_id,
                    sorted({record_community_id(row) for row in matching}),
                    community_id,
                )
            return NOT_FOUND

        row = reusable[0]
        logger.info(
            "Using legacy Caspio row for resident=%s community=%s (row community=%s)",
            resident_id,
            community_id,
            record_community_id(row),
        )
        return LookupResult(
            found=True,
            id=extract_row_id(row),
            record=row,
            matches=len(reusable),
            legacy=True,
        )

    # -- writes ------------------------------------------------------------

    async def insert_record(self, table: str, record: dict[str, Any]) -> dict[str, Any]:
        body = strip_system_fields(record)
        response = await self.request(
            "POST",
            RECORDS_PATH.format(table=table),
            json_body=body,
            label=f"insert {table}",
        )
        data = _safe_body(response)
        return data if isinstance(data, dict) else {}

    async def update_record_by_id(
        self, table: str, row_id: str | int, patch: dict[str, Any]
    ) -> dict[str, Any]:
        body = strip_system_fields(patch)
        response = await self.request(
            "PUT",
            RECORDS_PATH.format(table=table),
            params={"q.where": f"PK_ID={row_id}"},
            json_body=body,
            label=f"update {table}",
        )
        data = _safe_body(response)
        return data if isinstance(data, dict) else {}

    # -- community lookup table --------------------------------------------

    async def find_community_by_id(self, community_id: int) -> LookupResult:
        rows = await self.search_records(
            settings.CASPIO_COMMUNITY_TABLE_NAME, {"CommunityID": community_id}
        )
        if not rows:
            return NOT_FOUND
        return LookupResult(found=True, id=extract_row_id(rows[0]), record=rows[0], matches=len(rows))

    async def find_community_by_id_and_room(
        self, community_id: int, room_number: str
    ) -> LookupResult:
        rows = await self.search_records(
            settings.CASPIO_COMMUNITY_TABLE_NAME,
            {"CommunityID": community_id, "RoomNumber": room_number},
        )
        if not rows:
            return NOT_FOUND
        return LookupResult(found=True, id=extract_row_id(rows[0]), record=rows[0], matches=len(rows))


def _safe_body(response: httpx.Response) -> Any:
    if not response.content:
        return None
    try:
        return response.json()
    except ValueError:
        return response.text
