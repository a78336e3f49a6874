"""Fan-out fetch of everything ALIS knows about one resident.

Resident detail and basic info are mandatory. The other sub-resources are
fetched concurrently and each one records its own failure, so a single broken
endpoint never blocks the sync of the rest of the record.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Generic, TypeVar, Union

from resident_sync.services.alis_client import AlisClient
from resident_sync.services.record_fields import COMMUNITY_ID_KEYS, first_int_id

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class FetchOk(Generic[T]):
    data: T
    ok: bool = field(default=True, init=False)


@dataclass(frozen=True)
class FetchError:
    reason: str
    ok: bool = field(default=False, init=False)


FetchResult = Union[FetchOk[T], FetchError]


def value_or(result: FetchResult | None, default: Any = None) -> Any:
    """Data of a successful fetch, else default."""
    if isinstance(result, FetchOk):
        return result.data
    return default


@dataclass
class ResidentSnapshot:
    resident_id: int
    community_id: int | None
    resident: dict[str, Any]
    basic_info: dict[str, Any]
    insurance: FetchResult[list[dict[str, Any]]]
    room_assignments: FetchResult[list[dict[str, Any]]]
    diagnoses_and_allergies: FetchResult[list[dict[str, Any]]]
    diagnoses_and_allergies_full: FetchResult[Any]
    contacts: FetchResult[list[dict[str, Any]]]
    # None when no community id was known; the lookup was never attempted
    community: FetchResult[dict[str, Any] | None] | None = None

    @property
    def errors(self) -> dict[str, str]:
        errors = {}
        for name in (
            "insurance",
            "room_assignments",
            "diagnoses_and_allergies",
            "diagnoses_and_allergies_full",
            "contacts",
            "community",
        ):
            result = getattr(self, name)
            if isinstance(result, FetchError):
                errors[name] = result.reason
        return errors


async def _capture(name: str, resident_id: int, awaitable: Awaitable[T]) -> FetchResult[T]:
    try:
        return FetchOk(await awaitable)
    except Exception as exc:
        logger.warning(
            "ALIS %s fetch failed for resident=%s: %s", name, resident_id, exc
        )
        return FetchError(str(exc) or type(exc).__name__)


async def find_community(client: AlisClient, community_id: int) -> dict[str, Any] | None:
    communities = await client.get_communities()
    for community in communities:
        candidate = community.get("CommunityId", community.get("communityId"))
        if candidate is not None and str(candidate) == str(community_id):
            return community
    return None


async def fetch_all_resident_data(
    client: AlisClient,
    resident_id: int,
    community_id: int | None = None,
) -> ResidentSnapshot:
    """
    Fetch a resident snapshot.

    Raises AlisApiError when resident detail or basic info cannot be fetched.
    """
    resident, basic_info = await asyncio.gather(
        client.get_resident(resident_id),
        client.get_resident_basic_info(resident_id),
    )

    if community_id is None:
        community_id = first_int_id(resident, COMMUNITY_ID_KEYS)

    optional = [
        _capture("insurance", resident_id, client.get_resident_insurance(resident_id)),
        _capture("roomAssignments", resident_id, client.get_resident_room_assignments(resident_id)),
        _capture(
            "diagnosesAndAllergies",
            resident_id,
            client.get_resident_diagnoses_and_allergies(resident_id),
        ),
        _capture(
            "diagnosesAndAllergiesFull",
            resident_id,
            client.get_resident_diagnoses_and_allergies_full(resident_id),
        ),
        _capture("contacts", resident_id, client.get_resident_contacts(resident_id)),
    ]
    if community_id is not None:
        optional.append(_capture("community", resident_id, find_community(client, community_id)))

    results = await asyncio.gather(*optional)

    snapshot = ResidentSnapshot(
        resident_id=resident_id,
        community_id=community_id,
        resident=resident or {},
        basic_info=basic_info or {},
        insurance=results[0],
        room_assignments=results[1],
        diagnoses_and_allergies=results[2],
        diagnoses_and_allergies_full=results[3],
        contacts=results[4],
        community=results[5] if community_id is not None else None,
    )
    if snapshot.errors:
        logger.info(
            "Partial ALIS snapshot for resident=%s failed=%s",
            resident_id,
            sorted(snapshot.errors),
        )
    return snapshot
