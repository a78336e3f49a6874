"""Community and room attributes from the Caspio community lookup table."""

import logging
from typing import Any

from resident_sync.services.caspio_client import CaspioClient
from resident_sync.services.record_fields import first_text

logger = logging.getLogger(__name__)


def normalize_room_number(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


async def get_community_enrichment(
    caspio: CaspioClient,
    community_id: int,
    room_number: Any = None,
) -> dict[str, str]:
    """
    CommunityGroup, CommunityName and Address for the community, plus
    Neighborhood and SerialNumber when the room is known.
    """
    enrichment: dict[str, str | None] = {}

    community = await caspio.find_community_by_id(community_id)
    if community.found:
        enrichment["CommunityGroup"] = first_text(community.record, ("CommunityGroup",))
        enrichment["CommunityName"] = first_text(community.record, ("CommunityName",))
        enrichment["Address"] = first_text(community.record, ("Address",))

    room = normalize_room_number(room_number)
    if room:
        room_row = await caspio.find_community_by_id_and_room(community_id, room)
        if room_row.found:
            enrichment["Neighborhood"] = first_text(room_row.record, ("Neighborhood",))
            enrichment["SerialNumber"] = first_text(room_row.record, ("SerialNumber",))
            if not enrichment.get("CommunityGroup"):
                enrichment["CommunityGroup"] = first_text(room_row.record, ("CommunityGroup",))

    result = {key: value for key, value in enrichment.items() if value}
    logger.debug(
        "Community enrichment community_id=%s has_room=%s keys=%s",
        community_id,
        bool(room),
        sorted(result),
    )
    return result
