"""Tolerant accessors for loosely shaped ALIS and Caspio records."""

from __future__ import annotations

from typing import Any, Iterable

RESIDENT_ID_KEYS = ("ResidentId", "residentId")
COMMUNITY_ID_KEYS = ("CommunityId", "communityId")


def first_value(record: dict[str, Any] | None, keys: Iterable[str]) -> Any:
    """First non-empty value under any of `keys`. Strings come back stripped."""
    if not record:
        return None
    for key in keys:
        value = record.get(key)
        if value is None:
            continue
        if isinstance(value, str):
            value = value.strip()
            if not value:
                continue
        return value
    return None


def first_text(record: dict[str, Any] | None, keys: Iterable[str]) -> str | None:
    value = first_value(record, keys)
    if value is None or isinstance(value, (dict, list, bool)):
        return None
    return str(value)


def coerce_int_id(value: Any) -> int | None:
    """Accept 42 or "42"; anything else (bools included) is not an id."""
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, str) and value.strip().isdigit():
        return int(value.strip())
    return None


def first_int_id(record: dict[str, Any] | None, keys: Iterable[str]) -> int | None:
    for key in keys:
        value = coerce_int_id((record or {}).get(key))
        if value is not None:
            return value
    return None
