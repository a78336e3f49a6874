"""Map ALIS resident data and events onto Caspio record fields.

Everything here is pure: no I/O, no clock reads (callers pass `today`).
Keys whose value could not be derived are left out of the result so a patch
never blanks a column it knows nothing about.
"""

from __future__ import annotations

import logging
import re
from datetime import date, datetime
from typing import Any, Iterable

from resident_sync.schemas.webhooks import AlisEvent
from resident_sync.services.insurance_normalization import normalize_medical_insurances
from resident_sync.services.record_fields import first_text, first_value
from resident_sync.services.resident_aggregator import FetchError, ResidentSnapshot, value_or

logger = logging.getLogger(__name__)

REDACTED = "[REDACTED]"
SENSITIVE_KEY_FRAGMENTS = ("ssn", "insurance_number")

MOVE_IN_DATE_FIELD = "Move_in_Date"
VACANT_SERVICE_TYPE = "Vacant"

_FRACTION_RE = re.compile(r"(\.\d{6})\d+")
_TRUE_STRINGS = {"true", "1", "yes"}
_FALSE_STRINGS = {"false", "0", "no"}


# =============================================================================
# Accessors
# =============================================================================


def get_boolean_value(record: dict[str, Any] | None, keys: Iterable[str]) -> bool | None:
    if not record:
        return None
    for key in keys:
        value = record.get(key)
        if isinstance(value, bool):
            return value
        if isinstance(value, str):
            lowered = value.strip().lower()
            if lowered in _TRUE_STRINGS:
                return True
            if lowered in _FALSE_STRINGS:
                return False
    return None


def parse_timestamp(value: Any) -> datetime | None:
    """Parse an ISO-8601 timestamp or date; None when it is not one."""
    if isinstance(value, datetime):
        return value
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day)
    if not isinstance(value, str) or not value.strip():
        return None
    text = value.strip()
    if text.endswith(("Z", "z")):
        text = text[:-1] + "+00:00"
    # .NET emits 7 fractional digits
    text = _FRACTION_RE.sub(r"\1", text)
    try:
        return datetime.fromisoformat(text)
    except ValueError:
        return None


def to_date_only(value: Any) -> str | None:
    """YYYY-MM-DD for a timestamp, without shifting timezones."""
    parsed = parse_timestamp(value)
    if parsed is None:
        return None
    return parsed.date().isoformat()


def redact_for_logs(value: Any) -> Any:
    """Copy of `value` with SSN and insurance-number keys masked, at any depth."""
    if isinstance(value, list):
        return [redact_for_logs(item) for item in value]
    if not isinstance(value, dict):
        return value
    redacted = {}
    for key, item in value.items():
        lowered = str(key).lower()
        if any(fragment in lowered for fragment in SENSITIVE_KEY_FRAGMENTS):
            redacted[key] = REDACTED
        else:
            redacted[key] = redact_for_logs(item)
    return redacted


def _compact(record: dict[str, Any]) -> dict[str, Any]:
    return {key: value for key, value in record.items() if value is not None}


# =============================================================================
# Resident fields
# =============================================================================


def _room_from(entries: list[dict[str, Any]] | None, primary_keys: tuple[str, ...]) -> str | None:
    entries = [entry for entry in (entries or []) if isinstance(entry, dict)]
    if not entries:
        return None
    for entry in entries:
        if get_boolean_value(entry, primary_keys) is True:
            room = first_text(entry, ("RoomNumber", "roomNumber"))
            if room:
                return room
    return first_text(entries[0], ("RoomNumber", "roomNumber"))


def active_room_number(
    room_assignments: list[dict[str, Any]] | None,
    rooms: list[dict[str, Any]] | None,
) -> str | None:
    """Primary/active assignment, else first assignment, else the same rule over rooms."""
    return _room_from(
        room_assignments,
        ("IsPrimary", "isPrimary", "IsActiveAssignment", "isActiveAssignment"),
    ) or _room_from(rooms, ("IsPrimary", "isPrimary"))


def _community_address(community: dict[str, Any] | None) -> str | None:
    if not community:
        return None
    city = first_text(community, ("City", "city"))
    state = first_text(community, ("State", "state"))
    zip_code = first_text(community, ("ZipCode", "zipCode", "Zip", "zip", "PostalCode", "postalCode"))
    region = " ".join(part for part in (state, zip_code) if part)
    parts = [part for part in (city, region) if part]
    return ", ".join(parts) or None


def _diagnosis_text(value: Any) -> str | None:
    if isinstance(value, str):
        return value.strip() or None
    if isinstance(value, dict):
        return first_text(value, ("Description", "description", "Name", "name", "Code", "code"))
    if isinstance(value, list):
        for item in value:
            text = _diagnosis_text(item)
            if text:
                return text
    return None


def select_diagnoses(
    diagnoses: list[dict[str, Any]] | None,
    full: Any = None,
) -> list[str]:
    """
    Up to two diagnoses.

    The primary/secondary summary on the full payload wins; remaining slots
    are filled by scanning the list for diagnosis entries.
    """
    selected: list[str] = []

    if isinstance(full, dict):
        for keys in (
            ("PrimaryDiagnoses", "primaryDiagnoses", "PrimaryDiagnosis", "primaryDiagnosis"),
            ("SecondaryDiagnoses", "secondaryDiagnoses", "SecondaryDiagnosis", "secondaryDiagnosis"),
        ):
            text = _diagnosis_text(first_value(full, keys))
            if text and text not in selected:
                selected.append(text)

    for entry in diagnoses or []:
        if len(selected) >= 2:
            break
        if not isinstance(entry, dict):
            continue
        kind = (first_text(entry, ("Type", "type")) or "").lower()
        if kind not in ("", "diagnosis", "dx"):
            continue
        text = first_text(entry, ("Description", "description", "Code", "code"))
        if text and text not in selected:
            selected.append(text)

    return selected[:2]


def _contact_name(contact: dict[str, Any]) -> str | None:
    name = first_text(contact, ("Name", "name", "FullName", "fullName"))
    if name:
        return name
    parts = [
        first_text(contact, ("FirstName", "firstName")),
        first_text(contact, ("LastName", "lastName")),
    ]
    return " ".join(part for part in parts if part) or None


def _contact_phone(contact: dict[str, Any]) -> str | None:
    return first_text(
        contact,
        (
            "PhoneNumber",
            "phoneNumber",
            "Phone",
            "phone",
            "HomePhone",
            "homePhone",
            "MobilePhone",
            "mobilePhone",
            "WorkPhone",
            "workPhone",
        ),
    )


def _contact_address(contact: dict[str, Any]) -> str | None:
    address = first_text(contact, ("Address", "address", "Address1", "address1"))
    if address:
        return address
    street1 = first_text(contact, ("StreetAddress1", "streetAddress1"))
    street2 = first_text(contact, ("StreetAddress2", "streetAddress2"))
    city = first_text(contact, ("City", "city"))
    state = first_text(contact, ("State", "state"))
    postal = first_text(contact, ("PostalCode", "postalCode", "ZipCode", "zipCode", "Zip", "zip"))
    region = " ".join(part for part in (state, postal) if part)
    parts = [part for part in (street1, street2, city, region) if part]
    return ", ".join(parts) or None


def _contact_relationship(contact: dict[str, Any]) -> str | None:
    return first_text(
        contact, ("RelationshipType", "relationshipType", "Relationship", "relationship")
    )


def has_hospice_contact(contacts: list[dict[str, Any]]) -> bool:
    for contact in contacts:
        if not isinstance(contact, dict):
            continue
        for keys in (
            ("RelationshipType", "relationshipType", "Relationship", "relationship"),
            ("ContactType", "contactType", "Type", "type"),
        ):
            text = first_text(contact, keys)
            if text and "hospice" in text.lower():
                return True
    return False


def map_contacts(contacts: list[dict[str, Any]] | None) -> dict[str, Any]:
    fields: dict[str, Any] = {}
    entries = [contact for contact in (contacts or []) if isinstance(contact, dict)]
    for slot, contact in enumerate(entries[:2], start=1):
        fields[f"Contact_{slot}_Name"] = _contact_name(contact)
        fields[f"Contact_{slot}_Number"] = _contact_phone(contact)
        fields[f"Contact_{slot}_Email"] = first_text(contact, ("Email", "email"))
        fields[f"Contact_{slot}_Address"] = _contact_address(contact)
        fields[f"Family_Contact_{slot}"] = _contact_relationship(contact)
    return _compact(fields)


def map_insurance(insurances: list[dict[str, Any]] | None) -> dict[str, Any]:
    """Insurance slots; slot 2 is written as null when only one policy qualifies."""
    slot1, slot2 = normalize_medical_insurances(insurances)
    if slot1 is None:
        return {}
    return {
        "Insurance_Name": slot1.name,
        "Insurance_Type": slot1.type,
        "Group_": slot1.group,
        "Insurance_Number": slot1.number,
        "Insurance_2_Name": slot2.name if slot2 else None,
        "Insurance_2_Type": slot2.type if slot2 else None,
        "Group_2_": slot2.group if slot2 else None,
        "Insurance_Number_2": slot2.number if slot2 else None,
    }


# =============================================================================
# Record builders
# =============================================================================


def map_snapshot_to_record(
    snapshot: ResidentSnapshot,
    *,
    community_id: int | None = None,
    enrichment: dict[str, Any] | None = None,
) -> dict[str, Any]:
    """Full resident record as inserted on move-in."""
    resident = snapshot.resident or {}
    basic_info = snapshot.basic_info or {}
    community = value_or(snapshot.community)
    enrichment = enrichment or {}
    community_id = community_id if community_id is not None else snapshot.community_id

    name_parts = [
        first_text(resident, ("FirstName", "firstName")),
        first_text(resident, ("LastName", "lastName")),
    ]

    move_in = to_date_only(
        first_value(
            resident,
            ("PhysicalMoveInDate", "physicalMoveInDate", "PhysicalMoveIn", "physicalMoveIn"),
        )
        or first_value(
            resident,
            ("FinancialMoveInDate", "financialMoveInDate", "FinancialMoveIn", "financialMoveIn"),
        )
    )

    service_type = (
        first_text(resident, ("Classification", "classification"))
        or first_text(basic_info, ("Classification", "classification"))
        or first_text(resident, ("ProductType", "productType"))
        or first_text(basic_info, ("ProductType", "productType"))
    )

    on_leave = get_boolean_value(resident, ("IsOnLeave", "isOnLeave", "OnLeave", "onLeave"))
    off_prem_date = None
    if on_leave is True:
        off_prem_date = to_date_only(
            first_value(
                resident,
                (
                    "OnLeaveStartDateUtc",
                    "onLeaveStartDateUtc",
                    "OnLeaveStartDate",
                    "onLeaveStartDate",
                    "LeaveStartDate",
                    "leaveStartDate",
                ),
            )
        )

    room_number = active_room_number(
        value_or(snapshot.room_assignments, []),
        resident.get("Rooms") or resident.get("rooms") or basic_info.get("Rooms"),
    )

    diagnoses = select_diagnoses(
        value_or(snapshot.diagnoses_and_allergies, []),
        value_or(snapshot.diagnoses_and_allergies_full),
    )

    record: dict[str, Any] = {
        "Resident_ID": str(snapshot.resident_id),
        "Community_ID": community_id,
        "Resident_Name": " ".join(part for part in name_parts if part) or None,
        "DOB": to_date_only(first_value(resident, ("DateOfBirth", "dateOfBirth"))),
        "Room_number": room_number,
        MOVE_IN_DATE_FIELD: move_in,
        "Service_Type": service_type,
        "On_Prem": None if on_leave is None else not on_leave,
        "Off_Prem": on_leave,
        "Off_Prem_Date": off_prem_date,
        "CommunityName": (
            first_text(community, ("CommunityName", "communityName"))
            or enrichment.get("CommunityName")
            or first_text(resident, ("CompanyTextKey", "companyTextKey"))
        ),
        "Community_Address": _community_address(community) or enrichment.get("Address"),
        "CommunityGroup": enrichment.get("CommunityGroup"),
        "Neighborhood": enrichment.get("Neighborhood"),
        "SerialNumber": enrichment.get("SerialNumber"),
        "Diagnosis1": diagnoses[0] if diagnoses else None,
        "Diagnosis2": diagnoses[1] if len(diagnoses) > 1 else None,
    }
    record = _compact(record)
    record.update(map_contacts(value_or(snapshot.contacts, [])))

    if not isinstance(snapshot.contacts, FetchError):
        record["Hospice"] = has_hospice_contact(value_or(snapshot.contacts, []))

    # Added after compaction so an empty second slot clears the column.
    record.update(map_insurance(value_or(snapshot.insurance, [])))
    return record


def build_update_patch(
    snapshot: ResidentSnapshot,
    existing: dict[str, Any] | None,
    *,
    community_id: int,
    enrichment: dict[str, Any] | None = None,
) -> dict[str, Any]:
    """Full mapping minus Move_in_Date; backfills Community_ID on legacy rows."""
    patch = map_snapshot_to_record(snapshot, community_id=community_id, enrichment=enrichment)
    patch.pop(MOVE_IN_DATE_FIELD, None)
    if existing is not None and existing.get("Community_ID") in (None, ""):
        patch["Community_ID"] = community_id
    return patch


def build_move_out_patch(
    existing: dict[str, Any] | None,
    *,
    resident_id: int | str,
    community_id: int,
    today: date,
) -> dict[str, Any]:
    """Move-out and service-end dates, each set only if the row has none."""
    existing = existing or {}
    patch: dict[str, Any] = {"Resident_ID": str(resident_id), "Community_ID": community_id}
    for field in ("Move_Out_Date", "Service_End_Date"):
        if existing.get(field) in (None, ""):
            patch[field] = today.isoformat()
    return patch


def vacancy_record_id(resident_id: int | str, event_message_id: str) -> str:
    return f"{resident_id}_VACANT_{event_message_id}"


def build_vacancy_record(
    event: AlisEvent,
    *,
    resident_id: int | str,
    community_id: int,
    existing: dict[str, Any] | None = None,
    today: date,
) -> dict[str, Any]:
    """Separate row marking the vacated room after a move-out."""
    existing = existing or {}
    record = {
        "Resident_ID": vacancy_record_id(resident_id, event.event_message_id),
        "Community_ID": community_id,
        "Service_Type": VACANT_SERVICE_TYPE,
        "Room_number": existing.get("Room_number"),
        "CommunityName": existing.get("CommunityName"),
        "Community_Address": existing.get("Community_Address"),
        "Move_Out_Date": existing.get("Move_Out_Date") or today.isoformat(),
    }
    return _compact(record)


def _leave_timestamp(event: AlisEvent, keys: tuple[str, ...], label: str) -> str | None:
    notification = event.notification_data or {}
    raw = first_text(notification, keys)
    if raw and parse_timestamp(raw) is not None:
        return raw
    fallback = event.event_message_date
    if parse_timestamp(fallback) is None:
        logger.warning(
            "No parsable %s timestamp for event_message_id=%s; skipping patch",
            label,
            event.event_message_id,
        )
        return None
    logger.warning(
        "%s timestamp missing for event_message_id=%s; using EventMessageDate",
        label,
        event.event_message_id,
    )
    return fallback


def build_leave_start_patch(event: AlisEvent) -> dict[str, Any] | None:
    timestamp = _leave_timestamp(
        event, ("StartDateTime", "startDateTime", "StartDate", "startDate"), "leave start"
    )
    if timestamp is None:
        return None
    return {"Off_Prem": True, "Off_Prem_Date": timestamp, "On_Prem": False}


def build_leave_end_patch(event: AlisEvent) -> dict[str, Any] | None:
    timestamp = _leave_timestamp(
        event, ("EndDateTime", "endDateTime", "EndDate", "endDate"), "leave end"
    )
    if timestamp is None:
        return None
    return {"On_Prem": True, "On_Prem_Date": timestamp, "Off_Prem": False}
