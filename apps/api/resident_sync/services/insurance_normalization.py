"""Pick the two medical insurance policies written to a resident record."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from resident_sync.services.record_fields import first_text

NAME_KEYS = ("payerName", "PayerName", "insuranceName", "InsuranceName", "name", "Name")
TYPE_KEYS = ("type", "Type", "insuranceType", "InsuranceType", "planType", "PlanType")
GROUP_KEYS = ("groupNumber", "GroupNumber", "groupNo", "GroupNo", "group", "Group")
NUMBER_KEYS = (
    "policyNumber",
    "PolicyNumber",
    "memberId",
    "MemberId",
    "accountNumber",
    "AccountNumber",
    "insuranceNumber",
    "InsuranceNumber",
)


@dataclass(frozen=True)
class NormalizedInsurance:
    name: str | None
    type: str | None
    group: str | None
    number: str | None
    is_medicare: bool


def _contains(value: str | None, needle: str) -> bool:
    return bool(value) and needle in value.lower()


def normalize_insurance(record: dict[str, Any]) -> NormalizedInsurance:
    name = first_text(record, NAME_KEYS)
    type_ = first_text(record, TYPE_KEYS)
    return NormalizedInsurance(
        name=name,
        type=type_,
        group=first_text(record, GROUP_KEYS),
        number=first_text(record, NUMBER_KEYS),
        is_medicare=_contains(name, "medicare") or _contains(type_, "medicare"),
    )


def _is_medical(policy: NormalizedInsurance, any_typed: bool) -> bool:
    if policy.type:
        return _contains(policy.type, "medical") or _contains(policy.name, "medicare")
    if not any_typed:
        # Lists without any type information are treated as medical as long as
        # the policy has a name.
        return policy.name is not None
    return _contains(policy.name, "medicare")


def normalize_medical_insurances(
    insurances: list[dict[str, Any]] | None,
) -> tuple[NormalizedInsurance | None, NormalizedInsurance | None]:
    """
    Return (slot1, slot2) medical policies.

    A policy counts as medical when its type mentions "medical" or its name
    mentions "medicare". Order is preserved except that when exactly the
    second of the two selected policies is Medicare, it is promoted to slot 1.
    """
    policies = [
        normalize_insurance(item) for item in (insurances or []) if isinstance(item, dict)
    ]
    any_typed = any(policy.type for policy in policies)
    medical = [policy for policy in policies if _is_medical(policy, any_typed)]

    slot1 = medical[0] if medical else None
    slot2 = medical[1] if len(medical) > 1 else None
    if slot1 and slot2 and not slot1.is_medicare and slot2.is_medicare:
        slot1, slot2 = slot2, slot1
    return slot1, slot2
