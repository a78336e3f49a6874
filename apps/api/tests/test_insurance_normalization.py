"""Tests for medical insurance slot selection."""

from resident_sync.services.insurance_normalization import (
    normalize_insurance,
    normalize_medical_insurances,
)


def test_medicare_in_second_slot_is_promoted():
    slot1, slot2 = normalize_medical_insurances(
        [
            {"InsuranceName": "Kaiser", "InsuranceType": "Medical", "PolicyNumber": "K-1"},
            {"InsuranceName": "Medicare Part A", "InsuranceType": "Medical", "PolicyNumber": "M-1"},
        ]
    )
    assert slot1.name == "Medicare Part A"
    assert slot1.is_medicare is True
    assert slot2.name == "Kaiser"


def test_order_preserved_without_medicare():
    slot1, slot2 = normalize_medical_insurances(
        [
            {"Name": "Aetna", "Type": "Medical"},
            {"Name": "BCBS", "Type": "Medical"},
        ]
    )
    assert (slot1.name, slot2.name) == ("Aetna", "BCBS")


def test_non_medical_policies_are_excluded():
    slot1, slot2 = normalize_medical_insurances(
        [
            {"Name": "Delta Dental", "Type": "Dental"},
            {"Name": "Aetna", "Type": "Medical"},
        ]
    )
    assert slot1.name == "Aetna"
    assert slot2 is None


def test_medicare_name_counts_even_with_other_type():
    slot1, _ = normalize_medical_insurances(
        [{"Name": "Medicare Supplement", "Type": "Supplemental"}]
    )
    assert slot1.name == "Medicare Supplement"


def test_untyped_list_treats_named_policies_as_medical():
    slot1, slot2 = normalize_medical_insurances([{"Name": "Humana"}, {"Name": "Cigna"}, {}])
    assert (slot1.name, slot2.name) == ("Humana", "Cigna")


def test_empty_or_missing_list():
    assert normalize_medical_insurances(None) == (None, None)
    assert normalize_medical_insurances([]) == (None, None)


def test_normalize_insurance_reads_alternate_keys():
    policy = normalize_insurance(
        {"payerName": " UHC ", "planType": "medical", "groupNo": "G7", "memberId": "U-9"}
    )
    assert policy.name == "UHC"
    assert policy.type == "medical"
    assert policy.group == "G7"
    assert policy.number == "U-9"
    assert policy.is_medicare is False
