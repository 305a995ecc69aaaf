# tests/test_profile.py

from __future__ import annotations

import pytest

from visa_compliance.core.profile import UserProfile, map_employment_status, normalize_profile


def test_from_dict_reads_camel_case_and_aliases() -> None:
    p = UserProfile.from_dict(
        {
            "userId": "u1",
            "visaType": "F1",
            "employerName": "Acme",
            "isStemOpt": True,
            "isDso": "yes",
            "courseStartDate": "08/25/2024",
            "name": "   ",
        }
    )
    assert p.user_id == "u1"
    assert p.employer == "Acme"
    assert p.is_stem_opt
    assert not p.is_dso
    assert p.name is None


def test_from_dict_requires_user_id() -> None:
    with pytest.raises(ValueError):
        UserProfile.from_dict({"visaType": "F1"})


@pytest.mark.parametrize(
    ("profile", "label"),
    [
        (UserProfile("u", visa_type="F1", opt_type="stem"), "STEM OPT Extension"),
        (UserProfile("u", visa_type="F1", is_opt=True), "OPT"),
        (UserProfile("u", visa_type="F1", employment_status="CPT internship"), "CPT"),
        (UserProfile("u", visa_type="H-1B"), "H1B Employment"),
        (UserProfile("u", visa_type="J1"), "Unemployed Student"),
        (UserProfile("u", visa_type="J1", employment_status="opt-in research"), "Unemployed Student"),
        (UserProfile("u", visa_type="H1B", employment_status="left OPT"), "H1B Employment"),
        (UserProfile("u", visa_type="B2", employer="Acme"), "Employed"),
        (UserProfile("u", visa_type="B2"), "Unknown"),
    ],
)
def test_map_employment_status(profile: UserProfile, label: str) -> None:
    assert map_employment_status(profile) == label


def test_normalize_profile_dates_and_transfer_flag() -> None:
    p = UserProfile(
        "u",
        visa_type="F-1",
        previous_university="Old U",
        course_start_date="08/25/2024",
        graduation_date="not a date",
    )
    out = normalize_profile(p, "F1")
    assert out["visaType"] == "F1"
    assert out["hasTransferred"] is True
    assert out["courseStartDate"] == "2024-08-25"
    assert out["graduationDate"] is None
    assert out["usEntryDate"] is None
    assert out["university"] == ""
