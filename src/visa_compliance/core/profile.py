# src/visa_compliance/core/profile.py

"""
Authenticated profile source -> UserProfile -> NormalizedProfile (wire dict).

The profile source hands us camelCase keys with ISO date strings or nulls;
any subset may be missing. `UserProfile.from_dict` is the single place that
reads those keys.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

from ..tasks.baseline import normalize_visa_type
from .dates import to_iso_date

# wire key -> UserProfile attribute (first match wins for duplicated attributes)
_PROFILE_KEYS: tuple[tuple[str, str], ...] = (
    ("id", "user_id"),
    ("userId", "user_id"),
    ("visaType", "visa_type"),
    ("employmentStatus", "employment_status"),
    ("optType", "opt_type"),
    ("name", "name"),
    ("email", "email"),
    ("country", "country"),
    ("university", "university"),
    ("fieldOfStudy", "field_of_study"),
    ("employer", "employer"),
    ("employerName", "employer"),
    ("previousUniversity", "previous_university"),
    ("courseStartDate", "course_start_date"),
    ("usEntryDate", "us_entry_date"),
    ("employmentStartDate", "employment_start_date"),
    ("graduationDate", "graduation_date"),
    ("transferDate", "transfer_date"),
)

_PROFILE_FLAGS: tuple[tuple[str, str], ...] = (
    ("isOpt", "is_opt"),
    ("isStemOpt", "is_stem_opt"),
    ("isCpt", "is_cpt"),
    ("isDso", "is_dso"),
)


@dataclass(frozen=True, slots=True)
class UserProfile:
    user_id: str
    visa_type: str | None = None
    employment_status: str | None = None
    opt_type: str | None = None

    is_opt: bool = False
    is_stem_opt: bool = False
    is_cpt: bool = False
    is_dso: bool = False

    name: str | None = None
    email: str | None = None
    country: str | None = None
    university: str | None = None
    field_of_study: str | None = None
    employer: str | None = None
    previous_university: str | None = None

    course_start_date: str | None = None
    us_entry_date: str | None = None
    employment_start_date: str | None = None
    graduation_date: str | None = None
    transfer_date: str | None = None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> UserProfile:
        values: dict[str, Any] = {}
        for key, attr in _PROFILE_KEYS:
            raw = data.get(key)
            if attr in values or raw is None:
                continue
            s = str(raw).strip()
            if s:
                values[attr] = s
        for key, attr in _PROFILE_FLAGS:
            values[attr] = data.get(key) is True

        if not values.get("user_id"):
            raise ValueError("profile has no user id")
        return cls(**values)


def _lower(v: str | None) -> str:
    return (v or "").strip().lower()


def has_stem_opt_indicator(profile: UserProfile) -> bool:
    return (
        profile.is_stem_opt
        or _lower(profile.opt_type) == "stem"
        or "stem" in _lower(profile.employment_status)
        or normalize_visa_type(profile.visa_type) == "STEM_OPT"
    )


def has_opt_indicator(profile: UserProfile, visa_type: str | None = None) -> bool:
    """An "opt" employment status only counts for F-1 students."""
    visa = normalize_visa_type(visa_type or profile.visa_type)
    return (
        profile.is_opt
        or _lower(profile.opt_type) == "regular"
        or (visa == "F1" and "opt" in _lower(profile.employment_status))
        or visa == "OPT"
    )


def map_employment_status(profile: UserProfile) -> str:
    """Standardized employment label sent to the personalization service."""
    visa = normalize_visa_type(profile.visa_type)
    status = _lower(profile.employment_status)

    if has_stem_opt_indicator(profile):
        return "STEM OPT Extension"
    if has_opt_indicator(profile):
        return "OPT"
    if profile.is_cpt or (visa == "F1" and "cpt" in status):
        return "CPT"
    if visa == "H1B":
        return "H1B Employment"
    if visa in ("F1", "J1") and not profile.employer:
        return "Unemployed Student"
    if profile.employer:
        return "Employed"
    return "Unknown"


def normalize_profile(profile: UserProfile, visa_type: str) -> dict[str, Any]:
    """NormalizedProfile: camelCase, dates as YYYY-MM-DD or None."""
    return {
        "name": profile.name,
        "email": profile.email,
        "country": profile.country,
        "visaType": visa_type,
        "university": profile.university or "",
        "fieldOfStudy": profile.field_of_study or "",
        "employer": profile.employer or "",
        "optType": profile.opt_type or "",
        "employmentStatus": map_employment_status(profile),
        "hasTransferred": bool(profile.previous_university or profile.transfer_date),
        "courseStartDate": to_iso_date(profile.course_start_date),
        "usEntryDate": to_iso_date(profile.us_entry_date),
        "employmentStartDate": to_iso_date(profile.employment_start_date),
        "graduationDate": to_iso_date(profile.graduation_date),
        "transferDate": to_iso_date(profile.transfer_date),
    }
