# src/visa_compliance/tasks/baseline.py

"""
Baseline checklists: static, regulation-derived task templates per visa type.

Everything here is a lookup table:
- VISA_TYPE_ALIASES      raw spelling -> canonical visa type
- BASELINE_CHECKLISTS    canonical visa type -> ordered templates
- PHASE_COMPOSITION      (visa type, phase) -> ordered list of tables to concatenate

Adding a visa type means adding table entries; the engine never changes.
Order inside a table is the default display order downstream.
"""

from __future__ import annotations

import re
from typing import Any

from .task_models import BaselineChecklistItem, Category, Phase, Priority

_ALIAS_STRIP = re.compile(r"[\s\-_.]+")

VISA_TYPE_ALIASES: dict[str, str] = {
    "F1": "F1",
    "J1": "J1",
    "H1B": "H1B",
    "OPT": "OPT",
    "CPT": "CPT",
    "STEMOPT": "STEM_OPT",
}


def _item(
    key: str,
    visa_type: str,
    title: str,
    description: str,
    category: Category,
    priority: Priority,
    phase: Phase,
    recurring_interval: str | None = None,
) -> BaselineChecklistItem:
    return BaselineChecklistItem(
        key=key,
        visa_type=visa_type,
        title=title,
        description=description,
        category=category,
        priority=priority,
        phase=phase,
        is_recurring=recurring_interval is not None,
        recurring_interval=recurring_interval,
    )


BASELINE_CHECKLISTS: dict[str, tuple[BaselineChecklistItem, ...]] = {
    "F1": (
        _item(
            "f1-passport", "F1", "Valid Passport",
            "Passport must be valid for at least 6 months beyond your intended period of stay",
            Category.IMMIGRATION, Priority.HIGH, Phase.F1,
        ),
        _item(
            "f1-visa", "F1", "F-1 Visa",
            "Valid F-1 visa stamp in passport",
            Category.IMMIGRATION, Priority.HIGH, Phase.F1,
        ),
        _item(
            "f1-i94", "F1", "I-94 Arrival Record",
            "Most recent electronic I-94 record showing F-1 status",
            Category.IMMIGRATION, Priority.HIGH, Phase.F1,
        ),
        _item(
            "f1-i20", "F1", "Current I-20",
            "Form I-20 with valid travel signature (signed within last 12 months)",
            Category.IMMIGRATION, Priority.HIGH, Phase.F1, recurring_interval="yearly",
        ),
        _item(
            "f1-sevis-receipt", "F1", "SEVIS Fee Receipt",
            "Proof of payment for SEVIS I-901 fee",
            Category.IMMIGRATION, Priority.MEDIUM, Phase.F1,
        ),
        _item(
            "f1-admission-letter", "F1", "University Admission Letter",
            "Official admission letter from your educational institution",
            Category.EDUCATION, Priority.MEDIUM, Phase.F1,
        ),
    ),
    "CPT": (
        _item(
            "cpt-i20", "CPT", "CPT I-20",
            "Form I-20 showing DSO authorization for Curricular Practical Training",
            Category.IMMIGRATION, Priority.HIGH, Phase.CPT,
        ),
        _item(
            "cpt-offer-letter", "CPT", "CPT Offer Letter",
            "Offer letter from employer describing the training position and dates",
            Category.EMPLOYMENT, Priority.HIGH, Phase.CPT,
        ),
        _item(
            "cpt-course-enrollment", "CPT", "CPT Course Enrollment",
            "Proof of enrollment in the internship or co-op course tied to CPT",
            Category.ACADEMIC, Priority.MEDIUM, Phase.CPT,
        ),
        _item(
            "cpt-end-date", "CPT", "CPT End Date Check",
            "Stop working on the CPT end date unless a new authorization is issued",
            Category.EMPLOYMENT, Priority.MEDIUM, Phase.CPT,
        ),
    ),
    "OPT": (
        _item(
            "opt-i20", "OPT", "OPT I-20",
            "Form I-20 with OPT recommendation from DSO",
            Category.IMMIGRATION, Priority.HIGH, Phase.OPT,
        ),
        _item(
            "opt-ead", "OPT", "OPT EAD Card",
            "Employment Authorization Document for OPT",
            Category.EMPLOYMENT, Priority.HIGH, Phase.OPT,
        ),
        _item(
            "opt-employer-letter", "OPT", "Employer Letter",
            "Letter from employer confirming employment related to field of study",
            Category.EMPLOYMENT, Priority.HIGH, Phase.OPT,
        ),
        _item(
            "opt-sevp-portal", "OPT", "SEVP Portal Registration",
            "Confirmation of SEVP Portal account setup",
            Category.IMMIGRATION, Priority.MEDIUM, Phase.OPT,
        ),
    ),
    "STEM_OPT": (
        _item(
            "stem-i20", "STEM_OPT", "STEM OPT I-20",
            "Form I-20 with STEM OPT recommendation from DSO",
            Category.IMMIGRATION, Priority.HIGH, Phase.STEM_OPT,
        ),
        _item(
            "stem-i983", "STEM_OPT", "Form I-983 Training Plan",
            "Completed and signed Form I-983 training plan",
            Category.EMPLOYMENT, Priority.HIGH, Phase.STEM_OPT,
        ),
        _item(
            "stem-ead", "STEM_OPT", "STEM OPT EAD Card",
            "Employment Authorization Document for STEM OPT extension",
            Category.EMPLOYMENT, Priority.HIGH, Phase.STEM_OPT,
        ),
        _item(
            "stem-employer-letter", "STEM_OPT", "Employer Letter",
            "Letter from E-Verify employer confirming employment related to STEM field",
            Category.EMPLOYMENT, Priority.HIGH, Phase.STEM_OPT,
        ),
        _item(
            "stem-eval-12", "STEM_OPT", "12-Month Self-Evaluation",
            "Mandatory 12-month self-evaluation for STEM OPT",
            Category.EMPLOYMENT, Priority.MEDIUM, Phase.STEM_OPT, recurring_interval="yearly",
        ),
        _item(
            "stem-eval-24", "STEM_OPT", "24-Month Final Evaluation",
            "Final evaluation at the conclusion of STEM OPT period",
            Category.EMPLOYMENT, Priority.MEDIUM, Phase.STEM_OPT,
        ),
    ),
    "J1": (
        _item(
            "j1-ds2019", "J1", "Form DS-2019",
            "Certificate of Eligibility for Exchange Visitor (J-1) Status",
            Category.IMMIGRATION, Priority.HIGH, Phase.J1,
        ),
        _item(
            "j1-sponsor-letter", "J1", "Sponsor Letter",
            "Official letter from your J-1 sponsor organization",
            Category.IMMIGRATION, Priority.MEDIUM, Phase.J1,
        ),
        _item(
            "j1-funding", "J1", "Proof of Funding",
            "Documentation showing sufficient financial resources",
            Category.FINANCIAL, Priority.HIGH, Phase.J1,
        ),
        _item(
            "j1-insurance", "J1", "Health Insurance",
            "Proof of health insurance meeting J-1 requirements",
            Category.PERSONAL, Priority.HIGH, Phase.J1, recurring_interval="yearly",
        ),
    ),
    "H1B": (
        _item(
            "h1b-i797", "H1B", "Form I-797 Approval Notice",
            "H-1B petition approval notice from USCIS",
            Category.IMMIGRATION, Priority.HIGH, Phase.H1B,
        ),
        _item(
            "h1b-i94", "H1B", "H-1B I-94",
            "Most recent I-94 showing H-1B status",
            Category.IMMIGRATION, Priority.HIGH, Phase.H1B,
        ),
        _item(
            "h1b-employer-letter", "H1B", "Employer Support Letter",
            "Letter from employer confirming current H-1B employment",
            Category.EMPLOYMENT, Priority.HIGH, Phase.H1B,
        ),
        _item(
            "h1b-resume", "H1B", "Updated Resume/CV",
            "Current resume showing qualifications for specialty occupation",
            Category.EMPLOYMENT, Priority.MEDIUM, Phase.H1B,
        ),
    ),
}

# F-1 students carry their F-1 documents into the employment phases.
PHASE_COMPOSITION: dict[tuple[str, Phase], tuple[str, ...]] = {
    ("F1", Phase.CPT): ("F1", "CPT"),
    ("F1", Phase.OPT): ("F1", "OPT"),
    ("F1", Phase.STEM_OPT): ("F1", "OPT", "STEM_OPT"),
}

GENERIC_FALLBACK: tuple[BaselineChecklistItem, ...] = (
    _item(
        "generic-passport", "Other", "Valid Passport",
        "Passport must be valid for at least 6 months beyond your intended period of stay",
        Category.IMMIGRATION, Priority.HIGH, Phase.GENERAL,
    ),
    _item(
        "generic-visa", "Other", "Visa Document",
        "Current visa or status document for your immigration classification",
        Category.IMMIGRATION, Priority.HIGH, Phase.GENERAL,
    ),
)


def normalize_visa_type(raw: Any) -> str | None:
    """Canonical visa type ("F-1" -> "F1", "stem opt" -> "STEM_OPT"); None if unknown."""
    key = _ALIAS_STRIP.sub("", str(raw or "").upper())
    if not key:
        return None
    return VISA_TYPE_ALIASES.get(key)


def supported_visa_types() -> list[str]:
    return list(BASELINE_CHECKLISTS)


def get_baseline_checklist(visa_type: Any, phase: Any = None) -> list[BaselineChecklistItem]:
    """
    Ordered templates for (visa_type, phase).

    - empty visa type -> []
    - unknown visa type -> generic two-item fallback
    - known visa type -> tables from PHASE_COMPOSITION, else its own table
    """
    if not str(visa_type or "").strip():
        return []

    canonical = normalize_visa_type(visa_type)
    if canonical is None or canonical not in BASELINE_CHECKLISTS:
        return list(GENERIC_FALLBACK)

    phase_key = Phase.from_raw(phase) if phase else None
    tables = PHASE_COMPOSITION.get((canonical, phase_key), (canonical,)) if phase_key else (canonical,)

    out: list[BaselineChecklistItem] = []
    for name in tables:
        out.extend(BASELINE_CHECKLISTS[name])
    return out
