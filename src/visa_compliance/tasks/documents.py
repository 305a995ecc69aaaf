# src/visa_compliance/tasks/documents.py

"""
Match uploaded documents against document-related compliance tasks.

A task needs a document type when its description mentions one of the type's
keywords; a document satisfies the type when its name mentions one. These are
pure functions; TaskLifecycleController.apply_documents stores the outcome.
"""

from __future__ import annotations

import dataclasses
from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from enum import StrEnum

from .task_models import Task


class DocumentStatus(StrEnum):
    VALID = "valid"
    EXPIRING = "expiring"
    EXPIRED = "expired"
    PENDING = "pending"


class RequirementStatus(StrEnum):
    PRESENT = "present"
    MISSING = "missing"
    EXPIRED = "expired"


@dataclass(frozen=True, slots=True)
class Document:
    id: str
    name: str
    status: DocumentStatus = DocumentStatus.VALID
    required: bool = False
    user_id: str | None = None


@dataclass(frozen=True, slots=True)
class DocumentRequirement:
    document_type: str
    task_id: str
    status: RequirementStatus
    matching_document_id: str | None = None


# document type -> keywords (order is the report order)
DOCUMENT_KEYWORDS: dict[str, tuple[str, ...]] = {
    "passport": ("passport",),
    "visa": ("visa", "f1", "j1", "h1b"),
    "i20": ("i-20", "i20", "sevis"),
    "ead": ("ead", "employment authorization"),
    "admission": ("admission letter", "acceptance"),
    "lease": ("lease", "rental agreement"),
    "insurance": ("insurance",),
}

CRITICAL_DOCUMENT_TYPES: tuple[str, ...] = ("passport", "visa", "i20")

EXPIRED_NOTE = " (Document is expired)"


def _mentions(text: str, keywords: Iterable[str]) -> bool:
    low = text.lower()
    return any(k in low for k in keywords)


def check_document_compliance(tasks: Iterable[Task], documents: Sequence[Document]) -> list[DocumentRequirement]:
    out: list[DocumentRequirement] = []
    for task in tasks:
        for doc_type, keywords in DOCUMENT_KEYWORDS.items():
            if not _mentions(task.description, keywords):
                continue

            match = next((d for d in documents if _mentions(d.name, keywords)), None)
            if match is None:
                out.append(DocumentRequirement(doc_type, task.id, RequirementStatus.MISSING))
                continue

            status = RequirementStatus.EXPIRED if match.status is DocumentStatus.EXPIRED else RequirementStatus.PRESENT
            out.append(DocumentRequirement(doc_type, task.id, status, match.id))
    return out


def apply_document_requirements(tasks: Iterable[Task], requirements: Iterable[DocumentRequirement]) -> list[Task]:
    """
    Present -> task completed; expired -> task reopened with a note.

    Only the first requirement found for a task decides its outcome.
    """
    first: dict[str, DocumentRequirement] = {}
    for req in requirements:
        first.setdefault(req.task_id, req)

    out: list[Task] = []
    for task in tasks:
        req = first.get(task.id)
        if req is None or req.status is RequirementStatus.MISSING:
            out.append(task)
        elif req.status is RequirementStatus.PRESENT:
            out.append(dataclasses.replace(task, completed=True))
        else:
            desc = task.description if task.description.endswith(EXPIRED_NOTE) else task.description + EXPIRED_NOTE
            out.append(dataclasses.replace(task, completed=False, description=desc))
    return out


def document_compliance_issues(documents: Sequence[Document]) -> list[str]:
    issues: list[str] = []

    expired = sum(1 for d in documents if d.required and d.status is DocumentStatus.EXPIRED)
    if expired:
        issues.append(f"{expired} required document(s) are expired")

    expiring = sum(1 for d in documents if d.required and d.status is DocumentStatus.EXPIRING)
    if expiring:
        issues.append(f"{expiring} required document(s) are expiring soon")

    for doc_type in CRITICAL_DOCUMENT_TYPES:
        if not any(d.required and doc_type in d.name.lower() for d in documents):
            issues.append(f"Missing required {doc_type} document")

    return issues
