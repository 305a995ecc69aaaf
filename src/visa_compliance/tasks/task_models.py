# src/visa_compliance/tasks/task_models.py

"""
Task data model and the only two mappings between shapes:

- storage rows (snake_case, `is_completed`, ISO `due_date`)  <-> Task
- baseline template -> personalization wire record (camelCase)

Incoming reply records are read in one place, core/engine.py.
"""

from __future__ import annotations

import uuid
from collections.abc import Mapping
from dataclasses import dataclass
from datetime import date
from enum import StrEnum
from typing import Any

from ..core.dates import parse_date


class Category(StrEnum):
    IMMIGRATION = "immigration"
    EDUCATION = "education"
    EMPLOYMENT = "employment"
    PERSONAL = "personal"
    FINANCIAL = "financial"
    OTHER = "other"
    ACADEMIC = "academic"

    @classmethod
    def from_raw(cls, raw: Any, default: Category | None = None) -> Category:
        try:
            return cls(str(raw or "").strip().lower())
        except ValueError:
            return default if default is not None else cls.OTHER


class Phase(StrEnum):
    F1 = "F1"
    CPT = "CPT"
    OPT = "OPT"
    STEM_OPT = "STEM_OPT"
    J1 = "J1"
    H1B = "H1B"
    GENERAL = "general"

    @classmethod
    def from_raw(cls, raw: Any, default: Phase | None = None) -> Phase:
        s = str(raw or "").strip()
        if s.lower() == "general":
            return cls.GENERAL
        s = s.upper().replace("-", "_").replace(" ", "_")
        try:
            return cls(s)
        except ValueError:
            return default if default is not None else cls.GENERAL


class Priority(StrEnum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"

    @classmethod
    def from_raw(cls, raw: Any, default: Priority | None = None) -> Priority:
        try:
            return cls(str(raw or "").strip().lower())
        except ValueError:
            return default if default is not None else cls.MEDIUM

    @property
    def rank(self) -> int:
        return {"high": 0, "medium": 1, "low": 2}[self.value]


@dataclass(frozen=True, slots=True)
class Task:
    id: str
    user_id: str
    title: str
    description: str
    category: Category
    phase: Phase
    priority: Priority
    due_date: date | None
    completed: bool = False
    visa_type: str | None = None
    is_recurring: bool = False
    recurring_interval: str | None = None
    created_at: float = 0.0
    updated_at: float = 0.0


@dataclass(frozen=True, slots=True)
class BaselineChecklistItem:
    """Regulation-derived template, not bound to a user."""

    key: str
    visa_type: str
    title: str
    description: str
    category: Category
    priority: Priority
    phase: Phase
    is_recurring: bool = False
    recurring_interval: str | None = None


def new_task_id() -> str:
    return str(uuid.uuid4())


# ---- storage mapping ----


def to_storage_record(task: Task) -> dict[str, Any]:
    return {
        "id": task.id,
        "user_id": task.user_id,
        "title": task.title,
        "description": task.description,
        "category": task.category.value,
        "phase": task.phase.value,
        "priority": task.priority.value,
        "due_date": task.due_date.isoformat() if task.due_date else None,
        "is_completed": 1 if task.completed else 0,
        "visa_type": task.visa_type,
        "is_recurring": 1 if task.is_recurring else 0,
        "recurring_interval": task.recurring_interval,
        "created_at": float(task.created_at),
        "updated_at": float(task.updated_at),
    }


def from_storage_record(row: Mapping[str, Any]) -> Task:
    return Task(
        id=str(row["id"]),
        user_id=str(row["user_id"]),
        title=str(row["title"] or ""),
        description=str(row["description"] or ""),
        category=Category.from_raw(row["category"]),
        phase=Phase.from_raw(row["phase"]),
        priority=Priority.from_raw(row["priority"]),
        # invalid stored dates fail closed to "no due date"
        due_date=parse_date(row["due_date"]),
        completed=bool(row["is_completed"]),
        visa_type=row["visa_type"],
        is_recurring=bool(row["is_recurring"]),
        recurring_interval=row["recurring_interval"],
        created_at=float(row["created_at"] or 0.0),
        updated_at=float(row["updated_at"] or 0.0),
    )


# ---- wire mapping (personalization payloads) ----


def item_to_wire(item: BaselineChecklistItem, due_date: date | None) -> dict[str, Any]:
    return {
        "id": item.key,
        "title": item.title,
        "description": item.description,
        "category": item.category.value,
        "priority": item.priority.value,
        "phase": item.phase.value,
        "dueDate": due_date.isoformat() if due_date else None,
        "isRecurring": item.is_recurring,
        "recurringInterval": item.recurring_interval,
    }

