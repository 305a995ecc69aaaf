# src/visa_compliance/tasks/task_api.py

"""
ComplianceTaskStore: the async persistence boundary the engine and the
controller talk to.

- bound to one authenticated Caller; every operation is checked against it
- validates and maps Python field names onto storage columns
- runs the blocking repo calls off the event loop (asyncio.to_thread)
- retries reads with bounded exponential backoff; writes are never retried
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from typing import Any, TypeVar

from ..core.dates import parse_date
from ..core.ports import TaskRepo
from ..errors import AuthorizationError, TransientIOError, ValidationError
from .task_models import Category, Phase, Priority, Task, new_task_id

logger = logging.getLogger(__name__)

T = TypeVar("T")

ROLE_STUDENT = "student"
ROLE_DSO = "dso"

REQUIRED_CREATE_FIELDS: tuple[str, ...] = ("user_id", "title", "due_date", "priority", "category")

# Python field name -> storage column
_FIELD_COLUMNS: dict[str, str] = {
    "title": "title",
    "description": "description",
    "category": "category",
    "phase": "phase",
    "priority": "priority",
    "due_date": "due_date",
    "completed": "is_completed",
    "visa_type": "visa_type",
    "is_recurring": "is_recurring",
    "recurring_interval": "recurring_interval",
}

_IMMUTABLE_FIELDS = frozenset({"id", "user_id", "created_at", "updated_at"})


@dataclass(frozen=True, slots=True)
class Caller:
    """The authenticated principal a store session acts for."""

    user_id: str
    role: str = ROLE_STUDENT

    @property
    def is_dso(self) -> bool:
        return self.role == ROLE_DSO


def _enum_value(enum_cls: Any, raw: Any, field: str) -> str:
    s = str(raw or "").strip()
    if enum_cls is not Phase:
        s = s.lower()
    try:
        return enum_cls(s).value
    except ValueError:
        allowed = ", ".join(m.value for m in enum_cls)
        raise ValidationError(
            f"invalid {field}={raw!r}",
            user_message=f"Invalid {field}. Expected one of: {allowed}.",
        ) from None


def _coerce_field(name: str, value: Any) -> Any:
    if name == "title":
        title = str(value or "").strip()
        if not title:
            raise ValidationError("title is required", user_message="Title is required.")
        return title
    if name == "description":
        return str(value or "")
    if name == "category":
        return _enum_value(Category, value, "category")
    if name == "phase":
        return _enum_value(Phase, value, "phase")
    if name == "priority":
        return _enum_value(Priority, value, "priority")
    if name == "due_date":
        if value is None or value == "":
            return None
        d = parse_date(value)
        if d is None:
            raise ValidationError(f"invalid due_date={value!r}", user_message="Due date is not a valid date.")
        return d.isoformat()
    if name in ("completed", "is_recurring"):
        if not isinstance(value, bool):
            raise ValidationError(f"{name} must be a boolean")
        return 1 if value else 0
    # visa_type, recurring_interval
    return None if value is None else str(value)


def _coerce_update(fields: Mapping[str, Any]) -> dict[str, Any]:
    out: dict[str, Any] = {}
    for name, value in fields.items():
        if name in _IMMUTABLE_FIELDS:
            raise ValidationError(f"{name} is immutable", user_message=f"{name} cannot be changed.")
        column = _FIELD_COLUMNS.get(name)
        if column is None:
            raise ValidationError(f"unknown task field {name!r}")
        out[column] = _coerce_field(name, value)
    return out


class ComplianceTaskStore:
    def __init__(
        self,
        repo: TaskRepo,
        caller: Caller,
        *,
        read_retries: int = 3,
        retry_backoff_seconds: float = 0.25,
    ) -> None:
        self._repo = repo
        self._caller = caller
        self._read_retries = max(1, int(read_retries))
        self._retry_backoff = max(0.0, float(retry_backoff_seconds))

    @property
    def caller(self) -> Caller:
        return self._caller

    async def _read_with_retry(self, fn: Callable[..., T], *args: Any, **kwargs: Any) -> T:
        delay = self._retry_backoff
        for attempt in range(1, self._read_retries + 1):
            try:
                return await asyncio.to_thread(fn, *args, **kwargs)
            except TransientIOError as e:
                if attempt >= self._read_retries:
                    logger.warning("Read failed after %d attempts: %s", attempt, e)
                    raise
                logger.info("Read failed (attempt %d/%d), retrying in %.2fs", attempt, self._read_retries, delay)
                await asyncio.sleep(delay)
                delay *= 2
        raise AssertionError("unreachable")

    def _require_self(self, user_id: str, action: str) -> None:
        if user_id != self._caller.user_id:
            logger.warning(
                "Denied %s for caller=%s on user=%s", action, self._caller.user_id, user_id
            )
            raise AuthorizationError(f"caller {self._caller.user_id} cannot {action} tasks of {user_id}")

    # ---- operations ----

    async def fetch_tasks(self, user_id: str, *, order_by: str = "created") -> list[Task]:
        """Tasks of `user_id`, newest first unless order_by="due_date"."""
        if user_id != self._caller.user_id:
            if not self._caller.is_dso:
                self._require_self(user_id, "read")
            logger.info("DSO access: caller=%s read tasks of user=%s", self._caller.user_id, user_id)
        return await self._read_with_retry(self._repo.list_tasks, user_id, order_by=order_by)

    async def create_task(self, fields: Mapping[str, Any]) -> Task:
        missing = [f for f in REQUIRED_CREATE_FIELDS if fields.get(f) in (None, "")]
        if missing:
            raise ValidationError(
                f"missing required fields: {missing}",
                user_message=f"Missing required fields: {', '.join(missing)}.",
            )
        user_id = str(fields["user_id"])
        self._require_self(user_id, "create")

        values = _coerce_update({k: v for k, v in fields.items() if k not in ("user_id", "id")})
        task = Task(
            id=new_task_id(),
            user_id=user_id,
            title=values["title"],
            description=values.get("description", ""),
            category=Category(values["category"]),
            phase=Phase(values.get("phase", Phase.GENERAL.value)),
            priority=Priority(values["priority"]),
            due_date=parse_date(values["due_date"]),
            completed=bool(values.get("is_completed", 0)),
            visa_type=values.get("visa_type"),
            is_recurring=bool(values.get("is_recurring", 0)),
            recurring_interval=values.get("recurring_interval"),
        )
        created = await asyncio.to_thread(self._repo.insert_task, task)
        logger.info("Created task id=%s user=%s", created.id, user_id)
        return created

    async def update_task(self, task_id: str, fields: Mapping[str, Any]) -> Task:
        values = _coerce_update(fields)
        return await asyncio.to_thread(
            self._repo.update_task, task_id, values, owner_id=self._caller.user_id
        )

    async def delete_task(self, task_id: str) -> None:
        await asyncio.to_thread(self._repo.delete_task, task_id, owner_id=self._caller.user_id)
        logger.info("Deleted task id=%s user=%s", task_id, self._caller.user_id)

    async def upsert_tasks(self, tasks: list[Task]) -> list[Task]:
        for t in tasks:
            self._require_self(t.user_id, "write")
        return await asyncio.to_thread(self._repo.upsert_tasks, tasks)
