# src/visa_compliance/tasks/lifecycle.py

"""
TaskLifecycleController: UI-facing facade over the caller's task list.

The controller keeps an in-memory mirror of the store. Mirror changes happen
only after the store confirms; a failed call leaves the mirror as it was and
turns the error into a notification.

List state machine: idle -> loading -> {ready, error}. Mutations are accepted
only in `ready`. Mutations of the same task id are serialized with a per-id
lock; different ids proceed independently (last-resolved wins on the mirror).
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Iterable, Mapping, Sequence
from datetime import date
from enum import StrEnum
from typing import Any

from ..core.dates import is_past, is_within_days
from ..core.ports import Notifier, TaskGateway
from ..errors import ComplianceError, ControllerNotReadyError, TaskNotFoundError, friendly_error_message
from .documents import (
    Document,
    apply_document_requirements,
    check_document_compliance,
    document_compliance_issues,
)
from .task_models import Category, Phase, Priority, Task

logger = logging.getLogger(__name__)


class ListState(StrEnum):
    IDLE = "idle"
    LOADING = "loading"
    READY = "ready"
    ERROR = "error"


class LogNotifier:
    """Notifier that only writes to the log (headless use)."""

    def notify(self, level: str, message: str, detail: str | None = None) -> None:
        lvl = {"error": logging.ERROR, "warning": logging.WARNING}.get(level, logging.INFO)
        logger.log(lvl, "%s%s", message, f" ({detail})" if detail else "")


def _not_in_list(task_id: str) -> TaskNotFoundError:
    return TaskNotFoundError(f"task {task_id} not in list", user_message="Task not found.")


def _display_key(t: Task) -> tuple[Any, ...]:
    # open first, then by due date (undated last), then by urgency
    return (t.completed, t.due_date is None, t.due_date or date.max, t.priority.rank)


class TaskLifecycleController:
    def __init__(
        self,
        store: TaskGateway,
        user_id: str,
        *,
        notifier: Notifier | None = None,
        today_fn: Callable[[], date] = date.today,
    ) -> None:
        self._store = store
        self._user_id = user_id
        self._notifier: Notifier = notifier or LogNotifier()
        self._today = today_fn

        self._tasks: list[Task] = []
        self._state = ListState.IDLE
        self._locks: dict[str, asyncio.Lock] = {}
        self.last_error: ComplianceError | None = None

    # ---- state ----

    @property
    def state(self) -> ListState:
        return self._state

    @property
    def tasks(self) -> list[Task]:
        return list(self._tasks)

    def get_task(self, task_id: str) -> Task | None:
        for t in self._tasks:
            if t.id == task_id:
                return t
        return None

    def _require_ready(self, action: str) -> None:
        if self._state is not ListState.READY:
            raise ControllerNotReadyError(
                f"cannot {action} while task list is {self._state.value}",
                user_message="Tasks are still loading.",
            )

    def _lock_for(self, task_id: str) -> asyncio.Lock:
        lock = self._locks.get(task_id)
        if lock is None:
            lock = self._locks[task_id] = asyncio.Lock()
        return lock

    def _report(self, err: ComplianceError, action: str) -> None:
        self.last_error = err
        logger.warning("%s failed user=%s kind=%s: %s", action, self._user_id, err.kind, err)
        self._notifier.notify("error", friendly_error_message(err))

    def _replace_in_mirror(self, task: Task) -> None:
        for i, t in enumerate(self._tasks):
            if t.id == task.id:
                self._tasks[i] = task
                return

    # ---- operations ----

    async def refresh(self) -> bool:
        """Re-fetch and replace the mirror wholesale."""
        self._state = ListState.LOADING
        try:
            tasks = await self._store.fetch_tasks(self._user_id)
        except ComplianceError as e:
            self._state = ListState.ERROR
            self._report(e, "refresh")
            return False

        self._tasks = list(tasks)
        self._state = ListState.READY
        self.last_error = None
        logger.debug("Mirror refreshed user=%s tasks=%d", self._user_id, len(tasks))
        return True

    load = refresh

    async def toggle_task_status(self, task_id: str) -> Task | None:
        self._require_ready("toggle a task")
        if self.get_task(task_id) is None:
            self._report(_not_in_list(task_id), "toggle")
            return None

        async with self._lock_for(task_id):
            current = self.get_task(task_id)
            if current is None:
                # deleted while waiting for the lock
                self._locks.pop(task_id, None)
                self._report(_not_in_list(task_id), "toggle")
                return None
            try:
                updated = await self._store.update_task(task_id, {"completed": not current.completed})
            except ComplianceError as e:
                self._report(e, "toggle")
                return None

            self._replace_in_mirror(updated)
            self._notifier.notify(
                "success",
                "Task marked as completed" if updated.completed else "Task marked as pending",
                updated.title,
            )
            return updated

    async def update_task(self, task_id: str, fields: Mapping[str, Any]) -> Task | None:
        self._require_ready("update a task")
        async with self._lock_for(task_id):
            try:
                updated = await self._store.update_task(task_id, fields)
            except ComplianceError as e:
                if isinstance(e, TaskNotFoundError):
                    self._locks.pop(task_id, None)
                self._report(e, "update")
                return None
            self._replace_in_mirror(updated)
            self._notifier.notify("success", "Task updated", updated.title)
            return updated

    async def add_custom_task(self, title: str, due_date: Any, priority: str) -> Task | None:
        self._require_ready("add a task")
        try:
            created = await self._store.create_task(
                {
                    "user_id": self._user_id,
                    "title": title,
                    "due_date": due_date,
                    "priority": priority,
                    "category": Category.PERSONAL.value,
                    "phase": Phase.GENERAL.value,
                    "completed": False,
                }
            )
        except ComplianceError as e:
            self._report(e, "add")
            return None

        self._tasks.append(created)
        self._notifier.notify("success", "Custom task added successfully", created.title)
        return created

    async def delete_task(self, task_id: str) -> bool:
        self._require_ready("delete a task")
        async with self._lock_for(task_id):
            try:
                await self._store.delete_task(task_id)
            except ComplianceError as e:
                if isinstance(e, TaskNotFoundError):
                    self._locks.pop(task_id, None)
                self._report(e, "delete")
                return False
            self._tasks = [t for t in self._tasks if t.id != task_id]
            self._locks.pop(task_id, None)
            self._notifier.notify("success", "Task deleted successfully")
            return True

    async def apply_documents(self, documents: Sequence[Document]) -> list[str]:
        """
        Match documents against the current list and store the outcome:
        tasks with a matching document are completed, tasks whose document is
        expired are reopened with a note.

        Returns the document issues (expired, expiring, missing critical ones).
        """
        self._require_ready("apply documents")
        current = list(self._tasks)
        reqs = check_document_compliance(current, documents)

        changed = 0
        for before, after in zip(current, apply_document_requirements(current, reqs)):
            fields: dict[str, Any] = {}
            if after.completed != before.completed:
                fields["completed"] = after.completed
            if after.description != before.description:
                fields["description"] = after.description
            if not fields:
                continue

            async with self._lock_for(before.id):
                try:
                    updated = await self._store.update_task(before.id, fields)
                except ComplianceError as e:
                    self._report(e, "apply documents")
                    continue
                self._replace_in_mirror(updated)
                changed += 1

        issues = document_compliance_issues(documents)
        logger.info(
            "Documents applied user=%s documents=%d tasks_changed=%d issues=%d",
            self._user_id,
            len(documents),
            changed,
            len(issues),
        )
        if issues:
            self._notifier.notify("warning", "Document compliance issues", "; ".join(issues))
        else:
            self._notifier.notify("success", "Documents are in order", f"{changed} tasks updated")
        return issues

    # ---- views ----

    def filter_tasks(
        self,
        query: str = "",
        categories: Iterable[Category | str] = (),
        phase: Phase | str | None = None,
    ) -> list[Task]:
        q = query.strip().lower()
        cats = {Category.from_raw(c) for c in categories}
        ph = Phase.from_raw(phase) if phase else None

        out = []
        for t in self._tasks:
            if q and q not in t.title.lower() and q not in t.description.lower():
                continue
            if cats and t.category not in cats:
                continue
            if ph is not None and t.phase is not ph:
                continue
            out.append(t)
        return out

    def phase_groups(self) -> dict[str, list[Task]]:
        groups: dict[str, list[Task]] = {}
        for t in sorted(self._tasks, key=_display_key):
            groups.setdefault(t.phase.value, []).append(t)
        return groups

    def overdue_tasks(self) -> list[Task]:
        today = self._today()
        return sorted(
            (t for t in self._tasks if not t.completed and is_past(t.due_date, today=today)),
            key=_display_key,
        )

    def upcoming_tasks(self, days: int = 30) -> list[Task]:
        today = self._today()
        return sorted(
            (t for t in self._tasks if not t.completed and is_within_days(t.due_date, days, today=today)),
            key=_display_key,
        )

    def status_summary(self, days: int = 30) -> dict[str, int]:
        total = len(self._tasks)
        completed = sum(1 for t in self._tasks if t.completed)
        return {
            "total": total,
            "completed": completed,
            "pending": total - completed,
            "overdue": len(self.overdue_tasks()),
            "due_soon": len(self.upcoming_tasks(days)),
            "high_priority_open": sum(
                1 for t in self._tasks if not t.completed and t.priority is Priority.HIGH
            ),
            "completion_pct": round(100 * completed / total) if total else 0,
        }
