# src/visa_compliance/core/ports.py

from __future__ import annotations

"""
Ports (interfaces) used by the core.

The engine and the controller depend on Protocols instead of concrete
implementations. This keeps storage/personalization/UI swappable and makes
testing easier.
"""

from collections.abc import Mapping
from typing import TYPE_CHECKING, Any, Protocol

if TYPE_CHECKING:
    from ..tasks.task_models import Task


class TaskRepo(Protocol):
    """Blocking row-level storage (SQLite in production)."""

    def list_tasks(self, user_id: str, *, order_by: str = "created") -> list[Task]: ...
    def insert_task(self, task: Task) -> Task: ...
    def upsert_tasks(self, tasks: list[Task]) -> list[Task]: ...
    def update_task(self, task_id: str, fields: Mapping[str, Any], *, owner_id: str) -> Task: ...
    def delete_task(self, task_id: str, *, owner_id: str) -> None: ...


class TaskGateway(Protocol):
    """Async, caller-scoped store used by the engine and the controller."""

    async def fetch_tasks(self, user_id: str, *, order_by: str = "created") -> list[Task]: ...
    async def create_task(self, fields: Mapping[str, Any]) -> Task: ...
    async def update_task(self, task_id: str, fields: Mapping[str, Any]) -> Task: ...
    async def delete_task(self, task_id: str) -> None: ...
    async def upsert_tasks(self, tasks: list[Task]) -> list[Task]: ...


class Personalizer(Protocol):
    """
    External personalization collaborator.

    request:  {"userProfile": {...}, "baselineTasks": [{camelCase task}, ...]}
    response: {"tasks": [{camelCase task}, ...]}
    """

    async def personalize(self, request: dict[str, Any]) -> Any: ...


class Notifier(Protocol):
    """UI-side transient notifications (toasts)."""

    def notify(self, level: str, message: str, detail: str | None = None) -> None: ...
