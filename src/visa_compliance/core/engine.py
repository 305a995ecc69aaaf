# src/visa_compliance/core/engine.py

"""
Compliance engine: user profile -> committed set of compliance tasks.

Pipeline (all-or-nothing):
1. resolve visa type (default F1)
2. classify the visa phase (PHASE_RULES, first match wins)
3. baseline templates for (visa type, phase); none -> return [] with no side effects
4. personalization call with {"userProfile", "baselineTasks"}; failure or a
   malformed reply aborts before anything is written
5. map reply records to Tasks for this user
6. upsert on (user_id, title, phase)
7. return the tasks (optionally before the commit finishes)

The engine does not guard against concurrent duplicate invocations and never
retries generation; see core/onboarding.py for the caller-side latch.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Mapping
from datetime import date
from typing import Any

from ..errors import ComplianceError, MalformedResponseError, TransientIOError
from ..tasks.baseline import get_baseline_checklist, normalize_visa_type
from ..tasks.task_models import (
    BaselineChecklistItem,
    Category,
    Phase,
    Priority,
    Task,
    item_to_wire,
    new_task_id,
)
from .dates import default_due_date, parse_date
from .ports import Personalizer, TaskGateway
from .profile import UserProfile, has_opt_indicator, has_stem_opt_indicator, normalize_profile

logger = logging.getLogger(__name__)

DEFAULT_VISA_TYPE = "F1"
UNKNOWN_VISA_TYPE = "Other"
DEFAULT_PHASE = Phase.F1

ChecklistProvider = Callable[[Any, Any], list[BaselineChecklistItem]]


def _is_stem_opt(profile: UserProfile, visa_type: str) -> bool:
    return has_stem_opt_indicator(profile)


def _is_opt(profile: UserProfile, visa_type: str) -> bool:
    return has_opt_indicator(profile, visa_type)


def _is_j1(profile: UserProfile, visa_type: str) -> bool:
    return visa_type == "J1"


def _is_h1b(profile: UserProfile, visa_type: str) -> bool:
    return visa_type == "H1B"


# Precedence order matters. CPT and "general" are never produced from profile
# signals; they only arrive through explicit task phases.
PHASE_RULES: tuple[tuple[Callable[[UserProfile, str], bool], Phase], ...] = (
    (_is_stem_opt, Phase.STEM_OPT),
    (_is_opt, Phase.OPT),
    (_is_j1, Phase.J1),
    (_is_h1b, Phase.H1B),
)


def classify_phase(profile: UserProfile, visa_type: str | None = None) -> Phase:
    canonical = normalize_visa_type(visa_type or profile.visa_type or DEFAULT_VISA_TYPE) or ""
    for matches, phase in PHASE_RULES:
        if matches(profile, canonical):
            return phase
    return DEFAULT_PHASE


def parse_personalization_response(response: Any) -> list[dict[str, Any]]:
    """Validate {"tasks": [{...title...}, ...]}; any other shape is a hard failure."""
    if not isinstance(response, Mapping):
        raise MalformedResponseError(f"expected a JSON object, got {type(response).__name__}")
    records = response.get("tasks")
    if not isinstance(records, list):
        raise MalformedResponseError("response has no 'tasks' array")

    out: list[dict[str, Any]] = []
    for i, rec in enumerate(records):
        if not isinstance(rec, Mapping):
            raise MalformedResponseError(f"tasks[{i}] is not an object")
        title = rec.get("title")
        if not isinstance(title, str) or not title.strip():
            raise MalformedResponseError(f"tasks[{i}] has no title")
        out.append(dict(rec))
    return out


class ComplianceEngine:
    def __init__(
        self,
        store: TaskGateway,
        personalizer: Personalizer,
        *,
        checklist_provider: ChecklistProvider = get_baseline_checklist,
        today_fn: Callable[[], date] = date.today,
    ) -> None:
        self._store = store
        self._personalizer = personalizer
        self._checklist = checklist_provider
        self._today = today_fn
        self.pending_commit: asyncio.Task[list[Task]] | None = None
        self._pending_commits: set[asyncio.Task[list[Task]]] = set()

    def build_request(
        self,
        profile: UserProfile,
        visa_type: str,
        items: list[BaselineChecklistItem],
        today: date,
    ) -> dict[str, Any]:
        return {
            "userProfile": normalize_profile(profile, visa_type),
            "baselineTasks": [
                item_to_wire(item, default_due_date(item.priority, item.is_recurring, today=today))
                for item in items
            ],
        }

    async def _personalize(self, request: dict[str, Any]) -> list[dict[str, Any]]:
        try:
            response = await self._personalizer.personalize(request)
        except ComplianceError:
            raise
        except Exception as e:
            logger.exception("Personalization call failed")
            raise TransientIOError(
                f"personalization failed: {e}",
                user_message="Failed to generate compliance checklist.",
            ) from e
        return parse_personalization_response(response)

    def _to_tasks(
        self,
        records: list[dict[str, Any]],
        *,
        user_id: str,
        visa_type: str,
        phase: Phase,
        today: date,
    ) -> list[Task]:
        tasks: list[Task] = []
        seen: set[tuple[str, Phase]] = set()
        for rec in records:
            title = str(rec["title"]).strip()
            task_phase = Phase.from_raw(rec.get("phase"), default=phase)
            if (title, task_phase) in seen:
                continue
            seen.add((title, task_phase))

            priority = Priority.from_raw(rec.get("priority"), default=Priority.MEDIUM)
            is_recurring = rec.get("isRecurring") is True
            due = parse_date(rec.get("dueDate")) or default_due_date(priority, is_recurring, today=today)
            interval = rec.get("recurringInterval")

            tasks.append(
                Task(
                    id=new_task_id(),
                    user_id=user_id,
                    title=title,
                    description=str(rec.get("description") or ""),
                    category=Category.from_raw(rec.get("category"), default=Category.OTHER),
                    phase=task_phase,
                    priority=priority,
                    due_date=due,
                    completed=False,
                    visa_type=visa_type,
                    is_recurring=is_recurring,
                    recurring_interval=str(interval) if is_recurring and interval else None,
                )
            )
        return tasks

    async def _commit(self, tasks: list[Task]) -> list[Task]:
        try:
            return await self._store.upsert_tasks(tasks)
        except ComplianceError:
            logger.exception("Committing %d generated tasks failed", len(tasks))
            raise
        except Exception as e:
            logger.exception("Committing %d generated tasks failed", len(tasks))
            raise TransientIOError(f"commit failed: {e}", user_message="Failed to save compliance tasks.") from e

    @property
    def pending_commits(self) -> list[asyncio.Task[list[Task]]]:
        """Background commits that have not finished yet."""
        return [t for t in self._pending_commits if not t.done()]

    async def drain_commits(self) -> int:
        """Wait for every outstanding background commit; returns how many there were."""
        pending = self.pending_commits
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
        return len(pending)

    @staticmethod
    def _log_background_commit(task: asyncio.Task[list[Task]]) -> None:
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("Background commit of generated tasks failed: %s", exc)
        else:
            logger.info("Background commit stored %d tasks", len(task.result()))

    async def generate_compliance(
        self,
        profile: UserProfile,
        *,
        background_commit: bool = False,
    ) -> list[Task]:
        raw_visa = (profile.visa_type or "").strip() or DEFAULT_VISA_TYPE
        visa_type = normalize_visa_type(raw_visa) or UNKNOWN_VISA_TYPE
        phase = classify_phase(profile, raw_visa)

        items = self._checklist(raw_visa, phase)
        if not items:
            logger.info("No baseline checklist for visa=%s phase=%s; nothing generated", raw_visa, phase.value)
            return []

        today = self._today()
        logger.info(
            "Generating compliance user=%s visa=%s phase=%s baseline=%d",
            profile.user_id,
            visa_type,
            phase.value,
            len(items),
        )

        request = self.build_request(profile, visa_type, items, today)
        records = await self._personalize(request)
        tasks = self._to_tasks(records, user_id=profile.user_id, visa_type=visa_type, phase=phase, today=today)

        if background_commit:
            commit = asyncio.create_task(self._commit(tasks))
            commit.add_done_callback(self._log_background_commit)
            commit.add_done_callback(self._pending_commits.discard)
            self._pending_commits.add(commit)
            self.pending_commit = commit
            return tasks

        return await self._commit(tasks)
