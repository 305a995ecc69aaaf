# src/visa_compliance/core/onboarding.py

"""
Onboarding completion: one latch per session.

State: idle -> submitting -> {idle, done}

- `finish()` while submitting or after done is ignored (returns None).
- DSO profiles skip generation and go straight to done.
- A caller-side timeout reports failure and re-opens the session; the
  generation itself keeps running (shielded), so a late commit still lands.
- A generation that finishes after the timeout is still reported: a late
  failure becomes an error notification, a late success refreshes the
  controller.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from enum import StrEnum

from ..errors import ComplianceError, friendly_error_message
from ..tasks.lifecycle import TaskLifecycleController
from ..tasks.task_models import Task
from .engine import ComplianceEngine
from .ports import Notifier
from .profile import UserProfile

logger = logging.getLogger(__name__)


class SubmissionState(StrEnum):
    IDLE = "idle"
    SUBMITTING = "submitting"
    DONE = "done"


@dataclass(slots=True)
class OnboardingResult:
    ok: bool
    tasks: list[Task] = field(default_factory=list)
    skipped: bool = False
    error: str | None = None


class OnboardingSession:
    def __init__(
        self,
        engine: ComplianceEngine,
        *,
        notifier: Notifier,
        controller: TaskLifecycleController | None = None,
        timeout_seconds: float | None = 60.0,
    ) -> None:
        self._engine = engine
        self._notifier = notifier
        self._controller = controller
        self._timeout = timeout_seconds
        self.state = SubmissionState.IDLE
        self._inflight: asyncio.Task[list[Task]] | None = None
        self._late_refresh: asyncio.Task[bool] | None = None

    @property
    def inflight(self) -> asyncio.Task[list[Task]] | None:
        """The generation started by the last finish(), if any."""
        return self._inflight

    @property
    def late_refresh(self) -> asyncio.Task[bool] | None:
        """Controller refresh scheduled by a generation that outlived the timeout."""
        return self._late_refresh

    async def finish(self, profile: UserProfile) -> OnboardingResult | None:
        if self.state is not SubmissionState.IDLE:
            logger.debug("Onboarding finish ignored user=%s state=%s", profile.user_id, self.state.value)
            return None

        self.state = SubmissionState.SUBMITTING

        if profile.is_dso:
            logger.info("Onboarding complete for DSO user=%s; no checklist generated", profile.user_id)
            self.state = SubmissionState.DONE
            self._notifier.notify("success", "Profile setup complete")
            return OnboardingResult(ok=True, skipped=True)

        self._inflight = asyncio.ensure_future(self._engine.generate_compliance(profile))
        try:
            tasks = await asyncio.wait_for(asyncio.shield(self._inflight), timeout=self._timeout)
        except TimeoutError as e:
            logger.warning("Onboarding generation timed out user=%s after %ss", profile.user_id, self._timeout)
            self._inflight.add_done_callback(self._on_late_result)
            return self._fail(e)
        except ComplianceError as e:
            logger.warning("Onboarding generation failed user=%s: %s", profile.user_id, e)
            return self._fail(e)

        self.state = SubmissionState.DONE
        self._notifier.notify("success", "Compliance checklist created", f"{len(tasks)} tasks")

        if self._controller is not None:
            await self._controller.refresh()

        return OnboardingResult(ok=True, tasks=tasks)

    def _fail(self, err: BaseException) -> OnboardingResult:
        self.state = SubmissionState.IDLE
        msg = friendly_error_message(err)
        self._notifier.notify("error", msg)
        return OnboardingResult(ok=False, error=msg)

    def _on_late_result(self, fut: asyncio.Task[list[Task]]) -> None:
        if fut.cancelled():
            return
        err = fut.exception()
        if err is not None:
            logger.warning("Late onboarding generation failed: %s", err)
            self._notifier.notify("error", friendly_error_message(err))
            return

        tasks = fut.result()
        logger.info("Late onboarding generation stored %d tasks", len(tasks))
        self._notifier.notify("success", "Compliance checklist created", f"{len(tasks)} tasks")
        if self._controller is not None:
            self._late_refresh = asyncio.ensure_future(self._controller.refresh())

