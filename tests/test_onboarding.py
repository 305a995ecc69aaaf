# tests/test_onboarding.py

from __future__ import annotations

import asyncio

import pytest

from visa_compliance.core.engine import ComplianceEngine
from visa_compliance.core.onboarding import OnboardingSession, SubmissionState
from visa_compliance.core.profile import UserProfile
from visa_compliance.errors import TransientIOError
from visa_compliance.tasks.lifecycle import ListState, TaskLifecycleController
from visa_compliance.tasks.task_api import ComplianceTaskStore
from visa_compliance.tasks.task_store import TaskStore

from .fakes import STUDENT_ID, TODAY, FailingPersonalizer, FakeNotifier, FakePersonalizer, GatedPersonalizer


def _session(store, personalizer, notifier, *, controller=None, timeout=5.0) -> OnboardingSession:
    engine = ComplianceEngine(store, personalizer, today_fn=lambda: TODAY)
    return OnboardingSession(engine, notifier=notifier, controller=controller, timeout_seconds=timeout)


@pytest.mark.asyncio
async def test_finish_generates_and_refreshes_controller(
    store: ComplianceTaskStore, notifier: FakeNotifier
) -> None:
    controller = TaskLifecycleController(store, STUDENT_ID, notifier=notifier)
    session = _session(store, FakePersonalizer(), notifier, controller=controller)

    result = await session.finish(UserProfile(user_id=STUDENT_ID, visa_type="F1"))

    assert result is not None and result.ok
    assert len(result.tasks) == 6
    assert session.state is SubmissionState.DONE
    assert controller.state is ListState.READY
    assert len(controller.tasks) == 6


@pytest.mark.asyncio
async def test_finish_after_done_is_ignored(store: ComplianceTaskStore, notifier: FakeNotifier) -> None:
    personalizer = FakePersonalizer()
    session = _session(store, personalizer, notifier)
    profile = UserProfile(user_id=STUDENT_ID, visa_type="F1")

    await session.finish(profile)
    assert await session.finish(profile) is None
    assert len(personalizer.requests) == 1


@pytest.mark.asyncio
async def test_duplicate_finish_while_submitting_is_ignored(
    store: ComplianceTaskStore, repo: TaskStore, notifier: FakeNotifier
) -> None:
    personalizer = GatedPersonalizer()
    session = _session(store, personalizer, notifier)
    profile = UserProfile(user_id=STUDENT_ID, visa_type="F1")

    first = asyncio.create_task(session.finish(profile))
    await asyncio.sleep(0)
    assert session.state is SubmissionState.SUBMITTING
    assert await session.finish(profile) is None

    personalizer.release.set()
    result = await first
    assert result is not None and result.ok
    assert len(personalizer.requests) == 1
    assert repo.count_tasks(STUDENT_ID) == 6


@pytest.mark.asyncio
async def test_dso_skips_generation(store: ComplianceTaskStore, notifier: FakeNotifier) -> None:
    personalizer = FakePersonalizer()
    session = _session(store, personalizer, notifier)

    result = await session.finish(UserProfile(user_id=STUDENT_ID, is_dso=True))

    assert result is not None and result.skipped
    assert session.state is SubmissionState.DONE
    assert personalizer.requests == []


@pytest.mark.asyncio
async def test_failure_reopens_session(store: ComplianceTaskStore, notifier: FakeNotifier) -> None:
    session = _session(store, FailingPersonalizer(ConnectionError("down")), notifier)

    result = await session.finish(UserProfile(user_id=STUDENT_ID, visa_type="F1"))

    assert result is not None and not result.ok
    assert session.state is SubmissionState.IDLE
    assert notifier.levels() == ["error"]


@pytest.mark.asyncio
async def test_timeout_reopens_session_without_cancelling_generation(
    store: ComplianceTaskStore, repo: TaskStore, notifier: FakeNotifier
) -> None:
    personalizer = GatedPersonalizer()
    session = _session(store, personalizer, notifier, timeout=0.05)

    result = await session.finish(UserProfile(user_id=STUDENT_ID, visa_type="F1"))

    assert result is not None and not result.ok
    assert "timed out" in (result.error or "")
    assert session.state is SubmissionState.IDLE

    inflight = session.inflight
    assert inflight is not None and not inflight.cancelled()
    personalizer.release.set()
    await inflight
    assert repo.count_tasks(STUDENT_ID) == 6


@pytest.mark.asyncio
async def test_late_generation_failure_is_notified(store: ComplianceTaskStore, notifier: FakeNotifier) -> None:
    personalizer = GatedPersonalizer(ConnectionError("down"))
    session = _session(store, personalizer, notifier, timeout=0.05)

    result = await session.finish(UserProfile(user_id=STUDENT_ID, visa_type="F1"))
    assert result is not None and not result.ok
    assert [n.message for n in notifier.sent] == ["The request timed out. Please try again."]

    personalizer.release.set()
    inflight = session.inflight
    assert inflight is not None
    with pytest.raises(TransientIOError):
        await inflight

    assert notifier.levels() == ["error", "error"]
    assert notifier.sent[-1].message == "Failed to generate compliance checklist. Please try again."


@pytest.mark.asyncio
async def test_late_generation_success_refreshes_controller(
    store: ComplianceTaskStore, notifier: FakeNotifier
) -> None:
    controller = TaskLifecycleController(store, STUDENT_ID, notifier=notifier)
    personalizer = GatedPersonalizer()
    session = _session(store, personalizer, notifier, controller=controller, timeout=0.05)

    await session.finish(UserProfile(user_id=STUDENT_ID, visa_type="F1"))
    assert controller.state is ListState.IDLE

    personalizer.release.set()
    inflight = session.inflight
    assert inflight is not None
    await inflight

    assert notifier.sent[-1].message == "Compliance checklist created"
    refresh = session.late_refresh
    assert refresh is not None
    assert await refresh
    assert controller.state is ListState.READY
    assert len(controller.tasks) == 6
