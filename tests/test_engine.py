# tests/test_engine.py

from __future__ import annotations

from datetime import date

import pytest

from visa_compliance.core.engine import ComplianceEngine, classify_phase, parse_personalization_response
from visa_compliance.core.profile import UserProfile
from visa_compliance.errors import MalformedResponseError, TransientIOError
from visa_compliance.tasks.baseline import get_baseline_checklist
from visa_compliance.tasks.task_api import ComplianceTaskStore
from visa_compliance.tasks.task_models import Category, Phase, Priority
from visa_compliance.tasks.task_store import TaskStore

from .fakes import STUDENT_ID, TODAY, FailingPersonalizer, FakePersonalizer


def _engine(store: ComplianceTaskStore, personalizer=None) -> ComplianceEngine:
    return ComplianceEngine(store, personalizer or FakePersonalizer(), today_fn=lambda: TODAY)


def _profile(**kw) -> UserProfile:
    return UserProfile(user_id=STUDENT_ID, **kw)


@pytest.mark.parametrize(
    ("profile", "expected"),
    [
        (_profile(visa_type="F1"), Phase.F1),
        (_profile(), Phase.F1),
        (_profile(visa_type="F1", is_opt=True), Phase.OPT),
        (_profile(visa_type="F1", opt_type="regular"), Phase.OPT),
        (_profile(visa_type="F1", employment_status="On OPT"), Phase.OPT),
        (_profile(visa_type="F1", is_opt=True, is_stem_opt=True), Phase.STEM_OPT),
        (_profile(visa_type="F1", opt_type="stem"), Phase.STEM_OPT),
        (_profile(visa_type="J-1"), Phase.J1),
        (_profile(visa_type="H1B"), Phase.H1B),
        (_profile(visa_type="H1B", is_opt=True), Phase.OPT),
        (_profile(visa_type="H1B", employment_status="Employed after OPT"), Phase.H1B),
        (_profile(visa_type="J1", employment_status="optional academic training"), Phase.J1),
        (_profile(visa_type="F1", is_cpt=True), Phase.F1),
    ],
)
def test_classify_phase_precedence(profile: UserProfile, expected: Phase) -> None:
    assert classify_phase(profile) is expected


def test_parse_response_rejects_bad_shapes() -> None:
    with pytest.raises(MalformedResponseError):
        parse_personalization_response(["not", "an", "object"])
    with pytest.raises(MalformedResponseError):
        parse_personalization_response({"items": []})
    with pytest.raises(MalformedResponseError):
        parse_personalization_response({"tasks": [{"description": "no title"}]})
    assert parse_personalization_response({"tasks": []}) == []


@pytest.mark.asyncio
async def test_f1_generation_commits_baseline(store: ComplianceTaskStore, repo: TaskStore) -> None:
    personalizer = FakePersonalizer()
    tasks = await _engine(store, personalizer).generate_compliance(_profile(visa_type="F1"))

    assert len(tasks) == 6
    assert all(t.phase is Phase.F1 for t in tasks)
    assert all(t.visa_type == "F1" for t in tasks)
    assert all(not t.completed for t in tasks)
    assert repo.count_tasks(STUDENT_ID) == 6

    request = personalizer.requests[0]
    assert request["userProfile"]["visaType"] == "F1"
    assert request["userProfile"]["employmentStatus"] == "Unemployed Student"
    passport = request["baselineTasks"][0]
    assert passport["title"] == "Valid Passport"
    assert passport["dueDate"] == "2025-01-22"


@pytest.mark.asyncio
async def test_missing_visa_type_defaults_to_f1(store: ComplianceTaskStore) -> None:
    tasks = await _engine(store).generate_compliance(_profile())
    assert {t.phase for t in tasks} == {Phase.F1}
    assert {t.visa_type for t in tasks} == {"F1"}


@pytest.mark.asyncio
async def test_opt_generation_includes_f1_and_opt_items(store: ComplianceTaskStore) -> None:
    tasks = await _engine(store).generate_compliance(_profile(visa_type="F1", is_opt=True))
    phases = {t.phase for t in tasks}
    assert phases == {Phase.F1, Phase.OPT}
    assert "OPT EAD Card" in {t.title for t in tasks}


@pytest.mark.asyncio
async def test_unknown_visa_uses_generic_fallback(store: ComplianceTaskStore) -> None:
    tasks = await _engine(store).generate_compliance(_profile(visa_type="B2"))
    assert [t.title for t in tasks] == ["Valid Passport", "Visa Document"]
    assert {t.visa_type for t in tasks} == {"Other"}
    assert {t.phase for t in tasks} == {Phase.GENERAL}


@pytest.mark.asyncio
async def test_no_baseline_means_no_call_and_no_writes(store: ComplianceTaskStore, repo: TaskStore) -> None:
    personalizer = FakePersonalizer()
    engine = ComplianceEngine(
        store, personalizer, checklist_provider=lambda visa, phase: [], today_fn=lambda: TODAY
    )
    assert await engine.generate_compliance(_profile(visa_type="F1")) == []
    assert personalizer.requests == []
    assert repo.count_tasks() == 0


@pytest.mark.asyncio
async def test_regeneration_is_idempotent_and_keeps_progress(
    store: ComplianceTaskStore, repo: TaskStore
) -> None:
    engine = _engine(store)
    first = await engine.generate_compliance(_profile(visa_type="F1"))
    await store.update_task(first[0].id, {"completed": True})

    second = await engine.generate_compliance(_profile(visa_type="F1"))
    assert repo.count_tasks(STUDENT_ID) == 6
    assert second[0].id == first[0].id
    assert second[0].completed


@pytest.mark.asyncio
async def test_regeneration_keeps_custom_tasks(store: ComplianceTaskStore, repo: TaskStore) -> None:
    custom = await store.create_task(
        {
            "user_id": STUDENT_ID,
            "title": "Renew lease",
            "due_date": "2025-03-01",
            "priority": "low",
            "category": "personal",
        }
    )
    await _engine(store).generate_compliance(_profile(visa_type="F1"))
    assert repo.get_task(custom.id) is not None


@pytest.mark.asyncio
async def test_personalized_records_are_mapped_leniently(store: ComplianceTaskStore) -> None:
    reply = {
        "tasks": [
            {"title": "SEVIS Transfer", "category": "weird", "priority": "urgent", "dueDate": "03/01/2025"},
            {"title": "SEVIS Transfer"},
            {"title": "Annual Check", "isRecurring": True, "recurringInterval": "yearly", "dueDate": "bad"},
        ]
    }
    tasks = await _engine(store, FakePersonalizer(reply)).generate_compliance(_profile(visa_type="F1"))

    assert [t.title for t in tasks] == ["SEVIS Transfer", "Annual Check"]
    transfer, annual = tasks
    assert transfer.category is Category.OTHER
    assert transfer.priority is Priority.MEDIUM
    assert transfer.phase is Phase.F1
    assert transfer.due_date == date(2025, 3, 1)
    assert annual.is_recurring
    assert annual.recurring_interval == "yearly"
    assert annual.due_date == date(2025, 2, 14)


@pytest.mark.asyncio
async def test_malformed_reply_writes_nothing(store: ComplianceTaskStore, repo: TaskStore) -> None:
    engine = _engine(store, FakePersonalizer({"checklist": []}))
    with pytest.raises(MalformedResponseError):
        await engine.generate_compliance(_profile(visa_type="F1"))
    assert repo.count_tasks() == 0


@pytest.mark.asyncio
async def test_personalizer_failure_is_transient_and_writes_nothing(
    store: ComplianceTaskStore, repo: TaskStore
) -> None:
    personalizer = FailingPersonalizer(ConnectionError("boom"))
    with pytest.raises(TransientIOError):
        await _engine(store, personalizer).generate_compliance(_profile(visa_type="F1"))
    assert personalizer.calls == 1
    assert repo.count_tasks() == 0


@pytest.mark.asyncio
async def test_background_commit_returns_before_store_confirms(
    store: ComplianceTaskStore, repo: TaskStore
) -> None:
    engine = _engine(store)
    tasks = await engine.generate_compliance(_profile(visa_type="J1"), background_commit=True)

    assert len(tasks) == 4
    assert engine.pending_commit is not None
    committed = await engine.pending_commit
    assert [t.title for t in committed] == [t.title for t in tasks]
    assert repo.count_tasks(STUDENT_ID) == 4


@pytest.mark.asyncio
async def test_fetch_after_generation_keeps_baseline_order(store: ComplianceTaskStore) -> None:
    await _engine(store).generate_compliance(_profile(visa_type="F1"))

    fetched = await store.fetch_tasks(STUDENT_ID)
    assert [t.title for t in fetched] == [item.title for item in get_baseline_checklist("F1")]


@pytest.mark.asyncio
async def test_every_background_commit_is_drained(store: ComplianceTaskStore, repo: TaskStore) -> None:
    engine = _engine(store)
    await engine.generate_compliance(_profile(visa_type="J1"), background_commit=True)
    await engine.generate_compliance(_profile(visa_type="H1B"), background_commit=True)

    assert len(engine.pending_commits) == 2
    assert await engine.drain_commits() == 2
    assert engine.pending_commits == []
    assert {t.phase for t in repo.list_tasks(STUDENT_ID)} == {Phase.J1, Phase.H1B}
