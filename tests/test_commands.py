# tests/test_commands.py

from __future__ import annotations

import json

import pytest

from visa_compliance.cli.bootstrap import create_initial_state, load_profile
from visa_compliance.cli.commands import CommandRegistry, registry
from visa_compliance.core.state import AppState
from visa_compliance.llm.offline import OfflinePersonalizer
from visa_compliance.tasks.lifecycle import ListState

from .fakes import STUDENT_ID, FakeNotifier


@pytest.fixture()
def app(settings) -> AppState:
    settings.profile_path.write_text(
        json.dumps({"id": STUDENT_ID, "visaType": "F-1", "university": "State U"}), "utf-8"
    )
    return create_initial_state(settings=settings, notifier=FakeNotifier())


@pytest.mark.asyncio
async def test_command_registry_routes_and_aliases(app: AppState) -> None:
    reg = CommandRegistry()
    called: list[list[str]] = []

    async def handler(state, args):
        called.append(args)
        return "ok"

    reg.register("a", handler, "a", aliases=["b"])

    assert await reg.handle(app, "/a x y") == "ok"
    assert await reg.handle(app, "/B") == "ok"
    assert called == [["x", "y"], []]


@pytest.mark.asyncio
async def test_command_registry_unknown_and_non_command(app: AppState) -> None:
    reg = CommandRegistry()
    assert await reg.handle(app, "hello") is None
    assert "Unknown command" in (await reg.handle(app, "/nope") or "")
    assert "Empty command" in (await reg.handle(app, "/") or "")


def test_bootstrap_wires_offline_personalizer_and_profile(app: AppState) -> None:
    assert isinstance(app.personalizer, OfflinePersonalizer)
    assert app.profile.visa_type == "F-1"
    assert app.profile.university == "State U"
    assert app.caller.user_id == STUDENT_ID


def test_load_profile_without_file_uses_session_user(settings) -> None:
    settings.user_role = "dso"
    profile = load_profile(settings)
    assert profile.user_id == STUDENT_ID
    assert profile.is_dso


@pytest.mark.asyncio
async def test_generate_then_list_toggle_and_summary(app: AppState) -> None:
    reply = await registry.handle(app, "/generate")
    assert reply is not None and "6 tasks" in reply
    assert app.controller.state is ListState.READY

    listing = await registry.handle(app, "/tasks")
    assert listing is not None and listing.startswith("F1:")
    assert "Valid Passport" in listing

    first = app.controller.tasks[0]
    toggled = await registry.handle(app, f"/toggle {first.id[:8]}")
    assert toggled is not None and toggled.startswith("[x]")

    summary = await registry.handle(app, "/summary")
    assert summary is not None and "Completed: 1/6" in summary


@pytest.mark.asyncio
async def test_add_and_delete(app: AppState) -> None:
    assert "Usage" in (await registry.handle(app, "/add 2025-03-01") or "")
    assert "Invalid priority" in (await registry.handle(app, "/add 2025-03-01 urgent Renew lease") or "")

    added = await registry.handle(app, "/add 2025-03-01 low Renew lease")
    assert added is not None and "Renew lease" in added
    [task] = app.controller.tasks

    deleted = await registry.handle(app, f"/delete {task.id}")
    assert deleted == f"Deleted {task.id[:8]}."
    assert app.controller.tasks == []
    assert "No task matches" in (await registry.handle(app, "/delete abc") or "")


@pytest.mark.asyncio
async def test_checklist_and_status(app: AppState) -> None:
    checklist = await registry.handle(app, "/checklist F1 OPT")
    assert checklist is not None
    assert "OPT EAD Card" in checklist
    assert "Valid Passport" in checklist

    unknown = await registry.handle(app, "/checklist B2")
    assert unknown is not None and "generic checklist" in unknown

    status = await registry.handle(app, "/status")
    assert status is not None and "OfflinePersonalizer" in status


@pytest.mark.asyncio
async def test_documents_complete_matching_tasks(app: AppState) -> None:
    await registry.handle(app, "/generate")
    assert "Invalid document" in (await registry.handle(app, "/documents passport.pdf:stale") or "")

    reply = await registry.handle(app, "/docs passport.pdf")
    assert reply is not None
    assert reply.startswith("Documents checked: 1, tasks updated: 2")
    assert "Missing required visa document" in reply

    done = {t.title for t in app.controller.tasks if t.completed}
    assert done == {"Valid Passport", "F-1 Visa"}
    stored = {t.title for t in app.repo.list_tasks(STUDENT_ID) if t.completed}
    assert stored == done
