# tests/conftest.py

from __future__ import annotations

from pathlib import Path
from types import SimpleNamespace

import pytest

from visa_compliance.tasks.task_api import Caller, ComplianceTaskStore
from visa_compliance.tasks.task_store import TaskStore

from .fakes import STUDENT_ID, FakeNotifier


@pytest.fixture()
def settings(tmp_path: Path) -> SimpleNamespace:
    """
    Minimal settings object compatible with the composition root.

    We intentionally use a SimpleNamespace rather than importing real config,
    to keep unit tests isolated and deterministic.
    """
    return SimpleNamespace(
        app_name="visa-compliance-test",
        log_level="INFO",
        user_id=STUDENT_ID,
        user_role="student",
        # Personalization off: no network in unit tests
        personalization_enabled=False,
        openrouter_api_key=None,
        openrouter_base_url="",
        llm_models=[],
        extra_headers={},
        # Paths (tmp per test run)
        data_dir=tmp_path,
        tasks_db_path=tmp_path / "compliance.sqlite3",
        profile_path=tmp_path / "profile.json",
        # Tuning
        read_retries=3,
        retry_backoff_seconds=0.0,
        generation_timeout_seconds=5.0,
    )


@pytest.fixture()
def repo(settings: SimpleNamespace) -> TaskStore:
    # Real SQLite: upsert/ownership semantics are part of what we test.
    return TaskStore(settings.tasks_db_path)


@pytest.fixture()
def caller() -> Caller:
    return Caller(user_id=STUDENT_ID)


@pytest.fixture()
def store(repo: TaskStore, caller: Caller) -> ComplianceTaskStore:
    return ComplianceTaskStore(repo, caller, retry_backoff_seconds=0.0)


@pytest.fixture()
def notifier() -> FakeNotifier:
    return FakeNotifier()
