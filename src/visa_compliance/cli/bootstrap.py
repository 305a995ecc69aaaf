# src/visa_compliance/cli/bootstrap.py

"""
CLI bootstrap helpers.

This module is the "composition root":
- loads settings once,
- ensures local (gitignored) directories exist,
- loads the user profile from JSON,
- wires concrete implementations into AppState (store/personalizer/engine/controller).
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any

from ..config import get_settings
from ..core.engine import ComplianceEngine
from ..core.onboarding import OnboardingSession
from ..core.ports import Notifier, Personalizer
from ..core.profile import UserProfile
from ..core.state import AppState
from ..llm.client import OpenRouterPersonalizer
from ..llm.offline import OfflinePersonalizer
from ..tasks.lifecycle import LogNotifier, TaskLifecycleController
from ..tasks.task_api import ROLE_DSO, Caller, ComplianceTaskStore
from ..tasks.task_store import TaskStore

logger = logging.getLogger(__name__)


def _ensure_local_dirs(settings) -> None:
    settings.data_dir.mkdir(parents=True, exist_ok=True)
    settings.tasks_db_path.parent.mkdir(parents=True, exist_ok=True)
    settings.profile_path.parent.mkdir(parents=True, exist_ok=True)


def load_profile(settings) -> UserProfile:
    """
    Read the profile JSON (camelCase keys). A missing or unreadable file
    yields a bare profile for the configured user.
    """
    user_id = str(settings.user_id)
    is_dso = str(getattr(settings, "user_role", "")).lower() == ROLE_DSO
    fallback = UserProfile(user_id=user_id, is_dso=is_dso)

    path = Path(settings.profile_path)
    if not path.exists():
        logger.info("No profile at %s; using defaults for user=%s", path, user_id)
        return fallback

    try:
        data: Any = json.loads(path.read_text("utf-8"))
    except (OSError, json.JSONDecodeError):
        logger.exception("Failed to read profile from %s", path)
        return fallback
    if not isinstance(data, dict):
        logger.warning("Profile at %s is not a JSON object; ignoring it", path)
        return fallback

    if not data.get("id") and not data.get("userId"):
        data["id"] = user_id
    if is_dso:
        data.setdefault("isDso", True)
    profile = UserProfile.from_dict(data)
    if profile.user_id != user_id:
        logger.warning("Profile user=%s differs from session user=%s", profile.user_id, user_id)
    logger.info("Loaded profile user=%s visa=%s from %s", profile.user_id, profile.visa_type, path)
    return profile


def create_personalizer(settings) -> Personalizer:
    if not getattr(settings, "personalization_enabled", True):
        logger.info("Personalization disabled; using offline personalizer")
        return OfflinePersonalizer()
    try:
        return OpenRouterPersonalizer(settings)
    except RuntimeError as e:
        # Fallback for demos / local runs without external services.
        logger.info("Personalization unavailable (%s); using offline personalizer", e)
        return OfflinePersonalizer()


def create_initial_state(*, settings=None, notifier: Notifier | None = None) -> AppState:
    """
    Create AppState from the provided settings.

    If settings is None, falls back to get_settings().
    """
    if settings is None:
        settings = get_settings()

    _ensure_local_dirs(settings)

    notifier = notifier or LogNotifier()
    caller = Caller(user_id=str(settings.user_id), role=str(getattr(settings, "user_role", "student")))

    repo = TaskStore(settings.tasks_db_path)
    store = ComplianceTaskStore(
        repo,
        caller,
        read_retries=int(getattr(settings, "read_retries", 3)),
        retry_backoff_seconds=float(getattr(settings, "retry_backoff_seconds", 0.25)),
    )
    personalizer = create_personalizer(settings)
    engine = ComplianceEngine(store, personalizer)
    controller = TaskLifecycleController(store, caller.user_id, notifier=notifier)
    onboarding = OnboardingSession(
        engine,
        notifier=notifier,
        controller=controller,
        timeout_seconds=float(getattr(settings, "generation_timeout_seconds", 60.0)),
    )

    return AppState(
        settings=settings,
        caller=caller,
        profile=load_profile(settings),
        repo=repo,
        store=store,
        personalizer=personalizer,
        engine=engine,
        controller=controller,
        notifier=notifier,
        onboarding=onboarding,
    )
