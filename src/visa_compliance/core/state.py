# src/visa_compliance/core/state.py

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from ..tasks.lifecycle import TaskLifecycleController
from ..tasks.task_api import Caller, ComplianceTaskStore
from ..tasks.task_store import TaskStore
from .engine import ComplianceEngine
from .onboarding import OnboardingSession
from .ports import Notifier, Personalizer
from .profile import UserProfile


@dataclass
class AppState:
    # Settings live on the state so commands can read them without globals.
    settings: Any

    caller: Caller
    profile: UserProfile
    repo: TaskStore
    store: ComplianceTaskStore
    personalizer: Personalizer
    engine: ComplianceEngine
    controller: TaskLifecycleController
    notifier: Notifier
    onboarding: OnboardingSession

    def new_onboarding_session(self) -> OnboardingSession:
        self.onboarding = OnboardingSession(
            self.engine,
            notifier=self.notifier,
            controller=self.controller,
            timeout_seconds=float(getattr(self.settings, "generation_timeout_seconds", 60.0)),
        )
        return self.onboarding
