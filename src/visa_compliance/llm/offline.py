# src/visa_compliance/llm/offline.py

from __future__ import annotations

import copy
from typing import Any


class OfflinePersonalizer:
    """
    Deterministic personalizer used when no external API is configured.

    Echoes the baseline tasks unchanged, so generation commits exactly the
    baseline checklist for the user's phase.
    """

    async def personalize(self, request: dict[str, Any]) -> dict[str, Any]:
        baseline = request.get("baselineTasks") or []
        return {"tasks": copy.deepcopy(list(baseline))}
