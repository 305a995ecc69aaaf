# src/visa_compliance/llm/client.py

"""
Personalization collaborator backed by an OpenAI-compatible endpoint (OpenRouter).

Contract: request {"userProfile", "baselineTasks"} in, {"tasks": [...]} out.

Behavior:
- Tries models in the order from settings (VISA_LLM_MODELS).
- 404 (model not available) -> remember for an hour, try next.
- Rate limit / network issues -> try next.
- Auth issues -> fail fast (no retries across models).
- A reply that is not a JSON object -> MalformedResponseError (no further models).
"""

from __future__ import annotations

import asyncio
import json
import logging
import time
from typing import Any

import httpx
import openai
from openai import OpenAI

from ..errors import ComplianceError, MalformedResponseError, TransientIOError

logger = logging.getLogger(__name__)

_BAD_MODELS: dict[str, float] = {}  # model -> retry_at (monotonic)

PERSONALIZATION_SYSTEM_PROMPT = """
You are a compliance checklist module for international students and workers in the US.

You do NOT chat with the user.

You receive a JSON object:
- userProfile: visa type, employment status, transfer flag, key dates (YYYY-MM-DD or null)
- baselineTasks: the regulation-derived checklist for the user's current visa phase

Return the checklist personalized for this user:
- keep every baseline task (same title and phase); you may refine description and dueDate
- you may add tasks that the profile clearly requires (e.g. SEVIS transfer steps when hasTransferred)
- do not invent deadlines that contradict the profile dates

Each task object:
  title, description, category, priority, phase, dueDate (YYYY-MM-DD), isRecurring, recurringInterval
category: immigration | education | employment | personal | financial | other | academic
priority: low | medium | high
phase: F1 | CPT | OPT | STEM_OPT | J1 | H1B | general

Output format:
Return STRICT JSON only. No extra text. No Markdown.
{ "tasks": [ ... ] }
""".strip()


def _is_auth_error(exc: Exception) -> bool:
    if isinstance(exc, (openai.AuthenticationError, openai.PermissionDeniedError)):
        return True
    return exc.__class__.__name__ in {"UnauthorizedError"}


def _is_rate_limit_error(exc: Exception) -> bool:
    if isinstance(exc, openai.RateLimitError):
        return True
    return exc.__class__.__name__ in {"TooManyRequestsError"}


def _is_connection_error(exc: Exception) -> bool:
    if isinstance(exc, (openai.APIConnectionError, httpx.TimeoutException)):
        return True
    return exc.__class__.__name__ in {"Timeout", "ConnectTimeout", "ReadTimeout", "WriteTimeout"}


def _is_not_found_error(exc: Exception) -> bool:
    return isinstance(exc, openai.NotFoundError)


def _extract_json_object(raw: str) -> str:
    raw = raw.strip()
    if raw.startswith("{") and raw.endswith("}"):
        return raw
    first = raw.find("{")
    last = raw.rfind("}")
    if first != -1 and last != -1 and last > first:
        return raw[first : last + 1]
    return raw


def decode_reply(text: str) -> dict[str, Any]:
    """Model text -> JSON object, tolerating stray prose around it."""
    try:
        data = json.loads(_extract_json_object(text or ""))
    except json.JSONDecodeError as e:
        raise MalformedResponseError(f"reply is not JSON: {e}") from e
    if not isinstance(data, dict):
        raise MalformedResponseError(f"reply is {type(data).__name__}, expected an object")
    return data


class OpenRouterPersonalizer:
    """
    Blocking OpenAI SDK calls run in a worker thread; the async surface is
    `personalize()`.

    Construction fails (RuntimeError) without an API key or models so the
    composition root can fall back to the offline personalizer.
    """

    def __init__(self, settings: Any) -> None:
        api_key = getattr(settings, "openrouter_api_key", None)
        base_url = str(getattr(settings, "openrouter_base_url", "") or "")

        if not api_key or not str(api_key).strip():
            raise RuntimeError("LLM API key is not set. Set VISA_OPENROUTER_API_KEY in your .env.")
        if not base_url.strip():
            raise RuntimeError("LLM base URL is not set. Set VISA_OPENROUTER_BASE_URL in your .env.")

        self._models: list[str] = [m.strip() for m in getattr(settings, "llm_models", []) or [] if m.strip()]
        if not self._models:
            raise RuntimeError("LLM model list is empty. Set VISA_LLM_MODELS in your .env.")

        self._headers: dict[str, str] = dict(getattr(settings, "extra_headers", {}) or {})

        connect_s = float(getattr(settings, "llm_connect_timeout_seconds", 5.0))
        read_s = float(getattr(settings, "llm_read_timeout_seconds", 45.0))

        # Automatic retries are disabled to allow quick fallback across models.
        self._client = OpenAI(
            base_url=base_url,
            api_key=str(api_key),
            timeout=httpx.Timeout(connect=connect_s, read=read_s, write=10.0, pool=connect_s),
            max_retries=0,
        )

    def _complete(self, model: str, payload: str) -> str:
        resp = self._client.chat.completions.create(
            model=model,
            messages=[
                {"role": "system", "content": PERSONALIZATION_SYSTEM_PROMPT},
                {"role": "user", "content": payload},
            ],
            extra_headers=self._headers or None,
            response_format={"type": "json_object"},
        )
        if not resp.choices:
            return ""
        return resp.choices[0].message.content or ""

    def _personalize_sync(self, request: dict[str, Any]) -> dict[str, Any]:
        payload = json.dumps(request, ensure_ascii=False)
        last_error: Exception | None = None
        now = time.monotonic()

        for model in self._models:
            retry_at = _BAD_MODELS.get(model)
            if retry_at is not None and retry_at > now:
                continue

            t0 = time.monotonic()
            logger.info("Personalization: trying model=%s", model)
            try:
                text = self._complete(model, payload)
            except Exception as e:
                last_error = e

                if _is_auth_error(e):
                    raise ComplianceError(
                        f"LLM authentication failed: {e}",
                        user_message="Personalization service rejected the API key (VISA_OPENROUTER_API_KEY).",
                    ) from e

                if _is_not_found_error(e):
                    _BAD_MODELS[model] = time.monotonic() + 3600.0  # 1 hour
                    logger.info("Personalization: model not available (404): %s", model)
                    continue

                if _is_rate_limit_error(e):
                    logger.info("Personalization: rate-limited on model=%s, trying next", model)
                    continue

                if _is_connection_error(e):
                    logger.info("Personalization: network/timeout error on model=%s, trying next", model)
                    continue

                logger.info("Personalization: error on model=%s (%s), trying next", model, e.__class__.__name__)
                continue

            if not text.strip():
                last_error = RuntimeError(f"Model returned no content: {model}")
                continue

            logger.info("Personalization: reply from model=%s (%.2fs)", model, time.monotonic() - t0)
            return decode_reply(text)

        if last_error is not None and _is_rate_limit_error(last_error):
            raise TransientIOError(
                "all models rate-limited", user_message="Personalization service is rate-limited."
            ) from last_error
        raise TransientIOError(
            "all personalization models failed",
            user_message="Failed to generate compliance checklist.",
        ) from last_error

    async def personalize(self, request: dict[str, Any]) -> dict[str, Any]:
        return await asyncio.to_thread(self._personalize_sync, request)
