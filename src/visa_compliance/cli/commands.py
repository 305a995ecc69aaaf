# src/visa_compliance/cli/commands.py

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable

from ..core.dates import format_date, parse_date
from ..core.onboarding import SubmissionState
from ..core.state import AppState
from ..errors import ComplianceError, friendly_error_message
from ..tasks.documents import Document, DocumentStatus
from ..tasks.baseline import get_baseline_checklist, normalize_visa_type, supported_visa_types
from ..tasks.lifecycle import ListState
from ..tasks.task_models import Phase, Priority, Task

CommandHandler = Callable[[AppState, list[str]], Awaitable[str]]

logger = logging.getLogger(__name__)

SHORT_ID_LEN = 8


class CommandRegistry:
    """Slash-command registry used by the console (/help, /tasks, ...)."""

    def __init__(self) -> None:
        self._handlers: dict[str, CommandHandler] = {}
        self._help: dict[str, str] = {}

    def register(
        self,
        name: str,
        handler: CommandHandler,
        help_text: str,
        aliases: list[str] | None = None,
    ) -> None:
        aliases = aliases or []
        key = name.lower()
        self._handlers[key] = handler
        self._help[key] = help_text
        for alias in aliases:
            self._handlers[alias.lower()] = handler

    async def handle(self, state: AppState, line: str) -> str | None:
        """
        Handle a string like "/command args".
        Returns a reply string or None if not a command.
        """
        if not line.startswith("/"):
            return None

        parts = line[1:].split()
        if not parts:
            return "Empty command. Use /help to list available commands."

        name = parts[0].lower()
        args = parts[1:]

        handler = self._handlers.get(name)
        if not handler:
            return f"Unknown command: /{name}. Use /help to list available commands."

        try:
            return await handler(state, args)
        except ComplianceError as e:
            logger.info("Command /%s failed: %s", name, e)
            return friendly_error_message(e)

    def build_help(self) -> str:
        lines = ["Available commands:"]
        for name, help_text in self._help.items():
            lines.append(f"  /{name} - {help_text}")
        return "\n".join(lines)


registry = CommandRegistry()


def _short(task_id: str) -> str:
    return task_id[:SHORT_ID_LEN]


def _format_task(t: Task) -> str:
    mark = "x" if t.completed else " "
    due = format_date(t.due_date) or "no due date"
    recur = f", {t.recurring_interval}" if t.is_recurring and t.recurring_interval else ""
    return f"[{mark}] {_short(t.id)}  {t.title} ({t.priority.value}, due {due}{recur})"


def _resolve_task_id(state: AppState, raw: str) -> str | None:
    """Full id or a unique id prefix from the current list."""
    raw = raw.strip()
    if state.controller.get_task(raw) is not None:
        return raw
    matches = [t.id for t in state.controller.tasks if t.id.startswith(raw)]
    return matches[0] if len(matches) == 1 else None


async def _ensure_loaded(state: AppState) -> str | None:
    if state.controller.state is ListState.READY:
        return None
    if await state.controller.refresh():
        return None
    return "Could not load tasks. Use /tasks to try again."


async def cmd_help(state: AppState, args: list[str]) -> str:
    return registry.build_help()


async def cmd_status(state: AppState, args: list[str]) -> str:
    models = ", ".join(list(getattr(state.settings, "llm_models", []) or []))
    profile = state.profile
    return (
        "Status:\n"
        f"  User: {state.caller.user_id} ({state.caller.role})\n"
        f"  Visa type: {profile.visa_type or 'not set'}\n"
        f"  Personalizer: {type(state.personalizer).__name__}\n"
        f"  Models (priority -> fallback): {models}\n"
        f"  Task list: {state.controller.state.value}, {len(state.controller.tasks)} tasks\n"
        f"  Onboarding: {state.onboarding.state.value}"
    )


async def cmd_tasks(state: AppState, args: list[str]) -> str:
    """
    /tasks          -> all tasks grouped by phase
    /tasks <phase>  -> only that phase
    """
    if not await state.controller.refresh():
        return "Could not load tasks."

    if args:
        phase = Phase.from_raw(" ".join(args))
        tasks = state.controller.filter_tasks(phase=phase)
        if not tasks:
            return f"No tasks in phase {phase.value}."
        groups = {phase.value: tasks}
    else:
        groups = state.controller.phase_groups()
        if not groups:
            return "No tasks yet. Use /generate to create your checklist."

    lines: list[str] = []
    for phase_name, tasks in groups.items():
        lines.append(f"{phase_name}:")
        lines.extend(f"  {_format_task(t)}" for t in tasks)
    return "\n".join(lines)


async def cmd_generate(state: AppState, args: list[str]) -> str:
    session = state.onboarding
    if session.state is SubmissionState.DONE:
        session = state.new_onboarding_session()

    result = await session.finish(state.profile)
    if result is None:
        return "Checklist generation is already running."
    if result.skipped:
        return "DSO profiles have no personal checklist."
    if not result.ok:
        return f"Generation failed: {result.error}"
    return f"Checklist ready: {len(result.tasks)} tasks. Use /tasks to view them."


async def cmd_toggle(state: AppState, args: list[str]) -> str:
    if not args:
        return "Usage: /toggle <task id>"
    msg = await _ensure_loaded(state)
    if msg is not None:
        return msg

    task_id = _resolve_task_id(state, args[0])
    if task_id is None:
        return f"No task matches id {args[0]!r}."

    updated = await state.controller.toggle_task_status(task_id)
    if updated is None:
        return "Task was not changed."
    return _format_task(updated)


async def cmd_add(state: AppState, args: list[str]) -> str:
    """/add <yyyy-mm-dd> <priority> <title...>"""
    if len(args) < 3:
        return "Usage: /add <yyyy-mm-dd> <low|medium|high> <title...>"
    msg = await _ensure_loaded(state)
    if msg is not None:
        return msg

    due = parse_date(args[0])
    if due is None:
        return f"Invalid date: {args[0]}"
    priority = args[1].lower()
    if priority not in {p.value for p in Priority}:
        return f"Invalid priority: {args[1]} (use low, medium or high)"

    created = await state.controller.add_custom_task(" ".join(args[2:]), due, priority)
    if created is None:
        return "Task was not added."
    return _format_task(created)


async def cmd_delete(state: AppState, args: list[str]) -> str:
    if not args:
        return "Usage: /delete <task id>"
    msg = await _ensure_loaded(state)
    if msg is not None:
        return msg

    task_id = _resolve_task_id(state, args[0])
    if task_id is None:
        return f"No task matches id {args[0]!r}."
    if not await state.controller.delete_task(task_id):
        return "Task was not deleted."
    return f"Deleted {_short(task_id)}."


async def cmd_checklist(state: AppState, args: list[str]) -> str:
    """
    /checklist <visa> [phase] -> baseline templates (no personalization, nothing stored)
    """
    if not args:
        return f"Usage: /checklist <visa type> [phase]. Known visa types: {', '.join(supported_visa_types())}"

    visa = args[0]
    phase = " ".join(args[1:]) or None
    items = get_baseline_checklist(visa, phase)
    label = normalize_visa_type(visa) or f"{visa} (unknown, generic checklist)"

    lines = [f"Baseline checklist for {label}" + (f" / {phase}" if phase else "") + ":"]
    for i, item in enumerate(items, start=1):
        recur = f" [{item.recurring_interval}]" if item.is_recurring else ""
        lines.append(f"{i}. {item.title} ({item.priority.value}, {item.phase.value}){recur}")
        lines.append(f"   {item.description}")
    return "\n".join(lines)


async def cmd_documents(state: AppState, args: list[str]) -> str:
    """
    /documents <name>[:status] ...

    Every listed document counts as required. Status is valid, expiring,
    expired or pending (default valid).
    """
    if not args:
        return "Usage: /documents <name>[:valid|expiring|expired|pending] ..."
    msg = await _ensure_loaded(state)
    if msg is not None:
        return msg

    statuses = {s.value for s in DocumentStatus}
    docs: list[Document] = []
    for raw in args:
        name, sep, status = raw.rpartition(":")
        if not sep:
            name, status = raw, DocumentStatus.VALID.value
        status = status.lower()
        if not name or status not in statuses:
            return f"Invalid document: {raw} (use name or name:status)"
        docs.append(Document(id=name, name=name, status=DocumentStatus(status), required=True))

    before = {t.id: t for t in state.controller.tasks}
    issues = await state.controller.apply_documents(docs)
    changed = [t for t in state.controller.tasks if before.get(t.id) != t]

    lines = [f"Documents checked: {len(docs)}, tasks updated: {len(changed)}"]
    lines.extend(f"  {_format_task(t)}" for t in changed)
    if issues:
        lines.append("Issues:")
        lines.extend(f"  - {issue}" for issue in issues)
    return "\n".join(lines)


async def cmd_summary(state: AppState, args: list[str]) -> str:
    msg = await _ensure_loaded(state)
    if msg is not None:
        return msg

    s = state.controller.status_summary()
    lines = [
        "Summary:",
        f"  Completed: {s['completed']}/{s['total']} ({s['completion_pct']}%)",
        f"  Overdue: {s['overdue']}",
        f"  Due in 30 days: {s['due_soon']}",
        f"  Open high priority: {s['high_priority_open']}",
    ]
    overdue = state.controller.overdue_tasks()
    if overdue:
        lines.append("Overdue tasks:")
        lines.extend(f"  {_format_task(t)}" for t in overdue)
    return "\n".join(lines)


registry.register("help", cmd_help, help_text="Show available commands.", aliases=["h", "?"])
registry.register("status", cmd_status, help_text="Show session, profile and personalizer status.")
registry.register("tasks", cmd_tasks, help_text="List tasks by phase: /tasks [phase].", aliases=["ls"])
registry.register("generate", cmd_generate, help_text="Generate the compliance checklist from your profile.")
registry.register("toggle", cmd_toggle, help_text="Mark a task done/pending: /toggle <id>.", aliases=["done"])
registry.register("add", cmd_add, help_text="Add a custom task: /add <yyyy-mm-dd> <priority> <title...>.")
registry.register("delete", cmd_delete, help_text="Delete a task: /delete <id>.", aliases=["rm"])
registry.register("checklist", cmd_checklist, help_text="Show a baseline checklist: /checklist <visa> [phase].")
registry.register("summary", cmd_summary, help_text="Completion, overdue and upcoming counts.")
registry.register(
    "documents",
    cmd_documents,
    help_text="Match documents to tasks: /documents <name>[:status] ...",
    aliases=["docs"],
)
