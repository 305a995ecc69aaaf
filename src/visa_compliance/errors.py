# src/visa_compliance/errors.py

"""
Error taxonomy shared by the store, the engine and the controller.

Every failure path raises one of these with a human-readable message.
Callers that face the user (controller, console) convert them with
friendly_error_message(); nothing below the controller swallows them.
"""

from __future__ import annotations


class ComplianceError(Exception):
    """Base class. `user_message` is safe to show in the UI."""

    retryable: bool = False
    kind: str = "error"

    def __init__(self, message: str, *, user_message: str | None = None) -> None:
        super().__init__(message)
        self.user_message = (user_message or message).strip() or "Something went wrong."


class ValidationError(ComplianceError):
    """Malformed input to a store operation (missing/invalid field)."""

    kind = "validation"


class TaskNotFoundError(ValidationError):
    kind = "not_found"


class AuthorizationError(ComplianceError):
    """Caller has no rights over the target row."""

    kind = "authorization"

    def __init__(self, message: str, *, user_message: str | None = None) -> None:
        super().__init__(
            message,
            user_message=user_message or "You do not have access to this task.",
        )


class TransientIOError(ComplianceError):
    """Network/store failure. The operation may be retried in full."""

    kind = "transient"
    retryable = True


class MalformedResponseError(ComplianceError):
    """Personalization response did not match {"tasks": [...]}."""

    kind = "malformed_response"

    def __init__(self, message: str, *, user_message: str | None = None) -> None:
        super().__init__(
            message,
            user_message=user_message or "Invalid response from the personalization service.",
        )


class ControllerNotReadyError(ComplianceError):
    """A mutation was attempted while the task list is not in the ready state."""

    kind = "not_ready"


def friendly_error_message(err: BaseException) -> str:
    if isinstance(err, ComplianceError):
        msg = err.user_message
        if err.retryable:
            return f"{msg} Please try again."
        return msg
    if isinstance(err, TimeoutError):
        return "The request timed out. Please try again."
    return str(err).strip() or "Unexpected error."
