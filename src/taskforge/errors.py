"""Error taxonomy shared by every mutation pipeline.

Each error carries a stable ``code`` so programmatic callers can branch on it
without parsing messages. :func:`as_result` turns any operation into a
structured ``{success, data | error}`` dict instead of raising.
"""

from __future__ import annotations

from typing import Any, Callable


class TaskforgeError(Exception):
    """Base class for all engine errors."""

    code = "TASKFORGE_ERROR"

    def __init__(self, message: str, **details: Any) -> None:
        super().__init__(message)
        self.message = message
        self.details = details

    def to_result(self) -> dict[str, Any]:
        return {"success": False, "error": {"code": self.code, "message": self.message}}


class ValidationError(TaskforgeError):
    """Malformed id, missing argument, bad status or tag name."""

    code = "VALIDATION_ERROR"


class NotFoundError(ValidationError):
    """A referenced task, subtask, tag or file does not exist."""

    code = "NOT_FOUND"


class CycleError(TaskforgeError):
    """The mutation would introduce a dependency cycle."""

    code = "CIRCULAR_DEPENDENCY"


class ReconciliationError(TaskforgeError):
    """AI output could not be decoded or is missing required fields."""

    code = "RECONCILIATION_ERROR"


class ProviderError(TaskforgeError):
    code = "PROVIDER_ERROR"

    def __init__(self, message: str, *, provider: str = "", **details: Any) -> None:
        super().__init__(message, **details)
        self.provider = provider


class ProviderOverloadError(ProviderError):
    """A provider signalled it is at capacity. Retried through the fallback chain."""

    code = "PROVIDER_OVERLOADED"


class ProviderOtherError(ProviderError):
    """Auth, network, unavailable provider. Never retried."""

    code = "PROVIDER_ERROR"


class ExhaustedFallbackError(ProviderError):
    """Every attempt ended in an overload."""

    code = "FALLBACK_EXHAUSTED"

    def __init__(self, message: str, *, attempts: list[str] | None = None, **details: Any) -> None:
        super().__init__(message, **details)
        self.attempts = attempts or []


def as_result(fn: Callable[..., Any], *args: Any, **kwargs: Any) -> dict[str, Any]:
    """Run *fn* and report the outcome as a dict instead of raising."""
    try:
        data = fn(*args, **kwargs)
    except TaskforgeError as exc:
        return exc.to_result()
    return {"success": True, "data": data}
