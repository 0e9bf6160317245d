"""Classification of provider failures into overload vs. everything else.

Overload detection is a heuristic and differs per provider, so each provider
carries an :data:`OverloadDetector` strategy. The default one ORs together:

* an explicit error type tag ``overloaded_error`` on the exception,
* a nested error object (``exc.body`` / ``exc.error``) whose ``type`` is
  ``overloaded_error``,
* HTTP status 429 or 529,
* ``"overloaded"`` anywhere in the lowercased message.

It is an approximation: a provider that reports capacity problems in some
other way needs its own detector.
"""

from __future__ import annotations

from typing import Any, Callable

OverloadDetector = Callable[[BaseException], bool]

OVERLOAD_TYPE = "overloaded_error"
OVERLOAD_STATUS_CODES = frozenset({429, 529})

OVERLOAD_PATTERNS: tuple[str, ...] = ("overloaded",)

# Text-only signals for CLI providers, which have no status code to inspect.
RATE_LIMIT_PATTERNS: tuple[str, ...] = (
    "rate limit",
    "rate_limit",
    "usage limit",
    "you've hit your limit",
    "quota",
    "429",
    "529",
    "too many requests",
    "resource_exhausted",
    "capacity",
)


def _contains_any(text: str, patterns: tuple[str, ...]) -> bool:
    lower = text.lower()
    return any(pattern in lower for pattern in patterns)


def _nested_type(obj: Any) -> str:
    if isinstance(obj, dict):
        inner = obj.get("error", obj)
        if isinstance(inner, dict):
            return str(inner.get("type", "") or "")
        return str(obj.get("type", "") or "")
    return str(getattr(obj, "type", "") or "")


def status_code_of(exc: BaseException) -> int | None:
    for attr in ("status_code", "status"):
        value = getattr(exc, attr, None)
        if isinstance(value, int):
            return value
    response = getattr(exc, "response", None)
    value = getattr(response, "status_code", None)
    return value if isinstance(value, int) else None


def looks_like_overload(text: str) -> bool:
    """Return ``True`` when text mentions an overloaded provider."""
    if not text:
        return False
    return _contains_any(text, OVERLOAD_PATTERNS)


def looks_like_rate_limit(text: str) -> bool:
    """Return ``True`` when text matches a rate/usage/quota limit."""
    if not text:
        return False
    return _contains_any(text, RATE_LIMIT_PATTERNS)


def default_overload_detector(exc: BaseException) -> bool:
    if str(getattr(exc, "type", "") or "") == OVERLOAD_TYPE:
        return True
    for attr in ("body", "error"):
        if _nested_type(getattr(exc, attr, None)) == OVERLOAD_TYPE:
            return True
    if status_code_of(exc) in OVERLOAD_STATUS_CODES:
        return True
    return looks_like_overload(str(exc))


def cli_overload_detector(exc: BaseException) -> bool:
    """Default heuristic plus textual rate-limit markers from CLI output."""
    return default_overload_detector(exc) or looks_like_rate_limit(str(exc))
