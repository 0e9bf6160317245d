"""Strict decoding of model output into pydantic payloads.

The model must answer with a JSON document, optionally wrapped in one Markdown
code fence. Anything else (prose around the JSON, truncated output, wrong
shape) raises :class:`ReconciliationError`; nothing is guessed.
"""

from __future__ import annotations

import json
import re
from typing import Any, Callable, TypeVar

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic import ValidationError as SchemaError

from taskforge.errors import ReconciliationError
from taskforge.tasks.model import STATUS_VALUES

M = TypeVar("M", bound=BaseModel)

_FENCE = re.compile(r"^```[A-Za-z0-9_-]*[ \t]*\n(?P<body>.*?)\n?```$", re.DOTALL)


class _Payload(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)


class SubtaskPayload(_Payload):
    """A subtask as echoed back inside an updated task."""

    id: int = Field(gt=0)
    title: str
    description: str = ""
    details: str = ""
    status: str = "pending"
    dependencies: list[int | str] = Field(default_factory=list)
    test_strategy: str = Field("", alias="testStrategy")

    @field_validator("status", mode="before")
    @classmethod
    def _known_status(cls, value: object) -> str:
        status = str(value or "pending").strip().lower()
        if status not in STATUS_VALUES:
            raise ValueError(f"unknown status {value!r}, expected one of: {', '.join(STATUS_VALUES)}")
        return status


class TaskPayload(_Payload):
    """A full task rewrite proposed by the model."""

    id: int
    title: str = Field(min_length=1)
    description: str = Field(min_length=1)
    status: str = "pending"
    dependencies: list[int | str] = Field(default_factory=list)
    priority: str | None = None
    details: str | None = None
    test_strategy: str | None = Field(None, alias="testStrategy")
    subtasks: list[SubtaskPayload] | None = None


class NewTaskPayload(_Payload):
    title: str = Field(min_length=1)
    description: str = Field(min_length=1)
    details: str = ""
    test_strategy: str = Field("", alias="testStrategy")


class GeneratedSubtask(_Payload):
    """One subtask produced by expansion."""

    id: int = Field(gt=0)
    title: str = Field(min_length=5)
    description: str = Field(min_length=10)
    dependencies: list[int] = Field(default_factory=list)
    details: str = Field(min_length=20)
    status: str = "pending"
    test_strategy: str | None = Field(None, alias="testStrategy")


class SubtaskNotePayload(_Payload):
    """Answer to a subtask update: only ``details`` is used."""

    details: str = ""


class PrdTaskPayload(_Payload):
    id: int = Field(gt=0)
    title: str = Field(min_length=1)
    description: str = Field(min_length=1)
    details: str = ""
    test_strategy: str = Field("", alias="testStrategy")
    priority: str = "medium"
    dependencies: list[int] = Field(default_factory=list)
    status: str = "pending"


class PrdPayload(_Payload):
    tasks: list[PrdTaskPayload]
    metadata: dict[str, Any] | None = None


def describe(exc: SchemaError) -> str:
    parts = []
    for err in exc.errors():
        loc = ".".join(str(p) for p in err.get("loc", ())) or "<root>"
        parts.append(f"{loc}: {err.get('msg', 'invalid')}")
    return "; ".join(parts)


def decode_json(text: str, *, what: str) -> Any:
    """Parse *text* as JSON, allowing a single surrounding code fence."""
    body = (text or "").strip()
    if not body:
        raise ReconciliationError(f"AI returned an empty response for {what}")
    fenced = _FENCE.match(body)
    if fenced:
        body = fenced.group("body").strip()
    try:
        return json.loads(body)
    except json.JSONDecodeError as exc:
        raise ReconciliationError(
            f"AI response for {what} is not valid JSON ({exc.msg} at line {exc.lineno})"
        ) from exc


def decode_model(text: str, model: type[M], *, what: str) -> M:
    data = decode_json(text, what=what)
    try:
        return model.model_validate(data)
    except SchemaError as exc:
        raise ReconciliationError(f"AI response for {what} does not match the expected shape: {describe(exc)}") from exc


def _unwrap_list(data: Any, key: str, what: str) -> list[Any]:
    if isinstance(data, dict) and isinstance(data.get(key), list):
        data = data[key]
    if not isinstance(data, list):
        raise ReconciliationError(f"AI response for {what} must be a JSON array or an object with a '{key}' array")
    return data


def decode_list(text: str, model: type[M], *, what: str, key: str) -> list[M]:
    """All-or-nothing: every item must validate."""
    items = _unwrap_list(decode_json(text, what=what), key, what)
    out: list[M] = []
    for position, item in enumerate(items):
        try:
            out.append(model.model_validate(item))
        except SchemaError as exc:
            raise ReconciliationError(
                f"AI response for {what}: item {position} does not match the expected shape: {describe(exc)}"
            ) from exc
    return out


def decode_items(
    text: str,
    model: type[M],
    *,
    what: str,
    key: str,
    on_invalid: Callable[[int, str], None],
) -> list[M]:
    """Lenient per item: invalid items are reported through *on_invalid* and skipped."""
    items = _unwrap_list(decode_json(text, what=what), key, what)
    out: list[M] = []
    for position, item in enumerate(items):
        try:
            out.append(model.model_validate(item))
        except SchemaError as exc:
            on_invalid(position, describe(exc))
    return out
