"""Task, Subtask and Tag data models persisted in the tasks document."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from taskforge.errors import ValidationError

# A dependency entry: an int (task id, or sibling subtask id when inside a
# subtask) or a "P.S" string naming subtask S of task P.
DepId = int | str


class TaskStatus(str, Enum):
    PENDING = "pending"
    IN_PROGRESS = "in-progress"
    DONE = "done"
    COMPLETED = "completed"
    BLOCKED = "blocked"
    DEFERRED = "deferred"
    CANCELLED = "cancelled"
    REVIEW = "review"


STATUS_VALUES = tuple(s.value for s in TaskStatus)
LOCKED_STATUSES = frozenset({TaskStatus.DONE.value, TaskStatus.COMPLETED.value})
PRIORITIES = ("high", "medium", "low")


def is_locked(status: str) -> bool:
    """done and completed are equivalent terminal states."""
    return (status or "").lower() in LOCKED_STATUSES


def validate_status(status: str) -> str:
    value = (status or "").strip().lower()
    if value not in STATUS_VALUES:
        raise ValidationError(
            f"Invalid status value: {status}. Use one of: {', '.join(STATUS_VALUES)}"
        )
    return value


def normalize_dep(dep: Any) -> DepId:
    """Coerce a raw dependency entry to ``int`` or a ``"P.S"`` string."""
    if isinstance(dep, bool):
        raise ValidationError(f"Invalid dependency id: {dep!r}")
    if isinstance(dep, int):
        return dep
    if isinstance(dep, float) and dep.is_integer():
        return int(dep)
    text = str(dep).strip()
    if text.isdigit():
        return int(text)
    parts = text.split(".")
    if len(parts) == 2 and all(p.isdigit() for p in parts):
        return f"{int(parts[0])}.{int(parts[1])}"
    raise ValidationError(f"Invalid dependency id: {dep!r}")


def load_dep(dep: Any) -> DepId:
    """Like :func:`normalize_dep`, but keeps an unparseable entry as text.

    The graph treats such an entry as dangling, so validation reports it and
    repair strips it.
    """
    try:
        return normalize_dep(dep)
    except ValidationError:
        return str(dep)


def now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass
class Subtask:
    id: int
    title: str = ""
    description: str = ""
    details: str = ""
    status: str = TaskStatus.PENDING.value
    dependencies: list[DepId] = field(default_factory=list)
    test_strategy: str = ""

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Subtask:
        return cls(
            id=int(data["id"]),
            title=str(data.get("title", "")),
            description=str(data.get("description", "") or ""),
            details=str(data.get("details", "") or ""),
            status=str(data.get("status", "pending") or "pending"),
            dependencies=[load_dep(d) for d in data.get("dependencies", []) or []],
            test_strategy=str(data.get("testStrategy", "") or ""),
        )

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {
            "id": self.id,
            "title": self.title,
            "description": self.description,
            "details": self.details,
            "status": self.status,
            "dependencies": list(self.dependencies),
        }
        if self.test_strategy:
            out["testStrategy"] = self.test_strategy
        return out


@dataclass
class Task:
    id: int
    title: str = ""
    description: str = ""
    details: str = ""
    test_strategy: str = ""
    status: str = TaskStatus.PENDING.value
    priority: str = "medium"
    dependencies: list[DepId] = field(default_factory=list)
    subtasks: list[Subtask] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Task:
        return cls(
            id=int(data["id"]),
            title=str(data.get("title", "")),
            description=str(data.get("description", "") or ""),
            details=str(data.get("details", "") or ""),
            test_strategy=str(data.get("testStrategy", "") or ""),
            status=str(data.get("status", "pending") or "pending"),
            priority=str(data.get("priority", "medium") or "medium"),
            dependencies=[load_dep(d) for d in data.get("dependencies", []) or []],
            subtasks=[Subtask.from_dict(s) for s in data.get("subtasks", []) or []],
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "description": self.description,
            "details": self.details,
            "testStrategy": self.test_strategy,
            "status": self.status,
            "priority": self.priority,
            "dependencies": list(self.dependencies),
            "subtasks": [s.to_dict() for s in self.subtasks],
        }

    def get_subtask(self, subtask_id: int) -> Subtask | None:
        for s in self.subtasks:
            if s.id == subtask_id:
                return s
        return None

    def next_subtask_id(self) -> int:
        return max((s.id for s in self.subtasks), default=0) + 1


@dataclass
class TagMetadata:
    created: str = ""
    updated: str = ""
    description: str = ""

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> TagMetadata:
        data = data or {}
        return cls(
            created=str(data.get("created", "")),
            updated=str(data.get("updated", "")),
            description=str(data.get("description", "")),
        )

    def to_dict(self) -> dict[str, Any]:
        return {"created": self.created, "updated": self.updated, "description": self.description}


@dataclass
class Tag:
    name: str
    tasks: list[Task] = field(default_factory=list)
    metadata: TagMetadata = field(default_factory=TagMetadata)

    def get_task(self, task_id: int) -> Task | None:
        for t in self.tasks:
            if t.id == task_id:
                return t
        return None

    def next_task_id(self) -> int:
        return max((t.id for t in self.tasks), default=0) + 1

    def touch(self) -> None:
        self.metadata.updated = now_iso()


def parse_subtask_id(raw: str) -> tuple[int, int]:
    """Parse ``"P.S"`` into positive ints, raising :class:`ValidationError`."""
    text = str(raw).strip()
    parts = text.split(".")
    if len(parts) != 2 or not all(p.isdigit() for p in parts):
        raise ValidationError(
            f'Invalid subtask ID format: {raw}. Subtask ID must be in format "parentId.subtaskId"'
        )
    parent_id, sub_id = int(parts[0]), int(parts[1])
    if parent_id <= 0 or sub_id <= 0:
        raise ValidationError(f"Invalid subtask ID: {raw}. Both parts must be positive integers.")
    return parent_id, sub_id


def parse_task_id(raw: Any) -> int:
    """Parse a positive task id, raising :class:`ValidationError`."""
    text = str(raw).strip()
    if not text.isdigit() or int(text) <= 0:
        raise ValidationError(f"Invalid task ID: {raw}. Task ID must be a positive integer.")
    return int(text)


def split_ids(raw: str) -> list[str]:
    """Split a comma-separated id list, dropping blanks."""
    return [part.strip() for part in str(raw).split(",") if part.strip()]
