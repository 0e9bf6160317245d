"""TaskStore: whole-document access to the tag-partitioned tasks file.

The store has no business rules. It reads the full JSON document into
:class:`TaskDocument`, and writes it back as a whole.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from taskforge.errors import NotFoundError, ValidationError
from taskforge.io_utils import copy_file, exists, read_json, write_json
from taskforge.tasks.model import Tag, TagMetadata, Task, now_iso

DEFAULT_TAG = "master"


def _load_task(tag: str, position: int, raw: Any) -> Task:
    try:
        return Task.from_dict(raw)
    except KeyError as exc:
        raise ValidationError(f"Task {position} of tag {tag!r} is missing the field {exc.args[0]!r}") from exc
    except (AttributeError, TypeError, ValueError) as exc:
        raise ValidationError(f"Task {position} of tag {tag!r} is malformed: {exc}") from exc


@dataclass
class TaskDocument:
    """All tags of one tasks file, in file order."""

    tags: dict[str, Tag] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, raw: Any) -> TaskDocument:
        if not isinstance(raw, dict):
            raise ValidationError("Tasks document must be a JSON object keyed by tag name")

        # Flat legacy layout: {"tasks": [...]} belongs to master.
        if isinstance(raw.get("tasks"), list):
            raw = {DEFAULT_TAG: {"tasks": raw["tasks"], "metadata": raw.get("metadata") or {}}}

        doc = cls()
        for name, body in raw.items():
            if not isinstance(body, dict) or not isinstance(body.get("tasks", []), list):
                raise ValidationError(f"Tag {name!r} does not contain a tasks list")
            doc.tags[name] = Tag(
                name=name,
                tasks=[_load_task(name, position, t) for position, t in enumerate(body.get("tasks", []))],
                metadata=TagMetadata.from_dict(body.get("metadata")),
            )
        return doc

    def to_dict(self) -> dict[str, Any]:
        return {
            name: {"tasks": [t.to_dict() for t in tag.tasks], "metadata": tag.metadata.to_dict()}
            for name, tag in self.tags.items()
        }

    def has_tag(self, name: str) -> bool:
        return name in self.tags

    def tag(self, name: str, *, create: bool = False) -> Tag:
        """Return tag *name*; create it empty when *create* is set."""
        found = self.tags.get(name)
        if found is not None:
            return found
        if not create:
            raise NotFoundError(f"Tag '{name}' does not exist")
        stamp = now_iso()
        found = Tag(name=name, metadata=TagMetadata(created=stamp, updated=stamp))
        self.tags[name] = found
        return found


class TaskStore:
    """Reads and writes one tasks document at *path*."""

    def __init__(self, path: Path) -> None:
        self.path = path

    @property
    def backup_path(self) -> Path:
        return self.path.with_name(self.path.name + ".bak")

    def exists(self) -> bool:
        return exists(self.path)

    def load(self, *, missing_ok: bool = False) -> TaskDocument:
        if not self.exists():
            if missing_ok:
                return TaskDocument()
            raise NotFoundError(f"Tasks file not found at path: {self.path}")
        try:
            raw = read_json(self.path)
        except ValueError as exc:
            raise ValidationError(f"Tasks file {self.path} is not valid JSON: {exc}") from exc
        return TaskDocument.from_dict(raw)

    def save(self, doc: TaskDocument) -> None:
        write_json(self.path, doc.to_dict())

    def backup(self) -> Path | None:
        """Copy the current document aside. Returns the copy's path."""
        if not self.exists():
            return None
        copy_file(self.path, self.backup_path)
        return self.backup_path
