"""Tag context: the active tag, tag lifecycle and branch-derived tags.

Tags are isolated task namespaces inside one tasks document. The active tag
lives in ``.taskforge/state.json`` next to the tasks file::

    {"currentTag": "master", "lastSwitched": "...", "branchTagMapping": {"feat/x": "feat-x"}}
"""

from __future__ import annotations

import copy
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from taskforge import git_ops, log
from taskforge.errors import NotFoundError, ValidationError
from taskforge.io_utils import exists, read_json, write_json
from taskforge.log import Logger
from taskforge.tasks.model import Tag, TagMetadata, is_locked, now_iso
from taskforge.tasks.store import DEFAULT_TAG, TaskStore

TAG_NAME_RE = re.compile(r"^[a-zA-Z0-9_-]+$")
RESERVED_TAG_NAMES = frozenset({"master", "main", "default"})
PROTECTED_BRANCHES = frozenset({"main", "master", "develop", "dev", "head"})
MAX_TAG_LENGTH = 50


def sanitize_branch_name(branch: str) -> str:
    """Convert a VCS branch name into a tag-safe name."""
    if not branch:
        return "unknown-branch"
    name = re.sub(r"[^a-zA-Z0-9_-]", "-", branch)
    name = re.sub(r"-+", "-", name).strip("-").lower()
    name = name[:MAX_TAG_LENGTH].strip("-")
    return name or "unknown-branch"


def is_valid_branch_for_tag(branch: str | None) -> bool:
    return bool(branch) and branch.lower() not in PROTECTED_BRANCHES  # type: ignore[union-attr]


def validate_tag_name(name: str, *, allow_reserved: bool = False) -> str:
    name = (name or "").strip()
    if not name:
        raise ValidationError("Tag name cannot be empty")
    if not TAG_NAME_RE.match(name):
        raise ValidationError(
            f"Invalid tag name {name!r}: use only letters, numbers, hyphens and underscores"
        )
    if not allow_reserved and name.lower() in RESERVED_TAG_NAMES:
        raise ValidationError(f'"{name}" is a reserved tag name')
    return name


@dataclass
class TagInfo:
    name: str
    task_count: int
    completed: int
    is_current: bool
    description: str = ""
    created: str = ""


class TagContext:
    """Resolves which tag an operation targets and manages the tag set."""

    def __init__(
        self,
        store: TaskStore,
        state_path: Path,
        *,
        logger: Logger | None = None,
        project_root: Path | None = None,
    ) -> None:
        self.store = store
        self.state_path = state_path
        self.logger = logger or log.default_logger
        self.project_root = project_root

    # ── state file ───────────────────────────────────────────────

    def _read_state(self) -> dict[str, Any]:
        if not exists(self.state_path):
            return {}
        try:
            state = read_json(self.state_path)
        except ValueError:
            self.logger.warn(f"Ignoring unreadable state file {self.state_path}")
            return {}
        return state if isinstance(state, dict) else {}

    def _write_state(self, **changes: Any) -> None:
        state = self._read_state()
        state.update(changes)
        write_json(self.state_path, state)

    # ── resolution ───────────────────────────────────────────────

    def active_tag(self) -> str:
        return str(self._read_state().get("currentTag") or DEFAULT_TAG)

    def resolve(self, explicit: str | None = None) -> str:
        """An explicit tag wins; otherwise the active tag."""
        return explicit.strip() if explicit and explicit.strip() else self.active_tag()

    def use_tag(self, name: str) -> Tag:
        doc = self.store.load()
        tag = doc.tag(name)
        self._write_state(currentTag=name, lastSwitched=now_iso())
        self.logger.success(f"Switched to tag '{name}' ({len(tag.tasks)} tasks)")
        return tag

    def list_tags(self) -> list[TagInfo]:
        doc = self.store.load(missing_ok=True)
        current = self.active_tag()
        return [
            TagInfo(
                name=tag.name,
                task_count=len(tag.tasks),
                completed=sum(1 for t in tag.tasks if is_locked(t.status)),
                is_current=tag.name == current,
                description=tag.metadata.description,
                created=tag.metadata.created,
            )
            for tag in doc.tags.values()
        ]

    # ── lifecycle ────────────────────────────────────────────────

    def create_tag(self, name: str, *, copy_from: str | None = None, description: str = "") -> Tag:
        """Create an empty tag, or a deep copy of *copy_from*."""
        name = validate_tag_name(name)
        doc = self.store.load(missing_ok=True)
        if doc.has_tag(name):
            raise ValidationError(f'Tag "{name}" already exists')

        tasks = []
        if copy_from is not None:
            tasks = copy.deepcopy(doc.tag(copy_from).tasks)

        stamp = now_iso()
        if not description:
            description = f"Copy of '{copy_from}'" if copy_from else f"Tag created on {stamp[:10]}"
        tag = Tag(name=name, tasks=tasks, metadata=TagMetadata(created=stamp, updated=stamp, description=description))
        doc.tag(DEFAULT_TAG, create=True)
        doc.tags[name] = tag
        self.store.save(doc)
        self.logger.success(f"Created tag '{name}' with {len(tasks)} tasks")
        return tag

    def create_tag_from_branch(
        self,
        branch: str | None = None,
        *,
        copy_from_current: bool = False,
        description: str = "",
    ) -> Tag:
        """Create a tag named after *branch* (default: the checked-out branch)."""
        if branch is None:
            branch = git_ops.current_branch(self.project_root)
        if not is_valid_branch_for_tag(branch):
            raise ValidationError(f"Branch {branch!r} cannot be used to create a tag")
        name = sanitize_branch_name(branch or "")
        tag = self.create_tag(
            name,
            copy_from=self.active_tag() if copy_from_current else None,
            description=description or f"Tag created from git branch '{branch}'",
        )
        mapping = dict(self._read_state().get("branchTagMapping") or {})
        mapping[branch] = name
        self._write_state(branchTagMapping=mapping)
        return tag

    def delete_tag(self, name: str) -> int:
        """Delete *name* and all its tasks. Returns the number of tasks removed."""
        if name == DEFAULT_TAG:
            raise ValidationError('Cannot delete the "master" tag')
        if name == self.active_tag():
            raise ValidationError(f"Cannot delete the active tag '{name}'. Switch to another tag first.")
        doc = self.store.load()
        if not doc.has_tag(name):
            raise NotFoundError(f'Tag "{name}" does not exist')
        removed = len(doc.tags.pop(name).tasks)
        self.store.save(doc)

        state = self._read_state()
        mapping = {b: t for b, t in (state.get("branchTagMapping") or {}).items() if t != name}
        if mapping != (state.get("branchTagMapping") or {}):
            self._write_state(branchTagMapping=mapping)
        self.logger.success(f"Deleted tag '{name}' ({removed} tasks)")
        return removed

    def rename_tag(self, old: str, new: str) -> Tag:
        if old == DEFAULT_TAG:
            raise ValidationError('Cannot rename the "master" tag')
        new = validate_tag_name(new)
        doc = self.store.load()
        if not doc.has_tag(old):
            raise NotFoundError(f'Tag "{old}" does not exist')
        if doc.has_tag(new):
            raise ValidationError(f'Tag "{new}" already exists')

        # Rebuild the mapping to keep the tag's position in the file.
        renamed: dict[str, Tag] = {}
        for key, tag in doc.tags.items():
            if key == old:
                tag.name = new
                tag.touch()
                key = new
            renamed[key] = tag
        doc.tags = renamed
        self.store.save(doc)

        if self.active_tag() == old:
            self._write_state(currentTag=new)
        self.logger.success(f"Renamed tag '{old}' to '{new}'")
        return renamed[new]

    def copy_tag(self, source: str, target: str, *, description: str = "") -> Tag:
        return self.create_tag(target, copy_from=source, description=description)
