"""Status changes for tasks and subtasks."""

from __future__ import annotations

from dataclasses import dataclass, field

from taskforge.errors import NotFoundError, ValidationError
from taskforge.pipelines.context import Mutation, MutationContext
from taskforge.tasks.model import is_locked, parse_subtask_id, parse_task_id, split_ids, validate_status


@dataclass
class StatusChange:
    id: str
    old_status: str
    new_status: str


@dataclass
class StatusResult:
    updated: list[StatusChange] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return bool(self.updated)


def _set_subtask(ctx: MutationContext, m: Mutation, raw: str, status: str) -> StatusChange:
    parent_id, sub_id = parse_subtask_id(raw)
    parent = m.require_task(parent_id)
    if not parent.subtasks:
        raise ValidationError(f"Parent task {parent_id} has no subtasks")
    subtask = parent.get_subtask(sub_id)
    if subtask is None:
        raise NotFoundError(f"Subtask {sub_id} not found in parent task {parent_id}")

    change = StatusChange(f"{parent_id}.{sub_id}", subtask.status or "pending", status)
    subtask.status = status
    ctx.logger.info(f"Updated subtask {change.id} status from '{change.old_status}' to '{status}'")

    if is_locked(status) and not is_locked(parent.status):
        if all(is_locked(s.status) for s in parent.subtasks):
            ctx.logger.warn(f"All subtasks of parent task {parent_id} are now marked as done.")
            ctx.logger.info(f"Consider updating the parent: taskforge set-status {parent_id} done")
    return change


def _set_task(ctx: MutationContext, m: Mutation, raw: str, status: str) -> StatusChange:
    task = m.require_task(parse_task_id(raw))
    change = StatusChange(str(task.id), task.status or "pending", status)
    task.status = status
    ctx.logger.info(f"Updated task {task.id} status from '{change.old_status}' to '{status}'")

    if is_locked(status):
        open_subtasks = [s for s in task.subtasks if not is_locked(s.status)]
        if open_subtasks:
            ctx.logger.info(f"Also marking {len(open_subtasks)} subtasks as '{status}'")
            for sub in open_subtasks:
                sub.status = status
    return change


def set_task_status(ctx: MutationContext, ids: str, status: str) -> StatusResult:
    """Set *status* on every id in the comma-separated *ids* (``"3"`` or ``"3.1"``).

    Marking a task done or completed also closes its open subtasks. Any
    unknown id aborts the whole call before anything is written.
    """
    new_status = validate_status(status)
    items = split_ids(ids)
    if not items:
        raise ValidationError("At least one task ID is required")

    m = ctx.begin()
    result = StatusResult()
    for raw in items:
        if "." in raw:
            result.updated.append(_set_subtask(ctx, m, raw, new_status))
        else:
            result.updated.append(_set_task(ctx, m, raw, new_status))

    m.commit()
    ctx.logger.success(f"Set status of {', '.join(c.id for c in result.updated)} to {new_status}")
    return result
