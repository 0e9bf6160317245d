"""Subtask generation: expand one task, expand all open tasks, clear subtasks."""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Any

from taskforge.errors import TaskforgeError, ValidationError
from taskforge.graph import NodeKey
from taskforge.pipelines import prompts
from taskforge.pipelines.context import MutationContext
from taskforge.reconcile import reconcile_generated_subtasks
from taskforge.schemas import GeneratedSubtask, decode_items
from taskforge.tasks.model import Subtask, TaskStatus, parse_task_id, split_ids

EXPANDABLE_STATUSES = (TaskStatus.PENDING.value, TaskStatus.IN_PROGRESS.value)


@dataclass
class ExpandAllResult:
    success: bool
    expanded_count: int
    tasks_to_expand: int
    expansion_errors: int
    message: str
    failures: list[tuple[int, str]] = field(default_factory=list)


def _subtask_count(ctx: MutationContext, task_id: int, num: Any) -> tuple[int, str]:
    """Explicit count, else the complexity report's recommendation, else the default."""
    analysis = None
    report = ctx.complexity_report()
    if report is not None:
        analysis = report.get(task_id)
    expansion_prompt = analysis.expansion_prompt if analysis else ""

    if num is not None:
        try:
            count = int(num)
        except (TypeError, ValueError):
            raise ValidationError(f"Invalid number of subtasks: {num}") from None
        if count <= 0:
            raise ValidationError(f"Number of subtasks must be positive, got {count}")
        return count, expansion_prompt
    if analysis is not None and analysis.recommended_subtasks > 0:
        ctx.logger.info(
            f"Using {analysis.recommended_subtasks} subtasks recommended by the complexity report for task {task_id}"
        )
        return analysis.recommended_subtasks, expansion_prompt
    return ctx.config.default_subtasks, expansion_prompt


def expand_task(
    ctx: MutationContext,
    task_id: Any,
    *,
    num: Any = None,
    research: bool = False,
    additional_context: str = "",
    force: bool = False,
    append: bool = False,
) -> list[Subtask]:
    """Generate subtasks for one task and return the task's subtasks.

    A task that already has subtasks is left untouched (nothing is written)
    unless *force* replaces them or *append* adds after them.
    """
    tid = parse_task_id(task_id)
    m = ctx.begin()
    task = m.require_task(tid)

    if task.subtasks and not (force or append):
        ctx.logger.info(
            f"Task {tid} already has {len(task.subtasks)} subtasks. Use force to replace them or append to add more."
        )
        return list(task.subtasks)

    count, expansion_prompt = _subtask_count(ctx, tid, num)
    start_id = 1 if force else task.next_subtask_id()
    ctx.logger.info(f"Expanding task {tid} into {count} subtasks...")

    system, user = prompts.expand_task(
        task,
        count,
        start_id,
        additional_context=additional_context,
        expansion_prompt=expansion_prompt,
        research=research,
    )
    text = ctx.generate(system, user, research=research)
    items = decode_items(
        text,
        GeneratedSubtask,
        what=f"subtasks of task {tid}",
        key="subtasks",
        on_invalid=lambda pos, why: ctx.logger.warn(f"Skipping invalid subtask at position {pos}: {why}"),
    )
    generated = reconcile_generated_subtasks(items, start_id=start_id, count=count, logger=ctx.logger)

    backup = ctx.store.backup()
    if backup is not None:
        ctx.logger.debug(f"Backed up tasks to {backup}")

    if force and task.subtasks:
        replaced: set[NodeKey] = {(tid, s.id) for s in task.subtasks}
        m.graph().prune_references(replaced)
        task.subtasks = generated
    else:
        task.subtasks.extend(generated)

    m.commit()
    ctx.logger.success(f"Generated {len(generated)} subtasks for task {tid}")
    return list(task.subtasks)


def expand_all_tasks(
    ctx: MutationContext,
    *,
    num: Any = None,
    research: bool = False,
    additional_context: str = "",
    force: bool = False,
) -> ExpandAllResult:
    """Expand every open task, one at a time, in complexity order."""
    tag = ctx.store.load().tag(ctx.tag)
    candidates = [
        t for t in tag.tasks
        if t.status in EXPANDABLE_STATUSES and (not t.subtasks or force)
    ]
    if not candidates:
        ctx.logger.info("No tasks eligible for expansion.")
        return ExpandAllResult(
            success=True,
            expanded_count=0,
            tasks_to_expand=0,
            expansion_errors=0,
            message="No tasks eligible for expansion",
        )

    report = ctx.complexity_report()
    if report is not None:
        candidates.sort(key=lambda t: (-report.score(t.id), t.id))
    else:
        candidates.sort(key=lambda t: t.id)

    total = len(candidates)
    ctx.logger.info(f"Expanding {total} tasks...")
    expanded = 0
    failures: list[tuple[int, str]] = []
    for index, task in enumerate(candidates):
        if index and ctx.config.expand_delay > 0:
            time.sleep(ctx.config.expand_delay)
        if ctx.progress is not None:
            ctx.progress.report(progress=index / total * 100, current=index + 1, total=total, task_id=task.id)
        try:
            expand_task(
                ctx,
                task.id,
                num=num,
                research=research,
                additional_context=additional_context,
                force=force,
            )
        except TaskforgeError as exc:
            failures.append((task.id, exc.message))
            ctx.logger.error(f"Failed to expand task {task.id}: {exc.message}")
        else:
            expanded += 1

    if ctx.progress is not None:
        ctx.progress.report(progress=100.0, current=total, total=total)
    message = f"Expanded {expanded} of {total} tasks"
    if failures:
        message += f" ({len(failures)} failed)"
        ctx.logger.warn(message)
    else:
        ctx.logger.success(message)
    return ExpandAllResult(
        success=True,
        expanded_count=expanded,
        tasks_to_expand=total,
        expansion_errors=len(failures),
        message=message,
        failures=failures,
    )


def clear_subtasks(ctx: MutationContext, ids: str) -> dict[int, int]:
    """Remove all subtasks of the given tasks. Returns cleared counts per task."""
    task_ids = [parse_task_id(raw) for raw in split_ids(ids)]
    if not task_ids:
        raise ValidationError("At least one task ID is required")
    m = ctx.begin()
    graph = m.graph()
    cleared: dict[int, int] = {}
    for tid in task_ids:
        task = m.tag.get_task(tid)
        if task is None:
            ctx.logger.error(f"Task {tid} not found")
            continue
        if not task.subtasks:
            ctx.logger.info(f"Task {tid} has no subtasks to clear")
            continue
        graph.prune_references({(tid, s.id) for s in task.subtasks})
        cleared[tid] = len(task.subtasks)
        task.subtasks = []
        ctx.logger.info(f"Cleared {cleared[tid]} subtasks from task {tid}")

    if cleared:
        m.commit()
    return cleared
