"""Task creation and AI-driven task/subtask updates."""

from __future__ import annotations

from collections.abc import Iterable
from typing import Any

from taskforge.errors import NotFoundError, ValidationError
from taskforge.graph import DependencyGraph, node_label, parse_node
from taskforge.pipelines import prompts
from taskforge.pipelines.context import MutationContext
from taskforge.reconcile import reconcile_batch, reconcile_task
from taskforge.schemas import NewTaskPayload, SubtaskNotePayload, TaskPayload, decode_list, decode_model
from taskforge.tasks.model import (
    PRIORITIES,
    DepId,
    Subtask,
    Task,
    TaskStatus,
    is_locked,
    now_iso,
    parse_subtask_id,
    parse_task_id,
)


def _require_prompt(prompt: str | None) -> str:
    if not prompt or not prompt.strip():
        raise ValidationError("Prompt cannot be empty. Describe what should change.")
    return prompt.strip()


def _resolve_priority(ctx: MutationContext, priority: str | None) -> str:
    value = (priority or ctx.config.default_priority).strip().lower()
    if value not in PRIORITIES:
        raise ValidationError(f"Invalid priority: {priority}. Use one of: {', '.join(PRIORITIES)}")
    return value


def add_task(
    ctx: MutationContext,
    prompt: str | None = None,
    *,
    dependencies: Iterable[Any] = (),
    priority: str | None = None,
    manual: dict[str, str] | None = None,
    research: bool = False,
) -> Task:
    """Create a task from *manual* fields or from an AI prompt.

    Dependencies that do not exist in the tag are dropped with a warning
    instead of failing the whole add.
    """
    effective_priority = _resolve_priority(ctx, priority)
    m = ctx.begin(create_tag=True)
    graph = m.graph()
    new_id = m.tag.next_task_id()

    deps: list[DepId] = []
    invalid: list[str] = []
    for raw in dependencies:
        try:
            key = parse_node(raw)
        except ValidationError:
            invalid.append(str(raw))
            continue
        if key not in graph:
            invalid.append(str(raw))
            continue
        dep = graph.to_dep((new_id, None), key)
        if dep not in deps:
            deps.append(dep)
    if invalid:
        ctx.logger.warn(f"The following dependencies do not exist or are invalid: {', '.join(invalid)}")
        ctx.logger.info("Removing invalid dependencies...")

    if manual is not None:
        title = (manual.get("title") or "").strip()
        description = (manual.get("description") or "").strip()
        if not title or not description:
            raise ValidationError("Manual task data must include at least a title and description.")
        details = manual.get("details", "") or ""
        test_strategy = manual.get("testStrategy", manual.get("test_strategy", "")) or ""
    else:
        prompt = _require_prompt(prompt)
        task_deps = [d for d in deps if isinstance(d, int)]
        if task_deps:
            context_tasks = [t for t in m.tasks if t.id in task_deps]
        else:
            context_tasks = sorted(m.tasks, key=lambda t: t.id, reverse=True)[:3]
        ctx.logger.info(f"Generating task {new_id} with {'research' if research else 'main'} AI...")
        system, user = prompts.add_task(prompt, new_id, context_tasks, task_deps)
        payload = decode_model(ctx.generate(system, user, research=research), NewTaskPayload, what="new task")
        title, description = payload.title, payload.description
        details, test_strategy = payload.details, payload.test_strategy

    task = Task(
        id=new_id,
        title=title,
        description=description,
        details=details,
        test_strategy=test_strategy,
        status=TaskStatus.PENDING.value,
        priority=effective_priority,
        dependencies=deps,
    )
    m.tasks.append(task)
    m.commit()
    ctx.logger.success(f"Added task {new_id}: {task.title}")
    return task


def update_task_by_id(
    ctx: MutationContext,
    task_id: Any,
    prompt: str,
    *,
    research: bool = False,
) -> Task | None:
    """Rewrite one task with AI help. Completed tasks are left alone (returns None)."""
    tid = parse_task_id(task_id)
    prompt = _require_prompt(prompt)
    m = ctx.begin()
    task = m.require_task(tid)
    if is_locked(task.status):
        ctx.logger.warn(f"Task {tid} is already marked as {task.status} and cannot be updated.")
        ctx.logger.info("Set its status back to pending first if it really needs changes.")
        return None

    system, user = prompts.update_task(task, prompt)
    payload = decode_model(ctx.generate(system, user, research=research), TaskPayload, what=f"task {tid}")
    updated = reconcile_task(task, payload, instruction=prompt, logger=ctx.logger)

    m.tasks[m.tasks.index(task)] = updated
    m.commit()
    ctx.logger.success(f"Updated task {tid}")
    return updated


def update_tasks(
    ctx: MutationContext,
    from_id: Any,
    prompt: str,
    *,
    research: bool = False,
) -> list[Task]:
    """Rewrite every open task with ``id >= from_id`` in one AI call."""
    start = parse_task_id(from_id)
    prompt = _require_prompt(prompt)
    m = ctx.begin()
    candidates = [t for t in m.tasks if t.id >= start and not is_locked(t.status)]
    if not candidates:
        ctx.logger.info(f"No open tasks with ID >= {start} to update.")
        return []

    ctx.logger.info(f"Updating {len(candidates)} tasks from ID {start}...")
    system, user = prompts.update_tasks(candidates, prompt)
    payloads = decode_list(ctx.generate(system, user, research=research), TaskPayload, what="task batch", key="tasks")
    replacements = reconcile_batch(candidates, payloads, instruction=prompt, logger=ctx.logger)

    skipped = [t.id for t in candidates if t.id not in replacements]
    if skipped:
        ctx.logger.warn(f"AI did not return tasks {', '.join(map(str, skipped))}; leaving them unchanged")
    for index, task in enumerate(m.tasks):
        if task.id in replacements:
            m.tasks[index] = replacements[task.id]
    m.commit()
    ctx.logger.success(f"Updated {len(replacements)} tasks")
    return list(replacements.values())


def update_subtask_by_id(
    ctx: MutationContext,
    subtask_id: str,
    prompt: str,
    *,
    research: bool = False,
) -> Subtask:
    """Append AI-generated notes to a subtask's details in a timestamped block."""
    parent_id, sub_id = parse_subtask_id(subtask_id)
    prompt = _require_prompt(prompt)
    m = ctx.begin()
    parent = m.require_task(parent_id)
    if not parent.subtasks:
        raise ValidationError(f"Parent task {parent_id} has no subtasks.")
    subtask = parent.get_subtask(sub_id)
    if subtask is None:
        raise NotFoundError(f"Subtask with ID {parent_id}.{sub_id} not found.")

    system, user = prompts.update_subtask(parent, subtask, prompt)
    payload = decode_model(
        ctx.generate(system, user, research=research), SubtaskNotePayload, what=f"subtask {parent_id}.{sub_id}"
    )
    content = payload.details.strip()
    if content:
        stamp = now_iso()
        block = f"<info added on {stamp}>\n{content}\n</info added on {stamp}>"
        subtask.details = f"{subtask.details}\n{block}" if subtask.details else block
    else:
        ctx.logger.warn("AI response contained no new details. The subtask was not changed.")
        return subtask

    m.commit()
    ctx.logger.success(f"Updated subtask {parent_id}.{sub_id}")
    return subtask


def next_task(ctx: MutationContext) -> Task | None:
    tag = ctx.store.load().tag(ctx.tag)
    found = DependencyGraph(tag.tasks).find_next_task()
    if found is not None:
        ctx.logger.debug(f"Next task: {node_label((found.id, None))} {found.title}")
    return found
