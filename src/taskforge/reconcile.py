"""Merge AI-proposed rewrites into existing tasks without losing completed work.

Rules for a task rewrite, applied in order:

1. the title is kept,
2. the id is kept,
3. task and subtask statuses are kept unless the operator's instruction
   mentions "status"; new subtasks start pending,
4. done/completed subtasks are locked: re-inserted when dropped, restored
   when edited (a proposal that drops every subtask restores all of them),
5. subtasks are de-duplicated by id, first occurrence wins.

Batch rewrites apply the same rules per task matched by id; tasks the model
did not echo back are not touched.
"""

from __future__ import annotations

import copy

from taskforge.errors import ReconciliationError, ValidationError
from taskforge.log import Logger
from taskforge.schemas import GeneratedSubtask, SubtaskPayload, TaskPayload
from taskforge.tasks.model import (
    PRIORITIES,
    STATUS_VALUES,
    DepId,
    Subtask,
    Task,
    TaskStatus,
    is_locked,
    normalize_dep,
)

LOCKED_FIELDS = ("title", "description", "details", "status")


def mentions_status(instruction: str) -> bool:
    return "status" in (instruction or "").lower()


def _deps(raw: list[int | str], owner: str, logger: Logger) -> list[DepId]:
    out: list[DepId] = []
    for entry in raw:
        try:
            dep = normalize_dep(entry)
        except ValidationError:
            logger.warn(f"Ignoring malformed dependency {entry!r} proposed for {owner}")
            continue
        if dep not in out:
            out.append(dep)
    return out


def _subtask(payload: SubtaskPayload, parent_id: int, logger: Logger) -> Subtask:
    return Subtask(
        id=payload.id,
        title=payload.title,
        description=payload.description,
        details=payload.details,
        status=payload.status,
        dependencies=_deps(payload.dependencies, f"{parent_id}.{payload.id}", logger),
        test_strategy=payload.test_strategy,
    )


def _differs(a: Subtask, b: Subtask) -> bool:
    return any(getattr(a, name) != getattr(b, name) for name in LOCKED_FIELDS)


def dedupe_subtasks(subtasks: list[Subtask]) -> list[Subtask]:
    seen: set[int] = set()
    out: list[Subtask] = []
    for sub in subtasks:
        if sub.id in seen:
            continue
        seen.add(sub.id)
        out.append(sub)
    return out


def reconcile_subtasks(
    parent_id: int,
    original: list[Subtask],
    proposed: list[SubtaskPayload] | None,
    logger: Logger,
    *,
    instruction: str = "",
) -> list[Subtask]:
    if not proposed:
        if original:
            logger.warn(f"AI removed all subtasks of task {parent_id}; restoring the original subtasks")
        return copy.deepcopy(original)

    merged = [_subtask(p, parent_id, logger) for p in proposed]
    if not mentions_status(instruction):
        previous = {s.id: s.status for s in original}
        for sub in merged:
            status = previous.get(sub.id, TaskStatus.PENDING.value)
            if sub.status != status and not is_locked(status):
                logger.debug(f"Keeping status {status} of subtask {parent_id}.{sub.id}")
                sub.status = status

    for position, locked in enumerate(original):
        if not is_locked(locked.status):
            continue
        index = next((i for i, s in enumerate(merged) if s.id == locked.id), None)
        if index is None:
            logger.warn(f"Restoring completed subtask {parent_id}.{locked.id} dropped by the AI")
            merged.insert(min(position, len(merged)), copy.deepcopy(locked))
        elif _differs(merged[index], locked):
            logger.warn(f"Discarding AI edits to completed subtask {parent_id}.{locked.id}")
            merged[index] = copy.deepcopy(locked)

    deduped = dedupe_subtasks(merged)
    if len(deduped) != len(merged):
        logger.warn(f"Removed {len(merged) - len(deduped)} duplicate subtask(s) from task {parent_id}")
    return deduped


def reconcile_task(existing: Task, proposed: TaskPayload, *, instruction: str, logger: Logger) -> Task:
    """Return a new Task built from *proposed* under the reconciliation rules."""
    if proposed.id != existing.id:
        logger.warn(f"AI changed the id of task {existing.id} to {proposed.id}; keeping {existing.id}")
    if proposed.title != existing.title:
        logger.debug(f"Keeping original title of task {existing.id}")

    status = existing.status
    if mentions_status(instruction):
        if proposed.status in STATUS_VALUES:
            status = proposed.status
        else:
            logger.warn(f"AI proposed invalid status {proposed.status!r} for task {existing.id}; keeping {status}")

    priority = proposed.priority if proposed.priority in PRIORITIES else existing.priority

    return Task(
        id=existing.id,
        title=existing.title,
        description=proposed.description,
        details=proposed.details if proposed.details is not None else existing.details,
        test_strategy=proposed.test_strategy if proposed.test_strategy is not None else existing.test_strategy,
        status=status,
        priority=priority,
        dependencies=_deps(proposed.dependencies, str(existing.id), logger),
        subtasks=reconcile_subtasks(
            existing.id, existing.subtasks, proposed.subtasks, logger, instruction=instruction
        ),
    )


def reconcile_batch(
    existing: list[Task],
    proposed: list[TaskPayload],
    *,
    instruction: str,
    logger: Logger,
) -> dict[int, Task]:
    """Reconcile every echoed task. Returns replacements keyed by task id."""
    by_id = {t.id: t for t in existing}
    out: dict[int, Task] = {}
    for payload in proposed:
        original = by_id.get(payload.id)
        if original is None:
            logger.warn(f"AI returned task {payload.id}, which was not part of the update; ignoring it")
            continue
        if payload.id in out:
            logger.warn(f"AI returned task {payload.id} more than once; keeping the first")
            continue
        out[payload.id] = reconcile_task(original, payload, instruction=instruction, logger=logger)
    return out


def reconcile_generated_subtasks(
    items: list[GeneratedSubtask],
    *,
    start_id: int,
    count: int,
    logger: Logger,
) -> list[Subtask]:
    """Turn validated expansion output into sequentially numbered pending subtasks."""
    out: list[Subtask] = []
    for item in items:
        expected = start_id + len(out)
        if item.id != expected:
            logger.warn(f"Correcting subtask id {item.id} to {expected}")
        deps: list[DepId] = []
        for dep in item.dependencies:
            if start_id <= dep < expected and dep not in deps:
                deps.append(dep)
        out.append(
            Subtask(
                id=expected,
                title=item.title.strip(),
                description=item.description.strip(),
                details=item.details.strip(),
                status=TaskStatus.PENDING.value,
                dependencies=deps,
                test_strategy=(item.test_strategy or "").strip(),
            )
        )

    if not out:
        raise ReconciliationError("AI response contained no valid subtasks")
    if len(out) > count:
        logger.warn(f"AI generated {len(out)} subtasks, expected {count}; keeping the first {count}")
        out = out[:count]
    return out
