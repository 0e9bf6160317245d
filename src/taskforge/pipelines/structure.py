"""Structural edits: remove, add and move tasks/subtasks, promote and demote."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from taskforge.errors import CycleError, NotFoundError, TaskforgeError, ValidationError
from taskforge.graph import NodeKey, node_label, parse_node
from taskforge.pipelines.context import Mutation, MutationContext
from taskforge.tasks.model import (
    DepId,
    Subtask,
    Task,
    normalize_dep,
    parse_subtask_id,
    parse_task_id,
    split_ids,
    validate_status,
)


@dataclass
class RemovalResult:
    removed: list[str] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return not self.errors


def remove_task(ctx: MutationContext, ids: str) -> RemovalResult:
    """Remove tasks (``"5"``) and/or subtasks (``"5.2"``), comma-separated.

    Every dependency entry pointing at a removed item is pruned. A single id
    fails fast; with several ids, per-item errors are collected and the rest
    are still removed.
    """
    items = split_ids(ids)
    if not items:
        raise ValidationError("At least one task ID is required")
    m = ctx.begin()
    graph = m.graph()
    result = RemovalResult()
    for raw in items:
        try:
            key = parse_node(raw)
            if key not in graph:
                kind = "Task" if key[1] is None else "Subtask"
                raise NotFoundError(f"{kind} {raw} not found")
            graph.remove(key)
        except TaskforgeError as exc:
            if len(items) == 1:
                raise
            result.errors.append(f"{raw}: {exc.message}")
            ctx.logger.error(f"Failed to remove {raw}: {exc.message}")
        else:
            result.removed.append(node_label(key))
            ctx.logger.info(f"Removed {'task' if key[1] is None else 'subtask'} {raw}")

    if result.removed:
        m.commit()
        ctx.logger.success(f"Removed {len(result.removed)} item(s): {', '.join(result.removed)}")
    return result


def remove_subtask(ctx: MutationContext, subtask_id: str, *, convert: bool = False) -> Task | None:
    """Remove a subtask, or promote it to a standalone task when *convert* is set.

    A promoted task inherits the parent's priority and depends on the parent.
    Every reference to the subtask, including those from its former
    siblings, is redirected to the new task.
    """
    parent_id, sub_id = parse_subtask_id(subtask_id)
    m = ctx.begin()
    parent = m.require_task(parent_id)
    if not parent.subtasks:
        raise ValidationError(f"Parent task {parent_id} has no subtasks")
    subtask = parent.get_subtask(sub_id)
    if subtask is None:
        raise NotFoundError(f"Subtask {parent_id}.{sub_id} not found")

    graph = m.graph()
    old: NodeKey = (parent_id, sub_id)
    if not convert:
        graph.remove(old)
        m.commit()
        ctx.logger.success(f"Removed subtask {parent_id}.{sub_id}")
        return None

    new_id = m.tag.next_task_id()
    new: NodeKey = (new_id, None)
    deps = graph.rebase(subtask.dependencies, old, new)
    if parent_id not in deps:
        deps.append(parent_id)
    task = Task(
        id=new_id,
        title=subtask.title,
        description=subtask.description,
        details=subtask.details,
        test_strategy=subtask.test_strategy,
        status=subtask.status,
        priority=parent.priority or "medium",
        dependencies=deps,
    )

    m.tasks.append(task)
    graph.rebuild()
    graph.retarget(old, new)
    parent.subtasks.remove(subtask)
    m.commit()
    ctx.logger.success(f"Converted subtask {parent_id}.{sub_id} to task {new_id}")
    return task


def add_subtask(
    ctx: MutationContext,
    parent_id: Any,
    *,
    existing_task_id: Any = None,
    data: dict[str, Any] | None = None,
) -> Subtask:
    """Add a new subtask from *data*, or demote an existing task into one.

    Demotion is refused with :class:`CycleError` when either task depends,
    directly or transitively, on the other.
    """
    pid = parse_task_id(parent_id)
    m = ctx.begin()
    parent = m.require_task(pid)
    graph = m.graph()
    new_sub_id = parent.next_subtask_id()
    new_key: NodeKey = (pid, new_sub_id)

    if existing_task_id is not None:
        eid = parse_task_id(existing_task_id)
        if eid == pid:
            raise ValidationError("Cannot make a task a subtask of itself")
        existing = m.tag.get_task(eid)
        if existing is None:
            raise NotFoundError(f"Task with ID {eid} not found")
        if existing.subtasks:
            raise ValidationError(f"Task {eid} has its own subtasks and cannot become a subtask")
        if graph.is_dependent_on((pid, None), (eid, None)) or graph.is_dependent_on((eid, None), (pid, None)):
            raise CycleError(f"Cannot create circular dependency: tasks {pid} and {eid} depend on each other")

        subtask = Subtask(
            id=new_sub_id,
            title=existing.title,
            description=existing.description,
            details=existing.details,
            status=existing.status,
            test_strategy=existing.test_strategy,
        )
        parent.subtasks.append(subtask)
        graph.rebuild()
        subtask.dependencies = graph.rebase(existing.dependencies, (eid, None), new_key)
        graph.retarget((eid, None), new_key)
        m.tasks.remove(existing)
        m.commit()
        ctx.logger.success(f"Converted task {eid} to subtask {pid}.{new_sub_id}")
        return subtask

    data = data or {}
    title = str(data.get("title", "") or "").strip()
    if not title:
        raise ValidationError("A title is required to create a new subtask")
    subtask = Subtask(
        id=new_sub_id,
        title=title,
        description=str(data.get("description", "") or ""),
        details=str(data.get("details", "") or ""),
        status=validate_status(str(data.get("status") or "pending")),
        test_strategy=str(data.get("testStrategy", "") or ""),
    )
    parent.subtasks.append(subtask)
    graph.rebuild()

    deps: list[DepId] = []
    for raw in data.get("dependencies", []) or []:
        dep = normalize_dep(raw)
        target = graph.resolve(new_key, dep)
        if target is None:
            ctx.logger.warn(f"Dependency {raw} does not exist; skipping it")
            continue
        if graph.would_cycle(new_key, target):
            raise CycleError(f"Dependency {raw} would make subtask {pid}.{new_sub_id} circular")
        if dep not in deps:
            deps.append(dep)
    subtask.dependencies = deps

    m.commit()
    ctx.logger.success(f"Added subtask {pid}.{new_sub_id}: {title}")
    return subtask


# ── move ─────────────────────────────────────────────────────────────


@dataclass
class MoveResult:
    moves: list[tuple[str, str]] = field(default_factory=list)


def _move_key(raw: str) -> NodeKey:
    if "." in raw:
        return parse_subtask_id(raw)
    return (parse_task_id(raw), None)


def _kind(key: NodeKey) -> str:
    return "Task" if key[1] is None else "Subtask"


def _insert_by_id(items: list[Any], item: Any) -> None:
    index = next((i for i, other in enumerate(items) if other.id > item.id), len(items))
    items.insert(index, item)


def _move(m: Mutation, source: NodeKey, dest: NodeKey) -> None:
    graph = m.graph()
    if source not in graph:
        m.require_task(source[0])
        raise NotFoundError(f"{_kind(source)} {node_label(source)} not found")
    if dest in graph:
        raise ValidationError(f"{_kind(dest)} {node_label(dest)} already exists. Use a different destination ID.")
    node = graph.node(source)
    if dest[1] is not None:
        new_parent = m.require_task(dest[0])
        if source[1] is None:
            if dest[0] == source[0]:
                raise ValidationError("Cannot make a task a subtask of itself")
            if node.subtasks:  # type: ignore[union-attr]
                raise ValidationError(f"Task {source[0]} has its own subtasks and cannot become a subtask")

    captured = graph.capture()
    moved: dict[NodeKey, NodeKey] = {source: dest}

    if source[1] is None:
        task: Task = node  # type: ignore[assignment]
        m.tasks.remove(task)
        if dest[1] is None:
            moved.update({(source[0], s.id): (dest[0], s.id) for s in task.subtasks})
            task.id = dest[0]
            _insert_by_id(m.tasks, task)
        else:
            _insert_by_id(
                new_parent.subtasks,
                Subtask(
                    id=dest[1],
                    title=task.title,
                    description=task.description,
                    details=task.details,
                    status=task.status,
                    test_strategy=task.test_strategy,
                ),
            )
    else:
        subtask: Subtask = node  # type: ignore[assignment]
        old_parent = m.require_task(source[0])
        old_parent.subtasks.remove(subtask)
        if dest[1] is None:
            # a promoted subtask still comes after its former parent
            parent_key: NodeKey = (source[0], None)
            if all(target != parent_key for _, target in captured[source]):
                captured[source].append((source[0], parent_key))
            _insert_by_id(
                m.tasks,
                Task(
                    id=dest[0],
                    title=subtask.title,
                    description=subtask.description,
                    details=subtask.details,
                    test_strategy=subtask.test_strategy,
                    status=subtask.status,
                    priority=old_parent.priority or "medium",
                ),
            )
        else:
            subtask.id = dest[1]
            _insert_by_id(new_parent.subtasks, subtask)

    graph.relink(captured, moved)
    m.rekey(moved)


def move_task(ctx: MutationContext, from_ids: str, to_ids: str) -> MoveResult:
    """Move tasks or subtasks to free ids; comma-separated pairs apply in order.

    ``5 -> 9`` renumbers a task along with its subtasks, ``5.2 -> 9`` promotes
    a subtask, ``5 -> 7.3`` demotes a task and ``5.2 -> 7.3`` moves a subtask,
    within its parent or to another one. Every dependency on a moved node
    follows it. Either all pairs are applied or nothing is written.
    """
    sources, destinations = split_ids(from_ids), split_ids(to_ids)
    if not sources:
        raise ValidationError("At least one source ID is required")
    if len(sources) != len(destinations):
        raise ValidationError(
            f"Number of source IDs ({len(sources)}) must match number of destination IDs ({len(destinations)})"
        )

    m = ctx.begin()
    result = MoveResult()
    for raw_from, raw_to in zip(sources, destinations):
        source, dest = _move_key(raw_from), _move_key(raw_to)
        if source == dest:
            raise ValidationError(f"Cannot move {raw_from} onto itself")
        _move(m, source, dest)
        result.moves.append((node_label(source), node_label(dest)))
        ctx.logger.info(f"Moved {_kind(source).lower()} {node_label(source)} to {node_label(dest)}")

    m.commit()
    ctx.logger.success(f"Moved {len(result.moves)} item(s)")
    return result
