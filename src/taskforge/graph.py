"""Dependency graph over one tag's tasks: validation, repair and cycle checks.

The graph is an arena index. Tasks are keyed ``(task_id, None)`` and subtasks
``(parent_id, subtask_id)``; the Task/Subtask objects themselves carry no
parent back-references. Edges are:

* dependency edges, from a node to every entry of its ``dependencies`` list;
* containment edges, from each subtask to its parent task (a subtask depends
  on the task it belongs to).

An integer dependency on a subtask resolves to a sibling subtask when one with
that id exists, otherwise to a task. ``"P.S"`` strings always name subtask S of
task P.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum

from taskforge.errors import ValidationError
from taskforge.tasks.model import DepId, Subtask, Task, is_locked, normalize_dep

NodeKey = tuple[int, int | None]

_PRIORITY_RANK = {"high": 3, "medium": 2, "low": 1}


def node_label(key: NodeKey) -> str:
    task_id, sub_id = key
    return str(task_id) if sub_id is None else f"{task_id}.{sub_id}"


def parse_node(raw: DepId) -> NodeKey:
    """``5`` or ``"5"`` -> ``(5, None)``; ``"5.2"`` -> ``(5, 2)``."""
    dep = normalize_dep(raw)
    if isinstance(dep, int):
        return (dep, None)
    parent, sub = dep.split(".")
    return (int(parent), int(sub))


class ViolationKind(str, Enum):
    SELF = "self"
    MISSING = "missing"
    CIRCULAR = "circular"


@dataclass
class Violation:
    kind: ViolationKind
    node: NodeKey
    dependency: DepId | None = None

    @property
    def message(self) -> str:
        label = node_label(self.node)
        match self.kind:
            case ViolationKind.SELF:
                return f"{label} depends on itself"
            case ViolationKind.MISSING:
                return f"{label} depends on non-existent {self.dependency}"
            case _:
                return f"{label} is part of a circular dependency chain"


@dataclass
class FixReport:
    duplicates_removed: int = 0
    missing_removed: int = 0
    self_removed: int = 0
    cycles: list[list[NodeKey]] = field(default_factory=list)
    changes: list[str] = field(default_factory=list)

    @property
    def changed(self) -> bool:
        return bool(self.duplicates_removed or self.missing_removed or self.self_removed)


class DependencyGraph:
    """Index over *tasks*. Mutating helpers edit the Task objects in place.

    Usage::

        graph = DependencyGraph(tag.tasks)
        graph.validate()                         # -> [Violation, ...]
        graph.is_dependent_on((7, None), (4, None))
        graph.remove((3, None))                  # prune refs, then detach
    """

    def __init__(self, tasks: list[Task]) -> None:
        self.tasks = tasks
        self._nodes: dict[NodeKey, Task | Subtask] = {}
        self.rebuild()

    def rebuild(self) -> None:
        """Re-index after tasks or subtasks were added or removed."""
        self._nodes = {}
        for task in self.tasks:
            self._nodes[(task.id, None)] = task
            for sub in task.subtasks:
                self._nodes[(task.id, sub.id)] = sub

    # ── lookup ───────────────────────────────────────────────────

    def __contains__(self, key: object) -> bool:
        return key in self._nodes

    def keys(self) -> list[NodeKey]:
        return list(self._nodes)

    def node(self, key: NodeKey) -> Task | Subtask | None:
        return self._nodes.get(key)

    def resolve(self, owner: NodeKey, dep: DepId) -> NodeKey | None:
        """Return the node *dep* refers to from *owner*, or ``None`` if dangling."""
        try:
            target = parse_node(dep)
        except ValidationError:
            return None
        if target[1] is None and owner[1] is not None:
            sibling = (owner[0], target[0])
            if sibling in self._nodes:
                return sibling
        return target if target in self._nodes else None

    def to_dep(self, owner: NodeKey, target: NodeKey) -> DepId:
        """Express *target* as a dependency entry written on *owner*."""
        task_id, sub_id = target
        if sub_id is None:
            return task_id
        if owner[1] is not None and owner[0] == task_id:
            return sub_id
        return f"{task_id}.{sub_id}"

    def edges(self, key: NodeKey) -> list[NodeKey]:
        node = self._nodes.get(key)
        if node is None:
            return []
        out: list[NodeKey] = []
        for dep in node.dependencies:
            target = self.resolve(key, dep)
            if target is not None:
                out.append(target)
        if key[1] is not None:
            out.append((key[0], None))
        return out

    # ── dependency queries ───────────────────────────────────────

    def is_dependent_on(self, key: NodeKey, target: NodeKey) -> bool:
        """Whether *target* is reachable from *key* through any edge."""
        seen: set[NodeKey] = set()
        stack = list(self.edges(key))
        while stack:
            current = stack.pop()
            if current == target:
                return True
            if current in seen:
                continue
            seen.add(current)
            stack.extend(self.edges(current))
        return False

    def would_cycle(self, source: NodeKey, dependency: NodeKey) -> bool:
        """Whether adding the edge ``source -> dependency`` closes a cycle."""
        return source == dependency or self.is_dependent_on(dependency, source)

    def find_cycles(self) -> list[list[NodeKey]]:
        """Strongly connected components that contain a cycle (size > 1)."""
        index: dict[NodeKey, int] = {}
        low: dict[NodeKey, int] = {}
        on_stack: set[NodeKey] = set()
        stack: list[NodeKey] = []
        cycles: list[list[NodeKey]] = []
        counter = 0

        def visit(v: NodeKey) -> None:
            nonlocal counter
            index[v] = low[v] = counter
            counter += 1
            stack.append(v)
            on_stack.add(v)
            for w in self.edges(v):
                if w not in index:
                    visit(w)
                    low[v] = min(low[v], low[w])
                elif w in on_stack:
                    low[v] = min(low[v], index[w])
            if low[v] == index[v]:
                component: list[NodeKey] = []
                while True:
                    w = stack.pop()
                    on_stack.discard(w)
                    component.append(w)
                    if w == v:
                        break
                if len(component) > 1:
                    cycles.append(sorted(component, key=lambda k: (k[0], k[1] or 0)))

        for key in self._nodes:
            if key not in index:
                visit(key)
        return cycles

    # ── validation / repair ──────────────────────────────────────

    def validate(self) -> list[Violation]:
        violations: list[Violation] = []
        for key, node in self._nodes.items():
            for dep in node.dependencies:
                target = self.resolve(key, dep)
                if target is None:
                    violations.append(Violation(ViolationKind.MISSING, key, dep))
                elif target == key:
                    violations.append(Violation(ViolationKind.SELF, key, dep))
        for cycle in self.find_cycles():
            violations.extend(Violation(ViolationKind.CIRCULAR, key) for key in cycle)
        return violations

    def fix(self) -> FixReport:
        """Strip duplicate, dangling and self references. Cycles are only reported."""
        report = FixReport()
        for key, node in self._nodes.items():
            kept: list[DepId] = []
            seen: set[NodeKey] = set()
            for dep in node.dependencies:
                target = self.resolve(key, dep)
                label = node_label(key)
                if target is None:
                    report.missing_removed += 1
                    report.changes.append(f"Removed missing dependency {dep} from {label}")
                elif target == key:
                    report.self_removed += 1
                    report.changes.append(f"Removed self-dependency from {label}")
                elif target in seen:
                    report.duplicates_removed += 1
                    report.changes.append(f"Removed duplicate dependency {dep} from {label}")
                else:
                    seen.add(target)
                    kept.append(dep)
            node.dependencies = kept
        report.cycles = self.find_cycles()
        return report

    # ── structural edits ─────────────────────────────────────────

    def prune_references(self, removed: set[NodeKey]) -> int:
        """Drop every dependency entry that resolves into *removed*."""
        pruned = 0
        for key, node in self._nodes.items():
            if key in removed:
                continue
            kept = [d for d in node.dependencies if self.resolve(key, d) not in removed]
            pruned += len(node.dependencies) - len(kept)
            node.dependencies = kept
        return pruned

    def remove(self, key: NodeKey) -> Task | Subtask:
        """Detach a task (with its subtasks) or a subtask, pruning references to it."""
        node = self._nodes.get(key)
        if node is None:
            raise KeyError(node_label(key))
        removed = {key}
        if key[1] is None:
            removed.update((key[0], s.id) for s in node.subtasks)  # type: ignore[union-attr]
        self.prune_references(removed)
        if key[1] is None:
            self.tasks.remove(node)  # type: ignore[arg-type]
        else:
            parent = self._nodes[(key[0], None)]
            parent.subtasks.remove(node)  # type: ignore[union-attr, arg-type]
        self.rebuild()
        return node

    def retarget(self, old: NodeKey, new: NodeKey) -> int:
        """Point every reference at *old* to *new*; both must be indexed."""
        moved = 0
        for key, node in self._nodes.items():
            if key in (old, new):
                continue
            rewritten: list[DepId] = []
            for dep in node.dependencies:
                if self.resolve(key, dep) == old:
                    dep = self.to_dep(key, new)
                    moved += 1
                if dep not in rewritten:
                    rewritten.append(dep)
            node.dependencies = rewritten
        return moved

    def rebase(self, deps: list[DepId], old_owner: NodeKey, new_owner: NodeKey) -> list[DepId]:
        """Re-express *deps* written on *old_owner* as entries for *new_owner*."""
        out: list[DepId] = []
        for dep in deps:
            target = self.resolve(old_owner, dep)
            if target is None or target == new_owner:
                continue
            rebased = self.to_dep(new_owner, target)
            if rebased not in out:
                out.append(rebased)
        return out

    def capture(self) -> dict[NodeKey, list[tuple[DepId, NodeKey | None]]]:
        """Every node's dependency entries paired with the node each one resolves to."""
        return {
            key: [(dep, self.resolve(key, dep)) for dep in node.dependencies]
            for key, node in self._nodes.items()
        }

    def relink(self, captured: dict[NodeKey, list[tuple[DepId, NodeKey | None]]], moved: dict[NodeKey, NodeKey]) -> None:
        """Re-express *captured* entries after nodes were re-keyed as *moved* (old -> new).

        Call after the tasks were restructured. Dangling entries are kept as
        they were; a moved subtask's entry on its new parent is dropped since
        containment already implies it. Raises :class:`ValidationError` when a
        task can no longer be named because a sibling subtask shadows it.
        """
        self.rebuild()
        previous = {new: old for old, new in moved.items()}
        for key, node in self._nodes.items():
            entries = captured.get(previous.get(key, key))
            if entries is None:
                continue
            rewritten: list[DepId] = []
            for dep, target in entries:
                if target is None:
                    rewritten.append(dep)
                    continue
                target = moved.get(target, target)
                if key in previous and key[1] is not None and target == (key[0], None):
                    continue
                entry = dep if self.resolve(key, dep) == target else self.to_dep(key, target)
                if self.resolve(key, entry) != target:
                    raise ValidationError(
                        f"{node_label(key)} can no longer reference task {node_label(target)}: "
                        f"subtask {key[0]}.{target[0]} shadows it"
                    )
                if entry not in rewritten:
                    rewritten.append(entry)
            node.dependencies = rewritten

    # ── scheduling ───────────────────────────────────────────────

    def deps_satisfied(self, key: NodeKey) -> bool:
        node = self._nodes.get(key)
        if node is None:
            return False
        for dep in node.dependencies:
            target = self.resolve(key, dep)
            if target is None:
                continue
            if not is_locked(self._nodes[target].status):
                return False
        return True

    def find_next_task(self) -> Task | None:
        """Pending or in-progress task with every dependency done.

        Ordered by priority, then fewer dependencies, then lower id.
        """
        eligible = [
            t for t in self.tasks
            if t.status in ("pending", "in-progress") and self.deps_satisfied((t.id, None))
        ]
        if not eligible:
            return None
        eligible.sort(key=lambda t: (-_PRIORITY_RANK.get(t.priority, 2), len(t.dependencies), t.id))
        return eligible[0]
