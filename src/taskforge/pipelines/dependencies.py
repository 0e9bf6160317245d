"""Operator-driven dependency edits plus graph validation and repair."""

from __future__ import annotations

from typing import Any

from taskforge.errors import CycleError, NotFoundError, ValidationError
from taskforge.graph import DependencyGraph, FixReport, NodeKey, Violation, node_label, parse_node
from taskforge.pipelines.context import Mutation, MutationContext


def _require_node(m: Mutation, graph: DependencyGraph, raw: Any, role: str) -> NodeKey:
    key = parse_node(raw)
    if key not in graph:
        if key[1] is not None and m.tag.get_task(key[0]) is None:
            raise NotFoundError(f"Parent task {key[0]} not found")
        raise NotFoundError(f"{role} {node_label(key)} not found")
    return key


def add_dependency(ctx: MutationContext, task_id: Any, dependency_id: Any) -> bool:
    """Make *task_id* depend on *dependency_id*. Returns False if it already did."""
    m = ctx.begin()
    graph = m.graph()
    owner = _require_node(m, graph, task_id, "Task")
    target = _require_node(m, graph, dependency_id, "Dependency target")
    label, dep_label = node_label(owner), node_label(target)

    if owner == target:
        raise ValidationError(f"Task {label} cannot depend on itself")
    node = graph.node(owner)
    if owner[1] is not None and target == (owner[0], None):
        ctx.logger.warn(f"Subtask {label} already depends on its parent task {dep_label}")
        return False
    if any(graph.resolve(owner, d) == target for d in node.dependencies):
        ctx.logger.warn(f"Dependency {dep_label} already exists in task {label}")
        return False
    if graph.would_cycle(owner, target):
        raise CycleError(f"Adding dependency {dep_label} to {label} would create a circular dependency")

    entry = graph.to_dep(owner, target)
    if graph.resolve(owner, entry) != target:
        # a bare int on a subtask names a sibling before a task
        raise ValidationError(
            f"Cannot reference task {dep_label} from {label}: subtask {owner[0]}.{target[0]} shadows it"
        )
    node.dependencies.append(entry)
    m.commit()
    ctx.logger.success(f"Added dependency {dep_label} to task {label}")
    return True


def remove_dependency(ctx: MutationContext, task_id: Any, dependency_id: Any) -> bool:
    """Drop *dependency_id* from *task_id*. Returns False when there was nothing to remove."""
    m = ctx.begin()
    graph = m.graph()
    owner = _require_node(m, graph, task_id, "Task")
    target = parse_node(dependency_id)
    label = node_label(owner)

    node = graph.node(owner)
    if not node.dependencies:
        ctx.logger.info(f"Task {label} has no dependencies, nothing to remove")
        return False
    kept = [d for d in node.dependencies if graph.resolve(owner, d) != target]
    if len(kept) == len(node.dependencies):
        ctx.logger.info(f"Task {label} does not depend on {node_label(target)}, no changes made")
        return False
    node.dependencies = kept
    m.commit()
    ctx.logger.success(f"Removed dependency: task {label} no longer depends on {node_label(target)}")
    return True


def validate_dependencies(ctx: MutationContext) -> list[Violation]:
    """Report self, dangling and circular dependencies without changing anything."""
    tag = ctx.store.load().tag(ctx.tag)
    violations = DependencyGraph(tag.tasks).validate()
    if not violations:
        ctx.logger.success("All dependencies are valid")
        return []
    for violation in violations:
        ctx.logger.error(violation.message)
    ctx.logger.warn(f"Found {len(violations)} dependency issue(s). Run fix-dependencies to repair them.")
    return violations


def fix_dependencies(ctx: MutationContext) -> FixReport:
    """Strip duplicate, dangling and self references. Cycles are reported, never broken."""
    m = ctx.begin()
    report = m.graph().fix()
    for change in report.changes:
        ctx.logger.info(change)
    for cycle in report.cycles:
        ctx.logger.warn(f"Circular dependency left in place: {' -> '.join(node_label(k) for k in cycle)}")

    if report.changed:
        m.commit()
        total = report.duplicates_removed + report.missing_removed + report.self_removed
        ctx.logger.success(f"Fixed {total} dependency issue(s)")
    else:
        ctx.logger.info("No changes needed to fix dependencies")
    return report
