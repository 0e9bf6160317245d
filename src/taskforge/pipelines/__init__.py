"""Mutation pipelines: each loads the tag, edits it in memory and writes once."""

from taskforge.pipelines.context import Mutation, MutationContext
from taskforge.pipelines.dependencies import (
    add_dependency,
    fix_dependencies,
    remove_dependency,
    validate_dependencies,
)
from taskforge.pipelines.expand import ExpandAllResult, clear_subtasks, expand_all_tasks, expand_task
from taskforge.pipelines.prd import parse_prd
from taskforge.pipelines.status import StatusChange, StatusResult, set_task_status
from taskforge.pipelines.structure import MoveResult, RemovalResult, add_subtask, move_task, remove_subtask, remove_task
from taskforge.pipelines.tasks import add_task, next_task, update_subtask_by_id, update_task_by_id, update_tasks

__all__ = [
    "ExpandAllResult",
    "MoveResult",
    "Mutation",
    "MutationContext",
    "RemovalResult",
    "StatusChange",
    "StatusResult",
    "add_dependency",
    "add_subtask",
    "add_task",
    "clear_subtasks",
    "expand_all_tasks",
    "expand_task",
    "fix_dependencies",
    "move_task",
    "next_task",
    "parse_prd",
    "remove_dependency",
    "remove_subtask",
    "remove_task",
    "set_task_status",
    "update_subtask_by_id",
    "update_task_by_id",
    "update_tasks",
    "validate_dependencies",
]
