"""taskforge CLI.

Installed as the ``taskforge`` console_script. Every command builds a
:class:`MutationContext` for the project and calls one pipeline; errors are
printed through the logger and exit with status 1.
"""

from __future__ import annotations

import sys
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import click
from rich.table import Table

from taskforge import __version__, log
from taskforge import pipelines as pl
from taskforge.config import load_config, resolve_project_root
from taskforge.errors import TaskforgeError
from taskforge.pipelines import MutationContext
from taskforge.tags import TagContext
from taskforge.tasks.model import STATUS_VALUES, is_locked, split_ids
from taskforge.tasks.store import TaskStore

CONTEXT_SETTINGS = dict(help_option_names=["-h", "--help"])

_STATUS_STYLE = {
    "done": "green",
    "completed": "green",
    "in-progress": "cyan",
    "review": "magenta",
    "blocked": "red",
    "deferred": "dim",
    "cancelled": "dim",
}


@dataclass
class _CliState:
    tag: str | None
    project_root: Path | None
    verbose: bool

    def root(self) -> Path:
        return self.project_root or resolve_project_root()

    def mutation_context(self) -> MutationContext:
        root = self.root()
        return MutationContext.for_project(root, config=load_config(root, verbose=self.verbose), tag=self.tag)

    def tag_context(self) -> TagContext:
        root = self.root()
        config = load_config(root, verbose=self.verbose)
        return TagContext(TaskStore(config.tasks_path(root)), config.state_path(root), project_root=root)


class _DebugProgress:
    """Progress sink that reports through the debug log."""

    def __init__(self) -> None:
        self._last = -1

    def report(self, *, progress: float, **extra: Any) -> None:
        step = int(progress) // 25
        if step != self._last:
            self._last = step
            details = ", ".join(f"{k}={v}" for k, v in extra.items())
            log.debug(f"Progress {progress:.0f}%" + (f" ({details})" if details else ""))


@contextmanager
def _errors_exit() -> Iterator[None]:
    try:
        yield
    except TaskforgeError as exc:
        log.error(exc.message)
        sys.exit(1)


def _state(ctx: click.Context) -> _CliState:
    return ctx.find_object(_CliState)


def _pipeline_context(ctx: click.Context) -> MutationContext:
    mctx = _state(ctx).mutation_context()
    mctx.progress = _DebugProgress()
    return mctx


# ── Group ────────────────────────────────────────────────────────────


@click.group(context_settings=CONTEXT_SETTINGS)
@click.option("--tag", default=None, help="Tag to operate on (default: the active tag)")
@click.option(
    "--project-root",
    type=click.Path(file_okay=False, path_type=Path),
    default=None,
    help="Project root (default: git root or current directory)",
)
@click.option("-v", "--verbose", is_flag=True, help="Show debug output")
@click.version_option(__version__, prog_name="taskforge")
@click.pass_context
def main(ctx: click.Context, tag: str | None, project_root: Path | None, verbose: bool) -> None:
    """taskforge - AI-assisted task graph manager.

    \b
    EXAMPLES:
      taskforge parse-prd docs/prd.md --num-tasks 8
      taskforge expand 3 --num 5
      taskforge set-status 3.1,3.2 done
      taskforge --tag feature-x list
    """
    log.set_verbose(verbose)
    ctx.obj = _CliState(tag=tag, project_root=project_root, verbose=verbose)


# ── Reading ──────────────────────────────────────────────────────────


@main.command("list")
@click.option("--status", "status_filter", default="", help="Only show tasks with these statuses (comma-separated)")
@click.option("--with-subtasks", is_flag=True, help="Show subtasks under each task")
@click.pass_context
def list_cmd(ctx: click.Context, status_filter: str, with_subtasks: bool) -> None:
    """List the tasks of the current tag."""
    with _errors_exit():
        mctx = _state(ctx).mutation_context()
        tag = mctx.store.load().tag(mctx.tag)
    wanted = set(split_ids(status_filter))

    table = Table(title=f"Tag: {tag.name}")
    table.add_column("ID", justify="right")
    table.add_column("Title")
    table.add_column("Status")
    table.add_column("Priority")
    table.add_column("Dependencies")
    for task in tag.tasks:
        if wanted and task.status not in wanted:
            continue
        style = _STATUS_STYLE.get(task.status, "yellow")
        deps = ", ".join(str(d) for d in task.dependencies) or "-"
        table.add_row(str(task.id), task.title, f"[{style}]{task.status}[/{style}]", task.priority, deps)
        if with_subtasks:
            for sub in task.subtasks:
                sub_style = _STATUS_STYLE.get(sub.status, "yellow")
                sub_deps = ", ".join(str(d) for d in sub.dependencies) or "-"
                table.add_row(
                    f"{task.id}.{sub.id}", f"  {sub.title}", f"[{sub_style}]{sub.status}[/{sub_style}]", "", sub_deps
                )
    log.console.print(table)

    done = sum(1 for t in tag.tasks if is_locked(t.status))
    log.console.print(f"[dim]{done}/{len(tag.tasks)} tasks done[/dim]")


@main.command("next")
@click.pass_context
def next_cmd(ctx: click.Context) -> None:
    """Show the next task to work on."""
    with _errors_exit():
        task = pl.next_task(_state(ctx).mutation_context())
    if task is None:
        log.info("No eligible task: everything is done or blocked by dependencies.")
        return
    log.console.print(f"[bold]Next task {task.id}:[/bold] {task.title} [dim]({task.priority})[/dim]")
    if task.description:
        log.console.print(task.description)


# ── Tasks ────────────────────────────────────────────────────────────


@main.command("add-task")
@click.option("--prompt", "-p", default="", help="Describe the task for AI generation")
@click.option("--title", default="", help="Manual title (skips AI)")
@click.option("--description", default="", help="Manual description")
@click.option("--details", default="", help="Manual implementation details")
@click.option("--test-strategy", default="", help="Manual test strategy")
@click.option("--dependencies", "-d", default="", help="Comma-separated dependency ids")
@click.option("--priority", default=None, help="high, medium or low")
@click.option("--research", is_flag=True, help="Use the research provider")
@click.pass_context
def add_task_cmd(
    ctx: click.Context,
    prompt: str,
    title: str,
    description: str,
    details: str,
    test_strategy: str,
    dependencies: str,
    priority: str | None,
    research: bool,
) -> None:
    """Add a task, from a prompt or from manual fields."""
    manual = None
    if title or description:
        manual = {"title": title, "description": description, "details": details, "testStrategy": test_strategy}
    elif not prompt:
        raise click.UsageError("Provide --prompt, or --title and --description.")
    with _errors_exit():
        pl.add_task(
            _pipeline_context(ctx),
            prompt or None,
            dependencies=split_ids(dependencies),
            priority=priority,
            manual=manual,
            research=research,
        )


@main.command("update-task")
@click.argument("task_id")
@click.option("--prompt", "-p", required=True, help="What changed")
@click.option("--research", is_flag=True, help="Use the research provider")
@click.pass_context
def update_task_cmd(ctx: click.Context, task_id: str, prompt: str, research: bool) -> None:
    """Rewrite one task with new information."""
    with _errors_exit():
        pl.update_task_by_id(_pipeline_context(ctx), task_id, prompt, research=research)


@main.command("update")
@click.option("--from", "from_id", required=True, help="First task id to update")
@click.option("--prompt", "-p", required=True, help="What changed")
@click.option("--research", is_flag=True, help="Use the research provider")
@click.pass_context
def update_cmd(ctx: click.Context, from_id: str, prompt: str, research: bool) -> None:
    """Rewrite every open task from an id onwards."""
    with _errors_exit():
        pl.update_tasks(_pipeline_context(ctx), from_id, prompt, research=research)


@main.command("update-subtask")
@click.argument("subtask_id")
@click.option("--prompt", "-p", required=True, help="Notes to add")
@click.option("--research", is_flag=True, help="Use the research provider")
@click.pass_context
def update_subtask_cmd(ctx: click.Context, subtask_id: str, prompt: str, research: bool) -> None:
    """Append timestamped notes to a subtask (id as PARENT.SUB)."""
    with _errors_exit():
        pl.update_subtask_by_id(_pipeline_context(ctx), subtask_id, prompt, research=research)


# ── Expansion ────────────────────────────────────────────────────────


@main.command("expand")
@click.argument("task_id")
@click.option("--num", "-n", type=int, default=None, help="Number of subtasks")
@click.option("--prompt", "-p", default="", help="Additional context")
@click.option("--research", is_flag=True, help="Use the research provider")
@click.option("--force", is_flag=True, help="Replace existing subtasks")
@click.option("--append", is_flag=True, help="Add after existing subtasks")
@click.pass_context
def expand_cmd(
    ctx: click.Context, task_id: str, num: int | None, prompt: str, research: bool, force: bool, append: bool
) -> None:
    """Break a task into subtasks."""
    if force and append:
        raise click.UsageError("--force and --append cannot be combined.")
    with _errors_exit():
        pl.expand_task(
            _pipeline_context(ctx),
            task_id,
            num=num,
            research=research,
            additional_context=prompt,
            force=force,
            append=append,
        )


@main.command("expand-all")
@click.option("--num", "-n", type=int, default=None, help="Number of subtasks per task")
@click.option("--prompt", "-p", default="", help="Additional context")
@click.option("--research", is_flag=True, help="Use the research provider")
@click.option("--force", is_flag=True, help="Also re-expand tasks that already have subtasks")
@click.pass_context
def expand_all_cmd(ctx: click.Context, num: int | None, prompt: str, research: bool, force: bool) -> None:
    """Expand every pending or in-progress task."""
    with _errors_exit():
        result = pl.expand_all_tasks(
            _pipeline_context(ctx), num=num, research=research, additional_context=prompt, force=force
        )
    for task_id, reason in result.failures:
        log.console.print(f"  [red]- task {task_id}:[/red] {reason}")
    if result.expansion_errors:
        sys.exit(1)


@main.command("clear-subtasks")
@click.argument("task_ids")
@click.pass_context
def clear_subtasks_cmd(ctx: click.Context, task_ids: str) -> None:
    """Remove all subtasks of the given tasks (comma-separated)."""
    with _errors_exit():
        pl.clear_subtasks(_pipeline_context(ctx), task_ids)


# ── Structure ────────────────────────────────────────────────────────


@main.command("remove-task")
@click.argument("ids")
@click.option("--yes", "-y", is_flag=True, help="Skip the confirmation prompt")
@click.pass_context
def remove_task_cmd(ctx: click.Context, ids: str, yes: bool) -> None:
    """Remove tasks or subtasks (comma-separated, e.g. 3,4.2)."""
    if not yes and not click.confirm(f"Remove {ids} and every reference to it?", default=False):
        log.info("Cancelled.")
        return
    with _errors_exit():
        result = pl.remove_task(_pipeline_context(ctx), ids)
    if not result.success:
        sys.exit(1)


@main.command("remove-subtask")
@click.argument("subtask_id")
@click.option("--convert", is_flag=True, help="Promote to a standalone task instead of deleting")
@click.pass_context
def remove_subtask_cmd(ctx: click.Context, subtask_id: str, convert: bool) -> None:
    """Remove a subtask (id as PARENT.SUB)."""
    with _errors_exit():
        pl.remove_subtask(_pipeline_context(ctx), subtask_id, convert=convert)


@main.command("add-subtask")
@click.argument("parent_id")
@click.option("--task-id", default=None, help="Existing task to convert into a subtask")
@click.option("--title", default="", help="Title of a new subtask")
@click.option("--description", default="", help="Description of a new subtask")
@click.option("--details", default="", help="Details of a new subtask")
@click.option("--status", default="pending", type=click.Choice(STATUS_VALUES), help="Initial status")
@click.option("--dependencies", "-d", default="", help="Comma-separated dependency ids")
@click.pass_context
def add_subtask_cmd(
    ctx: click.Context,
    parent_id: str,
    task_id: str | None,
    title: str,
    description: str,
    details: str,
    status: str,
    dependencies: str,
) -> None:
    """Add a subtask, or convert an existing task into one."""
    if task_id is None and not title:
        raise click.UsageError("Provide --task-id or --title.")
    data = None
    if task_id is None:
        data = {
            "title": title,
            "description": description,
            "details": details,
            "status": status,
            "dependencies": split_ids(dependencies),
        }
    with _errors_exit():
        pl.add_subtask(_pipeline_context(ctx), parent_id, existing_task_id=task_id, data=data)


@main.command("move")
@click.option("--from", "from_ids", required=True, help="Task or subtask id(s) to move, comma-separated")
@click.option("--to", "to_ids", required=True, help="Destination id(s), one per source")
@click.pass_context
def move_cmd(ctx: click.Context, from_ids: str, to_ids: str) -> None:
    """Move tasks or subtasks to new ids (5 -> 9, 5.2 -> 9, 5 -> 7.3, 5.2 -> 7.3)."""
    with _errors_exit():
        pl.move_task(_pipeline_context(ctx), from_ids, to_ids)


@main.command("set-status")
@click.argument("ids")
@click.argument("status", type=click.Choice(STATUS_VALUES))
@click.pass_context
def set_status_cmd(ctx: click.Context, ids: str, status: str) -> None:
    """Set the status of tasks or subtasks (comma-separated)."""
    with _errors_exit():
        pl.set_task_status(_pipeline_context(ctx), ids, status)


# ── Dependencies ─────────────────────────────────────────────────────


@main.command("add-dependency")
@click.argument("task_id")
@click.argument("depends_on")
@click.pass_context
def add_dependency_cmd(ctx: click.Context, task_id: str, depends_on: str) -> None:
    """Make TASK_ID depend on DEPENDS_ON."""
    with _errors_exit():
        pl.add_dependency(_pipeline_context(ctx), task_id, depends_on)


@main.command("remove-dependency")
@click.argument("task_id")
@click.argument("depends_on")
@click.pass_context
def remove_dependency_cmd(ctx: click.Context, task_id: str, depends_on: str) -> None:
    """Remove DEPENDS_ON from TASK_ID's dependencies."""
    with _errors_exit():
        pl.remove_dependency(_pipeline_context(ctx), task_id, depends_on)


@main.command("validate-dependencies")
@click.pass_context
def validate_dependencies_cmd(ctx: click.Context) -> None:
    """Report invalid or circular dependencies."""
    with _errors_exit():
        violations = pl.validate_dependencies(_pipeline_context(ctx))
    if violations:
        sys.exit(1)


@main.command("fix-dependencies")
@click.pass_context
def fix_dependencies_cmd(ctx: click.Context) -> None:
    """Remove duplicate, missing and self dependencies."""
    with _errors_exit():
        pl.fix_dependencies(_pipeline_context(ctx))


# ── PRD ──────────────────────────────────────────────────────────────


@main.command("parse-prd")
@click.argument("prd_file", type=click.Path(dir_okay=False, path_type=Path))
@click.option("--num-tasks", "-n", type=int, default=10, help="Approximate number of tasks")
@click.option("--force", is_flag=True, help="Replace existing tasks in the tag")
@click.option("--append", is_flag=True, help="Add after existing tasks")
@click.option("--research", is_flag=True, help="Use the research provider")
@click.pass_context
def parse_prd_cmd(ctx: click.Context, prd_file: Path, num_tasks: int, force: bool, append: bool, research: bool) -> None:
    """Generate tasks from a requirements document."""
    if force and append:
        raise click.UsageError("--force and --append cannot be combined.")
    with _errors_exit():
        pl.parse_prd(
            _pipeline_context(ctx), prd_file, num_tasks=num_tasks, force=force, append=append, research=research
        )


# ── Tags ─────────────────────────────────────────────────────────────


@main.command("tags")
@click.pass_context
def tags_cmd(ctx: click.Context) -> None:
    """List tags."""
    with _errors_exit():
        infos = _state(ctx).tag_context().list_tags()
    if not infos:
        log.info("No tags yet.")
        return
    table = Table()
    table.add_column("Tag")
    table.add_column("Tasks", justify="right")
    table.add_column("Done", justify="right")
    table.add_column("Description")
    for info in infos:
        name = f"[bold]{info.name}[/bold] *" if info.is_current else info.name
        table.add_row(name, str(info.task_count), str(info.completed), info.description)
    log.console.print(table)


@main.command("add-tag")
@click.argument("name", required=False)
@click.option("--copy-from", default=None, help="Copy tasks from this tag")
@click.option("--copy-from-current", is_flag=True, help="Copy tasks from the active tag")
@click.option("--from-branch", is_flag=True, help="Name the tag after the current git branch")
@click.option("--description", "-d", default="", help="Tag description")
@click.pass_context
def add_tag_cmd(
    ctx: click.Context,
    name: str | None,
    copy_from: str | None,
    copy_from_current: bool,
    from_branch: bool,
    description: str,
) -> None:
    """Create a tag."""
    if not name and not from_branch:
        raise click.UsageError("Provide a tag NAME or --from-branch.")
    with _errors_exit():
        tags = _state(ctx).tag_context()
        if from_branch:
            tags.create_tag_from_branch(copy_from_current=copy_from_current, description=description)
        else:
            source = tags.active_tag() if copy_from_current else copy_from
            tags.create_tag(name, copy_from=source, description=description)


@main.command("use-tag")
@click.argument("name")
@click.pass_context
def use_tag_cmd(ctx: click.Context, name: str) -> None:
    """Switch the active tag."""
    with _errors_exit():
        _state(ctx).tag_context().use_tag(name)


@main.command("delete-tag")
@click.argument("name")
@click.option("--yes", "-y", is_flag=True, help="Skip the confirmation prompt")
@click.pass_context
def delete_tag_cmd(ctx: click.Context, name: str, yes: bool) -> None:
    """Delete a tag and all of its tasks."""
    if not yes and not click.confirm(f"Delete tag '{name}' and all of its tasks?", default=False):
        log.info("Cancelled.")
        return
    with _errors_exit():
        _state(ctx).tag_context().delete_tag(name)


@main.command("rename-tag")
@click.argument("old")
@click.argument("new")
@click.pass_context
def rename_tag_cmd(ctx: click.Context, old: str, new: str) -> None:
    """Rename a tag."""
    with _errors_exit():
        _state(ctx).tag_context().rename_tag(old, new)


@main.command("copy-tag")
@click.argument("source")
@click.argument("target")
@click.option("--description", "-d", default="", help="Description of the new tag")
@click.pass_context
def copy_tag_cmd(ctx: click.Context, source: str, target: str, description: str) -> None:
    """Copy a tag with all of its tasks."""
    with _errors_exit():
        _state(ctx).tag_context().copy_tag(source, target, description=description)
