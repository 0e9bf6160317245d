"""Generate top-level tasks from a product requirements document."""

from __future__ import annotations

from pathlib import Path

from taskforge import io_utils
from taskforge.errors import NotFoundError, ValidationError
from taskforge.pipelines import prompts
from taskforge.pipelines.context import MutationContext
from taskforge.schemas import PrdPayload, decode_model
from taskforge.tasks.model import PRIORITIES, DepId, Task, TaskStatus


def _read_prd(ctx: MutationContext, prd_path: Path | str) -> str:
    path = Path(prd_path)
    if not path.is_absolute() and ctx.project_root is not None:
        path = ctx.project_root / path
    if not io_utils.exists(path):
        raise NotFoundError(f"Input file {path} not found")
    text = io_utils.read_text(path)
    if not text.strip():
        raise ValidationError(f"Input file {path} is empty")
    return text


def parse_prd(
    ctx: MutationContext,
    prd_path: Path | str,
    *,
    num_tasks: int = 10,
    force: bool = False,
    append: bool = False,
    research: bool = False,
) -> list[Task]:
    """Turn the document at *prd_path* into pending tasks in the current tag.

    A tag that already holds tasks is refused unless *force* replaces them
    or *append* numbers the new ones after the existing ids.
    """
    if num_tasks <= 0:
        raise ValidationError(f"Number of tasks must be positive, got {num_tasks}")
    m = ctx.begin(create_tag=True)
    existing = list(m.tasks)
    if existing and not (force or append):
        raise ValidationError(
            f"Tag '{m.tag.name}' already contains {len(existing)} tasks. "
            "Use force to overwrite or append to add to existing tasks."
        )
    text = _read_prd(ctx, prd_path)

    next_id = m.tag.next_task_id() if append else 1
    if append and existing:
        ctx.logger.info(f"Appending to {len(existing)} existing tasks; next ID will be {next_id}")
    ctx.logger.info(f"Generating about {num_tasks} tasks from {prd_path}...")

    system, user = prompts.parse_prd(text, num_tasks, next_id)
    payload = decode_model(ctx.generate(system, user, research=research), PrdPayload, what="PRD tasks")
    if not payload.tasks:
        raise ValidationError("AI returned no tasks for the requirements document")

    kept_ids = {t.id for t in existing} if append else set()
    id_map: dict[int, int] = {}
    for offset, item in enumerate(payload.tasks):
        id_map.setdefault(item.id, next_id + offset)

    generated: list[Task] = []
    for offset, item in enumerate(payload.tasks):
        new_id = next_id + offset
        deps: list[DepId] = []
        for dep in item.dependencies:
            mapped = id_map.get(dep)
            if mapped is None and dep in kept_ids:
                mapped = dep
            if mapped is not None and mapped < new_id and mapped not in deps:
                deps.append(mapped)
        priority = item.priority.strip().lower()
        if priority not in PRIORITIES:
            ctx.logger.warn(f"Task {new_id} has invalid priority '{item.priority}'; using medium")
            priority = "medium"
        generated.append(
            Task(
                id=new_id,
                title=item.title.strip(),
                description=item.description.strip(),
                details=item.details,
                test_strategy=item.test_strategy,
                status=TaskStatus.PENDING.value,
                priority=priority,
                dependencies=deps,
            )
        )

    if append:
        m.tasks.extend(generated)
    else:
        m.tag.tasks = generated
    m.commit()
    verb = "Appended" if append else "Generated"
    ctx.logger.success(f"{verb} {len(generated)} tasks from {prd_path}")
    return generated
