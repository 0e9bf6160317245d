"""Prompt builders for every AI-backed pipeline.

Each builder returns ``(system_prompt, user_prompt)``. All of them ask for
bare JSON, because responses are decoded strictly.
"""

from __future__ import annotations

import json

from taskforge.tasks.model import Subtask, Task

_JSON_ONLY = "Respond with JSON only: no prose before or after it and no Markdown other than an optional ```json fence."


def _task_json(task: Task) -> str:
    return json.dumps(task.to_dict(), indent=2, ensure_ascii=False)


def add_task(prompt: str, new_id: int, context_tasks: list[Task], dependency_ids: list[int]) -> tuple[str, str]:
    system = (
        "You create well-structured tasks for a software development project. "
        "Generate exactly one new task from the user's description. " + _JSON_ONLY
    )
    if dependency_ids:
        heading = "This task depends on the following tasks:"
    else:
        heading = "Recent tasks in the project:"
    context = "\n".join(f"- Task {t.id}: {t.title} - {t.description}" for t in context_tasks)
    user = (
        f'Create task #{new_id} from this description: "{prompt}"\n\n'
        + (f"{heading}\n{context}\n\n" if context else "")
        + "Return one JSON object with the fields:\n"
        '{"title": "...", "description": "one or two sentences", '
        '"details": "implementation guidance", "testStrategy": "how to verify"}'
    )
    return system, user


def update_task(task: Task, prompt: str) -> tuple[str, str]:
    system = (
        "You update a software development task with new information. Rules:\n"
        "1. Do not change the title.\n"
        "2. Keep the same id, status and dependencies unless the new information requires otherwise.\n"
        "3. Subtasks whose status is done or completed must be returned unchanged.\n"
        "4. Adapt pending subtasks and details to reflect the new information.\n"
        "5. Return the complete task object, including every subtask. " + _JSON_ONLY
    )
    user = f"Task to update:\n{_task_json(task)}\n\nNew information:\n{prompt}\n\nReturn the updated task as one JSON object."
    return system, user


def update_tasks(tasks: list[Task], prompt: str) -> tuple[str, str]:
    system = (
        "You update a list of software development tasks with new information. "
        "Apply the same rules to every task: keep titles and ids, keep done or completed "
        "subtasks unchanged, adapt pending work to the new information. " + _JSON_ONLY
    )
    payload = json.dumps([t.to_dict() for t in tasks], indent=2, ensure_ascii=False)
    user = (
        f"Tasks to update:\n{payload}\n\nNew information:\n{prompt}\n\n"
        'Return {"tasks": [...]} with one object per updated task.'
    )
    return system, user


def update_subtask(parent: Task, subtask: Subtask, prompt: str) -> tuple[str, str]:
    index = parent.subtasks.index(subtask)
    neighbours = []
    if index > 0:
        prev = parent.subtasks[index - 1]
        neighbours.append(f"Previous subtask: {parent.id}.{prev.id} {prev.title} ({prev.status})")
    if index < len(parent.subtasks) - 1:
        nxt = parent.subtasks[index + 1]
        neighbours.append(f"Next subtask: {parent.id}.{nxt.id} {nxt.title} ({nxt.status})")
    system = (
        "You add implementation notes to one subtask of a larger task. Write only the new "
        "information asked for; it will be appended to the existing details with a timestamp, "
        "so do not repeat existing details and do not add timestamps yourself. "
        'Return {"details": "..."}. ' + _JSON_ONLY
    )
    user = (
        f"Parent task {parent.id}: {parent.title}\n"
        + "".join(f"{line}\n" for line in neighbours)
        + f"\nSubtask:\n{json.dumps(subtask.to_dict(), indent=2, ensure_ascii=False)}\n\n"
        f"Request: {prompt}"
    )
    return system, user


def expand_task(
    task: Task,
    count: int,
    start_id: int,
    *,
    additional_context: str = "",
    expansion_prompt: str = "",
    research: bool = False,
) -> tuple[str, str]:
    if research:
        system = (
            "You are a technical lead who researches current tools, libraries and practices "
            "before breaking work down. Use what you know about the present state of the ecosystem "
            "to break the task into concrete subtasks. " + _JSON_ONLY
        )
    else:
        system = (
            "You are a technical lead breaking a development task into concrete, "
            "ordered subtasks that an engineer can complete one at a time. " + _JSON_ONLY
        )
    extra = ""
    if expansion_prompt:
        extra += f"\nGuidance from complexity analysis: {expansion_prompt}"
    if additional_context:
        extra += f"\nAdditional context: {additional_context}"
    last_id = start_id + count - 1
    user = (
        f"Break this task into exactly {count} subtasks:\n{_task_json(task)}\n{extra}\n\n"
        f"Number subtasks sequentially from {start_id} to {last_id}. A subtask may only depend on "
        f"earlier subtasks of this list (ids {start_id} to {last_id}).\n"
        'Return {"subtasks": [{"id": <int>, "title": "at least 5 characters", '
        '"description": "at least 10 characters", "dependencies": [<int>, ...], '
        '"details": "at least 20 characters of implementation guidance", "status": "pending", '
        '"testStrategy": "optional"}]}'
    )
    return system, user


def parse_prd(prd_text: str, num_tasks: int, next_id: int) -> tuple[str, str]:
    system = (
        "You turn a product requirements document into an ordered list of top-level "
        "development tasks. Each task should be independently verifiable, ordered so that "
        "dependencies come first, and reference only earlier tasks as dependencies. " + _JSON_ONLY
    )
    user = (
        f"Generate about {num_tasks} tasks numbered from {next_id}.\n\n"
        f"Requirements document:\n{prd_text}\n\n"
        'Return {"tasks": [{"id": <int>, "title": "...", "description": "...", "details": "...", '
        '"testStrategy": "...", "priority": "high|medium|low", "dependencies": [<int>, ...], '
        '"status": "pending"}], "metadata": {"projectName": "...", "totalTasks": <int>}}'
    )
    return system, user
