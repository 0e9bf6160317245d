"""Tests for task creation and AI-driven updates."""

from __future__ import annotations

import json

import pytest

from conftest import FakeProvider
from taskforge.errors import CycleError, NotFoundError, ReconciliationError, ValidationError
from taskforge.pipelines import add_task, next_task, update_subtask_by_id, update_task_by_id, update_tasks

_NEW_TASK = json.dumps(
    {
        "title": "Add a cache layer",
        "description": "Cache expensive lookups",
        "details": "Wrap the repository in an LRU cache",
        "testStrategy": "Hit the repository twice",
    }
)


class TestAddTask:
    def test_manual_task(self, make_ctx, make_task, read_tasks) -> None:
        ctx = make_ctx([make_task(1), make_task(2)])
        task = add_task(
            ctx,
            manual={"title": "Write docs", "description": "User guide", "testStrategy": "Proofread"},
            dependencies=[1],
            priority="high",
        )

        assert task.id == 3
        stored = read_tasks()[-1]
        assert stored.title == "Write docs"
        assert stored.test_strategy == "Proofread"
        assert stored.dependencies == [1]
        assert stored.priority == "high"
        assert stored.status == "pending"

    def test_manual_task_needs_title_and_description(self, make_ctx, make_task) -> None:
        ctx = make_ctx([make_task(1)])
        with pytest.raises(ValidationError):
            add_task(ctx, manual={"title": "Only a title"})

    def test_invalid_dependencies_are_dropped_with_warning(self, make_ctx, make_task, make_subtask, logger) -> None:
        ctx = make_ctx([make_task(1, subtasks=[make_subtask(1)])])
        task = add_task(ctx, manual={"title": "T", "description": "D"}, dependencies=[1, "1.1", 42, "bogus"])

        assert task.dependencies == [1, "1.1"]
        assert any("42" in m and "bogus" in m for m in logger.lines("warn"))

    def test_invalid_priority_is_rejected(self, make_ctx, make_task) -> None:
        ctx = make_ctx([make_task(1)])
        with pytest.raises(ValidationError, match="Invalid priority"):
            add_task(ctx, manual={"title": "T", "description": "D"}, priority="urgent")

    def test_default_priority_comes_from_config(self, make_ctx, make_task) -> None:
        ctx = make_ctx([make_task(1)], default_priority="low")
        assert add_task(ctx, manual={"title": "T", "description": "D"}).priority == "low"

    def test_ai_task(self, make_ctx, make_task, read_tasks) -> None:
        provider = FakeProvider([_NEW_TASK])
        ctx = make_ctx([make_task(1, title="Set up repository")], providers={"main": provider})

        task = add_task(ctx, "Add caching", dependencies=["1"])

        assert task.title == "Add a cache layer"
        assert task.test_strategy == "Hit the repository twice"
        assert read_tasks()[-1].id == 2
        # dependency tasks are given to the model as context
        assert "Set up repository" in provider.requests[0].user_prompt

    def test_ai_task_without_prompt(self, make_ctx, make_task) -> None:
        with pytest.raises(ValidationError, match="Prompt"):
            add_task(make_ctx([make_task(1)]), "   ")

    def test_malformed_ai_answer_writes_nothing(self, make_ctx, make_task, tasks_path) -> None:
        ctx = make_ctx([make_task(1)], responses=["Here is your task: {\"title\": \"x\"}"])
        before = tasks_path.read_bytes()
        with pytest.raises(ReconciliationError):
            add_task(ctx, "anything")
        assert tasks_path.read_bytes() == before

    def test_first_task_in_missing_file(self, make_ctx, read_tasks) -> None:
        ctx = make_ctx()
        add_task(ctx, manual={"title": "T", "description": "D"})
        assert [t.id for t in read_tasks()] == [1]


class TestUpdateTask:
    def test_title_is_kept(self, make_ctx, make_task, read_tasks) -> None:
        answer = json.dumps({"id": 5, "title": "Renamed", "description": "Now with caching", "status": "done"})
        ctx = make_ctx([make_task(5, title="X")], responses=[answer])

        updated = update_task_by_id(ctx, 5, "mention caching")

        assert updated.title == "X"
        assert updated.status == "pending"
        assert read_tasks()[0].description == "Now with caching"

    def test_unknown_subtask_status_writes_nothing(self, make_ctx, make_task, make_subtask, tasks_path) -> None:
        answer = json.dumps(
            {
                "id": 3,
                "title": "T",
                "description": "Tighter wording",
                "subtasks": [{"id": 1, "title": "A", "status": "banana"}, {"id": 2, "title": "B", "status": "done"}],
            }
        )
        ctx = make_ctx([make_task(3, subtasks=[make_subtask(1), make_subtask(2)])], responses=[answer])
        before = tasks_path.read_bytes()

        with pytest.raises(ReconciliationError):
            update_task_by_id(ctx, 3, "tighten the wording")
        assert tasks_path.read_bytes() == before

    def test_subtask_statuses_survive_a_rewrite(self, make_ctx, make_task, make_subtask, read_tasks) -> None:
        answer = json.dumps(
            {
                "id": 3,
                "title": "T",
                "description": "Tighter wording",
                "subtasks": [{"id": 1, "title": "A", "status": "done"}, {"id": 2, "title": "B", "status": "done"}],
            }
        )
        ctx = make_ctx([make_task(3, subtasks=[make_subtask(1), make_subtask(2)])], responses=[answer])

        update_task_by_id(ctx, 3, "tighten the wording")

        assert [s.status for s in read_tasks()[0].subtasks] == ["pending", "pending"]

    def test_locked_task_is_not_sent_to_the_model(self, make_ctx, make_task, tasks_path, logger) -> None:
        provider = FakeProvider([])
        ctx = make_ctx([make_task(5, status="done")], providers={"main": provider})
        before = tasks_path.read_bytes()

        assert update_task_by_id(ctx, "5", "change it") is None
        assert provider.requests == []
        assert tasks_path.read_bytes() == before
        assert logger.lines("warn")

    def test_unknown_task(self, make_ctx, make_task) -> None:
        with pytest.raises(NotFoundError):
            update_task_by_id(make_ctx([make_task(1)]), 9, "x")

    @pytest.mark.parametrize("raw", ["0", "abc", "1.2"])
    def test_invalid_id(self, make_ctx, make_task, raw) -> None:
        with pytest.raises(ValidationError):
            update_task_by_id(make_ctx([make_task(1)]), raw, "x")


class TestUpdateTasks:
    def test_only_open_tasks_from_id_are_rewritten(self, make_ctx, make_task, read_tasks) -> None:
        answer = json.dumps(
            {
                "tasks": [
                    {"id": 2, "title": "T2", "description": "Rewritten two"},
                    {"id": 4, "title": "T4", "description": "Rewritten four"},
                ]
            }
        )
        provider = FakeProvider([answer])
        tasks = [make_task(1), make_task(2), make_task(3, status="done"), make_task(4)]
        ctx = make_ctx(tasks, providers={"main": provider})

        updated = update_tasks(ctx, 2, "switch to postgres")

        assert [t.id for t in updated] == [2, 4]
        stored = {t.id: t for t in read_tasks()}
        assert stored[2].description == "Rewritten two"
        assert stored[1].description == "Description of task 1"
        assert stored[3].description == "Description of task 3"
        # the locked task is never offered to the model
        assert '"id": 3' not in provider.requests[0].user_prompt

    def test_nothing_to_update(self, make_ctx, make_task) -> None:
        provider = FakeProvider([])
        ctx = make_ctx([make_task(1, status="done")], providers={"main": provider})
        assert update_tasks(ctx, 1, "x") == []
        assert provider.requests == []


class TestUpdateSubtask:
    def test_notes_are_appended_in_timestamped_block(self, make_ctx, make_task, make_subtask, read_tasks) -> None:
        ctx = make_ctx(
            [make_task(1, subtasks=[make_subtask(1, details="Original notes")])],
            responses=['{"details": "Use Redis for the cache"}'],
        )

        update_subtask_by_id(ctx, "1.1", "what did we learn?")

        details = read_tasks()[0].subtasks[0].details
        assert details.startswith("Original notes\n<info added on ")
        assert "Use Redis for the cache" in details
        assert details.rstrip().endswith(">")

    def test_empty_notes_change_nothing(self, make_ctx, make_task, make_subtask, tasks_path, logger) -> None:
        ctx = make_ctx([make_task(1, subtasks=[make_subtask(1)])], responses=['{"details": "  "}'])
        before = tasks_path.read_bytes()
        update_subtask_by_id(ctx, "1.1", "x")
        assert tasks_path.read_bytes() == before
        assert logger.lines("warn")

    def test_unknown_subtask(self, make_ctx, make_task, make_subtask) -> None:
        ctx = make_ctx([make_task(1, subtasks=[make_subtask(1)])])
        with pytest.raises(NotFoundError):
            update_subtask_by_id(ctx, "1.7", "x")

    def test_bad_subtask_id(self, make_ctx, make_task) -> None:
        with pytest.raises(ValidationError):
            update_subtask_by_id(make_ctx([make_task(1)]), "1", "x")


class TestNextTask:
    def test_priority_then_dependency_count(self, make_ctx, make_task) -> None:
        tasks = [
            make_task(1, status="done"),
            make_task(2, dependencies=[1], priority="low"),
            make_task(3, dependencies=[4], priority="high"),
            make_task(4, priority="medium"),
        ]
        assert next_task(make_ctx(tasks)).id == 4

    def test_none_when_everything_is_done(self, make_ctx, make_task) -> None:
        assert next_task(make_ctx([make_task(1, status="done")])) is None


class TestCommit:
    def test_new_cycle_is_refused_and_nothing_is_written(self, make_ctx, make_task, tasks_path) -> None:
        ctx = make_ctx([make_task(1), make_task(2, dependencies=[1])])
        before = tasks_path.read_bytes()
        m = ctx.begin()
        m.require_task(1).dependencies.append(2)

        with pytest.raises(CycleError):
            m.commit()
        assert tasks_path.read_bytes() == before

    def test_existing_cycle_does_not_block_other_edits(self, make_ctx, make_task, read_tasks) -> None:
        ctx = make_ctx([make_task(1, dependencies=[2]), make_task(2, dependencies=[1])])
        add_task(ctx, manual={"title": "T", "description": "D"})
        assert len(read_tasks()) == 3

    def test_dangling_references_are_repaired_on_commit(self, make_ctx, make_task, read_tasks, logger) -> None:
        ctx = make_ctx([make_task(1, dependencies=[99])])
        add_task(ctx, manual={"title": "T", "description": "D"})
        assert read_tasks()[0].dependencies == []
        assert any("99" in m for m in logger.lines("warn"))
