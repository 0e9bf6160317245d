"""CLI tests: every command is driven in-process through click's CliRunner."""

from __future__ import annotations

import json
from pathlib import Path
from unittest.mock import patch

import pytest
from click.testing import CliRunner

from conftest import FakeProvider
from taskforge.cli import main
from taskforge.io_utils import read_json, write_json, write_text
from taskforge.orchestrator import ProviderOrchestrator


@pytest.fixture
def cli_runner() -> CliRunner:
    return CliRunner()


@pytest.fixture
def run(cli_runner: CliRunner, tmp_path: Path):
    """Invoke the CLI against tmp_path as project root."""

    def _run(*args: str, input: str | None = None):
        return cli_runner.invoke(main, ["--project-root", str(tmp_path), *args], input=input)

    return _run


@pytest.fixture
def scripted_ai():
    """Patch provider construction so AI commands use scripted answers."""

    def _script(*responses: str) -> FakeProvider:
        provider = FakeProvider(list(responses))
        patcher = patch(
            "taskforge.pipelines.context.ProviderOrchestrator.from_config",
            return_value=ProviderOrchestrator({"main": provider}),
        )
        patcher.start()
        started.append(patcher)
        return provider

    started: list = []
    yield _script
    for patcher in started:
        patcher.stop()


# ── Entry ────────────────────────────────────────────────────────────


class TestCliHelpAndVersion:
    def test_help_long(self, cli_runner):
        r = cli_runner.invoke(main, ["--help"])
        assert r.exit_code == 0
        assert "AI-assisted task graph manager" in r.output

    def test_help_short(self, cli_runner):
        r = cli_runner.invoke(main, ["-h"])
        assert r.exit_code == 0

    def test_version(self, cli_runner):
        r = cli_runner.invoke(main, ["--version"])
        assert r.exit_code == 0
        assert "taskforge" in r.output

    @pytest.mark.parametrize(
        "command",
        [
            "list", "next", "add-task", "update-task", "update", "update-subtask", "expand", "expand-all",
            "clear-subtasks", "remove-task", "remove-subtask", "add-subtask", "move", "set-status", "add-dependency",
            "remove-dependency", "validate-dependencies", "fix-dependencies", "parse-prd", "tags", "add-tag",
            "use-tag", "delete-tag", "rename-tag", "copy-tag",
        ],
    )
    def test_every_command_has_help(self, cli_runner, command):
        r = cli_runner.invoke(main, [command, "--help"])
        assert r.exit_code == 0, r.output


# ── Reading ──────────────────────────────────────────────────────────


class TestReading:
    def test_list(self, run, write_tasks, make_task, make_subtask):
        write_tasks([make_task(1, title="Set up CI"), make_task(2, status="done", subtasks=[make_subtask(1, title="Lint step")])])
        r = run("list", "--with-subtasks")
        assert r.exit_code == 0, r.output
        assert "Set up CI" in r.output
        assert "Lint step" in r.output
        assert "1/2 tasks done" in r.output

    def test_list_status_filter(self, run, write_tasks, make_task):
        write_tasks([make_task(1, title="Open work"), make_task(2, title="Finished work", status="done")])
        r = run("list", "--status", "done")
        assert "Finished work" in r.output
        assert "Open work" not in r.output

    def test_list_without_tasks_file_fails(self, run):
        r = run("list")
        assert r.exit_code == 1
        assert "not found" in r.output.lower()

    def test_malformed_task_entry_fails_cleanly(self, run, tasks_path):
        write_json(tasks_path, {"master": {"tasks": [{"title": "No id here"}]}})
        r = run("list")
        assert r.exit_code == 1
        assert "missing the field 'id'" in r.output
        assert r.exception is None or isinstance(r.exception, SystemExit)

    def test_next(self, run, write_tasks, make_task):
        write_tasks([make_task(1, status="done"), make_task(2, title="Do this next", dependencies=[1])])
        r = run("next")
        assert r.exit_code == 0
        assert "Do this next" in r.output


# ── Mutations ────────────────────────────────────────────────────────


class TestMutations:
    def test_add_task_manual(self, run, write_tasks, make_task, read_tasks):
        write_tasks([make_task(1)])
        r = run("add-task", "--title", "Write docs", "--description", "User guide", "-d", "1", "--priority", "high")
        assert r.exit_code == 0, r.output
        task = read_tasks()[-1]
        assert (task.id, task.title, task.dependencies, task.priority) == (2, "Write docs", [1], "high")

    def test_add_task_needs_prompt_or_title(self, run, write_tasks, make_task):
        write_tasks([make_task(1)])
        r = run("add-task")
        assert r.exit_code == 2

    def test_add_task_with_ai(self, run, write_tasks, make_task, read_tasks, scripted_ai):
        write_tasks([make_task(1)])
        scripted_ai(json.dumps({"title": "Add caching", "description": "Cache lookups"}))
        r = run("add-task", "-p", "we need caching")
        assert r.exit_code == 0, r.output
        assert read_tasks()[-1].title == "Add caching"

    def test_set_status(self, run, write_tasks, make_task, make_subtask, read_tasks):
        write_tasks([make_task(1, subtasks=[make_subtask(1)])])
        r = run("set-status", "1", "done")
        assert r.exit_code == 0, r.output
        assert read_tasks()[0].subtasks[0].status == "done"

    def test_set_status_rejects_unknown_status(self, run, write_tasks, make_task):
        write_tasks([make_task(1)])
        assert run("set-status", "1", "finished").exit_code == 2

    def test_error_exits_with_one(self, run, write_tasks, make_task, tasks_path):
        write_tasks([make_task(1)])
        before = tasks_path.read_bytes()
        r = run("set-status", "9", "done")
        assert r.exit_code == 1
        assert "Task with ID 9 not found" in r.output
        assert tasks_path.read_bytes() == before

    def test_remove_task_confirmation(self, run, write_tasks, make_task, read_tasks):
        write_tasks([make_task(1), make_task(2)])
        r = run("remove-task", "1", input="n\n")
        assert r.exit_code == 0
        assert len(read_tasks()) == 2

        r = run("remove-task", "1", "--yes")
        assert r.exit_code == 0, r.output
        assert [t.id for t in read_tasks()] == [2]

    def test_remove_task_partial_failure_exits_one(self, run, write_tasks, make_task, read_tasks):
        write_tasks([make_task(1), make_task(2)])
        r = run("remove-task", "1,9", "-y")
        assert r.exit_code == 1
        assert [t.id for t in read_tasks()] == [2]

    def test_subtask_round_trip(self, run, write_tasks, make_task, read_tasks):
        write_tasks([make_task(1), make_task(2)])
        assert run("add-subtask", "1", "--title", "First step", "--status", "in-progress").exit_code == 0
        assert run("add-subtask", "1", "--task-id", "2").exit_code == 0
        stored = read_tasks()
        assert [s.title for s in stored[0].subtasks] == ["First step", "Task 2"]

        assert run("remove-subtask", "1.2", "--convert").exit_code == 0
        assert [t.id for t in read_tasks()] == [1, 2]

    def test_move(self, run, write_tasks, make_task, read_tasks):
        write_tasks([make_task(1), make_task(2), make_task(3, dependencies=[1])])
        r = run("move", "--from", "1", "--to", "2.1")
        assert r.exit_code == 0, r.output
        stored = read_tasks()
        assert [t.id for t in stored] == [2, 3]
        assert stored[0].subtasks[0].title == "Task 1"
        assert stored[1].dependencies == ["2.1"]

        assert run("move", "--from", "2", "--to", "3,4").exit_code == 1

    def test_add_subtask_needs_title_or_task(self, run, write_tasks, make_task):
        write_tasks([make_task(1)])
        assert run("add-subtask", "1").exit_code == 2

    def test_dependencies(self, run, write_tasks, make_task, read_tasks):
        write_tasks([make_task(1), make_task(2)])
        assert run("add-dependency", "2", "1").exit_code == 0
        assert read_tasks()[1].dependencies == [1]

        r = run("add-dependency", "1", "2")
        assert r.exit_code == 1
        assert "circular" in r.output.lower()

        assert run("remove-dependency", "2", "1").exit_code == 0
        assert read_tasks()[1].dependencies == []

    def test_validate_and_fix(self, run, write_tasks, make_task, read_tasks):
        write_tasks([make_task(1, dependencies=[42])])
        r = run("validate-dependencies")
        assert r.exit_code == 1
        assert "42" in r.output

        assert run("fix-dependencies").exit_code == 0
        assert read_tasks()[0].dependencies == []
        assert run("validate-dependencies").exit_code == 0


# ── AI pipelines ─────────────────────────────────────────────────────


class TestAiCommands:
    def test_expand(self, run, write_tasks, make_task, read_tasks, scripted_ai):
        write_tasks([make_task(1)])
        scripted_ai(
            json.dumps(
                {
                    "subtasks": [
                        {
                            "id": 1,
                            "title": "Design schema",
                            "description": "Design the storage schema",
                            "details": "Tables for users and sessions with indexes",
                        }
                    ]
                }
            )
        )
        r = run("expand", "1", "-n", "1")
        assert r.exit_code == 0, r.output
        assert read_tasks()[0].subtasks[0].title == "Design schema"

    def test_expand_all_with_a_failure_exits_one(self, run, write_tasks, make_task, read_tasks, scripted_ai):
        write_tasks([make_task(1), make_task(2)])
        scripted_ai(
            json.dumps(
                {
                    "subtasks": [
                        {
                            "id": 1,
                            "title": "Design schema",
                            "description": "Design the storage schema",
                            "details": "Tables for users and sessions with indexes",
                        }
                    ]
                }
            ),
            "no subtasks today",
        )
        r = run("expand-all", "-n", "1")
        assert r.exit_code == 1
        assert "task 2" in r.output
        stored = read_tasks()
        assert [len(t.subtasks) for t in stored] == [1, 0]

    def test_expand_force_and_append_conflict(self, run, write_tasks, make_task):
        write_tasks([make_task(1)])
        assert run("expand", "1", "--force", "--append").exit_code == 2

    def test_parse_prd(self, run, tmp_path, read_tasks, scripted_ai):
        write_text(tmp_path / "prd.md", "A tiny todo app.")
        scripted_ai(json.dumps({"tasks": [{"id": 1, "title": "Scaffold", "description": "Create the project"}]}))
        r = run("parse-prd", "prd.md", "-n", "1")
        assert r.exit_code == 0, r.output
        assert [t.title for t in read_tasks()] == ["Scaffold"]

    def test_malformed_answer_exits_one(self, run, write_tasks, make_task, tasks_path, scripted_ai):
        write_tasks([make_task(1)])
        scripted_ai("I could not do that.")
        before = tasks_path.read_bytes()
        r = run("update-task", "1", "-p", "rename things")
        assert r.exit_code == 1
        assert tasks_path.read_bytes() == before


# ── Tags ─────────────────────────────────────────────────────────────


class TestTagCommands:
    def test_tag_lifecycle(self, run, write_tasks, make_task, tmp_path):
        write_tasks([make_task(1)])
        assert run("add-tag", "feature", "--copy-from-current", "-d", "Feature work").exit_code == 0
        r = run("tags")
        assert "feature" in r.output
        assert "Feature work" in r.output

        assert run("use-tag", "feature").exit_code == 0
        assert read_json(tmp_path / ".taskforge" / "state.json")["currentTag"] == "feature"

        r = run("delete-tag", "feature", "-y")
        assert r.exit_code == 1
        assert "active" in r.output

        assert run("use-tag", "master").exit_code == 0
        assert run("rename-tag", "feature", "feature-2").exit_code == 0
        assert run("copy-tag", "feature-2", "feature-3").exit_code == 0
        assert run("delete-tag", "feature-2", "-y").exit_code == 0
        assert list(read_json(tmp_path / ".taskforge" / "tasks" / "tasks.json")) == ["master", "feature-3"]

    def test_tag_option_targets_other_tag(self, run, write_tasks, make_task):
        write_tasks({"master": [make_task(1, title="Master work")], "feature": [make_task(1, title="Feature work")]})
        r = run("--tag", "feature", "list")
        assert r.exit_code == 0, r.output
        assert "Feature work" in r.output
        assert "Master work" not in r.output

    def test_add_tag_requires_name(self, run):
        assert run("add-tag").exit_code == 2

    def test_reserved_tag_name(self, run, write_tasks, make_task):
        write_tasks([make_task(1)])
        r = run("add-tag", "main")
        assert r.exit_code == 1
        assert "reserved" in r.output
