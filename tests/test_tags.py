"""Tests for tag resolution and tag lifecycle."""

from __future__ import annotations

import subprocess
from pathlib import Path

import pytest

from taskforge import git_ops
from taskforge.errors import NotFoundError, ValidationError
from taskforge.io_utils import read_json
from taskforge.tags import TagContext, is_valid_branch_for_tag, sanitize_branch_name, validate_tag_name
from taskforge.tasks.store import TaskStore


@pytest.fixture
def tags(tmp_path: Path, tasks_path: Path, write_tasks, make_task, logger) -> TagContext:
    write_tasks({"master": [make_task(1), make_task(2, status="done")], "feature": [make_task(1)]})
    return TagContext(TaskStore(tasks_path), tmp_path / ".taskforge" / "state.json", logger=logger, project_root=tmp_path)


class TestNames:
    @pytest.mark.parametrize(
        ("branch", "expected"),
        [
            ("feature/User-Auth", "feature-user-auth"),
            ("fix//double--dash", "fix-double-dash"),
            ("--edge--", "edge"),
            ("", "unknown-branch"),
            ("///", "unknown-branch"),
            ("a" * 80, "a" * 50),
        ],
    )
    def test_sanitize_branch_name(self, branch: str, expected: str) -> None:
        assert sanitize_branch_name(branch) == expected

    @pytest.mark.parametrize("branch", ["main", "MASTER", "develop", "dev", "HEAD", "", None])
    def test_protected_branches(self, branch) -> None:
        assert not is_valid_branch_for_tag(branch)

    def test_feature_branch_is_allowed(self) -> None:
        assert is_valid_branch_for_tag("feature/x")

    @pytest.mark.parametrize("name", ["", "has space", "slash/name", "master", "Main", "default"])
    def test_invalid_tag_names(self, name: str) -> None:
        with pytest.raises(ValidationError):
            validate_tag_name(name)


class TestResolution:
    def test_default_is_master(self, tags: TagContext) -> None:
        assert tags.active_tag() == "master"
        assert tags.resolve(None) == "master"

    def test_explicit_tag_wins(self, tags: TagContext) -> None:
        tags.use_tag("feature")
        assert tags.resolve("master") == "master"
        assert tags.resolve("") == "feature"

    def test_use_tag_persists_state(self, tags: TagContext) -> None:
        tags.use_tag("feature")
        assert read_json(tags.state_path)["currentTag"] == "feature"

    def test_use_unknown_tag(self, tags: TagContext) -> None:
        with pytest.raises(NotFoundError):
            tags.use_tag("nope")

    def test_unreadable_state_falls_back_to_master(self, tags: TagContext) -> None:
        tags.state_path.parent.mkdir(parents=True, exist_ok=True)
        tags.state_path.write_text("{broken", encoding="utf-8")
        assert tags.active_tag() == "master"


class TestLifecycle:
    def test_list_tags(self, tags: TagContext) -> None:
        infos = {i.name: i for i in tags.list_tags()}
        assert infos["master"].task_count == 2
        assert infos["master"].completed == 1
        assert infos["master"].is_current

    def test_create_copy_is_deep(self, tags: TagContext, read_tasks) -> None:
        tags.create_tag("copy", copy_from="master")
        doc = tags.store.load()
        doc.tag("copy").tasks[0].title = "changed"
        assert doc.tag("master").tasks[0].title == "Task 1"
        assert [t.id for t in read_tasks("copy")] == [1, 2]

    def test_create_existing_tag(self, tags: TagContext) -> None:
        with pytest.raises(ValidationError, match="already exists"):
            tags.create_tag("feature")

    def test_delete_rules(self, tags: TagContext) -> None:
        with pytest.raises(ValidationError):
            tags.delete_tag("master")
        tags.use_tag("feature")
        with pytest.raises(ValidationError, match="active"):
            tags.delete_tag("feature")
        tags.use_tag("master")
        assert tags.delete_tag("feature") == 1
        assert not tags.store.load().has_tag("feature")

    def test_rename_keeps_position_and_active_tag(self, tags: TagContext) -> None:
        tags.use_tag("feature")
        tags.rename_tag("feature", "feature-2")
        assert list(tags.store.load().tags) == ["master", "feature-2"]
        assert tags.active_tag() == "feature-2"

    def test_rename_master_is_refused(self, tags: TagContext) -> None:
        with pytest.raises(ValidationError):
            tags.rename_tag("master", "trunk")

    def test_copy_tag(self, tags: TagContext) -> None:
        tag = tags.copy_tag("feature", "feature-copy", description="backup")
        assert tag.metadata.description == "backup"


class TestBranchTags:
    def test_create_from_explicit_branch_records_mapping(self, tags: TagContext) -> None:
        tags.create_tag_from_branch("feat/Login", copy_from_current=True)
        assert tags.store.load().tag("feat-login").tasks
        assert read_json(tags.state_path)["branchTagMapping"] == {"feat/Login": "feat-login"}

    def test_protected_branch_is_refused(self, tags: TagContext) -> None:
        with pytest.raises(ValidationError):
            tags.create_tag_from_branch("main")

    def test_uses_checked_out_branch(self, git_repo: Path, tasks_path: Path, write_tasks, logger) -> None:
        subprocess.run(["git", "checkout", "-b", "topic/search"], cwd=git_repo, capture_output=True, check=True)
        write_tasks([])
        ctx = TagContext(TaskStore(tasks_path), git_repo / ".taskforge" / "state.json", logger=logger, project_root=git_repo)

        ctx.create_tag_from_branch()

        assert ctx.store.load().has_tag("topic-search")
        assert git_ops.current_branch(git_repo) == "topic/search"

    def test_current_branch_outside_repo(self, tmp_path: Path) -> None:
        assert git_ops.current_branch(tmp_path) is None

    def test_deleting_tag_drops_branch_mapping(self, tags: TagContext) -> None:
        tags.create_tag_from_branch("feat/a")
        tags.delete_tag("feat-a")
        assert read_json(tags.state_path)["branchTagMapping"] == {}
