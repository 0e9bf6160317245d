"""Shared fixtures for taskforge tests.

File handling in tests:
- Use tmp_path for any directory or file creation so tests are isolated and cleaned up.
- Use taskforge.io_utils read_json/write_json for consistent UTF-8 I/O.
"""

from __future__ import annotations

import subprocess
from collections.abc import Iterator
from pathlib import Path
from typing import Any

import pytest
from rich.console import Console

from taskforge.config import Config, ProviderSettings
from taskforge.io_utils import read_json, write_json, write_text
from taskforge.log import Logger
from taskforge.orchestrator import ProviderOrchestrator
from taskforge.pipelines import MutationContext
from taskforge.providers.base import CompletionRequest, ProviderBase
from taskforge.tasks.model import Subtask, Task
from taskforge.tasks.store import TaskStore


def pytest_addoption(parser: pytest.Parser) -> None:
    """Register opt-in switch for tests that call real providers."""
    parser.addoption(
        "--run-e2e",
        action="store_true",
        default=False,
        help="Run end-to-end tests marked with 'e2e'.",
    )


def pytest_collection_modifyitems(config: pytest.Config, items: list[pytest.Item]) -> None:
    """Skip e2e tests unless explicitly enabled."""
    if config.getoption("--run-e2e"):
        return

    skip_e2e = pytest.mark.skip(
        reason="E2E tests are skipped by default. Use --run-e2e to include them.",
    )
    for item in items:
        if "e2e" in item.keywords:
            item.add_marker(skip_e2e)


# ── Doubles ──────────────────────────────────────────────────────────


class RecordingLogger(Logger):
    """Logger that keeps ``(level, message)`` pairs instead of printing."""

    def __init__(self) -> None:
        super().__init__(console=Console(quiet=True), err_console=Console(quiet=True))
        self.records: list[tuple[str, str]] = []

    def info(self, msg: str) -> None:
        self.records.append(("info", msg))

    def success(self, msg: str) -> None:
        self.records.append(("success", msg))

    def warn(self, msg: str) -> None:
        self.records.append(("warn", msg))

    def error(self, msg: str) -> None:
        self.records.append(("error", msg))

    def debug(self, msg: str) -> None:
        self.records.append(("debug", msg))

    def lines(self, level: str) -> list[str]:
        return [m for lvl, m in self.records if lvl == level]


class FakeProvider(ProviderBase):
    """Scripted provider.

    Each scripted item is returned by one ``complete`` call: a string is the
    whole answer, a list of strings is streamed chunk by chunk, an exception
    is raised.
    """

    def __init__(
        self,
        responses: list[Any] | None = None,
        *,
        provider: str = "fake",
        model: str = "m1",
        available: bool = True,
        research: bool = False,
        max_tokens: int = 100,
    ) -> None:
        super().__init__(ProviderSettings(provider=provider, model=model, max_tokens=max_tokens))
        self.name = provider
        self.supports_research = research
        self.available = available
        self.responses = list(responses or [])
        self.requests: list[CompletionRequest] = []

    def check_available(self) -> str | None:
        return None if self.available else f"{self.name} is not configured"

    def complete(self, request: CompletionRequest) -> str | Iterator[str]:
        self.requests.append(request)
        if not self.responses:
            raise AssertionError(f"{self.label} has no scripted response left")
        item = self.responses.pop(0)
        if isinstance(item, BaseException):
            raise item
        if isinstance(item, list):
            return iter(item)
        return item


class OverloadedError(Exception):
    """Mimics an SDK error carrying an HTTP status."""

    def __init__(self, message: str = "Overloaded", status_code: int = 529) -> None:
        super().__init__(message)
        self.status_code = status_code


class RecordingProgress:
    def __init__(self) -> None:
        self.reports: list[dict[str, Any]] = []

    def report(self, *, progress: float, **extra: Any) -> None:
        self.reports.append({"progress": progress, **extra})


# ── Factories ────────────────────────────────────────────────────────


def _make_subtask(
    id: int,
    title: str = "",
    status: str = "pending",
    dependencies: list[Any] | None = None,
    details: str = "",
) -> Subtask:
    return Subtask(
        id=id,
        title=title or f"Subtask {id}",
        description=f"Description of subtask {id}",
        details=details,
        status=status,
        dependencies=dependencies or [],
    )


def _make_task(
    id: int,
    title: str = "",
    status: str = "pending",
    dependencies: list[Any] | None = None,
    subtasks: list[Subtask] | None = None,
    priority: str = "medium",
) -> Task:
    return Task(
        id=id,
        title=title or f"Task {id}",
        description=f"Description of task {id}",
        details=f"Details of task {id}",
        status=status,
        priority=priority,
        dependencies=dependencies or [],
        subtasks=subtasks or [],
    )


@pytest.fixture
def make_task():
    """Factory fixture that creates Task instances."""
    return _make_task


@pytest.fixture
def make_subtask():
    """Factory fixture that creates Subtask instances."""
    return _make_subtask


@pytest.fixture
def logger() -> RecordingLogger:
    return RecordingLogger()


@pytest.fixture
def tasks_path(tmp_path: Path) -> Path:
    return tmp_path / ".taskforge" / "tasks" / "tasks.json"


@pytest.fixture
def write_tasks(tasks_path: Path):
    """Write ``{tag: [Task, ...]}`` (or a bare task list for master) to the tasks file."""

    def _write(tasks: list[Task] | dict[str, list[Task]]) -> Path:
        tags = tasks if isinstance(tasks, dict) else {"master": tasks}
        write_json(
            tasks_path,
            {
                name: {"tasks": [t.to_dict() for t in items], "metadata": {"created": "", "updated": "", "description": ""}}
                for name, items in tags.items()
            },
        )
        return tasks_path

    return _write


@pytest.fixture
def read_tasks(tasks_path: Path):
    """Load one tag of the tasks file back as Task objects."""

    def _read(tag: str = "master") -> list[Task]:
        return [Task.from_dict(t) for t in read_json(tasks_path)[tag]["tasks"]]

    return _read


@pytest.fixture
def make_ctx(tmp_path: Path, tasks_path: Path, logger: RecordingLogger, write_tasks):
    """Build a MutationContext over tmp_path.

    ``responses`` scripts a single main provider; pass ``providers`` for
    full control over the orchestrator.
    """

    def _make(
        tasks: list[Task] | dict[str, list[Task]] | None = None,
        *,
        responses: list[Any] | None = None,
        providers: dict[str, ProviderBase] | None = None,
        tag: str = "master",
        **config: Any,
    ) -> MutationContext:
        if tasks is not None:
            write_tasks(tasks)
        if providers is None:
            providers = {"main": FakeProvider(responses)}
        settings = {"apply_env": False, "expand_delay": 0.0, **config}
        return MutationContext(
            store=TaskStore(tasks_path),
            config=Config(**settings),
            tag=tag,
            logger=logger,
            orchestrator=ProviderOrchestrator(providers, logger=logger),
            complexity_report_path=tmp_path / ".taskforge" / "reports" / "task-complexity-report.json",
            project_root=tmp_path,
        )

    return _make


@pytest.fixture
def git_repo(tmp_path: Path) -> Path:
    """Create a minimal git repo for testing."""
    subprocess.run(["git", "init"], cwd=tmp_path, capture_output=True, check=True)
    subprocess.run(
        ["git", "config", "user.name", "Test"], cwd=tmp_path, capture_output=True
    )
    subprocess.run(
        ["git", "config", "user.email", "test@test"], cwd=tmp_path, capture_output=True
    )
    write_text(tmp_path / "README.md", "# Test")
    subprocess.run(["git", "add", "README.md"], cwd=tmp_path, capture_output=True)
    subprocess.run(
        ["git", "commit", "-m", "Initial"], cwd=tmp_path, capture_output=True
    )
    return tmp_path
