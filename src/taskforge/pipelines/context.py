"""Explicit context threaded through every mutation pipeline."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path

from taskforge import log
from taskforge.config import Config, load_config
from taskforge.errors import CycleError, NotFoundError
from taskforge.graph import DependencyGraph, NodeKey, node_label
from taskforge.log import Logger
from taskforge.orchestrator import ProgressSink, ProviderOrchestrator
from taskforge.providers.base import CompletionRequest
from taskforge.tags import TagContext
from taskforge.tasks.complexity import ComplexityReport, load_complexity_report
from taskforge.tasks.model import Tag, Task
from taskforge.tasks.store import DEFAULT_TAG, TaskDocument, TaskStore


@dataclass
class MutationContext:
    """Everything a pipeline needs: no module level state is consulted."""

    store: TaskStore
    config: Config = field(default_factory=Config)
    tag: str = DEFAULT_TAG
    logger: Logger = field(default_factory=lambda: log.default_logger)
    orchestrator: ProviderOrchestrator | None = None
    progress: ProgressSink | None = None
    complexity_report_path: Path | None = None
    project_root: Path | None = None

    @classmethod
    def for_project(
        cls,
        root: Path,
        *,
        config: Config | None = None,
        tag: str | None = None,
        logger: Logger | None = None,
        orchestrator: ProviderOrchestrator | None = None,
        progress: ProgressSink | None = None,
    ) -> MutationContext:
        config = config or load_config(root)
        logger = logger or log.default_logger
        store = TaskStore(config.tasks_path(root))
        resolved = TagContext(store, config.state_path(root), logger=logger, project_root=root).resolve(tag)
        return cls(
            store=store,
            config=config,
            tag=resolved,
            logger=logger,
            orchestrator=orchestrator,
            progress=progress,
            complexity_report_path=config.complexity_report_path(root, resolved),
            project_root=root,
        )

    def require_orchestrator(self) -> ProviderOrchestrator:
        if self.orchestrator is None:
            self.orchestrator = ProviderOrchestrator.from_config(self.config, logger=self.logger)
        return self.orchestrator

    def generate(self, system_prompt: str, user_prompt: str, *, research: bool = False) -> str:
        """One AI call through the fallback state machine; returns the raw text."""
        request = CompletionRequest(system_prompt=system_prompt, user_prompt=user_prompt)
        result = self.require_orchestrator().generate(request, research=research, progress=self.progress)
        self.logger.debug(f"Generated {len(result.text)} characters with {result.provider}")
        return result.text

    def complexity_report(self) -> ComplexityReport | None:
        return load_complexity_report(self.complexity_report_path)

    def begin(self, *, create_tag: bool = False) -> Mutation:
        return Mutation(self, create_tag=create_tag)


def _cycle_members(tasks: list[Task]) -> set[NodeKey]:
    return {key for cycle in DependencyGraph(tasks).find_cycles() for key in cycle}


class Mutation:
    """A loaded document plus the tag being mutated.

    Nothing touches the file until :meth:`commit`; an exception before that
    leaves the document exactly as it was.
    """

    def __init__(self, ctx: MutationContext, *, create_tag: bool = False) -> None:
        self.ctx = ctx
        self.doc: TaskDocument = ctx.store.load(missing_ok=create_tag)
        self.tag: Tag = self.doc.tag(ctx.tag, create=create_tag)
        self._baseline_cycles = _cycle_members(self.tag.tasks)

    @property
    def tasks(self) -> list[Task]:
        return self.tag.tasks

    def graph(self) -> DependencyGraph:
        return DependencyGraph(self.tag.tasks)

    def require_task(self, task_id: int) -> Task:
        task = self.tag.get_task(task_id)
        if task is None:
            raise NotFoundError(f"Task with ID {task_id} not found")
        return task

    def rekey(self, moved: dict[NodeKey, NodeKey]) -> None:
        """Follow nodes that changed keys so cycles present at load stay known."""
        self._baseline_cycles = {moved.get(key, key) for key in self._baseline_cycles}

    def commit(self) -> None:
        """Repair dangling references, refuse new cycles, then write."""
        graph = self.graph()
        report = graph.fix()
        for change in report.changes:
            self.ctx.logger.warn(change)
        new_cycles = [
            c for c in report.cycles if any(key not in self._baseline_cycles for key in c)
        ]
        if new_cycles:
            chain = " -> ".join(node_label(k) for k in new_cycles[0])
            raise CycleError(f"Mutation would create a circular dependency: {chain}")
        self.tag.touch()
        self.ctx.store.save(self.doc)
