"""Configuration defaults, env vars, and config-file loading for taskforge."""

from __future__ import annotations

import os
import subprocess
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from taskforge.errors import ValidationError
from taskforge.io_utils import exists, read_json

VERSION = "0.9.0"

DATA_DIR = ".taskforge"
CONFIG_FILE = "config.json"

ROLES = ("main", "research", "fallback")


@dataclass
class ProviderSettings:
    """One provider role: which adapter, which model, and its token budget."""

    provider: str
    model: str = ""
    max_tokens: int = 64000
    temperature: float = 0.2
    base_url: str = ""

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ProviderSettings:
        return cls(
            provider=str(data.get("provider", "")).lower(),
            model=str(data.get("modelId", data.get("model", ""))),
            max_tokens=int(data.get("maxTokens", data.get("max_tokens", 64000))),
            temperature=float(data.get("temperature", 0.2)),
            base_url=str(data.get("baseUrl", data.get("base_url", ""))),
        )


def _default_main() -> ProviderSettings:
    return ProviderSettings(provider="openai", model="gpt-4o", max_tokens=16000)


def _default_research() -> ProviderSettings:
    return ProviderSettings(provider="perplexity", model="sonar-pro", max_tokens=8700, temperature=0.1)


def _default_fallback() -> ProviderSettings:
    return ProviderSettings(provider="openrouter", model="anthropic/claude-3.5-sonnet", max_tokens=16000)


@dataclass
class Config:
    """Runtime configuration. File values are overridden by env vars."""

    # Provider roles
    main: ProviderSettings | None = field(default_factory=_default_main)
    research: ProviderSettings | None = field(default_factory=_default_research)
    fallback: ProviderSettings | None = field(default_factory=_default_fallback)

    # Defaults for new content
    default_subtasks: int = 3
    default_priority: str = "medium"

    # Orchestration
    max_attempts: int = 2
    expand_delay: float = 0.1

    # Paths
    data_dir: str = DATA_DIR

    # Misc
    project_name: str = ""
    verbose: bool = False
    apply_env: bool = True

    def __post_init__(self) -> None:
        if self.apply_env:
            self._apply_env()
        if self.default_subtasks < 1:
            raise ValidationError(f"default_subtasks must be positive, got {self.default_subtasks}")
        if self.max_attempts < 1:
            raise ValidationError(f"max_attempts must be positive, got {self.max_attempts}")

    def _apply_env(self) -> None:
        for role in ROLES:
            prefix = f"TASKFORGE_{role.upper()}_"
            provider = os.environ.get(prefix + "PROVIDER")
            model = os.environ.get(prefix + "MODEL")
            if not provider and not model:
                continue
            current = getattr(self, role)
            if current is None:
                current = ProviderSettings(provider=provider or "")
                setattr(self, role, current)
            if provider:
                current.provider = provider.lower()
            if model:
                current.model = model

        subtasks = os.environ.get("TASKFORGE_DEFAULT_SUBTASKS")
        if subtasks:
            try:
                self.default_subtasks = int(subtasks)
            except ValueError:
                raise ValidationError(f"TASKFORGE_DEFAULT_SUBTASKS must be an integer, got {subtasks!r}") from None

    def role(self, name: str) -> ProviderSettings | None:
        if name not in ROLES:
            raise ValueError(f"Unknown provider role: {name}")
        return getattr(self, name)

    def data_path(self, root: Path) -> Path:
        return root / self.data_dir

    def tasks_path(self, root: Path) -> Path:
        return self.data_path(root) / "tasks" / "tasks.json"

    def state_path(self, root: Path) -> Path:
        return self.data_path(root) / "state.json"

    def complexity_report_path(self, root: Path, tag: str) -> Path:
        name = "task-complexity-report.json" if tag == "master" else f"task-complexity-report_{tag}.json"
        return self.data_path(root) / "reports" / name


def load_config(root: Path, **overrides: Any) -> Config:
    """Build a :class:`Config` from ``<root>/.taskforge/config.json`` if present.

    The file uses the layout::

        {"models": {"main": {"provider": "openai", "modelId": "gpt-4o", "maxTokens": 16000}},
         "global": {"defaultSubtasks": 3, "defaultPriority": "medium"}}

    Keyword *overrides* win over file values; env vars win over both.
    """
    kwargs: dict[str, Any] = {}
    path = root / DATA_DIR / CONFIG_FILE
    if exists(path):
        try:
            raw = read_json(path)
        except ValueError as exc:
            raise ValidationError(f"Invalid config file {path}: {exc}") from exc
        models = raw.get("models", {}) or {}
        for role in ROLES:
            if role in models:
                kwargs[role] = ProviderSettings.from_dict(models[role]) if models[role] else None
        glob = raw.get("global", {}) or {}
        if "defaultSubtasks" in glob:
            kwargs["default_subtasks"] = int(glob["defaultSubtasks"])
        if "defaultPriority" in glob:
            kwargs["default_priority"] = str(glob["defaultPriority"])
        if "maxAttempts" in glob:
            kwargs["max_attempts"] = int(glob["maxAttempts"])
        if "expandDelay" in glob:
            kwargs["expand_delay"] = float(glob["expandDelay"])
        if "projectName" in glob:
            kwargs["project_name"] = str(glob["projectName"])
    kwargs.update(overrides)
    return Config(**kwargs)


def resolve_project_root(start: Path | None = None) -> Path:
    """Return the git repository root, falling back to *start* or cwd."""
    try:
        result = subprocess.run(
            ["git", "rev-parse", "--show-toplevel"],
            capture_output=True,
            text=True,
            check=True,
            cwd=start,
        )
        return Path(result.stdout.strip())
    except (subprocess.CalledProcessError, FileNotFoundError):
        return start or Path.cwd()
