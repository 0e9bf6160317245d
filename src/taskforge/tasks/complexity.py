"""Read-only access to the task complexity report."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from taskforge.errors import ValidationError
from taskforge.io_utils import exists, read_json


@dataclass
class ComplexityAnalysis:
    task_id: int
    task_title: str = ""
    complexity_score: float = 0.0
    recommended_subtasks: int = 0
    expansion_prompt: str = ""
    reasoning: str = ""

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ComplexityAnalysis:
        return cls(
            task_id=int(data["taskId"]),
            task_title=str(data.get("taskTitle", "")),
            complexity_score=float(data.get("complexityScore", 0) or 0),
            recommended_subtasks=int(data.get("recommendedSubtasks", 0) or 0),
            expansion_prompt=str(data.get("expansionPrompt", "") or ""),
            reasoning=str(data.get("reasoning", "") or ""),
        )


@dataclass
class ComplexityReport:
    meta: dict[str, Any] = field(default_factory=dict)
    analyses: list[ComplexityAnalysis] = field(default_factory=list)

    def get(self, task_id: int) -> ComplexityAnalysis | None:
        for a in self.analyses:
            if a.task_id == task_id:
                return a
        return None

    def score(self, task_id: int) -> float:
        found = self.get(task_id)
        return found.complexity_score if found else 0.0


def load_complexity_report(path: Path | None) -> ComplexityReport | None:
    """Return the parsed report, or ``None`` when there is no report file."""
    if path is None or not exists(path):
        return None
    try:
        raw = read_json(path)
        return ComplexityReport(
            meta=dict(raw.get("meta", {}) or {}),
            analyses=[ComplexityAnalysis.from_dict(a) for a in raw.get("complexityAnalysis", []) or []],
        )
    except (ValueError, KeyError, TypeError, AttributeError) as exc:
        raise ValidationError(f"Invalid complexity report {path}: {exc}") from exc
