"""Git queries used to derive tag names from branches."""

from __future__ import annotations

import subprocess
from pathlib import Path


def _git(*args: str, cwd: Path | None = None) -> subprocess.CompletedProcess[str]:
    """Run a git command, suppressing stderr noise."""
    try:
        return subprocess.run(
            ["git", *args],
            capture_output=True,
            text=True,
            cwd=cwd,
        )
    except FileNotFoundError:
        return subprocess.CompletedProcess(["git", *args], 127, "", "git not found")


def current_branch(cwd: Path | None = None) -> str | None:
    """Name of the checked-out branch, or ``None`` outside a repo or when detached."""
    r = _git("rev-parse", "--abbrev-ref", "HEAD", cwd=cwd)
    if r.returncode != 0:
        return None
    name = r.stdout.strip()
    return None if not name or name == "HEAD" else name
