"""Claude Code CLI provider."""

from __future__ import annotations

import json
import shutil

from taskforge.providers.base import CliProvider


class ClaudeCodeProvider(CliProvider):
    name = "claude-code"
    executable = "claude"

    def build_cmd(self, prompt: str) -> list[str]:
        # Resolved path so the child gets an absolute executable (pipx on Windows).
        claude = shutil.which("claude") or "claude"
        cmd = [claude, "-p", prompt, "--output-format", "json"]
        if self.settings.model:
            cmd.extend(["--model", self.settings.model])
        return cmd

    def parse_output(self, raw: str) -> str:
        text = ""
        for line in raw.splitlines():
            if '"type":"result"' not in line.replace(" ", ""):
                continue
            try:
                obj = json.loads(line)
            except json.JSONDecodeError:
                continue
            text = str(obj.get("result", "") or "")
        return text or raw.strip()

    def check_available(self) -> str | None:
        if not shutil.which("claude"):
            return "Claude Code CLI not found. Install from https://github.com/anthropics/claude-code"
        return None
