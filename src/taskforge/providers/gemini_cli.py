"""Google Gemini CLI provider."""

from __future__ import annotations

import json
import platform
import shutil

from taskforge.providers.base import CliProvider

# Long prompts go through stdin to stay under command-line length limits (~32KB on Windows)
_STDIN_THRESHOLD = 8000


class GeminiCliProvider(CliProvider):
    name = "gemini-cli"
    executable = "gemini"

    def _use_stdin(self, prompt: str) -> bool:
        return len(prompt) > _STDIN_THRESHOLD or platform.system() == "Windows"

    def build_cmd(self, prompt: str) -> list[str]:
        gemini = shutil.which("gemini") or "gemini"
        cmd = [gemini, "--output-format", "json"]
        if self.settings.model:
            cmd.extend(["--model", self.settings.model])
        if self._use_stdin(prompt):
            cmd.append("-")
        else:
            cmd.extend(["-p", prompt])
        return cmd

    def stdin_for(self, prompt: str) -> str | None:
        return prompt if self._use_stdin(prompt) else None

    def parse_output(self, raw: str) -> str:
        # Either one pretty-printed JSON object or JSON lines.
        candidates = [raw] + raw.splitlines()
        for chunk in candidates:
            chunk = chunk.strip()
            if not chunk:
                continue
            try:
                obj = json.loads(chunk)
            except json.JSONDecodeError:
                continue
            if not isinstance(obj, dict):
                continue
            text = obj.get("response") or obj.get("result") or obj.get("text")
            if text:
                return str(text)
        return raw.strip()

    def check_available(self) -> str | None:
        if not shutil.which("gemini"):
            return "Gemini CLI not found. Install from https://github.com/google-gemini/gemini-cli"
        return None
