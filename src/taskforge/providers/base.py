"""Base classes for AI provider adapters."""

from __future__ import annotations

import json
import shutil
import subprocess
import time
from abc import ABC, abstractmethod
from collections.abc import Iterator
from dataclasses import dataclass
from pathlib import Path

from taskforge.config import ProviderSettings
from taskforge.provider_errors import (
    OverloadDetector,
    cli_overload_detector,
    default_overload_detector,
    looks_like_overload,
    looks_like_rate_limit,
)


@dataclass
class CompletionRequest:
    """One generation call, independent of transport."""

    system_prompt: str
    user_prompt: str
    max_tokens: int = 0
    temperature: float | None = None
    stream: bool = True


class ProviderCallError(Exception):
    """A provider failed; ``type``/``status_code`` feed overload detection."""

    def __init__(self, message: str, *, type: str = "", status_code: int | None = None) -> None:
        super().__init__(message)
        self.type = type
        self.status_code = status_code


class ProviderBase(ABC):
    """Abstract provider.  ``complete`` returns the full text or a chunk iterator."""

    name: str = "base"
    supports_research: bool = False
    overload_detector: OverloadDetector = staticmethod(default_overload_detector)

    def __init__(self, settings: ProviderSettings) -> None:
        self.settings = settings

    @property
    def label(self) -> str:
        model = self.settings.model
        return f"{self.settings.provider}:{model}" if model else self.settings.provider

    @property
    def max_tokens(self) -> int:
        return self.settings.max_tokens

    @abstractmethod
    def complete(self, request: CompletionRequest) -> str | Iterator[str]:
        """Run one completion.  Raise on failure; never retry internally."""
        ...

    def check_available(self) -> str | None:
        """Return an error message if the provider cannot be used, else None."""
        return None

    def is_overloaded(self, exc: BaseException) -> bool:
        return self.overload_detector(exc)


class CliProvider(ProviderBase):
    """Provider backed by a local agent CLI run as a one-shot subprocess.

    CLIs do not stream in this mode; ``complete`` returns the whole text.
    """

    executable: str = ""
    overload_detector: OverloadDetector = staticmethod(cli_overload_detector)

    def __init__(self, settings: ProviderSettings, *, cwd: Path | None = None, timeout: int | None = None) -> None:
        super().__init__(settings)
        self.cwd = cwd
        self.timeout = timeout

    @abstractmethod
    def build_cmd(self, prompt: str) -> list[str]:
        """Return the CLI command list for the given prompt."""
        ...

    @abstractmethod
    def parse_output(self, raw: str) -> str:
        """Extract the model text from raw stdout."""
        ...

    def stdin_for(self, prompt: str) -> str | None:
        """Text to feed on stdin, or None when the prompt travels as an argument."""
        return None

    def check_available(self) -> str | None:
        if not shutil.which(self.executable):
            return f"{self.executable} not found in PATH"
        return None

    def complete(self, request: CompletionRequest) -> str:
        prompt = f"{request.system_prompt}\n\n{request.user_prompt}" if request.system_prompt else request.user_prompt
        cmd = self.build_cmd(prompt)
        start = time.monotonic()
        try:
            proc = subprocess.run(
                cmd,
                input=self.stdin_for(prompt),
                capture_output=True,
                text=True,
                encoding="utf-8",
                errors="replace",
                cwd=self.cwd,
                timeout=self.timeout,
            )
        except subprocess.TimeoutExpired:
            raise ProviderCallError(f"{self.name} timed out after {self.timeout}s") from None
        except FileNotFoundError:
            raise ProviderCallError(f"{cmd[0]} not found") from None

        elapsed_ms = int((time.monotonic() - start) * 1000)
        error_type, error = self._check_errors(proc.stdout or "")
        if error:
            raise ProviderCallError(error, type=error_type)

        # Some CLIs report argument or quota problems only on stderr.
        if proc.returncode != 0:
            stderr = (proc.stderr or "").strip()
            message = stderr.splitlines()[0] if stderr else f"exit code {proc.returncode}"
            if looks_like_overload(stderr) or looks_like_rate_limit(stderr):
                raise ProviderCallError(stderr or message, type="overloaded_error")
            raise ProviderCallError(f"{self.name} failed after {elapsed_ms}ms: {message}")

        return self.parse_output(proc.stdout or "")

    @staticmethod
    def _check_errors(raw: str) -> tuple[str, str]:
        """Detect structured error lines. Returns ``(error_type, message)``."""
        if not raw:
            return "", ""

        # Structured parsing only, so model text mentioning "error" is not a failure.
        for line in raw.splitlines():
            stripped = line.strip()
            if not stripped:
                continue
            try:
                obj = json.loads(stripped)
            except json.JSONDecodeError:
                continue
            if not isinstance(obj, dict):
                continue

            err = obj.get("error")
            if isinstance(err, dict):
                msg = str(err.get("message", "")).strip()
                code = str(err.get("type", "") or err.get("code", "")).strip().lower()
                if code or msg:
                    return code, msg or code
            if isinstance(err, str) and err.strip():
                return "", err.strip()

            if obj.get("is_error") is True:
                return str(obj.get("subtype", "")), str(obj.get("result", "") or "Unknown error")

            if str(obj.get("type", "")).lower() == "error":
                msg = obj.get("message") or obj.get("text") or "Unknown error"
                return "", str(msg).strip()

        return "", ""
