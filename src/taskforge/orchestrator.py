"""Provider orchestration: one generation call with overload fallback.

Each call runs a small state machine::

    SELECT ──> CALL ──> DONE
      │          │
      │          ├──> RETRY_WITH_FALLBACK ──> SELECT
      │          │
      └──────────┴──> FAILED

* Any error that the provider's overload detector does not recognise moves
  CALL straight to FAILED; it is never retried.
* An overload marks the provider as overloaded. While attempts remain the
  machine goes through RETRY_WITH_FALLBACK back to SELECT, which prefers a
  provider that is not overloaded and otherwise retries the primary one.
* Once ``max_attempts`` calls have been made the machine fails with
  :class:`ExhaustedFallbackError`.
"""

from __future__ import annotations

from collections.abc import Iterator
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Protocol

from taskforge import log
from taskforge.config import Config
from taskforge.errors import ExhaustedFallbackError, ProviderOtherError, ProviderOverloadError
from taskforge.log import Logger
from taskforge.providers.base import CompletionRequest, ProviderBase


class CallState(str, Enum):
    SELECT = "select"
    CALL = "call"
    RETRY_WITH_FALLBACK = "retry_with_fallback"
    FAILED = "failed"
    DONE = "done"


TRANSITIONS: dict[CallState, frozenset[CallState]] = {
    CallState.SELECT: frozenset({CallState.CALL, CallState.FAILED}),
    CallState.CALL: frozenset({CallState.DONE, CallState.RETRY_WITH_FALLBACK, CallState.FAILED}),
    CallState.RETRY_WITH_FALLBACK: frozenset({CallState.SELECT}),
    CallState.FAILED: frozenset(),
    CallState.DONE: frozenset(),
}


class ProgressSink(Protocol):
    def report(self, *, progress: float, **extra: Any) -> None: ...


@dataclass
class Attempt:
    role: str
    provider: str
    outcome: str  # "success" | "overloaded" | "error"
    error: str = ""


@dataclass
class GenerationResult:
    text: str
    role: str
    provider: str
    attempts: list[Attempt] = field(default_factory=list)


def stream_progress(received: int, max_tokens: int) -> float:
    """Heuristic percentage: characters received over the token budget."""
    if max_tokens <= 0:
        return 0.0
    return min(received / max_tokens * 100, 100.0)


class ProviderOrchestrator:
    """Selects providers by role and runs the fallback state machine.

    Roles are tried in this order::

        normal call:    main -> fallback -> research
        research call:  research -> main -> fallback
    """

    def __init__(
        self,
        providers: dict[str, ProviderBase],
        *,
        max_attempts: int = 2,
        logger: Logger | None = None,
    ) -> None:
        self.providers = providers
        self.max_attempts = max_attempts
        self.logger = logger or log.default_logger

    @classmethod
    def from_config(cls, config: Config, *, logger: Logger | None = None) -> ProviderOrchestrator:
        from taskforge.providers.registry import build_providers

        return cls(build_providers(config), max_attempts=config.max_attempts, logger=logger)

    # ── selection ────────────────────────────────────────────────

    def has_research(self) -> bool:
        provider = self.providers.get("research")
        return provider is not None and provider.supports_research and provider.check_available() is None

    def role_sequence(self, research: bool) -> list[str]:
        if research:
            if self.has_research():
                return ["research", "main", "fallback"]
            self.logger.warn(
                "Research requested but no research-capable provider is available. "
                "Falling back to the main provider."
            )
        return ["main", "fallback", "research"]

    def _candidates(self, roles: list[str]) -> list[tuple[str, ProviderBase]]:
        out: list[tuple[str, ProviderBase]] = []
        seen: set[int] = set()
        for role in roles:
            provider = self.providers.get(role)
            if provider is None or id(provider) in seen:
                continue
            seen.add(id(provider))
            problem = provider.check_available()
            if problem:
                self.logger.debug(f"Skipping {role} provider {provider.label}: {problem}")
                continue
            out.append((role, provider))
        return out

    def _select(
        self,
        candidates: list[tuple[str, ProviderBase]],
        overloaded: set[str],
    ) -> tuple[str, ProviderBase] | None:
        if not candidates:
            return None
        for role, provider in candidates:
            if provider.label not in overloaded:
                return role, provider
        role, provider = candidates[0]
        self.logger.warn(f"All providers are overloaded and no alternative is available. Retrying {provider.label}.")
        return role, provider

    # ── execution ────────────────────────────────────────────────

    def _call(
        self,
        provider: ProviderBase,
        request: CompletionRequest,
        progress: ProgressSink | None,
    ) -> str:
        output = provider.complete(request)
        if isinstance(output, str):
            return output
        return self._accumulate(output, request.max_tokens or provider.max_tokens, progress)

    @staticmethod
    def _accumulate(chunks: Iterator[str], max_tokens: int, progress: ProgressSink | None) -> str:
        parts: list[str] = []
        received = 0
        for chunk in chunks:
            if not chunk:
                continue
            parts.append(chunk)
            received += len(chunk)
            if progress is not None:
                progress.report(progress=stream_progress(received, max_tokens))
        return "".join(parts)

    @staticmethod
    def _advance(current: CallState, target: CallState) -> CallState:
        if target not in TRANSITIONS[current]:
            raise RuntimeError(f"Illegal provider call transition {current.value} -> {target.value}")
        return target

    def generate(
        self,
        request: CompletionRequest,
        *,
        research: bool = False,
        progress: ProgressSink | None = None,
    ) -> GenerationResult:
        """Run one generation through the fallback state machine."""
        candidates = self._candidates(self.role_sequence(research))
        overloaded: set[str] = set()
        attempts: list[Attempt] = []
        state = CallState.SELECT
        selected: tuple[str, ProviderBase] | None = None
        result: GenerationResult | None = None
        failure: Exception | None = None
        cause: BaseException | None = None

        while state not in (CallState.DONE, CallState.FAILED):
            match state:
                case CallState.SELECT:
                    selected = self._select(candidates, overloaded)
                    if selected is None:
                        failure = ProviderOtherError(
                            "No AI providers are available. Configure a provider and its API key."
                        )
                        state = self._advance(state, CallState.FAILED)
                    else:
                        self.logger.debug(f"Calling {selected[0]} provider {selected[1].label}")
                        state = self._advance(state, CallState.CALL)

                case CallState.CALL:
                    if selected is None:
                        raise RuntimeError("Provider call state reached without a selected provider")
                    role, provider = selected
                    try:
                        text = self._call(provider, request, progress)
                    except Exception as exc:
                        cause = exc
                        if provider.is_overloaded(exc):
                            overloaded.add(provider.label)
                            attempts.append(Attempt(role, provider.label, "overloaded", str(exc)))
                            if len(attempts) < self.max_attempts:
                                state = self._advance(state, CallState.RETRY_WITH_FALLBACK)
                            else:
                                failure = ExhaustedFallbackError(
                                    f"All AI providers are overloaded after {len(attempts)} attempts: "
                                    + ", ".join(a.provider for a in attempts),
                                    provider=provider.label,
                                    attempts=[a.provider for a in attempts],
                                )
                                cause = ProviderOverloadError(str(exc), provider=provider.label)
                                cause.__cause__ = exc
                                state = self._advance(state, CallState.FAILED)
                        else:
                            attempts.append(Attempt(role, provider.label, "error", str(exc)))
                            failure = ProviderOtherError(
                                f"{provider.label} failed: {exc}", provider=provider.label
                            )
                            state = self._advance(state, CallState.FAILED)
                    else:
                        attempts.append(Attempt(role, provider.label, "success"))
                        result = GenerationResult(text=text, role=role, provider=provider.label, attempts=attempts)
                        state = self._advance(state, CallState.DONE)

                case CallState.RETRY_WITH_FALLBACK:
                    self.logger.warn(f"{attempts[-1].provider} is overloaded. Trying a fallback provider.")
                    state = self._advance(state, CallState.SELECT)

        if state is CallState.DONE and result is not None:
            return result
        if failure is None:
            failure = ProviderOtherError("Provider call ended without a result")
        self.logger.debug(f"Provider call failed: {failure}")
        raise failure from cause
