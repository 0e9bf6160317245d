"""OpenAI-compatible chat providers: OpenAI, OpenRouter and Perplexity."""

from __future__ import annotations

import os
from collections.abc import Iterator
from typing import Any

import httpx
from openai import OpenAI

from taskforge.config import ProviderSettings
from taskforge.providers.base import CompletionRequest, ProviderBase

BASE_URLS = {
    "openai": "",
    "openrouter": "https://openrouter.ai/api/v1",
    "perplexity": "https://api.perplexity.ai",
}

API_KEY_ENV = {
    "openai": "OPENAI_API_KEY",
    "openrouter": "OPENROUTER_API_KEY",
    "perplexity": "PERPLEXITY_API_KEY",
}

# Only Perplexity's sonar models search the web while answering.
RESEARCH_PROVIDERS = frozenset({"perplexity"})


def _env_float(name: str, default: float) -> float:
    raw = (os.environ.get(name) or "").strip()
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        return default


def _timeout() -> httpx.Timeout:
    connect = _env_float("TASKFORGE_CONNECT_TIMEOUT_SECONDS", 10.0)
    read = _env_float("TASKFORGE_READ_TIMEOUT_SECONDS", 120.0)
    return httpx.Timeout(connect=connect, read=read, write=30.0, pool=connect)


class OpenAICompatProvider(ProviderBase):
    """Chat completions through the ``openai`` SDK, streamed when requested.

    The SDK's own retries are disabled: overload fallback belongs to the
    orchestrator, and a silent retry would hide it.
    """

    def __init__(self, settings: ProviderSettings, *, client: OpenAI | None = None) -> None:
        super().__init__(settings)
        self.name = settings.provider
        self.supports_research = settings.provider in RESEARCH_PROVIDERS
        self._client = client

    @property
    def api_key_env(self) -> str:
        return API_KEY_ENV.get(self.settings.provider, "OPENAI_API_KEY")

    def check_available(self) -> str | None:
        if self._client is None and not os.environ.get(self.api_key_env, "").strip():
            return f"{self.api_key_env} is not set"
        return None

    def _get_client(self) -> OpenAI:
        if self._client is None:
            base_url = self.settings.base_url or BASE_URLS.get(self.settings.provider, "")
            self._client = OpenAI(
                api_key=os.environ.get(self.api_key_env, ""),
                base_url=base_url or None,
                timeout=_timeout(),
                max_retries=0,
            )
        return self._client

    def _params(self, request: CompletionRequest) -> dict[str, Any]:
        messages = []
        if request.system_prompt:
            messages.append({"role": "system", "content": request.system_prompt})
        messages.append({"role": "user", "content": request.user_prompt})
        temperature = self.settings.temperature if request.temperature is None else request.temperature
        return {
            "model": self.settings.model,
            "messages": messages,
            "max_tokens": request.max_tokens or self.settings.max_tokens,
            "temperature": temperature,
        }

    def complete(self, request: CompletionRequest) -> str | Iterator[str]:
        params = self._params(request)
        if request.stream:
            return self._stream(params)
        response = self._get_client().chat.completions.create(**params)
        return response.choices[0].message.content or ""

    def _stream(self, params: dict[str, Any]) -> Iterator[str]:
        stream = self._get_client().chat.completions.create(stream=True, **params)
        try:
            for chunk in stream:
                if not chunk.choices:
                    continue
                delta = chunk.choices[0].delta.content
                if delta:
                    yield delta
        finally:
            stream.close()
