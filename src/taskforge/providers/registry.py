"""Provider registry: get the right adapter for a configured role."""

from __future__ import annotations

from taskforge.config import ROLES, Config, ProviderSettings
from taskforge.errors import ValidationError
from taskforge.providers.base import ProviderBase
from taskforge.providers.claude_code import ClaudeCodeProvider
from taskforge.providers.gemini_cli import GeminiCliProvider
from taskforge.providers.openai_compat import OpenAICompatProvider


def get_provider(settings: ProviderSettings) -> ProviderBase:
    """Return a provider adapter for *settings.provider*."""
    match settings.provider:
        case "openai" | "openrouter" | "perplexity":
            return OpenAICompatProvider(settings)
        case "claude-code":
            return ClaudeCodeProvider(settings)
        case "gemini-cli":
            return GeminiCliProvider(settings)
        case _:
            raise ValidationError(
                f"Unknown provider: {settings.provider}. Valid providers: {', '.join(PROVIDER_NAMES)}"
            )


def build_providers(config: Config) -> dict[str, ProviderBase]:
    """Instantiate one adapter per configured role."""
    providers: dict[str, ProviderBase] = {}
    for role in ROLES:
        settings = config.role(role)
        if settings is not None and settings.provider:
            providers[role] = get_provider(settings)
    return providers


PROVIDER_NAMES = ("openai", "openrouter", "perplexity", "claude-code", "gemini-cli")
