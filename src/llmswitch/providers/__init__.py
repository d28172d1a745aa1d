from __future__ import annotations

from collections.abc import Callable, Mapping
from enum import Enum
from typing import Any

from ..errors import ConfigValidationError, UnknownProviderError
from ..types import ProviderConfig
from .anthropic import AnthropicProvider
from .base import BaseProvider, coerce
from .google import GoogleProvider
from .ollama import OllamaProvider
from .openai import AzureOpenAIProvider, OpenAIProvider

ProviderFactory = Callable[[ProviderConfig], BaseProvider]

MISSING_PROVIDER = "<missing>"


class ProviderType(str, Enum):
    GOOGLE = "google"
    OPENAI = "openai"
    ANTHROPIC = "anthropic"
    AZURE_OPENAI = "azure-openai"
    OLLAMA = "ollama"


class ProviderRegistry:
    _DEFAULT_FACTORIES: dict[str, ProviderFactory] = {
        ProviderType.GOOGLE.value: GoogleProvider,
        ProviderType.OPENAI.value: OpenAIProvider,
        ProviderType.AZURE_OPENAI.value: AzureOpenAIProvider,
        ProviderType.ANTHROPIC.value: AnthropicProvider,
        ProviderType.OLLAMA.value: OllamaProvider,
    }

    def __init__(self, factories: Mapping[str, ProviderFactory] | None = None):
        source = self._DEFAULT_FACTORIES if factories is None else factories
        self._factories: dict[str, ProviderFactory] = dict(source)

    def register(self, name: str, factory: ProviderFactory) -> None:
        self._factories[name] = factory

    def create_provider(
        self,
        config: ProviderConfig | Mapping[str, Any],
        *,
        validate: bool = False,
    ) -> BaseProvider:
        if isinstance(config, Mapping):
            tag = config.get("provider")
            if not isinstance(tag, str) or not tag.strip():
                raise UnknownProviderError(MISSING_PROVIDER, self.list_providers())
        resolved = coerce(ProviderConfig, config)
        factory = self._factories.get(resolved.provider)
        if factory is None:
            raise UnknownProviderError(resolved.provider, self.list_providers())
        provider = factory(resolved)
        if validate and not provider.validate_config(resolved):
            required = "model, API key" if provider.requires_api_key else "model"
            raise ConfigValidationError(
                f"Invalid configuration for provider '{resolved.provider}'; "
                f"required fields: {required}"
            )
        return provider

    def has_provider(self, name: str) -> bool:
        return name in self._factories

    def list_providers(self) -> list[str]:
        return list(self._factories)


default_registry = ProviderRegistry()


def register_provider(name: str, factory: ProviderFactory) -> None:
    default_registry.register(name, factory)


def create_provider(
    config: ProviderConfig | Mapping[str, Any], *, validate: bool = False
) -> BaseProvider:
    return default_registry.create_provider(config, validate=validate)


def has_provider(name: str) -> bool:
    return default_registry.has_provider(name)


def list_providers() -> list[str]:
    return default_registry.list_providers()


__all__ = [
    "AnthropicProvider",
    "AzureOpenAIProvider",
    "BaseProvider",
    "GoogleProvider",
    "OllamaProvider",
    "OpenAIProvider",
    "ProviderFactory",
    "ProviderRegistry",
    "ProviderType",
    "create_provider",
    "default_registry",
    "has_provider",
    "list_providers",
    "register_provider",
]
