from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

try:
    import tomllib
except ModuleNotFoundError:  # pragma: no cover - exercised on Python < 3.11
    import tomli as tomllib

import yaml
from pydantic import BaseModel, ConfigDict, Field, PositiveFloat, ValidationError, field_validator

from .errors import UnknownProviderError
from .providers import MISSING_PROVIDER, has_provider, list_providers
from .types import ProviderConfig

PROVIDERS_FILE = "providers.toml"
SETTINGS_FILE = "settings.yaml"

RESERVED_OPTION_KEYS = frozenset(
    {"provider", "model", "base_url", "baseUrl", "api_key", "apiKey", "timeout"}
)


@dataclass(frozen=True)
class _EnvDefaults:
    api_key_env: str | None
    model_env: str
    default_model: str | None
    base_url_env: str | None
    default_base_url: str | None = None


_ENV_DEFAULTS: dict[str, _EnvDefaults] = {
    "openai": _EnvDefaults("OPENAI_API_KEY", "OPENAI_MODEL", "gpt-4", "OPENAI_BASE_URL"),
    "anthropic": _EnvDefaults(
        "ANTHROPIC_API_KEY", "ANTHROPIC_MODEL", "claude-3-opus-20240229", "ANTHROPIC_BASE_URL"
    ),
    "ollama": _EnvDefaults(
        None, "OLLAMA_MODEL", "llama3.2:latest", "OLLAMA_BASE_URL", "http://localhost:11434"
    ),
    "google": _EnvDefaults("GEMINI_API_KEY", "GEMINI_MODEL", "gemini-1.5-pro-latest", "GEMINI_BASE_URL"),
    "azure-openai": _EnvDefaults(
        "AZURE_OPENAI_API_KEY", "AZURE_OPENAI_DEPLOYMENT", None, "AZURE_OPENAI_ENDPOINT"
    ),
}


def _env_value(env: Mapping[str, str], name: str | None) -> str | None:
    if not name:
        return None
    raw = env.get(name)
    if raw is None:
        return None
    value = raw.strip()
    return value or None


def resolve_provider_config(
    provider: str,
    env: Mapping[str, str] | None = None,
    *,
    model: str | None = None,
    base_url: str | None = None,
) -> ProviderConfig:
    """Build a ``ProviderConfig`` for ``provider`` from environment variables.

    Explicit ``model``/``base_url`` arguments win over the environment, which
    wins over the built-in defaults. Blank variables count as unset.
    """
    defaults = _ENV_DEFAULTS.get(provider)
    if defaults is None:
        raise UnknownProviderError(provider, list(_ENV_DEFAULTS))
    environ = os.environ if env is None else env
    return ProviderConfig(
        provider=provider,
        api_key=_env_value(environ, defaults.api_key_env),
        model=model or _env_value(environ, defaults.model_env) or defaults.default_model,
        base_url=base_url or _env_value(environ, defaults.base_url_env) or defaults.default_base_url,
    )


@dataclass
class ProviderDef:
    name: str
    type: str
    model: str
    base_url: str | None = None
    auth_env: str | None = None
    timeout: float | None = None
    options: dict[str, Any] = field(default_factory=dict)

    def to_provider_config(self, env: Mapping[str, str] | None = None) -> ProviderConfig:
        environ = os.environ if env is None else env
        extras = {
            key: value for key, value in self.options.items() if key not in RESERVED_OPTION_KEYS
        }
        return ProviderConfig(
            provider=self.type,
            model=self.model,
            base_url=self.base_url,
            api_key=_env_value(environ, self.auth_env),
            timeout=self.timeout,
            **extras,
        )


@dataclass
class LoadedConfig:
    providers: dict[str, ProviderDef]
    active: str | None = None

    def active_provider(self) -> ProviderDef:
        if self.active is not None:
            return self.providers[self.active]
        if len(self.providers) == 1:
            return next(iter(self.providers.values()))
        raise ValueError(
            f"No active provider selected; set 'active' in {SETTINGS_FILE} "
            f"(profiles: {', '.join(self.providers)})"
        )


class _ProviderModel(BaseModel):
    type: str = Field(default="openai")
    model: str = Field(default="")
    base_url: str | None = None
    auth_env: str | None = None
    timeout: PositiveFloat | None = None
    options: dict[str, Any] = Field(default_factory=dict)

    model_config = ConfigDict(extra="forbid")

    @field_validator("options")
    @classmethod
    def _options_do_not_shadow_fields(cls, value: dict[str, Any]) -> dict[str, Any]:
        clashes = sorted(key for key in value if key in RESERVED_OPTION_KEYS)
        if clashes:
            raise ValueError(
                f"options may not set {', '.join(clashes)}; use the top-level field instead"
            )
        return value


class _SettingsModel(BaseModel):
    active: str | None = None

    model_config = ConfigDict(extra="forbid")


def _validation_message(exc: ValidationError) -> str:
    problems = []
    for error in exc.errors():
        location = " -> ".join(str(item) for item in error.get("loc", ())) or "<root>"
        problems.append(f"{location}: {error.get('msg', 'invalid value')}")
    return "; ".join(problems)


def load_config(config_dir: str) -> LoadedConfig:
    prov_path = os.path.join(config_dir, PROVIDERS_FILE)
    with open(prov_path, "rb") as f:
        prov_data = tomllib.load(f)
    providers: dict[str, ProviderDef] = {}
    for name, raw in prov_data.items():
        if not isinstance(raw, dict):
            raise ValueError(f"Provider '{name}' must be a table in {PROVIDERS_FILE}")
        try:
            parsed = _ProviderModel.model_validate(raw)
        except ValidationError as exc:
            raise ValueError(f"Provider '{name}': {_validation_message(exc)}") from exc
        provider_type = parsed.type.strip()
        if not provider_type:
            raise ValueError(f"Unknown provider type '{MISSING_PROVIDER}' for provider '{name}'")
        if not has_provider(provider_type):
            raise UnknownProviderError(provider_type, list_providers())
        providers[name] = ProviderDef(
            name=name,
            type=provider_type,
            model=parsed.model,
            base_url=parsed.base_url,
            auth_env=parsed.auth_env,
            timeout=float(parsed.timeout) if parsed.timeout is not None else None,
            options=dict(parsed.options),
        )

    active: str | None = None
    settings_path = os.path.join(config_dir, SETTINGS_FILE)
    if os.path.exists(settings_path):
        with open(settings_path, "r", encoding="utf-8") as f:
            settings_data = yaml.safe_load(f) or {}
        try:
            settings = _SettingsModel.model_validate(settings_data)
        except ValidationError as exc:
            raise ValueError(_validation_message(exc)) from exc
        active = settings.active
        if active is not None and active not in providers:
            raise ValueError(
                f"{SETTINGS_FILE} selects unknown provider profile '{active}'"
            )
    return LoadedConfig(providers=providers, active=active)


__all__ = [
    "LoadedConfig",
    "ProviderDef",
    "load_config",
    "resolve_provider_config",
]
