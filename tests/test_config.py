from __future__ import annotations

from pathlib import Path

import pytest

from src.llmswitch.config import ProviderDef, load_config, resolve_provider_config
from src.llmswitch.errors import UnknownProviderError


def write_providers(tmp_path: Path, text: str) -> Path:
    config_dir = tmp_path / "config"
    config_dir.mkdir(exist_ok=True)
    (config_dir / "providers.toml").write_text(text, encoding="utf-8")
    return config_dir


def write_settings(config_dir: Path, text: str) -> None:
    (config_dir / "settings.yaml").write_text(text, encoding="utf-8")


PROVIDERS = """
[work]
type = "anthropic"
model = "claude-3-opus-20240229"
auth_env = "WORK_ANTHROPIC_KEY"
timeout = 30

[local]
type = "ollama"
model = "llama3.2:latest"
base_url = "http://gpu-box:11434"

[azure]
type = "azure-openai"
model = "gpt4-deployment"
base_url = "https://example.openai.azure.com"
auth_env = "AZURE_KEY"

[azure.options]
api_version = "2024-06-01"
"""


def test_load_config_reads_profiles_and_active(tmp_path: Path) -> None:
    config_dir = write_providers(tmp_path, PROVIDERS)
    write_settings(config_dir, "active: local\n")

    loaded = load_config(str(config_dir))

    assert list(loaded.providers) == ["work", "local", "azure"]
    assert loaded.active == "local"
    assert loaded.active_provider().base_url == "http://gpu-box:11434"
    assert loaded.providers["work"].timeout == 30.0


def test_provider_def_resolves_api_key_from_env(tmp_path: Path) -> None:
    loaded = load_config(str(write_providers(tmp_path, PROVIDERS)))

    work = loaded.providers["work"].to_provider_config({"WORK_ANTHROPIC_KEY": " sk-ant "})
    azure = loaded.providers["azure"].to_provider_config({})

    assert work.provider == "anthropic"
    assert work.api_key == "sk-ant"
    assert work.timeout == 30.0
    assert azure.api_key is None
    assert azure.option("api_version") == "2024-06-01"


def test_load_config_without_settings_has_no_active(tmp_path: Path) -> None:
    loaded = load_config(str(write_providers(tmp_path, PROVIDERS)))

    assert loaded.active is None
    with pytest.raises(ValueError) as excinfo:
        loaded.active_provider()
    assert "work, local, azure" in str(excinfo.value)


def test_single_profile_is_active_by_default(tmp_path: Path) -> None:
    config_dir = write_providers(tmp_path, '[only]\ntype = "openai"\nmodel = "gpt-4"\n')

    assert load_config(str(config_dir)).active_provider().name == "only"


def test_load_config_rejects_unknown_type(tmp_path: Path) -> None:
    config_dir = write_providers(tmp_path, '[odd]\ntype = "mystery"\nmodel = "m"\n')

    with pytest.raises(UnknownProviderError) as excinfo:
        load_config(str(config_dir))

    assert "Unknown provider: mystery" in str(excinfo.value)


def test_load_config_rejects_empty_type(tmp_path: Path) -> None:
    config_dir = write_providers(tmp_path, '[blank]\ntype = ""\nmodel = "m"\n')

    with pytest.raises(ValueError) as excinfo:
        load_config(str(config_dir))

    assert "blank" in str(excinfo.value)
    assert "<missing>" in str(excinfo.value)


@pytest.mark.parametrize(
    ("body", "fragment"),
    [
        ('[p]\ntype = "openai"\nmodel = "m"\nrpm = 60\n', "rpm"),
        ('[p]\ntype = "openai"\nmodel = "m"\ntimeout = 0\n', "timeout"),
    ],
)
def test_load_config_rejects_invalid_fields(tmp_path: Path, body: str, fragment: str) -> None:
    config_dir = write_providers(tmp_path, body)

    with pytest.raises(ValueError) as excinfo:
        load_config(str(config_dir))

    assert "Provider 'p'" in str(excinfo.value)
    assert fragment in str(excinfo.value)


def test_load_config_rejects_options_that_shadow_fields(tmp_path: Path) -> None:
    body = '[p]\ntype = "openai"\nmodel = "gpt-4"\n\n[p.options]\nmodel = "gpt-3.5"\napiKey = "sk"\n'
    config_dir = write_providers(tmp_path, body)

    with pytest.raises(ValueError) as excinfo:
        load_config(str(config_dir))

    message = str(excinfo.value)
    assert "Provider 'p'" in message
    assert "options" in message
    assert "apiKey, model" in message


def test_provider_def_explicit_fields_win_over_options() -> None:
    definition = ProviderDef(
        name="p",
        type="azure-openai",
        model="gpt4-deployment",
        base_url="https://example.openai.azure.com",
        options={"model": "other", "base_url": "https://elsewhere", "api_version": "2024-06-01"},
    )

    config = definition.to_provider_config({})

    assert config.model == "gpt4-deployment"
    assert config.base_url == "https://example.openai.azure.com"
    assert config.option("api_version") == "2024-06-01"


def test_load_config_rejects_unknown_active_profile(tmp_path: Path) -> None:
    config_dir = write_providers(tmp_path, PROVIDERS)
    write_settings(config_dir, "active: missing\n")

    with pytest.raises(ValueError) as excinfo:
        load_config(str(config_dir))

    assert "missing" in str(excinfo.value)


def test_load_config_rejects_unknown_settings_keys(tmp_path: Path) -> None:
    config_dir = write_providers(tmp_path, PROVIDERS)
    write_settings(config_dir, "active: work\ntheme: dark\n")

    with pytest.raises(ValueError) as excinfo:
        load_config(str(config_dir))

    assert "theme" in str(excinfo.value)


def test_resolve_provider_config_defaults() -> None:
    openai = resolve_provider_config("openai", {"OPENAI_API_KEY": "sk"})
    anthropic = resolve_provider_config("anthropic", {})
    ollama = resolve_provider_config("ollama", {})
    google = resolve_provider_config("google", {"GEMINI_API_KEY": "g"})

    assert (openai.model, openai.api_key, openai.base_url) == ("gpt-4", "sk", None)
    assert anthropic.model == "claude-3-opus-20240229"
    assert anthropic.api_key is None
    assert (ollama.model, ollama.base_url) == ("llama3.2:latest", "http://localhost:11434")
    assert (google.model, google.api_key) == ("gemini-1.5-pro-latest", "g")


def test_resolve_provider_config_precedence() -> None:
    env = {"OLLAMA_MODEL": "qwen2", "OLLAMA_BASE_URL": "http://env:11434", "OPENAI_MODEL": "  "}

    from_env = resolve_provider_config("ollama", env)
    explicit = resolve_provider_config("ollama", env, model="phi3", base_url="http://cli:11434")
    blank = resolve_provider_config("openai", env)

    assert (from_env.model, from_env.base_url) == ("qwen2", "http://env:11434")
    assert (explicit.model, explicit.base_url) == ("phi3", "http://cli:11434")
    assert blank.model == "gpt-4"


def test_resolve_provider_config_azure_from_env() -> None:
    config = resolve_provider_config(
        "azure-openai",
        {
            "AZURE_OPENAI_API_KEY": "az",
            "AZURE_OPENAI_DEPLOYMENT": "prod-gpt4",
            "AZURE_OPENAI_ENDPOINT": "https://example.openai.azure.com",
        },
    )

    assert (config.api_key, config.model, config.base_url) == (
        "az",
        "prod-gpt4",
        "https://example.openai.azure.com",
    )


def test_resolve_provider_config_unknown_tag() -> None:
    with pytest.raises(UnknownProviderError):
        resolve_provider_config("mystery", {})


def test_resolve_provider_config_reads_process_env(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("ANTHROPIC_API_KEY", "from-env")

    assert resolve_provider_config("anthropic").api_key == "from-env"
