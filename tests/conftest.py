"""Pytest configuration: project importability and a clean provider environment."""

from __future__ import annotations

import os
import sys
from pathlib import Path

import pytest

ROOT_DIR = Path(__file__).resolve().parents[1]
ROOT_STR = str(ROOT_DIR)
if ROOT_STR not in sys.path:
    sys.path.insert(0, ROOT_STR)

PROVIDER_ENV_PREFIXES = ("OPENAI_", "ANTHROPIC_", "OLLAMA_", "GEMINI_", "AZURE_OPENAI_")


@pytest.fixture(autouse=True)
def _isolate_provider_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for key in list(os.environ):
        if key.startswith(PROVIDER_ENV_PREFIXES):
            monkeypatch.delenv(key, raising=False)
