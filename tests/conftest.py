"""
Shared fixtures: poem data, cards and isolated settings.
"""

import json
from pathlib import Path

import pytest

from divination.config import Settings
from divination.oracle.poems import FortunePoem, PoemLibrary
from tests.helpers import SAMPLE_POEMS


@pytest.fixture(autouse=True)
def isolate_env(monkeypatch):
    """Keep real provider keys and .env settings out of tests."""
    for key in (
        "OPENAI_API_KEY",
        "GOOGLE_AI_API_KEY",
        "STABILITY_API_KEY",
        "TEXT_PROVIDER",
        "POEM_DATA_PATH",
        "LLM_MAX_ATTEMPTS",
    ):
        monkeypatch.delenv(key, raising=False)


@pytest.fixture
def settings() -> Settings:
    return Settings(_env_file=None, google_ai_api_key="test-key", llm_max_attempts=2)


@pytest.fixture
def poem_library() -> PoemLibrary:
    return PoemLibrary([FortunePoem.model_validate(p) for p in SAMPLE_POEMS])


@pytest.fixture
def poem_file(tmp_path: Path) -> Path:
    path = tmp_path / "poems.json"
    path.write_text(json.dumps(SAMPLE_POEMS, ensure_ascii=False), encoding="utf-8")
    return path


@pytest.fixture
def cards() -> list[dict[str, str]]:
    return [
        {"id": "qian", "name": "乾"},
        {"id": "gen", "name": "艮"},
        {"id": "li", "name": "離"},
    ]
