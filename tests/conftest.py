"""Shared fixtures for the Envoy test suite.

Config fixtures write real YAML files under tmp_path, the store is a real
SQLite file, and the model, knowledge search and action executor are
AsyncMock stand-ins that tests reconfigure as needed.
"""

from pathlib import Path
from typing import Any, Iterator
from unittest.mock import AsyncMock

import pytest

from envoy.agent.collaborators import ChatResult
from envoy.agent.types import ActionResponse, TokenUsage
from envoy.config import ENV_OVERRIDES, reset_config
from envoy.config_schema import AppConfig
from envoy.db.store import DatabaseStore

SAMPLE_CONFIG_YAML = """\
schema_version: 1
assistant_name: "Envoy"

autonomy:
  default_tier: "guardian"
  domain_overrides:
    web: "partner"

approval:
  default_threshold: 3

database:
  path: "data/envoy.db"
"""


@pytest.fixture(autouse=True)
def isolated_config(monkeypatch: pytest.MonkeyPatch) -> Iterator[None]:
    """Start every test with no cached config and no env overrides."""
    for name in ENV_OVERRIDES:
        monkeypatch.delenv(name, raising=False)
    reset_config()
    yield
    reset_config()


@pytest.fixture
def temp_config_dir(tmp_path: Path) -> Path:
    path = tmp_path / "config"
    path.mkdir()
    return path


@pytest.fixture
def config_file(temp_config_dir: Path) -> Path:
    """config.yaml with a web=partner override and the default threshold."""
    path = temp_config_dir / "config.yaml"
    path.write_text(SAMPLE_CONFIG_YAML)
    return path


@pytest.fixture
def set_config_env(config_file: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    """Point ENVOY_CONFIG_PATH at config_file."""
    monkeypatch.setenv("ENVOY_CONFIG_PATH", str(config_file))


@pytest.fixture
def sample_config_dict() -> dict[str, Any]:
    return {
        "schema_version": 1,
        "assistant_name": "Envoy",
        "autonomy": {"default_tier": "guardian"},
        "approval": {"default_threshold": 3},
        "style": {"max_attempts": 3, "score_threshold": 70},
    }


@pytest.fixture
def sample_config(sample_config_dict: dict[str, Any]) -> AppConfig:
    return AppConfig.model_validate(sample_config_dict)


@pytest.fixture
def data_dir(tmp_path: Path) -> Path:
    path = tmp_path / "data"
    path.mkdir()
    return path


@pytest.fixture
async def store(data_dir: Path) -> DatabaseStore:
    """Return an initialized DatabaseStore backed by a temp file."""
    s = DatabaseStore(data_dir / "test.db")
    await s.initialize()
    return s


# ---------------------------------------------------------------------------
# Collaborator helpers
# ---------------------------------------------------------------------------


@pytest.fixture
def model_provider() -> AsyncMock:
    """Model provider mock; set .chat.side_effect / .return_value per test."""
    provider = AsyncMock()
    provider.chat.return_value = ChatResult(
        message="Hello!", tool_calls=[], tokens_used=TokenUsage(prompt=10, completion=5)
    )
    return provider


@pytest.fixture
def knowledge() -> AsyncMock:
    """Knowledge search mock returning no results by default."""
    search = AsyncMock()
    search.search.return_value = []
    return search


@pytest.fixture
def executor() -> AsyncMock:
    """Action executor mock that succeeds by default."""
    ex = AsyncMock()
    ex.send_action.return_value = ActionResponse(status="success", data={"ok": True})
    return ex
