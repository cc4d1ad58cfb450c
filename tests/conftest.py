"""Pytest fixtures and configuration for action agent tests.

Provides common fixtures for configuration, database, profiles and mocking
the Anthropic client.
"""

import os
from pathlib import Path
from types import SimpleNamespace
from typing import Any, Generator
from unittest.mock import MagicMock

import pytest

from action_agent.agent.models import UserProfile
from action_agent.config import CONFIG_PATH_ENV, reset_config
from action_agent.config_schema import AppConfig
from action_agent.db.store import DatabaseStore


@pytest.fixture(autouse=True)
def reset_config_singleton() -> Generator[None, None, None]:
    """Reset the config singleton before each test."""
    reset_config()
    yield
    reset_config()


@pytest.fixture
def temp_config_dir(tmp_path: Path) -> Path:
    """Create a temporary config directory."""
    config_dir = tmp_path / "config"
    config_dir.mkdir()
    return config_dir


@pytest.fixture
def sample_config_yaml() -> str:
    """Return a minimal valid config.yaml content."""
    return """
schema_version: 1

models:
  extraction: "claude-test-model"
  max_tokens: 1024

extraction:
  zero_score_keywords: ["Uber", "lunch", "afternoon catch up"]
  promotional_keywords: ["coupon", "newsletter", "discount"]
  finance_keywords: ["invoice", "payment"]

database:
  path: "data/test.db"
"""


@pytest.fixture
def sample_config_dict() -> dict[str, Any]:
    """Return a minimal valid config as a dictionary."""
    return {
        "schema_version": 1,
        "models": {"extraction": "claude-test-model", "max_tokens": 1024},
        "extraction": {
            "zero_score_keywords": ["Uber", "lunch", "afternoon catch up"],
            "promotional_keywords": ["coupon", "newsletter", "discount"],
            "finance_keywords": ["invoice", "payment"],
        },
        "database": {"path": "data/test.db"},
    }


@pytest.fixture
def sample_config(sample_config_dict: dict[str, Any]) -> AppConfig:
    """Return a minimal valid AppConfig instance."""
    return AppConfig(**sample_config_dict)


@pytest.fixture
def config_file(temp_config_dir: Path, sample_config_yaml: str) -> Path:
    """Create a temporary config file with valid content."""
    config_path = temp_config_dir / "config.yaml"
    config_path.write_text(sample_config_yaml)
    return config_path


@pytest.fixture
def set_config_env(config_file: Path) -> Generator[None, None, None]:
    """Set the ACTION_AGENT_CONFIG_PATH environment variable."""
    old_value = os.environ.get(CONFIG_PATH_ENV)
    os.environ[CONFIG_PATH_ENV] = str(config_file)
    yield
    if old_value is None:
        del os.environ[CONFIG_PATH_ENV]
    else:
        os.environ[CONFIG_PATH_ENV] = old_value


@pytest.fixture
def data_dir(tmp_path: Path) -> Path:
    """Create a temporary data directory."""
    data = tmp_path / "data"
    data.mkdir()
    return data


@pytest.fixture
async def store(data_dir: Path) -> DatabaseStore:
    """Create and initialize a DatabaseStore."""
    s = DatabaseStore(data_dir / "test.db")
    await s.initialize()
    return s


@pytest.fixture
def profile() -> UserProfile:
    """Return a representative user profile."""
    return UserProfile.model_validate(
        {
            "user_id": "user-1",
            "locale": "en",
            "timezone": "Europe/London",
            "location": {"latitude": 51.5, "longitude": -0.12, "city": "London"},
            "metadata": {"name": "Ada Lovelace", "email": "ada@example.com"},
            "personalized_settings": {
                "topic_preferences": ["engineering"],
                "exclude_keywords": ["lottery"],
                "labels": ["work"],
                "tags": ["vip"],
                "digest_hour": 8,
            },
        }
    )


def make_gmail_message(
    subject: str | None = "Invoice Due",
    snippet: str | None = "Pay by Friday",
    sender: str = "Billing <billing@example.com>",
    to: str = "ada@example.com",
    label_ids: list[str] | None = None,
    message_id: str = "msg-001",
) -> dict[str, Any]:
    """Build a Gmail API message resource."""
    headers = [{"name": "From", "value": sender}, {"name": "To", "value": to}]
    if subject is not None:
        headers.insert(0, {"name": "Subject", "value": subject})
    message: dict[str, Any] = {
        "id": message_id,
        "labelIds": label_ids if label_ids is not None else ["INBOX", "IMPORTANT"],
        "payload": {"headers": headers},
    }
    if snippet is not None:
        message["snippet"] = snippet
    return message


def make_action_input(**overrides: Any) -> dict[str, Any]:
    """Return a valid record_action tool input."""
    data: dict[str, Any] = {
        "text": "Pay the outstanding invoice before Friday.",
        "summary": "Pay invoice by Friday",
        "keywords": ["invoice", "payment", "deadline"],
        "suggestions": ["Open the billing page", "Pay the invoice"],
        "labels": ["weekly", "high", "email"],
        "importanceRating": 82,
    }
    data.update(overrides)
    return data


def make_tool_response(tool_input: dict[str, Any] | None, name: str = "record_action") -> Any:
    """Create a mock Anthropic API response carrying one tool_use block."""
    content = []
    if tool_input is not None:
        content.append(SimpleNamespace(type="tool_use", id="toolu_1", name=name, input=tool_input))
    else:
        content.append(SimpleNamespace(type="text", text="I cannot help with that."))
    return SimpleNamespace(
        id="msg_test",
        model="claude-test-model",
        stop_reason="tool_use",
        content=content,
        usage=SimpleNamespace(input_tokens=120, output_tokens=40),
    )


@pytest.fixture
def mock_anthropic() -> MagicMock:
    """Return a mock Anthropic client answering with a valid action."""
    client = MagicMock()
    client.messages.create = MagicMock(return_value=make_tool_response(make_action_input()))
    return client
