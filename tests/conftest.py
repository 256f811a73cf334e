"""Pytest fixtures and configuration for mail triage tests.

Provides common fixtures for configuration, a fixed clock, sample
messages and a mocked completion client.
"""

import json
import os
from collections.abc import Callable
from datetime import datetime
from pathlib import Path
from typing import Any, Generator
from unittest.mock import AsyncMock

import pytest

from mailtriage.classifier.dates import DateResolver
from mailtriage.classifier.models import InboundMessage
from mailtriage.classifier.normalizer import ContentNormalizer
from mailtriage.classifier.orchestrator import EmailClassifier
from mailtriage.classifier.rules import RulePolicy
from mailtriage.config import reset_config
from mailtriage.config_schema import AppConfig

# Monday
FIXED_NOW = datetime(2025, 3, 10, 9, 0)


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

timezone: "Asia/Kolkata"

ai:
  provider: "openai_compatible"
  max_attempts: 3

governor:
  interval_seconds: 0.01
  cache_capacity: 50
"""


@pytest.fixture
def sample_config_dict() -> dict[str, Any]:
    """Return a minimal valid config as a dictionary."""
    return {
        "schema_version": 1,
        "timezone": "Asia/Kolkata",
        "ai": {"provider": "openai_compatible", "max_attempts": 3},
        "governor": {"interval_seconds": 0.01, "cache_capacity": 50},
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
    """Set the MAILTRIAGE_CONFIG_PATH environment variable."""
    old_value = os.environ.get("MAILTRIAGE_CONFIG_PATH")
    os.environ["MAILTRIAGE_CONFIG_PATH"] = str(config_file)
    yield
    if old_value is None:
        del os.environ["MAILTRIAGE_CONFIG_PATH"]
    else:
        os.environ["MAILTRIAGE_CONFIG_PATH"] = old_value


# ---------------------------------------------------------------------------
# Pipeline fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def policy() -> RulePolicy:
    return RulePolicy.default()


@pytest.fixture
def resolver(policy: RulePolicy) -> DateResolver:
    """Date resolver pinned to Monday 2025-03-10 09:00."""
    return DateResolver(timezone="UTC", policy=policy, clock=lambda: FIXED_NOW)


@pytest.fixture
def make_message() -> Callable[..., InboundMessage]:
    """Factory for inbound messages with sensible defaults."""

    def _make(
        id: str = "msg-001",
        subject: str = "Quarterly planning",
        sender: str = "Bob <bob@corp.com>",
        body: str = "Let's go over the roadmap for next quarter.",
    ) -> InboundMessage:
        return InboundMessage(id=id, subject=subject, sender=sender, body=body)

    return _make


def ai_answer(**fields: Any) -> str:
    """Model answer text with the given fields as JSON."""
    payload = {"summary": "A summary.", "priority": "medium", "action": None, "dueDate": None}
    payload.update(fields)
    return json.dumps(payload)


@pytest.fixture
def mock_client() -> AsyncMock:
    """Completion client returning a plain medium-priority answer."""
    client = AsyncMock()
    client.max_attempts = 3
    client.complete = AsyncMock(return_value=ai_answer())
    return client


@pytest.fixture
def classifier(
    mock_client: AsyncMock,
    policy: RulePolicy,
    resolver: DateResolver,
) -> EmailClassifier:
    return EmailClassifier(
        client=mock_client,
        normalizer=ContentNormalizer(),
        policy=policy,
        resolver=resolver,
    )
