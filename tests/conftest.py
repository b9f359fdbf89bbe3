"""
Shared test fixtures for integration tests.

This file provides fixtures that span multiple components,
unlike component-specific fixtures in src/issue_monitor/{component}/tests/conftest.py
"""

from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, MagicMock

import pytest

from issue_monitor.github import RateLimitStatus
from issue_monitor.monitoring import HealthCheckConfig, MonitoringConfig

# Variables that would route alerts or probes to real services
_LIVE_ENV_VARS = (
    "GITHUB_TOKEN",
    "SLACK_WEBHOOK_URL",
    "ALERT_WEBHOOK_URL",
    "TELEGRAM_BOT_TOKEN",
    "TELEGRAM_CHAT_ID",
    "SMTP_HOST",
    "ALERT_EMAIL_TO",
    "DASHBOARD_API_KEY",
)


class ManualClock:
    """UTC clock that only moves when told to."""

    def __init__(self, start: datetime):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float = 0, **kwargs) -> datetime:
        self.now += timedelta(seconds=seconds, **kwargs)
        return self.now


# =============================================================================
# Environment Fixtures
# =============================================================================

@pytest.fixture
def clean_env(monkeypatch, tmp_path):
    """No live credentials, and no stray .env file in the working directory."""
    for name in _LIVE_ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    monkeypatch.chdir(tmp_path)
    return tmp_path


@pytest.fixture
def manual_clock():
    return ManualClock(datetime(2026, 3, 2, 9, 0, 0, tzinfo=timezone.utc))


# =============================================================================
# Mock External Service Fixtures
# =============================================================================

@pytest.fixture
def mock_github_client():
    """
    Mock GitHub status client.

    Use this when testing components that probe the GitHub API.
    """
    client = MagicMock()
    client.check_status = AsyncMock(return_value=RateLimitStatus(
        limit=5000,
        remaining=4750,
        reset=datetime(2026, 3, 2, 10, 0, 0, tzinfo=timezone.utc),
        used=250,
    ))
    client.get_authenticated_identity = AsyncMock(return_value={"login": "issue-bot"})
    client.close = AsyncMock()
    return client


@pytest.fixture
def github_client_factory(mock_github_client):
    return MagicMock(return_value=mock_github_client)


# =============================================================================
# Config Fixtures
# =============================================================================

@pytest.fixture
def manual_config():
    """Config whose scheduled cycle never fires during a test; cycles are run by hand."""
    return MonitoringConfig(
        health_check_interval_seconds=3600,
        health=HealthCheckConfig(
            probe_timeout_seconds=1.0,
            memory_threshold_bytes=64 * 1024 ** 3,
        ),
    )
