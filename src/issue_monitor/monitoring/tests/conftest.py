"""
Monitoring layer test fixtures.

Every component runs against a FakeClock so time windows, cooldowns and
uptime can be driven explicitly.
"""
from datetime import datetime, timedelta, timezone
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import pytest

from issue_monitor.monitoring.alerting import AlertingSystem
from issue_monitor.monitoring.config import (
    AlertThresholds,
    HealthCheckConfig,
    MonitoringConfig,
)
from issue_monitor.monitoring.health_checker import HealthCheckSystem
from issue_monitor.monitoring.metrics import MetricsCollector
from issue_monitor.monitoring.orchestrator import MonitoringOrchestrator
from issue_monitor.monitoring.pubsub import ALERT_RESOLVED, ALERT_TRIGGERED, EventBus


class FakeClock:
    """Manually advanced UTC clock."""

    def __init__(self, start: datetime):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float = 0, **kwargs) -> datetime:
        self.now += timedelta(seconds=seconds, **kwargs)
        return self.now


# =============================================================================
# Clock / Bus Fixtures
# =============================================================================

@pytest.fixture
def clock():
    """Clock fixed at 2026-01-15 12:00 UTC."""
    return FakeClock(datetime(2026, 1, 15, 12, 0, 0, tzinfo=timezone.utc))


@pytest.fixture
def event_bus():
    return EventBus()


@pytest.fixture
def published(event_bus):
    """Records every alert notification published on the bus."""
    events = {"triggered": [], "resolved": []}
    event_bus.subscribe(ALERT_TRIGGERED, events["triggered"].append)
    event_bus.subscribe(ALERT_RESOLVED, events["resolved"].append)
    return events


# =============================================================================
# API Client Fixtures
# =============================================================================

def make_rate_limit(remaining: int = 4900, limit: int = 5000):
    return SimpleNamespace(
        limit=limit,
        remaining=remaining,
        reset=datetime(2026, 1, 15, 13, 0, 0, tzinfo=timezone.utc),
    )


@pytest.fixture
def mock_api_client():
    """Healthy API client: authenticated, plenty of quota."""
    client = MagicMock()
    client.check_status = AsyncMock(return_value=make_rate_limit())
    client.get_authenticated_identity = AsyncMock(return_value={"login": "octocat"})
    client.close = AsyncMock()
    return client


@pytest.fixture
def api_client_factory(mock_api_client):
    return MagicMock(return_value=mock_api_client)


# =============================================================================
# Component Fixtures
# =============================================================================

@pytest.fixture
def health_config():
    """Short probe timeout; memory ceiling high enough for any test runner."""
    return HealthCheckConfig(
        probe_timeout_seconds=0.5,
        memory_threshold_bytes=64 * 1024 ** 3,
    )


@pytest.fixture
def collector(clock, event_bus):
    return MetricsCollector(retention_days=30, event_bus=event_bus, clock=clock)


@pytest.fixture
def health_checker(health_config, collector, api_client_factory, clock):
    return HealthCheckSystem(
        health_config,
        metrics_collector=collector,
        api_client_factory=api_client_factory,
        clock=clock,
    )


@pytest.fixture
def mock_dispatcher():
    """Dispatcher stand-in that records every dispatch."""
    dispatcher = MagicMock()
    dispatcher.dispatch = AsyncMock(return_value={"log": True})
    dispatcher.close = AsyncMock()
    dispatcher.channel_names = ["log"]
    return dispatcher


@pytest.fixture
def thresholds():
    return AlertThresholds(cooldown_period_seconds=300)


@pytest.fixture
def alerting(thresholds, event_bus, mock_dispatcher, clock):
    return AlertingSystem(
        thresholds,
        event_bus=event_bus,
        dispatcher=mock_dispatcher,
        clock=clock,
    )


@pytest.fixture
def monitoring_config(health_config):
    return MonitoringConfig(
        health_check_interval_seconds=0.05,
        health=health_config,
    )


@pytest.fixture
def orchestrator(monitoring_config, api_client_factory, clock):
    """Orchestrator wired to the mock API client."""
    return MonitoringOrchestrator(
        monitoring_config,
        api_client_factory=api_client_factory,
        clock=clock,
    )
