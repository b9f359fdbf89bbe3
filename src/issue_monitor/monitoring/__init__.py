"""
Monitoring Layer - Health checks, metrics, alerting and dashboards.

This module provides:
    - MetricsCollector: Typed telemetry events with time-windowed aggregates
    - HealthCheckSystem: Concurrent, time-bounded component probes
    - AlertingSystem: Alert lifecycle with per-key deduplication and cooldown
    - NotificationDispatcher: Log, email, Slack, webhook and Telegram channels
    - DashboardSystem: HTML, JSON and text renders of the current state
    - MonitoringOrchestrator: Lifecycle and the periodic evaluation cycle
    - EventBus: Publish/subscribe for metric and alert notifications
    - create_app: Flask dashboard factory

Alert Deduplication:
    - At most one active alert per (component, metric)
    - Repeat breaches refresh the alert; notifications wait out the cooldown
    - Resolutions are notified once and move the alert to history
"""

from .alerting import Alert, AlertingSystem, AlertStats
from .config import (
    AlertThresholds,
    DashboardConfig,
    EmailConfig,
    HealthCheckConfig,
    MonitoringConfig,
    NotificationConfig,
    SlackConfig,
    TelegramConfig,
    WebhookConfig,
)
from .dashboard import DashboardFormat, DashboardSystem, create_app
from .events import ErrorSeverity, MetricCategory, MetricEvent
from .exceptions import (
    CycleFailure,
    EventValidationError,
    MonitoringError,
    NotificationDispatchFailure,
    ProbeFailure,
    StartupFailure,
)
from .health_checker import ComponentHealth, HealthCheckResult, HealthCheckSystem
from .metrics import MetricsCollector, MetricsSummary
from .models import AlertDescriptor, AlertLevel, HealthStatus
from .notifications import NotificationDispatcher
from .orchestrator import MonitoringOrchestrator
from .pubsub import EventBus

__all__ = [
    # Orchestration
    "MonitoringOrchestrator",
    "MonitoringConfig",
    # Metrics
    "MetricsCollector",
    "MetricsSummary",
    "MetricCategory",
    "MetricEvent",
    "ErrorSeverity",
    # Health checking
    "HealthCheckSystem",
    "HealthCheckConfig",
    "HealthCheckResult",
    "ComponentHealth",
    "HealthStatus",
    # Alerting
    "AlertingSystem",
    "Alert",
    "AlertStats",
    "AlertDescriptor",
    "AlertLevel",
    "AlertThresholds",
    "NotificationDispatcher",
    "NotificationConfig",
    "EmailConfig",
    "SlackConfig",
    "WebhookConfig",
    "TelegramConfig",
    # Dashboard
    "DashboardSystem",
    "DashboardConfig",
    "DashboardFormat",
    "create_app",
    # Pub/sub
    "EventBus",
    # Errors
    "MonitoringError",
    "EventValidationError",
    "ProbeFailure",
    "NotificationDispatchFailure",
    "CycleFailure",
    "StartupFailure",
]
