"""
Monitoring configuration.

All settings are frozen pydantic models: thresholds and intervals are read
once at construction and never change while the orchestrator runs.

Environment Variables (read by MonitoringConfig.from_env):
    MONITOR_HEALTH_CHECK_INTERVAL     Seconds between evaluation cycles (default: 60)
    MONITOR_RETENTION_DAYS            Days metric events stay queryable (default: 30)
    MONITOR_METRICS_WINDOW            Trailing window for cycle metrics, seconds (default: 3600)
    MONITOR_PROBE_TIMEOUT             Per-probe timeout in seconds (default: 30)
    MONITOR_ERROR_RATE_THRESHOLD      Error rate that raises an alert (default: 0.05)
    MONITOR_RESPONSE_TIME_THRESHOLD   API response time threshold in ms (default: 5000)
    MONITOR_RATE_LIMIT_THRESHOLD      Remaining API calls that raise an alert (default: 100)
    MONITOR_ACCURACY_THRESHOLD        Minimum auto-labeling accuracy (default: 0.85)
    MONITOR_ALERT_COOLDOWN            Seconds between repeated notifications (default: 300)
    MONITOR_DASHBOARD_ENABLED         Enable dashboard rendering (default: true)
    MONITOR_DEBUG                     Log every cycle completion (default: false)
    SLACK_WEBHOOK_URL                 Slack incoming webhook for alerts
    ALERT_WEBHOOK_URL                 Generic webhook receiving alert JSON
    TELEGRAM_BOT_TOKEN                Telegram bot token for alerts
    TELEGRAM_CHAT_ID                  Telegram chat ID for alerts
    SMTP_HOST / SMTP_PORT / SMTP_USERNAME / SMTP_PASSWORD
    ALERT_EMAIL_FROM / ALERT_EMAIL_TO Email channel (comma separated recipients)
"""
from __future__ import annotations

import os
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


def _env_bool(name: str, default: str) -> bool:
    return os.environ.get(name, default).lower() == "true"


# =============================================================================
# Notification channels
# =============================================================================


class EmailConfig(BaseModel):
    """SMTP settings for the email channel."""

    model_config = ConfigDict(frozen=True)

    smtp_host: str
    smtp_port: int = 587
    from_address: str
    to_addresses: List[str] = Field(default_factory=list)
    username: Optional[str] = None
    password: Optional[str] = None
    use_tls: bool = True
    enabled: bool = True


class SlackConfig(BaseModel):
    """Slack incoming-webhook settings."""

    model_config = ConfigDict(frozen=True)

    webhook_url: str
    channel: Optional[str] = None
    username: str = "issue-monitor"
    enabled: bool = True


class WebhookConfig(BaseModel):
    """Generic JSON webhook settings."""

    model_config = ConfigDict(frozen=True)

    url: str
    headers: Dict[str, str] = Field(default_factory=dict)
    enabled: bool = True


class TelegramConfig(BaseModel):
    """Telegram bot settings."""

    model_config = ConfigDict(frozen=True)

    bot_token: str
    chat_id: str
    enabled: bool = True


class NotificationConfig(BaseModel):
    """Outbound alert channels. Every channel is optional."""

    model_config = ConfigDict(frozen=True)

    email: Optional[EmailConfig] = None
    slack: Optional[SlackConfig] = None
    webhook: Optional[WebhookConfig] = None
    telegram: Optional[TelegramConfig] = None
    dispatch_timeout_seconds: float = 10.0
    notify_on_resolve: bool = True


# =============================================================================
# Subsystems
# =============================================================================


class HealthCheckConfig(BaseModel):
    """Health probe timeouts and thresholds."""

    model_config = ConfigDict(frozen=True)

    probe_timeout_seconds: float = 30.0
    api_response_threshold_ms: float = 5000.0
    rate_limit_buffer: float = 0.2  # degraded once 80% of the quota is used
    labeling_accuracy_threshold: float = 0.85
    labeling_processing_time_threshold_ms: float = 30000.0
    labeling_window_seconds: float = 3600.0
    memory_threshold_bytes: int = 500 * 1024 * 1024
    history_size: int = 100


class AlertThresholds(BaseModel):
    """Alert rule thresholds and lifecycle limits."""

    model_config = ConfigDict(frozen=True)

    error_rate_threshold: float = 0.05
    response_time_threshold_ms: float = 5000.0
    rate_limit_threshold: int = 100
    accuracy_threshold: float = 0.85
    processing_time_threshold_ms: float = 30000.0
    manual_override_rate_threshold: float = 0.3
    operation_duration_threshold_ms: float = 10000.0
    cooldown_period_seconds: float = 300.0
    max_history: int = 1000


class DashboardConfig(BaseModel):
    """Dashboard rendering options."""

    model_config = ConfigDict(frozen=True)

    title: str = "Issue Automation - System Dashboard"
    history_hours: float = 24.0
    max_data_points: int = 100


class MonitoringConfig(BaseModel):
    """Complete monitoring configuration."""

    model_config = ConfigDict(frozen=True)

    health_check_interval_seconds: float = 60.0
    metrics_retention_days: float = 30.0
    metrics_window_seconds: float = 3600.0
    enable_performance_tracking: bool = True
    enable_dashboard: bool = True
    debug: bool = False

    health: HealthCheckConfig = Field(default_factory=HealthCheckConfig)
    thresholds: AlertThresholds = Field(default_factory=AlertThresholds)
    dashboard: DashboardConfig = Field(default_factory=DashboardConfig)
    notifications: NotificationConfig = Field(default_factory=NotificationConfig)

    @classmethod
    def from_env(cls) -> "MonitoringConfig":
        """Load configuration from environment variables."""
        health = HealthCheckConfig(
            probe_timeout_seconds=float(os.environ.get("MONITOR_PROBE_TIMEOUT", "30")),
            api_response_threshold_ms=float(os.environ.get("MONITOR_RESPONSE_TIME_THRESHOLD", "5000")),
            labeling_accuracy_threshold=float(os.environ.get("MONITOR_ACCURACY_THRESHOLD", "0.85")),
        )
        thresholds = AlertThresholds(
            error_rate_threshold=float(os.environ.get("MONITOR_ERROR_RATE_THRESHOLD", "0.05")),
            response_time_threshold_ms=float(os.environ.get("MONITOR_RESPONSE_TIME_THRESHOLD", "5000")),
            rate_limit_threshold=int(os.environ.get("MONITOR_RATE_LIMIT_THRESHOLD", "100")),
            accuracy_threshold=float(os.environ.get("MONITOR_ACCURACY_THRESHOLD", "0.85")),
            cooldown_period_seconds=float(os.environ.get("MONITOR_ALERT_COOLDOWN", "300")),
        )
        return cls(
            health_check_interval_seconds=float(os.environ.get("MONITOR_HEALTH_CHECK_INTERVAL", "60")),
            metrics_retention_days=float(os.environ.get("MONITOR_RETENTION_DAYS", "30")),
            metrics_window_seconds=float(os.environ.get("MONITOR_METRICS_WINDOW", "3600")),
            enable_dashboard=_env_bool("MONITOR_DASHBOARD_ENABLED", "true"),
            debug=_env_bool("MONITOR_DEBUG", "false"),
            health=health,
            thresholds=thresholds,
            notifications=notifications_from_env(),
        )


def notifications_from_env() -> NotificationConfig:
    """Build channel configuration from whichever credentials are present."""
    slack = None
    if os.environ.get("SLACK_WEBHOOK_URL"):
        slack = SlackConfig(webhook_url=os.environ["SLACK_WEBHOOK_URL"])

    webhook = None
    if os.environ.get("ALERT_WEBHOOK_URL"):
        webhook = WebhookConfig(url=os.environ["ALERT_WEBHOOK_URL"])

    telegram = None
    if os.environ.get("TELEGRAM_BOT_TOKEN") and os.environ.get("TELEGRAM_CHAT_ID"):
        telegram = TelegramConfig(
            bot_token=os.environ["TELEGRAM_BOT_TOKEN"],
            chat_id=os.environ["TELEGRAM_CHAT_ID"],
        )

    email = None
    if os.environ.get("SMTP_HOST") and os.environ.get("ALERT_EMAIL_TO"):
        email = EmailConfig(
            smtp_host=os.environ["SMTP_HOST"],
            smtp_port=int(os.environ.get("SMTP_PORT", "587")),
            from_address=os.environ.get("ALERT_EMAIL_FROM", "issue-monitor@localhost"),
            to_addresses=[a.strip() for a in os.environ["ALERT_EMAIL_TO"].split(",") if a.strip()],
            username=os.environ.get("SMTP_USERNAME"),
            password=os.environ.get("SMTP_PASSWORD"),
        )

    return NotificationConfig(email=email, slack=slack, webhook=webhook, telegram=telegram)
