"""
Monitoring error taxonomy.

Only StartupFailure and EventValidationError are meant to reach callers.
The others are raised inside a probe, a notification channel or the
evaluation cycle and are caught and recorded where they happen.
"""
from __future__ import annotations

from typing import Optional


class MonitoringError(Exception):
    """Base exception for the monitoring layer."""
    pass


class EventValidationError(MonitoringError, ValueError):
    """A telemetry event is missing required fields or has invalid values."""

    def __init__(self, category: str, message: str):
        super().__init__(f"Invalid {category} event: {message}")
        self.category = category


class ProbeFailure(MonitoringError):
    """A single health probe could not complete."""

    def __init__(self, component: str, message: str):
        super().__init__(f"{component} probe failed: {message}")
        self.component = component


class NotificationDispatchFailure(MonitoringError):
    """An outbound notification channel could not be reached."""

    def __init__(self, channel: str, message: str, status_code: Optional[int] = None):
        super().__init__(f"{channel} notification failed: {message}")
        self.channel = channel
        self.status_code = status_code


class CycleFailure(MonitoringError):
    """Unexpected failure inside the scheduled evaluation cycle."""
    pass


class StartupFailure(MonitoringError):
    """The initial health check at start() could not complete."""
    pass
