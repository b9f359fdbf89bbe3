"""
Alerting System with per-key deduplication and cooldown.

Evaluates health results and metrics summaries against thresholds, keeps
at most one active alert per (component, metric) key, and hands
notifications to the dispatcher no more than once per cooldown period.
"""
from __future__ import annotations

import logging
import uuid
from collections import deque
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta
from typing import Any, Deque, Dict, List, Mapping, Optional, Union

from .config import AlertThresholds, NotificationConfig
from .events import Clock, utc_now
from .health_checker import HealthCheckResult
from .metrics import ErrorSummary, MetricsSummary
from .models import AlertDescriptor, AlertKey, AlertLevel, HealthStatus
from .notifications import NotificationDispatcher
from .pubsub import ALERT_RESOLVED, ALERT_TRIGGERED, EventBus

logger = logging.getLogger(__name__)

_LEVEL_RANK = {AlertLevel.WARNING: 0, AlertLevel.CRITICAL: 1}


@dataclass(frozen=True)
class Alert:
    """
    An alert record.

    Records are immutable: a repeat breach replaces the active record with
    a refreshed copy, and resolution produces the final resolved copy that
    moves to history.
    """

    id: str
    level: AlertLevel
    component: str
    metric: str
    message: str
    created_at: datetime
    last_triggered_at: datetime
    value: Optional[float] = None
    threshold: Optional[float] = None
    details: Dict[str, Any] = field(default_factory=dict)
    occurrences: int = 1
    resolved_at: Optional[datetime] = None

    @property
    def key(self) -> AlertKey:
        return (self.component, self.metric)

    @property
    def active(self) -> bool:
        return self.resolved_at is None

    @property
    def resolution_seconds(self) -> Optional[float]:
        if self.resolved_at is None:
            return None
        return (self.resolved_at - self.created_at).total_seconds()

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        return {
            "id": self.id,
            "level": self.level.value,
            "component": self.component,
            "metric": self.metric,
            "message": self.message,
            "value": self.value,
            "threshold": self.threshold,
            "details": dict(self.details),
            "occurrences": self.occurrences,
            "created_at": self.created_at.isoformat(),
            "last_triggered_at": self.last_triggered_at.isoformat(),
            "resolved_at": self.resolved_at.isoformat() if self.resolved_at else None,
            "active": self.active,
        }


@dataclass
class AlertStats:
    """Counts over a filtered set of alerts."""

    total: int = 0
    active: int = 0
    resolved: int = 0
    by_level: Dict[str, int] = field(default_factory=dict)
    by_component: Dict[str, int] = field(default_factory=dict)
    by_metric: Dict[str, int] = field(default_factory=dict)
    average_resolution_seconds: Optional[float] = None
    notifications_sent: int = 0
    notifications_suppressed: int = 0

    def to_dict(self) -> dict:
        return {
            "total": self.total,
            "active": self.active,
            "resolved": self.resolved,
            "by_level": dict(self.by_level),
            "by_component": dict(self.by_component),
            "by_metric": dict(self.by_metric),
            "average_resolution_seconds": (
                round(self.average_resolution_seconds, 1)
                if self.average_resolution_seconds is not None else None
            ),
            "notifications_sent": self.notifications_sent,
            "notifications_suppressed": self.notifications_suppressed,
        }


class AlertingSystem:
    """
    Manages alert lifecycle with deduplication.

    Transitions per (component, metric) key:
        none -> active      first breach, notifies
        active -> active    repeat breach, record refreshed, notifies only
                            once the cooldown has elapsed
        active -> resolved  condition cleared, notifies, moves to history

    The cooldown window for a key is [last_notified, last_notified + cooldown):
    a breach exactly at the boundary notifies again. Cooldown bookkeeping
    survives resolution, so a re-breach shortly after resolving creates a
    new active alert without a new notification.

    Usage:
        alerting = AlertingSystem(thresholds, event_bus=bus)

        await alerting.process_health_alerts(health_result)
        await alerting.process_metrics_alerts(metrics_summary)

        for alert in alerting.get_active_alerts():
            print(alert.component, alert.metric, alert.message)
    """

    def __init__(
        self,
        thresholds: Optional[AlertThresholds] = None,
        event_bus: Optional[EventBus] = None,
        dispatcher: Optional[NotificationDispatcher] = None,
        clock: Clock = utc_now,
    ) -> None:
        """
        Initialize the alerting system.

        Args:
            thresholds: Alert thresholds and lifecycle limits
            event_bus: Bus receiving alert.triggered / alert.resolved
            dispatcher: Outbound notification channels (log channel only if None)
            clock: Source of the current UTC time
        """
        self._thresholds = thresholds or AlertThresholds()
        self._bus = event_bus
        self._dispatcher = dispatcher or NotificationDispatcher()
        self._clock = clock
        self._cooldown = timedelta(seconds=self._thresholds.cooldown_period_seconds)

        self._active: Dict[AlertKey, Alert] = {}
        self._history: Deque[Alert] = deque(maxlen=self._thresholds.max_history)
        self._last_notified: Dict[AlertKey, datetime] = {}
        self._notifications_sent = 0
        self._notifications_suppressed = 0

    @property
    def thresholds(self) -> AlertThresholds:
        return self._thresholds

    @property
    def dispatcher(self) -> NotificationDispatcher:
        return self._dispatcher

    def configure_notifications(
        self,
        config: Union[NotificationConfig, Mapping[str, Any]],
    ) -> None:
        """Replace the outbound channels. The log channel always stays."""
        if not isinstance(config, NotificationConfig):
            config = NotificationConfig.model_validate(dict(config))
        self._dispatcher.configure(config)

    # Lifecycle

    async def trigger_alert(self, descriptor: AlertDescriptor, follow_level: bool = False) -> Alert:
        """
        Raise or refresh the alert for descriptor.key.

        A refresh keeps the highest level seen unless follow_level is set,
        in which case the descriptor's level replaces it.

        Args:
            descriptor: Breach to raise
            follow_level: Take descriptor.level on refresh, even if lower

        Returns:
            The current active record for the key
        """
        now = self._clock()
        key = descriptor.key
        existing = self._active.get(key)

        if existing is None:
            alert = Alert(
                id=f"{descriptor.component}-{descriptor.metric}-{uuid.uuid4().hex[:8]}",
                level=descriptor.level,
                component=descriptor.component,
                metric=descriptor.metric,
                message=descriptor.message,
                created_at=now,
                last_triggered_at=now,
                value=descriptor.value,
                threshold=descriptor.threshold,
                details=dict(descriptor.details),
            )
        else:
            level = existing.level
            if follow_level or _LEVEL_RANK[descriptor.level] > _LEVEL_RANK[level]:
                level = descriptor.level
            alert = replace(
                existing,
                level=level,
                message=descriptor.message,
                value=descriptor.value,
                threshold=descriptor.threshold,
                details=dict(descriptor.details),
                occurrences=existing.occurrences + 1,
                last_triggered_at=now,
            )
        self._active[key] = alert

        # Check and set happen before any await
        if not self._should_notify(key, now):
            self._notifications_suppressed += 1
            logger.debug(f"Alert in cooldown, notification suppressed: {key[0]}/{key[1]}")
            return alert

        self._last_notified[key] = now
        self._notifications_sent += 1
        if self._bus is not None:
            self._bus.publish(ALERT_TRIGGERED, alert)
        await self._dispatcher.dispatch(alert)
        return alert

    async def resolve_alert(self, component: str, metric: str) -> Optional[Alert]:
        """
        Resolve the active alert for a key.

        Returns:
            The resolved record, or None if nothing was active
        """
        key = (component, metric)
        alert = self._active.pop(key, None)
        if alert is None:
            return None

        resolved = replace(alert, resolved_at=self._clock())
        self._history.append(resolved)
        logger.info(f"Alert resolved: {component}/{metric}")

        if self._bus is not None:
            self._bus.publish(ALERT_RESOLVED, resolved)
        await self._dispatcher.dispatch(resolved, resolved=True)
        return resolved

    def _should_notify(self, key: AlertKey, now: datetime) -> bool:
        """Check if a notification for key is outside its cooldown."""
        last = self._last_notified.get(key)
        if last is None:
            return True
        return now - last >= self._cooldown

    async def _evaluate(
        self,
        component: str,
        metric: str,
        value: Optional[float],
        breached: bool,
        level: AlertLevel,
        message: str,
        threshold: Optional[float] = None,
    ) -> Optional[Alert]:
        # No data neither triggers nor resolves
        if value is None:
            return None
        if breached:
            return await self.trigger_alert(AlertDescriptor(
                component=component,
                metric=metric,
                level=level,
                message=message,
                value=value,
                threshold=threshold,
            ))
        await self.resolve_alert(component, metric)
        return None

    # Rules

    async def process_health_alerts(self, health: Optional[HealthCheckResult]) -> List[Alert]:
        """
        Evaluate a health check result.

        Unhealthy components raise critical (component, "health") alerts,
        degraded ones warnings, and a refresh follows the current status.
        Healthy components resolve theirs. A live
        rate-limit below the threshold raises ("api", "rateLimit").

        Returns:
            Alerts triggered or refreshed by this evaluation
        """
        if health is None:
            return []

        triggered = []
        for descriptor in health.alerts:
            triggered.append(await self.trigger_alert(descriptor, follow_level=True))

        for name, component in health.components.items():
            if component.status == HealthStatus.HEALTHY:
                await self.resolve_alert(name, "health")

        api = health.components.get("api")
        rate_limit = api.details.get("rate_limit") if api else None
        remaining = rate_limit.get("remaining") if rate_limit else None
        threshold = self._thresholds.rate_limit_threshold
        alert = await self._evaluate(
            "api", "rateLimit",
            value=remaining,
            breached=remaining is not None and remaining < threshold,
            level=AlertLevel.WARNING,
            message=f"API rate limit low: {remaining} remaining",
            threshold=threshold,
        )
        if alert:
            triggered.append(alert)

        return triggered

    async def process_metrics_alerts(self, metrics: Optional[MetricsSummary]) -> List[Alert]:
        """
        Evaluate a metrics summary.

        Rules with no data in the window are skipped.

        Returns:
            Alerts triggered or refreshed by this evaluation
        """
        if metrics is None:
            return []

        t = self._thresholds
        api = metrics.api_usage
        labeling = metrics.auto_labeling
        perf = metrics.performance
        results = []

        api_error_rate = api.error_rate
        results.append(await self._evaluate(
            "api", "errorRate",
            value=api_error_rate,
            breached=api_error_rate is not None and api_error_rate > t.error_rate_threshold,
            level=AlertLevel.CRITICAL,
            message=f"API error rate high: {(api_error_rate or 0) * 100:.1f}%",
            threshold=t.error_rate_threshold,
        ))

        response_ms = api.average_response_time_ms
        results.append(await self._evaluate(
            "api", "responseTime",
            value=response_ms,
            breached=response_ms is not None and response_ms > t.response_time_threshold_ms,
            level=AlertLevel.WARNING,
            message=f"API average response time high: {response_ms or 0:.0f}ms",
            threshold=t.response_time_threshold_ms,
        ))

        accuracy = labeling.average_accuracy
        results.append(await self._evaluate(
            "autoLabeling", "accuracy",
            value=accuracy,
            breached=accuracy is not None and accuracy < t.accuracy_threshold,
            level=AlertLevel.WARNING,
            message=f"Auto-labeling accuracy declining: {(accuracy or 0) * 100:.1f}%",
            threshold=t.accuracy_threshold,
        ))

        processing_ms = labeling.average_processing_time_ms
        results.append(await self._evaluate(
            "autoLabeling", "processingTime",
            value=processing_ms,
            breached=processing_ms is not None and processing_ms > t.processing_time_threshold_ms,
            level=AlertLevel.WARNING,
            message=f"Auto-labeling processing time high: {(processing_ms or 0) / 1000:.1f}s",
            threshold=t.processing_time_threshold_ms,
        ))

        override_rate = labeling.manual_override_rate
        results.append(await self._evaluate(
            "autoLabeling", "overrideRate",
            value=override_rate,
            breached=override_rate is not None and override_rate > t.manual_override_rate_threshold,
            level=AlertLevel.WARNING,
            message=f"High manual override rate: {(override_rate or 0) * 100:.1f}%",
            threshold=t.manual_override_rate_threshold,
        ))

        duration_ms = perf.average_duration_ms
        results.append(await self._evaluate(
            "performance", "operationDuration",
            value=duration_ms,
            breached=duration_ms is not None and duration_ms > t.operation_duration_threshold_ms,
            level=AlertLevel.WARNING,
            message=f"Operations running slowly: {(duration_ms or 0) / 1000:.1f}s average",
            threshold=t.operation_duration_threshold_ms,
        ))

        results.append(await self.process_error_rate(metrics.errors))

        return [a for a in results if a is not None]

    async def process_error_rate(self, errors: ErrorSummary) -> Optional[Alert]:
        """Evaluate the ("errors", "errorRate") rule on its own."""
        threshold = self._thresholds.error_rate_threshold
        return await self._evaluate(
            "errors", "errorRate",
            value=errors.error_rate,
            breached=errors.error_rate > threshold,
            level=AlertLevel.CRITICAL,
            message=(
                f"System error rate high: {errors.error_rate * 100:.1f}% "
                f"({errors.total_errors} errors / {errors.total_operations} operations)"
            ),
            threshold=threshold,
        )

    async def test_alerts(self) -> Alert:
        """
        Fire a warning-level ("test", "systemCheck") alert through every
        channel, then resolve it so it does not linger.
        """
        alert = await self.trigger_alert(AlertDescriptor(
            component="test",
            metric="systemCheck",
            level=AlertLevel.WARNING,
            message="Test alert from the monitoring system",
            details={"test": True},
        ))
        await self.resolve_alert("test", "systemCheck")
        return alert

    # Queries

    def get_active_alerts(self) -> List[Alert]:
        """Active alerts, oldest first."""
        return sorted(self._active.values(), key=lambda a: a.created_at)

    def get_active_alert(self, component: str, metric: str) -> Optional[Alert]:
        return self._active.get((component, metric))

    def get_alert_history(
        self,
        component: Optional[str] = None,
        metric: Optional[str] = None,
        level: Optional[AlertLevel] = None,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        limit: Optional[int] = 100,
        include_active: bool = False,
    ) -> List[Alert]:
        """
        Resolved alerts, optionally merged with active ones, oldest first.

        Args:
            component: Only this component
            metric: Only this metric
            level: Only this level
            start: Created at or after
            end: Created at or before
            limit: Keep the newest N (None for all)
            include_active: Include currently active alerts
        """
        alerts = list(self._history)
        if include_active:
            alerts.extend(self._active.values())

        if component:
            alerts = [a for a in alerts if a.component == component]
        if metric:
            alerts = [a for a in alerts if a.metric == metric]
        if level:
            alerts = [a for a in alerts if a.level == level]
        if start:
            alerts = [a for a in alerts if a.created_at >= start]
        if end:
            alerts = [a for a in alerts if a.created_at <= end]

        alerts.sort(key=lambda a: a.created_at)
        if limit is not None:
            alerts = alerts[-limit:] if limit > 0 else []
        return alerts

    def get_alert_stats(
        self,
        component: Optional[str] = None,
        metric: Optional[str] = None,
        level: Optional[AlertLevel] = None,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> AlertStats:
        """Statistics over active and resolved alerts matching the filter."""
        alerts = self.get_alert_history(
            component=component,
            metric=metric,
            level=level,
            start=start,
            end=end,
            limit=None,
            include_active=True,
        )

        stats = AlertStats(
            total=len(alerts),
            notifications_sent=self._notifications_sent,
            notifications_suppressed=self._notifications_suppressed,
        )
        resolution_times = []
        for alert in alerts:
            stats.by_level[alert.level.value] = stats.by_level.get(alert.level.value, 0) + 1
            stats.by_component[alert.component] = stats.by_component.get(alert.component, 0) + 1
            stats.by_metric[alert.metric] = stats.by_metric.get(alert.metric, 0) + 1
            if alert.active:
                stats.active += 1
            else:
                stats.resolved += 1
                resolution_times.append(alert.resolution_seconds)

        if resolution_times:
            stats.average_resolution_seconds = sum(resolution_times) / len(resolution_times)
        return stats

    def clear(self) -> None:
        """Drop all alert state (for testing)."""
        self._active.clear()
        self._history.clear()
        self._last_notified.clear()
        self._notifications_sent = 0
        self._notifications_suppressed = 0
