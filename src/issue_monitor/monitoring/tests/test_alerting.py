"""
Tests for AlertingSystem.

Alerts notify operators of threshold breaches. The same (component, metric)
must never spam: one active alert per key, one notification per cooldown.
"""
from datetime import datetime, timezone

import pytest

from issue_monitor.monitoring.alerting import AlertingSystem
from issue_monitor.monitoring.config import AlertThresholds
from issue_monitor.monitoring.health_checker import ComponentHealth, HealthCheckResult
from issue_monitor.monitoring.metrics import (
    ApiUsageSummary,
    AutoLabelingSummary,
    ErrorSummary,
    MetricsSummary,
    TimeRange,
)
from issue_monitor.monitoring.models import AlertDescriptor, AlertLevel, HealthStatus


def descriptor(component="api", metric="errorRate", level=AlertLevel.WARNING, message="breach"):
    return AlertDescriptor(component=component, metric=metric, level=level, message=message)


def metrics_summary(clock, api=None, labeling=None, errors=None):
    return MetricsSummary(
        time_range=TimeRange(start=clock(), end=clock()),
        api_usage=api or ApiUsageSummary(),
        auto_labeling=labeling or AutoLabelingSummary(),
        errors=errors or ErrorSummary(),
    )


def health_result(clock, components, alerts=None):
    return HealthCheckResult(
        timestamp=clock(),
        overall=HealthStatus.HEALTHY,
        components=components,
        alerts=alerts or [],
    )


class TestDeduplication:
    """At most one active alert per key."""

    @pytest.mark.asyncio
    async def test_repeat_breach_refreshes_single_alert(self, alerting, clock):
        first = await alerting.trigger_alert(descriptor(message="first"))
        clock.advance(10)
        second = await alerting.trigger_alert(descriptor(message="second"))

        active = alerting.get_active_alerts()
        assert len(active) == 1
        assert second.id == first.id
        assert second.occurrences == 2
        assert second.message == "second"
        assert second.created_at == first.created_at
        assert second.last_triggered_at == clock()

    @pytest.mark.asyncio
    async def test_different_keys_are_separate(self, alerting):
        await alerting.trigger_alert(descriptor(metric="errorRate"))
        await alerting.trigger_alert(descriptor(metric="responseTime"))

        assert len(alerting.get_active_alerts()) == 2

    @pytest.mark.asyncio
    async def test_refresh_escalates_level(self, alerting):
        await alerting.trigger_alert(descriptor(level=AlertLevel.WARNING))
        alert = await alerting.trigger_alert(descriptor(level=AlertLevel.CRITICAL))

        assert alert.level == AlertLevel.CRITICAL

    @pytest.mark.asyncio
    async def test_refresh_never_downgrades_level(self, alerting):
        await alerting.trigger_alert(descriptor(level=AlertLevel.CRITICAL))
        alert = await alerting.trigger_alert(descriptor(level=AlertLevel.WARNING))

        assert alert.level == AlertLevel.CRITICAL


class TestCooldown:
    """Notifications for one key are spaced by the cooldown period."""

    @pytest.mark.asyncio
    async def test_two_breaches_within_cooldown_notify_once(self, alerting, clock, mock_dispatcher, published):
        await alerting.trigger_alert(descriptor())
        clock.advance(60)
        await alerting.trigger_alert(descriptor())

        assert mock_dispatcher.dispatch.await_count == 1
        assert len(published["triggered"]) == 1
        assert len(alerting.get_active_alerts()) == 1

    @pytest.mark.asyncio
    async def test_breach_after_cooldown_notifies_again(self, alerting, clock, mock_dispatcher):
        await alerting.trigger_alert(descriptor())
        clock.advance(301)
        await alerting.trigger_alert(descriptor())

        assert mock_dispatcher.dispatch.await_count == 2

    @pytest.mark.asyncio
    async def test_breach_exactly_at_boundary_notifies(self, alerting, clock, mock_dispatcher):
        """The cooldown window is closed-open: [last, last + cooldown)."""
        await alerting.trigger_alert(descriptor())
        clock.advance(299)
        await alerting.trigger_alert(descriptor())
        assert mock_dispatcher.dispatch.await_count == 1

        clock.advance(1)
        await alerting.trigger_alert(descriptor())
        assert mock_dispatcher.dispatch.await_count == 2

    @pytest.mark.asyncio
    async def test_suppressed_notifications_are_counted(self, alerting, clock):
        await alerting.trigger_alert(descriptor())
        await alerting.trigger_alert(descriptor())
        await alerting.trigger_alert(descriptor())

        stats = alerting.get_alert_stats()
        assert stats.notifications_sent == 1
        assert stats.notifications_suppressed == 2

    @pytest.mark.asyncio
    async def test_cooldown_survives_resolution(self, alerting, clock, mock_dispatcher):
        """A flapping condition re-opens the alert without a second creation notice."""
        await alerting.trigger_alert(descriptor())
        await alerting.resolve_alert("api", "errorRate")
        clock.advance(30)
        await alerting.trigger_alert(descriptor())

        creations = [c for c in mock_dispatcher.dispatch.await_args_list if not c.kwargs.get("resolved")]
        assert len(creations) == 1
        assert len(alerting.get_active_alerts()) == 1


class TestResolution:
    """active -> resolved."""

    @pytest.mark.asyncio
    async def test_resolve_moves_alert_to_history(self, alerting, clock):
        await alerting.trigger_alert(descriptor())
        clock.advance(120)

        resolved = await alerting.resolve_alert("api", "errorRate")

        assert resolved.resolved_at == clock()
        assert resolved.active is False
        assert resolved.resolution_seconds == 120
        assert alerting.get_active_alerts() == []
        assert alerting.get_alert_history() == [resolved]

    @pytest.mark.asyncio
    async def test_resolution_notifies_exactly_once(self, alerting, mock_dispatcher, published):
        await alerting.trigger_alert(descriptor())

        await alerting.resolve_alert("api", "errorRate")
        await alerting.resolve_alert("api", "errorRate")

        resolutions = [c for c in mock_dispatcher.dispatch.await_args_list if c.kwargs.get("resolved")]
        assert len(resolutions) == 1
        assert len(published["resolved"]) == 1

    @pytest.mark.asyncio
    async def test_resolve_without_active_alert_returns_none(self, alerting):
        assert await alerting.resolve_alert("api", "errorRate") is None

    @pytest.mark.asyncio
    async def test_history_is_bounded(self, event_bus, mock_dispatcher, clock):
        alerting = AlertingSystem(
            AlertThresholds(max_history=2),
            event_bus=event_bus,
            dispatcher=mock_dispatcher,
            clock=clock,
        )
        for i in range(4):
            await alerting.trigger_alert(descriptor(metric=f"m{i}"))
            await alerting.resolve_alert("api", f"m{i}")

        history = alerting.get_alert_history()
        assert [a.metric for a in history] == ["m2", "m3"]


class TestMetricsRules:
    """Rules evaluated against a metrics summary."""

    @pytest.mark.asyncio
    async def test_error_rate_008_creates_exactly_one_errors_alert(self, alerting, clock):
        """errorRateThreshold = 0.05 and errorRate = 0.08 -> one errors/errorRate alert."""
        summary = metrics_summary(
            clock,
            errors=ErrorSummary(total_errors=8, total_operations=100, error_rate=0.08),
        )

        triggered = await alerting.process_metrics_alerts(summary)

        assert [(a.component, a.metric) for a in triggered] == [("errors", "errorRate")]
        active = alerting.get_active_alerts()
        assert len(active) == 1
        assert active[0].level == AlertLevel.CRITICAL
        assert active[0].value == 0.08

    @pytest.mark.asyncio
    async def test_repeated_evaluation_keeps_one_alert(self, alerting, clock):
        summary = metrics_summary(clock, errors=ErrorSummary(total_errors=8, total_operations=100, error_rate=0.08))

        await alerting.process_metrics_alerts(summary)
        await alerting.process_metrics_alerts(summary)

        assert len(alerting.get_active_alerts()) == 1

    @pytest.mark.asyncio
    async def test_cleared_condition_resolves(self, alerting, clock, published):
        breach = metrics_summary(clock, errors=ErrorSummary(total_errors=8, total_operations=100, error_rate=0.08))
        healthy = metrics_summary(clock, errors=ErrorSummary(total_errors=1, total_operations=100, error_rate=0.01))

        await alerting.process_metrics_alerts(breach)
        await alerting.process_metrics_alerts(healthy)

        assert alerting.get_active_alerts() == []
        assert len(published["resolved"]) == 1

    @pytest.mark.asyncio
    async def test_api_error_rate_and_response_time(self, alerting, clock):
        summary = metrics_summary(
            clock,
            api=ApiUsageSummary(total_requests=10, success_rate=0.8, average_response_time_ms=7000),
        )

        await alerting.process_metrics_alerts(summary)

        keys = {a.key for a in alerting.get_active_alerts()}
        assert keys == {("api", "errorRate"), ("api", "responseTime")}

    @pytest.mark.asyncio
    async def test_auto_labeling_rules(self, alerting, clock):
        summary = metrics_summary(
            clock,
            labeling=AutoLabelingSummary(
                total_events=10,
                average_accuracy=0.7,
                average_processing_time_ms=45000,
                manual_override_rate=0.4,
            ),
        )

        await alerting.process_metrics_alerts(summary)

        keys = {a.key for a in alerting.get_active_alerts()}
        assert keys == {
            ("autoLabeling", "accuracy"),
            ("autoLabeling", "processingTime"),
            ("autoLabeling", "overrideRate"),
        }

    @pytest.mark.asyncio
    async def test_missing_data_neither_triggers_nor_resolves(self, alerting, clock):
        """An empty window says nothing about the accuracy alert."""
        low = metrics_summary(clock, labeling=AutoLabelingSummary(total_events=5, average_accuracy=0.5))
        await alerting.process_metrics_alerts(low)

        await alerting.process_metrics_alerts(metrics_summary(clock))

        assert alerting.get_active_alert("autoLabeling", "accuracy") is not None


class TestHealthRules:
    """Rules evaluated against a health result."""

    @pytest.mark.asyncio
    async def test_health_descriptors_are_triggered(self, alerting, clock):
        health = health_result(
            clock,
            components={"api": ComponentHealth("api", HealthStatus.UNHEALTHY, "down")},
            alerts=[descriptor(component="api", metric="health", level=AlertLevel.CRITICAL)],
        )

        await alerting.process_health_alerts(health)

        assert alerting.get_active_alert("api", "health").level == AlertLevel.CRITICAL

    @pytest.mark.asyncio
    async def test_health_alert_follows_recovering_status(self, alerting, clock):
        unhealthy = health_result(
            clock,
            components={"api": ComponentHealth("api", HealthStatus.UNHEALTHY, "down")},
            alerts=[descriptor(component="api", metric="health", level=AlertLevel.CRITICAL, message="api is unhealthy")],
        )
        degraded = health_result(
            clock,
            components={"api": ComponentHealth("api", HealthStatus.DEGRADED, "slow")},
            alerts=[descriptor(component="api", metric="health", level=AlertLevel.WARNING, message="api is degraded")],
        )

        await alerting.process_health_alerts(unhealthy)
        await alerting.process_health_alerts(degraded)

        alert = alerting.get_active_alert("api", "health")
        assert alert.level == AlertLevel.WARNING
        assert alert.message == "api is degraded"
        assert alert.occurrences == 2

    @pytest.mark.asyncio
    async def test_healthy_component_resolves_its_alert(self, alerting, clock):
        await alerting.trigger_alert(descriptor(component="system", metric="health"))
        health = health_result(
            clock,
            components={"system": ComponentHealth("system", HealthStatus.HEALTHY, "ok")},
        )

        await alerting.process_health_alerts(health)

        assert alerting.get_active_alert("system", "health") is None

    @pytest.mark.asyncio
    async def test_low_rate_limit_triggers_warning(self, alerting, clock):
        api = ComponentHealth(
            "api",
            HealthStatus.HEALTHY,
            "ok",
            details={"rate_limit": {"limit": 5000, "remaining": 42}},
        )

        await alerting.process_health_alerts(health_result(clock, components={"api": api}))

        alert = alerting.get_active_alert("api", "rateLimit")
        assert alert.level == AlertLevel.WARNING
        assert alert.value == 42

    @pytest.mark.asyncio
    async def test_none_health_is_ignored(self, alerting):
        assert await alerting.process_health_alerts(None) == []


class TestQueries:

    @pytest.mark.asyncio
    async def test_history_filters(self, alerting, clock):
        for component, level in [("api", AlertLevel.CRITICAL), ("system", AlertLevel.WARNING)]:
            await alerting.trigger_alert(descriptor(component=component, metric="health", level=level))
            await alerting.resolve_alert(component, "health")

        assert [a.component for a in alerting.get_alert_history(component="api")] == ["api"]
        assert [a.component for a in alerting.get_alert_history(level=AlertLevel.WARNING)] == ["system"]
        assert alerting.get_alert_history(start=datetime(2030, 1, 1, tzinfo=timezone.utc)) == []

    @pytest.mark.asyncio
    async def test_stats_include_active_and_resolved(self, alerting, clock):
        await alerting.trigger_alert(descriptor(metric="a", level=AlertLevel.CRITICAL))
        await alerting.trigger_alert(descriptor(metric="b"))
        clock.advance(60)
        await alerting.resolve_alert("api", "b")

        stats = alerting.get_alert_stats()

        assert stats.total == 2
        assert stats.active == 1
        assert stats.resolved == 1
        assert stats.by_level == {"critical": 1, "warning": 1}
        assert stats.average_resolution_seconds == 60

    @pytest.mark.asyncio
    async def test_test_alerts_round_trip(self, alerting, mock_dispatcher):
        alert = await alerting.test_alerts()

        assert alert.key == ("test", "systemCheck")
        assert alert.level == AlertLevel.WARNING
        assert alerting.get_active_alerts() == []
        assert mock_dispatcher.dispatch.await_count == 2


class TestNotificationConfig:

    def test_configure_from_mapping(self, clock):
        alerting = AlertingSystem(clock=clock)

        alerting.configure_notifications({"webhook": {"url": "https://hooks.example.com/alerts"}})

        assert alerting.dispatcher.channel_names == ["log", "webhook"]
