"""
Tests for MetricsCollector.

Aggregates must count exactly the events inside the requested window and
never anything older than the retention period.
"""
import json
from datetime import timedelta

import pytest

from issue_monitor.monitoring.events import ErrorSeverity, MetricCategory
from issue_monitor.monitoring.exceptions import EventValidationError
from issue_monitor.monitoring.metrics import MetricsCollector
from issue_monitor.monitoring.pubsub import ERROR_OCCURRED, METRIC_RECORDED


def api_call(success=True, response_time_ms=100, **extra):
    return {"endpoint": "/repos/acme/app/issues", "response_time_ms": response_time_ms, "success": success, **extra}


def labeling_run(accuracy=0.9, processing_time_ms=500, **extra):
    return {"issue_id": 1, "processing_time_ms": processing_time_ms, "accuracy": accuracy, **extra}


def error_event(component="labeler", error_type="Timeout"):
    return {"component": component, "error_type": error_type, "error_message": "timed out"}


class TestApiUsageAggregation:
    """Tests for apiUsage success rate and latency."""

    def test_success_rate_95_of_100(self, collector):
        """100 calls with 5 failures gives a 0.95 success rate."""
        for i in range(100):
            collector.track_api_usage(api_call(success=i >= 5))

        summary = collector.get_system_summary()

        assert summary.api_usage.total_requests == 100
        assert summary.api_usage.success_rate == pytest.approx(0.95)
        assert summary.api_usage.error_rate == pytest.approx(0.05)

    def test_average_response_time(self, collector):
        collector.track_api_usage(api_call(response_time_ms=100))
        collector.track_api_usage(api_call(response_time_ms=300))

        summary = collector.get_api_usage_metrics()

        assert summary.average_response_time_ms == pytest.approx(200)

    def test_error_breakdown_by_type(self, collector):
        collector.track_api_usage(api_call(success=False, error_type="RateLimited"))
        collector.track_api_usage(api_call(success=False, error_type="RateLimited"))
        collector.track_api_usage(api_call(success=False))

        summary = collector.get_api_usage_metrics()

        assert summary.error_breakdown == {"RateLimited": 2, "unknown": 1}

    def test_empty_window_gives_none_averages(self, collector):
        """No traffic is not an error: zero counts and None rates."""
        summary = collector.get_api_usage_metrics()

        assert summary.total_requests == 0
        assert summary.success_rate is None
        assert summary.error_rate is None


class TestAutoLabelingAggregation:
    """Tests for classifier quality aggregates."""

    def test_accuracy_and_rates(self, collector):
        collector.track_auto_labeling(labeling_run(accuracy=0.8, components_detected=["api"]))
        collector.track_auto_labeling(labeling_run(accuracy=1.0, manual_override=True))
        collector.track_auto_labeling(labeling_run(accuracy=0.9, security_detected=True))
        collector.track_auto_labeling(labeling_run(accuracy=0.9, components_detected=["ui"]))

        summary = collector.get_auto_labeling_metrics()

        assert summary.total_events == 4
        assert summary.average_accuracy == pytest.approx(0.9)
        assert summary.component_detection_rate == pytest.approx(0.5)
        assert summary.manual_override_rate == pytest.approx(0.25)
        assert summary.security_detection_rate == pytest.approx(0.25)

    def test_accuracy_ignores_runs_without_ground_truth(self, collector):
        collector.track_auto_labeling(labeling_run(accuracy=0.6))
        collector.track_auto_labeling({"issue_id": 2, "processing_time_ms": 100})

        summary = collector.get_auto_labeling_metrics()

        assert summary.total_events == 2
        assert summary.average_accuracy == pytest.approx(0.6)


class TestErrorRate:
    """errorRate = errors / operations in the window."""

    def test_error_rate_over_operations(self, collector):
        for _ in range(92):
            collector.track_api_usage(api_call())
        for _ in range(8):
            collector.track_auto_labeling(labeling_run())
        for _ in range(8):
            collector.track_error(error_event())

        errors = collector.get_error_metrics()

        assert errors.total_errors == 8
        assert errors.total_operations == 100
        assert errors.error_rate == pytest.approx(0.08)

    def test_no_errors_is_zero_rate(self, collector):
        collector.track_api_usage(api_call())

        assert collector.get_error_metrics().error_rate == 0.0

    def test_errors_without_operations_is_full_rate(self, collector):
        collector.track_error(error_event())

        assert collector.get_error_metrics().error_rate == 1.0

    def test_system_events_are_not_operations(self, collector):
        collector.track_system({"metric": "monitoring.started", "value": 1})
        collector.track_api_usage(api_call())
        collector.track_error(error_event())

        assert collector.get_error_metrics().total_operations == 1

    def test_excluded_components_are_counted_but_not_rated(self, clock):
        collector = MetricsCollector(clock=clock, rate_excluded_components=("monitoring_system",))
        for _ in range(10):
            collector.track_api_usage(api_call())
        collector.track_error(error_event(component="monitoring_system", error_type="CycleFailure"))
        collector.track_error(error_event())

        errors = collector.get_error_metrics()

        assert errors.total_errors == 2
        assert errors.component_breakdown == {"monitoring_system": 1, "labeler": 1}
        assert errors.error_rate == pytest.approx(0.1)

    def test_only_excluded_errors_is_zero_rate(self, clock):
        collector = MetricsCollector(clock=clock, rate_excluded_components=("monitoring_system",))
        collector.track_error(error_event(component="monitoring_system"))

        summary = collector.get_system_summary()

        assert summary.errors.total_errors == 1
        assert summary.errors.error_rate == 0.0

    def test_breakdowns(self, collector):
        collector.track_error(error_event(component="github", error_type="HTTPError"))
        collector.track_error(error_event(component="github", error_type="HTTPError"))
        collector.track_exception("labeler", KeyError("component"), severity=ErrorSeverity.CRITICAL)

        errors = collector.get_error_metrics()

        assert errors.component_breakdown == {"github": 2, "labeler": 1}
        assert errors.severity_breakdown == {"error": 2, "critical": 1}
        assert errors.top_errors[0] == {"error_type": "HTTPError", "count": 2}


class TestTimeWindows:
    """Window boundaries and retention."""

    def test_window_counts_exactly_events_inside(self, collector, clock):
        """Events before start or after end are excluded; bounds are inclusive."""
        start = clock()
        collector.track_api_usage(api_call())          # t = 0 (on start)
        clock.advance(minutes=30)
        collector.track_api_usage(api_call())          # t = 30m
        clock.advance(minutes=30)
        end = clock()
        collector.track_api_usage(api_call())          # t = 60m (on end)
        clock.advance(minutes=1)
        collector.track_api_usage(api_call())          # t = 61m (outside)

        summary = collector.get_system_summary(start=start, end=end)
        assert summary.api_usage.total_requests == 3

        inner = collector.get_system_summary(
            start=start + timedelta(seconds=1), end=end - timedelta(seconds=1)
        )
        assert inner.api_usage.total_requests == 1

    def test_default_window_is_trailing_24_hours(self, collector, clock):
        collector.track_api_usage(api_call())
        clock.advance(hours=25)
        collector.track_api_usage(api_call())

        assert collector.get_system_summary().api_usage.total_requests == 1

    def test_retention_excludes_expired_events(self, clock, event_bus):
        """Expired events never appear, even when a query asks for them."""
        collector = MetricsCollector(retention_days=1, event_bus=event_bus, clock=clock)
        first = clock()
        collector.track_api_usage(api_call())
        clock.advance(days=2)
        collector.track_api_usage(api_call())

        summary = collector.get_system_summary(start=first - timedelta(hours=1))

        assert summary.api_usage.total_requests == 1
        assert collector.get_total_event_count() == 1

    def test_purge_expired_returns_removed_count(self, clock):
        collector = MetricsCollector(retention_days=1, clock=clock)
        collector.track_api_usage(api_call())
        collector.track_auto_labeling(labeling_run())
        clock.advance(days=2)

        assert collector.purge_expired() == 2
        assert collector.get_oldest_event_timestamp() is None


class TestRecording:
    """Tests for the track_* family."""

    def test_invalid_event_is_not_recorded(self, collector):
        with pytest.raises(EventValidationError):
            collector.track_api_usage({"success": True})

        assert collector.get_total_event_count() == 0

    def test_record_is_stamped_with_clock(self, collector, clock):
        record = collector.track_system({"metric": "queue.depth", "value": 3})

        assert record.timestamp == clock()
        assert record.category == MetricCategory.SYSTEM

    def test_track_error_publishes_error_occurred(self, collector, event_bus):
        received = []
        event_bus.subscribe(ERROR_OCCURRED, received.append)

        record = collector.track_error(error_event())

        assert received == [record]

    def test_every_record_publishes_metric_recorded(self, collector, event_bus):
        received = []
        event_bus.subscribe(METRIC_RECORDED, received.append)

        collector.track_api_usage(api_call())
        collector.track_error(error_event())

        assert [r.category for r in received] == [MetricCategory.API_USAGE, MetricCategory.ERROR]

    def test_performance_tracking_can_be_disabled(self, clock):
        collector = MetricsCollector(enable_performance_tracking=False, clock=clock)

        assert collector.track_performance({"operation": "sync", "duration_ms": 5}) is None
        assert collector.get_performance_metrics().total_operations == 0

    def test_performance_records_process_memory(self, collector):
        record = collector.track_performance({"operation": "sync", "duration_ms": 5})

        assert record.payload.memory_rss_bytes is not None
        assert collector.get_performance_metrics().memory_stats["max_rss_bytes"] > 0

    def test_operation_breakdown(self, collector):
        collector.track_performance({"operation": "label", "duration_ms": 100})
        collector.track_performance({"operation": "label", "duration_ms": 300})
        collector.track_performance({"operation": "sync", "duration_ms": 50})

        perf = collector.get_performance_metrics()

        assert perf.average_duration_ms == pytest.approx(150)
        assert perf.max_duration_ms == 300
        assert perf.operation_breakdown["label"] == {"count": 2, "total_duration_ms": 400.0}


class TestUserEngagement:

    def test_unique_users_and_satisfaction(self, collector):
        collector.track_user_engagement({"type": "template_used", "user_id": "alice", "satisfaction": 4})
        collector.track_user_engagement({"type": "template_used", "user_id": "bob", "satisfaction": 2})
        collector.track_user_engagement({"type": "label_edit", "user_id": "alice"})

        summary = collector.get_user_engagement_metrics()

        assert summary.unique_users == 2
        assert summary.by_type == {"template_used": 2, "label_edit": 1}
        assert summary.average_satisfaction == pytest.approx(3.0)


class TestAggregates:

    def test_hourly_buckets(self, collector, clock):
        collector.track_api_usage(api_call())
        clock.advance(hours=1)
        collector.track_api_usage(api_call(success=False))
        collector.track_api_usage(api_call())

        buckets = collector.get_aggregates("hour")

        assert len(buckets) == 2
        assert buckets[0]["counts"]["apiUsage"] == 1
        assert buckets[1]["api_success_rate"] == pytest.approx(0.5)

    def test_unknown_granularity_raises(self, collector):
        with pytest.raises(ValueError):
            collector.get_aggregates("minute")


class TestExport:
    """Tests for export_metrics."""

    def test_json_export_groups_events_by_category(self, collector):
        collector.track_api_usage(api_call())
        collector.track_error(error_event())

        export = collector.export_metrics()

        assert len(export["events"]["apiUsage"]) == 1
        assert export["events"]["error"][0]["component"] == "labeler"
        assert export["metadata"]["format"] == "json"
        json.dumps(export)

    def test_aggregated_json_export(self, collector):
        collector.track_api_usage(api_call())

        export = collector.export_metrics(aggregated=True)

        assert export["summary"]["api_usage"]["total_requests"] == 1

    def test_csv_export_has_header_and_rows(self, collector):
        collector.track_api_usage(api_call())
        collector.track_api_usage(api_call(success=False))

        text = collector.export_metrics(format="csv")
        lines = text.strip().splitlines()

        assert lines[0].startswith("timestamp,category")
        assert len(lines) == 3

    def test_aggregated_csv_export(self, collector):
        collector.track_api_usage(api_call())

        text = collector.export_metrics(format="csv", aggregated=True)

        assert text.splitlines()[0] == "section,metric,value"
        assert "api_usage,total_requests,1" in text

    def test_unsupported_format_raises(self, collector):
        with pytest.raises(ValueError):
            collector.export_metrics(format="xml")
