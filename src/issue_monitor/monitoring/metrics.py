"""
Metrics Collector for issue-automation telemetry.

Ingests typed events (auto-labeling runs, API calls, operation timings,
user engagement, errors, system markers) and computes time-windowed
aggregates on query. Nothing aggregated is stored: every summary is
derived from the retained raw events.
"""
from __future__ import annotations

import csv
import io
import json
import logging
import threading
from collections import Counter, deque
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Deque, Dict, FrozenSet, Iterable, List, Mapping, Optional, Tuple, Union

import psutil

from .events import (
    ApiUsageEvent,
    AutoLabelingEvent,
    Clock,
    ErrorEvent,
    ErrorSeverity,
    EventPayload,
    MetricCategory,
    MetricEvent,
    PerformanceEvent,
    SystemEvent,
    UserEngagementEvent,
    parse_payload,
    utc_now,
)
from .pubsub import ERROR_OCCURRED, METRIC_RECORDED, EventBus

logger = logging.getLogger(__name__)

EventInput = Union[EventPayload, Mapping[str, Any]]

DEFAULT_QUERY_WINDOW = timedelta(hours=24)

# Categories counted as "operations" when computing the error rate
OPERATION_CATEGORIES = (
    MetricCategory.API_USAGE,
    MetricCategory.AUTO_LABELING,
    MetricCategory.PERFORMANCE,
)


def _average(values: List[float]) -> Optional[float]:
    return sum(values) / len(values) if values else None


def _round(value: Optional[float], digits: int = 4) -> Optional[float]:
    return round(value, digits) if value is not None else None


# =============================================================================
# Summary types
# =============================================================================


@dataclass(frozen=True)
class TimeRange:
    """Inclusive query window."""

    start: datetime
    end: datetime

    def contains(self, timestamp: datetime) -> bool:
        return self.start <= timestamp <= self.end

    @property
    def minutes(self) -> float:
        return (self.end - self.start).total_seconds() / 60

    def to_dict(self) -> dict:
        return {"start": self.start.isoformat(), "end": self.end.isoformat()}


@dataclass
class AutoLabelingSummary:
    """Classifier quality over a window."""

    total_events: int = 0
    average_accuracy: Optional[float] = None
    average_confidence: Optional[float] = None
    average_processing_time_ms: Optional[float] = None
    component_detection_rate: Optional[float] = None
    security_detection_rate: Optional[float] = None
    manual_override_rate: Optional[float] = None

    def to_dict(self) -> dict:
        return {
            "total_events": self.total_events,
            "average_accuracy": _round(self.average_accuracy),
            "average_confidence": _round(self.average_confidence),
            "average_processing_time_ms": _round(self.average_processing_time_ms, 1),
            "component_detection_rate": _round(self.component_detection_rate),
            "security_detection_rate": _round(self.security_detection_rate),
            "manual_override_rate": _round(self.manual_override_rate),
        }


@dataclass
class ApiUsageSummary:
    """API client health over a window."""

    total_requests: int = 0
    success_rate: Optional[float] = None
    average_response_time_ms: Optional[float] = None
    min_rate_limit_remaining: Optional[int] = None
    error_breakdown: Dict[str, int] = field(default_factory=dict)

    @property
    def error_rate(self) -> Optional[float]:
        """Share of failed requests; None without traffic."""
        if self.success_rate is None:
            return None
        return 1.0 - self.success_rate

    def to_dict(self) -> dict:
        return {
            "total_requests": self.total_requests,
            "success_rate": _round(self.success_rate),
            "error_rate": _round(self.error_rate),
            "average_response_time_ms": _round(self.average_response_time_ms, 1),
            "min_rate_limit_remaining": self.min_rate_limit_remaining,
            "error_breakdown": dict(self.error_breakdown),
        }


@dataclass
class PerformanceSummary:
    """Operation timings and process memory over a window."""

    total_operations: int = 0
    average_duration_ms: Optional[float] = None
    max_duration_ms: Optional[float] = None
    operation_breakdown: Dict[str, Dict[str, float]] = field(default_factory=dict)
    memory_stats: Optional[Dict[str, float]] = None
    throughput_per_minute: Optional[float] = None

    def to_dict(self) -> dict:
        return {
            "total_operations": self.total_operations,
            "average_duration_ms": _round(self.average_duration_ms, 1),
            "max_duration_ms": _round(self.max_duration_ms, 1),
            "operation_breakdown": {k: dict(v) for k, v in self.operation_breakdown.items()},
            "memory_stats": dict(self.memory_stats) if self.memory_stats else None,
            "throughput_per_minute": _round(self.throughput_per_minute),
        }


@dataclass
class UserEngagementSummary:
    total_events: int = 0
    by_type: Dict[str, int] = field(default_factory=dict)
    unique_users: int = 0
    average_satisfaction: Optional[float] = None
    average_time_to_complete_seconds: Optional[float] = None

    def to_dict(self) -> dict:
        return {
            "total_events": self.total_events,
            "by_type": dict(self.by_type),
            "unique_users": self.unique_users,
            "average_satisfaction": _round(self.average_satisfaction, 2),
            "average_time_to_complete_seconds": _round(self.average_time_to_complete_seconds, 1),
        }


@dataclass
class ErrorSummary:
    """
    Error volume relative to operations in the same window.

    error_rate = total_errors / total_operations, where operations are the
    apiUsage, autoLabeling and performance events in the window. With no
    errors the rate is 0.0; with errors but no operations it is 1.0.
    """

    total_errors: int = 0
    total_operations: int = 0
    error_rate: float = 0.0
    severity_breakdown: Dict[str, int] = field(default_factory=dict)
    component_breakdown: Dict[str, int] = field(default_factory=dict)
    top_errors: List[Dict[str, Any]] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "total_errors": self.total_errors,
            "total_operations": self.total_operations,
            "error_rate": round(self.error_rate, 4),
            "severity_breakdown": dict(self.severity_breakdown),
            "component_breakdown": dict(self.component_breakdown),
            "top_errors": [dict(e) for e in self.top_errors],
        }


@dataclass
class DataRetention:
    total_events: int = 0
    oldest_event: Optional[datetime] = None
    retention_days: float = 30.0

    def to_dict(self) -> dict:
        return {
            "total_events": self.total_events,
            "oldest_event": self.oldest_event.isoformat() if self.oldest_event else None,
            "retention_days": self.retention_days,
        }


@dataclass
class MetricsSummary:
    """
    Point-in-time aggregate view of all categories over one window.

    Computed on query and never stored.
    """

    time_range: TimeRange
    auto_labeling: AutoLabelingSummary = field(default_factory=AutoLabelingSummary)
    api_usage: ApiUsageSummary = field(default_factory=ApiUsageSummary)
    performance: PerformanceSummary = field(default_factory=PerformanceSummary)
    user_engagement: UserEngagementSummary = field(default_factory=UserEngagementSummary)
    errors: ErrorSummary = field(default_factory=ErrorSummary)
    data_retention: DataRetention = field(default_factory=DataRetention)
    uptime_seconds: float = 0.0

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        return {
            "time_range": self.time_range.to_dict(),
            "uptime_seconds": round(self.uptime_seconds, 0),
            "auto_labeling": self.auto_labeling.to_dict(),
            "api_usage": self.api_usage.to_dict(),
            "performance": self.performance.to_dict(),
            "user_engagement": self.user_engagement.to_dict(),
            "errors": self.errors.to_dict(),
            "data_retention": self.data_retention.to_dict(),
        }


# =============================================================================
# Collector
# =============================================================================


class MetricsCollector:
    """
    Collects telemetry events with a retention window.

    Events are kept per category in arrival order. Expired events are
    evicted on every write and by purge_expired(); every query also filters
    by the retention cutoff, so results honor the window even between
    sweeps.

    Usage:
        collector = MetricsCollector(retention_days=30)

        collector.track_api_usage({"endpoint": "/issues", "response_time_ms": 120})
        collector.track_error({
            "component": "labeler",
            "error_type": "Timeout",
            "error_message": "classifier timed out",
        })

        summary = collector.get_system_summary()
        print(f"API success rate: {summary.api_usage.success_rate}")
    """

    def __init__(
        self,
        retention_days: float = 30.0,
        enable_performance_tracking: bool = True,
        event_bus: Optional[EventBus] = None,
        clock: Clock = utc_now,
        rate_excluded_components: Iterable[str] = (),
    ) -> None:
        """
        Initialize the metrics collector.

        Args:
            retention_days: Days events stay queryable
            enable_performance_tracking: Record performance events (with process memory)
            event_bus: Bus receiving metric.recorded / error.occurred notifications
            clock: Source of the current UTC time
            rate_excluded_components: Components whose errors are counted and
                broken down but left out of error_rate
        """
        self._retention = timedelta(days=retention_days)
        self._retention_days = retention_days
        self._enable_performance_tracking = enable_performance_tracking
        self._bus = event_bus
        self._clock = clock
        self._started_at = clock()
        self._rate_excluded = frozenset(rate_excluded_components)

        self._events: Dict[MetricCategory, Deque[MetricEvent]] = {
            category: deque() for category in MetricCategory
        }
        self._process: Optional[psutil.Process] = None

        # Producers may call track_* from worker threads
        self._lock = threading.Lock()

    @property
    def retention_days(self) -> float:
        return self._retention_days

    @property
    def performance_tracking_enabled(self) -> bool:
        return self._enable_performance_tracking

    # Event recording

    def track_auto_labeling(self, event: EventInput) -> MetricEvent:
        """Record one classifier run."""
        return self._record(MetricCategory.AUTO_LABELING, event)

    def track_api_usage(self, event: EventInput) -> MetricEvent:
        """Record one API call."""
        return self._record(MetricCategory.API_USAGE, event)

    def track_performance(self, event: EventInput) -> Optional[MetricEvent]:
        """
        Record an operation timing.

        The current process RSS is stamped on the record. Returns None when
        performance tracking is disabled (the event is validated, then
        dropped).
        """
        payload = parse_payload(MetricCategory.PERFORMANCE, event)
        if not self._enable_performance_tracking:
            return None
        if payload.memory_rss_bytes is None:
            rss = self._process_memory()
            if rss is not None:
                payload = payload.model_copy(update={"memory_rss_bytes": rss})
        return self._record(MetricCategory.PERFORMANCE, payload)

    def track_user_engagement(self, event: EventInput) -> MetricEvent:
        return self._record(MetricCategory.USER_ENGAGEMENT, event)

    def track_error(self, event: EventInput) -> MetricEvent:
        """
        Record an error and publish error.occurred for reactive alerting.

        Args:
            event: Needs component, error_type and error_message
        """
        record = self._record(MetricCategory.ERROR, event)
        if self._bus is not None:
            self._bus.publish(ERROR_OCCURRED, record)
        return record

    def track_exception(
        self,
        component: str,
        error: BaseException,
        severity: ErrorSeverity = ErrorSeverity.ERROR,
        context: Optional[Dict[str, Any]] = None,
    ) -> MetricEvent:
        """Record a caught exception as an error event."""
        return self.track_error(ErrorEvent(
            component=component,
            error_type=type(error).__name__,
            error_message=str(error) or type(error).__name__,
            severity=severity,
            context=context or {},
        ))

    def track_system(self, event: EventInput) -> MetricEvent:
        """Record a lifecycle marker or gauge."""
        return self._record(MetricCategory.SYSTEM, event)

    def _record(self, category: MetricCategory, event: EventInput) -> MetricEvent:
        payload = parse_payload(category, event)
        now = self._clock()
        record = MetricEvent(category=category, timestamp=now, payload=payload)

        with self._lock:
            self._events[category].append(record)
            self._evict_locked(now - self._retention)

        if self._bus is not None:
            self._bus.publish(METRIC_RECORDED, record)
        return record

    def _process_memory(self) -> Optional[int]:
        try:
            if self._process is None:
                self._process = psutil.Process()
            return self._process.memory_info().rss
        except psutil.Error as e:
            logger.debug(f"Process memory unavailable: {e}")
            return None

    # Retention

    def _evict_locked(self, cutoff: datetime) -> int:
        removed = 0
        for dq in self._events.values():
            while dq and dq[0].timestamp < cutoff:
                dq.popleft()
                removed += 1
        return removed

    def purge_expired(self) -> int:
        """
        Drop events older than the retention window.

        Returns:
            Number of events removed
        """
        with self._lock:
            removed = self._evict_locked(self._clock() - self._retention)
        if removed:
            logger.debug(f"Purged {removed} expired metric events")
        return removed

    def _snapshot(self, category: MetricCategory) -> Tuple[MetricEvent, ...]:
        with self._lock:
            return tuple(self._events[category])

    # Queries

    def get_time_range(
        self,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> TimeRange:
        """
        Resolve a query window.

        Defaults to the trailing 24 hours and is clipped to the retention
        window.
        """
        now = self._clock()
        if end is None:
            end = now
        if start is None:
            start = end - DEFAULT_QUERY_WINDOW
        start = max(start, now - self._retention)
        return TimeRange(start=start, end=end)

    def get_events(
        self,
        category: MetricCategory,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> List[MetricEvent]:
        """Events of one category inside the window, oldest first."""
        return self._events_in_range(category, self.get_time_range(start, end))

    def _events_in_range(self, category: MetricCategory, time_range: TimeRange) -> List[MetricEvent]:
        events = [e for e in self._snapshot(category) if time_range.contains(e.timestamp)]
        events.sort(key=lambda e: e.timestamp)
        return events

    def get_auto_labeling_metrics(
        self,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> AutoLabelingSummary:
        events = self._events_in_range(MetricCategory.AUTO_LABELING, self.get_time_range(start, end))
        return _summarize_auto_labeling([e.payload for e in events])

    def get_api_usage_metrics(
        self,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> ApiUsageSummary:
        events = self._events_in_range(MetricCategory.API_USAGE, self.get_time_range(start, end))
        return _summarize_api_usage([e.payload for e in events])

    def get_performance_metrics(
        self,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> PerformanceSummary:
        time_range = self.get_time_range(start, end)
        events = self._events_in_range(MetricCategory.PERFORMANCE, time_range)
        return _summarize_performance([e.payload for e in events], time_range)

    def get_user_engagement_metrics(
        self,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> UserEngagementSummary:
        events = self._events_in_range(MetricCategory.USER_ENGAGEMENT, self.get_time_range(start, end))
        return _summarize_user_engagement([e.payload for e in events])

    def get_error_metrics(
        self,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> ErrorSummary:
        time_range = self.get_time_range(start, end)
        errors = self._events_in_range(MetricCategory.ERROR, time_range)
        operations = sum(
            len(self._events_in_range(category, time_range))
            for category in OPERATION_CATEGORIES
        )
        return _summarize_errors([e.payload for e in errors], operations, self._rate_excluded)

    def get_system_summary(
        self,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> MetricsSummary:
        """
        Aggregate every category over one window.

        Args:
            start: Window start (default: end - 24h, clipped to retention)
            end: Window end (default: now)

        Returns:
            MetricsSummary; empty windows give zeroed counts and None averages
        """
        time_range = self.get_time_range(start, end)
        by_category = {
            category: self._events_in_range(category, time_range)
            for category in MetricCategory
        }
        operations = sum(len(by_category[c]) for c in OPERATION_CATEGORIES)

        def payloads(category: MetricCategory) -> list:
            return [e.payload for e in by_category[category]]

        return MetricsSummary(
            time_range=time_range,
            auto_labeling=_summarize_auto_labeling(payloads(MetricCategory.AUTO_LABELING)),
            api_usage=_summarize_api_usage(payloads(MetricCategory.API_USAGE)),
            performance=_summarize_performance(payloads(MetricCategory.PERFORMANCE), time_range),
            user_engagement=_summarize_user_engagement(payloads(MetricCategory.USER_ENGAGEMENT)),
            errors=_summarize_errors(payloads(MetricCategory.ERROR), operations, self._rate_excluded),
            data_retention=DataRetention(
                total_events=self.get_total_event_count(),
                oldest_event=self.get_oldest_event_timestamp(),
                retention_days=self._retention_days,
            ),
            uptime_seconds=(self._clock() - self._started_at).total_seconds(),
        )

    def get_total_event_count(self) -> int:
        """Number of events currently retained, across all categories."""
        cutoff = self._clock() - self._retention
        with self._lock:
            return sum(
                1
                for dq in self._events.values()
                for e in dq
                if e.timestamp >= cutoff
            )

    def get_oldest_event_timestamp(self) -> Optional[datetime]:
        cutoff = self._clock() - self._retention
        with self._lock:
            timestamps = [
                e.timestamp
                for dq in self._events.values()
                for e in dq
                if e.timestamp >= cutoff
            ]
        return min(timestamps) if timestamps else None

    def get_aggregates(self, granularity: str = "hour") -> List[Dict[str, Any]]:
        """
        Roll retained events up into hourly or daily buckets.

        Args:
            granularity: "hour" or "day"

        Returns:
            Buckets ordered oldest first, each with per-category counts and
            the headline rates for that period
        """
        if granularity not in ("hour", "day"):
            raise ValueError(f"Unsupported granularity: {granularity}")

        time_range = self.get_time_range(start=self._clock() - self._retention)
        buckets: Dict[datetime, Dict[MetricCategory, List[EventPayload]]] = {}
        for category in MetricCategory:
            for event in self._events_in_range(category, time_range):
                key = _bucket_start(event.timestamp, granularity)
                buckets.setdefault(key, {}).setdefault(category, []).append(event.payload)

        result = []
        for key in sorted(buckets):
            grouped = buckets[key]
            api = _summarize_api_usage(grouped.get(MetricCategory.API_USAGE, []))
            labeling = _summarize_auto_labeling(grouped.get(MetricCategory.AUTO_LABELING, []))
            operations = sum(len(grouped.get(c, [])) for c in OPERATION_CATEGORIES)
            errors = _summarize_errors(grouped.get(MetricCategory.ERROR, []), operations)
            result.append({
                "period_start": key.isoformat(),
                "granularity": granularity,
                "counts": {c.value: len(grouped.get(c, [])) for c in MetricCategory},
                "api_success_rate": _round(api.success_rate),
                "average_response_time_ms": _round(api.average_response_time_ms, 1),
                "average_accuracy": _round(labeling.average_accuracy),
                "error_rate": round(errors.error_rate, 4),
            })
        return result

    # Export

    def export_metrics(
        self,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        format: str = "json",
        aggregated: bool = False,
    ) -> Union[Dict[str, Any], str]:
        """
        Serialize raw events or the aggregate summary for external analysis.

        Args:
            start: Window start
            end: Window end
            format: "json" (returns a dict) or "csv" (returns text)
            aggregated: Export the summary instead of raw events

        Returns:
            Dict for JSON, CSV text otherwise
        """
        if format not in ("json", "csv"):
            raise ValueError(f"Unsupported export format: {format}")

        time_range = self.get_time_range(start, end)
        metadata = {
            "exported_at": self._clock().isoformat(),
            "time_range": time_range.to_dict(),
            "format": format,
            "aggregated": aggregated,
            "system_uptime_seconds": round((self._clock() - self._started_at).total_seconds(), 0),
        }

        if aggregated:
            summary = self.get_system_summary(time_range.start, time_range.end).to_dict()
            if format == "csv":
                return _summary_to_csv(summary)
            return {"metadata": metadata, "summary": summary}

        events = {
            category.value: [e.to_dict() for e in self._events_in_range(category, time_range)]
            for category in MetricCategory
        }
        if format == "csv":
            return _events_to_csv(
                row for rows in events.values() for row in rows
            )
        return {"metadata": metadata, "events": events}

    def reset(self) -> None:
        """Drop all events (for testing)."""
        with self._lock:
            for dq in self._events.values():
                dq.clear()
        self._started_at = self._clock()


# =============================================================================
# Aggregation helpers
# =============================================================================


def _summarize_auto_labeling(events: List[AutoLabelingEvent]) -> AutoLabelingSummary:
    if not events:
        return AutoLabelingSummary()

    total = len(events)
    return AutoLabelingSummary(
        total_events=total,
        average_accuracy=_average([e.accuracy for e in events if e.accuracy is not None]),
        average_confidence=_average([e.confidence for e in events if e.confidence is not None]),
        average_processing_time_ms=_average([e.processing_time_ms for e in events]),
        component_detection_rate=sum(1 for e in events if e.components_detected) / total,
        security_detection_rate=sum(1 for e in events if e.security_detected) / total,
        manual_override_rate=sum(1 for e in events if e.manual_override) / total,
    )


def _summarize_api_usage(events: List[ApiUsageEvent]) -> ApiUsageSummary:
    if not events:
        return ApiUsageSummary()

    remaining = [e.rate_limit_remaining for e in events if e.rate_limit_remaining is not None]
    failures = Counter(e.error_type or "unknown" for e in events if not e.success)
    return ApiUsageSummary(
        total_requests=len(events),
        success_rate=sum(1 for e in events if e.success) / len(events),
        average_response_time_ms=_average([e.response_time_ms for e in events]),
        min_rate_limit_remaining=min(remaining) if remaining else None,
        error_breakdown=dict(failures),
    )


def _summarize_performance(events: List[PerformanceEvent], time_range: TimeRange) -> PerformanceSummary:
    if not events:
        return PerformanceSummary()

    durations = [e.duration_ms for e in events]
    breakdown: Dict[str, Dict[str, float]] = {}
    for e in events:
        stats = breakdown.setdefault(e.operation, {"count": 0, "total_duration_ms": 0.0})
        stats["count"] += 1
        stats["total_duration_ms"] += e.duration_ms

    memory = [e.memory_rss_bytes for e in events if e.memory_rss_bytes is not None]
    memory_stats = None
    if memory:
        memory_stats = {
            "average_rss_bytes": sum(memory) / len(memory),
            "max_rss_bytes": max(memory),
            "min_rss_bytes": min(memory),
        }

    minutes = time_range.minutes
    return PerformanceSummary(
        total_operations=len(events),
        average_duration_ms=_average(durations),
        max_duration_ms=max(durations),
        operation_breakdown=breakdown,
        memory_stats=memory_stats,
        throughput_per_minute=len(events) / minutes if minutes > 0 else None,
    )


def _summarize_user_engagement(events: List[UserEngagementEvent]) -> UserEngagementSummary:
    if not events:
        return UserEngagementSummary()

    return UserEngagementSummary(
        total_events=len(events),
        by_type=dict(Counter(e.type for e in events)),
        unique_users=len({str(e.user_id) for e in events}),
        average_satisfaction=_average([e.satisfaction for e in events if e.satisfaction is not None]),
        average_time_to_complete_seconds=_average(
            [e.time_to_complete_seconds for e in events if e.time_to_complete_seconds is not None]
        ),
    )


def _summarize_errors(
    events: List[ErrorEvent],
    operations: int,
    rate_excluded: FrozenSet[str] = frozenset(),
) -> ErrorSummary:
    if not events:
        return ErrorSummary(total_operations=operations)

    total = len(events)
    counted = sum(1 for e in events if e.component not in rate_excluded)
    if not counted:
        error_rate = 0.0
    else:
        error_rate = counted / operations if operations > 0 else 1.0
    top = Counter(e.error_type for e in events).most_common(10)
    return ErrorSummary(
        total_errors=total,
        total_operations=operations,
        error_rate=error_rate,
        severity_breakdown=dict(Counter(e.severity.value for e in events)),
        component_breakdown=dict(Counter(e.component for e in events)),
        top_errors=[{"error_type": t, "count": c} for t, c in top],
    )


def _bucket_start(timestamp: datetime, granularity: str) -> datetime:
    if granularity == "day":
        return timestamp.replace(hour=0, minute=0, second=0, microsecond=0)
    return timestamp.replace(minute=0, second=0, microsecond=0)


def _events_to_csv(rows: Iterable[Dict[str, Any]]) -> str:
    rows = list(rows)
    columns = ["timestamp", "category"]
    extra = sorted({key for row in rows for key in row} - set(columns))
    buffer = io.StringIO()
    writer = csv.DictWriter(buffer, fieldnames=columns + extra, extrasaction="ignore")
    writer.writeheader()
    for row in rows:
        writer.writerow({
            key: json.dumps(value) if isinstance(value, (dict, list)) else value
            for key, value in row.items()
        })
    return buffer.getvalue()


def _summary_to_csv(summary: Dict[str, Any]) -> str:
    buffer = io.StringIO()
    writer = csv.writer(buffer)
    writer.writerow(["section", "metric", "value"])
    for section, values in summary.items():
        if not isinstance(values, dict):
            writer.writerow(["", section, values])
            continue
        for metric, value in values.items():
            if isinstance(value, (dict, list)):
                value = json.dumps(value)
            writer.writerow([section, metric, value])
    return buffer.getvalue()
