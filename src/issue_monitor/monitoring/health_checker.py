"""
Health Checker for dependency and component health monitoring.

Probes the API dependency (authentication and rate limit), the
auto-labeling classifier (recent accuracy and processing time) and the
process itself (memory), and derives an overall status from them.
"""
from __future__ import annotations

import asyncio
import logging
import time
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import (
    TYPE_CHECKING,
    Any,
    Awaitable,
    Callable,
    Deque,
    Dict,
    List,
    Optional,
    Protocol,
)

import psutil

from .config import HealthCheckConfig
from .events import Clock, utc_now
from .exceptions import ProbeFailure
from .models import AlertDescriptor, AlertLevel, HealthStatus, worst_status

if TYPE_CHECKING:
    from .metrics import MetricsCollector

logger = logging.getLogger(__name__)


class ApiStatusClient(Protocol):
    """The two calls the API probe needs from the API client wrapper."""

    async def check_status(self) -> Any:
        """Rate-limit status with limit, remaining and reset attributes."""
        ...

    async def get_authenticated_identity(self) -> Dict[str, Any]:
        ...

    async def close(self) -> None:
        ...


ApiClientFactory = Callable[[str], ApiStatusClient]

# A probe receives the credential (may be None) and reports one component
Probe = Callable[[Optional[str]], Awaitable["ComponentHealth"]]


@dataclass(frozen=True)
class ComponentHealth:
    """Health check result for a single component."""

    component: str
    status: HealthStatus
    message: str
    latency_ms: Optional[float] = None
    details: Dict[str, Any] = field(default_factory=dict)
    errors: List[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "component": self.component,
            "status": self.status.value,
            "message": self.message,
            "latency_ms": round(self.latency_ms, 1) if self.latency_ms is not None else None,
            "details": dict(self.details),
            "errors": list(self.errors),
        }


@dataclass(frozen=True)
class HealthMetrics:
    """Counts and load derived from one set of component results."""

    total_components: int = 0
    healthy_components: int = 0
    degraded_components: int = 0
    unhealthy_components: int = 0
    average_response_time_ms: float = 0.0
    system_load: float = 0.0

    @classmethod
    def from_components(cls, components: List[ComponentHealth]) -> "HealthMetrics":
        counts = {status: 0 for status in HealthStatus}
        for c in components:
            counts[c.status] += 1

        latencies = [c.latency_ms for c in components if c.latency_ms]
        return cls(
            total_components=len(components),
            healthy_components=counts[HealthStatus.HEALTHY],
            degraded_components=counts[HealthStatus.DEGRADED],
            unhealthy_components=counts[HealthStatus.UNHEALTHY],
            average_response_time_ms=sum(latencies) / len(latencies) if latencies else 0.0,
            system_load=counts[HealthStatus.UNHEALTHY] * 0.5 + counts[HealthStatus.DEGRADED] * 0.3,
        )

    def to_dict(self) -> dict:
        return {
            "total_components": self.total_components,
            "healthy_components": self.healthy_components,
            "degraded_components": self.degraded_components,
            "unhealthy_components": self.unhealthy_components,
            "average_response_time_ms": round(self.average_response_time_ms, 1),
            "system_load": round(self.system_load, 2),
        }


@dataclass(frozen=True)
class HealthCheckResult:
    """
    One complete health check.

    overall is always the worst component status, or UNKNOWN when no
    probes ran. Never mutated after creation.
    """

    timestamp: datetime
    overall: HealthStatus
    components: Dict[str, ComponentHealth] = field(default_factory=dict)
    metrics: HealthMetrics = field(default_factory=HealthMetrics)
    alerts: List[AlertDescriptor] = field(default_factory=list)
    duration_ms: float = 0.0
    uptime_seconds: float = 0.0

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        return {
            "timestamp": self.timestamp.isoformat(),
            "overall": self.overall.value,
            "components": {name: c.to_dict() for name, c in self.components.items()},
            "metrics": self.metrics.to_dict(),
            "alerts": [a.to_dict() for a in self.alerts],
            "duration_ms": round(self.duration_ms, 1),
            "uptime_seconds": round(self.uptime_seconds, 0),
        }


@dataclass(frozen=True)
class QuickHealth:
    """Reduced health view for interactive calls."""

    status: HealthStatus
    timestamp: datetime
    uptime_seconds: float
    components: Dict[str, HealthStatus] = field(default_factory=dict)
    duration_ms: float = 0.0

    def to_dict(self) -> dict:
        return {
            "status": self.status.value,
            "timestamp": self.timestamp.isoformat(),
            "uptime_seconds": round(self.uptime_seconds, 0),
            "components": {name: s.value for name, s in self.components.items()},
            "duration_ms": round(self.duration_ms, 1),
        }


def _default_api_client_factory(credential: str) -> ApiStatusClient:
    from issue_monitor.github import GitHubStatusClient

    return GitHubStatusClient(token=credential)


class HealthCheckSystem:
    """
    Runs health probes and keeps bounded history.

    Every probe runs concurrently under its own timeout. A probe that
    raises or times out marks only its own component UNHEALTHY; the
    aggregate check never raises.

    Usage:
        health = HealthCheckSystem(config, metrics_collector=collector)
        health.register_probe("queue", check_queue, quick=True)

        result = await health.perform_health_check(token)
        print(result.overall)

        quick = await health.get_quick_health(token)
    """

    def __init__(
        self,
        config: Optional[HealthCheckConfig] = None,
        metrics_collector: Optional["MetricsCollector"] = None,
        api_client_factory: Optional[ApiClientFactory] = None,
        clock: Clock = utc_now,
    ) -> None:
        """
        Initialize the health check system.

        Args:
            config: Probe timeouts and thresholds
            metrics_collector: Source of recent auto-labeling activity
            api_client_factory: Builds an API client for a credential
            clock: Source of the current UTC time
        """
        self._config = config or HealthCheckConfig()
        self._metrics = metrics_collector
        self._api_client_factory = api_client_factory or _default_api_client_factory
        self._clock = clock

        self._api_clients: Dict[str, ApiStatusClient] = {}
        # Reused so cpu_percent measures against the previous check
        self._process: Optional[psutil.Process] = None
        self._history: Deque[HealthCheckResult] = deque(maxlen=self._config.history_size)
        self._started_at: Optional[datetime] = None

        self._probes: Dict[str, Probe] = {
            "api": self.check_api,
            "autoLabeling": self.check_auto_labeling,
            "system": self.check_system,
        }
        self._quick_probes: Dict[str, Probe] = {
            "api": self.quick_check_api,
            "autoLabeling": self.check_auto_labeling,
        }

    @property
    def config(self) -> HealthCheckConfig:
        return self._config

    @property
    def probe_names(self) -> List[str]:
        return list(self._probes)

    def register_probe(self, name: str, probe: Probe, quick: bool = False) -> None:
        """
        Add (or replace) a probe.

        Args:
            name: Component name the probe reports for
            probe: Async callable taking the credential
            quick: Also run it in get_quick_health()
        """
        self._probes[name] = probe
        if quick:
            self._quick_probes[name] = probe
        else:
            self._quick_probes.pop(name, None)

    def unregister_probe(self, name: str) -> None:
        self._probes.pop(name, None)
        self._quick_probes.pop(name, None)

    # Uptime

    def mark_started(self) -> None:
        """Reset the uptime counter (called on every successful start)."""
        self._started_at = self._clock()

    def mark_stopped(self) -> None:
        self._started_at = None

    def get_uptime(self) -> float:
        """Seconds since the last successful start, 0 when not running."""
        if self._started_at is None:
            return 0.0
        return max(0.0, (self._clock() - self._started_at).total_seconds())

    # Aggregate checks

    async def perform_health_check(
        self,
        credential: Optional[str] = None,
        record: bool = True,
    ) -> HealthCheckResult:
        """
        Run every registered probe and aggregate the results.

        Args:
            credential: API credential handed to each probe
            record: Append the result to history

        Returns:
            HealthCheckResult with overall = worst component status
        """
        start = time.monotonic()
        timestamp = self._clock()

        components = await self._run_probes(self._probes, credential)
        result = HealthCheckResult(
            timestamp=timestamp,
            overall=worst_status(c.status for c in components.values()),
            components=components,
            metrics=HealthMetrics.from_components(list(components.values())),
            alerts=self._generate_alerts(components),
            duration_ms=(time.monotonic() - start) * 1000,
            uptime_seconds=self.get_uptime(),
        )

        if record:
            self.record_result(result)
        return result

    async def get_quick_health(self, credential: Optional[str] = None) -> QuickHealth:
        """Run the reduced probe set. Never recorded in history."""
        start = time.monotonic()
        timestamp = self._clock()
        components = await self._run_probes(self._quick_probes, credential)
        statuses = {name: c.status for name, c in components.items()}

        return QuickHealth(
            status=worst_status(statuses.values()),
            timestamp=timestamp,
            uptime_seconds=self.get_uptime(),
            components=statuses,
            duration_ms=(time.monotonic() - start) * 1000,
        )

    async def _run_probes(
        self,
        probes: Dict[str, Probe],
        credential: Optional[str],
    ) -> Dict[str, ComponentHealth]:
        names = list(probes)
        results = await asyncio.gather(
            *(self._run_probe(name, probes[name], credential) for name in names)
        )
        return dict(zip(names, results))

    async def _run_probe(
        self,
        name: str,
        probe: Probe,
        credential: Optional[str],
    ) -> ComponentHealth:
        timeout = self._config.probe_timeout_seconds
        start = time.monotonic()
        try:
            return await asyncio.wait_for(probe(credential), timeout=timeout)
        except asyncio.TimeoutError:
            logger.warning(f"{name} probe timed out after {timeout}s")
            return ComponentHealth(
                component=name,
                status=HealthStatus.UNHEALTHY,
                message=f"{name} check timed out after {timeout}s",
                latency_ms=(time.monotonic() - start) * 1000,
                errors=["timeout"],
            )
        except Exception as e:
            logger.error(f"{name} probe failed: {e}")
            return ComponentHealth(
                component=name,
                status=HealthStatus.UNHEALTHY,
                message=f"{name} check failed: {e}",
                latency_ms=(time.monotonic() - start) * 1000,
                errors=[str(e)],
            )

    def _generate_alerts(self, components: Dict[str, ComponentHealth]) -> List[AlertDescriptor]:
        alerts = []
        for name, health in components.items():
            if health.status == HealthStatus.UNHEALTHY:
                level = AlertLevel.CRITICAL
            elif health.status == HealthStatus.DEGRADED:
                level = AlertLevel.WARNING
            else:
                continue
            reason = ", ".join(health.errors) or health.message
            alerts.append(AlertDescriptor(
                component=name,
                metric="health",
                level=level,
                message=f"{name} is {health.status.value}: {reason}",
            ))
        return alerts

    # History

    def record_result(self, result: HealthCheckResult) -> None:
        self._history.append(result)

    def get_health_history(self) -> List[HealthCheckResult]:
        """Copy of recorded results, oldest first."""
        return list(self._history)

    def get_latest(self) -> Optional[HealthCheckResult]:
        return self._history[-1] if self._history else None

    def clear_history(self) -> None:
        self._history.clear()

    # Probes

    def _client_for(self, credential: str) -> ApiStatusClient:
        client = self._api_clients.get(credential)
        if client is None:
            client = self._api_client_factory(credential)
            self._api_clients[credential] = client
        return client

    async def check_api(self, credential: Optional[str]) -> ComponentHealth:
        """
        Check API authentication, rate-limit headroom and latency.

        Returns:
            DEGRADED without a credential, on high rate-limit usage or slow
            responses; UNHEALTHY when the client call fails
        """
        if not credential:
            return ComponentHealth(
                component="api",
                status=HealthStatus.DEGRADED,
                message="No API credential provided",
                details={"authentication": "missing"},
                errors=["No API credential provided"],
            )

        start = time.monotonic()
        try:
            client = self._client_for(credential)
            identity = await client.get_authenticated_identity()
            rate = await client.check_status()
        except Exception as e:
            latency_ms = (time.monotonic() - start) * 1000
            logger.error(f"API health check failed: {e}")
            return ComponentHealth(
                component="api",
                status=HealthStatus.UNHEALTHY,
                message=f"API error: {e}",
                latency_ms=latency_ms,
                details={"authentication": "failed"},
                errors=[f"API check failed: {e}"],
            )

        latency_ms = (time.monotonic() - start) * 1000
        errors = []

        usage = (rate.limit - rate.remaining) / rate.limit if rate.limit else 0.0
        if usage > 1 - self._config.rate_limit_buffer:
            errors.append(f"Rate limit usage high: {usage * 100:.1f}%")
        if latency_ms > self._config.api_response_threshold_ms:
            errors.append(f"API response time high: {latency_ms:.0f}ms")

        reset = getattr(rate, "reset", None)
        details = {
            "authentication": "valid",
            "authenticated_user": identity.get("login"),
            "rate_limit": {
                "limit": rate.limit,
                "remaining": rate.remaining,
                "usage": round(usage, 4),
                "reset": reset.isoformat() if isinstance(reset, datetime) else reset,
            },
        }

        if errors:
            return ComponentHealth(
                component="api",
                status=HealthStatus.DEGRADED,
                message="; ".join(errors),
                latency_ms=latency_ms,
                details=details,
                errors=errors,
            )

        return ComponentHealth(
            component="api",
            status=HealthStatus.HEALTHY,
            message=f"API is accessible ({rate.remaining}/{rate.limit} calls left)",
            latency_ms=latency_ms,
            details=details,
        )

    async def quick_check_api(self, credential: Optional[str]) -> ComponentHealth:
        """Rate-limit call only; UNKNOWN without a credential."""
        if not credential:
            return ComponentHealth(
                component="api",
                status=HealthStatus.UNKNOWN,
                message="No API credential provided",
            )

        start = time.monotonic()
        try:
            rate = await self._client_for(credential).check_status()
        except Exception as e:
            logger.error(f"Quick API check failed: {e}")
            return ComponentHealth(
                component="api",
                status=HealthStatus.UNHEALTHY,
                message=f"API error: {e}",
                latency_ms=(time.monotonic() - start) * 1000,
            )

        status = HealthStatus.HEALTHY if rate.remaining > 10 else HealthStatus.DEGRADED
        return ComponentHealth(
            component="api",
            status=status,
            message=f"{rate.remaining} calls left",
            latency_ms=(time.monotonic() - start) * 1000,
        )

    async def check_auto_labeling(self, credential: Optional[str]) -> ComponentHealth:
        """
        Check recent classifier accuracy and processing time.

        Reads the last labeling_window_seconds of auto-labeling events from
        the metrics collector.
        """
        if self._metrics is None:
            return ComponentHealth(
                component="autoLabeling",
                status=HealthStatus.HEALTHY,
                message="No metrics source configured",
            )

        window_start = self._clock() - timedelta(seconds=self._config.labeling_window_seconds)
        summary = self._metrics.get_auto_labeling_metrics(start=window_start)
        window_minutes = self._config.labeling_window_seconds / 60

        if summary.total_events == 0:
            return ComponentHealth(
                component="autoLabeling",
                status=HealthStatus.HEALTHY,
                message=f"No auto-labeling activity in the last {window_minutes:.0f} minutes",
                details={"total_events": 0},
            )

        errors = []
        accuracy = summary.average_accuracy
        processing_ms = summary.average_processing_time_ms
        if accuracy is not None and accuracy < self._config.labeling_accuracy_threshold:
            errors.append(f"Labeling accuracy below threshold: {accuracy * 100:.1f}%")
        if processing_ms is not None and processing_ms > self._config.labeling_processing_time_threshold_ms:
            errors.append(f"Processing time high: {processing_ms:.0f}ms")

        details = {
            "total_events": summary.total_events,
            "accuracy": accuracy,
            "processing_time_ms": processing_ms,
            "component_detection_rate": summary.component_detection_rate,
            "security_detection_rate": summary.security_detection_rate,
        }
        status = HealthStatus.DEGRADED if errors else HealthStatus.HEALTHY
        message = "; ".join(errors) if errors else f"{summary.total_events} runs in the last {window_minutes:.0f} minutes"
        return ComponentHealth(
            component="autoLabeling",
            status=status,
            message=message,
            latency_ms=processing_ms,
            details=details,
            errors=errors,
        )

    async def check_system(self, credential: Optional[str]) -> ComponentHealth:
        """Check process memory against the configured ceiling."""
        try:
            if self._process is None:
                self._process = psutil.Process()
            rss = self._process.memory_info().rss
            cpu_percent = self._process.cpu_percent(interval=None)
        except psutil.Error as e:
            raise ProbeFailure("system", str(e)) from e

        threshold = self._config.memory_threshold_bytes
        details = {"memory_rss_bytes": rss, "cpu_percent": cpu_percent}
        rss_mb = rss / 1024 / 1024

        if rss > threshold:
            message = f"High memory usage: {rss_mb:.2f}MB"
            return ComponentHealth(
                component="system",
                status=HealthStatus.DEGRADED,
                message=message,
                details=details,
                errors=[message],
            )

        return ComponentHealth(
            component="system",
            status=HealthStatus.HEALTHY,
            message=f"Memory usage {rss_mb:.2f}MB",
            details=details,
        )

    async def close(self) -> None:
        """Close API clients opened by the probes."""
        clients = list(self._api_clients.values())
        self._api_clients.clear()
        for client in clients:
            try:
                await client.close()
            except Exception as e:
                logger.warning(f"Error closing API client: {e}")
