"""
MonitoringOrchestrator - owns the monitoring subsystems and their lifecycle.

Wires the metrics collector, health checker, alerting system and dashboard
around one event bus, and drives the periodic evaluation cycle:

    health check -> metrics summary -> alert evaluation -> cycle metric

A failing cycle is recorded as an error metric plus a critical
("monitoring_system", "cycleFailure") alert, and the loop carries on at the
next tick.
"""
from __future__ import annotations

import asyncio
import logging
import time
from datetime import datetime, timedelta
from typing import Any, Awaitable, Dict, Mapping, Optional, Union

from .alerting import AlertingSystem
from .config import MonitoringConfig, NotificationConfig
from .dashboard import DashboardFormat, DashboardSystem
from .events import Clock, ErrorSeverity, MetricEvent, utc_now
from .exceptions import CycleFailure, StartupFailure
from .health_checker import ApiClientFactory, HealthCheckSystem
from .metrics import EventInput, MetricsCollector, MetricsSummary
from .models import AlertDescriptor, AlertLevel
from .notifications import NotificationDispatcher
from .pubsub import ERROR_OCCURRED, EventBus

logger = logging.getLogger(__name__)

SELF_COMPONENT = "monitoring_system"
CYCLE_FAILURE_METRIC = "cycleFailure"

# Extra time the initial check may take beyond one probe timeout
_STARTUP_GRACE_SECONDS = 5.0


class MonitoringOrchestrator:
    """
    Single entry point for the monitoring layer.

    Stopped -> Running on start(), Running -> Stopped on stop(). Each
    instance owns its own state, so several can coexist (e.g. in tests).

    Usage:
        monitoring = MonitoringOrchestrator(MonitoringConfig.from_env())
        await monitoring.start(token)

        monitoring.track_api_usage({"endpoint": "/issues", "response_time_ms": 95})
        status = await monitoring.get_status()

        await monitoring.stop()
    """

    def __init__(
        self,
        config: Optional[MonitoringConfig] = None,
        api_client_factory: Optional[ApiClientFactory] = None,
        clock: Clock = utc_now,
    ) -> None:
        """
        Initialize the orchestrator and its subsystems.

        Args:
            config: Monitoring configuration (defaults for everything if None)
            api_client_factory: Builds the API client used by the api probe
            clock: Source of the current UTC time, shared by every subsystem
        """
        self._config = config or MonitoringConfig()
        self._clock = clock
        self._bus = EventBus()

        self._metrics = MetricsCollector(
            retention_days=self._config.metrics_retention_days,
            enable_performance_tracking=self._config.enable_performance_tracking,
            event_bus=self._bus,
            clock=clock,
            rate_excluded_components=(SELF_COMPONENT,),
        )
        self._health = HealthCheckSystem(
            self._config.health,
            metrics_collector=self._metrics,
            api_client_factory=api_client_factory,
            clock=clock,
        )
        self._alerting = AlertingSystem(
            self._config.thresholds,
            event_bus=self._bus,
            dispatcher=NotificationDispatcher(self._config.notifications),
            clock=clock,
        )
        self._dashboard = DashboardSystem(
            self._health,
            self._metrics,
            self._alerting,
            config=self._config.dashboard,
            is_running=lambda: self._running,
            clock=clock,
        )

        self._running = False
        self._credential: Optional[str] = None
        self._task: Optional[asyncio.Task] = None
        self._shutdown_event = asyncio.Event()
        # Bumped on every start and stop; a cycle from an older run is discarded
        self._generation = 0
        self._cycles_completed = 0
        self._cycles_failed = 0

        self._bus.subscribe(ERROR_OCCURRED, self._on_error_occurred)

    # =========================================================================
    # Accessors
    # =========================================================================

    @property
    def config(self) -> MonitoringConfig:
        return self._config

    @property
    def clock(self) -> Clock:
        return self._clock

    @property
    def event_bus(self) -> EventBus:
        return self._bus

    @property
    def metrics(self) -> MetricsCollector:
        return self._metrics

    @property
    def health_checker(self) -> HealthCheckSystem:
        return self._health

    @property
    def alerting(self) -> AlertingSystem:
        return self._alerting

    @property
    def dashboard(self) -> DashboardSystem:
        return self._dashboard

    @property
    def is_running(self) -> bool:
        """Whether the periodic cycle is scheduled."""
        return self._running

    # =========================================================================
    # Telemetry ingestion
    # =========================================================================

    def track_auto_labeling(self, event: EventInput) -> MetricEvent:
        return self._metrics.track_auto_labeling(event)

    def track_api_usage(self, event: EventInput) -> MetricEvent:
        return self._metrics.track_api_usage(event)

    def track_performance(self, event: EventInput) -> Optional[MetricEvent]:
        return self._metrics.track_performance(event)

    def track_user_engagement(self, event: EventInput) -> MetricEvent:
        return self._metrics.track_user_engagement(event)

    def track_error(self, event: EventInput) -> MetricEvent:
        return self._metrics.track_error(event)

    def track_system(self, event: EventInput) -> MetricEvent:
        return self._metrics.track_system(event)

    # =========================================================================
    # Lifecycle
    # =========================================================================

    async def start(self, credential: Optional[str] = None) -> None:
        """
        Run one health check, then schedule the periodic cycle.

        Args:
            credential: API credential used by every scheduled health check

        Raises:
            StartupFailure: The initial health check did not complete. The
                orchestrator stays Stopped.
        """
        if self._running:
            logger.warning("Monitoring system already running")
            return

        logger.info("Starting monitoring system...")
        timeout = self._config.health.probe_timeout_seconds + _STARTUP_GRACE_SECONDS
        try:
            initial = await asyncio.wait_for(
                self._health.perform_health_check(credential, record=False),
                timeout=timeout,
            )
        except asyncio.TimeoutError as e:
            logger.error(f"Initial health check timed out after {timeout}s")
            raise StartupFailure(f"Initial health check timed out after {timeout}s") from e
        except Exception as e:
            logger.error(f"Initial health check failed: {e}")
            raise StartupFailure(f"Initial health check failed: {e}") from e

        self._credential = credential
        self._generation += 1
        self._running = True
        self._shutdown_event = asyncio.Event()
        self._health.mark_started()
        self._health.record_result(initial)

        self._metrics.track_system({
            "metric": "monitoring.started",
            "value": 1,
            "tags": {"initial_status": initial.overall.value},
            "metadata": {
                "health_check_interval_seconds": self._config.health_check_interval_seconds,
                "metrics_retention_days": self._config.metrics_retention_days,
            },
        })

        self._task = asyncio.create_task(
            self._run_loop(self._generation),
            name="monitoring_cycle",
        )
        logger.info(
            f"Monitoring system started (status={initial.overall.value}, "
            f"interval={self._config.health_check_interval_seconds}s)"
        )

    async def stop(self) -> None:
        """Cancel the cycle and release resources. Safe to call repeatedly."""
        if not self._running:
            return

        logger.info("Stopping monitoring system...")
        uptime = self._health.get_uptime()
        self._running = False
        self._generation += 1
        self._shutdown_event.set()

        task, self._task = self._task, None
        if task is not None:
            if not task.done():
                task.cancel()
            await asyncio.gather(task, return_exceptions=True)

        self._metrics.track_system({
            "metric": "monitoring.stopped",
            "value": round(uptime, 1),
            "unit": "seconds",
        })
        self._health.mark_stopped()

        await self._bus.drain()
        await self._health.close()
        await self._alerting.dispatcher.close()
        logger.info("Monitoring system stopped")

    async def close(self) -> None:
        """Stop if running, and close sessions opened by one-off calls."""
        await self.stop()
        await self._bus.drain()
        await self._health.close()
        await self._alerting.dispatcher.close()

    def _is_current(self, generation: int) -> bool:
        return self._running and generation == self._generation

    async def _run_loop(self, generation: int) -> None:
        """Run a cycle every interval until stopped."""
        interval = self._config.health_check_interval_seconds

        while self._is_current(generation):
            try:
                await asyncio.wait_for(self._shutdown_event.wait(), timeout=interval)
                break  # Shutdown requested
            except asyncio.TimeoutError:
                pass

            try:
                await self.run_cycle(generation)
            except Exception as e:
                # Failure while recording a cycle failure
                logger.exception(f"Error in monitoring loop: {e}")

    async def run_cycle(self, generation: Optional[int] = None) -> bool:
        """
        Run one evaluation cycle.

        Args:
            generation: Run the cycle belongs to (default: the current run)

        Returns:
            True if the cycle completed and was applied
        """
        if generation is None:
            generation = self._generation
        if not self._is_current(generation):
            return False

        start = time.monotonic()
        try:
            health = await self._health.perform_health_check(self._credential, record=False)
            if not self._is_current(generation):
                logger.debug("Discarding health check from a stopped run")
                return False
            self._health.record_result(health)

            summary = self._window_summary()
            await self._alerting.process_health_alerts(health)
            await self._alerting.process_metrics_alerts(summary)

            duration_ms = (time.monotonic() - start) * 1000
            self._metrics.track_performance({
                "operation": "monitoring_cycle",
                "duration_ms": duration_ms,
                "success": True,
            })
            self._metrics.purge_expired()
            await self._alerting.resolve_alert(SELF_COMPONENT, CYCLE_FAILURE_METRIC)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            await self._handle_cycle_failure(e, (time.monotonic() - start) * 1000)
            return False

        self._cycles_completed += 1
        log = logger.info if self._config.debug else logger.debug
        log(f"Monitoring cycle completed in {duration_ms:.0f}ms ({health.overall.value})")
        return True

    async def _handle_cycle_failure(self, error: Exception, duration_ms: float) -> None:
        self._cycles_failed += 1
        failure = CycleFailure(f"Monitoring cycle failed: {error}")
        logger.error(str(failure))

        self._metrics.track_exception(
            SELF_COMPONENT,
            failure,
            severity=ErrorSeverity.CRITICAL,
            context={"cause": type(error).__name__, "duration_ms": round(duration_ms, 1)},
        )
        await self._alerting.trigger_alert(AlertDescriptor(
            component=SELF_COMPONENT,
            metric=CYCLE_FAILURE_METRIC,
            level=AlertLevel.CRITICAL,
            message=str(failure),
            details={"error_type": type(error).__name__},
        ))

    def _window_summary(self) -> MetricsSummary:
        start = self._clock() - timedelta(seconds=self._config.metrics_window_seconds)
        return self._metrics.get_system_summary(start=start)

    def _on_error_occurred(self, record: MetricEvent) -> Optional[Awaitable[Any]]:
        """
        Re-evaluate the system error rate as soon as an error is tracked.

        Errors the monitoring system records about itself are already
        reported through the cycleFailure alert.
        """
        if not self._running:
            return None
        if getattr(record.payload, "component", None) == SELF_COMPONENT:
            return None
        return self._reevaluate_error_rate(self._generation)

    async def _reevaluate_error_rate(self, generation: int) -> None:
        if not self._is_current(generation):
            return
        start = self._clock() - timedelta(seconds=self._config.metrics_window_seconds)
        await self._alerting.process_error_rate(self._metrics.get_error_metrics(start=start))

    # =========================================================================
    # On-demand views
    # =========================================================================

    async def get_status(self, credential: Optional[str] = None) -> Dict[str, Any]:
        """
        Composite snapshot without waiting for the next cycle.

        Nothing is recorded, so repeated calls with no new events return the
        same health and metrics structure.
        """
        credential = credential or self._credential
        health = await self._health.perform_health_check(credential, record=False)
        summary = self._window_summary()

        return {
            "timestamp": self._clock().isoformat(),
            "running": self._running,
            "uptime_seconds": round(self._health.get_uptime(), 0),
            "health": health.to_dict(),
            "metrics": summary.to_dict(),
            "alerts": {
                "active": [a.to_dict() for a in self._alerting.get_active_alerts()],
                "stats": self._alerting.get_alert_stats().to_dict(),
            },
        }

    async def get_dashboard(
        self,
        credential: Optional[str] = None,
        format: Union[DashboardFormat, str] = DashboardFormat.HTML,
    ) -> Union[str, Dict[str, Any]]:
        """Render the dashboard as html, json or text."""
        return await self._dashboard.render(credential or self._credential, format)

    async def test_monitoring(self, credential: Optional[str] = None) -> Dict[str, Any]:
        """
        Exercise each subsystem once, for deployment smoke tests.

        Returns:
            Dict with per-subsystem results and an overall "passed" flag
        """
        credential = credential or self._credential
        logger.info("Testing monitoring system...")
        checks: Dict[str, Dict[str, Any]] = {}

        try:
            quick = await self._health.get_quick_health(credential)
            checks["health"] = {"passed": True, "status": quick.status.value}
        except Exception as e:
            checks["health"] = {"passed": False, "error": str(e)}

        try:
            self._metrics.track_system({"metric": "monitoring.selftest", "value": 1, "unit": "test"})
            total = self._metrics.get_total_event_count()
            checks["metrics"] = {"passed": total > 0, "total_events": total}
        except Exception as e:
            checks["metrics"] = {"passed": False, "error": str(e)}

        try:
            alert = await self._alerting.test_alerts()
            checks["alerting"] = {"passed": True, "alert_id": alert.id}
        except Exception as e:
            checks["alerting"] = {"passed": False, "error": str(e)}

        if self._config.enable_dashboard:
            try:
                text = await self._dashboard.render(credential, DashboardFormat.TEXT)
                checks["dashboard"] = {"passed": bool(text)}
            except Exception as e:
                checks["dashboard"] = {"passed": False, "error": str(e)}

        passed = all(c["passed"] for c in checks.values())
        if passed:
            logger.info("All monitoring tests passed")
        else:
            failed = [name for name, c in checks.items() if not c["passed"]]
            logger.error(f"Monitoring tests failed: {', '.join(failed)}")

        return {
            "timestamp": self._clock().isoformat(),
            "passed": passed,
            "checks": checks,
        }

    def get_system_load(self) -> float:
        """Load indicator from active alerts, 0-1."""
        active = self._alerting.get_active_alerts()
        critical = sum(1 for a in active if a.level == AlertLevel.CRITICAL)
        warning = sum(1 for a in active if a.level == AlertLevel.WARNING)
        return min(1.0, (critical * 0.5 + warning * 0.3) / 10)

    def get_monitoring_stats(self) -> Dict[str, Any]:
        return {
            "running": self._running,
            "uptime_seconds": round(self._health.get_uptime(), 0),
            "total_events": self._metrics.get_total_event_count(),
            "active_alerts": len(self._alerting.get_active_alerts()),
            "system_load": round(self.get_system_load(), 3),
            "cycles_completed": self._cycles_completed,
            "cycles_failed": self._cycles_failed,
            "configuration": {
                "health_check_interval_seconds": self._config.health_check_interval_seconds,
                "metrics_retention_days": self._config.metrics_retention_days,
                "alert_cooldown_seconds": self._config.thresholds.cooldown_period_seconds,
                "dashboard_enabled": self._config.enable_dashboard,
                "notification_channels": self._alerting.dispatcher.channel_names,
            },
        }

    def export_monitoring_data(
        self,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        format: str = "json",
        aggregated: bool = False,
    ) -> Dict[str, Any]:
        """
        Full dump of health history, metrics and alerts.

        Args:
            start: Window start for metrics and alerts
            end: Window end
            format: Metrics serialization, "json" or "csv"
            aggregated: Export the metrics summary instead of raw events
        """
        return {
            "timestamp": self._clock().isoformat(),
            "system_stats": self.get_monitoring_stats(),
            "health_history": [h.to_dict() for h in self._health.get_health_history()],
            "metrics": self._metrics.export_metrics(
                start=start, end=end, format=format, aggregated=aggregated
            ),
            "alerts": {
                "active": [a.to_dict() for a in self._alerting.get_active_alerts()],
                "history": [
                    a.to_dict()
                    for a in self._alerting.get_alert_history(start=start, end=end, limit=None)
                ],
                "stats": self._alerting.get_alert_stats(start=start, end=end).to_dict(),
            },
        }

    def configure_notifications(
        self,
        config: Union[NotificationConfig, Mapping[str, Any]],
    ) -> None:
        self._alerting.configure_notifications(config)
