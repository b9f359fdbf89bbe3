"""
Dashboard for monitoring state.

DashboardSystem assembles one point-in-time snapshot from the health
checker, the metrics collector and the alerting system, and renders it as
an HTML document, structured data or condensed text. Each section is
gathered independently: a failing or empty source renders as "unknown"
instead of aborting the render.

The Flask application exposes the same views over HTTP.

SECURITY:
- Optional API key authentication via DASHBOARD_API_KEY env var
- HTML output is escaped to prevent XSS
- Bind to localhost by default for security
"""
from __future__ import annotations

import asyncio
import concurrent.futures
import html
import logging
import os
import time
from datetime import datetime, timedelta
from enum import Enum
from functools import wraps
from typing import TYPE_CHECKING, Any, Callable, Dict, List, Optional, Union

from flask import Flask, Response, abort, current_app, jsonify, request

from .alerting import AlertingSystem
from .config import DashboardConfig
from .events import Clock, utc_now
from .health_checker import HealthCheckSystem
from .metrics import MetricsCollector
from .models import AlertLevel

if TYPE_CHECKING:
    from .orchestrator import MonitoringOrchestrator

logger = logging.getLogger(__name__)


class DashboardFormat(Enum):
    HTML = "html"
    JSON = "json"
    TEXT = "text"


def escape_for_html(value: Any) -> str:
    """Safely escape a value for HTML output to prevent XSS."""
    if value is None:
        return ""
    return html.escape(str(value))


def _pct(value: Optional[float]) -> str:
    return f"{value * 100:.1f}%" if value is not None else "N/A"


def _ms(value: Optional[float]) -> str:
    return f"{value:.0f}ms" if value is not None else "N/A"


_STATUS_COLORS = {
    "healthy": "#28a745",
    "degraded": "#ffc107",
    "unhealthy": "#dc3545",
}

_STATUS_ICONS = {
    "healthy": "✅",
    "degraded": "⚠️",
    "unhealthy": "❌",
}

_LEVEL_ICONS = {
    "critical": "🔴",
    "warning": "🟡",
}


class DashboardSystem:
    """
    Pull-based dashboard renderer.

    Never part of the periodic cycle: every render runs a fresh, unrecorded
    health check and reads the other sources as they stand.

    Usage:
        dashboard = DashboardSystem(health, metrics, alerting)

        data = await dashboard.render(token, DashboardFormat.JSON)
        text = await dashboard.render(token, DashboardFormat.TEXT)
    """

    def __init__(
        self,
        health_checker: Optional[HealthCheckSystem],
        metrics_collector: Optional[MetricsCollector],
        alerting: Optional[AlertingSystem],
        config: Optional[DashboardConfig] = None,
        is_running: Optional[Callable[[], bool]] = None,
        clock: Clock = utc_now,
    ) -> None:
        self._health = health_checker
        self._metrics = metrics_collector
        self._alerting = alerting
        self._config = config or DashboardConfig()
        self._is_running = is_running
        self._clock = clock

    async def render(
        self,
        credential: Optional[str] = None,
        format: Union[DashboardFormat, str] = DashboardFormat.HTML,
    ) -> Union[str, Dict[str, Any]]:
        """
        Render the dashboard.

        Args:
            credential: API credential for the on-demand health check
            format: html (str), json (dict) or text (str)
        """
        format = DashboardFormat(format)
        data = await self.get_dashboard_data(credential)
        if format == DashboardFormat.JSON:
            return data
        if format == DashboardFormat.TEXT:
            return self.render_text(data)
        return self.render_html(data)

    async def get_dashboard_data(self, credential: Optional[str] = None) -> Dict[str, Any]:
        """Gather every section; failures degrade only their own section."""
        start = time.monotonic()
        now = self._clock()

        health = await self._health_section(credential)
        metrics = self._section("metrics", self._metrics_section, {})
        alerts = self._section(
            "alerts", self._alerts_section, {"active": [], "recent": [], "stats": {}}
        )
        trends = self._section(
            "trends", self._trends_section,
            {"health_history": [], "metrics_history": [], "alerts_history": []},
        )

        data: Dict[str, Any] = {
            "timestamp": now.isoformat(),
            "running": self._is_running() if self._is_running else None,
            "uptime_seconds": self._uptime(),
            "health": health,
            "metrics": metrics,
            "alerts": alerts,
            "trends": trends,
        }
        data["summary"] = self._section(
            "summary", lambda: self._summary(health, metrics, alerts), {"overall_status": "unknown"}
        )
        data["generation_time_ms"] = round((time.monotonic() - start) * 1000, 1)
        return data

    def _section(self, name: str, build: Callable[[], Any], fallback: Dict[str, Any]) -> Any:
        try:
            return build()
        except Exception as e:
            logger.error(f"Dashboard {name} section failed: {e}")
            return {**fallback, "error": str(e)}

    def _uptime(self) -> float:
        if self._health is None:
            return 0.0
        try:
            return round(self._health.get_uptime(), 0)
        except Exception as e:
            logger.error(f"Dashboard uptime lookup failed: {e}")
            return 0.0

    async def _health_section(self, credential: Optional[str]) -> Dict[str, Any]:
        if self._health is None:
            return {"overall": "unknown", "components": {}, "error": "Health checker not configured"}
        try:
            result = await self._health.perform_health_check(credential, record=False)
            return result.to_dict()
        except Exception as e:
            logger.error(f"Dashboard health section failed: {e}")
            return {"overall": "unknown", "components": {}, "error": str(e)}

    def _metrics_section(self) -> Dict[str, Any]:
        if self._metrics is None:
            return {"error": "Metrics collector not configured"}
        start = self._clock() - timedelta(hours=self._config.history_hours)
        return self._metrics.get_system_summary(start=start).to_dict()

    def _alerts_section(self) -> Dict[str, Any]:
        if self._alerting is None:
            return {"active": [], "recent": [], "stats": {}, "error": "Alerting not configured"}
        since = self._clock() - timedelta(hours=24)
        return {
            "active": [a.to_dict() for a in self._alerting.get_active_alerts()],
            "recent": [a.to_dict() for a in self._alerting.get_alert_history(limit=10)],
            "stats": self._alerting.get_alert_stats(start=since).to_dict(),
        }

    def _trends_section(self) -> Dict[str, Any]:
        points = self._config.max_data_points
        since = self._clock() - timedelta(hours=self._config.history_hours)

        health_history = []
        if self._health is not None:
            health_history = [
                {
                    "timestamp": h.timestamp.isoformat(),
                    "status": h.overall.value,
                    "components": len(h.components),
                    "alerts": len(h.alerts),
                }
                for h in self._health.get_health_history()[-points:]
            ]

        metrics_history: List[Dict[str, Any]] = []
        if self._metrics is not None:
            metrics_history = [
                bucket for bucket in self._metrics.get_aggregates("hour")
                if datetime.fromisoformat(bucket["period_start"]) >= since - timedelta(hours=1)
            ][-points:]

        alerts_history: List[Dict[str, Any]] = []
        if self._alerting is not None:
            by_hour: Dict[datetime, Dict[str, int]] = {}
            for alert in self._alerting.get_alert_history(start=since, limit=None, include_active=True):
                hour = alert.created_at.replace(minute=0, second=0, microsecond=0)
                counts = by_hour.setdefault(hour, {"total": 0, "critical": 0, "warning": 0})
                counts["total"] += 1
                counts[alert.level.value] += 1
            alerts_history = [
                {"timestamp": hour.isoformat(), **by_hour[hour]}
                for hour in sorted(by_hour)
            ][-points:]

        return {
            "health_history": health_history,
            "metrics_history": metrics_history,
            "alerts_history": alerts_history,
            "time_range": {"start": since.isoformat(), "end": self._clock().isoformat()},
        }

    def _summary(
        self,
        health: Dict[str, Any],
        metrics: Dict[str, Any],
        alerts: Dict[str, Any],
    ) -> Dict[str, Any]:
        components = health.get("components") or {}
        active = alerts.get("active") or []
        labeling = metrics.get("auto_labeling") or {}
        api = metrics.get("api_usage") or {}
        perf = metrics.get("performance") or {}
        memory = perf.get("memory_stats") or {}

        return {
            "overall_status": health.get("overall", "unknown"),
            "healthy_components": sum(1 for c in components.values() if c.get("status") == "healthy"),
            "total_components": len(components),
            "active_alerts": len(active),
            "critical_alerts": sum(1 for a in active if a.get("level") == AlertLevel.CRITICAL.value),
            "key_metrics": {
                "labeling_accuracy": labeling.get("average_accuracy"),
                "labeling_processing_time_ms": labeling.get("average_processing_time_ms"),
                "api_success_rate": api.get("success_rate"),
                "api_response_time_ms": api.get("average_response_time_ms"),
                "memory_rss_bytes": memory.get("average_rss_bytes"),
                "throughput_per_minute": perf.get("throughput_per_minute"),
                "error_rate": (metrics.get("errors") or {}).get("error_rate"),
            },
            "recommendations": self._recommendations(health, labeling, api, memory, active),
        }

    def _recommendations(
        self,
        health: Dict[str, Any],
        labeling: Dict[str, Any],
        api: Dict[str, Any],
        memory: Dict[str, Any],
        active: List[Dict[str, Any]],
    ) -> List[Dict[str, str]]:
        recommendations = []
        overall = health.get("overall")
        if overall == "unhealthy":
            recommendations.append({
                "type": "critical",
                "title": "System Health Issues",
                "message": "One or more components are unhealthy. Immediate attention required.",
                "action": "Check component health details and error logs",
            })
        elif overall == "degraded":
            recommendations.append({
                "type": "warning",
                "title": "Performance Degradation",
                "message": "Some components are experiencing issues.",
                "action": "Review degraded components",
            })

        accuracy = labeling.get("average_accuracy")
        if accuracy is not None and accuracy < 0.8:
            recommendations.append({
                "type": "warning",
                "title": "Auto-labeling Accuracy Low",
                "message": f"Accuracy is {_pct(accuracy)}",
                "action": "Review training data and component mappings",
            })
        override_rate = labeling.get("manual_override_rate")
        if override_rate is not None and override_rate > 0.3:
            recommendations.append({
                "type": "info",
                "title": "High Manual Override Rate",
                "message": f"{_pct(override_rate)} of labels are manually overridden",
                "action": "Analyze override patterns to improve automatic labeling",
            })

        success_rate = api.get("success_rate")
        if success_rate is not None and success_rate < 0.95:
            recommendations.append({
                "type": "warning",
                "title": "API Reliability Issues",
                "message": f"API success rate is {_pct(success_rate)}",
                "action": "Check API status and authentication",
            })

        if len(active) > 5:
            recommendations.append({
                "type": "warning",
                "title": "Multiple Active Alerts",
                "message": f"{len(active)} alerts are currently active",
                "action": "Review and resolve active alerts to prevent cascading issues",
            })

        rss = memory.get("average_rss_bytes")
        if rss is not None and rss / 1024 / 1024 > 400:
            recommendations.append({
                "type": "info",
                "title": "Memory Usage Elevated",
                "message": f"Average memory usage is {rss / 1024 / 1024:.1f}MB",
                "action": "Monitor memory usage trends",
            })

        return recommendations

    # Renderers

    def render_text(self, data: Dict[str, Any]) -> str:
        """Condensed status for the CLI and logs."""
        health = data.get("health") or {}
        metrics = data.get("metrics") or {}
        alerts = data.get("alerts") or {}
        overall = str(health.get("overall", "unknown"))

        lines = [self._config.title, "=" * 50, ""]
        lines.append(f"Overall Status: {overall.upper()}")
        lines.append(f"Last Updated: {data.get('timestamp', '')}")
        lines.append("")

        lines.append("Health Status:")
        components = health.get("components") or {}
        if not components:
            lines.append("  (no component data)")
        for name, component in components.items():
            status = component.get("status", "unknown")
            lines.append(f"  {_STATUS_ICONS.get(status, '❔')} {name}: {status}")

        lines.append("")
        lines.append("Key Metrics:")
        labeling = metrics.get("auto_labeling") or {}
        api = metrics.get("api_usage") or {}
        errors = metrics.get("errors") or {}
        if labeling.get("average_accuracy") is not None:
            lines.append(f"  Auto-labeling Accuracy: {_pct(labeling['average_accuracy'])}")
        if api.get("success_rate") is not None:
            lines.append(f"  API Success Rate: {_pct(api['success_rate'])}")
        if api.get("average_response_time_ms") is not None:
            lines.append(f"  API Response Time: {_ms(api['average_response_time_ms'])}")
        if errors.get("error_rate") is not None:
            lines.append(f"  Error Rate: {_pct(errors['error_rate'])}")

        active = alerts.get("active") or []
        lines.append("")
        lines.append(f"Active Alerts: {len(active)}")
        for alert in active[:3]:
            icon = _LEVEL_ICONS.get(alert.get("level"), "🔵")
            lines.append(f"  {icon} {alert.get('component')}: {alert.get('message')}")

        lines.append("")
        lines.append(f"Generated in {data.get('generation_time_ms', 0)}ms")
        return "\n".join(lines) + "\n"

    def render_html(self, data: Dict[str, Any]) -> str:
        """Full HTML document. Every dynamic value is escaped."""
        health = data.get("health") or {}
        overall = str(health.get("overall", "unknown"))
        color = _STATUS_COLORS.get(overall, "#6c757d")
        title = escape_for_html(self._config.title)

        return f"""<!DOCTYPE html>
<html lang="en">
<head>
    <meta charset="UTF-8">
    <meta name="viewport" content="width=device-width, initial-scale=1.0">
    <title>{title}</title>
    <style>
        body {{ font-family: -apple-system, sans-serif; background: #f5f6f8; margin: 0; padding: 20px; }}
        .header {{ display: flex; justify-content: space-between; align-items: center; }}
        .status-dot {{ display: inline-block; width: 12px; height: 12px; border-radius: 50%; }}
        .grid {{ display: grid; grid-template-columns: repeat(auto-fill, minmax(240px, 1fr)); gap: 12px; }}
        .card {{ background: #fff; border-radius: 6px; padding: 12px; border-left: 4px solid #6c757d; }}
        .card.healthy {{ border-color: #28a745; }}
        .card.degraded {{ border-color: #ffc107; }}
        .card.unhealthy {{ border-color: #dc3545; }}
        .alert.critical {{ color: #dc3545; }}
        .alert.warning {{ color: #b8860b; }}
        .muted {{ color: #6c757d; font-size: 0.85em; }}
    </style>
</head>
<body>
    <header class="header">
        <h1>{title}</h1>
        <div>
            <span class="status-dot" style="background-color: {color}"></span>
            <strong>{escape_for_html(overall.upper())}</strong>
            <div class="muted">Last updated: {escape_for_html(data.get("timestamp"))}</div>
        </div>
    </header>
    {self._html_health(health)}
    {self._html_metrics(data.get("metrics") or {})}
    {self._html_alerts(data.get("alerts") or {})}
    {self._html_summary(data.get("summary") or {})}
    <footer class="muted">Generated in {escape_for_html(data.get("generation_time_ms"))}ms</footer>
</body>
</html>"""

    def _html_health(self, health: Dict[str, Any]) -> str:
        cards = []
        for name, component in (health.get("components") or {}).items():
            status = str(component.get("status", "unknown"))
            errors = "<br>".join(escape_for_html(e) for e in component.get("errors") or [])
            latency = component.get("latency_ms")
            cards.append(f"""
            <div class="card {escape_for_html(status)}">
                <h3>{escape_for_html(name)}</h3>
                <div>{escape_for_html(status)}</div>
                <div class="muted">{escape_for_html(component.get("message"))}</div>
                {f'<div class="muted">{errors}</div>' if errors else ''}
                {f'<div class="muted">Latency: {escape_for_html(_ms(latency))}</div>' if latency is not None else ''}
            </div>""")
        if not cards:
            cards.append(f'<div class="card">{escape_for_html(health.get("error") or "No health data")}</div>')
        return f'<section><h2>System Health</h2><div class="grid">{"".join(cards)}</div></section>'

    def _html_metrics(self, metrics: Dict[str, Any]) -> str:
        if not metrics or "error" in metrics and len(metrics) == 1:
            return f'<section><h2>System Metrics</h2><div class="card">{escape_for_html(metrics.get("error") or "No metrics data")}</div></section>'

        labeling = metrics.get("auto_labeling") or {}
        api = metrics.get("api_usage") or {}
        perf = metrics.get("performance") or {}
        errors = metrics.get("errors") or {}
        cards = [
            ("Auto-labeling", _pct(labeling.get("average_accuracy")), "Accuracy",
             f"Processing: {_ms(labeling.get('average_processing_time_ms'))}, "
             f"Override rate: {_pct(labeling.get('manual_override_rate'))}"),
            ("API Usage", _pct(api.get("success_rate")), "Success rate",
             f"Requests: {api.get('total_requests', 0)}, "
             f"Response: {_ms(api.get('average_response_time_ms'))}"),
            ("Performance", str(perf.get("total_operations", 0)), "Operations",
             f"Average: {_ms(perf.get('average_duration_ms'))}"),
            ("Errors", str(errors.get("total_errors", 0)), "Errors",
             f"Error rate: {_pct(errors.get('error_rate'))}"),
        ]
        html_cards = "".join(
            f"""
            <div class="card">
                <h3>{escape_for_html(name)}</h3>
                <div style="font-size: 1.6em">{escape_for_html(value)}</div>
                <div class="muted">{escape_for_html(label)}</div>
                <div class="muted">{escape_for_html(detail)}</div>
            </div>"""
            for name, value, label, detail in cards
        )
        return f'<section><h2>System Metrics</h2><div class="grid">{html_cards}</div></section>'

    def _html_alerts(self, alerts: Dict[str, Any]) -> str:
        active = alerts.get("active") or []
        if not active:
            body = '<div class="card">No active alerts</div>'
        else:
            body = "".join(
                f"""
            <div class="card alert {escape_for_html(a.get("level"))}">
                <strong>{escape_for_html(a.get("component"))}/{escape_for_html(a.get("metric"))}</strong>
                <div>{escape_for_html(a.get("message"))}</div>
                <div class="muted">Since {escape_for_html(a.get("created_at"))} ({escape_for_html(a.get("occurrences"))}x)</div>
            </div>"""
                for a in active
            )
        return f'<section><h2>Active Alerts ({len(active)})</h2><div class="grid">{body}</div></section>'

    def _html_summary(self, summary: Dict[str, Any]) -> str:
        items = "".join(
            f"<li><strong>{escape_for_html(r.get('title'))}</strong>: "
            f"{escape_for_html(r.get('message'))} <span class=\"muted\">{escape_for_html(r.get('action'))}</span></li>"
            for r in summary.get("recommendations") or []
        )
        if not items:
            items = "<li>No recommendations</li>"
        return f"<section><h2>Recommendations</h2><ul>{items}</ul></section>"


# =============================================================================
# Flask application
# =============================================================================


def require_api_key(f: Callable) -> Callable:
    """
    Decorator to require API key authentication.

    If DASHBOARD_API_KEY is configured, requests must include either:
    - X-API-Key header
    - api_key query parameter

    If no key is configured, authentication is disabled.
    """
    @wraps(f)
    def decorated(*args, **kwargs):
        expected = current_app.config.get("DASHBOARD_API_KEY")
        if not expected:
            return f(*args, **kwargs)

        # Check header first, then query param
        provided_key = request.headers.get("X-API-Key") or request.args.get("api_key")

        if not provided_key or provided_key != expected:
            logger.warning(f"Unauthorized API access attempt from {request.remote_addr}")
            abort(401)

        return f(*args, **kwargs)

    return decorated


class DashboardApp:
    """
    Web front end for a MonitoringOrchestrator.

    Endpoints:
        GET /health - Quick health check
        GET /api/status - Composite status snapshot
        GET /api/dashboard?format=json|text|html - Dashboard render
        GET /api/alerts - Active alerts, history and stats
        GET /api/metrics/export?format=json|csv - Metrics export
        GET / - HTML dashboard

    Usage:
        app = create_app(orchestrator, event_loop=loop, credential=token)
        app.run(port=5050)
    """

    def __init__(
        self,
        orchestrator: "MonitoringOrchestrator",
        event_loop: Optional[asyncio.AbstractEventLoop] = None,
        credential: Optional[str] = None,
    ) -> None:
        """
        Args:
            orchestrator: Monitoring orchestrator to read from
            event_loop: Loop the orchestrator runs on. Flask serves from its
                own thread, so coroutines are dispatched to this loop with
                run_coroutine_threadsafe().
            credential: API credential for on-demand health checks
        """
        self._orchestrator = orchestrator
        self._event_loop = event_loop
        self._credential = credential

    def _run_async(self, coro, timeout: float = 60.0) -> Any:
        """
        Run an async coroutine from the Flask thread safely.

        Raises:
            RuntimeError: If event loop is not running (shutdown in progress)
            TimeoutError: If operation times out
        """
        if self._event_loop is None:
            # No main loop (tests, one-off renders). Client sessions are bound
            # to this loop, so they are closed with it.
            loop = asyncio.new_event_loop()
            try:
                return loop.run_until_complete(coro)
            finally:
                try:
                    loop.run_until_complete(self._orchestrator.health_checker.close())
                finally:
                    loop.close()

        if self._event_loop.is_closed() or not self._event_loop.is_running():
            coro.close()
            raise RuntimeError("Event loop is not running (shutdown in progress)")

        future = asyncio.run_coroutine_threadsafe(coro, self._event_loop)
        try:
            return future.result(timeout=timeout)
        except concurrent.futures.TimeoutError:
            future.cancel()
            logger.error(f"Async operation timed out after {timeout}s")
            raise TimeoutError(f"Operation timed out after {timeout}s")

    def create_app(self, testing: bool = False, api_key: Optional[str] = None) -> Flask:
        """
        Create the Flask application.

        Args:
            testing: Whether to enable testing mode
            api_key: Required API key (default: DASHBOARD_API_KEY env var)
        """
        app = Flask(__name__)
        app.config["TESTING"] = testing
        app.config["DASHBOARD_API_KEY"] = (
            api_key if api_key is not None else os.environ.get("DASHBOARD_API_KEY")
        )
        app.extensions["issue_monitor_dashboard"] = self
        self._register_routes(app)
        return app

    def _register_routes(self, app: Flask) -> None:
        """Register all HTTP routes."""
        dashboard = self
        orchestrator = self._orchestrator

        @app.route("/health")
        @require_api_key
        def health() -> Response:
            """Quick health status."""
            try:
                quick = dashboard._run_async(
                    orchestrator.health_checker.get_quick_health(dashboard._credential)
                )
                return jsonify(quick.to_dict())
            except Exception as e:
                logger.error(f"Health check failed: {e}")
                return jsonify({"status": "error", "error": str(e)}), 500

        @app.route("/api/status")
        @require_api_key
        def status() -> Response:
            try:
                return jsonify(dashboard._run_async(orchestrator.get_status(dashboard._credential)))
            except Exception as e:
                logger.error(f"Failed to get status: {e}")
                return jsonify({"error": str(e)}), 500

        @app.route("/api/dashboard")
        @require_api_key
        def dashboard_view() -> Response:
            fmt = request.args.get("format", "json").lower()
            try:
                format = DashboardFormat(fmt)
            except ValueError:
                return jsonify({"error": f"Unsupported format: {fmt}"}), 400

            try:
                result = dashboard._run_async(
                    orchestrator.get_dashboard(dashboard._credential, format)
                )
            except Exception as e:
                logger.error(f"Failed to render dashboard: {e}")
                return jsonify({"error": str(e)}), 500

            if format == DashboardFormat.JSON:
                return jsonify(result)
            mimetype = "text/plain" if format == DashboardFormat.TEXT else "text/html"
            return Response(result, mimetype=mimetype)

        @app.route("/api/alerts")
        @require_api_key
        def alerts() -> Response:
            """Active alerts, filtered history and stats."""
            component = request.args.get("component")
            level_arg = request.args.get("level")
            try:
                limit = int(request.args.get("limit", 100))
                level = AlertLevel(level_arg) if level_arg else None
            except ValueError as e:
                return jsonify({"error": str(e)}), 400

            alerting = orchestrator.alerting
            return jsonify({
                "active": [a.to_dict() for a in alerting.get_active_alerts()],
                "history": [
                    a.to_dict()
                    for a in alerting.get_alert_history(component=component, level=level, limit=limit)
                ],
                "stats": alerting.get_alert_stats(component=component, level=level).to_dict(),
            })

        @app.route("/api/metrics/export")
        @require_api_key
        def metrics_export() -> Response:
            fmt = request.args.get("format", "json").lower()
            aggregated = request.args.get("aggregated", "false").lower() == "true"
            try:
                hours = float(request.args.get("hours", 24))
                start = orchestrator.clock() - timedelta(hours=hours)
                result = orchestrator.metrics.export_metrics(
                    start=start, format=fmt, aggregated=aggregated
                )
            except ValueError as e:
                return jsonify({"error": str(e)}), 400

            if fmt == "csv":
                return Response(result, mimetype="text/csv")
            return jsonify(result)

        @app.route("/")
        @require_api_key
        def index() -> Response:
            """HTML dashboard."""
            try:
                page = dashboard._run_async(
                    orchestrator.get_dashboard(dashboard._credential, DashboardFormat.HTML)
                )
            except Exception as e:
                logger.error(f"Failed to render dashboard: {e}")
                return Response(
                    f"<h1>Dashboard unavailable</h1><p>{escape_for_html(e)}</p>",
                    status=500,
                    mimetype="text/html",
                )
            return Response(page, mimetype="text/html")


def create_app(
    orchestrator: "MonitoringOrchestrator",
    event_loop: Optional[asyncio.AbstractEventLoop] = None,
    credential: Optional[str] = None,
    api_key: Optional[str] = None,
    testing: bool = False,
) -> Flask:
    """
    Factory function to create the dashboard app.

    Args:
        orchestrator: MonitoringOrchestrator to expose
        event_loop: Loop the orchestrator runs on
        credential: API credential for on-demand health checks
        api_key: Required API key (default: DASHBOARD_API_KEY env var)
        testing: Enable testing mode

    Returns:
        Flask application
    """
    dashboard = DashboardApp(orchestrator, event_loop=event_loop, credential=credential)
    return dashboard.create_app(testing=testing, api_key=api_key)
