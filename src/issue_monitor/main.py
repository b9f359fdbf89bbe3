"""
Issue Monitor - Main Entry Point

Runs the monitoring and alerting engine for the issue-automation service,
or takes one-off snapshots of it.

Usage:
    issue-monitor run [--no-dashboard] [--host HOST] [--port PORT]
    issue-monitor status
    issue-monitor dashboard --format text
    issue-monitor dashboard --format html --output dashboard.html
    issue-monitor test

Environment Variables:
    GITHUB_TOKEN                    Token used by the API health probe
    LOG_LEVEL                       Logging level (DEBUG/INFO/WARNING/ERROR)
    DASHBOARD_HOST                  Dashboard bind address (default: 127.0.0.1)
    DASHBOARD_PORT                  Dashboard port (default: 5050)
    DASHBOARD_API_KEY               Require this key on every dashboard request
    MONITOR_HEALTH_CHECK_INTERVAL   Seconds between evaluation cycles (default: 60)
    MONITOR_RETENTION_DAYS          Days metric events stay queryable (default: 30)
    MONITOR_ALERT_COOLDOWN          Seconds between repeat notifications (default: 300)
    SLACK_WEBHOOK_URL               Slack incoming webhook for alerts
    ALERT_WEBHOOK_URL               Generic webhook receiving alerts as JSON
    TELEGRAM_BOT_TOKEN              Telegram bot token for alerts
    TELEGRAM_CHAT_ID                Telegram chat ID for alerts
    SMTP_HOST / ALERT_EMAIL_TO      Email alerts (see monitoring.config)

A .env file in the working directory is loaded first; variables already
set in the environment win.
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import os
import signal
import sys
import threading
from pathlib import Path
from typing import Optional

from issue_monitor.monitoring import (
    DashboardFormat,
    MonitoringConfig,
    MonitoringOrchestrator,
    StartupFailure,
    create_app,
)

# Configure logging before anything logs
LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO").upper()
logging.basicConfig(
    level=getattr(logging, LOG_LEVEL, logging.INFO),
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger(__name__)


class MonitorService:
    """
    Long-running monitoring process.

    Starts the orchestrator, optionally serves the dashboard from a
    background thread, and stops cleanly on SIGINT/SIGTERM.
    """

    def __init__(
        self,
        config: MonitoringConfig,
        credential: Optional[str],
        dashboard_enabled: bool = True,
        dashboard_host: str = "127.0.0.1",
        dashboard_port: int = 5050,
    ):
        self.config = config
        self._credential = credential
        self._dashboard_enabled = dashboard_enabled and config.enable_dashboard
        self._dashboard_host = dashboard_host
        self._dashboard_port = dashboard_port

        self._orchestrator = MonitoringOrchestrator(config)
        self._shutdown_event = asyncio.Event()
        self._dashboard_thread: Optional[threading.Thread] = None
        self._flask_server = None

    async def run(self) -> None:
        """Run until a shutdown signal arrives."""
        logger.info("=" * 60)
        logger.info("ISSUE MONITOR")
        logger.info("=" * 60)
        if not self._credential:
            logger.warning("GITHUB_TOKEN not set; the api component will report degraded")

        self._setup_signal_handlers()
        await self._orchestrator.start(self._credential)

        try:
            if self._dashboard_enabled:
                self._start_dashboard(asyncio.get_running_loop())

            logger.info("Monitoring running. Press Ctrl+C to stop")
            await self._shutdown_event.wait()
        finally:
            self._stop_dashboard()
            await self._orchestrator.close()

    def _start_dashboard(self, loop: asyncio.AbstractEventLoop) -> None:
        """Start the Flask dashboard in a background thread.

        Flask runs in a separate thread to avoid blocking the asyncio event loop.
        Uses werkzeug's threaded server with graceful shutdown support.
        """
        from werkzeug.serving import make_server

        app = create_app(self._orchestrator, event_loop=loop, credential=self._credential)
        self._flask_server = make_server(
            host=self._dashboard_host,
            port=self._dashboard_port,
            app=app,
            threaded=True,
        )

        def run_flask():
            """Serve until shutdown() is called."""
            logger.info(f"Dashboard: http://{self._dashboard_host}:{self._dashboard_port}")
            self._flask_server.serve_forever()

        self._dashboard_thread = threading.Thread(target=run_flask, name="dashboard", daemon=True)
        self._dashboard_thread.start()

    def _stop_dashboard(self) -> None:
        """Stop the Flask dashboard gracefully."""
        if self._flask_server:
            logger.info("Dashboard: Shutting down...")
            self._flask_server.shutdown()
            self._flask_server.server_close()
            self._flask_server = None

        if self._dashboard_thread:
            self._dashboard_thread.join(timeout=5)
            if self._dashboard_thread.is_alive():
                logger.warning("Dashboard thread did not stop cleanly")
            self._dashboard_thread = None

    def _setup_signal_handlers(self) -> None:
        """Setup signal handlers for graceful shutdown."""
        loop = asyncio.get_running_loop()

        def handle_signal(sig):
            logger.info(f"Received signal {sig}")
            self._shutdown_event.set()

        try:
            for sig in (signal.SIGTERM, signal.SIGINT):
                loop.add_signal_handler(sig, lambda s=sig: handle_signal(s))
        except NotImplementedError:
            # Windows doesn't support add_signal_handler
            pass


def load_env_file(path: str = ".env") -> None:
    """Load environment variables from .env file if it exists."""
    env_path = Path(path)
    if env_path.exists():
        logger.info(f"Loading environment from {env_path}")
        with open(env_path) as f:
            for line in f:
                line = line.strip()
                if line and not line.startswith("#") and "=" in line:
                    key, _, value = line.partition("=")
                    value = value.strip().strip('"').strip("'")
                    os.environ.setdefault(key.strip(), value)


def parse_args(argv: Optional[list] = None) -> argparse.Namespace:
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        prog="issue-monitor",
        description="Issue automation monitoring and alerting",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Override log level",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    run = subparsers.add_parser("run", help="Run monitoring until interrupted")
    run.add_argument(
        "--no-dashboard",
        action="store_true",
        help="Do not serve the web dashboard",
    )
    run.add_argument(
        "--host",
        default=os.environ.get("DASHBOARD_HOST", "127.0.0.1"),
        help="Dashboard bind address",
    )
    run.add_argument(
        "--port",
        type=int,
        default=int(os.environ.get("DASHBOARD_PORT", "5050")),
        help="Dashboard port",
    )

    subparsers.add_parser("status", help="Print one composite status snapshot as JSON")

    dashboard = subparsers.add_parser("dashboard", help="Render the dashboard once")
    dashboard.add_argument(
        "--format",
        choices=[f.value for f in DashboardFormat],
        default=DashboardFormat.TEXT.value,
        help="Output format (default: text)",
    )
    dashboard.add_argument(
        "--output",
        type=str,
        help="Write to this file instead of stdout",
    )

    subparsers.add_parser("test", help="Smoke-test every monitoring subsystem")
    return parser.parse_args(argv)


async def _run_once(args: argparse.Namespace, config: MonitoringConfig, credential: Optional[str]) -> int:
    """Handle the one-shot commands against a stopped orchestrator."""
    orchestrator = MonitoringOrchestrator(config)
    try:
        if args.command == "status":
            status = await orchestrator.get_status(credential)
            print(json.dumps(status, indent=2, default=str))
            return 0

        if args.command == "dashboard":
            rendered = await orchestrator.get_dashboard(credential, args.format)
            if not isinstance(rendered, str):
                rendered = json.dumps(rendered, indent=2, default=str)
            if args.output:
                Path(args.output).write_text(rendered, encoding="utf-8")
                logger.info(f"Dashboard written to {args.output}")
            else:
                print(rendered)
            return 0

        result = await orchestrator.test_monitoring(credential)
        print(json.dumps(result, indent=2, default=str))
        return 0 if result["passed"] else 1
    finally:
        await orchestrator.close()


async def main_async(args: argparse.Namespace) -> int:
    """Async main function."""
    config = MonitoringConfig.from_env()
    credential = os.environ.get("GITHUB_TOKEN") or None

    if args.command != "run":
        return await _run_once(args, config, credential)

    service = MonitorService(
        config,
        credential,
        dashboard_enabled=not args.no_dashboard,
        dashboard_host=args.host,
        dashboard_port=args.port,
    )
    try:
        await service.run()
        return 0
    except StartupFailure as e:
        logger.error(f"Monitoring failed to start: {e}")
        return 1


def main(argv: Optional[list] = None) -> int:
    """Main entry point."""
    # Load .env file
    load_env_file()

    args = parse_args(argv)

    # Override log level if specified
    if args.log_level:
        logging.getLogger().setLevel(getattr(logging, args.log_level))

    try:
        return asyncio.run(main_async(args))
    except KeyboardInterrupt:
        return 0


if __name__ == "__main__":
    sys.exit(main())
