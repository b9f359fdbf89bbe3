"""
Notification channels for alerts.

Routes alert and resolution notifications to the log (always) and to
optional email, Slack, webhook and Telegram targets. Every channel runs
concurrently under its own timeout; a failing channel is logged and
reported in the dispatch result, never raised.
"""
from __future__ import annotations

import asyncio
import logging
from email.mime.text import MIMEText
from typing import TYPE_CHECKING, Any, Dict, List, Optional

import aiohttp
import aiosmtplib

from .config import (
    EmailConfig,
    NotificationConfig,
    SlackConfig,
    TelegramConfig,
    WebhookConfig,
)
from .exceptions import NotificationDispatchFailure
from .models import AlertLevel

if TYPE_CHECKING:
    from .alerting import Alert

logger = logging.getLogger(__name__)

_LEVEL_MARKERS = {
    AlertLevel.CRITICAL: "🚨",
    AlertLevel.WARNING: "⚠️",
}

_SLACK_COLORS = {
    AlertLevel.CRITICAL: "#8B0000",
    AlertLevel.WARNING: "#FFA500",
}

_RESOLVED_COLOR = "#2EB886"


def format_title(alert: "Alert", resolved: bool = False) -> str:
    """One-line title used by every channel."""
    prefix = "RESOLVED" if resolved else alert.level.value.upper()
    return f"[{prefix}] {alert.component}/{alert.metric}"


def format_body(alert: "Alert", resolved: bool = False) -> str:
    lines = [alert.message, ""]
    lines.append(f"Component: {alert.component}")
    lines.append(f"Metric: {alert.metric}")
    lines.append(f"Level: {alert.level.value}")
    if alert.value is not None:
        lines.append(f"Value: {alert.value}")
    if alert.threshold is not None:
        lines.append(f"Threshold: {alert.threshold}")
    lines.append(f"Occurrences: {alert.occurrences}")
    lines.append(f"Created: {alert.created_at.isoformat()}")
    if resolved and alert.resolved_at:
        lines.append(f"Resolved: {alert.resolved_at.isoformat()}")
    return "\n".join(lines)


class AlertChannel:
    """Base class for alert channels."""

    name = "base"

    async def send(self, alert: "Alert", resolved: bool = False) -> bool:
        """
        Send a notification through this channel.

        Returns:
            True if sent successfully
        """
        try:
            await self._send_impl(alert, resolved)
            return True
        except NotificationDispatchFailure as e:
            logger.error(str(e))
            return False
        except Exception as e:
            logger.error(f"Failed to send alert via {self.name}: {e}")
            return False

    async def _send_impl(self, alert: "Alert", resolved: bool) -> None:
        raise NotImplementedError

    async def close(self) -> None:
        pass


class LogChannel(AlertChannel):
    """Log-based alert channel. Always enabled."""

    name = "log"

    async def _send_impl(self, alert: "Alert", resolved: bool) -> None:
        text = f"[ALERT {format_title(alert, resolved)}] {alert.message}"
        if resolved:
            logger.info(text)
        elif alert.level == AlertLevel.CRITICAL:
            logger.error(text)
        else:
            logger.warning(text)


class _HttpChannel(AlertChannel):
    """Channel posting JSON over a shared aiohttp session."""

    def __init__(
        self,
        session: Optional[aiohttp.ClientSession] = None,
        timeout: float = 10.0,
    ) -> None:
        self._session = session
        self._owns_session = session is None
        self._timeout = aiohttp.ClientTimeout(total=timeout)

    async def _post(
        self,
        url: str,
        payload: Dict[str, Any],
        headers: Optional[Dict[str, str]] = None,
    ) -> None:
        if self._session is None:
            self._session = aiohttp.ClientSession(timeout=self._timeout)
            self._owns_session = True

        async with self._session.post(url, json=payload, headers=headers) as response:
            if response.status >= 300:
                text = await response.text()
                raise NotificationDispatchFailure(
                    self.name,
                    f"HTTP {response.status} - {text[:200]}",
                    status_code=response.status,
                )

    async def close(self) -> None:
        """Close the client session."""
        if self._owns_session and self._session:
            await self._session.close()
            self._session = None


class SlackChannel(_HttpChannel):
    """Slack incoming-webhook channel."""

    name = "slack"

    def __init__(self, config: SlackConfig, **kwargs: Any) -> None:
        super().__init__(**kwargs)
        self._config = config

    def build_payload(self, alert: "Alert", resolved: bool) -> Dict[str, Any]:
        color = _RESOLVED_COLOR if resolved else _SLACK_COLORS.get(alert.level, "#808080")
        payload: Dict[str, Any] = {
            "username": self._config.username,
            "attachments": [
                {
                    "color": color,
                    "title": format_title(alert, resolved),
                    "text": alert.message,
                    "fields": [
                        {"title": "Level", "value": alert.level.value.upper(), "short": True},
                        {"title": "Occurrences", "value": str(alert.occurrences), "short": True},
                    ],
                    "ts": int(alert.last_triggered_at.timestamp()),
                }
            ],
        }
        if self._config.channel:
            payload["channel"] = self._config.channel
        return payload

    async def _send_impl(self, alert: "Alert", resolved: bool) -> None:
        await self._post(self._config.webhook_url, self.build_payload(alert, resolved))


class WebhookChannel(_HttpChannel):
    """Generic webhook receiving the alert as JSON."""

    name = "webhook"

    def __init__(self, config: WebhookConfig, **kwargs: Any) -> None:
        super().__init__(**kwargs)
        self._config = config

    async def _send_impl(self, alert: "Alert", resolved: bool) -> None:
        payload = {
            "event": "alert.resolved" if resolved else "alert.triggered",
            "alert": alert.to_dict(),
        }
        await self._post(self._config.url, payload, headers=dict(self._config.headers))


class TelegramChannel(_HttpChannel):
    """Telegram bot channel."""

    name = "telegram"

    def __init__(self, config: TelegramConfig, **kwargs: Any) -> None:
        super().__init__(**kwargs)
        self._config = config

    def format_message(self, alert: "Alert", resolved: bool) -> str:
        """Format alert message for Telegram."""
        marker = "✅" if resolved else _LEVEL_MARKERS.get(alert.level, "")
        header = f"{marker} *{format_title(alert, resolved)}*"
        return f"{header}\n\n{format_body(alert, resolved)}"

    async def _send_impl(self, alert: "Alert", resolved: bool) -> None:
        url = f"https://api.telegram.org/bot{self._config.bot_token}/sendMessage"
        payload = {
            "chat_id": self._config.chat_id,
            "text": self.format_message(alert, resolved),
            "parse_mode": "Markdown",
        }
        await self._post(url, payload)


class EmailChannel(AlertChannel):
    """SMTP email channel."""

    name = "email"

    def __init__(self, config: EmailConfig) -> None:
        self._config = config

    def build_message(self, alert: "Alert", resolved: bool) -> MIMEText:
        msg = MIMEText(format_body(alert, resolved), "plain")
        msg["From"] = self._config.from_address
        msg["To"] = ", ".join(self._config.to_addresses)
        msg["Subject"] = format_title(alert, resolved)
        return msg

    async def _send_impl(self, alert: "Alert", resolved: bool) -> None:
        if not self._config.to_addresses:
            raise NotificationDispatchFailure(self.name, "no recipients configured")

        try:
            await aiosmtplib.send(
                self.build_message(alert, resolved),
                hostname=self._config.smtp_host,
                port=self._config.smtp_port,
                username=self._config.username,
                password=self._config.password,
                start_tls=self._config.use_tls,
            )
        except aiosmtplib.SMTPException as e:
            raise NotificationDispatchFailure(self.name, str(e)) from e


class NotificationDispatcher:
    """
    Dispatches notifications to every configured channel.

    Usage:
        dispatcher = NotificationDispatcher(NotificationConfig(
            slack=SlackConfig(webhook_url="https://hooks.slack.com/..."),
        ))
        results = await dispatcher.dispatch(alert)
        # {"log": True, "slack": True}
    """

    def __init__(self, config: Optional[NotificationConfig] = None) -> None:
        self._config = NotificationConfig()
        self._channels: Dict[str, AlertChannel] = {"log": LogChannel()}
        self._failures: Dict[str, int] = {}
        self._retired: List[AlertChannel] = []
        if config is not None:
            self.configure(config)

    @property
    def config(self) -> NotificationConfig:
        return self._config

    @property
    def channel_names(self) -> List[str]:
        return list(self._channels)

    @property
    def failure_counts(self) -> Dict[str, int]:
        return dict(self._failures)

    def configure(self, config: NotificationConfig) -> None:
        """
        Rebuild the outbound channels from config.

        Sessions held by replaced channels are closed on the next close().
        """
        self._retired.extend(c for name, c in self._channels.items() if name != "log")
        self._config = config
        self._channels = {"log": LogChannel()}

        timeout = config.dispatch_timeout_seconds
        if config.email and config.email.enabled:
            self._channels["email"] = EmailChannel(config.email)
        if config.slack and config.slack.enabled:
            self._channels["slack"] = SlackChannel(config.slack, timeout=timeout)
        if config.webhook and config.webhook.enabled:
            self._channels["webhook"] = WebhookChannel(config.webhook, timeout=timeout)
        if config.telegram and config.telegram.enabled:
            self._channels["telegram"] = TelegramChannel(config.telegram, timeout=timeout)

        outbound = [name for name in self._channels if name != "log"]
        logger.info(f"Alert channels configured: {', '.join(outbound) or 'log only'}")

    def add_channel(self, name: str, channel: AlertChannel) -> None:
        """Add an alert channel."""
        self._channels[name] = channel
        logger.info(f"Added alert channel: {name}")

    def remove_channel(self, name: str) -> None:
        """Remove an alert channel."""
        if name in self._channels and name != "log":
            del self._channels[name]
            logger.info(f"Removed alert channel: {name}")

    async def dispatch(self, alert: "Alert", resolved: bool = False) -> Dict[str, bool]:
        """
        Send to all channels concurrently.

        Returns:
            Dict mapping channel names to send results
        """
        channels = dict(self._channels)
        if resolved and not self._config.notify_on_resolve:
            channels = {"log": channels["log"]}

        names = list(channels)
        results = await asyncio.gather(
            *(self._send_with_timeout(name, channels[name], alert, resolved) for name in names)
        )
        outcome = dict(zip(names, results))

        failed = [name for name, ok in outcome.items() if not ok]
        for name in failed:
            self._failures[name] = self._failures.get(name, 0) + 1
        if failed:
            logger.warning(f"Alert dispatch failed for: {', '.join(failed)}")
        return outcome

    async def _send_with_timeout(
        self,
        name: str,
        channel: AlertChannel,
        alert: "Alert",
        resolved: bool,
    ) -> bool:
        timeout = self._config.dispatch_timeout_seconds
        try:
            return await asyncio.wait_for(channel.send(alert, resolved), timeout=timeout)
        except asyncio.TimeoutError:
            logger.error(f"{name} notification timed out after {timeout}s")
            return False

    async def close(self) -> None:
        """Close sessions held by current and replaced channels."""
        channels = list(self._channels.values()) + self._retired
        self._retired = []
        for channel in channels:
            try:
                await channel.close()
            except Exception as e:
                logger.warning(f"Error closing {channel.name} channel: {e}")
