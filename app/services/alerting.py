"""Webhook alerts for recommendation exits and failed refresh cycles.

Posts to a Discord/Slack-compatible incoming webhook. Without a webhook URL
every alert is written to the log instead, at a matching level.
"""

import logging
from enum import Enum

import httpx

from app.config import settings

logger = logging.getLogger(__name__)

WEBHOOK_TIMEOUT_SECONDS = 10.0


class AlertLevel(str, Enum):
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


_PREFIX = {
    AlertLevel.INFO: "\U0001f4c8",
    AlertLevel.WARNING: "\U0001f6d1",
    AlertLevel.ERROR: "❌",
    AlertLevel.CRITICAL: "\U0001f6a8",
}

_LOG_LEVEL = {
    AlertLevel.INFO: logging.INFO,
    AlertLevel.WARNING: logging.WARNING,
    AlertLevel.ERROR: logging.ERROR,
    AlertLevel.CRITICAL: logging.CRITICAL,
}

_EXIT_TITLES = {
    "stop_loss": "Stop-loss hit",
    "target": "Target achieved",
}


def format_alert(title: str, message: str, level: AlertLevel) -> str:
    """Webhook body text: bold prefixed title, then the message."""
    return f"**{_PREFIX[level]} {title}**\n{message}"


class AlertService:
    """Recommendation lifecycle alerts.

    Args:
        webhook_url: Overrides ALERT_WEBHOOK_URL.
        transport: httpx transport, for tests.
    """

    def __init__(
        self,
        webhook_url: str | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._webhook_url = webhook_url or settings.alert_webhook_url
        self._transport = transport

    @property
    def enabled(self) -> bool:
        return bool(self._webhook_url)

    async def send(self, title: str, message: str, level: AlertLevel = AlertLevel.INFO) -> bool:
        """Deliver one alert.

        Returns:
            True when the webhook accepted it. False when it was only logged
            (no webhook) or delivery failed.
        """
        if not self.enabled:
            logger.log(_LOG_LEVEL[level], "ALERT [%s] %s: %s", level.value, title, message)
            return False

        body = {"content": format_alert(title, message, level)}
        try:
            async with httpx.AsyncClient(
                timeout=WEBHOOK_TIMEOUT_SECONDS, transport=self._transport
            ) as client:
                resp = await client.post(self._webhook_url, json=body)
        except httpx.HTTPError as e:
            logger.error("Failed to deliver alert %r: %s", title, e)
            return False

        if resp.status_code not in (200, 204):
            logger.warning("Alert webhook answered %d: %s", resp.status_code, resp.text[:200])
            return False
        return True

    async def stock_exited(
        self,
        symbol: str,
        reason: str,
        price: float,
        realised_pct: float | None,
    ) -> bool:
        """A recommendation crossed its stop-loss or target."""
        returns = f"{realised_pct:+.2f}%" if realised_pct is not None else "n/a"
        level = AlertLevel.WARNING if reason == "stop_loss" else AlertLevel.INFO
        return await self.send(
            title=f"{_EXIT_TITLES.get(reason, 'Exit')}: {symbol}",
            message=f"Price: ₹{price:,.2f}\nRealised: {returns}",
            level=level,
        )

    async def refresh_failed(self, error: str) -> bool:
        """A whole refresh cycle failed (database down, NSE unreachable)."""
        return await self.send(
            title="Price refresh failed",
            message=error,
            level=AlertLevel.CRITICAL,
        )
