"""
HTTP notification channels.

Posts guardrails notifications to generic webhooks and Slack incoming
webhooks.
"""

from __future__ import annotations

from typing import Any

import httpx
import structlog

from changeguard.notifications.models import NotificationPayload

logger = structlog.get_logger()

SEVERITY_COLORS = {
    "low": "#36a64f",  # Green
    "medium": "#ffcc00",  # Yellow
    "high": "#ff9900",  # Orange
    "critical": "#ff0000",  # Red
}


class NotificationError(Exception):
    """Raised when delivery to a channel fails."""


class WebhookChannel:
    """POST the payload as JSON to an arbitrary endpoint."""

    def __init__(self, url: str, timeout: float = 10.0) -> None:
        self.url = url
        self.timeout = timeout

    def send(self, payload: NotificationPayload) -> dict[str, Any]:
        """
        Deliver a payload.

        Raises:
            NotificationError: If the request fails or returns an error status
        """
        try:
            with httpx.Client(timeout=self.timeout) as client:
                response = client.post(self.url, json=payload.to_dict())
                response.raise_for_status()
        except httpx.HTTPError as exc:
            logger.error("webhook_notification_failed", url=self.url, error=str(exc))
            raise NotificationError(f"Failed to send webhook notification: {exc}") from exc

        logger.info("webhook_notification_sent", notification_event=payload.event.value)
        return {"status": "sent", "channel": "webhook"}


class SlackChannel:
    """Send notifications to Slack via incoming webhook."""

    def __init__(self, webhook_url: str, timeout: float = 10.0) -> None:
        self.webhook_url = webhook_url
        self.timeout = timeout

    def send(self, payload: NotificationPayload) -> dict[str, Any]:
        """
        Deliver a payload as a Slack message.

        Raises:
            NotificationError: If sending fails
        """
        try:
            with httpx.Client(timeout=self.timeout) as client:
                response = client.post(self.webhook_url, json=format_slack_message(payload))
                response.raise_for_status()
        except httpx.HTTPError as exc:
            logger.error("slack_notification_failed", error=str(exc))
            raise NotificationError(f"Failed to send Slack notification: {exc}") from exc

        logger.info("slack_notification_sent", notification_event=payload.event.value)
        return {"status": "sent", "channel": "slack"}


def format_slack_message(payload: NotificationPayload) -> dict[str, Any]:
    """Format a notification as Slack blocks."""
    blocks: list[dict[str, Any]] = [
        {
            "type": "header",
            "text": {"type": "plain_text", "text": payload.title},
        },
        {
            "type": "section",
            "text": {"type": "mrkdwn", "text": payload.message},
        },
        {
            "type": "context",
            "elements": [
                {
                    "type": "mrkdwn",
                    "text": (
                        f"*Event:* {payload.event.value} | "
                        f"*At:* {payload.timestamp.strftime('%Y-%m-%d %H:%M:%S UTC')}"
                    ),
                },
            ],
        },
    ]

    if payload.action_url:
        blocks.append(
            {
                "type": "actions",
                "elements": [
                    {
                        "type": "button",
                        "text": {"type": "plain_text", "text": "View Request"},
                        "url": payload.action_url,
                        "action_id": "view_request",
                    },
                ],
            }
        )

    return {
        "text": payload.title,  # Fallback text
        "blocks": blocks,
        "attachments": [
            {
                "color": SEVERITY_COLORS.get(payload.severity, "#999999"),
                "text": f"Severity: {payload.severity.upper()}",
            }
        ],
    }
