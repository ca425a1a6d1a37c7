"""Guardrails notifications: payloads, channels and the dispatcher."""

from changeguard.notifications.channels import (
    NotificationError,
    SlackChannel,
    WebhookChannel,
    format_slack_message,
)
from changeguard.notifications.dispatcher import NotificationDispatcher
from changeguard.notifications.models import (
    ChannelType,
    NotificationChannelConfig,
    NotificationEvent,
    NotificationPayload,
)

__all__ = [
    "ChannelType",
    "NotificationChannelConfig",
    "NotificationDispatcher",
    "NotificationError",
    "NotificationEvent",
    "NotificationPayload",
    "SlackChannel",
    "WebhookChannel",
    "format_slack_message",
]
