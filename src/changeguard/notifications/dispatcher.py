"""
Notification dispatcher.

Routes a payload to every enabled channel subscribed to its event. Delivery
is fire-and-forget: a failing channel becomes a warning on the result, and
``send`` itself never fails.
"""

from __future__ import annotations

import threading
from typing import Any

import structlog

from changeguard.collaborators import NotificationSender
from changeguard.core.results import OperationResult
from changeguard.notifications.channels import NotificationError, SlackChannel, WebhookChannel
from changeguard.notifications.models import (
    ChannelType,
    NotificationChannelConfig,
    NotificationPayload,
)

logger = structlog.get_logger()


class NotificationDispatcher:
    """Unified notifier that routes to multiple channels."""

    def __init__(
        self,
        channels: list[NotificationChannelConfig] | None = None,
        senders: dict[ChannelType, NotificationSender] | None = None,
        timeout: float = 10.0,
    ) -> None:
        self.timeout = timeout
        self._channels: list[NotificationChannelConfig] = []
        self._senders: dict[ChannelType, NotificationSender] = dict(senders or {})
        self._lock = threading.Lock()
        for channel in channels or []:
            self.configure_channel(channel)

    def configure_channel(self, config: NotificationChannelConfig) -> None:
        """Add a channel, replacing any existing one with the same type and endpoint."""
        with self._lock:
            self._channels = [
                c
                for c in self._channels
                if (c.type, c.endpoint) != (config.type, config.endpoint)
            ]
            self._channels.append(config)
        logger.info(
            "notification_channel_configured",
            channel_type=config.type.value,
            enabled=config.enabled,
        )

    def register_sender(self, channel_type: ChannelType | str, sender: NotificationSender) -> None:
        """Deliver channels of ``channel_type`` through an external sender."""
        self._senders[ChannelType(channel_type)] = sender

    def channels(self) -> list[NotificationChannelConfig]:
        with self._lock:
            return list(self._channels)

    def send(self, payload: NotificationPayload) -> OperationResult[dict[str, Any]]:
        """
        Deliver a payload to all subscribed channels.

        Args:
            payload: Notification to deliver

        Returns:
            Successful result whose data maps channel labels to a delivery
            status; failed channels are listed in ``warnings``
        """
        results: dict[str, Any] = {}
        warnings: list[str] = []

        for channel in self.channels():
            if not channel.enabled or not channel.subscribes_to(payload.event):
                continue

            label = f"{channel.type.value}:{channel.endpoint}"
            try:
                self._deliver(channel, payload)
                results[label] = "sent"
            except Exception as exc:
                logger.warning(
                    "collaborator_failure",
                    collaborator="notification",
                    channel_type=channel.type.value,
                    notification_event=payload.event.value,
                    error=str(exc),
                )
                results[label] = "failed"
                warnings.append(f"Failed to send notification via {channel.type.value}: {exc}")

        sent = sum(1 for status in results.values() if status == "sent")
        return OperationResult.ok(
            data=results,
            message=f"Notification sent to {sent} channel(s)",
            warnings=warnings,
        )

    def _deliver(self, channel: NotificationChannelConfig, payload: NotificationPayload) -> None:
        if channel.type in self._senders:
            self._senders[channel.type].send(channel, payload)
        elif channel.type == ChannelType.WEBHOOK:
            WebhookChannel(channel.endpoint, timeout=self.timeout).send(payload)
        elif channel.type == ChannelType.SLACK:
            SlackChannel(channel.endpoint, timeout=self.timeout).send(payload)
        else:
            raise NotificationError(f"No sender registered for channel type {channel.type.value}")
