"""Notification events, payloads and channel configuration."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import StrEnum
from typing import Any


class NotificationEvent(StrEnum):
    APPROVAL_REQUESTED = "approval_requested"
    APPROVAL_GRANTED = "approval_granted"
    APPROVAL_DENIED = "approval_denied"
    APPROVAL_EXPIRED = "approval_expired"
    APPROVAL_CANCELLED = "approval_cancelled"
    ACTION_BLOCKED = "action_blocked"
    RATE_LIMIT_EXCEEDED = "rate_limit_exceeded"
    HIGH_RISK_ACTION = "high_risk_action"
    SAFETY_CHECK_FAILED = "safety_check_failed"


class ChannelType(StrEnum):
    EMAIL = "email"
    SLACK = "slack"
    TEAMS = "teams"
    SNS = "sns"
    WEBHOOK = "webhook"


@dataclass
class NotificationPayload:
    """A message about a guardrails event, delivered to every subscribed channel."""

    event: NotificationEvent
    timestamp: datetime
    title: str
    message: str
    severity: str
    data: dict[str, Any] = field(default_factory=dict)
    action_url: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "event": self.event.value,
            "timestamp": self.timestamp.isoformat(),
            "title": self.title,
            "message": self.message,
            "severity": self.severity,
            "data": self.data,
            "action_url": self.action_url,
        }


@dataclass
class NotificationChannelConfig:
    """
    A delivery channel.

    An empty ``events`` list subscribes the channel to every event.
    """

    type: ChannelType
    endpoint: str
    enabled: bool = True
    events: list[NotificationEvent] = field(default_factory=list)

    def __post_init__(self) -> None:
        self.type = ChannelType(self.type)
        self.events = [NotificationEvent(e) for e in self.events]

    def subscribes_to(self, event: NotificationEvent) -> bool:
        return not self.events or event in self.events

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.type.value,
            "endpoint": self.endpoint,
            "enabled": self.enabled,
            "events": [e.value for e in self.events],
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> NotificationChannelConfig:
        return cls(
            type=ChannelType(data["type"]),
            endpoint=data["endpoint"],
            enabled=bool(data.get("enabled", True)),
            events=[NotificationEvent(e) for e in data.get("events", [])],
        )
