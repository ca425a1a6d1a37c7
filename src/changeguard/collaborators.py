"""
External collaborator contracts.

The engine never talks to a cloud SDK, mail server or database directly.
It calls these narrow protocols instead; real implementations live with the
caller. All of them are treated as reliable-but-fallible: lookups that fail
degrade to empty results, notification failures become warnings.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Protocol

if TYPE_CHECKING:
    from changeguard.audit.models import AuditLogEntry
    from changeguard.guardrails.models import ResourceDependency
    from changeguard.notifications.models import NotificationChannelConfig, NotificationPayload


@dataclass(frozen=True)
class BackupArtifact:
    """Reference to a point-in-time recovery artifact created by a collaborator."""

    reference: str
    backup_type: str = "snapshot"  # snapshot | export | ami | configuration
    can_restore: bool = True
    restore_instructions: str | None = None


class ResourceTagLookup(Protocol):
    def __call__(self, resource_id: str, resource_type: str, region: str) -> dict[str, str]: ...


class DependencyLookup(Protocol):
    def __call__(
        self, resource_id: str, resource_type: str, region: str
    ) -> list[ResourceDependency]: ...


class BackupArtifactCreator(Protocol):
    def __call__(
        self, resource_id: str, resource_type: str, triggering_operation: str
    ) -> BackupArtifact: ...


class NotificationSender(Protocol):
    """Delivers a payload to one configured channel (email, teams, sns, ...)."""

    def send(self, channel: NotificationChannelConfig, payload: NotificationPayload) -> None: ...


class AuditSink(Protocol):
    """Durable destination for audit entries."""

    def write(self, entry: AuditLogEntry) -> None: ...


def no_tags(resource_id: str, resource_type: str, region: str) -> dict[str, str]:
    return {}


def no_dependencies(resource_id: str, resource_type: str, region: str) -> list[ResourceDependency]:
    return []
