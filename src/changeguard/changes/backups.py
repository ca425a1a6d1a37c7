"""
Pre-operation backups.

Takes a recovery artifact before a destructive operation through the
``BackupArtifactCreator`` collaborator. Without a creator, a non-restorable
configuration record is kept so the operation is still traceable.
"""

from __future__ import annotations

import threading
import uuid
from datetime import timedelta

import structlog

from changeguard.changes.models import BackupType, PreOperationBackup
from changeguard.collaborators import BackupArtifactCreator
from changeguard.core.clock import Clock, utcnow
from changeguard.core.errors import ErrorCode
from changeguard.core.results import OperationResult

logger = structlog.get_logger()

BACKUP_RETENTION = timedelta(days=7)


class BackupManager:
    """Creates and lists pre-operation backups."""

    def __init__(
        self,
        creator: BackupArtifactCreator | None = None,
        clock: Clock | None = None,
    ) -> None:
        self.creator = creator
        self._clock = clock or utcnow
        self._backups: list[PreOperationBackup] = []
        self._lock = threading.Lock()

    def create(
        self,
        resource_id: str,
        resource_type: str,
        operation: str,
    ) -> OperationResult[PreOperationBackup]:
        """
        Back up a resource ahead of ``operation``.

        Args:
            resource_id: Resource about to be changed
            resource_type: Resource type, passed through to the creator
            operation: Operation that triggered the backup (e.g. "terminate")

        Returns:
            Result with the backup record, or ``collaborator_failure``
        """
        now = self._clock()

        if self.creator is None:
            backup_type = BackupType.CONFIGURATION
            reference = f"config-{resource_id}-{int(now.timestamp() * 1000)}"
            can_restore = False
            instructions = "Manual restoration required based on stored configuration"
        else:
            try:
                artifact = self.creator(resource_id, resource_type, operation)
            except Exception as exc:
                logger.warning(
                    "collaborator_failure",
                    collaborator="backup_creator",
                    resource_id=resource_id,
                    error=str(exc),
                )
                return OperationResult.fail(
                    ErrorCode.COLLABORATOR_FAILURE,
                    f"Failed to create pre-operation backup: {exc}",
                )
            backup_type = BackupType(artifact.backup_type)
            reference = artifact.reference
            can_restore = artifact.can_restore
            instructions = artifact.restore_instructions

        backup = PreOperationBackup(
            id=str(uuid.uuid4()),
            resource_id=resource_id,
            resource_type=resource_type,
            backup_type=backup_type,
            backup_reference=reference,
            created_at=now,
            expires_at=now + BACKUP_RETENTION,
            triggering_operation=operation,
            can_restore=can_restore,
            restore_instructions=instructions,
        )
        with self._lock:
            self._backups.append(backup)

        logger.info(
            "pre_operation_backup_created",
            backup_id=backup.id,
            resource_id=resource_id,
            backup_type=backup_type.value,
            operation=operation,
        )
        return OperationResult.ok(
            data=backup,
            message=f"Pre-operation backup created: {reference}",
        )

    def list(self, resource_id: str | None = None) -> OperationResult[list[PreOperationBackup]]:
        with self._lock:
            backups = list(self._backups)
        if resource_id is not None:
            backups = [b for b in backups if b.resource_id == resource_id]
        backups.sort(key=lambda b: b.created_at, reverse=True)
        return OperationResult.ok(data=backups, message=f"Found {len(backups)} backup(s)")
