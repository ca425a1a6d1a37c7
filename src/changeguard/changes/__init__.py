"""Pre-operation backups and change requests."""

from changeguard.changes.backups import BackupManager
from changeguard.changes.models import (
    CHANGE_REQUEST_TRANSITIONS,
    BackupType,
    ChangePriority,
    ChangeRequest,
    ChangeRequestStatus,
    ChangeType,
    PlannedAction,
    PreOperationBackup,
)
from changeguard.changes.requests import ChangeRequestManager

__all__ = [
    "BackupManager",
    "BackupType",
    "CHANGE_REQUEST_TRANSITIONS",
    "ChangePriority",
    "ChangeRequest",
    "ChangeRequestManager",
    "ChangeRequestStatus",
    "ChangeType",
    "PlannedAction",
    "PreOperationBackup",
]
