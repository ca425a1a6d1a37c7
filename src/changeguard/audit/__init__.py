"""Guardrails audit log."""

from changeguard.audit.log import AuditLog, JsonlAuditSink
from changeguard.audit.models import (
    AuditLogEntry,
    AuditLogPage,
    AuditLogQuery,
    AuditLogSummary,
    AuditOutcome,
)

__all__ = [
    "AuditLog",
    "AuditLogEntry",
    "AuditLogPage",
    "AuditLogQuery",
    "AuditLogSummary",
    "AuditOutcome",
    "JsonlAuditSink",
]
