"""
Guardrails audit log.

Append-only, in-memory log of guardrails decisions with retention pruning,
filtered queries and summaries. Entries are optionally forwarded to a durable
``AuditSink``; sink errors are logged via structlog but never fail the write.
"""

from __future__ import annotations

import json
import threading
import uuid
from collections import Counter
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any, Iterable

import structlog

from changeguard.audit.models import (
    AuditLogEntry,
    AuditLogPage,
    AuditLogQuery,
    AuditLogSummary,
    AuditOutcome,
)
from changeguard.collaborators import AuditSink
from changeguard.core.clock import Clock, utcnow
from changeguard.core.errors import ValidationError

logger = structlog.get_logger()

DEFAULT_RETENTION_DAYS = 90
DEFAULT_PAGE_SIZE = 100


def _top(counter: Counter[str], n: int) -> list[tuple[str, int]]:
    # Ties keep first-seen order
    return counter.most_common(n)


class AuditLog:
    """In-memory audit log owned by one engine instance."""

    def __init__(
        self,
        retention_days: int = DEFAULT_RETENTION_DAYS,
        sink: AuditSink | None = None,
        clock: Clock | None = None,
    ) -> None:
        self.retention_days = retention_days
        self.sink = sink
        self._clock = clock or utcnow
        self._entries: list[AuditLogEntry] = []
        self._lock = threading.Lock()

    def record(
        self,
        *,
        actor_id: str,
        actor_name: str,
        action: str,
        service: str,
        resource_ids: Iterable[str],
        environment: str,
        region: str,
        outcome: AuditOutcome | str,
        error_message: str | None = None,
        block_reason: str | None = None,
        approval_request_id: str | None = None,
        dry_run: bool = False,
        duration_ms: int | None = None,
        request_params: dict[str, Any] | None = None,
        context: dict[str, Any] | None = None,
        session_id: str | None = None,
        account_id: str | None = None,
        timestamp: datetime | None = None,
    ) -> AuditLogEntry:
        """
        Append an entry and prune anything past retention.

        ``timestamp`` defaults to now; pass one to import events that happened
        earlier. Pruning scans every entry, so backdated imports are handled.
        """
        now = self._clock()
        entry = AuditLogEntry(
            id=str(uuid.uuid4()),
            timestamp=timestamp or now,
            actor_id=actor_id,
            actor_name=actor_name,
            action=action,
            service=service,
            resource_ids=list(resource_ids),
            environment=str(environment),
            region=region,
            outcome=AuditOutcome(outcome),
            error_message=error_message,
            block_reason=block_reason,
            approval_request_id=approval_request_id,
            dry_run=dry_run,
            duration_ms=duration_ms,
            request_params=dict(request_params) if request_params else None,
            context=dict(context or {}),
            session_id=session_id,
            account_id=account_id,
        )

        cutoff = now - timedelta(days=self.retention_days)
        with self._lock:
            self._entries.append(entry)
            before = len(self._entries)
            self._entries = [e for e in self._entries if e.timestamp >= cutoff]
            pruned = before - len(self._entries)

        if pruned:
            logger.debug("audit_entries_pruned", count=pruned, retention_days=self.retention_days)

        logger.info(
            "audit_entry_recorded",
            entry_id=entry.id,
            actor_id=actor_id,
            action=action,
            service=service,
            outcome=entry.outcome.value,
        )

        self._forward(entry)
        return entry

    def _forward(self, entry: AuditLogEntry) -> None:
        if self.sink is None:
            return
        try:
            self.sink.write(entry)
        except Exception:
            logger.warning(
                "collaborator_failure",
                collaborator="audit_sink",
                entry_id=entry.id,
                exc_info=True,
            )

    def query(self, query: AuditLogQuery | None = None) -> AuditLogPage:
        """
        Filter entries, newest first, one page at a time.

        Raises:
            ValidationError: If ``next_token`` is not one this log issued
        """
        query = query or AuditLogQuery()
        offset = 0
        if query.next_token is not None:
            try:
                offset = int(query.next_token)
            except ValueError:
                raise ValidationError(f"Invalid pagination token: {query.next_token!r}") from None
            if offset < 0:
                raise ValidationError(f"Invalid pagination token: {query.next_token!r}")

        with self._lock:
            matched = [e for e in self._entries if query.matches(e)]

        matched.sort(key=lambda e: e.timestamp, reverse=True)
        page_size = query.max_results or DEFAULT_PAGE_SIZE
        page = matched[offset : offset + page_size]
        end = offset + len(page)

        return AuditLogPage(
            entries=page,
            total_count=len(matched),
            next_token=str(end) if end < len(matched) else None,
        )

    def summarize(self, start: datetime, end: datetime, top_n: int = 10) -> AuditLogSummary:
        """Aggregate entries with ``start <= timestamp <= end``."""
        with self._lock:
            entries = [e for e in self._entries if start <= e.timestamp <= end]

        outcomes = Counter(e.outcome for e in entries)
        resources: Counter[str] = Counter()
        operations: Counter[str] = Counter()
        actors: Counter[str] = Counter()
        by_service: Counter[str] = Counter()
        by_action: Counter[str] = Counter()
        by_environment: Counter[str] = Counter()

        for entry in entries:
            by_service[entry.service] += 1
            by_action[entry.action] += 1
            by_environment[entry.environment] += 1
            actors[entry.actor_id] += 1
            operations[f"{entry.service}:{entry.action}"] += 1
            resources.update(entry.resource_ids)

        return AuditLogSummary(
            period_start=start,
            period_end=end,
            total_actions=len(entries),
            successful_actions=outcomes[AuditOutcome.SUCCESS],
            failed_actions=outcomes[AuditOutcome.FAILURE],
            blocked_actions=outcomes[AuditOutcome.BLOCKED],
            pending_approvals=outcomes[AuditOutcome.PENDING_APPROVAL],
            by_service=dict(by_service),
            by_action=dict(by_action),
            by_environment=dict(by_environment),
            by_actor=dict(actors),
            top_resources=_top(resources, top_n),
            top_operations=_top(operations, top_n),
            top_actors=_top(actors, top_n),
        )

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)


class JsonlAuditSink:
    """Append audit entries to a JSON-lines file."""

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)
        self._lock = threading.Lock()

    def write(self, entry: AuditLogEntry) -> None:
        line = json.dumps(entry.to_dict(), default=str)
        with self._lock:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with self.path.open("a", encoding="utf-8") as fh:
                fh.write(line + "\n")
