"""
Change requests.

Tracks planned changes through review and execution:

    draft -> pending_review -> approved -> in_progress -> completed | failed

Drafts may go straight to in_progress (standard changes), reviews may be sent
back to draft, and anything not yet finished may be cancelled. Completed,
failed and cancelled requests are terminal.
"""

from __future__ import annotations

import threading
import uuid
from dataclasses import replace
from datetime import datetime
from typing import Iterable

import structlog

from changeguard.changes.models import (
    CHANGE_REQUEST_TRANSITIONS,
    ChangePriority,
    ChangeRequest,
    ChangeRequestStatus,
    ChangeType,
    PlannedAction,
)
from changeguard.core.clock import Clock, utcnow
from changeguard.core.errors import ErrorCode
from changeguard.core.results import OperationResult
from changeguard.guardrails.models import ImpactAssessment

logger = structlog.get_logger()


def _copy(request: ChangeRequest) -> ChangeRequest:
    return replace(request, planned_actions=list(request.planned_actions))


class ChangeRequestManager:
    """In-memory store of change requests with status rules."""

    def __init__(self, clock: Clock | None = None) -> None:
        self._clock = clock or utcnow
        self._requests: dict[str, ChangeRequest] = {}
        self._lock = threading.Lock()

    def create(
        self,
        title: str,
        description: str,
        requested_by: str,
        planned_actions: Iterable[PlannedAction] = (),
        change_type: ChangeType | str = ChangeType.NORMAL,
        priority: ChangePriority | str = ChangePriority.MEDIUM,
        impact_assessment: ImpactAssessment | None = None,
        assigned_to: str | None = None,
        rollback_plan: str | None = None,
        test_plan: str | None = None,
        scheduled_start: datetime | None = None,
        scheduled_end: datetime | None = None,
        approval_request_id: str | None = None,
        notes: str | None = None,
    ) -> OperationResult[ChangeRequest]:
        """Create a change request in ``draft``."""
        if scheduled_start and scheduled_end and scheduled_end < scheduled_start:
            return OperationResult.fail(
                ErrorCode.INVALID_REQUEST, "Scheduled end must not precede scheduled start"
            )

        now = self._clock()
        request = ChangeRequest(
            id=str(uuid.uuid4()),
            title=title,
            description=description,
            change_type=ChangeType(change_type),
            priority=ChangePriority(priority),
            requested_by=requested_by,
            status=ChangeRequestStatus.DRAFT,
            planned_actions=sorted(planned_actions, key=lambda a: a.order),
            created_at=now,
            updated_at=now,
            impact_assessment=impact_assessment,
            assigned_to=assigned_to,
            rollback_plan=rollback_plan,
            test_plan=test_plan,
            scheduled_start=scheduled_start,
            scheduled_end=scheduled_end,
            approval_request_id=approval_request_id,
            notes=notes,
        )
        with self._lock:
            self._requests[request.id] = request

        logger.info(
            "change_request_created",
            change_request_id=request.id,
            change_type=request.change_type.value,
            requested_by=requested_by,
        )
        return OperationResult.ok(
            data=_copy(request), message=f"Change request created: {request.id}"
        )

    def get(self, request_id: str) -> OperationResult[ChangeRequest]:
        with self._lock:
            request = self._requests.get(request_id)
            if request is None:
                return OperationResult.fail(ErrorCode.NOT_FOUND, "Change request not found")
            return OperationResult.ok(data=_copy(request))

    def update_status(
        self,
        request_id: str,
        status: ChangeRequestStatus | str,
        notes: str | None = None,
    ) -> OperationResult[ChangeRequest]:
        """
        Move a request to ``status``.

        Notes are appended on a new line. Entering ``in_progress`` stamps
        ``actual_start`` once; ``completed`` and ``failed`` stamp ``actual_end``.
        """
        status = ChangeRequestStatus(status)
        with self._lock:
            request = self._requests.get(request_id)
            if request is None:
                return OperationResult.fail(ErrorCode.NOT_FOUND, "Change request not found")

            allowed = CHANGE_REQUEST_TRANSITIONS.get(request.status, frozenset())
            if status not in allowed:
                return OperationResult.fail(
                    ErrorCode.INVALID_STATUS,
                    f"Cannot move change request from {request.status} to {status}",
                )

            now = self._clock()
            previous = request.status
            request.status = status
            request.updated_at = now
            if notes:
                request.notes = f"{request.notes}\n{notes}" if request.notes else notes
            if status == ChangeRequestStatus.IN_PROGRESS and request.actual_start is None:
                request.actual_start = now
            if status in (ChangeRequestStatus.COMPLETED, ChangeRequestStatus.FAILED):
                request.actual_end = now
            snapshot = _copy(request)

        logger.info(
            "change_request_status_updated",
            change_request_id=request_id,
            from_status=previous.value,
            to_status=status.value,
        )
        return OperationResult.ok(
            data=snapshot, message=f"Change request status updated to {status}"
        )

    def list(
        self,
        status: ChangeRequestStatus | str | None = None,
        max_results: int | None = None,
    ) -> OperationResult[list[ChangeRequest]]:
        with self._lock:
            requests = [_copy(r) for r in self._requests.values()]

        if status is not None:
            wanted = ChangeRequestStatus(status)
            requests = [r for r in requests if r.status == wanted]
        requests.sort(key=lambda r: r.created_at, reverse=True)
        if max_results is not None:
            requests = requests[:max_results]

        return OperationResult.ok(
            data=requests, message=f"Found {len(requests)} change request(s)"
        )
