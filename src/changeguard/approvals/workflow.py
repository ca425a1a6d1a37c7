"""
Approval workflow.

Creates approval requests for risky operations and collects approver
responses until a request is approved, rejected, expired or cancelled.

Concurrency: each request has its own lock guarding the read-modify-write of
``responses`` and ``status``, so two concurrent approvals can never both see
"one more approval needed" and both flip the request. Notifications are sent
after the lock is released.

Expiry is lazy. Every accessor goes through the same expiry check, so a
request reads as ``expired`` consistently once ``now >= expires_at``. The
boundary is inclusive: a request created with a zero timeout expires on its
first read, even when the clock has not moved, and one with a 30 minute
timeout is already expired at exactly 30 minutes.
"""

from __future__ import annotations

import threading
import uuid
from dataclasses import replace
from datetime import datetime, timedelta

import structlog

from changeguard.approvals.models import (
    ApprovalDecision,
    ApprovalRequest,
    ApprovalResponse,
    ApprovalStatus,
)
from changeguard.core.clock import Clock, utcnow
from changeguard.core.errors import ErrorCode
from changeguard.core.results import OperationResult
from changeguard.guardrails.classification import ClassificationTable
from changeguard.guardrails.dryrun import DryRunner
from changeguard.guardrails.environments import EnvironmentRegistry
from changeguard.guardrails.impact import ImpactAssessor
from changeguard.guardrails.models import OperationContext
from changeguard.notifications.dispatcher import NotificationDispatcher
from changeguard.notifications.models import NotificationEvent, NotificationPayload

logger = structlog.get_logger()

DEFAULT_TIMEOUT_MINUTES = 30


def _snapshot(request: ApprovalRequest) -> ApprovalRequest:
    # Callers get a copy; the stored request is only mutated under its lock
    return replace(
        request,
        resource_ids=list(request.resource_ids),
        approvers=list(request.approvers),
        responses=list(request.responses),
    )


class ApprovalWorkflow:
    """Stores approval requests and drives their status machine."""

    def __init__(
        self,
        environments: EnvironmentRegistry,
        classifications: ClassificationTable,
        impact: ImpactAssessor,
        dry_runner: DryRunner,
        dispatcher: NotificationDispatcher | None = None,
        default_timeout_minutes: int = DEFAULT_TIMEOUT_MINUTES,
        clock: Clock | None = None,
    ) -> None:
        self.environments = environments
        self.classifications = classifications
        self.impact = impact
        self.dry_runner = dry_runner
        self.dispatcher = dispatcher
        self.default_timeout_minutes = default_timeout_minutes
        self._clock = clock or utcnow
        self._requests: dict[str, ApprovalRequest] = {}
        self._locks: dict[str, threading.Lock] = {}
        self._registry_lock = threading.Lock()

    # -- Lifecycle --

    def create(
        self,
        context: OperationContext,
        reason: str | None = None,
        timeout_minutes: int | None = None,
    ) -> OperationResult[ApprovalRequest]:
        """
        Open an approval request for an operation.

        The dry-run preview and impact assessment are captured now and never
        re-evaluated, so approvers see exactly what was true when asked.

        Args:
            context: Operation needing approval
            reason: Requester's justification
            timeout_minutes: Minutes until the request expires (default from config)

        Returns:
            Result with the new pending request, or ``no_approvers_configured``
        """
        timeout = self.default_timeout_minutes if timeout_minutes is None else timeout_minutes
        if timeout < 0:
            return OperationResult.fail(
                ErrorCode.INVALID_REQUEST, "Approval timeout cannot be negative"
            )

        environment = self.environments.resolve_environment(context)
        approvers = self.environments.approvers_for(environment)
        if not approvers:
            logger.warning(
                "approval_request_rejected",
                reason="no_approvers_configured",
                environment=environment.value,
            )
            return OperationResult.fail(
                ErrorCode.NO_APPROVERS_CONFIGURED,
                "No approvers configured for this environment",
            )

        classification = self.classifications.classify(context.action, context.service)
        impact = self.impact.assess(context, environment)
        dry_run = self.dry_runner.perform(context)

        protection = self.environments.get(environment)
        required = max(1, (protection.min_approvals if protection else None) or 1)

        now = self._clock()
        request = ApprovalRequest(
            id=str(uuid.uuid4()),
            requester_id=context.actor_id,
            requester_name=context.actor_name,
            action=context.action,
            service=context.service,
            resource_ids=list(context.resource_ids),
            resource_details=dict(context.request_params) if context.request_params else None,
            environment=environment,
            approvers=list(approvers),
            required_approvals=required,
            created_at=now,
            updated_at=now,
            expires_at=now + timedelta(minutes=timeout),
            timeout_minutes=timeout,
            reason=reason,
            impact_assessment=impact,
            dry_run_result=dry_run,
        )

        with self._registry_lock:
            self._requests[request.id] = request
            self._locks[request.id] = threading.Lock()
            snapshot = _snapshot(request)

        logger.info(
            "approval_request_created",
            request_id=request.id,
            requester_id=request.requester_id,
            action=request.action,
            service=request.service,
            environment=environment.value,
            required_approvals=required,
        )

        warnings = self._notify(
            NotificationEvent.APPROVAL_REQUESTED,
            title=f"Approval Required: {context.action} on {context.service}",
            message=(
                f"{context.actor_name} is requesting to {context.action} "
                f"{context.resource_count} {context.service} resource(s) in {environment}. "
                f"Reason: {reason or 'Not specified'}"
            ),
            severity=classification.severity.value,
            data={"request_id": request.id, "resource_ids": list(context.resource_ids)},
        )

        return OperationResult.ok(
            data=snapshot,
            message=(
                f"Approval request created. Waiting for {required} approval(s). "
                f"Expires in {timeout} minutes."
            ),
            warnings=warnings,
        )

    def get(self, request_id: str) -> OperationResult[ApprovalRequest]:
        request = self._lookup(request_id)
        if request is None:
            return OperationResult.fail(ErrorCode.NOT_FOUND, "Approval request not found")

        with self._lock_for(request_id):
            expired = self._expire_if_due(request, self._clock())
            snapshot = _snapshot(request)

        warnings = self._notify_expired(snapshot) if expired else []
        return OperationResult.ok(data=snapshot, warnings=warnings)

    def list(
        self,
        status: ApprovalStatus | str | None = None,
        requester_id: str | None = None,
        max_results: int | None = None,
    ) -> OperationResult[list[ApprovalRequest]]:
        """List requests newest first, expiring timed-out ones on the way."""
        with self._registry_lock:
            stored = list(self._requests.values())

        now = self._clock()
        snapshots: list[ApprovalRequest] = []
        newly_expired: list[ApprovalRequest] = []
        for request in stored:
            with self._lock_for(request.id):
                expired = self._expire_if_due(request, now)
                snapshot = _snapshot(request)
            snapshots.append(snapshot)
            if expired:
                newly_expired.append(snapshot)

        warnings: list[str] = []
        for snapshot in newly_expired:
            warnings.extend(self._notify_expired(snapshot))

        if status is not None:
            wanted = ApprovalStatus(status)
            snapshots = [r for r in snapshots if r.status == wanted]
        if requester_id is not None:
            snapshots = [r for r in snapshots if r.requester_id == requester_id]

        snapshots.sort(key=lambda r: r.created_at, reverse=True)
        if max_results is not None:
            snapshots = snapshots[:max_results]

        return OperationResult.ok(
            data=snapshots,
            message=f"Found {len(snapshots)} approval request(s)",
            warnings=warnings,
        )

    def submit(
        self,
        request_id: str,
        approver_id: str,
        approver_name: str,
        decision: ApprovalDecision | str,
        reason: str | None = None,
    ) -> OperationResult[ApprovalRequest]:
        """
        Record an approver's decision.

        Errors are checked in order: not_found, expired, invalid_status,
        unauthorized, already_responded. A rejection resolves the request
        immediately; otherwise it is approved once approvals reach
        ``required_approvals``.
        """
        decision = ApprovalDecision(decision)
        request = self._lookup(request_id)
        if request is None:
            return OperationResult.fail(ErrorCode.NOT_FOUND, "Approval request not found")

        transition: ApprovalStatus | None = None
        with self._lock_for(request_id):
            now = self._clock()
            expired = self._expire_if_due(request, now)

            if request.status == ApprovalStatus.EXPIRED:
                failure = OperationResult.fail(ErrorCode.EXPIRED, "Approval request has expired")
            elif request.status != ApprovalStatus.PENDING:
                failure = OperationResult.fail(
                    ErrorCode.INVALID_STATUS,
                    f"Approval request is already {request.status}",
                )
            elif not request.is_approver(approver_id):
                failure = OperationResult.fail(
                    ErrorCode.UNAUTHORIZED,
                    "You are not authorized to approve this request",
                )
            elif request.has_responded(approver_id):
                failure = OperationResult.fail(
                    ErrorCode.ALREADY_RESPONDED,
                    "You have already responded to this request",
                )
            else:
                failure = None
                request.responses.append(
                    ApprovalResponse(
                        approver_id=approver_id,
                        approver_name=approver_name,
                        decision=decision,
                        reason=reason,
                        timestamp=now,
                    )
                )
                request.updated_at = now
                if decision == ApprovalDecision.REJECTED:
                    request.status = transition = ApprovalStatus.REJECTED
                elif request.approval_count >= request.required_approvals:
                    request.status = transition = ApprovalStatus.APPROVED

            snapshot = _snapshot(request)

        if expired:
            self._notify_expired(snapshot)
        if failure is not None:
            logger.info(
                "approval_response_rejected",
                request_id=request_id,
                approver_id=approver_id,
                error=failure.error.value if failure.error else None,
            )
            return failure

        logger.info(
            "approval_response_recorded",
            request_id=request_id,
            approver_id=approver_id,
            decision=decision.value,
            status=snapshot.status.value,
            approvals=snapshot.approval_count,
            required_approvals=snapshot.required_approvals,
        )

        warnings: list[str] = []
        if transition == ApprovalStatus.REJECTED:
            warnings = self._notify(
                NotificationEvent.APPROVAL_DENIED,
                title=f"Approval Denied: {snapshot.action} on {snapshot.service}",
                message=(
                    f"{approver_name} rejected the request. Reason: {reason or 'Not specified'}"
                ),
                severity="high",
                data={"request_id": snapshot.id},
            )
        elif transition == ApprovalStatus.APPROVED:
            warnings = self._notify(
                NotificationEvent.APPROVAL_GRANTED,
                title=f"Approval Granted: {snapshot.action} on {snapshot.service}",
                message=f"The request has been approved by {snapshot.approval_count} approver(s).",
                severity="medium",
                data={"request_id": snapshot.id},
            )

        return OperationResult.ok(
            data=snapshot,
            message=f"Response recorded. Status: {snapshot.status}",
            warnings=warnings,
        )

    def cancel(self, request_id: str, reason: str | None = None) -> OperationResult[ApprovalRequest]:
        """Cancel a pending request. Any other status is ``invalid_status``."""
        request = self._lookup(request_id)
        if request is None:
            return OperationResult.fail(ErrorCode.NOT_FOUND, "Approval request not found")

        with self._lock_for(request_id):
            now = self._clock()
            expired = self._expire_if_due(request, now)
            cancelled = request.status == ApprovalStatus.PENDING
            if cancelled:
                request.status = ApprovalStatus.CANCELLED
                request.cancel_reason = reason
                request.updated_at = now
            snapshot = _snapshot(request)

        if expired:
            self._notify_expired(snapshot)
        if not cancelled:
            return OperationResult.fail(
                ErrorCode.INVALID_STATUS,
                f"Cannot cancel request with status: {snapshot.status}",
            )

        logger.info("approval_request_cancelled", request_id=request_id, reason=reason)
        warnings = self._notify(
            NotificationEvent.APPROVAL_CANCELLED,
            title=f"Approval Cancelled: {snapshot.action} on {snapshot.service}",
            message=f"The request was cancelled. Reason: {reason or 'Not specified'}",
            severity="low",
            data={"request_id": snapshot.id},
        )
        return OperationResult.ok(
            data=snapshot,
            message=f"Approval request cancelled{f': {reason}' if reason else ''}",
            warnings=warnings,
        )

    def materialize(self, request_id: str) -> ApprovalStatus | None:
        """Effective status of a request after applying lazy expiry."""
        request = self._lookup(request_id)
        if request is None:
            return None
        with self._lock_for(request_id):
            expired = self._expire_if_due(request, self._clock())
            snapshot = _snapshot(request)
        if expired:
            self._notify_expired(snapshot)
        return snapshot.status

    # -- Internals --

    def _lookup(self, request_id: str) -> ApprovalRequest | None:
        with self._registry_lock:
            return self._requests.get(request_id)

    def _lock_for(self, request_id: str) -> threading.Lock:
        with self._registry_lock:
            return self._locks[request_id]

    @staticmethod
    def _expire_if_due(request: ApprovalRequest, now: datetime) -> bool:
        """Flip pending -> expired once due. Caller holds the request lock."""
        if request.status == ApprovalStatus.PENDING and now >= request.expires_at:
            request.status = ApprovalStatus.EXPIRED
            request.updated_at = now
            logger.info("approval_request_expired", request_id=request.id)
            return True
        return False

    def _notify_expired(self, request: ApprovalRequest) -> list[str]:
        return self._notify(
            NotificationEvent.APPROVAL_EXPIRED,
            title=f"Approval Expired: {request.action} on {request.service}",
            message=(
                f"The request from {request.requester_name} expired after "
                f"{request.timeout_minutes} minutes without enough approvals."
            ),
            severity="medium",
            data={"request_id": request.id},
        )

    def _notify(
        self,
        event: NotificationEvent,
        title: str,
        message: str,
        severity: str,
        data: dict,
    ) -> list[str]:
        if self.dispatcher is None:
            return []
        payload = NotificationPayload(
            event=event,
            timestamp=self._clock(),
            title=title,
            message=message,
            severity=severity,
            data=data,
        )
        return self.dispatcher.send(payload).warnings
