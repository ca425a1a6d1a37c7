"""
Action classification table.

Resolves risk metadata for an (action, service) pair in three tiers:

1. exact ``(action, service)`` entry
2. ``(action, "*")`` wildcard entry
3. conservative default (medium, reversible, no approval)

Lookups are pure and never raise.
"""

from __future__ import annotations

from typing import Iterable

from changeguard.guardrails.models import ActionClassification, ActionSeverity

WILDCARD = "*"


def _entry(
    action: str,
    severity: ActionSeverity,
    *,
    destructive: bool = False,
    reversible: bool = True,
    approval: bool = False,
    dry_run: bool = False,
    multiple: bool = False,
) -> ActionClassification:
    return ActionClassification(
        action=action,
        service=WILDCARD,
        severity=severity,
        is_destructive=destructive,
        is_reversible=reversible,
        requires_approval=approval,
        requires_dry_run=dry_run,
        can_affect_multiple=multiple,
    )


DEFAULT_ACTION_CLASSIFICATIONS: tuple[ActionClassification, ...] = (
    # Critical - destructive and irreversible
    _entry("terminate", ActionSeverity.CRITICAL, destructive=True, reversible=False,
           approval=True, dry_run=True, multiple=True),
    _entry("delete", ActionSeverity.CRITICAL, destructive=True, reversible=False,
           approval=True, dry_run=True, multiple=True),
    # High - significant changes
    _entry("modify", ActionSeverity.HIGH, approval=True, dry_run=True, multiple=True),
    _entry("stop", ActionSeverity.HIGH, approval=True, multiple=True),
    _entry("reboot", ActionSeverity.HIGH, approval=True, multiple=True),
    _entry("scale", ActionSeverity.HIGH, approval=True, dry_run=True),
    _entry("deploy", ActionSeverity.HIGH, approval=True, dry_run=True),
    # Medium - standard operations
    _entry("update", ActionSeverity.MEDIUM, dry_run=True, multiple=True),
    _entry("create", ActionSeverity.MEDIUM),
    _entry("start", ActionSeverity.MEDIUM, multiple=True),
    # Low - reads
    _entry("read", ActionSeverity.LOW),
)


def default_classification(action: str, service: str) -> ActionClassification:
    """Classification used when neither an exact nor a wildcard entry exists."""
    return ActionClassification(
        action=action,
        service=service,
        severity=ActionSeverity.MEDIUM,
        is_destructive=False,
        is_reversible=True,
        requires_approval=False,
        requires_dry_run=False,
        can_affect_multiple=False,
    )


class ClassificationTable:
    """Static lookup of (action, service) -> ActionClassification."""

    def __init__(self, extra: Iterable[ActionClassification] = ()) -> None:
        self._entries: dict[tuple[str, str], ActionClassification] = {}
        for entry in (*DEFAULT_ACTION_CLASSIFICATIONS, *extra):
            # Later entries override earlier ones for the same key
            self._entries[(entry.action, entry.service)] = entry

    def classify(self, action: str, service: str = WILDCARD) -> ActionClassification:
        """Resolve the classification for an action on a service."""
        exact = self._entries.get((action, service))
        if exact is not None:
            return exact

        wildcard = self._entries.get((action, WILDCARD))
        if wildcard is not None:
            return wildcard

        return default_classification(action, service)

    def is_destructive(self, action: str, service: str = WILDCARD) -> bool:
        return self.classify(action, service).is_destructive

    def entries(self) -> list[ActionClassification]:
        return list(self._entries.values())
