"""
Per-actor sliding-window rate limiter.

Each actor owns three timestamp sequences:

- minute: every recorded operation in the last 60 seconds
- hour: every recorded operation in the last 60 minutes
- day: destructive operations only, in the last 24 hours

Stale entries are pruned lazily on every check/record. Limits are compared in
order minute -> hour -> destructive/day, and the first one reached wins.

Concurrency: every actor bucket has its own lock, so unrelated actors never
contend. ``check`` followed by a separate ``record`` is not atomic; concurrent
callers for the same actor can each pass the check and each record, overshooting
a limit by at most the number of concurrent callers. Rate limiting is advisory,
so that bounded race is accepted. ``acquire`` performs check-and-record under
the actor's lock for callers that want the exact bound.
"""

from __future__ import annotations

import threading
from collections import deque
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta
from typing import Any

import structlog

from changeguard.core.clock import Clock, utcnow
from changeguard.guardrails.classification import WILDCARD, ClassificationTable
from changeguard.guardrails.models import RateLimitConfig, RateLimitStatus

logger = structlog.get_logger()

MINUTE = timedelta(minutes=1)
HOUR = timedelta(hours=1)
DAY = timedelta(days=1)


@dataclass
class _ActorCounters:
    minute: deque[datetime] = field(default_factory=deque)
    hour: deque[datetime] = field(default_factory=deque)
    day: deque[datetime] = field(default_factory=deque)
    lock: threading.Lock = field(default_factory=threading.Lock)

    def prune(self, now: datetime) -> None:
        # Timestamps are appended in clock order, so stale entries sit at the front
        for window, span in ((self.minute, MINUTE), (self.hour, HOUR), (self.day, DAY)):
            cutoff = now - span
            while window and window[0] <= cutoff:
                window.popleft()


class RateLimiter:
    """Sliding-window counters keyed by actor id."""

    def __init__(
        self,
        classifications: ClassificationTable,
        config: RateLimitConfig | None = None,
        clock: Clock | None = None,
    ) -> None:
        self.classifications = classifications
        self._config = config or RateLimitConfig()
        self._clock = clock or utcnow
        self._actors: dict[str, _ActorCounters] = {}
        self._registry_lock = threading.Lock()

    def _counters(self, actor_id: str) -> _ActorCounters:
        counters = self._actors.get(actor_id)
        if counters is None:
            with self._registry_lock:
                counters = self._actors.setdefault(actor_id, _ActorCounters())
        return counters

    def check(self, actor_id: str, action: str, service: str = WILDCARD) -> RateLimitStatus:
        """Report the actor's current standing without recording anything."""
        counters = self._counters(actor_id)
        with counters.lock:
            return self._check_locked(counters, action, service, self._clock())

    def record(self, actor_id: str, action: str, service: str = WILDCARD) -> None:
        """Record one operation for the actor."""
        counters = self._counters(actor_id)
        with counters.lock:
            self._record_locked(counters, action, service, self._clock())

    def acquire(self, actor_id: str, action: str, service: str = WILDCARD) -> RateLimitStatus:
        """Check and, if not limited, record in one step under the actor's lock."""
        counters = self._counters(actor_id)
        with counters.lock:
            now = self._clock()
            status = self._check_locked(counters, action, service, now)
            if not status.is_rate_limited:
                self._record_locked(counters, action, service, now)
            return status

    def _check_locked(
        self,
        counters: _ActorCounters,
        action: str,
        service: str,
        now: datetime,
    ) -> RateLimitStatus:
        counters.prune(now)
        config = self._config
        is_destructive = self.classifications.is_destructive(action, service)

        per_minute = len(counters.minute)
        per_hour = len(counters.hour)
        destructive_today = len(counters.day) if is_destructive else 0

        reason: str | None = None
        reset_at: datetime | None = None

        if per_minute >= config.max_operations_per_minute:
            reason = (
                f"Rate limit exceeded: {per_minute}/{config.max_operations_per_minute} "
                "operations per minute"
            )
            reset_at = counters.minute[0] + MINUTE if counters.minute else now
        elif per_hour >= config.max_operations_per_hour:
            reason = (
                f"Rate limit exceeded: {per_hour}/{config.max_operations_per_hour} "
                "operations per hour"
            )
            reset_at = counters.hour[0] + HOUR if counters.hour else now
        elif is_destructive and destructive_today >= config.max_destructive_operations_per_day:
            reason = (
                f"Destructive operation limit exceeded: {destructive_today}/"
                f"{config.max_destructive_operations_per_day} per day"
            )
            reset_at = counters.day[0] + DAY if counters.day else now

        if reason:
            logger.info("rate_limit_exceeded", action=action, reason=reason)

        return RateLimitStatus(
            operations_this_minute=per_minute,
            operations_this_hour=per_hour,
            destructive_operations_today=destructive_today,
            is_rate_limited=reason is not None,
            rate_limit_reason=reason,
            reset_at=reset_at,
            remaining_this_minute=max(0, config.max_operations_per_minute - per_minute),
            remaining_this_hour=max(0, config.max_operations_per_hour - per_hour),
        )

    def _record_locked(
        self,
        counters: _ActorCounters,
        action: str,
        service: str,
        now: datetime,
    ) -> None:
        counters.prune(now)
        counters.minute.append(now)
        counters.hour.append(now)
        if self.classifications.is_destructive(action, service):
            counters.day.append(now)

    def get_config(self) -> RateLimitConfig:
        return replace(self._config)

    def merge_config(self, config: RateLimitConfig | None = None, **changes: Any) -> RateLimitConfig:
        """
        Build a validated config from ``config`` (or the current one) plus changes.

        Nothing is applied. Every threshold must be a non-negative integer.

        Raises:
            ValueError: On unknown settings or invalid values
        """
        base = config or self._config
        unknown = set(changes) - set(base.to_dict())
        if unknown:
            raise ValueError(f"Unknown rate limit settings: {', '.join(sorted(unknown))}")
        coerced: dict[str, int] = {}
        for key, value in changes.items():
            if isinstance(value, bool):
                raise ValueError(f"Rate limit setting {key} must be an integer")
            try:
                coerced[key] = int(value)
            except (TypeError, ValueError) as e:
                raise ValueError(f"Rate limit setting {key} must be an integer") from e
            if coerced[key] < 0:
                raise ValueError(f"Rate limit setting {key} must not be negative")
        return replace(base, **coerced)

    def set_config(self, config: RateLimitConfig | None = None, **changes: Any) -> RateLimitConfig:
        """Replace the config, or merge individual thresholds into it."""
        self._config = self.merge_config(config, **changes)
        logger.info("rate_limit_config_updated", **self._config.to_dict())
        return self.get_config()

    def reset(self, actor_id: str | None = None) -> None:
        """Forget recorded operations for one actor, or for everyone."""
        with self._registry_lock:
            if actor_id is None:
                self._actors.clear()
            else:
                self._actors.pop(actor_id, None)
