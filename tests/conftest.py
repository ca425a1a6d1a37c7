"""Root test configuration."""

import logging
from datetime import datetime, timedelta, timezone

import pytest
import structlog


def pytest_configure(config):
    """Configure structlog for tests to suppress debug/info output."""
    logging.basicConfig(level=logging.WARNING, force=True)
    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.processors.add_log_level,
            structlog.processors.format_exc_info,
            structlog.dev.ConsoleRenderer(),
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=False,
    )


class FakeClock:
    """Manually advanced clock. Starts on a Wednesday at 12:00 UTC."""

    def __init__(self, start: datetime | None = None):
        self.now = start or datetime(2024, 1, 10, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def engine(clock):
    """Engine with default configuration and a pinned clock."""
    from changeguard.engine import GuardrailsEngine

    return GuardrailsEngine(clock=clock)


@pytest.fixture
def make_context():
    """Factory for operation contexts with sensible defaults."""
    from changeguard.guardrails.models import OperationContext

    def _make(**overrides):
        fields = {
            "actor_id": "user-1",
            "actor_name": "Alice",
            "action": "update",
            "service": "ec2",
            "resource_ids": ("i-1",),
            "resource_type": "instance",
            "region": "us-east-1",
        }
        fields.update(overrides)
        return OperationContext(**fields)

    return _make
