"""Structured results returned by every public engine operation."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Generic, TypeVar

from changeguard.core.errors import ErrorCode

T = TypeVar("T")


@dataclass
class OperationResult(Generic[T]):
    """Success/failure envelope with an optional payload.

    Failures carry an ``ErrorCode`` and a human message instead of raising.
    """

    success: bool
    data: T | None = None
    message: str = ""
    error: ErrorCode | None = None
    warnings: list[str] = field(default_factory=list)

    @classmethod
    def ok(
        cls,
        data: T | None = None,
        message: str = "",
        warnings: list[str] | None = None,
    ) -> OperationResult[T]:
        return cls(success=True, data=data, message=message, warnings=warnings or [])

    @classmethod
    def fail(
        cls,
        error: ErrorCode,
        message: str,
        data: T | None = None,
    ) -> OperationResult[T]:
        return cls(success=False, data=data, message=message, error=error)

    def unwrap(self) -> T:
        """Return the payload, raising if the operation failed."""
        if not self.success or self.data is None:
            raise LookupError(f"{self.error}: {self.message}")
        return self.data
