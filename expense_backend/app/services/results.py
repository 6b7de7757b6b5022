"""Outcome type returned by the service layer instead of raising."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Generic, Optional, TypeVar

from ..schemas.common import ErrorInfo

T = TypeVar("T")


@dataclass
class OperationResult(Generic[T]):
    success: bool
    data: Optional[T] = None
    error: Optional[ErrorInfo] = None

    @classmethod
    def ok(cls, data: T) -> "OperationResult[T]":
        return cls(success=True, data=data)

    @classmethod
    def failure(cls, error: ErrorInfo) -> "OperationResult[T]":
        return cls(success=False, error=error)
