"""Shared schema definitions."""

from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, Field


class ErrorInfo(BaseModel):
    """Structured description of a failure returned to API callers."""

    kind: str = Field(..., description="Machine readable error category")
    message: str
    file: Optional[str] = Field(None, description="Source file where the failure surfaced")
    line_number: Optional[int] = None
    guidance: Optional[str] = Field(None, description="Suggested remediation")
