"""Common schema module."""

from __future__ import annotations

from pydantic import BaseModel, Field


class APIEnvelope(BaseModel):
    status: str = "ok"
    message: str | None = None
    warnings: list[str] = Field(default_factory=list)


class ErrorEnvelope(BaseModel):
    status: str = "error"
    error_code: str
    detail: str
