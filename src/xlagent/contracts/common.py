"""Common Pydantic models and the error taxonomy."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field


class GridError(Exception):
    """Base class for Grid Model contract violations."""


class OutOfBoundsError(GridError):
    """Raised when a cell, row, column or sheet lies outside current bounds."""


class SheetNotFoundError(OutOfBoundsError):
    """Raised when an operation names a sheet that does not exist."""


class SheetExistsError(GridError):
    """Raised when creating a sheet whose name is already taken."""


class NotEmptyError(GridError):
    """Raised when a delete would discard non-empty cells without ``force``."""


class ExecutionError(Exception):
    """Raised when an accepted operation can no longer be applied."""


class ClientError(Exception):
    """Raised when the external model client fails."""


class LoadError(Exception):
    """Raised when a workbook cannot be read into a Grid Model."""


class SaveError(Exception):
    """Raised when a Grid Model cannot be written back out."""


class FingerprintConflictError(SaveError):
    """Raised when the file on disk changed after it was loaded."""


class WarningDetail(BaseModel):
    """Structured warning."""

    code: str
    message: str
    path: str | None = None


class ErrorDetail(BaseModel):
    """Structured error."""

    code: str
    message: str
    details: dict[str, Any] | None = None


class Metrics(BaseModel):
    """Execution metrics."""

    duration_ms: int = 0


class Target(BaseModel):
    """Identifies the target workbook/sheet for a command."""

    file: str | None = None
    sheet: str | None = None
    ref: str | None = None


class ResponseEnvelope(BaseModel):
    """Standard response envelope returned by every command."""

    ok: bool = True
    command: str = ""
    target: Target = Field(default_factory=Target)
    result: Any = None
    warnings: list[WarningDetail] = Field(default_factory=list)
    errors: list[ErrorDetail] = Field(default_factory=list)
    metrics: Metrics = Field(default_factory=Metrics)
