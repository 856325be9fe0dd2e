"""Result models produced by the parse, validate, execute and session stages."""

from __future__ import annotations

from enum import Enum
from typing import Any

from pydantic import BaseModel, Field

from xlagent.contracts.cells import Cell
from xlagent.contracts.common import ErrorDetail
from xlagent.contracts.operations import Operation


class ParseError(BaseModel):
    """A source line that did not map to exactly one operation."""

    line_no: int
    raw_line: str
    reason: str


class ParseResult(BaseModel):
    """Operations recognised in a model response, in source order."""

    operations: list[Operation] = Field(default_factory=list)
    line_numbers: list[int] = Field(default_factory=list)
    errors: list[ParseError] = Field(default_factory=list)


class RejectReason(str, Enum):
    OUT_OF_BOUNDS = "OutOfBounds"
    FORMAT_CONFLICT = "FormatConflict"
    TYPE_MISMATCH = "TypeMismatch"
    NOT_EMPTY = "NotEmpty"
    SHEET_EXISTS = "SheetExists"
    DEPENDENCY_FAILED = "DependencyFailed"
    VOCABULARY_VIOLATION = "VocabularyViolation"


class SheetShape(BaseModel):
    row_count: int
    column_count: int


class ValidationResult(BaseModel):
    """Outcome for one operation of a batch."""

    index: int
    operation: Any
    accepted: bool
    reason: RejectReason | None = None
    message: str = ""
    # Shape of the target sheet the executor must find before applying.
    # ``None`` for an accepted CreateSheet: the sheet must not exist yet.
    expected_shape: SheetShape | None = None


class ValidationReport(BaseModel):
    results: list[ValidationResult] = Field(default_factory=list)

    @property
    def accepted(self) -> list[ValidationResult]:
        return [r for r in self.results if r.accepted]

    @property
    def rejected(self) -> list[ValidationResult]:
        return [r for r in self.results if not r.accepted]

    @property
    def valid(self) -> bool:
        return all(r.accepted for r in self.results)


class SheetSnapshot(BaseModel):
    """Shape of a sheet plus the cells of the captured region (A1 keyed)."""

    sheet: str
    row_count: int
    column_count: int
    cells: dict[str, Cell] = Field(default_factory=dict)


class ChangeEntry(BaseModel):
    """One applied operation with its before/after snapshots."""

    index: int
    operation: Operation
    line: str
    before: SheetSnapshot | None = None
    after: SheetSnapshot | None = None


class ExecutionFailure(BaseModel):
    """An accepted operation that could not be applied."""

    index: int
    operation: Operation
    line: str
    message: str


class ChangeReport(BaseModel):
    """What one execution pass applied, rejected and failed."""

    applied: list[ChangeEntry] = Field(default_factory=list)
    rejected: list[ValidationResult] = Field(default_factory=list)
    failed: list[ExecutionFailure] = Field(default_factory=list)

    @property
    def applied_count(self) -> int:
        return len(self.applied)

    @property
    def changed(self) -> bool:
        return bool(self.applied)


class SessionState(str, Enum):
    RECEIVED = "received"
    MODEL_QUERIED = "model_queried"
    PARSED = "parsed"
    VALIDATED = "validated"
    EXECUTED = "executed"
    REPORTED = "reported"
    FAILED = "failed"


class RejectedItem(BaseModel):
    """Anything that was not applied, with its reason, in report order."""

    stage: str  # parse, validate, execute
    line: str
    reason: str
    message: str


class SessionResult(BaseModel):
    """Structured report returned for one instruction."""

    instruction: str
    state: SessionState
    history: list[SessionState] = Field(default_factory=list)
    model_response: str | None = None
    applied: list[ChangeEntry] = Field(default_factory=list)
    parse_errors: list[ParseError] = Field(default_factory=list)
    rejected: list[ValidationResult] = Field(default_factory=list)
    failed: list[ExecutionFailure] = Field(default_factory=list)
    error: ErrorDetail | None = None

    @property
    def ok(self) -> bool:
        return self.state == SessionState.REPORTED

    def problems(self) -> list[RejectedItem]:
        """Every parse error, rejection and failure, flattened for display."""
        items = [
            RejectedItem(stage="parse", line=e.raw_line, reason="ParseError", message=e.reason)
            for e in self.parse_errors
        ]
        for r in self.rejected:
            line = r.operation.to_line() if hasattr(r.operation, "to_line") else repr(r.operation)
            items.append(RejectedItem(
                stage="validate", line=line,
                reason=r.reason.value if r.reason else "", message=r.message,
            ))
        for f in self.failed:
            items.append(RejectedItem(stage="execute", line=f.line, reason="ExecutionError", message=f.message))
        return items
