"""Pydantic models for cells, operations, reports and response envelopes."""

from xlagent.contracts.cells import (
    Cell,
    CellFormat,
    CellRange,
    CellValue,
    StylePatch,
)
from xlagent.contracts.common import (
    ErrorDetail,
    Metrics,
    ResponseEnvelope,
    Target,
    WarningDetail,
)
from xlagent.contracts.operations import (
    ApplyFormat,
    CreateSheet,
    DeleteColumn,
    DeleteRow,
    InsertColumn,
    InsertRow,
    Operation,
    SetCell,
    SetRange,
)
from xlagent.contracts.reports import (
    ChangeReport,
    ParseError,
    ParseResult,
    RejectReason,
    SessionResult,
    SessionState,
    ValidationReport,
    ValidationResult,
)

__all__ = [
    "ApplyFormat",
    "Cell",
    "CellFormat",
    "CellRange",
    "CellValue",
    "ChangeReport",
    "CreateSheet",
    "DeleteColumn",
    "DeleteRow",
    "ErrorDetail",
    "InsertColumn",
    "InsertRow",
    "Metrics",
    "Operation",
    "ParseError",
    "ParseResult",
    "RejectReason",
    "ResponseEnvelope",
    "SessionResult",
    "SessionState",
    "SetCell",
    "SetRange",
    "StylePatch",
    "Target",
    "ValidationReport",
    "ValidationResult",
    "WarningDetail",
]
