"""Response envelope helpers, error codes and exit codes."""

from __future__ import annotations

import sys
from typing import Any

import orjson

from xlagent.contracts.common import (
    ClientError,
    ErrorDetail,
    FingerprintConflictError,
    LoadError,
    Metrics,
    ResponseEnvelope,
    SaveError,
    Target,
    WarningDetail,
)
from xlagent.contracts.reports import SessionResult

# Exit code mapping
EXIT_CODES = {
    "success": 0,
    "validation": 10,
    "conflict": 40,
    "io": 50,
    "model": 80,
    "internal": 90,
}

VALIDATION_CODE_MARKERS = (
    "VALIDATION",
    "PARSE",
    "REJECTED",
    "NO_OPERATIONS",
    "POLICY",
    "INVALID_ARGUMENT",
    "USAGE",
    "CONFIG",
    "SHEET_NOT_FOUND",
    "SHEET_EXISTS",
)

IO_CODE_MARKERS = ("FILE_EXISTS", "LOCK", "CORRUPT")


def success_envelope(
    command: str,
    result: Any,
    *,
    target: Target | None = None,
    warnings: list[WarningDetail] | None = None,
    duration_ms: int = 0,
) -> ResponseEnvelope:
    return ResponseEnvelope(
        ok=True,
        command=command,
        target=target or Target(),
        result=result,
        warnings=warnings or [],
        metrics=Metrics(duration_ms=duration_ms),
    )


def error_envelope(
    command: str,
    code: str,
    message: str,
    *,
    target: Target | None = None,
    result: Any = None,
    details: dict | None = None,
    duration_ms: int = 0,
) -> ResponseEnvelope:
    return ResponseEnvelope(
        ok=False,
        command=command,
        target=target or Target(),
        result=result,
        errors=[ErrorDetail(code=code, message=message, details=details)],
        metrics=Metrics(duration_ms=duration_ms),
    )


def error_code_for(exc: BaseException) -> str:
    """Stable ERR_* code for an exception raised while serving a command."""
    if isinstance(exc, FingerprintConflictError):
        return "ERR_FINGERPRINT_CONFLICT"
    if isinstance(exc, LoadError):
        return "ERR_WORKBOOK_CORRUPT"
    if isinstance(exc, SaveError):
        return "ERR_IO_SAVE"
    if isinstance(exc, ClientError):
        return "ERR_MODEL_CLIENT"
    if isinstance(exc, FileNotFoundError):
        return "ERR_IO_NOT_FOUND"
    if isinstance(exc, FileExistsError):
        return "ERR_FILE_EXISTS"
    if isinstance(exc, OSError):
        return "ERR_IO"
    return "ERR_INTERNAL"


def output_json(envelope: ResponseEnvelope) -> str:
    """Serialize envelope to JSON string using orjson."""
    data = envelope.model_dump(mode="json")
    return orjson.dumps(data, option=orjson.OPT_INDENT_2).decode()


def print_response(envelope: ResponseEnvelope) -> None:
    """Print response as JSON to stdout."""
    sys.stdout.write(output_json(envelope) + "\n")


def exit_code_for(envelope: ResponseEnvelope) -> int:
    """Determine exit code from envelope errors."""
    if envelope.ok:
        return 0
    if not envelope.errors:
        return EXIT_CODES["internal"]
    code = envelope.errors[0].code.upper()
    if "FINGERPRINT" in code or "CONFLICT" in code:
        return EXIT_CODES["conflict"]
    if "MODEL" in code:
        return EXIT_CODES["model"]
    if any(marker in code for marker in VALIDATION_CODE_MARKERS):
        return EXIT_CODES["validation"]
    if any(marker in code for marker in IO_CODE_MARKERS):
        return EXIT_CODES["io"]
    if code.startswith("ERR_IO") or code.endswith("NOT_FOUND"):
        return EXIT_CODES["io"]
    return EXIT_CODES["internal"]


def session_payload(result: SessionResult) -> dict[str, Any]:
    """Flatten a session result into the ``result`` block of an envelope."""
    return {
        "state": result.state.value,
        "history": [s.value for s in result.history],
        "applied_count": len(result.applied),
        "applied": [entry.model_dump(mode="json") for entry in result.applied],
        "problems": [item.model_dump() for item in result.problems()],
        "model_response": result.model_response,
    }


def session_envelope(
    command: str,
    result: SessionResult,
    *,
    target: Target | None = None,
    duration_ms: int = 0,
) -> ResponseEnvelope:
    """Envelope for a session: rejections are warnings, a failed session is an error."""
    payload = session_payload(result)
    if not result.ok:
        error = result.error or ErrorDetail(code="ERR_INTERNAL", message="session failed")
        return error_envelope(
            command, error.code, error.message,
            target=target, result=payload, duration_ms=duration_ms,
        )
    warnings = [
        WarningDetail(code=f"{item.stage.upper()}_{item.reason}", message=item.message, path=item.line)
        for item in result.problems()
    ]
    return success_envelope(command, payload, target=target, warnings=warnings, duration_ms=duration_ms)
