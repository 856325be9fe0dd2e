"""Tests for error codes, exit codes and session envelopes."""

from __future__ import annotations

import pytest

from xlagent.contracts.common import (
    ClientError,
    FingerprintConflictError,
    LoadError,
    SaveError,
)
from xlagent.contracts.reports import ParseError, SessionResult, SessionState
from xlagent.engine.dispatcher import (
    error_code_for,
    error_envelope,
    exit_code_for,
    session_envelope,
    success_envelope,
)


@pytest.mark.parametrize(
    ("code", "expected"),
    [
        ("ERR_NO_OPERATIONS", 10),
        ("ERR_POLICY_INVALID", 10),
        ("ERR_SHEET_NOT_FOUND", 10),
        ("ERR_FINGERPRINT_CONFLICT", 40),
        ("ERR_WORKBOOK_NOT_FOUND", 50),
        ("ERR_LOCK_HELD", 50),
        ("ERR_WORKBOOK_CORRUPT", 50),
        ("ERR_IO_SAVE", 50),
        ("ERR_MODEL_CLIENT", 80),
        ("ERR_MODEL_UNAVAILABLE", 80),
        ("ERR_INTERNAL", 90),
    ],
)
def test_exit_codes(code: str, expected: int):
    assert exit_code_for(error_envelope("cmd", code, "msg")) == expected


def test_success_exit_code():
    assert exit_code_for(success_envelope("cmd", {})) == 0


@pytest.mark.parametrize(
    ("exc", "code"),
    [
        (FingerprintConflictError("x"), "ERR_FINGERPRINT_CONFLICT"),
        (LoadError("x"), "ERR_WORKBOOK_CORRUPT"),
        (SaveError("x"), "ERR_IO_SAVE"),
        (ClientError("x"), "ERR_MODEL_CLIENT"),
        (FileNotFoundError("x"), "ERR_IO_NOT_FOUND"),
        (FileExistsError("x"), "ERR_FILE_EXISTS"),
        (PermissionError("x"), "ERR_IO"),
        (RuntimeError("x"), "ERR_INTERNAL"),
    ],
)
def test_error_code_for(exc: BaseException, code: str):
    assert error_code_for(exc) == code


def test_session_with_problems_is_ok_with_warnings():
    result = SessionResult(
        instruction="x",
        state=SessionState.REPORTED,
        parse_errors=[ParseError(line_no=2, raw_line="hello", reason="unknown action 'hello'")],
    )
    env = session_envelope("ask", result)
    assert env.ok
    assert env.warnings[0].code == "PARSE_ParseError"
    assert env.warnings[0].path == "hello"
    assert env.result["state"] == "reported"


def test_failed_session_is_an_error_envelope():
    result = SessionResult(instruction="x", state=SessionState.RECEIVED)
    result.state = SessionState.FAILED
    env = session_envelope("ask", result)
    assert not env.ok
    assert env.errors[0].code == "ERR_INTERNAL"
    assert env.result["state"] == "failed"
