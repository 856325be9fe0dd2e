"""Session controller: one instruction through model, parser, validator and executor.

The controller owns the Grid Model of one document. Instructions are
serialized by an ``asyncio.Lock``; the model call is the only await point,
so parse, validate and execute run as one uninterrupted step and a
cancelled instruction never leaves the grid half-changed.
"""

from __future__ import annotations

import asyncio
from typing import Any

from xlagent.adapters.model_client import IntentClient
from xlagent.contracts.common import ClientError, ErrorDetail
from xlagent.contracts.reports import SessionResult, SessionState
from xlagent.engine.executor import execute
from xlagent.engine.grid import GridModel, summarize
from xlagent.engine.parser import parse_operations
from xlagent.observe.events import EventEmitter, TraceRecorder
from xlagent.validation.validators import validate_operations


class _Run:
    """State history of one instruction, mirrored to events and trace."""

    def __init__(self, instruction: str, emitter: EventEmitter, trace: TraceRecorder | None) -> None:
        self.result = SessionResult(instruction=instruction, state=SessionState.RECEIVED)
        self.emitter = emitter
        self.trace = trace
        self._record(SessionState.RECEIVED, {})

    def _record(self, state: SessionState, data: dict[str, Any]) -> None:
        self.result.state = state
        self.result.history.append(state)
        self.emitter.emit(f"session.{state.value}", data)
        if self.trace is not None:
            self.trace.record("session", {"state": state.value, **data})

    def enter(self, state: SessionState, **data: Any) -> None:
        self._record(state, data)

    def fail(self, code: str, message: str) -> SessionResult:
        self.result.error = ErrorDetail(code=code, message=message)
        self._record(SessionState.FAILED, {"code": code, "message": message})
        return self.result


class SessionController:
    """Applies instructions to one document's grid, one at a time."""

    def __init__(
        self,
        grid: GridModel,
        client: IntentClient | None = None,
        *,
        emitter: EventEmitter | None = None,
        trace: TraceRecorder | None = None,
        max_operations: int | None = None,
    ) -> None:
        self.grid = grid
        self.client = client
        self.emitter = emitter or EventEmitter()
        self.trace = trace
        self.max_operations = max_operations
        self.lock = asyncio.Lock()

    async def handle(self, instruction: str, *, dry_run: bool = False) -> SessionResult:
        """Ask the model for operations and apply the valid ones."""
        async with self.lock:
            run = _Run(instruction, self.emitter, self.trace)
            if self.client is None:
                return run.fail("ERR_MODEL_UNAVAILABLE", "No model client configured")
            try:
                text = await self.client.query(instruction, summarize(self.grid))
            except ClientError as e:
                return run.fail("ERR_MODEL_CLIENT", str(e))
            run.result.model_response = text
            run.enter(SessionState.MODEL_QUERIED, chars=len(text))
            return self._process(run, text, dry_run=dry_run)

    async def apply_text(self, text: str, instruction: str = "", *, dry_run: bool = False) -> SessionResult:
        """Run operation text through the same pipeline, without the model.

        With ``dry_run`` the operations are executed against a copy, so the
        report shows what would change while the grid stays as it is.
        """
        async with self.lock:
            run = _Run(instruction, self.emitter, self.trace)
            return self._process(run, text, dry_run=dry_run)

    def _process(self, run: _Run, text: str, *, dry_run: bool) -> SessionResult:
        parsed = parse_operations(text, max_operations=self.max_operations)
        run.result.parse_errors = parsed.errors
        run.enter(SessionState.PARSED, operations=len(parsed.operations), parse_errors=len(parsed.errors))
        if not parsed.operations:
            return run.fail("ERR_NO_OPERATIONS", "No operations were recognised in the response")

        report = validate_operations(self.grid, parsed.operations)
        run.result.rejected = report.rejected
        run.enter(SessionState.VALIDATED, accepted=len(report.accepted), rejected=len(report.rejected))

        target = self.grid.copy() if dry_run else self.grid
        changes = execute(target, report)
        run.result.applied = changes.applied
        run.result.failed = changes.failed
        run.enter(
            SessionState.EXECUTED,
            applied=changes.applied_count, failed=len(changes.failed), dry_run=dry_run,
        )
        run.enter(SessionState.REPORTED)
        return run.result
