"""Lifecycle events, timing and per-run traces."""

from __future__ import annotations

import sys
import time
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, TextIO

import orjson


def _utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


class Timer:
    """Context-manager timer for measuring duration_ms."""

    def __init__(self) -> None:
        self.start: float = 0
        self.elapsed_ms: int = 0

    def __enter__(self) -> "Timer":
        self.start = time.perf_counter()
        return self

    def __exit__(self, *args: Any) -> None:
        self.elapsed_ms = int((time.perf_counter() - self.start) * 1000)


class EventEmitter:
    """Writes NDJSON lifecycle events, to stderr unless another stream is given.

    ``bind`` derives an emitter on the same stream whose events also carry the
    given fields, which keeps events of different documents or commands apart
    when they interleave.
    """

    def __init__(
        self,
        enabled: bool = False,
        stream: TextIO | None = None,
        *,
        fields: dict[str, Any] | None = None,
    ) -> None:
        self.enabled = enabled
        self.stream = stream
        self.fields = dict(fields or {})

    def bind(self, **fields: Any) -> "EventEmitter":
        return EventEmitter(self.enabled, self.stream, fields={**self.fields, **fields})

    def emit(self, event: str, data: dict[str, Any] | None = None) -> None:
        if not self.enabled:
            return
        payload = {"event": event, "timestamp": _utc_now(), **self.fields, "data": data or {}}
        out = self.stream or sys.stderr
        out.write(orjson.dumps(payload, default=str).decode() + "\n")
        out.flush()


class TraceRecorder:
    """Numbered trace entries for one run, saved as a single JSON document."""

    def __init__(self) -> None:
        self.entries: list[dict[str, Any]] = []
        self._start = time.perf_counter()

    def _elapsed_ms(self) -> int:
        return int((time.perf_counter() - self._start) * 1000)

    def record(self, category: str, data: dict[str, Any]) -> None:
        self.entries.append({
            "step": len(self.entries) + 1,
            "category": category,
            "elapsed_ms": self._elapsed_ms(),
            **data,
        })

    def save(self, path: str | Path) -> str:
        trace = {
            "trace_version": "1.0",
            "generated_at": _utc_now(),
            "total_duration_ms": self._elapsed_ms(),
            "entries": self.entries,
        }
        Path(path).write_bytes(orjson.dumps(trace, option=orjson.OPT_INDENT_2, default=str))
        return str(path)
