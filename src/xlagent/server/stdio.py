"""stdio server mode — JSON line-delimited protocol over stdin/stdout.

Each request is ``{"id": ..., "command": ..., "args": {...}}``. Requests are
served concurrently and answered as they complete, so responses may come
back out of order; the ``id`` ties them together. Each open document has its
own session, whose lock keeps instructions for that document one at a time.
"""

from __future__ import annotations

import asyncio
import json
import sys
from typing import Any, Callable, TextIO

import portalocker

from xlagent.adapters.model_client import IntentClient
from xlagent.contracts.common import ClientError, GridError, LoadError, SaveError
from xlagent.engine.context import DocumentContext
from xlagent.engine.dispatcher import error_code_for, session_payload
from xlagent.engine.grid import summarize
from xlagent.engine.parser import parse_operations
from xlagent.engine.session import SessionController
from xlagent.io.fileops import WorkbookLock
from xlagent.observe.events import EventEmitter
from xlagent.validation.policy import PolicyError


class _Document:
    def __init__(self, ctx: DocumentContext, session: SessionController) -> None:
        self.ctx = ctx
        self.session = session


class StdioServer:
    """JSON-RPC-like server over stdin/stdout, one session per open document."""

    def __init__(
        self,
        client_factory: Callable[[], IntentClient] | None = None,
        *,
        emitter: EventEmitter | None = None,
        max_operations: int | None = None,
    ) -> None:
        self._client_factory = client_factory
        self._client: IntentClient | None = None
        self._emitter = emitter or EventEmitter()
        self._max_operations = max_operations
        self._documents: dict[str, _Document] = {}

    def _client_for_instruct(self) -> IntentClient | None:
        if self._client is None and self._client_factory is not None:
            self._client = self._client_factory()
        return self._client

    def _get_doc(self, file: str) -> _Document:
        doc = self._documents.get(file)
        if doc is None:
            ctx = DocumentContext(file)
            session = SessionController(
                ctx.grid,
                emitter=self._emitter.bind(file=str(ctx.path)),
                max_operations=ctx.max_operations or self._max_operations,
            )
            doc = _Document(ctx, session)
            self._documents[file] = doc
        return doc

    async def handle_request(self, request: dict[str, Any]) -> dict[str, Any]:
        req_id = request.get("id", "")
        command = request.get("command", "")
        args = request.get("args") or {}
        if not isinstance(args, dict):
            return {"id": req_id, "ok": False, "error": "'args' must be a JSON object", "code": "ERR_USAGE"}
        for key in ("file", "text", "instruction"):
            if not isinstance(args.get(key, ""), str):
                return {"id": req_id, "ok": False, "error": f"'{key}' must be a string", "code": "ERR_USAGE"}

        try:
            if command == "parse":
                parsed = parse_operations(args.get("text", ""), max_operations=self._max_operations)
                return {"id": req_id, "ok": True, "result": {
                    "operations": [op.model_dump(mode="json") for op in parsed.operations],
                    "lines": [op.to_line() for op in parsed.operations],
                    "errors": [e.model_dump() for e in parsed.errors],
                }}

            if command == "close" and not args.get("file"):
                self._documents.clear()
                return {"id": req_id, "ok": True, "result": "closed"}

            file = args.get("file", "")
            if not file:
                return {"id": req_id, "ok": False, "error": "Missing 'file' in args"}

            if command == "summary":
                doc = self._get_doc(file)
                return {"id": req_id, "ok": True, "result": {
                    "summary": summarize(doc.ctx.grid),
                    "sheets": doc.ctx.grid.describe(),
                    "fingerprint": doc.ctx.fp,
                }}

            elif command == "apply_ops":
                doc = self._get_doc(file)
                result = await doc.session.apply_text(
                    args.get("text", ""), dry_run=bool(args.get("dry_run", False))
                )
                return {"id": req_id, "ok": result.ok, "result": session_payload(result)}

            elif command == "instruct":
                doc = self._get_doc(file)
                doc.session.client = self._client_for_instruct()
                result = await doc.session.handle(args.get("instruction", ""))
                return {"id": req_id, "ok": result.ok, "result": session_payload(result)}

            elif command == "save":
                doc = self._get_doc(file)
                async with doc.session.lock:
                    with WorkbookLock(doc.ctx.path, timeout=float(args.get("lock_timeout", 0))):
                        info = doc.ctx.save(make_backup=bool(args.get("backup", False)))
                return {"id": req_id, "ok": True, "result": info}

            elif command == "close":
                self._documents.pop(file, None)
                return {"id": req_id, "ok": True, "result": "closed"}

            else:
                return {"id": req_id, "ok": False, "error": f"Unknown command: {command}"}

        except portalocker.LockException as e:
            return {"id": req_id, "ok": False, "error": str(e), "code": "ERR_LOCK_HELD"}
        except (
            ClientError, GridError, LoadError, SaveError, PolicyError, OSError, ValueError,
        ) as e:
            return {"id": req_id, "ok": False, "error": str(e), "code": error_code_for(e)}

    async def _respond(self, request: dict[str, Any], out: TextIO) -> None:
        try:
            response = await self.handle_request(request)
        except Exception as e:
            # Every request gets an answer, even when serving it crashed.
            response = {"id": request.get("id", ""), "ok": False, "error": str(e), "code": "ERR_INTERNAL"}
        out.write(json.dumps(response, default=str) + "\n")
        out.flush()

    async def serve(self, reader: TextIO | None = None, out: TextIO | None = None) -> None:
        """Read JSON lines until EOF; answer each request as it completes."""
        reader = reader or sys.stdin
        out = out or sys.stdout
        loop = asyncio.get_running_loop()
        pending: set[asyncio.Task] = set()
        try:
            while True:
                line = await loop.run_in_executor(None, reader.readline)
                if not line:
                    break
                line = line.strip()
                if not line:
                    continue
                try:
                    request = json.loads(line)
                except json.JSONDecodeError as e:
                    out.write(json.dumps({"ok": False, "error": f"Invalid JSON: {e}"}) + "\n")
                    out.flush()
                    continue
                if not isinstance(request, dict):
                    out.write(json.dumps({"ok": False, "error": "Request must be a JSON object"}) + "\n")
                    out.flush()
                    continue
                task = asyncio.create_task(self._respond(request, out))
                pending.add(task)
                task.add_done_callback(pending.discard)
            if pending:
                await asyncio.gather(*pending)
        finally:
            self._documents.clear()
            await self.close()

    async def close(self) -> None:
        """Release the model client, if one was opened."""
        if self._client is not None:
            client, self._client = self._client, None
            await client.close()

    def run(self) -> None:
        """Main server loop over the process's stdin and stdout."""
        asyncio.run(self.serve())
