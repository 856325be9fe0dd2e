"""Typer CLI application — every command prints a JSON ResponseEnvelope."""

from __future__ import annotations

import asyncio
import sys
from pathlib import Path
from typing import Annotated, Any, Awaitable, Callable, Optional

import portalocker
import typer
from pydantic import ValidationError

import xlagent
from xlagent.adapters.model_client import IntentClient, ModelClient
from xlagent.config import Settings
from xlagent.contracts.common import (
    ClientError,
    LoadError,
    ResponseEnvelope,
    SaveError,
    Target,
    WarningDetail,
)
from xlagent.contracts.reports import SessionResult
from xlagent.engine.dispatcher import (
    error_code_for,
    error_envelope,
    exit_code_for,
    print_response,
    session_envelope,
    success_envelope,
)
from xlagent.io.fileops import WorkbookLock, lock_holder, lock_path_for, read_text_safe
from xlagent.observe.events import EventEmitter, Timer, TraceRecorder
from xlagent.validation.policy import Policy, PolicyError

_MAIN_HELP = """\
Turn natural-language instructions into validated edits on Excel workbooks.

**Workflow:**  inspect → ask (or ops) → review the envelope

1. `xlagent inspect -f data.xlsx` — sheets, sizes, header row, fingerprint
2. `xlagent ask -f data.xlsx "add a Total row under the data"` — model proposes operations
3. `xlagent ops -f data.xlsx --ops "SetCell Sheet1 A1 = 5" --dry-run` — apply operation text yourself

Every operation is parsed, validated against the current workbook and applied
one by one; the envelope lists what was applied and why anything was not.

**Every command** returns a JSON `ResponseEnvelope`:
`{"ok": bool, "command": "...", "result": {...}, "errors": [...], "warnings": [...], "metrics": {"duration_ms": N}}`
"""

_CHAT_HELP = """\
Type an instruction for the workbook, for example: make the header row bold.
Commands:
  help, ayuda   show this help
  summary       show the workbook summary sent to the model
  exit, salir   leave the chat"""


def _version_callback(value: bool) -> None:
    if value:
        typer.echo(xlagent.__version__)
        raise typer.Exit()


app = typer.Typer(
    name="xlagent",
    help=_MAIN_HELP,
    no_args_is_help=True,
    rich_markup_mode="markdown",
)


@app.callback(invoke_without_command=True)
def main_callback(
    version: Annotated[
        bool, typer.Option("--version", "-V", help="Print version and exit.", is_eager=True)
    ] = False,
) -> None:
    if version:
        _version_callback(True)


# Type aliases for common options
FilePath = Annotated[str, typer.Option("--file", "-f", help="Path to .xlsx workbook file")]
OpsText = Annotated[Optional[str], typer.Option("--ops", help="Operation text, one operation per line")]
OpsFile = Annotated[Optional[str], typer.Option("--ops-file", help="File with operation text ('-' reads stdin)")]
DryRun = Annotated[bool, typer.Option("--dry-run", help="Validate and preview changes without writing to disk")]
BackupOpt = Annotated[bool, typer.Option("--backup", help="Create timestamped .bak copy before writing")]
PolicyOpt = Annotated[Optional[str], typer.Option("--policy", help="Policy YAML file (default: xlagent-policy.yaml next to the workbook)")]
LockTimeout = Annotated[float, typer.Option("--lock-timeout", help="Seconds to wait for the workbook lock")]
EventsOpt = Annotated[bool, typer.Option("--events", help="Emit NDJSON lifecycle events to stderr")]
TraceOpt = Annotated[Optional[str], typer.Option("--trace", help="Write a JSON trace of the run to this path")]


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------
def _emit(envelope: ResponseEnvelope, code: int | None = None) -> None:
    print_response(envelope)
    raise typer.Exit(code if code is not None else exit_code_for(envelope))


def _settings_or_emit(cmd: str) -> Settings:
    try:
        return Settings()
    except ValidationError as e:
        _emit(error_envelope(cmd, "ERR_CONFIG_INVALID", str(e)))


def _make_client(settings: Settings) -> IntentClient:
    return ModelClient.from_settings(settings)


def _read_ops(cmd: str, ops: str | None, ops_file: str | None) -> str:
    if ops is not None and ops_file is not None:
        _emit(error_envelope(cmd, "ERR_USAGE", "Use either --ops or --ops-file, not both"))
    if ops is not None:
        return ops
    if ops_file == "-":
        return sys.stdin.read()
    if ops_file is not None:
        try:
            return read_text_safe(ops_file)
        except OSError as e:
            _emit(error_envelope(cmd, "ERR_IO_NOT_FOUND", f"Cannot read {ops_file}: {e}"))
    _emit(error_envelope(cmd, "ERR_USAGE", "Provide operation text with --ops or --ops-file"))
    return ""


def _load_policy_or_emit(cmd: str, policy: str | None) -> Policy | None:
    if policy is None:
        return None
    try:
        return Policy.load(policy)
    except OSError as e:
        _emit(error_envelope(cmd, "ERR_IO_NOT_FOUND", f"Cannot read policy {policy}: {e}"))
    except PolicyError as e:
        _emit(error_envelope(cmd, "ERR_POLICY_INVALID", str(e)))
    return None


def _require_file(cmd: str, file: str) -> Path:
    p = Path(file).resolve()
    if not p.exists():
        _emit(error_envelope(cmd, "ERR_WORKBOOK_NOT_FOUND", f"File not found: {file}", target=Target(file=file)))
    return p


def _lock_held_envelope(cmd: str, path: Path, target: Target) -> ResponseEnvelope:
    return error_envelope(
        cmd, "ERR_LOCK_HELD", f"Workbook is locked by another process: {path}",
        target=target,
        details={"lock_file": str(lock_path_for(path)), "holder": lock_holder(path)},
    )


async def _closing(work: Awaitable[SessionResult], client: IntentClient | None) -> SessionResult:
    """Await ``work``, then release the model client on the same event loop."""
    try:
        return await work
    finally:
        if client is not None:
            await client.close()


def _run_session(
    cmd: str,
    file: str,
    runner: Callable[[Any], Awaitable[SessionResult]],
    *,
    settings: Settings,
    policy: str | None = None,
    dry_run: bool = False,
    backup: bool = False,
    lock_timeout: float = 0,
    events: bool = False,
    trace: str | None = None,
    client: IntentClient | None = None,
) -> None:
    """Lock the workbook, run one session on it, save, and emit the envelope."""
    from xlagent.engine.context import DocumentContext
    from xlagent.engine.session import SessionController

    path = _require_file(cmd, file)
    loaded_policy = _load_policy_or_emit(cmd, policy)
    recorder = TraceRecorder() if trace else None
    emitter = EventEmitter(enabled=events or settings.events).bind(command=cmd, file=str(path))
    target = Target(file=file)
    saved: dict | None = None

    with Timer() as t:
        try:
            with WorkbookLock(path, timeout=lock_timeout):
                ctx = DocumentContext(path, policy=loaded_policy)
                session = SessionController(
                    ctx.grid,
                    client,
                    emitter=emitter,
                    trace=recorder,
                    max_operations=ctx.max_operations or settings.max_operations,
                )
                emitter.emit("command.start")
                result = asyncio.run(_closing(runner(session), client))
                if result.ok and result.applied and not dry_run:
                    saved = ctx.save(make_backup=backup)
        except portalocker.LockException:
            _emit(_lock_held_envelope(cmd, path, target))
        except PolicyError as e:
            _emit(error_envelope(cmd, "ERR_POLICY_INVALID", str(e), target=target))
        except (LoadError, SaveError, OSError) as e:
            _emit(error_envelope(cmd, error_code_for(e), str(e), target=target))

    env = session_envelope(cmd, result, target=target, duration_ms=t.elapsed_ms)
    if isinstance(env.result, dict):
        env.result["dry_run"] = dry_run
        env.result["saved"] = saved
    env.warnings[:0] = [WarningDetail(code="POLICY_SKIPPED", message=w) for w in ctx.policy_warnings]
    emitter.emit("command.end", {"ok": env.ok, "duration_ms": t.elapsed_ms})
    if recorder is not None:
        recorder.save(trace)
    _emit(env)


# ---------------------------------------------------------------------------
# xlagent version
# ---------------------------------------------------------------------------
@app.command()
def version():
    """Print the xlagent version.

    Example: `xlagent version`
    """
    env = success_envelope("version", {"version": xlagent.__version__})
    _emit(env)


# ---------------------------------------------------------------------------
# xlagent inspect
# ---------------------------------------------------------------------------
@app.command()
def inspect(
    file: FilePath,
    policy: PolicyOpt = None,
):
    """Inspect a workbook — sheets, sizes, column types and the model summary.

    The `summary` field is exactly the text the model sees with an instruction.

    Example: `xlagent inspect -f data.xlsx`
    """
    from xlagent.engine.context import DocumentContext
    from xlagent.engine.grid import summarize

    _require_file("inspect", file)
    loaded_policy = _load_policy_or_emit("inspect", policy)
    with Timer() as t:
        try:
            ctx = DocumentContext(file, policy=loaded_policy)
        except PolicyError as e:
            _emit(error_envelope("inspect", "ERR_POLICY_INVALID", str(e), target=Target(file=file)))
        except (LoadError, OSError) as e:
            _emit(error_envelope("inspect", error_code_for(e), str(e), target=Target(file=file)))
        result = {
            "path": str(ctx.path),
            "fingerprint": ctx.fp,
            "sheets": ctx.grid.describe(),
            "summary": summarize(ctx.grid),
            "max_operations": ctx.max_operations,
        }

    env = success_envelope("inspect", result, target=ctx.target(), duration_ms=t.elapsed_ms)
    env.warnings = [WarningDetail(code="POLICY_SKIPPED", message=w) for w in ctx.policy_warnings]
    _emit(env)


# ---------------------------------------------------------------------------
# xlagent create
# ---------------------------------------------------------------------------
@app.command()
def create(
    file: FilePath,
    sheets: Annotated[Optional[str], typer.Option("--sheets", help="Comma-separated sheet names (e.g. 'Revenue,Summary')")] = None,
    force: Annotated[bool, typer.Option("--force", help="Overwrite file if it already exists")] = False,
):
    """Create a new empty workbook.

    Example: `xlagent create -f report.xlsx --sheets Revenue,Summary`
    """
    from xlagent.engine.context import create_workbook
    from xlagent.io.fileops import fingerprint

    p = Path(file).resolve()
    sheet_list = [s.strip() for s in sheets.split(",") if s.strip()] if sheets else None

    with Timer() as t:
        if p.exists() and not force:
            _emit(error_envelope(
                "create", "ERR_FILE_EXISTS",
                f"File already exists: {p}. Use --force to overwrite.",
                target=Target(file=file),
            ))
        if p.exists() and force:
            p.unlink()
        try:
            create_workbook(p, sheet_list)
        except (SaveError, OSError, ValueError) as e:
            _emit(error_envelope("create", error_code_for(e), str(e), target=Target(file=file)))

    result = {
        "path": str(p),
        "fingerprint": fingerprint(p),
        "sheets": sheet_list or ["Sheet1"],
    }
    _emit(success_envelope("create", result, target=Target(file=file), duration_ms=t.elapsed_ms))


# ---------------------------------------------------------------------------
# xlagent parse
# ---------------------------------------------------------------------------
@app.command()
def parse(
    ops: OpsText = None,
    ops_file: OpsFile = None,
):
    """Parse operation text without a workbook and show what it means.

    Example: `xlagent parse --ops "SetCell Sheet1 A1 = 5"`
    """
    from xlagent.engine.parser import parse_operations

    text = _read_ops("parse", ops, ops_file)
    with Timer() as t:
        parsed = parse_operations(text)
    result = {
        "operations": [op.model_dump(mode="json") for op in parsed.operations],
        "lines": [op.to_line() for op in parsed.operations],
        "errors": [e.model_dump() for e in parsed.errors],
    }
    if not parsed.operations:
        _emit(error_envelope(
            "parse", "ERR_NO_OPERATIONS", "No operations were recognised",
            result=result, duration_ms=t.elapsed_ms,
        ))
    env = success_envelope("parse", result, duration_ms=t.elapsed_ms)
    env.warnings = [
        WarningDetail(code="PARSE_ERROR", message=e.reason, path=f"line {e.line_no}") for e in parsed.errors
    ]
    _emit(env)


# ---------------------------------------------------------------------------
# xlagent ops
# ---------------------------------------------------------------------------
@app.command("ops")
def ops_cmd(
    file: FilePath,
    ops: OpsText = None,
    ops_file: OpsFile = None,
    dry_run: DryRun = False,
    backup: BackupOpt = False,
    policy: PolicyOpt = None,
    lock_timeout: LockTimeout = 0,
    events: EventsOpt = False,
    trace: TraceOpt = None,
):
    """Apply operation text to a workbook. Mutating.

    Each line is validated against the workbook as left by the lines before
    it. Valid lines are applied; the rest are reported with a reason.

    Example: `xlagent ops -f data.xlsx --ops "InsertRow Sheet1 0"`

    Example: `xlagent ops -f data.xlsx --ops-file plan.txt --dry-run`
    """
    text = _read_ops("ops", ops, ops_file)
    settings = _settings_or_emit("ops")
    _run_session(
        "ops", file, lambda session: session.apply_text(text, dry_run=dry_run),
        settings=settings, policy=policy, dry_run=dry_run, backup=backup,
        lock_timeout=lock_timeout, events=events, trace=trace,
    )


# ---------------------------------------------------------------------------
# xlagent write
# ---------------------------------------------------------------------------
def build_write_ops(sheet_name: str, rows: int, columns: int, anchor: tuple[int, int], data: str) -> str:
    """Operation text writing ``a,b;c,d`` data at ``anchor``, growing the sheet first."""
    from xlagent.contracts.cells import CellRange
    from xlagent.contracts.operations import InsertColumn, InsertRow, SetRange
    from xlagent.engine.parser import parse_matrix

    matrix = parse_matrix(data)
    width = len(matrix[0])
    first_row, first_col = anchor
    last_row, last_col = first_row + len(matrix) - 1, first_col + width - 1

    ops: list = []
    if last_row >= rows:
        ops.append(InsertRow(sheet=sheet_name, index=rows, count=last_row - rows + 1))
    if last_col >= columns:
        ops.append(InsertColumn(sheet=sheet_name, index=columns, count=last_col - columns + 1))
    rng = CellRange(first_row=first_row, first_col=first_col, last_row=last_row, last_col=last_col)
    ops.append(SetRange(sheet=sheet_name, range=rng, values=tuple(tuple(r) for r in matrix)))
    return "\n".join(op.to_line() for op in ops)


@app.command()
def write(
    file: FilePath,
    data: Annotated[str, typer.Option("--data", "-d", help="Rows separated by ';', columns by ',' (e.g. 'Name,Qty;Apple,3')")],
    sheet: Annotated[Optional[str], typer.Option("--sheet", "-s", help="Target sheet (default: first sheet)")] = None,
    at: Annotated[str, typer.Option("--at", help="Top-left cell to write at")] = "A1",
    append: Annotated[bool, typer.Option("--append", help="Write below the last row instead of at --at")] = False,
    dry_run: DryRun = False,
    backup: BackupOpt = False,
    policy: PolicyOpt = None,
    lock_timeout: LockTimeout = 0,
    events: EventsOpt = False,
    trace: TraceOpt = None,
):
    """Write a block of data, inserting rows/columns first when it does not fit. Mutating.

    Example: `xlagent write -f data.xlsx -d "Region,Sales;North,1000"`

    Example: `xlagent write -f data.xlsx -s Sales -d "West,800" --append`
    """
    from xlagent.adapters.openpyxl_engine import load_grid
    from xlagent.engine.parser import parse_cell_ref

    path = _require_file("write", file)
    settings = _settings_or_emit("write")
    try:
        grid = load_grid(path.read_bytes())
    except (LoadError, OSError) as e:
        _emit(error_envelope("write", error_code_for(e), str(e), target=Target(file=file)))
    target_sheet = grid.find(sheet) if sheet else next(iter(grid), None)
    if target_sheet is None:
        _emit(error_envelope(
            "write", "ERR_SHEET_NOT_FOUND", f"Sheet not found: {sheet or '(none)'}",
            target=Target(file=file, sheet=sheet),
        ))
    try:
        anchor = parse_cell_ref(at)
        if append:
            used = target_sheet.non_empty_positions()
            anchor = ((used[-1][0] + 1) if used else 0, anchor[1])
        text = build_write_ops(
            target_sheet.name, target_sheet.row_count, target_sheet.column_count, anchor, data,
        )
    except ValueError as e:
        _emit(error_envelope("write", "ERR_INVALID_ARGUMENT", str(e), target=Target(file=file)))

    _run_session(
        "write", file, lambda session: session.apply_text(text, dry_run=dry_run),
        settings=settings, policy=policy, dry_run=dry_run, backup=backup,
        lock_timeout=lock_timeout, events=events, trace=trace,
    )


# ---------------------------------------------------------------------------
# xlagent ask
# ---------------------------------------------------------------------------
@app.command()
def ask(
    file: FilePath,
    instruction: Annotated[str, typer.Argument(help="What to do with the workbook, in plain language")],
    dry_run: DryRun = False,
    backup: BackupOpt = False,
    policy: PolicyOpt = None,
    lock_timeout: LockTimeout = 0,
    events: EventsOpt = False,
    trace: TraceOpt = None,
    model: Annotated[Optional[str], typer.Option("--model", help="Model name (overrides XLAGENT_MODEL)")] = None,
):
    """Send one instruction to the model and apply the operations it proposes. Mutating.

    Example: `xlagent ask -f data.xlsx "make the header row bold"`
    """
    settings = _settings_or_emit("ask")
    if model:
        settings.model = model
    _require_file("ask", file)
    try:
        client = _make_client(settings)
    except ClientError as e:
        _emit(error_envelope("ask", "ERR_MODEL_CLIENT", str(e), target=Target(file=file)))

    _run_session(
        "ask", file, lambda session: session.handle(instruction, dry_run=dry_run),
        settings=settings, policy=policy, dry_run=dry_run, backup=backup,
        lock_timeout=lock_timeout, events=events, trace=trace, client=client,
    )


# ---------------------------------------------------------------------------
# xlagent chat
# ---------------------------------------------------------------------------
async def _chat_loop(ctx: Any, session: Any, *, backup: bool) -> None:
    """Serve stdin lines as instructions until EOF or an exit word."""
    from xlagent.engine.grid import summarize

    loop = asyncio.get_running_loop()
    try:
        while True:
            raw = await loop.run_in_executor(None, sys.stdin.readline)
            if not raw:
                break
            line = raw.strip()
            if not line:
                continue
            if line.lower() in ("exit", "quit", "salir"):
                break
            if line.lower() in ("help", "ayuda"):
                typer.echo(_CHAT_HELP, err=True)
                continue
            if line.lower() == "summary":
                print_response(success_envelope("chat", {"summary": summarize(ctx.grid)}))
                continue
            with Timer() as t:
                result = await session.handle(line)
                saved = ctx.save(make_backup=backup) if result.ok and result.applied else None
            env = session_envelope("chat", result, target=ctx.target(), duration_ms=t.elapsed_ms)
            env.result["saved"] = saved
            print_response(env)
    finally:
        await session.client.close()


@app.command()
def chat(
    file: FilePath,
    policy: PolicyOpt = None,
    backup: BackupOpt = False,
    events: EventsOpt = False,
):
    """Interactive loop: each line is an instruction applied and saved in turn.

    Type `help` for commands and `exit` to leave. Every turn prints an envelope.

    Example: `xlagent chat -f data.xlsx`
    """
    from xlagent.engine.context import DocumentContext
    from xlagent.engine.session import SessionController

    path = _require_file("chat", file)
    settings = _settings_or_emit("chat")
    loaded_policy = _load_policy_or_emit("chat", policy)
    try:
        client = _make_client(settings)
    except ClientError as e:
        _emit(error_envelope("chat", "ERR_MODEL_CLIENT", str(e), target=Target(file=file)))

    emitter = EventEmitter(enabled=events or settings.events).bind(command="chat", file=str(path))
    try:
        with WorkbookLock(path):
            ctx = DocumentContext(path, policy=loaded_policy)
            session = SessionController(
                ctx.grid, client, emitter=emitter,
                max_operations=ctx.max_operations or settings.max_operations,
            )
            typer.echo(_CHAT_HELP, err=True)
            asyncio.run(_chat_loop(ctx, session, backup=backup))
    except portalocker.LockException:
        _emit(_lock_held_envelope("chat", path, Target(file=file)))
    except PolicyError as e:
        _emit(error_envelope("chat", "ERR_POLICY_INVALID", str(e)))
    except (LoadError, SaveError, OSError) as e:
        _emit(error_envelope("chat", error_code_for(e), str(e), target=Target(file=file)))
    raise typer.Exit(0)


# ---------------------------------------------------------------------------
# xlagent serve
# ---------------------------------------------------------------------------
@app.command("serve")
def serve_cmd(
    events: EventsOpt = False,
):
    """Start the stdio server for agent tool integration.

    Reads JSON commands from stdin and writes JSON responses to stdout.
    Each line is a JSON object: `{"id": "1", "command": "apply_ops", "args": {"file": "data.xlsx", "text": "..."}}`

    Commands: `summary`, `parse`, `apply_ops`, `instruct`, `save`, `close`.

    Example: `xlagent serve`
    """
    from xlagent.server.stdio import StdioServer

    settings = _settings_or_emit("serve")
    server = StdioServer(
        lambda: _make_client(settings),
        emitter=EventEmitter(enabled=events or settings.events),
        max_operations=settings.max_operations,
    )
    server.run()


# ---------------------------------------------------------------------------
# Entrypoint (for `python -m xlagent`)
# ---------------------------------------------------------------------------
def main() -> None:
    try:
        app()
    except SystemExit:
        raise
    except Exception as exc:
        # Any unhandled exception still reaches the caller as a JSON envelope.
        env = error_envelope("unknown", "ERR_INTERNAL", str(exc))
        print_response(env)
        raise SystemExit(90) from exc


if __name__ == "__main__":
    main()
