"""Workbook file handling: fingerprints, backups, atomic replacement and the sidecar lock.

A workbook goes through one read-modify-write cycle per command. The file is
read once (``read_snapshot``), its fingerprint is kept, and the new content
replaces it atomically only if the fingerprint still matches.
"""

from __future__ import annotations

import hashlib
import os
import shutil
import tempfile
import time
from datetime import datetime, timezone
from pathlib import Path
from typing import IO, NamedTuple

import portalocker

LOCK_SUFFIX = ".xlagent.lock"
TEMP_PREFIX = ".xlagent_tmp_"


class FileSnapshot(NamedTuple):
    data: bytes
    fingerprint: str


def fingerprint_bytes(data: bytes) -> str:
    return f"sha256:{hashlib.sha256(data).hexdigest()}"


def fingerprint(path: str | Path) -> str:
    """SHA-256 fingerprint of a file's current content."""
    h = hashlib.sha256()
    with open(path, "rb") as f:
        for chunk in iter(lambda: f.read(65536), b""):
            h.update(chunk)
    return f"sha256:{h.hexdigest()}"


def read_snapshot(path: str | Path) -> FileSnapshot:
    data = Path(path).read_bytes()
    return FileSnapshot(data, fingerprint_bytes(data))


def backup(path: str | Path) -> str:
    """Copy ``book.xlsx`` to ``book.<UTC timestamp>.bak.xlsx``. Returns the copy's path."""
    path = Path(path)
    stamp = datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%SZ")
    dest = path.with_name(f"{path.stem}.{stamp}.bak{path.suffix}")
    shutil.copy2(path, dest)
    return str(dest)


def atomic_write(target: str | Path, data: bytes) -> None:
    """Replace ``target`` with ``data`` so readers see the old file or the new one, never a mix."""
    target = Path(target)
    fd, tmp = tempfile.mkstemp(dir=target.parent, prefix=TEMP_PREFIX, suffix=target.suffix)
    try:
        with os.fdopen(fd, "wb") as f:
            f.write(data)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp, target)
    except BaseException:
        Path(tmp).unlink(missing_ok=True)
        raise


def read_text_safe(path: str | Path) -> str:
    """Read a text file, dropping a leading UTF-8 BOM when present."""
    return Path(path).read_text(encoding="utf-8-sig")


# ---------------------------------------------------------------------------
# Locking
# ---------------------------------------------------------------------------
def lock_path_for(workbook_path: str | Path) -> Path:
    path = Path(workbook_path).resolve()
    return path.with_name(path.name + LOCK_SUFFIX)


def lock_holder(workbook_path: str | Path) -> dict[str, str]:
    """``key=value`` lines the current holder wrote into the sidecar, if readable."""
    try:
        text = lock_path_for(workbook_path).read_text()
    except OSError:
        return {}
    holder = {}
    for line in text.splitlines():
        key, sep, value = line.partition("=")
        if sep:
            holder[key.strip()] = value.strip()
    return holder


def _lock_once(fh: IO[str]) -> bool:
    try:
        portalocker.lock(fh, portalocker.LOCK_EX | portalocker.LOCK_NB)
    except portalocker.LockException:
        return False
    return True


class WorkbookLock:
    """Exclusive sidecar lock held for a workbook's read-modify-write cycle.

    With ``timeout`` 0 a held lock fails at once; otherwise acquisition is
    retried until the timeout runs out. Either way failure raises
    ``portalocker.LockException``. The ``<file>.xlagent.lock`` sidecar may
    outlive a crashed process, but the OS releases the lock itself, so a
    stale file is simply re-acquired.
    """

    def __init__(self, workbook_path: str | Path, *, timeout: float = 0) -> None:
        self.workbook_path = Path(workbook_path).resolve()
        self.timeout = timeout
        self.lock_path = lock_path_for(self.workbook_path)
        self._fh: IO[str] | None = None

    def _acquire(self, fh: IO[str]) -> None:
        deadline = time.monotonic() + max(self.timeout, 0)
        interval = min(0.1, max(0.01, self.timeout / 20))
        while not _lock_once(fh):
            if time.monotonic() >= deadline:
                raise portalocker.LockException(f"{self.workbook_path} is locked by another process")
            time.sleep(interval)

    def __enter__(self) -> "WorkbookLock":
        fh = open(self.lock_path, "a+")  # noqa: SIM115
        try:
            self._acquire(fh)
        except BaseException:
            fh.close()
            raise
        fh.seek(0)
        fh.truncate()
        fh.write(f"pid={os.getpid()}\ntime={datetime.now(timezone.utc).isoformat()}\n")
        fh.flush()
        self._fh = fh
        return self

    def __exit__(self, *exc: object) -> None:
        if self._fh is None:
            return
        try:
            portalocker.unlock(self._fh)
        finally:
            self._fh.close()
            self._fh = None
