"""DocumentContext: loads a workbook file into a Grid Model and saves it back."""

from __future__ import annotations

from pathlib import Path

from xlagent.adapters.openpyxl_engine import load_grid, save_grid
from xlagent.contracts.common import FingerprintConflictError, LoadError, Target
from xlagent.engine.grid import GridModel, Sheet
from xlagent.io.fileops import atomic_write, backup, fingerprint, fingerprint_bytes, read_snapshot
from xlagent.validation.policy import Policy


def create_workbook(path: str | Path, sheets: list[str] | None = None) -> Path:
    """Create a new workbook file. Raises FileExistsError if path exists."""
    p = Path(path).resolve()
    if p.exists():
        raise FileExistsError(f"File already exists: {p}")
    grid = GridModel(Sheet(name, 1, 1) for name in (sheets or ["Sheet1"]))
    atomic_write(p, save_grid(grid))
    return p


class DocumentContext:
    """One workbook file held as a Grid Model, with its load-time fingerprint."""

    def __init__(
        self,
        path: str | Path,
        *,
        policy: Policy | None = None,
        discover_policy: bool = True,
    ) -> None:
        self.path = Path(path).resolve()
        if not self.path.exists():
            raise FileNotFoundError(f"Workbook not found: {self.path}")
        try:
            snapshot = read_snapshot(self.path)
        except OSError as e:
            raise LoadError(f"Cannot read workbook {self.path}: {e}") from e
        self.fp = snapshot.fingerprint
        self.grid: GridModel = load_grid(snapshot.data)
        if policy is None and discover_policy:
            policy = Policy.load_from_dir(self.path.parent)
        self.policy = policy
        self.policy_warnings: list[str] = policy.apply(self.grid) if policy else []

    @property
    def max_operations(self) -> int | None:
        return self.policy.max_operations if self.policy else None

    def target(self, **overrides: str | None) -> Target:
        t = Target(file=str(self.path))
        for k, v in overrides.items():
            if v is not None:
                setattr(t, k, v)
        return t

    def save(self, path: str | Path | None = None, *, make_backup: bool = False) -> dict:
        """Write the grid back out. Returns save info (path, fingerprint, backup).

        Saving over the source file is refused when that file changed on
        disk since it was loaded.
        """
        dest = Path(path).resolve() if path else self.path
        backup_path = None
        if dest == self.path and dest.exists():
            current = fingerprint(dest)
            if current != self.fp:
                raise FingerprintConflictError(
                    f"{dest} changed since it was loaded (expected {self.fp}, found {current})"
                )
            if make_backup:
                backup_path = backup(dest)
        data = save_grid(self.grid)
        atomic_write(dest, data)
        new_fp = fingerprint_bytes(data)
        if dest == self.path:
            self.fp = new_fp
        return {"path": str(dest), "fingerprint": new_fp, "backup": backup_path}
