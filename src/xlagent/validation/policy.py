"""Policy engine — load xlagent-policy.yaml rules and apply them to a grid."""

from __future__ import annotations

from pathlib import Path
from typing import Any

import yaml

from xlagent.contracts.cells import VALUE_KINDS, StylePatch
from xlagent.engine.grid import GridModel
from xlagent.io.fileops import read_text_safe

POLICY_FILENAME = "xlagent-policy.yaml"


class PolicyError(ValueError):
    """Raised when a policy file is malformed."""


class Policy:
    """Represents a loaded policy configuration.

    Example::

        locked_ranges:
          - "Summary!A1:D1"
        column_types:
          Sales:
            B: number
            C: text
        header_rows:
          Sales: 1
        max_operations: 50
    """

    def __init__(self, data: dict[str, Any]) -> None:
        self.locked_ranges: list[str] = list(data.get("locked_ranges") or [])
        self.column_types: dict[str, dict[str, str]] = dict(data.get("column_types") or {})
        self.header_rows: dict[str, int] = dict(data.get("header_rows") or {})
        self.max_operations: int | None = data.get("max_operations")
        self._check()

    def _check(self) -> None:
        for sheet, columns in self.column_types.items():
            if not isinstance(columns, dict):
                raise PolicyError(f"column_types.{sheet} must be a mapping of column to kind")
            for column, kind in columns.items():
                if kind not in VALUE_KINDS:
                    raise PolicyError(
                        f"column_types.{sheet}.{column}: unknown kind '{kind}' "
                        f"(expected one of {', '.join(VALUE_KINDS)})"
                    )
        for sheet, rows in self.header_rows.items():
            if not isinstance(rows, int) or rows < 0:
                raise PolicyError(f"header_rows.{sheet} must be a non-negative integer")
        if self.max_operations is not None and (
            not isinstance(self.max_operations, int) or self.max_operations < 1
        ):
            raise PolicyError("max_operations must be a positive integer")

    @classmethod
    def load(cls, path: str | Path) -> "Policy":
        """Load policy from a YAML file."""
        text = read_text_safe(path)
        try:
            data = yaml.safe_load(text) or {}
        except yaml.YAMLError as e:
            raise PolicyError(f"Invalid policy file {path}: {e}") from e
        if not isinstance(data, dict):
            raise PolicyError(f"Invalid policy file {path}: expected a mapping")
        return cls(data)

    @classmethod
    def load_from_dir(cls, directory: str | Path) -> "Policy | None":
        """Try to load xlagent-policy.yaml from a directory. Returns None if not found."""
        path = Path(directory) / POLICY_FILENAME
        if path.exists():
            return cls.load(path)
        return None

    def apply(self, grid: GridModel) -> list[str]:
        """Install column types, header rows and locks on the grid's sheets.

        Rules naming sheets the grid does not have are skipped; the skipped
        rules are returned so callers can surface them as warnings.
        """
        from xlagent.engine.parser import ParseFailure, parse_column_index, parse_range_ref

        skipped: list[str] = []
        for sheet_name, columns in self.column_types.items():
            sheet = grid.find(sheet_name)
            if sheet is None:
                skipped.append(f"column_types.{sheet_name}")
                continue
            for column, kind in columns.items():
                try:
                    sheet.column_types[parse_column_index(str(column))] = kind
                except ParseFailure as e:
                    raise PolicyError(f"column_types.{sheet_name}: {e}") from e

        for sheet_name, rows in self.header_rows.items():
            sheet = grid.find(sheet_name)
            if sheet is None:
                skipped.append(f"header_rows.{sheet_name}")
                continue
            sheet.header_rows = rows

        for ref in self.locked_ranges:
            sheet_name, _, cells = ref.rpartition("!")
            sheet = grid.find(sheet_name.strip("'")) if sheet_name else None
            if sheet is None:
                skipped.append(f"locked_ranges: {ref}")
                continue
            try:
                rng = parse_range_ref(cells)
            except ParseFailure as e:
                raise PolicyError(f"locked_ranges: {e}") from e
            if not sheet.in_bounds(rng):
                skipped.append(f"locked_ranges: {ref}")
                continue
            sheet.apply_format(rng, StylePatch(locked=True))
        return skipped
