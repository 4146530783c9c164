"""
CSV exporter — Sorts report rows and writes them to a delimited file.
"""

from __future__ import annotations

import csv
import dataclasses
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Optional, Sequence

from .cells import format_cell, row_value
from .console import print_preview, print_no_records


@dataclass(frozen=True)
class SortKey:
    """One column of a sort key tuple."""
    column: str
    descending: bool = False


def row_columns(row_type: type) -> list[str]:
    """Ordered column list of a row dataclass."""
    return [f.name for f in dataclasses.fields(row_type)]


def sort_rows(rows: Sequence[Any], sort_keys: Sequence[SortKey]) -> list[Any]:
    """
    Stable multi-key sort. Values compare by their own type (str
    case-sensitively, datetime temporally, numbers numerically); None always
    sorts last regardless of direction.
    """
    ordered = list(rows)
    # Least significant key first; list.sort is stable, including reverse=True
    for key in reversed(sort_keys):
        if key.descending:
            ordered.sort(
                key=lambda r, c=key.column: (row_value(r, c) is not None, row_value(r, c)),
                reverse=True,
            )
        else:
            ordered.sort(
                key=lambda r, c=key.column: (row_value(r, c) is None, row_value(r, c)),
            )
    return ordered


def write_rows(
    rows: Sequence[Any],
    columns: Sequence[str],
    path: Path,
    delimiter: str = ",",
) -> Path:
    """Write every row, all columns, header first."""
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w", newline="", encoding="utf-8-sig") as fh:
        writer = csv.writer(fh, delimiter=delimiter)
        writer.writerow(columns)
        for row in rows:
            writer.writerow([format_cell(row_value(row, c)) for c in columns])
    return path


def export_report(
    rows: Sequence[Any],
    columns: Sequence[str],
    sort_keys: Sequence[SortKey],
    preview_count: int,
    path: Path,
    delimiter: str = ",",
    title: str = "",
) -> Optional[Path]:
    """
    Sort rows, optionally preview the first `preview_count`, and write the
    full collection to `path`.

    Returns:
        The written path, or None when there were no rows (nothing is written).
    """
    if not rows:
        print_no_records(title)
        return None

    ordered = sort_rows(rows, sort_keys)
    if preview_count > 0:
        print_preview(ordered[:preview_count], columns, total=len(ordered), title=title)
    return write_rows(ordered, columns, path, delimiter=delimiter)
