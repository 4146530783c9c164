"""
Console output — bounded row previews and tagged status lines.
"""

from __future__ import annotations

from typing import Any, Sequence

from .cells import format_cell, row_value

MAX_COLUMN_WIDTH = 32

TAGS = {
    "info": "ℹ ",
    "ok": "✅",
    "warning": "⚠ ",
    "error": "❌",
}


def notice(level: str, message: str) -> None:
    """Print a tagged status line (info / ok / warning / error)."""
    print(f"  {TAGS.get(level, '  ')} {message}")


def print_no_records(title: str = "") -> None:
    label = f" for {title}" if title else ""
    notice("info", f"No matching records{label}. No file written.")


def _clip(text: str, width: int) -> str:
    return text if len(text) <= width else text[: width - 1] + "…"


def print_preview(rows: Sequence[Any], columns: Sequence[str], total: int = 0, title: str = "") -> None:
    """Print the given rows as a fixed-width table."""
    cells = [[str(format_cell(row_value(r, c))) for c in columns] for r in rows]
    widths = [
        min(MAX_COLUMN_WIDTH, max([len(c)] + [len(row[i]) for row in cells]))
        for i, c in enumerate(columns)
    ]

    shown = f"first {len(rows)} of {total}" if total and total > len(rows) else f"{len(rows)}"
    print(f"\n  {title or 'Report'} — {shown} rows")
    print("  " + " ".join(f"{_clip(c, w):<{w}s}" for c, w in zip(columns, widths)))
    print("  " + " ".join("─" * w for w in widths))
    for row in cells:
        print("  " + " ".join(f"{_clip(v, w):<{w}s}" for v, w in zip(row, widths)))
    print()
