"""
Cell access and formatting shared by the CSV writer and console preview.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any


def row_value(row: Any, column: str) -> Any:
    """Column value of a row dataclass or a pivot dict."""
    if isinstance(row, dict):
        return row.get(column)
    return getattr(row, column, None)


def format_cell(value: Any) -> Any:
    """Scalar representation of a row value for CSV and console output."""
    if value is None:
        return ""
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, (list, tuple, set)):
        return "; ".join(str(v) for v in value)
    return value
