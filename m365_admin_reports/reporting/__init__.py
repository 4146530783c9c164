"""Reporting package — sorting, delimited export, previews, pivots, retention."""

from .csv_export import SortKey, export_report, row_columns, sort_rows, write_rows
from .pivot import PivotSpec, PivotTable, pivot_rows
from .retention import prune_old_files

__all__ = [
    "SortKey",
    "export_report",
    "row_columns",
    "sort_rows",
    "write_rows",
    "PivotSpec",
    "PivotTable",
    "pivot_rows",
    "prune_old_files",
]
