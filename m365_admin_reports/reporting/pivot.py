"""
Pivoted reports — one row per entity, one column per category.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Sequence

from .cells import row_value
from .csv_export import SortKey


@dataclass
class PivotSpec:
    """How a detail report is folded into its pivoted variant."""
    key_columns: list[str]
    category_column: str
    count: bool = False              # Count occurrences instead of marking
    mark: str = "Yes"
    sort_keys: list[SortKey] = field(default_factory=list)


@dataclass
class PivotTable:
    columns: list[str]
    rows: list[dict]


def pivot_rows(
    rows: Sequence[Any],
    key_columns: Sequence[str],
    category_column: str,
    count: bool = False,
    mark: str = "Yes",
) -> PivotTable:
    """
    Fold detail rows into one row per distinct key tuple.

    Category columns are the sorted distinct non-empty categories. Every
    output row carries every column: counts default to 0, marks to None.
    An entity whose only detail rows have no category still gets a row.
    """
    categories = sorted({
        str(row_value(r, category_column))
        for r in rows
        if row_value(r, category_column) not in (None, "")
    })

    entities: dict[tuple, dict] = {}
    for r in rows:
        key = tuple(row_value(r, c) for c in key_columns)
        entity = entities.get(key)
        if entity is None:
            entity = {c: row_value(r, c) for c in key_columns}
            for cat in categories:
                entity[cat] = 0 if count else None
            entities[key] = entity

        category = row_value(r, category_column)
        if category in (None, ""):
            continue
        category = str(category)
        if count:
            entity[category] += 1
        else:
            entity[category] = mark

    return PivotTable(columns=list(key_columns) + categories, rows=list(entities.values()))
