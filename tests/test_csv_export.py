import csv
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

from m365_admin_reports.reporting.csv_export import SortKey, export_report, row_columns, sort_rows


@dataclass
class Row:
    name: Optional[str]
    seen: Optional[datetime]
    count: Optional[int]
    note: Optional[str] = None


def ts(day):
    return datetime(2025, 1, day, tzinfo=timezone.utc)


def read_csv(path, delimiter=","):
    with open(path, newline="", encoding="utf-8-sig") as fh:
        return list(csv.reader(fh, delimiter=delimiter))


def test_descending_sort_puts_none_last():
    rows = [Row("a", ts(2), 1), Row("b", None, 2), Row("c", ts(5), 3), Row("d", ts(1), 4)]

    ordered = sort_rows(rows, [SortKey("seen", descending=True)])

    assert [r.name for r in ordered] == ["c", "a", "d", "b"]


def test_ascending_sort_puts_none_last():
    rows = [Row(None, None, 1), Row("b", None, 2), Row("a", None, 3)]

    assert [r.count for r in sort_rows(rows, [SortKey("name")])] == [3, 2, 1]


def test_multi_key_sort_is_stable():
    rows = [
        Row("x", None, 2, "first"),
        Row("x", None, 1, "second"),
        Row("y", None, 1, "third"),
        Row("x", None, 2, "fourth"),
    ]

    ordered = sort_rows(rows, [SortKey("name"), SortKey("count", descending=True)])

    assert [r.note for r in ordered] == ["first", "fourth", "second", "third"]


def test_sort_compares_numbers_numerically():
    rows = [Row("a", None, 10), Row("b", None, 9), Row("c", None, 100)]

    assert [r.count for r in sort_rows(rows, [SortKey("count")])] == [9, 10, 100]


def test_empty_collection_writes_no_file(tmp_path, capsys):
    path = tmp_path / "report.csv"

    written = export_report([], row_columns(Row), [], 10, path, title="mobile-devices")

    assert written is None
    assert not path.exists()
    assert "No matching records for mobile-devices" in capsys.readouterr().out


def test_all_columns_written_even_when_empty(tmp_path):
    path = tmp_path / "out" / "report.csv"
    rows = [Row("b", ts(3), 2), Row("a", None, None)]

    written = export_report(rows, row_columns(Row), [SortKey("name")], 0, path)

    assert written == path
    lines = read_csv(path)
    assert lines[0] == ["name", "seen", "count", "note"]
    assert lines[1] == ["a", "", "", ""]
    assert lines[2] == ["b", "2025-01-03T00:00:00+00:00", "2", ""]


def test_custom_delimiter(tmp_path):
    path = tmp_path / "report.csv"

    export_report([Row("a;b", None, 1)], row_columns(Row), [], 0, path, delimiter=";")

    assert read_csv(path, delimiter=";") == [["name", "seen", "count", "note"], ["a;b", "", "1", ""]]


def test_preview_shows_bounded_rows(tmp_path, capsys):
    rows = [Row(f"user{i:02d}", None, i) for i in range(25)]

    export_report(rows, row_columns(Row), [SortKey("name")], 3, tmp_path / "r.csv", title="demo")

    out = capsys.readouterr().out
    assert "first 3 of 25 rows" in out
    assert "user02" in out
    assert "user03" not in out
    assert len(read_csv(tmp_path / "r.csv")) == 26


def test_zero_preview_prints_nothing(tmp_path, capsys):
    export_report([Row("a", None, 1)], row_columns(Row), [], 0, tmp_path / "r.csv")

    assert capsys.readouterr().out == ""
