from m365_admin_reports.reporting.pivot import pivot_rows


def test_marks_every_category_per_entity():
    rows = [
        {"user": "adele", "role": "Global Administrator"},
        {"user": "adele", "role": "User Administrator"},
        {"user": "megan", "role": "User Administrator"},
    ]

    table = pivot_rows(rows, ["user"], "role", mark="Eligible")

    assert table.columns == ["user", "Global Administrator", "User Administrator"]
    assert table.rows == [
        {"user": "adele", "Global Administrator": "Eligible", "User Administrator": "Eligible"},
        {"user": "megan", "Global Administrator": None, "User Administrator": "Eligible"},
    ]


def test_counts_default_to_zero():
    rows = [
        {"upn": "a@contoso.com", "method": "phone"},
        {"upn": "a@contoso.com", "method": "fido2"},
        {"upn": "a@contoso.com", "method": "fido2"},
        {"upn": "b@contoso.com", "method": None},
    ]

    table = pivot_rows(rows, ["upn"], "method", count=True)

    assert table.columns == ["upn", "fido2", "phone"]
    assert table.rows == [
        {"upn": "a@contoso.com", "fido2": 2, "phone": 1},
        {"upn": "b@contoso.com", "fido2": 0, "phone": 0},
    ]


def test_every_row_has_uniform_columns():
    rows = [{"k": i, "c": f"cat{i}"} for i in range(5)]

    table = pivot_rows(rows, ["k"], "c")

    assert all(list(row) == table.columns for row in table.rows)


def test_empty_input():
    table = pivot_rows([], ["k"], "c")

    assert table.columns == ["k"]
    assert table.rows == []
