from m365_admin_reports.reports.filters import (
    Guard,
    Predicate,
    category_matches,
    parse_version,
    version_below,
    version_guards,
)


def test_parse_version():
    assert parse_version("16.1") == (16, 1)
    assert parse_version(" 14.0.3 ") == (14, 0, 3)
    assert parse_version("not-a-version") is None
    assert parse_version("16.x") is None
    assert parse_version("") is None
    assert parse_version(None) is None


def test_version_below_compares_leading_parts():
    assert version_below((15, 9), (16, 1), parts=1)
    assert not version_below((16, 0), (16, 1), parts=1)
    assert version_below((16, 0), (16, 1), parts=0)
    assert not version_below((16, 1), (16, 1), parts=0)
    assert version_below((16,), (16, 0, 1), parts=0)


def test_client_version_example():
    records = [{"ClientVersion": v} for v in ["16.0", "16.1", "15.9", "not-a-version", None]]
    predicate = Predicate(*version_guards("client_version", lambda r: r["ClientVersion"], (16, 1), 1))

    included = [r["ClientVersion"] for r in records if predicate(r)]

    assert included == ["15.9"]


def test_guards_stop_at_first_failure():
    predicate = Predicate(*version_guards("client_version", lambda r: r.get("v"), (16, 1), 1))

    assert predicate.first_failure({}) == "client_version_present"
    assert predicate.first_failure({"v": "garbage"}) == "client_version_parses"
    assert predicate.first_failure({"v": "16.4"}) == "client_version_below_threshold"
    assert predicate.first_failure({"v": "12.0"}) is None


def test_later_guards_never_see_rejected_records():
    seen = []
    predicate = Predicate(
        Guard("present", lambda r: r.get("v") is not None),
        Guard("recorded", lambda r: seen.append(r) or True),
    )

    predicate({"v": None})
    predicate({"v": 1})

    assert seen == [{"v": 1}]


def test_category_guard_is_optional_and_case_insensitive():
    assert category_matches("type", lambda r: r, None) is None
    assert category_matches("type", lambda r: r, []) is None

    guard = category_matches("type", lambda r: r.get("t"), ["Outlook"])
    predicate = Predicate(guard)
    assert predicate({"t": "outlook"})
    assert predicate.first_failure({"t": "EAS"}) == "type_matches"
    assert predicate.names == ["type_matches"]
