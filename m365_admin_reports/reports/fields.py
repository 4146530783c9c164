"""
Field helpers shared by the row shapers.
"""

from __future__ import annotations

import re
from datetime import datetime, timezone
from typing import Any, Optional

_MS_DATE = re.compile(r"^/Date\((-?\d+)([+-]\d{4})?\)/$")
_FRACTION = re.compile(r"\.(\d+)")


def parse_timestamp(value: Any) -> Optional[datetime]:
    """
    Parse Graph/Exchange timestamps into aware datetimes.
    Handles ISO-8601 with 'Z' or an offset, 7-digit fractions and /Date(ms)/.
    Returns None for absent or unparsable values.
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    if not isinstance(value, str):
        return None

    text = value.strip()
    ms = _MS_DATE.match(text)
    if ms:
        return datetime.fromtimestamp(int(ms.group(1)) / 1000, tz=timezone.utc)

    if text.endswith("Z") or text.endswith("z"):
        text = text[:-1] + "+00:00"
    # fromisoformat accepts at most 6 fractional digits
    text = _FRACTION.sub(lambda m: "." + m.group(1)[:6].ljust(6, "0"), text, count=1)
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        return None
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


def odata_type_name(record: dict) -> str:
    """'#microsoft.graph.user' -> 'user'."""
    return (record.get("@odata.type") or "").split(".")[-1]


def join_values(values: Any, sep: str = "; ") -> Optional[str]:
    """Flatten a list-valued property into one cell; None when empty."""
    if values is None:
        return None
    if isinstance(values, str):
        return values or None
    items = [str(v) for v in values if v not in (None, "")]
    return sep.join(items) if items else None


def as_list(value: Any) -> list:
    """Normalize scalar / list / None into a list."""
    if value is None:
        return []
    if isinstance(value, (list, tuple)):
        return list(value)
    return [value]


def first_present(*values: Any) -> Any:
    for v in values:
        if v not in (None, ""):
            return v
    return None
