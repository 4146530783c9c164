"""
Inclusion predicates for the row shapers.

A Predicate is an ordered list of named guards. Guards run in order
(existence -> parse -> comparison -> category match) and stop at the first
failure, whose name becomes the skip reason. A comparison guard is only
reached once the value it compares is known to exist and parse.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any, Callable, Iterable, Optional

_VERSION = re.compile(r"^\s*(\d+(?:\.\d+)*)\s*$")


@dataclass(frozen=True)
class Guard:
    """A single named inclusion check."""
    name: str
    check: Callable[[Any], bool]

    def __call__(self, record: Any) -> bool:
        return bool(self.check(record))


class Predicate:
    def __init__(self, *guards: Guard):
        self.guards = [g for g in guards if g is not None]

    def first_failure(self, record: Any) -> Optional[str]:
        """Name of the first guard the record fails, or None if it passes."""
        for guard in self.guards:
            if not guard(record):
                return guard.name
        return None

    def __call__(self, record: Any) -> bool:
        return self.first_failure(record) is None

    @property
    def names(self) -> list[str]:
        return [g.name for g in self.guards]


# ─── Versions ────────────────────────────────────────────────────────────────

def parse_version(text: Any) -> Optional[tuple[int, ...]]:
    """'16.1' -> (16, 1). None for absent or unparsable input."""
    if text is None:
        return None
    match = _VERSION.match(str(text))
    if not match:
        return None
    return tuple(int(p) for p in match.group(1).split("."))


def version_below(version: tuple[int, ...], threshold: tuple[int, ...], parts: int = 0) -> bool:
    """
    Strict less-than on the leading `parts` components (all when parts <= 0).
    Missing trailing components count as zero.
    """
    width = parts if parts > 0 else max(len(version), len(threshold))
    left = (tuple(version) + (0,) * width)[:width]
    right = (tuple(threshold) + (0,) * width)[:width]
    return left < right


# ─── Guard builders ──────────────────────────────────────────────────────────

def field_present(name: str, get: Callable[[Any], Any]) -> Guard:
    return Guard(f"{name}_present", lambda r: get(r) not in (None, ""))


def field_parses(name: str, get: Callable[[Any], Any], parse: Callable[[Any], Any]) -> Guard:
    return Guard(f"{name}_parses", lambda r: parse(get(r)) is not None)


def version_guards(
    name: str,
    get: Callable[[Any], Any],
    threshold: tuple[int, ...],
    parts: int,
) -> list[Guard]:
    """present -> parses -> below threshold, in that order."""
    return [
        field_present(name, get),
        field_parses(name, get, parse_version),
        Guard(
            f"{name}_below_threshold",
            lambda r: version_below(parse_version(get(r)), threshold, parts),
        ),
    ]


def category_matches(
    name: str,
    get: Callable[[Any], Any],
    allowed: Optional[Iterable[str]],
) -> Optional[Guard]:
    """Case-insensitive membership guard; None (no guard) when allowed is empty."""
    wanted = {a.lower() for a in (allowed or []) if a}
    if not wanted:
        return None
    return Guard(
        f"{name}_matches",
        lambda r: str(get(r) or "").lower() in wanted,
    )
