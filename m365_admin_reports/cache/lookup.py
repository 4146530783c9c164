"""
Run-scoped lookup caches.
Memoizes secondary resolutions (recipient identity -> display name/SMTP,
directory object id -> display name/UPN, device -> statistics) so each
distinct key is fetched at most once per run. Nothing is persisted.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Callable, Generic, Optional, TypeVar

logger = logging.getLogger("m365_admin_reports.cache")

V = TypeVar("V")

_SMTP_IN_TEXT = re.compile(r"\[?SMTP:([^\]\s]+)\]?", re.IGNORECASE)


@dataclass(frozen=True)
class ResolvedIdentity:
    """Descriptive fields for a mailbox, recipient or directory principal."""
    display_name: str
    primary_address: str = ""
    object_type: str = ""
    resolved: bool = True


def unresolved_identity(key: str) -> ResolvedIdentity:
    """Placeholder for a failed lookup: echo the raw key as the display value."""
    return ResolvedIdentity(display_name=key or "", resolved=False)


class LookupCache(Generic[V]):
    """
    Lazily populated key -> value map with a single resolve() entry point.

    The resolver runs at most once per distinct key. A resolver failure is
    logged as a warning and the placeholder for that key is stored instead,
    so downstream shaping always has a value.
    """

    def __init__(
        self,
        name: str,
        resolver: Callable[[str], V],
        placeholder: Callable[[str], V],
    ):
        self.name = name
        self._resolver = resolver
        self._placeholder = placeholder
        self._entries: dict[str, V] = {}
        self.fetch_count = 0
        self.failure_count = 0

    def resolve(self, key: Optional[str]) -> V:
        if not key:
            return self._placeholder(key or "")
        if key in self._entries:
            return self._entries[key]

        self.fetch_count += 1
        try:
            value = self._resolver(key)
        except Exception as e:
            self.failure_count += 1
            logger.warning(f"[{self.name}] Could not resolve {key!r}: {type(e).__name__}: {e}")
            value = self._placeholder(key)

        self._entries[key] = value
        return value

    def __contains__(self, key: object) -> bool:
        return key in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def stats(self) -> dict:
        return {
            "cache": self.name,
            "entries": len(self._entries),
            "fetches": self.fetch_count,
            "failures": self.failure_count,
        }


# ─── Factories ───────────────────────────────────────────────────────────────

def recipient_cache(exchange) -> LookupCache[ResolvedIdentity]:
    """Exchange recipient identity -> display name / primary SMTP address."""

    def _resolve(identity: str) -> ResolvedIdentity:
        # Forwarding targets arrive as '"Name" [SMTP:addr]'; look up by address
        match = _SMTP_IN_TEXT.search(identity)
        lookup_key = match.group(1) if match else identity
        recipient = exchange.get_recipient(lookup_key)
        return ResolvedIdentity(
            display_name=recipient.get("DisplayName") or identity,
            primary_address=recipient.get("PrimarySmtpAddress") or "",
            object_type=recipient.get("RecipientTypeDetails") or "",
        )

    return LookupCache("recipients", _resolve, unresolved_identity)


def principal_cache(graph) -> LookupCache[ResolvedIdentity]:
    """Directory object id -> display name / UPN-or-mail / object type."""

    def _resolve(object_id: str) -> ResolvedIdentity:
        data = graph.get(
            f"directoryObjects/{object_id}",
            params={"$select": "id,displayName,userPrincipalName,mail,appId"},
        )
        if data.get("_not_found") or data.get("_forbidden"):
            raise LookupError(data.get("_error_message", "Directory object not found"))
        return ResolvedIdentity(
            display_name=data.get("displayName") or object_id,
            primary_address=data.get("userPrincipalName") or data.get("mail") or data.get("appId") or "",
            object_type=data.get("@odata.type", "").split(".")[-1],
        )

    return LookupCache("principals", _resolve, unresolved_identity)
