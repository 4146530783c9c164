"""
Mailbox Permission Report
Delegated full-access style permissions on mailboxes, trustees resolved to
display name and SMTP address. Self and deny entries are excluded.
"""

from __future__ import annotations

import argparse
import logging
from dataclasses import dataclass
from typing import Any, Iterable, Iterator, Optional

from ..cache.lookup import LookupCache, recipient_cache
from ..graph.client import GraphAPIError
from ..reporting.csv_export import SortKey
from .base import BaseReport, ReportResult, TargetNotFoundError
from .fields import join_values
from .filters import Guard, Predicate, field_present

logger = logging.getLogger("m365_admin_reports.reports.mailbox_permissions")

SELF_TRUSTEES = {"nt authority\\self", "s-1-5-10"}


@dataclass
class MailboxPermissionRow:
    mailbox_display_name: Optional[str]
    mailbox_address: Optional[str]
    trustee_display_name: Optional[str]
    trustee_address: Optional[str]
    trustee_type: Optional[str]
    access_rights: Optional[str]
    is_inherited: Optional[bool]
    trustee: Optional[str]


def _trustee(record: dict) -> Optional[str]:
    perm = record["permission"]
    return perm.get("User") or perm.get("Trustee")


class MailboxPermissionReport(BaseReport):
    name = "mailbox-permissions"
    description = "Delegated mailbox permissions with trustees resolved"
    row_type = MailboxPermissionRow
    sort_keys = [SortKey("mailbox_address"), SortKey("trustee_display_name")]
    services = ("exchange",)

    def __init__(
        self,
        exchange=None,
        mailbox: Optional[str] = None,
        include_inherited: bool = False,
        recipients: Optional[LookupCache] = None,
        graph=None,
    ):
        super().__init__(graph=graph, exchange=exchange)
        self.mailbox = mailbox
        self.recipients = recipients or recipient_cache(exchange)
        self.predicate = Predicate(
            field_present("trustee", _trustee),
            Guard("not_self", lambda r: str(_trustee(r)).lower() not in SELF_TRUSTEES),
            Guard("not_deny", lambda r: r["permission"].get("Deny") is not True),
            Guard(
                "inheritance_matches",
                lambda r: include_inherited or r["permission"].get("IsInherited") is not True,
            ),
        )

    @classmethod
    def add_arguments(cls, parser: argparse.ArgumentParser):
        parser.add_argument("--mailbox", help="Only this mailbox (SMTP address, UPN or alias)")
        parser.add_argument("--include-inherited", action="store_true", help="Include inherited permissions")

    @classmethod
    def options_from_args(cls, args: argparse.Namespace) -> dict[str, Any]:
        return {"mailbox": args.mailbox, "include_inherited": args.include_inherited}

    def caches(self) -> list[LookupCache]:
        return [self.recipients]

    def fetch(self, result: ReportResult) -> Iterable[dict]:
        mailboxes = self.exchange.get_mailboxes(self.mailbox)
        if self.mailbox and not mailboxes:
            raise TargetNotFoundError(f"Mailbox not found: {self.mailbox}")
        return self._permissions(mailboxes, result)

    def _permissions(self, mailboxes: list[dict], result: ReportResult) -> Iterator[dict]:
        for mailbox in mailboxes:
            address = mailbox.get("PrimarySmtpAddress") or mailbox.get("UserPrincipalName")
            try:
                permissions = self.exchange.invoke("Get-MailboxPermission", {"Identity": address})
            except GraphAPIError as e:
                result.add_warning(f"Could not read permissions for {address}: {e}")
                continue
            for permission in permissions:
                yield {"mailbox": mailbox, "permission": permission}

    def shape(self, record: dict, result: ReportResult) -> list[MailboxPermissionRow]:
        if not self.passes(record, result):
            return []

        mailbox = record["mailbox"]
        permission = record["permission"]
        trustee = _trustee(record)
        identity = self.recipients.resolve(trustee)
        return [MailboxPermissionRow(
            mailbox_display_name=mailbox.get("DisplayName"),
            mailbox_address=mailbox.get("PrimarySmtpAddress") or mailbox.get("UserPrincipalName"),
            trustee_display_name=identity.display_name,
            trustee_address=identity.primary_address or None,
            trustee_type=identity.object_type or None,
            access_rights=join_values(permission.get("AccessRights")),
            is_inherited=permission.get("IsInherited"),
            trustee=trustee,
        )]
