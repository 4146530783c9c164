"""
Inbox Rule Report
Inbox rules across all mailboxes (or one target mailbox), with forwarding
and redirect recipients resolved to display name and SMTP address.
"""

from __future__ import annotations

import argparse
import logging
from dataclasses import dataclass
from typing import Any, Iterable, Iterator, Optional

from ..cache.lookup import LookupCache, ResolvedIdentity, recipient_cache
from ..graph.client import GraphAPIError
from ..reporting.csv_export import SortKey
from .base import BaseReport, ReportResult, TargetNotFoundError
from .fields import as_list, join_values
from .filters import Guard, Predicate

logger = logging.getLogger("m365_admin_reports.reports.inbox_rules")

FORWARDING_PROPERTIES = ("ForwardTo", "ForwardAsAttachmentTo", "RedirectTo")


@dataclass
class InboxRuleRow:
    mailbox_display_name: Optional[str]
    mailbox_address: Optional[str]
    rule_name: Optional[str]
    enabled: Optional[bool]
    priority: Optional[int]
    forward_to: Optional[str]
    forward_as_attachment_to: Optional[str]
    redirect_to: Optional[str]
    delete_message: Optional[bool]
    move_to_folder: Optional[str]
    rule_identity: Optional[str]


def _format_identity(identity: ResolvedIdentity) -> str:
    if identity.primary_address:
        return f"{identity.display_name} <{identity.primary_address}>"
    return identity.display_name


def _has_forwarding(rule: dict) -> bool:
    return any(as_list(rule.get(p)) for p in FORWARDING_PROPERTIES)


def _priority(value: Any) -> Optional[int]:
    try:
        return int(value) if value is not None else None
    except (TypeError, ValueError):
        return None


class InboxRuleReport(BaseReport):
    name = "inbox-rules"
    description = "Inbox rules per mailbox with forwarding targets resolved"
    row_type = InboxRuleRow
    sort_keys = [SortKey("mailbox_address"), SortKey("priority")]
    services = ("exchange",)

    def __init__(
        self,
        exchange=None,
        mailbox: Optional[str] = None,
        forwarding_only: bool = False,
        include_disabled: bool = False,
        recipients: Optional[LookupCache] = None,
        graph=None,
    ):
        super().__init__(graph=graph, exchange=exchange)
        self.mailbox = mailbox
        self.recipients = recipients or recipient_cache(exchange)
        guards = []
        if not include_disabled:
            guards.append(Guard("rule_enabled", lambda r: r["rule"].get("Enabled") is True))
        if forwarding_only:
            guards.append(Guard("rule_forwards", lambda r: _has_forwarding(r["rule"])))
        self.predicate = Predicate(*guards)

    @classmethod
    def add_arguments(cls, parser: argparse.ArgumentParser):
        parser.add_argument("--mailbox", help="Only this mailbox (SMTP address, UPN or alias)")
        parser.add_argument("--forwarding-only", action="store_true", help="Only rules that forward or redirect")
        parser.add_argument("--include-disabled", action="store_true", help="Include disabled rules")

    @classmethod
    def options_from_args(cls, args: argparse.Namespace) -> dict[str, Any]:
        return {
            "mailbox": args.mailbox,
            "forwarding_only": args.forwarding_only,
            "include_disabled": args.include_disabled,
        }

    def caches(self) -> list[LookupCache]:
        return [self.recipients]

    def fetch(self, result: ReportResult) -> Iterable[dict]:
        mailboxes = self.exchange.get_mailboxes(self.mailbox)
        if self.mailbox and not mailboxes:
            raise TargetNotFoundError(f"Mailbox not found: {self.mailbox}")
        return self._rules(mailboxes, result)

    def _rules(self, mailboxes: list[dict], result: ReportResult) -> Iterator[dict]:
        for mailbox in mailboxes:
            address = mailbox.get("PrimarySmtpAddress") or mailbox.get("UserPrincipalName")
            try:
                rules = self.exchange.invoke("Get-InboxRule", {"Mailbox": address})
            except GraphAPIError as e:
                result.add_warning(f"Could not read inbox rules for {address}: {e}")
                continue
            for rule in rules:
                yield {"mailbox": mailbox, "rule": rule}

    def _resolve_all(self, values: Any) -> Optional[str]:
        return join_values(
            _format_identity(self.recipients.resolve(str(v))) for v in as_list(values)
        )

    def shape(self, record: dict, result: ReportResult) -> list[InboxRuleRow]:
        if not self.passes(record, result):
            return []

        mailbox = record["mailbox"]
        rule = record["rule"]
        return [InboxRuleRow(
            mailbox_display_name=mailbox.get("DisplayName"),
            mailbox_address=mailbox.get("PrimarySmtpAddress") or mailbox.get("UserPrincipalName"),
            rule_name=rule.get("Name"),
            enabled=rule.get("Enabled"),
            priority=_priority(rule.get("Priority")),
            forward_to=self._resolve_all(rule.get("ForwardTo")),
            forward_as_attachment_to=self._resolve_all(rule.get("ForwardAsAttachmentTo")),
            redirect_to=self._resolve_all(rule.get("RedirectTo")),
            delete_message=rule.get("DeleteMessage"),
            move_to_folder=rule.get("MoveToFolder"),
            rule_identity=rule.get("RuleIdentity") or rule.get("Identity"),
        )]
