"""
Group Membership Report
Bulk export of group memberships: one row per group and member.
"""

from __future__ import annotations

import argparse
import logging
import re
from dataclasses import dataclass
from typing import Any, Iterable, Iterator, Optional
from urllib.parse import quote

from ..graph.client import GraphAPIError
from ..reporting.csv_export import SortKey
from .base import BaseReport, ReportResult, TargetNotFoundError
from .fields import odata_type_name
from .filters import Predicate, category_matches, field_present

logger = logging.getLogger("m365_admin_reports.reports.group_members")

GROUP_FIELDS = "id,displayName,mail,groupTypes,securityEnabled,mailEnabled"
MEMBER_FIELDS = "id,displayName,userPrincipalName,mail"

_GUID = re.compile(r"^[0-9a-fA-F]{8}-([0-9a-fA-F]{4}-){3}[0-9a-fA-F]{12}$")


@dataclass
class GroupMemberRow:
    group_display_name: Optional[str]
    group_type: Optional[str]
    group_mail: Optional[str]
    member_display_name: Optional[str]
    member_name: Optional[str]
    member_type: Optional[str]
    member_id: Optional[str]
    group_id: Optional[str]


def group_type(group: dict) -> str:
    if "Unified" in (group.get("groupTypes") or []):
        return "Microsoft 365"
    if group.get("securityEnabled"):
        return "Mail-enabled security" if group.get("mailEnabled") else "Security"
    return "Distribution"


def _odata_string(value: str) -> str:
    return value.replace("'", "''")


class GroupMemberReport(BaseReport):
    name = "group-members"
    description = "Group memberships, one row per group and member"
    row_type = GroupMemberRow
    sort_keys = [SortKey("group_display_name"), SortKey("member_display_name")]
    services = ("graph",)

    def __init__(
        self,
        graph=None,
        group: Optional[str] = None,
        transitive: bool = False,
        member_types: Optional[list[str]] = None,
        exchange=None,
    ):
        super().__init__(graph=graph, exchange=exchange)
        self.group = group
        self.transitive = transitive
        self.predicate = Predicate(
            field_present("member", lambda r: r["member"].get("id")),
            category_matches("member_type", lambda r: odata_type_name(r["member"]), member_types),
        )

    @classmethod
    def add_arguments(cls, parser: argparse.ArgumentParser):
        parser.add_argument("--group", help="Only this group (display name or object id)")
        parser.add_argument("--transitive", action="store_true", help="Include nested group members")
        parser.add_argument(
            "--member-type",
            action="append",
            dest="member_types",
            choices=["user", "group", "device", "servicePrincipal", "orgContact"],
            help="Only this member type; repeatable",
        )

    @classmethod
    def options_from_args(cls, args: argparse.Namespace) -> dict[str, Any]:
        return {
            "group": args.group,
            "transitive": args.transitive,
            "member_types": args.member_types,
        }

    def _groups(self) -> list[dict]:
        if not self.group:
            return self.graph.get_all_pages("groups", params={"$select": GROUP_FIELDS})
        if _GUID.match(self.group):
            by_id = self.graph.get_object(f"groups/{quote(self.group, safe='')}", params={"$select": GROUP_FIELDS})
            return [by_id] if by_id and by_id.get("id") else []
        return self.graph.get_all_pages(
            "groups",
            params={
                "$select": GROUP_FIELDS,
                "$filter": f"displayName eq '{_odata_string(self.group)}'",
            },
        )

    def fetch(self, result: ReportResult) -> Iterable[dict]:
        groups = self._groups()
        if self.group and not groups:
            raise TargetNotFoundError(f"Group not found: {self.group}")
        return self._members(groups, result)

    def _members(self, groups: list[dict], result: ReportResult) -> Iterator[dict]:
        relation = "transitiveMembers" if self.transitive else "members"
        for group in groups:
            try:
                members = self.graph.get_all_pages(
                    f"groups/{group.get('id')}/{relation}",
                    params={"$select": MEMBER_FIELDS},
                )
            except GraphAPIError as e:
                result.add_warning(f"Could not read members of {group.get('displayName')}: {e}")
                continue
            for member in members:
                yield {"group": group, "member": member}

    def shape(self, record: dict, result: ReportResult) -> list[GroupMemberRow]:
        if not self.passes(record, result):
            return []

        group = record["group"]
        member = record["member"]
        return [GroupMemberRow(
            group_display_name=group.get("displayName"),
            group_type=group_type(group),
            group_mail=group.get("mail"),
            member_display_name=member.get("displayName"),
            member_name=member.get("userPrincipalName") or member.get("mail"),
            member_type=odata_type_name(member) or None,
            member_id=member.get("id"),
            group_id=group.get("id"),
        )]
