"""
PIM Role Eligibility Report
Eligible directory role instances, one row per principal-role pair, plus a
pivoted view with one row per principal and one column per role.
"""

from __future__ import annotations

import argparse
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Iterable, Optional

from ..cache.lookup import LookupCache, principal_cache
from ..reporting.csv_export import SortKey
from ..reporting.pivot import PivotSpec
from .base import BaseReport, ReportResult
from .fields import parse_timestamp
from .filters import Predicate, category_matches, field_present

logger = logging.getLogger("m365_admin_reports.reports.role_eligibility")


@dataclass
class RoleEligibilityRow:
    principal_display_name: Optional[str]
    principal_name: Optional[str]
    principal_type: Optional[str]
    principal_id: Optional[str]
    role_name: Optional[str]
    member_type: Optional[str]
    start_date_time: Optional[datetime]
    end_date_time: Optional[datetime]
    directory_scope_id: Optional[str]
    role_definition_id: Optional[str]


def _role_name(record: dict) -> Optional[str]:
    return (record.get("roleDefinition") or {}).get("displayName") or record.get("roleDefinitionId")


class RoleEligibilityReport(BaseReport):
    name = "role-eligibility"
    description = "PIM eligible directory role assignments (detail + per-principal pivot)"
    row_type = RoleEligibilityRow
    sort_keys = [SortKey("principal_display_name"), SortKey("role_name")]
    services = ("graph",)
    pivot_spec = PivotSpec(
        key_columns=["principal_display_name", "principal_name", "principal_type", "principal_id"],
        category_column="role_name",
        mark="Eligible",
        sort_keys=[SortKey("principal_display_name"), SortKey("principal_name")],
    )

    def __init__(
        self,
        graph=None,
        roles: Optional[list[str]] = None,
        principal_types: Optional[list[str]] = None,
        principals: Optional[LookupCache] = None,
        exchange=None,
    ):
        super().__init__(graph=graph, exchange=exchange)
        self.principals = principals or principal_cache(graph)
        self.predicate = Predicate(
            field_present("principal", lambda r: r.get("principalId")),
            field_present("role", _role_name),
            category_matches("role", _role_name, roles),
            category_matches(
                "principal_type",
                lambda r: self.principals.resolve(r.get("principalId")).object_type,
                principal_types,
            ),
        )

    @classmethod
    def add_arguments(cls, parser: argparse.ArgumentParser):
        parser.add_argument("--role", action="append", dest="roles", help="Only this role display name; repeatable")
        parser.add_argument(
            "--principal-type",
            action="append",
            dest="principal_types",
            choices=["user", "group", "servicePrincipal"],
            help="Only this principal type; repeatable",
        )

    @classmethod
    def options_from_args(cls, args: argparse.Namespace) -> dict[str, Any]:
        return {"roles": args.roles, "principal_types": args.principal_types}

    def caches(self) -> list[LookupCache]:
        return [self.principals]

    def fetch(self, result: ReportResult) -> Iterable[dict]:
        return self.graph.get_all_pages_stream(
            "roleManagement/directory/roleEligibilityScheduleInstances",
            params={"$expand": "roleDefinition"},
            skip_top=True,  # This endpoint does not support $top
        )

    def shape(self, record: dict, result: ReportResult) -> list[RoleEligibilityRow]:
        if not self.passes(record, result):
            return []

        principal_id = record.get("principalId")
        principal = self.principals.resolve(principal_id)
        if not principal.resolved:
            result.add_warning(f"Principal {principal_id} could not be resolved")
        return [RoleEligibilityRow(
            principal_display_name=principal.display_name,
            principal_name=principal.primary_address or None,
            principal_type=principal.object_type or None,
            principal_id=principal_id,
            role_name=_role_name(record),
            member_type=record.get("memberType"),
            start_date_time=parse_timestamp(record.get("startDateTime")),
            end_date_time=parse_timestamp(record.get("endDateTime")),
            directory_scope_id=record.get("directoryScopeId"),
            role_definition_id=record.get("roleDefinitionId"),
        )]
