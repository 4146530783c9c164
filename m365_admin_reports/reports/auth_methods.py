"""
Authentication Method Report
Registered authentication methods per user: one row per user and method,
plus a pivoted view with one row per user and a count column per method type.
"""

from __future__ import annotations

import argparse
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Iterable, Optional
from urllib.parse import quote

from ..graph.client import GraphAPIError
from ..reporting.csv_export import SortKey
from ..reporting.pivot import PivotSpec
from .base import BaseReport, ReportResult, TargetNotFoundError
from .fields import first_present, odata_type_name, parse_timestamp
from .filters import Guard, Predicate, category_matches

logger = logging.getLogger("m365_admin_reports.reports.auth_methods")

USER_FIELDS = "id,displayName,userPrincipalName,accountEnabled,userType"


@dataclass
class AuthMethodRow:
    user_display_name: Optional[str]
    user_principal_name: Optional[str]
    account_enabled: Optional[bool]
    method_type: Optional[str]
    method_detail: Optional[str]
    method_created: Optional[datetime]
    user_id: Optional[str]


def method_type(method: dict) -> str:
    """'#microsoft.graph.fido2AuthenticationMethod' -> 'fido2'."""
    name = odata_type_name(method)
    suffix = "AuthenticationMethod"
    return name[: -len(suffix)] if name.endswith(suffix) and name != suffix else name


class AuthMethodReport(BaseReport):
    name = "auth-methods"
    description = "Registered authentication methods per user (detail + per-user pivot)"
    row_type = AuthMethodRow
    sort_keys = [SortKey("user_principal_name"), SortKey("method_type")]
    services = ("graph",)
    pivot_spec = PivotSpec(
        key_columns=["user_display_name", "user_principal_name", "account_enabled"],
        category_column="method_type",
        count=True,
        sort_keys=[SortKey("user_principal_name")],
    )

    def __init__(
        self,
        graph=None,
        user: Optional[str] = None,
        include_disabled: bool = False,
        methods: Optional[list[str]] = None,
        exchange=None,
    ):
        super().__init__(graph=graph, exchange=exchange)
        self.user = user
        self.methods = methods
        self.predicate = Predicate(
            Guard("account_enabled", lambda u: include_disabled or u.get("accountEnabled") is not False),
        )
        self.method_predicate = Predicate(
            category_matches("method", method_type, methods),
        )

    @classmethod
    def add_arguments(cls, parser: argparse.ArgumentParser):
        parser.add_argument("--user", help="Only this user (UPN or object id)")
        parser.add_argument("--include-disabled", action="store_true", help="Include disabled accounts")
        parser.add_argument(
            "--method",
            action="append",
            dest="methods",
            help="Only this method type (e.g. microsoftAuthenticator, fido2, phone); repeatable",
        )

    @classmethod
    def options_from_args(cls, args: argparse.Namespace) -> dict[str, Any]:
        return {
            "user": args.user,
            "include_disabled": args.include_disabled,
            "methods": args.methods,
        }

    def fetch(self, result: ReportResult) -> Iterable[dict]:
        if self.user:
            # Guest UPNs carry '#EXT#', which must not end the URL path
            user = self.graph.get_object(f"users/{quote(self.user, safe='')}", params={"$select": USER_FIELDS})
            if not user or not user.get("id"):
                raise TargetNotFoundError(f"User not found: {self.user}")
            return [user]
        return self.graph.get_all_pages_stream(
            "users",
            params={"$select": USER_FIELDS, "$filter": "userType eq 'Member'"},
        )

    def _methods(self, user: dict, result: ReportResult) -> Optional[list[dict]]:
        try:
            return self.graph.get_all_pages(
                f"users/{user.get('id')}/authentication/methods",
                skip_top=True,
            )
        except GraphAPIError as e:
            result.add_warning(
                f"Could not read methods for {user.get('userPrincipalName')}: {e}"
            )
            return None

    def shape(self, record: dict, result: ReportResult) -> list[AuthMethodRow]:
        if not self.passes(record, result):
            return []

        def row(method: Optional[dict]) -> AuthMethodRow:
            method = method or {}
            return AuthMethodRow(
                user_display_name=record.get("displayName"),
                user_principal_name=record.get("userPrincipalName"),
                account_enabled=record.get("accountEnabled"),
                method_type=method_type(method) if method else None,
                method_detail=first_present(
                    method.get("displayName"),
                    method.get("phoneNumber"),
                    method.get("emailAddress"),
                    method.get("model"),
                ),
                method_created=parse_timestamp(method.get("createdDateTime")),
                user_id=record.get("id"),
            )

        methods = self._methods(record, result)
        if methods is None:
            return [row(None)]

        matching = [m for m in methods if self.method_predicate(m)]
        if matching:
            return [row(m) for m in matching]
        if self.methods:
            result.skip("method_matches")
            return []
        # No methods registered at all: keep the user visible
        return [row(None)]
