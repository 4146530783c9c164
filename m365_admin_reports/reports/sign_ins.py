"""
Sign-in Log Report
Entra ID sign-in events over a lookback window, optionally narrowed to one
user, one application or failed sign-ins. Old sign-in reports and logs are
pruned at the start of every run.
"""

from __future__ import annotations

import argparse
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Iterable, Optional

from ..config import DEFAULT_SIGN_IN_LOOKBACK_DAYS, SIGN_IN_RETENTION_DAYS, OutputConfig
from ..reporting.csv_export import SortKey
from ..reporting.retention import prune_old_files
from .base import BaseReport, ParameterError, ReportResult
from .fields import parse_timestamp
from .filters import Guard, Predicate, category_matches, field_present

logger = logging.getLogger("m365_admin_reports.reports.sign_ins")

SIGN_IN_FIELDS = (
    "id,createdDateTime,userPrincipalName,userDisplayName,appDisplayName,"
    "clientAppUsed,ipAddress,location,deviceDetail,status,"
    "conditionalAccessStatus,isInteractive,riskLevelDuringSignIn"
)


@dataclass
class SignInRow:
    created_date_time: Optional[datetime]
    user_principal_name: Optional[str]
    user_display_name: Optional[str]
    app_display_name: Optional[str]
    client_app_used: Optional[str]
    ip_address: Optional[str]
    city: Optional[str]
    country_or_region: Optional[str]
    operating_system: Optional[str]
    browser: Optional[str]
    error_code: Optional[int]
    failure_reason: Optional[str]
    conditional_access_status: Optional[str]
    is_interactive: Optional[bool]
    risk_level: Optional[str]
    sign_in_id: Optional[str]


def _error_code(record: dict) -> Optional[int]:
    code = (record.get("status") or {}).get("errorCode")
    try:
        return int(code) if code is not None else None
    except (TypeError, ValueError):
        return None


def _odata_string(value: str) -> str:
    return value.replace("'", "''")


class SignInReport(BaseReport):
    name = "sign-ins"
    description = "Entra ID sign-in events within a lookback window"
    row_type = SignInRow
    sort_keys = [SortKey("created_date_time", descending=True), SortKey("user_principal_name")]
    services = ("graph",)

    def __init__(
        self,
        graph=None,
        lookback: timedelta = timedelta(days=DEFAULT_SIGN_IN_LOOKBACK_DAYS),
        user: Optional[str] = None,
        apps: Optional[list[str]] = None,
        failures_only: bool = False,
        retention_days: int = SIGN_IN_RETENTION_DAYS,
        now: Optional[datetime] = None,
        exchange=None,
    ):
        super().__init__(graph=graph, exchange=exchange)
        self.lookback = lookback
        self.user = user
        self.failures_only = failures_only
        self.retention_days = retention_days
        self.now = now
        self.predicate = Predicate(
            field_present("created", lambda r: r.get("createdDateTime")),
            Guard("status_matches", self._status_matches),
            category_matches("app", lambda r: r.get("appDisplayName"), apps),
        )

    @classmethod
    def add_arguments(cls, parser: argparse.ArgumentParser):
        parser.add_argument("--days", type=int, help=f"Lookback window in days (default: {DEFAULT_SIGN_IN_LOOKBACK_DAYS})")
        parser.add_argument("--hours", type=int, help="Lookback window in hours (instead of --days)")
        parser.add_argument("--user", help="Only sign-ins for this user principal name")
        parser.add_argument("--app", action="append", dest="apps", help="Only this application display name; repeatable")
        parser.add_argument("--failures-only", action="store_true", help="Only failed sign-ins (errorCode != 0)")
        parser.add_argument(
            "--retention-days",
            type=int,
            default=SIGN_IN_RETENTION_DAYS,
            help=f"Delete sign-in reports/logs older than this many days; 0 keeps all (default: {SIGN_IN_RETENTION_DAYS})",
        )

    @classmethod
    def options_from_args(cls, args: argparse.Namespace) -> dict[str, Any]:
        if args.days is not None and args.hours is not None:
            raise ParameterError("--days and --hours are mutually exclusive")
        if args.hours is not None:
            if args.hours <= 0:
                raise ParameterError("--hours must be positive")
            lookback = timedelta(hours=args.hours)
        else:
            days = DEFAULT_SIGN_IN_LOOKBACK_DAYS if args.days is None else args.days
            if days <= 0:
                raise ParameterError("--days must be positive")
            lookback = timedelta(days=days)
        if args.retention_days < 0:
            raise ParameterError("--retention-days must be 0 or greater")
        return {
            "lookback": lookback,
            "user": args.user,
            "apps": args.apps,
            "failures_only": args.failures_only,
            "retention_days": args.retention_days,
        }

    def prepare(self, output: OutputConfig):
        directories = [output.report_dir]
        if output.log_dir:
            directories.append(Path(output.log_dir))
        for directory in directories:
            prune_old_files(
                directory,
                [f"{self.name}_*.csv", f"{self.name}_*.log"],
                self.retention_days,
            )

    def _status_matches(self, record: dict) -> bool:
        if not self.failures_only:
            return True
        code = _error_code(record)
        return code is not None and code != 0

    def build_filter(self) -> str:
        now = self.now or datetime.now(timezone.utc)
        since = (now - self.lookback).strftime("%Y-%m-%dT%H:%M:%SZ")
        clauses = [f"createdDateTime ge {since}"]
        if self.user:
            clauses.append(f"userPrincipalName eq '{_odata_string(self.user)}'")
        return " and ".join(clauses)

    def fetch(self, result: ReportResult) -> Iterable[dict]:
        return self.graph.get_all_pages_stream(
            "auditLogs/signIns",
            params={"$filter": self.build_filter(), "$select": SIGN_IN_FIELDS},
        )

    def shape(self, record: dict, result: ReportResult) -> list[SignInRow]:
        if not self.passes(record, result):
            return []

        location = record.get("location") or {}
        device = record.get("deviceDetail") or {}
        status = record.get("status") or {}
        return [SignInRow(
            created_date_time=parse_timestamp(record.get("createdDateTime")),
            user_principal_name=record.get("userPrincipalName"),
            user_display_name=record.get("userDisplayName"),
            app_display_name=record.get("appDisplayName"),
            client_app_used=record.get("clientAppUsed"),
            ip_address=record.get("ipAddress"),
            city=location.get("city"),
            country_or_region=location.get("countryOrRegion"),
            operating_system=device.get("operatingSystem"),
            browser=device.get("browser"),
            error_code=_error_code(record),
            failure_reason=status.get("failureReason"),
            conditional_access_status=record.get("conditionalAccessStatus"),
            is_interactive=record.get("isInteractive"),
            risk_level=record.get("riskLevelDuringSignIn"),
            sign_in_id=record.get("id"),
        )]
