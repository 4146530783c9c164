"""
Mobile Device Client Version Report
Exchange ActiveSync / Outlook mobile devices whose ClientVersion is below a
threshold, enriched with per-device sync statistics.
"""

from __future__ import annotations

import argparse
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Iterable, Optional

from ..cache.lookup import LookupCache
from ..config import DEFAULT_MIN_CLIENT_VERSION, DEFAULT_VERSION_COMPARE_PARTS
from ..reporting.console import notice
from ..reporting.csv_export import SortKey
from .base import BaseReport, ParameterError, ReportResult
from .fields import parse_timestamp
from .filters import Predicate, category_matches, parse_version, version_guards

logger = logging.getLogger("m365_admin_reports.reports.mobile_devices")


@dataclass
class MobileDeviceRow:
    user_display_name: Optional[str]
    device_model: Optional[str]
    device_os: Optional[str]
    device_type: Optional[str]
    client_type: Optional[str]
    client_version: Optional[str]
    device_access_state: Optional[str]
    first_sync_time: Optional[datetime]
    last_success_sync: Optional[datetime]
    last_sync_attempt_time: Optional[datetime]
    sync_status: Optional[str]
    device_id: Optional[str]
    identity: Optional[str]


def _client_version(device: dict) -> Any:
    return device.get("ClientVersion")


def _short_user(name: Optional[str]) -> Optional[str]:
    # Exchange reports the owner as 'tenant.onmicrosoft.com/Users/Jane Doe'
    if not name:
        return None
    return name.rsplit("/", 1)[-1]


class MobileDeviceReport(BaseReport):
    name = "mobile-devices"
    description = "Mobile devices with a ClientVersion below a minimum version"
    row_type = MobileDeviceRow
    sort_keys = [SortKey("user_display_name"), SortKey("device_model")]
    services = ("exchange",)

    def __init__(
        self,
        exchange=None,
        min_version: str = DEFAULT_MIN_CLIENT_VERSION,
        compare_parts: int = DEFAULT_VERSION_COMPARE_PARTS,
        client_types: Optional[list[str]] = None,
        include_stats: bool = True,
        stats_cache: Optional[LookupCache] = None,
        graph=None,
    ):
        super().__init__(graph=graph, exchange=exchange)
        threshold = parse_version(min_version)
        if threshold is None:
            raise ParameterError(f"Unparsable minimum version: {min_version!r}")
        self.min_version = min_version
        self.include_stats = include_stats
        self.stats_cache = stats_cache or LookupCache(
            "device-statistics", self._fetch_statistics, lambda key: None
        )
        self.predicate = Predicate(
            *version_guards("client_version", _client_version, threshold, compare_parts),
            category_matches("client_type", lambda d: d.get("ClientType"), client_types),
        )

    @classmethod
    def add_arguments(cls, parser: argparse.ArgumentParser):
        parser.add_argument(
            "--min-version",
            default=DEFAULT_MIN_CLIENT_VERSION,
            help=f"Report devices whose ClientVersion is below this (default: {DEFAULT_MIN_CLIENT_VERSION})",
        )
        parser.add_argument(
            "--compare-parts",
            type=int,
            default=DEFAULT_VERSION_COMPARE_PARTS,
            help="Leading version components to compare; 0 compares all (default: 1, major only)",
        )
        parser.add_argument(
            "--client-type",
            action="append",
            dest="client_types",
            help="Only include this ClientType (e.g. EAS, Outlook); repeatable",
        )
        parser.add_argument(
            "--no-stats",
            action="store_true",
            help="Skip Get-MobileDeviceStatistics lookups",
        )

    @classmethod
    def options_from_args(cls, args: argparse.Namespace) -> dict[str, Any]:
        threshold = parse_version(args.min_version)
        if threshold is None:
            raise ParameterError(
                f"--min-version must be dotted numbers like 16.1, got {args.min_version!r}"
            )
        if args.compare_parts < 0:
            raise ParameterError("--compare-parts must be 0 or greater")
        if 0 < args.compare_parts < len(threshold):
            notice(
                "warning",
                f"--min-version {args.min_version} has {len(threshold)} components but only the first "
                f"{args.compare_parts} are compared (--compare-parts {args.compare_parts})",
            )
        return {
            "min_version": args.min_version,
            "compare_parts": args.compare_parts,
            "client_types": args.client_types,
            "include_stats": not args.no_stats,
        }

    def caches(self) -> list[LookupCache]:
        return [self.stats_cache]

    def _fetch_statistics(self, identity: str) -> Optional[dict]:
        return self.exchange.invoke_single(
            "Get-MobileDeviceStatistics", {"Identity": identity}
        )

    def fetch(self, result: ReportResult) -> Iterable[dict]:
        return self.exchange.invoke_stream("Get-MobileDevice", {"ResultSize": "Unlimited"})

    def shape(self, record: dict, result: ReportResult) -> list[MobileDeviceRow]:
        if not self.passes(record, result):
            return []

        identity = record.get("Identity") or record.get("Guid")
        stats = None
        if self.include_stats and identity:
            stats = self.stats_cache.resolve(identity)
            if stats is None:
                result.add_warning(f"No statistics for device {identity}")
        stats = stats or {}

        return [MobileDeviceRow(
            user_display_name=_short_user(record.get("UserDisplayName")),
            device_model=record.get("DeviceModel"),
            device_os=record.get("DeviceOS"),
            device_type=record.get("DeviceType"),
            client_type=record.get("ClientType"),
            client_version=record.get("ClientVersion"),
            device_access_state=record.get("DeviceAccessState"),
            first_sync_time=parse_timestamp(record.get("FirstSyncTime")),
            last_success_sync=parse_timestamp(stats.get("LastSuccessSync")),
            last_sync_attempt_time=parse_timestamp(stats.get("LastSyncAttemptTime")),
            sync_status=stats.get("Status"),
            device_id=record.get("DeviceId"),
            identity=identity,
        )]
