"""
Base report class — Abstract interface for all reports.
Every report is the same pipeline: fetch raw records, shape each one into
zero or more flat rows (consulting lookup caches), then sort and export.
"""

from __future__ import annotations

import argparse
import logging
import time
from abc import ABC, abstractmethod
from typing import Any, Iterable, Optional

from ..cache.lookup import LookupCache
from ..config import OutputConfig
from ..reporting.csv_export import SortKey, row_columns
from ..reporting.pivot import PivotSpec, PivotTable, pivot_rows
from .filters import Predicate

logger = logging.getLogger("m365_admin_reports.reports")


class ParameterError(Exception):
    """Invalid user-supplied option; raised before any remote call."""
    pass


class TargetNotFoundError(Exception):
    """A required target (mailbox, user, group) does not exist."""
    pass


class ReportResult:
    """Rows and run metadata produced by a report."""

    def __init__(self, report_name: str):
        self.report_name = report_name
        self.rows: list[Any] = []
        self.pivot: Optional[PivotTable] = None
        self.metadata: dict[str, Any] = {
            "report": report_name,
            "started_at": None,
            "completed_at": None,
            "duration_seconds": 0,
            "records_fetched": 0,
            "rows_produced": 0,
            "records_skipped": 0,
            "skip_reasons": {},
            "errors": [],
            "warnings": [],
            "caches": [],
        }

    def add_rows(self, rows: list[Any]):
        self.rows.extend(rows)
        self.metadata["rows_produced"] += len(rows)

    def skip(self, reason: str):
        self.metadata["records_skipped"] += 1
        reasons = self.metadata["skip_reasons"]
        reasons[reason] = reasons.get(reason, 0) + 1

    def add_error(self, error: str):
        self.metadata["errors"].append(error)
        logger.error(f"[{self.report_name}] {error}")

    def add_warning(self, warning: str):
        self.metadata["warnings"].append(warning)
        logger.warning(f"[{self.report_name}] {warning}")


class BaseReport(ABC):
    """
    Abstract base class for all reports.

    Subclasses implement fetch() and shape(). The base class provides:
      - Timing and metadata
      - The fetch -> shape loop
      - Pivot generation for reports that declare a PivotSpec
      - CLI option registration and validation hooks
    """

    name: str = "base"
    description: str = "Base report"
    row_type: type = object
    sort_keys: list[SortKey] = []
    services: tuple[str, ...] = ("graph",)
    pivot_spec: Optional[PivotSpec] = None

    def __init__(self, graph=None, exchange=None):
        self.graph = graph
        self.exchange = exchange
        self.predicate = Predicate()

    # ── CLI surface ─────────────────────────────────────────────────────────

    @classmethod
    def add_arguments(cls, parser: argparse.ArgumentParser):
        """Register report-specific options."""

    @classmethod
    def options_from_args(cls, args: argparse.Namespace) -> dict[str, Any]:
        """
        Validate parsed options and return constructor keyword arguments.
        Raises ParameterError; must not touch the network.
        """
        return {}

    def prepare(self, output: OutputConfig):
        """Hook run before fetching (e.g. retention pruning)."""

    # ── Pipeline ────────────────────────────────────────────────────────────

    @classmethod
    def columns(cls) -> list[str]:
        return row_columns(cls.row_type)

    def caches(self) -> list[LookupCache]:
        return []

    def execute(self) -> ReportResult:
        """
        Run fetch and shape over every record. Failures in the primary fetch
        propagate; per-entity failures are recorded by the subclass.
        """
        result = ReportResult(self.name)
        result.metadata["started_at"] = time.time()
        logger.info(f"[{self.name}] Starting report...")

        for record in self.fetch(result):
            result.metadata["records_fetched"] += 1
            result.add_rows(self.shape(record, result))

        if self.pivot_spec:
            spec = self.pivot_spec
            result.pivot = pivot_rows(
                result.rows,
                spec.key_columns,
                spec.category_column,
                count=spec.count,
                mark=spec.mark,
            )

        result.metadata["caches"] = [c.stats() for c in self.caches()]
        result.metadata["completed_at"] = time.time()
        result.metadata["duration_seconds"] = round(
            result.metadata["completed_at"] - result.metadata["started_at"], 2
        )
        logger.info(
            f"[{self.name}] Completed in {result.metadata['duration_seconds']}s — "
            f"{result.metadata['records_fetched']} records, "
            f"{result.metadata['rows_produced']} rows"
        )
        return result

    def passes(self, record: Any, result: ReportResult) -> bool:
        """Apply the report's predicate, recording the skip reason on failure."""
        reason = self.predicate.first_failure(record)
        if reason:
            result.skip(reason)
            return False
        return True

    @abstractmethod
    def fetch(self, result: ReportResult) -> Iterable[dict]:
        """Yield raw records from the remote service."""
        raise NotImplementedError

    @abstractmethod
    def shape(self, record: dict, result: ReportResult) -> list[Any]:
        """
        Convert one raw record into rows: [] to skip, one row normally,
        several for fan-out data.
        """
        raise NotImplementedError
