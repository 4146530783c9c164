"""
Safety Guardian — Enforces strict read-only operation.
Validates all HTTP methods, blocks write attempts, and logs safety events.
"""

from __future__ import annotations

import logging
import re
from datetime import datetime, timezone
from typing import Optional

from .. import __mode__

logger = logging.getLogger("m365_admin_reports.safety")

# ─── Blocked HTTP Methods ────────────────────────────────────────────────────

WRITE_METHODS = {"POST", "PUT", "PATCH", "DELETE"}

# Known read-only POST endpoints (Graph uses POST for some queries)
SAFE_POST_ENDPOINTS = [
    re.compile(r"/\$batch$"),                        # Batch read requests
    re.compile(r"/microsoft\.graph\.getByIds$"),     # Resolve IDs
]

# Exchange admin REST: every cmdlet is a POST, only Get-* verbs are allowed
EXCHANGE_INVOKE_ENDPOINT = re.compile(r"/InvokeCommand$", re.IGNORECASE)
READ_ONLY_CMDLET = re.compile(r"^Get-[A-Za-z]+$")


class SafetyViolation(Exception):
    """Raised when a write operation is attempted."""
    pass


class SafetyGuardian:
    """
    Validates every outbound HTTP request to ensure read-only operation.
    Maintains an audit log of all safety checks and violations.
    """

    def __init__(self):
        self.violations: list[dict] = []
        self.checks_performed: int = 0
        self.started_at: str = datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")

    def validate_request(self, method: str, url: str, body: Optional[dict] = None) -> bool:
        """
        Validate that a request is read-only.
        Returns True if safe, raises SafetyViolation if not.
        """
        self.checks_performed += 1
        method_upper = method.upper()

        if method_upper in ("GET", "HEAD", "OPTIONS"):
            return True

        if method_upper == "POST":
            if EXCHANGE_INVOKE_ENDPOINT.search(url.split("?", 1)[0]):
                cmdlet = ((body or {}).get("CmdletInput") or {}).get("CmdletName", "")
                if READ_ONLY_CMDLET.match(cmdlet or ""):
                    return True
                self._record_violation(method_upper, url, f"Non-read cmdlet: {cmdlet!r}")
                raise SafetyViolation(
                    f"SAFETY VIOLATION: Cmdlet is not read-only: {cmdlet!r}"
                )
            for pattern in SAFE_POST_ENDPOINTS:
                if pattern.search(url):
                    return True

        if method_upper in WRITE_METHODS:
            self._record_violation(method_upper, url, "Write HTTP method blocked")
            raise SafetyViolation(
                f"SAFETY VIOLATION: Write method blocked: {method_upper} {url}"
            )

        return True

    def _record_violation(self, method: str, url: str, reason: str):
        """Record a safety violation for audit."""
        violation = {
            "timestamp": datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ"),
            "method": method,
            "url": url,
            "reason": reason,
        }
        self.violations.append(violation)
        logger.critical(f"SAFETY VIOLATION: {reason} — {method} {url}")

    def get_audit_record(self) -> dict:
        """Return the safety audit record."""
        return {
            "mode": __mode__,
            "started_at": self.started_at,
            "checks_performed": self.checks_performed,
            "violations_detected": len(self.violations),
            "status": "CLEAN" if not self.violations else "VIOLATIONS_DETECTED",
        }
