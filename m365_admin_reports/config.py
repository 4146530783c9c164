"""
Configuration module for M365 Admin Reports.
Defines all tunable parameters, API endpoints, and operational settings.
"""

from __future__ import annotations

import os
import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional
from datetime import datetime, timezone


# ─── Tenant Authentication ───────────────────────────────────────────────────

@dataclass
class CertificateAuth:
    """Certificate-based app-only authentication configuration."""
    tenant_id: str
    client_id: str
    certificate_path: str          # Path to base64-encoded PFX
    certificate_password: str = "" # Will be prompted if empty
    thumbprint: str = ""

@dataclass
class DelegatedAuth:
    """Delegated (interactive) authentication configuration."""
    tenant_id: str
    client_id: str


@dataclass
class AuthConfig:
    """Authentication configuration — supports both modes."""
    mode: str = "certificate"  # "certificate" or "delegated"
    certificate: Optional[CertificateAuth] = None
    delegated: Optional[DelegatedAuth] = None
    organization: str = ""     # e.g. contoso.onmicrosoft.com, used by Exchange

    @property
    def tenant_id(self) -> str:
        if self.mode == "delegated" and self.delegated:
            return self.delegated.tenant_id
        if self.certificate:
            return self.certificate.tenant_id
        return ""


# ─── Graph / Exchange API Settings ──────────────────────────────────────────

GRAPH_BASE_URL = "https://graph.microsoft.com"
GRAPH_API_VERSION = "v1.0"
GRAPH_BETA_VERSION = "beta"
GRAPH_SCOPES = ["https://graph.microsoft.com/.default"]

EXCHANGE_BASE_URL = "https://outlook.office365.com/adminapi/beta"
EXCHANGE_SCOPES = ["https://outlook.office365.com/.default"]
EXCHANGE_PAGE_SIZE = 1000         # odata.maxpagesize for InvokeCommand

# Throttling
MAX_RETRIES = 5                   # Retry count for throttled requests
INITIAL_BACKOFF_SECONDS = 2.0     # First retry delay
MAX_BACKOFF_SECONDS = 120.0       # Cap on exponential backoff
BACKOFF_MULTIPLIER = 2.0          # Exponential factor

# Pagination
DEFAULT_PAGE_SIZE = 999           # Maximum items per page ($top)
MAX_PAGES_PER_ENDPOINT = 10000    # Safety cap on pagination loops


# ─── Report Defaults ────────────────────────────────────────────────────────

DEFAULT_PREVIEW_ROWS = 10
DEFAULT_DELIMITER = ","
DEFAULT_MIN_CLIENT_VERSION = "16.1"
DEFAULT_VERSION_COMPARE_PARTS = 1    # Compare major version only
DEFAULT_SIGN_IN_LOOKBACK_DAYS = 1
SIGN_IN_RETENTION_DAYS = 30          # Old sign-in reports/logs pruned after this


# ─── Output Configuration ───────────────────────────────────────────────────

@dataclass
class OutputConfig:
    """Output directory and format settings."""
    base_dir: str = ""
    timestamp: str = ""
    delimiter: str = DEFAULT_DELIMITER
    preview_rows: int = DEFAULT_PREVIEW_ROWS
    log_dir: str = ""

    def __post_init__(self):
        if not self.timestamp:
            self.timestamp = datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%SZ")
        if not self.base_dir:
            self.base_dir = os.path.join(os.getcwd(), "m365_reports")

    @property
    def report_dir(self) -> Path:
        return Path(self.base_dir)

    def report_path(self, report_name: str, suffix: str = "") -> Path:
        """Timestamped CSV path for a report, e.g. sign-ins_20250101T000000Z.csv."""
        stem = f"{report_name}_{suffix}" if suffix else report_name
        return self.report_dir / f"{stem}_{self.timestamp}.csv"

    def log_path(self, report_name: str) -> Optional[Path]:
        if not self.log_dir:
            return None
        return Path(self.log_dir) / f"{report_name}_{self.timestamp}.log"


# ─── Master Configuration ───────────────────────────────────────────────────

@dataclass
class ToolConfig:
    """Top-level configuration for a report run."""
    auth: AuthConfig = field(default_factory=AuthConfig)
    output: OutputConfig = field(default_factory=OutputConfig)
    verbose: bool = False

    @classmethod
    def from_file(cls, path: str) -> "ToolConfig":
        """Load configuration from a JSON file."""
        with open(path, "r") as f:
            data = json.load(f)
        config = cls()
        if "auth" in data:
            auth_data = data["auth"]
            config.auth.mode = auth_data.get("mode", "certificate")
            config.auth.organization = auth_data.get("organization", "")
            if "certificate" in auth_data:
                c = auth_data["certificate"]
                config.auth.certificate = CertificateAuth(
                    tenant_id=c["tenant_id"],
                    client_id=c["client_id"],
                    certificate_path=c.get("certificate_path", "./base64.txt"),
                    certificate_password=c.get("certificate_password", ""),
                    thumbprint=c.get("thumbprint", ""),
                )
            if "delegated" in auth_data:
                d = auth_data["delegated"]
                config.auth.delegated = DelegatedAuth(
                    tenant_id=d["tenant_id"],
                    client_id=d["client_id"],
                )
        if "output" in data:
            for k, v in data["output"].items():
                if hasattr(config.output, k):
                    setattr(config.output, k, v)
        config.verbose = data.get("verbose", False)
        return config


# ─── Required API Permissions (Least Privilege, Read-Only) ─────────────────

REQUIRED_PERMISSIONS = {
    # Graph
    "AuditLog.Read.All": "Read sign-in logs (sign-ins)",
    "RoleManagement.Read.Directory": "Read PIM role eligibility (role-eligibility)",
    "Directory.Read.All": "Resolve principals, users and groups",
    "User.Read.All": "Enumerate users (auth-methods)",
    "UserAuthenticationMethod.Read.All": "Read registered auth methods (auth-methods)",
    "GroupMember.Read.All": "Read group memberships (group-members)",

    # Exchange Online
    "Exchange.ManageAsApp": "Run read-only Exchange cmdlets (mobile-devices, "
                            "inbox-rules, mailbox-permissions)",
}
