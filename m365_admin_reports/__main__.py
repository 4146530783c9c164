"""
M365 Admin Reports — Command-line entry point

Usage:
    python -m m365_admin_reports mobile-devices --min-version 16.1
    python -m m365_admin_reports sign-ins --hours 12 --failures-only
    python -m m365_admin_reports inbox-rules --forwarding-only
    python -m m365_admin_reports role-eligibility --role "Global Administrator"
    python -m m365_admin_reports mailbox-permissions --mailbox shared@contoso.com
    python -m m365_admin_reports auth-methods --include-disabled
    python -m m365_admin_reports group-members --group "All Staff" --transitive

Common options (after the report name):
    --profile contoso-prod | --tenant-id X --client-id Y | --config config.json
    --delegated  --output-dir DIR  --output FILE  --delimiter ';'  --preview 20

Profile management:
    python -m m365_admin_reports profile add <name> --tenant-id ... --client-id ...
    python -m m365_admin_reports profile list
    python -m m365_admin_reports profile remove <name>
    python -m m365_admin_reports profile set-default <name>

This tool is STRICTLY READ-ONLY. It will NEVER modify the tenant.
"""

from __future__ import annotations

import argparse
import logging
import sys
from contextlib import ExitStack
from pathlib import Path
from typing import Optional

import httpx

from . import __mode__, __version__
from .config import (
    CertificateAuth,
    DelegatedAuth,
    EXCHANGE_SCOPES,
    GRAPH_SCOPES,
    DEFAULT_DELIMITER,
    DEFAULT_PREVIEW_ROWS,
    ToolConfig,
)
from .safety.guardian import SafetyGuardian, SafetyViolation
from .auth.authenticator import Authenticator, AuthenticationError
from .graph.client import GraphClient, GraphAPIError
from .exchange.client import ExchangeClient
from .reports import ALL_REPORTS, REPORTS_BY_NAME, BaseReport, ParameterError, ReportResult, TargetNotFoundError
from .reporting.console import notice
from .reporting.csv_export import export_report
from .profiles import ProfileStore, TenantProfile, resolve_profile

logger = logging.getLogger("m365_admin_reports")

LOG_FORMAT = "%(asctime)s %(levelname)-8s %(name)s: %(message)s"


class ConfigurationError(Exception):
    """No usable tenant credentials or configuration."""
    pass


# ---------------------------------------------------------------------------
# Profile management sub-commands
# ---------------------------------------------------------------------------

def _cmd_profile(args: argparse.Namespace) -> int:
    """Handle `profile add|list|remove|set-default` sub-commands."""
    action = args.profile_action

    if action == "list":
        return _profile_list()
    elif action == "add":
        return _profile_add(args)
    elif action == "remove":
        return _profile_remove(args)
    elif action == "set-default":
        return _profile_set_default(args)
    print("Usage: python -m m365_admin_reports profile {add|list|remove|set-default}")
    return 0


def _profile_list() -> int:
    store = ProfileStore.load()
    profiles = store.list_profiles()
    if not profiles:
        print("No profiles configured. Add one with:\n")
        print("  python -m m365_admin_reports profile add <name> \\")
        print("    --tenant-id <GUID> --client-id <GUID> --organization contoso.onmicrosoft.com")
        return 0

    print(f"\n  {'Name':<20s} {'Tenant ID':<38s} {'Organization':<30s} {'Cert Path':<30s} {'Default'}")
    print(f"  {'─'*20} {'─'*38} {'─'*30} {'─'*30} {'─'*7}")
    for p in profiles:
        default_marker = "  ✓" if p.name == store.default_profile else ""
        print(f"  {p.name:<20s} {p.tenant_id:<38s} {p.organization:<30s} {p.cert_path:<30s}{default_marker}")
    print()
    return 0


def _profile_add(args: argparse.Namespace) -> int:
    store = ProfileStore.load()
    name = args.profile_name
    if store.get(name):
        print(f"  Profile '{name}' already exists. It will be overwritten.")

    profile = TenantProfile(
        name=name,
        tenant_id=args.tenant_id,
        client_id=args.client_id,
        cert_path=args.cert_path or "./base64.txt",
        organization=args.organization or "",
        tenant_display_name=args.display_name or "",
    )
    set_as_default = args.set_default or not store.profiles
    store.add(profile, set_default=set_as_default)
    notice("ok", f"Profile '{name}' saved.")
    if set_as_default:
        notice("ok", "Set as default profile.")
    return 0


def _profile_remove(args: argparse.Namespace) -> int:
    store = ProfileStore.load()
    if store.remove(args.profile_name):
        notice("ok", f"Profile '{args.profile_name}' removed.")
        return 0
    notice("error", f"Profile '{args.profile_name}' not found.")
    return 1


def _profile_set_default(args: argparse.Namespace) -> int:
    store = ProfileStore.load()
    if store.set_default(args.profile_name):
        notice("ok", f"Default profile set to '{args.profile_name}'.")
        return 0
    notice("error", f"Profile '{args.profile_name}' not found.")
    return 1


# ---------------------------------------------------------------------------
# Argument parsing
# ---------------------------------------------------------------------------

def _common_options() -> argparse.ArgumentParser:
    """Options shared by every report sub-command."""
    common = argparse.ArgumentParser(add_help=False)
    group = common.add_argument_group("tenant and output")
    group.add_argument("--profile", "-p", default=None,
                       help="Tenant profile name (run 'profile list' to see available)")
    group.add_argument("--config", "-c", type=Path, help="Path to JSON configuration file")
    group.add_argument("--delegated", action="store_true",
                       help="Use delegated (device-code) authentication instead of certificate")
    group.add_argument("--cert-path", type=Path, help="Path to base64-encoded certificate file")
    group.add_argument("--tenant-id", default=None, help="Tenant ID (overrides profile)")
    group.add_argument("--client-id", default=None, help="Client ID (overrides profile)")
    group.add_argument("--organization", default=None,
                       help="Tenant domain for Exchange, e.g. contoso.onmicrosoft.com")
    group.add_argument("--output-dir", "-o", type=Path, default=None,
                       help="Directory for report files (default: ./m365_reports)")
    group.add_argument("--output", type=Path, default=None,
                       help="Explicit path for the report file")
    group.add_argument("--delimiter", default=None,
                       help=f"Field delimiter (default: '{DEFAULT_DELIMITER}')")
    group.add_argument("--preview", type=int, default=None,
                       help=f"Rows to print to the console; 0 disables (default: {DEFAULT_PREVIEW_ROWS})")
    group.add_argument("--log-dir", type=Path, default=None, help="Also write a debug log here")
    group.add_argument("--verbose", "-v", action="store_true", help="Debug logging on the console")
    return common


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="m365_admin_reports",
        description=f"M365 Admin Reports v{__version__} ({__mode__})",
    )
    subparsers = parser.add_subparsers(dest="command", help="Report or management command")
    common = _common_options()

    for report_cls in ALL_REPORTS:
        report_parser = subparsers.add_parser(
            report_cls.name,
            help=report_cls.description,
            description=report_cls.description,
            parents=[common],
        )
        report_cls.add_arguments(report_parser.add_argument_group("report options"))

    # --- Sub-commands: profile management ---
    prof_parser = subparsers.add_parser("profile", help="Manage tenant profiles")
    prof_sub = prof_parser.add_subparsers(dest="profile_action", help="Profile actions")

    add_p = prof_sub.add_parser("add", help="Add or update a tenant profile")
    add_p.add_argument("profile_name", help="Short name for the profile (e.g. 'contoso-prod')")
    add_p.add_argument("--tenant-id", required=True, help="Entra tenant ID (GUID)")
    add_p.add_argument("--client-id", required=True, help="App registration client ID (GUID)")
    add_p.add_argument("--cert-path", default="./base64.txt",
                       help="Path to base64-encoded PFX (default: ./base64.txt)")
    add_p.add_argument("--organization", help="Tenant domain, e.g. contoso.onmicrosoft.com")
    add_p.add_argument("--display-name", help="Friendly tenant display name")
    add_p.add_argument("--set-default", action="store_true", help="Set as default profile")

    prof_sub.add_parser("list", help="List all configured profiles")

    rm_p = prof_sub.add_parser("remove", help="Remove a profile")
    rm_p.add_argument("profile_name", help="Name of the profile to remove")

    sd_p = prof_sub.add_parser("set-default", help="Set the default profile")
    sd_p.add_argument("profile_name", help="Name of the profile to set as default")

    return parser


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------

def configure_logging(verbose: bool = False, log_file: Optional[Path] = None):
    """Console logging at WARNING (DEBUG with --verbose), optional debug log file."""
    root = logging.getLogger("m365_admin_reports")
    root.setLevel(logging.DEBUG)
    for handler in list(root.handlers):
        root.removeHandler(handler)
        handler.close()

    console = logging.StreamHandler()
    console.setLevel(logging.DEBUG if verbose else logging.WARNING)
    console.setFormatter(logging.Formatter(LOG_FORMAT))
    root.addHandler(console)

    if log_file:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_file, encoding="utf-8")
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(logging.Formatter(LOG_FORMAT))
        root.addHandler(file_handler)


def build_config(args: argparse.Namespace) -> tuple[ToolConfig, Optional[TenantProfile]]:
    """Build configuration from profile, CLI args, or config file."""
    if args.config:
        if not args.config.exists():
            raise ConfigurationError(f"Config file not found: {args.config}")
        config = ToolConfig.from_file(str(args.config))
    else:
        config = ToolConfig()

    if args.delegated:
        config.auth.mode = "delegated"

    # --- Resolve tenant identity from profile or CLI flags ---
    profile = None
    if args.profile:
        profile = resolve_profile(args.profile)
        if not profile:
            raise ConfigurationError(
                f"Profile '{args.profile}' not found. Use 'profile list' to see available profiles."
            )
    elif not args.config and not args.tenant_id:
        profile = resolve_profile()

    if profile:
        tenant_id = args.tenant_id or profile.tenant_id
        client_id = args.client_id or profile.client_id
        cert_path = str(args.cert_path) if args.cert_path else profile.resolve_cert_path()
        organization = profile.organization
    elif args.tenant_id and args.client_id:
        tenant_id = args.tenant_id
        client_id = args.client_id
        cert_path = str(args.cert_path) if args.cert_path else "./base64.txt"
        organization = ""
    elif config.auth.certificate or config.auth.delegated:
        source = config.auth.certificate or config.auth.delegated
        tenant_id = source.tenant_id
        client_id = source.client_id
        cert_path = (
            str(args.cert_path) if args.cert_path
            else config.auth.certificate.certificate_path if config.auth.certificate
            else "./base64.txt"
        )
        organization = config.auth.organization
    else:
        raise ConfigurationError(
            "No tenant credentials found. Use --profile <name>, "
            "--tenant-id X --client-id Y, or --config config.json"
        )

    if config.auth.mode == "delegated":
        config.auth.delegated = DelegatedAuth(tenant_id=tenant_id, client_id=client_id)
    else:
        password = config.auth.certificate.certificate_password if config.auth.certificate else ""
        config.auth.certificate = CertificateAuth(
            tenant_id=tenant_id,
            client_id=client_id,
            certificate_path=cert_path,
            certificate_password=password,
        )
    config.auth.organization = args.organization or organization or config.auth.organization

    if args.output_dir:
        config.output.base_dir = str(args.output_dir)
    if args.delimiter is not None:
        config.output.delimiter = args.delimiter
    if args.preview is not None:
        config.output.preview_rows = args.preview
    if args.log_dir:
        config.output.log_dir = str(args.log_dir)
    config.verbose = args.verbose or config.verbose
    return config, profile


def validate_common(args: argparse.Namespace):
    if args.delimiter is not None and len(args.delimiter) != 1:
        raise ParameterError("--delimiter must be a single character")
    if args.preview is not None and args.preview < 0:
        raise ParameterError("--preview must be 0 or greater")


# ---------------------------------------------------------------------------
# Run
# ---------------------------------------------------------------------------

def generate_reports(
    report: BaseReport,
    result: ReportResult,
    config: ToolConfig,
    output_path: Optional[Path] = None,
) -> list[Path]:
    """Write the detail report and, where declared, the pivoted report."""
    created = []
    output = config.output
    detail_path = output_path or output.report_path(report.name)

    path = export_report(
        result.rows,
        report.columns(),
        report.sort_keys,
        output.preview_rows,
        detail_path,
        delimiter=output.delimiter,
        title=report.name,
    )
    if path:
        created.append(path)
        print(f"  📊 CSV:        {path}")

    if report.pivot_spec and result.pivot and path:
        pivot_path = (
            detail_path.with_name(f"{detail_path.stem}_pivot{detail_path.suffix}")
            if output_path else output.report_path(report.name, "pivot")
        )
        pivot = export_report(
            result.pivot.rows,
            result.pivot.columns,
            report.pivot_spec.sort_keys,
            0,
            pivot_path,
            delimiter=output.delimiter,
            title=f"{report.name} (pivot)",
        )
        if pivot:
            created.append(pivot)
            print(f"  📊 Pivot CSV:  {pivot}")

    return created


def run_report(
    report_cls: type[BaseReport],
    options: dict,
    config: ToolConfig,
    guardian: SafetyGuardian,
    authenticator: Authenticator,
) -> tuple[BaseReport, ReportResult]:
    """Authenticate for the services the report needs, then execute it."""
    with ExitStack() as stack:
        clients = {}
        if "graph" in report_cls.services:
            token = authenticator.acquire_token(GRAPH_SCOPES)
            clients["graph"] = stack.enter_context(GraphClient(token, guardian))
        if "exchange" in report_cls.services:
            token = authenticator.acquire_token(EXCHANGE_SCOPES)
            clients["exchange"] = stack.enter_context(ExchangeClient(
                token,
                guardian,
                tenant_id=config.auth.tenant_id,
                organization=config.auth.organization,
            ))
        notice("ok", "Authentication successful.")

        report = report_cls(**clients, **options)
        report.prepare(config.output)
        result = report.execute()
        for client in clients.values():
            logger.debug(f"{type(client).__name__} stats: {client.get_stats()}")
    return report, result


def _print_required_permissions():
    print("\n  The app registration needs these application permissions:")
    for permission, purpose in Authenticator.list_required_permissions().items():
        print(f"    {permission:<36s} {purpose}")
    print()


def main(argv: Optional[list[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.command == "profile":
        return _cmd_profile(args)
    if args.command not in REPORTS_BY_NAME:
        parser.print_help()
        return 2

    report_cls = REPORTS_BY_NAME[args.command]

    # --- Parameters and configuration: fatal before any remote call ---
    try:
        validate_common(args)
        options = report_cls.options_from_args(args)
        config, profile = build_config(args)
    except (ParameterError, ConfigurationError) as e:
        notice("error", str(e))
        return 1

    configure_logging(config.verbose, config.output.log_path(report_cls.name))

    print("=" * 70)
    print(f" M365 Admin Reports v{__version__} — {report_cls.name}")
    print(f" Mode: {__mode__} — No tenant modifications will be made")
    print("=" * 70)
    profile_label = f" (profile: {profile.name})" if profile else ""
    print(f"\n  Tenant:  {config.auth.tenant_id}{profile_label}")
    print(f"  Output:  {config.output.report_dir.resolve()}\n")

    guardian = SafetyGuardian()
    authenticator = Authenticator(config.auth)
    try:
        report, result = run_report(report_cls, options, config, guardian, authenticator)
    except AuthenticationError as e:
        notice("error", f"Authentication failed: {e}")
        return 1
    except TargetNotFoundError as e:
        notice("error", str(e))
        return 1
    except GraphAPIError as e:
        notice("error", f"Remote call failed: {e}")
        if e.status_code == 403:
            _print_required_permissions()
        return 1
    except httpx.HTTPError as e:
        notice("error", f"Remote call failed: {e}")
        return 1
    except SafetyViolation as e:
        notice("error", str(e))
        return 1

    meta = result.metadata
    notice(
        "info",
        f"{meta['records_fetched']} records fetched, {meta['rows_produced']} rows, "
        f"{meta['records_skipped']} skipped ({meta['duration_seconds']}s)",
    )
    for warning in meta["warnings"]:
        notice("warning", warning)

    created = generate_reports(report, result, config, output_path=args.output)

    audit = guardian.get_audit_record()
    print("\n" + "=" * 70)
    print(" REPORT COMPLETE")
    print("=" * 70)
    print(f"  Files: {len(created)} written")
    print(f"  Safety: {audit['status']} ({audit['checks_performed']} requests checked)")
    print()
    return 0


if __name__ == "__main__":
    sys.exit(main())
