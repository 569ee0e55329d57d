"""
M365 Admin Toolkit — Main Orchestrator

Usage:
    python -m m365_admin_toolkit expiry                           # default profile
    python -m m365_admin_toolkit --profile contoso-prod assess    # named profile
    python -m m365_admin_toolkit --credentials-file creds.txt --auth secret expiry
    python -m m365_admin_toolkit inventory devices --excel
    python -m m365_admin_toolkit ca deploy --exclude-group <GUID>            # dry-run
    python -m m365_admin_toolkit --apply ca deploy --exclude-group <GUID>    # make changes
    python -m m365_admin_toolkit convert export.csv

Profile management:
    python -m m365_admin_toolkit profile add <name> --tenant-id ... --client-id ...
    python -m m365_admin_toolkit profile list
    python -m m365_admin_toolkit profile remove <name>
    python -m m365_admin_toolkit profile set-default <name>

Commands that change the tenant run as a DRY-RUN unless --apply is given.
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional

import httpx

from .config import (
    AUTH_MODES,
    GRAPH_SCOPE,
    REQUIRED_PERMISSIONS,
    CertificateAuth,
    DelegatedAuth,
    SecretAuth,
    ToolkitConfig,
)
from .auth.authenticator import AuthenticationError, Authenticator
from .credentials import CredentialsFileError, load_credentials_file
from .graph.client import GraphAPIError, GraphClient
from .powerplatform.client import API_SCOPES, PowerPlatformClient
from .safety.guardian import ChangeGuard, SafetyViolation
from .collectors import (
    EXPIRY_COLLECTORS,
    ConditionalAccessCollector,
    IntuneCollector,
    PowerPlatformCollector,
)
from .analyzers import ALL_ANALYZERS, ExpirationAnalyzer
from .reporting import ResultSet, Status, csv_to_excel, export_html, export_results, write_rows
from .notify.teams import WebhookError, build_message_card, post_message_card
from .inventory import INVENTORY_KINDS, collect_inventory, export_inventory
from .operations.base import FAILED, OperationSummary
from .operations.ca_templates import POLICY_STATES, DEFAULT_STATE, TEMPLATES, deploy_templates, get_templates
from .operations.device_rename import PLACEHOLDERS, rename_devices, validate_template
from .operations.autopilot_import import import_devices, read_hash_csv
from .operations.app_cleanup import find_unassigned_apps, remove_group_assignments
from .profiles import ProfileStore, TenantProfile, resolve_profile
from .prompts import confirm, prompt_text

logger = logging.getLogger("m365_admin_toolkit")

ASSESS_CHECKS = ["expiry", "conditional-access", "intune", "power-platform"]
WRITE_COMMANDS = {"ca", "devices", "autopilot", "apps"}


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
    print("Usage: python -m m365_admin_toolkit profile {add|list|remove|set-default}")
    return 0


def _profile_list() -> int:
    store = ProfileStore.load()
    profiles = store.list_profiles()
    if not profiles:
        print("No profiles configured. Add one with:\n")
        print("  python -m m365_admin_toolkit profile add <name> \\")
        print("    --tenant-id <GUID> --client-id <GUID> --cert-path ./base64.txt")
        return 0

    print(f"\n  {'Name':<20s} {'Tenant ID':<38s} {'Client ID':<38s} {'Auth':<12s} {'Default'}")
    print(f"  {'─'*20} {'─'*38} {'─'*38} {'─'*12} {'─'*7}")
    for p in profiles:
        default_marker = "  ✓" if p.name == store.default_profile else ""
        display = p.tenant_display_name or ""
        name_col = f"{p.name}" + (f" ({display})" if display else "")
        print(f"  {name_col:<20s} {p.tenant_id:<38s} {p.client_id:<38s} {p.auth_mode:<12s}{default_marker}")
    print()
    return 0


def _profile_add(args: argparse.Namespace) -> int:
    store = ProfileStore.load()
    name = args.profile_name
    if store.get(name):
        print(f"  Profile '{name}' already exists. It will be overwritten.")

    profile = TenantProfile(
        name=name,
        tenant_id=args.profile_tenant_id,
        client_id=args.profile_client_id,
        auth_mode=args.auth_mode,
        cert_path=args.profile_cert_path or "./base64.txt",
        credentials_file=args.profile_credentials_file or "",
        tenant_display_name=args.display_name or "",
        teams_webhook_url=args.profile_webhook or "",
    )
    set_as_default = args.set_default or not store.profiles
    store.add(profile, set_default=set_as_default)
    print(f"  ✅ Profile '{name}' saved.")
    if set_as_default:
        print(f"  ✅ Set as default profile.")
    return 0


def _profile_remove(args: argparse.Namespace) -> int:
    store = ProfileStore.load()
    if store.remove(args.profile_name):
        print(f"  ✅ Profile '{args.profile_name}' removed.")
        return 0
    print(f"  ❌ Profile '{args.profile_name}' not found.")
    return 1


def _profile_set_default(args: argparse.Namespace) -> int:
    store = ProfileStore.load()
    if store.set_default(args.profile_name):
        print(f"  ✅ Default profile set to '{args.profile_name}'.")
        return 0
    print(f"  ❌ Profile '{args.profile_name}' not found.")
    return 1


# ---------------------------------------------------------------------------
# Argument parsing
# ---------------------------------------------------------------------------

def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="m365_admin_toolkit",
        description="Microsoft 365 tenant administration toolkit",
    )

    # --- Global options ---
    parser.add_argument("--profile", "-p", default=None,
                        help="Tenant profile name to use (run 'profile list' to see available)")
    parser.add_argument("--config", "-c", type=Path, help="Path to JSON configuration file")
    parser.add_argument("--credentials-file", type=Path,
                        help="KEY=VALUE credentials file (TENANT_ID, CLIENT_ID, CLIENT_SECRET, ...)")
    parser.add_argument("--auth", choices=AUTH_MODES, default=None,
                        help="Authentication mode (overrides profile and config)")
    parser.add_argument("--tenant-id", default=None, help="Tenant ID (overrides profile)")
    parser.add_argument("--client-id", default=None, help="Client ID (overrides profile)")
    parser.add_argument("--cert-path", type=Path, help="Path to base64-encoded PFX (overrides profile)")
    parser.add_argument("--tenant-name", default=None,
                        help="Display name for the tenant in reports (overrides profile)")
    parser.add_argument("--output-dir", "-o", type=Path, default=None,
                        help="Output directory for reports (default: ./m365_admin_output)")
    parser.add_argument("--apply", action="store_true",
                        help="Send changes to the tenant (default is a dry-run)")
    parser.add_argument("--yes", "-y", action="store_true",
                        help="Don't ask for confirmation before applying changes")
    parser.add_argument("--verbose", "-v", action="store_true", help="Debug logging")

    subparsers = parser.add_subparsers(dest="command", help="Commands")

    # --- profile ---
    prof_parser = subparsers.add_parser("profile", help="Manage tenant profiles")
    prof_sub = prof_parser.add_subparsers(dest="profile_action", help="Profile actions")

    add_p = prof_sub.add_parser("add", help="Add or update a tenant profile")
    add_p.add_argument("profile_name", help="Short name for the profile (e.g. 'contoso-prod')")
    add_p.add_argument("--tenant-id", dest="profile_tenant_id", required=True, help="Entra tenant ID (GUID)")
    add_p.add_argument("--client-id", dest="profile_client_id", required=True, help="App registration client ID (GUID)")
    add_p.add_argument("--auth-mode", choices=AUTH_MODES, default="certificate", help="Authentication mode")
    add_p.add_argument("--cert-path", dest="profile_cert_path", default="./base64.txt",
                       help="Path to base64-encoded PFX (default: ./base64.txt)")
    add_p.add_argument("--credentials-file", dest="profile_credentials_file",
                       help="KEY=VALUE credentials file for secret auth")
    add_p.add_argument("--display-name", help="Friendly tenant display name for reports")
    add_p.add_argument("--webhook", dest="profile_webhook", help="Default Teams webhook URL")
    add_p.add_argument("--set-default", action="store_true", help="Set as default profile")

    prof_sub.add_parser("list", help="List all configured profiles")

    rm_p = prof_sub.add_parser("remove", help="Remove a profile")
    rm_p.add_argument("profile_name", help="Name of the profile to remove")

    sd_p = prof_sub.add_parser("set-default", help="Set the default profile")
    sd_p.add_argument("profile_name", help="Name of the profile to set as default")

    # --- expiry ---
    exp_p = subparsers.add_parser("expiry", help="Apple token, enrollment token and app credential expiration")
    exp_p.add_argument("--threshold", type=int, default=None, help="Warn when expiring within N days (default: 30)")
    exp_p.add_argument("--webhook", default=None, help="Teams incoming webhook URL")
    exp_p.add_argument("--include-passing", action="store_true", help="Send passing items to Teams too")
    exp_p.add_argument("--formats", nargs="+", choices=["csv", "html"], default=None, help="Report formats")

    # --- assess ---
    as_p = subparsers.add_parser("assess", help="Best-practices assessment (HTML + CSV report)")
    as_p.add_argument("--checks", nargs="+", choices=ASSESS_CHECKS, default=ASSESS_CHECKS,
                      help="Check groups to run (default: all)")
    as_p.add_argument("--threshold", type=int, default=None, help="Expiration warning threshold in days")
    as_p.add_argument("--webhook", default=None, help="Teams incoming webhook URL")
    as_p.add_argument("--include-passing", action="store_true", help="Send passing items to Teams too")
    as_p.add_argument("--formats", nargs="+", choices=["csv", "html"], default=None, help="Report formats")

    # --- inventory ---
    inv_p = subparsers.add_parser("inventory", help="Export tenant inventory to CSV")
    inv_p.add_argument("kind", choices=list(INVENTORY_KINDS), help="What to export")
    inv_p.add_argument("--excel", action="store_true", help="Also write an .xlsx workbook")

    # --- ca ---
    ca_p = subparsers.add_parser("ca", help="Conditional Access templates")
    ca_sub = ca_p.add_subparsers(dest="ca_action", help="CA actions")
    ca_sub.add_parser("list-templates", help="List the built-in policy templates")
    dep_p = ca_sub.add_parser("deploy", help="Create policies from templates")
    dep_p.add_argument("--templates", nargs="+", choices=list(TEMPLATES), default=None,
                       help="Templates to deploy (default: all)")
    dep_p.add_argument("--state", choices=POLICY_STATES, default=DEFAULT_STATE,
                       help=f"Policy state (default: {DEFAULT_STATE})")
    dep_p.add_argument("--exclude-group", action="append", default=[], metavar="ID",
                       help="Break-glass group to exclude (repeatable)")
    dep_p.add_argument("--exclude-user", action="append", default=[], metavar="ID",
                       help="Break-glass user to exclude (repeatable)")
    dep_p.add_argument("--name-prefix", default="", help="Prefix for policy display names")

    # --- devices ---
    dev_p = subparsers.add_parser("devices", help="Managed device operations")
    dev_sub = dev_p.add_subparsers(dest="devices_action", help="Device actions")
    ren_p = dev_sub.add_parser("rename", help="Bulk rename from a naming template")
    ren_p.add_argument("--template", required=True,
                       help=f"Name template using {', '.join('{' + p + '}' for p in sorted(PLACEHOLDERS))}")
    ren_p.add_argument("--prefix", default="", help="Value for {prefix}")
    ren_p.add_argument("--os", dest="os_filter", default=None, help="Only devices with this OS (e.g. Windows)")

    # --- autopilot ---
    ap_p = subparsers.add_parser("autopilot", help="Windows Autopilot")
    ap_sub = ap_p.add_subparsers(dest="autopilot_action", help="Autopilot actions")
    imp_p = ap_sub.add_parser("import", help="Import a hardware-hash CSV")
    imp_p.add_argument("csv", type=Path, help="CSV from Get-WindowsAutopilotInfo")
    imp_p.add_argument("--group-tag", default=None, help="Group tag for every device (overrides the CSV)")

    # --- apps ---
    apps_p = subparsers.add_parser("apps", help="Intune app assignments")
    apps_sub = apps_p.add_subparsers(dest="apps_action", help="App actions")
    clean_p = apps_sub.add_parser("cleanup", help="Remove group assignments or list unassigned apps")
    target = clean_p.add_mutually_exclusive_group(required=True)
    target.add_argument("--group", default=None, metavar="ID", help="Remove every assignment to this group")
    target.add_argument("--unassigned", action="store_true", help="Report apps with no assignments")

    # --- convert ---
    conv_p = subparsers.add_parser("convert", help="Convert a CSV export to Excel")
    conv_p.add_argument("csv", type=Path, help="CSV file")
    conv_p.add_argument("xlsx", type=Path, nargs="?", default=None, help="Output .xlsx (default: alongside the CSV)")

    return parser


def parse_args(argv: Optional[list[str]] = None) -> argparse.Namespace:
    return build_parser().parse_args(argv)


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------

def _first(*values: Any) -> Any:
    for value in values:
        if value:
            return value
    return ""


def _config_identity(config: ToolkitConfig):
    auth = config.auth
    return auth.certificate or auth.secret or auth.delegated


def build_config(
    args: argparse.Namespace,
    prompt=prompt_text,
) -> tuple[ToolkitConfig, Optional[TenantProfile]]:
    """
    Build toolkit configuration.
    Precedence: CLI flag > credentials file > profile > JSON config > prompt.
    """
    if args.config:
        if not args.config.exists():
            print(f"\n❌ Config file not found: {args.config}")
            sys.exit(1)
        config = ToolkitConfig.from_file(args.config)
    else:
        config = ToolkitConfig()

    # --- Resolve tenant identity sources ---
    profile = None
    if args.profile:
        profile = resolve_profile(args.profile)
        if not profile:
            print(f"\n❌ Profile '{args.profile}' not found. Use 'profile list' to see available profiles.")
            sys.exit(1)
    elif not args.config and not args.tenant_id and not args.credentials_file:
        profile = resolve_profile()

    creds: dict[str, str] = {}
    creds_path = args.credentials_file
    if not creds_path and profile and profile.credentials_file:
        creds_path = profile.resolve_path(profile.credentials_file)
    if creds_path:
        creds = load_credentials_file(creds_path)

    from_file = _config_identity(config)

    creds_mode = ""
    if creds.get("CLIENT_SECRET"):
        creds_mode = "secret"
    elif creds.get("CERT_PATH"):
        creds_mode = "certificate"
    mode = _first(args.auth, creds_mode, profile.auth_mode if profile else "", config.auth.mode)

    tenant_id = _first(
        args.tenant_id, creds.get("TENANT_ID"),
        profile.tenant_id if profile else "", from_file.tenant_id if from_file else "",
    ) or prompt("Tenant ID")
    client_id = _first(
        args.client_id, creds.get("CLIENT_ID"),
        profile.client_id if profile else "", from_file.client_id if from_file else "",
    ) or prompt("Client ID")

    config.auth.mode = mode
    if mode == "certificate":
        file_cert = config.auth.certificate
        cert_path = _first(
            str(args.cert_path) if args.cert_path else "",
            creds.get("CERT_PATH"),
            profile.resolve_cert_path() if profile else "",
            file_cert.certificate_path if file_cert else "",
            "./base64.txt",
        )
        config.auth.certificate = CertificateAuth(
            tenant_id=tenant_id,
            client_id=client_id,
            certificate_path=cert_path,
            certificate_password=_first(
                creds.get("CERT_PASSWORD"), file_cert.certificate_password if file_cert else ""
            ),
        )
    elif mode == "secret":
        file_secret = config.auth.secret
        config.auth.secret = SecretAuth(
            tenant_id=tenant_id,
            client_id=client_id,
            client_secret=_first(
                creds.get("CLIENT_SECRET"), file_secret.client_secret if file_secret else ""
            ),
        )
    else:
        config.auth.delegated = DelegatedAuth(tenant_id=tenant_id, client_id=client_id)

    config.teams_webhook_url = _first(
        getattr(args, "webhook", None),
        creds.get("TEAMS_WEBHOOK_URL"),
        profile.teams_webhook_url if profile else "",
        config.teams_webhook_url,
    )

    # --- Run settings ---
    if getattr(args, "threshold", None) is not None:
        config.checks.expiry_threshold_days = args.threshold
    if getattr(args, "formats", None):
        config.output.formats = args.formats
    if args.output_dir:
        config.output.base_dir = str(args.output_dir)
    config.operations.dry_run = not args.apply
    config.operations.assume_yes = args.yes
    config.verbose = args.verbose or config.verbose

    return config, profile


# ---------------------------------------------------------------------------
# Collection / analysis / reporting
# ---------------------------------------------------------------------------

async def run_collection(collectors: list) -> dict[str, Any]:
    """
    Run collectors concurrently.

    Returns:
        Dict mapping collector name to CollectorResult.
    """
    results = {}
    print(f"\n  Running {len(collectors)} collectors concurrently...\n")
    completed = await asyncio.gather(*(c.execute() for c in collectors), return_exceptions=True)

    for collector, result in zip(collectors, completed):
        display_name = collector.__class__.__name__
        if isinstance(result, Exception):
            print(f"  ❌ {display_name}: FAILED — {result}")
            continue
        print(f"  ✅ {display_name}: {result.metadata['items_collected']} items "
              f"({result.metadata.get('duration_seconds', '?')}s)")
        for w in result.metadata.get("warnings", []):
            print(f"      ⚠  {w}")
        for e in result.metadata.get("errors", []):
            print(f"      ❌ {e}")
        results[collector.name] = result

    return results


def run_analysis(
    collector_results: dict[str, Any],
    analyzer_classes: list,
    config: ToolkitConfig,
    now: Optional[datetime] = None,
) -> ResultSet:
    """Run analyzers against collected data and merge their results."""
    # Analyzers read data[collector_name]; _metadata lets them tell 403 gaps from empty data
    merged_data = {
        name: {**result.data, "_metadata": result.metadata}
        for name, result in collector_results.items()
    }
    now = now or datetime.now(timezone.utc)

    results = ResultSet()
    for cls in analyzer_classes:
        analyzer = cls(config=config.checks, now=now)
        analyzer_results = analyzer.analyze(merged_data)
        if not analyzer_results:
            continue
        results.extend(analyzer_results)
        counts = {s.value: sum(1 for r in analyzer_results if r.status == s) for s in Status}
        print(f"  ✅ {cls.__name__}: {len(analyzer_results)} results {counts}")
    return results


def print_results(results: ResultSet):
    icons = {Status.FAIL: "❌", Status.WARNING: "⚠ ", Status.PASS: "✅"}
    for category, items in results.by_category().items():
        print(f"\n  {category}")
        for r in items:
            print(f"    {icons[r.status]} {r.test_name}: {r.details}")
    totals = results.summary()
    print(f"\n  Pass: {totals['Pass']}   Warning: {totals['Warning']}   Fail: {totals['Fail']}")


async def emit_results(
    results: ResultSet,
    config: ToolkitConfig,
    run_id: str,
    tenant_name: str,
    title: str,
    name: str,
    include_passing: bool = False,
) -> list[Path]:
    """Write the requested report formats and post to Teams when configured."""
    output_dir = config.output.run_dir
    created = []

    if "csv" in config.output.formats:
        path = export_results(results, output_dir, run_id, name=name)
        created.append(path)
        print(f"  📊 CSV:   {path}")

    if "html" in config.output.formats:
        path = export_html(results, output_dir, run_id, title=title, tenant_name=tenant_name, name=name)
        created.append(path)
        print(f"  🌐 HTML:  {path}")

    if config.teams_webhook_url:
        totals = results.summary()
        card = build_message_card(
            f"{title} — {tenant_name}",
            results,
            summary_text=f"{totals['Fail']} failing, {totals['Warning']} warnings, {totals['Pass']} passing",
            include_passing=include_passing,
        )
        try:
            await post_message_card(config.teams_webhook_url, card)
            print("  ✅ Teams notification sent.")
        except (WebhookError, httpx.HTTPError) as e:
            logger.error(f"Teams notification failed: {e}")
            print(f"  ❌ Teams notification failed: {e}")

    return created


def write_operation_report(summary: OperationSummary, output_dir: Path, run_id: str) -> Optional[Path]:
    counts = summary.counts
    print(f"\n  Applied: {counts['applied']}   Planned: {counts['planned']}   "
          f"Skipped: {counts['skipped']}   Failed: {counts['failed']}")
    if not summary.items:
        return None
    path = write_rows(summary.to_rows(), output_dir / f"{summary.operation.replace('-', '_')}_{run_id}.csv")
    print(f"  📊 CSV:   {path}")
    return path


def write_change_audit(guardian: ChangeGuard, output_dir: Path, run_id: str) -> Optional[Path]:
    """Write the change audit JSON when any change was recorded."""
    if not guardian.changes and not guardian.violations:
        return None
    output_dir.mkdir(parents=True, exist_ok=True)
    path = output_dir / f"change_audit_{run_id}.json"
    with open(path, "w", encoding="utf-8") as fh:
        json.dump(guardian.get_audit_record(), fh, indent=2, default=str)
    print(f"  📝 Change audit: {path}")
    return path


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------

class Session:
    """Everything a tenant command needs: config, auth, guard and run identity."""

    def __init__(self, config: ToolkitConfig, tenant_name: str):
        self.config = config
        self.tenant_name = tenant_name
        self.run_id = datetime.now(timezone.utc).strftime("%Y%m%d_%H%M%S") + "_" + uuid.uuid4().hex[:8]
        self.guardian = ChangeGuard(dry_run=config.operations.dry_run)
        self.authenticator = Authenticator(config.auth)

    @property
    def output_dir(self) -> Path:
        return self.config.output.run_dir

    async def graph(self) -> GraphClient:
        token = await self.authenticator.acquire_token([GRAPH_SCOPE])
        return GraphClient(access_token=token, guardian=self.guardian)

    async def power_platform(self, apis: tuple[str, ...]) -> dict[str, PowerPlatformClient]:
        clients = {}
        for api in apis:
            token = await self.authenticator.acquire_token([API_SCOPES[api]])
            clients[api] = PowerPlatformClient(api, access_token=token, guardian=self.guardian)
        return clients


async def cmd_expiry(args: argparse.Namespace, session: Session) -> int:
    config = session.config
    async with await session.graph() as graph:
        print("✅ Authentication successful.")
        collectors = [cls(graph=graph, config=config.checks) for cls in EXPIRY_COLLECTORS]
        collector_results = await run_collection(collectors)
        logger.debug(f"Graph client stats: {graph.get_stats()}")

    print(f"\n  Threshold: {config.checks.expiry_threshold_days} days\n")
    results = run_analysis(collector_results, [ExpirationAnalyzer], config)
    print_results(results)
    print()
    await emit_results(
        results, config, session.run_id, session.tenant_name,
        title="M365 Expiration Report", name="expiry",
        include_passing=args.include_passing,
    )
    return 0


async def cmd_assess(args: argparse.Namespace, session: Session) -> int:
    config = session.config
    checks = set(args.checks)
    collector_results: dict[str, Any] = {}

    graph_collectors = []
    if "expiry" in checks:
        graph_collectors.extend(EXPIRY_COLLECTORS)
    if "conditional-access" in checks:
        graph_collectors.append(ConditionalAccessCollector)
    if "intune" in checks:
        graph_collectors.append(IntuneCollector)

    if graph_collectors:
        async with await session.graph() as graph:
            print("✅ Authentication successful.")
            collector_results.update(
                await run_collection([cls(graph=graph, config=config.checks) for cls in graph_collectors])
            )
            logger.debug(f"Graph client stats: {graph.get_stats()}")

    if "power-platform" in checks:
        try:
            clients = await session.power_platform(("bap", "flow", "powerapps"))
        except AuthenticationError as e:
            print(f"  ⚠  Skipping Power Platform: {e}")
        else:
            for client in clients.values():
                await client.__aenter__()
            try:
                collector_results.update(
                    await run_collection([PowerPlatformCollector(clients, config.checks)])
                )
            finally:
                for client in clients.values():
                    await client.__aexit__(None, None, None)

    if not collector_results:
        print("\n❌ No data collected. Cannot proceed with analysis.")
        return 1

    print()
    results = run_analysis(collector_results, ALL_ANALYZERS, config)
    print_results(results)
    print()
    await emit_results(
        results, config, session.run_id, session.tenant_name,
        title="M365 Best-Practices Assessment", name="assessment",
        include_passing=args.include_passing,
    )
    return 0


async def cmd_inventory(args: argparse.Namespace, session: Session) -> int:
    apis = INVENTORY_KINDS[args.kind]
    graph = await session.graph() if "graph" in apis else None
    pp_clients = await session.power_platform(tuple(a for a in apis if a != "graph"))
    print("✅ Authentication successful.")

    clients = ([graph] if graph else []) + list(pp_clients.values())
    for client in clients:
        await client.__aenter__()
    try:
        rows = await collect_inventory(args.kind, graph=graph, pp_clients=pp_clients)
    finally:
        for client in clients:
            await client.__aexit__(None, None, None)

    print(f"\n  {args.kind}: {len(rows)} records")
    for path in export_inventory(args.kind, rows, session.output_dir, session.run_id, excel=args.excel):
        print(f"  📊 {path.suffix.lstrip('.').upper():<5s} {path}")
    return 0


def _confirm_apply(config: ToolkitConfig, description: str) -> bool:
    if config.operations.dry_run or config.operations.assume_yes:
        return True
    return confirm(f"\nApply {description} to the tenant?", default=False)


async def cmd_ca_deploy(args: argparse.Namespace, session: Session) -> int:
    templates = get_templates(args.templates)
    if not _confirm_apply(session.config, f"{len(templates)} Conditional Access policies"):
        print("  ⏭  Aborted.")
        return 1
    async with await session.graph() as graph:
        summary = await deploy_templates(
            graph,
            templates,
            session.config.operations,
            state=args.state,
            exclude_users=args.exclude_user,
            exclude_groups=args.exclude_group,
            name_prefix=args.name_prefix,
        )
    write_operation_report(summary, session.output_dir, session.run_id)
    return 1 if summary.count(FAILED) else 0


async def cmd_devices_rename(args: argparse.Namespace, session: Session) -> int:
    if not _confirm_apply(session.config, f"device renames from template '{args.template}'"):
        print("  ⏭  Aborted.")
        return 1
    async with await session.graph() as graph:
        summary = await rename_devices(
            graph, args.template, session.config.operations,
            prefix=args.prefix, os_filter=args.os_filter,
        )
    write_operation_report(summary, session.output_dir, session.run_id)
    return 1 if summary.count(FAILED) else 0


async def cmd_autopilot_import(args: argparse.Namespace, session: Session) -> int:
    devices = read_hash_csv(args.csv, group_tag=args.group_tag)
    print(f"  {len(devices)} devices read from {args.csv}")
    if not _confirm_apply(session.config, f"import of {len(devices)} Autopilot devices"):
        print("  ⏭  Aborted.")
        return 1
    async with await session.graph() as graph:
        summary = await import_devices(graph, devices, session.config.operations)
    write_operation_report(summary, session.output_dir, session.run_id)
    return 1 if summary.count(FAILED) else 0


async def cmd_apps_cleanup(args: argparse.Namespace, session: Session) -> int:
    if args.unassigned:
        async with await session.graph() as graph:
            summary = await find_unassigned_apps(graph)
        print(f"\n  {len(summary.items)} apps have no assignments")
        for item in summary.items:
            print(f"    ⚠  {item['target']} ({item['type']})")
        write_operation_report(summary, session.output_dir, session.run_id)
        return 0

    if not _confirm_apply(session.config, f"removal of app assignments for group {args.group}"):
        print("  ⏭  Aborted.")
        return 1
    async with await session.graph() as graph:
        summary = await remove_group_assignments(graph, args.group, session.config.operations)
    write_operation_report(summary, session.output_dir, session.run_id)
    return 1 if summary.count(FAILED) else 0


def cmd_ca_list_templates() -> int:
    print(f"\n  {'Key':<28s} {'Policy'}")
    print(f"  {'─'*28} {'─'*50}")
    for template in TEMPLATES.values():
        print(f"  {template.key:<28s} {template.display_name}")
        print(f"  {'':<28s} {template.description}")
    print()
    return 0


def cmd_convert(args: argparse.Namespace) -> int:
    if not args.csv.exists():
        print(f"  ❌ File not found: {args.csv}")
        return 1
    try:
        path = csv_to_excel(args.csv, args.xlsx)
    except ValueError as e:
        print(f"  ❌ {e}")
        return 1
    print(f"  ✅ Written: {path}")
    return 0


TENANT_COMMANDS = {
    "expiry": cmd_expiry,
    "assess": cmd_assess,
    "inventory": cmd_inventory,
    ("ca", "deploy"): cmd_ca_deploy,
    ("devices", "rename"): cmd_devices_rename,
    ("autopilot", "import"): cmd_autopilot_import,
    ("apps", "cleanup"): cmd_apps_cleanup,
}


def _resolve_command(args: argparse.Namespace):
    if args.command in TENANT_COMMANDS:
        return TENANT_COMMANDS[args.command]
    action = getattr(args, f"{args.command}_action", None)
    return TENANT_COMMANDS.get((args.command, action))


def _validate_inputs(args: argparse.Namespace):
    """Reject bad local input before any authentication happens."""
    if args.command == "devices":
        validate_template(args.template)
    if args.command == "autopilot" and not args.csv.exists():
        raise ValueError(f"File not found: {args.csv}")


def run_tenant_command(args: argparse.Namespace, handler) -> int:
    config, profile = build_config(args)
    config.output.create_directories()

    tenant_name = _first(args.tenant_name, profile.tenant_display_name if profile else "", "Unknown Tenant")
    session = Session(config, tenant_name)

    if args.command in WRITE_COMMANDS:
        session.guardian.print_banner()

    print("=" * 70)
    print(" M365 Admin Toolkit")
    print("=" * 70)
    profile_label = f" (profile: {profile.name})" if profile else ""
    print(f"\n📋 Run ID:  {session.run_id}")
    print(f"📂 Output:  {session.output_dir.resolve()}")
    print(f"🏢 Tenant:  {tenant_name}{profile_label}")
    permissions = REQUIRED_PERMISSIONS.get(args.command)
    if permissions:
        logger.debug(f"Required permissions: {', '.join(permissions)}")
    print("\n🔐 Authenticating...")

    try:
        return asyncio.run(handler(args, session))
    finally:
        write_change_audit(session.guardian, session.output_dir, session.run_id)


def main(argv: Optional[list[str]] = None):
    """Synchronous entry point for `python -m m365_admin_toolkit`."""
    parser = build_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s %(levelname)-8s %(name)s: %(message)s",
    )

    if args.command is None:
        parser.print_help()
        sys.exit(2)
    if args.command == "profile":
        sys.exit(_cmd_profile(args))
    if args.command == "convert":
        sys.exit(cmd_convert(args))
    if args.command == "ca" and args.ca_action == "list-templates":
        sys.exit(cmd_ca_list_templates())

    handler = _resolve_command(args)
    if handler is None:
        parser.parse_args([args.command, "--help"])
        sys.exit(2)

    try:
        _validate_inputs(args)
        sys.exit(run_tenant_command(args, handler))
    except ValueError as e:
        print(f"\n❌ {e}")
        sys.exit(1)
    except CredentialsFileError as e:
        print(f"\n❌ Credentials file error: {e}")
        sys.exit(1)
    except AuthenticationError as e:
        logger.error(f"Authentication failed: {e}")
        print(f"\n❌ Authentication failed: {e}")
        sys.exit(1)
    except SafetyViolation as e:
        print(f"\n❌ {e}")
        sys.exit(1)
    except GraphAPIError as e:
        logger.error(str(e))
        print(f"\n❌ {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
