#!/usr/bin/env python3
"""
butlerctl - adb-butler operational CLI

A lightweight CLI for a device-farm provider host:
- One reconciliation pass (butlerctl reconcile)
- Inventory as seen by USB, ADB and the directory (butlerctl inventory)
- Housekeeping (butlerctl clean-emulators, butlerctl annotate)
- Version info (butlerctl version)
"""

import argparse
import asyncio
import json
import sys
from typing import Awaitable

from adb_butler import __version__
from adb_butler.core.config import AppConfig, get_config
from adb_butler.core.errors import PartialInventoryFailure
from adb_butler.core.logsetup import setup_logging
from adb_butler.events.emitter import EventEmitter
from adb_butler.inventory.models import InventoryResult
from adb_butler.maintenance.annotate import annotate_host_records
from adb_butler.maintenance.cleanup import clean_emulators
from adb_butler.maintenance.models import MaintenanceResult
from adb_butler.reconcile.models import OutcomeStatus, PassStatus, PassSummary
from adb_butler.reconcile.service import build_executor, build_service, run_pass


class Colors:
    """ANSI color codes for terminal output."""

    GREEN = "\033[92m"
    YELLOW = "\033[93m"
    RED = "\033[91m"
    BLUE = "\033[94m"
    RESET = "\033[0m"
    BOLD = "\033[1m"


def colorize(text: str, color: str) -> str:
    """Colorize text if stdout is a TTY."""
    if sys.stdout.isatty():
        return f"{color}{text}{Colors.RESET}"
    return text


OUTCOME_COLORS = {
    OutcomeStatus.RECOVERED: Colors.GREEN,
    OutcomeStatus.UNCHANGED: Colors.BLUE,
    OutcomeStatus.FAILED: Colors.RED,
}


def format_summary(summary: PassSummary) -> str:
    """Render a pass summary for the terminal."""
    lines = [colorize(f"Pass {summary.pass_id}: {summary.status.value}", Colors.BOLD)]

    for authority, reason in sorted(summary.unavailable.items()):
        lines.append(colorize(f"  {authority} unavailable: {reason}", Colors.YELLOW))

    if summary.error and summary.status != PassStatus.COMPLETED:
        lines.append(f"  {summary.error}")

    for outcome in summary.outcomes:
        status = colorize(f"[{outcome.status.value.upper()}]", OUTCOME_COLORS[outcome.status])
        reason = f" {outcome.reason}" if outcome.reason else ""
        lines.append(f"  {status} {outcome.action.describe()}{reason}")

    stats = summary.stats()
    lines.append(
        f"  {stats['discrepancies']} discrepancies, {stats['recovered']} recovered, "
        f"{stats['unchanged']} unchanged, {stats['failed']} failed"
        + (f", {stats['skipped_actions']} not started" if stats["skipped_actions"] else "")
    )
    return "\n".join(lines)


def format_inventory(result: InventoryResult) -> str:
    """Render inventory snapshots as one block per authority."""
    lines = []
    for authority, snapshot in sorted(result.snapshots.items(), key=lambda kv: kv[0].value):
        lines.append(colorize(f"{authority.value} ({len(snapshot)} device(s))", Colors.BOLD))
        for identity, status in sorted(snapshot.items()):
            state = colorize("online", Colors.GREEN) if status.online else colorize(
                status.error or status.state or "offline", Colors.RED
            )
            serial = f" serial={status.serial}" if status.serial and status.serial != identity else ""
            lines.append(f"  {identity:<28} {state}{serial}")
    for authority, reason in sorted(result.unavailable.items(), key=lambda kv: kv[0].value):
        lines.append(colorize(f"{authority.value} unavailable: {reason}", Colors.YELLOW))
    return "\n".join(lines)


def inventory_to_dict(result: InventoryResult) -> dict:
    return {
        "snapshots": {
            authority.value: {
                identity: status.model_dump(mode="json")
                for identity, status in snapshot.items()
            }
            for authority, snapshot in result.snapshots.items()
        },
        "unavailable": {a.value: reason for a, reason in result.unavailable.items()},
    }


def print_maintenance(result: MaintenanceResult) -> int:
    color = Colors.GREEN if result.ok else Colors.RED
    print(colorize(result.message, Colors.YELLOW if result.skipped else color))
    return result.exit_code


def cmd_reconcile(args) -> int:
    """
    Run one reconciliation pass.

    Returns:
        Exit code (0 for a completed or already-running pass, 1 otherwise)
    """
    config = get_config()
    service = build_service(config, dry_run=True if args.dry_run else None)
    summary = asyncio.run(run_pass(service))

    if args.json:
        print(summary.model_dump_json(indent=2))
    else:
        print(format_summary(summary))

    if summary.status in (PassStatus.SKIPPED, PassStatus.CANCELLED):
        return 1
    return 0


def cmd_inventory(args) -> int:
    """
    Print what each authority currently reports.

    Returns:
        Exit code (1 when no authority could be read)
    """
    config = get_config()
    service = build_service(config)

    try:
        result = asyncio.run(service.collector.collect())
    except PartialInventoryFailure as e:
        print(colorize(f"✗ {e}", Colors.RED), file=sys.stderr)
        return 1

    if args.json:
        print(json.dumps(inventory_to_dict(result), indent=2))
    else:
        print(format_inventory(result))
    return 0


async def run_maintenance(config: AppConfig, task: Awaitable[MaintenanceResult]) -> MaintenanceResult:
    """Run a maintenance task and push its result to Loki when configured."""
    result = await task
    if config.loki_url:
        async with EventEmitter(loki_url=config.loki_url, host=config.provider.hostname) as emitter:
            await emitter.emit_maintenance(result)
    return result


def cmd_clean_emulators(args) -> int:
    """Delete this host's emulator records."""
    config = get_config()
    executor = build_executor(config, dry_run=True if args.dry_run else None)
    result = asyncio.run(
        run_maintenance(config, clean_emulators(executor, config.provider.public_ip))
    )
    return print_maintenance(result)


def cmd_annotate(args) -> int:
    """Stamp the configured note onto this host's records."""
    config = get_config()
    executor = build_executor(config, dry_run=True if args.dry_run else None)
    note = args.note or config.provider.note
    result = asyncio.run(
        run_maintenance(config, annotate_host_records(executor, note, config.provider.hostname))
    )
    return print_maintenance(result)


def cmd_version(args) -> int:
    """
    Print version information.

    Returns:
        Exit code (always 0)
    """
    print(f"butlerctl version {__version__}")
    print("adb-butler - USB, ADB and device-directory reconciliation for STF providers")
    return 0


def create_parser() -> argparse.ArgumentParser:
    """Create the argument parser for butlerctl."""
    parser = argparse.ArgumentParser(
        description="adb-butler operational CLI",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  butlerctl reconcile                # Run one reconciliation pass
  butlerctl reconcile --dry-run      # Show which actions would run
  butlerctl inventory --json         # Dump what USB, ADB and the directory see
  butlerctl clean-emulators          # Remove this host's emulator records
  butlerctl annotate                 # Set STF_PROVIDER_NOTE on this host's records

Environment variables:
  RETHINKDB_URL, RETHINKDB_PORT, RETHINKDB_ENV_AUTHKEY   # Device directory
  STF_PROVIDER_PUBLIC_IP, STF_PROVIDER_NOTE, HOSTNAME    # Provider identity
  ADB_BUTLER_CONFIG_FILE                                 # YAML overrides (optional)
        """
    )

    subparsers = parser.add_subparsers(dest="command", help="Command to run")

    reconcile_parser = subparsers.add_parser(
        "reconcile",
        help="Run one reconciliation pass"
    )
    reconcile_parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Log recovery actions without executing them"
    )
    reconcile_parser.add_argument(
        "--json",
        action="store_true",
        help="Print the pass summary as JSON"
    )

    inventory_parser = subparsers.add_parser(
        "inventory",
        help="Show the devices each authority reports"
    )
    inventory_parser.add_argument(
        "--json",
        action="store_true",
        help="Print snapshots as JSON"
    )

    clean_parser = subparsers.add_parser(
        "clean-emulators",
        help="Delete this host's emulator records from the directory"
    )
    clean_parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Show which records would be deleted"
    )

    annotate_parser = subparsers.add_parser(
        "annotate",
        help="Set the provider note on this host's directory records"
    )
    annotate_parser.add_argument(
        "--note",
        default=None,
        help="Note to set (default: STF_PROVIDER_NOTE)"
    )
    annotate_parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Show the update without writing it"
    )

    subparsers.add_parser(
        "version",
        help="Show version information"
    )

    return parser


COMMANDS = {
    "reconcile": cmd_reconcile,
    "inventory": cmd_inventory,
    "clean-emulators": cmd_clean_emulators,
    "annotate": cmd_annotate,
    "version": cmd_version,
}


def main(argv=None):
    """Main entry point for butlerctl CLI."""
    parser = create_parser()
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        return 0

    handler = COMMANDS.get(args.command)
    if handler is None:
        print(f"Unknown command: {args.command}", file=sys.stderr)
        return 1

    if args.command != "version":
        setup_logging(get_config().log_level)

    try:
        return handler(args)
    except Exception as e:
        print(colorize(f"✗ {args.command} failed: {e}", Colors.RED), file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
