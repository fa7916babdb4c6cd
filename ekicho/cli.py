#!/usr/bin/env python3
"""CLI for checking and updating visited stations.

Every command signs in with a Firebase ID token, runs the normal sign-in
sequence (user document, one-time migration, initial load) and then acts on
the synced state.

Usage:
    # Overall progress and per-line counts
    uv run python -m ekicho.cli progress

    # Lines operated by selected companies
    uv run python -m ekicho.cli lines --company "JR East" --company "Tokyo Metro"

    # Mark or unmark a station as visited
    uv run python -m ekicho.cli toggle <station-id>

    # Show the local-cache migration run at sign-in
    uv run python -m ekicho.cli migrate

The ID token is read from --id-token or the EKICHO_ID_TOKEN environment variable.
"""

import argparse
import asyncio
import os
import sys
from collections.abc import Awaitable, Callable

from opentelemetry import trace

from ekicho.app import EkichoApp
from ekicho.core.config import settings
from ekicho.core.errors import AuthError
from ekicho.core.firestore import FirestoreDocumentStore, get_firestore_client, get_firestore_watch_client
from ekicho.core.local_store import LocalStore
from ekicho.core.logging import configure_logging
from ekicho.core.redis import get_redis_client
from ekicho.core.telemetry import get_tracer_provider, shutdown_tracer_provider
from ekicho.services.migration_service import MigrationResult
from ekicho.services.session_service import ACCOUNT_INIT_ERROR

ID_TOKEN_ENV_VAR = "EKICHO_ID_TOKEN"
DEFAULT_TIMEOUT_SECONDS = 30.0

CommandHandler = Callable[[argparse.Namespace, EkichoApp], Awaitable[int]]


def _print_error(message: str) -> None:
    print(f"❌ Error: {message}", file=sys.stderr)


async def sign_in(app: EkichoApp, id_token: str | None, timeout: float | None) -> bool:
    """
    Sign in and wait for the sign-in sequence to finish.

    Args:
        app: Application services
        id_token: Firebase ID token
        timeout: Seconds to wait for the sign-in sequence

    Returns:
        True if the user is signed in and the initial load ran
    """
    if not id_token:
        _print_error(f"No ID token. Pass --id-token or set {ID_TOKEN_ENV_VAR}")
        return False

    try:
        await app.identity.sign_in_with_id_token(id_token)
    except AuthError as e:
        _print_error(f"Authentication failed: {e}")
        return False

    try:
        ready = await asyncio.wait_for(app.session.wait_until_ready(), timeout)
    except TimeoutError:
        _print_error(f"Timed out after {timeout}s waiting for sign-in to finish")
        return False

    if not ready:
        _print_error(app.store.state.error or ACCOUNT_INIT_ERROR)
        return False
    return True


async def _wait_for_visits(app: EkichoApp, timeout: float | None) -> bool:
    if not await app.sync.wait_for_visits(timeout):
        _print_error(app.store.state.error or "Timed out waiting for visits")
        return False
    if error := app.store.state.error:
        _print_error(error)
        return False
    return True


async def cmd_progress(args: argparse.Namespace, app: EkichoApp) -> int:
    """
    Print overall progress and per-line visited counts.

    Args:
        args: Parsed command-line arguments
        app: Signed-in application services

    Returns:
        Exit code (0 for success, 1 for error)
    """
    if not await _wait_for_visits(app, args.timeout):
        return 1

    view = app.view_state.current
    progress = view.total_progress
    print(f"🚉 Visited {progress.visited_count}/{progress.total_count} stations ({progress.percentage:.1%})")

    if not app.sync.lines:
        print("No lines found")
        return 0

    print()
    print(f"{'Line':<32} {'Company':<24} Visited")
    print("-" * 70)
    for line in app.sync.lines:
        visited = view.per_line_visited_counts.get(line.line_id, 0)
        print(f"{line.name:<32} {line.company_name:<24} {visited}/{len(set(line.station_ids))}")
    return 0


async def cmd_lines(args: argparse.Namespace, app: EkichoApp) -> int:
    """
    List lines for the given companies, or for the saved company selection.

    Args:
        args: Parsed command-line arguments
        app: Signed-in application services

    Returns:
        Exit code (0 for success, 1 for error)
    """
    if not await _wait_for_visits(app, args.timeout):
        return 1

    if args.company:
        unknown = sorted(set(args.company) - set(app.sync.all_companies))
        if unknown:
            _print_error(f"Unknown company: {', '.join(unknown)}")
            print(f"   Known companies: {', '.join(app.sync.all_companies)}", file=sys.stderr)
            return 1
        selected: frozenset[str] | None = frozenset(args.company)
    else:
        selected = await app.companies.load_selected_companies()

    lines = app.sync.filtered_lines(selected)
    if not lines:
        print("No lines found")
        return 0

    print(f"Showing {len(lines)} of {len(app.sync.lines)} line(s):\n")
    for line in lines:
        symbol = f"[{line.symbol}] " if line.symbol else ""
        visited = app.sync.visited_station_count(line)
        print(f"{symbol}{line.name} ({line.company_name}) - {visited}/{len(set(line.station_ids))} visited")
    return 0


async def cmd_toggle(args: argparse.Namespace, app: EkichoApp) -> int:
    """
    Toggle the visited state of a station.

    Args:
        args: Parsed command-line arguments
        app: Signed-in application services

    Returns:
        Exit code (0 for success, 1 for error)
    """
    if not await _wait_for_visits(app, args.timeout):
        return 1

    station = app.sync.stations.get(args.station_id)
    if station is None:
        print(f"⚠️  Station '{args.station_id}' is not an active station; toggling anyway", file=sys.stderr)
    name = station.name if station else args.station_id

    visited = await app.sync.toggle_visit(args.station_id)
    if visited is None:
        _print_error(app.store.state.error or "Toggle failed")
        return 1

    if visited:
        print(f"✅ Marked {name} as visited")
    else:
        print(f"✅ Unmarked {name}")
    progress = app.sync.total_progress
    print(f"   Progress: {progress.visited_count}/{progress.total_count} ({progress.percentage:.1%})")
    return 0


def _print_migration_result(result: MigrationResult) -> None:
    print(f"   State:    {result.state.value}")
    print(f"   Migrated: {len(result.migrated)}")
    if result.failed:
        print(f"   Failed:   {len(result.failed)} ({', '.join(result.failed)})")


async def cmd_migrate(args: argparse.Namespace, app: EkichoApp) -> int:
    """
    Report the migration that ran at sign-in.

    Args:
        args: Parsed command-line arguments
        app: Signed-in application services

    Returns:
        Exit code (0 for success, 1 for error)
    """
    result = app.migration.last_result

    if result is None:
        _print_error("Migration did not run")
        return 1

    if result.success:
        print("✅ Migration finished")
    else:
        print("❌ Migration failed for every station", file=sys.stderr)
    _print_migration_result(result)
    if result.failed:
        print()
        print("💡 Unmigrated station ids were kept in the local store")
    return 0 if result.success else 1


def build_parser() -> argparse.ArgumentParser:
    """Build the argument parser for all commands."""
    parser = argparse.ArgumentParser(
        description="Ekicho visited-station CLI",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Show overall progress
  uv run python -m ekicho.cli progress

  # List lines of one company
  uv run python -m ekicho.cli lines --company "Tokyo Metro"

  # Toggle a station
  uv run python -m ekicho.cli toggle shinjuku

  # Show the sign-in migration result
  uv run python -m ekicho.cli migrate
        """,
    )
    parser.add_argument(
        "--id-token",
        type=str,
        default=os.environ.get(ID_TOKEN_ENV_VAR),
        help=f"Firebase ID token (default: ${ID_TOKEN_ENV_VAR})",
    )
    parser.add_argument(
        "--timeout",
        type=float,
        default=DEFAULT_TIMEOUT_SECONDS,
        help=f"Seconds to wait for sign-in and the first visits snapshot (default: {DEFAULT_TIMEOUT_SECONDS})",
    )

    subparsers = parser.add_subparsers(dest="command", help="Command to execute")

    subparsers.add_parser(
        "progress",
        help="Show visited progress",
        description="Show overall progress and visited counts per line.",
    )

    lines_parser = subparsers.add_parser(
        "lines",
        help="List lines",
        description="List lines for the given companies, or for the saved company selection.",
    )
    lines_parser.add_argument(
        "--company",
        action="append",
        help="Company name to include (repeatable). Lines without a company are listed under 'Other'",
    )

    toggle_parser = subparsers.add_parser(
        "toggle",
        help="Mark or unmark a station as visited",
        description="Toggle the visited state of a station.",
    )
    toggle_parser.add_argument("station_id", type=str, help="Station id")

    subparsers.add_parser(
        "migrate",
        help="Show the local-cache migration result",
        description="Show the result of the one-time migration run at sign-in.",
    )

    return parser


COMMAND_HANDLERS: dict[str, CommandHandler] = {
    "progress": cmd_progress,
    "lines": cmd_lines,
    "toggle": cmd_toggle,
    "migrate": cmd_migrate,
}


async def run_command(handler: CommandHandler, args: argparse.Namespace) -> int:
    """Create the services against Firestore and Redis, sign in and run ``handler``."""
    redis_client = get_redis_client()
    try:
        documents = FirestoreDocumentStore(get_firestore_client(), get_firestore_watch_client())
        app = EkichoApp.create(documents, LocalStore(redis_client))
        try:
            if not await sign_in(app, args.id_token, args.timeout):
                return 1
            return await handler(args, app)
        finally:
            app.close()
    finally:
        await redis_client.aclose()


def main(argv: list[str] | None = None) -> int:
    """
    Main entry point for the CLI tool.

    Returns:
        Exit code (0 for success, non-zero for error)
    """
    parser = build_parser()
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        return 1

    configure_logging(log_level=settings.LOG_LEVEL)
    if provider := get_tracer_provider():
        trace.set_tracer_provider(provider)

    if handler := COMMAND_HANDLERS.get(args.command):

        async def run_with_services() -> int:
            try:
                return await run_command(handler, args)
            except Exception as e:
                print(f"❌ Unexpected error: {e}", file=sys.stderr)
                return 1

        try:
            return asyncio.run(run_with_services())
        finally:
            shutdown_tracer_provider()

    print(f"❌ Unknown command: {args.command}", file=sys.stderr)
    return 1


if __name__ == "__main__":
    sys.exit(main())
