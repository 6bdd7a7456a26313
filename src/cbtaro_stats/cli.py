"""CLI commands for cbtaro-stats."""

from __future__ import annotations

import argparse
import asyncio
from pathlib import Path
from typing import Callable

from cbtaro_stats.config import CONFIG_KEYS, Settings, load_settings, set_config_value
from cbtaro_stats.csv_export import export_csv, export_filename
from cbtaro_stats.display import (
    print_admin_denied,
    print_config_set,
    print_error,
    print_export_result,
    print_record,
    print_records_table,
)
from cbtaro_stats.identity import StaticIdentityProvider
from cbtaro_stats.ledger import READING_TYPES, CounterRecord, LocalLedgerStore
from cbtaro_stats.logging_utils import configure_logging
from cbtaro_stats.remote import AdminAuthorizationError, RemoteError, RemoteTrackClient, record_from_remote
from cbtaro_stats.service import AnalyticsService


def build_parser() -> argparse.ArgumentParser:
    """Build and return the argument parser."""
    parser = argparse.ArgumentParser(
        prog="cbtaro-stats",
        description="Visit streaks and reading counts for cbTARO",
    )
    parser.add_argument("--fid", type=int, default=None, help="Farcaster ID to track as")
    parser.add_argument("--wallet", default=None, help="Wallet address to track as")
    parser.add_argument("--config", default=None, help="Path to config.json")
    parser.add_argument("--dev", action="store_true", help="Verbose logging")
    subparsers = parser.add_subparsers(dest="command")
    subparsers.add_parser("visit", help="Record a visit and update the streak")
    reading_parser = subparsers.add_parser("reading", help="Record a reading")
    reading_parser.add_argument("type", choices=list(READING_TYPES))
    stats_parser = subparsers.add_parser("stats", help="Show stats for the current identity")
    stats_parser.add_argument("--all", action="store_true", help="Show every identity in the local ledger")
    export_parser = subparsers.add_parser("export", help="Export the local ledger as CSV")
    export_parser.add_argument("--output", "-o", default=None, help="Output file path")
    admin_parser = subparsers.add_parser("admin", help="Server-wide statistics (admin wallet only)")
    admin_sub = admin_parser.add_subparsers(dest="admin_command")
    admin_stats_p = admin_sub.add_parser("stats", help="Show all server records")
    admin_stats_p.add_argument("--wallet", dest="admin_wallet", required=True, help="Admin wallet address")
    admin_export_p = admin_sub.add_parser("export", help="Download all server records as CSV")
    admin_export_p.add_argument("--wallet", dest="admin_wallet", required=True, help="Admin wallet address")
    admin_export_p.add_argument("--output", "-o", default=None, help="Output file path")
    config_parser = subparsers.add_parser("config", help="Persist a config value")
    config_sub = config_parser.add_subparsers(dest="config_command")
    config_set_p = config_sub.add_parser("set", help="Set KEY to VALUE")
    config_set_p.add_argument("key", choices=list(CONFIG_KEYS))
    config_set_p.add_argument("value")
    serve_parser = subparsers.add_parser("serve", help="Run the track service")
    serve_parser.add_argument("--host", default="127.0.0.1")
    serve_parser.add_argument("--port", type=int, default=8787)
    return parser


def build_service(settings: Settings) -> AnalyticsService:
    """Wire the ledger store, remote client and identity into a service."""
    service = AnalyticsService(
        store=LocalLedgerStore(settings.ledger_path, max_rows=settings.max_rows),
        remote=RemoteTrackClient(settings.api_base),
        identity_provider=StaticIdentityProvider(settings.fid, settings.wallet),
        cutoff_hour_utc=settings.cutoff_hour_utc,
    )
    service.init()
    return service


def main() -> None:
    """Entry point for the CLI."""
    parser = build_parser()
    args = parser.parse_args()
    command = args.command or "stats"

    config_path = Path(args.config) if args.config else None
    settings = load_settings(config_path)
    if args.fid is not None:
        settings.fid = args.fid
    if args.wallet:
        settings.wallet = args.wallet
    configure_logging(args.dev or settings.dev_mode)

    if command == "config":
        if getattr(args, "config_command", None) != "set":
            parser.error("usage: cbtaro-stats config set KEY VALUE")
        do_config_set(args.key, args.value, config_path)
        return
    if command == "serve":
        do_serve(settings, host=args.host, port=args.port)
        return
    if command == "admin":
        remote = RemoteTrackClient(settings.api_base)
        admin_command = getattr(args, "admin_command", None)
        if admin_command == "export":
            do_admin_export(remote, args.admin_wallet, output=args.output)
        elif admin_command == "stats":
            do_admin_stats(remote, args.admin_wallet)
        else:
            parser.error("usage: cbtaro-stats admin {stats,export} --wallet WALLET")
        return

    service = build_service(settings)
    if command == "visit":
        do_visit(service)
    elif command == "reading":
        do_reading(service, args.type)
    elif command == "export":
        do_export(service, output=args.output)
    else:
        do_stats(service, show_all=getattr(args, "all", False))


def _run_tracked(service: AnalyticsService, track: Callable[[], CounterRecord]) -> tuple[CounterRecord, str]:
    """Run one tracking call plus its remote round-trip.

    Returns the last published record and whether it came from the server.
    """
    published: list[CounterRecord] = []
    unsubscribe = service.subscribe(published.append)

    async def _run() -> None:
        track()
        await service.flush()

    try:
        asyncio.run(_run())
    finally:
        unsubscribe()
    source = "server" if len(published) > 1 else "local"
    return published[-1], source


def do_visit(service: AnalyticsService) -> CounterRecord:
    """Record a visit and print the resulting streak."""
    record, source = _run_tracked(service, service.track_visit)
    print_record(record, source)
    return record


def do_reading(service: AnalyticsService, reading_type: str) -> CounterRecord:
    """Record a reading and print the resulting counts."""
    record, source = _run_tracked(service, lambda: service.track_reading(reading_type))
    print_record(record, source)
    return record


def do_stats(service: AnalyticsService, show_all: bool = False) -> CounterRecord | None:
    """Show the current identity's record, refreshed from the server when possible."""
    if show_all:
        document = service.store.load()
        print_records_table(list(document.rows.values()), title="Local Ledger")
        return None
    published: list[CounterRecord] = []
    unsubscribe = service.subscribe(published.append)
    try:
        record = asyncio.run(service.refresh())
    finally:
        unsubscribe()
    print_record(record, "server" if published else "local")
    return record


def do_export(service: AnalyticsService, output: str | None = None) -> Path:
    """Write the whole local ledger to a CSV file."""
    document = service.store.load()
    path = Path(output) if output else Path(export_filename())
    path.write_text(export_csv(document), encoding="utf-8")
    print_export_result(str(path), len(document.rows))
    return path


def do_admin_stats(remote: RemoteTrackClient, wallet: str) -> list[CounterRecord] | None:
    """Fetch and print every server record."""
    try:
        rows = asyncio.run(remote.admin_stats(wallet))
    except AdminAuthorizationError:
        print_admin_denied()
        return None
    except RemoteError as exc:
        print_error(str(exc))
        return None
    try:
        records = [record_from_remote(row) for row in rows]
    except (TypeError, ValueError) as exc:
        print_error(f"Malformed server record: {exc}")
        return None
    print_records_table(records, title="Admin Statistics")
    return records


def do_admin_export(remote: RemoteTrackClient, wallet: str, output: str | None = None) -> Path | None:
    """Download the server CSV to a file."""
    try:
        text = asyncio.run(remote.admin_export_csv(wallet))
    except AdminAuthorizationError:
        print_admin_denied()
        return None
    except RemoteError as exc:
        print_error(str(exc))
        return None
    path = Path(output) if output else Path(export_filename())
    path.write_text(text, encoding="utf-8")
    rows = max(len(text.strip().splitlines()) - 1, 0)
    print_export_result(str(path), rows)
    return path


def do_config_set(key: str, value: str, config_path: Path | None = None) -> bool:
    """Persist a config value. Invalid values are reported and not saved."""
    try:
        set_config_value(key, value, config_path)
    except ValueError as exc:
        print_error(str(exc))
        return False
    print_config_set(key, value)
    return True


def do_serve(settings: Settings, host: str = "127.0.0.1", port: int = 8787) -> None:
    """Run the track service with uvicorn."""
    import uvicorn

    from cbtaro_stats.server import create_app

    uvicorn.run(create_app(settings), host=host, port=port)
