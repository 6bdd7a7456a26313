"""Rich terminal display for cbtaro-stats."""

from __future__ import annotations

from datetime import datetime

from rich import box
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from cbtaro_stats.ledger import CounterRecord

console = Console()


def format_number(n: int) -> str:
    """Format counters with thousands separators: 1200 -> '1,200'."""
    return f"{n:,}"


def format_timestamp(ms: int | None) -> str:
    """Render ms since epoch in local time, or '-' if unknown."""
    if ms is None:
        return "-"
    return datetime.fromtimestamp(ms / 1000).strftime("%Y-%m-%d %H:%M")


def _short_wallet(wallet: str | None) -> str:
    if not wallet:
        return "-"
    if len(wallet) <= 12:
        return wallet
    return f"{wallet[:6]}...{wallet[-4:]}"


def print_record(record: CounterRecord, source: str = "local") -> None:
    """Print one identity's streak and reading counts."""
    lines: list[str] = []
    lines.append("")
    lines.append(f"  \U0001f525 Streak: [bold]{record.streak}[/] days")
    lines.append(f"  Last visit day: {record.last_visit_day_key or '-'}")
    lines.append("")
    lines.append(f"  Readings:  [bold]{format_number(record.total_readings)}[/]")
    lines.append(f"    One card:    {format_number(record.one_card_count)}")
    lines.append(f"    Three card:  {format_number(record.three_card_count)}")
    lines.append(f"    Custom:      {format_number(record.custom_count)}")
    lines.append("")
    lines.append(f"  Last seen: {format_timestamp(record.last_seen_at)}")
    lines.append("")

    border = "green" if source == "server" else "yellow"
    panel = Panel(
        "\n".join(lines),
        title=f"[bold]{record.identity}[/] ({source})",
        box=box.ROUNDED,
        border_style=border,
        width=50,
    )
    console.print(panel)


def print_records_table(records: list[CounterRecord], title: str = "Statistics") -> None:
    """Print one row per identity, most recently seen first."""
    table = Table(
        title=title,
        box=box.ROUNDED,
        show_header=True,
        header_style="bold",
    )
    table.add_column("Key", style="bold")
    table.add_column("Wallet")
    table.add_column("Total", justify="right")
    table.add_column("One", justify="right")
    table.add_column("Three", justify="right")
    table.add_column("Custom", justify="right")
    table.add_column("Streak", justify="right")
    table.add_column("Last Visit")
    table.add_column("Last Seen")

    if not records:
        console.print(Panel("\n  No statistics available yet.\n", title=f"[bold]{title}[/]", box=box.ROUNDED, width=50))
        return

    for record in sorted(records, key=lambda r: r.last_seen_at or 0, reverse=True):
        table.add_row(
            record.identity,
            _short_wallet(record.wallet),
            format_number(record.total_readings),
            format_number(record.one_card_count),
            format_number(record.three_card_count),
            format_number(record.custom_count),
            str(record.streak),
            record.last_visit_day_key or "-",
            format_timestamp(record.last_seen_at),
        )

    console.print(table)


def print_export_result(path: str, rows: int) -> None:
    """Print where the CSV was written."""
    console.print(f"  Exported [bold]{rows}[/] rows to [bold]{path}[/]")


def print_config_set(key: str, value: str) -> None:
    console.print(f"  Set [bold]{key}[/] = {value}")


def print_admin_denied() -> None:
    """Tell the user the admin endpoints refused their wallet."""
    panel = Panel(
        "\n  Access denied. Make sure you are connected with the admin wallet.\n",
        title="[bold]Admin[/]",
        box=box.ROUNDED,
        border_style="red",
        width=50,
    )
    console.print(panel)


def print_error(message: str) -> None:
    console.print(f"[red]Error:[/] {message}")
