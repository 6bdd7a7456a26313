"""CSV export of counter records."""
from __future__ import annotations

import csv
import io
from datetime import date
from typing import Iterable

from cbtaro_stats.ledger import CounterRecord, LedgerDocument

CSV_HEADER = [
    "key",
    "fid",
    "wallet",
    "readings_total",
    "readings_one",
    "readings_three",
    "readings_custom",
    "streak",
    "last_visit_day_key",
    "last_seen_ts",
]


def _row(record: CounterRecord) -> list:
    # Strings are quoted, numbers are not; missing values become "".
    return [
        record.identity,
        record.fid if record.fid is not None else "",
        record.wallet or "",
        record.total_readings,
        record.one_card_count,
        record.three_card_count,
        record.custom_count,
        record.streak,
        record.last_visit_day_key or "",
        record.last_seen_at if record.last_seen_at is not None else "",
    ]


def export_records(records: Iterable[CounterRecord]) -> str:
    """Render records as CSV text, most recently seen first."""
    ordered = sorted(records, key=lambda r: r.last_seen_at or 0, reverse=True)
    buf = io.StringIO()
    writer = csv.writer(buf, quoting=csv.QUOTE_NONNUMERIC, lineterminator="\n")
    buf.write(",".join(CSV_HEADER) + "\n")
    for record in ordered:
        writer.writerow(_row(record))
    return buf.getvalue()


def export_csv(document: LedgerDocument) -> str:
    """Render every row of the ledger as CSV text. Does not modify the ledger."""
    return export_records(document.rows.values())


def export_filename(today: date | None = None) -> str:
    """Download filename carrying the local date, e.g. cbtaro_stats_2024-01-10.csv."""
    return f"cbtaro_stats_{(today or date.today()).isoformat()}.csv"
