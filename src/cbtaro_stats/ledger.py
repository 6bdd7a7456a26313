"""Local counter ledger for cbtaro-stats.

The ledger is one JSON document, ``{"version": 1, "rows": {<identity key>: record}}``,
read and written as a whole. It is a cache: read failures yield an empty
document and write failures are swallowed.
"""
from __future__ import annotations

import json
import logging
import os
import tempfile
import threading
from dataclasses import asdict, dataclass, field, fields
from datetime import date
from pathlib import Path
from typing import Callable

LEDGER_SCHEMA_VERSION = 1
DEFAULT_LEDGER_PATH: Path = Path.home() / ".cbtaro" / "ledger.json"
DEFAULT_MAX_ROWS = 1000

READING_TYPES = ("one", "three", "custom")

logger = logging.getLogger(__name__)


@dataclass
class CounterRecord:
    identity: str
    fid: int | None = None
    wallet: str | None = None
    total_readings: int = 0
    one_card_count: int = 0
    three_card_count: int = 0
    custom_count: int = 0
    streak: int = 0
    last_visit_day_key: str | None = None
    first_seen_at: int | None = None  # ms since epoch
    last_seen_at: int | None = None

    def add_reading(self, reading_type: str) -> None:
        """Count one reading of the given type."""
        if reading_type == "one":
            self.one_card_count += 1
        elif reading_type == "three":
            self.three_card_count += 1
        elif reading_type == "custom":
            self.custom_count += 1
        else:
            raise ValueError(f"Unknown reading type: {reading_type!r}")
        self.total_readings += 1

    def touch(self, now: int) -> None:
        if self.first_seen_at is None:
            self.first_seen_at = now
        self.last_seen_at = now

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> CounterRecord:
        """Build a record from a stored row. Raises ValueError on a bad row."""
        if not isinstance(data, dict) or not isinstance(data.get("identity"), str):
            raise ValueError("row has no identity")
        known = {f.name for f in fields(cls)}
        record = cls(**{k: v for k, v in data.items() if k in known})
        counts = (
            record.total_readings,
            record.one_card_count,
            record.three_card_count,
            record.custom_count,
            record.streak,
        )
        if any(not _is_int(n) or n < 0 for n in counts):
            raise ValueError(f"row {record.identity!r} has invalid counters")
        for name in ("fid", "first_seen_at", "last_seen_at"):
            value = getattr(record, name)
            if value is not None and not _is_int(value):
                raise ValueError(f"row {record.identity!r} has invalid {name}")
        if record.wallet is not None and not isinstance(record.wallet, str):
            raise ValueError(f"row {record.identity!r} has invalid wallet")
        if record.last_visit_day_key is not None:
            if not isinstance(record.last_visit_day_key, str):
                raise ValueError(f"row {record.identity!r} has invalid last_visit_day_key")
            date.fromisoformat(record.last_visit_day_key)
        return record


def _is_int(value: object) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


@dataclass
class LedgerDocument:
    version: int = LEDGER_SCHEMA_VERSION
    rows: dict[str, CounterRecord] = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            "version": self.version,
            "rows": {key: record.to_dict() for key, record in self.rows.items()},
        }

    @classmethod
    def from_dict(cls, data: object) -> LedgerDocument:
        """Parse a stored document. Anything unrecognisable becomes an empty document."""
        if not isinstance(data, dict) or data.get("version") != LEDGER_SCHEMA_VERSION:
            return cls()
        raw_rows = data.get("rows")
        if not isinstance(raw_rows, dict):
            return cls()
        rows: dict[str, CounterRecord] = {}
        for key, raw in raw_rows.items():
            try:
                rows[key] = CounterRecord.from_dict(raw)
            except (TypeError, ValueError) as exc:
                logger.debug("Dropping malformed ledger row %r: %s", key, exc)
        return cls(rows=rows)


class LocalLedgerStore:
    """JSON-file ledger keyed by identity key."""

    def __init__(self, path: Path | None = None, max_rows: int | None = DEFAULT_MAX_ROWS) -> None:
        self.path = path or DEFAULT_LEDGER_PATH
        self.max_rows = max_rows
        self._lock = threading.Lock()

    def load(self) -> LedgerDocument:
        """Load the ledger. Returns an empty document if missing or corrupt."""
        try:
            raw = self.path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return LedgerDocument()
        except UnicodeDecodeError:
            logger.debug("Discarding undecodable ledger at %s", self.path)
            return LedgerDocument()
        except OSError as exc:
            logger.debug("Ledger unreadable at %s: %s", self.path, exc)
            return LedgerDocument()
        try:
            return LedgerDocument.from_dict(json.loads(raw))
        except json.JSONDecodeError:
            logger.debug("Discarding corrupt ledger at %s", self.path)
            return LedgerDocument()

    def save(self, document: LedgerDocument) -> None:
        """Write the ledger atomically. Failures are logged and swallowed."""
        self._evict(document)
        tmp_path = None
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            tmp_fd, tmp_path = tempfile.mkstemp(dir=self.path.parent, suffix=".tmp")
            with os.fdopen(tmp_fd, "w", encoding="utf-8") as f:
                json.dump(document.to_dict(), f, indent=2)
                f.write("\n")
            os.replace(tmp_path, self.path)
        except OSError as exc:
            logger.debug("Ledger save failed at %s: %s", self.path, exc)
            if tmp_path is not None:
                try:
                    os.unlink(tmp_path)
                except OSError:
                    pass

    def get_or_create(self, identity_key: str) -> CounterRecord:
        """Return the stored record, or a zero-valued one that is not yet persisted."""
        record = self.load().rows.get(identity_key)
        return record if record is not None else CounterRecord(identity=identity_key)

    def update(self, identity_key: str, mutate: Callable[[CounterRecord], None]) -> CounterRecord:
        """Read-modify-write one record under the store lock and return it."""
        with self._lock:
            document = self.load()
            record = document.rows.get(identity_key) or CounterRecord(identity=identity_key)
            mutate(record)
            document.rows[identity_key] = record
            self.save(document)
            return record

    def replace(self, record: CounterRecord) -> CounterRecord:
        """Overwrite the record for its identity key (server-wins)."""
        def _swap(existing: CounterRecord) -> None:
            for f in fields(CounterRecord):
                setattr(existing, f.name, getattr(record, f.name))

        return self.update(record.identity, _swap)

    def _evict(self, document: LedgerDocument) -> None:
        """Drop least recently seen rows beyond max_rows."""
        if self.max_rows is None or len(document.rows) <= self.max_rows:
            return
        ordered = sorted(
            document.rows.items(),
            key=lambda item: item[1].last_seen_at or 0,
            reverse=True,
        )
        dropped = [key for key, _ in ordered[self.max_rows:]]
        for key in dropped:
            del document.rows[key]
        logger.debug("Evicted %d ledger rows", len(dropped))
