"""SQLite database layer for the cbtaro-stats track service."""

import sqlite3
import threading
from pathlib import Path

from cbtaro_stats.daykey import CUTOFF_HOUR_UTC
from cbtaro_stats.identity import identity_key
from cbtaro_stats.ledger import CounterRecord
from cbtaro_stats.streaks import advance_streak

DEFAULT_DB_PATH = Path.home() / ".cbtaro" / "server.db"

RECORD_COLUMNS = (
    "fid",
    "wallet",
    "total_readings",
    "one_card_count",
    "three_card_count",
    "custom_count",
    "streak",
    "last_visit_day_key",
    "first_seen_ts",
    "last_seen_ts",
)


class StatsDatabase:
    """SQLite store of per-fid counters with WAL mode.

    Each tracked event is applied in one ``BEGIN IMMEDIATE`` transaction so
    concurrent requests for the same fid cannot lose updates.
    """

    def __init__(self, db_path: Path | None = None, cutoff_hour_utc: int = CUTOFF_HOUR_UTC) -> None:
        self.db_path = db_path or DEFAULT_DB_PATH
        self.cutoff_hour_utc = cutoff_hour_utc
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        # Request handlers run on a thread pool; access is serialised by _lock.
        self.conn = sqlite3.connect(str(self.db_path), isolation_level=None, check_same_thread=False)
        self.conn.row_factory = sqlite3.Row
        self.conn.execute("PRAGMA journal_mode=WAL")
        self._lock = threading.Lock()
        self.init_db()

    def init_db(self) -> None:
        """Create tables if they do not exist."""
        self.conn.executescript("""
            CREATE TABLE IF NOT EXISTS user_stats (
                fid INTEGER PRIMARY KEY,
                wallet TEXT,
                total_readings INTEGER NOT NULL DEFAULT 0,
                one_card_count INTEGER NOT NULL DEFAULT 0,
                three_card_count INTEGER NOT NULL DEFAULT 0,
                custom_count INTEGER NOT NULL DEFAULT 0,
                streak INTEGER NOT NULL DEFAULT 0,
                last_visit_day_key TEXT,
                first_seen_ts INTEGER,
                last_seen_ts INTEGER,
                last_client_ts INTEGER
            );
        """)

    def get_stats(self, fid: int) -> dict | None:
        """Get the record for a fid."""
        with self._lock:
            row = self.conn.execute(
                f"SELECT {', '.join(RECORD_COLUMNS)} FROM user_stats WHERE fid = ?", (fid,)
            ).fetchone()
        return dict(row) if row else None

    def get_all_stats(self) -> list[dict]:
        """Return all records, most recently seen first."""
        with self._lock:
            rows = self.conn.execute(
                f"SELECT {', '.join(RECORD_COLUMNS)} FROM user_stats ORDER BY last_seen_ts DESC"
            ).fetchall()
        return [dict(row) for row in rows]

    def apply_event(
        self,
        fid: int,
        event: str,
        now: int,
        wallet: str | None = None,
        reading_type: str | None = None,
        client_ts: int | None = None,
    ) -> dict:
        """Apply a visit or reading for fid atomically and return the updated record.

        The first event for a fid creates the record and counts as its first visit.
        """
        with self._lock:
            self.conn.execute("BEGIN IMMEDIATE")
            try:
                row = self.conn.execute(
                    "SELECT * FROM user_stats WHERE fid = ?", (fid,)
                ).fetchone()
                record = _record_from_row(row) if row else CounterRecord(identity=identity_key(fid), fid=fid)

                if row is None or event == "visit":
                    state = advance_streak(
                        record.streak, record.last_visit_day_key, now, self.cutoff_hour_utc
                    )
                    record.streak = state.streak
                    record.last_visit_day_key = state.last_visit_day_key
                if event == "reading":
                    record.add_reading(reading_type or "")
                if wallet and wallet != record.wallet:
                    record.wallet = wallet
                record.touch(now)

                self.conn.execute(
                    "INSERT INTO user_stats (fid, wallet, total_readings, one_card_count, "
                    "three_card_count, custom_count, streak, last_visit_day_key, first_seen_ts, "
                    "last_seen_ts, last_client_ts) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?) "
                    "ON CONFLICT(fid) DO UPDATE SET wallet = excluded.wallet, "
                    "total_readings = excluded.total_readings, "
                    "one_card_count = excluded.one_card_count, "
                    "three_card_count = excluded.three_card_count, "
                    "custom_count = excluded.custom_count, streak = excluded.streak, "
                    "last_visit_day_key = excluded.last_visit_day_key, "
                    "last_seen_ts = excluded.last_seen_ts, last_client_ts = excluded.last_client_ts",
                    (
                        fid,
                        record.wallet,
                        record.total_readings,
                        record.one_card_count,
                        record.three_card_count,
                        record.custom_count,
                        record.streak,
                        record.last_visit_day_key,
                        record.first_seen_at,
                        record.last_seen_at,
                        client_ts,
                    ),
                )
                self.conn.execute("COMMIT")
            except Exception:
                self.conn.execute("ROLLBACK")
                raise
        return record_to_row(record)

    def close(self) -> None:
        """Close the database connection."""
        self.conn.close()


def _record_from_row(row: sqlite3.Row) -> CounterRecord:
    return CounterRecord(
        identity=identity_key(row["fid"]),
        fid=row["fid"],
        wallet=row["wallet"],
        total_readings=row["total_readings"],
        one_card_count=row["one_card_count"],
        three_card_count=row["three_card_count"],
        custom_count=row["custom_count"],
        streak=row["streak"],
        last_visit_day_key=row["last_visit_day_key"],
        first_seen_at=row["first_seen_ts"],
        last_seen_at=row["last_seen_ts"],
    )


def record_to_row(record: CounterRecord) -> dict:
    """Wire/row shape of a record, as returned by the API."""
    return {
        "fid": record.fid,
        "wallet": record.wallet,
        "total_readings": record.total_readings,
        "one_card_count": record.one_card_count,
        "three_card_count": record.three_card_count,
        "custom_count": record.custom_count,
        "streak": record.streak,
        "last_visit_day_key": record.last_visit_day_key,
        "first_seen_ts": record.first_seen_at,
        "last_seen_ts": record.last_seen_at,
    }
