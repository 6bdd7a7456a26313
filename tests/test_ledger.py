"""Tests for the local ledger store."""

import json

import pytest

from cbtaro_stats.ledger import CounterRecord, LedgerDocument, LocalLedgerStore


@pytest.fixture
def store(tmp_path):
    return LocalLedgerStore(tmp_path / "ledger.json")


class TestCounterRecord:
    @pytest.mark.parametrize(
        "reading_type, field",
        [("one", "one_card_count"), ("three", "three_card_count"), ("custom", "custom_count")],
    )
    def test_add_reading(self, reading_type, field):
        record = CounterRecord(identity="anonymous")
        record.add_reading(reading_type)
        assert getattr(record, field) == 1
        assert record.total_readings == 1

    def test_unknown_reading_type(self):
        record = CounterRecord(identity="anonymous")
        with pytest.raises(ValueError):
            record.add_reading("five")
        assert record.total_readings == 0

    def test_touch_sets_first_seen_once(self):
        record = CounterRecord(identity="anonymous")
        record.touch(100)
        record.touch(200)
        assert record.first_seen_at == 100
        assert record.last_seen_at == 200

    def test_from_dict_rejects_negative_counts(self):
        with pytest.raises(ValueError):
            CounterRecord.from_dict({"identity": "x", "streak": -1})

    def test_from_dict_ignores_unknown_fields(self):
        record = CounterRecord.from_dict({"identity": "x", "streak": 2, "extra": True})
        assert record.streak == 2

    @pytest.mark.parametrize(
        "field, value",
        [
            ("last_visit_day_key", "not-a-date"),
            ("last_visit_day_key", 20240110),
            ("last_seen_at", "yesterday"),
            ("first_seen_at", 1.5),
            ("fid", "42"),
            ("fid", True),
            ("wallet", 123),
            ("streak", True),
        ],
    )
    def test_from_dict_rejects_bad_field(self, field, value):
        with pytest.raises(ValueError):
            CounterRecord.from_dict({"identity": "x", field: value})

    def test_from_dict_accepts_full_row(self):
        row = CounterRecord(
            identity="fid:1", fid=1, wallet="0xabc", streak=2,
            last_visit_day_key="2024-01-10", first_seen_at=1, last_seen_at=2,
        ).to_dict()
        assert CounterRecord.from_dict(row).to_dict() == row


class TestLoad:
    def test_missing_file_returns_empty(self, store):
        assert store.load() == LedgerDocument()

    def test_corrupt_json_returns_empty(self, store):
        store.path.write_text("{not json", encoding="utf-8")
        assert store.load().rows == {}

    def test_undecodable_bytes_return_empty(self, store):
        store.path.write_bytes(b"\xff\xfe{garbage")
        assert store.load().rows == {}

    def test_undecodable_file_is_overwritten_on_update(self, store):
        store.path.write_bytes(b"\xff\xfe{garbage")
        record = store.update("anonymous", lambda r: r.add_reading("one"))
        assert record.total_readings == 1
        assert store.load().rows["anonymous"].total_readings == 1

    def test_wrong_version_returns_empty(self, store):
        store.path.write_text(json.dumps({"version": 2, "rows": {}}), encoding="utf-8")
        assert store.load().rows == {}

    def test_rows_not_a_dict_returns_empty(self, store):
        store.path.write_text(json.dumps({"version": 1, "rows": []}), encoding="utf-8")
        assert store.load().rows == {}

    def test_malformed_row_dropped(self, store):
        data = {
            "version": 1,
            "rows": {
                "anonymous": {"identity": "anonymous", "streak": 2},
                "fid:1": "garbage",
            },
        }
        store.path.write_text(json.dumps(data), encoding="utf-8")
        document = store.load()
        assert list(document.rows) == ["anonymous"]
        assert document.rows["anonymous"].streak == 2


class TestSave:
    def test_roundtrip(self, store):
        document = LedgerDocument()
        document.rows["fid:1"] = CounterRecord(identity="fid:1", fid=1, streak=3, last_seen_at=5)
        store.save(document)
        assert store.load() == document

    def test_file_format(self, store):
        document = LedgerDocument(rows={"anonymous": CounterRecord(identity="anonymous")})
        store.save(document)
        data = json.loads(store.path.read_text(encoding="utf-8"))
        assert data["version"] == 1
        assert data["rows"]["anonymous"]["identity"] == "anonymous"

    def test_creates_parent_dirs(self, tmp_path):
        store = LocalLedgerStore(tmp_path / "a" / "b" / "ledger.json")
        store.save(LedgerDocument())
        assert store.path.exists()

    def test_write_failure_is_swallowed(self, tmp_path):
        blocker = tmp_path / "blocker"
        blocker.write_text("file, not a directory", encoding="utf-8")
        store = LocalLedgerStore(blocker / "ledger.json")
        store.save(LedgerDocument(rows={"anonymous": CounterRecord(identity="anonymous")}))
        assert store.load().rows == {}

    def test_eviction_keeps_most_recent(self, tmp_path):
        store = LocalLedgerStore(tmp_path / "ledger.json", max_rows=2)
        document = LedgerDocument(
            rows={
                "a": CounterRecord(identity="a", last_seen_at=1),
                "b": CounterRecord(identity="b", last_seen_at=3),
                "c": CounterRecord(identity="c", last_seen_at=2),
            }
        )
        store.save(document)
        assert set(store.load().rows) == {"b", "c"}

    def test_no_eviction_when_disabled(self, tmp_path):
        store = LocalLedgerStore(tmp_path / "ledger.json", max_rows=None)
        document = LedgerDocument(
            rows={str(i): CounterRecord(identity=str(i), last_seen_at=i) for i in range(5)}
        )
        store.save(document)
        assert len(store.load().rows) == 5


class TestGetOrCreate:
    def test_absent_identity_is_zero_valued(self, store):
        record = store.get_or_create("fid:9")
        assert record == CounterRecord(identity="fid:9")
        assert record.streak == 0

    def test_not_persisted(self, store):
        store.get_or_create("fid:9")
        assert not store.path.exists()

    def test_existing_record_returned(self, store):
        store.update("fid:9", lambda r: setattr(r, "streak", 4))
        assert store.get_or_create("fid:9").streak == 4


class TestUpdateAndReplace:
    def test_update_persists(self, store):
        store.update("anonymous", lambda r: r.add_reading("one"))
        store.update("anonymous", lambda r: r.add_reading("one"))
        assert store.load().rows["anonymous"].one_card_count == 2

    def test_replace_overwrites_every_field(self, store):
        store.update("fid:1", lambda r: (r.add_reading("custom"), r.touch(10)))
        server = CounterRecord(identity="fid:1", fid=1, streak=7, last_seen_at=20)
        store.replace(server)
        stored = store.load().rows["fid:1"]
        assert stored == server
        assert stored.custom_count == 0


class TestCorruptFields:
    def _write(self, store, rows):
        store.path.write_text(json.dumps({"version": 1, "rows": rows}), encoding="utf-8")

    def test_bad_day_key_row_dropped(self, store):
        self._write(store, {"anonymous": {"identity": "anonymous", "streak": 4, "last_visit_day_key": "not-a-date"}})
        assert store.load().rows == {}

    def test_string_timestamp_rows_do_not_break_save(self, tmp_path):
        store = LocalLedgerStore(tmp_path / "ledger.json", max_rows=1)
        self._write(
            store,
            {
                "a": {"identity": "a", "last_seen_at": "yesterday"},
                "b": {"identity": "b", "last_seen_at": 5},
                "c": {"identity": "c", "last_seen_at": 7},
            },
        )
        store.update("d", lambda r: r.touch(9))
        assert set(store.load().rows) == {"d"}
