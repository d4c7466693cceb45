"""Tests for progress snapshots, the metrics file and the completion ledger."""

import pytest

from engine.memory import (
    CompletionLedger,
    GameMetricsSnapshot,
    LedgerConsistencyError,
    LedgerDB,
    LedgerWriteError,
    MetricsStore,
    PersistenceError,
)


class TestSnapshot:
    def test_is_immutable(self):
        snap = GameMetricsSnapshot(completed_by_category={"lore": ["a"]})
        with pytest.raises(Exception):
            snap.completed_puzzles = 5
        with pytest.raises(TypeError):
            snap.completed_by_category["lore"] = frozenset()

    def test_metrics_include_category_counts(self):
        snap = GameMetricsSnapshot(completed_puzzles=4, completed_by_category={"lore": ["a", "b"]})
        assert snap.metrics() == {
            "completed_puzzles": 4,
            "discovered_books": 0,
            "completed_books": 0,
            "lore_puzzles": 2,
        }

    def test_group_complete(self):
        snap = GameMetricsSnapshot(
            completed_by_category={"lore": ["a", "b"]},
            category_groups={"lore": {"Tides": ["a", "b"], "Ash": ["a", "c"], "Void": []}},
        )
        assert snap.group_complete("lore", "Tides")
        assert not snap.group_complete("lore", "Ash")
        assert not snap.group_complete("lore", "Void")
        assert not snap.group_complete("myth", "Tides")

    def test_dict_round_trip(self):
        snap = GameMetricsSnapshot(
            completed_puzzles=3,
            completed_by_category={"lore": ["b", "a"]},
            category_groups={"lore": {"Tides": ["a"]}},
            flags={"has_map": True},
            current_beat="midpoint",
        )
        assert GameMetricsSnapshot.from_dict(snap.to_dict()) == snap

    def test_from_dict_tolerates_junk(self):
        snap = GameMetricsSnapshot.from_dict({"completed_puzzles": "lots", "discovered_books": -3})
        assert snap.completed_puzzles == 0
        assert snap.discovered_books == 0

        snap = GameMetricsSnapshot.from_dict({
            "completed_by_category": ["kethaneum"],
            "category_groups": ["Tides"],
            "flags": ["x"],
        })
        assert snap == GameMetricsSnapshot()

        snap = GameMetricsSnapshot.from_dict({
            "completed_by_category": {"lore": 3, "myth": ["a"]},
            "category_groups": {"lore": ["Tides"], "myth": {"Ash": "a"}},
        })
        assert snap.category_count("lore") == 0
        assert snap.category_count("myth") == 1
        assert dict(snap.category_groups["lore"]) == {}
        assert not snap.group_complete("myth", "Ash")


class TestMetricsStore:
    def test_missing_file_gives_default_snapshot(self, tmp_path):
        store = MetricsStore(tmp_path / "metrics.json")
        assert store.read_metrics() == GameMetricsSnapshot()
        assert store.read_journal() == {}

    def test_write_then_read(self, tmp_path):
        store = MetricsStore(tmp_path / "nested" / "metrics.json")
        snap = GameMetricsSnapshot(completed_books=2, current_beat="hook")
        store.write_metrics(snap, {"unlocked": ["arrival"]})
        assert store.read_metrics() == snap
        assert store.read_journal() == {"unlocked": ["arrival"]}

        store.write_metrics(snap.with_beat("midpoint"))
        assert store.read_journal() == {"unlocked": ["arrival"]}

    def test_wrongly_shaped_file_falls_back_to_defaults(self, tmp_path):
        path = tmp_path / "metrics.json"
        path.write_text('{"metrics": {"completed_by_category": ["kethaneum"], "flags": ["x"]}}', encoding="utf-8")
        assert MetricsStore(path).read_metrics() == GameMetricsSnapshot()

        path.write_text('{"metrics": ["nope"]}', encoding="utf-8")
        assert MetricsStore(path).read_metrics() == GameMetricsSnapshot()

    def test_corrupt_file_raises(self, tmp_path):
        path = tmp_path / "metrics.json"
        path.write_text("{oops", encoding="utf-8")
        with pytest.raises(PersistenceError):
            MetricsStore(path).read_metrics()


class TestLedgerDB:
    def test_append_is_idempotent(self):
        with LedgerDB(":memory:") as db:
            assert db.append_ledger("welcome") is True
            assert db.append_ledger("welcome") is False
            assert db.read_ledger() == ["welcome"]

    def test_read_ledger_keeps_insertion_order(self, tmp_path):
        with LedgerDB(tmp_path / "ledger.db") as db:
            for event_id in ["c", "a", "b"]:
                db.append_ledger(event_id)
        with LedgerDB(tmp_path / "ledger.db") as db:
            assert db.read_ledger() == ["c", "a", "b"]

    def test_history_log(self):
        with LedgerDB(":memory:") as db:
            db.log_narrative_event("beat_transition", "hook -> midpoint", {"reason": "test"})
            db.log_narrative_event("event_completed", "welcome")
            rows = db.get_recent_narrative_events(limit=5)
            assert [r["event_type"] for r in rows] == ["event_completed", "beat_transition"]
            only = db.get_recent_narrative_events(event_type="beat_transition")
            assert only[0]["description"] == "hook -> midpoint"

    def test_requires_open(self):
        with pytest.raises(RuntimeError):
            LedgerDB(":memory:").read_ledger()


class _FlakyStore:
    """Ledger store whose writes fail a set number of times."""

    def __init__(self, failures=0, lose_writes=False):
        self.rows = []
        self.failures = failures
        self.lose_writes = lose_writes

    def read_ledger(self):
        return list(self.rows)

    def append_ledger(self, event_id):
        if self.failures:
            self.failures -= 1
            raise LedgerWriteError("disk full")
        if not self.lose_writes and event_id not in self.rows:
            self.rows.append(event_id)
        return True

    def has_event(self, event_id):
        return event_id in self.rows


class TestCompletionLedger:
    def test_loads_existing_ids(self):
        with LedgerDB(":memory:") as db:
            db.append_ledger("old")
            ledger = CompletionLedger(db)
            assert "old" in ledger
            assert ledger.record("old") is False
            assert ledger.record("new") is True
            assert ledger.ids == ("old", "new")

    def test_failed_write_can_be_retried_without_duplicates(self):
        store = _FlakyStore(failures=1)
        ledger = CompletionLedger(store)
        with pytest.raises(LedgerWriteError):
            ledger.record("welcome")
        assert "welcome" not in ledger

        assert ledger.record("welcome") is True
        assert ledger.record("welcome") is False
        assert store.rows == ["welcome"]
        assert len(ledger) == 1

    def test_unconfirmed_write_is_a_consistency_error(self):
        ledger = CompletionLedger(_FlakyStore(lose_writes=True))
        with pytest.raises(LedgerConsistencyError):
            ledger.record("welcome")
        assert "welcome" not in ledger

    def test_sqlite_failure_becomes_write_error(self):
        db = LedgerDB(":memory:")
        db.open()
        db._conn().execute("DROP TABLE completion_ledger")
        with pytest.raises(LedgerWriteError):
            db.append_ledger("welcome")
        db.close()
        assert issubclass(LedgerWriteError, PersistenceError)
