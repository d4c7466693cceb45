"""Progress snapshots and persistence for the narrative engine.

Metrics = latest progress snapshot (JSON file, rewritten on each update)
Ledger = append-only set of consumed narrative events (SQLite database)
"""

from __future__ import annotations

import json
import logging
import sqlite3
import uuid
from collections.abc import Mapping
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from pathlib import Path
from types import MappingProxyType
from typing import Any

logger = logging.getLogger(__name__)


class PersistenceError(Exception):
    """Raised when progress or ledger data cannot be read or written."""


class LedgerWriteError(PersistenceError):
    """A ledger append failed; retrying the same append is safe."""


class LedgerConsistencyError(PersistenceError):
    """The ledger disagrees with what was just written or requested."""


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


# ── Progress snapshot ───────────────────────────────────────────

BASE_METRICS = ("completed_puzzles", "discovered_books", "completed_books")


def _mapping(value: Any) -> Mapping[str, Any]:
    return value if isinstance(value, Mapping) else {}


def _ids(items: Any) -> frozenset[str]:
    if isinstance(items, (list, tuple, set, frozenset)):
        return frozenset(str(i) for i in items)
    return frozenset()


@dataclass(frozen=True)
class GameMetricsSnapshot:
    """Immutable record of player progress at one point in time."""

    completed_puzzles: int = 0
    discovered_books: int = 0
    completed_books: int = 0
    # category -> ids of completed puzzles in that category
    completed_by_category: Mapping[str, frozenset[str]] = field(default_factory=dict)
    # category -> group (book) -> ids of every puzzle in that group
    category_groups: Mapping[str, Mapping[str, frozenset[str]]] = field(default_factory=dict)
    flags: Mapping[str, bool] = field(default_factory=dict)
    current_beat: str = ""  # "" = whatever beat the engine is at

    def __post_init__(self) -> None:
        completed = {str(category): _ids(items) for category, items in _mapping(self.completed_by_category).items()}
        groups = {
            str(category): MappingProxyType({str(group): _ids(items) for group, items in _mapping(members).items()})
            for category, members in _mapping(self.category_groups).items()
        }
        flags = {str(k): bool(v) for k, v in _mapping(self.flags).items()}
        object.__setattr__(self, "completed_by_category", MappingProxyType(completed))
        object.__setattr__(self, "category_groups", MappingProxyType(groups))
        object.__setattr__(self, "flags", MappingProxyType(flags))

    def category_count(self, category: str) -> int:
        return len(self.completed_by_category.get(category, ()))

    def group_complete(self, category: str, group: str) -> bool:
        """All items of ``group`` in ``category`` are complete. Empty groups never are."""
        items = self.category_groups.get(category, {}).get(group)
        if not items:
            return False
        return items <= self.completed_by_category.get(category, frozenset())

    def flag(self, name: str) -> bool:
        return bool(self.flags.get(name, False))

    def metrics(self) -> dict[str, int]:
        """Flat metric name -> value view used by progression rules."""
        values = {
            "completed_puzzles": self.completed_puzzles,
            "discovered_books": self.discovered_books,
            "completed_books": self.completed_books,
        }
        for category, items in self.completed_by_category.items():
            values[f"{category}_puzzles"] = len(items)
        return values

    def with_beat(self, beat: str) -> GameMetricsSnapshot:
        return replace(self, current_beat=beat)

    def to_dict(self) -> dict[str, Any]:
        return {
            "completed_puzzles": self.completed_puzzles,
            "discovered_books": self.discovered_books,
            "completed_books": self.completed_books,
            "completed_by_category": {k: sorted(v) for k, v in self.completed_by_category.items()},
            "category_groups": {
                category: {group: sorted(items) for group, items in members.items()}
                for category, members in self.category_groups.items()
            },
            "flags": dict(self.flags),
            "current_beat": self.current_beat,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> GameMetricsSnapshot:
        def _count(key: str) -> int:
            try:
                return max(0, int(data.get(key, 0) or 0))
            except (TypeError, ValueError):
                return 0

        return cls(
            completed_puzzles=_count("completed_puzzles"),
            discovered_books=_count("discovered_books"),
            completed_books=_count("completed_books"),
            completed_by_category=_mapping(data.get("completed_by_category")),
            category_groups=_mapping(data.get("category_groups")),
            flags=_mapping(data.get("flags")),
            current_beat=str(data.get("current_beat", "") or ""),
        )


class MetricsStore:
    """Load / save the latest progress snapshot and journal state to a JSON file."""

    def __init__(self, metrics_path: str | Path):
        self._path = Path(metrics_path)

    def _read_raw(self) -> dict[str, Any]:
        if not self._path.exists():
            return {}
        try:
            raw = json.loads(self._path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as exc:
            raise PersistenceError(f"Cannot read metrics file {self._path}: {exc}") from exc
        return raw if isinstance(raw, dict) else {}

    def read_metrics(self) -> GameMetricsSnapshot:
        raw = self._read_raw()
        snapshot = GameMetricsSnapshot.from_dict(_mapping(raw.get("metrics")))
        logger.debug(
            "Loaded metrics: puzzles=%d books=%d beat=%s",
            snapshot.completed_puzzles,
            snapshot.completed_books,
            snapshot.current_beat or "-",
        )
        return snapshot

    def read_journal(self) -> dict[str, Any]:
        journal = self._read_raw().get("journal")
        return journal if isinstance(journal, dict) else {}

    def write_metrics(self, snapshot: GameMetricsSnapshot, journal: Mapping[str, Any] | None = None) -> None:
        payload: dict[str, Any] = {
            "metrics": snapshot.to_dict(),
            "journal": dict(journal) if journal is not None else self.read_journal(),
            "saved_at": _now_iso(),
        }
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            self._path.write_text(json.dumps(payload, indent=2), encoding="utf-8")
        except OSError as exc:
            raise PersistenceError(f"Cannot write metrics file {self._path}: {exc}") from exc
        logger.debug("Saved metrics to %s", self._path)


# ── Completion ledger (SQLite) ──────────────────────────────────

_SCHEMA = """
CREATE TABLE IF NOT EXISTS completion_ledger (
    event_id TEXT PRIMARY KEY,
    completed_at TEXT
);

CREATE TABLE IF NOT EXISTS narrative_events (
    id TEXT PRIMARY KEY,
    event_type TEXT,          -- "beat_transition" | "event_completed" | "blurb_unlocked"
    description TEXT,
    created_at TEXT,
    metadata TEXT
);
"""


class LedgerDB:
    """Append-only ledger of consumed events plus a narrative history log."""

    def __init__(self, db_path: str | Path):
        self._path = str(db_path)
        self._db: sqlite3.Connection | None = None

    def open(self) -> None:
        if self._path != ":memory:":
            Path(self._path).parent.mkdir(parents=True, exist_ok=True)
        self._db = sqlite3.connect(self._path)
        self._db.executescript(_SCHEMA)
        self._db.commit()
        logger.debug("Ledger DB ready at %s", self._path)

    def close(self) -> None:
        if self._db:
            self._db.close()
            self._db = None

    def __enter__(self) -> LedgerDB:
        self.open()
        return self

    def __exit__(self, *exc: Any) -> None:
        self.close()

    def _conn(self) -> sqlite3.Connection:
        if self._db is None:
            raise RuntimeError("LedgerDB is not open; call open() first")
        return self._db

    # ── Ledger ──────────────────────────────────────────────────

    def read_ledger(self) -> list[str]:
        """Consumed event ids in the order they were first appended."""
        cursor = self._conn().execute("SELECT event_id FROM completion_ledger ORDER BY rowid ASC")
        return [row[0] for row in cursor.fetchall()]

    def has_event(self, event_id: str) -> bool:
        cursor = self._conn().execute(
            "SELECT 1 FROM completion_ledger WHERE event_id = ? LIMIT 1",
            (event_id,),
        )
        return cursor.fetchone() is not None

    def append_ledger(self, event_id: str) -> bool:
        """Append ``event_id``. Returns False when it was already present."""
        db = self._conn()
        try:
            cursor = db.execute(
                "INSERT OR IGNORE INTO completion_ledger (event_id, completed_at) VALUES (?, ?)",
                (event_id, _now_iso()),
            )
            db.commit()
        except sqlite3.Error as exc:
            raise LedgerWriteError(f"Failed to append '{event_id}' to ledger: {exc}") from exc
        return cursor.rowcount == 1

    # ── History ─────────────────────────────────────────────────

    def log_narrative_event(
        self,
        event_type: str,
        description: str = "",
        metadata: dict | None = None,
    ) -> str:
        row_id = str(uuid.uuid4())
        db = self._conn()
        try:
            db.execute(
                "INSERT INTO narrative_events (id, event_type, description, created_at, metadata) "
                "VALUES (?, ?, ?, ?, ?)",
                (row_id, event_type, description, _now_iso(), json.dumps(metadata or {})),
            )
            db.commit()
        except sqlite3.Error as exc:
            raise PersistenceError(f"Failed to log narrative event '{event_type}': {exc}") from exc
        return row_id

    def get_recent_narrative_events(self, limit: int = 10, event_type: str = "") -> list[dict]:
        query = "SELECT * FROM narrative_events"
        params: list[Any] = []
        if event_type:
            query += " WHERE event_type = ?"
            params.append(event_type)
        query += " ORDER BY created_at DESC, rowid DESC LIMIT ?"
        params.append(limit)

        cursor = self._conn().execute(query, tuple(params))
        cols = [d[0] for d in cursor.description]
        rows = cursor.fetchall()
        return [dict(zip(cols, row)) for row in rows]


class CompletionLedger:
    """In-memory mirror of the persisted ledger. Membership only ever grows."""

    def __init__(self, store: LedgerDB):
        self._store = store
        self._ids: list[str] = list(dict.fromkeys(store.read_ledger()))
        self._seen = set(self._ids)

    def __contains__(self, event_id: object) -> bool:
        return event_id in self._seen

    def __len__(self) -> int:
        return len(self._ids)

    @property
    def ids(self) -> tuple[str, ...]:
        return tuple(self._ids)

    def record(self, event_id: str) -> bool:
        """Persist ``event_id`` as consumed; safe to call again after a failure.

        Raises LedgerWriteError when the write fails (nothing changes in
        memory) and LedgerConsistencyError when the write was acknowledged
        but cannot be read back.
        """
        if event_id in self._seen:
            return False
        self._store.append_ledger(event_id)
        if not self._store.has_event(event_id):
            raise LedgerConsistencyError(f"Ledger write for '{event_id}' was not read back")
        self._ids.append(event_id)
        self._seen.add(event_id)
        logger.info("Ledger: event '%s' consumed", event_id)
        return True
