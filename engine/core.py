"""Core orchestrator - one object holding every piece of narrative state.

Progress update: triggers -> pending events -> beat check -> journal -> save.
Conversation: pending scripted event first, otherwise a line of banter.
"""

from __future__ import annotations

import logging
import random
from collections import deque
from pathlib import Path
from typing import Any, Callable

from catalog.client import ContentClient
from catalog.models import BanterLine, Catalog, Character, NarrativeEvent
from catalog.store import FileContentStore
from catalog.validation import CatalogReport, build_catalog
from narrative import (
    BeatOrder,
    BeatTransition,
    DialogueSelector,
    JournalState,
    PlaybackSequencer,
    ProgressionMachine,
    StoryJournal,
    TriggerIndex,
    currently_available_events,
    page_limit,
    triggered_events,
)
from narrative.pagination import DEFAULT_SURFACE
from narrative.selector import DEFAULT_RECENT_WINDOW

from .config import load_config
from .memory import (
    CompletionLedger,
    GameMetricsSnapshot,
    LedgerConsistencyError,
    LedgerDB,
    LedgerWriteError,
    MetricsStore,
    PersistenceError,
)

logger = logging.getLogger(__name__)

DEFAULT_GROUPS = ["introduction_characters"]

AvailabilityListener = Callable[[bool], None]


class NarrativeEngine:
    """Decides what narrative content to show and drives its playback.

    Usage::

        with NarrativeEngine(cfg) as engine:
            engine.on_progress_updated(snapshot)
            choice = engine.start_conversation()
    """

    def __init__(
        self,
        config: dict | None = None,
        content_store: Any = None,
        metrics_store: MetricsStore | None = None,
        ledger_db: LedgerDB | None = None,
        rng: random.Random | None = None,
    ):
        self._cfg = config if config is not None else load_config()
        story = self._cfg.get("story", {}) or {}
        dialogue = self._cfg.get("dialogue", {}) or {}
        characters = self._cfg.get("characters", {}) or {}
        storage = self._cfg.get("storage", {}) or {}
        root = Path(__file__).resolve().parent.parent

        self.beats = BeatOrder(story.get("beats"))
        self._beat_events: dict[str, str] = dict(story.get("beat_events") or {})
        self._initial_groups = list(characters.get("initial_groups") or DEFAULT_GROUPS)
        self._groups_on_beat: dict[str, list[str]] = {
            beat: list(groups or []) for beat, groups in (characters.get("load_on_beat") or {}).items()
        }
        self._surface = dialogue.get("surface", DEFAULT_SURFACE)

        self._content_store = content_store or self._default_content_store(root)
        self._metrics_store = metrics_store or MetricsStore(
            storage.get("metrics_file") or root / "data" / "metrics.json"
        )
        self._db = ledger_db or LedgerDB(storage.get("ledger_db") or root / "data" / "ledger.db")
        self._ledger: CompletionLedger | None = None

        self.catalog = Catalog(beats=self.beats.beats)
        self.report: CatalogReport | None = None
        self.index = TriggerIndex(self.beats)
        self.machine = ProgressionMachine(
            self.beats,
            auto_progression=story.get("auto_progression", True),
            allow_manual_override=story.get("allow_manual_override", False),
        )
        self.machine.subscribe(self._on_beat_changed)
        self.journal = StoryJournal([], self.beats)
        self.selector = DialogueSelector(
            self.beats,
            recent_window=dialogue.get("recent_avoidance_window", DEFAULT_RECENT_WINDOW),
            rng=rng,
        )
        self.playback = PlaybackSequencer(
            self._resolve_event,
            self._resolve_character,
            max_chars=page_limit(dialogue, self._surface),
            on_complete=self._on_event_completed,
        )

        self._previous = GameMetricsSnapshot()
        self._pending: list[str] = []
        self._unsaved: list[str] = []
        self._metrics_dirty = False
        self._loaded_groups: set[str] = set()
        self._listeners: list[AvailabilityListener] = []
        self._queue: deque[GameMetricsSnapshot] = deque()
        self._handling = False

    def _default_content_store(self, root: Path) -> Any:
        content = self._cfg.get("content", {}) or {}
        if content.get("url"):
            return ContentClient(content["url"], token=self._cfg.get("_secrets", {}).get("content_api_token", ""))
        return FileContentStore(content.get("directory") or root / "data" / "content")

    # ── Lifecycle ───────────────────────────────────────────────

    def open(self) -> NarrativeEngine:
        self._db.open()
        self._ledger = CompletionLedger(self._db)
        self._previous = self._metrics_store.read_metrics()
        self.journal = StoryJournal([], self.beats, JournalState.from_dict(self._metrics_store.read_journal()))

        saved_beat = self._previous.current_beat
        if saved_beat in self.beats:
            self.machine = self._restore_machine(saved_beat)
        elif saved_beat:
            logger.warning("Saved beat '%s' is unknown; starting at '%s'", saved_beat, self.beats.first)

        self._loaded_groups = set(self._initial_groups)
        for beat in self.beats:
            if self.beats.is_after(beat, self.machine.current_beat):
                break
            self._loaded_groups.update(self._groups_on_beat.get(beat, []))

        self.reload_catalog()
        if self.journal.update(self._previous, self._previous, self.machine.current_beat):
            self._save_metrics()
        logger.info(
            "Narrative engine ready at beat '%s' (%d events consumed)",
            self.machine.current_beat,
            len(self._ledger),
        )
        return self

    def _restore_machine(self, beat: str) -> ProgressionMachine:
        machine = ProgressionMachine(
            self.beats,
            self.machine.rules,
            current_beat=beat,
            auto_progression=self.machine.auto_progression,
            allow_manual_override=self.machine.allow_manual_override,
        )
        machine.subscribe(self._on_beat_changed)
        return machine

    def close(self) -> None:
        if self._metrics_dirty:
            self._save_metrics()
        self._db.close()
        close = getattr(self._content_store, "close", None)
        if callable(close):
            close()

    def __enter__(self) -> NarrativeEngine:
        return self.open()

    def __exit__(self, *exc: Any) -> None:
        self.close()

    @property
    def ledger(self) -> CompletionLedger:
        if self._ledger is None:
            raise RuntimeError("NarrativeEngine is not open; call open() first")
        return self._ledger

    @property
    def current_beat(self) -> str:
        return self.machine.current_beat

    @property
    def last_snapshot(self) -> GameMetricsSnapshot:
        return self._previous

    @property
    def pending_events(self) -> list[str]:
        return list(self._pending)

    def reload_catalog(self) -> CatalogReport:
        """Fetch content and rebuild the catalog and trigger index.

        Everything is built aside and swapped in at the end, so a failing
        store leaves the previous catalog in place.
        """
        raw = self._content_store.load_catalog()
        catalog, report = build_catalog(raw, self.beats)
        index = TriggerIndex(self.beats)
        index.build(catalog.events.values())
        journal = StoryJournal(catalog.blurbs, self.beats, self.journal.state)

        self.catalog, self.index, self.journal, self.report = catalog, index, journal, report
        self.machine.load_rules(catalog.rules)
        self._pending = [eid for eid in self._pending if eid in catalog.events]
        return report

    # ── Availability ────────────────────────────────────────────

    def subscribe_availability(self, listener: AvailabilityListener) -> Callable[[], None]:
        """Call ``listener(has_pending)`` whenever the pending set changes."""
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    def _notify_availability(self) -> None:
        available = bool(self._pending)
        for listener in list(self._listeners):
            try:
                listener(available)
            except Exception:
                logger.exception("Availability listener %r failed", listener)

    def _consumed(self, event_id: str) -> bool:
        return event_id in self.ledger or event_id in self._unsaved

    def _add_pending(self, event_ids: list[str]) -> list[str]:
        added = []
        for event_id in event_ids:
            if event_id in self._pending or self._consumed(event_id):
                continue
            self._pending.append(event_id)
            added.append(event_id)
        return added

    # ── Progress ────────────────────────────────────────────────

    def on_progress_updated(self, snapshot: GameMetricsSnapshot) -> list[str]:
        """Handle a progress update. Returns ids of events that became pending.

        An update that arrives while another is being handled (say from an
        availability listener) is queued and handled right after it.
        """
        self._queue.append(snapshot)
        if self._handling:
            logger.debug("Progress update queued behind the one in flight")
            return []

        self._handling = True
        added: list[str] = []
        try:
            while self._queue:
                added.extend(self._handle_update(self._queue.popleft()))
        finally:
            self._handling = False
            self._queue.clear()
        return added

    def _handle_update(self, snapshot: GameMetricsSnapshot) -> list[str]:
        previous = self._previous
        beat = self.machine.current_beat
        pending_before = len(self._pending)

        added = self._add_pending(triggered_events(self.index, snapshot, previous, beat))
        if added:
            logger.info("Events now pending at '%s': %s", beat, added)

        transition = self.machine.check(snapshot)
        entered = transition.new_beat if transition else None
        self.journal.update(snapshot, previous, self.machine.current_beat, entered)

        self._previous = snapshot.with_beat(self.machine.current_beat)
        self._save_metrics()

        added.extend(self._pending[pending_before + len(added):])
        if len(self._pending) != pending_before:
            self._notify_availability()
        return added

    def check_currently_available(self, snapshot: GameMetricsSnapshot) -> list[str]:
        """Cold-start check: events whose trigger holds now and were never consumed."""
        beat = self.machine.current_beat
        available = [
            eid
            for eid in currently_available_events(self.index, snapshot, beat)
            if not self._consumed(eid)
        ]
        if self._add_pending(available):
            self._notify_availability()
        return available

    def set_beat(self, beat: str) -> BeatTransition | None:
        """Manual beat override (only when the config allows it)."""
        transition = self.machine.set_beat(beat)
        if transition is not None:
            self.journal.update(self._previous, self._previous, beat, beat)
            self._previous = self._previous.with_beat(beat)
            self._save_metrics()
        return transition

    def _on_beat_changed(self, transition: BeatTransition) -> None:
        groups = self._groups_on_beat.get(transition.new_beat, [])
        if groups:
            self._loaded_groups.update(groups)
            logger.info("Loaded character groups %s", groups)

        event_id = self._beat_events.get(transition.new_beat)
        if event_id:
            if self.catalog.event(event_id) is None:
                logger.warning("Beat event '%s' for '%s' is not in the catalog", event_id, transition.new_beat)
            else:
                self._add_pending([event_id])

        self._log_history(
            "beat_transition",
            f"{transition.previous_beat} -> {transition.new_beat}",
            {"reason": transition.reason},
        )

    # ── Conversation ────────────────────────────────────────────

    def eligible_characters(self, beat: str | None = None) -> list[Character]:
        """Characters of loaded groups that have not retired by ``beat``."""
        beat = beat or self.machine.current_beat
        return [
            character
            for character in self.catalog.characters.values()
            if character.loading_group in self._loaded_groups
            and not (
                character.retire_after != "never"
                and self.beats.is_after(beat, character.retire_after)
            )
        ]

    def start_conversation(
        self,
        beat: str | None = None,
        completed_ids: list[str] | None = None,
    ) -> NarrativeEvent | BanterLine | None:
        """A pending scripted event if there is one, else a banter line, else None."""
        beat = beat or self.machine.current_beat
        consumed = set(completed_ids or ())

        for event_id in list(self._pending):
            event = self.catalog.event(event_id)
            if event is None or event_id in consumed or self._consumed(event_id):
                self._pending.remove(event_id)
                continue
            if event.id in self.ledger:
                raise LedgerConsistencyError(f"Consumed event '{event.id}' was about to be replayed")
            logger.info("Conversation: event '%s'", event.id)
            return event

        return self.selector.pick_banter(self.eligible_characters(beat), self.catalog.banter, beat)

    def set_surface(self, surface: str) -> int:
        self._surface = surface
        self.playback.max_chars = page_limit(self._cfg.get("dialogue", {}), surface)
        return self.playback.max_chars

    def _resolve_event(self, event_id: str) -> NarrativeEvent | None:
        return self.catalog.event(event_id)

    def _resolve_character(self, character_id: str) -> Character | None:
        return self.catalog.character(character_id)

    # ── Persistence ─────────────────────────────────────────────

    def _on_event_completed(self, event_id: str) -> None:
        if event_id in self._pending:
            self._pending.remove(event_id)
        try:
            recorded = self.ledger.record(event_id)
        except LedgerWriteError as exc:
            logger.warning("Could not record '%s' yet (%s); will retry", event_id, exc)
            if event_id not in self._unsaved:
                self._unsaved.append(event_id)
            recorded = False
        if recorded:
            self._log_history("event_completed", event_id)
        self._notify_availability()

    def retry_pending_writes(self) -> int:
        """Retry ledger and metrics writes that failed earlier. Returns writes still outstanding."""
        for event_id in list(self._unsaved):
            try:
                self.ledger.record(event_id)
            except LedgerWriteError as exc:
                logger.warning("Retry for '%s' failed: %s", event_id, exc)
                continue
            self._unsaved.remove(event_id)
            self._log_history("event_completed", event_id, {"retried": True})
        if self._metrics_dirty:
            self._save_metrics()
        return len(self._unsaved) + int(self._metrics_dirty)

    def _save_metrics(self) -> None:
        try:
            self._metrics_store.write_metrics(self._previous, self.journal.state.to_dict())
        except PersistenceError as exc:
            logger.warning("Metrics not saved: %s", exc)
            self._metrics_dirty = True
            return
        self._metrics_dirty = False

    def _log_history(self, event_type: str, description: str, metadata: dict | None = None) -> None:
        try:
            self._db.log_narrative_event(event_type, description, metadata)
        except PersistenceError as exc:
            logger.warning("History not logged: %s", exc)

    # ── Status ──────────────────────────────────────────────────

    def status(self) -> dict[str, Any]:
        blurb = self.journal.current_blurb
        return {
            "beat": self.machine.current_beat,
            "loaded_groups": sorted(self._loaded_groups),
            "catalog": {
                "characters": len(self.catalog.characters),
                "banter": len(self.catalog.banter),
                "events": len(self.catalog.events),
                "rules": len(self.machine.rules),
                "blurbs": len(self.journal),
            },
            "pending_events": list(self._pending),
            "consumed_events": len(self._ledger) if self._ledger is not None else 0,
            "unsaved_writes": list(self._unsaved),
            "recent_characters": self.selector.recent.items(),
            "playback": {
                "state": self.playback.state,
                "event_id": self.playback.event_id,
                "cursor": self.playback.cursor,
            },
            "surface": self._surface,
            "journal_blurb": blurb.id if blurb else "",
        }
