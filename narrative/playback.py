"""Playback of a narrative event, one speaker line at a time.

A session moves ``idle -> loaded -> playing -> completed``; ``abort()`` ends a
loaded or playing session early. Each ``advance()`` (the player's "continue")
emits the next display-ready entry; once the lines run out the completion
callback fires exactly once.
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, field
from typing import Any, Callable

from catalog.models import Character, NarrativeEvent

from .pagination import DEFAULT_SURFACE, DEFAULT_TEXT_LIMITS, paginate

logger = logging.getLogger(__name__)

IDLE = "idle"
LOADED = "loaded"
PLAYING = "playing"
COMPLETED = "completed"
ABORTED = "aborted"


class PlaybackError(Exception):
    """Raised when a playback session cannot be loaded or started."""


class EventNotFoundError(PlaybackError):
    pass


class EventMismatchError(PlaybackError):
    """The catalog resolved a different event than the one requested."""


class SessionActiveError(PlaybackError):
    """Another session is still loaded or playing."""


@dataclass
class SpeakerCard:
    id: str
    name: str
    title: str = ""
    portrait_ref: str = ""


@dataclass
class DialogueEntry:
    """One display-ready line for the presentation surface."""

    id: str
    character: SpeakerCard
    full_text: str
    pages: list[str] = field(default_factory=list)
    current_page_index: int = 0
    emotion: str = ""

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


class PlaybackSequencer:
    """Turns a narrative event into a stream of paginated dialogue entries."""

    def __init__(
        self,
        resolve_event: Callable[[str], NarrativeEvent | None],
        resolve_character: Callable[[str], Character | None],
        max_chars: int = DEFAULT_TEXT_LIMITS[DEFAULT_SURFACE],
        on_entry: Callable[[DialogueEntry], None] | None = None,
        on_complete: Callable[[str], None] | None = None,
    ):
        self._resolve_event = resolve_event
        self._resolve_character = resolve_character
        self.max_chars = max_chars
        self.on_entry = on_entry
        self.on_complete = on_complete

        self._event: NarrativeEvent | None = None
        self._cursor = 0
        self._paused = False
        self._state = IDLE

    # ── Status ──────────────────────────────────────────────────

    @property
    def state(self) -> str:
        return self._state

    @property
    def event_id(self) -> str:
        return self._event.id if self._event else ""

    @property
    def cursor(self) -> int:
        return self._cursor

    @property
    def paused(self) -> bool:
        return self._paused

    @property
    def is_active(self) -> bool:
        return self._state in (LOADED, PLAYING)

    # ── Controls ────────────────────────────────────────────────

    def load(self, event_id: str) -> NarrativeEvent:
        if self.is_active:
            raise SessionActiveError(
                f"Cannot load '{event_id}': session for '{self.event_id}' is still {self._state}"
            )

        event = self._resolve_event(event_id)
        if event is None:
            raise EventNotFoundError(f"Story event not found: {event_id}")
        if event.id != event_id:
            raise EventMismatchError(f"Event id mismatch: requested '{event_id}' but loaded '{event.id}'")
        if not event.lines:
            logger.warning("Event '%s' has no dialogue lines; not loaded", event_id)
            raise PlaybackError(f"Story event has no dialogue: {event_id}")

        self._event = event
        self._cursor = 0
        self._paused = False
        self._state = LOADED
        logger.info("Loaded event '%s' (%d lines)", event_id, len(event.lines))
        return event

    def start(self) -> DialogueEntry | None:
        if self._state == PLAYING:
            return self._emit_next()
        if self._state != LOADED:
            raise PlaybackError(f"No story event loaded (state={self._state})")
        self._state = PLAYING
        return self._emit_next()

    def advance(self) -> DialogueEntry | None:
        """Emit the next entry. A no-op once the session has ended."""
        if self._state == LOADED:
            return self.start()
        if self._state != PLAYING:
            logger.debug("advance() ignored in state '%s'", self._state)
            return None
        return self._emit_next()

    def pause(self) -> None:
        if self.is_active:
            self._paused = True

    def resume(self) -> DialogueEntry | None:
        if not self._paused:
            return None
        self._paused = False
        if self._state == PLAYING:
            return self._emit_next()
        return None

    def abort(self) -> None:
        if not self.is_active:
            return
        logger.info("Playback of '%s' aborted at line %d", self.event_id, self._cursor)
        self._event = None
        self._cursor = 0
        self._paused = False
        self._state = ABORTED

    # ── Internals ───────────────────────────────────────────────

    def _emit_next(self) -> DialogueEntry | None:
        if self._paused or self._event is None:
            return None

        lines = self._event.lines
        while self._cursor < len(lines):
            index = self._cursor
            line = lines[index]
            self._cursor += 1

            character = self._resolve_character(line.speaker)
            if character is None:
                logger.error(
                    "Character '%s' not found for line %d of '%s'; skipping line",
                    line.speaker,
                    index,
                    self._event.id,
                )
                continue

            entry = DialogueEntry(
                id=f"{self._event.id}-{index}",
                character=SpeakerCard(
                    id=character.id,
                    name=character.name,
                    title=character.title,
                    portrait_ref=self._event.portrait_for(character.id) or character.portrait_ref,
                ),
                full_text=line.text,
                pages=[page.strip() for page in paginate(line.text, self.max_chars)],
                emotion=line.emotions[0] if line.emotions else "",
            )
            if self.on_entry is not None:
                self.on_entry(entry)
            return entry

        self._complete()
        return None

    def _complete(self) -> None:
        event_id = self._event.id if self._event else ""
        self._state = COMPLETED
        logger.info("Event '%s' complete", event_id)
        if self.on_complete is not None:
            self.on_complete(event_id)
