"""Story journal: short blurbs unlocked as the player progresses.

Blurbs share the trigger vocabulary of narrative events and add two of their
own: ``game-start`` (fires while nothing has been unlocked) and
``story-beat-<beat>`` (fires when the story enters ``<beat>``).
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from typing import Any

from catalog.models import StoryBlurb
from engine.memory import GameMetricsSnapshot

from .beats import BeatOrder
from .conditions import Predicate, evaluate, parse_predicate

logger = logging.getLogger(__name__)

GAME_START = "game-start"
BEAT_TRIGGER_PREFIX = "story-beat-"


def beat_trigger(beat: str) -> str:
    return f"{BEAT_TRIGGER_PREFIX}{beat}"


@dataclass
class JournalState:
    current_blurb_id: str = ""
    unlocked: list[str] = field(default_factory=list)
    fired_triggers: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "current_blurb_id": self.current_blurb_id,
            "unlocked": list(self.unlocked),
            "fired_triggers": list(self.fired_triggers),
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any] | None) -> JournalState:
        data = data or {}
        return cls(
            current_blurb_id=str(data.get("current_blurb_id", "") or ""),
            unlocked=[str(i) for i in data.get("unlocked") or []],
            fired_triggers=[str(t) for t in data.get("fired_triggers") or []],
        )


class StoryJournal:
    """Unlocks at most one blurb per progress update; each trigger fires once."""

    def __init__(
        self,
        blurbs: Iterable[StoryBlurb],
        beats: BeatOrder,
        state: JournalState | None = None,
    ):
        self._beats = beats
        self._by_id: dict[str, StoryBlurb] = {}
        self._by_trigger: dict[str, list[StoryBlurb]] = {}
        self._predicates: dict[str, Predicate] = {}
        self.state = state or JournalState()

        for blurb in blurbs:
            if blurb.story_beat not in beats:
                logger.warning("Blurb '%s' has unknown beat '%s'; skipped", blurb.id, blurb.story_beat)
                continue
            if not self._accept_trigger(blurb.trigger):
                logger.warning("Blurb '%s' has malformed trigger '%s'; skipped", blurb.id, blurb.trigger)
                continue
            self._by_id[blurb.id] = blurb
            self._by_trigger.setdefault(blurb.trigger, []).append(blurb)

        for items in self._by_trigger.values():
            items.sort(key=lambda b: b.order)

    def _accept_trigger(self, trigger: str) -> bool:
        if trigger == GAME_START:
            return True
        if trigger.startswith(BEAT_TRIGGER_PREFIX):
            return trigger[len(BEAT_TRIGGER_PREFIX):] in self._beats
        predicate = parse_predicate(trigger)
        if predicate is None:
            return False
        self._predicates[trigger] = predicate
        return True

    def __len__(self) -> int:
        return len(self._by_id)

    @property
    def current_blurb(self) -> StoryBlurb | None:
        return self._by_id.get(self.state.current_blurb_id)

    def unlocked_blurbs(self) -> list[StoryBlurb]:
        """Unlocked blurbs in unlock order, for the story history view."""
        return [self._by_id[i] for i in self.state.unlocked if i in self._by_id]

    def update(
        self,
        current: GameMetricsSnapshot,
        previous: GameMetricsSnapshot | None,
        beat: str,
        entered_beat: str | None = None,
    ) -> StoryBlurb | None:
        """Unlock the next blurb for this update, if any trigger calls for one."""
        candidates: list[str] = []
        if not self.state.unlocked:
            candidates.append(GAME_START)
        if entered_beat:
            candidates.append(beat_trigger(entered_beat))
        before = previous if previous is not None else GameMetricsSnapshot()
        candidates.extend(
            trigger
            for trigger, predicate in self._predicates.items()
            if evaluate(predicate, current, before)
        )

        for trigger in candidates:
            if trigger in self.state.fired_triggers:
                continue
            blurb = self._blurb_for(trigger, beat)
            if blurb is not None:
                return self._unlock(blurb)
        return None

    def _blurb_for(self, trigger: str, beat: str) -> StoryBlurb | None:
        current_pos = self._beats.position(beat)
        if current_pos is None:
            return None
        for blurb in self._by_trigger.get(trigger, ()):
            if blurb.id in self.state.unlocked:
                continue
            if self._beats.position(blurb.story_beat) <= current_pos:
                return blurb
        return None

    def _unlock(self, blurb: StoryBlurb) -> StoryBlurb:
        self.state.current_blurb_id = blurb.id
        self.state.unlocked.append(blurb.id)
        self.state.fired_triggers.append(blurb.trigger)
        logger.info("Journal: unlocked '%s' (%s)", blurb.title or blurb.id, blurb.trigger)
        return blurb
