"""Index of narrative events by owning story beat.

Built once after the catalog loads so that each progress update only checks
the events relevant to the current beat instead of the whole catalog.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass
from types import MappingProxyType

from catalog.models import NarrativeEvent
from engine.memory import GameMetricsSnapshot

from .beats import ANY_BEAT, BeatOrder
from .conditions import Predicate, evaluate, parse_predicate

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class IndexedEvent:
    event_id: str
    trigger: str
    predicate: Predicate
    story_beat: str  # ANY_BEAT when the event is not tied to a beat


class TriggerIndex:
    """Events grouped by beat, with a separate bucket for "any beat" events."""

    def __init__(self, beats: BeatOrder):
        self._beats = beats
        self._by_beat: MappingProxyType[str, tuple[IndexedEvent, ...]] = MappingProxyType({})
        self._built = False

    @property
    def built(self) -> bool:
        return self._built

    def __len__(self) -> int:
        return sum(len(bucket) for bucket in self._by_beat.values())

    def build(self, events: Iterable[NarrativeEvent]) -> int:
        """(Re)build the index. The new index replaces the old one only when complete."""
        buckets: dict[str, list[IndexedEvent]] = {}
        skipped = 0
        for event in events:
            beat = event.story_beat or ANY_BEAT
            if beat != ANY_BEAT and beat not in self._beats:
                logger.warning("Event '%s' references unknown beat '%s'; not indexed", event.id, beat)
                skipped += 1
                continue
            predicate = parse_predicate(event.trigger)
            if predicate is None:
                logger.warning("Event '%s' has malformed trigger '%s'; not indexed", event.id, event.trigger)
                skipped += 1
                continue
            buckets.setdefault(beat, []).append(IndexedEvent(event.id, event.trigger, predicate, beat))

        self._by_beat = MappingProxyType({beat: tuple(items) for beat, items in buckets.items()})
        self._built = True
        indexed = len(self)
        logger.info("Trigger index built: %d events indexed, %d skipped", indexed, skipped)
        return indexed

    def events_for_beat(self, beat: str) -> list[IndexedEvent]:
        """Events scoped to ``beat`` followed by events scoped to any beat."""
        by_beat = self._by_beat
        return [*by_beat.get(beat, ()), *by_beat.get(ANY_BEAT, ())]


def triggered_events(
    index: TriggerIndex,
    current: GameMetricsSnapshot,
    previous: GameMetricsSnapshot | None,
    beat: str,
) -> list[str]:
    """Ids of events whose trigger became true between ``previous`` and ``current``.

    With no previous snapshot every counter is treated as starting from zero.
    """
    before = previous if previous is not None else GameMetricsSnapshot()
    return [
        item.event_id
        for item in index.events_for_beat(beat)
        if evaluate(item.predicate, current, before)
    ]


def currently_available_events(
    index: TriggerIndex,
    current: GameMetricsSnapshot,
    beat: str,
) -> list[str]:
    """Ids of events whose trigger holds on ``current`` alone (cold-start check)."""
    return [item.event_id for item in index.events_for_beat(beat) if evaluate(item.predicate, current)]
