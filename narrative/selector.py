"""Banter selection - weighted random choice that avoids recent speakers."""

from __future__ import annotations

import logging
import random
from collections import deque
from collections.abc import Iterable, Sequence
from dataclasses import dataclass

from catalog.models import BanterLine, Character

from .beats import BeatOrder

logger = logging.getLogger(__name__)

FRESH_WEIGHT = 3
RECENT_WEIGHT = 1
DEFAULT_RECENT_WINDOW = 3


class RecentRing:
    """Bounded FIFO of recently used character ids."""

    def __init__(self, size: int = DEFAULT_RECENT_WINDOW):
        self._items: deque[str] = deque(maxlen=max(1, int(size)))

    def __contains__(self, character_id: object) -> bool:
        return character_id in self._items

    def __len__(self) -> int:
        return len(self._items)

    @property
    def size(self) -> int:
        return self._items.maxlen or 0

    def push(self, character_id: str) -> None:
        # A repeat moves to the newest slot instead of taking a second one.
        if character_id in self._items:
            self._items.remove(character_id)
        self._items.append(character_id)

    def clear(self) -> None:
        self._items.clear()

    def items(self) -> list[str]:
        return list(self._items)


@dataclass
class EligibleCharacter:
    character: Character
    lines: list[BanterLine]


class DialogueSelector:
    """Pick a banter line for the current beat."""

    def __init__(
        self,
        beats: BeatOrder,
        recent_window: int = DEFAULT_RECENT_WINDOW,
        rng: random.Random | None = None,
    ):
        self._beats = beats
        self._rng = rng or random.Random()
        self.recent = RecentRing(recent_window)

    def eligible(
        self,
        characters: Iterable[Character],
        lines: Iterable[BanterLine],
        current_beat: str,
    ) -> list[EligibleCharacter]:
        by_character: dict[str, list[BanterLine]] = {}
        for line in lines:
            if self._beats.in_window(current_beat, line.available_from, line.available_until):
                by_character.setdefault(line.character_id, []).append(line)

        return [
            EligibleCharacter(character, by_character[character.id])
            for character in characters
            if by_character.get(character.id)
        ]

    def pick_banter(
        self,
        characters: Sequence[Character],
        lines: Iterable[BanterLine],
        current_beat: str,
    ) -> BanterLine | None:
        """Weighted draw over eligible characters, then a uniform draw over their lines.

        Returns None when nobody has a line for ``current_beat``.
        """
        pool = self.eligible(characters, lines, current_beat)
        if not pool:
            logger.info("No banter available at beat '%s'", current_beat)
            return None

        weights = [RECENT_WEIGHT if entry.character.id in self.recent else FRESH_WEIGHT for entry in pool]
        chosen = self._rng.choices(pool, weights=weights, k=1)[0]
        line = self._rng.choice(chosen.lines)
        self.recent.push(chosen.character.id)
        logger.debug(
            "Banter: %s (%d eligible characters, recent=%s)",
            line.id or chosen.character.id,
            len(pool),
            self.recent.items(),
        )
        return line
