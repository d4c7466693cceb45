"""Story beat ordering and availability windows."""

from __future__ import annotations

import logging
from collections.abc import Iterable

logger = logging.getLogger(__name__)

DEFAULT_BEATS = (
    "hook",
    "first_plot_point",
    "first_pinch_point",
    "midpoint",
    "second_pinch_point",
    "second_plot_point",
    "climax",
    "resolution",
)

# Owning-beat value for events that apply at every beat.
ANY_BEAT = "any"


class BeatOrder:
    """Fixed, totally ordered list of story beats."""

    def __init__(self, beats: Iterable[str] | None = None):
        ordered = tuple(str(b) for b in (beats or DEFAULT_BEATS))
        if not ordered:
            raise ValueError("Beat order needs at least one beat")
        if len(set(ordered)) != len(ordered):
            raise ValueError(f"Duplicate beats in order: {ordered}")
        if ANY_BEAT in ordered:
            raise ValueError(f"'{ANY_BEAT}' is reserved and cannot be a beat")
        self._beats = ordered
        self._positions = {beat: i for i, beat in enumerate(ordered)}

    def __iter__(self):
        return iter(self._beats)

    def __len__(self) -> int:
        return len(self._beats)

    def __contains__(self, beat: object) -> bool:
        return beat in self._positions

    def __repr__(self) -> str:
        return f"BeatOrder({list(self._beats)!r})"

    @property
    def beats(self) -> tuple[str, ...]:
        return self._beats

    @property
    def first(self) -> str:
        return self._beats[0]

    @property
    def last(self) -> str:
        return self._beats[-1]

    def position(self, beat: str) -> int | None:
        return self._positions.get(beat)

    def is_terminal(self, beat: str) -> bool:
        return beat == self.last

    def is_after(self, beat: str, other: str) -> bool:
        """True when ``beat`` comes strictly after ``other``. Unknown beats compare false."""
        a, b = self.position(beat), self.position(other)
        if a is None or b is None:
            return False
        return a > b

    def in_window(self, current: str, available_from: str | None, available_until: str | None = None) -> bool:
        """Check that ``current`` lies inside ``[available_from, available_until]``.

        A missing ``available_from`` means the first beat; a missing
        ``available_until`` leaves the window open-ended. Any unknown beat
        makes the window fail closed.
        """
        current_pos = self.position(current)
        from_pos = self.position(available_from or self.first)
        if current_pos is None or from_pos is None:
            logger.warning(
                "Invalid story beat in window check: current=%s from=%s until=%s",
                current,
                available_from,
                available_until,
            )
            return False

        if not available_until:
            return current_pos >= from_pos

        until_pos = self.position(available_until)
        if until_pos is None:
            logger.warning("Invalid available_until beat: %s", available_until)
            return False
        return from_pos <= current_pos <= until_pos
