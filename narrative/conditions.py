"""Trigger predicates for narrative content.

A trigger identifier such as ``puzzle-milestone-10`` is parsed once into one
of four predicate variants and evaluated against progress snapshots:

- ``ExactCount``     "first X" style counts (``first-puzzle-complete``)
- ``Threshold``      milestones with a parsed integer (``books-complete-5``)
- ``GroupComplete``  every item of a group is complete (``lore-book-complete-Tides``)
- ``ExternalFlag``   one-off booleans set by the game (``flag-has_visited_library``)

Evaluation runs in one of two modes. With a previous snapshot it is a
transition check: true only when the predicate was false before and is true
now. Without one it is a snapshot check on the current progress alone.
Malformed identifiers fail closed and never raise.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Callable, Union

from engine.memory import GameMetricsSnapshot

logger = logging.getLogger(__name__)

# Counters a predicate can read. "category_puzzles" needs a category.
COMPLETED_PUZZLES = "completed_puzzles"
COMPLETED_BOOKS = "completed_books"
DISCOVERED_BOOKS = "discovered_books"
CATEGORY_PUZZLES = "category_puzzles"


@dataclass(frozen=True)
class ExactCount:
    counter: str
    category: str = ""
    count: int = 1


@dataclass(frozen=True)
class Threshold:
    counter: str
    minimum: int
    category: str = ""


@dataclass(frozen=True)
class GroupComplete:
    category: str
    group: str


@dataclass(frozen=True)
class ExternalFlag:
    flag: str
    expected: bool = True


Predicate = Union[ExactCount, Threshold, GroupComplete, ExternalFlag]


_EXACT: dict[str, Predicate] = {
    "first-puzzle-complete": ExactCount(COMPLETED_PUZZLES),
    "first-book-complete": ExactCount(COMPLETED_BOOKS),
    "first-book-discovered": ExactCount(DISCOVERED_BOOKS),
    "player-enters-library-first-time": ExternalFlag("has_visited_library", expected=False),
}

_PATTERNS: list[tuple[re.Pattern[str], Callable[[re.Match[str]], Predicate]]] = [
    (re.compile(r"^puzzle-milestone-(\d+)$"), lambda m: Threshold(COMPLETED_PUZZLES, int(m[1]))),
    (re.compile(r"^books-complete-(\d+)$"), lambda m: Threshold(COMPLETED_BOOKS, int(m[1]))),
    (re.compile(r"^books-discovered-(\d+)$"), lambda m: Threshold(DISCOVERED_BOOKS, int(m[1]))),
    (
        re.compile(r"^first-([a-z0-9_]+)-puzzle-complete$"),
        lambda m: ExactCount(CATEGORY_PUZZLES, category=m[1]),
    ),
    (
        re.compile(r"^([a-z0-9_]+)-puzzle-milestone-(\d+)$"),
        lambda m: Threshold(CATEGORY_PUZZLES, int(m[2]), category=m[1]),
    ),
    (re.compile(r"^([a-z0-9_]+)-book-complete-(.+)$"), lambda m: GroupComplete(m[1], m[2])),
    (re.compile(r"^flag-unset-([A-Za-z0-9_]+)$"), lambda m: ExternalFlag(m[1], expected=False)),
    (re.compile(r"^flag-([A-Za-z0-9_]+)$"), lambda m: ExternalFlag(m[1])),
]


def parse_predicate(identifier: str) -> Predicate | None:
    """Parse a trigger identifier. Returns None (and logs) when malformed."""
    if not isinstance(identifier, str) or not identifier.strip():
        logger.warning("Empty or non-text trigger identifier: %r", identifier)
        return None

    ident = identifier.strip()
    if ident in _EXACT:
        return _EXACT[ident]

    for pattern, build in _PATTERNS:
        match = pattern.match(ident)
        if match:
            return build(match)

    logger.warning("Unrecognized trigger identifier '%s'; it will never fire", ident)
    return None


def _count(snapshot: GameMetricsSnapshot, counter: str, category: str) -> int:
    if counter == COMPLETED_PUZZLES:
        return snapshot.completed_puzzles
    if counter == COMPLETED_BOOKS:
        return snapshot.completed_books
    if counter == DISCOVERED_BOOKS:
        return snapshot.discovered_books
    if counter == CATEGORY_PUZZLES:
        return snapshot.category_count(category)
    logger.warning("Unknown counter '%s' in predicate", counter)
    return 0


def evaluate(
    predicate: Predicate | str,
    current: GameMetricsSnapshot,
    previous: GameMetricsSnapshot | None = None,
) -> bool:
    """Evaluate ``predicate`` in transition mode (``previous`` given) or snapshot mode."""
    if isinstance(predicate, str):
        parsed = parse_predicate(predicate)
        if parsed is None:
            return False
        predicate = parsed

    try:
        return _evaluate(predicate, current, previous)
    except (AttributeError, TypeError, ValueError) as exc:
        logger.warning("Predicate %r failed closed: %s", predicate, exc)
        return False


def _evaluate(
    predicate: Predicate,
    current: GameMetricsSnapshot,
    previous: GameMetricsSnapshot | None,
) -> bool:
    if isinstance(predicate, ExactCount):
        now = _count(current, predicate.counter, predicate.category) == predicate.count
        if previous is None:
            return now
        return now and _count(previous, predicate.counter, predicate.category) < predicate.count

    if isinstance(predicate, Threshold):
        now = _count(current, predicate.counter, predicate.category) >= predicate.minimum
        if previous is None:
            return now
        return now and _count(previous, predicate.counter, predicate.category) < predicate.minimum

    if isinstance(predicate, GroupComplete):
        now = current.group_complete(predicate.category, predicate.group)
        if previous is None:
            return now
        return now and not previous.group_complete(predicate.category, predicate.group)

    if isinstance(predicate, ExternalFlag):
        # Flags belong to the screen that sets them; they have no transitions.
        if previous is not None:
            return False
        return current.flag(predicate.flag) == predicate.expected

    logger.warning("Unsupported predicate type %s", type(predicate).__name__)
    return False
