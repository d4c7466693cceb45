"""Story beat state machine driven by progress metrics."""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass
from typing import Callable

from catalog.models import ProgressionRule
from engine.memory import BASE_METRICS, GameMetricsSnapshot

from .beats import BeatOrder

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class BeatTransition:
    previous_beat: str
    new_beat: str
    rule: ProgressionRule | None = None  # None for manual overrides

    @property
    def reason(self) -> str:
        if self.rule is None:
            return "manual override"
        return self.rule.description or f"{self.rule.from_beat} -> {self.rule.to_beat}"


BeatListener = Callable[[BeatTransition], None]


def _known_metric(name: str) -> bool:
    return name in BASE_METRICS or (name.endswith("_puzzles") and len(name) > len("_puzzles"))


class ProgressionMachine:
    """Ordered beats plus threshold rules deciding when to move forward.

    Listeners are called synchronously, in subscription order, after the
    beat has changed. ``subscribe`` returns a callable that unsubscribes.
    """

    def __init__(
        self,
        beats: BeatOrder,
        rules: Iterable[ProgressionRule] = (),
        current_beat: str | None = None,
        auto_progression: bool = True,
        allow_manual_override: bool = False,
    ):
        self._beats = beats
        self._rules = self._accept_rules(rules)
        self._current = current_beat if current_beat in beats else beats.first
        if current_beat and current_beat not in beats:
            logger.warning("Unknown starting beat '%s'; starting at '%s'", current_beat, beats.first)
        self.auto_progression = auto_progression
        self.allow_manual_override = allow_manual_override
        self._listeners: list[BeatListener] = []

    def _accept_rules(self, rules: Iterable[ProgressionRule]) -> list[ProgressionRule]:
        accepted: list[ProgressionRule] = []
        for rule in rules:
            if rule.from_beat not in self._beats or rule.to_beat not in self._beats:
                logger.warning(
                    "Rule %s -> %s references an unknown beat; rejected",
                    rule.from_beat,
                    rule.to_beat,
                )
                continue
            if self._beats.is_terminal(rule.from_beat):
                logger.warning("Rule leaves terminal beat '%s'; rejected", rule.from_beat)
                continue
            unknown = [c.metric for c in rule.conditions if not _known_metric(c.metric)]
            if unknown:
                logger.warning(
                    "Rule %s -> %s uses unknown metrics %s; rejected",
                    rule.from_beat,
                    rule.to_beat,
                    unknown,
                )
                continue
            accepted.append(rule)
        return accepted

    @property
    def current_beat(self) -> str:
        return self._current

    @property
    def rules(self) -> list[ProgressionRule]:
        return list(self._rules)

    def load_rules(self, rules: Iterable[ProgressionRule]) -> int:
        """Replace the rule set after a catalog reload. Returns how many were accepted."""
        self._rules = self._accept_rules(rules)
        return len(self._rules)

    def subscribe(self, listener: BeatListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            self.unsubscribe(listener)

        return _unsubscribe

    def unsubscribe(self, listener: BeatListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def find_rule(self, snapshot: GameMetricsSnapshot) -> ProgressionRule | None:
        """Lowest-priority-number satisfied rule out of the current beat.

        Ties on priority go to the rule declared first, with a warning.
        """
        metrics = snapshot.metrics()
        satisfied = [
            rule
            for rule in self._rules
            if rule.from_beat == self._current and all(c.holds(metrics) for c in rule.conditions)
        ]
        if not satisfied:
            return None

        best = min(satisfied, key=lambda rule: rule.priority)  # min() keeps the first on ties
        tied = [rule for rule in satisfied if rule.priority == best.priority]
        if len(tied) > 1:
            logger.warning(
                "%d rules from '%s' share priority %d; using the first declared (-> %s)",
                len(tied),
                self._current,
                best.priority,
                best.to_beat,
            )
        return best

    def check(self, snapshot: GameMetricsSnapshot) -> BeatTransition | None:
        """Advance at most one beat if a rule out of the current beat is satisfied."""
        if not self.auto_progression:
            logger.debug("Auto-progression disabled; staying at '%s'", self._current)
            return None
        rule = self.find_rule(snapshot)
        if rule is None:
            return None
        return self._move_to(rule.to_beat, rule)

    def set_beat(self, beat: str) -> BeatTransition | None:
        """Manual override, honoured only when allowed by configuration."""
        if not self.allow_manual_override:
            logger.warning("Manual beat override is disabled; ignoring '%s'", beat)
            return None
        if beat not in self._beats:
            logger.warning("Cannot set unknown beat '%s'", beat)
            return None
        if beat == self._current:
            return None
        return self._move_to(beat, None)

    def _move_to(self, beat: str, rule: ProgressionRule | None) -> BeatTransition:
        transition = BeatTransition(previous_beat=self._current, new_beat=beat, rule=rule)
        self._current = beat
        logger.info("Story advanced: %s -> %s (%s)", transition.previous_beat, beat, transition.reason)
        for listener in list(self._listeners):
            try:
                listener(transition)
            except Exception:
                logger.exception("Beat listener %r failed", listener)
        return transition
