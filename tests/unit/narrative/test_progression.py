"""Tests for the story beat state machine."""

from catalog.models import ProgressionRule, ThresholdCondition
from engine.memory import GameMetricsSnapshot
from narrative.beats import BeatOrder
from narrative.progression import ProgressionMachine

BEATS = BeatOrder(["hook", "midpoint", "end"])


def _rule(src, dst, minimum=3, priority=0, metric="completed_puzzles", description=""):
    return ProgressionRule(
        from_beat=src,
        to_beat=dst,
        conditions=[ThresholdCondition(metric, minimum=minimum)],
        priority=priority,
        description=description,
    )


def test_hook_to_midpoint_transitions_exactly_once():
    machine = ProgressionMachine(BEATS, [_rule("hook", "midpoint", 3)])
    seen = []
    machine.subscribe(lambda t: seen.append((t.previous_beat, t.new_beat)))

    assert machine.check(GameMetricsSnapshot(completed_puzzles=2)) is None
    assert machine.check(GameMetricsSnapshot(completed_puzzles=3)) is not None
    assert machine.check(GameMetricsSnapshot(completed_puzzles=3)) is None

    assert machine.current_beat == "midpoint"
    assert seen == [("hook", "midpoint")]


def test_all_conditions_must_hold():
    rule = ProgressionRule(
        "hook",
        "midpoint",
        conditions=[
            ThresholdCondition("completed_puzzles", minimum=3),
            ThresholdCondition("completed_books", minimum=1, maximum=2),
        ],
    )
    machine = ProgressionMachine(BEATS, [rule])
    assert machine.check(GameMetricsSnapshot(completed_puzzles=5)) is None
    assert machine.check(GameMetricsSnapshot(completed_puzzles=5, completed_books=3)) is None
    assert machine.check(GameMetricsSnapshot(completed_puzzles=5, completed_books=1)) is not None


def test_advances_at_most_one_beat_per_check():
    machine = ProgressionMachine(BEATS, [_rule("hook", "midpoint", 1), _rule("midpoint", "end", 1)])
    snap = GameMetricsSnapshot(completed_puzzles=10)
    machine.check(snap)
    assert machine.current_beat == "midpoint"
    machine.check(snap)
    assert machine.current_beat == "end"


def test_lowest_priority_number_wins():
    machine = ProgressionMachine(
        BEATS,
        [_rule("hook", "end", 1, priority=5), _rule("hook", "midpoint", 1, priority=1)],
    )
    transition = machine.check(GameMetricsSnapshot(completed_puzzles=1))
    assert transition.new_beat == "midpoint"


def test_priority_tie_picks_first_declared_and_warns(caplog):
    machine = ProgressionMachine(
        BEATS,
        [_rule("hook", "end", 1, priority=1), _rule("hook", "midpoint", 1, priority=1)],
    )
    transition = machine.check(GameMetricsSnapshot(completed_puzzles=1))
    assert transition.new_beat == "end"
    assert "share priority" in caplog.text


def test_invalid_rules_are_rejected(caplog):
    machine = ProgressionMachine(
        BEATS,
        [
            _rule("hook", "epilogue"),
            _rule("end", "hook"),
            _rule("hook", "midpoint", metric="gold_coins"),
            _rule("hook", "midpoint", metric="lore_puzzles"),
        ],
    )
    assert len(machine.rules) == 1
    assert machine.rules[0].conditions[0].metric == "lore_puzzles"
    assert "rejected" in caplog.text


def test_category_metrics_read_completion_sets():
    machine = ProgressionMachine(BEATS, [_rule("hook", "midpoint", 2, metric="lore_puzzles")])
    assert machine.check(GameMetricsSnapshot(completed_by_category={"lore": ["a", "b"]})) is not None


def test_auto_progression_switch():
    machine = ProgressionMachine(BEATS, [_rule("hook", "midpoint", 1)], auto_progression=False)
    assert machine.check(GameMetricsSnapshot(completed_puzzles=5)) is None
    assert machine.current_beat == "hook"


def test_manual_override_requires_permission():
    locked = ProgressionMachine(BEATS)
    assert locked.set_beat("end") is None
    assert locked.current_beat == "hook"

    machine = ProgressionMachine(BEATS, allow_manual_override=True)
    seen = []
    machine.subscribe(seen.append)
    transition = machine.set_beat("end")
    assert transition.reason == "manual override"
    assert machine.current_beat == "end"
    assert seen == [transition]
    assert machine.set_beat("nowhere") is None


def test_unsubscribe_stops_notifications():
    machine = ProgressionMachine(BEATS, [_rule("hook", "midpoint", 1)])
    seen = []
    unsubscribe = machine.subscribe(seen.append)
    unsubscribe()
    machine.check(GameMetricsSnapshot(completed_puzzles=1))
    assert seen == []


def test_failing_listener_does_not_block_others(caplog):
    machine = ProgressionMachine(BEATS, [_rule("hook", "midpoint", 1)])
    seen = []

    def broken(_transition):
        raise RuntimeError("boom")

    machine.subscribe(broken)
    machine.subscribe(seen.append)
    machine.check(GameMetricsSnapshot(completed_puzzles=1))
    assert len(seen) == 1
    assert "failed" in caplog.text


def test_unknown_starting_beat_falls_back_to_first():
    assert ProgressionMachine(BEATS, current_beat="epilogue").current_beat == "hook"
    assert ProgressionMachine(BEATS, current_beat="midpoint").current_beat == "midpoint"
