"""Tests for the beat-scoped trigger index."""

from catalog.models import DialogueLine, NarrativeEvent
from engine.memory import GameMetricsSnapshot
from narrative.beats import BeatOrder
from narrative.trigger_index import TriggerIndex, currently_available_events, triggered_events

BEATS = BeatOrder(["hook", "midpoint", "end"])


def _event(event_id: str, trigger: str, beat: str | None) -> NarrativeEvent:
    return NarrativeEvent(
        id=event_id,
        trigger=trigger,
        story_beat=beat,
        lines=[DialogueLine(speaker="lumina", text="Hello.")],
    )


def _index(*events: NarrativeEvent) -> TriggerIndex:
    index = TriggerIndex(BEATS)
    index.build(events)
    return index


def test_events_for_beat_returns_beat_events_then_any_events():
    index = _index(
        _event("h1", "first-puzzle-complete", "hook"),
        _event("m1", "puzzle-milestone-5", "midpoint"),
        _event("a1", "first-book-complete", None),
        _event("a2", "books-discovered-2", "any"),
    )
    assert [e.event_id for e in index.events_for_beat("hook")] == ["h1", "a1", "a2"]
    assert [e.event_id for e in index.events_for_beat("midpoint")] == ["m1", "a1", "a2"]
    assert [e.event_id for e in index.events_for_beat("end")] == ["a1", "a2"]


def test_events_for_beat_is_stable_without_rebuild():
    index = _index(_event("h1", "first-puzzle-complete", "hook"), _event("a1", "first-book-complete", None))
    first = index.events_for_beat("hook")
    for _ in range(5):
        assert index.events_for_beat("hook") == first


def test_unknown_beats_and_malformed_triggers_are_not_indexed(caplog):
    index = _index(
        _event("ok", "first-puzzle-complete", "hook"),
        _event("lost", "first-puzzle-complete", "epilogue"),
        _event("bad", "whenever-you-like", "hook"),
    )
    assert len(index) == 1
    assert "epilogue" in caplog.text
    assert "whenever-you-like" in caplog.text


def test_rebuild_replaces_whole_index():
    index = _index(_event("old", "first-puzzle-complete", "hook"))
    index.build([_event("new", "first-book-complete", "hook")])
    assert [e.event_id for e in index.events_for_beat("hook")] == ["new"]


def test_triggered_events_uses_transition_semantics():
    index = _index(
        _event("first", "first-puzzle-complete", "hook"),
        _event("three", "puzzle-milestone-3", "hook"),
    )
    one = GameMetricsSnapshot(completed_puzzles=1)
    three = GameMetricsSnapshot(completed_puzzles=3)
    assert triggered_events(index, one, None, "hook") == ["first"]
    assert triggered_events(index, three, one, "hook") == ["three"]
    assert triggered_events(index, three, three, "hook") == []


def test_events_outside_current_beat_are_not_checked():
    index = _index(_event("m1", "first-puzzle-complete", "midpoint"))
    one = GameMetricsSnapshot(completed_puzzles=1)
    assert triggered_events(index, one, GameMetricsSnapshot(), "hook") == []
    assert triggered_events(index, one, GameMetricsSnapshot(), "midpoint") == ["m1"]


def test_currently_available_uses_snapshot_semantics():
    index = _index(_event("h1", "first-puzzle-complete", "hook"))
    assert currently_available_events(index, GameMetricsSnapshot(completed_puzzles=1), "hook") == ["h1"]
    assert currently_available_events(index, GameMetricsSnapshot(), "hook") == []
