"""Tests for narrative content models."""

from catalog.models import (
    BanterLine,
    Catalog,
    Character,
    NarrativeEvent,
    ProgressionRule,
    StoryBlurb,
    ThresholdCondition,
)


class TestCharacter:
    def test_from_dict_full(self):
        character = Character.from_dict({
            "id": "lumina",
            "name": "Lumina",
            "title": "Archivist",
            "portrait": "lumina.png",
            "loading_group": "essential_figures",
            "retire_after": "midpoint",
        })
        assert character.portrait_ref == "lumina.png"
        assert character.loading_group == "essential_figures"
        assert character.retire_after == "midpoint"

    def test_defaults(self):
        character = Character.from_dict({"id": "x"})
        assert character.name == ""
        assert character.loading_group == "introduction_characters"
        assert character.retire_after == "never"


class TestBanterLine:
    def test_emotion_as_string_or_list(self):
        assert BanterLine.from_dict({"emotion": "warm"}).emotions == ("warm",)
        assert BanterLine.from_dict({"emotions": ["warm", "", None, "wry"]}).emotions == ("warm", "wry")

    def test_character_id_from_owner(self):
        line = BanterLine.from_dict({"text": "hi"}, character_id="tobin")
        assert line.character_id == "tobin"
        assert line.available_from is None
        assert line.available_until is None


class TestNarrativeEvent:
    def test_lines_sorted_by_sequence(self):
        event = NarrativeEvent.from_dict({
            "id": "e1",
            "trigger_condition": " first-puzzle-complete ",
            "dialogue": [
                {"speaker": "b", "text": "second", "sequence": 2},
                {"speaker": "a", "text": "first", "sequence": 1},
                "not a line",
            ],
        })
        assert event.trigger == "first-puzzle-complete"
        assert [line.text for line in event.lines] == ["first", "second"]
        assert event.story_beat is None

    def test_wrongly_shaped_lists_are_dropped(self):
        event = NarrativeEvent.from_dict({"id": "e1", "trigger": "first-puzzle-complete", "dialogue": 5, "characters": 3})
        assert event.lines == []
        assert event.characters == []

        rule = ProgressionRule.from_dict({"from": "hook", "to": "midpoint", "conditions": 4})
        assert rule.conditions == []

    def test_portrait_override(self):
        event = NarrativeEvent.from_dict({
            "id": "e1",
            "trigger": "first-puzzle-complete",
            "characters": ["tobin", {"id": "lumina", "portrait": "night.png"}],
        })
        assert event.portrait_for("lumina") == "night.png"
        assert event.portrait_for("tobin") == ""


class TestProgressionRule:
    def test_shorthand_and_bounds(self):
        rule = ProgressionRule.from_dict({
            "from": "hook",
            "to": "midpoint",
            "conditions": {"completed_puzzles": 3, "completed_books": {"min": 1, "max": 4}},
            "priority": "2",
        })
        assert rule.priority == 2
        assert rule.conditions == [
            ThresholdCondition("completed_puzzles", minimum=3),
            ThresholdCondition("completed_books", minimum=1, maximum=4),
        ]

    def test_conditions_as_list(self):
        rule = ProgressionRule.from_dict({
            "from": "hook",
            "to": "midpoint",
            "conditions": [{"metric": "discovered_books", "min": 2}],
        })
        assert rule.conditions == [ThresholdCondition("discovered_books", minimum=2)]

    def test_threshold_holds_inclusive(self):
        cond = ThresholdCondition("completed_puzzles", minimum=3, maximum=5)
        assert cond.holds({"completed_puzzles": 3})
        assert cond.holds({"completed_puzzles": 5})
        assert not cond.holds({"completed_puzzles": 6})
        assert not cond.holds({})


def test_catalog_lookups():
    catalog = Catalog(
        characters={"lumina": Character("lumina", "Lumina")},
        banter=[BanterLine("b1", "lumina", "hi"), BanterLine("b2", "tobin", "yo")],
        blurbs=[StoryBlurb.from_dict({"id": "s", "story_beat": "hook", "trigger": "game-start"})],
    )
    assert catalog.character("lumina").name == "Lumina"
    assert catalog.character("ghost") is None
    assert catalog.event("nope") is None
