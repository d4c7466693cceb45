"""Data models for narrative content loaded from a content store."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any


def _as_text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, str):
        return value
    return str(value)


def _as_tags(value: Any) -> tuple[str, ...]:
    """Normalize a tag field that may arrive as a string or a list."""
    if value is None:
        return ()
    if isinstance(value, str):
        return (value,) if value else ()
    if isinstance(value, (list, tuple)):
        return tuple(_as_text(v) for v in value if v is not None and _as_text(v))
    return (_as_text(value),)


def _as_int(value: Any, default: int = 0) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


def _optional_beat(value: Any) -> str | None:
    text = _as_text(value).strip()
    return text or None


@dataclass
class Character:
    id: str
    name: str
    title: str = ""
    portrait_ref: str = ""
    description: str = ""
    loading_group: str = "introduction_characters"
    retire_after: str = "never"

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> Character:
        return cls(
            id=_as_text(data.get("id", "")),
            name=_as_text(data.get("name", "")),
            title=_as_text(data.get("title", "")),
            portrait_ref=_as_text(data.get("portrait", data.get("portrait_ref", ""))),
            description=_as_text(data.get("description", "")),
            loading_group=_as_text(data.get("loading_group", "")) or "introduction_characters",
            retire_after=_as_text(data.get("retire_after", "")) or "never",
        )


@dataclass
class BanterLine:
    id: str
    character_id: str
    text: str
    emotions: tuple[str, ...] = ()
    category: str = ""
    available_from: str | None = None  # None = first beat
    available_until: str | None = None  # None = open-ended

    @classmethod
    def from_dict(cls, data: Mapping[str, Any], character_id: str = "") -> BanterLine:
        return cls(
            id=_as_text(data.get("id", "")),
            character_id=_as_text(data.get("character_id", character_id)),
            text=_as_text(data.get("text", "")),
            emotions=_as_tags(data.get("emotion", data.get("emotions"))),
            category=_as_text(data.get("category", "")),
            available_from=_optional_beat(data.get("available_from")),
            available_until=_optional_beat(data.get("available_until")),
        )


@dataclass
class DialogueLine:
    speaker: str
    text: str
    emotions: tuple[str, ...] = ()
    sequence: int = 0

    @classmethod
    def from_dict(cls, data: Mapping[str, Any], sequence: int = 0) -> DialogueLine:
        return cls(
            speaker=_as_text(data.get("speaker", "")),
            text=_as_text(data.get("text", "")),
            emotions=_as_tags(data.get("emotion", data.get("emotions"))),
            sequence=_as_int(data.get("sequence"), sequence),
        )


@dataclass
class EventCharacter:
    """A character taking part in an event, with an optional portrait override."""

    id: str
    portrait_ref: str = ""

    @classmethod
    def from_dict(cls, data: Mapping[str, Any] | str) -> EventCharacter:
        if isinstance(data, str):
            return cls(id=data)
        return cls(
            id=_as_text(data.get("id", "")),
            portrait_ref=_as_text(data.get("portrait", data.get("portrait_ref", ""))),
        )


@dataclass
class NarrativeEvent:
    id: str
    trigger: str
    title: str = ""
    story_beat: str | None = None  # None = any beat
    lines: list[DialogueLine] = field(default_factory=list)
    characters: list[EventCharacter] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> NarrativeEvent:
        raw_lines = data.get("dialogue", data.get("lines"))
        raw_chars = data.get("characters")
        raw_lines = raw_lines if isinstance(raw_lines, list) else []
        raw_chars = raw_chars if isinstance(raw_chars, list) else []
        lines = [
            DialogueLine.from_dict(item, sequence=i)
            for i, item in enumerate(raw_lines)
            if isinstance(item, Mapping)
        ]
        lines.sort(key=lambda line: line.sequence)
        return cls(
            id=_as_text(data.get("id", "")),
            trigger=_as_text(data.get("trigger", data.get("trigger_condition", ""))).strip(),
            title=_as_text(data.get("title", "")),
            story_beat=_optional_beat(data.get("story_beat")),
            lines=lines,
            characters=[
                EventCharacter.from_dict(item)
                for item in raw_chars
                if isinstance(item, (Mapping, str))
            ],
        )

    def portrait_for(self, character_id: str) -> str:
        for ref in self.characters:
            if ref.id == character_id and ref.portrait_ref:
                return ref.portrait_ref
        return ""


@dataclass
class ThresholdCondition:
    """Numeric bounds on one progress metric; both bounds inclusive."""

    metric: str
    minimum: int | None = None
    maximum: int | None = None

    def holds(self, metrics: Mapping[str, int]) -> bool:
        value = metrics.get(self.metric, 0)
        if self.minimum is not None and value < self.minimum:
            return False
        if self.maximum is not None and value > self.maximum:
            return False
        return True


@dataclass
class ProgressionRule:
    from_beat: str
    to_beat: str
    conditions: list[ThresholdCondition] = field(default_factory=list)
    priority: int = 0
    description: str = ""

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> ProgressionRule:
        raw_conditions = data.get("conditions") or {}
        conditions: list[ThresholdCondition] = []
        if isinstance(raw_conditions, Mapping):
            items = list(raw_conditions.items())
        elif isinstance(raw_conditions, list):
            items = [
                (c.get("metric", ""), c)
                for c in raw_conditions
                if isinstance(c, Mapping)
            ]
        else:
            items = []
        for metric, bounds in items:
            if not isinstance(bounds, Mapping):
                # shorthand: `completed_puzzles: 3` means a minimum of 3
                bounds = {"min": bounds}
            minimum = bounds.get("min")
            maximum = bounds.get("max")
            conditions.append(
                ThresholdCondition(
                    metric=_as_text(metric),
                    minimum=None if minimum is None else _as_int(minimum),
                    maximum=None if maximum is None else _as_int(maximum),
                )
            )
        return cls(
            from_beat=_as_text(data.get("from", data.get("from_beat", ""))),
            to_beat=_as_text(data.get("to", data.get("to_beat", ""))),
            conditions=conditions,
            priority=_as_int(data.get("priority"), 0),
            description=_as_text(data.get("description", "")),
        )


@dataclass
class StoryBlurb:
    id: str
    story_beat: str
    trigger: str
    title: str = ""
    text: str = ""
    order: int = 0

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> StoryBlurb:
        return cls(
            id=_as_text(data.get("id", "")),
            story_beat=_as_text(data.get("story_beat", "")),
            trigger=_as_text(data.get("trigger", "")).strip(),
            title=_as_text(data.get("title", "")),
            text=_as_text(data.get("text", "")),
            order=_as_int(data.get("order"), 0),
        )


@dataclass
class Catalog:
    """In-memory registry of all narrative content."""

    characters: dict[str, Character] = field(default_factory=dict)
    banter: list[BanterLine] = field(default_factory=list)
    events: dict[str, NarrativeEvent] = field(default_factory=dict)
    rules: list[ProgressionRule] = field(default_factory=list)
    blurbs: list[StoryBlurb] = field(default_factory=list)
    beats: tuple[str, ...] = ()

    def character(self, character_id: str) -> Character | None:
        return self.characters.get(character_id)

    def event(self, event_id: str) -> NarrativeEvent | None:
        return self.events.get(event_id)
