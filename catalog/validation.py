"""Build a Catalog from raw content, skipping anything malformed."""

from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

from narrative.beats import ANY_BEAT, BeatOrder
from narrative.conditions import parse_predicate

from .models import (
    BanterLine,
    Catalog,
    Character,
    NarrativeEvent,
    ProgressionRule,
    StoryBlurb,
)

logger = logging.getLogger(__name__)

SECTIONS = ("characters", "banter", "events", "progression_rules", "blurbs")


@dataclass
class CatalogReport:
    """What was loaded and what was left out, and why."""

    loaded: dict[str, int] = field(default_factory=dict)
    skipped: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.skipped

    def skip(self, message: str) -> None:
        logger.warning("Skipped: %s", message)
        self.skipped.append(message)

    def warn(self, message: str) -> None:
        logger.warning(message)
        self.warnings.append(message)

    def summary(self) -> str:
        counts = ", ".join(f"{n} {name}" for name, n in self.loaded.items())
        return f"Loaded {counts or 'nothing'}; {len(self.skipped)} skipped, {len(self.warnings)} warnings"


def _entries(raw: Mapping[str, Any], section: str, report: CatalogReport) -> list[Mapping[str, Any]]:
    items = raw.get(section) or []
    if not isinstance(items, list):
        report.skip(f"section '{section}' is not a list")
        return []
    entries = []
    for i, item in enumerate(items):
        if isinstance(item, Mapping):
            entries.append(item)
        else:
            report.skip(f"{section}[{i}] is not a mapping")
    return entries


def _not_a(data: Mapping[str, Any], key: str, *kinds: type) -> bool:
    value = data.get(key)
    return value is not None and not isinstance(value, kinds)


def _window_ok(line: BanterLine, beats: BeatOrder) -> bool:
    return all(b is None or b in beats for b in (line.available_from, line.available_until))


def build_catalog(raw: Mapping[str, Any], beats: BeatOrder) -> tuple[Catalog, CatalogReport]:
    report = CatalogReport()
    catalog = Catalog(beats=beats.beats)
    if not isinstance(raw, Mapping):
        report.skip(f"content root is {type(raw).__name__}, expected a mapping")
        return catalog, report

    nested_banter: list[BanterLine] = []
    for data in _entries(raw, "characters", report):
        character = Character.from_dict(data)
        if not character.id or not character.name:
            report.skip(f"character {character.id or '?'} needs both id and name")
            continue
        if character.id in catalog.characters:
            report.skip(f"duplicate character id '{character.id}'")
            continue
        if character.retire_after != "never" and character.retire_after not in beats:
            report.warn(f"character '{character.id}' retires after unknown beat '{character.retire_after}'")
        catalog.characters[character.id] = character
        if _not_a(data, "banter", list):
            report.skip(f"banter of character '{character.id}' is not a list")
            continue
        for i, item in enumerate(data.get("banter") or []):
            if not isinstance(item, Mapping):
                report.skip(f"banter {i} of character '{character.id}' is not a mapping")
                continue
            line = BanterLine.from_dict(item, character_id=character.id)
            line.id = line.id or f"{character.id}-banter-{i}"
            nested_banter.append(line)

    top_level = [BanterLine.from_dict(item) for item in _entries(raw, "banter", report)]
    for i, line in enumerate(nested_banter + top_level):
        label = line.id or f"banter[{i}]"
        if not line.text.strip():
            report.skip(f"banter '{label}' has no text")
        elif line.character_id not in catalog.characters:
            report.skip(f"banter '{label}' references unknown character '{line.character_id}'")
        elif not _window_ok(line, beats):
            report.skip(
                f"banter '{label}' has an invalid window {line.available_from!r}..{line.available_until!r}"
            )
        else:
            line.id = line.id or f"banter-{i}"
            catalog.banter.append(line)

    for data in _entries(raw, "events", report):
        event = NarrativeEvent.from_dict(data)
        if not event.id:
            report.skip("event without an id")
        elif event.id in catalog.events:
            report.skip(f"duplicate event id '{event.id}'")
        elif _not_a(data, "dialogue", list) or _not_a(data, "lines", list):
            report.skip(f"event '{event.id}' has a dialogue that is not a list")
        elif _not_a(data, "characters", list):
            report.skip(f"event '{event.id}' has characters that are not a list")
        elif event.story_beat not in (None, ANY_BEAT) and event.story_beat not in beats:
            report.skip(f"event '{event.id}' references unknown beat '{event.story_beat}'")
        elif parse_predicate(event.trigger) is None:
            report.skip(f"event '{event.id}' has malformed trigger '{event.trigger}'")
        elif not event.lines:
            report.skip(f"event '{event.id}' has an empty dialogue list")
        else:
            missing = sorted({line.speaker for line in event.lines if line.speaker not in catalog.characters})
            if missing:
                report.warn(f"event '{event.id}' has lines for unknown characters {missing}; they will be skipped")
            catalog.events[event.id] = event

    for i, data in enumerate(_entries(raw, "progression_rules", report)):
        rule = ProgressionRule.from_dict(data)
        if _not_a(data, "conditions", Mapping, list):
            report.skip(f"progression_rules[{i}] conditions must be a mapping")
        elif rule.from_beat not in beats or rule.to_beat not in beats:
            report.skip(f"progression_rules[{i}] {rule.from_beat!r} -> {rule.to_beat!r} uses an unknown beat")
        elif not rule.conditions:
            report.skip(f"progression_rules[{i}] {rule.from_beat} -> {rule.to_beat} has no conditions")
        else:
            catalog.rules.append(rule)

    for data in _entries(raw, "blurbs", report):
        blurb = StoryBlurb.from_dict(data)
        if not blurb.id or not blurb.trigger:
            report.skip(f"blurb {blurb.id or '?'} needs both id and trigger")
        elif blurb.story_beat not in beats:
            report.skip(f"blurb '{blurb.id}' references unknown beat '{blurb.story_beat}'")
        else:
            catalog.blurbs.append(blurb)

    report.loaded = {
        "characters": len(catalog.characters),
        "banter": len(catalog.banter),
        "events": len(catalog.events),
        "progression_rules": len(catalog.rules),
        "blurbs": len(catalog.blurbs),
    }
    logger.info("Catalog built: %s", report.summary())
    return catalog, report
