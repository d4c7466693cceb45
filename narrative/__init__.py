"""Narrative system: beats, triggers, progression, banter, playback, journal."""

from .beats import ANY_BEAT, DEFAULT_BEATS, BeatOrder
from .conditions import evaluate, parse_predicate
from .journal import JournalState, StoryJournal
from .pagination import page_limit, paginate, surface_for_width
from .playback import (
    DialogueEntry,
    EventMismatchError,
    EventNotFoundError,
    PlaybackError,
    PlaybackSequencer,
    SessionActiveError,
)
from .progression import BeatTransition, ProgressionMachine
from .selector import DialogueSelector, RecentRing
from .trigger_index import TriggerIndex, currently_available_events, triggered_events

__all__ = [
    "ANY_BEAT",
    "DEFAULT_BEATS",
    "BeatOrder",
    "BeatTransition",
    "DialogueEntry",
    "DialogueSelector",
    "EventMismatchError",
    "EventNotFoundError",
    "JournalState",
    "PlaybackError",
    "PlaybackSequencer",
    "ProgressionMachine",
    "RecentRing",
    "SessionActiveError",
    "StoryJournal",
    "TriggerIndex",
    "currently_available_events",
    "evaluate",
    "page_limit",
    "paginate",
    "parse_predicate",
    "surface_for_width",
    "triggered_events",
]
