"""Split dialogue text into pages that fit a display surface.

Pages are exact slices of the input: joining them gives back the original
text. Whitespace at the end of a page is carried with it but does not count
toward the page width.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Mapping
from typing import Any, Callable

logger = logging.getLogger(__name__)

DEFAULT_TEXT_LIMITS = {"mobile": 120, "tablet": 200, "desktop": 300}
DEFAULT_SURFACE = "desktop"

_SENTENCE_END = re.compile(r"[.!?]+[\"')\]]*\s+")
_WORD_END = re.compile(r"\s+")


def surface_for_width(width_px: int) -> str:
    if width_px < 768:
        return "mobile"
    if width_px < 1024:
        return "tablet"
    return "desktop"


def page_limit(dialogue_cfg: Mapping[str, Any] | None, surface: str = DEFAULT_SURFACE) -> int:
    """Max characters per page for ``surface`` from the ``dialogue`` config section."""
    limits = dict(DEFAULT_TEXT_LIMITS)
    limits.update((dialogue_cfg or {}).get("text_limits") or {})
    raw = limits.get(surface, limits[DEFAULT_SURFACE])
    try:
        limit = int(raw)
    except (TypeError, ValueError):
        limit = 0
    if limit <= 0:
        logger.warning("Invalid text limit %r for surface '%s'; using %d", raw, surface, DEFAULT_TEXT_LIMITS[DEFAULT_SURFACE])
        return DEFAULT_TEXT_LIMITS[DEFAULT_SURFACE]
    return limit


def _cut_after(text: str, boundary: re.Pattern[str]) -> list[str]:
    pieces: list[str] = []
    start = 0
    for match in boundary.finditer(text):
        if match.end() > start:
            pieces.append(text[start:match.end()])
            start = match.end()
    if start < len(text):
        pieces.append(text[start:])
    return pieces


def _width(page: str) -> int:
    return len(page.rstrip())


def _pack(pieces: list[str], limit: int, split_oversized: Callable[[str], list[str]] | None) -> list[str]:
    pages: list[str] = []
    current = ""
    for piece in pieces:
        if _width(current + piece) <= limit:
            current += piece
            continue
        if current:
            pages.append(current)
            current = ""
        if _width(piece) <= limit:
            current = piece
        elif split_oversized is not None:
            parts = split_oversized(piece)
            pages.extend(parts[:-1])
            current = parts[-1]
        else:
            pages.append(piece)  # a single word wider than the page
    if current:
        pages.append(current)
    return pages


def paginate(text: str, max_chars: int) -> list[str]:
    """Pack whole sentences into pages of at most ``max_chars`` characters.

    A sentence longer than a page is packed word by word instead, and a word
    longer than a page gets a page of its own. Always returns at least one
    page and never raises.
    """
    if not isinstance(text, str):
        logger.warning("Cannot paginate %s; returning a single page", type(text).__name__)
        return ["" if text is None else str(text)]
    if isinstance(max_chars, bool) or not isinstance(max_chars, int) or max_chars <= 0:
        logger.warning("Invalid page limit %r; returning a single page", max_chars)
        return [text]
    if _width(text) <= max_chars:
        return [text]

    def _by_words(sentence: str) -> list[str]:
        return _pack(_cut_after(sentence, _WORD_END), max_chars, None) or [sentence]

    pages = _pack(_cut_after(text, _SENTENCE_END), max_chars, _by_words)
    return pages or [text]
