"""Entry point for the narrative engine.

Usage:
    python main.py --check                    # Cold-start check, then status
    python main.py --puzzles 3                # Report progress (3 puzzles done)
    python main.py --talk                     # Play the next conversation
    python main.py --talk --surface mobile    # ...paginated for a phone screen
    python main.py --check --verbose          # Verbose logging
"""

from __future__ import annotations

import json
import logging
import sys
from dataclasses import replace

import click

from catalog.client import ContentStoreError
from catalog.models import BanterLine
from engine.config import load_config
from engine.core import NarrativeEngine
from engine.memory import PersistenceError
from narrative import PlaybackError


def _setup_logging(verbose: bool = False, log_file: str | None = None) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    fmt = "%(asctime)s — %(name)s — %(levelname)s — %(message)s"

    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stdout)]
    if log_file:
        handlers.append(logging.FileHandler(log_file))

    logging.basicConfig(level=level, format=fmt, handlers=handlers)

    # Quiet down noisy libraries
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)


def _play(engine: NarrativeEngine) -> None:
    choice = engine.start_conversation()
    if choice is None:
        click.echo("\n  Nobody has anything to say right now.\n")
        return
    if isinstance(choice, BanterLine):
        speaker = engine.catalog.character(choice.character_id)
        click.echo(f"\n  {speaker.name if speaker else choice.character_id}: {choice.text}\n")
        return

    engine.playback.load(choice.id)
    click.echo(f"\n  ── {choice.title or choice.id} ──\n")
    entry = engine.playback.start()
    while entry is not None:
        for page in entry.pages:
            click.echo(f"  {entry.character.name}: {page}")
            answer = click.prompt("", default="", show_default=False, prompt_suffix="  ▸ ")
            if answer.strip().lower() in {"q", "quit"}:
                engine.playback.abort()
                click.echo("\n  (conversation abandoned)\n")
                return
        entry = engine.playback.advance()
    click.echo("\n  ── end ──\n")


@click.command()
@click.option("--check", is_flag=True, help="Run the cold-start availability check")
@click.option("--talk", is_flag=True, help="Play the next conversation interactively")
@click.option("--puzzles", type=int, default=None, help="Report total completed puzzles")
@click.option("--books-discovered", type=int, default=None, help="Report total discovered books")
@click.option("--books-completed", type=int, default=None, help="Report total completed books")
@click.option("--set-beat", default=None, help="Jump to a story beat (needs allow_manual_override)")
@click.option("--surface", type=click.Choice(["mobile", "tablet", "desktop"]), default=None)
@click.option("--verbose", is_flag=True, help="Enable debug logging")
@click.option("--config-dir", type=click.Path(), default=None, help="Config directory")
def main(
    check: bool,
    talk: bool,
    puzzles: int | None,
    books_discovered: int | None,
    books_completed: int | None,
    set_beat: str | None,
    surface: str | None,
    verbose: bool,
    config_dir: str | None,
) -> None:
    """Narrative engine: story beats, scripted events and character banter."""

    cfg = load_config(config_dir)

    log_file = cfg.get("storage", {}).get("log_file")
    _setup_logging(verbose=verbose, log_file=log_file)

    try:
        with NarrativeEngine(config=cfg) as engine:
            if surface:
                engine.set_surface(surface)
            if set_beat:
                engine.set_beat(set_beat)

            progress = {
                "completed_puzzles": puzzles,
                "discovered_books": books_discovered,
                "completed_books": books_completed,
            }
            changes = {k: v for k, v in progress.items() if v is not None}
            if changes:
                added = engine.on_progress_updated(replace(engine.last_snapshot, **changes))
                click.echo(f"\n  Newly available: {', '.join(added) or 'nothing'}")

            if check:
                available = engine.check_currently_available(engine.last_snapshot)
                click.echo(f"\n  Available now: {', '.join(available) or 'nothing'}")

            if talk:
                _play(engine)

            click.echo(json.dumps(engine.status(), indent=2))
    except (ContentStoreError, PersistenceError, PlaybackError) as e:
        logging.getLogger(__name__).error("%s", e)
        sys.exit(1)


if __name__ == "__main__":
    main()
