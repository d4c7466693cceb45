"""Check narrative content before shipping it.

Usage:
    python scripts/validate_content.py
    python scripts/validate_content.py --directory data/content --strict

Prints what would be loaded and every entry that would be skipped.
"""

from __future__ import annotations

import sys
from pathlib import Path

import click

# Add project root to path
sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from catalog.client import ContentStoreError
from catalog.store import FileContentStore
from catalog.validation import build_catalog
from engine.config import load_config
from narrative import BeatOrder, StoryJournal, TriggerIndex


@click.command()
@click.option("--directory", type=click.Path(), default=None, help="Content directory (defaults to config)")
@click.option("--config-dir", type=click.Path(), default=None, help="Config directory")
@click.option("--strict", is_flag=True, help="Exit non-zero on warnings as well as skips")
def validate(directory: str | None, config_dir: str | None, strict: bool) -> None:
    """Validate narrative content files."""

    cfg = load_config(config_dir)
    beats = BeatOrder(cfg.get("story", {}).get("beats"))
    directory = directory or cfg.get("content", {}).get("directory") or "data/content"

    try:
        raw = FileContentStore(directory).load_catalog()
    except ContentStoreError as e:
        click.echo(f"Cannot read content: {e}", err=True)
        sys.exit(1)

    catalog, report = build_catalog(raw, beats)
    index = TriggerIndex(beats)
    index.build(catalog.events.values())
    journal = StoryJournal(catalog.blurbs, beats)

    click.echo(f"\n{report.summary()}")
    click.echo(f"  indexed events: {len(index)}")
    click.echo(f"  journal blurbs: {len(journal)}")
    for message in report.skipped:
        click.echo(f"  SKIP  {message}")
    for message in report.warnings:
        click.echo(f"  WARN  {message}")
    click.echo("")

    if not report.ok or (strict and report.warnings):
        sys.exit(1)


if __name__ == "__main__":
    validate()
