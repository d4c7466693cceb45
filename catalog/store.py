"""Content store backed by a directory of YAML / JSON files."""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any

import yaml

from .client import ContentStoreError
from .validation import SECTIONS

logger = logging.getLogger(__name__)

_SUFFIXES = {".yaml", ".yml", ".json"}


class FileContentStore:
    """Reads every content file in a directory and merges their sections.

    Each file holds any of the sections ``characters``, ``banter``,
    ``events``, ``progression_rules`` and ``blurbs``. Files are read in
    name order and list sections are concatenated.
    """

    def __init__(self, directory: str | Path):
        self._dir = Path(directory)

    @property
    def directory(self) -> Path:
        return self._dir

    def _read(self, path: Path) -> Any:
        try:
            text = path.read_text(encoding="utf-8")
            if path.suffix == ".json":
                return json.loads(text)
            return yaml.safe_load(text)
        except (OSError, ValueError, yaml.YAMLError) as exc:
            raise ContentStoreError(f"Cannot read content file {path}: {exc}") from exc

    def load_catalog(self) -> dict[str, Any]:
        if not self._dir.is_dir():
            raise ContentStoreError(f"Content directory not found: {self._dir}")

        merged: dict[str, list] = {section: [] for section in SECTIONS}
        files = sorted(p for p in self._dir.iterdir() if p.suffix in _SUFFIXES)
        for path in files:
            data = self._read(path)
            if not isinstance(data, dict):
                logger.warning("Content file %s is not a mapping; ignored", path.name)
                continue
            for key, value in data.items():
                if key not in merged:
                    logger.debug("Ignoring unknown section '%s' in %s", key, path.name)
                elif isinstance(value, list):
                    merged[key].extend(value)
                else:
                    logger.warning("Section '%s' in %s is not a list; ignored", key, path.name)

        logger.info("Read %d content files from %s", len(files), self._dir)
        return merged
