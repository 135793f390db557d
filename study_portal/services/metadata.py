"""Flat title/description index keyed by stored file location."""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Dict, Iterator, Optional, TypedDict

from .errors import PersistenceFailure
from .naming import synthesize_title


LOGGER = logging.getLogger(__name__)


class IndexEntry(TypedDict):
    title: str
    description: str
    originalFileName: str


def _coerce_entry(value: object) -> Optional[IndexEntry]:
    if not isinstance(value, dict):
        return None
    return IndexEntry(
        title=str(value.get("title") or ""),
        description=str(value.get("description") or ""),
        originalFileName=str(value.get("originalFileName") or ""),
    )


class MetadataIndex:
    """Load and store the ``file-metadata.json`` document."""

    def __init__(self, path: Path) -> None:
        self._path = path
        self._entries: Dict[str, IndexEntry] = {}

    @property
    def path(self) -> Path:
        return self._path

    def __contains__(self, key: object) -> bool:
        return key in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def keys(self) -> Iterator[str]:
        return iter(list(self._entries))

    def get(self, key: str) -> Optional[IndexEntry]:
        return self._entries.get(key)

    def set(self, key: str, entry: IndexEntry) -> None:
        self._entries[key] = IndexEntry(
            title=entry["title"],
            description=entry.get("description") or "",
            originalFileName=entry.get("originalFileName") or "",
        )

    def delete(self, key: str) -> bool:
        return self._entries.pop(key, None) is not None

    def display_title(self, key: str, filename: str) -> str:
        """Return the indexed title for *key*, synthesising one from *filename* if blank."""

        entry = self._entries.get(key)
        if entry and entry["title"].strip():
            return entry["title"]
        return synthesize_title(filename)

    def description(self, key: str) -> str:
        entry = self._entries.get(key)
        return entry["description"] if entry else ""

    def load(self) -> None:
        self._entries = {}
        if not self._path.exists():
            return

        try:
            payload = json.loads(self._path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as error:
            LOGGER.error("Could not read metadata index %s: %s", self._path, error)
            return

        if not isinstance(payload, dict):
            LOGGER.error("Ignoring metadata index %s: expected an object", self._path)
            return

        for key, value in payload.items():
            entry = _coerce_entry(value)
            if entry is not None:
                self._entries[str(key)] = entry
        LOGGER.info("Loaded %s file metadata entries", len(self._entries))

    def persist(self) -> None:
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            self._path.write_text(json.dumps(self._entries, indent=2), encoding="utf-8")
        except OSError as error:
            raise PersistenceFailure(f"Could not write {self._path}: {error}") from error


__all__ = ["IndexEntry", "MetadataIndex"]
