"""Derive canonical and fallback storage locations for stored material."""

from __future__ import annotations

import logging
import re
from pathlib import Path
from typing import List, Optional

from .errors import InvalidCategory, MissingUnit, NotFound
from .naming import normalize_segment
from .records import Category


LOGGER = logging.getLogger(__name__)

_WHITESPACE = re.compile(r"\s+")


def is_safe_segment(value: Optional[str]) -> bool:
    """Return ``True`` when *value* can be used as a single path component."""

    cleaned = normalize_segment(value)
    return cleaned not in {"", ".", ".."} and "/" not in cleaned and "\\" not in cleaned


def _variants(value: str) -> List[str]:
    """Historical spellings of a path segment, in lookup order."""

    return [
        _WHITESPACE.sub("_", value),
        _WHITESPACE.sub("-", value),
        value.lower(),
    ]


class PathResolver:
    """Map (subject, category, unit, filename) tuples onto the storage tree."""

    def __init__(self, storage_root: Path, *, legacy_passthrough: bool = False) -> None:
        self._root = Path(storage_root).resolve()
        self._legacy_passthrough = legacy_passthrough

    @property
    def storage_root(self) -> Path:
        return self._root

    def _contained(self, candidate: Path) -> Path:
        resolved = candidate.resolve()
        try:
            resolved.relative_to(self._root)
        except ValueError as error:
            raise NotFound(f"Path escapes the storage root: {candidate}") from error
        return resolved

    def _segment(self, value: Optional[str], *, label: str) -> str:
        if not is_safe_segment(value):
            raise NotFound(f"Invalid {label}: {value!r}")
        return normalize_segment(value)

    def _category_segment(self, category: Category | str, unit: str) -> tuple[str, bool]:
        """Return the directory name for *category* and whether it is a notes path."""

        try:
            resolved = Category.parse(category)
        except InvalidCategory:
            if self._legacy_passthrough and unit:
                LOGGER.warning(
                    "Resolving unknown category %r through the legacy passthrough", category
                )
                return self._segment(str(category), label="category"), False
            raise
        if resolved.requires_unit and not unit:
            raise MissingUnit("Unit is required for notes")
        return resolved.value, resolved.requires_unit

    def subject_root(self, subject: str) -> Path:
        return self._contained(self._root / self._segment(subject, label="subject"))

    def directory(self, subject: str, category: Category | str, unit: Optional[str] = None) -> Path:
        """Return the canonical directory holding files of the given kind."""

        unit_value = normalize_segment(unit)
        subject_value = self._segment(subject, label="subject")
        category_value, is_notes = self._category_segment(category, unit_value)
        directory = self._root / subject_value / category_value
        if is_notes:
            directory = directory / self._segment(unit_value, label="unit")
        return self._contained(directory)

    def resolve(
        self,
        subject: str,
        category: Category | str,
        unit: Optional[str],
        filename: str,
    ) -> Path:
        """Return the canonical path; any unit is ignored outside of notes."""

        directory = self.directory(subject, category, unit)
        return self._contained(directory / self._segment(filename, label="filename"))

    def candidates(
        self,
        subject: str,
        category: Category | str,
        unit: Optional[str],
        filename: str,
    ) -> List[Path]:
        """Return the canonical path followed by the fallback search order."""

        canonical = self.resolve(subject, category, unit, filename)
        subject_value = normalize_segment(subject)
        unit_value = normalize_segment(unit)
        name = self._segment(filename, label="filename")
        ordered: List[Path] = [canonical]

        try:
            resolved_category: Optional[Category] = Category.parse(category)
        except InvalidCategory:
            resolved_category = None

        if resolved_category is Category.NOTES:
            for variant in _variants(unit_value):
                ordered.append(self._root / subject_value / Category.NOTES.value / variant / name)
        else:
            category_value = (
                resolved_category.value if resolved_category is not None else str(category).strip()
            )
            for variant in _variants(subject_value):
                ordered.append(self._root / variant / category_value / name)

        unique: List[Path] = []
        for candidate in ordered:
            try:
                contained = self._contained(candidate)
            except NotFound:
                continue
            if contained not in unique:
                unique.append(contained)
        return unique

    def locate(
        self,
        subject: str,
        category: Category | str,
        unit: Optional[str],
        filename: str,
    ) -> Path:
        """Return the first existing candidate or raise :class:`NotFound`."""

        candidates = self.candidates(subject, category, unit, filename)
        for candidate in candidates:
            if candidate.is_file():
                if candidate != candidates[0]:
                    LOGGER.debug("Resolved %s through fallback path %s", filename, candidate)
                return candidate
        LOGGER.debug(
            "File '%s' not found; tried %s",
            filename,
            ", ".join(str(candidate) for candidate in candidates),
        )
        raise NotFound("File not found")


__all__ = ["PathResolver"]
