"""Structured backup of every subject and stored file."""

from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterable, Iterator, List, Optional

from .errors import PersistenceFailure
from .naming import normalize_segment
from .records import BackupAggregate, Category, StoredFile, Subject, new_identifier


LOGGER = logging.getLogger(__name__)


class BackupStore:
    """Own the :class:`BackupAggregate` and its JSON document."""

    def __init__(self, path: Path) -> None:
        self._path = path
        self._aggregate = BackupAggregate()

    @property
    def path(self) -> Path:
        return self._path

    @property
    def aggregate(self) -> BackupAggregate:
        return self._aggregate

    @property
    def subjects(self) -> List[Subject]:
        return self._aggregate.subjects

    def records(self, category: Category) -> List[StoredFile]:
        return list(self._aggregate.records(category))

    def iter_records(self) -> Iterator[StoredFile]:
        return self._aggregate.iter_records()

    def find(
        self,
        category: Category,
        subject: str,
        unit: Optional[str],
        stored_file_name: str,
    ) -> Optional[StoredFile]:
        identity = (stored_file_name, subject, normalize_segment(unit) if category.requires_unit else "")
        return next(
            (record for record in self._aggregate.records(category) if record.identity == identity),
            None,
        )

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------
    def upsert(self, record: StoredFile) -> None:
        """Insert *record*, replacing any row with the same physical identity."""

        category = record.category
        kept = [
            existing
            for existing in self._aggregate.records(category)
            if existing.identity != record.identity
        ]
        replaced = len(self._aggregate.records(category)) - len(kept)
        kept.append(record)
        self._aggregate.replace_records(category, kept)
        if replaced:
            LOGGER.debug(
                "Replaced %s existing %s record(s) for '%s'",
                replaced,
                category.value,
                record.stored_file_name,
            )
        self._register_for_record(record)

    def remove(
        self,
        category: Category,
        subject: str,
        unit: Optional[str],
        stored_file_name: str,
    ) -> bool:
        identity = (stored_file_name, subject, normalize_segment(unit) if category.requires_unit else "")
        current = self._aggregate.records(category)
        kept = [record for record in current if record.identity != identity]
        if len(kept) == len(current):
            return False
        self._aggregate.replace_records(category, kept)
        return True

    def _register_for_record(self, record: StoredFile) -> None:
        subject = self._aggregate.find_subject(record.subject)
        units = [record.unit] if record.category.requires_unit else []
        if subject is None:
            self._aggregate.subjects.append(
                Subject(id=new_identifier(), name=record.subject, units=units)
            )
            LOGGER.info("Registered subject '%s' from upload", record.subject)
            return
        for unit in units:
            if subject.add_unit(unit):
                LOGGER.debug("Added unit '%s' to subject '%s'", unit, subject.name)

    def register_subject(self, name: str, units: Iterable[str] = ()) -> Subject:
        """Create *name* or merge *units* into the existing subject.

        Units only accumulate; an existing subject keeps its id and every
        unit it already had, with new units appended in first-seen order.
        """

        subject = self._aggregate.find_subject(name)
        if subject is None:
            subject = Subject(id=new_identifier(), name=name, units=[])
            self._aggregate.subjects.append(subject)
        for unit in units:
            subject.add_unit(normalize_segment(unit))
        return subject

    def add_unit(self, subject_name: str, unit: str) -> bool:
        subject = self._aggregate.find_subject(subject_name)
        if subject is None:
            return False
        return subject.add_unit(normalize_segment(unit))

    def remove_subject(self, name: str) -> int:
        """Drop *name* and every record referencing it; returns the record count removed."""

        self._aggregate.subjects = [
            subject for subject in self._aggregate.subjects if subject.name != name
        ]
        removed = 0
        for category in Category:
            current = self._aggregate.records(category)
            kept = [record for record in current if record.subject != name]
            removed += len(current) - len(kept)
            self._aggregate.replace_records(category, kept)
        return removed

    def rebuild_subjects(self) -> bool:
        """Reconstruct the subject list from the records when it is empty."""

        if self._aggregate.subjects or not self._aggregate.has_records():
            return False

        names: List[str] = []
        for record in self._aggregate.iter_records():
            if record.subject and record.subject not in names:
                names.append(record.subject)

        for name in names:
            subject = Subject(id=new_identifier(), name=name)
            for note in self._aggregate.notes:
                if note.subject == name:
                    subject.add_unit(note.unit)
            self._aggregate.subjects.append(subject)

        LOGGER.info("Reconstructed %s subjects from backup data", len(names))
        return bool(names)

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------
    def load(self) -> None:
        self._aggregate = BackupAggregate()
        if not self._path.exists():
            return

        try:
            payload = json.loads(self._path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as error:
            LOGGER.error("Could not read backup document %s: %s", self._path, error)
            return

        if not isinstance(payload, dict):
            LOGGER.error("Ignoring backup document %s: expected an object", self._path)
            return

        self._aggregate = BackupAggregate.from_dict(payload)
        LOGGER.info(
            "Loaded backup data with %s subjects, %s notes, %s practice tests, "
            "%s practicals, %s assignments",
            len(self._aggregate.subjects),
            len(self._aggregate.notes),
            len(self._aggregate.practice_tests),
            len(self._aggregate.practicals),
            len(self._aggregate.assignments),
        )

    def save(self) -> None:
        self._aggregate.last_backup = datetime.now(timezone.utc).isoformat()
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            self._path.write_text(
                json.dumps(self._aggregate.to_dict(), indent=2),
                encoding="utf-8",
            )
        except OSError as error:
            raise PersistenceFailure(f"Could not write {self._path}: {error}") from error


__all__ = ["BackupStore"]
