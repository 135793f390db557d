"""Plain console rendering of subjects, units and stored files."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable

from ..services.records import StoredFile
from ..services.storage import FileStore
from .overview import CATEGORY_LABELS, SubjectOverview, collect_overview


@dataclass
class ConsoleSection:
    title: str
    entries: Iterable[str]


class ConsoleUI:
    """Minimal console UI that surfaces stored metadata."""

    def __init__(self, store: FileStore) -> None:
        self._store = store

    def run(self) -> None:
        """Render the current subject/unit/file hierarchy to stdout."""

        print("Study Portal – Console Overview")
        print("=" * 40)
        for section in self._build_sections():
            print(section.title)
            print("-" * len(section.title))
            has_entries = False
            for entry in section.entries:
                has_entries = True
                print(entry)
            if not has_entries:
                print("(empty)")
            print()

    def _build_sections(self) -> Iterable[ConsoleSection]:
        for subject in collect_overview(self._store).subjects:
            yield ConsoleSection(
                title=f"Subject: {subject.name}",
                entries=self._format_subject(subject),
            )

    def _format_subject(self, subject: SubjectOverview) -> Iterable[str]:
        if not subject.units:
            yield "  No units registered"
        for unit in subject.units:
            if not unit.files:
                yield f"  Unit: {unit.name} (no notes)"
                continue
            yield f"  Unit: {unit.name}"
            for record in unit.files:
                yield f"    {self._format_record(record)}"

        for category, records in subject.files.items():
            if not records:
                continue
            yield f"  {CATEGORY_LABELS[category]}"
            for record in records:
                yield f"    {self._format_record(record)}"

    @staticmethod
    def _format_record(record: StoredFile) -> str:
        parts = [part for part in (record.file_size, record.upload_date) if part]
        suffix = f" ({', '.join(parts)})" if parts else ""
        return f"{record.title} [{record.stored_file_name}]{suffix}"


__all__ = ["ConsoleUI"]
