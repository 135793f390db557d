"""Shared helpers for building overview snapshots of stored study materials."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, List

from ..services.records import Category, StoredFile
from ..services.storage import FileStore


CATEGORY_LABELS: Dict[Category, str] = {
    Category.NOTES: "📄 Notes",
    Category.PRACTICE_TESTS: "📝 Practice Tests",
    Category.PRACTICALS: "🔬 Practicals",
    Category.ASSIGNMENTS: "📚 Assignments",
}


@dataclass
class UnitOverview:
    name: str
    files: List[StoredFile]


@dataclass
class SubjectOverview:
    name: str
    units: List[UnitOverview]
    files: Dict[Category, List[StoredFile]]

    @property
    def file_count(self) -> int:
        return sum(len(unit.files) for unit in self.units) + sum(
            len(files) for files in self.files.values()
        )


@dataclass
class OverviewSnapshot:
    subjects: List[SubjectOverview]
    subject_count: int
    unit_count: int
    category_totals: Dict[Category, int]


def collect_overview(store: FileStore) -> OverviewSnapshot:
    """Aggregate backup data into a convenient snapshot for UIs."""

    aggregate = store.backup.aggregate
    category_totals = {category: len(aggregate.records(category)) for category in Category}
    subjects: List[SubjectOverview] = []
    unit_count = 0

    for subject in aggregate.subjects:
        notes = [note for note in aggregate.notes if note.subject == subject.name]
        unit_names = list(subject.units)
        for note in notes:
            if note.unit not in unit_names:
                unit_names.append(note.unit)
        units = [
            UnitOverview(name=unit, files=[note for note in notes if note.unit == unit])
            for unit in unit_names
        ]
        unit_count += len(units)

        files = {
            category: [
                record for record in aggregate.records(category) if record.subject == subject.name
            ]
            for category in Category
            if not category.requires_unit
        }
        subjects.append(SubjectOverview(name=subject.name, units=units, files=files))

    return OverviewSnapshot(
        subjects=subjects,
        subject_count=len(subjects),
        unit_count=unit_count,
        category_totals=category_totals,
    )


__all__ = [
    "CATEGORY_LABELS",
    "OverviewSnapshot",
    "SubjectOverview",
    "UnitOverview",
    "collect_overview",
]
