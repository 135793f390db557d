"""Typed records describing stored study material and the backup aggregate."""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, ClassVar, Dict, Iterable, Iterator, List, Mapping, Optional, Tuple, Type

from .errors import InvalidCategory, MissingUnit
from .naming import normalize_segment


LOGGER = logging.getLogger(__name__)


class Category(str, Enum):
    """Kinds of material a subject holds; each maps to a directory."""

    NOTES = "notes"
    PRACTICE_TESTS = "practice-tests"
    PRACTICALS = "practicals"
    ASSIGNMENTS = "assignments"

    @property
    def requires_unit(self) -> bool:
        return self is Category.NOTES

    @property
    def collection(self) -> str:
        """Name of the list holding this category inside the backup document."""

        return _COLLECTIONS[self]

    @classmethod
    def parse(cls, value: Any) -> "Category":
        if isinstance(value, Category):
            return value
        cleaned = normalize_segment(value)
        try:
            return cls(cleaned)
        except ValueError as error:
            raise InvalidCategory(f"Invalid type: {cleaned or '<empty>'}") from error


_COLLECTIONS: Dict[Category, str] = {
    Category.NOTES: "notes",
    Category.PRACTICE_TESTS: "practiceTests",
    Category.PRACTICALS: "practicals",
    Category.ASSIGNMENTS: "assignments",
}


def new_identifier() -> str:
    return uuid.uuid4().hex


def metadata_key(subject: str, category: Category | str, unit: str, stored_file_name: str) -> str:
    """Return the flat index key for a stored file.

    The unit segment is always empty outside of notes, which yields keys such
    as ``Math-practicals--lab_1700000000000.pdf``.
    """

    category_value = category.value if isinstance(category, Category) else str(category)
    unit_value = unit if category_value == Category.NOTES.value else ""
    return f"{subject}-{category_value}-{unit_value or ''}-{stored_file_name}"


@dataclass
class StoredFile:
    """Fields shared by every uploaded artifact."""

    category: ClassVar[Category]

    id: str
    title: str
    stored_file_name: str
    subject: str
    description: str = ""
    original_file_name: str = ""
    file_size: str = ""
    upload_date: str = ""
    file_path: str = ""
    file_type: str = ""
    owner: str = ""

    @property
    def unit(self) -> str:
        return ""

    @property
    def identity(self) -> Tuple[str, str, str]:
        """Physical identity used to de-duplicate rows: (stored name, subject, unit)."""

        return (self.stored_file_name, self.subject, self.unit)

    @property
    def metadata_key(self) -> str:
        return metadata_key(self.subject, self.category, self.unit, self.stored_file_name)

    def index_entry(self) -> Dict[str, str]:
        return {
            "title": self.title,
            "description": self.description,
            "originalFileName": self.original_file_name,
        }

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "id": self.id,
            "title": self.title,
            "description": self.description,
            "fileName": self.original_file_name,
            "storedFileName": self.stored_file_name,
            "fileSize": self.file_size,
            "uploadDate": self.upload_date,
            "subject": self.subject,
            "category": self.category.value,
            "type": self.file_type,
            "filePath": self.file_path,
        }
        if self.category.requires_unit:
            payload["unit"] = self.unit
        if self.owner:
            payload["owner"] = self.owner
        return payload


@dataclass
class NoteRecord(StoredFile):
    category: ClassVar[Category] = Category.NOTES

    unit_name: str = ""

    def __post_init__(self) -> None:
        self.unit_name = normalize_segment(self.unit_name)
        if not self.unit_name:
            raise MissingUnit("Unit is required for notes")

    @property
    def unit(self) -> str:
        return self.unit_name


@dataclass
class PracticeTestRecord(StoredFile):
    category: ClassVar[Category] = Category.PRACTICE_TESTS


@dataclass
class PracticalRecord(StoredFile):
    category: ClassVar[Category] = Category.PRACTICALS


@dataclass
class AssignmentRecord(StoredFile):
    category: ClassVar[Category] = Category.ASSIGNMENTS


RECORD_TYPES: Dict[Category, Type[StoredFile]] = {
    Category.NOTES: NoteRecord,
    Category.PRACTICE_TESTS: PracticeTestRecord,
    Category.PRACTICALS: PracticalRecord,
    Category.ASSIGNMENTS: AssignmentRecord,
}


def build_record(category: Category | str, *, unit: str = "", **fields: Any) -> StoredFile:
    """Instantiate the record variant for *category*; ``unit`` only applies to notes."""

    resolved = Category.parse(category)
    record_type = RECORD_TYPES[resolved]
    if resolved.requires_unit:
        return record_type(unit_name=unit, **fields)
    return record_type(**fields)


def record_from_dict(category: Category, payload: Mapping[str, Any]) -> StoredFile:
    file_type = payload.get("fileType") or payload.get("type") or ""
    if file_type not in {"pdf", "image"}:
        file_type = ""
    return build_record(
        category,
        unit=str(payload.get("unit") or ""),
        id=str(payload.get("id") or new_identifier()),
        title=str(payload.get("title") or ""),
        stored_file_name=str(payload.get("storedFileName") or ""),
        subject=str(payload.get("subject") or ""),
        description=str(payload.get("description") or ""),
        original_file_name=str(
            payload.get("fileName") or payload.get("originalFileName") or ""
        ),
        file_size=str(payload.get("fileSize") or ""),
        upload_date=str(payload.get("uploadDate") or ""),
        file_path=str(payload.get("filePath") or ""),
        file_type=file_type,
        owner=str(payload.get("owner") or ""),
    )


@dataclass
class Subject:
    id: str
    name: str
    units: List[str] = field(default_factory=list)

    def add_unit(self, unit: str) -> bool:
        """Append *unit* unless already present; returns ``True`` when added."""

        if not unit or unit in self.units:
            return False
        self.units.append(unit)
        return True

    def to_dict(self) -> Dict[str, Any]:
        return {"id": self.id, "name": self.name, "units": list(self.units)}

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "Subject":
        units: List[str] = []
        for unit in payload.get("units") or []:
            cleaned = normalize_segment(unit)
            if cleaned and cleaned not in units:
                units.append(cleaned)
        return cls(
            id=str(payload.get("id") or new_identifier()),
            name=str(payload.get("name") or ""),
            units=units,
        )


@dataclass
class BackupAggregate:
    """Authoritative structured record of every subject and stored file."""

    subjects: List[Subject] = field(default_factory=list)
    notes: List[StoredFile] = field(default_factory=list)
    practice_tests: List[StoredFile] = field(default_factory=list)
    practicals: List[StoredFile] = field(default_factory=list)
    assignments: List[StoredFile] = field(default_factory=list)
    last_backup: Optional[str] = None

    def records(self, category: Category) -> List[StoredFile]:
        return {
            Category.NOTES: self.notes,
            Category.PRACTICE_TESTS: self.practice_tests,
            Category.PRACTICALS: self.practicals,
            Category.ASSIGNMENTS: self.assignments,
        }[category]

    def replace_records(self, category: Category, records: Iterable[StoredFile]) -> None:
        items = list(records)
        if category is Category.NOTES:
            self.notes = items
        elif category is Category.PRACTICE_TESTS:
            self.practice_tests = items
        elif category is Category.PRACTICALS:
            self.practicals = items
        else:
            self.assignments = items

    def iter_records(self) -> Iterator[StoredFile]:
        for category in Category:
            yield from self.records(category)

    def has_records(self) -> bool:
        return any(self.records(category) for category in Category)

    def find_subject(self, name: str) -> Optional[Subject]:
        return next((subject for subject in self.subjects if subject.name == name), None)

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"subjects": [subject.to_dict() for subject in self.subjects]}
        for category in Category:
            payload[category.collection] = [record.to_dict() for record in self.records(category)]
        payload["lastBackup"] = self.last_backup
        return payload

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "BackupAggregate":
        aggregate = cls(
            subjects=[
                Subject.from_dict(item)
                for item in payload.get("subjects") or []
                if isinstance(item, Mapping)
            ],
            last_backup=payload.get("lastBackup"),
        )
        for category in Category:
            records: List[StoredFile] = []
            for item in payload.get(category.collection) or []:
                if not isinstance(item, Mapping):
                    continue
                try:
                    records.append(record_from_dict(category, item))
                except MissingUnit:
                    LOGGER.warning(
                        "Skipping %s record '%s' without a unit",
                        category.value,
                        item.get("storedFileName"),
                    )
            aggregate.replace_records(category, records)
        return aggregate


__all__ = [
    "AssignmentRecord",
    "BackupAggregate",
    "Category",
    "NoteRecord",
    "PracticalRecord",
    "PracticeTestRecord",
    "RECORD_TYPES",
    "StoredFile",
    "Subject",
    "build_record",
    "metadata_key",
    "new_identifier",
    "record_from_dict",
]
