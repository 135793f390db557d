"""Keep the filesystem, the flat index and the backup aggregate in agreement."""

from __future__ import annotations

import logging
import shutil
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional

from .backup import BackupStore
from .errors import NotFound, PersistenceFailure, StorageError
from .metadata import MetadataIndex
from .naming import describe_file_type, format_file_size
from .paths import PathResolver
from .records import Category, StoredFile, metadata_key


LOGGER = logging.getLogger(__name__)

_SKIPPED_SUBJECT_DIRS = {"temp"}


@dataclass
class ReconcileReport:
    """Summary of the repairs made by a reconcile pass."""

    index_entries_added: int = 0
    subjects_rebuilt: bool = False
    files_relocated: int = 0
    paths_corrected: int = 0
    missing_files: int = 0
    persisted: bool = False

    @property
    def changed(self) -> bool:
        return bool(
            self.index_entries_added
            or self.subjects_rebuilt
            or self.files_relocated
            or self.paths_corrected
        )


def describe_disk_file(
    index: MetadataIndex,
    path: Path,
    *,
    subject: str,
    category: Category,
    unit: str = "",
) -> Dict[str, Any]:
    """Return the listing entry for a file found on disk, decorated from *index*."""

    key = metadata_key(subject, category, unit, path.name)
    stat_result = path.stat()
    entry: Dict[str, Any] = {
        "filename": path.name,
        "title": index.display_title(key, path.name),
        "description": index.description(key),
        "size": format_file_size(stat_result.st_size),
        "modified": datetime.fromtimestamp(stat_result.st_mtime).date().isoformat(),
        "type": describe_file_type(path.name),
        "subject": subject,
    }
    if category.requires_unit:
        entry["unit"] = unit
    return entry


def describe_record(record: StoredFile) -> Dict[str, Any]:
    entry: Dict[str, Any] = {
        "filename": record.stored_file_name,
        "title": record.title,
        "description": record.description,
        "size": record.file_size,
        "modified": record.upload_date,
        "type": record.file_type or describe_file_type(record.stored_file_name),
        "subject": record.subject,
    }
    if record.category.requires_unit:
        entry["unit"] = record.unit
    return entry


def _empty_structure() -> Dict[str, Any]:
    structure: Dict[str, Any] = {}
    for category in Category:
        structure[category.value] = {} if category.requires_unit else []
    return structure


def _list_files(directory: Path) -> List[Path]:
    if not directory.is_dir():
        return []
    return sorted(child for child in directory.iterdir() if child.is_file())


class Reconciler:
    """Detect and repair divergence between the three representations."""

    def __init__(self, resolver: PathResolver, index: MetadataIndex, backup: BackupStore) -> None:
        self._resolver = resolver
        self._index = index
        self._backup = backup

    def persist(self) -> bool:
        """Write the index then the backup document; failures are logged, not raised."""

        try:
            self._index.persist()
            self._backup.save()
        except PersistenceFailure as error:
            LOGGER.error("Error saving metadata documents: %s", error)
            return False
        return True

    # ------------------------------------------------------------------
    # Startup reconciliation
    # ------------------------------------------------------------------
    def reconcile(self, *, load: bool = True) -> ReconcileReport:
        """Repair the document pair; safe to run any number of times."""

        if load:
            self._index.load()
            self._backup.load()

        report = ReconcileReport()
        report.index_entries_added = self._synthesize_index_entries()
        report.subjects_rebuilt = self._backup.rebuild_subjects()
        self._repair_locations(report)

        if report.changed:
            report.persisted = self.persist()
        LOGGER.info(
            "Reconcile finished (index entries added=%s, subjects rebuilt=%s, "
            "files relocated=%s, paths corrected=%s, missing files=%s)",
            report.index_entries_added,
            report.subjects_rebuilt,
            report.files_relocated,
            report.paths_corrected,
            report.missing_files,
        )
        return report

    def _synthesize_index_entries(self) -> int:
        added = 0
        for record in self._backup.iter_records():
            key = record.metadata_key
            if key in self._index:
                continue
            self._index.set(key, record.index_entry())
            added += 1
        if added:
            LOGGER.info("Synthesised %s metadata index entries from backup data", added)
        return added

    def _repair_locations(self, report: ReconcileReport) -> None:
        for record in self._backup.iter_records():
            try:
                canonical = self._resolver.resolve(
                    record.subject, record.category, record.unit, record.stored_file_name
                )
            except StorageError as error:
                LOGGER.warning(
                    "Cannot derive a path for %s record '%s': %s",
                    record.category.value,
                    record.stored_file_name,
                    error,
                )
                continue

            if not canonical.exists():
                try:
                    found = self._resolver.locate(
                        record.subject, record.category, record.unit, record.stored_file_name
                    )
                except NotFound:
                    report.missing_files += 1
                    LOGGER.warning("Stored file is missing on disk: %s", canonical)
                    found = None
                if found is not None and found != canonical:
                    try:
                        canonical.parent.mkdir(parents=True, exist_ok=True)
                        shutil.move(str(found), str(canonical))
                    except OSError as error:
                        report.missing_files += 1
                        LOGGER.warning(
                            "Could not relocate %s to %s: %s", found, canonical, error
                        )
                    else:
                        report.files_relocated += 1
                        LOGGER.info("Relocated %s to canonical path %s", found, canonical)

            if record.file_path != str(canonical):
                record.file_path = str(canonical)
                report.paths_corrected += 1

    # ------------------------------------------------------------------
    # Directory-scan read path
    # ------------------------------------------------------------------
    def storage_sync(self, subject: Optional[str] = None) -> Dict[str, Any]:
        """Return the per-subject view, preferring the aggregate over a disk scan."""

        aggregate = self._backup.aggregate
        known = [item.name for item in aggregate.subjects if item.name.lower() not in _SKIPPED_SUBJECT_DIRS]
        structure: Dict[str, Any] = {}

        if subject is not None:
            if subject in known:
                structure[subject] = self._structure_from_aggregate(subject)
            else:
                try:
                    subject_root = self._resolver.subject_root(subject)
                except StorageError:
                    subject_root = None
                if subject_root is not None and subject_root.is_dir():
                    structure[subject] = self._structure_from_disk(subject_root, subject)
        else:
            for name in known:
                structure[name] = self._structure_from_aggregate(name)
            for subject_root in self._iter_subject_dirs():
                if subject_root.name in structure:
                    continue
                LOGGER.debug("Subject '%s' found only on disk; scanning", subject_root.name)
                structure[subject_root.name] = self._structure_from_disk(
                    subject_root, subject_root.name
                )

        return {"storageStructure": structure, "backupData": aggregate.to_dict()}

    def _iter_subject_dirs(self) -> List[Path]:
        root = self._resolver.storage_root
        if not root.is_dir():
            return []
        return sorted(
            child
            for child in root.iterdir()
            if child.is_dir()
            and child.name.lower() not in _SKIPPED_SUBJECT_DIRS
            and not child.name.startswith((".", "_"))
        )

    def _structure_from_aggregate(self, subject: str) -> Dict[str, Any]:
        structure = _empty_structure()
        for category in Category:
            for record in self._backup.aggregate.records(category):
                if record.subject != subject:
                    continue
                if category.requires_unit:
                    structure[category.value].setdefault(record.unit, []).append(
                        describe_record(record)
                    )
                else:
                    structure[category.value].append(describe_record(record))
        return structure

    def _structure_from_disk(self, subject_root: Path, subject: str) -> Dict[str, Any]:
        structure = _empty_structure()
        for category in Category:
            category_root = subject_root / category.value
            if not category_root.is_dir():
                continue
            try:
                if category.requires_unit:
                    for unit_dir in sorted(p for p in category_root.iterdir() if p.is_dir()):
                        structure[category.value][unit_dir.name] = [
                            describe_disk_file(
                                self._index,
                                path,
                                subject=subject,
                                category=category,
                                unit=unit_dir.name,
                            )
                            for path in _list_files(unit_dir)
                        ]
                else:
                    structure[category.value] = [
                        describe_disk_file(self._index, path, subject=subject, category=category)
                        for path in _list_files(category_root)
                    ]
            except OSError as error:
                LOGGER.error("Error reading %s files for %s: %s", category.value, subject, error)
        return structure


__all__ = ["ReconcileReport", "Reconciler", "describe_disk_file", "describe_record"]
