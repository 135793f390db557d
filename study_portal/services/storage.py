"""File store coordinating uploads, the storage tree and both metadata documents."""

from __future__ import annotations

import contextlib
import logging
import shutil
import stat
from dataclasses import dataclass
from datetime import date
from pathlib import Path
from typing import Any, BinaryIO, Dict, Iterable, List, Mapping, Optional, Set, Tuple

from ..config import AppConfig
from .backup import BackupStore
from .errors import InvalidCategory, InvalidRequest, MissingUnit, NotFound, StorageError
from .metadata import MetadataIndex
from .naming import build_stored_name, describe_file_type, format_file_size, normalize_segment
from .paths import PathResolver, is_safe_segment
from .reconcile import ReconcileReport, Reconciler, describe_disk_file
from .records import Category, StoredFile, Subject, build_record, metadata_key, new_identifier


LOGGER = logging.getLogger(__name__)

_DEFAULT_COPY_CHUNK_SIZE = 1024 * 1024
_RESERVED_SUBJECTS = {"temp"}


@dataclass
class UploadRequest:
    """Fields a client supplies alongside the uploaded bytes."""

    title: str
    subject: str
    category: str
    original_file_name: str
    unit: str = ""
    description: str = ""
    owner: str = ""


@dataclass
class PendingUpload:
    """A validated upload whose bytes still have to be written to ``target``."""

    request: UploadRequest
    category: Category
    subject: str
    unit: str
    title: str
    description: str
    stored_file_name: str
    target: Path


class FileStore:
    """Single owner of the storage tree, the flat index and the backup aggregate.

    One instance is built at startup and handed to every request handler. All
    mutations run to completion synchronously and end with :meth:`persist`,
    which writes the two documents one after the other.
    """

    def __init__(self, config: AppConfig) -> None:
        self._config = config
        self._resolver = PathResolver(
            config.storage_root,
            legacy_passthrough=config.legacy_category_passthrough,
        )
        self._index = MetadataIndex(config.metadata_file)
        self._backup = BackupStore(config.backup_file)
        self._reconciler = Reconciler(self._resolver, self._index, self._backup)

    @property
    def config(self) -> AppConfig:
        return self._config

    @property
    def resolver(self) -> PathResolver:
        return self._resolver

    @property
    def index(self) -> MetadataIndex:
        return self._index

    @property
    def backup(self) -> BackupStore:
        return self._backup

    @property
    def storage_root(self) -> Path:
        return self._resolver.storage_root

    def reconcile(self) -> ReconcileReport:
        """Load both documents from disk and repair them."""

        return self._reconciler.reconcile(load=True)

    def persist(self) -> bool:
        return self._reconciler.persist()

    def subjects(self) -> List[Subject]:
        return list(self._backup.subjects)

    # ------------------------------------------------------------------
    # Uploads
    # ------------------------------------------------------------------
    def prepare_upload(self, request: UploadRequest) -> PendingUpload:
        """Validate *request* and pick a free canonical target for its bytes."""

        title = normalize_segment(request.title)
        subject = normalize_segment(request.subject)
        unit = normalize_segment(request.unit)
        if not title:
            raise InvalidRequest("Title is required")
        if not subject:
            raise InvalidRequest("Subject is required")
        if subject.lower() in _RESERVED_SUBJECTS or not is_safe_segment(subject):
            raise InvalidRequest("Invalid subject name")
        if not normalize_segment(request.category):
            raise InvalidRequest("Type is required")
        category = Category.parse(request.category)
        if category.requires_unit and not unit:
            raise MissingUnit("Unit is required for notes")
        if not category.requires_unit:
            unit = ""
        elif not is_safe_segment(unit):
            raise InvalidRequest("Invalid unit name")

        original_name = Path(request.original_file_name or "").name
        if not original_name:
            raise InvalidRequest("No file uploaded")
        extension = Path(original_name).suffix.lower()
        if extension not in self._config.allowed_extensions:
            LOGGER.info("File rejected: %s", original_name)
            raise InvalidRequest("Only PDF and image files are allowed!")

        directory = self._resolver.directory(subject, category, unit)
        stored_file_name = build_stored_name(original_name)
        target = directory / stored_file_name
        while target.exists():
            stem, _, remainder = stored_file_name.rpartition("_")
            stamp, dot, suffix = remainder.partition(".")
            stored_file_name = f"{stem}_{int(stamp) + 1}{dot}{suffix}"
            target = directory / stored_file_name

        return PendingUpload(
            request=request,
            category=category,
            subject=subject,
            unit=unit,
            title=title,
            description=normalize_segment(request.description),
            stored_file_name=stored_file_name,
            target=target,
        )

    def commit_upload(self, pending: PendingUpload) -> StoredFile:
        """Record an upload whose bytes are already at ``pending.target``."""

        if not pending.target.is_file():
            raise NotFound(f"Uploaded file is missing: {pending.target}")
        size = pending.target.stat().st_size
        original_name = Path(pending.request.original_file_name).name
        record = build_record(
            pending.category,
            unit=pending.unit,
            id=new_identifier(),
            title=pending.title,
            stored_file_name=pending.stored_file_name,
            subject=pending.subject,
            description=pending.description,
            original_file_name=original_name,
            file_size=format_file_size(size),
            upload_date=date.today().isoformat(),
            file_path=str(pending.target),
            file_type=describe_file_type(original_name),
            owner=normalize_segment(pending.request.owner),
        )
        self._index.set(record.metadata_key, record.index_entry())
        self._backup.upsert(record)
        self.persist()
        LOGGER.info(
            "Stored %s '%s' for subject '%s' at %s",
            record.category.value,
            record.title,
            record.subject,
            record.file_path,
        )
        return record

    def discard_upload(self, pending: PendingUpload) -> None:
        with contextlib.suppress(FileNotFoundError):
            pending.target.unlink()

    def store_upload(
        self,
        request: UploadRequest,
        source: BinaryIO,
        *,
        chunk_size: int = _DEFAULT_COPY_CHUNK_SIZE,
    ) -> StoredFile:
        """Validate, write and record an upload read from *source*."""

        pending = self.prepare_upload(request)
        pending.target.parent.mkdir(parents=True, exist_ok=True)
        try:
            with pending.target.open("wb") as buffer:
                shutil.copyfileobj(source, buffer, length=chunk_size)
        except OSError:
            self.discard_upload(pending)
            raise
        return self.commit_upload(pending)

    # ------------------------------------------------------------------
    # Lookup, listing and deletion
    # ------------------------------------------------------------------
    def open_file(
        self, subject: str, category: str, unit: Optional[str], filename: str
    ) -> Path:
        return self._resolver.locate(subject, category, unit, filename)

    def list_directory(
        self, subject: str, category: str, unit: Optional[str] = None
    ) -> List[Dict[str, Any]]:
        """List the canonical directory, decorating raw names with indexed titles."""

        resolved = Category.parse(category)
        unit_value = normalize_segment(unit) if resolved.requires_unit else ""
        directory = self._resolver.directory(subject, resolved, unit_value)
        if not directory.is_dir():
            return []
        subject_value = normalize_segment(subject)
        return [
            describe_disk_file(
                self._index,
                path,
                subject=subject_value,
                category=resolved,
                unit=unit_value,
            )
            for path in sorted(directory.iterdir())
            if path.is_file()
        ]

    def delete_file(
        self, subject: str, category: str, unit: Optional[str], filename: str
    ) -> Path:
        """Delete a stored file and forget it in both documents."""

        located = self._resolver.locate(subject, category, unit, filename)
        try:
            located.unlink()
        except PermissionError:
            located.chmod(located.stat().st_mode | stat.S_IWRITE)
            located.unlink()

        subject_value = normalize_segment(subject)
        try:
            resolved: Optional[Category] = Category.parse(category)
        except InvalidCategory:
            resolved = None
        unit_value = normalize_segment(unit) if resolved is Category.NOTES else ""
        category_value = resolved.value if resolved is not None else normalize_segment(category)
        self._index.delete(metadata_key(subject_value, category_value, unit_value, filename))
        if resolved is not None:
            self._backup.remove(resolved, subject_value, unit_value, filename)
        self.persist()
        LOGGER.info("Deleted stored file %s", located)
        return located

    def verify_files(self, items: Iterable[Mapping[str, Any]]) -> List[Dict[str, Any]]:
        """Report whether each described file exists at its canonical path."""

        results: List[Dict[str, Any]] = []
        for item in items:
            identifier = item.get("id")
            try:
                path = self._resolver.resolve(
                    str(item.get("subject") or ""),
                    str(item.get("type") or item.get("category") or ""),
                    str(item.get("unit") or ""),
                    str(item.get("storedFileName") or ""),
                )
            except StorageError as error:
                results.append({"id": identifier, "exists": False, "error": str(error)})
                continue
            exists = path.is_file()
            if not exists:
                LOGGER.info("File not found on server: %s", path)
            results.append({"id": identifier, "exists": exists, "filePath": str(path)})
        return results

    def list_records(self, category: Category | str) -> List[Dict[str, Any]]:
        return [record.to_dict() for record in self._backup.records(Category.parse(category))]

    def storage_sync(self, subject: Optional[str] = None) -> Dict[str, Any]:
        return self._reconciler.storage_sync(subject)

    # ------------------------------------------------------------------
    # Subjects
    # ------------------------------------------------------------------
    def _ensure_subject_tree(self, name: str, units: Iterable[str]) -> Path:
        subject_root = self._resolver.subject_root(name)
        (subject_root / Category.NOTES.value).mkdir(parents=True, exist_ok=True)
        for unit in units:
            self._resolver.directory(name, Category.NOTES, unit).mkdir(parents=True, exist_ok=True)
        for category in Category:
            if not category.requires_unit:
                (subject_root / category.value).mkdir(parents=True, exist_ok=True)
        return subject_root

    def _require_subject_name(self, name: str) -> str:
        cleaned = normalize_segment(name)
        if not is_safe_segment(cleaned) or cleaned.lower() in _RESERVED_SUBJECTS:
            raise InvalidRequest("Invalid subject name")
        return cleaned

    def create_subject(self, name: str, units: Iterable[str] = ()) -> Tuple[Subject, Path]:
        cleaned = self._require_subject_name(name)
        unit_list = [normalize_segment(unit) for unit in units if normalize_segment(unit)]
        if not all(is_safe_segment(unit) for unit in unit_list):
            raise InvalidRequest("Invalid unit name")
        subject_root = self._ensure_subject_tree(cleaned, unit_list)
        subject = self._backup.register_subject(cleaned, unit_list)
        self.persist()
        LOGGER.info("Created subject '%s' with %s unit(s)", cleaned, len(subject.units))
        return subject, subject_root

    def add_unit(self, subject: str, unit: str) -> Path:
        cleaned = self._require_subject_name(subject)
        unit_value = normalize_segment(unit)
        if not unit_value:
            raise MissingUnit("Unit name is required")
        if not is_safe_segment(unit_value):
            raise InvalidRequest("Invalid unit name")
        unit_path = self._resolver.directory(cleaned, Category.NOTES, unit_value)
        unit_path.mkdir(parents=True, exist_ok=True)
        if self._backup.add_unit(cleaned, unit_value):
            self.persist()
        return unit_path

    def _subject_index_keys(self, name: str, subject_root: Path) -> Set[str]:
        """Index keys owned by *name*, from its records and the files under its folder."""

        keys = {record.metadata_key for record in self._backup.iter_records() if record.subject == name}
        if not subject_root.is_dir():
            return keys
        for category in Category:
            category_root = subject_root / category.value
            if not category_root.is_dir():
                continue
            if category.requires_unit:
                for unit_dir in category_root.iterdir():
                    if unit_dir.is_dir():
                        keys.update(
                            metadata_key(name, category, unit_dir.name, path.name)
                            for path in unit_dir.iterdir()
                            if path.is_file()
                        )
            else:
                keys.update(
                    metadata_key(name, category, "", path.name)
                    for path in category_root.iterdir()
                    if path.is_file()
                )
        return keys

    def delete_subject(self, name: str) -> int:
        """Remove a subject folder and every record that references it."""

        cleaned = self._require_subject_name(name)
        subject_root = self._resolver.subject_root(cleaned)
        for key in self._subject_index_keys(cleaned, subject_root):
            self._index.delete(key)
        if subject_root.exists():
            shutil.rmtree(subject_root)
            LOGGER.info("Deleted subject folder: %s", subject_root)

        removed = self._backup.remove_subject(cleaned)
        self.persist()
        return removed


__all__ = ["FileStore", "PendingUpload", "UploadRequest"]
