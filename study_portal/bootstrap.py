"""Bootstrap logic that prepares the storage tree and reconciles its metadata."""

from __future__ import annotations

import logging
import shutil

from . import config as config_module
from .config import AppConfig
from .services.storage import FileStore

LOGGER = logging.getLogger(__name__)


class BootstrapError(RuntimeError):
    """Raised when initialization cannot be completed."""


class Bootstrapper:
    """High level object orchestrating initialization steps."""

    def __init__(self, config: AppConfig) -> None:
        self._config = config

    @property
    def config(self) -> AppConfig:
        return self._config

    def initialize(self, *, reconcile: bool = True) -> FileStore:
        """Run all bootstrap tasks and return the file store.

        With *reconcile* disabled the caller is responsible for loading the
        documents, usually by calling :meth:`FileStore.reconcile` itself.
        """

        LOGGER.debug("Starting bootstrap sequence")
        self._ensure_directories()
        store = FileStore(self._config)
        if reconcile:
            store.reconcile()
        LOGGER.info("Bootstrap completed successfully")
        return store

    def _ensure_directories(self) -> None:
        storage_root = self._config.storage_root
        if not config_module._ensure_writable_directory(storage_root):
            raise BootstrapError(f"Storage directory is not writable: {storage_root}")
        LOGGER.debug("Ensured directory exists: %s", storage_root)

        metadata_parent = self._config.metadata_file.parent
        if not config_module._ensure_writable_directory(metadata_parent):
            raise BootstrapError(f"Metadata directory is not writable: {metadata_parent}")

        temp_root = self._config.temp_root
        temp_root.mkdir(parents=True, exist_ok=True)
        for child in temp_root.iterdir():
            try:
                if child.is_dir():
                    shutil.rmtree(child)
                else:
                    child.unlink()
            except OSError as error:  # pragma: no cover - best effort cleanup
                LOGGER.warning("Could not remove temporary upload %s: %s", child, error)
        LOGGER.debug("Cleared temp directory: %s", temp_root)


__all__ = ["BootstrapError", "Bootstrapper"]
