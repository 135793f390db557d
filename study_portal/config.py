"""Configuration loading utilities for the Study Portal application."""

from __future__ import annotations

import contextlib
import json
import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Iterable, Mapping, Optional, Tuple

from dotenv import load_dotenv


LOGGER = logging.getLogger(__name__)


_PERMISSION_SENTINEL = ".study_portal_write_check"

DEFAULT_ALLOWED_EXTENSIONS: Tuple[str, ...] = (".pdf", ".jpeg", ".jpg", ".png", ".gif")


def _ensure_writable_directory(path: Path) -> bool:
    """Return ``True`` if *path* can be created and written to."""

    try:
        path.mkdir(parents=True, exist_ok=True)
    except OSError:
        return False

    test_file = path / _PERMISSION_SENTINEL
    try:
        with test_file.open("w", encoding="utf-8") as handle:
            handle.write("ok")
    except OSError:
        return False
    finally:
        with contextlib.suppress(OSError):
            test_file.unlink()

    return True


def _select_writable_directory(
    preferred: Path,
    *,
    label: str,
    fallbacks: Iterable[Path] = (),
) -> Tuple[Path, bool]:
    """Return a usable directory based on ``preferred`` and ``fallbacks``.

    The first writable candidate wins and the flag reports whether a fallback
    was used. When nothing can be prepared the original ``preferred`` path is
    returned so that callers surface the failure later.
    """

    preferred = preferred.resolve()
    if _ensure_writable_directory(preferred):
        return preferred, False

    for fallback in fallbacks:
        candidate = fallback.resolve()
        if candidate == preferred:
            continue
        if _ensure_writable_directory(candidate):
            LOGGER.warning(
                "Preferred %s directory '%s' is not writable; using fallback '%s'.",
                label,
                preferred,
                candidate,
            )
            return candidate, True

    LOGGER.warning(
        "%s directory '%s' is not writable and no fallback is available.",
        label.capitalize(),
        preferred,
    )
    return preferred, False


def _normalize_extensions(values: Iterable[str]) -> Tuple[str, ...]:
    normalized = []
    for value in values:
        cleaned = str(value).strip().lower()
        if not cleaned:
            continue
        if not cleaned.startswith("."):
            cleaned = f".{cleaned}"
        if cleaned not in normalized:
            normalized.append(cleaned)
    return tuple(normalized)


@dataclass(frozen=True)
class AppConfig:
    """Runtime paths and storage options for the application."""

    storage_root: Path
    metadata_file: Path
    backup_file: Path
    allowed_extensions: Tuple[str, ...] = DEFAULT_ALLOWED_EXTENSIONS
    legacy_category_passthrough: bool = False

    @property
    def temp_root(self) -> Path:
        """Scratch directory for uploads that arrive before their target is known."""

        return (self.storage_root / "temp").resolve()

    @classmethod
    def from_mapping(cls, mapping: Dict[str, Any], *, base_path: Path) -> "AppConfig":
        preferred_storage = (base_path / mapping["storage_root"]).resolve()
        storage_fallback = Path.home() / ".study_portal" / "storage"
        storage_root, storage_fallback_used = _select_writable_directory(
            preferred_storage,
            label="storage",
            fallbacks=(storage_fallback,),
        )

        metadata_file = (base_path / mapping["metadata_file"]).resolve()
        if storage_fallback_used or not _ensure_writable_directory(metadata_file.parent):
            fallback_metadata = (storage_root.parent / metadata_file.name).resolve()
            if fallback_metadata != metadata_file and _ensure_writable_directory(
                fallback_metadata.parent
            ):
                LOGGER.warning(
                    "Preferred metadata location '%s' is not writable; using fallback '%s'.",
                    metadata_file,
                    fallback_metadata,
                )
                metadata_file = fallback_metadata

        backup_name = Path(mapping.get("backup_file") or "portal-backup.json").name
        backup_file = (storage_root / backup_name).resolve()

        extensions = mapping.get("allowed_extensions")
        allowed = (
            _normalize_extensions(extensions)
            if extensions is not None
            else DEFAULT_ALLOWED_EXTENSIONS
        )

        return cls(
            storage_root=storage_root,
            metadata_file=metadata_file,
            backup_file=backup_file,
            allowed_extensions=allowed,
            legacy_category_passthrough=bool(mapping.get("legacy_category_passthrough", False)),
        )


def load_config(config_path: Path | None = None) -> AppConfig:
    """Load the application configuration from ``config/default.json`` by default."""

    base_path = Path(__file__).resolve().parent.parent
    if config_path is None:
        config_path = base_path / "config" / "default.json"

    with config_path.open("r", encoding="utf-8") as config_file:
        raw_config = json.load(config_file)

    return AppConfig.from_mapping(raw_config, base_path=base_path)


@dataclass(frozen=True)
class AccountSettings:
    """Credentials and endpoints for the identity provider and mailer."""

    jwt_secret: str = ""
    frontend_url: str = ""
    supabase_url: str = ""
    supabase_key: str = ""
    supabase_service_url: str = ""
    supabase_service_role_key: str = ""
    smtp_host: str = ""
    smtp_port: int = 587
    smtp_user: str = ""
    smtp_password: str = ""
    smtp_from: str = ""

    @property
    def service_configured(self) -> bool:
        return bool(self.supabase_service_url and self.supabase_service_role_key)

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "AccountSettings":
        if environ is None:
            load_dotenv()
            env: Mapping[str, str] = os.environ
        else:
            env = environ

        def _read(name: str, *aliases: str) -> str:
            for key in (name, *aliases):
                value = (env.get(key) or "").strip()
                if value:
                    return value
            return ""

        try:
            smtp_port = int(_read("SMTP_PORT") or 587)
        except ValueError:
            LOGGER.warning("Ignoring invalid SMTP_PORT value %r", env.get("SMTP_PORT"))
            smtp_port = 587

        settings = cls(
            jwt_secret=_read("JWT_SECRET"),
            frontend_url=_read("FRONTEND_URL").rstrip("/"),
            supabase_url=_read("SUPABASE_URL").rstrip("/"),
            supabase_key=_read("SUPABASE_KEY", "SUPABASE_ANON_KEY", "SUPABASE_ANON"),
            supabase_service_url=_read("SUPABASE_SERVICE_URL", "SUPABASE_URL").rstrip("/"),
            supabase_service_role_key=_read("SUPABASE_SERVICE_ROLE_KEY"),
            smtp_host=_read("SMTP_HOST"),
            smtp_port=smtp_port,
            smtp_user=_read("SMTP_USER"),
            smtp_password=_read("SMTP_PASS"),
            smtp_from=_read("SMTP_FROM", "SMTP_USER"),
        )
        if not settings.jwt_secret:
            LOGGER.error("JWT_SECRET is not configured; account links cannot be signed.")
        return settings


__all__ = ["AccountSettings", "AppConfig", "DEFAULT_ALLOWED_EXTENSIONS", "load_config"]
