"""Utility helpers for consistent file naming and display labels."""

from __future__ import annotations

import re
import time
from pathlib import PurePath
from typing import Optional

__all__ = [
    "sanitize_stem",
    "build_stored_name",
    "synthesize_title",
    "format_file_size",
    "describe_file_type",
    "normalize_segment",
]


_UNSAFE_CHARACTERS = re.compile(r"[^a-zA-Z0-9\-_]")
_TIMESTAMP_SUFFIX = re.compile(r"_\d{13}$")
_WORD_START = re.compile(r"\b\w")
_SIZE_UNITS = ("Bytes", "KB", "MB", "GB")


def normalize_segment(value: Optional[str]) -> str:
    """Return *value* stripped of surrounding whitespace, or an empty string."""

    return str(value or "").strip()


def sanitize_stem(value: str) -> str:
    """Replace every character outside ``[A-Za-z0-9_-]`` with an underscore."""

    return _UNSAFE_CHARACTERS.sub("_", value)


def build_stored_name(original_name: str, *, timestamp_ms: Optional[int] = None) -> str:
    """Return the on-disk name for an upload called *original_name*.

    The stem is sanitised and suffixed with a 13-digit millisecond timestamp,
    the extension is kept as uploaded: ``Intro to Sets.pdf`` becomes
    ``Intro_to_Sets_1700000000123.pdf``.
    """

    pure = PurePath(original_name or "")
    suffix = pure.suffix
    stem = pure.name[: -len(suffix)] if suffix else pure.name
    stamp = timestamp_ms if timestamp_ms is not None else int(time.time() * 1000)
    return f"{sanitize_stem(stem)}_{stamp}{suffix}"


def synthesize_title(filename: str) -> str:
    """Derive a display title from a stored file name."""

    title = re.sub(r"\.[^/.]+$", "", filename)
    title = _TIMESTAMP_SUFFIX.sub("", title)
    title = title.replace("_", " ")
    return _WORD_START.sub(lambda match: match.group(0).upper(), title)


def format_file_size(size: Optional[int]) -> str:
    """Render *size* bytes as a short human readable label."""

    if not size:
        return "0 Bytes"
    value = float(size)
    index = 0
    while value >= 1024 and index < len(_SIZE_UNITS) - 1:
        value /= 1024
        index += 1
    rendered = f"{value:.2f}".rstrip("0").rstrip(".")
    return f"{rendered} {_SIZE_UNITS[index]}"


def describe_file_type(filename: str) -> str:
    """Return ``"pdf"`` for PDF documents and ``"image"`` for everything else."""

    return "pdf" if "pdf" in PurePath(filename).suffix.lower() else "image"
