import json
from pathlib import Path

import pytest

from study_portal.services.errors import PersistenceFailure
from study_portal.services.metadata import MetadataIndex


def test_missing_or_corrupt_index_loads_empty(tmp_path: Path) -> None:
    index = MetadataIndex(tmp_path / "file-metadata.json")
    index.load()
    assert len(index) == 0

    index.path.write_text("{not json", encoding="utf-8")
    index.load()
    assert len(index) == 0


def test_index_persists_with_two_space_indent(tmp_path: Path) -> None:
    path = tmp_path / "file-metadata.json"
    index = MetadataIndex(path)
    index.set(
        "Math-notes-Unit 1-sets_1700000000000.pdf",
        {"title": "Sets", "description": "Intro", "originalFileName": "sets.pdf"},
    )
    index.persist()

    raw = path.read_text(encoding="utf-8")
    assert raw == json.dumps(
        {
            "Math-notes-Unit 1-sets_1700000000000.pdf": {
                "title": "Sets",
                "description": "Intro",
                "originalFileName": "sets.pdf",
            }
        },
        indent=2,
    )

    reloaded = MetadataIndex(path)
    reloaded.load()
    assert reloaded.get("Math-notes-Unit 1-sets_1700000000000.pdf")["title"] == "Sets"


def test_display_title_falls_back_to_synthesized_title(tmp_path: Path) -> None:
    index = MetadataIndex(tmp_path / "file-metadata.json")
    index.set("k-blank", {"title": "  ", "description": "", "originalFileName": ""})

    assert index.display_title("k-blank", "set_theory_1700000000000.pdf") == "Set Theory"
    assert index.display_title("k-missing", "lab_1700000000000.pdf") == "Lab"
    assert index.description("k-missing") == ""


def test_delete_reports_whether_key_existed(tmp_path: Path) -> None:
    index = MetadataIndex(tmp_path / "file-metadata.json")
    index.set("key", {"title": "T", "description": "", "originalFileName": ""})

    assert index.delete("key") is True
    assert index.delete("key") is False


def test_persist_failure_is_raised_as_persistence_failure(tmp_path: Path) -> None:
    blocker = tmp_path / "blocker"
    blocker.write_text("file, not a directory", encoding="utf-8")
    index = MetadataIndex(blocker / "file-metadata.json")

    with pytest.raises(PersistenceFailure):
        index.persist()
