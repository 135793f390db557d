import json
from pathlib import Path

import pytest

import study_portal.config as config_module
from study_portal.bootstrap import BootstrapError, Bootstrapper
from study_portal.config import AppConfig


def _config(tmp_path: Path) -> AppConfig:
    storage_root = tmp_path / "storage"
    return AppConfig(
        storage_root=storage_root,
        metadata_file=tmp_path / "file-metadata.json",
        backup_file=storage_root / "portal-backup.json",
    )


def test_bootstrapper_raises_when_storage_directory_unwritable(
    tmp_path: Path, monkeypatch
) -> None:
    config = _config(tmp_path)
    original_ensure = config_module._ensure_writable_directory

    def fake_ensure(path: Path) -> bool:
        if path.resolve() == config.storage_root.resolve():
            return False
        return original_ensure(path)

    monkeypatch.setattr(config_module, "_ensure_writable_directory", fake_ensure)

    with pytest.raises(BootstrapError) as excinfo:
        Bootstrapper(config).initialize()

    assert "storage" in str(excinfo.value).lower()


def test_bootstrapper_clears_temp_uploads(tmp_path: Path) -> None:
    config = _config(tmp_path)
    leftover = config.temp_root / "partial.pdf"
    leftover.parent.mkdir(parents=True)
    leftover.write_bytes(b"partial")
    (config.temp_root / "nested").mkdir()

    Bootstrapper(config).initialize()

    assert config.temp_root.is_dir()
    assert list(config.temp_root.iterdir()) == []


def test_bootstrapper_reconciles_existing_documents(tmp_path: Path) -> None:
    config = _config(tmp_path)
    stored = config.storage_root / "Math" / "practicals" / "lab_1700000000000.pdf"
    stored.parent.mkdir(parents=True)
    stored.write_bytes(b"%PDF-1.4")
    config.backup_file.write_text(
        json.dumps(
            {
                "subjects": [],
                "practicals": [
                    {
                        "id": "p1",
                        "title": "Lab",
                        "storedFileName": "lab_1700000000000.pdf",
                        "subject": "Math",
                    }
                ],
            }
        ),
        encoding="utf-8",
    )

    store = Bootstrapper(config).initialize()

    assert [subject.name for subject in store.subjects()] == ["Math"]
    assert "Math-practicals--lab_1700000000000.pdf" in store.index
    assert config.metadata_file.exists()


def test_bootstrapper_can_skip_reconcile(tmp_path: Path) -> None:
    config = _config(tmp_path)

    store = Bootstrapper(config).initialize(reconcile=False)

    assert not config.metadata_file.exists()
    assert store.subjects() == []
