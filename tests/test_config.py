import json
from pathlib import Path

import study_portal.config as config_module
from study_portal.config import AccountSettings, AppConfig, load_config


def test_storage_root_falls_back_when_preferred_is_unusable(
    tmp_path: Path, monkeypatch
) -> None:
    home_dir = tmp_path / "home"
    monkeypatch.setattr(config_module.Path, "home", lambda: home_dir)

    preferred_storage = tmp_path / "storage"
    preferred_storage.write_text("not a directory", encoding="utf-8")

    config = AppConfig.from_mapping(
        {
            "storage_root": "storage",
            "metadata_file": "file-metadata.json",
            "backup_file": "portal-backup.json",
        },
        base_path=tmp_path,
    )

    expected_storage = (home_dir / ".study_portal" / "storage").resolve()
    assert config.storage_root == expected_storage
    assert config.metadata_file == (expected_storage.parent / "file-metadata.json").resolve()
    assert config.backup_file == expected_storage / "portal-backup.json"
    assert expected_storage.is_dir()


def test_backup_document_lives_inside_the_storage_root(tmp_path: Path) -> None:
    config = AppConfig.from_mapping(
        {
            "storage_root": "storage",
            "metadata_file": "file-metadata.json",
            "backup_file": "nested/custom-backup.json",
        },
        base_path=tmp_path,
    )

    assert config.metadata_file == (tmp_path / "file-metadata.json").resolve()
    assert config.backup_file == (tmp_path / "storage" / "custom-backup.json").resolve()
    assert config.temp_root == (tmp_path / "storage" / "temp").resolve()
    assert config.legacy_category_passthrough is False


def test_allowed_extensions_are_normalized(tmp_path: Path) -> None:
    config = AppConfig.from_mapping(
        {
            "storage_root": "storage",
            "metadata_file": "file-metadata.json",
            "allowed_extensions": ["PDF", ".Png", "pdf", " "],
            "legacy_category_passthrough": True,
        },
        base_path=tmp_path,
    )

    assert config.allowed_extensions == (".pdf", ".png")
    assert config.legacy_category_passthrough is True


def test_load_config_reads_explicit_file(tmp_path: Path) -> None:
    storage = tmp_path / "data"
    config_file = tmp_path / "portal.json"
    config_file.write_text(
        json.dumps(
            {
                "storage_root": str(storage),
                "metadata_file": str(tmp_path / "index.json"),
                "backup_file": "backup.json",
            }
        ),
        encoding="utf-8",
    )

    config = load_config(config_path=config_file)

    assert config.storage_root == storage.resolve()
    assert config.metadata_file == (tmp_path / "index.json").resolve()
    assert config.backup_file == storage.resolve() / "backup.json"


def test_account_settings_read_aliases_and_defaults() -> None:
    settings = AccountSettings.from_env(
        {
            "JWT_SECRET": "abc",
            "FRONTEND_URL": "https://portal.example/",
            "SUPABASE_URL": "https://idp.example/",
            "SUPABASE_ANON_KEY": "anon",
            "SUPABASE_SERVICE_ROLE_KEY": "service",
            "SMTP_PORT": "not-a-number",
            "SMTP_USER": "mailer@example.com",
        }
    )

    assert settings.frontend_url == "https://portal.example"
    assert settings.supabase_url == "https://idp.example"
    assert settings.supabase_key == "anon"
    assert settings.supabase_service_url == "https://idp.example"
    assert settings.smtp_port == 587
    assert settings.smtp_from == "mailer@example.com"
    assert settings.service_configured


def test_account_settings_without_service_key_are_not_configured() -> None:
    settings = AccountSettings.from_env({"SUPABASE_URL": "https://idp.example"})

    assert not settings.service_configured
    assert settings.jwt_secret == ""
