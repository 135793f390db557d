from __future__ import annotations

import sys
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from study_portal.bootstrap import Bootstrapper
from study_portal.config import AccountSettings, AppConfig
from study_portal.services.storage import FileStore


@pytest.fixture()
def temp_config(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> AppConfig:
    monkeypatch.chdir(tmp_path)

    return AppConfig.from_mapping(
        {
            "storage_root": "storage",
            "metadata_file": "file-metadata.json",
            "backup_file": "portal-backup.json",
        },
        base_path=tmp_path,
    )


@pytest.fixture()
def store(temp_config: AppConfig) -> FileStore:
    return Bootstrapper(temp_config).initialize()


@pytest.fixture()
def account_settings() -> AccountSettings:
    return AccountSettings(
        jwt_secret="test-secret",
        frontend_url="http://portal.test",
        supabase_url="http://idp.test",
        supabase_key="anon-key",
        supabase_service_url="http://idp.test",
        supabase_service_role_key="service-key",
        smtp_host="smtp.test",
        smtp_port=587,
        smtp_user="mailer",
        smtp_password="secret",
        smtp_from="portal@test",
    )
