from __future__ import annotations

import httpx
import pytest
from fastapi.testclient import TestClient

from study_portal.config import AccountSettings
from study_portal.services.accounts import VERIFY_PURPOSE, AccountService, IdentityProviderClient, TokenSigner
from study_portal.services.storage import FileStore
from study_portal.web import create_app

from test_accounts import FakeIdentityProvider, RecordingMailer


@pytest.fixture()
def idp() -> FakeIdentityProvider:
    return FakeIdentityProvider()


@pytest.fixture()
def mailer() -> RecordingMailer:
    return RecordingMailer()


@pytest.fixture()
def client(
    store: FileStore,
    account_settings: AccountSettings,
    idp: FakeIdentityProvider,
    mailer: RecordingMailer,
) -> TestClient:
    accounts = AccountService(
        account_settings,
        identity=IdentityProviderClient(
            account_settings, client=httpx.Client(transport=httpx.MockTransport(idp.handler))
        ),
        mailer=mailer,
    )
    app = create_app(store, config=store.config, accounts=accounts)
    return TestClient(app)


def _upload(client: TestClient, **fields):
    data = {"title": "Set Theory", "subject": "Math", "type": "notes", "unit": "Unit 1"}
    data.update(fields)
    filename = data.pop("filename", "sets.pdf")
    return client.post(
        "/api/upload",
        data=data,
        files={"file": (filename, b"%PDF-1.4 body", "application/pdf")},
    )


def test_health_reports_storage_root(client: TestClient, store: FileStore) -> None:
    response = client.get("/api/health")

    assert response.status_code == 200
    payload = response.json()
    assert payload["success"] is True
    assert payload["storage"] == str(store.storage_root)


def test_upload_list_download_delete_cycle(client: TestClient) -> None:
    response = _upload(client, description="Week one", owner="user-7")
    assert response.status_code == 200
    stored = response.json()["file"]
    assert stored["unit"] == "Unit 1"
    assert stored["fileName"] == "sets.pdf"
    assert stored["owner"] == "user-7"
    name = stored["storedFileName"]

    listing = client.get("/api/files/Math/notes/Unit 1").json()
    assert [(entry["filename"], entry["title"]) for entry in listing["files"]] == [(name, "Set Theory")]

    download = client.get(f"/api/files/Math/notes/Unit 1/{name}")
    assert download.status_code == 200
    assert download.content == b"%PDF-1.4 body"
    assert download.headers["content-type"] == "application/pdf"

    deleted = client.delete(f"/api/files/Math/notes/Unit 1/{name}")
    assert deleted.json() == {"success": True, "message": "File deleted successfully"}

    missing = client.get(f"/api/files/Math/notes/Unit 1/{name}")
    assert missing.status_code == 404
    assert missing.json() == {"success": False, "message": "File not found"}


def test_non_note_files_are_addressed_without_unit(client: TestClient) -> None:
    stored = _upload(client, type="practicals", unit="", filename="lab.pdf").json()["file"]
    name = stored["storedFileName"]

    assert "unit" not in stored
    download = client.get(f"/api/files/Math/practicals/{name}")
    assert download.status_code == 200
    assert download.headers["content-type"] == "application/pdf"
    assert download.content == b"%PDF-1.4 body"
    assert [entry["filename"] for entry in client.get("/api/files/Math/practicals").json()["files"]] == [name]

    deleted = client.delete(f"/api/files/Math/practicals/{name}")
    assert deleted.json() == {"success": True, "message": "File deleted successfully"}
    assert client.get(f"/api/files/Math/practicals/{name}").status_code == 404


def test_non_note_files_ignore_unit_segment(client: TestClient) -> None:
    name = _upload(client, type="assignments", unit="", filename="hw.pdf").json()["file"]["storedFileName"]

    assert client.get(f"/api/files/Math/assignments/Unit 9/{name}").status_code == 200
    assert client.delete(f"/api/files/Math/assignments/Unit 9/{name}").status_code == 200


def test_three_segment_notes_url_lists_unit(client: TestClient) -> None:
    name = _upload(client).json()["file"]["storedFileName"]

    listing = client.get("/api/files/Math/notes/Unit 1").json()
    assert [entry["filename"] for entry in listing["files"]] == [name]

    missing_unit = client.delete(f"/api/files/Math/notes/{name}")
    assert missing_unit.status_code == 400
    assert missing_unit.json()["message"] == "Unit is required for notes"


def test_invalid_path_segments_are_client_errors(client: TestClient) -> None:
    bad_subject = _upload(client, subject="a/b")
    bad_unit = _upload(client, unit="../escape")
    bad_created = client.post("/api/subjects", json={"name": "..", "units": []})

    assert bad_subject.status_code == 400
    assert bad_unit.status_code == 400
    assert bad_created.status_code == 400


def test_shutdown_closes_account_service(store: FileStore, account_settings: AccountSettings) -> None:
    class ClosingAccounts(AccountService):
        closed = False

        def close(self) -> None:
            type(self).closed = True

    accounts = ClosingAccounts(account_settings, mailer=RecordingMailer())
    app = create_app(store, config=store.config, accounts=accounts)

    with TestClient(app) as running:
        assert running.get("/api/health").status_code == 200
        assert not ClosingAccounts.closed

    assert ClosingAccounts.closed


@pytest.mark.parametrize(
    "fields, message",
    [
        ({"unit": ""}, "Unit is required for notes"),
        ({"type": "videos"}, "Invalid type: videos"),
        ({"filename": "run.exe"}, "Only PDF and image files are allowed!"),
        ({"title": ""}, "Title is required"),
    ],
)
def test_upload_validation_errors_use_envelope(client: TestClient, fields, message) -> None:
    response = _upload(client, **fields)

    assert response.status_code == 400
    assert response.json() == {"success": False, "message": message}


def test_upload_without_file_is_rejected(client: TestClient) -> None:
    response = client.post(
        "/api/upload",
        data={"title": "T", "subject": "Math", "type": "notes", "unit": "Unit 1"},
    )

    assert response.status_code == 400
    assert response.json()["message"] == "No file uploaded"


def test_subject_endpoints(client: TestClient, store: FileStore) -> None:
    created = client.post("/api/subjects", json={"name": "Math", "units": ["Unit 1"]})
    assert created.status_code == 200
    assert created.json()["subject"]["units"] == ["Unit 1"]

    added = client.post("/api/subjects/Math/units", json={"unitName": "Unit 2"})
    assert added.json()["success"] is True
    assert client.get("/api/subjects/Math/units").json()["units"] == ["Unit 1", "Unit 2"]
    assert client.get("/api/subjects/Biology/units").status_code == 404

    assert client.delete("/api/subjects/temp").status_code == 400
    removed = client.delete("/api/subjects/Math")
    assert removed.json()["message"] == "Subject 'Math' deleted successfully"
    assert store.subjects() == []


def test_storage_sync_and_assignments(client: TestClient) -> None:
    stored = _upload(client, type="assignments", unit="", filename="hw.pdf").json()["file"]

    sync = client.get("/api/storage-sync").json()
    assert sync["success"] is True
    assert sync["storageStructure"]["Math"]["assignments"][0]["filename"] == stored["storedFileName"]
    assert sync["backupData"]["assignments"][0]["id"] == stored["id"]

    single = client.get("/api/storage-sync/Math").json()
    assert list(single["storageStructure"]) == ["Math"]

    assignments = client.get("/api/assignments").json()
    assert [item["storedFileName"] for item in assignments["data"]] == [stored["storedFileName"]]


def test_verify_files_endpoint(client: TestClient) -> None:
    stored = _upload(client).json()["file"]

    response = client.post(
        "/api/verify-files",
        json={"files": [{"id": stored["id"], "subject": "Math", "type": "notes", "unit": "Unit 1", "storedFileName": stored["storedFileName"]}]},
    )

    assert response.json()["verifiedFiles"][0]["exists"] is True
    assert client.post("/api/verify-files", json={}).status_code == 400


def test_login_endpoint(client: TestClient, idp: FakeIdentityProvider) -> None:
    idp.add_user("ada@example.com", "correct-horse")
    idp.add_user("new@example.com", "pw", confirmed=False)

    ok = client.post("/api/login", json={"email": "ada@example.com", "password": "correct-horse"})
    assert ok.status_code == 200
    assert ok.json()["access_token"] == "access"

    unverified = client.post("/api/login", json={"email": "new@example.com", "password": "pw"})
    assert unverified.status_code == 403
    assert unverified.json()["message"] == "Please verify your email before logging in."

    unknown = client.post("/api/login", json={"email": "x@example.com", "password": "pw"})
    assert unknown.status_code == 400


def test_password_reset_endpoints(
    client: TestClient, idp: FakeIdentityProvider, mailer: RecordingMailer
) -> None:
    idp.add_user("ada@example.com", "old-password")

    sent = client.post("/api/forgot-password", json={"email": "ada@example.com"})
    assert sent.json()["message"] == "Password reset email sent."
    token = mailer.sent[0]["html"].split("token=", 1)[1].split('"', 1)[0]

    valid = client.post("/api/reset-password", json={"token": token, "validateOnly": True})
    assert valid.json() == {"success": True, "message": "Token valid", "email": "ada@example.com"}

    updated = client.post("/api/reset-password", json={"token": token, "password": "new-password"})
    assert updated.json()["message"] == "Password updated"

    bad = client.post("/api/reset-password", json={"token": "garbage", "password": "new-password"})
    assert bad.status_code == 400
    assert bad.json()["success"] is False


def test_verify_account_accepts_query_and_body(
    client: TestClient, idp: FakeIdentityProvider, account_settings: AccountSettings
) -> None:
    idp.add_user("ada@example.com", "pw", confirmed=False)
    token = TokenSigner(account_settings.jwt_secret).issue("ada@example.com", VERIFY_PURPOSE)

    via_query = client.get("/api/verify-account", params={"token": token})
    via_body = client.post("/api/verify-account", json={"token": token})

    assert via_query.json()["message"] == "Email verified successfully."
    assert via_body.status_code == 200
    assert len(idp.updates) == 2
    assert client.post("/api/verify-account").status_code == 400


def test_welcome_and_profile_notifications(client: TestClient, mailer: RecordingMailer) -> None:
    welcome = client.post("/api/send-welcome", json={"email": "ada@example.com", "fullName": "Ada"})
    profile = client.post(
        "/api/profile-updated",
        json={"email": "ada@example.com", "changedFields": ["phone"]},
    )

    assert welcome.json()["success"] is True
    assert profile.json()["message"] == "Notification sent"
    assert len(mailer.sent) == 2

    mailer.fail = True
    failed = client.post("/api/send-welcome", json={"email": "ada@example.com"})
    assert failed.status_code == 500
    assert failed.json() == {"success": False, "message": "Email send failed."}
