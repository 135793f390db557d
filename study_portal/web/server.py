"""FastAPI application serving study materials and account flows."""

from __future__ import annotations

import asyncio
import contextlib
import contextvars
import functools
import logging
import os
import shutil
import sys
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, AsyncIterator, Callable, Dict, List, Optional, TypeVar

from fastapi import FastAPI, File, Form, HTTPException, Request, UploadFile
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import FileResponse, JSONResponse
from fastapi.staticfiles import StaticFiles
from pydantic import BaseModel, Field
from starlette.datastructures import FormData
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.types import ASGIApp, Receive, Scope, Send

from ..config import AccountSettings, AppConfig
from ..services.accounts import AccountService
from ..services.errors import (
    AccountError,
    InvalidCategory,
    InvalidRequest,
    MissingUnit,
    NotFound,
    StorageError,
)
from ..services.records import Category
from ..services.storage import FileStore, UploadRequest


T = TypeVar("T")

_DEFAULT_MAX_UPLOAD_BYTES = 50 * 1024 * 1024
try:
    _MAX_UPLOAD_BYTES = int(
        (os.environ.get("STUDY_PORTAL_MAX_UPLOAD_BYTES") or "").strip() or _DEFAULT_MAX_UPLOAD_BYTES
    )
except ValueError:
    _MAX_UPLOAD_BYTES = _DEFAULT_MAX_UPLOAD_BYTES

_DEFAULT_UPLOAD_CHUNK_SIZE = 1024 * 1024


def get_max_upload_bytes() -> int:
    """Return the configured maximum upload size in bytes."""

    return int(_MAX_UPLOAD_BYTES)


_REQUEST_ID_VAR: contextvars.ContextVar[Optional[str]] = contextvars.ContextVar(
    "study_portal_request_id",
    default=None,
)
_ACTOR_VAR: contextvars.ContextVar[Optional[str]] = contextvars.ContextVar(
    "study_portal_actor",
    default=None,
)


def _new_correlation_id() -> str:
    return uuid.uuid4().hex


def _collect_correlation_context() -> Dict[str, str]:
    context: Dict[str, str] = {}
    request_id = _REQUEST_ID_VAR.get()
    if request_id:
        context["request_id"] = str(request_id)
    actor = _ACTOR_VAR.get()
    if actor:
        context["actor"] = str(actor)
    return context


class LargeUploadRequest(Request):
    """Request subclass that applies the configured multipart upload limit."""

    async def _get_form(
        self,
        *,
        max_files: int | float = 1000,
        max_fields: int | float = 1000,
        max_part_size: int = 1024 * 1024,
    ) -> FormData:
        configured_limit = get_max_upload_bytes()
        effective_limit = int(max_part_size)
        if configured_limit > 0:
            effective_limit = max(int(configured_limit), effective_limit)
        else:
            effective_limit = sys.maxsize
        return await super()._get_form(
            max_files=max_files,
            max_fields=max_fields,
            max_part_size=effective_limit,
        )


class RequestContextMiddleware:
    """Assign a correlation identifier to each request and expose it via contextvars."""

    def __init__(self, app: ASGIApp) -> None:
        self.app = app

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope.get("type") != "http":
            await self.app(scope, receive, send)
            return

        request_id = _new_correlation_id()
        scope_state = scope.get("state")
        if scope_state is None:
            scope_state = {}
            scope["state"] = scope_state
        if isinstance(scope_state, dict):
            scope_state["request_id"] = request_id
        else:
            setattr(scope_state, "request_id", request_id)

        method = scope.get("method")
        actor = f"request:{method.upper()}" if isinstance(method, str) else "request"
        request_token = _REQUEST_ID_VAR.set(request_id)
        actor_token = _ACTOR_VAR.set(actor)
        try:
            await self.app(scope, receive, send)
        finally:
            _ACTOR_VAR.reset(actor_token)
            _REQUEST_ID_VAR.reset(request_token)


class ContextualLoggerAdapter(logging.LoggerAdapter):
    """Logger adapter that injects correlation context into records."""

    def process(self, msg: Any, kwargs: Dict[str, Any]) -> tuple[Any, Dict[str, Any]]:  # type: ignore[override]
        extra: Dict[str, Any] = dict(self.extra)
        provided = kwargs.get("extra")
        if isinstance(provided, dict):
            extra.update(provided)
        for key, value in _collect_correlation_context().items():
            extra.setdefault(key, value)
        kwargs["extra"] = extra
        return msg, kwargs


LOGGER = ContextualLoggerAdapter(logging.getLogger(__name__), {})


def _log_event(message: str, **context: Any) -> None:
    if context:
        details = ", ".join(f"{key}={value}" for key, value in sorted(context.items()))
        LOGGER.info("%s (%s)", message, details, extra={"event_context": context})
    else:
        LOGGER.info("%s", message)


def _copy_upload_stream(
    upload: UploadFile,
    target: Path,
    *,
    chunk_size: int = _DEFAULT_UPLOAD_CHUNK_SIZE,
) -> None:
    """Synchronously copy ``upload`` to ``target`` using a bounded chunk size."""

    source = upload.file
    if hasattr(source, "seek"):
        with contextlib.suppress(OSError, ValueError):
            source.seek(0)
    target.parent.mkdir(parents=True, exist_ok=True)
    with target.open("wb") as buffer:
        shutil.copyfileobj(source, buffer, length=chunk_size)


async def _persist_upload_file(
    upload: UploadFile,
    target: Path,
    *,
    chunk_size: int = _DEFAULT_UPLOAD_CHUNK_SIZE,
) -> None:
    """Persist an uploaded file to disk without blocking the event loop."""

    loop = asyncio.get_running_loop()
    copy_operation = functools.partial(_copy_upload_stream, upload, target, chunk_size=chunk_size)
    await loop.run_in_executor(None, copy_operation)


async def _run_blocking(operation: Callable[..., T], *args: Any, **kwargs: Any) -> T:
    loop = asyncio.get_running_loop()
    return await loop.run_in_executor(None, functools.partial(operation, *args, **kwargs))


def _status_for_storage_error(error: StorageError) -> int:
    if isinstance(error, NotFound):
        return 404
    if isinstance(error, (InvalidCategory, MissingUnit, InvalidRequest)):
        return 400
    return 500


def _error_envelope(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"success": False, "message": message})


def _segment_is_filename(category: str) -> bool:
    try:
        return not Category.parse(category).requires_unit
    except InvalidCategory:
        return False


class SubjectCreatePayload(BaseModel):
    name: str
    units: List[str] = Field(default_factory=list)


class UnitCreatePayload(BaseModel):
    unitName: str = ""


class VerifyFilesPayload(BaseModel):
    files: Optional[List[Dict[str, Any]]] = None


class LoginPayload(BaseModel):
    email: str = ""
    password: str = ""


class RegisterPayload(BaseModel):
    email: str = ""
    password: str = ""
    fullName: str = ""


class WelcomePayload(BaseModel):
    email: str = ""
    fullName: str = ""


class ForgotPasswordPayload(BaseModel):
    email: str = ""


class ResetPasswordPayload(BaseModel):
    token: Optional[str] = None
    password: Optional[str] = None
    validateOnly: bool = False


class ProfileUpdatedPayload(BaseModel):
    email: str = ""
    fullName: str = ""
    changedFields: Any = None


class TokenPayload(BaseModel):
    token: Optional[str] = None


def create_app(
    store: FileStore,
    *,
    config: AppConfig,
    accounts: Optional[AccountService] = None,
    root_path: str | None = None,
) -> FastAPI:
    """Return a configured FastAPI application bound to *store*."""

    if accounts is None:
        accounts = AccountService(AccountSettings.from_env())

    @contextlib.asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        LOGGER.info("Study Portal serving storage from %s", store.storage_root)
        try:
            yield
        finally:
            accounts.close()
            LOGGER.info("Study Portal shut down")

    app = FastAPI(
        title="Study Portal",
        description="Share notes, practice tests, practicals and assignments",
        root_path=(root_path or "").rstrip("/"),
        request_class=LargeUploadRequest,
        lifespan=lifespan,
    )
    app.state.store = store
    app.state.config = config
    app.state.accounts = accounts

    app.add_middleware(RequestContextMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(StorageError)
    async def _handle_storage_error(request: Request, error: StorageError) -> JSONResponse:
        status_code = _status_for_storage_error(error)
        LOGGER.warning("%s %s failed: %s", request.method, request.url.path, error)
        return _error_envelope(status_code, str(error))

    @app.exception_handler(AccountError)
    async def _handle_account_error(request: Request, error: AccountError) -> JSONResponse:
        LOGGER.warning("%s %s failed: %s", request.method, request.url.path, error)
        return _error_envelope(error.status_code, str(error))

    @app.exception_handler(StarletteHTTPException)
    async def _handle_http_error(request: Request, error: StarletteHTTPException) -> JSONResponse:
        return _error_envelope(error.status_code, str(error.detail))

    # ------------------------------------------------------------------
    # Health and subjects
    # ------------------------------------------------------------------
    @app.get("/api/health")
    async def health() -> Dict[str, Any]:
        return {
            "success": True,
            "message": "Server is running",
            "storage": str(store.storage_root),
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }

    @app.post("/api/subjects")
    async def create_subject(payload: SubjectCreatePayload) -> Dict[str, Any]:
        _log_event("Creating subject", name=payload.name, unit_count=len(payload.units))
        subject, subject_root = store.create_subject(payload.name, payload.units)
        return {
            "success": True,
            "message": "Subject directory structure created successfully",
            "path": str(subject_root),
            "subject": subject.to_dict(),
        }

    @app.post("/api/subjects/{subject_name}/units")
    async def add_unit(subject_name: str, payload: UnitCreatePayload) -> Dict[str, Any]:
        _log_event("Creating unit", subject=subject_name, unit=payload.unitName)
        unit_path = store.add_unit(subject_name, payload.unitName)
        return {
            "success": True,
            "message": "Unit directory created successfully",
            "path": str(unit_path),
        }

    @app.get("/api/subjects/{subject_name}/units")
    async def list_units(subject_name: str) -> Dict[str, Any]:
        subject = store.backup.aggregate.find_subject(subject_name)
        if subject is None:
            raise HTTPException(status_code=404, detail="Subject not found")
        return {"success": True, "units": list(subject.units)}

    @app.delete("/api/subjects/{subject_name}")
    async def delete_subject(subject_name: str) -> Dict[str, Any]:
        _log_event("Deleting subject", subject=subject_name)
        removed = store.delete_subject(subject_name)
        _log_event("Deleted subject", subject=subject_name, record_count=removed)
        return {"success": True, "message": f"Subject '{subject_name}' deleted successfully"}

    # ------------------------------------------------------------------
    # Files
    # ------------------------------------------------------------------
    @app.post("/api/upload")
    async def upload_file(
        file: Optional[UploadFile] = File(None),
        title: str = Form(""),
        subject: str = Form(""),
        category: str = Form("", alias="type"),
        unit: str = Form(""),
        description: str = Form(""),
        owner: str = Form(""),
    ) -> Dict[str, Any]:
        request = UploadRequest(
            title=title,
            subject=subject,
            category=category,
            original_file_name=(file.filename or "") if file is not None else "",
            unit=unit,
            description=description,
            owner=owner,
        )
        pending = store.prepare_upload(request)
        if file is None:
            raise InvalidRequest("No file uploaded")
        _log_event("Uploading file", subject=pending.subject, category=pending.category.value)
        try:
            await _persist_upload_file(file, pending.target)
        except OSError as error:
            store.discard_upload(pending)
            LOGGER.error("Error uploading file: %s", error)
            raise HTTPException(status_code=500, detail="Failed to upload file") from error
        finally:
            await file.close()
        record = store.commit_upload(pending)
        return {
            "success": True,
            "message": "File uploaded successfully",
            "file": record.to_dict(),
        }

    def _download(subject: str, category: str, unit: Optional[str], filename: str) -> FileResponse:
        path = store.open_file(subject, category, unit, filename)
        return FileResponse(path, filename=filename, content_disposition_type="inline")

    def _delete(subject: str, category: str, unit: Optional[str], filename: str) -> Dict[str, Any]:
        _log_event("Deleting file", subject=subject, category=category, filename=filename)
        store.delete_file(subject, category, unit, filename)
        return {"success": True, "message": "File deleted successfully"}

    @app.get("/api/files/{subject}/{category}/{unit}/{filename}")
    async def download_file(subject: str, category: str, unit: str, filename: str) -> FileResponse:
        return _download(subject, category, unit, filename)

    @app.delete("/api/files/{subject}/{category}/{unit}/{filename}")
    async def delete_file(subject: str, category: str, unit: str, filename: str) -> Dict[str, Any]:
        return _delete(subject, category, unit, filename)

    @app.get("/api/files/{subject}/{category}")
    async def list_files(subject: str, category: str) -> Dict[str, Any]:
        return {"success": True, "files": store.list_directory(subject, category)}

    # Outside notes the third segment names a file, not a unit.
    @app.get("/api/files/{subject}/{category}/{segment}", response_model=None)
    async def list_unit_or_download(
        subject: str, category: str, segment: str
    ) -> FileResponse | Dict[str, Any]:
        if _segment_is_filename(category):
            return _download(subject, category, None, segment)
        return {"success": True, "files": store.list_directory(subject, category, segment)}

    @app.delete("/api/files/{subject}/{category}/{filename}")
    async def delete_unitless_file(subject: str, category: str, filename: str) -> Dict[str, Any]:
        return _delete(subject, category, None, filename)

    @app.post("/api/verify-files")
    async def verify_files(payload: VerifyFilesPayload) -> Dict[str, Any]:
        if not isinstance(payload.files, list):
            raise HTTPException(status_code=400, detail="Files array is required")
        return {"success": True, "verifiedFiles": store.verify_files(payload.files)}

    @app.get("/api/storage-sync")
    async def storage_sync() -> Dict[str, Any]:
        return {"success": True, **store.storage_sync()}

    @app.get("/api/storage-sync/{subject}")
    async def storage_sync_subject(subject: str) -> Dict[str, Any]:
        return {"success": True, **store.storage_sync(subject)}

    @app.get("/api/assignments")
    async def list_assignments() -> Dict[str, Any]:
        return {"success": True, "data": store.list_records(Category.ASSIGNMENTS)}

    app.mount(
        "/storage",
        StaticFiles(directory=str(store.storage_root), check_dir=False),
        name="storage",
    )

    # ------------------------------------------------------------------
    # Accounts
    # ------------------------------------------------------------------
    @app.post("/api/login")
    async def login(payload: LoginPayload) -> Dict[str, Any]:
        _log_event("Login attempt", email=payload.email)
        result = await _run_blocking(accounts.login, payload.email.strip(), payload.password)
        return {"success": True, **result}

    @app.post("/api/register")
    async def register(payload: RegisterPayload) -> Dict[str, Any]:
        user = await _run_blocking(
            accounts.register, payload.email.strip(), payload.password, payload.fullName
        )
        return {"success": True, "message": "Account created. Check your email.", "user": user}

    @app.post("/api/send-welcome")
    async def send_welcome(payload: WelcomePayload) -> Dict[str, Any]:
        delivered = await _run_blocking(accounts.send_welcome, payload.email, payload.fullName)
        if not delivered:
            raise HTTPException(status_code=500, detail="Email send failed.")
        return {"success": True, "message": "Welcome & verification email sent."}

    @app.post("/api/forgot-password")
    async def forgot_password(payload: ForgotPasswordPayload) -> Dict[str, Any]:
        await _run_blocking(accounts.request_password_reset, payload.email)
        return {"success": True, "message": "Password reset email sent."}

    @app.post("/api/reset-password")
    async def reset_password(payload: ResetPasswordPayload) -> Dict[str, Any]:
        email = await _run_blocking(
            accounts.reset_password,
            payload.token,
            payload.password,
            validate_only=payload.validateOnly,
        )
        if payload.validateOnly:
            return {"success": True, "message": "Token valid", "email": email}
        return {"success": True, "message": "Password updated"}

    @app.post("/api/profile-updated")
    async def profile_updated(payload: ProfileUpdatedPayload) -> Dict[str, Any]:
        delivered = await _run_blocking(
            accounts.notify_profile_updated,
            payload.email,
            payload.fullName,
            payload.changedFields,
        )
        if not delivered:
            raise HTTPException(status_code=500, detail="Notify failed")
        return {"success": True, "message": "Notification sent"}

    async def _verify_account(token: Optional[str]) -> Dict[str, Any]:
        email = await _run_blocking(accounts.verify_account, token)
        return {"success": True, "message": "Email verified successfully.", "email": email}

    @app.get("/api/verify-account")
    async def verify_account_get(token: Optional[str] = None) -> Dict[str, Any]:
        return await _verify_account(token)

    @app.post("/api/verify-account")
    async def verify_account_post(
        payload: Optional[TokenPayload] = None, token: Optional[str] = None
    ) -> Dict[str, Any]:
        body_token = payload.token if payload is not None else None
        return await _verify_account(body_token or token)

    return app


__all__ = ["create_app", "get_max_upload_bytes"]
