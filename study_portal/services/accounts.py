"""Account flows delegated to the identity provider, signed links and email."""

from __future__ import annotations

import html
import logging
import smtplib
from datetime import datetime, timedelta, timezone
from email.message import EmailMessage
from typing import Any, Dict, Iterable, List, Optional, Union

import httpx
from jose import JWTError, jwt

from ..config import AccountSettings
from .errors import (
    AccountError,
    AccountNotFound,
    AccountNotVerified,
    InvalidToken,
    UpstreamFailure,
)


LOGGER = logging.getLogger(__name__)

TOKEN_ALGORITHM = "HS256"
VERIFY_PURPOSE = "verify"
RESET_PURPOSE = "reset"
TOKEN_LIFETIMES: Dict[str, timedelta] = {
    VERIFY_PURPOSE: timedelta(days=7),
    RESET_PURPOSE: timedelta(hours=1),
}
MIN_PASSWORD_LENGTH = 6
_REQUEST_TIMEOUT_SECONDS = 15.0


class TokenSigner:
    """Issue and check short-lived HS256 tokens carrying an email and purpose."""

    def __init__(self, secret: str) -> None:
        self._secret = secret

    def _require_secret(self) -> str:
        if not self._secret:
            raise AccountError("Token secret is not configured", status_code=500)
        return self._secret

    def issue(self, email: str, purpose: str, *, expires_in: Optional[timedelta] = None) -> str:
        now = datetime.now(timezone.utc)
        lifetime = expires_in if expires_in is not None else TOKEN_LIFETIMES[purpose]
        payload = {
            "email": email,
            "type": purpose,
            "iat": now,
            "exp": now + lifetime,
        }
        return jwt.encode(payload, self._require_secret(), algorithm=TOKEN_ALGORITHM)

    def verify(self, token: Optional[str], purpose: str) -> str:
        """Return the email carried by *token* when it is valid for *purpose*."""

        if not token:
            raise InvalidToken("Token missing")
        try:
            payload = jwt.decode(token, self._require_secret(), algorithms=[TOKEN_ALGORITHM])
        except JWTError as exc:
            raise InvalidToken("Invalid or expired token") from exc
        if payload.get("type") != purpose:
            raise InvalidToken("Invalid token type")
        email = payload.get("email")
        if not email:
            raise InvalidToken("Invalid token payload")
        return str(email)


class IdentityProviderClient:
    """Thin wrapper over the GoTrue-compatible REST API of the identity provider."""

    def __init__(self, settings: AccountSettings, *, client: Optional[httpx.Client] = None) -> None:
        self._settings = settings
        self._client = client or httpx.Client(timeout=_REQUEST_TIMEOUT_SECONDS)

    def close(self) -> None:
        self._client.close()

    def _admin_headers(self) -> Dict[str, str]:
        if not self._settings.service_configured:
            raise AccountError("Server configuration error", status_code=500)
        key = self._settings.supabase_service_role_key
        return {"apikey": key, "Authorization": f"Bearer {key}"}

    def _request(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        try:
            return self._client.request(method, url, **kwargs)
        except httpx.HTTPError as exc:
            LOGGER.error("Identity provider request %s %s failed: %s", method, url, exc)
            raise UpstreamFailure("Identity provider is unreachable") from exc

    @staticmethod
    def _json(response: httpx.Response) -> Any:
        try:
            return response.json()
        except ValueError:
            return {}

    def list_users(self, *, email: Optional[str] = None) -> List[Dict[str, Any]]:
        params = {"email": email} if email else None
        response = self._request(
            "GET",
            f"{self._settings.supabase_service_url}/auth/v1/admin/users",
            headers=self._admin_headers(),
            params=params,
        )
        if response.is_error:
            LOGGER.error(
                "Failed fetching admin users: %s %s", response.status_code, response.text
            )
            raise UpstreamFailure("Failed to query users", status_code=500)
        payload = self._json(response)
        if isinstance(payload, list):
            return payload
        users = payload.get("users") if isinstance(payload, dict) else None
        return users if isinstance(users, list) else []

    def find_user_by_email(self, email: str) -> Optional[Dict[str, Any]]:
        wanted = email.strip().lower()
        for user in self.list_users(email=wanted):
            if str(user.get("email") or "").lower() == wanted:
                return user
        return None

    def create_account(
        self, email: str, password: str, *, metadata: Optional[Dict[str, Any]] = None
    ) -> Dict[str, Any]:
        response = self._request(
            "POST",
            f"{self._settings.supabase_service_url}/auth/v1/admin/users",
            headers=self._admin_headers(),
            json={"email": email, "password": password, "user_metadata": metadata or {}},
        )
        payload = self._json(response)
        if response.is_error:
            message = _error_message(payload, "Account creation failed")
            LOGGER.warning("Account creation for %s rejected: %s", email, message)
            raise AccountError(message)
        return payload.get("user", payload) if isinstance(payload, dict) else {}

    def exchange_password(self, email: str, password: str) -> Dict[str, Any]:
        """Trade credentials for an access and refresh token pair."""

        if not self._settings.supabase_url:
            raise AccountError("Server misconfiguration", status_code=500)
        response = self._request(
            "POST",
            f"{self._settings.supabase_url}/auth/v1/token",
            params={"grant_type": "password"},
            headers={"apikey": self._settings.supabase_key},
            json={"email": email, "password": password},
        )
        payload = self._json(response)
        if response.is_error:
            raise AccountError(_error_message(payload, "Login failed"))
        return payload if isinstance(payload, dict) else {}

    def _update_user(self, user_id: str, changes: Dict[str, Any], *, action: str) -> None:
        response = self._request(
            "PUT",
            f"{self._settings.supabase_service_url}/auth/v1/admin/users/{user_id}",
            headers=self._admin_headers(),
            json=changes,
        )
        if response.is_error:
            LOGGER.error(
                "Identity provider rejected %s for %s: %s %s",
                action,
                user_id,
                response.status_code,
                response.text,
            )
            raise UpstreamFailure(f"Failed to {action}", status_code=500)

    def confirm_user(self, user_id: str, *, confirmed_at: Optional[datetime] = None) -> None:
        stamp = (confirmed_at or datetime.now(timezone.utc)).isoformat()
        self._update_user(
            user_id,
            {"email_confirmed_at": stamp, "confirmed_at": stamp},
            action="verify email",
        )

    def set_password(self, user_id: str, password: str) -> None:
        self._update_user(user_id, {"password": password}, action="update password")


def _error_message(payload: Any, default: str) -> str:
    if isinstance(payload, dict):
        for key in ("error_description", "msg", "message", "error"):
            value = payload.get(key)
            if value:
                return str(value)
    return default


class MailDispatcher:
    """Send HTML notifications through the configured SMTP server."""

    def __init__(self, settings: AccountSettings) -> None:
        self._settings = settings

    def send(self, to: str, subject: str, html_body: str) -> None:
        settings = self._settings
        if not settings.smtp_host:
            raise UpstreamFailure("Mail server is not configured", status_code=500)

        message = EmailMessage()
        message["From"] = settings.smtp_from
        message["To"] = to
        message["Subject"] = subject
        message.set_content("This message requires an HTML capable mail client.")
        message.add_alternative(html_body, subtype="html")

        smtp_class = smtplib.SMTP_SSL if settings.smtp_port == 465 else smtplib.SMTP
        try:
            with smtp_class(settings.smtp_host, settings.smtp_port, timeout=_REQUEST_TIMEOUT_SECONDS) as smtp:
                if smtp_class is smtplib.SMTP and smtp.has_extn("starttls"):
                    smtp.starttls()
                if settings.smtp_user:
                    smtp.login(settings.smtp_user, settings.smtp_password)
                smtp.send_message(message)
        except (smtplib.SMTPException, OSError) as exc:
            LOGGER.error("Sending '%s' to %s failed: %s", subject, to, exc)
            raise UpstreamFailure("Email send failed", status_code=500) from exc
        LOGGER.info("Sent '%s' to %s", subject, to)


class AccountService:
    """Orchestrate login, verification and password reset flows."""

    def __init__(
        self,
        settings: AccountSettings,
        *,
        identity: Optional[IdentityProviderClient] = None,
        mailer: Optional[MailDispatcher] = None,
        signer: Optional[TokenSigner] = None,
        app_name: str = "Study Portal",
    ) -> None:
        self._settings = settings
        self._identity = identity or IdentityProviderClient(settings)
        self._mailer = mailer or MailDispatcher(settings)
        self._signer = signer or TokenSigner(settings.jwt_secret)
        self._app_name = app_name

    def close(self) -> None:
        """Release the identity provider connection pool."""

        self._identity.close()

    @property
    def signer(self) -> TokenSigner:
        return self._signer

    def _link(self, path: str, token: str) -> str:
        return f"{self._settings.frontend_url}{path}?token={token}"

    def _notify(self, to: str, subject: str, html_body: str) -> bool:
        """Send a best-effort notification; failures are logged and reported as ``False``."""

        try:
            self._mailer.send(to, subject, html_body)
        except UpstreamFailure as exc:
            LOGGER.warning("Notification '%s' to %s was not delivered: %s", subject, to, exc)
            return False
        return True

    def login(self, email: str, password: str) -> Dict[str, Any]:
        if not email or not password:
            raise AccountError("Email and password required.")
        user = self._identity.find_user_by_email(email)
        if user is None:
            raise AccountError("Invalid credentials.")
        if not user.get("email_confirmed_at"):
            raise AccountNotVerified("Please verify your email before logging in.")
        tokens = self._identity.exchange_password(email, password)
        return {
            "user": tokens.get("user") or user,
            "access_token": tokens.get("access_token"),
            "refresh_token": tokens.get("refresh_token"),
        }

    def register(self, email: str, password: str, full_name: str = "") -> Dict[str, Any]:
        if not email or not password:
            raise AccountError("Email and password required.")
        if len(password) < MIN_PASSWORD_LENGTH:
            raise AccountError(f"Password must be at least {MIN_PASSWORD_LENGTH} characters")
        user = self._identity.create_account(email, password, metadata={"full_name": full_name})
        self.send_welcome(email, full_name)
        return user

    def send_welcome(self, email: str, full_name: str = "") -> bool:
        if not email:
            raise AccountError("email required")
        token = self._signer.issue(email, VERIFY_PURPOSE)
        link = self._link("/verify-account", token)
        body = (
            f"<h2>Welcome {html.escape(full_name or '')}!</h2>"
            f"<p>Thank you for registering with {self._app_name}.</p>"
            f'<p><a href="{html.escape(link)}">Click here to verify your email</a></p>'
        )
        return self._notify(email, f"Welcome to {self._app_name} - Verify Your Email", body)

    def request_password_reset(self, email: str) -> None:
        if not email:
            raise AccountError("email required")
        token = self._signer.issue(email, RESET_PURPOSE)
        link = self._link("/reset-password", token)
        body = (
            "<p>You requested a password reset.</p>"
            f'<p><a href="{html.escape(link)}">Click here to reset your password</a></p>'
            "<p>This link expires in 1 hour.</p>"
        )
        self._mailer.send(email, f"{self._app_name} Password Reset", body)

    def reset_password(
        self, token: Optional[str], password: Optional[str], *, validate_only: bool = False
    ) -> str:
        """Check a reset token and, unless *validate_only*, store the new password."""

        email = self._signer.verify(token, RESET_PURPOSE)
        if validate_only:
            return email
        if not password or len(password) < MIN_PASSWORD_LENGTH:
            raise AccountError(f"Password must be at least {MIN_PASSWORD_LENGTH} characters")
        user = self._identity.find_user_by_email(email)
        if user is None or not user.get("id"):
            raise AccountNotFound("User not found")
        self._identity.set_password(str(user["id"]), password)
        self._notify(
            email,
            f"{self._app_name} - Your password was changed",
            "<p>Your password was successfully reset.</p>",
        )
        return email

    def verify_account(self, token: Optional[str]) -> str:
        email = self._signer.verify(token, VERIFY_PURPOSE).lower()
        user = self._identity.find_user_by_email(email)
        if user is None:
            LOGGER.warning("No matching account found for %s", email)
            raise AccountNotFound("User not found")
        self._identity.confirm_user(str(user["id"]))
        LOGGER.info("Email verification updated for %s", email)
        return email

    def notify_profile_updated(
        self,
        email: str,
        full_name: str = "",
        changed_fields: Union[str, Iterable[str], None] = None,
    ) -> bool:
        if not email:
            raise AccountError("email required")
        if isinstance(changed_fields, str) or changed_fields is None:
            changed = changed_fields or ""
        else:
            changed = ", ".join(str(field) for field in changed_fields)
        body = (
            f"<p>Hello {html.escape(full_name or '')},</p>"
            "<p>Your account profile was recently updated. "
            f"Changed fields: {html.escape(changed)}</p>"
            "<p>If this wasn't you, please contact support immediately.</p>"
        )
        return self._notify(email, f"{self._app_name} - Profile changed", body)


__all__ = [
    "AccountService",
    "IdentityProviderClient",
    "MailDispatcher",
    "RESET_PURPOSE",
    "TokenSigner",
    "VERIFY_PURPOSE",
]
