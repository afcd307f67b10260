from __future__ import annotations

import base64
from email.message import EmailMessage
from email.utils import make_msgid
import json
import logging
from datetime import datetime, timedelta, timezone
from pathlib import Path
import smtplib
from typing import Any, Optional
from urllib.error import HTTPError, URLError
from urllib.parse import urlencode
from urllib.request import Request, urlopen

from app.config import Settings
from app.schemas.email import EmailSendError

LOGGER = logging.getLogger(__name__)

GMAIL_SEND_ENDPOINT = "https://gmail.googleapis.com/gmail/v1/users/me/messages/send"


class GmailTransport:
    """Sends HTML mail through the Gmail API using a refreshable OAuth token file."""

    def __init__(self, settings: Settings) -> None:
        self._settings = settings

    def send_mail(
        self, to: list[str], subject: str, html: str, sender: Optional[str] = None
    ) -> str:
        sender = sender or self._settings.email_sender
        if not sender:
            raise EmailSendError("Email sender is not configured")
        if not to:
            raise EmailSendError("No recipients")

        raw_message = _build_raw_message(sender, to, subject, html)
        token = self._get_access_token()
        payload = json.dumps({"raw": raw_message}).encode("utf-8")
        request = Request(
            GMAIL_SEND_ENDPOINT,
            data=payload,
            headers={
                "Authorization": f"Bearer {token}",
                "Content-Type": "application/json",
            },
            method="POST",
        )

        try:
            with urlopen(request, timeout=self._settings.dispatch_timeout_seconds) as response:
                data = json.loads(response.read().decode("utf-8") or "{}")
        except HTTPError as exc:
            error_body = exc.read().decode("utf-8", errors="replace")
            LOGGER.error("Gmail API error: %s", error_body)
            raise EmailSendError("Failed to send email") from exc
        except (URLError, TimeoutError) as exc:
            raise EmailSendError("Failed to reach Gmail API") from exc
        return data.get("id", "")

    def _token_file_path(self) -> Path:
        if self._settings.gmail_token_file:
            return Path(self._settings.gmail_token_file)
        root = Path(__file__).resolve().parents[2]
        return root / "credentials" / "token.json"

    def _credentials_file_path(self) -> Path:
        if self._settings.gmail_credentials_file:
            return Path(self._settings.gmail_credentials_file)
        root = Path(__file__).resolve().parents[2]
        return root / "credentials" / "credentials.json"

    def _get_access_token(self) -> str:
        token_path = self._token_file_path()
        token_data = _load_json(token_path)

        token = token_data.get("token")
        expiry = _parse_expiry(token_data.get("expiry"))
        if token and expiry and expiry > datetime.now(timezone.utc) + timedelta(minutes=1):
            return token

        refresh_token = token_data.get("refresh_token")
        if not refresh_token:
            raise EmailSendError("Gmail refresh token is missing")

        client_id, client_secret = self._resolve_client_details(token_data)
        token_uri = token_data.get("token_uri") or "https://oauth2.googleapis.com/token"
        payload = urlencode(
            {
                "client_id": client_id,
                "client_secret": client_secret,
                "refresh_token": refresh_token,
                "grant_type": "refresh_token",
            }
        ).encode("utf-8")

        request = Request(token_uri, data=payload, method="POST")
        try:
            with urlopen(request, timeout=self._settings.dispatch_timeout_seconds) as response:
                data = json.loads(response.read().decode("utf-8"))
        except HTTPError as exc:
            error_body = exc.read().decode("utf-8", errors="replace")
            LOGGER.error("Gmail token refresh error: %s", error_body)
            raise EmailSendError("Failed to refresh Gmail token") from exc
        except (URLError, TimeoutError) as exc:
            raise EmailSendError("Failed to reach Gmail token endpoint") from exc

        access_token = data.get("access_token")
        expires_in = int(data.get("expires_in", 3600))
        if not access_token:
            raise EmailSendError("Gmail token refresh did not return an access token")

        token_data["token"] = access_token
        token_data["expiry"] = (
            datetime.now(timezone.utc) + timedelta(seconds=expires_in)
        ).isoformat()
        token_path.write_text(json.dumps(token_data), encoding="utf-8")
        return access_token

    def _resolve_client_details(self, token_data: dict[str, Any]) -> tuple[str, str]:
        client_id = token_data.get("client_id")
        client_secret = token_data.get("client_secret")
        if client_id and client_secret:
            return client_id, client_secret

        credentials = _load_json(self._credentials_file_path())
        installed = credentials.get("installed", {})
        client_id = installed.get("client_id") or credentials.get("client_id")
        client_secret = installed.get("client_secret") or credentials.get("client_secret")
        if not client_id or not client_secret:
            raise EmailSendError("Gmail client credentials are missing")
        return client_id, client_secret


class SmtpTransport:
    def __init__(self, settings: Settings) -> None:
        self._settings = settings

    def send_mail(
        self, to: list[str], subject: str, html: str, sender: Optional[str] = None
    ) -> str:
        settings = self._settings
        sender = sender or settings.email_sender or settings.smtp_user
        if not settings.smtp_host or not sender:
            raise EmailSendError("SMTP is not configured")
        if not to:
            raise EmailSendError("No recipients")

        message = EmailMessage()
        message["From"] = sender
        message["To"] = ", ".join(to)
        message["Subject"] = subject
        message["Message-ID"] = make_msgid()
        message.set_content("This message requires an HTML-capable mail client.")
        message.add_alternative(html, subtype="html")

        try:
            with smtplib.SMTP(
                settings.smtp_host,
                settings.smtp_port,
                timeout=settings.dispatch_timeout_seconds,
            ) as client:
                if settings.smtp_use_tls:
                    client.starttls()
                if settings.smtp_user:
                    client.login(settings.smtp_user, settings.smtp_password)
                client.send_message(message)
        except (smtplib.SMTPException, OSError) as exc:
            LOGGER.error("SMTP send failed to=%s error=%s", to, exc)
            raise EmailSendError("Failed to send email over SMTP") from exc
        return message["Message-ID"]


def build_email_transport(settings: Settings):
    if settings.email_transport == "smtp":
        return SmtpTransport(settings)
    if settings.email_transport == "gmail":
        return GmailTransport(settings)
    raise ValueError(f"Unknown EMAIL_TRANSPORT: {settings.email_transport}")


def _build_raw_message(sender: str, recipients: list[str], subject: str, html: str) -> str:
    lines = [
        f"From: {sender}",
        f"To: {', '.join(recipients)}",
        f"Subject: {subject}",
        "MIME-Version: 1.0",
        "Content-Type: text/html; charset=utf-8",
        "",
        html,
    ]
    message = "\r\n".join(lines)
    # Gmail API expects base64url-encoded RFC 2822 content.
    return base64.urlsafe_b64encode(message.encode("utf-8")).decode("ascii")


def _parse_expiry(raw_value: Optional[str]) -> Optional[datetime]:
    if not raw_value:
        return None
    try:
        return datetime.fromisoformat(raw_value.replace("Z", "+00:00"))
    except ValueError:
        return None


def _load_json(path: Path) -> dict[str, Any]:
    if not path.exists():
        raise EmailSendError(f"Missing Gmail file: {path}")
    with path.open("r", encoding="utf-8") as handle:
        return json.load(handle)
