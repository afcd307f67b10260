from __future__ import annotations

import base64
import json
import logging
import re
from urllib.error import HTTPError, URLError
from urllib.parse import urlencode
from urllib.request import Request, urlopen

from app.config import Settings

LOGGER = logging.getLogger(__name__)

TWILIO_MESSAGES_ENDPOINT = "https://api.twilio.com/2010-04-01/Accounts/{sid}/Messages.json"


class SmsSendError(RuntimeError):
    pass


class TwilioTransport:
    """Sends text messages through Twilio; ``whatsapp=True`` uses the WhatsApp sender."""

    def __init__(self, settings: Settings, whatsapp: bool = False) -> None:
        self._settings = settings
        self._whatsapp = whatsapp

    def send_sms(self, to: str, message: str) -> str:
        settings = self._settings
        account_sid = settings.twilio_account_sid
        auth_token = settings.twilio_auth_token
        from_phone = (
            settings.twilio_whatsapp_number if self._whatsapp else settings.twilio_phone_number
        )
        if not account_sid or not auth_token or not from_phone:
            raise SmsSendError("Twilio is not configured")

        to_number = _normalize_e164(to, settings.default_country_code)
        from_number = _normalize_e164(from_phone, settings.default_country_code)
        if self._whatsapp:
            to_number = f"whatsapp:{to_number}"
            from_number = f"whatsapp:{from_number}"
        LOGGER.info("Sending message to=%s from=%s", to_number, from_number)

        payload = urlencode({"To": to_number, "From": from_number, "Body": message}).encode(
            "utf-8"
        )
        token = base64.b64encode(f"{account_sid}:{auth_token}".encode("utf-8")).decode(
            "ascii"
        )
        request = Request(
            TWILIO_MESSAGES_ENDPOINT.format(sid=account_sid),
            data=payload,
            headers={
                "Authorization": f"Basic {token}",
                "Content-Type": "application/x-www-form-urlencoded",
            },
            method="POST",
        )
        try:
            with urlopen(request, timeout=settings.dispatch_timeout_seconds) as response:
                data = json.loads(response.read().decode("utf-8") or "{}")
        except HTTPError as exc:
            error_body = exc.read().decode("utf-8", errors="replace")
            LOGGER.error(
                "Twilio API error to=%s from=%s response=%s",
                to_number,
                from_number,
                error_body,
            )
            raise SmsSendError("Failed to send message") from exc
        except (URLError, TimeoutError) as exc:
            raise SmsSendError("Failed to reach Twilio API") from exc
        return data.get("sid", "")


def _normalize_e164(phone_number: str, default_country_code: str) -> str:
    raw = phone_number.strip()
    digits = re.sub(r"\D", "", raw)
    if not digits:
        raise SmsSendError("Phone number is missing")
    if len(digits) == 10 and not raw.startswith("+"):
        default_code = re.sub(r"\D", "", default_country_code)
        if not default_code:
            raise SmsSendError("Default country code is not configured")
        digits = f"{default_code}{digits}"
    if len(digits) < 10 or len(digits) > 15:
        raise SmsSendError("Phone number must include a valid country code")
    return f"+{digits}"
