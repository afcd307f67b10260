"""Compiled-in templates used when no stored template applies.

Placeholders use ``{name}`` and are filled by ``render_template``; missing
values render as an empty string.
"""

from app.services.event_types import EventType

_LAYOUT = (
    "<div style=\"font-family: Arial, sans-serif; max-width: 600px; margin: auto;\">"
    "<h2 style=\"color: #2b6cb0;\">{brandName}</h2>"
    "{content}"
    "<p style=\"color: #718096; font-size: 12px;\">Need help? Contact "
    "<a href=\"mailto:{supportEmail}\">{supportEmail}</a>.</p>"
    "</div>"
)


def _layout(content: str) -> str:
    return _LAYOUT.replace("{content}", content)


_OTP_CODE_BLOCK = (
    "<p style=\"font-size: 24px; font-weight: bold; letter-spacing: 4px;\">{otpCode}</p>"
    "<p>This code expires in {expiresInMinutes} minutes. "
    "If you did not request it, you can ignore this email.</p>"
)

OTP_EMAIL_TEMPLATES = {
    EventType.OTP_VERIFICATION: (
        "Your {brandName} verification code",
        _layout("<p>Hello {name},</p><p>Your one-time code is:</p>" + _OTP_CODE_BLOCK),
    ),
    EventType.ACCOUNT_VERIFICATION: (
        "Verify your {brandName} account",
        _layout(
            "<p>Hello {name},</p><p>Use this code to verify your account:</p>"
            + _OTP_CODE_BLOCK
        ),
    ),
    EventType.PHONE_VERIFICATION: (
        "Verify your {brandName} phone number",
        _layout(
            "<p>Hello {name},</p><p>Use this code to verify your phone number:</p>"
            + _OTP_CODE_BLOCK
        ),
    ),
    EventType.PASSWORD_RESET: (
        "Reset your {brandName} password",
        _layout(
            "<p>Hello {name},</p><p>Use this code to reset your password:</p>"
            + _OTP_CODE_BLOCK
        ),
    ),
    EventType.ACCOUNT_DELETION_REQUEST: (
        "Confirm your {brandName} account deletion",
        _layout(
            "<p>Hello {name},</p><p>We received a request to delete your account. "
            "Confirm it with this code:</p>" + _OTP_CODE_BLOCK
        ),
    ),
    EventType.MIGRATION_VERIFICATION: (
        "Confirm your {brandName} delivery agent migration",
        _layout(
            "<p>Hello {name},</p><p>Use this code to confirm your migration to "
            "delivery agent:</p>" + _OTP_CODE_BLOCK
        ),
    ),
}

EVENT_EMAIL_TEMPLATES = {
    EventType.PASSWORD_RESET: (
        "Your {brandName} password was reset",
        _layout(
            "<p>Hello {name},</p><p>Your password was reset successfully. "
            "If this was not you, contact support immediately.</p>"
        ),
    ),
    EventType.PASSWORD_CHANGE: (
        "Your {brandName} password was changed",
        _layout(
            "<p>Hello {name},</p><p>Your password was changed. "
            "If this was not you, contact support immediately.</p>"
        ),
    ),
    EventType.REGISTRATION_SUCCESS: (
        "Welcome to {brandName}",
        _layout(
            "<p>Hello {name},</p><p>Your account has been created. "
            "Verify your email to get started.</p>"
        ),
    ),
    EventType.REGISTRATION_FAILED: (
        "{brandName} registration failed",
        _layout(
            "<p>Hello {name},</p><p>We could not complete your registration. "
            "{message}</p>"
        ),
    ),
    EventType.LOGIN_SUCCESS: (
        "New sign-in to your {brandName} account",
        _layout(
            "<p>Hello {name},</p><p>Your account was signed in at {loginTime}. "
            "If this was not you, reset your password.</p>"
        ),
    ),
    EventType.ACCOUNT_DELETION_REQUEST: (
        "Your {brandName} account deletion request",
        _layout(
            "<p>Hello {name},</p><p>Your account deletion request was received "
            "and will be processed shortly.</p>"
        ),
    ),
    EventType.EMAIL_VERIFICATION_REQUIRED: (
        "Verify your {brandName} email",
        _layout("<p>Hello {name},</p><p>Please verify your email address to continue.</p>"),
    ),
}

GENERIC_EMAIL_TEMPLATE = (
    "{brandName}: {eventTitle}",
    _layout("<p>Hello {name},</p><p>{message}</p>"),
)

OTP_SMS_TEMPLATE = (
    "Your {brandName} code is {otpCode}. It expires in {expiresInMinutes} minutes."
)

EVENT_SMS_TEMPLATES = {
    EventType.PASSWORD_RESET: "Your {brandName} password was reset successfully.",
    EventType.LOGIN_SUCCESS: "New sign-in to your {brandName} account at {loginTime}.",
    EventType.REGISTRATION_SUCCESS: "Welcome to {brandName}, {name}!",
}

GENERIC_SMS_TEMPLATE = "{brandName}: {message}"


def default_email_template(event_type: EventType, otp: bool = False) -> tuple[str, str]:
    if otp:
        return OTP_EMAIL_TEMPLATES.get(
            event_type, OTP_EMAIL_TEMPLATES[EventType.OTP_VERIFICATION]
        )
    return EVENT_EMAIL_TEMPLATES.get(event_type, GENERIC_EMAIL_TEMPLATE)


def default_sms_template(event_type: EventType, otp: bool = False) -> str:
    if otp:
        return OTP_SMS_TEMPLATE
    return EVENT_SMS_TEMPLATES.get(event_type, GENERIC_SMS_TEMPLATE)
