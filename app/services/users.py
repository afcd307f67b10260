from dataclasses import dataclass
from datetime import datetime, timezone
import re
from typing import Iterable, Optional

from sqlalchemy import func, select

from app.database import SessionFactory, SessionLocal, session_scope
from app.models.schema.user import UserEntry
from app.services.roles import normalize_role

EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")

_PHONE_PUNCTUATION = (" ", "-", "(", ")", ".", "+")


@dataclass(frozen=True)
class UserProfile:
    id: str
    name: Optional[str]
    email: Optional[str]
    phone_number: Optional[str]
    role: Optional[str]
    notifications_enabled: bool
    notification_preference: Optional[str]


def normalize_email(email: str) -> str:
    return email.strip().lower()


def normalize_phone(phone_number: str, default_country_code: str = "") -> str:
    """Return ``+<digits>``; local numbers get ``default_country_code``.

    ``08012345678`` drops its trunk ``0`` and ``8012345678`` is taken as a
    national number, so both become ``+2348012345678`` for ``+234``.
    """
    raw = phone_number.strip()
    digits = re.sub(r"\D", "", raw)
    if not digits:
        return ""
    if raw.startswith("+"):
        return f"+{digits}"
    country = re.sub(r"\D", "", default_country_code)
    if country:
        if digits.startswith("0"):
            digits = f"{country}{digits[1:]}"
        elif len(digits) == 10:
            digits = f"{country}{digits}"
    return f"+{digits}"


def normalize_contact(medium: str, contact_address: str, default_country_code: str = "") -> str:
    if medium == "EMAIL":
        return normalize_email(contact_address)
    return normalize_phone(contact_address, default_country_code)


def is_valid_email(email: str) -> bool:
    return bool(EMAIL_PATTERN.match(email))


def is_valid_phone(phone_number: str) -> bool:
    digits = re.sub(r"\D", "", phone_number)
    return 10 <= len(digits) <= 15


def is_valid_contact(medium: str, contact_address: str) -> bool:
    if medium == "EMAIL":
        return is_valid_email(contact_address)
    return is_valid_phone(contact_address)


def _accepts_channel(entry: UserEntry, channel: str) -> bool:
    if not entry.notifications_enabled:
        return False
    preference = (entry.notification_preference or "").upper()
    return preference in {"", "ALL", channel}


def _to_profile(entry: UserEntry) -> UserProfile:
    return UserProfile(
        id=entry.id,
        name=entry.name,
        email=entry.email,
        phone_number=entry.phone_number,
        role=normalize_role(entry.role),
        notifications_enabled=bool(entry.notifications_enabled),
        notification_preference=entry.notification_preference,
    )


def _phone_digits(column):
    expression = column
    for character in _PHONE_PUNCTUATION:
        expression = func.replace(expression, character, "")
    return expression


def _normalized_role(column):
    return func.upper(func.replace(func.trim(column), " ", "_"))


class UserDirectory:
    """Read access to users plus the verified-contact flags set after an OTP check.

    Stored emails and phone numbers may be in any format; every comparison is
    made on the normalized form.
    """

    def __init__(
        self,
        session_factory: SessionFactory = SessionLocal,
        default_country_code: str = "",
    ) -> None:
        self._session_factory = session_factory
        self._default_country_code = default_country_code

    def normalize(self, channel: str, address: str) -> str:
        return normalize_contact(
            "EMAIL" if channel == "EMAIL" else "SMS", address, self._default_country_code
        )

    def get_user(self, user_id: str) -> Optional[UserProfile]:
        with session_scope(self._session_factory) as session:
            entry = session.get(UserEntry, user_id)
            if entry is None:
                return None
            return _to_profile(entry)

    def contacts_for_user_ids(self, channel: str, user_ids: Iterable[str]) -> list[str]:
        ids = list(dict.fromkeys(user_ids))
        if not ids:
            return []
        with session_scope(self._session_factory) as session:
            entries = session.execute(
                select(UserEntry).where(UserEntry.id.in_(ids))
            ).scalars().all()
            return self._contacts(channel, entries)

    def contacts_for_roles(self, channel: str, roles: Iterable[str]) -> list[str]:
        role_names = {normalize_role(role) for role in roles if normalize_role(role)}
        if not role_names:
            return []
        with session_scope(self._session_factory) as session:
            entries = session.execute(
                select(UserEntry).where(_normalized_role(UserEntry.role).in_(role_names))
            ).scalars().all()
            return self._contacts(channel, entries)

    def filter_recipients(
        self,
        channel: str,
        addresses: Iterable[str],
        applicable_roles: Optional[Iterable[str]] = None,
    ) -> list[str]:
        """Drop addresses whose owner opted out of ``channel`` or has a non-applicable role.

        With ``applicable_roles`` only addresses owned by a known user are kept.
        Without it, addresses that belong to no user pass through.
        """
        normalized = list(
            dict.fromkeys(
                self.normalize(channel, address)
                for address in addresses
                if address and address.strip()
            )
        )
        normalized = [address for address in normalized if address]
        if not normalized:
            return []
        allowed_roles = (
            {normalize_role(role) for role in applicable_roles}
            if applicable_roles is not None
            else None
        )
        owners = self._owners(channel, normalized)

        kept = []
        for address in normalized:
            owner = owners.get(address)
            if owner is None:
                if allowed_roles is None:
                    kept.append(address)
                continue
            if not _accepts_channel(owner, channel):
                continue
            if allowed_roles is not None and normalize_role(owner.role) not in allowed_roles:
                continue
            kept.append(address)
        return kept

    def mark_contact_verified(self, user_id: str, medium: str, contact_address: str) -> bool:
        now = datetime.now(timezone.utc)
        with session_scope(self._session_factory) as session:
            entry = session.get(UserEntry, user_id)
            if entry is None:
                return False
            if medium == "EMAIL":
                if not entry.email or self.normalize("EMAIL", entry.email) != contact_address:
                    return False
                entry.email_verified = True
            else:
                if (
                    not entry.phone_number
                    or self.normalize(medium, entry.phone_number) != contact_address
                ):
                    return False
                entry.phone_verified = True
            entry.updated_at = now
            return True

    def _owners(self, channel: str, normalized: list[str]) -> dict[str, UserEntry]:
        if channel == "EMAIL":
            column = UserEntry.email
            condition = func.lower(func.trim(column)).in_(normalized)
        else:
            column = UserEntry.phone_number
            condition = _phone_digits(column).in_(
                {key for address in normalized for key in self._phone_keys(address)}
            )
        with session_scope(self._session_factory) as session:
            entries = session.execute(select(UserEntry).where(condition)).scalars().all()
        owners = {}
        for entry in entries:
            owners.setdefault(self.normalize(channel, getattr(entry, column.key)), entry)
        return owners

    def _phone_keys(self, normalized_phone: str) -> set[str]:
        # Digit strings a stored number may reduce to: international, national, trunk.
        digits = normalized_phone.lstrip("+")
        keys = {digits}
        country = re.sub(r"\D", "", self._default_country_code)
        if country and digits.startswith(country):
            national = digits[len(country):]
            keys.update({national, f"0{national}"})
        return keys

    def _contacts(self, channel: str, entries: Iterable[UserEntry]) -> list[str]:
        if channel == "EMAIL":
            values = [entry.email for entry in entries if entry.email]
        else:
            values = [entry.phone_number for entry in entries if entry.phone_number]
        return list(dict.fromkeys(self.normalize(channel, value) for value in values))
