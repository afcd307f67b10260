from datetime import datetime, timedelta, timezone
import logging
import secrets
from typing import Callable, Optional

import redis
from sqlalchemy import and_, delete, or_, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from app.config import Settings, settings as default_settings
from app.database import SessionFactory, SessionLocal, session_scope
from app.models.schema.otp import OtpEntry
from app.schemas.errors import ErrorCode, Outcome
from app.schemas.otp import OtpGenerateRequest, OtpIssued, OtpVerification
from app.services.audit import AuditEmitter
from app.services.event_types import OTP_EVENT_TYPES, resolve_event_type
from app.services.notifications import NotificationService
from app.services.rate_limit import FixedWindowRateLimiter
from app.services.roles import RoleApplicability
from app.services.users import UserDirectory, is_valid_contact

LOGGER = logging.getLogger(__name__)

MEDIA = ("EMAIL", "SMS", "WHATSAPP")
_MAX_CODE_DRAWS = 10


class _ReferenceInUse(Exception):
    pass


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _as_utc(value: datetime) -> datetime:
    # SQLite hands back naive datetimes; everything is stored in UTC.
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class OtpService:
    """Issues and verifies one-time passcodes.

    A record is PENDING until it is verified, expires, runs out of attempts, or
    is superseded by a newer code for the same user, contact and event type.
    Verification only ever moves a record forward through a conditional update
    on ``(verified, attempts)``, so concurrent checks cannot both succeed.
    """

    def __init__(
        self,
        *,
        users: UserDirectory,
        roles: RoleApplicability,
        limiter: FixedWindowRateLimiter,
        notifications: NotificationService,
        audit: AuditEmitter,
        settings: Settings = default_settings,
        session_factory: SessionFactory = SessionLocal,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._users = users
        self._roles = roles
        self._limiter = limiter
        self._notifications = notifications
        self._audit = audit
        self._settings = settings
        self._session_factory = session_factory
        self._clock = clock

    def generate_and_send_otp(self, request: OtpGenerateRequest) -> Outcome[OtpIssued]:
        medium = request.medium.upper()
        if medium not in MEDIA:
            return Outcome.failure(ErrorCode.VALIDATION_ERROR, f"Unsupported medium: {medium}")
        contact = self._users.normalize(medium, request.contact_address)
        if not is_valid_contact(medium, contact):
            return Outcome.failure(
                ErrorCode.VALIDATION_ERROR, f"Invalid contact address for {medium}"
            )
        event_type = resolve_event_type(request.event_type)
        if event_type not in OTP_EVENT_TYPES:
            return Outcome.failure(
                ErrorCode.VALIDATION_ERROR,
                f"{event_type.value} does not use one-time passcodes",
            )

        rate_key = f"otp_rate_limit:{contact}"
        if not self._limiter.check_and_increment(
            rate_key,
            self._settings.otp_rate_limit_window_seconds,
            self._settings.otp_rate_limit_max,
        ):
            return Outcome.failure(
                ErrorCode.RATE_LIMIT_EXCEEDED,
                "Too many OTP requests, try again later",
                retry_after_seconds=self._limiter.seconds_until_reset(rate_key),
            )

        user = self._users.get_user(request.user_id)
        if user is None:
            return Outcome.failure(ErrorCode.USER_NOT_FOUND, "User not found")
        if not user.role:
            return Outcome.failure(ErrorCode.ROLE_UNDEFINED, "User role is not defined")
        if not self._roles.is_applicable(event_type, user.role):
            return Outcome.failure(
                ErrorCode.ROLE_NOT_APPLICABLE,
                f"{event_type.value} is not applicable to role {user.role}",
            )

        if medium == "EMAIL":
            length = self._settings.otp_email_length
            ttl_seconds = self._settings.otp_email_ttl_seconds
        else:
            length = self._settings.otp_phone_length
            ttl_seconds = self._settings.otp_phone_ttl_seconds

        try:
            record_id, reference, expires_at, code = self._issue(
                user_id=user.id,
                contact=contact,
                event_type=event_type.value,
                medium=medium,
                length=length,
                ttl_seconds=ttl_seconds,
                reference=(request.transaction_reference or "").strip() or None,
            )
        except _ReferenceInUse:
            return Outcome.failure(
                ErrorCode.VALIDATION_ERROR, "Transaction reference is already in use"
            )

        self._audit.emit(
            "OTP_ISSUED",
            user_id=user.id,
            entity_type="OTP",
            entity_id=str(record_id),
            details={
                "event_type": event_type.value,
                "medium": medium,
                "transaction_reference": reference,
            },
        )

        warning = self._deliver(
            user=user,
            medium=medium,
            contact=contact,
            code=code,
            event_type=event_type,
            expires_at=expires_at,
            ttl_seconds=ttl_seconds,
            metadata=request.metadata,
        )
        return Outcome.success(
            OtpIssued(
                id=record_id,
                transaction_reference=reference,
                expires_at=expires_at,
                code=code,
                delivery_warning=warning,
            )
        )

    def verify_otp(self, transaction_reference: str, code: str) -> Outcome[OtpVerification]:
        reference = transaction_reference.strip()
        clean_code = code.strip()
        max_attempts = self._settings.otp_max_attempts

        # Each pass either settles the record or loses a race and re-reads it.
        for _ in range(max_attempts + 2):
            with session_scope(self._session_factory) as session:
                entry = session.execute(
                    select(OtpEntry).where(OtpEntry.transaction_reference == reference)
                ).scalar_one_or_none()
                if entry is None:
                    return Outcome.failure(ErrorCode.OTP_NOT_FOUND, "OTP not found")
                if entry.verified:
                    return Outcome.failure(
                        ErrorCode.ALREADY_VERIFIED, "OTP has already been verified"
                    )
                now = self._clock()
                if _as_utc(entry.expires_at) < now:
                    return Outcome.failure(
                        ErrorCode.EXPIRED, "OTP has expired", resend_otp=True
                    )
                if entry.attempts >= max_attempts:
                    return Outcome.failure(
                        ErrorCode.ATTEMPTS_EXHAUSTED,
                        "Maximum verification attempts exceeded",
                        resend_otp=True,
                        attempts_remaining=0,
                    )

                observed_attempts = entry.attempts
                matched = secrets.compare_digest(
                    entry.code.encode("utf-8"), clean_code.encode("utf-8")
                )
                values = {"attempts": observed_attempts + 1}
                if matched:
                    values.update(verified=True, verified_at=now)
                result = session.execute(
                    update(OtpEntry)
                    .where(
                        OtpEntry.id == entry.id,
                        OtpEntry.verified.is_(False),
                        OtpEntry.attempts == observed_attempts,
                    )
                    .values(**values)
                    .execution_options(synchronize_session=False)
                )
                if result.rowcount == 0:
                    LOGGER.info("OTP %s changed concurrently, re-reading", reference)
                    continue
                record_id = entry.id
                user_id = entry.user_id
                event_type = entry.event_type
                medium = entry.medium
                contact = entry.contact_address

            if matched:
                return self._verified(
                    record_id, reference, user_id, event_type, medium, contact, now
                )

            remaining = max(max_attempts - observed_attempts - 1, 0)
            self._audit.emit(
                "OTP_VERIFICATION_FAILED",
                user_id=user_id,
                entity_type="OTP",
                entity_id=str(record_id),
                details={"event_type": event_type, "attempts_remaining": remaining},
            )
            return Outcome.failure(
                ErrorCode.INVALID_CODE,
                "Invalid OTP code",
                resend_otp=remaining == 0,
                attempts_remaining=remaining,
            )

        raise RuntimeError(f"OTP {reference} kept changing during verification")

    def purge_expired(self, retention_days: Optional[int] = None) -> int:
        """Delete records that expired or were verified before the retention window."""
        days = self._settings.otp_retention_days if retention_days is None else retention_days
        cutoff = self._clock() - timedelta(days=days)
        with session_scope(self._session_factory) as session:
            result = session.execute(
                delete(OtpEntry).where(
                    or_(
                        OtpEntry.expires_at < cutoff,
                        and_(OtpEntry.verified.is_(True), OtpEntry.verified_at < cutoff),
                    )
                )
            )
            return result.rowcount

    def _issue(self, **fields) -> tuple[int, str, datetime, str]:
        try:
            return self._supersede_and_insert(**fields)
        except IntegrityError:
            # Another request issued for the same tuple first; supersede it.
            LOGGER.warning(
                "Concurrent OTP issuance for user=%s event=%s, retrying",
                fields["user_id"],
                fields["event_type"],
            )
            return self._supersede_and_insert(**fields)

    def _supersede_and_insert(
        self,
        *,
        user_id: str,
        contact: str,
        event_type: str,
        medium: str,
        length: int,
        ttl_seconds: int,
        reference: Optional[str],
    ) -> tuple[int, str, datetime, str]:
        now = self._clock()
        expires_at = now + timedelta(seconds=ttl_seconds)
        with session_scope(self._session_factory) as session:
            session.execute(
                delete(OtpEntry).where(
                    OtpEntry.user_id == user_id,
                    OtpEntry.contact_address == contact,
                    OtpEntry.event_type == event_type,
                    OtpEntry.verified.is_(False),
                )
            )
            if reference is not None:
                taken = session.execute(
                    select(OtpEntry.id).where(OtpEntry.transaction_reference == reference)
                ).first()
                if taken is not None:
                    raise _ReferenceInUse(reference)
            code = self._unique_code(session, contact, length, now)
            entry = OtpEntry(
                user_id=user_id,
                transaction_reference=reference or secrets.token_hex(16),
                contact_address=contact,
                code=code,
                event_type=event_type,
                medium=medium,
                expires_at=expires_at,
                verified=False,
                verified_at=None,
                attempts=0,
                created_at=now,
            )
            session.add(entry)
            session.flush()
            return entry.id, entry.transaction_reference, expires_at, code

    def _unique_code(self, session, contact: str, length: int, now: datetime) -> str:
        for _ in range(_MAX_CODE_DRAWS):
            code = self._generate_code(length)
            clash = session.execute(
                select(OtpEntry.id).where(
                    OtpEntry.contact_address == contact,
                    OtpEntry.code == code,
                    OtpEntry.verified.is_(False),
                    OtpEntry.expires_at > now,
                )
            ).first()
            if clash is None:
                return code
        raise RuntimeError(f"Could not draw a unique OTP code for {contact}")

    def _deliver(self, *, user, medium, contact, code, event_type, expires_at, ttl_seconds, metadata):
        try:
            report = self._notifications.deliver_otp(
                user=user,
                medium=medium,
                contact_address=contact,
                code=code,
                event_type=event_type,
                expires_at=expires_at,
                ttl_seconds=ttl_seconds,
                metadata=metadata,
            )
        except (SQLAlchemyError, redis.RedisError):
            LOGGER.exception("OTP delivery to %s could not be attempted", contact)
            return f"{ErrorCode.DISPATCH_FAILURE.value}: OTP delivery could not be attempted"
        if report.warning:
            return report.warning
        if report.status == "SKIPPED":
            return "OTP delivery skipped: recipient has opted out of this channel"
        if report.status == "FAILED":
            return "OTP delivery failed and was queued for retry"
        return None

    def _verified(self, record_id, reference, user_id, event_type, medium, contact, now):
        try:
            self._users.mark_contact_verified(user_id, medium, contact)
        except SQLAlchemyError:
            LOGGER.exception("Failed to flag verified contact for user %s", user_id)
        self._audit.emit(
            "OTP_VERIFIED",
            user_id=user_id,
            entity_type="OTP",
            entity_id=str(record_id),
            details={"event_type": event_type, "transaction_reference": reference},
        )
        return Outcome.success(
            OtpVerification(
                verified=True,
                user_id=user_id,
                event_type=event_type,
                transaction_reference=reference,
                verified_at=now,
            )
        )

    @staticmethod
    def _generate_code(length: int) -> str:
        value = secrets.randbelow(10**length)
        return str(value).zfill(length)
