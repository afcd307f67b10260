from datetime import datetime, timezone
from enum import Enum
import logging

from sqlalchemy.exc import IntegrityError

from app.database import SessionFactory, SessionLocal, session_scope
from app.models.db_operation import add_record, select_one_or_none

LOGGER = logging.getLogger(__name__)


class EventType(str, Enum):
    NEW_ORDER = "NEW_ORDER"
    ORDER_UPDATE = "ORDER_UPDATE"
    ORDER_CANCELLED = "ORDER_CANCELLED"
    FEEDBACK_SUBMITTED = "FEEDBACK_SUBMITTED"
    PASSWORD_CHANGE = "PASSWORD_CHANGE"
    WALLET_EVENT = "WALLET_EVENT"
    PREFERENCE_UPDATE = "PREFERENCE_UPDATE"
    DISCOUNT = "DISCOUNT"
    USER_REGISTRATION = "USER_REGISTRATION"
    PURCHASE = "PURCHASE"
    OTP_VERIFICATION = "OTP_VERIFICATION"
    ACCOUNT_VERIFICATION = "ACCOUNT_VERIFICATION"
    PHONE_VERIFICATION = "PHONE_VERIFICATION"
    MIGRATION_VERIFICATION = "MIGRATION_VERIFICATION"
    PROFILE_UPDATE = "PROFILE_UPDATE"
    ORDER_CONFIRMED = "ORDER_CONFIRMED"
    DELIVERY_ASSIGNED = "DELIVERY_ASSIGNED"
    DELIVERY_STARTED = "DELIVERY_STARTED"
    DELIVERY_COMPLETED = "DELIVERY_COMPLETED"
    PAYMENT_SUCCESS = "PAYMENT_SUCCESS"
    PAYMENT_FAILED = "PAYMENT_FAILED"
    PROMO_OFFER = "PROMO_OFFER"
    FLASH_SALE = "FLASH_SALE"
    REFERRAL_INVITE = "REFERRAL_INVITE"
    VENDOR_PROMOTION = "VENDOR_PROMOTION"
    APP_UPDATE = "APP_UPDATE"
    MAINTENANCE_SCHEDULED = "MAINTENANCE_SCHEDULED"
    MAINTENANCE_COMPLETED = "MAINTENANCE_COMPLETED"
    PRIVACY_POLICY_UPDATE = "PRIVACY_POLICY_UPDATE"
    SECURITY_ALERT = "SECURITY_ALERT"
    PRICE_UPDATE = "PRICE_UPDATE"
    REGULATORY_NEWS = "REGULATORY_NEWS"
    AREA_SPECIFIC_ALERT = "AREA_SPECIFIC_ALERT"
    GENERAL_ANNOUNCEMENT = "GENERAL_ANNOUNCEMENT"
    VENDOR_STATUS_UPDATE = "VENDOR_STATUS_UPDATE"
    WALLET_TRANSACTION = "WALLET_TRANSACTION"
    ACCOUNT_DELETION_REQUEST = "ACCOUNT_DELETION_REQUEST"
    PASSWORD_RESET = "PASSWORD_RESET"
    REGISTRATION_SUCCESS = "REGISTRATION_SUCCESS"
    REGISTRATION_FAILED = "REGISTRATION_FAILED"
    LOGIN_SUCCESS = "LOGIN_SUCCESS"
    WEBHOOK_FAILED = "WEBHOOK_FAILED"
    OTHERS = "OTHERS"
    EMAIL_VERIFICATION_REQUIRED = "EMAIL_VERIFICATION_REQUIRED"


class NotificationCategory(str, Enum):
    TRANSACTIONAL = "TRANSACTIONAL"
    MARKETING = "MARKETING"
    OPERATIONAL = "OPERATIONAL"
    INFORMATIONAL = "INFORMATIONAL"


OTP_EVENT_TYPES = frozenset(
    {
        EventType.OTP_VERIFICATION,
        EventType.ACCOUNT_VERIFICATION,
        EventType.PHONE_VERIFICATION,
        EventType.PASSWORD_RESET,
        EventType.ACCOUNT_DELETION_REQUEST,
        EventType.MIGRATION_VERIFICATION,
    }
)

# Free-text names seen from callers; canonical names are added below.
_ALIASES = {
    "password change": EventType.PASSWORD_CHANGE,
    "wallet transaction": EventType.WALLET_TRANSACTION,
    "deposit": EventType.WALLET_TRANSACTION,
    "deduction": EventType.WALLET_TRANSACTION,
    "refund": EventType.WALLET_TRANSACTION,
    "wallet event": EventType.WALLET_EVENT,
    "user registration": EventType.USER_REGISTRATION,
    "account deletion": EventType.ACCOUNT_DELETION_REQUEST,
    "account deletion request": EventType.ACCOUNT_DELETION_REQUEST,
    "purchase": EventType.PURCHASE,
    "order": EventType.PURCHASE,
    "new order": EventType.NEW_ORDER,
    "order update": EventType.ORDER_UPDATE,
    "otp": EventType.OTP_VERIFICATION,
    "otp verification": EventType.OTP_VERIFICATION,
    "account verification": EventType.ACCOUNT_VERIFICATION,
    "phone verification": EventType.PHONE_VERIFICATION,
    "migration verification": EventType.MIGRATION_VERIFICATION,
    "profile update": EventType.PROFILE_UPDATE,
    "order confirmed": EventType.ORDER_CONFIRMED,
    "order cancelled": EventType.ORDER_CANCELLED,
    "delivery assigned": EventType.DELIVERY_ASSIGNED,
    "delivery started": EventType.DELIVERY_STARTED,
    "delivery completed": EventType.DELIVERY_COMPLETED,
    "payment success": EventType.PAYMENT_SUCCESS,
    "payment failed": EventType.PAYMENT_FAILED,
    "promo offer": EventType.PROMO_OFFER,
    "flash sale": EventType.FLASH_SALE,
    "referral invite": EventType.REFERRAL_INVITE,
    "vendor promotion": EventType.VENDOR_PROMOTION,
    "app update": EventType.APP_UPDATE,
    "maintenance scheduled": EventType.MAINTENANCE_SCHEDULED,
    "maintenance completed": EventType.MAINTENANCE_COMPLETED,
    "privacy policy update": EventType.PRIVACY_POLICY_UPDATE,
    "security alert": EventType.SECURITY_ALERT,
    "price update": EventType.PRICE_UPDATE,
    "regulatory news": EventType.REGULATORY_NEWS,
    "area specific alert": EventType.AREA_SPECIFIC_ALERT,
    "general announcement": EventType.GENERAL_ANNOUNCEMENT,
    "vendor status update": EventType.VENDOR_STATUS_UPDATE,
    "password reset": EventType.PASSWORD_RESET,
    "registration success": EventType.REGISTRATION_SUCCESS,
    "registration failed": EventType.REGISTRATION_FAILED,
    "login success": EventType.LOGIN_SUCCESS,
    "email verification required": EventType.EMAIL_VERIFICATION_REQUIRED,
    "webhook failed": EventType.WEBHOOK_FAILED,
    "feedback submitted": EventType.FEEDBACK_SUBMITTED,
    "preference update": EventType.PREFERENCE_UPDATE,
    "discount": EventType.DISCOUNT,
    "others": EventType.OTHERS,
}

EVENT_TYPE_ALIASES = {
    **{member.value.lower(): member for member in EventType},
    **_ALIASES,
}

_CATEGORY_MEMBERS = {
    NotificationCategory.MARKETING: {
        EventType.DISCOUNT,
        EventType.PROMO_OFFER,
        EventType.FLASH_SALE,
        EventType.REFERRAL_INVITE,
        EventType.VENDOR_PROMOTION,
    },
    NotificationCategory.OPERATIONAL: {
        EventType.APP_UPDATE,
        EventType.MAINTENANCE_SCHEDULED,
        EventType.MAINTENANCE_COMPLETED,
        EventType.PRIVACY_POLICY_UPDATE,
        EventType.SECURITY_ALERT,
    },
    NotificationCategory.INFORMATIONAL: {
        EventType.PRICE_UPDATE,
        EventType.REGULATORY_NEWS,
        EventType.AREA_SPECIFIC_ALERT,
        EventType.GENERAL_ANNOUNCEMENT,
        EventType.VENDOR_STATUS_UPDATE,
        EventType.OTHERS,
    },
}

EVENT_CATEGORIES = {
    event_type: next(
        (
            category
            for category, members in _CATEGORY_MEMBERS.items()
            if event_type in members
        ),
        NotificationCategory.TRANSACTIONAL,
    )
    for event_type in EventType
}


def resolve_event_type(raw_name) -> EventType:
    """Map a free-text event name onto the closed set; unknown names become OTHERS."""
    if isinstance(raw_name, EventType):
        return raw_name
    if not raw_name or not isinstance(raw_name, str):
        return EventType.OTHERS
    key = " ".join(raw_name.strip().replace("_", " ").split()).lower()
    return EVENT_TYPE_ALIASES.get(
        key, EVENT_TYPE_ALIASES.get(raw_name.strip().lower(), EventType.OTHERS)
    )


def is_otp_event(event_type: EventType) -> bool:
    return event_type in OTP_EVENT_TYPES


def category_for(event_type: EventType) -> NotificationCategory:
    return EVENT_CATEGORIES[event_type]


class EventTypeStore:
    def __init__(self, session_factory: SessionFactory = SessionLocal) -> None:
        self._session_factory = session_factory

    def ensure_exists(
        self, name: str, created_by: str, description: str | None = None
    ) -> str:
        event_type = resolve_event_type(name)
        existing = self.get_id(event_type)
        if existing is not None:
            return existing

        now = datetime.now(timezone.utc)
        try:
            with session_scope(self._session_factory) as session:
                entry = add_record(
                    session,
                    "event_type",
                    name=event_type.value,
                    description=description,
                    created_by=created_by,
                    created_at=now,
                )
                LOGGER.info("Created event type %s", event_type.value)
                return entry.id
        except IntegrityError:
            # A concurrent creator won the insert; read its row back.
            LOGGER.info("Event type %s created concurrently", event_type.value)
            existing = self.get_id(event_type)
            if existing is None:
                raise
            return existing

    def get_id(self, event_type: EventType) -> str | None:
        with session_scope(self._session_factory) as session:
            entry = select_one_or_none(session, "event_type", name=event_type.value)
            return None if entry is None else entry.id

    def update_description(self, name: str, description: str | None) -> bool:
        event_type = resolve_event_type(name)
        with session_scope(self._session_factory) as session:
            entry = select_one_or_none(session, "event_type", name=event_type.value)
            if entry is None:
                return False
            entry.description = description
            return True


def _check_alias_table() -> None:
    unknown = [
        alias for alias, member in EVENT_TYPE_ALIASES.items()
        if not isinstance(member, EventType)
    ]
    if unknown:
        raise RuntimeError(f"Aliases map to unknown event types: {unknown}")


_check_alias_table()
