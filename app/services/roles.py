from enum import Enum
import logging
import threading
from typing import Iterable, Optional

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError

from app.database import SessionFactory, SessionLocal, session_scope
from app.models.db_operation import add_record, delete_records, select_one_or_none
from app.models.schema.event_type import EventTypeEntry, EventTypeRoleEntry
from app.services.event_types import EventType, resolve_event_type

LOGGER = logging.getLogger(__name__)


class Role(str, Enum):
    CUSTOMER = "CUSTOMER"
    VENDOR = "VENDOR"
    DELIVERY_AGENT = "DELIVERY_AGENT"
    ADMIN = "ADMIN"
    MANAGER = "MANAGER"
    SUPERVISOR = "SUPERVISOR"
    FINANCE_MANAGER = "FINANCE_MANAGER"
    STAFF = "STAFF"
    SERVICE_REP = "SERVICE_REP"


ALL_ROLES = frozenset(Role)

_ORDER_ROLES = frozenset({Role.CUSTOMER, Role.VENDOR, Role.ADMIN, Role.SERVICE_REP})
_ACCOUNT_ROLES = frozenset(
    {Role.CUSTOMER, Role.VENDOR, Role.DELIVERY_AGENT, Role.ADMIN, Role.SERVICE_REP}
)
_DELIVERY_ROLES = frozenset({Role.DELIVERY_AGENT, Role.CUSTOMER, Role.ADMIN})
_PAYMENT_ROLES = frozenset(
    {Role.CUSTOMER, Role.VENDOR, Role.FINANCE_MANAGER, Role.ADMIN}
)
_BROADCAST_ROLES = frozenset(
    {Role.CUSTOMER, Role.VENDOR, Role.DELIVERY_AGENT, Role.STAFF, Role.SERVICE_REP}
)
_OPERATIONS_ROLES = frozenset(
    {Role.ADMIN, Role.MANAGER, Role.SUPERVISOR, Role.STAFF, Role.SERVICE_REP}
)

ROLE_APPLICABILITY: dict[EventType, frozenset] = {
    EventType.NEW_ORDER: _ORDER_ROLES,
    EventType.ORDER_UPDATE: _ORDER_ROLES,
    EventType.ORDER_CANCELLED: _ORDER_ROLES,
    EventType.FEEDBACK_SUBMITTED: frozenset({Role.CUSTOMER, Role.VENDOR, Role.ADMIN}),
    EventType.PASSWORD_CHANGE: ALL_ROLES,
    EventType.WALLET_EVENT: frozenset(
        {Role.CUSTOMER, Role.VENDOR, Role.FINANCE_MANAGER}
    ),
    EventType.PREFERENCE_UPDATE: frozenset({Role.CUSTOMER, Role.VENDOR, Role.ADMIN}),
    EventType.DISCOUNT: frozenset({Role.CUSTOMER}),
    EventType.USER_REGISTRATION: _ACCOUNT_ROLES,
    EventType.PURCHASE: frozenset({Role.CUSTOMER, Role.VENDOR, Role.FINANCE_MANAGER}),
    EventType.OTP_VERIFICATION: ALL_ROLES,
    EventType.ACCOUNT_VERIFICATION: ALL_ROLES,
    EventType.PHONE_VERIFICATION: ALL_ROLES,
    EventType.MIGRATION_VERIFICATION: frozenset({Role.DELIVERY_AGENT}),
    EventType.PROFILE_UPDATE: _ACCOUNT_ROLES,
    EventType.ORDER_CONFIRMED: _ACCOUNT_ROLES,
    EventType.DELIVERY_ASSIGNED: _DELIVERY_ROLES,
    EventType.DELIVERY_STARTED: _DELIVERY_ROLES,
    EventType.DELIVERY_COMPLETED: _DELIVERY_ROLES | {Role.VENDOR},
    EventType.PAYMENT_SUCCESS: _PAYMENT_ROLES,
    EventType.PAYMENT_FAILED: _PAYMENT_ROLES,
    EventType.PROMO_OFFER: frozenset({Role.CUSTOMER}),
    EventType.FLASH_SALE: frozenset({Role.CUSTOMER}),
    EventType.REFERRAL_INVITE: frozenset({Role.CUSTOMER}),
    EventType.VENDOR_PROMOTION: frozenset({Role.CUSTOMER, Role.VENDOR}),
    EventType.APP_UPDATE: _BROADCAST_ROLES,
    EventType.MAINTENANCE_SCHEDULED: _OPERATIONS_ROLES,
    EventType.MAINTENANCE_COMPLETED: _OPERATIONS_ROLES,
    EventType.PRIVACY_POLICY_UPDATE: _BROADCAST_ROLES,
    EventType.SECURITY_ALERT: _OPERATIONS_ROLES,
    EventType.PRICE_UPDATE: frozenset(
        {Role.CUSTOMER, Role.VENDOR, Role.ADMIN, Role.MANAGER}
    ),
    EventType.REGULATORY_NEWS: frozenset(
        {Role.VENDOR, Role.ADMIN, Role.MANAGER, Role.SUPERVISOR}
    ),
    EventType.AREA_SPECIFIC_ALERT: frozenset(
        {Role.CUSTOMER, Role.VENDOR, Role.DELIVERY_AGENT, Role.ADMIN}
    ),
    EventType.GENERAL_ANNOUNCEMENT: _BROADCAST_ROLES,
    EventType.VENDOR_STATUS_UPDATE: frozenset(
        {Role.VENDOR, Role.ADMIN, Role.MANAGER, Role.SERVICE_REP}
    ),
    EventType.WALLET_TRANSACTION: frozenset(
        {Role.CUSTOMER, Role.VENDOR, Role.DELIVERY_AGENT, Role.FINANCE_MANAGER}
    ),
    EventType.ACCOUNT_DELETION_REQUEST: frozenset(
        {Role.CUSTOMER, Role.VENDOR, Role.DELIVERY_AGENT, Role.ADMIN, Role.MANAGER}
    ),
    EventType.PASSWORD_RESET: ALL_ROLES,
    EventType.REGISTRATION_SUCCESS: ALL_ROLES,
    EventType.REGISTRATION_FAILED: ALL_ROLES,
    EventType.LOGIN_SUCCESS: ALL_ROLES,
    EventType.WEBHOOK_FAILED: frozenset(
        {Role.CUSTOMER, Role.FINANCE_MANAGER, Role.ADMIN}
    ),
    EventType.OTHERS: ALL_ROLES,
    EventType.EMAIL_VERIFICATION_REQUIRED: ALL_ROLES,
}


def _check_exhaustive() -> None:
    missing = [member.value for member in EventType if member not in ROLE_APPLICABILITY]
    if missing:
        raise RuntimeError(f"Role applicability is missing event types: {missing}")


_check_exhaustive()


def normalize_role(role_name: Optional[str]) -> Optional[str]:
    if not role_name:
        return None
    return role_name.strip().upper().replace(" ", "_")


class RoleApplicability:
    """Answers whether an event type may be sent to a role.

    Stored overrides in ``event_type_roles`` win; an event type without stored
    rows, or a storage failure, falls back to ``ROLE_APPLICABILITY``.
    """

    def __init__(self, session_factory: SessionFactory = SessionLocal, audit=None) -> None:
        self._session_factory = session_factory
        self._audit = audit
        self._cache: dict[EventType, frozenset] = {}
        self._lock = threading.Lock()

    def applicable_roles(self, event_type) -> frozenset:
        event_type = resolve_event_type(event_type)
        cached = self._cache.get(event_type)
        if cached is not None:
            return cached

        try:
            stored = self._load_roles(event_type)
        except SQLAlchemyError:
            LOGGER.exception(
                "Failed to load role mapping for %s, using static table",
                event_type.value,
            )
            return self._static_roles(event_type)

        roles = stored if stored else self._static_roles(event_type)
        with self._lock:
            self._cache = {**self._cache, event_type: roles}
        return roles

    def is_applicable(self, event_type, role_name: Optional[str]) -> bool:
        role = normalize_role(role_name)
        if role is None:
            return False
        return role in self.applicable_roles(event_type)

    def invalidate(self) -> None:
        with self._lock:
            self._cache = {}

    def set_roles(self, event_type_name: str, roles: Iterable[str], updated_by: str) -> frozenset:
        event_type = resolve_event_type(event_type_name)
        normalized = set()
        for role in roles:
            role_name = normalize_role(role)
            if role_name not in Role.__members__:
                raise ValueError(f"Unknown role: {role}")
            normalized.add(role_name)

        with session_scope(self._session_factory) as session:
            entry = select_one_or_none(session, "event_type", name=event_type.value)
            if entry is None:
                raise ValueError(f"Event type {event_type.value} does not exist")
            event_type_id = entry.id
            delete_records(session, "event_type_role", event_type_id=event_type_id)
            for role_name in sorted(normalized):
                add_record(
                    session,
                    "event_type_role",
                    event_type_id=event_type_id,
                    role_name=role_name,
                )

        self.invalidate()
        if self._audit is not None:
            self._audit.emit(
                "UPDATE_EVENT_TYPE_ROLES",
                user_id=updated_by,
                entity_type="EVENT_TYPE",
                entity_id=event_type_id,
                details={"event_type": event_type.value, "roles": sorted(normalized)},
            )
        return frozenset(normalized)

    def _load_roles(self, event_type: EventType) -> frozenset:
        with session_scope(self._session_factory) as session:
            rows = session.execute(
                select(EventTypeRoleEntry.role_name)
                .join(EventTypeEntry, EventTypeEntry.id == EventTypeRoleEntry.event_type_id)
                .where(EventTypeEntry.name == event_type.value)
            ).scalars().all()
        return frozenset(row for row in rows)

    @staticmethod
    def _static_roles(event_type: EventType) -> frozenset:
        return frozenset(role.value for role in ROLE_APPLICABILITY.get(event_type, ()))
