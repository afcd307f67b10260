import json

import pytest
from sqlalchemy.exc import OperationalError

from app.database import session_scope
from app.models.schema.event_type import EventTypeRoleEntry
from app.services.event_types import EventType
from app.services.roles import ROLE_APPLICABILITY, Role


def test_table_covers_every_event_type():
    assert set(ROLE_APPLICABILITY) == set(EventType)


def test_static_table(services):
    roles = services.roles

    assert roles.is_applicable(EventType.MIGRATION_VERIFICATION, "DELIVERY_AGENT")
    assert not roles.is_applicable(EventType.MIGRATION_VERIFICATION, "CUSTOMER")
    assert roles.is_applicable("password reset", "finance manager")
    assert roles.is_applicable(EventType.FLASH_SALE, "customer")
    assert not roles.is_applicable(EventType.FLASH_SALE, "VENDOR")
    assert not roles.is_applicable(EventType.OTP_VERIFICATION, None)
    assert roles.applicable_roles(EventType.OTHERS) == frozenset(role.value for role in Role)


def test_stored_roles_override_static_table(services, fake_redis):
    services.event_types.ensure_exists("FLASH_SALE", "admin-1")

    services.roles.set_roles("flash sale", ["vendor", "ADMIN"], "admin-1")

    assert services.roles.is_applicable(EventType.FLASH_SALE, "VENDOR")
    assert not services.roles.is_applicable(EventType.FLASH_SALE, "CUSTOMER")
    record = json.loads(fake_redis.lrange("audit:queue", 0, -1)[0])
    assert record["action"] == "UPDATE_EVENT_TYPE_ROLES"
    assert record["details"]["roles"] == ["ADMIN", "VENDOR"]


def test_cache_holds_until_invalidated(services, session_factory):
    event_type_id = services.event_types.ensure_exists("DISCOUNT", "admin-1")
    assert services.roles.is_applicable(EventType.DISCOUNT, "CUSTOMER")

    with session_scope(session_factory) as session:
        session.add(EventTypeRoleEntry(event_type_id=event_type_id, role_name="ADMIN"))

    assert services.roles.is_applicable(EventType.DISCOUNT, "CUSTOMER")
    services.roles.invalidate()
    assert not services.roles.is_applicable(EventType.DISCOUNT, "CUSTOMER")
    assert services.roles.is_applicable(EventType.DISCOUNT, "ADMIN")


def test_storage_failure_falls_back_to_static_table(services, monkeypatch):
    def broken(event_type):
        raise OperationalError("SELECT", {}, Exception("database is down"))

    monkeypatch.setattr(services.roles, "_load_roles", broken)

    assert services.roles.is_applicable(EventType.PAYMENT_FAILED, "FINANCE_MANAGER")
    assert not services.roles.is_applicable(EventType.PAYMENT_FAILED, "STAFF")


def test_set_roles_rejects_unknown_roles(services):
    services.event_types.ensure_exists("DISCOUNT", "admin-1")

    with pytest.raises(ValueError):
        services.roles.set_roles("DISCOUNT", ["WIZARD"], "admin-1")


def test_set_roles_requires_existing_event_type(services):
    with pytest.raises(ValueError):
        services.roles.set_roles("PRICE_UPDATE", ["ADMIN"], "admin-1")
