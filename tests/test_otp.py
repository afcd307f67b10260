import json
from datetime import timedelta

import pytest
from sqlalchemy.exc import IntegrityError

from app.database import session_scope
from app.models.schema.notification_log import NotificationLogEntry
from app.models.schema.otp import OtpEntry
from app.models.schema.user import UserEntry
from app.schemas.errors import ErrorCode
from app.schemas.otp import OtpGenerateRequest
from app.services import otp as otp_module
from app.services.otp import OtpService


def _request(**overrides):
    fields = {
        "user_id": "u1",
        "medium": "EMAIL",
        "contact_address": "ada@example.com",
        "event_type": "ACCOUNT_VERIFICATION",
    }
    fields.update(overrides)
    return OtpGenerateRequest(**fields)


@pytest.fixture
def customer(add_user):
    return add_user("u1", email="ada@example.com", phone_number="+2348012345678")


def test_round_trip_account_verification(services, customer, email_transport, fetch_all):
    issued = services.otp.generate_and_send_otp(_request())

    assert issued.ok
    assert len(issued.value.code) == 6 and issued.value.code.isdigit()
    assert issued.value.delivery_warning is None
    assert issued.value.code in email_transport.sent[0]["html"]
    assert email_transport.sent[0]["to"] == ["ada@example.com"]

    verified = services.otp.verify_otp(issued.value.transaction_reference, issued.value.code)

    assert verified.ok
    assert verified.value.user_id == "u1"
    assert verified.value.event_type == "ACCOUNT_VERIFICATION"
    assert fetch_all(UserEntry)[0].email_verified is True


def test_email_and_phone_code_policies(services, customer, clock):
    email = services.otp.generate_and_send_otp(_request())
    sms = services.otp.generate_and_send_otp(
        _request(medium="SMS", contact_address="+234 801 234 5678", event_type="PHONE_VERIFICATION")
    )

    assert len(email.value.code) == 6
    assert email.value.expires_at == clock.now + timedelta(minutes=10)
    assert len(sms.value.code) == 7
    assert sms.value.expires_at == clock.now + timedelta(minutes=5)


def test_second_verification_reports_already_verified(services, customer):
    issued = services.otp.generate_and_send_otp(_request()).value
    services.otp.verify_otp(issued.transaction_reference, issued.code)

    again = services.otp.verify_otp(issued.transaction_reference, issued.code)

    assert again.error.code is ErrorCode.ALREADY_VERIFIED


def test_new_code_supersedes_pending_one(services, customer, fetch_all):
    first = services.otp.generate_and_send_otp(_request()).value
    second = services.otp.generate_and_send_otp(_request()).value

    pending = fetch_all(OtpEntry, OtpEntry.verified.is_(False))
    assert [row.transaction_reference for row in pending] == [second.transaction_reference]
    assert services.otp.verify_otp(first.transaction_reference, first.code).error.code is (
        ErrorCode.OTP_NOT_FOUND
    )
    assert services.otp.verify_otp(second.transaction_reference, second.code).ok


def test_attempt_ceiling(services, customer):
    issued = services.otp.generate_and_send_otp(_request()).value
    wrong = "000000" if issued.code != "000000" else "111111"

    failures = [services.otp.verify_otp(issued.transaction_reference, wrong) for _ in range(3)]
    fourth = services.otp.verify_otp(issued.transaction_reference, issued.code)

    assert [f.error.code for f in failures] == [ErrorCode.INVALID_CODE] * 3
    assert [f.error.attempts_remaining for f in failures] == [2, 1, 0]
    assert failures[-1].error.resend_otp is True
    assert fourth.error.code is ErrorCode.ATTEMPTS_EXHAUSTED


def test_expired_code(services, customer, clock):
    issued = services.otp.generate_and_send_otp(_request()).value
    clock.advance(minutes=10, seconds=1)

    result = services.otp.verify_otp(issued.transaction_reference, issued.code)

    assert result.error.code is ErrorCode.EXPIRED
    assert result.error.resend_otp is True


def test_rate_limit_per_contact(services, customer, fake_redis):
    outcomes = [services.otp.generate_and_send_otp(_request()) for _ in range(6)]

    assert all(outcome.ok for outcome in outcomes[:5])
    assert outcomes[5].error.code is ErrorCode.RATE_LIMIT_EXCEEDED
    assert outcomes[5].error.retry_after_seconds == 60

    fake_redis.advance(61)
    assert services.otp.generate_and_send_otp(_request()).ok


def test_rate_limit_is_checked_before_user_lookup(services):
    outcomes = [services.otp.generate_and_send_otp(_request(user_id="ghost")) for _ in range(6)]

    assert [o.error.code for o in outcomes] == [ErrorCode.USER_NOT_FOUND] * 5 + [
        ErrorCode.RATE_LIMIT_EXCEEDED
    ]


def test_user_and_role_checks(services, add_user):
    add_user("no-role", email="nr@example.com", role=None)
    add_user("customer", email="c@example.com", role="CUSTOMER")

    no_role = services.otp.generate_and_send_otp(
        _request(user_id="no-role", contact_address="nr@example.com")
    )
    not_applicable = services.otp.generate_and_send_otp(
        _request(
            user_id="customer",
            contact_address="c@example.com",
            event_type="MIGRATION_VERIFICATION",
        )
    )

    assert no_role.error.code is ErrorCode.ROLE_UNDEFINED
    assert not_applicable.error.code is ErrorCode.ROLE_NOT_APPLICABLE


@pytest.mark.parametrize(
    "overrides",
    [
        {"event_type": "FLASH_SALE"},
        {"contact_address": "not-an-email"},
        {"medium": "SMS", "contact_address": "12345"},
    ],
)
def test_validation_errors(services, customer, overrides):
    outcome = services.otp.generate_and_send_otp(_request(**overrides))

    assert outcome.error.code is ErrorCode.VALIDATION_ERROR


def test_caller_supplied_reference(services, customer, add_user):
    add_user("u2", email="bo@example.com")
    first = services.otp.generate_and_send_otp(_request(transaction_reference="txn-1"))
    clash = services.otp.generate_and_send_otp(
        _request(user_id="u2", contact_address="bo@example.com", transaction_reference="txn-1")
    )

    assert first.value.transaction_reference == "txn-1"
    assert clash.error.code is ErrorCode.VALIDATION_ERROR


def test_dispatch_failure_keeps_otp(services, customer, email_transport, fetch_all, fake_redis):
    email_transport.failures = -1

    issued = services.otp.generate_and_send_otp(_request())

    assert issued.ok
    assert issued.value.delivery_warning
    assert [log.status for log in fetch_all(NotificationLogEntry)] == ["FAILED"]
    assert services.fallback_queue.length() == 1
    assert services.otp.verify_otp(issued.value.transaction_reference, issued.value.code).ok


def test_cross_event_reference_is_detectable(services, customer):
    issued = services.otp.generate_and_send_otp(_request(event_type="OTP_VERIFICATION")).value

    result = services.otp.verify_otp(issued.transaction_reference, issued.code)

    assert result.ok
    assert result.value.event_type == "OTP_VERIFICATION"
    assert result.value.event_type != "PASSWORD_RESET"


def test_codes_are_unique_per_active_contact(services, customer, monkeypatch):
    codes = iter(["111111", "111111", "222222"])
    monkeypatch.setattr(OtpService, "_generate_code", staticmethod(lambda length: next(codes)))

    first = services.otp.generate_and_send_otp(_request(event_type="OTP_VERIFICATION")).value
    second = services.otp.generate_and_send_otp(_request(event_type="PASSWORD_RESET")).value

    assert first.code == "111111"
    assert second.code == "222222"


def test_audit_records(services, customer, fake_redis):
    issued = services.otp.generate_and_send_otp(_request()).value
    services.otp.verify_otp(issued.transaction_reference, "bad")
    services.otp.verify_otp(issued.transaction_reference, issued.code)

    actions = [json.loads(raw)["action"] for raw in fake_redis.lrange("audit:queue", 0, -1)]
    assert actions == ["OTP_VERIFIED", "OTP_VERIFICATION_FAILED", "OTP_ISSUED"]


def test_purge_expired(services, customer, clock, fetch_all):
    services.otp.generate_and_send_otp(_request())
    clock.advance(days=8)

    assert services.otp.purge_expired() == 1
    assert fetch_all(OtpEntry) == []


def test_code_is_accepted_at_the_exact_expiry_instant(services, customer, clock):
    issued = services.otp.generate_and_send_otp(_request()).value
    clock.advance(minutes=10)

    assert services.otp.verify_otp(issued.transaction_reference, issued.code).ok


def test_verification_lost_to_concurrent_check(
    services, customer, session_factory, monkeypatch
):
    issued = services.otp.generate_and_send_otp(_request()).value
    original_update = otp_module.update
    calls = []

    def racing_update(*args, **kwargs):
        if not calls:
            with session_scope(session_factory) as session:
                session.execute(
                    original_update(OtpEntry)
                    .where(OtpEntry.transaction_reference == issued.transaction_reference)
                    .values(verified=True, attempts=1)
                )
        calls.append(args)
        return original_update(*args, **kwargs)

    monkeypatch.setattr(otp_module, "update", racing_update)

    result = services.otp.verify_otp(issued.transaction_reference, issued.code)

    assert result.error.code is ErrorCode.ALREADY_VERIFIED
    assert len(calls) == 1


def test_issuance_retries_after_unique_index_conflict(
    services, customer, fetch_all, monkeypatch
):
    original = OtpService._supersede_and_insert
    calls = []

    def conflicting(self, **fields):
        calls.append(fields["contact"])
        if len(calls) == 1:
            original(self, **fields)
            raise IntegrityError("INSERT", {}, Exception("uq_otp_pending_per_contact"))
        return original(self, **fields)

    monkeypatch.setattr(OtpService, "_supersede_and_insert", conflicting)

    issued = services.otp.generate_and_send_otp(_request())

    assert issued.ok
    assert len(calls) == 2
    pending = fetch_all(OtpEntry, OtpEntry.verified.is_(False))
    assert [row.transaction_reference for row in pending] == [
        issued.value.transaction_reference
    ]
    assert services.otp.verify_otp(
        issued.value.transaction_reference, issued.value.code
    ).ok


def test_local_phone_number_is_normalized_with_country_code(
    services, add_user, sms_transport, fetch_all
):
    add_user("u2", phone_number="0801 234 5678")

    issued = services.otp.generate_and_send_otp(
        _request(
            user_id="u2",
            medium="SMS",
            contact_address="08012345678",
            event_type="PHONE_VERIFICATION",
        )
    )

    assert issued.ok
    assert sms_transport.sent[0]["to"] == "+2348012345678"
    assert services.otp.verify_otp(issued.value.transaction_reference, issued.value.code).ok
    assert fetch_all(UserEntry, UserEntry.id == "u2")[0].phone_verified is True
