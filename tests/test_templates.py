import json

import pytest

from app.schemas.templates import TemplateCreate, TemplateUpdate
from app.services.event_types import EventType
from app.services.templates import render_template


def _email_template(name="Welcome", event_type="REGISTRATION_SUCCESS", **overrides):
    fields = {
        "name": name,
        "subject": "Hi {name}",
        "content": "<p>{name}, welcome to {brandName}</p>",
        "roles": ["customer"],
        "event_type": event_type,
    }
    fields.update(overrides)
    return TemplateCreate(**fields)


def _audit_actions(fake_redis):
    return [json.loads(raw)["action"] for raw in fake_redis.lrange("audit:queue", 0, -1)]


class TestRenderTemplate:
    def test_substitutes_values(self):
        assert render_template("Code {otpCode} for {name}", {"otpCode": 123, "name": "Ada"}) == (
            "Code 123 for Ada"
        )

    def test_missing_and_null_values_render_empty(self):
        assert render_template("Hello {name}{suffix}!", {"suffix": None}) == "Hello !"

    def test_repeated_placeholders(self):
        assert render_template("{a}-{a}", {"a": "x"}) == "x-x"

    def test_text_without_placeholders_is_unchanged(self):
        html = "<style>p { color: red; }</style><p>{ not a key }</p>"
        assert render_template(html, {"color": "blue"}) == html

    def test_empty_template(self):
        assert render_template("", {"a": 1}) == ""


def test_default_otp_email_template(services):
    rendered = services.templates.resolve_and_render(
        "EMAIL",
        EventType.PASSWORD_RESET,
        {"otpCode": "482913", "name": "Ada", "expiresInMinutes": 10},
        otp=True,
    )

    assert rendered.template_id is None
    assert rendered.subject == "Reset your Quicrefill password"
    assert "482913" in rendered.body
    assert "10 minutes" in rendered.body


def test_default_non_otp_template_differs_from_otp_template(services):
    rendered = services.templates.resolve_and_render(
        "EMAIL", EventType.PASSWORD_RESET, {"name": "Ada"}
    )

    assert rendered.subject == "Your Quicrefill password was reset"


def test_default_sms_template(services):
    rendered = services.templates.resolve_and_render(
        "SMS", "otp", {"otpCode": "1234567", "expiresInMinutes": 5}, otp=True
    )

    assert rendered.subject is None
    assert rendered.body == "Your Quicrefill code is 1234567. It expires in 5 minutes."


def test_stored_template_for_event_wins_over_default(services):
    template = services.template_store.create("EMAIL", _email_template(), "admin-1")

    rendered = services.templates.resolve_and_render(
        "EMAIL", "registration success", {"name": "Ada"}
    )

    assert rendered.template_id == template["id"]
    assert rendered.subject == "Hi Ada"
    assert rendered.body == "<p>Ada, welcome to Quicrefill</p>"


def test_most_recently_updated_active_template_wins(services):
    older = services.template_store.create("EMAIL", _email_template("Older"), "admin-1")
    newer = services.template_store.create("EMAIL", _email_template("Newer"), "admin-1")

    first = services.templates.resolve_and_render("EMAIL", "REGISTRATION_SUCCESS", {})
    services.template_store.update(
        "EMAIL", older["id"], TemplateUpdate(content="<p>refreshed</p>"), "admin-2"
    )
    second = services.templates.resolve_and_render("EMAIL", "REGISTRATION_SUCCESS", {})

    assert first.template_id == newer["id"]
    assert second.template_id == older["id"]
    assert second.body == "<p>refreshed</p>"


def test_inactive_templates_are_ignored(services):
    services.template_store.create(
        "EMAIL", _email_template(is_active=False), "admin-1"
    )

    rendered = services.templates.resolve_and_render(
        "EMAIL", "REGISTRATION_SUCCESS", {"name": "Ada"}
    )

    assert rendered.template_id is None
    assert rendered.subject == "Welcome to Quicrefill"


def test_explicit_template_and_fallback(services):
    generic = services.template_store.create(
        "SMS",
        TemplateCreate(name="Promo", content="{brandName}: {deal}", event_type=None),
        "admin-1",
    )
    inactive = services.template_store.create(
        "SMS",
        TemplateCreate(name="Old promo", content="old", is_active=False),
        "admin-1",
    )

    chosen = services.templates.resolve_and_render(
        "SMS", "FLASH_SALE", {"deal": "50% off"}, template_id=generic["id"]
    )
    fallback = services.templates.resolve_and_render(
        "SMS", "FLASH_SALE", {"message": "sale"}, template_id=inactive["id"]
    )

    assert chosen.body == "Quicrefill: 50% off"
    assert fallback.template_id is None
    assert fallback.body == "Quicrefill: sale"


def test_custom_payload_is_used_verbatim(services):
    services.template_store.create("EMAIL", _email_template(), "admin-1")

    rendered = services.templates.resolve_and_render(
        "EMAIL",
        "REGISTRATION_SUCCESS",
        {"name": "Ada"},
        custom_subject="Custom {name}",
        custom_body="<p>Custom</p>",
    )

    assert rendered.subject == "Custom {name}"
    assert rendered.body == "<p>Custom</p>"


def test_writes_invalidate_cache_and_emit_audit(services, fake_redis):
    template = services.template_store.create("SMS", TemplateCreate(name="A", content="v1"), "admin-1")
    assert services.template_store.get("SMS", template["id"])["content"] == "v1"
    assert len(services.template_store.list_templates("SMS")) == 1

    services.template_store.update("SMS", template["id"], TemplateUpdate(content="v2"), "admin-1")
    assert services.template_store.get("SMS", template["id"])["content"] == "v2"

    assert services.template_store.delete("SMS", template["id"], "admin-1") is True
    assert services.template_store.get("SMS", template["id"]) is None
    assert services.template_store.list_templates("SMS") == []
    assert services.template_store.delete("SMS", template["id"], "admin-1") is False

    assert _audit_actions(fake_redis) == [
        "DELETE_SMS_TEMPLATE",
        "UPDATE_SMS_TEMPLATE",
        "CREATE_SMS_TEMPLATE",
    ]


def test_cache_outage_reads_from_storage(services, fake_redis):
    template = services.template_store.create("EMAIL", _email_template(), "admin-1")
    fake_redis.failing.update({"get", "setex"})

    assert services.template_store.get("EMAIL", template["id"])["name"] == "Welcome"


def test_validation(services):
    with pytest.raises(ValueError):
        services.template_store.create("EMAIL", _email_template(subject=None), "admin-1")
    with pytest.raises(ValueError):
        services.template_store.create("EMAIL", _email_template(roles=["wizard"]), "admin-1")
    with pytest.raises(ValueError):
        services.template_store.create("PIGEON", _email_template(), "admin-1")
