from datetime import datetime, timezone
import json
import logging
import re
from typing import Any, Optional

import redis
from sqlalchemy import select

from app.config import Settings, settings as default_settings
from app.database import SessionFactory, SessionLocal, session_scope
from app.models.db_operation import add_record, select_records
from app.models.schema.template import EmailTemplateEntry, SmsTemplateEntry
from app.schemas.errors import ErrorCode
from app.schemas.templates import RenderedMessage, TemplateCreate, TemplateUpdate
from app.services.audit import AuditEmitter
from app.services.default_templates import default_email_template, default_sms_template
from app.services.event_types import EventType, EventTypeStore, resolve_event_type
from app.services.roles import Role, normalize_role

LOGGER = logging.getLogger(__name__)

PLACEHOLDER_PATTERN = re.compile(r"\{(\w+)\}")

CHANNELS = ("EMAIL", "SMS")

_MODELS = {"EMAIL": EmailTemplateEntry, "SMS": SmsTemplateEntry}


def render_template(template: str, data: dict[str, Any]) -> str:
    """Replace every ``{key}`` with ``str(data[key])``; missing or null keys become ''."""
    if not template:
        return ""

    def _substitute(match: re.Match) -> str:
        value = data.get(match.group(1))
        return "" if value is None else str(value)

    return PLACEHOLDER_PATTERN.sub(_substitute, template)


def _normalize_channel(channel: str) -> str:
    normalized = channel.strip().upper()
    if normalized == "WHATSAPP":
        return "SMS"
    if normalized not in CHANNELS:
        raise ValueError(f"Unsupported template channel: {channel}")
    return normalized


def _serialize(entry, channel: str) -> dict[str, Any]:
    return {
        "id": entry.id,
        "channel": channel,
        "name": entry.name,
        "subject": entry.subject if channel == "EMAIL" else None,
        "content": entry.html_content if channel == "EMAIL" else entry.content,
        "roles": list(entry.roles or []),
        "event_type_id": entry.event_type_id,
        "is_active": bool(entry.is_active),
        "updated_by": entry.updated_by,
        "created_at": _isoformat(entry.created_at),
        "updated_at": _isoformat(entry.updated_at),
    }


def _isoformat(value: datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.isoformat()


def _validate_roles(roles: list[str]) -> list[str]:
    normalized = []
    for role in roles:
        role_name = normalize_role(role)
        if role_name not in Role.__members__:
            raise ValueError(f"Unknown role: {role}")
        normalized.append(role_name)
    return sorted(set(normalized))


class TemplateStore:
    """Stored email and SMS templates with a Redis read-through cache.

    Every write drops the affected cache keys and emits an audit record.
    """

    def __init__(
        self,
        client: redis.Redis,
        audit: AuditEmitter,
        event_types: EventTypeStore,
        session_factory: SessionFactory = SessionLocal,
        cache_ttl_seconds: int = 3600,
    ) -> None:
        self._client = client
        self._audit = audit
        self._event_types = event_types
        self._session_factory = session_factory
        self._cache_ttl_seconds = cache_ttl_seconds

    def create(self, channel: str, payload: TemplateCreate, actor_id: str) -> dict[str, Any]:
        channel = _normalize_channel(channel)
        if channel == "EMAIL" and not payload.subject:
            raise ValueError("Subject is required for email templates")
        roles = _validate_roles(payload.roles)
        event_type_id = self._event_type_id(payload.event_type, actor_id)
        now = datetime.now(timezone.utc)

        with session_scope(self._session_factory) as session:
            fields = {
                "name": payload.name.strip(),
                "roles": roles,
                "event_type_id": event_type_id,
                "is_active": payload.is_active,
                "updated_by": actor_id,
                "created_at": now,
                "updated_at": now,
            }
            if channel == "EMAIL":
                entry = add_record(
                    session,
                    "email_template",
                    subject=payload.subject,
                    html_content=payload.content,
                    **fields,
                )
            else:
                entry = add_record(session, "sms_template", content=payload.content, **fields)
            template = _serialize(entry, channel)

        self._invalidate(channel, template["id"], event_type_id)
        self._audit.emit(
            f"CREATE_{channel}_TEMPLATE",
            user_id=actor_id,
            entity_type=f"{channel}_TEMPLATE",
            entity_id=template["id"],
            details={"name": template["name"], "event_type_id": event_type_id},
        )
        LOGGER.info("Created %s template %s", channel, template["id"])
        return template

    def update(
        self, channel: str, template_id: str, payload: TemplateUpdate, actor_id: str
    ) -> Optional[dict[str, Any]]:
        channel = _normalize_channel(channel)
        model = _MODELS[channel]
        changes = payload.model_dump(exclude_unset=True)
        if "event_type" in changes:
            new_event_type_id = self._event_type_id(changes["event_type"], actor_id)

        with session_scope(self._session_factory) as session:
            entry = session.get(model, template_id)
            if entry is None:
                return None
            previous_event_type_id = entry.event_type_id
            if "name" in changes and changes["name"] is not None:
                entry.name = changes["name"].strip()
            if "content" in changes and changes["content"] is not None:
                if channel == "EMAIL":
                    entry.html_content = changes["content"]
                else:
                    entry.content = changes["content"]
            if channel == "EMAIL" and changes.get("subject"):
                entry.subject = changes["subject"]
            if changes.get("roles") is not None:
                entry.roles = _validate_roles(changes["roles"])
            if "event_type" in changes:
                entry.event_type_id = new_event_type_id
            if changes.get("is_active") is not None:
                entry.is_active = changes["is_active"]
            entry.updated_by = actor_id
            entry.updated_at = datetime.now(timezone.utc)
            session.flush()
            template = _serialize(entry, channel)

        self._invalidate(
            channel, template_id, previous_event_type_id, template["event_type_id"]
        )
        self._audit.emit(
            f"UPDATE_{channel}_TEMPLATE",
            user_id=actor_id,
            entity_type=f"{channel}_TEMPLATE",
            entity_id=template_id,
            details={"changes": sorted(changes)},
        )
        return template

    def delete(self, channel: str, template_id: str, actor_id: str) -> bool:
        channel = _normalize_channel(channel)
        model = _MODELS[channel]
        with session_scope(self._session_factory) as session:
            entry = session.get(model, template_id)
            if entry is None:
                return False
            event_type_id = entry.event_type_id
            name = entry.name
            session.delete(entry)

        self._invalidate(channel, template_id, event_type_id)
        self._audit.emit(
            f"DELETE_{channel}_TEMPLATE",
            user_id=actor_id,
            entity_type=f"{channel}_TEMPLATE",
            entity_id=template_id,
            details={"name": name},
        )
        return True

    def get(self, channel: str, template_id: str) -> Optional[dict[str, Any]]:
        channel = _normalize_channel(channel)
        key = self._template_key(channel, template_id)
        cached = self._cache_get(key)
        if cached is not None:
            return cached
        with session_scope(self._session_factory) as session:
            entry = session.get(_MODELS[channel], template_id)
            if entry is None:
                return None
            template = _serialize(entry, channel)
        self._cache_set(key, template)
        return template

    def list_templates(self, channel: str) -> list[dict[str, Any]]:
        channel = _normalize_channel(channel)
        key = self._list_key(channel)
        cached = self._cache_get(key)
        if cached is not None:
            return cached
        with session_scope(self._session_factory) as session:
            entries = select_records(
                session, f"{channel.lower()}_template", order_by="updated_at", descending=True
            )
            templates = [_serialize(entry, channel) for entry in entries]
        self._cache_set(key, templates)
        return templates

    def find_active_for_event(
        self, channel: str, event_type_id: str
    ) -> Optional[dict[str, Any]]:
        """Most recently updated active template bound to ``event_type_id``."""
        channel = _normalize_channel(channel)
        key = self._event_key(channel, event_type_id)
        cached = self._cache_get(key)
        if cached is not None:
            return cached
        model = _MODELS[channel]
        with session_scope(self._session_factory) as session:
            entry = session.execute(
                select(model)
                .where(model.event_type_id == event_type_id, model.is_active.is_(True))
                .order_by(model.updated_at.desc(), model.id.desc())
                .limit(1)
            ).scalar_one_or_none()
            if entry is None:
                return None
            template = _serialize(entry, channel)
        self._cache_set(key, template)
        return template

    def _event_type_id(self, event_type: Optional[str], actor_id: str) -> Optional[str]:
        if not event_type:
            return None
        return self._event_types.ensure_exists(event_type, actor_id)

    def _cache_get(self, key: str):
        try:
            raw = self._client.get(key)
        except redis.RedisError:
            LOGGER.warning("Template cache read failed for %s", key)
            return None
        if raw is None:
            return None
        return json.loads(raw)

    def _cache_set(self, key: str, value) -> None:
        try:
            self._client.setex(key, self._cache_ttl_seconds, json.dumps(value))
        except redis.RedisError:
            LOGGER.warning("Template cache write failed for %s", key)

    def _invalidate(self, channel: str, template_id: str, *event_type_ids) -> None:
        keys = [self._template_key(channel, template_id), self._list_key(channel)]
        keys.extend(
            self._event_key(channel, event_type_id)
            for event_type_id in set(event_type_ids)
            if event_type_id
        )
        try:
            self._client.delete(*keys)
        except redis.RedisError:
            LOGGER.error("Template cache invalidation failed for %s", keys)

    @staticmethod
    def _template_key(channel: str, template_id: str) -> str:
        return f"{channel.lower()}_template:{template_id}"

    @staticmethod
    def _list_key(channel: str) -> str:
        return f"{channel.lower()}_templates"

    @staticmethod
    def _event_key(channel: str, event_type_id: str) -> str:
        return f"{channel.lower()}_template:event:{event_type_id}"


class TemplateEngine:
    def __init__(
        self,
        store: TemplateStore,
        event_types: EventTypeStore,
        settings: Settings = default_settings,
    ) -> None:
        self._store = store
        self._event_types = event_types
        self._settings = settings

    def resolve_and_render(
        self,
        channel: str,
        event_type,
        metadata: Optional[dict[str, Any]] = None,
        *,
        custom_subject: Optional[str] = None,
        custom_body: Optional[str] = None,
        template_id: Optional[str] = None,
        otp: bool = False,
    ) -> RenderedMessage:
        """Pick the message for ``channel`` and fill it from ``metadata``.

        Order: custom payload, explicitly requested template, the active stored
        template bound to the event type, then the compiled-in default.
        """
        channel = _normalize_channel(channel)
        event_type = resolve_event_type(event_type)
        if custom_body:
            return RenderedMessage(subject=custom_subject, body=custom_body)

        data = self._base_data(event_type)
        data.update(metadata or {})

        template = None
        if template_id:
            template = self._store.get(channel, template_id)
            if template is None or not template["is_active"]:
                LOGGER.warning(
                    "%s: %s template %s, using event default",
                    ErrorCode.TEMPLATE_UNAVAILABLE.value,
                    channel,
                    template_id,
                )
                template = None
        if template is None:
            template = self._event_template(channel, event_type)

        if template is not None:
            return RenderedMessage(
                subject=render_template(template["subject"] or "", data) or None,
                body=render_template(template["content"], data),
                template_id=template["id"],
            )

        if channel == "EMAIL":
            subject, body = default_email_template(event_type, otp=otp)
            return RenderedMessage(
                subject=render_template(subject, data),
                body=render_template(body, data),
            )
        return RenderedMessage(
            subject=None, body=render_template(default_sms_template(event_type, otp=otp), data)
        )

    def _event_template(self, channel: str, event_type: EventType) -> Optional[dict[str, Any]]:
        event_type_id = self._event_types.get_id(event_type)
        if event_type_id is None:
            return None
        return self._store.find_active_for_event(channel, event_type_id)

    def _base_data(self, event_type: EventType) -> dict[str, Any]:
        return {
            "brandName": self._settings.brand_name,
            "supportEmail": self._settings.support_email,
            "eventType": event_type.value,
            "eventTitle": event_type.value.replace("_", " ").title(),
        }
