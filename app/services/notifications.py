from datetime import datetime
import logging
from typing import Any, Optional

from app.config import Settings, settings as default_settings
from app.schemas.errors import ErrorCode, Outcome
from app.schemas.notifications import (
    BulkEmailRequest,
    BulkSmsRequest,
    DispatchReport,
    EmailPayload,
    SmsSummary,
)
from app.services.dispatch import DispatchJob, DispatchPipeline
from app.services.event_types import EventType, EventTypeStore, resolve_event_type
from app.services.rate_limit import FixedWindowRateLimiter
from app.services.roles import RoleApplicability
from app.services.templates import TemplateEngine
from app.services.users import UserDirectory, UserProfile, is_valid_email, is_valid_phone

LOGGER = logging.getLogger(__name__)

SYSTEM_ACTOR = "system"


class NotificationService:
    def __init__(
        self,
        *,
        users: UserDirectory,
        roles: RoleApplicability,
        event_types: EventTypeStore,
        templates: TemplateEngine,
        pipeline: DispatchPipeline,
        limiter: FixedWindowRateLimiter,
        settings: Settings = default_settings,
    ) -> None:
        self._users = users
        self._roles = roles
        self._event_types = event_types
        self._templates = templates
        self._pipeline = pipeline
        self._limiter = limiter
        self._settings = settings

    def deliver_otp(
        self,
        *,
        user: UserProfile,
        medium: str,
        contact_address: str,
        code: str,
        event_type: EventType,
        expires_at: datetime,
        ttl_seconds: int,
        metadata: Optional[dict[str, Any]] = None,
    ) -> DispatchReport:
        data = dict(metadata or {})
        data.update(
            {
                "name": user.name or "there",
                "otpCode": code,
                "expiresAt": expires_at.isoformat(),
                "expiresInMinutes": max(1, ttl_seconds // 60),
            }
        )
        rendered = self._templates.resolve_and_render(medium, event_type, data, otp=True)
        job = DispatchJob(
            channel=medium,
            recipients=[contact_address],
            subject=rendered.subject,
            body=rendered.body,
            user_id=user.id,
            event_type=event_type.value,
            event_type_id=self._event_types.ensure_exists(event_type.value, SYSTEM_ACTOR),
            template_id=rendered.template_id,
        )
        return self._pipeline.send(job)

    def send_email(self, request: BulkEmailRequest) -> Outcome[EmailPayload]:
        custom = request.custom_payload
        identity = self._identity(request, custom.to if custom else None)
        limited = self._check_bulk_limit(f"email_rate_limit:{identity}")
        if limited is not None:
            return limited

        recipients = self._collect("EMAIL", request, custom.to if custom else [])
        if not recipients:
            return Outcome.failure(ErrorCode.VALIDATION_ERROR, "No recipients found")
        valid = [address for address in recipients if is_valid_email(address)]
        if not valid:
            return Outcome.failure(ErrorCode.VALIDATION_ERROR, "No valid email recipients")

        event_type = resolve_event_type(request.event_type)
        rendered = self._templates.resolve_and_render(
            "EMAIL",
            event_type,
            request.metadata,
            custom_subject=custom.subject if custom else None,
            custom_body=custom.html_content if custom else None,
            template_id=request.template_id,
        )
        job = DispatchJob(
            channel="EMAIL",
            recipients=valid,
            subject=rendered.subject,
            body=rendered.body,
            event_type=event_type.value,
            event_type_id=self._event_types.ensure_exists(event_type.value, SYSTEM_ACTOR),
            template_id=rendered.template_id,
        )
        report = self._pipeline.send(
            job, applicable_roles=self._roles.applicable_roles(event_type)
        )
        return Outcome.success(
            EmailPayload(
                to=report.recipients,
                subject=rendered.subject or "",
                html_content=rendered.body,
                status=report.status,
                delivery_warning=report.warning,
            )
        )

    def send_sms(self, request: BulkSmsRequest) -> Outcome[SmsSummary]:
        custom = request.custom_payload
        identity = self._identity(request, custom.to if custom else None)
        limited = self._check_bulk_limit(f"sms_rate_limit:{identity}")
        if limited is not None:
            return limited

        recipients = self._collect(request.medium, request, custom.to if custom else [])
        if not recipients:
            return Outcome.failure(ErrorCode.VALIDATION_ERROR, "No recipients found")
        valid = [address for address in recipients if is_valid_phone(address)]
        if not valid:
            return Outcome.failure(ErrorCode.VALIDATION_ERROR, "No valid phone recipients")

        event_type = resolve_event_type(request.event_type)
        rendered = self._templates.resolve_and_render(
            request.medium,
            event_type,
            request.metadata,
            custom_body=custom.content if custom else None,
            template_id=request.template_id,
        )
        job = DispatchJob(
            channel=request.medium,
            recipients=valid,
            body=rendered.body,
            event_type=event_type.value,
            event_type_id=self._event_types.ensure_exists(event_type.value, SYSTEM_ACTOR),
            template_id=rendered.template_id,
        )
        report = self._pipeline.send(
            job, applicable_roles=self._roles.applicable_roles(event_type)
        )
        return Outcome.success(
            SmsSummary(
                to=report.recipients,
                content=rendered.body,
                sent=report.sent,
                failed=report.failed,
                delivery_warning=report.warning,
            )
        )

    def _check_bulk_limit(self, key: str) -> Optional[Outcome]:
        allowed = self._limiter.check_and_increment(
            key,
            self._settings.bulk_rate_limit_window_seconds,
            self._settings.bulk_rate_limit_max,
        )
        if allowed:
            return None
        return Outcome.failure(
            ErrorCode.RATE_LIMIT_EXCEEDED,
            "Too many notification requests, try again later",
            retry_after_seconds=self._limiter.seconds_until_reset(key),
        )

    @staticmethod
    def _identity(request, custom_to: Optional[list[str]]) -> str:
        if request.template_id:
            return request.template_id
        if custom_to:
            return ",".join(custom_to)
        if request.user_ids:
            return ",".join(sorted(request.user_ids))
        return "default"

    def _collect(self, channel: str, request, custom_to: list[str]) -> list[str]:
        recipients = list(custom_to)
        recipients.extend(self._users.contacts_for_user_ids(channel, request.user_ids))
        recipients.extend(self._users.contacts_for_roles(channel, request.roles))
        return list(dict.fromkeys(address.strip() for address in recipients if address))
