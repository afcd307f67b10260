from dataclasses import dataclass
import time
from typing import Any, Callable, Optional

import redis

from app.config import Settings
from app.database import SessionFactory
from app.services.audit import AuditEmitter
from app.services.dispatch import (
    DispatchPipeline,
    FallbackQueue,
    NotificationLogStore,
    RetryPolicy,
)
from app.services.email import build_email_transport
from app.services.event_types import EventTypeStore
from app.services.notifications import NotificationService
from app.services.otp import OtpService
from app.services.rate_limit import FixedWindowRateLimiter
from app.services.roles import RoleApplicability
from app.services.sms import TwilioTransport
from app.services.templates import TemplateEngine, TemplateStore
from app.services.users import UserDirectory
from app.services.worker import QueueWorker


@dataclass
class Services:
    settings: Settings
    redis: redis.Redis
    audit: AuditEmitter
    event_types: EventTypeStore
    roles: RoleApplicability
    users: UserDirectory
    limiter: FixedWindowRateLimiter
    template_store: TemplateStore
    templates: TemplateEngine
    fallback_queue: FallbackQueue
    pipeline: DispatchPipeline
    notifications: NotificationService
    otp: OtpService
    worker: QueueWorker


def build_redis(settings: Settings) -> redis.Redis:
    return redis.Redis.from_url(
        settings.redis_url,
        decode_responses=True,
        socket_timeout=settings.redis_socket_timeout,
        socket_connect_timeout=settings.redis_socket_timeout,
    )


def build_services(
    settings: Settings,
    session_factory: SessionFactory,
    redis_client: Optional[redis.Redis] = None,
    transports: Optional[dict[str, Any]] = None,
    sleep: Callable[[float], None] = time.sleep,
    clock: Optional[Callable] = None,
) -> Services:
    client = redis_client if redis_client is not None else build_redis(settings)
    if transports is None:
        transports = {
            "EMAIL": build_email_transport(settings),
            "SMS": TwilioTransport(settings),
            "WHATSAPP": TwilioTransport(settings, whatsapp=True),
        }

    audit = AuditEmitter(client, settings.audit_queue_key, session_factory)
    event_types = EventTypeStore(session_factory)
    roles = RoleApplicability(session_factory, audit=audit)
    users = UserDirectory(session_factory, settings.default_country_code)
    limiter = FixedWindowRateLimiter(client)
    template_store = TemplateStore(
        client,
        audit,
        event_types,
        session_factory=session_factory,
        cache_ttl_seconds=settings.template_cache_ttl_seconds,
    )
    templates = TemplateEngine(template_store, event_types, settings)
    fallback_queue = FallbackQueue(
        client, settings.fallback_queue_key, settings.dead_letter_queue_key
    )
    pipeline = DispatchPipeline(
        users,
        NotificationLogStore(session_factory),
        fallback_queue,
        transports,
        retry=RetryPolicy(
            max_retries=settings.dispatch_max_retries,
            base_delay_seconds=settings.dispatch_retry_base_delay_seconds,
        ),
        sleep=sleep,
    )
    notifications = NotificationService(
        users=users,
        roles=roles,
        event_types=event_types,
        templates=templates,
        pipeline=pipeline,
        limiter=limiter,
        settings=settings,
    )
    otp_kwargs = {"clock": clock} if clock is not None else {}
    otp = OtpService(
        users=users,
        roles=roles,
        limiter=limiter,
        notifications=notifications,
        audit=audit,
        settings=settings,
        session_factory=session_factory,
        **otp_kwargs,
    )
    worker = QueueWorker(
        pipeline,
        fallback_queue,
        audit,
        poll_interval_seconds=settings.queue_poll_interval_seconds,
        error_backoff_seconds=settings.queue_error_backoff_seconds,
        max_requeues=settings.fallback_max_requeues,
        audit_batch_size=settings.audit_drain_batch_size,
    )
    return Services(
        settings=settings,
        redis=client,
        audit=audit,
        event_types=event_types,
        roles=roles,
        users=users,
        limiter=limiter,
        template_store=template_store,
        templates=templates,
        fallback_queue=fallback_queue,
        pipeline=pipeline,
        notifications=notifications,
        otp=otp,
        worker=worker,
    )
