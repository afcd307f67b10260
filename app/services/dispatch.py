from __future__ import annotations

from dataclasses import asdict, dataclass, field, replace
from datetime import datetime, timezone
import json
import logging
import time
from typing import Any, Callable, Iterable, Optional

import redis
from sqlalchemy.exc import SQLAlchemyError

from app.database import SessionFactory, SessionLocal, session_scope
from app.models.db_operation import add_record
from app.schemas.email import EmailSendError
from app.schemas.errors import ErrorCode
from app.schemas.notifications import DispatchReport
from app.services.sms import SmsSendError
from app.services.users import UserDirectory

LOGGER = logging.getLogger(__name__)

TRANSIENT_ERRORS = (EmailSendError, SmsSendError)


@dataclass
class DispatchJob:
    channel: str
    recipients: list[str]
    body: str
    subject: Optional[str] = None
    user_id: Optional[str] = None
    event_type: Optional[str] = None
    event_type_id: Optional[str] = None
    template_id: Optional[str] = None
    requeues: int = 0
    created_at: str = field(
        default_factory=lambda: datetime.now(timezone.utc).isoformat()
    )

    def to_json(self) -> str:
        return json.dumps(asdict(self))

    @classmethod
    def from_json(cls, raw: str) -> "DispatchJob":
        data = json.loads(raw)
        known = {name for name in cls.__dataclass_fields__}
        return cls(**{key: value for key, value in data.items() if key in known})


@dataclass(frozen=True)
class RetryPolicy:
    max_retries: int = 3
    base_delay_seconds: float = 3.0

    def delay_for(self, attempt: int) -> float:
        return self.base_delay_seconds * (2**attempt)


class FallbackQueue:
    """Redis list of dispatch jobs that failed every retry."""

    def __init__(self, client: redis.Redis, key: str, dead_letter_key: str) -> None:
        self._client = client
        self._key = key
        self._dead_letter_key = dead_letter_key

    def push(self, job: DispatchJob) -> bool:
        try:
            self._client.lpush(self._key, job.to_json())
        except redis.RedisError:
            LOGGER.error(
                "Failed to queue %s job for %s", job.channel, ", ".join(job.recipients)
            )
            return False
        return True

    def pop(self) -> Optional[DispatchJob]:
        raw = self._client.rpop(self._key)
        if raw is None:
            return None
        try:
            return DispatchJob.from_json(raw)
        except (TypeError, ValueError):
            LOGGER.error("Dropping malformed fallback job: %s", raw)
            self._client.lpush(self._dead_letter_key, raw)
            return None

    def dead_letter(self, job: DispatchJob) -> bool:
        try:
            self._client.lpush(self._dead_letter_key, job.to_json())
        except redis.RedisError:
            LOGGER.error(
                "Failed to dead-letter %s job for %s",
                job.channel,
                ", ".join(job.recipients),
            )
            return False
        return True

    def length(self) -> int:
        return int(self._client.llen(self._key))


class NotificationLogStore:
    def __init__(self, session_factory: SessionFactory = SessionLocal) -> None:
        self._session_factory = session_factory

    def record(
        self,
        job: DispatchJob,
        status: str,
        message_id: Optional[str] = None,
        error: Optional[str] = None,
    ) -> None:
        payload: dict[str, Any] = {
            "subject": job.subject,
            "body": job.body,
            "event_type": job.event_type,
            "template_id": job.template_id,
            "requeues": job.requeues,
        }
        if message_id:
            payload["message_id"] = message_id
        if error:
            payload["error"] = error
        try:
            with session_scope(self._session_factory) as session:
                add_record(
                    session,
                    "notification_log",
                    user_id=job.user_id,
                    channel=job.channel,
                    recipient=", ".join(job.recipients),
                    event_type_id=job.event_type_id,
                    status=status,
                    payload=payload,
                    created_at=datetime.now(timezone.utc),
                )
        except SQLAlchemyError:
            LOGGER.exception(
                "Failed to write notification log status=%s recipients=%s",
                status,
                job.recipients,
            )


class DispatchPipeline:
    """Filters recipients, sends, retries with exponential backoff, logs, and queues failures.

    Email goes out as one batch for all recipients. SMS and WhatsApp go out one
    recipient per batch so a retry never re-sends to a number that already got
    the message.
    """

    def __init__(
        self,
        users: UserDirectory,
        logs: NotificationLogStore,
        queue: FallbackQueue,
        transports: dict[str, Any],
        retry: RetryPolicy = RetryPolicy(),
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._users = users
        self._logs = logs
        self._queue = queue
        self._transports = transports
        self._retry = retry
        self._sleep = sleep

    def send(
        self,
        job: DispatchJob,
        *,
        applicable_roles: Optional[Iterable[str]] = None,
        enqueue_on_failure: bool = True,
    ) -> DispatchReport:
        recipients = self._users.filter_recipients(
            job.channel, job.recipients, applicable_roles
        )
        if not recipients:
            LOGGER.info(
                "No valid recipients for %s dispatch event=%s", job.channel, job.event_type
            )
            return DispatchReport(status="SKIPPED", finished_at=datetime.now(timezone.utc))

        report = DispatchReport(status="SENT", recipients=recipients)
        for batch in self._batches(job.channel, recipients):
            batch_job = replace(job, recipients=batch)
            message_id, error = self._deliver_with_retry(batch_job)
            if error is None:
                report.sent += len(batch)
                self._logs.record(batch_job, "SENT", message_id=message_id)
                continue

            report.failed += len(batch)
            self._logs.record(batch_job, "FAILED", error=str(error))
            if not enqueue_on_failure:
                continue
            if self._queue.push(batch_job):
                report.queued += len(batch)
            else:
                report.warning = (
                    f"{ErrorCode.DISPATCH_FAILURE.value}: delivery failed and could not be "
                    "queued for retry"
                )

        if report.failed == 0:
            report.status = "SENT"
        elif report.sent == 0:
            report.status = "FAILED"
        else:
            report.status = "PARTIAL"
        report.finished_at = datetime.now(timezone.utc)
        return report

    def _deliver_with_retry(self, job: DispatchJob) -> tuple[Optional[str], Optional[Exception]]:
        transport = self._transports.get(job.channel)
        if transport is None:
            LOGGER.error("No transport configured for channel %s", job.channel)
            return None, RuntimeError(f"No transport configured for {job.channel}")

        last_error: Optional[Exception] = None
        for attempt in range(self._retry.max_retries + 1):
            try:
                return self._transmit(transport, job), None
            except TRANSIENT_ERRORS as exc:
                last_error = exc
                if attempt >= self._retry.max_retries:
                    break
                delay = self._retry.delay_for(attempt)
                LOGGER.warning(
                    "%s delivery attempt %s failed for %s: %s; retrying in %.1fs",
                    job.channel,
                    attempt + 1,
                    ", ".join(job.recipients),
                    exc,
                    delay,
                )
                self._sleep(delay)

        LOGGER.error(
            "%s delivery failed after %s attempts for %s: %s",
            job.channel,
            self._retry.max_retries + 1,
            ", ".join(job.recipients),
            last_error,
        )
        return None, last_error

    @staticmethod
    def _transmit(transport, job: DispatchJob) -> str:
        if job.channel == "EMAIL":
            return transport.send_mail(job.recipients, job.subject or "", job.body)
        return transport.send_sms(job.recipients[0], job.body)

    @staticmethod
    def _batches(channel: str, recipients: list[str]) -> list[list[str]]:
        if channel == "EMAIL":
            return [recipients]
        return [[recipient] for recipient in recipients]
