from datetime import datetime, timedelta, timezone
import math

import pytest
import redis
from sqlalchemy import select

from app.config import Settings
from app.container import build_services
from app.database import build_engine, build_session_factory, init_db, session_scope
from app.models.schema.user import UserEntry
from app.schemas.email import EmailSendError
from app.services.sms import SmsSendError


class FakeRedis:
    """In-memory stand-in for the handful of redis-py calls the service makes.

    Values are stored as strings, as with ``decode_responses=True``. Expiry is
    driven by ``advance`` instead of wall time. Command names listed in
    ``failing`` raise ``redis.ConnectionError``.
    """

    def __init__(self) -> None:
        self._values = {}
        self._lists = {}
        self._expiry = {}
        self.now = 0.0
        self.failing = set()

    def advance(self, seconds: float) -> None:
        self.now += seconds

    def _check(self, command: str) -> None:
        if command in self.failing or "*" in self.failing:
            raise redis.ConnectionError(f"{command} failed")

    def _purge(self, key: str) -> None:
        expires = self._expiry.get(key)
        if expires is not None and expires <= self.now:
            self._values.pop(key, None)
            self._lists.pop(key, None)
            self._expiry.pop(key, None)

    def _exists(self, key: str) -> bool:
        self._purge(key)
        return key in self._values or key in self._lists

    def get(self, key):
        self._check("get")
        self._purge(key)
        return self._values.get(key)

    def setex(self, key, seconds, value):
        self._check("setex")
        self._values[key] = str(value)
        self._expiry[key] = self.now + seconds
        return True

    def delete(self, *keys):
        self._check("delete")
        removed = 0
        for key in keys:
            if self._exists(key):
                removed += 1
            self._values.pop(key, None)
            self._lists.pop(key, None)
            self._expiry.pop(key, None)
        return removed

    def incr(self, key):
        self._check("incr")
        self._purge(key)
        value = int(self._values.get(key, 0)) + 1
        self._values[key] = str(value)
        return value

    def expire(self, key, seconds, nx=False):
        self._check("expire")
        if not self._exists(key):
            return False
        if nx and key in self._expiry:
            return False
        self._expiry[key] = self.now + seconds
        return True

    def ttl(self, key):
        self._check("ttl")
        if not self._exists(key):
            return -2
        if key not in self._expiry:
            return -1
        return int(math.ceil(self._expiry[key] - self.now))

    def lpush(self, key, *values):
        self._check("lpush")
        items = self._lists.setdefault(key, [])
        for value in values:
            items.insert(0, str(value))
        return len(items)

    def rpush(self, key, *values):
        self._check("rpush")
        items = self._lists.setdefault(key, [])
        items.extend(str(value) for value in values)
        return len(items)

    def rpop(self, key):
        self._check("rpop")
        items = self._lists.get(key)
        if not items:
            return None
        return items.pop()

    def llen(self, key):
        self._check("llen")
        return len(self._lists.get(key, []))

    def lrange(self, key, start, end):
        items = self._lists.get(key, [])
        end = len(items) if end == -1 else end + 1
        return items[start:end]

    def pipeline(self, transaction=True):
        return FakePipeline(self)


class FakePipeline:
    def __init__(self, client: FakeRedis) -> None:
        self._client = client
        self._calls = []

    def __enter__(self):
        return self

    def __exit__(self, *exc_info):
        self._calls = []
        return False

    def __getattr__(self, name):
        method = getattr(self._client, name)

        def _queue(*args, **kwargs):
            self._calls.append((method, args, kwargs))
            return self

        return _queue

    def execute(self):
        calls, self._calls = self._calls, []
        return [method(*args, **kwargs) for method, args, kwargs in calls]


class RecordingEmailTransport:
    """Fails the next ``failures`` sends; ``failures = -1`` fails every send."""

    def __init__(self) -> None:
        self.sent = []
        self.calls = 0
        self.failures = 0

    def send_mail(self, to, subject, html, sender=None):
        self.calls += 1
        if self.failures:
            if self.failures > 0:
                self.failures -= 1
            raise EmailSendError("gateway unavailable")
        self.sent.append({"to": list(to), "subject": subject, "html": html})
        return f"email-{len(self.sent)}"


class RecordingSmsTransport:
    def __init__(self) -> None:
        self.sent = []
        self.calls = 0
        self.failures = 0
        self.failing_numbers = set()

    def send_sms(self, to, message):
        self.calls += 1
        if to in self.failing_numbers:
            raise SmsSendError(f"cannot reach {to}")
        if self.failures:
            if self.failures > 0:
                self.failures -= 1
            raise SmsSendError("gateway unavailable")
        self.sent.append({"to": to, "message": message})
        return f"sms-{len(self.sent)}"


class Clock:
    def __init__(self) -> None:
        self.now = datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **delta) -> None:
        self.now += timedelta(**delta)


@pytest.fixture
def settings(tmp_path):
    return Settings(
        database_url=f"sqlite:///{tmp_path / 'notifications.db'}",
        dispatch_retry_base_delay_seconds=0.5,
        otp_debug=True,
        start_queue_worker=False,
        queue_poll_interval_seconds=0.01,
        email_sender="noreply@example.com",
        brand_name="Quicrefill",
    )


@pytest.fixture
def session_factory(settings):
    engine = build_engine(settings.database_url, settings.db_timeout_seconds)
    init_db(engine)
    yield build_session_factory(engine)
    engine.dispose()


@pytest.fixture
def fake_redis():
    return FakeRedis()


@pytest.fixture
def email_transport():
    return RecordingEmailTransport()


@pytest.fixture
def sms_transport():
    return RecordingSmsTransport()


@pytest.fixture
def sleeps():
    return []


@pytest.fixture
def clock():
    return Clock()


@pytest.fixture
def services(
    settings, session_factory, fake_redis, email_transport, sms_transport, sleeps, clock
):
    return build_services(
        settings,
        session_factory,
        redis_client=fake_redis,
        transports={
            "EMAIL": email_transport,
            "SMS": sms_transport,
            "WHATSAPP": sms_transport,
        },
        sleep=sleeps.append,
        clock=clock,
    )


@pytest.fixture
def add_user(session_factory):
    def _add(
        user_id,
        *,
        email=None,
        phone_number=None,
        role="CUSTOMER",
        name="Ada",
        notifications_enabled=True,
        notification_preference=None,
    ):
        now = datetime.now(timezone.utc)
        with session_scope(session_factory) as session:
            session.add(
                UserEntry(
                    id=user_id,
                    name=name,
                    email=email,
                    phone_number=phone_number,
                    role=role,
                    notifications_enabled=notifications_enabled,
                    notification_preference=notification_preference,
                    email_verified=False,
                    phone_verified=False,
                    created_at=now,
                    updated_at=now,
                )
            )
        return user_id

    return _add


@pytest.fixture
def fetch_all(session_factory):
    def _fetch(model, *conditions):
        with session_scope(session_factory) as session:
            return session.execute(select(model).where(*conditions)).scalars().all()

    return _fetch
