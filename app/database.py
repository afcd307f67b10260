from contextlib import contextmanager
from typing import Callable, Iterator

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, declarative_base, sessionmaker

from app.config import settings

SessionFactory = Callable[[], Session]


def _build_database_url(raw_url: str) -> str:
    if raw_url.startswith("postgresql://"):
        return raw_url.replace("postgresql://", "postgresql+psycopg://", 1)
    return raw_url


def build_engine(raw_url: str, timeout_seconds: int) -> Engine:
    url = _build_database_url(raw_url)
    if not url:
        raise RuntimeError("DATABASE_URL is not configured")
    if url.startswith("sqlite"):
        connect_args = {"timeout": timeout_seconds, "check_same_thread": False}
    else:
        connect_args = {
            "connect_timeout": timeout_seconds,
            "options": f"-c statement_timeout={timeout_seconds * 1000}",
        }
    return create_engine(
        url,
        pool_pre_ping=True,
        connect_args=connect_args,
    )


def build_session_factory(bind: Engine) -> sessionmaker:
    return sessionmaker(
        bind=bind, autoflush=False, autocommit=False, expire_on_commit=False
    )


DATABASE_URL = _build_database_url(settings.database_url)
engine = build_engine(settings.database_url, settings.db_timeout_seconds)
SessionLocal = build_session_factory(engine)
Base = declarative_base()


def init_db(bind: Engine = engine) -> None:
    from app.models.schema import audit_log as _audit_log  # noqa: F401
    from app.models.schema import event_type as _event_type  # noqa: F401
    from app.models.schema import notification_log as _notification_log  # noqa: F401
    from app.models.schema import otp as _otp  # noqa: F401
    from app.models.schema import template as _template  # noqa: F401
    from app.models.schema import user as _user  # noqa: F401

    Base.metadata.create_all(bind=bind)


@contextmanager
def session_scope(factory: SessionFactory = SessionLocal) -> Iterator[Session]:
    session = factory()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()
