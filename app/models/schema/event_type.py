import uuid

from sqlalchemy import Column, DateTime, ForeignKey, Integer, String, UniqueConstraint

from app.database import Base


def _new_id() -> str:
    return str(uuid.uuid4())


class EventTypeEntry(Base):
    __tablename__ = "event_types"

    id = Column(String(36), primary_key=True, default=_new_id)
    name = Column(String(64), nullable=False, unique=True)
    description = Column(String(255), nullable=True)
    created_by = Column(String(64), nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False)


class EventTypeRoleEntry(Base):
    __tablename__ = "event_type_roles"

    id = Column(Integer, primary_key=True)
    event_type_id = Column(
        String(36), ForeignKey("event_types.id", ondelete="CASCADE"), nullable=False
    )
    role_name = Column(String(50), nullable=False)

    __table_args__ = (
        UniqueConstraint("event_type_id", "role_name", name="uq_event_type_role"),
    )
