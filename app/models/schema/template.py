import uuid

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Index, JSON, String, Text

from app.database import Base


def _new_id() -> str:
    return str(uuid.uuid4())


class EmailTemplateEntry(Base):
    __tablename__ = "email_templates"

    id = Column(String(36), primary_key=True, default=_new_id)
    name = Column(String(100), nullable=False)
    subject = Column(String(255), nullable=False)
    html_content = Column(Text, nullable=False)
    roles = Column(JSON, nullable=True)
    event_type_id = Column(String(36), ForeignKey("event_types.id"), nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)
    updated_by = Column(String(64), nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False)
    updated_at = Column(DateTime(timezone=True), nullable=False)

    __table_args__ = (
        Index("ix_email_templates_event_active", "event_type_id", "is_active"),
    )


class SmsTemplateEntry(Base):
    __tablename__ = "sms_templates"

    id = Column(String(36), primary_key=True, default=_new_id)
    name = Column(String(100), nullable=False)
    content = Column(Text, nullable=False)
    roles = Column(JSON, nullable=True)
    event_type_id = Column(String(36), ForeignKey("event_types.id"), nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)
    updated_by = Column(String(64), nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False)
    updated_at = Column(DateTime(timezone=True), nullable=False)

    __table_args__ = (
        Index("ix_sms_templates_event_active", "event_type_id", "is_active"),
    )
