from sqlalchemy import Column, DateTime, Index, Integer, JSON, String, Text

from app.database import Base


class NotificationLogEntry(Base):
    __tablename__ = "notification_logs"

    id = Column(Integer, primary_key=True)
    user_id = Column(String(64), nullable=True)
    channel = Column(String(16), nullable=False)
    recipient = Column(Text, nullable=False)
    event_type_id = Column(String(36), nullable=True)
    status = Column(String(16), nullable=False)
    payload = Column(JSON, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False)

    __table_args__ = (Index("ix_notification_logs_status", "status", "created_at"),)
