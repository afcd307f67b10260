from sqlalchemy import Boolean, Column, DateTime, String

from app.database import Base


class UserEntry(Base):
    __tablename__ = "users"

    id = Column(String(64), primary_key=True)
    name = Column(String(100), nullable=True)
    email = Column(String(255), nullable=True, unique=True)
    phone_number = Column(String(20), nullable=True, unique=True)
    role = Column(String(50), nullable=True)
    notifications_enabled = Column(Boolean, nullable=False, default=True)
    notification_preference = Column(String(16), nullable=True)
    email_verified = Column(Boolean, nullable=False, default=False)
    phone_verified = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime(timezone=True), nullable=False)
    updated_at = Column(DateTime(timezone=True), nullable=False)
