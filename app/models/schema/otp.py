from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    Index,
    Integer,
    String,
    UniqueConstraint,
    text,
)

from app.database import Base


class OtpEntry(Base):
    __tablename__ = "otp_records"

    id = Column(Integer, primary_key=True)
    user_id = Column(String(64), nullable=False, index=True)
    transaction_reference = Column(String(64), nullable=False)
    contact_address = Column(String(255), nullable=False)
    code = Column(String(10), nullable=False)
    event_type = Column(String(64), nullable=False)
    medium = Column(String(16), nullable=False)
    expires_at = Column(DateTime(timezone=True), nullable=False)
    verified = Column(Boolean, nullable=False, default=False)
    verified_at = Column(DateTime(timezone=True), nullable=True)
    attempts = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime(timezone=True), nullable=False)

    __table_args__ = (
        UniqueConstraint("transaction_reference", name="uq_otp_transaction_reference"),
        Index(
            "uq_otp_pending_per_contact",
            "user_id",
            "contact_address",
            "event_type",
            unique=True,
            sqlite_where=text("verified = 0"),
            postgresql_where=text("verified = false"),
        ),
        Index("ix_otp_contact_code", "contact_address", "code"),
        Index("ix_otp_expires_at", "expires_at"),
    )
