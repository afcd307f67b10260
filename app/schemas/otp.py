from dataclasses import dataclass
from datetime import datetime
from typing import Literal, Optional

from pydantic import BaseModel, Field

Medium = Literal["EMAIL", "SMS", "WHATSAPP"]


class OtpGenerateRequest(BaseModel):
    user_id: str = Field(min_length=1, max_length=64)
    medium: Medium
    contact_address: str = Field(min_length=3, max_length=255)
    event_type: str = Field(min_length=1, max_length=64)
    transaction_reference: Optional[str] = Field(default=None, max_length=64)
    metadata: dict = Field(default_factory=dict)


class OtpGenerateResponse(BaseModel):
    id: int
    transaction_reference: str
    expires_at: datetime
    delivery_warning: Optional[str] = None
    otp: Optional[str] = None


class OtpVerifyRequest(BaseModel):
    transaction_reference: str = Field(min_length=1, max_length=64)
    code: str = Field(min_length=1, max_length=10)


class OtpVerifyResponse(BaseModel):
    verified: bool
    user_id: str
    event_type: str
    transaction_reference: str
    verified_at: datetime


@dataclass(frozen=True)
class OtpIssued:
    id: int
    transaction_reference: str
    expires_at: datetime
    code: str
    delivery_warning: Optional[str] = None


@dataclass(frozen=True)
class OtpVerification:
    verified: bool
    user_id: str
    event_type: str
    transaction_reference: str
    verified_at: datetime
