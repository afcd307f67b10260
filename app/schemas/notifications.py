from dataclasses import dataclass, field
from datetime import datetime
from typing import Literal, Optional

from pydantic import BaseModel, Field, model_validator


class EmailCustomPayload(BaseModel):
    to: list[str] = Field(min_length=1)
    subject: str = Field(min_length=1, max_length=255)
    html_content: str = Field(min_length=1)


class SmsCustomPayload(BaseModel):
    to: list[str] = Field(min_length=1)
    content: str = Field(min_length=1)


class _BulkRequest(BaseModel):
    template_id: Optional[str] = None
    event_type: Optional[str] = None
    roles: list[str] = Field(default_factory=list)
    user_ids: list[str] = Field(default_factory=list)
    metadata: dict = Field(default_factory=dict)

    @model_validator(mode="after")
    def require_audience(self):
        if not (self.user_ids or self.roles or getattr(self, "custom_payload", None)):
            raise ValueError("Provide user_ids, roles or custom_payload")
        return self


class BulkEmailRequest(_BulkRequest):
    custom_payload: Optional[EmailCustomPayload] = None


class BulkSmsRequest(_BulkRequest):
    custom_payload: Optional[SmsCustomPayload] = None
    medium: Literal["SMS", "WHATSAPP"] = "SMS"


class EmailPayloadResponse(BaseModel):
    to: list[str]
    subject: str
    html_content: str
    status: str
    delivery_warning: Optional[str] = None


class SmsSummaryResponse(BaseModel):
    to: list[str]
    content: str
    sent: int
    failed: int
    delivery_warning: Optional[str] = None


class EventTypeCreate(BaseModel):
    name: str = Field(min_length=1, max_length=64)
    description: Optional[str] = Field(default=None, max_length=255)


class EventTypeResponse(BaseModel):
    id: str
    name: str


class EventTypeRolesUpdate(BaseModel):
    roles: list[str]


@dataclass(frozen=True)
class EmailPayload:
    to: list[str]
    subject: str
    html_content: str
    status: str
    delivery_warning: Optional[str] = None


@dataclass(frozen=True)
class SmsSummary:
    to: list[str]
    content: str
    sent: int
    failed: int
    delivery_warning: Optional[str] = None


@dataclass
class DispatchReport:
    status: str
    recipients: list[str] = field(default_factory=list)
    sent: int = 0
    failed: int = 0
    queued: int = 0
    warning: Optional[str] = None
    finished_at: Optional[datetime] = None
