from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field


class TemplateCreate(BaseModel):
    name: str = Field(min_length=1, max_length=100)
    subject: Optional[str] = Field(default=None, max_length=255)
    content: str = Field(min_length=1)
    roles: list[str] = Field(default_factory=list)
    event_type: Optional[str] = None
    is_active: bool = True


class TemplateUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    subject: Optional[str] = Field(default=None, max_length=255)
    content: Optional[str] = Field(default=None, min_length=1)
    roles: Optional[list[str]] = None
    event_type: Optional[str] = None
    is_active: Optional[bool] = None


class TemplateResponse(BaseModel):
    id: str
    channel: str
    name: str
    subject: Optional[str] = None
    content: str
    roles: list[str] = Field(default_factory=list)
    event_type_id: Optional[str] = None
    is_active: bool
    updated_by: str
    created_at: datetime
    updated_at: datetime


@dataclass(frozen=True)
class RenderedMessage:
    subject: Optional[str]
    body: str
    template_id: Optional[str] = None
