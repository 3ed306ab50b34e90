"""Pydantic schemas for the ticket lifecycle helpers."""

from __future__ import annotations

from uuid import UUID

from pydantic import BaseModel, Field, field_validator

from helpdesk.core.sanitize import clean_multiline, clean_single_line, clean_tags
from helpdesk.models.enums import TicketPriority, TicketStatus, normalize_status

MAX_SUBJECT_LEN = 200
MAX_DESCRIPTION_LEN = 4000
MAX_TAGS = 20


class TicketCreate(BaseModel):
    subject: str = Field(min_length=3, max_length=MAX_SUBJECT_LEN)
    description: str = Field(min_length=5, max_length=MAX_DESCRIPTION_LEN)
    priority: TicketPriority = TicketPriority.medium
    category_id: UUID | None = None
    assigned_to_id: UUID | None = None
    tags: list[str] = Field(default_factory=list)

    @field_validator("subject", mode="before")
    @classmethod
    def normalize_subject(cls, value: str) -> str:
        return clean_single_line(value)

    @field_validator("description", mode="before")
    @classmethod
    def normalize_description(cls, value: str) -> str:
        return clean_multiline(value)

    @field_validator("tags", mode="before")
    @classmethod
    def normalize_tags(cls, value: list[str] | None) -> list[str]:
        return clean_tags(value, max_items=MAX_TAGS)


class TicketUpdate(BaseModel):
    subject: str | None = Field(default=None, min_length=3, max_length=MAX_SUBJECT_LEN)
    description: str | None = Field(default=None, min_length=5, max_length=MAX_DESCRIPTION_LEN)
    status: TicketStatus | None = None
    priority: TicketPriority | None = None
    category_id: UUID | None = None
    assigned_to_id: UUID | None = None
    tags: list[str] | None = None

    @field_validator("subject", mode="before")
    @classmethod
    def normalize_subject(cls, value: str | None) -> str | None:
        cleaned = clean_single_line(value)
        return cleaned or None

    @field_validator("status", mode="before")
    @classmethod
    def accept_legacy_status(cls, value: object) -> object:
        if value is None:
            return None
        return normalize_status(value) or value

    @field_validator("tags", mode="before")
    @classmethod
    def normalize_tags(cls, value: list[str] | None) -> list[str] | None:
        if value is None:
            return None
        return clean_tags(value, max_items=MAX_TAGS)


class CommentCreate(BaseModel):
    content: str = Field(min_length=1, max_length=MAX_DESCRIPTION_LEN)
    is_internal: bool = False

    @field_validator("content", mode="before")
    @classmethod
    def normalize_content(cls, value: str) -> str:
        return clean_multiline(value)
