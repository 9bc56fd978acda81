"""Pydantic models that define the contract between the creation API, the
reminder store and the dispatch loop.

These classes are intentionally framework-agnostic so they can be reused by
workers, API responses, and tests without pulling in FastAPI or database
layers.
"""

from __future__ import annotations

import re
from datetime import datetime
from enum import Enum
from typing import Tuple

from pydantic import BaseModel, ConfigDict, field_validator


class Timeline(str, Enum):
    """Coarse delivery horizon picked by the requester instead of a date."""

    IMMINENT = "Imminent"
    TODAY = "Today"
    TOMORROW = "Tomorrow"
    THIS_WEEK = "ThisWeek"
    NEXT_WEEK = "NextWeek"
    THIS_MONTH = "ThisMonth"
    NEXT_MONTH = "NextMonth"
    LATER_THIS_YEAR = "LaterThisYear"
    NEXT_YEAR = "NextYear"


class ContactKind(str, Enum):
    EMAIL = "email"
    PHONE = "phone"


_EMAIL_RE = re.compile(r"^[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}$")
_PHONE_SEPARATORS = re.compile(r"[\s\-.()]")
_PHONE_RE = re.compile(r"^\+?[0-9]{7,15}$")


def classify_contact(address: str) -> Tuple[ContactKind, str]:
    """Return the contact kind of *address* and its normalised form.

    Emails are lower-cased; phone numbers lose their separators but keep a
    leading ``+``. Anything else raises ``ValueError``.
    """
    value = (address or "").strip()
    if "@" in value:
        if not _EMAIL_RE.match(value):
            raise ValueError(f"'{address}' is not a valid email address")
        return ContactKind.EMAIL, value.lower()

    digits = _PHONE_SEPARATORS.sub("", value)
    if not _PHONE_RE.match(digits):
        raise ValueError(f"'{address}' is neither an email address nor a phone number")
    return ContactKind.PHONE, digits


# ──────────────────────────────
# Requests
# ──────────────────────────────


class ReminderRequest(BaseModel):
    """Incoming request to schedule a reminder."""

    contact_info: str
    message: str
    reminder_timeline: Timeline

    @field_validator("contact_info")
    def _valid_contact(cls, v):  # noqa: N805
        classify_contact(v)
        return v.strip()

    @field_validator("message")
    def _non_empty_message(cls, v):  # noqa: N805
        if not isinstance(v, str) or not v.strip():
            raise ValueError("message must be a non-empty string")
        return v.strip()


class UserCreate(BaseModel):
    contact_info: str

    @field_validator("contact_info")
    def _valid_contact(cls, v):  # noqa: N805
        classify_contact(v)
        return v.strip()


# ──────────────────────────────
# Responses
# ──────────────────────────────


class UserResponse(BaseModel):
    id: int
    contact_info: str
    user_type: ContactKind
    created_at: datetime
    updated_at: datetime


class ReminderResponse(BaseModel):
    """API view of a reminder; flattens the owner's contact details in."""

    id: int
    message: str
    due_at: datetime
    timeline_label: str
    is_completed: bool
    retry_count: int
    created_at: datetime
    updated_at: datetime
    contact_info: str
    user_type: str


# ──────────────────────────────
# Store → dispatch loop
# ──────────────────────────────


class DueReminder(BaseModel):
    """One due reminder joined with its owner's contact details.

    ``contact_kind`` is the raw stored string, not ``ContactKind``, so the
    dispatch loop can spot rows whose kind has no channel.
    """

    model_config = ConfigDict(frozen=True)

    id: int
    user_id: int
    message: str
    due_at: datetime
    timeline_label: str
    is_completed: bool = False
    retry_count: int = 0
    contact_address: str
    contact_kind: str
