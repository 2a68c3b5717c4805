"""Pydantic models and enums shared by the outbound gateway.

These classes are intentionally framework-agnostic so they can be reused by
the HTTP dispatcher, Celery workers and tests without pulling in FastAPI or
database layers.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field, field_validator


class MessageType(str, Enum):
    REMINDER = "reminder"
    PROACTIVE_NUDGE = "proactive_nudge"
    MORNING_BRIEFING = "morning_briefing"
    EVENING_REVIEW = "evening_review"
    WEEKLY_SUMMARY = "weekly_summary"
    TASK_UPDATE = "task_update"
    PARTNER_NOTIFICATION = "partner_notification"
    SYSTEM_ALERT = "system_alert"


class Priority(str, Enum):
    LOW = "low"
    NORMAL = "normal"
    HIGH = "high"


class EnvelopeStatus(str, Enum):
    PENDING = "pending"
    SENT = "sent"
    FAILED = "failed"
    RATE_LIMITED = "rate_limited"


TERMINAL_STATUSES = frozenset(
    {EnvelopeStatus.SENT, EnvelopeStatus.FAILED, EnvelopeStatus.RATE_LIMITED}
)

# Unsolicited types subject to the daily proactive limit
PROACTIVE_TYPES = frozenset(
    {
        MessageType.PROACTIVE_NUDGE,
        MessageType.MORNING_BRIEFING,
        MessageType.EVENING_REVIEW,
    }
)

# Types that leave a row in the proactive audit log once sent
AUDITED_TYPES = PROACTIVE_TYPES | {MessageType.WEEKLY_SUMMARY}


def is_proactive(message_type: MessageType | str) -> bool:
    return MessageType(message_type) in PROACTIVE_TYPES


class OutboundMessage(BaseModel):
    """A message submitted to ``send`` or ``queue``.

    ``user_id``, ``message_type`` and ``content`` are required; everything else
    has a default. ``scheduled_for`` must carry a timezone when present.
    """

    user_id: str
    message_type: MessageType
    content: str
    media_url: Optional[str] = None
    scheduled_for: Optional[datetime] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)
    priority: Priority = Priority.NORMAL

    @field_validator("user_id", "content")
    def _non_blank(cls, v: str):  # noqa: N805
        if not v or not v.strip():
            raise ValueError("must be a non-empty string")
        return v

    @field_validator("scheduled_for")
    def _aware(cls, v: Optional[datetime]):  # noqa: N805
        if v is not None and v.tzinfo is None:
            raise ValueError("scheduled_for must be timezone-aware")
        return v

    @field_validator("metadata", mode="before")
    def _none_is_empty(cls, v):  # noqa: N805
        return {} if v is None else v


class GatewayRequest(BaseModel):
    """Body of ``POST /v1/gateway``."""

    action: str
    message: Optional[Dict[str, Any]] = None
    user_id: Optional[str] = None
    channel: Optional[str] = None
    message_id: Optional[str] = None
