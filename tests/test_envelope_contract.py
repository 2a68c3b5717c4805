from datetime import datetime, timezone

import pytest
from pydantic import ValidationError

from gateway.types.envelope_contract import (
    MessageType,
    OutboundMessage,
    Priority,
    is_proactive,
)


def test_defaults():
    msg = OutboundMessage(user_id="u1", message_type="reminder", content="Pay rent", metadata=None)
    assert msg.priority is Priority.NORMAL
    assert msg.metadata == {}
    assert msg.scheduled_for is None


def test_blank_content_rejected():
    with pytest.raises(ValidationError, match="content"):
        OutboundMessage(user_id="u1", message_type="reminder", content="   ")


def test_naive_schedule_rejected():
    with pytest.raises(ValidationError, match="timezone-aware"):
        OutboundMessage(
            user_id="u1", message_type="reminder", content="x", scheduled_for=datetime(2026, 10, 19, 9)
        )


def test_aware_schedule_accepted():
    at = datetime(2026, 10, 19, 9, tzinfo=timezone.utc)
    msg = OutboundMessage(user_id="u1", message_type="reminder", content="x", scheduled_for=at)
    assert msg.scheduled_for == at


def test_proactive_types():
    assert is_proactive("proactive_nudge")
    assert is_proactive(MessageType.MORNING_BRIEFING)
    assert is_proactive(MessageType.EVENING_REVIEW)
    assert not is_proactive(MessageType.WEEKLY_SUMMARY)
    assert not is_proactive("partner_notification")
