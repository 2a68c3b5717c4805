import logging
from datetime import timedelta

import pytest
from sqlalchemy import func, select

import db
from db.db import OutboundEnvelope, get_session

from conftest import NOW


async def _envelope_count() -> int:
    async with get_session() as s:
        res = await s.execute(select(func.count()).select_from(OutboundEnvelope))
        return res.scalar_one()


async def _only_envelope() -> dict:
    async with get_session() as s:
        res = await s.execute(select(OutboundEnvelope))
        rows = res.scalars().all()
    assert len(rows) == 1
    return await db.get_envelope(rows[0].id)


def _message(**overrides):
    msg = {"user_id": "u1", "message_type": "reminder", "content": "Pay rent", "priority": "normal"}
    msg.update(overrides)
    return msg


@pytest.mark.asyncio
async def test_send_success_records_sent(gateway, delivery):
    res = await gateway.send(_message(media_url="https://example.com/r.png"))

    assert res["success"] is True
    assert res["message_id"] == "msg-1"
    assert delivery.sent == [("+15550000001", "Pay rent", "https://example.com/r.png")]

    env = await _only_envelope()
    assert env["id"] == res["envelope_id"]
    assert env["status"] == "sent"
    assert env["provider_message_id"] == "msg-1"
    assert env["sent_at"] == NOW


@pytest.mark.asyncio
async def test_send_during_quiet_hours_defers_then_worker_delivers(gateway, quiet, delivery):
    quiet.quiet_users.add("u1")

    res = await gateway.send(_message())
    assert res["success"] is True
    assert res["queued"] is True
    assert delivery.sent == []

    env = await db.get_envelope(res["message_id"])
    assert env["status"] == "pending"
    assert env["scheduled_for"] is None

    quiet.quiet_users.clear()
    run = await gateway.process_queue()
    assert run["processed"] == 1
    assert run["errors"] == 0

    env = await db.get_envelope(res["message_id"])
    assert env["status"] == "sent"
    assert delivery.sent[0][1] == "Pay rent"


@pytest.mark.asyncio
async def test_high_priority_ignores_quiet_hours(gateway, quiet, delivery):
    quiet.quiet_users.add("u1")

    res = await gateway.send(_message(message_type="system_alert", priority="high"))

    assert res["success"] is True
    assert "queued" not in res
    assert quiet.calls == []
    assert len(delivery.sent) == 1


@pytest.mark.asyncio
async def test_proactive_over_limit_is_rate_limited(gateway, limits, delivery):
    limits.denied_users.add("u1")

    res = await gateway.send(_message(message_type="proactive_nudge", content="Stretch?"))

    assert res["success"] is False
    assert res["error"].startswith("Rate limit exceeded")
    assert delivery.sent == []
    env = await _only_envelope()
    assert env["status"] == "rate_limited"


@pytest.mark.asyncio
async def test_non_proactive_skips_rate_limit(gateway, limits):
    limits.denied_users.add("u1")
    res = await gateway.send(_message(message_type="task_update"))
    assert res["success"] is True
    assert limits.calls == []


@pytest.mark.asyncio
async def test_missing_contact_address_fails(gateway, profiles, delivery):
    profiles.addresses.pop("u1")

    res = await gateway.send(_message())

    assert res == {"success": False, "error": "No contact address", "envelope_id": res["envelope_id"]}
    assert delivery.sent == []
    env = await _only_envelope()
    assert env["status"] == "failed"
    assert env["error"] == "No contact address"


@pytest.mark.asyncio
async def test_provider_failure_keeps_error_text(gateway, delivery):
    delivery.failures["Pay rent"] = "The 'to' number is not a valid mobile number."

    res = await gateway.send(_message())

    assert res["success"] is False
    assert res["error"] == "The 'to' number is not a valid mobile number."
    env = await _only_envelope()
    assert env["status"] == "failed"
    assert env["error"] == "The 'to' number is not a valid mobile number."


@pytest.mark.asyncio
async def test_provider_exception_becomes_failed_envelope(gateway, delivery):
    delivery.explode.add("Pay rent")

    res = await gateway.send(_message())

    assert res["success"] is False
    assert "unreachable" in res["error"]
    env = await _only_envelope()
    assert env["status"] == "failed"


@pytest.mark.asyncio
async def test_oracle_exception_becomes_failed_envelope(gateway, quiet):
    async def broken(user_id):
        raise RuntimeError("preferences service down")

    quiet.is_quiet_hours = broken

    res = await gateway.send(_message())

    assert res["success"] is False
    assert res["error"] == "preferences service down"
    env = await _only_envelope()
    assert env["status"] == "failed"


@pytest.mark.asyncio
@pytest.mark.parametrize("missing", ["user_id", "message_type", "content"])
async def test_missing_required_field_rejected_before_persisting(gateway, delivery, missing):
    msg = _message()
    msg.pop(missing)

    res = await gateway.send(msg)

    assert res["success"] is False
    assert missing in res["error"]
    assert delivery.sent == []
    assert await _envelope_count() == 0


@pytest.mark.asyncio
async def test_unknown_message_type_rejected(gateway):
    res = await gateway.send(_message(message_type="newsletter"))
    assert res["success"] is False
    assert "message_type" in res["error"]
    assert await _envelope_count() == 0


@pytest.mark.asyncio
async def test_queue_persists_pending_without_sending(gateway, delivery):
    later = NOW + timedelta(hours=2)

    res = await gateway.queue(_message(scheduled_for=later.isoformat(), metadata={"list": "groceries"}))

    assert res["success"] is True
    assert delivery.sent == []
    env = await db.get_envelope(res["queue_id"])
    assert env["status"] == "pending"
    assert env["scheduled_for"] == later
    assert env["metadata"] == {"list": "groceries"}


@pytest.mark.asyncio
async def test_queue_requires_message(gateway):
    assert await gateway.queue(None) == {"success": False, "error": "Message required"}


@pytest.mark.asyncio
async def test_unrecorded_send_logs_provider_id(gateway, delivery, monkeypatch, caplog):
    async def broken_insert(envelope):
        raise RuntimeError("disk full")

    monkeypatch.setattr(db, "insert_envelope", broken_insert)

    with caplog.at_level(logging.ERROR, logger="gateway.services.sender"):
        res = await gateway.send(_message())

    assert res == {"success": False, "error": "disk full"}
    assert len(delivery.sent) == 1
    errors = [r for r in caplog.records
              if r.name == "gateway.services.sender" and r.levelno == logging.ERROR]
    assert len(errors) == 1
    assert "msg-1" in errors[0].getMessage()
    assert "sent" in errors[0].getMessage()
