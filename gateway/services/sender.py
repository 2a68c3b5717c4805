"""Immediate ("send now") path and the plain enqueue path.

Flow for ``ImmediateSender.send``:
1. quiet hours (skipped for high priority) → store as pending, report queued.
2. proactive types → ask the rate-limit oracle; a denial is terminal.
3. resolve the contact address; none → failed.
4. one provider attempt; the outcome is recorded verbatim.

The envelope row is written once, after the outcome is known, so an
in-flight immediate send is never visible to the batch worker. Only the
quiet-hours deferral is left pending for the worker to pick up.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional
from uuid import uuid4

import db
from gateway.services.policy import (
    ProfileDirectory,
    QuietHoursOracle,
    RateLimitOracle,
    consult,
    describe,
)
from gateway.types.envelope_contract import (
    EnvelopeStatus,
    OutboundMessage,
    Priority,
    is_proactive,
)
from gateway.utils.delivery import DeliveryClient

_LOGGER = logging.getLogger(__name__)

RATE_LIMIT_ERROR = "Rate limit exceeded for proactive messages"
NO_CONTACT_ADDRESS = "No contact address"
DELIVERY_FAILED = "Delivery failed"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def envelope_record(message: OutboundMessage) -> Dict[str, Any]:
    return {
        "id": str(uuid4()),
        "user_id": message.user_id,
        "message_type": message.message_type,
        "content": message.content,
        "media_url": message.media_url,
        "scheduled_for": message.scheduled_for,
        "priority": message.priority,
        "metadata": dict(message.metadata),
        "status": EnvelopeStatus.PENDING,
    }


class ImmediateSender:
    def __init__(
        self,
        delivery: DeliveryClient,
        quiet_hours: QuietHoursOracle,
        rate_limit: RateLimitOracle,
        profiles: ProfileDirectory,
        timeout: Optional[float] = None,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.delivery = delivery
        self.quiet_hours = quiet_hours
        self.rate_limit = rate_limit
        self.profiles = profiles
        self.timeout = timeout
        self.clock = clock

    async def queue(self, message: OutboundMessage) -> str:
        """Persist a pending envelope for the batch worker; no delivery attempt."""
        record = envelope_record(message)
        eid = await db.insert_envelope(record)
        _LOGGER.info("queued %s envelope %s for %s", message.message_type.value, eid, message.user_id)
        return eid

    async def send(self, message: OutboundMessage) -> Dict[str, Any]:
        record = envelope_record(message)
        try:
            outcome = await self._attempt(message, record)
        except Exception as exc:  # noqa: BLE001
            _LOGGER.exception("immediate send for %s failed", message.user_id)
            record.update(status=EnvelopeStatus.FAILED, error=describe(exc))
            outcome = {"success": False, "error": record["error"]}

        try:
            await db.insert_envelope(record)
        except Exception:
            _LOGGER.error(
                "envelope %s for %s not recorded (status %s, provider id %s)",
                record["id"],
                message.user_id,
                EnvelopeStatus(record["status"]).value,
                record.get("provider_message_id"),
            )
            raise
        outcome.setdefault("envelope_id", record["id"])
        return outcome

    async def _attempt(self, message: OutboundMessage, record: Dict[str, Any]) -> Dict[str, Any]:
        eid = record["id"]

        if message.priority != Priority.HIGH:
            if await consult(self.quiet_hours.is_quiet_hours(message.user_id), self.timeout):
                # Leave the wake-up time to the batch worker.
                record["scheduled_for"] = None
                _LOGGER.info("quiet hours for %s; deferred %s", message.user_id, eid)
                return {"success": True, "message_id": eid, "queued": True}

        if is_proactive(message.message_type):
            allowed = await consult(self.rate_limit.can_send_proactive(message.user_id), self.timeout)
            if not allowed:
                record.update(status=EnvelopeStatus.RATE_LIMITED, error=RATE_LIMIT_ERROR)
                return {"success": False, "error": RATE_LIMIT_ERROR, "message_id": eid}

        address = await consult(self.profiles.get_contact_address(message.user_id), self.timeout)
        if not address:
            record.update(status=EnvelopeStatus.FAILED, error=NO_CONTACT_ADDRESS)
            return {"success": False, "error": NO_CONTACT_ADDRESS}

        result = await consult(
            self.delivery.send(address, message.content, message.media_url), self.timeout
        )
        if not result.ok:
            error = result.error_message or DELIVERY_FAILED
            record.update(
                status=EnvelopeStatus.FAILED,
                error=error,
                provider_message_id=result.provider_id,
            )
            return {"success": False, "error": error}

        record.update(
            status=EnvelopeStatus.SENT,
            sent_at=self.clock(),
            provider_message_id=result.provider_id,
        )
        _LOGGER.info("sent %s to %s (provider id %s)", eid, message.user_id, result.provider_id)
        return {"success": True, "message_id": result.provider_id}
