"""Batch worker that drains due envelopes from the outbound queue.

Stateless: each run fetches one batch, walks it in priority order and
returns counts. Anything not fetched waits for the next run.
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional

import db
from config import settings
from gateway.services.policy import (
    ProfileDirectory,
    QuietHoursOracle,
    RateLimitOracle,
    consult,
    describe,
    next_wake_time,
)
from gateway.services.sender import DELIVERY_FAILED, NO_CONTACT_ADDRESS, RATE_LIMIT_ERROR
from gateway.types.envelope_contract import (
    AUDITED_TYPES,
    EnvelopeStatus,
    MessageType,
    Priority,
    is_proactive,
)
from gateway.utils.delivery import DeliveryClient

_LOGGER = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class QueueRunResult:
    processed: int = 0
    errors: int = 0
    deferred: int = 0
    rate_limited: int = 0

    def as_dict(self) -> Dict[str, int]:
        return asdict(self)


class BatchWorker:
    def __init__(
        self,
        delivery: DeliveryClient,
        quiet_hours: QuietHoursOracle,
        rate_limit: RateLimitOracle,
        profiles: ProfileDirectory,
        batch_size: Optional[int] = None,
        wake_hour: Optional[int] = None,
        wake_timezone: Optional[str] = None,
        channel: Optional[str] = None,
        timeout: Optional[float] = None,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.delivery = delivery
        self.quiet_hours = quiet_hours
        self.rate_limit = rate_limit
        self.profiles = profiles
        self.batch_size = batch_size or settings.GATEWAY_BATCH_SIZE
        self.wake_hour = settings.QUIET_HOURS_WAKE_HOUR if wake_hour is None else wake_hour
        self.wake_timezone = wake_timezone or settings.DEFAULT_TIMEZONE
        self.channel = channel or settings.GATEWAY_CHANNEL
        self.timeout = timeout
        self.clock = clock

    async def run(self) -> QueueRunResult:
        result = QueueRunResult()
        now = self.clock()
        try:
            batch = await db.list_eligible(now, limit=self.batch_size)
        except Exception:  # noqa: BLE001
            _LOGGER.exception("could not fetch outbound batch")
            result.errors = 1
            return result

        if not batch:
            return result

        _LOGGER.info("processing %d outbound envelopes", len(batch))
        for envelope in batch:
            try:
                await self._process(envelope, now, result)
            except Exception as exc:  # noqa: BLE001
                _LOGGER.exception("envelope %s failed", envelope["id"])
                result.errors += 1
                await self._mark_failed(envelope["id"], describe(exc))

        _LOGGER.info("outbound run done: %s", result.as_dict())
        return result

    async def _process(self, envelope: Dict[str, Any], now: datetime, result: QueueRunResult):
        eid = envelope["id"]
        user_id = envelope["user_id"]
        message_type = MessageType(envelope["message_type"])

        if envelope["priority"] != Priority.HIGH.value:
            if await consult(self.quiet_hours.is_quiet_hours(user_id), self.timeout):
                wake = await self._wake_time(user_id, now)
                await db.reschedule_envelope(eid, wake)
                result.deferred += 1
                _LOGGER.info("quiet hours for %s; %s moved to %s", user_id, eid, wake.isoformat())
                return

        if is_proactive(message_type):
            if not await consult(self.rate_limit.can_send_proactive(user_id), self.timeout):
                await db.update_envelope_status(
                    eid, EnvelopeStatus.RATE_LIMITED, error=RATE_LIMIT_ERROR
                )
                result.rate_limited += 1
                return

        address = await consult(self.profiles.get_contact_address(user_id), self.timeout)
        if not address:
            await db.update_envelope_status(eid, EnvelopeStatus.FAILED, error=NO_CONTACT_ADDRESS)
            result.errors += 1
            return

        delivery = await consult(
            self.delivery.send(address, envelope["content"], envelope.get("media_url")),
            self.timeout,
        )
        if not delivery.ok:
            await db.update_envelope_status(
                eid,
                EnvelopeStatus.FAILED,
                error=delivery.error_message or DELIVERY_FAILED,
                provider_message_id=delivery.provider_id,
            )
            result.errors += 1
            return

        await db.update_envelope_status(
            eid,
            EnvelopeStatus.SENT,
            sent_at=self.clock(),
            provider_message_id=delivery.provider_id,
        )
        result.processed += 1

        if message_type in AUDITED_TYPES:
            await self._audit(envelope)

    async def _wake_time(self, user_id: str, now: datetime) -> datetime:
        allowed = getattr(self.quiet_hours, "next_allowed_time", None)
        if allowed is not None:
            wake = await consult(allowed(user_id, now), self.timeout)
            if wake is not None:
                return wake
        return next_wake_time(now, self.wake_timezone, self.wake_hour)

    async def _audit(self, envelope: Dict[str, Any]):
        try:
            await db.insert_audit_entry(
                {
                    "user_id": envelope["user_id"],
                    "envelope_id": envelope["id"],
                    "job_type": envelope["message_type"],
                    "status": EnvelopeStatus.SENT.value,
                    "content": envelope["content"],
                    "channel": self.channel,
                }
            )
        except Exception as exc:  # noqa: BLE001
            _LOGGER.warning("proactive audit write failed for %s: %s", envelope["id"], exc)

    async def _mark_failed(self, envelope_id: str, error: str):
        try:
            await db.update_envelope_status(envelope_id, EnvelopeStatus.FAILED, error=error)
        except Exception as exc:  # noqa: BLE001
            _LOGGER.warning("could not mark %s failed: %s", envelope_id, exc)
