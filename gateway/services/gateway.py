"""Action surface of the outbound gateway.

Every public coroutine returns a JSON-ready dict carrying ``success``; no
exception crosses this boundary.
"""

from __future__ import annotations

import functools
import logging
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional

from pydantic import ValidationError

import db
from config import settings
from gateway.services import sessions
from gateway.services.policy import (
    DatabaseProfileDirectory,
    DatabaseQuietHours,
    DatabaseRateLimit,
    ProfileDirectory,
    QuietHoursOracle,
    RateLimitOracle,
    consult,
    describe,
)
from gateway.services.scheduler import BatchWorker
from gateway.services.sender import ImmediateSender
from gateway.types.envelope_contract import OutboundMessage
from gateway.utils.delivery import DeliveryClient, TelnyxDeliveryClient

_LOGGER = logging.getLogger(__name__)

Response = Dict[str, Any]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _failure(error: str, **extra: Any) -> Response:
    return {"success": False, "error": error, **extra}


def _validation_error(exc: ValidationError) -> str:
    parts = []
    for err in exc.errors():
        loc = ".".join(str(p) for p in err.get("loc", ())) or "message"
        parts.append(f"{loc}: {err.get('msg')}")
    return "; ".join(parts)


def _jsonable(row: Dict[str, Any]) -> Dict[str, Any]:
    return {k: v.isoformat() if isinstance(v, datetime) else v for k, v in row.items()}


def _boundary(fn):
    @functools.wraps(fn)
    async def wrapper(*args, **kwargs) -> Response:
        try:
            return await fn(*args, **kwargs)
        except Exception as exc:  # noqa: BLE001
            _LOGGER.exception("gateway %s failed", fn.__name__)
            return _failure(describe(exc))
    return wrapper


def _parse(message: Optional[Dict[str, Any]]) -> OutboundMessage | str:
    if not message:
        return "Message required"
    try:
        return OutboundMessage.model_validate(message)
    except ValidationError as exc:
        return _validation_error(exc)


class Gateway:
    def __init__(
        self,
        delivery: DeliveryClient,
        quiet_hours: QuietHoursOracle,
        rate_limit: RateLimitOracle,
        profiles: ProfileDirectory,
        channel: Optional[str] = None,
        batch_size: Optional[int] = None,
        wake_hour: Optional[int] = None,
        wake_timezone: Optional[str] = None,
        timeout: Optional[float] = None,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.delivery = delivery
        self.channel = channel or settings.GATEWAY_CHANNEL
        self.timeout = timeout
        self.sender = ImmediateSender(
            delivery, quiet_hours, rate_limit, profiles, timeout=timeout, clock=clock
        )
        self.worker = BatchWorker(
            delivery,
            quiet_hours,
            rate_limit,
            profiles,
            batch_size=batch_size,
            wake_hour=wake_hour,
            wake_timezone=wake_timezone,
            channel=self.channel,
            timeout=timeout,
            clock=clock,
        )

    @classmethod
    def default(cls) -> "Gateway":
        """Gateway wired to Telnyx and the database-backed oracles."""
        return cls(
            delivery=TelnyxDeliveryClient(),
            quiet_hours=DatabaseQuietHours(),
            rate_limit=DatabaseRateLimit(),
            profiles=DatabaseProfileDirectory(),
        )

    @_boundary
    async def send(self, message: Optional[Dict[str, Any]]) -> Response:
        parsed = _parse(message)
        if isinstance(parsed, str):
            return _failure(parsed)
        return await self.sender.send(parsed)

    @_boundary
    async def queue(self, message: Optional[Dict[str, Any]]) -> Response:
        parsed = _parse(message)
        if isinstance(parsed, str):
            return _failure(parsed)
        return {"success": True, "queue_id": await self.sender.queue(parsed)}

    @_boundary
    async def process_queue(self) -> Response:
        result = await self.worker.run()
        return {"success": True, **result.as_dict()}

    @_boundary
    async def get_session(self, user_id: Optional[str], channel: Optional[str] = None) -> Response:
        if not user_id:
            return _failure("user_id required")
        session = await sessions.get_or_create(user_id, channel or self.channel)
        return {"success": True, "session": _jsonable(session)}

    @_boundary
    async def check_delivery(self, message_id: Optional[str]) -> Response:
        if not message_id:
            return _failure("message_id required")

        provider_id = message_id
        envelope = await db.get_envelope(message_id)
        if envelope is not None:
            if not envelope["provider_message_id"]:
                # Never reached the provider; the envelope itself is the answer.
                return {"success": True, "status": envelope["status"], "error_code": None}
            provider_id = envelope["provider_message_id"]

        status = await consult(self.delivery.check_delivery(provider_id), self.timeout)
        if status.error_message:
            return _failure(status.error_message, status=status.status, error_code=status.error_code)
        return {"success": True, "status": status.status, "error_code": status.error_code}
