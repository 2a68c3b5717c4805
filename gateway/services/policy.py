"""Collaborators the gateway consults before delivering.

The gateway only depends on the three protocols below. The ``Database*``
classes are the stock implementations, reading the preference and profile
tables owned by the rest of the backend.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, time, timedelta, timezone
from typing import Awaitable, Callable, Optional, Protocol, Tuple, TypeVar
from zoneinfo import ZoneInfo

import db
from config import settings
from gateway.types.envelope_contract import PROACTIVE_TYPES

_LOGGER = logging.getLogger(__name__)

T = TypeVar("T")


class QuietHoursOracle(Protocol):
    """Decides whether a user is inside quiet hours right now.

    Implementations may also offer ``next_allowed_time(user_id, now)``,
    returning the first moment after *now* the user is outside their
    window (or ``None`` to let the caller pick its default wake time).
    """

    async def is_quiet_hours(self, user_id: str) -> bool: ...


class RateLimitOracle(Protocol):
    async def can_send_proactive(self, user_id: str) -> bool: ...


class ProfileDirectory(Protocol):
    async def get_contact_address(self, user_id: str) -> Optional[str]: ...


def _parse_hhmm(value: str) -> time:
    hour, minute = value.split(":", 1)
    return time(int(hour), int(minute))


def in_window(now: time, start: time, end: time) -> bool:
    """True when *now* falls inside [start, end); windows with start > end wrap midnight."""
    if start > end:
        return now >= start or now < end
    return start <= now < end


def next_local_time(now: datetime, tz_name: str, at: time) -> datetime:
    """Next wall-clock *at* local to *tz_name* strictly after *now*, in UTC."""
    tz = ZoneInfo(tz_name)
    local = now.astimezone(tz)
    target = local.replace(hour=at.hour, minute=at.minute, second=at.second, microsecond=0)
    if target <= local:
        target = (local + timedelta(days=1)).replace(
            hour=at.hour, minute=at.minute, second=at.second, microsecond=0
        )
    return target.astimezone(timezone.utc)


def next_wake_time(now: datetime, tz_name: str, wake_hour: int) -> datetime:
    """Next ``wake_hour``:00 local to *tz_name* strictly after *now*, in UTC."""
    return next_local_time(now, tz_name, time(wake_hour))


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class DatabaseQuietHours:
    """Quiet hours from ``user_preferences``, falling back to the configured window."""

    def __init__(
        self,
        clock: Callable[[], datetime] = _utcnow,
        wake_hour: Optional[int] = None,
    ):
        self.clock = clock
        self.wake_hour = settings.QUIET_HOURS_WAKE_HOUR if wake_hour is None else wake_hour

    async def _window(self, user_id: str) -> Tuple[time, time, str]:
        prefs = await db.fetch_preferences(user_id) or {}
        start = prefs.get("quiet_hours_start") or _parse_hhmm(settings.QUIET_HOURS_START)
        end = prefs.get("quiet_hours_end") or _parse_hhmm(settings.QUIET_HOURS_END)
        return start, end, prefs.get("timezone") or settings.DEFAULT_TIMEZONE

    async def is_quiet_hours(self, user_id: str) -> bool:
        start, end, tz_name = await self._window(user_id)
        local_now = self.clock().astimezone(ZoneInfo(tz_name)).time()
        return in_window(local_now, start, end)

    async def next_allowed_time(self, user_id: str, now: datetime) -> datetime:
        """Wake hour or window end, whichever is later, in the user's own timezone."""
        _, end, tz_name = await self._window(user_id)
        return next_local_time(now, tz_name, max(time(self.wake_hour), end))


class DatabaseRateLimit:
    """Daily cap on proactive envelopes, counted from the user's local midnight."""

    def __init__(self, clock: Callable[[], datetime] = _utcnow):
        self.clock = clock

    async def can_send_proactive(self, user_id: str) -> bool:
        prefs = await db.fetch_preferences(user_id) or {}
        if prefs.get("proactive_enabled") is False:
            return False

        limit = prefs.get("max_daily_messages")
        if limit is None:
            limit = settings.PROACTIVE_DAILY_LIMIT

        tz = ZoneInfo(prefs.get("timezone") or settings.DEFAULT_TIMEZONE)
        midnight = self.clock().astimezone(tz).replace(hour=0, minute=0, second=0, microsecond=0)
        count = await db.count_sent_since(user_id, midnight, message_types=PROACTIVE_TYPES)
        _LOGGER.debug("user %s has %d/%d proactive messages today", user_id, count, limit)
        return count < limit


class DatabaseProfileDirectory:
    async def get_contact_address(self, user_id: str) -> Optional[str]:
        phone = await db.fetch_phone_number(user_id)
        return phone or None


async def consult(awaitable: Awaitable[T], timeout: Optional[float] = None) -> T:
    """Await a collaborator call under the gateway's per-call timeout."""
    return await asyncio.wait_for(
        awaitable, settings.GATEWAY_CALL_TIMEOUT if timeout is None else timeout
    )


def describe(exc: BaseException) -> str:
    return str(exc) or exc.__class__.__name__
