"""Per-user, per-channel conversational session lookup."""

from __future__ import annotations

import logging
from typing import Any, Dict

from sqlalchemy.exc import IntegrityError

import db

_LOGGER = logging.getLogger(__name__)


async def get_or_create(user_id: str, channel: str = "sms") -> Dict[str, Any]:
    """Return the newest active session for the pair, creating one if there is none."""
    session = await db.latest_active_session(user_id, channel)
    if session:
        return session

    try:
        session = await db.insert_session(user_id, channel)
    except IntegrityError:
        # Another caller created it between our read and insert.
        session = await db.latest_active_session(user_id, channel)
        if session is None:
            raise
        return session

    _LOGGER.info("opened %s session %s for %s", channel, session["id"], user_id)
    return session
