"""Celery tasks wrapping the gateway's batch worker and immediate sender.

Both tasks are synchronous functions so they run under Celery's default
prefork pool; the async gateway runs inside ``asyncio.run`` and the engine
is disposed before the loop closes so pooled connections never outlive it.
Neither task retries: a failed delivery is recorded on the envelope and a
retry is a new ``queue`` call by whoever owns the message.
"""
from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict

from gateway.celery_app import celery_app
from gateway.services.gateway import Gateway
import db

_LOGGER = logging.getLogger(__name__)


async def _with_gateway(action: str, *args: Any) -> Dict[str, Any]:
    try:
        return await getattr(Gateway.default(), action)(*args)
    finally:
        await db.dispose_engine()


@celery_app.task(name="gateway.workers.outbound.process_queue")
def process_queue() -> Dict[str, Any]:
    """Run one batch-worker pass over the outbound queue."""
    result = asyncio.run(_with_gateway("process_queue"))
    _LOGGER.info("[OutboundWorker] %s", result)
    return result


@celery_app.task(name="gateway.workers.outbound.send_message")
def send_message(message: Dict[str, Any]) -> Dict[str, Any]:
    """Immediate send for callers that cannot await the gateway themselves."""
    result = asyncio.run(_with_gateway("send", message))
    if not result.get("success"):
        _LOGGER.warning("[OutboundWorker] send for %s failed: %s", message.get("user_id"), result.get("error"))
    return result
