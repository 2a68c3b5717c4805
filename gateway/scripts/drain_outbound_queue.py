"""Periodic drain of the outbound queue, for hosts without Celery beat.
Run via Railway schedule every minute:
    python -m gateway.scripts.drain_outbound_queue
"""

from __future__ import annotations

import asyncio
import logging

from config import settings
from gateway.services.gateway import Gateway
import db


async def main() -> dict:
    try:
        return await Gateway.default().process_queue()
    finally:
        await db.dispose_engine()


if __name__ == "__main__":  # pragma: no cover
    logging.basicConfig(level=settings.LOG_LEVEL)
    print("[CRON] drain_outbound_queue: job started")
    result = asyncio.run(main())
    if result.get("success"):
        print(
            "[CRON] drain_outbound_queue: job completed",
            f"processed={result['processed']} errors={result['errors']}",
        )
    else:
        print(f"[CRON] drain_outbound_queue: job failed: {result.get('error')}")
