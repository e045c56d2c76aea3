from __future__ import annotations

import asyncio
import logging

import httpx

from app.db import session as db_session
from app.events.outbox import OutboxEvent
from app.events.subscriptions import EventSubscription

logger = logging.getLogger(__name__)

BATCH_SIZE = 50
REQUEST_TIMEOUT = 10.0


async def _deliver_one(client: httpx.AsyncClient, sub: EventSubscription, evt: OutboxEvent) -> str | None:
    """POST one event to one webhook. Returns the error, or None on a 2xx."""
    try:
        resp = await client.post(
            sub.target_url, json=evt.message(), headers=sub.request_headers(), timeout=REQUEST_TIMEOUT
        )
    except httpx.HTTPError as e:
        return str(e) or e.__class__.__name__
    if 200 <= resp.status_code < 300:
        return None
    return f"HTTP {resp.status_code}: {resp.text[:300]}"


async def dispatch_batch(client: httpx.AsyncClient) -> int:
    """Deliver one batch of due events. Returns how many events were looked at."""
    db = db_session.SessionLocal()
    try:
        events = OutboxEvent.due(db, BATCH_SIZE)
        for evt in events:
            last_err = None
            # with no listeners the event is closed right away
            for sub in EventSubscription.listening_to(db, evt.topic):
                err = await _deliver_one(client, sub, evt)
                if err is None:
                    sub.record_delivery()
                else:
                    last_err = err
                    sub.record_failure(err)

            if last_err is None:
                evt.mark_delivered()
            else:
                evt.defer(last_err)
                logger.warning(
                    "Webhook delivery of %s #%s failed (attempt %s): %s", evt.topic, evt.id, evt.attempt_count, last_err
                )

        db.commit()
        return len(events)
    finally:
        db.close()


async def run_dispatcher_forever(*, poll_interval_seconds: float = 1.0) -> None:
    async with httpx.AsyncClient() as client:
        while True:
            try:
                await dispatch_batch(client)
            except Exception:
                logger.exception("Event dispatcher batch failed")
            await asyncio.sleep(poll_interval_seconds)
