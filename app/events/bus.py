from __future__ import annotations

from datetime import datetime

from sqlalchemy.orm import Session

from app.db.models.common import utcnow
from app.events.outbox import OutboxEvent

IMPORTS_CHANGED = "imports.changed"
ORGANIZATIONS_CHANGED = "organizations.changed"
COORDINATES_CHANGED = "coordinates.changed"
LOCATIONS_CHANGED = "locations.changed"
ADDRESSES_CHANGED = "addresses.changed"


def publish(db: Session, topic: str, payload: dict | None = None, *, available_at: datetime | None = None) -> OutboxEvent:
    """Queue an event for webhook delivery. Flushes but leaves the commit to the caller."""
    evt = OutboxEvent(
        topic=topic,
        payload=payload or {},
        available_at=available_at or utcnow(),
        delivered=False,
        attempt_count=0,
    )
    db.add(evt)
    db.flush()
    return evt
