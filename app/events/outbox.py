from __future__ import annotations

from datetime import datetime, timedelta

from sqlalchemy import Boolean, DateTime, Index, Integer, JSON, String, Text, select
from sqlalchemy.orm import Mapped, Session, mapped_column

from app.db.base import Base
from app.db.models.common import HasCreatedAt, HasId, utcnow

MAX_BACKOFF_SECONDS = 600


def backoff(attempt_count: int) -> timedelta:
    """2, 4, 8 ... seconds, capped at ten minutes."""
    return timedelta(seconds=min(MAX_BACKOFF_SECONDS, 2 ** min(attempt_count, 9)))


class OutboxEvent(Base, HasId, HasCreatedAt):
    """Change notification waiting for webhook delivery.

    Rows are written by app.events.bus.publish and drained by app.events.dispatcher.
    """

    __tablename__ = "outbox_event"

    topic: Mapped[str] = mapped_column(String(128), nullable=False, index=True)
    payload: Mapped[dict] = mapped_column(JSON, default=dict, nullable=False)

    available_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)
    attempt_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    last_error: Mapped[str | None] = mapped_column(Text, nullable=True)
    delivered: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    delivered_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    @classmethod
    def due(cls, db: Session, limit: int) -> list["OutboxEvent"]:
        stmt = (
            select(cls)
            .where(cls.delivered.is_(False), cls.available_at <= utcnow())
            .order_by(cls.created_at.asc(), cls.id.asc())
            .limit(limit)
        )
        return list(db.execute(stmt).scalars().all())

    def message(self) -> dict:
        """Webhook request body."""
        return {
            "topic": self.topic,
            "eventId": self.id,
            "createdAt": self.created_at.isoformat() if self.created_at else None,
            "payload": self.payload or {},
        }

    def mark_delivered(self) -> None:
        self.delivered = True
        self.delivered_at = utcnow()
        self.last_error = None

    def defer(self, error: str | None) -> None:
        self.attempt_count = (self.attempt_count or 0) + 1
        self.last_error = error
        self.available_at = utcnow() + backoff(self.attempt_count)


Index("ix_outbox_delivery", OutboxEvent.delivered, OutboxEvent.available_at)
