from __future__ import annotations

from datetime import datetime

from sqlalchemy import Boolean, DateTime, Integer, JSON, String, Text, select
from sqlalchemy.orm import Mapped, Session, mapped_column

from app.db.base import Base
from app.db.models.common import HasCreatedAt, HasId, utcnow


def pattern_matches(pattern: str, topic: str) -> bool:
    """Exact match, '*' for everything, 'prefix.' or 'prefix.*' for a prefix."""
    if not pattern:
        return False
    if pattern in ("*", topic):
        return True
    if pattern.endswith(".*"):
        return topic.startswith(pattern[:-1])
    if pattern.endswith("."):
        return topic.startswith(pattern)
    return False


class EventSubscription(Base, HasId, HasCreatedAt):
    """Webhook registered for one topic pattern, e.g. "organizations.changed" or "*"."""

    __tablename__ = "event_subscription"

    name: Mapped[str] = mapped_column(String(128), nullable=False)
    topic_pattern: Mapped[str] = mapped_column(String(128), nullable=False, index=True)
    target_url: Mapped[str] = mapped_column(Text, nullable=False)
    headers: Mapped[dict] = mapped_column(JSON, default=dict, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False, index=True)

    last_error: Mapped[str | None] = mapped_column(Text, nullable=True)
    failure_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    last_delivered_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    @classmethod
    def listening_to(cls, db: Session, topic: str) -> list["EventSubscription"]:
        subs = db.execute(select(cls).where(cls.is_active.is_(True)).order_by(cls.id)).scalars().all()
        return [s for s in subs if pattern_matches(s.topic_pattern, topic)]

    def request_headers(self) -> dict[str, str]:
        return {k: str(v) for k, v in (self.headers or {}).items()}

    def record_delivery(self) -> None:
        self.last_error = None
        self.failure_count = 0
        self.last_delivered_at = utcnow()

    def record_failure(self, error: str | None) -> None:
        self.last_error = error
        self.failure_count = (self.failure_count or 0) + 1
