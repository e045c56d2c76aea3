from __future__ import annotations

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field
from sqlalchemy import select
from sqlalchemy.orm import Session

from app.core.errors import NotFoundError
from app.core.security import Principal, require_admin
from app.db.session import get_db
from app.events.broadcast import hub
from app.events.outbox import OutboxEvent
from app.events.subscriptions import EventSubscription

router = APIRouter(prefix="/admin/events", tags=["admin_events"])


class SubscriptionIn(BaseModel):
    name: str = Field(default="subscription", max_length=128)
    topic_pattern: str = Field(..., min_length=1, max_length=128)
    target_url: str = Field(..., min_length=1)
    headers: dict[str, str] = Field(default_factory=dict)
    is_active: bool = True


class ToggleIn(BaseModel):
    is_active: bool | None = None


def _subscription_out(s: EventSubscription) -> dict:
    return {
        "id": s.id,
        "name": s.name,
        "topic_pattern": s.topic_pattern,
        "target_url": s.target_url,
        "headers": s.headers or {},
        "is_active": bool(s.is_active),
        "failure_count": int(s.failure_count or 0),
        "last_error": s.last_error,
        "last_delivered_at": s.last_delivered_at.isoformat() if s.last_delivered_at else None,
        "created_at": s.created_at.isoformat() if s.created_at else None,
    }


def _require_subscription(db: Session, sub_id: int) -> EventSubscription:
    s = db.get(EventSubscription, sub_id)
    if s is None:
        raise NotFoundError(f"Subscription {sub_id} not found")
    return s


@router.get("/subscriptions")
def list_subscriptions(db: Session = Depends(get_db), _: Principal = Depends(require_admin)):
    subs = db.execute(select(EventSubscription).order_by(EventSubscription.created_at.desc())).scalars().all()
    return [_subscription_out(s) for s in subs]


@router.post("/subscriptions", status_code=201)
def create_subscription(payload: SubscriptionIn, db: Session = Depends(get_db), _: Principal = Depends(require_admin)):
    s = EventSubscription(
        name=payload.name,
        topic_pattern=payload.topic_pattern,
        target_url=payload.target_url,
        headers=payload.headers,
        is_active=payload.is_active,
        failure_count=0,
    )
    db.add(s)
    db.commit()
    db.refresh(s)
    return _subscription_out(s)


@router.post("/subscriptions/{sub_id}/toggle")
def toggle_subscription(
    sub_id: int,
    payload: ToggleIn | None = None,
    db: Session = Depends(get_db),
    _: Principal = Depends(require_admin),
):
    s = _require_subscription(db, sub_id)
    wanted = payload.is_active if payload is not None else None
    s.is_active = (not bool(s.is_active)) if wanted is None else wanted
    db.commit()
    return {"id": s.id, "is_active": bool(s.is_active)}


@router.delete("/subscriptions/{sub_id}")
def delete_subscription(sub_id: int, db: Session = Depends(get_db), _: Principal = Depends(require_admin)):
    s = db.get(EventSubscription, sub_id)
    if s is None:
        return {"deleted": False}
    db.delete(s)
    db.commit()
    return {"deleted": True}


@router.get("/outbox")
def recent_events(
    limit: int = Query(50, ge=1, le=500),
    pending_only: bool = Query(False, alias="pendingOnly"),
    db: Session = Depends(get_db),
    _: Principal = Depends(require_admin),
):
    stmt = select(OutboxEvent).order_by(OutboxEvent.id.desc()).limit(limit)
    if pending_only:
        stmt = stmt.where(OutboxEvent.delivered.is_(False))
    return [
        {
            "id": e.id,
            "topic": e.topic,
            "payload": e.payload or {},
            "delivered": bool(e.delivered),
            "attempt_count": e.attempt_count,
            "last_error": e.last_error,
            "created_at": e.created_at.isoformat() if e.created_at else None,
        }
        for e in db.execute(stmt).scalars().all()
    ]


@router.get("/clients")
def websocket_clients(_: Principal = Depends(require_admin)):
    return {"connected": hub.client_count}
