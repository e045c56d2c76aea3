from __future__ import annotations

import logging
from typing import Protocol

from app.db.session import transaction
from app.events import bus
from app.events.broadcast import WebSocketHub, hub as default_hub

logger = logging.getLogger(__name__)


class Notifier(Protocol):
    def broadcast(self, topic: str, payload: dict | None = None) -> None: ...


class ChangeNotifier:
    """Announces that something changed: live WebSocket clients plus the webhook outbox.

    Must only be called after the data it announces is committed. Never raises.
    """

    def __init__(self, hub: WebSocketHub | None = None, *, outbox: bool = True):
        self.hub = hub or default_hub
        self.outbox = outbox

    def broadcast(self, topic: str, payload: dict | None = None) -> None:
        try:
            self.hub.broadcast(topic, payload)
        except Exception:
            logger.exception("WebSocket broadcast of %s failed", topic)
        if not self.outbox:
            return
        try:
            with transaction(isolation=None) as db:
                bus.publish(db, topic, payload)
        except Exception:
            logger.exception("Could not record %s in the event outbox", topic)


notifier = ChangeNotifier()
