from .common import *  # noqa
from .organizations import *  # noqa
from .imports import *  # noqa

# Platform event-bus tables (transactional outbox + webhook subscriptions)
from app.events.outbox import *  # noqa
from app.events.subscriptions import *  # noqa
