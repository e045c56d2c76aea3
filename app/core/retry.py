from __future__ import annotations

import logging
import os
from typing import Callable, TypeVar

from sqlalchemy.exc import DBAPIError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError
from tenacity import Retrying, before_sleep_log, retry_if_exception, stop_after_attempt, wait_random_exponential

from app.core.errors import ConflictError
from app.db.session import WRITE_ISOLATION, transaction

logger = logging.getLogger(__name__)

T = TypeVar("T")

RETRY_MAX_ATTEMPTS = int(os.getenv("RETRY_MAX_ATTEMPTS", "10"))
RETRY_INITIAL_DELAY = float(os.getenv("RETRY_INITIAL_DELAY", "0.05"))
RETRY_MAX_DELAY = float(os.getenv("RETRY_MAX_DELAY", "1.0"))

CONFLICT_MESSAGE = "The data was changed by another request at the same time. Please retry your request."

# serialization_failure, deadlock_detected
_TRANSIENT_SQLSTATES = {"40001", "40P01"}
_TRANSIENT_MARKERS = (
    "could not serialize access",
    "deadlock detected",
    "database is locked",
)


def is_transient(exc: BaseException) -> bool:
    """True for failures that re-running the whole unit of work can fix."""
    if isinstance(exc, StaleDataError):
        return True
    if isinstance(exc, DBAPIError):
        orig = exc.orig
        code = getattr(orig, "pgcode", None) or getattr(orig, "sqlstate", None)
        if code in _TRANSIENT_SQLSTATES:
            return True
        text = str(orig or exc).lower()
        return any(m in text for m in _TRANSIENT_MARKERS)
    return False


def with_retry(
    fn: Callable[[], T],
    *,
    max_attempts: int | None = None,
    initial_delay: float | None = None,
    max_delay: float | None = None,
) -> T:
    """Run `fn` until it succeeds, fails for good, or runs out of attempts.

    Only transient conflicts are retried; each retry waits a random time in
    [0, min(max_delay, initial_delay * 2**attempt)]. When the ceiling is hit the
    caller gets a ConflictError asking to retry the request.
    """
    attempts = max_attempts if max_attempts is not None else RETRY_MAX_ATTEMPTS
    retrying = Retrying(
        retry=retry_if_exception(is_transient),
        stop=stop_after_attempt(attempts),
        wait=wait_random_exponential(
            multiplier=RETRY_INITIAL_DELAY if initial_delay is None else initial_delay,
            max=RETRY_MAX_DELAY if max_delay is None else max_delay,
        ),
        before_sleep=before_sleep_log(logger, logging.WARNING),
        reraise=True,
    )
    try:
        return retrying(fn)
    except Exception as exc:
        if is_transient(exc):
            logger.warning("Giving up after %s attempts: %s", attempts, exc)
            raise ConflictError(CONFLICT_MESSAGE) from exc
        raise


def run_in_transaction(fn: Callable[[Session], T], *, isolation: str | None = WRITE_ISOLATION, **retry_opts) -> T:
    """Execute `fn(db)` inside its own transaction, re-running the whole thing on conflicts."""

    def _attempt() -> T:
        with transaction(isolation) as db:
            return fn(db)

    return with_retry(_attempt, **retry_opts)
