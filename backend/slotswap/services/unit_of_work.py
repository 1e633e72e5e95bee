"""
Atomic unit-of-work runner shared by every write operation.

``work`` runs inside the session's transaction and is committed as a whole.
Precondition failures (SwapError) roll back and propagate unchanged. Losing a
race (a version-guarded write matching no row, or the database reporting
lock contention / a serialization failure) rolls back and re-runs ``work``
from scratch, so the re-run re-reads current state before deciding again.
"""

import logging
import os
from typing import Callable, Optional, TypeVar

import backoff
from sqlalchemy.exc import OperationalError
from sqlmodel import Session

from slotswap.services.errors import StaleRecordError, TransientStorageError

logger = logging.getLogger(__name__)

MAX_ATTEMPTS = int(os.getenv("SWAP_MAX_ATTEMPTS", "5"))
RETRY_BACKOFF_SECONDS = 0.02
MAX_BACKOFF_SECONDS = 1.0

# Failures that mean "someone else got there first"; anything else is final
LOST_RACE = (StaleRecordError, OperationalError)

T = TypeVar("T")


def run_unit_of_work(
    session: Session,
    operation: str,
    work: Callable[[], T],
    max_attempts: Optional[int] = None,
) -> T:
    """
    Execute ``work`` and commit, retrying on contention.

    Returns whatever ``work`` returns, refreshed after commit so it can be
    serialized once the session is gone.

    Raises:
        SwapError: a precondition failed; nothing was written
        TransientStorageError: every attempt lost a race; nothing was written
    """
    attempts = max_attempts or MAX_ATTEMPTS

    def log_retry(details):
        logger.warning(
            "%s attempt %d/%d lost a race, retrying in %.3fs: %s",
            operation,
            details["tries"],
            attempts,
            details["wait"],
            details["exception"],
        )

    def log_giveup(details):
        logger.error("%s gave up after %d attempts: %s", operation, details["tries"], details["exception"])

    @backoff.on_exception(
        backoff.expo,
        LOST_RACE,
        max_tries=attempts,
        factor=RETRY_BACKOFF_SECONDS,
        max_value=MAX_BACKOFF_SECONDS,
        on_backoff=log_retry,
        on_giveup=log_giveup,
        logger=None,
    )
    def attempt() -> T:
        try:
            result = work()
            session.commit()
        except Exception:
            session.rollback()
            raise
        return result

    try:
        result = attempt()
    except LOST_RACE as e:
        raise TransientStorageError(
            f"{operation} could not complete because of concurrent updates; please retry"
        ) from e

    if result is not None:
        session.refresh(result)
    return result
