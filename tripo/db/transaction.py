"""Bounded retry around an optimistic read-modify-write.

The unit of work runs in a fresh session per attempt. Contended rows carry a
``version_id_col``; if another transaction committed a change to a row this
attempt read, the flush raises ``StaleDataError`` and the whole attempt is
rolled back and re-run against fresh state. Unique-key races surface as
``IntegrityError`` and are treated the same way: the next attempt re-reads
and reports the business outcome (duplicate, idempotent replay, ...).
"""
import logging
import time
from typing import Callable, TypeVar

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.orm.exc import StaleDataError

from tripo.core.errors import ConcurrencyConflict

logger = logging.getLogger(__name__)

T = TypeVar("T")

RETRYABLE_ERRORS = (StaleDataError, IntegrityError)


def run_in_transaction(
    session_factory: sessionmaker,
    work: Callable[[Session], T],
    *,
    max_attempts: int = 3,
    backoff_seconds: float = 0.05,
    sleep: Callable[[float], None] = time.sleep,
    label: str = "transaction",
) -> T:
    if max_attempts < 1:
        raise ValueError("max_attempts must be >= 1")

    last_error: Exception | None = None
    for attempt in range(1, max_attempts + 1):
        db = session_factory()
        try:
            result = work(db)
            db.commit()
            return result
        except RETRYABLE_ERRORS as e:
            db.rollback()
            last_error = e
            logger.warning(
                "%s aborted on conflict (attempt %d/%d): %s",
                label, attempt, max_attempts, e.__class__.__name__,
            )
            if attempt < max_attempts and backoff_seconds > 0:
                sleep(backoff_seconds * (2 ** (attempt - 1)))
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    raise ConcurrencyConflict(
        f"{label} could not commit after {max_attempts} attempts",
    ) from last_error
