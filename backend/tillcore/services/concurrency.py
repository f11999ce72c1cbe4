# Overview: Transaction helpers shared by the services; row locks and retry on concurrency failures.

from __future__ import annotations

import logging
import time

from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

logger = logging.getLogger(__name__)


def lock_for_update(query):
    """
    Apply row-level locking for critical operations.

    NOTE: SQLite ignores SELECT ... FOR UPDATE, but other DBs will honor it.
    Optimistic ``version_id`` checks still catch lost updates there.
    """
    return query.with_for_update()


def run_with_retry(session, func, *, attempts: int = 3, backoff_base: float = 0.1, commit: bool = True):
    """
    Run ``func`` as one unit of work on ``session`` and commit it.

    Retries on OperationalError (deadlocks, locks) and StaleDataError
    (optimistic locking conflicts). Any other exception rolls the unit back
    and propagates unchanged.
    """
    for attempt in range(attempts):
        try:
            result = func()
            if commit:
                session.commit()
            return result
        except (OperationalError, StaleDataError) as exc:
            session.rollback()
            if attempt >= attempts - 1:
                raise
            logger.warning("Concurrency conflict (attempt %d/%d): %s", attempt + 1, attempts, exc)
            time.sleep(backoff_base * (2 ** attempt))
        except Exception:
            session.rollback()
            raise
