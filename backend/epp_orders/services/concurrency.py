# Overview: Unit-of-work helpers: row locking and retry on lock or stale-data conflicts.

from __future__ import annotations

import logging
import time

from flask import current_app
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..extensions import db

logger = logging.getLogger(__name__)


def lock_for_update(query):
    """
    Apply row-level locking for critical operations.

    NOTE: SQLite ignores SELECT ... FOR UPDATE; the version_id columns still
    catch concurrent writers there.
    """
    return query.with_for_update()


def _retry_settings(attempts: int | None, backoff_base: float | None) -> tuple[int, float]:
    if attempts is None:
        attempts = int(current_app.config.get("DB_RETRY_ATTEMPTS", 3))
    if backoff_base is None:
        backoff_base = float(current_app.config.get("DB_RETRY_BACKOFF", 0.1))
    return max(1, attempts), backoff_base


def run_with_retry(func, *, attempts: int | None = None, backoff_base: float | None = None):
    """
    Execute a unit of work, retrying on concurrency-related failures.

    Retries on OperationalError (deadlocks, lock timeouts) and StaleDataError
    (optimistic locking conflicts). The session is rolled back before each
    retry, so func must re-read everything it writes. Any other exception
    rolls back and propagates.
    """
    attempts, backoff_base = _retry_settings(attempts, backoff_base)
    for attempt in range(attempts):
        try:
            return func()
        except (OperationalError, StaleDataError) as exc:
            db.session.rollback()
            if attempt >= attempts - 1:
                logger.error("Unit of work failed after %s attempts: %s", attempts, exc)
                raise
            logger.warning("Concurrency conflict (attempt %s/%s), retrying: %s", attempt + 1, attempts, exc)
            time.sleep(backoff_base * (2 ** attempt))
        except Exception:
            db.session.rollback()
            raise

