# Overview: Transaction boundary, row locking and lock-contention retry for workflow operations.

from __future__ import annotations

import time
from contextlib import contextmanager

from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..errors import ConcurrentModificationError
from ..extensions import db
from ..notifications import discard_pending, dispatch_pending

_DEPTH_KEY = "repairdesk.atomic_depth"


def lock_for_update(query):
    """
    Apply row-level locking for critical operations.

    NOTE: SQLite ignores SELECT ... FOR UPDATE, but other DBs will honor it.
    The version_id counter on the locked row still catches stale writes there.
    """
    return query.with_for_update()


def run_with_retry(func, *, attempts: int = 3, backoff_base: float = 0.1):
    """
    Execute a DB operation with retry on lock contention.

    Only OperationalError (deadlocks, "database is locked") is retried.
    Optimistic-version conflicts surface as ConcurrentModificationError and
    go back to the caller, who has to reload before trying again.
    """
    last_exc = None
    for attempt in range(attempts):
        try:
            return func()
        except OperationalError as exc:
            db.session.rollback()
            last_exc = exc
            if attempt >= attempts - 1:
                raise
            time.sleep(backoff_base * (2 ** attempt))
    if last_exc:
        raise last_exc


@contextmanager
def atomic():
    """
    One workflow operation = one transaction.

    Commits when the block finishes, rolls back on any exception. Queued
    notifications are delivered only after a successful commit and dropped
    on rollback. Nested use joins the outer transaction.
    """
    info = db.session.info
    depth = info.get(_DEPTH_KEY, 0)
    if depth:
        info[_DEPTH_KEY] = depth + 1
        try:
            yield db.session
        finally:
            info[_DEPTH_KEY] = depth
        return

    info[_DEPTH_KEY] = 1
    try:
        yield db.session
        db.session.commit()
    except StaleDataError as exc:
        db.session.rollback()
        discard_pending()
        raise ConcurrentModificationError(
            "Record was changed by another user; reload and try again"
        ) from exc
    except BaseException:
        db.session.rollback()
        discard_pending()
        raise
    finally:
        info.pop(_DEPTH_KEY, None)

    dispatch_pending()
