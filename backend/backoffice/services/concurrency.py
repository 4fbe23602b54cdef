# Overview: Row locking, retry and commit helpers shared by every write path.

from __future__ import annotations

import logging
import time
from typing import Callable

from sqlalchemy import event
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from ..extensions import db


logger = logging.getLogger(__name__)

_POST_COMMIT_KEY = "post_commit_hooks"


def lock_for_update(query):
    """
    Apply row-level locking for critical operations.

    NOTE: SQLite ignores SELECT ... FOR UPDATE, but other DBs will honor it.
    Rows that must survive SQLite also carry a version_id_col.
    """
    return query.with_for_update()


def run_with_retry(func, *, attempts: int = 3, backoff_base: float = 0.1):
    """
    Execute a DB operation with retry on concurrency-related failures.

    Retries on OperationalError (deadlocks, locks) and StaleDataError
    (optimistic locking conflicts). The session is rolled back before each
    retry, so func must rebuild all of its state from the database.
    """
    last_exc = None
    for attempt in range(attempts):
        try:
            return func()
        except (OperationalError, StaleDataError) as exc:
            db.session.rollback()
            last_exc = exc
            if attempt >= attempts - 1:
                raise
            time.sleep(backoff_base * (2 ** attempt))
    if last_exc:
        raise last_exc


def on_commit(key: str, hook: Callable[[], None]) -> None:
    """
    Register a callable to run once after the current transaction commits.

    Hooks are keyed so repeated registrations in the same transaction
    collapse into one call. A rollback discards them.
    """
    hooks = db.session.info.setdefault(_POST_COMMIT_KEY, {})
    hooks[key] = hook


@event.listens_for(Session, "after_soft_rollback")
def discard_commit_hooks(session, previous_transaction) -> None:
    # Savepoint rollbacks leave the outer transaction, and its hooks, alive.
    if previous_transaction.nested:
        return
    session.info.pop(_POST_COMMIT_KEY, None)


def _run_commit_hooks() -> None:
    hooks = db.session.info.pop(_POST_COMMIT_KEY, {})
    for key, hook in hooks.items():
        try:
            hook()
        except Exception:
            logger.exception("Post-commit hook %s failed", key)


def commit_with_retry():
    """
    Commit the current session, then fire post-commit hooks.

    Retries belong around the service operation (run_with_retry), which
    rebuilds its writes after a rollback. A failed commit has already lost
    its pending changes, so it is rolled back and re-raised for the caller
    to answer with an error.
    """
    try:
        db.session.commit()
    except (OperationalError, StaleDataError):
        db.session.rollback()
        logger.warning("Commit failed; transaction rolled back")
        raise
    _run_commit_hooks()
