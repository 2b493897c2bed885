# Overview: Row locks and retry loops for checkout, stock, and payment transitions.

from __future__ import annotations

import time

from flask import current_app
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..extensions import db


def lock_for_update(query):
    """
    SELECT ... FOR UPDATE on `query`.

    NOTE: SQLite has no row locks and silently drops the clause; there the
    conditional stock UPDATE and the single writer keep things consistent.
    """
    return query.with_for_update()


def lock_one(model, *criteria):
    """
    Lock and return the first row of `model` matching `criteria`, or None.

    populate_existing() refreshes an instance already in the identity map so
    status checks see the locked row, not a stale copy.
    """
    return lock_for_update(db.session.query(model).filter(*criteria)).populate_existing().first()


def run_with_retry(func, *, attempts: int = 3, backoff_base: float = 0.1):
    """
    Run `func` and retry it after a rollback when the database reports a lock
    timeout, a deadlock or a version conflict.

    `func` is called again from scratch, so it must reload whatever it reads.
    """
    for attempt in range(1, attempts + 1):
        try:
            return func()
        except (OperationalError, StaleDataError) as exc:
            db.session.rollback()
            if attempt == attempts:
                raise
            current_app.logger.warning("Retrying after %s (attempt %s of %s)", type(exc).__name__, attempt, attempts)
            time.sleep(backoff_base * (2 ** (attempt - 1)))
