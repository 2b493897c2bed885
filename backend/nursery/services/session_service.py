# Overview: Service-layer operations for sessions; the one-live-login-per-account store and its inactivity reaper.

"""
Active Session Store

WHY: An account may be logged in on one device at a time. The live session
lives in the shared database (ActiveSession, unique per user) so every
worker process agrees on it; process memory would give each worker its own
view and lose everything on restart.

SECURITY FEATURES:
- session_id is 32 bytes from `secrets`, embedded in tokens as `sid`.
- A token whose sid does not match the stored row is rejected.
- Inactivity timeout (SESSION_INACTIVITY_TIMEOUT_SECONDS): a session idle
  past the timeout is stale. Stale rows are reaped lazily on login and on
  validation, and in bulk by `sessions sweep`.
- Logout, password reset and account deactivation end the session.

The store never commits; the module-level functions own the transaction.
"""

from __future__ import annotations

import secrets

from flask import current_app
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import ActiveSession
from nursery.time_utils import utcnow, as_naive_utc, idle_cutoff


ALREADY_LOGGED_IN_MESSAGE = "Account already logged in on another device. Please logout first."


class SessionConflictError(Exception):
    """A live session already exists for this account (403)."""

    def __init__(self, message: str = ALREADY_LOGGED_IN_MESSAGE):
        super().__init__(message)


class SessionStore:
    """Persistence interface for the one-session-per-user map."""

    def get(self, user_id: int):
        raise NotImplementedError

    def set(self, user_id: int, session_id: str, *, user_agent: str | None = None, ip_address: str | None = None):
        raise NotImplementedError

    def delete(self, user_id: int) -> bool:
        raise NotImplementedError

    def touch(self, user_id: int) -> None:
        raise NotImplementedError

    def count_idle(self, idle_before) -> int:
        raise NotImplementedError

    def sweep(self, idle_before) -> int:
        raise NotImplementedError


class DatabaseSessionStore(SessionStore):
    """SessionStore on the active_sessions table."""

    def get(self, user_id: int) -> ActiveSession | None:
        return db.session.query(ActiveSession).filter(ActiveSession.user_id == user_id).first()

    def set(self, user_id: int, session_id: str, *, user_agent: str | None = None, ip_address: str | None = None) -> ActiveSession:
        now = utcnow()
        row = ActiveSession(
            user_id=user_id,
            session_id=session_id,
            user_agent=(user_agent or "")[:512] or None,
            ip_address=ip_address,
            created_at=now,
            last_seen_at=now,
        )
        db.session.add(row)
        db.session.flush()
        return row

    def delete(self, user_id: int) -> bool:
        deleted = (
            db.session.query(ActiveSession)
            .filter(ActiveSession.user_id == user_id)
            .delete(synchronize_session="fetch")
        )
        return deleted > 0

    def touch(self, user_id: int) -> None:
        (
            db.session.query(ActiveSession)
            .filter(ActiveSession.user_id == user_id)
            .update({ActiveSession.last_seen_at: utcnow()}, synchronize_session="fetch")
        )

    def count_idle(self, idle_before) -> int:
        return db.session.query(ActiveSession).filter(ActiveSession.last_seen_at < idle_before).count()

    def sweep(self, idle_before) -> int:
        return (
            db.session.query(ActiveSession)
            .filter(ActiveSession.last_seen_at < idle_before)
            .delete(synchronize_session="fetch")
        )


def get_store() -> SessionStore:
    return current_app.extensions["session_store"]


def _idle_cutoff():
    return idle_cutoff(current_app.config["SESSION_INACTIVITY_TIMEOUT_SECONDS"])


def is_stale(row: ActiveSession) -> bool:
    return as_naive_utc(row.last_seen_at) < _idle_cutoff()


def generate_session_id() -> str:
    return secrets.token_hex(32)


def open_session(user_id: int, *, user_agent: str | None = None, ip_address: str | None = None) -> str:
    """
    Register a new login. Does NOT commit.

    A stale session is reaped first; a live one raises SessionConflictError.
    Returns the new session id.
    """
    store = get_store()
    existing = store.get(user_id)
    if existing is not None:
        if not is_stale(existing):
            raise SessionConflictError()
        store.delete(user_id)
        db.session.flush()

    session_id = generate_session_id()
    try:
        store.set(user_id, session_id, user_agent=user_agent, ip_address=ip_address)
    except IntegrityError:
        # Concurrent login won the unique(user_id) race
        db.session.rollback()
        raise SessionConflictError()
    return session_id


def validate_session(user_id: int, session_id: str) -> bool:
    """
    True when `session_id` is the user's live session. Touches last_seen on
    success; reaps the row if it went stale. Commits.
    """
    store = get_store()
    row = store.get(user_id)
    if row is None or not secrets.compare_digest(row.session_id, session_id or ""):
        return False
    if is_stale(row):
        store.delete(user_id)
        db.session.commit()
        current_app.logger.info("Session for user %s expired after inactivity", user_id)
        return False
    store.touch(user_id)
    db.session.commit()
    return True


def end_session(user_id: int, *, commit: bool = True) -> bool:
    """Remove the user's session (logout, password reset, deactivation)."""
    removed = get_store().delete(user_id)
    if commit:
        db.session.commit()
    return removed


def stale_session_count() -> int:
    return get_store().count_idle(_idle_cutoff())


def sweep_stale_sessions() -> int:
    """Delete every session idle past the timeout. Commits; returns the count."""
    removed = get_store().sweep(_idle_cutoff())
    db.session.commit()
    if removed:
        current_app.logger.info("Swept %s stale session(s)", removed)
    return removed


def get_active_session(user_id: int) -> ActiveSession | None:
    return get_store().get(user_id)
