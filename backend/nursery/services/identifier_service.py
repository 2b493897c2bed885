# Overview: Service-layer generators for human-readable identifiers, slugs and one-time codes.

"""
Identifier Service

Order numbers:    ORD<epoch millis><2 random digits>   e.g. ORD171234567890142
Tracking numbers: TRK<last 6 epoch digits><4 upper alnum> e.g. TRK890142K7QZ
Ticket numbers:   TCKT-<epoch millis>-<4 upper alnum>   e.g. TCKT-1712345678901-AB12

Uniqueness is enforced by unique constraints on the owning tables; the
random suffix makes collisions within the same millisecond unlikely and
callers retry on IntegrityError through run_with_retry where it matters.

OTP codes come from `secrets` (never `random`): they gate account creation.
"""

from __future__ import annotations

import re
import secrets
import string
import time
import unicodedata

_UPPER_ALNUM = string.ascii_uppercase + string.digits


def _epoch_millis() -> int:
    return int(time.time() * 1000)


def _random_chars(length: int, alphabet: str = _UPPER_ALNUM) -> str:
    return "".join(secrets.choice(alphabet) for _ in range(length))


def generate_order_number() -> str:
    return f"ORD{_epoch_millis()}{_random_chars(2, string.digits)}"


def generate_tracking_number() -> str:
    ts = str(_epoch_millis())[-6:]
    return f"TRK{ts}{_random_chars(4)}"


def generate_ticket_number() -> str:
    return f"TCKT-{_epoch_millis()}-{_random_chars(4)}"


def generate_otp(length: int = 6) -> str:
    """Numeric one-time code; never starts with 0 so it keeps its length in every client."""
    first = secrets.choice("123456789")
    return first + _random_chars(length - 1, string.digits)


def slugify(value: str) -> str:
    """'Monstera Deliciosa (Large)' -> 'monstera-deliciosa-large'"""
    normalized = unicodedata.normalize("NFKD", value).encode("ascii", "ignore").decode("ascii")
    slug = re.sub(r"[^a-zA-Z0-9]+", "-", normalized).strip("-").lower()
    return slug or "item"


def unique_slug(model, value: str, *, exclude_id: int | None = None) -> str:
    """Slugify and append -2, -3, ... until no row of `model` uses it."""
    from ..extensions import db

    base = slugify(value)
    candidate = base
    suffix = 2
    while True:
        q = db.session.query(model.id).filter(model.slug == candidate)
        if exclude_id is not None:
            q = q.filter(model.id != exclude_id)
        if q.first() is None:
            return candidate
        candidate = f"{base}-{suffix}"
        suffix += 1
