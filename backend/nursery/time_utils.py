# Overview: UTC clock helpers shared by OTP, reset-token, and session expiry checks.

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Optional


def utcnow() -> datetime:
    """Server-side 'now' in UTC (naive, canonical)."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def as_naive_utc(dt: Optional[datetime]) -> Optional[datetime]:
    """SQLite hands back naive datetimes, Postgres aware ones; compare in naive UTC."""
    if dt is None or dt.tzinfo is None:
        return dt
    return dt.astimezone(timezone.utc).replace(tzinfo=None)


def expires_in(*, minutes: int = 0, seconds: int = 0) -> datetime:
    """Expiry stamp for OTPs and reset links."""
    return utcnow() + timedelta(minutes=minutes, seconds=seconds)


def has_passed(moment: datetime) -> bool:
    return utcnow() > as_naive_utc(moment)


def idle_cutoff(seconds: int) -> datetime:
    """Anything last seen before this instant has been idle longer than `seconds`."""
    return utcnow() - timedelta(seconds=seconds)


def parse_iso_datetime(value: Optional[str]) -> Optional[datetime]:
    """
    Parse an ISO-8601 string from a query parameter into naive UTC.

    Blank input gives None; a bare date means midnight UTC; offsets and a
    trailing Z are converted.
    """
    if value is None:
        return None
    s = value.strip()
    if not s:
        return None

    if s.endswith("Z"):
        s = s[:-1] + "+00:00"

    return as_naive_utc(datetime.fromisoformat(s))


def to_utc_z(dt: Optional[datetime]) -> Optional[str]:
    """ISO-8601 with a trailing 'Z', seconds precision. Naive input is taken as UTC."""
    if dt is None:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc).replace(microsecond=0).isoformat().replace("+00:00", "Z")
