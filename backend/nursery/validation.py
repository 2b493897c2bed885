from __future__ import annotations
from datetime import datetime
from nursery.time_utils import parse_iso_datetime

import re
from dataclasses import dataclass
from typing import Any, Iterable

from sqlalchemy import Boolean, Integer, String, Text, DateTime, JSON
from sqlalchemy.orm import DeclarativeMeta

# Maximum price: 9,999,999.99 in major units (999,999,999 minor units)
MAX_PRICE_CENTS = 999_999_999
MAX_PAGE_SIZE = 100
CARE_LEVELS = ("easy", "moderate", "difficult")

EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
MOBILE_RE = re.compile(r"^\+?[1-9]\d{9,14}$")

class ValidationError(ValueError):
    """400-level input problem. `errors` maps field name -> message."""

    def __init__(self, message: str, errors: dict[str, str] | None = None):
        super().__init__(message)
        self.errors = errors or {}

class ConflictError(ValueError):
    """409-level business rule conflict (e.g., duplicate SKU or slug)."""

class NotFoundError(LookupError):
    """404-level missing entity."""

@dataclass(frozen=True)
class ModelValidationPolicy:
    """
    Central policy layer:
    - writable_fields: what clients are allowed to set (security boundary)
    - required_on_create: fields required for POST
    """
    writable_fields: set[str]
    required_on_create: set[str] = None  # type: ignore

def _columns_by_key(model: DeclarativeMeta) -> dict[str, Any]:
    mapper = model.__mapper__
    return {c.key: c for c in mapper.columns}

def _coerce_value(col, value: Any):
    coltype = col.type

    if value is None:
        return None

    # Integers - strict validation to reject floats and scientific notation
    if isinstance(coltype, Integer):
        if isinstance(value, int) and not isinstance(value, bool):
            return value
        if isinstance(value, str):
            stripped = value.strip()
            if not stripped or "e" in stripped.lower() or "." in stripped:
                raise ValidationError(f"{col.key} must be an integer", {col.key: "must be an integer"})
            try:
                return int(stripped)
            except ValueError:
                raise ValidationError(f"{col.key} must be an integer", {col.key: "must be an integer"})
        raise ValidationError(f"{col.key} must be an integer", {col.key: "must be an integer"})

    if isinstance(coltype, Boolean):
        if isinstance(value, bool):
            return value
        if isinstance(value, str):
            return value.strip().lower() in {"1", "true", "yes", "on"}
        return bool(value)

    # Datetimes (accept ISO-8601 strings; normalize to UTC)
    if isinstance(coltype, DateTime):
        if isinstance(value, datetime):
            return value
        if isinstance(value, str):
            try:
                dt = parse_iso_datetime(value)
            except ValueError:
                dt = None
            if dt is None:
                raise ValidationError(f"{col.key} must be an ISO-8601 datetime", {col.key: "must be an ISO-8601 datetime"})
            return dt
        raise ValidationError(f"{col.key} must be a datetime", {col.key: "must be a datetime"})

    if isinstance(coltype, JSON):
        if not isinstance(value, (list, dict)):
            raise ValidationError(f"{col.key} must be a list or object", {col.key: "must be a list or object"})
        return value

    if isinstance(coltype, (String, Text)):
        return str(value).strip()

    return value

def validate_payload(
    *,
    model: DeclarativeMeta,
    payload: dict,
    policy: ModelValidationPolicy,
    partial: bool,
) -> dict:
    """
    Validates + normalizes incoming JSON against:
    - SQLAlchemy column metadata (nullable, type, String length)
    - a policy allowlist (writable_fields)
    - required_on_create (if partial=False)
    Returns a cleaned patch dict with only writable fields.

    Unknown keys are ignored rather than rejected; storefront clients send
    whole form objects back.
    """
    if payload is None:
        payload = {}
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload")

    errors: dict[str, str] = {}
    required = policy.required_on_create or set()
    if not partial:
        for f in sorted(required):
            if payload.get(f) in (None, ""):
                errors[f] = "is required"

    cols = _columns_by_key(model)
    patch: dict = {}

    for k, raw in payload.items():
        if k not in policy.writable_fields or k not in cols:
            continue
        col = cols[k]

        if raw is None:
            if not col.nullable and k not in errors:
                errors[k] = "cannot be null"
            else:
                patch[k] = None
            continue

        try:
            val = _coerce_value(col, raw)
        except ValidationError as exc:
            errors.update(exc.errors)
            continue

        if isinstance(col.type, (String, Text)) and not col.nullable:
            if isinstance(val, str) and val == "":
                errors[k] = "cannot be blank"
                continue

        if isinstance(col.type, String) and col.type.length and isinstance(val, str):
            if len(val) > col.type.length:
                errors[k] = f"exceeds max length {col.type.length}"
                continue

        patch[k] = val

    if errors:
        raise ValidationError("Validation failed", errors)
    return patch

def enforce_rules_product(patch: dict) -> None:
    """Product business rules not captured by column metadata."""
    errors: dict[str, str] = {}
    if patch.get("price_cents") is not None:
        price = patch["price_cents"]
        if price <= 0:
            errors["price_cents"] = "must be greater than 0"
        elif price > MAX_PRICE_CENTS:
            errors["price_cents"] = f"cannot exceed {MAX_PRICE_CENTS}"
    for key in ("stock_quantity", "min_stock_threshold", "max_stock_threshold", "reorder_quantity"):
        if patch.get(key) is not None and patch[key] < 0:
            errors[key] = "must be >= 0"
    if patch.get("care_level") is not None and patch["care_level"] not in CARE_LEVELS:
        errors["care_level"] = f"must be one of: {', '.join(CARE_LEVELS)}"
    if errors:
        raise ValidationError("Validation failed", errors)

# =============================================================================
# Request field helpers
# =============================================================================

def require_fields(data: dict | None, fields: Iterable[str]) -> dict:
    """Raise ValidationError listing every missing/blank field."""
    data = data or {}
    errors = {f: "is required" for f in fields if data.get(f) in (None, "")}
    if errors:
        raise ValidationError("Missing required fields", errors)
    return data

def parse_positive_int(value: Any, field: str) -> int:
    if isinstance(value, bool):
        raise ValidationError(f"{field} must be a positive integer", {field: "must be a positive integer"})
    if isinstance(value, str) and value.strip().isdigit():
        value = int(value.strip())
    if not isinstance(value, int) or value <= 0:
        raise ValidationError(f"{field} must be a positive integer", {field: "must be a positive integer"})
    return value

def parse_non_negative_int(value: Any, field: str) -> int:
    if isinstance(value, bool):
        raise ValidationError(f"{field} must be a non-negative integer", {field: "must be a non-negative integer"})
    if isinstance(value, str) and value.strip().isdigit():
        value = int(value.strip())
    if not isinstance(value, int) or value < 0:
        raise ValidationError(f"{field} must be a non-negative integer", {field: "must be a non-negative integer"})
    return value

def parse_choice(value: Any, field: str, choices: Iterable[str]) -> str:
    choices = tuple(choices)
    if value not in choices:
        raise ValidationError(
            f"{field} must be one of: {', '.join(choices)}",
            {field: f"must be one of: {', '.join(choices)}"},
        )
    return value

def parse_email(value: Any, field: str = "email") -> str:
    if not isinstance(value, str) or not EMAIL_RE.match(value.strip()):
        raise ValidationError("Invalid email address", {field: "must be a valid email"})
    return value.strip().lower()

def parse_pagination(args, default_limit: int = 20) -> tuple[int, int]:
    """Parse ?page=&limit= query args; limit is capped at MAX_PAGE_SIZE."""
    try:
        page = int(args.get("page", 1))
        limit = int(args.get("limit", default_limit))
    except (TypeError, ValueError):
        raise ValidationError("page and limit must be integers")
    if page < 1:
        page = 1
    if limit < 1:
        limit = default_limit
    return page, min(limit, MAX_PAGE_SIZE)

def parse_optional_datetime(value: Any, field: str) -> datetime | None:
    if value in (None, ""):
        return None
    try:
        return parse_iso_datetime(str(value))
    except ValueError:
        raise ValidationError(f"{field} must be an ISO-8601 date", {field: "must be an ISO-8601 date"})
