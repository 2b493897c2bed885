# Overview: JSON response envelope helpers shared by all blueprints.

"""
Response Envelope

Every endpoint answers with the same shape so the storefront and the admin
console can share one client:

    {"success": true,  "data": ..., "message": "...", "pagination": {...}}
    {"success": false, "message": "...", "errors": {"field": "msg"}}

Pagination block: {"total", "page", "limit", "totalPages"}.
"""

from __future__ import annotations

import math

from flask import current_app, jsonify

from .validation import ValidationError


def success(data=None, message: str | None = None, status: int = 200, **extra):
    body: dict = {"success": True}
    if data is not None:
        body["data"] = data
    if message:
        body["message"] = message
    body.update(extra)
    return jsonify(body), status


def failure(message: str, status: int = 400, errors: dict | None = None):
    body: dict = {"success": False, "message": message}
    if errors:
        body["errors"] = errors
    return jsonify(body), status


def validation_failure(exc: ValidationError):
    return failure(str(exc), 400, exc.errors or None)


def pagination_block(total: int, page: int, limit: int) -> dict:
    return {
        "total": total,
        "page": page,
        "limit": limit,
        "totalPages": math.ceil(total / limit) if limit else 0,
    }


def paginated(items: list, total: int, page: int, limit: int, key: str | None = None):
    data = {key: items} if key else items
    return success(data, pagination=pagination_block(total, page, limit))


def server_error(context: str, exc: Exception | None = None):
    """
    Log the current exception and answer 500.

    Detail is only exposed when EXPOSE_ERROR_DETAILS is set (development).
    """
    current_app.logger.exception(context)
    body: dict = {"success": False, "message": "Internal server error"}
    if exc is not None and current_app.config.get("EXPOSE_ERROR_DETAILS"):
        body["error"] = str(exc)
    return jsonify(body), 500
