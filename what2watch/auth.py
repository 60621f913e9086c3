from __future__ import annotations

from flask import abort, request

from .db import query


def get_current_user() -> dict | None:
    """
    Extract and validate the current user from the request.
    Expects Authorization header with format: "Bearer user_id:email"
    Returns user dict with user_id, email, and is_admin, or None if not authenticated.
    """
    auth_header = request.headers.get("Authorization", "")
    if not auth_header.startswith("Bearer "):
        return None

    try:
        token = auth_header[7:]  # Remove "Bearer " prefix
        user_id_str, email = token.split(":", 1)
        user_id = int(user_id_str)
    except (ValueError, IndexError):
        return None

    rows = query(
        "SELECT user_id, email, is_admin FROM users WHERE user_id = ? AND lower(email) = lower(?)",
        (user_id, email),
    )
    if not rows:
        return None
    row = dict(rows[0])
    return {
        "user_id": row["user_id"],
        "email": row["email"],
        "is_admin": bool(row.get("is_admin") or 0),
    }


def current_user_id() -> int | None:
    user = get_current_user()
    return user["user_id"] if user else None


def require_user() -> dict:
    """Return the authenticated user or abort with 401."""
    user = get_current_user()
    if not user:
        abort(401, description="Authentication required")
    return user
