"""
Production Hub
Blueprint registry helpers.
"""

from flask import request


def current_actor(data=None):
    """Actor name for audit columns.

    Authentication lives in front of this service; the gateway forwards the
    user as ``X-Actor``. A body ``actor`` field is accepted for scripts.
    """
    if data and data.get("actor"):
        return str(data["actor"])
    return request.headers.get("X-Actor") or None


def non_string_fields(data, *fields):
    """Names of *fields* present in the body with a non-string value."""
    return [f for f in fields if data.get(f) is not None and not isinstance(data[f], str)]
