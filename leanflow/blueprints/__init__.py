"""HTTP blueprints. Every blueprint is mounted under /api/v1."""

from flask import request

from leanflow.utils.errors import E, api_error


def json_body(required: bool = True):
    """Return ``(data, error_response)`` for the request's JSON object body."""
    data = request.get_json(silent=True)
    if data is None:
        if required:
            return None, api_error(E.VALIDATION_REQUIRED, "JSON body is required")
        return {}, None
    if not isinstance(data, dict):
        return None, api_error(E.VALIDATION_INVALID, "JSON body must be an object")
    return data, None


def flag(data: dict, key: str) -> bool:
    value = data.get(key, False)
    if isinstance(value, str):
        return value.lower() in ("1", "true", "yes")
    return bool(value)
