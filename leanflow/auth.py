"""
Lean Future-State Studio
Caller identity boundary.

Authentication is performed upstream (identity provider / API gateway),
which forwards the authenticated user id in the ``X-User-Id`` header.
This module only lifts that identity into ``flask.g.user_id`` so services
can stamp ``created_by`` and the rate limiter can key on the user.

Configuration (env vars):
    API_AUTH_ENABLED  : "true" rejects /api/v1/* requests without X-User-Id
                        (health endpoint excepted)
"""

import logging

from flask import g, request

from leanflow.utils.errors import E, api_error

logger = logging.getLogger(__name__)

USER_HEADER = "X-User-Id"
_PUBLIC_PATHS = frozenset({"/api/v1/health"})


def current_user_id() -> str | None:
    """Return the authenticated user id for the current request, if any."""
    return getattr(g, "user_id", None)


def _auth_enabled(app) -> bool:
    return str(app.config.get("API_AUTH_ENABLED", "false")).lower() in ("1", "true", "yes")


def init_auth(app):
    """Register the before_request hook that resolves the caller identity."""

    @app.before_request
    def _resolve_user():
        user_id = (request.headers.get(USER_HEADER) or "").strip()
        g.user_id = user_id or None

        if not request.path.startswith("/api/") or request.path in _PUBLIC_PATHS:
            return None
        if _auth_enabled(app) and not g.user_id:
            logger.info("Rejected unauthenticated request", extra={"path": request.path})
            return api_error(E.UNAUTHORIZED, "Unauthorized")
        return None
