"""
Rate limiting configuration.

Applies per-blueprint rate limits using Flask-Limiter. The Limiter instance
is created in leanflow/__init__.py with no default limits; this module
applies granular limits per route category.

Every agent cache miss triggers a billed external generation call, so the
agent blueprint is limited per authenticated user rather than per IP.

Usage:
    from leanflow.middleware.rate_limiter import init_rate_limits
    init_rate_limits(app, limiter)
"""

import logging

from flask import g, request as flask_request

logger = logging.getLogger(__name__)

WRITE_BLUEPRINTS = ("future_state", "sequencing", "solution", "insight", "information_flow")


def user_rate_limit_key() -> str:
    """Rate limit key: authenticated user if known, else remote IP."""
    user_id = getattr(g, "user_id", None)
    if user_id:
        return f"user:{user_id}"
    return flask_request.remote_addr or "unknown"


def init_rate_limits(app, limiter):
    """
    Apply rate limits to API blueprints.

    Limits:
        - Agent endpoints:  AGENT_RATE_LIMIT per user (default 10/minute)
        - Write endpoints:  WRITE_RATE_LIMIT per user (default 60/minute)
        - Health check:     exempt

    Rate limiting is disabled in testing mode.
    """

    if app.config.get("TESTING"):
        app.logger.info("Rate limiter disabled (TESTING=True)")
        return

    agent_limit = app.config.get("AGENT_RATE_LIMIT", "10/minute")
    write_limit = app.config.get("WRITE_RATE_LIMIT", "60/minute")

    bp = app.blueprints.get("agent")
    if bp:
        limiter.limit(agent_limit, key_func=user_rate_limit_key)(bp)

    for bp_name in WRITE_BLUEPRINTS:
        bp = app.blueprints.get(bp_name)
        if bp:
            limiter.limit(
                write_limit,
                key_func=user_rate_limit_key,
                methods=["POST", "PUT", "PATCH", "DELETE"],
            )(bp)

    bp = app.blueprints.get("health")
    if bp:
        limiter.exempt(bp)

    app.logger.info("Rate limiter configured: agent: %s, write: %s", agent_limit, write_limit)
