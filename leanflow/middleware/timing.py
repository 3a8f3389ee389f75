"""
Per-request id and duration.

Every response carries ``X-Request-ID`` (echoed from the caller when sent)
and ``X-Request-Duration-Ms``. Requests over the slow threshold are logged
as warnings; agent endpoints get a threshold sized for a model round-trip.
"""

import logging
import time
import uuid

from flask import Flask, g, request

logger = logging.getLogger(__name__)

_UNLOGGED_PATHS = frozenset({"/api/v1/health", "/api/v1/health/ready"})

SLOW_REQUEST_MS = 1000
SLOW_AGENT_REQUEST_MS = 30000


def _slow_threshold() -> float:
    if request.blueprint == "agent":
        return SLOW_AGENT_REQUEST_MS
    return SLOW_REQUEST_MS


def init_request_timing(app: Flask):
    @app.before_request
    def _open_request():
        g.request_started = time.perf_counter()
        g.request_id = request.headers.get("X-Request-ID") or uuid.uuid4().hex[:12]

    @app.after_request
    def _close_request(response):
        started = getattr(g, "request_started", None)
        if started is None:
            return response

        elapsed_ms = (time.perf_counter() - started) * 1000
        response.headers["X-Request-ID"] = g.request_id
        response.headers["X-Request-Duration-Ms"] = f"{elapsed_ms:.1f}"
        if request.path in _UNLOGGED_PATHS:
            return response

        context = {
            "method": request.method,
            "path": request.path,
            "status": response.status_code,
            "duration_ms": elapsed_ms,
            "remote_addr": request.remote_addr,
            "request_id": g.request_id,
            "user_id": getattr(g, "user_id", None),
        }
        if elapsed_ms > _slow_threshold():
            logger.warning("Slow request %s %s", request.method, request.path, extra=context)
        else:
            logger.debug("%s %s -> %s", request.method, request.path, response.status_code,
                         extra=context)
        return response
