"""
Request timing middleware.

Every request gets an id (taken from X-Request-ID when the caller sent one)
and is echoed back with X-Request-ID / X-Request-Duration-Ms. API requests
are logged with actor/space/task context; SSE streams are logged when the
stream opens, so their duration never counts as slow.
"""

import logging
import time
import uuid

from flask import Flask, g, request

logger = logging.getLogger(__name__)

_QUIET_PATHS = frozenset({"/api/v1/health"})

SLOW_THRESHOLD_MS = 1000


def _level_for(response, duration_ms):
    if response.status_code >= 500:
        return logging.ERROR
    if duration_ms > SLOW_THRESHOLD_MS and not response.is_streamed:
        return logging.WARNING
    return logging.DEBUG


def init_request_timing(app: Flask):
    """Register before/after hooks for request timing."""

    @app.before_request
    def _start_timer():
        g.request_start = time.perf_counter()
        g.request_id = request.headers.get("X-Request-ID") or uuid.uuid4().hex[:12]

    @app.after_request
    def _log_request(response):
        start = getattr(g, "request_start", None)
        if start is None:
            return response

        duration_ms = (time.perf_counter() - start) * 1000
        response.headers["X-Request-ID"] = g.request_id
        response.headers["X-Request-Duration-Ms"] = f"{duration_ms:.1f}"

        if request.path in _QUIET_PATHS or not request.path.startswith("/api/"):
            return response

        view_args = request.view_args or {}
        logger.log(
            _level_for(response, duration_ms),
            "%s %s → %d (%.0fms)", request.method, request.path, response.status_code, duration_ms,
            extra={
                "method": request.method,
                "path": request.path,
                "status": response.status_code,
                "duration_ms": duration_ms,
                "request_id": g.request_id,
                "actor_id": getattr(g, "actor_id", None),
                "space_id": view_args.get("space_id"),
                "task_id": view_args.get("task_id"),
            },
        )
        return response
