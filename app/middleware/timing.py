"""
Request context + timing middleware.

Every response carries X-Request-ID (echoed from the caller when given)
and X-Request-Duration-Ms.  Requests against a DMAIC project are logged
with its project_id so engine and HTTP records can be joined.
"""

import logging
import time
import uuid

from flask import Flask, g, request

logger = logging.getLogger(__name__)

_QUIET_PATHS = frozenset({"/api/v1/health", "/api/v1/health/ready", "/api/v1/health/live"})


def _request_id() -> str:
    supplied = (request.headers.get("X-Request-ID") or "").strip()
    return supplied[:64] if supplied else uuid.uuid4().hex[:12]


def init_request_timing(app: Flask):
    """Register before/after hooks; SLOW_REQUEST_MS sets the warning threshold."""
    slow_ms = float(app.config.get("SLOW_REQUEST_MS", 1000))

    @app.before_request
    def _open_request():
        g.request_start = time.perf_counter()
        g.request_id = _request_id()

    @app.after_request
    def _close_request(response):
        start = getattr(g, "request_start", None)
        if start is None:
            return response

        elapsed = (time.perf_counter() - start) * 1000
        response.headers["X-Request-ID"] = g.request_id
        response.headers["X-Request-Duration-Ms"] = f"{elapsed:.1f}"

        if request.path in _QUIET_PATHS:
            return response

        view_args = request.view_args or {}
        extra = {
            "request_id": g.request_id,
            "method": request.method,
            "path": request.path,
            "status": response.status_code,
            "duration_ms": elapsed,
            "remote_addr": request.remote_addr,
            "project_id": view_args.get("project_id"),
        }
        if response.status_code >= 500:
            level = logging.ERROR
        elif elapsed > slow_ms:
            level = logging.WARNING
        else:
            level = logging.DEBUG
        logger.log(level, "%s %s -> %d", request.method, request.path,
                   response.status_code, extra=extra)
        return response
