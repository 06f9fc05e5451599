"""
Request timing middleware.

Every response carries X-Request-ID and X-Request-Duration-Ms.  Each request
is also recorded in an in-process ring buffer, tagged with the document and
circuit it addressed (taken from the URL), which the metrics blueprint reads.
"""

import logging
import threading
import time
import uuid
from collections import deque

from flask import Flask, g, request

logger = logging.getLogger(__name__)

# Probes hit these constantly; record them but never log them
_QUIET_PATHS = frozenset({"/api/v1/health/live", "/api/v1/health/ready"})

SLOW_THRESHOLD_MS = 1000
_BUFFER_SIZE = 10_000


class RequestMetrics:
    """Bounded, thread-safe buffer of recent request samples."""

    def __init__(self, maxlen: int = _BUFFER_SIZE) -> None:
        self._lock = threading.Lock()
        self._samples: deque = deque(maxlen=maxlen)

    def record(self, method, path, status, duration_ms, *, document_id=None, circuit_id=None):
        sample = {
            "ts": time.time(),
            "method": method,
            "path": path,
            "status": status,
            "ms": round(duration_ms, 1),
            "document_id": document_id,
            "circuit_id": circuit_id,
        }
        with self._lock:
            self._samples.append(sample)
        return sample

    def since(self, seconds: int) -> list[dict]:
        cutoff = time.time() - seconds
        with self._lock:
            return [s for s in self._samples if s["ts"] >= cutoff]

    def clear(self) -> None:
        with self._lock:
            self._samples.clear()


_metrics = RequestMetrics()


def _request_scope() -> tuple[int | None, int | None]:
    args = request.view_args or {}
    return args.get("document_id"), args.get("circuit_id")


def init_request_timing(app: Flask):
    """Register before/after hooks for request timing."""

    @app.before_request
    def _start_timer():
        g.request_start = time.perf_counter()
        g.request_id = request.headers.get("X-Request-ID") or uuid.uuid4().hex[:12]

    @app.after_request
    def _finish_timer(response):
        start = getattr(g, "request_start", None)
        if start is None:
            return response

        elapsed = (time.perf_counter() - start) * 1000
        request_id = getattr(g, "request_id", "")
        response.headers["X-Request-ID"] = request_id
        response.headers["X-Request-Duration-Ms"] = f"{elapsed:.1f}"

        document_id, circuit_id = _request_scope()
        _metrics.record(request.method, request.path, response.status_code, elapsed,
                        document_id=document_id, circuit_id=circuit_id)

        if request.path in _QUIET_PATHS:
            return response

        extra = {
            "method": request.method,
            "path": request.path,
            "status": response.status_code,
            "duration_ms": elapsed,
            "remote_addr": request.remote_addr,
            "request_id": request_id,
            "document_id": document_id,
            "circuit_id": circuit_id,
        }
        if response.status_code >= 500:
            level = logging.ERROR
        elif elapsed > SLOW_THRESHOLD_MS:
            level = logging.WARNING
        else:
            level = logging.DEBUG
        logger.log(level, "%s %s -> %d (%.0fms)", request.method, request.path,
                   response.status_code, elapsed, extra=extra)
        return response


def get_recent_metrics(seconds: int = 3600) -> list[dict]:
    """Request samples from the last N seconds."""
    return _metrics.since(seconds)


def reset_metrics():
    _metrics.clear()
