"""
Refresh sink — notifies interested parties that a document's workflow view
is stale.

The workflow core publishes after every committed change; the HTTP layer (or
a websocket bridge, a cache invalidator, a test) subscribes.  A failing
subscriber is logged and never breaks the publisher or other subscribers.

Usage:
    sink = current_app.extensions["workflow"]["refresh_sink"]
    sink.subscribe(lambda event: cache.invalidate(event["document_id"]))
    sink.publish(42, "moved", {"new_status_id": 7})
"""

from __future__ import annotations

import logging
import threading
import time
from typing import Callable

logger = logging.getLogger(__name__)

_MAX_RECENT = 500


class RefreshSink:
    """In-process fan-out of document refresh events."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._subscribers: list[Callable[[dict], None]] = []
        self._recent: list[dict] = []

    def subscribe(self, callback: Callable[[dict], None]) -> None:
        with self._lock:
            self._subscribers.append(callback)

    def unsubscribe(self, callback: Callable[[dict], None]) -> None:
        with self._lock:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

    def publish(self, document_id: int, reason: str, payload: dict | None = None) -> dict:
        event = {
            "document_id": document_id,
            "reason": reason,
            "payload": payload or {},
            "ts": time.time(),
        }
        with self._lock:
            self._recent.append(event)
            if len(self._recent) > _MAX_RECENT:
                del self._recent[:_MAX_RECENT // 2]  # trim oldest half
            subscribers = list(self._subscribers)

        for callback in subscribers:
            try:
                callback(event)
            except Exception:
                logger.exception(
                    "Refresh subscriber failed document_id=%s reason=%s",
                    document_id, reason,
                    extra={"document_id": document_id, "event_type": "refresh"},
                )

        logger.debug("Refresh published document_id=%s reason=%s", document_id, reason)
        return event

    def recent(self, document_id: int | None = None, seconds: int = 3600) -> list[dict]:
        """Return events from the last N seconds, optionally for one document."""
        cutoff = time.time() - seconds
        with self._lock:
            events = [e for e in self._recent if e["ts"] >= cutoff]
        if document_id is not None:
            events = [e for e in events if e["document_id"] == document_id]
        return events

    def clear(self) -> None:
        with self._lock:
            self._recent.clear()
            self._subscribers.clear()
