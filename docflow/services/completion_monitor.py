"""
Completion Monitor — background detection of delayed archival after a move.

A committed move may trigger an asynchronous ERP archival that eventually
stamps an archival marker on the document.  The monitor polls the archival
gateway on a daemon thread until the marker differs from the value captured
before the move, then reports back.

Lifecycle per document:
    start()     supersedes (cancels) any running monitor for the same document
    poll loop   wait poll_interval → read marker → changed? callback("archived", marker)
    exhaustion  after max_attempts polls → callback("timed_out", None)
    cancel()    the monitor stops at its next wait and never calls back
    finish      the handle leaves the registry; only the current handle calls back

Poll failures are logged and count as an attempt.  The monitor never mutates
workflow state; its callback decides what to do (normally publish a refresh).

Usage:
    monitor = current_app.extensions["workflow"]["completion_monitor"]
    monitor.start(doc_id, snapshot_marker, on_done)
"""

from __future__ import annotations

import logging
import threading
from typing import Callable

logger = logging.getLogger(__name__)

OUTCOME_ARCHIVED = "archived"
OUTCOME_TIMED_OUT = "timed_out"

DEFAULT_POLL_INTERVAL = 5.0
DEFAULT_MAX_ATTEMPTS = 12


class MonitorHandle:
    """One running (or finished) monitor for a document."""

    def __init__(
        self,
        document_id: int,
        snapshot: str | None,
        callback: Callable[[str, str | None], None],
        gateway,
        poll_interval: float,
        max_attempts: int,
        registry: CompletionMonitor | None = None,
    ) -> None:
        self.document_id = document_id
        self.snapshot = snapshot
        self.outcome: str | None = None
        self.attempts = 0
        self._callback = callback
        self._gateway = gateway
        self._poll_interval = poll_interval
        self._max_attempts = max_attempts
        self._registry = registry
        self._cancelled = threading.Event()
        self._thread = threading.Thread(
            target=self._run,
            name=f"completion-monitor-{document_id}",
            daemon=True,
        )

    # ── control ──────────────────────────────────────────────────────────

    def start(self) -> None:
        self._thread.start()

    def cancel(self) -> None:
        self._cancelled.set()

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    def is_alive(self) -> bool:
        return self._thread.is_alive()

    def join(self, timeout: float | None = None) -> None:
        self._thread.join(timeout)

    # ── loop ─────────────────────────────────────────────────────────────

    def _run(self) -> None:
        try:
            self._poll()
        finally:
            if self._registry is not None:
                self._registry._release(self)

    def _poll(self) -> None:
        extra = {"document_id": self.document_id, "event_type": "completion_monitor"}
        while self.attempts < self._max_attempts:
            if self._cancelled.wait(self._poll_interval):
                logger.debug("Completion monitor cancelled document_id=%s", self.document_id,
                             extra=extra)
                return
            self.attempts += 1
            try:
                marker = self._gateway.get_archival_marker(self.document_id)
            except Exception as exc:
                logger.warning(
                    "Archival poll failed document_id=%s attempt=%d/%d: %s",
                    self.document_id, self.attempts, self._max_attempts, exc,
                    extra=extra,
                )
                continue
            if marker != self.snapshot:
                self._finish(OUTCOME_ARCHIVED, marker)
                return
        self._finish(OUTCOME_TIMED_OUT, None)

    def _finish(self, outcome: str, marker: str | None) -> None:
        if self._cancelled.is_set():
            return
        # a superseding start() may have replaced this handle since the last poll
        if self._registry is not None and not self._registry._claim(self):
            return
        self.outcome = outcome
        extra = {"document_id": self.document_id, "event_type": "completion_monitor"}
        if outcome == OUTCOME_ARCHIVED:
            logger.info("Archival detected document_id=%s marker=%s after %d poll(s)",
                        self.document_id, marker, self.attempts, extra=extra)
        else:
            logger.info("Archival not detected document_id=%s after %d poll(s)",
                        self.document_id, self.attempts, extra=extra)
        try:
            self._callback(outcome, marker)
        except Exception:
            logger.exception("Completion monitor callback failed document_id=%s",
                             self.document_id, extra=extra)


class CompletionMonitor:
    """Registry of per-document monitors."""

    def __init__(
        self,
        gateway,
        *,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        enabled: bool = True,
    ) -> None:
        self.gateway = gateway
        self.poll_interval = poll_interval
        self.max_attempts = max_attempts
        self.enabled = enabled
        self._lock = threading.Lock()
        self._monitors: dict[int, MonitorHandle] = {}

    def start(
        self,
        document_id: int,
        snapshot: str | None,
        callback: Callable[[str, str | None], None],
    ) -> MonitorHandle | None:
        """Start monitoring ``document_id``; returns None when disabled."""
        if not self.enabled:
            logger.debug("Completion monitor disabled; not watching document_id=%s", document_id)
            return None

        handle = MonitorHandle(
            document_id, snapshot, callback, self.gateway,
            self.poll_interval, self.max_attempts, registry=self,
        )
        with self._lock:
            previous = self._monitors.get(document_id)
            if previous is not None:
                previous.cancel()
            self._monitors[document_id] = handle
        handle.start()
        logger.info(
            "Completion monitor started document_id=%s interval=%ss attempts=%d",
            document_id, self.poll_interval, self.max_attempts,
            extra={"document_id": document_id, "event_type": "completion_monitor"},
        )
        return handle

    def _claim(self, handle: MonitorHandle) -> bool:
        """Deregister ``handle`` if it is still current; only then may it call back."""
        with self._lock:
            if handle.cancelled or self._monitors.get(handle.document_id) is not handle:
                return False
            del self._monitors[handle.document_id]
            return True

    def _release(self, handle: MonitorHandle) -> None:
        with self._lock:
            if self._monitors.get(handle.document_id) is handle:
                del self._monitors[handle.document_id]

    def cancel(self, document_id: int) -> bool:
        with self._lock:
            handle = self._monitors.pop(document_id, None)
        if handle is None:
            return False
        handle.cancel()
        return True

    def get(self, document_id: int) -> MonitorHandle | None:
        with self._lock:
            return self._monitors.get(document_id)

    def active_documents(self) -> list[int]:
        with self._lock:
            return sorted(d for d, h in self._monitors.items() if h.is_alive())

    def shutdown(self, timeout: float | None = None) -> None:
        """Cancel every monitor and optionally wait for the threads to exit."""
        with self._lock:
            handles = list(self._monitors.values())
            self._monitors.clear()
        for h in handles:
            h.cancel()
        if timeout is not None:
            for h in handles:
                h.join(timeout)
        logger.info("Completion monitor shut down (%d cancelled)", len(handles))
