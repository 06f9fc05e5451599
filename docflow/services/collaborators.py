"""
Workflow runtime wiring.

``init_app`` builds the collaborators once per application and stores them in
``app.extensions["workflow"]``:

    document_store      get_document / mark_status_complete
    archival_gateway    get_archival_marker
    refresh_sink        RefreshSink
    completion_monitor  CompletionMonitor

Tests replace individual entries (``install``) with fakes.
"""

from __future__ import annotations

import atexit
import logging

from flask import Flask, current_app

from docflow.integrations import build_collaborators
from docflow.services.completion_monitor import CompletionMonitor
from docflow.services.refresh_sink import RefreshSink

logger = logging.getLogger(__name__)

EXTENSION_KEY = "workflow"


def init_app(app: Flask) -> dict:
    collaborators = build_collaborators(app)
    monitor = CompletionMonitor(
        collaborators["archival_gateway"],
        poll_interval=app.config.get("COMPLETION_MONITOR_POLL_INTERVAL", 5.0),
        max_attempts=app.config.get("COMPLETION_MONITOR_MAX_ATTEMPTS", 12),
        enabled=app.config.get("COMPLETION_MONITOR_ENABLED", True),
    )
    workflow = {
        "document_store": collaborators["document_store"],
        "archival_gateway": collaborators["archival_gateway"],
        "refresh_sink": RefreshSink(),
        "completion_monitor": monitor,
    }
    app.extensions[EXTENSION_KEY] = workflow
    atexit.register(monitor.shutdown)
    logger.info("Workflow runtime initialised (monitor enabled=%s)", monitor.enabled)
    return workflow


def install(app: Flask, **overrides) -> dict:
    """Replace collaborators (used by tests and the demo seed script).

    Replacing ``archival_gateway`` also repoints the running monitor.
    """
    workflow = app.extensions[EXTENSION_KEY]
    workflow.update(overrides)
    if "archival_gateway" in overrides:
        workflow["completion_monitor"].gateway = overrides["archival_gateway"]
    return workflow


def get(name: str):
    return current_app.extensions[EXTENSION_KEY][name]
