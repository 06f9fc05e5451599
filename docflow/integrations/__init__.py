"""docflow.integrations — external collaborator gateways.

All outbound HTTP calls go through a gateway in this package, never via bare
``requests`` calls in services or blueprints.

Current gateways:
  document_store.HttpDocumentStore      — document repository REST API
  document_store.LocalDocumentStore     — in-process stand-in backed by workflow tables
  archival_gateway.HttpArchivalGateway  — ERP archival status API
  archival_gateway.DocumentStoreArchivalGateway — marker read through the document store

``build_collaborators(app)`` picks the implementations from configuration.
"""

from __future__ import annotations

import logging

logger = logging.getLogger(__name__)


def build_collaborators(app) -> dict:
    """Instantiate document store and archival gateway from app config."""
    from docflow.integrations.archival_gateway import (
        DocumentStoreArchivalGateway,
        HttpArchivalGateway,
    )
    from docflow.integrations.document_store import HttpDocumentStore, LocalDocumentStore

    timeout = app.config.get("EXTERNAL_API_TIMEOUT", 10)

    store_url = app.config.get("DOCUMENT_STORE_URL")
    if store_url:
        document_store = HttpDocumentStore(store_url, timeout=timeout)
    else:
        document_store = LocalDocumentStore()

    archival_url = app.config.get("ARCHIVAL_API_URL")
    if archival_url:
        archival_gateway = HttpArchivalGateway(archival_url, timeout=timeout)
    else:
        archival_gateway = DocumentStoreArchivalGateway(document_store)

    logger.info(
        "Collaborators configured: document_store=%s archival=%s",
        type(document_store).__name__, type(archival_gateway).__name__,
    )
    return {"document_store": document_store, "archival_gateway": archival_gateway}
