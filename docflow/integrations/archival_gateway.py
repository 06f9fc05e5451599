"""External archival system gateways.

After a move the downstream ERP may archive the document asynchronously and
hand back a document code.  The Completion Monitor polls
``get_archival_marker`` until the marker differs from the value captured
before the move.

Both gateways raise ``ArchivalGatewayError`` on transport failures; the
monitor logs and retries.
"""

from __future__ import annotations

import logging

import requests

from docflow.integrations.http_client import JsonHttpClient

logger = logging.getLogger(__name__)


class ArchivalGatewayError(Exception):
    """Raised when the archival marker cannot be read."""


class HttpArchivalGateway:
    """ERP archival status API.

    GET {base}/archival/documents/<id> → {"erp_document_code": "..." | null}
    404 means "not archived yet".
    """

    def __init__(
        self,
        base_url: str,
        *,
        timeout: float = 10,
        session: requests.Session | None = None,
    ) -> None:
        # one attempt per poll; the monitor owns the retry cadence
        self._client = JsonHttpClient(
            base_url, timeout=timeout, session=session, retry_backoff=[],
        )

    def get_archival_marker(self, document_id: int) -> str | None:
        result = self._client.call("GET", f"archival/documents/{document_id}")
        if result.status_code == 404:
            return None
        if not result.ok:
            raise ArchivalGatewayError(
                f"Archival lookup failed for document {document_id}: {result.error}"
            )
        return (result.data or {}).get("erp_document_code") or None


class DocumentStoreArchivalGateway:
    """Reads the archival marker through the document store."""

    def __init__(self, document_store) -> None:
        self._store = document_store

    def get_archival_marker(self, document_id: int) -> str | None:
        try:
            return self._store.get_archival_marker(document_id)
        except Exception as exc:
            raise ArchivalGatewayError(
                f"Archival lookup via document store failed for document {document_id}: {exc}"
            ) from exc
