"""Document store collaborators.

The document repository owns documents; the workflow core only needs three
facts from it: which circuit a document belongs to, the ERP archival marker
(``erpDocumentCode`` on the remote side), and a place to mirror status
completion.

Two implementations:
    HttpDocumentStore   — remote REST API (DOCUMENT_STORE_URL)
    LocalDocumentStore  — in-process, answers from the workflow tables; keeps
                          archival markers in memory so they can be set by
                          an admin endpoint or a test
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass

import requests
from sqlalchemy import select

from docflow.core.exceptions import NotFoundError
from docflow.integrations.http_client import JsonHttpClient
from docflow.models import db
from docflow.models.workflow import DocumentWorkflowState

logger = logging.getLogger(__name__)


class DocumentStoreError(Exception):
    """Raised when the document store cannot be reached or refuses a call."""


@dataclass(frozen=True)
class DocumentRef:
    document_id: int
    circuit_id: int | None
    external_archival_marker: str | None = None

    def to_dict(self) -> dict:
        return {
            "document_id": self.document_id,
            "circuit_id": self.circuit_id,
            "external_archival_marker": self.external_archival_marker,
        }


class LocalDocumentStore:
    """Document store backed by the workflow's own tables."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._markers: dict[int, str | None] = {}
        self._completions: dict[tuple[int, int], bool] = {}

    def get_document(self, document_id: int) -> DocumentRef:
        circuit_id = db.session.execute(
            select(DocumentWorkflowState.circuit_id).where(
                DocumentWorkflowState.document_id == document_id
            )
        ).scalar_one_or_none()
        with self._lock:
            marker = self._markers.get(document_id)
        return DocumentRef(
            document_id=document_id,
            circuit_id=circuit_id,
            external_archival_marker=marker,
        )

    def mark_status_complete(self, document_id: int, status_id: int, is_complete: bool) -> None:
        with self._lock:
            self._completions[(document_id, status_id)] = bool(is_complete)
        logger.debug(
            "Local store status completion document_id=%s status_id=%s complete=%s",
            document_id, status_id, is_complete,
        )

    def get_archival_marker(self, document_id: int) -> str | None:
        with self._lock:
            return self._markers.get(document_id)

    def set_archival_marker(self, document_id: int, marker: str | None) -> None:
        with self._lock:
            self._markers[document_id] = marker
        logger.info("Archival marker set document_id=%s marker=%s", document_id, marker)


class HttpDocumentStore:
    """Document repository REST API.

    Endpoints:
        GET  {base}/documents/<id>
             → {"id", "circuit_id", "erp_document_code"}
        PUT  {base}/documents/<id>/statuses/<status_id>/completion
             ← {"is_complete": bool}
    """

    def __init__(
        self,
        base_url: str,
        *,
        timeout: float = 10,
        session: requests.Session | None = None,
    ) -> None:
        self._client = JsonHttpClient(base_url, timeout=timeout, session=session)

    def get_document(self, document_id: int) -> DocumentRef:
        result = self._client.call("GET", f"documents/{document_id}")
        if result.status_code == 404:
            raise NotFoundError(resource="Document", resource_id=document_id)
        if not result.ok:
            raise DocumentStoreError(
                f"Document store lookup failed for document {document_id}: {result.error}"
            )
        data = result.data or {}
        return DocumentRef(
            document_id=document_id,
            circuit_id=data.get("circuit_id"),
            external_archival_marker=data.get("erp_document_code") or None,
        )

    def mark_status_complete(self, document_id: int, status_id: int, is_complete: bool) -> None:
        result = self._client.call(
            "PUT",
            f"documents/{document_id}/statuses/{status_id}/completion",
            json_body={"is_complete": bool(is_complete)},
        )
        if not result.ok:
            raise DocumentStoreError(
                f"Document store completion update failed for document {document_id}: "
                f"{result.error}"
            )

    def get_archival_marker(self, document_id: int) -> str | None:
        return self.get_document(document_id).external_archival_marker
