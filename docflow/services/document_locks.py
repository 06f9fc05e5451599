"""
Process-wide lock registries.

Every mutating workflow operation runs under ``document_lock(document_id)``
so that two writers can never interleave on the same document (one active
status, one open approval request).  Step authoring runs under
``circuit_lock(circuit_id)`` around the duplicate check and insert.

A key's lock is created on first use and dropped once no thread holds or
waits on it, so the registries stay as small as the set of documents being
written right now.  Different keys never block each other.  Multi-process
deployments rely on the database constraints (partial unique index on open
requests, unique step triple) as the backstop.
"""

import logging
import threading
from contextlib import contextmanager

logger = logging.getLogger(__name__)

_registry_lock = threading.Lock()
# key -> [lock, number of threads holding or waiting on it]
_document_locks: dict[int, list] = {}
_circuit_locks: dict[int, list] = {}


@contextmanager
def _keyed_lock(registry: dict, key: int):
    with _registry_lock:
        entry = registry.get(key)
        if entry is None:
            entry = registry[key] = [threading.Lock(), 0]
        entry[1] += 1
    try:
        with entry[0]:
            yield
    finally:
        with _registry_lock:
            entry[1] -= 1
            if entry[1] == 0 and registry.get(key) is entry:
                del registry[key]


@contextmanager
def document_lock(document_id: int):
    """Serialise writers for one document."""
    with _keyed_lock(_document_locks, document_id):
        yield


@contextmanager
def circuit_lock(circuit_id: int):
    """Serialise step commits for one circuit."""
    with _keyed_lock(_circuit_locks, circuit_id):
        yield


def registered_keys() -> dict[str, list[int]]:
    """Keys that currently have a lock (held or awaited)."""
    with _registry_lock:
        return {
            "documents": sorted(_document_locks),
            "circuits": sorted(_circuit_locks),
        }


def reset_locks():
    """Drop all registered locks (for testing)."""
    with _registry_lock:
        _document_locks.clear()
        _circuit_locks.clear()
