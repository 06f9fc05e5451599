"""Shared utility functions for blueprints and services.

get_or_404:          tuple-return lookup for blueprints (NOT abort)
get_or_raise:        service-layer lookup raising NotFoundError
"""
import logging

from flask import jsonify

from docflow.core.exceptions import NotFoundError
from docflow.models import db

logger = logging.getLogger(__name__)


def get_or_404(model, pk, label=None):
    """Fetch a model instance by primary key or return a 404 error tuple.

    - Success: (obj, None)
    - Failure: (None, (jsonify_response, 404))

        obj, err = get_or_404(Circuit, cid)
        if err:
            return err
    """
    label = label or model.__name__
    obj = db.session.get(model, pk)
    if not obj:
        return None, (jsonify({"error": f"{label} not found"}), 404)
    return obj, None


def get_or_raise(model, pk, label=None):
    """Fetch a model instance by primary key or raise NotFoundError."""
    obj = db.session.get(model, pk) if pk is not None else None
    if obj is None:
        raise NotFoundError(resource=label or model.__name__, resource_id=pk)
    return obj


def parse_bool(value, default=False):
    """Interpret JSON/query-string truthiness ("true", "1", True, 1)."""
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in ("1", "true", "yes", "on")

