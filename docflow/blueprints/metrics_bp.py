"""
Metrics blueprint — request statistics from the in-process timing buffer.

Endpoints (all accept ?window=<seconds>, default one hour):
    GET /api/v1/metrics/requests                  overall latency and status mix
    GET /api/v1/metrics/errors                    4xx/5xx by status and endpoint
    GET /api/v1/metrics/documents/<document_id>   traffic addressed to one document
    GET /api/v1/metrics/circuits/<circuit_id>     traffic addressed to one circuit
"""

import logging
from collections import Counter

from flask import Blueprint, jsonify, request

from docflow.middleware.timing import get_recent_metrics

logger = logging.getLogger(__name__)

metrics_bp = Blueprint("metrics", __name__, url_prefix="/api/v1/metrics")


def _window() -> int:
    return request.args.get("window", 3600, type=int)


def _summary(samples: list[dict]) -> dict:
    """Latency percentiles and status/method mix for a list of samples."""
    if not samples:
        return {
            "total_requests": 0,
            "avg_latency_ms": 0,
            "p95_latency_ms": 0,
            "status_distribution": {},
            "method_distribution": {},
        }
    latencies = sorted(s["ms"] for s in samples)
    p95 = latencies[max(0, int(len(latencies) * 0.95) - 1)]
    return {
        "total_requests": len(samples),
        "avg_latency_ms": round(sum(latencies) / len(latencies), 1),
        "p95_latency_ms": p95,
        "min_latency_ms": latencies[0],
        "max_latency_ms": latencies[-1],
        "status_distribution": dict(Counter(str(s["status"]) for s in samples)),
        "method_distribution": dict(Counter(s["method"] for s in samples)),
    }


@metrics_bp.route("/requests", methods=["GET"])
def request_stats():
    window = _window()
    return jsonify({"window_seconds": window, **_summary(get_recent_metrics(window))})


@metrics_bp.route("/errors", methods=["GET"])
def error_distribution():
    window = _window()
    errors = [s for s in get_recent_metrics(window) if s["status"] >= 400]
    by_endpoint = Counter(f'{s["method"]} {s["path"]}' for s in errors)
    return jsonify({
        "window_seconds": window,
        "total_errors": len(errors),
        "by_status": dict(Counter(str(s["status"]) for s in errors)),
        "top_endpoints": [
            {"endpoint": ep, "count": n} for ep, n in by_endpoint.most_common(10)
        ],
    })


@metrics_bp.route("/documents/<int:document_id>", methods=["GET"])
def document_stats(document_id):
    window = _window()
    samples = [s for s in get_recent_metrics(window) if s.get("document_id") == document_id]
    return jsonify({"document_id": document_id, "window_seconds": window, **_summary(samples)})


@metrics_bp.route("/circuits/<int:circuit_id>", methods=["GET"])
def circuit_stats(circuit_id):
    window = _window()
    samples = [s for s in get_recent_metrics(window) if s.get("circuit_id") == circuit_id]
    return jsonify({"circuit_id": circuit_id, "window_seconds": window, **_summary(samples)})
