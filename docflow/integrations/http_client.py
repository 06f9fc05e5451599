"""Shared JSON-over-HTTP call path for collaborator gateways.

Every call: build URL → request with timeout → retry with backoff on
connection errors and 5xx → typed result.  4xx responses are returned
immediately (retrying will not fix them).
"""

from __future__ import annotations

import logging
import time
from typing import Any

import requests

logger = logging.getLogger(__name__)

_DEFAULT_TIMEOUT = 10            # seconds
_RETRY_BACKOFF_SECONDS = [0.5, 2]   # one entry per retry after the first attempt


class GatewayResult:
    """Typed result of one gateway call.

    Always check .ok before accessing .data.
    """

    __slots__ = ("ok", "status_code", "data", "error", "duration_ms")

    def __init__(
        self,
        *,
        ok: bool,
        status_code: int | None,
        data: dict | list | None,
        error: str | None,
        duration_ms: int,
    ) -> None:
        self.ok = ok
        self.status_code = status_code
        self.data = data
        self.error = error
        self.duration_ms = duration_ms

    def to_log_dict(self) -> dict:
        return {
            "ok": self.ok,
            "status_code": self.status_code,
            "error": self.error,
            "duration_ms": self.duration_ms,
        }


class JsonHttpClient:
    """requests.Session wrapper with retry and structured logging."""

    def __init__(
        self,
        base_url: str,
        *,
        timeout: float = _DEFAULT_TIMEOUT,
        session: requests.Session | None = None,
        retry_backoff: list[float] | None = None,
    ) -> None:
        self.base_url = (base_url or "").rstrip("/")
        self.timeout = timeout
        self.session = session or requests.Session()
        self._backoff = _RETRY_BACKOFF_SECONDS if retry_backoff is None else retry_backoff

    def url(self, path: str) -> str:
        return f"{self.base_url}/{path.lstrip('/')}"

    def call(
        self,
        method: str,
        path: str,
        *,
        json_body: dict | list | None = None,
        params: dict | None = None,
    ) -> GatewayResult:
        url = self.url(path)
        last_error = "Unknown error"
        last_status: int | None = None
        t_start = time.perf_counter()

        attempts = len(self._backoff) + 1
        for attempt in range(attempts):
            kwargs: dict[str, Any] = {
                "timeout": self.timeout,
                "headers": {"Accept": "application/json"},
            }
            if json_body is not None:
                kwargs["json"] = json_body
            if params:
                kwargs["params"] = params
            try:
                resp = self.session.request(method, url, **kwargs)
                last_status = resp.status_code
                duration_ms = int((time.perf_counter() - t_start) * 1000)

                if resp.ok:
                    try:
                        data = resp.json() if resp.content else {}
                    except ValueError:
                        data = {}
                    return GatewayResult(
                        ok=True, status_code=resp.status_code, data=data,
                        error=None, duration_ms=duration_ms,
                    )

                last_error = f"HTTP {resp.status_code}: {resp.text[:500]}"
                if resp.status_code < 500:
                    return GatewayResult(
                        ok=False, status_code=resp.status_code, data=None,
                        error=last_error, duration_ms=duration_ms,
                    )
            except requests.RequestException as exc:
                last_error = f"{type(exc).__name__}: {exc}"

            logger.warning(
                "Gateway request failed attempt=%d/%d status=%s url=%s error=%s",
                attempt + 1, attempts, last_status, url, last_error,
            )
            if attempt < len(self._backoff):
                time.sleep(self._backoff[attempt])

        return GatewayResult(
            ok=False, status_code=last_status, data=None, error=last_error,
            duration_ms=int((time.perf_counter() - t_start) * 1000),
        )
