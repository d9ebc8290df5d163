"""HTTP client with timeouts, status classification, and a request throttle."""

from __future__ import annotations

import threading
import time
from dataclasses import dataclass
from types import TracebackType
from typing import Any, Callable

import requests

from geoenrich.common.constants import USER_AGENT
from geoenrich.common.errors import EnrichmentCancelled, TransportError

RETRYABLE_STATUS_CODES = {408, 425, 429, 500, 502, 503, 504}


@dataclass(frozen=True)
class TimeoutConfig:
    connect: float = 5.0
    read: float = 10.0

    @classmethod
    def from_ms(cls, timeout_ms: int) -> "TimeoutConfig":
        seconds = timeout_ms / 1000.0
        return cls(connect=seconds, read=seconds)


class HttpRequestError(TransportError):
    error_code = "HTTP_ERROR"


class RetryableHttpError(HttpRequestError):
    pass


class TokenBucket:
    """Per-request throttle. With ``capacity=1`` calls are spaced at least
    ``1 / rate_per_sec`` seconds apart."""

    def __init__(
        self,
        rate_per_sec: float,
        capacity: float | None = None,
        *,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        if rate_per_sec <= 0:
            raise ValueError("rate_per_sec must be positive")
        self.rate_per_sec = rate_per_sec
        self.capacity = capacity if capacity is not None else rate_per_sec
        self.clock = clock
        self.sleep = sleep
        self.tokens = self.capacity
        self.updated_at = clock()
        self.lock = threading.Lock()

    def acquire(self, tokens: float = 1.0, cancel_event: threading.Event | None = None) -> None:
        while True:
            if cancel_event is not None and cancel_event.is_set():
                raise EnrichmentCancelled("Cancelled while waiting for request throttle")
            with self.lock:
                now = self.clock()
                elapsed = now - self.updated_at
                self.tokens = min(self.capacity, self.tokens + elapsed * self.rate_per_sec)
                self.updated_at = now
                if self.tokens >= tokens:
                    self.tokens -= tokens
                    return
                deficit = tokens - self.tokens
                wait_for = max(deficit / self.rate_per_sec, 0.01)
            if cancel_event is None:
                self.sleep(wait_for)
            else:
                cancel_event.wait(wait_for)


class HttpClient:
    """Thin requests session wrapper.

    Retries, rate limits and the ``TokenBucket`` throttle are applied by the
    enrichment layer around each call, not here.
    """

    def __init__(self, *, base_url: str = "", timeout: TimeoutConfig | None = None) -> None:
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout or TimeoutConfig()
        self.session = requests.Session()

    def close(self) -> None:
        self.session.close()

    def __enter__(self) -> "HttpClient":
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.close()

    def _url(self, path: str) -> str:
        if path.startswith(("http://", "https://")):
            return path
        return f"{self.base_url}/{path.lstrip('/')}"

    def _headers(self, headers: dict[str, str] | None) -> dict[str, str]:
        out = {"User-Agent": USER_AGENT, "Accept": "application/json"}
        if headers:
            out.update(headers)
        return out

    def _raise_for_status_or_retry(self, response: requests.Response) -> None:
        status = response.status_code
        if status in RETRYABLE_STATUS_CODES:
            raise RetryableHttpError(f"Retryable HTTP status: {status}")
        if status >= 400:
            raise HttpRequestError(f"HTTP status: {status}")

    def get_json(
        self,
        path: str,
        *,
        params: dict[str, Any] | None = None,
        headers: dict[str, str] | None = None,
        timeout: TimeoutConfig | None = None,
    ) -> dict[str, Any]:
        req_timeout = timeout or self.timeout
        url = self._url(path)
        try:
            response = self.session.request(
                method="GET",
                url=url,
                params=params,
                headers=self._headers(headers),
                timeout=(req_timeout.connect, req_timeout.read),
            )
        except requests.RequestException as exc:
            raise TransportError(f"Request to {url} failed: {exc}") from exc
        self._raise_for_status_or_retry(response)

        try:
            return response.json()
        except ValueError as exc:
            raise HttpRequestError(f"Invalid JSON payload from {url}") from exc
