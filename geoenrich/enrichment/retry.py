"""Bounded exponential-backoff retries around a single remote resolution."""

from __future__ import annotations

import logging
import threading
import time
from typing import Callable

from tenacity import (
    RetryCallState,
    RetryError,
    Retrying,
    retry_if_exception_type,
    stop_after_attempt,
    stop_when_event_set,
    wait_exponential,
)

from geoenrich.common.constants import DEFAULT_INITIAL_DELAY_MS, DEFAULT_MAX_RETRIES
from geoenrich.common.errors import (
    EnrichmentCancelled,
    ExhaustedRetriesError,
    TransportError,
    ValidationError,
)
from geoenrich.common.models import Location

logger = logging.getLogger(__name__)

RETRYABLE_ERRORS = (ValidationError, TransportError)


def validate_location(location: Location | None) -> Location:
    if location is None or not location.is_valid():
        raise ValidationError("Incomplete location data: neither cidade nor estado present")
    return location


class RetryPolicy:
    """Runs ``op`` up to ``max_retries`` times.

    Sleeps ``initial_delay_ms * 2 ** (attempt - 1)`` after failed attempt
    ``attempt``; no jitter, no cap. Only validation and transport failures
    are retried. With a ``cancel_event`` the backoff waits on the event and
    ends as soon as it is set; an injected ``sleep`` replaces that wait and
    the event is checked once it returns.
    """

    def __init__(
        self,
        max_retries: int = DEFAULT_MAX_RETRIES,
        initial_delay_ms: int = DEFAULT_INITIAL_DELAY_MS,
        *,
        sleep: Callable[[float], None] | None = None,
    ) -> None:
        if max_retries < 1:
            raise ValueError("max_retries must be at least 1")
        self.max_retries = max_retries
        self.initial_delay_seconds = initial_delay_ms / 1000.0
        self.sleep = sleep

    def delay_for(self, attempt: int) -> float:
        return self.initial_delay_seconds * 2 ** (attempt - 1)

    def _log_retry(self, retry_state: RetryCallState) -> None:
        exc = retry_state.outcome.exception() if retry_state.outcome else None
        wait_for = retry_state.next_action.sleep if retry_state.next_action else 0.0
        logger.info(
            "attempt %d failed (%s), retrying in %.0fms",
            retry_state.attempt_number,
            exc,
            wait_for * 1000,
            extra={
                "event": "RETRY",
                "status": "retrying",
                "attempt": retry_state.attempt_number,
                "duration_ms": int(wait_for * 1000),
                "error_code": getattr(exc, "error_code", None),
            },
        )

    def _sleeper(self, cancel_event: threading.Event | None) -> Callable[[float], None]:
        if cancel_event is None:
            return self.sleep or time.sleep

        def _sleep(seconds: float) -> None:
            if self.sleep is not None:
                self.sleep(seconds)
                interrupted = cancel_event.is_set()
            else:
                interrupted = cancel_event.wait(seconds)
            if interrupted:
                raise EnrichmentCancelled("Cancelled during retry backoff")

        return _sleep

    def _retrying(self, cancel_event: threading.Event | None) -> Retrying:
        stop = stop_after_attempt(self.max_retries)
        if cancel_event is not None:
            stop = stop | stop_when_event_set(cancel_event)
        return Retrying(
            stop=stop,
            wait=wait_exponential(multiplier=self.initial_delay_seconds, exp_base=2),
            retry=retry_if_exception_type(RETRYABLE_ERRORS),
            sleep=self._sleeper(cancel_event),
            before_sleep=self._log_retry,
            reraise=False,
        )

    def execute_with_retry(
        self,
        op: Callable[[], Location | None],
        cancel_event: threading.Event | None = None,
    ) -> Location:
        def _attempt() -> Location:
            return validate_location(op())

        try:
            return self._retrying(cancel_event)(_attempt)
        except RetryError as exc:
            last_error = exc.last_attempt.exception()
            if cancel_event is not None and cancel_event.is_set():
                raise EnrichmentCancelled("Cancelled between retry attempts") from last_error
            raise ExhaustedRetriesError(
                f"Gave up after {exc.last_attempt.attempt_number} attempt(s): {last_error}"
            ) from last_error
