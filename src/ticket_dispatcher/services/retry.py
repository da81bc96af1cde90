from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import Awaitable, Callable

import httpx

TRANSIENT_HTTP_STATUS = frozenset({408, 425, 429, 500, 502, 503, 504})
TRANSIENT_TRANSPORT_ERRORS = (httpx.TimeoutException, httpx.NetworkError, httpx.RemoteProtocolError)


@dataclass
class RetryableHttpError(Exception):
    status_code: int
    message: str
    retry_after_seconds: float | None = None


@dataclass(frozen=True)
class RetryPolicy:
    max_attempts: int = 3
    base_delay_seconds: float = 1.0
    max_delay_seconds: float = 8.0

    @classmethod
    def from_settings(cls, max_attempts: int, base_delay_seconds: float, max_delay_seconds: float) -> RetryPolicy:
        base_delay = max(0.1, float(base_delay_seconds))
        return cls(
            max_attempts=max(1, int(max_attempts)),
            base_delay_seconds=base_delay,
            max_delay_seconds=max(base_delay, float(max_delay_seconds)),
        )

    def backoff(self, attempt: int) -> float:
        return min(self.max_delay_seconds, self.base_delay_seconds * (2 ** (attempt - 1)))


def parse_retry_after(value: str | None) -> float | None:
    value = (value or "").strip()
    if not value:
        return None
    if value.isdigit():
        return float(value)
    try:
        retry_at = parsedate_to_datetime(value)
    except (TypeError, ValueError):
        return None
    if retry_at.tzinfo is None:
        retry_at = retry_at.replace(tzinfo=timezone.utc)
    return max(0.0, (retry_at - datetime.now(timezone.utc)).total_seconds())


def classify_failure(exc: Exception) -> tuple[bool, float | None]:
    """Return whether ``exc`` is worth retrying and any server-requested delay."""
    if isinstance(exc, RetryableHttpError):
        return True, exc.retry_after_seconds
    if isinstance(exc, TRANSIENT_TRANSPORT_ERRORS):
        return True, None
    if isinstance(exc, httpx.HTTPStatusError):
        retry_after = parse_retry_after(exc.response.headers.get("Retry-After"))
        return exc.response.status_code in TRANSIENT_HTTP_STATUS, retry_after
    return False, None


async def with_retry(
    *,
    operation: str,
    call: Callable[[], Awaitable[httpx.Response]],
    policy: RetryPolicy,
    logger: logging.Logger,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> httpx.Response:
    attempt = 0
    while True:
        attempt += 1
        try:
            response = await call()
            if response.status_code in TRANSIENT_HTTP_STATUS:
                raise RetryableHttpError(
                    status_code=response.status_code,
                    message=f"transient HTTP status {response.status_code}",
                    retry_after_seconds=parse_retry_after(response.headers.get("Retry-After")),
                )
            response.raise_for_status()
            return response
        except Exception as exc:
            retryable, retry_after = classify_failure(exc)
            if not retryable or attempt >= policy.max_attempts:
                raise
            delay = retry_after if retry_after is not None else policy.backoff(attempt)
            logger.warning(
                "Retrying API operation after transient failure",
                extra={
                    "event": "api_retry_scheduled",
                    "operation": operation,
                    "attempt": attempt,
                    "max_attempts": policy.max_attempts,
                    "delay_seconds": delay,
                    "error": repr(exc),
                },
            )
            await sleep(delay)
