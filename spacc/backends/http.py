"""Shared HTTP plumbing for back-end clients: bounded retry with backoff."""

from __future__ import annotations

import asyncio
import logging
import random
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

import httpx

from spacc.exceptions import BackendError

if TYPE_CHECKING:
    from spacc.config import Settings

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RetryPolicy:
    """How many times and how patiently to retry a failed call."""

    max_retries: int = 3
    base_delay: float = 1.0
    max_delay: float = 30.0

    @classmethod
    def from_settings(cls, settings: Settings) -> RetryPolicy:
        return cls(
            max_retries=settings.max_retries,
            base_delay=settings.retry_base_delay_seconds,
            max_delay=settings.retry_max_delay_seconds,
        )


def is_retryable_status(status_code: int) -> bool:
    """Rate limiting and server errors are transient; other failures are not."""
    return status_code == 429 or status_code >= 500


def retry_delay(policy: RetryPolicy, attempt: int, response: httpx.Response | None) -> float:
    """Seconds to wait before the next attempt.

    Honors a numeric ``Retry-After`` header; otherwise exponential backoff
    with jitter.  Always capped at ``policy.max_delay``.
    """
    if response is not None:
        retry_after = response.headers.get("Retry-After", "").strip()
        if retry_after.isdigit():
            return min(float(retry_after), policy.max_delay)
    backoff = policy.base_delay * 2 ** (attempt - 1)
    jitter = random.uniform(0, policy.base_delay)
    return min(policy.max_delay, backoff + jitter)


async def send_with_retry(
    client: httpx.AsyncClient,
    method: str,
    url: str,
    *,
    policy: RetryPolicy,
    **kwargs: Any,
) -> httpx.Response:
    """Send a request, retrying network errors, 429 and 5xx responses.

    Raises:
        BackendError: If the final attempt fails or the response is a
            non-retryable error status.
    """
    for attempt in range(1, policy.max_retries + 1):
        response: httpx.Response | None = None
        try:
            response = await client.request(method, url, **kwargs)
        except httpx.TransportError as exc:
            if attempt == policy.max_retries:
                msg = f"{method} {url} failed: {exc}"
                raise BackendError(msg) from exc
            logger.warning(
                "Retrying %s %s (%d/%d) after network error: %s",
                method,
                url,
                attempt,
                policy.max_retries,
                exc,
            )
        else:
            if response.is_success:
                return response
            status_code = response.status_code
            if not is_retryable_status(status_code) or attempt == policy.max_retries:
                msg = f"{method} {url} => {status_code}"
                raise BackendError(msg, status_code=status_code)
            logger.warning(
                "Retrying %s %s (%d/%d) after status %d",
                method,
                url,
                attempt,
                policy.max_retries,
                status_code,
            )
        await asyncio.sleep(retry_delay(policy, attempt, response))

    msg = f"{method} {url} failed: retry budget is empty"
    raise BackendError(msg)
