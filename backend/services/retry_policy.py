"""
Retry Policy for External Collaborators

Classifies collaborator failures and retries the transient ones with
exponential backoff.

Retryable:
- Timeouts and transport errors (connection refused, reset)
- 5xx responses

Never retried:
- 4xx responses (401 is a configuration problem, 404 will not appear)
- Malformed responses
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional

import httpx

from utils.errors import UpstreamError

logger = logging.getLogger(__name__)


@dataclass
class RetryConfig:
    max_attempts: int = 3
    initial_delay: float = 1.0
    max_delay: float = 10.0
    backoff_multiplier: float = 2.0

    def delay_for(self, attempt: int) -> float:
        """Delay after the given failed attempt (1-based)."""
        delay = self.initial_delay * (self.backoff_multiplier ** (attempt - 1))
        return min(delay, self.max_delay)

    @classmethod
    def from_settings(cls, settings) -> "RetryConfig":
        return cls(
            max_attempts=settings.RETRY_MAX_ATTEMPTS,
            initial_delay=settings.RETRY_INITIAL_DELAY_SECONDS,
            max_delay=settings.RETRY_MAX_DELAY_SECONDS,
            backoff_multiplier=settings.RETRY_BACKOFF_MULTIPLIER,
        )


def is_retryable(error: BaseException) -> bool:
    """True for transient/server-class failures."""
    if isinstance(error, UpstreamError):
        if error.status_code is None:
            return error.transient
        return error.status_code >= 500
    if isinstance(error, httpx.HTTPStatusError):
        return error.response.status_code >= 500
    if isinstance(error, (httpx.TimeoutException, httpx.TransportError)):
        return True
    return False


def raise_for_response(collaborator: str, response: httpx.Response):
    """Raise UpstreamError for a non-2xx response."""
    if 200 <= response.status_code < 300:
        return
    raise UpstreamError(
        collaborator,
        f"HTTP {response.status_code}: {response.text[:200]}",
        status_code=response.status_code,
    )


def decode_json(collaborator: str, response: httpx.Response) -> Any:
    try:
        return response.json()
    except ValueError:
        raise UpstreamError(collaborator, "Malformed response body", transient=False)


async def call_with_retry(
    operation: Callable[[], Awaitable[Any]],
    collaborator: str,
    config: Optional[RetryConfig] = None,
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
) -> Any:
    """
    Run an async collaborator call, retrying transient failures.

    Transport exceptions are converted to UpstreamError so callers only
    handle one error type.

    Raises:
        UpstreamError: the last failure, once attempts are exhausted or
            on the first non-retryable failure
    """
    config = config or RetryConfig()

    for attempt in range(1, config.max_attempts + 1):
        try:
            return await operation()
        except httpx.TimeoutException as e:
            error = UpstreamError(collaborator, "Connection timeout", transient=True)
            error.__cause__ = e
        except httpx.TransportError as e:
            error = UpstreamError(collaborator, f"Connection failed: {str(e)[:100]}", transient=True)
            error.__cause__ = e
        except UpstreamError as e:
            error = e

        if not is_retryable(error) or attempt == config.max_attempts:
            raise error

        delay = config.delay_for(attempt)
        logger.warning(
            f"{collaborator} call failed (attempt {attempt}/{config.max_attempts}), "
            f"retrying in {delay:.1f}s: {error.message}"
        )
        await sleep(delay)
