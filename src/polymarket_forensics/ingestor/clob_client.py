"""Wrapper around py-clob-client with rate limiting and retry logic."""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable
from functools import wraps
from typing import Any, ParamSpec, TypeVar

from py_clob_client.client import ClobClient as BaseClobClient
from py_clob_client.exceptions import PolyApiException

from polymarket_forensics.ingestor.models import Market

logger = logging.getLogger(__name__)

P = ParamSpec("P")
T = TypeVar("T")

# Constants
DEFAULT_HOST = "https://clob.polymarket.com"
DEFAULT_CHAIN_ID = 137
MAX_REQUESTS_PER_SECOND = 10

DEFAULT_MAX_RETRIES = 3
DEFAULT_RETRY_BASE_DELAY = 1.0
RETRY_STATUS_CODES = (429, 500, 502, 503, 504)


class RateLimiter:
    """Minimum-interval rate limiter for blocking API calls."""

    def __init__(self, max_requests_per_second: float = MAX_REQUESTS_PER_SECOND) -> None:
        """Initialize the rate limiter.

        Args:
            max_requests_per_second: Maximum requests allowed per second.
        """
        self._min_interval = 1.0 / max_requests_per_second
        self._last_request_time: float = 0.0
        # Calls arrive from asyncio.to_thread workers.
        self._lock = threading.Lock()

    def acquire(self) -> None:
        """Block until a request slot is available."""
        with self._lock:
            now = time.monotonic()
            elapsed = now - self._last_request_time
            if elapsed < self._min_interval:
                time.sleep(self._min_interval - elapsed)
            self._last_request_time = time.monotonic()


class RetryError(Exception):
    """Raised when all retry attempts are exhausted."""

    def __init__(self, message: str, last_exception: Exception | None = None) -> None:
        super().__init__(message)
        self.last_exception = last_exception


def with_retry(
    max_retries: int = DEFAULT_MAX_RETRIES,
    base_delay: float = DEFAULT_RETRY_BASE_DELAY,
    retry_on: tuple[type[Exception], ...] = (Exception,),
) -> Callable[[Callable[P, T]], Callable[P, T]]:
    """Decorator for adding retry logic with exponential backoff.

    Args:
        max_retries: Maximum number of retry attempts.
        base_delay: Base delay in seconds (doubles with each retry).
        retry_on: Tuple of exception types to retry on.

    Returns:
        Decorated function with retry logic.
    """

    def decorator(func: Callable[P, T]) -> Callable[P, T]:
        @wraps(func)
        def wrapper(*args: P.args, **kwargs: P.kwargs) -> T:
            last_exception: Exception | None = None

            for attempt in range(max_retries + 1):
                try:
                    return func(*args, **kwargs)
                except retry_on as e:
                    last_exception = e
                    if attempt == max_retries:
                        break

                    delay = base_delay * (2**attempt)
                    logger.warning(
                        "Attempt %d/%d failed: %s. Retrying in %.1f seconds...",
                        attempt + 1,
                        max_retries + 1,
                        str(e),
                        delay,
                    )
                    time.sleep(delay)

            raise RetryError(
                f"All {max_retries + 1} attempts failed for {func.__name__}",
                last_exception=last_exception,
            )

        return wrapper

    return decorator


class ClobClientError(Exception):
    """Base exception for ClobClient errors."""


class ClobClientNotFoundError(ClobClientError):
    """Raised when a requested resource does not exist (e.g., 404)."""


class ClobClientTransientError(ClobClientError):
    """Raised for retryable/transient errors (e.g., 429/5xx, network issues)."""


def _classify_error(e: Exception, what: str) -> ClobClientError:
    if isinstance(e, PolyApiException):
        status = getattr(e, "status_code", None)
        if status == 404:
            return ClobClientNotFoundError(f"{what} not found")
        if status in RETRY_STATUS_CODES:
            return ClobClientTransientError(f"Failed to fetch {what}: {e}")
        return ClobClientError(f"Failed to fetch {what}: {e}")
    return ClobClientTransientError(f"Failed to fetch {what}: {e}")


class ClobClient:
    """Read-only market metadata from the Polymarket CLOB.

    Calls are blocking; async callers wrap them in `asyncio.to_thread`.

    Example:
        >>> client = ClobClient()
        >>> market = client.get_market("0xabc...")
        >>> market.winning_outcome
        'YES'
    """

    def __init__(
        self,
        *,
        host: str = DEFAULT_HOST,
        chain_id: int = DEFAULT_CHAIN_ID,
        max_retries: int = DEFAULT_MAX_RETRIES,
        requests_per_second: float = MAX_REQUESTS_PER_SECOND,
        client: Any | None = None,
    ) -> None:
        """Initialize the CLOB client.

        Args:
            host: CLOB API endpoint URL.
            chain_id: Chain ID (Polygon=137).
            max_retries: Maximum retry attempts for transient failures.
            requests_per_second: Rate limit for API requests.
            client: Optional pre-built py-clob-client instance (used by tests).
        """
        self._host = host
        self._max_retries = max_retries
        self._rate_limiter = RateLimiter(requests_per_second)
        self._client = client or BaseClobClient(host, chain_id=chain_id)

        logger.info(
            "Initialized ClobClient with host=%s, rate_limit=%.1f req/s",
            host,
            requests_per_second,
        )

    @with_retry(retry_on=(ClobClientTransientError,))
    def get_market(self, condition_id: str) -> Market:
        """Fetch a market by its condition ID.

        Raises:
            ClobClientNotFoundError: If the market does not exist.
            RetryError: If transient failures persist.
        """
        self._rate_limiter.acquire()
        try:
            response = self._client.get_market(condition_id)
        except Exception as e:
            raise _classify_error(e, f"market {condition_id}") from e
        if not isinstance(response, dict) or not response.get("condition_id"):
            raise ClobClientNotFoundError(f"market {condition_id} not found")
        return Market.from_dict(response)
