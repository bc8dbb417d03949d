"""
Retry with exponential backoff for search backend and embedding API calls.
Handles transient failures: rate limits, timeouts, connection errors.
"""

import asyncio
import functools
import time

from hybrid_search.config.logging_config import setup_logger

logger = setup_logger(__name__)

# Retry config
DEFAULT_RETRIES = 3
DEFAULT_INITIAL_DELAY = 1.0
DEFAULT_MAX_DELAY = 30.0
DEFAULT_BACKOFF = 2.0

# Exception names that indicate transient (retryable) errors
RETRYABLE_OPENAI = ("RateLimitError", "APIConnectionError", "APITimeoutError")
RETRYABLE_TRANSPORT = (
    "TimeoutError",
    "ConnectionError",
    "ConnectionResetError",
    "ConnectionRefusedError",
    "ConnectError",
    "ReadTimeout",
    "RemoteProtocolError",
)


def is_retryable(exc: BaseException) -> bool:
    """Check if exception is retryable (rate limit, timeout, connection)."""
    if isinstance(exc, (asyncio.TimeoutError, ConnectionError)):
        return True
    name = type(exc).__name__
    if name in RETRYABLE_OPENAI or name in RETRYABLE_TRANSPORT:
        return True
    msg = str(exc).lower()
    return "429" in msg or "rate limit" in msg or "timeout" in msg or "connection" in msg or "503" in msg


def sync_retry(
    fn,
    *args,
    retries: int = DEFAULT_RETRIES,
    initial_delay: float = DEFAULT_INITIAL_DELAY,
    max_delay: float = DEFAULT_MAX_DELAY,
    backoff: float = DEFAULT_BACKOFF,
    **kwargs,
):
    """Blocking retry with exponential backoff, for worker-thread calls."""
    delay = initial_delay
    for attempt in range(retries + 1):
        try:
            return fn(*args, **kwargs)
        except Exception as e:
            if attempt < retries and is_retryable(e):
                logger.warning("Retry %s/%s after %s: %s", attempt + 1, retries, type(e).__name__, e)
                time.sleep(delay)
                delay = min(delay * backoff, max_delay)
            else:
                raise
    raise RuntimeError("unreachable")  # pragma: no cover


async def async_retry(
    fn,
    *args,
    retries: int = DEFAULT_RETRIES,
    initial_delay: float = DEFAULT_INITIAL_DELAY,
    max_delay: float = DEFAULT_MAX_DELAY,
    backoff: float = DEFAULT_BACKOFF,
    **kwargs,
):
    """Async retry with exponential backoff. Non-retryable errors are raised at once."""
    delay = initial_delay
    for attempt in range(retries + 1):
        try:
            return await fn(*args, **kwargs)
        except Exception as e:
            if attempt < retries and is_retryable(e):
                logger.warning("Retry %s/%s after %s: %s", attempt + 1, retries, type(e).__name__, e)
                await asyncio.sleep(delay)
                delay = min(delay * backoff, max_delay)
            else:
                raise
    raise RuntimeError("unreachable")  # pragma: no cover


def with_retry(
    retries: int = DEFAULT_RETRIES,
    initial_delay: float = DEFAULT_INITIAL_DELAY,
    max_delay: float = DEFAULT_MAX_DELAY,
    backoff: float = DEFAULT_BACKOFF,
):
    """Decorator for sync functions: retry with exponential backoff."""

    def decorator(fn):
        @functools.wraps(fn)
        def wrapper(*args, **kwargs):
            return sync_retry(
                fn, *args, retries=retries, initial_delay=initial_delay, max_delay=max_delay, backoff=backoff, **kwargs
            )

        return wrapper

    return decorator
