import asyncio
from functools import wraps
from typing import Callable

from logging_config import get_logger

logger = get_logger(__name__)


def retry_with_backoff(
    max_retries: int = 3,
    base_delay: float = 0.1,
    max_delay: float = 5.0,
    exceptions: tuple = (Exception,)
):
    """
    Decorator for async functions with exponential backoff retry.

    Only the listed exceptions trigger a retry; anything else propagates
    immediately. The last exception is re-raised once retries run out.

    Usage:
        @retry_with_backoff(max_retries=3, base_delay=0.1, exceptions=(httpx.TransportError,))
        async def fetch():
            ...
    """
    def decorator(func: Callable):
        @wraps(func)
        async def wrapper(*args, **kwargs):
            for attempt in range(max_retries + 1):
                try:
                    return await func(*args, **kwargs)
                except exceptions as e:
                    if attempt == max_retries:
                        logger.warning(f"All {max_retries + 1} attempts failed for {func.__name__}: {e}")
                        raise
                    delay = min(base_delay * (2 ** attempt), max_delay)
                    logger.debug(f"Attempt {attempt + 1} failed for {func.__name__}: {e}. Retrying in {delay:.2f}s")
                    await asyncio.sleep(delay)

        return wrapper
    return decorator
