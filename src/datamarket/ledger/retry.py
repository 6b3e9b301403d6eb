"""
datamarket.ledger.retry - Read retry with exponential backoff, single-shot writes

Reads are retried on Unavailable, sleeping with trio between attempts.
Writes go through submit_write, which never retries: a second attempt of
a write with unknown outcome could settle twice.

Usage:
    from datamarket.ledger.retry import RetryConfig, retry_read

    value = await retry_read("get_dataset", fetch_dataset)  # fetch_dataset is async
"""

from typing import TYPE_CHECKING, Awaitable, Callable, Optional, TypeVar
import random
import logging

import trio

from ..config import READ_RETRY_PARAMS
from ..errors import Rejected, Unavailable

if TYPE_CHECKING:
    from ..metrics import MetricsCollector

logger = logging.getLogger("datamarket.ledger.retry")

T = TypeVar('T')


class RetryConfig:
    """Configuration for retry behavior."""
    def __init__(
        self,
        max_retries: int = READ_RETRY_PARAMS["max_retries"],
        base_delay: float = READ_RETRY_PARAMS["base_delay"],
        max_delay: float = READ_RETRY_PARAMS["max_delay"],
        exponential_base: float = READ_RETRY_PARAMS["exponential_base"],
        jitter: bool = True,
    ):
        if max_retries < 1:
            raise ValueError(f"max_retries must be at least 1, got {max_retries}")
        self.max_retries = max_retries
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.exponential_base = exponential_base
        self.jitter = jitter

    def get_delay(self, attempt: int) -> float:
        """Calculate delay for retry attempt."""
        delay = min(
            self.base_delay * (self.exponential_base ** attempt),
            self.max_delay
        )
        if self.jitter:
            delay *= (0.5 + random.random())
        return delay


async def retry_read(
    operation: str,
    func: Callable[[], Awaitable[T]],
    config: Optional[RetryConfig] = None,
    sleep: Callable[[float], Awaitable[None]] = trio.sleep,
) -> T:
    """
    Run a read, retrying Unavailable failures with backoff.

    Any other exception propagates immediately.

    Args:
        operation: Name used in logs and in the final error
        func: Async read to perform
        config: Retry settings
        sleep: Async delay function (injectable for tests)

    Returns:
        Result of func

    Raises:
        Unavailable: every attempt failed
    """
    config = config or RetryConfig()
    last_error: Optional[Unavailable] = None

    for attempt in range(config.max_retries):
        try:
            return await func()
        except Unavailable as e:
            last_error = e
            logger.warning(f"Read {operation} attempt {attempt + 1} failed: {e}")
            if attempt < config.max_retries - 1:
                await sleep(config.get_delay(attempt))

    raise Unavailable(
        f"{operation} failed after {config.max_retries} attempts: {last_error}",
        operation=operation,
    )


async def submit_write(
    operation: str,
    send: Callable[[], Awaitable[T]],
    metrics: Optional["MetricsCollector"] = None,
) -> T:
    """
    Send a ledger write exactly once.

    Failures are logged, counted by kind and re-raised unchanged so the
    caller can tell "nothing happened" (Rejected, or Unavailable with
    outcome_unknown False) from "outcome unknown".
    """
    try:
        return await send()
    except Rejected as e:
        logger.error(f"{operation} rejected by ledger: {e.reason}")
        if metrics:
            metrics.record_write_failure("rejected")
        raise
    except Unavailable as e:
        kind = "outcome_unknown" if e.outcome_unknown else "unavailable"
        logger.error(f"{operation} failed ({kind}): {e}")
        if metrics:
            metrics.record_write_failure(kind)
        raise
