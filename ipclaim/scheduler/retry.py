"""
Bounded retry with exponential backoff for store calls.

Only transient store failures are retried. AlreadyExists, NotFound and
Conflict describe the state of the store rather than a hiccup, so they are
raised on the first attempt; this keeps creates and assignments from being
replayed over a newer state.

A caller passing its stop event gets no new attempt and no backoff sleep
once the event is set.
"""

import asyncio
import random
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional, TypeVar

from ipclaim.store.errors import AbortedError, StoreError
from ipclaim.utils.logging import get_logger

logger = get_logger(__name__)

T = TypeVar('T')


@dataclass
class RetryConfig:
    """
    Configuration for retry behavior.

    Attributes:
        max_retries: Maximum number of retry attempts after the first call
        retry_backoff_ms: Initial backoff in milliseconds
        retry_backoff_max_ms: Maximum backoff in milliseconds
        retry_jitter_ms: Random jitter to add to backoff
    """
    max_retries: int = 2
    retry_backoff_ms: int = 100
    retry_backoff_max_ms: int = 5000
    retry_jitter_ms: int = 20


def is_retryable_error(error: Exception) -> bool:
    """
    Determine if a store error is worth retrying.

    Args:
        error: Exception raised by a store call

    Returns:
        True if error should be retried
    """
    if isinstance(error, StoreError):
        return error.retryable
    return False


class RetryManager:
    """
    Runs store calls with exponential backoff.

    Implements:
    - Exponential backoff: delay doubles each retry
    - Maximum backoff: caps delay at maximum
    - Random jitter: spreads retries of concurrent loops
    """

    def __init__(self, config: Optional[RetryConfig] = None):
        """
        Initialize retry manager.

        Args:
            config: Retry configuration
        """
        self.config = config or RetryConfig()

    async def execute_with_retry(
        self,
        operation: Callable[[], Awaitable[T]],
        operation_name: str = "operation",
        stop: Optional[asyncio.Event] = None,
    ) -> T:
        """
        Execute operation with retry logic.

        Once stop is set no further attempt is made and a pending backoff
        wait ends early.

        Args:
            operation: Zero-argument coroutine function to execute
            operation_name: Name for logging
            stop: Stop signal of the calling loop

        Returns:
            Result from operation

        Raises:
            AbortedError: If stop was set before the first attempt
            Exception: The non-retryable error, or the last error once
                retries are exhausted or stop is set during backoff
        """
        if stop is not None and stop.is_set():
            raise AbortedError(f"{operation_name} not attempted, stopping")

        attempt = 0
        while True:
            try:
                result = await operation()

                if attempt > 0:
                    logger.info(
                        f"{operation_name} succeeded after retry",
                        attempt=attempt,
                    )

                return result

            except Exception as e:
                if not is_retryable_error(e) or attempt >= self.config.max_retries:
                    raise

                backoff_ms = self.calculate_backoff(attempt)

                logger.warning(
                    f"{operation_name} failed, retrying",
                    attempt=attempt,
                    backoff_ms=backoff_ms,
                    error=str(e),
                )

                if await self.wait_backoff(backoff_ms, stop):
                    logger.info(f"{operation_name} abandoned, stopping", attempt=attempt)
                    raise
                attempt += 1

    @staticmethod
    async def wait_backoff(backoff_ms: int, stop: Optional[asyncio.Event] = None) -> bool:
        """
        Sleep for a backoff period, waking early on stop.

        Args:
            backoff_ms: Delay in milliseconds
            stop: Stop signal ending the wait

        Returns:
            True if stop is set
        """
        if stop is None:
            await asyncio.sleep(backoff_ms / 1000.0)
            return False

        try:
            await asyncio.wait_for(stop.wait(), timeout=backoff_ms / 1000.0)
        except asyncio.TimeoutError:
            pass
        return stop.is_set()

    def calculate_backoff(self, attempt: int) -> int:
        """
        Calculate backoff delay with exponential growth and jitter.

        Formula: min(base * 2^attempt, max) + jitter

        Args:
            attempt: Current attempt number (0-indexed)

        Returns:
            Backoff delay in milliseconds
        """
        exponential_backoff = self.config.retry_backoff_ms * (2 ** attempt)

        backoff = min(exponential_backoff, self.config.retry_backoff_max_ms)

        jitter = random.randint(0, self.config.retry_jitter_ms) if self.config.retry_jitter_ms else 0

        return backoff + jitter
