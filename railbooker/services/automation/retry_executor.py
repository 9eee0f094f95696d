"""
Retry executor with exponential backoff

Generic over the wrapped operation: it runs the operation up to
``max_retries + 1`` times, sleeping between attempts with a delay that
grows by ``backoff_multiplier`` and is capped at ``max_delay``.
"""

import asyncio
import logging
from typing import Awaitable, Callable, Optional, TypeVar

from ...config import RetryConfig
from ...exceptions import RetryExhaustedError, WorkflowCancelledError

T = TypeVar("T")

Sleep = Callable[[float], Awaitable[None]]
ShouldRetry = Callable[[Exception], bool]


class RetryExecutor:
    """Runs async operations under a RetryConfig"""

    def __init__(self, config: Optional[RetryConfig] = None, sleep: Optional[Sleep] = None):
        self.config = config or RetryConfig()
        self._sleep = sleep or asyncio.sleep
        self.logger = logging.getLogger(f"{__name__}.{self.__class__.__name__}")

    async def execute(self, operation: Callable[[], Awaitable[T]],
                      should_retry: Optional[ShouldRetry] = None,
                      description: str = "operation") -> T:
        """
        Run ``operation`` until it succeeds or the retry budget is spent

        Args:
            operation: Zero-argument coroutine function
            should_retry: Predicate on the raised exception; False re-raises at once
            description: Name used in log messages

        Returns:
            Whatever the operation returns

        Raises:
            RetryExhaustedError: every attempt failed; wraps the last exception
        """
        delay = self.config.initial_delay
        last_exception: Optional[Exception] = None
        attempts = self.config.max_retries + 1

        for attempt in range(attempts):
            try:
                return await operation()
            except WorkflowCancelledError:
                raise
            except Exception as e:
                last_exception = e
                if should_retry is not None and not should_retry(e):
                    raise

                self.logger.warning(
                    f"{description} failed (attempt {attempt + 1}/{attempts}): {e}"
                )
                if attempt < self.config.max_retries:
                    await self._sleep(delay)
                    delay = min(delay * self.config.backoff_multiplier, self.config.max_delay)

        raise RetryExhaustedError(attempts, last_exception) from last_exception
