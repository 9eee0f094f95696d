"""
Unit tests for the retry executor
"""

import pytest

from railbooker.config import RetryConfig
from railbooker.exceptions import ElementNotFoundError, LoginFailedError, RetryExhaustedError, WorkflowCancelledError
from railbooker.services.automation.retry_executor import RetryExecutor


class FlakyOperation:
    """Fails a fixed number of times, then returns a value"""

    def __init__(self, failures, error_factory=lambda: ElementNotFoundError("#book", "button")):
        self.failures = failures
        self.error_factory = error_factory
        self.calls = 0

    async def __call__(self):
        self.calls += 1
        if self.calls <= self.failures:
            raise self.error_factory()
        return "booked"


class TestRetryExecutor:
    """Test class for RetryExecutor"""

    def setup_method(self):
        self.delays = []

        async def record_sleep(delay):
            self.delays.append(delay)

        self.sleep = record_sleep

    @pytest.mark.asyncio
    async def test_success_after_two_failures(self):
        executor = RetryExecutor(RetryConfig(max_retries=3, initial_delay=2, backoff_multiplier=2, max_delay=10),
                                 sleep=self.sleep)
        operation = FlakyOperation(failures=2)

        result = await executor.execute(operation)

        assert result == "booked"
        assert operation.calls == 3
        assert self.delays == [2, 4]

    @pytest.mark.asyncio
    async def test_always_failing_operation_exhausts_retries(self):
        executor = RetryExecutor(RetryConfig(max_retries=3, initial_delay=2, backoff_multiplier=2, max_delay=10),
                                 sleep=self.sleep)
        operation = FlakyOperation(failures=100)

        with pytest.raises(RetryExhaustedError) as exc_info:
            await executor.execute(operation)

        assert operation.calls == 4
        assert self.delays == [2, 4, 8]
        assert exc_info.value.attempts == 4
        assert isinstance(exc_info.value.last_exception, ElementNotFoundError)
        assert "Action failed after 4 attempts" in exc_info.value.message

    @pytest.mark.asyncio
    async def test_delay_is_capped(self):
        executor = RetryExecutor(RetryConfig(max_retries=4, initial_delay=5, backoff_multiplier=3, max_delay=20),
                                 sleep=self.sleep)

        with pytest.raises(RetryExhaustedError):
            await executor.execute(FlakyOperation(failures=100))

        assert self.delays == [5, 15, 20, 20]

    @pytest.mark.asyncio
    async def test_zero_retries_runs_once(self):
        executor = RetryExecutor(RetryConfig(max_retries=0), sleep=self.sleep)
        operation = FlakyOperation(failures=1)

        with pytest.raises(RetryExhaustedError):
            await executor.execute(operation)

        assert operation.calls == 1
        assert self.delays == []

    @pytest.mark.asyncio
    async def test_non_retryable_error_is_raised_immediately(self):
        executor = RetryExecutor(RetryConfig(max_retries=3), sleep=self.sleep)
        operation = FlakyOperation(failures=5, error_factory=lambda: LoginFailedError("traveller01"))

        with pytest.raises(LoginFailedError):
            await executor.execute(operation, should_retry=lambda e: not isinstance(e, LoginFailedError))

        assert operation.calls == 1
        assert self.delays == []

    @pytest.mark.asyncio
    async def test_cancellation_is_never_retried(self):
        executor = RetryExecutor(RetryConfig(max_retries=3), sleep=self.sleep)
        operation = FlakyOperation(failures=5, error_factory=lambda: WorkflowCancelledError("stop"))

        with pytest.raises(WorkflowCancelledError):
            await executor.execute(operation)

        assert operation.calls == 1
