"""
Tests for retry logic and the circuit breaker
"""

from unittest.mock import AsyncMock, Mock

import httpx
import openai
import pytest

from config.app_config import ResilienceConfig
from infrastructure.resilience.retry_service import (
    NON_RETRIABLE_ERRORS,
    RETRIABLE_ERRORS,
    CircuitBreaker,
    CircuitBreakerError,
    CircuitBreakerState,
    RetryService,
    exponential_backoff_delay,
)

REQUEST = httpx.Request("POST", "https://api.openai.com/v1/chat/completions")


def connection_error():
    return openai.APIConnectionError(request=REQUEST)


def auth_error():
    return openai.AuthenticationError("bad key", response=httpx.Response(401, request=REQUEST), body=None)


class TestErrorClassification:
    """Test retriable and permanent error groups"""

    def test_error_groups(self):
        """Test the expected OpenAI errors are classified"""
        retriable = {e.__name__ for e in RETRIABLE_ERRORS}
        permanent = {e.__name__ for e in NON_RETRIABLE_ERRORS}

        assert {"RateLimitError", "APIConnectionError", "APITimeoutError", "InternalServerError"} <= retriable
        assert {"AuthenticationError", "BadRequestError", "ContentFilterFinishReasonError"} <= permanent

    def test_backoff_grows_and_caps(self):
        """Test delays double and respect the cap"""
        delays = [exponential_backoff_delay(i, base_delay=1.0, max_delay=100.0) for i in range(4)]
        assert all(delays[i] < delays[i + 1] for i in range(3))

        capped = exponential_backoff_delay(10, base_delay=1.0, max_delay=5.0)
        assert 5.0 <= capped <= 5.5


class TestRetryWithBackoff:
    """Test async retries"""

    def setup_method(self):
        """Set up a retry service without real delays"""
        self.service = RetryService(ResilienceConfig(max_retries=3, base_delay=0, max_delay=0))

    @pytest.mark.asyncio
    async def test_success_after_transient_failures(self):
        """Test transient errors are retried"""
        func = AsyncMock(side_effect=[connection_error(), connection_error(), "ok"])
        on_retry = Mock()

        result = await self.service.retry_with_backoff(func, on_retry=on_retry)

        assert result == "ok"
        assert func.await_count == 3
        assert [call.args[0] for call in on_retry.call_args_list] == [1, 2]

    @pytest.mark.asyncio
    async def test_gives_up_after_max_retries(self):
        """Test the last transient error is raised"""
        func = AsyncMock(side_effect=connection_error())

        with pytest.raises(openai.APIConnectionError):
            await self.service.retry_with_backoff(func, max_retries=1)

        assert func.await_count == 2

    @pytest.mark.asyncio
    async def test_permanent_errors_are_not_retried(self):
        """Test authentication errors fail immediately"""
        func = AsyncMock(side_effect=auth_error())

        with pytest.raises(openai.AuthenticationError):
            await self.service.retry_with_backoff(func)

        assert func.await_count == 1

    @pytest.mark.asyncio
    async def test_unknown_errors_are_not_retried(self):
        """Test unexpected exceptions propagate at once"""
        func = AsyncMock(side_effect=KeyError("missing"))

        with pytest.raises(KeyError):
            await self.service.retry_with_backoff(func)

        assert func.await_count == 1


class FakeClock:
    """Monotonic clock the test moves by hand"""

    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now


class TestCircuitBreaker:
    """Test circuit breaker state transitions"""

    def setup_method(self):
        """Set up a breaker that opens after two failures"""
        self.clock = FakeClock()
        self.breaker = CircuitBreaker(failure_threshold=2, recovery_timeout=30, name="test", clock=self.clock)

    async def fail_twice(self):
        for _ in range(2):
            with pytest.raises(openai.APIConnectionError):
                await self.breaker.execute(AsyncMock(side_effect=connection_error()))

    @pytest.mark.asyncio
    async def test_opens_after_threshold(self):
        """Test the breaker opens and fails fast"""
        await self.fail_twice()

        assert self.breaker.state == CircuitBreakerState.OPEN
        func = AsyncMock()
        with pytest.raises(CircuitBreakerError):
            await self.breaker.execute(func)
        func.assert_not_called()

    @pytest.mark.asyncio
    async def test_recovers_after_timeout(self):
        """Test a successful half-open call closes the breaker"""
        await self.fail_twice()
        self.clock.now += 31

        result = await self.breaker.execute(AsyncMock(return_value="ok"))

        assert result == "ok"
        assert self.breaker.state == CircuitBreakerState.CLOSED
        assert self.breaker.failure_count == 0

    @pytest.mark.asyncio
    async def test_failed_recovery_reopens(self):
        """Test a failing half-open call reopens the breaker"""
        await self.fail_twice()
        self.clock.now += 31

        with pytest.raises(openai.APIConnectionError):
            await self.breaker.execute(AsyncMock(side_effect=connection_error()))

        assert self.breaker.state == CircuitBreakerState.OPEN
        with pytest.raises(CircuitBreakerError):
            await self.breaker.execute(AsyncMock())

    @pytest.mark.asyncio
    async def test_untracked_errors_do_not_count(self):
        """Test non-transient errors leave the breaker closed"""
        for _ in range(3):
            with pytest.raises(ValueError):
                await self.breaker.execute(AsyncMock(side_effect=ValueError("bad input")))

        assert self.breaker.state == CircuitBreakerState.CLOSED

    @pytest.mark.asyncio
    async def test_state_report_and_reset(self):
        """Test monitoring output and manual reset"""
        await self.fail_twice()

        state = self.breaker.get_state()
        assert state["state"] == "open"
        assert state["failure_count"] == 2
        assert state["remaining_timeout"] > 0

        self.breaker.reset()
        assert self.breaker.get_state()["state"] == "closed"


class TestRetryWithCircuitBreaker:
    """Test the combined wrapper"""

    @pytest.mark.asyncio
    async def test_open_breaker_stops_retries(self):
        """Test retries stop once the breaker refuses calls"""
        service = RetryService(ResilienceConfig(max_retries=5, base_delay=0, max_delay=0, failure_threshold=2))
        breaker = service.create_circuit_breaker("test")
        func = AsyncMock(side_effect=connection_error())

        with pytest.raises(CircuitBreakerError):
            await service.retry_with_circuit_breaker(func, breaker)

        assert func.await_count == 2
        assert service.get_circuit_breaker("test") is breaker

    def test_openai_breaker_is_shared(self):
        """Test the OpenAI breaker is created once per service"""
        service = RetryService()
        assert service.get_openai_circuit_breaker() is service.get_openai_circuit_breaker()
