"""
Retries and circuit breaking for backend calls.

Backend calls are coroutines: retries back off with asyncio.sleep and the
breaker wraps a zero-argument coroutine function.
"""

import asyncio
import random
import time
from enum import Enum
from typing import Awaitable, Callable, Dict, Optional, Tuple, Type, TypeVar

import openai

from config.app_config import ResilienceConfig
from infrastructure.monitoring.logging_service import get_logger

logger = get_logger(__name__)

T = TypeVar("T")
AsyncCall = Callable[[], Awaitable[T]]

# Transient failures: worth another attempt after a pause
RETRIABLE_ERRORS: Tuple[Type[Exception], ...] = (
    openai.RateLimitError,
    openai.APIConnectionError,
    openai.APITimeoutError,
    openai.InternalServerError,
)

# Permanent failures: the same request will fail again
NON_RETRIABLE_ERRORS: Tuple[Type[Exception], ...] = (
    openai.AuthenticationError,
    openai.BadRequestError,
    openai.ContentFilterFinishReasonError,
)


def exponential_backoff_delay(attempt: int, base_delay: float = 1.0, max_delay: float = 60.0) -> float:
    """
    Delay before retry number attempt + 1

    base_delay * 2**attempt capped at max_delay, plus up to 10% jitter.
    """
    delay = min(base_delay * (2 ** attempt), max_delay)
    return delay + random.uniform(0, delay * 0.1)


class CircuitBreakerState(Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


class CircuitBreakerError(Exception):
    """The breaker is open and refused the call"""
    pass


class CircuitBreaker:
    """
    Fails fast after repeated transient failures of a backend.

    CLOSED lets calls through and counts consecutive tracked failures. At
    failure_threshold it goes OPEN and refuses calls until recovery_timeout
    seconds have passed since the last failure. The next call then runs
    HALF_OPEN: success closes the breaker, failure reopens it.

    Only exceptions in tracked_errors count; anything else passes through.
    """

    def __init__(
        self,
        failure_threshold: int = 5,
        recovery_timeout: float = 60,
        tracked_errors: Tuple[Type[Exception], ...] = RETRIABLE_ERRORS,
        name: str = "backend",
        clock: Callable[[], float] = time.monotonic
    ):
        self.failure_threshold = failure_threshold
        self.recovery_timeout = recovery_timeout
        self.tracked_errors = tracked_errors
        self.name = name
        self.clock = clock

        self.state = CircuitBreakerState.CLOSED
        self.failure_count = 0
        self.success_count = 0
        self.last_failure_time: Optional[float] = None

    def _remaining_timeout(self) -> float:
        if self.last_failure_time is None:
            return 0.0
        return max(0.0, self.recovery_timeout - (self.clock() - self.last_failure_time))

    def _allow(self) -> bool:
        if self.state != CircuitBreakerState.OPEN:
            return True
        if self._remaining_timeout() > 0:
            return False
        self.state = CircuitBreakerState.HALF_OPEN
        logger.info(f"Circuit '{self.name}' half-open, letting a trial call through")
        return True

    def _on_success(self):
        self.success_count += 1
        self.failure_count = 0
        if self.state == CircuitBreakerState.HALF_OPEN:
            self.state = CircuitBreakerState.CLOSED
            logger.info(f"Circuit '{self.name}' closed again")

    def _on_failure(self, error: Exception):
        self.failure_count += 1
        self.last_failure_time = self.clock()
        if self.state == CircuitBreakerState.HALF_OPEN or self.failure_count >= self.failure_threshold:
            if self.state != CircuitBreakerState.OPEN:
                logger.warning(
                    f"Circuit '{self.name}' opened after {self.failure_count} failures "
                    f"(last: {type(error).__name__})"
                )
            self.state = CircuitBreakerState.OPEN

    async def execute(self, func: AsyncCall) -> T:
        """
        Await func() unless the breaker is open

        Raises:
            CircuitBreakerError: The breaker refused the call
        """
        if not self._allow():
            raise CircuitBreakerError(
                f"Circuit '{self.name}' is open; retry in {self._remaining_timeout():.0f}s"
            )

        try:
            result = await func()
        except self.tracked_errors as e:
            self._on_failure(e)
            raise
        self._on_success()
        return result

    def get_state(self) -> Dict[str, object]:
        """Snapshot for health reporting"""
        return {
            "name": self.name,
            "state": self.state.value,
            "failure_count": self.failure_count,
            "success_count": self.success_count,
            "failure_threshold": self.failure_threshold,
            "remaining_timeout": self._remaining_timeout() if self.state == CircuitBreakerState.OPEN else 0.0,
        }

    def reset(self):
        self.state = CircuitBreakerState.CLOSED
        self.failure_count = 0
        self.last_failure_time = None
        logger.info(f"Circuit '{self.name}' reset")


class RetryService:
    """Retry policy and named circuit breakers built from ResilienceConfig"""

    OPENAI_BREAKER = "openai"

    def __init__(self, config: Optional[ResilienceConfig] = None):
        self.logger = get_logger(__name__)
        self.config = config or ResilienceConfig()
        self._circuit_breakers: Dict[str, CircuitBreaker] = {}

    def create_circuit_breaker(
        self,
        name: str,
        failure_threshold: Optional[int] = None,
        recovery_timeout: Optional[float] = None,
        tracked_errors: Tuple[Type[Exception], ...] = RETRIABLE_ERRORS
    ) -> CircuitBreaker:
        """Create and register a breaker; unspecified limits come from config"""
        breaker = CircuitBreaker(
            failure_threshold=failure_threshold or self.config.failure_threshold,
            recovery_timeout=self.config.recovery_timeout if recovery_timeout is None else recovery_timeout,
            tracked_errors=tracked_errors,
            name=name
        )
        self._circuit_breakers[name] = breaker
        return breaker

    def get_circuit_breaker(self, name: str) -> Optional[CircuitBreaker]:
        return self._circuit_breakers.get(name)

    def get_openai_circuit_breaker(self) -> CircuitBreaker:
        """Breaker shared by every OpenAI call made through this service"""
        return self.get_circuit_breaker(self.OPENAI_BREAKER) or self.create_circuit_breaker(self.OPENAI_BREAKER)

    async def retry_with_backoff(
        self,
        func: AsyncCall,
        max_retries: Optional[int] = None,
        base_delay: Optional[float] = None,
        max_delay: Optional[float] = None,
        on_retry: Optional[Callable[[int, Exception], None]] = None
    ) -> T:
        """
        Await func(), retrying transient OpenAI errors with exponential backoff

        Permanent and unknown errors propagate on the first occurrence.

        Args:
            func: Zero-argument coroutine function
            max_retries: Retries after the first attempt (config default)
            base_delay: First backoff delay in seconds (config default)
            max_delay: Backoff cap in seconds (config default)
            on_retry: Called with (retry_number, error) before each pause

        Returns:
            The result of the first successful attempt

        Raises:
            The last transient error once retries are exhausted
        """
        max_retries = self.config.max_retries if max_retries is None else max_retries
        base_delay = self.config.base_delay if base_delay is None else base_delay
        max_delay = self.config.max_delay if max_delay is None else max_delay

        attempt = 0
        while True:
            try:
                result = await func()
            except RETRIABLE_ERRORS as e:
                if attempt >= max_retries:
                    self.logger.error(f"Giving up after {attempt} retries: {type(e).__name__}: {e}")
                    raise
                delay = exponential_backoff_delay(attempt, base_delay, max_delay)
                attempt += 1
                self.logger.warning(f"Transient {type(e).__name__}, retry {attempt}/{max_retries} in {delay:.2f}s")
                if on_retry:
                    on_retry(attempt, e)
                await asyncio.sleep(delay)
                continue
            except NON_RETRIABLE_ERRORS as e:
                self.logger.warning(f"Not retrying {type(e).__name__}: {e}")
                raise

            if attempt:
                self.logger.info(f"Call succeeded after {attempt} retries")
            return result

    async def retry_with_circuit_breaker(
        self,
        func: AsyncCall,
        circuit_breaker: CircuitBreaker,
        **retry_options
    ) -> T:
        """
        retry_with_backoff() where every attempt goes through the breaker

        A CircuitBreakerError is not retried, so an opening breaker ends the loop.
        """
        return await self.retry_with_backoff(lambda: circuit_breaker.execute(func), **retry_options)
