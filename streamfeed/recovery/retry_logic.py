"""
StreamFeed Retry Logic
=====================

Retry mechanisms with exponential backoff for transient transport
failures. Only exceptions listed in ``RetryConfig.retry_on_exceptions``
are retried; everything else propagates on the first attempt.
"""

import random
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Optional, TypeVar

from ..utils.exceptions import TransportError
from ..utils.logging import get_logger_for_component


T = TypeVar('T')


class RetryStrategy(Enum):
    """Different retry strategy types."""
    FIXED_DELAY = "fixed_delay"              # Fixed interval between retries
    EXPONENTIAL_BACKOFF = "exponential"     # Exponentially increasing delays
    JITTERED_EXPONENTIAL = "jittered"       # Exponential with random jitter


@dataclass
class RetryConfig:
    """Configuration for retry behavior."""
    max_attempts: int = 3                   # Maximum attempts, first included
    strategy: RetryStrategy = RetryStrategy.EXPONENTIAL_BACKOFF
    base_delay: float = 1.0                # Base delay in seconds
    max_delay: float = 30.0                # Maximum delay in seconds
    jitter: bool = True                    # Add randomization to delays
    exponential_base: float = 2.0          # Exponential backoff multiplier

    retry_on_exceptions: tuple = field(default_factory=lambda: (TransportError,))

    @classmethod
    def from_settings(cls, retry_settings) -> "RetryConfig":
        """Build a config from the ``retry`` settings section."""
        return cls(
            max_attempts=retry_settings.max_attempts,
            base_delay=retry_settings.base_delay,
            max_delay=retry_settings.max_delay,
        )


class RetryManager:
    """Retry manager with configurable backoff strategies."""

    def __init__(self, config: Optional[RetryConfig] = None, sleep: Callable[[float], None] = time.sleep):
        self.config = config or RetryConfig()
        self.logger = get_logger_for_component('retry_manager')
        self._sleep = sleep

        self._delay_calculators = {
            RetryStrategy.FIXED_DELAY: self._calculate_fixed_delay,
            RetryStrategy.EXPONENTIAL_BACKOFF: self._calculate_exponential_delay,
            RetryStrategy.JITTERED_EXPONENTIAL: self._calculate_jittered_exponential_delay,
        }

    def retry_sync(self,
                   func: Callable[..., T],
                   *args,
                   config: Optional[RetryConfig] = None,
                   **kwargs) -> T:
        """
        Call a function, retrying retryable exceptions with backoff.

        Args:
            func: Function to call
            *args: Function arguments
            config: Override default retry configuration
            **kwargs: Function keyword arguments

        Returns:
            Function result if successful

        Raises:
            The first non-retryable exception, or the last exception once
            all attempts are exhausted
        """
        retry_config = config or self.config
        name = getattr(func, '__name__', repr(func))

        for attempt in range(1, retry_config.max_attempts + 1):
            try:
                result = func(*args, **kwargs)

                if attempt > 1:
                    self.logger.info(f"Retry successful for {name} on attempt {attempt}")

                return result

            except Exception as e:
                if not self._should_retry_exception(e, retry_config):
                    self.logger.debug(f"Not retrying {name} due to non-retryable exception: {e}")
                    raise

                if attempt >= retry_config.max_attempts:
                    self.logger.error(f"All {retry_config.max_attempts} attempts failed for {name}")
                    raise

                delay = self._calculate_delay(attempt, retry_config)
                self.logger.warning(
                    f"Attempt {attempt} failed for {name}: {e}. "
                    f"Retrying in {delay:.2f}s (attempt {attempt+1}/{retry_config.max_attempts})"
                )
                self._sleep(delay)

        raise RuntimeError("retry_sync called with max_attempts < 1")

    def _should_retry_exception(self, exception: Exception, config: RetryConfig) -> bool:
        """Determine if an exception should trigger a retry.

        Matching exceptions flagged ``recoverable=False`` (e.g. HTTP 404 on a
        download) are not retried.
        """
        if not isinstance(exception, config.retry_on_exceptions):
            return False
        return getattr(exception, 'recoverable', True)

    def _calculate_delay(self, attempt: int, config: RetryConfig) -> float:
        """Calculate delay for retry attempt based on strategy."""
        calculator = self._delay_calculators.get(config.strategy, self._calculate_exponential_delay)
        delay = min(calculator(attempt, config), config.max_delay)

        if config.jitter and config.strategy == RetryStrategy.EXPONENTIAL_BACKOFF:
            # ±25% jitter
            jitter_amount = delay * 0.25
            delay += random.uniform(-jitter_amount, jitter_amount)

        return max(0.0, delay)

    def _calculate_fixed_delay(self, attempt: int, config: RetryConfig) -> float:
        return config.base_delay

    def _calculate_exponential_delay(self, attempt: int, config: RetryConfig) -> float:
        return config.base_delay * (config.exponential_base ** (attempt - 1))

    def _calculate_jittered_exponential_delay(self, attempt: int, config: RetryConfig) -> float:
        """Exponential backoff with full jitter."""
        exponential_delay = config.base_delay * (config.exponential_base ** (attempt - 1))
        return random.uniform(0, exponential_delay)
