"""
Exponential backoff for remote calls that fail because of the network.

Only failures classified as network errors are retried; rejections from the
store are raised on the first attempt.
"""

import random
import time
from typing import Callable, Optional, TypeVar

from tenacity import Retrying, retry_if_exception, stop_after_attempt
from tenacity.wait import wait_base

from .errors import is_network_error
from .event_log import SessionLogger, emit
from .models import RetryConfig

T = TypeVar("T")


class wait_jittered_exponential(wait_base):
    """Wait ``base * factor^(n-1)`` seconds, scaled by a random +/- jitter."""

    def __init__(self, base: float = 1.0, factor: float = 2.0, jitter: float = 0.1):
        self.base = base
        self.factor = factor
        self.jitter = jitter

    def __call__(self, retry_state) -> float:
        delay = self.base * self.factor ** (retry_state.attempt_number - 1)
        if self.jitter:
            delay *= random.uniform(1 - self.jitter, 1 + self.jitter)
        return max(delay, 0.0)


class RetryPolicy:
    """Runs operations with network-aware exponential backoff."""

    def __init__(
        self,
        config: Optional[RetryConfig] = None,
        session_logger: Optional[SessionLogger] = None,
        sleep: Callable[[float], None] = time.sleep
    ):
        self.config = config or RetryConfig.default()
        self.session_logger = session_logger
        self.sleep = sleep

    def _before_sleep(self, label: str):
        def log_attempt(retry_state):
            error = retry_state.outcome.exception()
            emit(
                self.session_logger,
                "NETWORK_RETRY",
                f"{label}: attempt {retry_state.attempt_number}/{self.config.max_attempts} failed "
                f"({error}); waiting {retry_state.next_action.sleep:.2f}s"
            )
        return log_attempt

    def call(self, operation: Callable[[], T], label: str = "operation") -> T:
        """
        Run ``operation`` until it succeeds, fails with a non-network error,
        or the attempt budget is spent. The last error is re-raised.
        """
        retrying = Retrying(
            stop=stop_after_attempt(self.config.max_attempts),
            wait=wait_jittered_exponential(
                self.config.base_delay_seconds,
                self.config.factor,
                self.config.jitter
            ),
            retry=retry_if_exception(is_network_error),
            before_sleep=self._before_sleep(label),
            sleep=self.sleep,
            reraise=True
        )
        return retrying(operation)


def retry_with_backoff(
    operation: Callable[[], T],
    config: Optional[RetryConfig] = None,
    session_logger: Optional[SessionLogger] = None
) -> T:
    """Convenience wrapper around ``RetryPolicy(config).call``."""
    return RetryPolicy(config, session_logger).call(operation)
