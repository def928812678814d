#!/usr/bin/env python3

import logging
from dataclasses import dataclass
from typing import Callable, TypeVar

from tenacity import RetryCallState, Retrying, nap, retry_if_exception, stop_after_attempt, wait_fixed

from ..errors import TransientNetworkError

logger = logging.getLogger(__name__)

T = TypeVar("T")

def is_transient(error: Exception) -> bool:
    return isinstance(error, TransientNetworkError)

@dataclass
class RetryPolicy:
    """Fixed-backoff retry applied to metadata queries and image transfers.

    Errors for which ``is_retryable`` returns False propagate immediately. When
    the attempts run out the last error is re-raised for the caller to map.
    """
    max_attempts: int = 3
    delay: float = 2.0
    is_retryable: Callable[[Exception], bool] = is_transient
    sleep: Callable[[float], None] = nap.sleep

    def _log_retry(self, description: str) -> Callable[[RetryCallState], None]:
        def log_attempt(retry_state: RetryCallState) -> None:
            error = retry_state.outcome.exception() if retry_state.outcome else None
            logger.warning(
                f"{description} failed (attempt {retry_state.attempt_number}/{self.max_attempts}), "
                f"retrying in {self.delay}s: {error}"
            )
        return log_attempt

    def call(self, operation: Callable[[], T], description: str = "operation") -> T:
        retrying = Retrying(
            stop=stop_after_attempt(self.max_attempts),
            wait=wait_fixed(self.delay),
            retry=retry_if_exception(self.is_retryable),
            before_sleep=self._log_retry(description),
            sleep=self.sleep,
            reraise=True
        )
        try:
            return retrying(operation)
        except Exception as e:
            if self.is_retryable(e):
                logger.error(f"{description} failed after {self.max_attempts} attempts: {e}")
            raise
