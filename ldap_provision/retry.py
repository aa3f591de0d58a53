"""
Retry policy for directory connection attempts.

Only the exception types a caller names are retried; anything else, such as a
rejected bind credential, propagates on the first attempt.
"""

import time
import logging
from dataclasses import dataclass
from typing import Any, Callable, Tuple, Type

logger = logging.getLogger(__name__)


class MaxRetriesExceeded(Exception):
    """Raised when every attempt allowed by a RetryPolicy has failed."""

    def __init__(self, label: str, attempts: int, last_exception: Exception):
        self.label = label
        self.attempts = attempts
        self.last_exception = last_exception
        super().__init__(f"{label} gave up after {attempts} attempts: {last_exception}")


@dataclass(frozen=True)
class RetryPolicy:
    """
    How often and how patiently to retry an operation.

    ``max_attempts`` counts the first try, so 1 means no retries. The wait
    before each retry is multiplied by ``backoff`` after it is used.
    """

    max_attempts: int = 3
    wait_seconds: float = 5
    backoff: float = 1.0

    def run(self, operation: Callable[[], Any], retry_on: Tuple[Type[BaseException], ...],
            label: str = 'Operation') -> Any:
        """
        Call ``operation`` until it succeeds or the attempts run out.

        Raises:
            MaxRetriesExceeded: If the last allowed attempt fails with a ``retry_on`` type
        """
        attempts = max(1, self.max_attempts)
        wait = self.wait_seconds

        for attempt in range(1, attempts + 1):
            try:
                result = operation()
            except retry_on as e:
                if attempt == attempts:
                    raise MaxRetriesExceeded(label, attempts, e) from e
                logger.warning(f"{label} failed on attempt {attempt}/{attempts} "
                               f"({type(e).__name__}: {e}), retrying in {wait:.1f}s")
                time.sleep(wait)
                wait *= self.backoff
                continue

            if attempt > 1:
                logger.info(f"{label} succeeded on attempt {attempt}")
            return result
