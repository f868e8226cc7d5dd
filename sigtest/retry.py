"""
Bounded retry policy for calls to external collaborators.
"""
import logging
import time
from typing import Any, Callable, List, Tuple, Type

from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)


class RetryPolicy(BaseModel):
    """
    An explicit retry policy injected into network-bound collaborators.

    Args:
        max_attempts (int): Total number of attempts, including the first.
        backoff_seconds (List[float]): Delay before each retry. The last value
            is reused when there are more retries than entries.
    """
    max_attempts: int = Field(3, ge=1, description="Total number of attempts.")
    backoff_seconds: List[float] = Field(
        default_factory=lambda: [1.0, 2.0, 4.0],
        description="Delay before each retry, in seconds.",
    )

    def delay_for(self, retry_idx: int) -> float:
        """Returns the delay preceding retry number `retry_idx` (0-based)."""
        if not self.backoff_seconds:
            return 0.0
        return self.backoff_seconds[min(retry_idx, len(self.backoff_seconds) - 1)]

    def call(
        self,
        fn: Callable[..., Any],
        *args,
        retry_on: Tuple[Type[BaseException], ...] = (Exception,),
        sleep: Callable[[float], None] = time.sleep,
        **kwargs,
    ) -> Any:
        """
        Calls `fn` until it succeeds or the attempts are exhausted.

        Args:
            fn (Callable): The function to call.
            retry_on (Tuple[Type[BaseException], ...]): Exception types that
                trigger a retry. Anything else propagates immediately.
            sleep (Callable[[float], None]): Sleep function, injectable for tests.

        Returns:
            Any: Whatever `fn` returns.

        Raises:
            The last exception raised by `fn` once all attempts failed.
        """
        for attempt in range(1, self.max_attempts + 1):
            try:
                return fn(*args, **kwargs)
            except retry_on as e:
                if attempt >= self.max_attempts:
                    raise
                delay = self.delay_for(attempt - 1)
                logger.warning(
                    "Attempt %d/%d of %s failed (%s), retrying in %.1fs",
                    attempt, self.max_attempts, getattr(fn, "__name__", repr(fn)), e, delay,
                )
                sleep(delay)


NO_RETRY = RetryPolicy(max_attempts=1, backoff_seconds=[])
