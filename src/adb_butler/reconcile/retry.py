"""
Bounded exponential backoff for recovery actions.
"""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Tuple, Type

from adb_butler.core.config import ReconcileConfig
from adb_butler.core.errors import ActionFailed, TransientError

logger = logging.getLogger(__name__)

Sleep = Callable[[float], Awaitable[Any]]


class RetryPolicy:
    """
    Retries transient failures with exponential backoff.

    The sleep function is injectable so tests can run with a fake clock.

    Usage:
        policy = RetryPolicy(max_attempts=3, base_delay=1.0, multiplier=2.0)
        result = await policy.run(client.list_devices, description="adb devices")
    """

    def __init__(
        self,
        max_attempts: int = 3,
        base_delay: float = 1.0,
        multiplier: float = 2.0,
        max_delay: float = 30.0,
        retry_on: Tuple[Type[BaseException], ...] = (TransientError,),
        sleep: Sleep = asyncio.sleep,
    ):
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self.max_attempts = max_attempts
        self.base_delay = base_delay
        self.multiplier = multiplier
        self.max_delay = max_delay
        self.retry_on = retry_on
        self.sleep = sleep

    @classmethod
    def from_config(cls, config: ReconcileConfig, sleep: Sleep = asyncio.sleep) -> "RetryPolicy":
        return cls(
            max_attempts=config.retry_attempts,
            base_delay=config.retry_base_delay,
            multiplier=config.retry_multiplier,
            max_delay=config.retry_max_delay,
            sleep=sleep,
        )

    def delay_for(self, failed_attempts: int) -> float:
        """Delay after the given number of failed attempts (1-based)."""
        delay = self.base_delay * (self.multiplier ** (failed_attempts - 1))
        return min(delay, self.max_delay)

    async def run(self, func: Callable[..., Awaitable[Any]], *args: Any, description: str = "") -> Any:
        """
        Call ``func(*args)`` until it succeeds or attempts run out.

        Raises:
            ActionFailed: Every attempt failed with a retryable error
            Exception: Non-retryable errors propagate unchanged
        """
        label = description or getattr(func, "__name__", "call")
        last_error: BaseException = TransientError("no attempt made")

        for attempt in range(1, self.max_attempts + 1):
            try:
                return await func(*args)
            except self.retry_on as e:
                last_error = e
                if attempt == self.max_attempts:
                    break
                delay = self.delay_for(attempt)
                logger.warning(
                    f"{label}: attempt {attempt}/{self.max_attempts} failed ({e}); "
                    f"retrying in {delay:.1f}s"
                )
                await self.sleep(delay)

        raise ActionFailed(
            f"{label} failed after {self.max_attempts} attempts: {last_error}"
        ) from last_error
