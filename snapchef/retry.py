from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Awaitable, Callable, TypeVar

from snapchef.errors import NetworkError

logger = logging.getLogger(__name__)

T = TypeVar("T")


def is_transient(error: BaseException) -> bool:
    return isinstance(error, NetworkError) and error.retryable


@dataclass(frozen=True)
class RetryPolicy:
    """Bounded attempts with a fixed delay between them."""

    max_attempts: int = 3
    delay: float = 2.0
    retryable: Callable[[BaseException], bool] = is_transient
    sleep: Callable[[float], Awaitable[None]] = field(default=asyncio.sleep, repr=False)

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if self.delay < 0:
            raise ValueError("delay must be non-negative")

    async def run(
        self, operation: Callable[[], Awaitable[T]], description: str = "operation"
    ) -> T:
        attempt = 1
        while True:
            try:
                return await operation()
            except Exception as exc:
                if attempt >= self.max_attempts or not self.retryable(exc):
                    raise
                logger.warning(
                    "%s failed (attempt %d/%d): %s; retrying in %.1fs",
                    description,
                    attempt,
                    self.max_attempts,
                    exc,
                    self.delay,
                )
                await self.sleep(self.delay)
                attempt += 1


NO_RETRY = RetryPolicy(max_attempts=1, delay=0.0)
