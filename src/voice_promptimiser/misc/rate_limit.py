import asyncio
import logging
import time
from typing import Awaitable, Callable

logger = logging.getLogger(__name__)


class RateLimitGate:
    """Shared "rate limited until" state for one upstream service.

    Every caller talking to the same service shares one gate, so a 429 seen by one
    call holds back the others instead of each retrying on its own. Runs against
    different services use different gates and never block each other.
    """

    def __init__(
        self,
        name: str = "generator",
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.name = name
        self._sleep = sleep
        self._clock = clock
        self.limited_until: float = 0.0

    def block_for(self, seconds: float) -> None:
        """Extend the blocked window; never shortens one already in place."""
        until = self._clock() + max(0.0, seconds)
        if until > self.limited_until:
            self.limited_until = until

    @property
    def remaining(self) -> float:
        return max(0.0, self.limited_until - self._clock())

    async def wait(self) -> float:
        """Sleep until the gate opens. Returns how long it slept."""
        remaining = self.remaining
        if remaining > 0:
            logger.info(f"⏳ {self.name} rate limited, waiting {remaining:.1f}s")
            await self._sleep(remaining)
        return remaining
