"""Wall clock and sleep, injectable so timing logic is testable without real waits."""

import asyncio
import time


class Clock:
    """System clock used by the correlator, cache and orchestrator."""

    def now_ms(self) -> int:
        """Current wall-clock time in epoch milliseconds."""
        return int(time.time() * 1000)

    async def sleep(self, seconds: float) -> None:
        """Suspend the calling task."""
        if seconds > 0:
            await asyncio.sleep(seconds)


SYSTEM_CLOCK = Clock()
