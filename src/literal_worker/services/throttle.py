"""Delay policy for bursts of brand-new phrases within one job."""

from __future__ import annotations

import asyncio
from typing import Optional


class RateThrottle:
    """Spreads new-phrase generator calls into batches of ``batch_size``.

    The n-th new phrase of a job (0-based) waits
    ``floor(n / batch_size) * interval_seconds`` before its generator call.
    """

    def __init__(self, batch_size: int = 3, interval_seconds: float = 10.0) -> None:
        if batch_size < 1:
            raise ValueError("batch_size must be positive")
        if interval_seconds < 0:
            raise ValueError("interval_seconds must not be negative")
        self.batch_size = batch_size
        self.interval_seconds = interval_seconds

    def delay_for(self, index: int) -> float:
        if index < 0:
            raise ValueError("phrase index must not be negative")
        return (index // self.batch_size) * self.interval_seconds

    async def wait(self, index: int, until: Optional[asyncio.Event] = None) -> None:
        """Sleep out the delay for ``index``, returning early once ``until`` is set."""
        delay = self.delay_for(index)
        if delay <= 0:
            return
        if until is None:
            await asyncio.sleep(delay)
            return
        try:
            await asyncio.wait_for(until.wait(), delay)
        except asyncio.TimeoutError:
            pass
