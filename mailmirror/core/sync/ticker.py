"""Interval ticker with a cancellation token."""

import asyncio
from typing import Optional


class Ticker:
    """Async iterator yielding once per interval until the token is set.

    The wait between ticks is a wait on the token itself, so setting it ends
    the iteration straight away instead of after the current sleep.

    Usage:
        >>> token = asyncio.Event()
        >>> async for tick in Ticker(300, token):
        ...     await check()
    """

    def __init__(
        self,
        interval: float,
        cancel_token: Optional[asyncio.Event] = None,
        immediate: bool = True,
    ):
        if interval <= 0:
            raise ValueError(f"Ticker interval must be positive: {interval}")

        self.interval = interval
        self.cancel_token = cancel_token or asyncio.Event()
        self._immediate = immediate
        self._ticks = 0

    def cancel(self) -> None:
        self.cancel_token.set()

    def __aiter__(self) -> "Ticker":
        return self

    async def __anext__(self) -> int:
        if self.cancel_token.is_set():
            raise StopAsyncIteration

        if self._ticks > 0 or not self._immediate:
            try:
                await asyncio.wait_for(self.cancel_token.wait(), timeout=self.interval)
                raise StopAsyncIteration
            except asyncio.TimeoutError:
                pass

        self._ticks += 1
        return self._ticks
