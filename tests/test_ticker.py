"""
Tests for the interval ticker and its cancellation token
"""
import asyncio

import pytest

from mailmirror.core.sync.ticker import Ticker


class TestTicker:
    """Tests for deterministic start and stop"""

    @pytest.mark.asyncio
    async def test_first_tick_is_immediate(self):
        ticker = Ticker(60)

        assert await asyncio.wait_for(ticker.__anext__(), timeout=1) == 1

    @pytest.mark.asyncio
    async def test_ticks_repeat_at_interval(self):
        ticks = []
        token = asyncio.Event()

        async for tick in Ticker(0.01, token):
            ticks.append(tick)
            if tick == 3:
                token.set()

        assert ticks == [1, 2, 3]

    @pytest.mark.asyncio
    async def test_cancel_interrupts_wait(self):
        ticker = Ticker(3600)
        await ticker.__anext__()

        asyncio.get_running_loop().call_later(0.01, ticker.cancel)

        with pytest.raises(StopAsyncIteration):
            await asyncio.wait_for(ticker.__anext__(), timeout=1)

    @pytest.mark.asyncio
    async def test_preset_token_yields_nothing(self):
        token = asyncio.Event()
        token.set()

        assert [tick async for tick in Ticker(1, token)] == []

    def test_interval_must_be_positive(self):
        with pytest.raises(ValueError):
            Ticker(0)
