# -*- coding: utf-8 -*-
"""
Candle Scheduler Tests
======================

가짜 clock / sleep 으로 실제 대기 없이 검증.
"""
import asyncio

import pytest

from barsim.market import CandleScheduler, next_close_delay_ms

M = 60_000


class FakeTime:
    """sleep 하면 clock 이 그만큼 진행"""

    def __init__(self, now: int):
        self.now = now
        self.sleeps = []

    def clock(self) -> int:
        return self.now

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += int(round(seconds * 1000))


class TestNextCloseDelay:
    """next_close_delay_ms()"""

    def test_mid_interval(self):
        assert next_close_delay_ms(10_000, M) == 50_000

    def test_with_buffer(self):
        assert next_close_delay_ms(10_000, M, 5_000) == 55_000

    def test_on_boundary(self):
        """정확히 경계면 buffer 만큼만 대기"""
        assert next_close_delay_ms(2 * M, M, 5_000) == 5_000

    def test_invalid_interval(self):
        with pytest.raises(ValueError):
            next_close_delay_ms(0, 0)


class TestCandleScheduler:
    """CandleScheduler.run()"""

    def test_ticks_at_candle_close(self):
        t = FakeTime(10_000)
        wakes = []

        async def callback(now):
            wakes.append(now)

        sched = CandleScheduler(M, callback, buffer_ms=5_000, clock=t.clock, sleep=t.sleep)
        ticks = asyncio.run(sched.run(max_ticks=3))

        assert ticks == 3
        assert wakes == [M + 5_000, 2 * M + 5_000, 3 * M + 5_000]
        assert t.sleeps == [55.0, 60.0, 60.0]
        assert not sched.running

    def test_callback_error_keeps_loop(self, caplog):
        t = FakeTime(0)
        calls = []

        async def callback(now):
            calls.append(now)
            if len(calls) == 1:
                raise RuntimeError("fetch failed")

        sched = CandleScheduler(M, callback, buffer_ms=0, clock=t.clock, sleep=t.sleep)
        assert asyncio.run(sched.run(max_ticks=2)) == 2
        assert len(calls) == 2
        assert "Tick callback failed" in caplog.text

    def test_stop_from_callback(self):
        t = FakeTime(0)
        holder = {}

        async def callback(now):
            holder['sched'].stop()

        sched = CandleScheduler(M, callback, buffer_ms=0, clock=t.clock, sleep=t.sleep)
        holder['sched'] = sched
        assert asyncio.run(sched.run()) == 1

    def test_stop_during_sleep_skips_callback(self):
        t = FakeTime(0)
        calls = []

        async def callback(now):
            calls.append(now)

        sched = CandleScheduler(M, callback, clock=t.clock)

        async def sleep(seconds):
            sched.stop()

        sched._sleep = sleep
        assert asyncio.run(sched.run()) == 0
        assert calls == []

    def test_invalid_interval(self):
        async def callback(now):
            pass

        with pytest.raises(ValueError):
            CandleScheduler(0, callback)
