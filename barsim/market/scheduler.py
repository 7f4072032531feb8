# -*- coding: utf-8 -*-
"""
Candle Close Scheduler
======================

봉 마감 시각에 맞춰 콜백 실행 (라이브 루프).

    next_close = ceil(now / interval) * interval
    wait       = next_close - now + buffer     (거래소 봉 반영 지연 대비)

콜백 예외는 로그만 남기고 다음 봉을 다시 기다린다.
clock / sleep 주입 가능 (테스트에서 실제 대기 없음).
"""
from __future__ import annotations

import asyncio
import logging
import time
from typing import Awaitable, Callable, Optional

logger = logging.getLogger(__name__)


def now_ms() -> int:
    return int(time.time() * 1000)


def next_close_delay_ms(now: int, interval_ms: int, buffer_ms: int = 0) -> int:
    """다음 봉 마감 + buffer까지 남은 ms"""
    if interval_ms <= 0:
        raise ValueError(f"interval_ms must be > 0, got {interval_ms}")
    next_close = -(-now // interval_ms) * interval_ms
    return next_close - now + buffer_ms


class CandleScheduler:
    """봉 마감 타이머 -> 콜백 -> 재설정"""

    def __init__(
        self,
        interval_ms: int,
        callback: Callable[[int], Awaitable[object]],
        buffer_ms: int = 5000,
        clock: Optional[Callable[[], int]] = None,
        sleep: Optional[Callable[[float], Awaitable[object]]] = None,
    ):
        if interval_ms <= 0:
            raise ValueError(f"interval_ms must be > 0, got {interval_ms}")
        self.interval_ms = interval_ms
        self.callback = callback
        self.buffer_ms = buffer_ms
        self._clock = clock or now_ms
        self._sleep = sleep or asyncio.sleep
        self._running = False
        self.ticks = 0

    @property
    def running(self) -> bool:
        return self._running

    def stop(self) -> None:
        self._running = False

    async def run(self, max_ticks: Optional[int] = None) -> int:
        """
        stop() 또는 max_ticks 도달까지 반복. 실행된 tick 수 반환.
        """
        self._running = True
        self.ticks = 0

        while self._running:
            delay = next_close_delay_ms(self._clock(), self.interval_ms, self.buffer_ms)
            logger.info(f"Sleeping {delay / 1000:.1f}s until next candle close")
            await self._sleep(delay / 1000)

            if not self._running:
                break

            wake = self._clock()
            try:
                await self.callback(wake)
            except Exception as e:
                logger.exception(f"Tick callback failed at {wake}: {e}")

            self.ticks += 1
            if max_ticks is not None and self.ticks >= max_ticks:
                break

        self._running = False
        return self.ticks
