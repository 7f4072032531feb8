# -*- coding: utf-8 -*-
"""
Confirmed-Bar Selector Tests
============================

진행 중인 봉이 절대 분석에 들어가지 않는지 검증.
"""
import warnings

import pytest

from barsim.errors import InsufficientData, StaleFeedWarning
from barsim.market.confirmed import FeedStatus, classify_feed, closed_before, select_confirmed
from barsim.models import Bar

I = 15 * 60_000          # 15m
B = 1_000 * I            # slot 경계


def feed(last_ts: int, n: int = 5):
    """last_ts로 끝나는 n개 봉"""
    return [Bar(last_ts - (n - 1 - k) * I, 1, 1, 1, 1, 1) for k in range(n)]


class TestClassifyFeed:
    """마지막 봉 분류"""

    def test_rolled_over(self):
        assert classify_feed(feed(B), I, B) == FeedStatus.ROLLED_OVER

    def test_current(self):
        assert classify_feed(feed(B - I), I, B + I - 1) == FeedStatus.CURRENT

    def test_stale(self):
        assert classify_feed(feed(B - 3 * I), I, B) == FeedStatus.STALE

    def test_empty(self):
        with pytest.raises(InsufficientData):
            classify_feed([], I, B)


class TestSelectConfirmed:
    """select_confirmed() 경계 테스트"""

    def test_in_progress_bar_excluded_at_boundary(self):
        """now == 새 slot 시작: 새로 열린 봉 B 제외"""
        bars = feed(B)
        out = select_confirmed(bars, I, B, lookback=10)
        assert out[-1].timestamp == B - I
        assert all(b.timestamp < B for b in out)

    def test_last_closed_bar_included_just_before_rollover(self):
        """now == B + I - 1: B - I 봉은 닫혔고 API가 아직 롤오버 전"""
        bars = feed(B - I)
        out = select_confirmed(bars, I, B + I - 1, lookback=10)
        assert out[-1].timestamp == B - I
        assert len(out) == len(bars)

    def test_confirmed_close_not_after_now(self):
        for now in (B, B + 1, B + I // 2, B + I - 1):
            slot = (now // I) * I
            out = select_confirmed(feed(slot), I, now, lookback=3)
            assert out[-1].timestamp + I <= now
            assert slot not in [b.timestamp for b in out]

    def test_lookback_trim(self):
        out = select_confirmed(feed(B, n=10), I, B, lookback=3)
        assert [b.timestamp for b in out] == [B - 3 * I, B - 2 * I, B - I]

    def test_lookback_zero(self):
        assert select_confirmed(feed(B), I, B, lookback=0) == []

    def test_fewer_than_two_bars(self):
        with pytest.raises(InsufficientData):
            select_confirmed(feed(B, n=1), I, B, lookback=5)

    def test_stale_feed_warns_and_returns_data(self):
        bars = feed(B - 3 * I)
        with pytest.warns(StaleFeedWarning):
            out = select_confirmed(bars, I, B, lookback=10)
        assert out == bars

    def test_feed_ahead_of_clock(self):
        """거래소 시계가 앞서 now 이후 slot 봉까지 온 경우: 모두 제외"""
        now = B + 1_000
        bars = [Bar(B + k * I, 1, 1, 1, 1, 1) for k in (-2, -1, 0, 1)]
        with warnings.catch_warnings():
            warnings.simplefilter("error")
            out = select_confirmed(bars, I, now, lookback=10)
        assert [b.timestamp for b in out] == [B - 2 * I, B - I]
        assert all(b.close_time(I) <= now for b in out)

    def test_classify_ahead_of_clock(self):
        assert classify_feed(feed(B + 2 * I), I, B) == FeedStatus.ROLLED_OVER

    def test_rolled_over_then_stale_warns(self):
        """진행 중 봉 제외 후 남은 봉이 오래됐으면 경고 (lag > 0)"""
        bars = [Bar(B - 5 * I, 1, 1, 1, 1, 1), Bar(B - 4 * I, 1, 1, 1, 1, 1), Bar(B, 1, 1, 1, 1, 1)]
        with pytest.warns(StaleFeedWarning, match="is 3 interval"):
            out = select_confirmed(bars, I, B, lookback=10)
        assert [b.timestamp for b in out] == [B - 5 * I, B - 4 * I]

    def test_only_future_bars(self):
        bars = [Bar(B, 1, 1, 1, 1, 1), Bar(B + I, 1, 1, 1, 1, 1)]
        assert select_confirmed(bars, I, B, lookback=5) == []

    def test_current_feed_no_warning(self):
        with warnings.catch_warnings():
            warnings.simplefilter("error")
            select_confirmed(feed(B - I), I, B, lookback=10)


class TestClosedBefore:
    """상위 TF 닫힌 bucket 선택"""

    def test_excludes_current_bucket(self):
        H = 4 * I
        bars = [Bar(k * H, 1, 1, 1, 1, 1) for k in range(5)]
        out = closed_before(bars, 3 * H, limit=10)
        assert [b.timestamp for b in out] == [0, H, 2 * H]

    def test_limit(self):
        bars = [Bar(k * I, 1, 1, 1, 1, 1) for k in range(10)]
        out = closed_before(bars, 8 * I, limit=2)
        assert [b.timestamp for b in out] == [6 * I, 7 * I]

    def test_nothing_closed(self):
        bars = [Bar(k * I, 1, 1, 1, 1, 1) for k in range(3)]
        assert closed_before(bars, 0, limit=5) == []

    def test_zero_limit(self):
        bars = [Bar(k * I, 1, 1, 1, 1, 1) for k in range(3)]
        assert closed_before(bars, 3 * I, limit=0) == []

    def test_matches_linear_scan(self):
        """이진 탐색 결과 = 선형 탐색 결과"""
        H = 4 * I
        bars = [Bar(k * H, 1, 1, 1, 1, 1) for k in range(0, 300, 3)]
        for start in range(-H, 310 * H, H // 2):
            expected = [b for b in bars if b.timestamp < start][-7:]
            assert closed_before(bars, start, limit=7) == expected

    def test_large_series(self):
        bars = [Bar(k * I, 1, 1, 1, 1, 1) for k in range(200_000)]
        for k in range(0, 200_000, 50):
            out = closed_before(bars, k * I, limit=3)
            assert len(out) == min(3, k)
