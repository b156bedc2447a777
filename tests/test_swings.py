"""Tests for swing structure detection."""

from bombbot.strategy.models import Bar
from bombbot.strategy.swings import (
    SwingPoints,
    detect_swings,
    find_swing_highs,
    find_swing_lows,
)


# ── Helpers ──────────────────────────────────────────────────────────────


def _bars(rows: list[tuple[float, float, float, float]]) -> list[Bar]:
    """Build indexed bars from (open, high, low, close) rows."""
    return [
        Bar(index=i, open=o, high=h, low=l, close=c)
        for i, (o, h, l, c) in enumerate(rows)
    ]


def _mirror(bars: list[Bar]) -> list[Bar]:
    """Reflect prices through zero so highs become lows."""
    return [
        Bar(index=b.index, open=-b.open, high=-b.low, low=-b.high, close=-b.close)
        for b in bars
    ]


_ZIGZAG = [
    (10.0, 11.0, 9.5, 10.5),
    (10.5, 11.5, 10.0, 11.0),
    (11.0, 13.0, 10.8, 12.0),   # swing high
    (12.0, 12.5, 11.0, 11.5),
    (11.5, 12.0, 9.0, 9.5),     # swing low
    (9.5, 12.8, 9.4, 12.6),
    (12.6, 14.0, 12.0, 13.8),   # swing high
    (13.8, 13.9, 12.2, 12.4),
    (12.4, 13.0, 11.9, 12.9),
]


# ── Tests ────────────────────────────────────────────────────────────────


class TestSwingHighs:
    def test_finds_highs_in_ascending_order(self):
        assert find_swing_highs(_bars(_ZIGZAG)) == [2, 6]

    def test_equal_highs_do_not_qualify(self):
        rows = [
            (1.0, 2.0, 0.5, 1.5),
            (1.5, 2.5, 1.0, 2.0),
            (2.0, 3.0, 1.5, 2.5),
            (2.5, 3.0, 2.0, 2.2),   # ties the candidate's high
            (2.2, 2.4, 1.8, 2.0),
        ]
        assert find_swing_highs(_bars(rows)) == []

    def test_edges_never_qualify(self):
        rows = [
            (5.0, 9.0, 4.0, 6.0),   # highest bar, but first in history
            (6.0, 7.0, 5.0, 6.5),
            (6.5, 7.5, 5.5, 7.0),
            (7.0, 7.2, 6.0, 6.2),
            (6.2, 8.0, 6.1, 7.9),   # higher than neighbours, but last
        ]
        assert find_swing_highs(_bars(rows)) == []


class TestSwingLows:
    def test_finds_lows(self):
        assert find_swing_lows(_bars(_ZIGZAG)) == [4]


class TestDetectSwings:
    def test_short_history_is_empty(self):
        result = detect_swings(_bars(_ZIGZAG[:4]))
        assert result == SwingPoints(highs=[], lows=[])

    def test_mirrored_history_swaps_highs_and_lows(self):
        bars = _bars(_ZIGZAG)
        mirrored = _mirror(bars)
        assert find_swing_highs(bars) == find_swing_lows(mirrored)
        assert find_swing_lows(bars) == find_swing_highs(mirrored)

    def test_custom_lookback(self):
        result = detect_swings(_bars(_ZIGZAG), lookback=1)
        assert 2 in result.highs and 6 in result.highs
        assert 4 in result.lows
