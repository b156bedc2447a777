"""Swing structure detection — pure functions over bar history.

A swing high is a bar whose high is strictly higher than the highs of the
*lookback* bars on each side; a swing low mirrors this on lows.  The
*lookback* bars at each end of the history never qualify because they lack
neighbours.
"""

from dataclasses import dataclass, field
from typing import Sequence

from bombbot.strategy.models import Bar


SWING_LOOKBACK = 2


@dataclass(frozen=True)
class SwingPoints:
    """Swing-high and swing-low indices, each in ascending order."""

    highs: list[int] = field(default_factory=list)
    lows: list[int] = field(default_factory=list)


def find_swing_highs(bars: Sequence[Bar], lookback: int = SWING_LOOKBACK) -> list[int]:
    """Return the positions in *bars* that are swing highs."""
    indices: list[int] = []
    for i in range(lookback, len(bars) - lookback):
        high = bars[i].high
        is_swing = True
        for j in range(1, lookback + 1):
            if bars[i - j].high >= high or bars[i + j].high >= high:
                is_swing = False
                break
        if is_swing:
            indices.append(i)
    return indices


def find_swing_lows(bars: Sequence[Bar], lookback: int = SWING_LOOKBACK) -> list[int]:
    """Return the positions in *bars* that are swing lows."""
    indices: list[int] = []
    for i in range(lookback, len(bars) - lookback):
        low = bars[i].low
        is_swing = True
        for j in range(1, lookback + 1):
            if bars[i - j].low <= low or bars[i + j].low <= low:
                is_swing = False
                break
        if is_swing:
            indices.append(i)
    return indices


def detect_swings(bars: Sequence[Bar], lookback: int = SWING_LOOKBACK) -> SwingPoints:
    """Detect all swing highs and lows in *bars*.

    Short histories (fewer than ``2 * lookback + 1`` bars) yield an empty
    result rather than an error.
    """
    return SwingPoints(
        highs=find_swing_highs(bars, lookback),
        lows=find_swing_lows(bars, lookback),
    )
