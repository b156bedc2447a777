"""Stop candidate generators — pure math, no I/O.

Each generator looks at the current bar (and sometimes the previous bar,
the quote, or the swing structure) and proposes a stop price for one
position, or ``None`` when its rule does not apply this tick.

Generators:
    - Initial:   previous bar's low (buy) / high (sell).
    - Breakout:  first-bar breakout beyond the previous bar's extreme.
    - Mini-holder: running extreme since first sight, on trend candles.
    - Approaching target: current bar's extreme once price is within one
      bar's range of the take-profit.
    - Structure: current bar's extreme after breaking a swing point, with
      an exhaustion-wick check that asks for an outright close.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Optional, Sequence

from bombbot.risk.trailing_state import Phase, TrailingState
from bombbot.strategy.models import Bar, Quote, validate_direction
from bombbot.strategy.swings import SwingPoints


EXHAUSTION_WICK_RATIO = 0.4


class BreakoutPolicy(str, Enum):
    """Which price a first-bar breakout moves the stop to."""

    CANDLE_EXTREME = "candle_extreme"        # breakout bar's own low / high
    PREVIOUS_MIDPOINT = "previous_midpoint"  # middle of the previous bar


@dataclass(frozen=True)
class StopCandidate:
    """A proposed stop price tagged with the rule that produced it."""

    source: str
    price: float


@dataclass(frozen=True)
class StructureSignal:
    """Outcome of the swing-structure scan for one position.

    Attributes:
        candidate: Stop candidate, or ``None`` if no swing was broken.
        swing_index: Index of the last swing point broken this tick.
        exhausted: ``True`` when the breakout bar shows an exhaustion
            wick and the position should be closed instead.
    """

    candidate: Optional[StopCandidate] = None
    swing_index: Optional[int] = None
    exhausted: bool = False


def initial_stop(direction: str, previous: Bar) -> StopCandidate:
    """Stop at the previous bar's far side."""
    validate_direction(direction)
    price = previous.low if direction == "buy" else previous.high
    return StopCandidate("initial", price)


def breakout_stop(
    direction: str,
    current: Bar,
    previous: Bar,
    state: TrailingState,
    policy: BreakoutPolicy = BreakoutPolicy.CANDLE_EXTREME,
) -> Optional[StopCandidate]:
    """Tighten after the first bar since entry breaks the previous bar.

    Only applies while the position is ``JUST_ENTERED``.
    """
    validate_direction(direction)
    if state.phase is not Phase.JUST_ENTERED:
        return None

    if direction == "buy":
        if current.high <= previous.high:
            return None
        extreme = current.low
    else:
        if current.low >= previous.low:
            return None
        extreme = current.high

    if policy is BreakoutPolicy.PREVIOUS_MIDPOINT:
        return StopCandidate("breakout", (previous.high + previous.low) / 2.0)
    return StopCandidate("breakout", extreme)


def mini_holder_stop(
    direction: str,
    current: Bar,
    state: TrailingState,
) -> Optional[StopCandidate]:
    """Offer the running extreme, but only on a trend-confirming bar.

    ``state`` must already have observed *current*.
    """
    validate_direction(direction)
    if state.awaiting_reversal:
        return None
    if direction == "buy":
        if current.is_bullish:
            return StopCandidate("mini_holder", state.running_low)
    elif current.is_bearish:
        return StopCandidate("mini_holder", state.running_high)
    return None


def approaching_target_stop(
    direction: str,
    current: Bar,
    quote: Quote,
    take_profit: Optional[float],
) -> Optional[StopCandidate]:
    """Protect the trade once price is within one bar's range of target."""
    validate_direction(direction)
    if take_profit is None:
        return None

    candle_length = current.range
    if direction == "buy":
        if take_profit - quote.bid <= candle_length:
            return StopCandidate("approaching_target", current.low)
    elif quote.ask - take_profit <= candle_length:
        return StopCandidate("approaching_target", current.high)
    return None


def is_exhaustion_wick(
    direction: str,
    bar: Bar,
    ratio: float = EXHAUSTION_WICK_RATIO,
) -> bool:
    """``True`` if the wick against *direction* is at least *ratio* of range.

    A buy breakout looks at the upper wick, a sell breakout at the lower
    wick.  Zero-range bars never qualify.
    """
    validate_direction(direction)
    if bar.range <= 0:
        return False
    wick = bar.upper_wick if direction == "buy" else bar.lower_wick
    return wick / bar.range >= ratio


def structure_stop(
    direction: str,
    bars: Sequence[Bar],
    swings: SwingPoints,
    exhaustion_ratio: Optional[float] = EXHAUSTION_WICK_RATIO,
) -> StructureSignal:
    """Scan swing points and tighten on a break of structure.

    Swing points are scanned in ascending order; when several are broken
    the last one wins.  Pass ``exhaustion_ratio=None`` to disable the
    exhaustion check.
    """
    validate_direction(direction)
    if not bars:
        return StructureSignal()

    current = bars[-1]
    broken: Optional[int] = None
    if direction == "buy":
        for i in swings.highs:
            if current.high > bars[i].high:
                broken = i
        price = current.low
    else:
        for i in swings.lows:
            if current.low < bars[i].low:
                broken = i
        price = current.high

    if broken is None:
        return StructureSignal()

    if exhaustion_ratio is not None and is_exhaustion_wick(direction, current, exhaustion_ratio):
        return StructureSignal(swing_index=broken, exhausted=True)
    return StructureSignal(
        candidate=StopCandidate("structure", price),
        swing_index=broken,
    )
