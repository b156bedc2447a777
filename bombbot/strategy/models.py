"""Core data models — bars, quotes, and position snapshots seen by the engine."""

from dataclasses import dataclass
from typing import Optional


# Host tag that marks a position as still inside its first bar since entry.
FIRST_BAR_TAG = "FirstCandleMoved"

DIRECTIONS = ("buy", "sell")


@dataclass(frozen=True)
class Bar:
    """A single price bar with its ordinal position in history."""

    index: int
    open: float
    high: float
    low: float
    close: float
    time: str = ""

    @property
    def range(self) -> float:
        """High-to-low length of the bar."""
        return self.high - self.low

    @property
    def is_bullish(self) -> bool:
        return self.close > self.open

    @property
    def is_bearish(self) -> bool:
        return self.close < self.open

    @property
    def upper_wick(self) -> float:
        return self.high - max(self.open, self.close)

    @property
    def lower_wick(self) -> float:
        return min(self.open, self.close) - self.low


@dataclass(frozen=True)
class Quote:
    """Current top-of-book prices."""

    bid: float
    ask: float


@dataclass(frozen=True)
class PositionView:
    """Read-only snapshot of an open position supplied by the host."""

    position_id: str
    instrument: str
    direction: str  # "buy" or "sell"
    stop_loss: Optional[float] = None
    take_profit: Optional[float] = None
    tag: str = ""


def validate_direction(direction: str) -> None:
    """Raise ``ValueError`` unless *direction* is ``"buy"`` or ``"sell"``."""
    if direction not in DIRECTIONS:
        raise ValueError(f"direction must be 'buy' or 'sell', got '{direction}'")
