"""Host protocols — what the stop runner needs from the trading platform.

A live broker adapter, the replay harness, and test doubles all satisfy
these interfaces, so the runner never talks to a network directly.
"""

from __future__ import annotations

from typing import Optional, Protocol, runtime_checkable

from bombbot.strategy.models import Bar, PositionView, Quote


class MutationRejectedError(Exception):
    """The host refused a stop change or close for one position."""

    def __init__(self, position_id: str, reason: str) -> None:
        super().__init__(f"position {position_id}: {reason}")
        self.position_id = position_id
        self.reason = reason


@runtime_checkable
class MarketDataProvider(Protocol):
    """Read-only view of bars, quotes, and open positions."""

    async def fetch_bars(self, instrument: str, granularity: str, count: int) -> list[Bar]:
        """Return bar history oldest-first; the last bar may still be forming."""
        ...

    async def get_quote(self, instrument: str) -> Quote:
        """Return the current bid/ask."""
        ...

    async def list_positions(self, instrument: str) -> list[PositionView]:
        """Return open positions on *instrument*."""
        ...


@runtime_checkable
class PositionMutator(Protocol):
    """Applies stop changes and closes to live positions."""

    async def modify_stop(
        self,
        position_id: str,
        stop_loss: float,
        take_profit: Optional[float],
    ) -> None:
        """Set the stop-loss, leaving the take-profit as given."""
        ...

    async def close_position(self, position_id: str) -> None:
        """Close the position at market."""
        ...
