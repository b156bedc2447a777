"""OANDA host adapter — exposes ``OandaClient`` through the host protocols.

Converts broker objects into engine models (candles → indexed bars,
trades → position views) and turns broker-side rejections of a mutation
into ``MutationRejectedError``.
"""

import logging
from typing import Optional

import httpx

from bombbot.broker.base import MutationRejectedError
from bombbot.broker.models import Candle, Trade
from bombbot.broker.oanda_client import OandaClient
from bombbot.strategy.models import Bar, PositionView, Quote

logger = logging.getLogger("bombbot.broker")


def candles_to_bars(candles: list[Candle], start: int = 0) -> list[Bar]:
    """Index candles oldest-first as engine bars, numbering from *start*."""
    return [
        Bar(index=start + i, open=c.open, high=c.high, low=c.low, close=c.close, time=c.time)
        for i, c in enumerate(candles)
    ]


class BarIndexer:
    """Keeps bar indices stable across overlapping candle windows.

    Each fetch returns the latest *count* candles, so positions within a
    window shift every time a new candle opens.  The indexer anchors each
    window on a candle time it has already numbered; a window with no
    overlap continues after the last index handed out.
    """

    def __init__(self) -> None:
        self._by_time: dict[str, int] = {}
        self._next_index = 0

    def index(self, candles: list[Candle]) -> list[Bar]:
        start = self._next_index
        for pos, candle in enumerate(candles):
            known = self._by_time.get(candle.time)
            if known is not None:
                start = known - pos
                break

        bars = candles_to_bars(candles, start)
        self._by_time = {b.time: b.index for b in bars}
        if bars:
            self._next_index = bars[-1].index + 1
        return bars


def trade_to_position(trade: Trade) -> PositionView:
    """Map an OANDA trade to a position view (unit sign → direction)."""
    return PositionView(
        position_id=trade.trade_id,
        instrument=trade.instrument,
        direction="buy" if trade.units > 0 else "sell",
        stop_loss=trade.stop_loss_price,
        take_profit=trade.take_profit_price,
        tag=trade.comment,
    )


class OandaHost:
    """``MarketDataProvider`` and ``PositionMutator`` backed by OANDA.

    Args:
        client: An ``OandaClient`` (or compatible duck-type / mock).
    """

    def __init__(self, client: OandaClient) -> None:
        self._client = client
        self._instruments: dict[str, str] = {}  # trade id → instrument
        self._indexers: dict[tuple[str, str], BarIndexer] = {}

    # ── MarketDataProvider ───────────────────────────────────────────────

    async def fetch_bars(self, instrument: str, granularity: str, count: int) -> list[Bar]:
        candles = await self._client.fetch_candles(instrument, granularity, count=count)
        indexer = self._indexers.setdefault((instrument, granularity), BarIndexer())
        return indexer.index(candles)

    async def get_quote(self, instrument: str) -> Quote:
        price = await self._client.get_price(instrument)
        return Quote(bid=price.bid, ask=price.ask)

    async def list_positions(self, instrument: str) -> list[PositionView]:
        trades = await self._client.list_open_trades()
        self._instruments = {t.trade_id: t.instrument for t in trades}
        return [
            trade_to_position(t) for t in trades
            if t.instrument == instrument and t.units != 0
        ]

    # ── PositionMutator ──────────────────────────────────────────────────

    async def modify_stop(
        self,
        position_id: str,
        stop_loss: float,
        take_profit: Optional[float],
    ) -> None:
        instrument = self._instruments.get(position_id, "")
        try:
            await self._client.modify_trade_orders(
                position_id, instrument, stop_loss, take_profit,
            )
        except httpx.HTTPStatusError as exc:
            _raise_if_rejected(position_id, exc)
            raise

    async def close_position(self, position_id: str) -> None:
        try:
            await self._client.close_trade(position_id)
        except httpx.HTTPStatusError as exc:
            _raise_if_rejected(position_id, exc)
            raise


def _raise_if_rejected(position_id: str, exc: httpx.HTTPStatusError) -> None:
    """Re-raise a 4xx broker response as ``MutationRejectedError``.

    Server-side (5xx) failures are left for the caller to propagate.
    """
    status = exc.response.status_code
    if status >= 500:
        return
    reason = f"HTTP {status}"
    try:
        data = exc.response.json()
    except ValueError:
        data = {}
    message = data.get("errorMessage") or data.get("errorCode")
    if message:
        reason = f"{reason}: {message}"
    raise MutationRejectedError(position_id, reason) from exc
