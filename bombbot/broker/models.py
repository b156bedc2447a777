"""Broker data models — typed representations of OANDA v20 API objects."""

from dataclasses import dataclass
from typing import Optional


@dataclass(frozen=True)
class Candle:
    """A single candlestick bar."""

    time: str
    open: float
    high: float
    low: float
    close: float
    volume: int
    complete: bool


@dataclass(frozen=True)
class Price:
    """Current bid/ask for an instrument."""

    instrument: str
    bid: float
    ask: float
    time: str = ""


@dataclass(frozen=True)
class Trade:
    """An open trade with SL/TP details."""

    trade_id: str
    instrument: str
    units: float  # positive=buy, negative=sell
    price: float
    unrealized_pnl: float
    stop_loss_price: Optional[float] = None
    take_profit_price: Optional[float] = None
    open_time: str = ""
    comment: str = ""
