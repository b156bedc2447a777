"""OANDA v20 REST API async client.

Handles all communication with OANDA the stop engine needs: candle
fetching, pricing, open-trade queries, stop/target changes, and closes.
"""

import asyncio
import logging
from typing import Optional

import httpx

from bombbot.broker.models import Candle, Price, Trade
from bombbot.config import Config

logger = logging.getLogger("bombbot.broker")

# Retry settings
_MAX_RETRIES = 3
_RETRY_BASE_DELAY = 2.0  # seconds; doubles each attempt
_RETRYABLE_STATUS_CODES = {502, 503, 504, 429}


def price_precision(instrument: str) -> int:
    """Decimal places OANDA accepts for prices on *instrument*."""
    if "JPY" in instrument:
        return 3
    if "XAU" in instrument or "XAG" in instrument:
        return 2
    return 5


class OandaClient:
    """Async client wrapping OANDA v20 REST API."""

    def __init__(self, config: Config) -> None:
        self._config = config
        self._base_url = config.oanda_base_url
        self._account_id = config.oanda_account_id
        self._headers = {
            "Authorization": f"Bearer {config.oanda_api_token}",
            "Content-Type": "application/json",
        }

    # ── Retry helper ─────────────────────────────────────────────────────

    async def _request_with_retry(
        self,
        method: str,
        url: str,
        **kwargs,
    ) -> httpx.Response:
        """Execute an HTTP request with exponential-backoff retry.

        Retries on transient server errors (502, 503, 504) and rate-limits
        (429).  Non-retryable errors are raised immediately.
        """
        last_exc: Optional[Exception] = None

        for attempt in range(_MAX_RETRIES):
            try:
                async with httpx.AsyncClient() as client:
                    resp = await getattr(client, method)(
                        url,
                        headers=self._headers,
                        timeout=30.0,
                        **kwargs,
                    )

                if resp.status_code in _RETRYABLE_STATUS_CODES:
                    delay = _RETRY_BASE_DELAY * (2 ** attempt)
                    logger.warning(
                        "OANDA %s %s returned %d — retry %d/%d in %.1fs",
                        method.upper(), url, resp.status_code,
                        attempt + 1, _MAX_RETRIES, delay,
                    )
                    await asyncio.sleep(delay)
                    last_exc = httpx.HTTPStatusError(
                        f"Server error '{resp.status_code}'",
                        request=resp.request,
                        response=resp,
                    )
                    continue

                resp.raise_for_status()
                return resp

            except httpx.TransportError as exc:
                delay = _RETRY_BASE_DELAY * (2 ** attempt)
                logger.warning(
                    "OANDA %s %s transport error (%s) — retry %d/%d in %.1fs",
                    method.upper(), url, exc,
                    attempt + 1, _MAX_RETRIES, delay,
                )
                last_exc = exc
                await asyncio.sleep(delay)

        # All retries exhausted — raise the last error
        raise last_exc  # type: ignore[misc]

    # ── Candle data ──────────────────────────────────────────────────────

    async def fetch_candles(
        self,
        instrument: str,
        granularity: str,
        count: int = 200,
    ) -> list[Candle]:
        """Fetch candlestick data from OANDA.

        Args:
            instrument: e.g. ``"EUR_USD"``
            granularity: e.g. ``"M5"``
            count: number of candles to request (max 5000)

        Returns:
            List of ``Candle`` objects ordered oldest-first.  The last one
            may be incomplete.
        """
        url = f"{self._base_url}/v3/instruments/{instrument}/candles"
        params = {
            "granularity": granularity,
            "count": count,
            "price": "M",  # mid prices
        }

        resp = await self._request_with_retry("get", url, params=params)

        candles: list[Candle] = []
        for c in resp.json().get("candles", []):
            mid = c["mid"]
            candles.append(
                Candle(
                    time=c["time"],
                    open=float(mid["o"]),
                    high=float(mid["h"]),
                    low=float(mid["l"]),
                    close=float(mid["c"]),
                    volume=int(c["volume"]),
                    complete=bool(c["complete"]),
                )
            )
        return candles

    # ── Pricing ──────────────────────────────────────────────────────────

    async def get_price(self, instrument: str) -> Price:
        """Return the best bid/ask for *instrument*."""
        url = f"{self._base_url}/v3/accounts/{self._account_id}/pricing"

        resp = await self._request_with_retry(
            "get", url, params={"instruments": instrument},
        )

        prices = resp.json().get("prices", [])
        if not prices:
            raise ValueError(f"No price returned for {instrument}")
        p = prices[0]
        return Price(
            instrument=p["instrument"],
            bid=float(p["bids"][0]["price"]),
            ask=float(p["asks"][0]["price"]),
            time=p.get("time", ""),
        )

    # ── Trades ───────────────────────────────────────────────────────────

    async def list_open_trades(self) -> list[Trade]:
        """Return all open trades with SL/TP details."""
        url = f"{self._base_url}/v3/accounts/{self._account_id}/openTrades"

        resp = await self._request_with_retry("get", url)

        trades: list[Trade] = []
        for t in resp.json().get("trades", []):
            sl_price = None
            tp_price = None
            if "stopLossOrder" in t:
                sl_price = float(t["stopLossOrder"].get("price", 0))
            if "takeProfitOrder" in t:
                tp_price = float(t["takeProfitOrder"].get("price", 0))
            trades.append(
                Trade(
                    trade_id=t["id"],
                    instrument=t["instrument"],
                    units=float(t["currentUnits"]),
                    price=float(t["price"]),
                    unrealized_pnl=float(t.get("unrealizedPL", "0")),
                    stop_loss_price=sl_price,
                    take_profit_price=tp_price,
                    open_time=t.get("openTime", ""),
                    comment=t.get("clientExtensions", {}).get("comment", ""),
                )
            )
        return trades

    async def modify_trade_orders(
        self,
        trade_id: str,
        instrument: str,
        stop_loss: float,
        take_profit: Optional[float] = None,
    ) -> dict:
        """Replace the stop-loss on an open trade, restating the take-profit.

        Args:
            trade_id: OANDA trade ID.
            instrument: Trade instrument (selects price precision).
            stop_loss: New stop-loss price.
            take_profit: Take-profit to keep, or ``None`` to leave the
                trade's take-profit order untouched.

        Returns:
            Raw OANDA response dict.
        """
        url = (
            f"{self._base_url}/v3/accounts/{self._account_id}"
            f"/trades/{trade_id}/orders"
        )
        prec = price_precision(instrument)
        body: dict = {"stopLoss": {"price": f"{stop_loss:.{prec}f}"}}
        if take_profit is not None:
            body["takeProfit"] = {"price": f"{take_profit:.{prec}f}"}

        resp = await self._request_with_retry("put", url, json=body)

        return resp.json()

    async def close_trade(self, trade_id: str) -> dict:
        """Close all units of one trade.

        Returns the raw OANDA response dict.
        """
        url = (
            f"{self._base_url}/v3/accounts/{self._account_id}"
            f"/trades/{trade_id}/close"
        )

        resp = await self._request_with_retry("put", url, json={"units": "ALL"})

        return resp.json()
