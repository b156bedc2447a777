"""Replay engine — runs historical bars through the stop engine.

Opens one virtual position at the close of a chosen bar and replays the
following bars one tick per bar close, applying every stop change the
engine asks for.  No real orders are placed.
"""

from dataclasses import replace
from typing import Optional, Sequence

from bombbot.config import Config
from bombbot.risk.stop_engine import StopEngine
from bombbot.strategy.models import (
    FIRST_BAR_TAG,
    Bar,
    PositionView,
    Quote,
    validate_direction,
)


class ReplayEngine:
    """Simulates stop management for one position on historical bars.

    Args:
        config: Application configuration (pair, timeframe, stop rules).
    """

    def __init__(self, config: Config) -> None:
        self._config = config

    # ── Public API ───────────────────────────────────────────────────────

    def run(
        self,
        bars: Sequence[Bar],
        direction: str,
        entry_index: int,
        take_profit: Optional[float] = None,
        spread: float = 0.0,
    ) -> dict:
        """Replay *bars* after an entry at ``bars[entry_index].close``.

        Args:
            bars: Indexed bar history, oldest first.
            direction: ``"buy"`` or ``"sell"``.
            entry_index: Bar whose close is the entry; its far side is the
                opening stop.
            take_profit: Optional target price.
            spread: Full bid/ask spread around each bar close.

        Returns:
            Dict with ``trade`` (entry/exit details and P&L per unit),
            ``stop_history`` (every stop the position carried), and
            ``actions`` (number of engine actions applied).
        """
        validate_direction(direction)
        if not 0 <= entry_index < len(bars) - 1:
            raise ValueError(
                f"entry_index must leave at least one bar to replay, got {entry_index}"
            )

        engine = StopEngine.from_config(self._config)
        engine.start(self._config.start_message, self._config.bar_granularity)

        entry_bar = bars[entry_index]
        position = PositionView(
            position_id="replay-1",
            instrument=self._config.trade_pair,
            direction=direction,
            stop_loss=entry_bar.low if direction == "buy" else entry_bar.high,
            take_profit=take_profit,
            tag=FIRST_BAR_TAG,
        )
        trade = {
            "direction": direction,
            "entry_index": entry_index,
            "entry_price": entry_bar.close,
            "exit_index": None,
            "exit_price": None,
            "exit_reason": None,
            "pnl": None,
        }
        stop_history: list[dict] = [
            {"index": entry_index, "stop": position.stop_loss, "source": "entry"},
        ]
        applied = 0
        half = spread / 2.0

        for i in range(entry_index + 1, len(bars)):
            bar = bars[i]

            # 1 — Exit against the stop/target carried into this bar
            hit = self._check_exit(position, bar)
            if hit is not None:
                self._close(trade, i, hit[0], hit[1])
                break

            # 2 — Tick at the bar close
            quote = Quote(bid=bar.close - half, ask=bar.close + half)
            for action in engine.on_tick(bars[: i + 1], quote, [position]):
                engine.acknowledge(action)
                applied += 1
                if action.kind == "close":
                    exit_price = quote.bid if direction == "buy" else quote.ask
                    self._close(trade, i, exit_price, "exhaustion_close")
                else:
                    position = replace(position, stop_loss=action.stop_loss)
                    stop_history.append(
                        {"index": i, "stop": action.stop_loss, "source": action.source}
                    )
            if trade["exit_reason"] is not None:
                break

        # Mark any remaining position at the last close
        if trade["exit_reason"] is None:
            self._close(trade, len(bars) - 1, bars[-1].close, "end_of_data")

        engine.stop()
        return {
            "trade": trade,
            "stop_history": stop_history,
            "actions": applied,
        }

    # ── Helpers ──────────────────────────────────────────────────────────

    @staticmethod
    def _check_exit(position: PositionView, bar: Bar) -> Optional[tuple[float, str]]:
        """Check if *bar* triggers a stop or target exit.

        Returns ``(exit_price, reason)`` or ``None``.  When both are hit in
        the same bar, the stop is assumed first (conservative).
        """
        sl = position.stop_loss
        tp = position.take_profit

        if position.direction == "buy":
            sl_hit = sl is not None and bar.low <= sl
            tp_hit = tp is not None and bar.high >= tp
        else:
            sl_hit = sl is not None and bar.high >= sl
            tp_hit = tp is not None and bar.low <= tp

        if sl_hit:
            return sl, "stop_loss"
        if tp_hit:
            return tp, "take_profit"
        return None

    @staticmethod
    def _close(trade: dict, index: int, exit_price: float, reason: str) -> None:
        trade["exit_index"] = index
        trade["exit_price"] = exit_price
        trade["exit_reason"] = reason
        if trade["direction"] == "buy":
            trade["pnl"] = exit_price - trade["entry_price"]
        else:
            trade["pnl"] = trade["entry_price"] - exit_price
