"""Stop engine — one synchronous ratchet evaluation per tick.

Wires the swing detector, the candidate generators, and the ratchet
resolver together for every open position on the traded instrument.
The engine holds no I/O: the host hands it a snapshot and receives a
list of ``StopAction`` objects to apply.

Lifecycle::

    UNINITIALIZED --start()--> RUNNING --stop()--> STOPPED
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Optional, Sequence

from bombbot.risk.candidates import (
    EXHAUSTION_WICK_RATIO,
    BreakoutPolicy,
    approaching_target_stop,
    breakout_stop,
    initial_stop,
    mini_holder_stop,
    structure_stop,
)
from bombbot.risk.ratchet import resolve_stop
from bombbot.risk.trailing_state import Phase, TrailingStateBook
from bombbot.strategy.models import (
    DIRECTIONS,
    Bar,
    PositionView,
    Quote,
    validate_direction,
)
from bombbot.strategy.swings import SWING_LOOKBACK, SwingPoints, detect_swings

logger = logging.getLogger("bombbot.engine")


class EngineState(str, Enum):
    UNINITIALIZED = "uninitialized"
    RUNNING = "running"
    STOPPED = "stopped"


class EngineStateError(RuntimeError):
    """Raised when a lifecycle call is made in the wrong engine state."""


@dataclass(frozen=True)
class StopAction:
    """A mutation the host should apply to one position.

    ``kind`` is ``"modify"`` (move the stop, keep the target) or
    ``"close"`` (close the position outright).
    """

    position_id: str
    instrument: str
    kind: str
    stop_loss: Optional[float] = None
    take_profit: Optional[float] = None
    source: str = ""
    reason: str = ""


class StopEngine:
    """Per-tick stop ratchet for every position on one instrument.

    Args:
        instrument: Instrument whose positions are managed, e.g. ``"EUR_USD"``.
        breakout_policy: Price used by the first-bar breakout rule.
        exhaustion_ratio: Wick/range threshold for the exhaustion close, or
            ``None`` to disable the close rule.
        swing_lookback: Bars on each side required for a swing point.
    """

    def __init__(
        self,
        instrument: str,
        breakout_policy: BreakoutPolicy = BreakoutPolicy.CANDLE_EXTREME,
        exhaustion_ratio: Optional[float] = EXHAUSTION_WICK_RATIO,
        swing_lookback: int = SWING_LOOKBACK,
    ) -> None:
        self._instrument = instrument
        self._breakout_policy = breakout_policy
        self._exhaustion_ratio = exhaustion_ratio
        self._swing_lookback = swing_lookback
        self._book = TrailingStateBook()
        self._state = EngineState.UNINITIALIZED
        self._granularity: Optional[str] = None

    @classmethod
    def from_config(cls, config) -> "StopEngine":
        """Build an engine from a ``Config``."""
        return cls(
            instrument=config.trade_pair,
            breakout_policy=BreakoutPolicy(config.breakout_policy),
            exhaustion_ratio=(
                config.exhaustion_wick_ratio
                if config.exhaustion_close_enabled else None
            ),
        )

    # ── Lifecycle ────────────────────────────────────────────────────────

    @property
    def state(self) -> EngineState:
        return self._state

    @property
    def instrument(self) -> str:
        return self._instrument

    @property
    def granularity(self) -> Optional[str]:
        """Bar timeframe fixed by :meth:`start`."""
        return self._granularity

    @property
    def book(self) -> TrailingStateBook:
        return self._book

    def start(self, message: str, granularity: str) -> None:
        """Fix the bar timeframe and begin accepting ticks."""
        if self._state is not EngineState.UNINITIALIZED:
            raise EngineStateError(f"cannot start engine in state '{self._state.value}'")
        self._granularity = granularity
        self._state = EngineState.RUNNING
        logger.info("%s", message)
        logger.info(
            "Stop engine started on %s %s (breakout=%s, exhaustion=%s)",
            self._instrument, granularity, self._breakout_policy.value,
            self._exhaustion_ratio,
        )

    def stop(self) -> None:
        """Stop accepting ticks and drop all trailing state."""
        if self._state is not EngineState.RUNNING:
            raise EngineStateError(f"cannot stop engine in state '{self._state.value}'")
        self._state = EngineState.STOPPED
        self._book.clear()
        logger.info("Stop engine stopped on %s", self._instrument)

    # ── Tick ─────────────────────────────────────────────────────────────

    def on_tick(
        self,
        bars: Sequence[Bar],
        quote: Quote,
        positions: Sequence[PositionView],
    ) -> list[StopAction]:
        """Evaluate every open position and return the mutations to apply.

        Args:
            bars: Full bar history, oldest first; the last bar is current.
            quote: Current bid/ask.
            positions: Open positions reported by the host.

        Returns:
            At most one ``StopAction`` per position.
        """
        if self._state is not EngineState.RUNNING:
            raise EngineStateError(f"cannot tick engine in state '{self._state.value}'")

        actions: list[StopAction] = []
        open_ids: list[str] = []
        swings: Optional[SwingPoints] = None

        for position in positions:
            if position.instrument != self._instrument:
                continue
            open_ids.append(position.position_id)

            if position.direction not in DIRECTIONS:
                logger.warning(
                    "Position %s: unknown direction %r — skipped this tick",
                    position.position_id, position.direction,
                )
                continue
            if len(bars) < 2:
                # No previous bar yet — nothing to anchor a stop on.
                continue
            if swings is None:
                swings = detect_swings(bars, self._swing_lookback)

            action = self._evaluate(position, bars, quote, swings)
            if action is not None:
                actions.append(action)

        for pid in self._book.retain(open_ids):
            logger.debug("Discarded trailing state for closed position %s", pid)
        return actions

    def _evaluate(
        self,
        position: PositionView,
        bars: Sequence[Bar],
        quote: Quote,
        swings: SwingPoints,
    ) -> Optional[StopAction]:
        direction = position.direction
        validate_direction(direction)
        current, previous = bars[-1], bars[-2]

        state = self._book.get_or_create(position, current.index)
        state.observe(current)

        structure = structure_stop(direction, bars, swings, self._exhaustion_ratio)
        if structure.exhausted:
            logger.info(
                "Position %s: exhaustion wick at swing %d break — closing",
                position.position_id, structure.swing_index,
            )
            return StopAction(
                position_id=position.position_id,
                instrument=position.instrument,
                kind="close",
                source="structure",
                reason="exhaustion_wick",
            )

        decision = resolve_stop(
            direction,
            initial_stop(direction, previous),
            [
                breakout_stop(direction, current, previous, state, self._breakout_policy),
                structure.candidate,
                mini_holder_stop(direction, current, state),
                approaching_target_stop(direction, current, quote, position.take_profit),
            ],
            quote,
            current_stop=position.stop_loss,
        )
        if not decision.apply:
            logger.debug(
                "Position %s: keep stop %s (tightest %s from %s, %s)",
                position.position_id, position.stop_loss,
                decision.tightest, decision.source, decision.reason,
            )
            return None

        return StopAction(
            position_id=position.position_id,
            instrument=position.instrument,
            kind="modify",
            stop_loss=decision.tightest,
            take_profit=position.take_profit,
            source=decision.source,
        )

    def acknowledge(self, action: StopAction) -> None:
        """Record that the host applied *action*, advancing the phase.

        A closed position's state is dropped; an applied breakout ends the
        entry phase; an applied mini-holder stop waits for a counter-trend
        bar before the mini-holder may fire again.
        """
        if action.kind == "close":
            self._book.discard(action.position_id)
            return

        state = self._book.get(action.position_id)
        if state is None:
            return
        if action.source == "breakout":
            state.phase = Phase.TRENDING
        elif action.source == "mini_holder":
            state.phase = Phase.AWAITING_REVERSAL
