"""Per-position trailing state — running extremes and lifecycle phase.

Each open position owns one ``TrailingState``.  States live in a
``TrailingStateBook`` keyed by position id, created the first time the
engine sees a position and discarded once the host stops reporting it.
"""

import math
from dataclasses import dataclass
from enum import Enum
from typing import Iterable

from bombbot.strategy.models import FIRST_BAR_TAG, Bar, PositionView


class Phase(str, Enum):
    """Lifecycle phase of a managed position."""

    JUST_ENTERED = "just_entered"
    TRENDING = "trending"
    AWAITING_REVERSAL = "awaiting_reversal"


@dataclass
class TrailingState:
    """Mutable trailing bookkeeping for a single position.

    Args:
        direction: ``"buy"`` or ``"sell"``.
        first_seen_index: Bar index on which the position was first seen.
        phase: Initial lifecycle phase.
    """

    direction: str
    first_seen_index: int
    phase: Phase = Phase.TRENDING
    running_low: float = math.inf
    running_high: float = -math.inf

    @property
    def awaiting_reversal(self) -> bool:
        return self.phase is Phase.AWAITING_REVERSAL

    def observe(self, bar: Bar) -> None:
        """Fold *bar* into the running extreme and advance the phase.

        The running low only ever falls for a buy; the running high only
        ever rises for a sell.
        """
        if self.direction == "buy":
            self.running_low = min(self.running_low, bar.low)
            counter_trend = bar.is_bearish
        else:
            self.running_high = max(self.running_high, bar.high)
            counter_trend = bar.is_bullish

        if self.phase is Phase.JUST_ENTERED and bar.index > self.first_seen_index + 1:
            self.phase = Phase.TRENDING
        elif self.phase is Phase.AWAITING_REVERSAL and counter_trend:
            self.phase = Phase.TRENDING

    def to_dict(self) -> dict:
        return {
            "direction": self.direction,
            "phase": self.phase.value,
            "first_seen_index": self.first_seen_index,
            "running_low": None if math.isinf(self.running_low) else self.running_low,
            "running_high": None if math.isinf(self.running_high) else self.running_high,
        }


class TrailingStateBook:
    """Registry of ``TrailingState`` objects keyed by position id."""

    def __init__(self) -> None:
        self._states: dict[str, TrailingState] = {}

    def __len__(self) -> int:
        return len(self._states)

    def __contains__(self, position_id: str) -> bool:
        return position_id in self._states

    def get(self, position_id: str) -> TrailingState | None:
        return self._states.get(position_id)

    def get_or_create(self, position: PositionView, bar_index: int) -> TrailingState:
        """Return the state for *position*, creating it on first sight.

        A position whose host tag carries the first-bar marker starts in
        ``JUST_ENTERED``; any other position starts ``TRENDING``.
        """
        state = self._states.get(position.position_id)
        if state is None:
            phase = (
                Phase.JUST_ENTERED if position.tag == FIRST_BAR_TAG
                else Phase.TRENDING
            )
            state = TrailingState(
                direction=position.direction,
                first_seen_index=bar_index,
                phase=phase,
            )
            self._states[position.position_id] = state
        return state

    def discard(self, position_id: str) -> None:
        self._states.pop(position_id, None)

    def retain(self, open_ids: Iterable[str]) -> list[str]:
        """Drop every state whose position is not in *open_ids*.

        Returns:
            The position ids that were discarded.
        """
        keep = set(open_ids)
        gone = [pid for pid in self._states if pid not in keep]
        for pid in gone:
            del self._states[pid]
        return gone

    def clear(self) -> None:
        self._states.clear()

    def snapshot(self) -> dict[str, dict]:
        """Plain-dict view of every tracked position, for the status API."""
        return {pid: state.to_dict() for pid, state in self._states.items()}
