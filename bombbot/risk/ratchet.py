"""Ratchet resolver — folds stop candidates into one tightest stop.

Rules:
  - Start from the initial stop.
  - Fold candidates in a fixed order (breakout, structure, mini-holder,
    approaching target), each replacing the running value only when it
    is strictly tighter (higher for a buy, lower for a sell).
  - Apply the result only if it sits strictly on the safe side of the
    market (below bid for a buy, above ask for a sell) and is strictly
    tighter than the position's live stop.  A stop is never loosened.
"""

from dataclasses import dataclass
from typing import Iterable, Optional

from bombbot.risk.candidates import StopCandidate
from bombbot.strategy.models import Quote, validate_direction


CANDIDATE_ORDER = ("breakout", "structure", "mini_holder", "approaching_target")


@dataclass(frozen=True)
class StopDecision:
    """Result of resolving one position's candidates.

    Attributes:
        tightest: Tightest candidate price, ``None`` if no initial stop.
        source: Rule that produced *tightest*.
        apply: Whether the host should move the stop to *tightest*.
        reason: Why the move was suppressed (empty when applied).
    """

    tightest: Optional[float]
    source: str
    apply: bool
    reason: str = ""


def is_tighter(direction: str, candidate: float, reference: float) -> bool:
    """``True`` if *candidate* carries strictly less risk than *reference*."""
    if direction == "buy":
        return candidate > reference
    return candidate < reference


def _ordered(candidates: Iterable[Optional[StopCandidate]]) -> list[StopCandidate]:
    present = [c for c in candidates if c is not None]
    return sorted(
        present,
        key=lambda c: CANDIDATE_ORDER.index(c.source)
        if c.source in CANDIDATE_ORDER else len(CANDIDATE_ORDER),
    )


def resolve_stop(
    direction: str,
    initial: Optional[StopCandidate],
    candidates: Iterable[Optional[StopCandidate]],
    quote: Quote,
    current_stop: Optional[float] = None,
) -> StopDecision:
    """Pick the tightest admissible stop for one position.

    Args:
        direction: ``"buy"`` or ``"sell"``.
        initial: Initial-candle stop; ``None`` when history is too short.
        candidates: Optional candidates from the other generators, in any
            order (they are folded in ``CANDIDATE_ORDER``).
        quote: Current bid/ask.
        current_stop: The position's live stop, if any.

    Returns:
        ``StopDecision`` describing the tightest value and whether to apply it.
    """
    validate_direction(direction)
    if initial is None:
        return StopDecision(tightest=None, source="", apply=False, reason="no_initial_stop")

    tightest = initial.price
    source = initial.source
    for cand in _ordered(candidates):
        if is_tighter(direction, cand.price, tightest):
            tightest = cand.price
            source = cand.source

    market = quote.bid if direction == "buy" else quote.ask
    if not is_tighter(direction, market, tightest):
        # Stop would sit at or through the market and trigger at once.
        return StopDecision(tightest, source, apply=False, reason="through_market")

    if current_stop is not None and not is_tighter(direction, tightest, current_stop):
        return StopDecision(tightest, source, apply=False, reason="not_tighter")

    return StopDecision(tightest, source, apply=True)
