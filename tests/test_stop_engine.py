"""Tests for the stop engine — lifecycle, per-tick decisions, and invariants."""

from dataclasses import replace

import pytest

from bombbot.risk.candidates import BreakoutPolicy
from bombbot.risk.stop_engine import EngineState, EngineStateError, StopAction, StopEngine
from bombbot.risk.trailing_state import Phase
from bombbot.strategy.models import FIRST_BAR_TAG, Bar, PositionView, Quote


# ── Helpers ──────────────────────────────────────────────────────────────


def _bars(rows) -> list[Bar]:
    return [
        Bar(index=i, open=o, high=h, low=l, close=c)
        for i, (o, h, l, c) in enumerate(rows)
    ]


def _engine(**kwargs) -> StopEngine:
    engine = StopEngine("EUR_USD", **kwargs)
    engine.start("Hello world!", "M5")
    return engine


def _long(pid="1", stop=None, tp=None, tag="") -> PositionView:
    return PositionView(
        position_id=pid, instrument="EUR_USD", direction="buy",
        stop_loss=stop, take_profit=tp, tag=tag,
    )


def _short(pid="2", stop=None, tp=None, tag="") -> PositionView:
    return PositionView(
        position_id=pid, instrument="EUR_USD", direction="sell",
        stop_loss=stop, take_profit=tp, tag=tag,
    )


_THREE_BARS = [(10.0, 12.0, 9.0, 11.0), (11.0, 14.0, 10.0, 13.0), (13.0, 13.5, 12.0, 13.2)]

# A swing high of 13.0 at index 2 followed by a bar that breaks it.
_SWING_BASE = [
    (10.0, 11.0, 9.5, 10.5),
    (10.5, 11.5, 10.0, 11.0),
    (11.0, 13.0, 10.8, 12.0),
    (12.0, 12.5, 11.0, 11.5),
    (11.5, 12.0, 10.5, 11.0),
]


# ── Lifecycle ────────────────────────────────────────────────────────────


class TestLifecycle:
    def test_tick_before_start_raises(self):
        engine = StopEngine("EUR_USD")
        assert engine.state is EngineState.UNINITIALIZED
        with pytest.raises(EngineStateError):
            engine.on_tick(_bars(_THREE_BARS), Quote(13.2, 13.22), [])

    def test_start_fixes_granularity(self):
        engine = _engine()
        assert engine.state is EngineState.RUNNING
        assert engine.granularity == "M5"

    def test_start_twice_raises(self):
        engine = _engine()
        with pytest.raises(EngineStateError):
            engine.start("again", "H1")

    def test_stop_clears_state_and_blocks_ticks(self):
        engine = _engine()
        engine.on_tick(_bars(_THREE_BARS), Quote(13.2, 13.22), [_long(stop=9.0)])
        assert len(engine.book) == 1
        engine.stop()
        assert engine.state is EngineState.STOPPED
        assert len(engine.book) == 0
        with pytest.raises(EngineStateError):
            engine.on_tick(_bars(_THREE_BARS), Quote(13.2, 13.22), [])

    def test_from_config_disables_exhaustion(self):
        class _Cfg:
            trade_pair = "GBP_USD"
            breakout_policy = "previous_midpoint"
            exhaustion_wick_ratio = 0.4
            exhaustion_close_enabled = False

        engine = StopEngine.from_config(_Cfg())
        assert engine.instrument == "GBP_USD"
        assert engine._breakout_policy is BreakoutPolicy.PREVIOUS_MIDPOINT
        assert engine._exhaustion_ratio is None


# ── Per-tick decisions ───────────────────────────────────────────────────


class TestOnTick:
    def test_second_bar_anchors_on_first_low(self):
        """Initial stop is the first bar's low, beaten by the running low."""
        engine = _engine()
        actions = engine.on_tick(_bars(_THREE_BARS[:2]), Quote(13.0, 13.02), [_long(stop=8.0)])
        assert actions == [
            StopAction("1", "EUR_USD", "modify", stop_loss=10.0, source="mini_holder"),
        ]

    def test_third_bar_ratchets_from_previous_bar(self):
        engine = _engine()
        actions = engine.on_tick(_bars(_THREE_BARS), Quote(13.2, 13.22), [_long(stop=9.0)])
        assert len(actions) == 1
        assert actions[0].stop_loss == 12.0
        assert actions[0].source == "mini_holder"

    def test_first_bar_breakout(self):
        rows = [(10.0, 12.0, 9.0, 11.0), (11.0, 14.0, 10.0, 13.0), (13.5, 15.0, 13.0, 14.8)]
        engine = _engine()
        actions = engine.on_tick(
            _bars(rows), Quote(14.8, 14.82), [_long(stop=9.0, tag=FIRST_BAR_TAG)],
        )
        assert actions[0].stop_loss == 13.0
        assert actions[0].source == "breakout"

    def test_first_bar_breakout_midpoint_policy(self):
        rows = [(10.0, 12.0, 9.0, 11.0), (11.0, 14.0, 10.0, 13.0), (13.5, 15.0, 11.0, 11.5)]
        engine = _engine(breakout_policy=BreakoutPolicy.PREVIOUS_MIDPOINT)
        actions = engine.on_tick(
            _bars(rows), Quote(14.0, 14.02), [_long(stop=9.0, tag=FIRST_BAR_TAG)],
        )
        assert actions[0].stop_loss == pytest.approx(12.0)
        assert actions[0].source == "breakout"

    def test_approaching_target(self):
        rows = [(19.0, 19.4, 18.8, 19.3), (19.5, 19.7, 19.2, 19.3)]
        engine = _engine()
        actions = engine.on_tick(
            _bars(rows), Quote(19.6, 19.62), [_long(stop=18.5, tp=20.0)],
        )
        assert actions[0].stop_loss == 19.2
        assert actions[0].source == "approaching_target"
        assert actions[0].take_profit == 20.0

    def test_exhaustion_wick_closes(self):
        rows = _SWING_BASE + [(12.2, 14.0, 12.0, 13.1)]
        engine = _engine()
        actions = engine.on_tick(_bars(rows), Quote(13.1, 13.12), [_long(stop=10.0)])
        assert actions == [
            StopAction(
                "1", "EUR_USD", "close", source="structure", reason="exhaustion_wick",
            )
        ]

    def test_structure_break_without_exhaustion(self):
        rows = _SWING_BASE + [(12.2, 14.0, 12.0, 13.9)]
        engine = _engine()
        actions = engine.on_tick(_bars(rows), Quote(13.9, 13.92), [_long(stop=10.0)])
        assert actions[0].kind == "modify"
        assert actions[0].stop_loss == 12.0

    def test_short_position(self):
        rows = [(13.0, 13.5, 12.0, 12.2), (12.2, 12.4, 11.0, 11.2)]
        engine = _engine()
        actions = engine.on_tick(_bars(rows), Quote(11.18, 11.2), [_short(stop=14.0)])
        # Bearish bar: running high 12.4 beats the 13.5 initial stop.
        assert actions[0].stop_loss == 12.4
        assert actions[0].source == "mini_holder"

    def test_single_bar_is_skipped(self):
        engine = _engine()
        actions = engine.on_tick(_bars(_THREE_BARS[:1]), Quote(11.0, 11.02), [_long()])
        assert actions == []
        assert len(engine.book) == 0

    def test_other_instruments_ignored(self):
        engine = _engine()
        other = replace(_long(), instrument="USD_JPY")
        assert engine.on_tick(_bars(_THREE_BARS), Quote(13.2, 13.22), [other]) == []
        assert len(engine.book) == 0

    def test_closed_positions_are_forgotten(self):
        engine = _engine()
        bars = _bars(_THREE_BARS)
        engine.on_tick(bars, Quote(13.2, 13.22), [_long("a", 9.0), _long("b", 9.0)])
        engine.on_tick(bars, Quote(13.2, 13.22), [_long("b", 9.0)])
        assert "a" not in engine.book
        assert "b" in engine.book

    def test_invalid_direction_is_skipped(self):
        engine = _engine()
        bad = replace(_long("bad", 9.0), direction="hold")
        good = _long("good", 9.0)

        actions = engine.on_tick(_bars(_THREE_BARS), Quote(13.2, 13.22), [bad, good])

        assert [a.position_id for a in actions] == ["good"]
        assert "bad" not in engine.book
        assert "good" in engine.book


# ── Invariants ───────────────────────────────────────────────────────────


_TREND_ROWS = [
    (10.0, 10.5, 9.6, 10.4),
    (10.4, 10.9, 10.2, 10.8),
    (10.8, 11.2, 10.5, 10.6),
    (10.6, 11.6, 10.6, 11.5),
    (11.5, 11.8, 11.0, 11.1),
    (11.1, 12.3, 11.0, 12.2),
    (12.2, 12.4, 11.7, 11.8),
    (11.8, 12.0, 11.3, 11.9),
    (11.9, 13.0, 11.8, 12.9),
    (12.9, 13.4, 12.6, 13.3),
    (13.3, 13.5, 12.4, 12.5),
    (12.5, 14.0, 12.5, 13.9),
]


class TestInvariants:
    def _replay(self, direction: str):
        """Feed bars one by one, applying every modify to the position."""
        rows = _TREND_ROWS
        if direction == "sell":
            rows = [(-o, -l, -h, -c) for o, h, l, c in rows]
        bars = _bars(rows)
        engine = _engine(exhaustion_ratio=None)
        position = replace(_long(tag=FIRST_BAR_TAG), direction=direction)
        applied: list[tuple[float, Quote]] = []
        for i in range(1, len(bars)):
            close = bars[i].close
            quote = Quote(bid=close - 0.01, ask=close + 0.01)
            for action in engine.on_tick(bars[: i + 1], quote, [position]):
                engine.acknowledge(action)
                position = replace(position, stop_loss=action.stop_loss)
                applied.append((action.stop_loss, quote))
        return engine, position, applied

    def test_long_stop_is_monotonic_and_below_bid(self):
        _, _, applied = self._replay("buy")
        stops = [s for s, _ in applied]
        assert len(stops) >= 2
        assert stops == sorted(stops)
        assert len(set(stops)) == len(stops)
        assert all(stop < quote.bid for stop, quote in applied)

    def test_short_stop_is_monotonic_and_above_ask(self):
        _, _, applied = self._replay("sell")
        stops = [s for s, _ in applied]
        assert len(stops) >= 2
        assert stops == sorted(stops, reverse=True)
        assert all(stop > quote.ask for stop, quote in applied)

    def test_mirrored_runs_produce_mirrored_stops(self):
        _, _, long_applied = self._replay("buy")
        _, _, short_applied = self._replay("sell")
        assert [s for s, _ in long_applied] == [-s for s, _ in short_applied]

    def test_same_tick_twice_is_idempotent(self):
        engine = _engine()
        bars = _bars(_THREE_BARS)
        quote = Quote(13.2, 13.22)
        position = _long(stop=9.0)
        first = engine.on_tick(bars, quote, [position])
        assert len(first) == 1
        position = replace(position, stop_loss=first[0].stop_loss)
        assert engine.on_tick(bars, quote, [position]) == []

    def test_trailing_state_is_per_position(self):
        engine = _engine()
        rows = [(10.0, 11.0, 8.0, 9.0), (9.0, 12.0, 8.5, 11.5), (11.5, 13.0, 11.0, 12.8)]
        bars = _bars(rows)
        engine.on_tick(bars[:2], Quote(11.5, 11.52), [_long("old", 7.0)])
        actions = engine.on_tick(
            bars, Quote(12.8, 12.82), [_long("old", 7.0), _long("new", 7.0)],
        )
        assert engine.book.get("old").running_low == 8.5
        assert engine.book.get("new").running_low == 11.0
        by_id = {a.position_id: a for a in actions}
        assert by_id["new"].stop_loss == 11.0
        # Old position's mini-holder is 8.5, so the 8.5 initial stop ties it.
        assert by_id["old"].stop_loss == 8.5


# ── Acknowledgement ──────────────────────────────────────────────────────


class TestAcknowledge:
    def test_breakout_ends_entry_phase(self):
        engine = _engine()
        rows = [(10.0, 12.0, 9.0, 11.0), (11.0, 14.0, 10.0, 13.0), (13.5, 15.0, 13.0, 14.8)]
        actions = engine.on_tick(
            _bars(rows), Quote(14.8, 14.82), [_long(stop=9.0, tag=FIRST_BAR_TAG)],
        )
        engine.acknowledge(actions[0])
        assert engine.book.get("1").phase is Phase.TRENDING

    def test_mini_holder_waits_for_reversal(self):
        engine = _engine()
        actions = engine.on_tick(_bars(_THREE_BARS), Quote(13.2, 13.22), [_long(stop=9.0)])
        engine.acknowledge(actions[0])
        assert engine.book.get("1").phase is Phase.AWAITING_REVERSAL

    def test_close_discards_state(self):
        engine = _engine()
        rows = _SWING_BASE + [(12.2, 14.0, 12.0, 13.1)]
        actions = engine.on_tick(_bars(rows), Quote(13.1, 13.12), [_long(stop=10.0)])
        engine.acknowledge(actions[0])
        assert "1" not in engine.book

    def test_unknown_position_is_ignored(self):
        engine = _engine()
        engine.acknowledge(StopAction("ghost", "EUR_USD", "modify", 1.0, source="breakout"))
        assert len(engine.book) == 0
