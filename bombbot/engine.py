"""Bombbot — stop runner (orchestration loop).

Connects the host (market data + position mutation) to the stop engine
in a single polling loop.  Each cycle takes one snapshot, lets the engine
decide, then applies the resulting stop changes and closes one position
at a time.
"""

import asyncio
import logging
from datetime import datetime, timezone
from typing import Optional

from bombbot.api.routers import update_runner_status
from bombbot.broker.base import MarketDataProvider, MutationRejectedError, PositionMutator
from bombbot.config import Config
from bombbot.repos.stop_event_repo import StopEventRepo
from bombbot.risk.stop_engine import EngineState, StopAction, StopEngine

logger = logging.getLogger("bombbot.runner")


class StopRunner:
    """Runs one stop-engine tick per call against a live or simulated host.

    Args:
        config: Application configuration.
        provider: Source of bars, quotes, and open positions.
        mutator: Applies stop changes and closes.
        engine: The stop engine.  Built from *config* when omitted.
        event_repo: Optional audit log for every mutation attempt.
    """

    def __init__(
        self,
        config: Config,
        provider: MarketDataProvider,
        mutator: PositionMutator,
        engine: Optional[StopEngine] = None,
        event_repo: Optional[StopEventRepo] = None,
    ) -> None:
        self._config = config
        self._provider = provider
        self._mutator = mutator
        self._engine = engine or StopEngine.from_config(config)
        self._event_repo = event_repo
        self._running: bool = False
        self._cycle_count: int = 0

    @property
    def engine(self) -> StopEngine:
        return self._engine

    @property
    def instrument(self) -> str:
        return self._engine.instrument

    # ── Lifecycle ────────────────────────────────────────────────────────

    def initialize(self) -> None:
        """Start the engine on the configured timeframe."""
        if self._engine.state is EngineState.UNINITIALIZED:
            self._engine.start(self._config.start_message, self._config.bar_granularity)
        self._running = True
        update_runner_status(
            running=True,
            pair=self.instrument,
            granularity=self._engine.granularity,
            started_at=datetime.now(timezone.utc).isoformat(),
        )

    def stop(self) -> None:
        """Signal the runner to stop after the current cycle."""
        self._running = False

    # ── Polling loop ─────────────────────────────────────────────────────

    async def run(
        self,
        poll_interval: int | None = None,
        max_cycles: int = 0,
    ) -> list[dict]:
        """Run the stop loop until stopped.

        Args:
            poll_interval: Seconds between cycles. Defaults to config.
            max_cycles: Stop after this many cycles (0 = unlimited).

        Returns:
            List of per-cycle result dicts.
        """
        if poll_interval is None:
            poll_interval = self._config.poll_interval_seconds
        if not self._running:
            self.initialize()

        results: list[dict] = []
        cycle = 0

        while self._running:
            cycle += 1
            try:
                result = await self.run_once()
            except Exception as exc:
                logger.error("Cycle %d error: %s", cycle, exc)
                result = {"action": "error", "reason": str(exc)}
                update_runner_status(last_error=str(exc))
            results.append(result)

            if max_cycles > 0 and cycle >= max_cycles:
                break

            # Interruptible sleep — checks _running every second
            for _ in range(poll_interval):
                if not self._running:
                    break
                await asyncio.sleep(1)

        self._running = False
        if self._engine.state is EngineState.RUNNING:
            self._engine.stop()
        update_runner_status(running=False)
        return results

    # ── Single cycle ─────────────────────────────────────────────────────

    async def run_once(self, utc_now: Optional[datetime] = None) -> dict:
        """Execute one tick.

        Returns a dict describing the outcome:

        - ``{"action": "skipped", "reason": "engine_not_running"}``
        - ``{"action": "evaluated", "positions": n, "modified": n,
          "closed": n, "rejected": n, "failed": n}``

        Args:
            utc_now: Timestamp recorded in the audit log.  Defaults to
                     ``datetime.now(UTC)``.
        """
        if utc_now is None:
            utc_now = datetime.now(timezone.utc)

        if self._engine.state is not EngineState.RUNNING:
            return {"action": "skipped", "reason": "engine_not_running"}

        bars = await self._provider.fetch_bars(
            self.instrument, self._engine.granularity, self._config.bar_count,
        )
        quote = await self._provider.get_quote(self.instrument)
        positions = await self._provider.list_positions(self.instrument)

        actions = self._engine.on_tick(bars, quote, positions)

        result = {
            "action": "evaluated",
            "positions": len(positions),
            "modified": 0,
            "closed": 0,
            "rejected": 0,
            "failed": 0,
        }
        for action in actions:
            status = await self._apply(action, utc_now)
            if status == "applied":
                result["modified" if action.kind == "modify" else "closed"] += 1
            else:
                result[status] += 1

        self._cycle_count += 1
        update_runner_status(
            cycle_count=self._cycle_count,
            last_cycle_at=utc_now.isoformat(),
            open_positions=len(positions),
            last_result=result,
        )
        return result

    async def _apply(self, action: StopAction, utc_now: datetime) -> str:
        """Send one action to the host; failures stay local to the position."""
        try:
            if action.kind == "close":
                await self._mutator.close_position(action.position_id)
            else:
                await self._mutator.modify_stop(
                    action.position_id, action.stop_loss, action.take_profit,
                )
        except MutationRejectedError as exc:
            logger.warning(
                "Host rejected %s on %s: %s",
                action.kind, action.position_id, exc.reason,
            )
            self._record(action, "rejected", exc.reason, utc_now)
            return "rejected"
        except Exception as exc:
            logger.error(
                "Failed to %s position %s: %s",
                action.kind, action.position_id, exc,
            )
            self._record(action, "failed", str(exc), utc_now)
            return "failed"

        self._engine.acknowledge(action)
        if action.kind == "close":
            logger.info(
                "Closed position %s (%s)", action.position_id, action.reason,
            )
        else:
            logger.info(
                "Moved stop on %s to %s (%s)",
                action.position_id, action.stop_loss, action.source,
            )
        self._record(action, "applied", action.reason, utc_now)
        return "applied"

    def _record(self, action: StopAction, status: str, detail: str, utc_now: datetime) -> None:
        if self._event_repo is None:
            return
        self._event_repo.insert_event(
            position_id=action.position_id,
            instrument=action.instrument,
            kind=action.kind,
            status=status,
            price=action.stop_loss,
            source=action.source,
            detail=detail,
            created_at=utc_now.isoformat(),
        )
