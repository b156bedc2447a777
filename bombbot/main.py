"""Bombbot — application entry point.

Boots the FastAPI internal server and provides the CLI entry point for
paper, live, and replay modes.
"""

import logging

from fastapi import FastAPI

from bombbot.api.routers import router

app = FastAPI(title="Bombbot Internal API", version="0.1.0")
app.include_router(router)

logger = logging.getLogger("bombbot")


@app.get("/health")
async def health():
    """Liveness probe."""
    return {"status": "ok"}


def warn_if_live(mode: str) -> bool:
    """Log a prominent warning when running in live mode.

    Returns ``True`` if *mode* is ``"live"``.
    """
    if mode == "live":
        logger.warning(
            "LIVE TRADING MODE — Stops on real positions will be moved! Starting in 5 seconds..."
        )
        return True
    return False


# ── CLI ──────────────────────────────────────────────────────────────────


def _run_cli() -> None:
    """Parse CLI arguments and dispatch to the appropriate mode."""
    import argparse
    import asyncio
    import signal
    import time

    from bombbot.broker.oanda_client import OandaClient
    from bombbot.broker.oanda_host import OandaHost
    from bombbot.config import load_config
    from bombbot.engine import StopRunner
    from bombbot.repos.db import init_db
    from bombbot.repos.stop_event_repo import StopEventRepo
    from bombbot.api.routers import configure_routers

    parser = argparse.ArgumentParser(description="Bombbot stop-loss manager")
    parser.add_argument(
        "--mode",
        choices=["paper", "live", "replay"],
        default="paper",
        help="Run mode (default: paper)",
    )
    parser.add_argument(
        "--engine-only",
        action="store_true",
        help="Run the stop loop without the API server",
    )
    parser.add_argument("--direction", choices=["buy", "sell"], default="buy",
                        help="Replay: direction of the simulated position")
    parser.add_argument("--entry-index", type=int, default=0,
                        help="Replay: bar whose close is the simulated entry")
    parser.add_argument("--take-profit", type=float, default=None,
                        help="Replay: optional take-profit price")
    args = parser.parse_args()

    config = load_config()
    logging.basicConfig(
        level=getattr(logging, config.log_level.upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )

    client = OandaClient(config)
    host = OandaHost(client)

    if args.mode == "replay":
        _run_replay(config, host, args.direction, args.entry_index, args.take_profit)
        return

    if warn_if_live(args.mode):
        time.sleep(5)

    init_db(config.db_path)
    event_repo = StopEventRepo(config.db_path)
    runner = StopRunner(
        config=config,
        provider=host,
        mutator=host,
        event_repo=event_repo,
    )
    configure_routers(event_repo=event_repo, engine=runner.engine)

    def handle_shutdown(signum, frame):
        logger.info("Shutdown signal received — stopping gracefully.")
        runner.stop()

    signal.signal(signal.SIGINT, handle_shutdown)

    runner.initialize()
    if args.engine_only:
        asyncio.run(runner.run())
    else:
        asyncio.run(_run_with_server(runner, config.health_port))


async def _run_with_server(runner, port: int) -> None:
    """Start the API server and the stop loop concurrently."""
    import asyncio
    import uvicorn

    uvi_config = uvicorn.Config(
        app,
        host="0.0.0.0",
        port=port,
        log_level="info",
    )
    server = uvicorn.Server(uvi_config)

    async def _run_server():
        await server.serve()
        # uvicorn owns SIGINT while serving; stop the loop once it exits.
        runner.stop()

    logger.info("Status API available at http://localhost:%d", port)
    _, cycles = await asyncio.gather(
        _run_server(),
        runner.run(),
        return_exceptions=True,
    )
    if isinstance(cycles, BaseException):
        logger.error("Stop loop crashed: %s", cycles)
    else:
        logger.info("Bombbot stopped after %d cycle(s).", len(cycles))


def _run_replay(config, host, direction: str, entry_index: int, take_profit) -> None:
    """Fetch historical bars and replay one simulated position."""
    import asyncio

    from bombbot.backtest.engine import ReplayEngine

    bars = asyncio.run(
        host.fetch_bars(config.trade_pair, config.bar_granularity, config.bar_count)
    )
    result = ReplayEngine(config).run(
        bars, direction, entry_index, take_profit=take_profit,
    )
    trade = result["trade"]
    logger.info(
        "Replay complete: %s from %.5f, exit %.5f (%s) after %d stop change(s), PnL/unit %.5f",
        trade["direction"], trade["entry_price"], trade["exit_price"],
        trade["exit_reason"], len(result["stop_history"]) - 1, trade["pnl"],
    )


if __name__ == "__main__":
    _run_cli()
