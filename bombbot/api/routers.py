"""Internal API routers — /status, /positions, /events endpoints.

No business logic, no DB writes. Reads the shared runner status, the
engine's trailing-state book, and the audit repo.
"""

import logging
from typing import Optional

from fastapi import APIRouter, Query

logger = logging.getLogger("bombbot")
router = APIRouter()

# ── Shared state (set during app startup) ────────────────────────────────

_DEFAULT_STATUS: dict = {
    "running": False,
    "pair": None,
    "granularity": None,
    "started_at": None,
    "cycle_count": 0,
    "last_cycle_at": None,
    "open_positions": 0,
    "last_result": None,
    "last_error": None,
}

_runner_status: dict = {**_DEFAULT_STATUS}
_event_repo = None  # Set via configure_routers()
_engine = None      # Set via configure_routers()


def configure_routers(event_repo=None, engine=None) -> None:
    """Inject dependencies from the application startup.

    Args:
        event_repo: A ``StopEventRepo`` instance (or duck-type for tests).
        engine: The ``StopEngine`` whose trailing state is exposed.
    """
    global _event_repo, _engine  # noqa: PLW0603
    _event_repo = event_repo
    _engine = engine


def update_runner_status(**fields) -> None:
    """Update individual fields of the runner status dict."""
    _runner_status.update(fields)


def reset_runner_status() -> None:
    _runner_status.clear()
    _runner_status.update(_DEFAULT_STATUS)


# ── Endpoints ────────────────────────────────────────────────────────────


@router.get("/status")
async def get_status():
    """Runner state, cycle counters, and the engine lifecycle state."""
    status = dict(_runner_status)
    status["engine_state"] = _engine.state.value if _engine is not None else None
    return status


@router.get("/positions")
async def get_positions():
    """Trailing state of every position the engine currently tracks."""
    if _engine is None:
        return {"positions": {}}
    return {"positions": _engine.book.snapshot()}


@router.get("/events")
async def get_events(
    limit: int = Query(default=50, ge=1, le=500),
    position_id: Optional[str] = None,
):
    """Recent stop events from the audit log, newest first."""
    if _event_repo is None:
        return {"events": []}
    if position_id is not None:
        return {"events": _event_repo.list_for_position(position_id)}
    return {"events": _event_repo.list_recent(limit)}
