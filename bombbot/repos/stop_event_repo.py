"""Stop event repository — SQLite audit trail of stop changes and closes."""

from datetime import datetime, timezone
from typing import Optional

from bombbot.repos.db import get_connection


class StopEventRepo:
    """Data access layer for stop-event records.

    Args:
        db_path: Path to the SQLite database file.
    """

    def __init__(self, db_path: str) -> None:
        self._db_path = db_path

    # ── Write ────────────────────────────────────────────────────────────

    def insert_event(
        self,
        position_id: str,
        instrument: str,
        kind: str,
        status: str,
        price: Optional[float] = None,
        source: str = "",
        detail: str = "",
        created_at: Optional[str] = None,
    ) -> int:
        """Record one mutation attempt and return its ``id``."""
        if created_at is None:
            created_at = datetime.now(timezone.utc).isoformat()
        conn = get_connection(self._db_path)
        try:
            cur = conn.execute(
                """
                INSERT INTO stop_events
                    (position_id, instrument, kind, price, source,
                     status, detail, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    position_id, instrument, kind, price, source,
                    status, detail, created_at,
                ),
            )
            conn.commit()
            return cur.lastrowid
        finally:
            conn.close()

    # ── Read ─────────────────────────────────────────────────────────────

    def list_recent(self, limit: int = 50) -> list[dict]:
        """Return the newest events first."""
        conn = get_connection(self._db_path)
        try:
            rows = conn.execute(
                "SELECT * FROM stop_events ORDER BY id DESC LIMIT ?",
                (limit,),
            ).fetchall()
            return [dict(r) for r in rows]
        finally:
            conn.close()

    def list_for_position(self, position_id: str) -> list[dict]:
        """Return every event for one position, oldest first."""
        conn = get_connection(self._db_path)
        try:
            rows = conn.execute(
                "SELECT * FROM stop_events WHERE position_id = ? ORDER BY id",
                (position_id,),
            ).fetchall()
            return [dict(r) for r in rows]
        finally:
            conn.close()
