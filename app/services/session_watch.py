"""
Table Session Watcher

Customer-side detection of "staff confirmed payment".

A table's session goes OPEN → CLOSING_REQUESTED → (record removed).
The removal is the only signal, and a missing record also means
"nothing requested yet". The watcher therefore remembers the last
status it saw and reports the session as ended only on the transition
CLOSING_REQUESTED → absent. Once ended, it stays ended.
"""

import logging
from typing import Mapping

from app.schemas import SessionStateResponse, TableSession, TableStatus

logger = logging.getLogger(__name__)


class TableSessionWatcher:
    """Feeds on table snapshots for a single table."""

    def __init__(self, table_id: int):
        self.table_id = table_id
        self.last_status = TableStatus.OPEN
        self.session_ended = False

    def observe(self, tables: Mapping[int, TableSession]) -> SessionStateResponse:
        """Update the watcher with a fresh tables snapshot."""
        session = tables.get(self.table_id)

        if session is None and self.last_status == TableStatus.CLOSING_REQUESTED:
            if not self.session_ended:
                logger.info(f"Table {self.table_id}: payment confirmed, session ended")
            self.session_ended = True

        current = session.status if session is not None else TableStatus.OPEN
        self.last_status = current

        return SessionStateResponse(
            table_id=self.table_id,
            status=current,
            session_ended=self.session_ended,
        )
