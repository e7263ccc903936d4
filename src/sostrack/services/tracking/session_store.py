"""
Durable store for the active tracking session.

The session lives in a single-row table so that a save replaces all four
fields inside one transaction and a reader never sees a partial record.
"""

import logging
from datetime import datetime, timezone
from typing import Optional

from ...core.database import DatabaseManager
from ...models.tracking import TrackingSession


class SessionStore:
    """Passive durable mirror of the controller's session"""

    def __init__(self, database: DatabaseManager):
        self.db = database
        self.logger = logging.getLogger(__name__)

    def save(self, session: TrackingSession) -> None:
        """
        Persist all four session fields atomically.

        Raises:
            PersistenceError: if the database cannot be written
        """
        self.db.execute_update(
            """
            INSERT INTO tracking_session (slot, sos_id, sos_token, identity_token, user_id, saved_at)
            VALUES (1, ?, ?, ?, ?, ?)
            ON CONFLICT(slot) DO UPDATE SET
                sos_id = excluded.sos_id,
                sos_token = excluded.sos_token,
                identity_token = excluded.identity_token,
                user_id = excluded.user_id,
                saved_at = excluded.saved_at
            """,
            (
                session.sos_id,
                session.sos_token,
                session.identity_token,
                session.user_id,
                datetime.now(timezone.utc).isoformat(),
            )
        )
        self.logger.debug(f"Saved tracking session {session.sos_id}")

    def load(self) -> Optional[TrackingSession]:
        """Return the persisted session, or None if absent or incomplete"""
        rows = self.db.execute_query(
            "SELECT sos_id, sos_token, identity_token, user_id FROM tracking_session WHERE slot = 1"
        )
        if not rows:
            return None

        row = rows[0]
        session = TrackingSession(
            sos_id=row['sos_id'] or "",
            sos_token=row['sos_token'] or "",
            identity_token=row['identity_token'] or "",
            user_id=row['user_id'] or "",
        )
        if not session.is_complete():
            self.logger.warning(
                f"Ignoring incomplete persisted session (missing {', '.join(session.missing_fields())})"
            )
            return None
        return session

    def clear(self) -> None:
        """Remove the persisted session"""
        self.db.execute_update("DELETE FROM tracking_session")
        self.logger.debug("Cleared persisted tracking session")

    def has_session_id(self) -> bool:
        """Status approximation: a session id is persisted"""
        rows = self.db.execute_query(
            "SELECT sos_id FROM tracking_session WHERE slot = 1"
        )
        return bool(rows and rows[0]['sos_id'])
