"""SQLite alert store for Pegwatch."""

import logging
import sqlite3
from datetime import datetime
from pathlib import Path
from typing import Optional

from pydantic import TypeAdapter

from pegwatch.db.base import AlertStore
from pegwatch.errors import PersistenceError
from pegwatch.models import Alert, AlertVariant, ConversationState


logger = logging.getLogger(__name__)

_VARIANT_ADAPTER = TypeAdapter(AlertVariant)

_ALERT_COLUMNS = "id, owner, symbol, kind, variant, created_at, triggered_at, active"


class SQLiteAlertStore(AlertStore):
    """SQLite-based alert and conversation store."""

    def __init__(self, db_path: Path):
        """Initialize the store.

        Args:
            db_path: Path to the SQLite database file.
        """
        self.db_path = db_path
        self._ensure_db_dir()
        self._init_schema()

    def _ensure_db_dir(self) -> None:
        """Ensure the database directory exists."""
        self.db_path.parent.mkdir(parents=True, exist_ok=True)

    def _get_connection(self) -> sqlite3.Connection:
        """Get a database connection."""
        try:
            conn = sqlite3.connect(self.db_path)
        except sqlite3.Error as e:
            raise PersistenceError(f"Cannot open {self.db_path}: {e}") from e
        conn.row_factory = sqlite3.Row
        return conn

    def _init_schema(self) -> None:
        """Initialize database schema on first run."""
        conn = self._get_connection()
        try:
            cursor = conn.cursor()

            # The variant column holds the JSON-encoded AlertVariant
            cursor.execute("""
                CREATE TABLE IF NOT EXISTS alerts (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    owner TEXT NOT NULL,
                    symbol TEXT NOT NULL,
                    kind TEXT NOT NULL,
                    variant TEXT NOT NULL,
                    created_at TEXT NOT NULL,
                    triggered_at TEXT,
                    active INTEGER NOT NULL DEFAULT 1
                )
            """)

            cursor.execute("""
                CREATE INDEX IF NOT EXISTS idx_alerts_active ON alerts (active)
            """)

            cursor.execute("""
                CREATE TABLE IF NOT EXISTS conversation_states (
                    session_id TEXT PRIMARY KEY,
                    state TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                )
            """)

            conn.commit()
        except sqlite3.Error as e:
            raise PersistenceError(f"Cannot initialize schema: {e}") from e
        finally:
            conn.close()

    # ==================== Alerts ====================

    @staticmethod
    def _row_to_alert(row: sqlite3.Row) -> Alert:
        return Alert(
            id=row["id"],
            owner=row["owner"],
            symbol=row["symbol"],
            variant=_VARIANT_ADAPTER.validate_json(row["variant"]),
            created_at=datetime.fromisoformat(row["created_at"]),
            triggered_at=(
                datetime.fromisoformat(row["triggered_at"])
                if row["triggered_at"]
                else None
            ),
            active=bool(row["active"]),
        )

    @classmethod
    def _rows_to_alerts(cls, rows: list[sqlite3.Row]) -> list[Alert]:
        """Decode rows, skipping any that no longer decode."""
        alerts = []
        for row in rows:
            try:
                alerts.append(cls._row_to_alert(row))
            except (ValueError, TypeError) as e:
                logger.error("Skipping undecodable alert row #%s: %s", row["id"], e)
        return alerts

    @staticmethod
    def _insert_alert(cursor: sqlite3.Cursor, alert: Alert) -> Alert:
        cursor.execute(
            """
            INSERT INTO alerts (owner, symbol, kind, variant, created_at, triggered_at, active)
            VALUES (?, ?, ?, ?, ?, ?, ?)
            """,
            (
                alert.owner,
                alert.symbol,
                alert.kind,
                _VARIANT_ADAPTER.dump_json(alert.variant).decode(),
                alert.created_at.isoformat(),
                alert.triggered_at.isoformat() if alert.triggered_at else None,
                1 if alert.active else 0,
            ),
        )
        return alert.model_copy(update={"id": cursor.lastrowid})

    def save_alert(self, alert: Alert) -> Alert:
        """Save a new alert.

        Args:
            alert: Alert to save; any id it carries is ignored.

        Returns:
            The alert with its database id.
        """
        conn = self._get_connection()
        try:
            saved = self._insert_alert(conn.cursor(), alert)
            conn.commit()
            return saved
        except sqlite3.Error as e:
            raise PersistenceError(f"Cannot save alert: {e}") from e
        finally:
            conn.close()

    def get_active_alerts(self) -> list[Alert]:
        """Get every alert that has not triggered yet, oldest first."""
        conn = self._get_connection()
        try:
            cursor = conn.cursor()
            cursor.execute(
                f"SELECT {_ALERT_COLUMNS} FROM alerts WHERE active = 1 ORDER BY id"
            )
            return self._rows_to_alerts(cursor.fetchall())
        except sqlite3.Error as e:
            raise PersistenceError(f"Cannot load active alerts: {e}") from e
        finally:
            conn.close()

    def get_alerts(self, owner: Optional[str] = None) -> list[Alert]:
        """Get all alerts, optionally filtered by owner.

        Args:
            owner: Only return alerts for this owner.

        Returns:
            Alerts, newest first.
        """
        conn = self._get_connection()
        try:
            cursor = conn.cursor()
            if owner is None:
                cursor.execute(f"SELECT {_ALERT_COLUMNS} FROM alerts ORDER BY id DESC")
            else:
                cursor.execute(
                    f"SELECT {_ALERT_COLUMNS} FROM alerts WHERE owner = ? ORDER BY id DESC",
                    (owner,),
                )
            return self._rows_to_alerts(cursor.fetchall())
        except sqlite3.Error as e:
            raise PersistenceError(f"Cannot load alerts: {e}") from e
        finally:
            conn.close()

    def get_alert_by_id(self, alert_id: int) -> Optional[Alert]:
        """Get an alert by ID.

        Args:
            alert_id: Alert ID.

        Returns:
            Alert if found, None otherwise.
        """
        conn = self._get_connection()
        try:
            cursor = conn.cursor()
            cursor.execute(
                f"SELECT {_ALERT_COLUMNS} FROM alerts WHERE id = ?",
                (alert_id,),
            )
            row = cursor.fetchone()
            if row:
                return self._row_to_alert(row)
            return None
        except (sqlite3.Error, ValueError, TypeError) as e:
            raise PersistenceError(f"Cannot load alert {alert_id}: {e}") from e
        finally:
            conn.close()

    def delete_alert(self, alert_id: int) -> None:
        """Delete an alert.

        Args:
            alert_id: ID of the alert to delete.
        """
        conn = self._get_connection()
        try:
            cursor = conn.cursor()
            cursor.execute("DELETE FROM alerts WHERE id = ?", (alert_id,))
            conn.commit()
        except sqlite3.Error as e:
            raise PersistenceError(f"Cannot delete alert {alert_id}: {e}") from e
        finally:
            conn.close()

    def mark_triggered(self, alert_id: int, triggered_at: datetime) -> None:
        """Mark an active alert as triggered.

        Args:
            alert_id: Alert ID.
            triggered_at: Trigger timestamp.

        Raises:
            PersistenceError: If the write fails or the alert is not active.
        """
        conn = self._get_connection()
        try:
            cursor = conn.cursor()
            cursor.execute(
                """
                UPDATE alerts SET active = 0, triggered_at = ?
                WHERE id = ? AND active = 1
                """,
                (triggered_at.isoformat(), alert_id),
            )
            if cursor.rowcount != 1:
                conn.rollback()
                raise PersistenceError(f"No active alert with id {alert_id}")
            conn.commit()
        except sqlite3.Error as e:
            raise PersistenceError(f"Cannot mark alert {alert_id}: {e}") from e
        finally:
            conn.close()

    # ==================== Conversation State ====================

    def get_conversation_state(self, session_id: str) -> Optional[ConversationState]:
        """Get the in-progress wizard state for a session, if any."""
        conn = self._get_connection()
        try:
            cursor = conn.cursor()
            cursor.execute(
                "SELECT state FROM conversation_states WHERE session_id = ?",
                (session_id,),
            )
            row = cursor.fetchone()
            if row:
                return ConversationState.model_validate_json(row["state"])
            return None
        except (sqlite3.Error, ValueError) as e:
            raise PersistenceError(f"Cannot load state for {session_id}: {e}") from e
        finally:
            conn.close()

    def save_conversation_state(self, state: ConversationState) -> None:
        """Insert or replace the wizard state for its session."""
        conn = self._get_connection()
        try:
            cursor = conn.cursor()
            cursor.execute(
                """
                INSERT OR REPLACE INTO conversation_states (session_id, state, updated_at)
                VALUES (?, ?, ?)
                """,
                (
                    state.session_id,
                    state.model_dump_json(),
                    state.updated_at.isoformat(),
                ),
            )
            conn.commit()
        except sqlite3.Error as e:
            raise PersistenceError(
                f"Cannot save state for {state.session_id}: {e}"
            ) from e
        finally:
            conn.close()

    def clear_conversation_state(self, session_id: str) -> None:
        """Remove the wizard state for a session (no-op if absent)."""
        conn = self._get_connection()
        try:
            cursor = conn.cursor()
            cursor.execute(
                "DELETE FROM conversation_states WHERE session_id = ?",
                (session_id,),
            )
            conn.commit()
        except sqlite3.Error as e:
            raise PersistenceError(f"Cannot clear state for {session_id}: {e}") from e
        finally:
            conn.close()

    def complete_conversation(self, session_id: str, alert: Alert) -> Alert:
        """Insert a finished alert and clear the session in one transaction.

        Args:
            session_id: Session whose wizard produced the alert.
            alert: The finished alert.

        Returns:
            The alert with its database id.
        """
        conn = self._get_connection()
        try:
            cursor = conn.cursor()
            saved = self._insert_alert(cursor, alert)
            cursor.execute(
                "DELETE FROM conversation_states WHERE session_id = ?",
                (session_id,),
            )
            conn.commit()
            return saved
        except sqlite3.Error as e:
            conn.rollback()
            raise PersistenceError(
                f"Cannot complete wizard for {session_id}: {e}"
            ) from e
        finally:
            conn.close()

    # ==================== Stats ====================

    def get_stats(self) -> dict:
        """Get alert and session counts."""
        conn = self._get_connection()
        try:
            cursor = conn.cursor()
            cursor.execute("SELECT COUNT(*) FROM alerts WHERE active = 1")
            active = cursor.fetchone()[0]
            cursor.execute("SELECT COUNT(*) FROM alerts WHERE active = 0")
            triggered = cursor.fetchone()[0]
            cursor.execute("SELECT COUNT(*) FROM conversation_states")
            sessions = cursor.fetchone()[0]
            return {
                "active_alerts": active,
                "triggered_alerts": triggered,
                "open_sessions": sessions,
            }
        except sqlite3.Error as e:
            raise PersistenceError(f"Cannot load stats: {e}") from e
        finally:
            conn.close()
