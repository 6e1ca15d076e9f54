"""
Conversation Storage

SQLite persistence for exported conversations and stance snapshots.

Architecture:
- Single database shared across processes with WAL mode
- Current stance fields stored as columns for queryability
- Full exported conversation stored as JSON for round-trip import
- Snapshot table keeps a bounded per-conversation stance trail

Persistence is a caller-driven side effect after a successful apply; a
crash between apply and save loses the latest turn but never corrupts
stored state (last durable write wins).
"""

import json
import sqlite3
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional

from config.stance_config import StanceConfig
from src.logging_utils import get_logger
from stance_core.state import Stance

logger = get_logger(__name__)

# Set STANCE_DB_PATH to override
DEFAULT_DB_PATH = StanceConfig.DB_PATH


class ConversationDB:
    """
    SQLite-backed storage for conversations.

    Thread-safe and process-safe via SQLite's built-in locking.
    Failures are logged and reported as False / None / [].
    """

    SCHEMA_VERSION = 1

    def __init__(self, db_path: Path = None, snapshot_limit: int = StanceConfig.SNAPSHOT_HISTORY_LIMIT):
        self.db_path = Path(db_path) if db_path else DEFAULT_DB_PATH
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self.snapshot_limit = snapshot_limit
        self._init_schema()

    def _get_connection(self) -> sqlite3.Connection:
        """Get a new connection (thread-safe pattern)."""
        conn = sqlite3.connect(str(self.db_path), timeout=30.0)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA journal_mode=WAL")
        conn.execute("PRAGMA busy_timeout=30000")
        conn.execute("PRAGMA synchronous=NORMAL")
        return conn

    def _init_schema(self) -> None:
        """Initialize database schema."""
        with self._get_connection() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS schema_version (
                    name TEXT PRIMARY KEY,
                    version INTEGER NOT NULL
                )
            """)

            conn.execute("""
                CREATE TABLE IF NOT EXISTS conversations (
                    conversation_id TEXT PRIMARY KEY,

                    -- Current stance (queryable)
                    frame TEXT NOT NULL,
                    self_model TEXT NOT NULL,
                    objective TEXT NOT NULL,
                    version INTEGER NOT NULL DEFAULT 1,
                    cumulative_drift REAL NOT NULL DEFAULT 0.0,
                    message_count INTEGER NOT NULL DEFAULT 0,

                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL,

                    -- Full export (importable as-is)
                    conversation_json TEXT NOT NULL
                )
            """)

            conn.execute("""
                CREATE TABLE IF NOT EXISTS stance_snapshots (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    conversation_id TEXT NOT NULL,
                    version INTEGER NOT NULL,
                    frame TEXT NOT NULL,
                    recorded_at TEXT NOT NULL,
                    stance_json TEXT NOT NULL
                )
            """)

            conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_conversations_frame
                ON conversations(frame)
            """)
            conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_conversations_updated
                ON conversations(updated_at)
            """)
            conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_snapshots_conversation
                ON stance_snapshots(conversation_id, id)
            """)

            conn.execute("""
                INSERT OR REPLACE INTO schema_version (name, version)
                VALUES ('conversations', ?)
            """, (self.SCHEMA_VERSION,))

            conn.commit()

    def save_conversation(self, conversation_json: str) -> bool:
        """
        Upsert an exported conversation.

        Args:
            conversation_json: Output of StanceController.export_conversation()

        Returns:
            True if successful
        """
        try:
            data = json.loads(conversation_json)
            conversation_id = data["id"]
            stance = data["stance"]
            row = (
                stance["frame"],
                stance["selfModel"],
                stance["objective"],
                int(stance.get("version", 1)),
                float(stance.get("cumulativeDrift", 0.0)),
                len(data.get("messages", [])),
                data.get("updatedAt", datetime.now().isoformat()),
                conversation_json,
            )
        except (ValueError, KeyError, TypeError) as e:
            logger.error(f"Refusing to save malformed conversation export: {e}")
            return False

        try:
            with self._get_connection() as conn:
                cursor = conn.execute(
                    "SELECT created_at FROM conversations WHERE conversation_id = ?",
                    (conversation_id,)
                )
                if cursor.fetchone():
                    conn.execute("""
                        UPDATE conversations SET
                            frame = ?, self_model = ?, objective = ?,
                            version = ?, cumulative_drift = ?, message_count = ?,
                            updated_at = ?, conversation_json = ?
                        WHERE conversation_id = ?
                    """, row + (conversation_id,))
                else:
                    conn.execute("""
                        INSERT INTO conversations (
                            frame, self_model, objective,
                            version, cumulative_drift, message_count,
                            updated_at, conversation_json,
                            conversation_id, created_at
                        ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """, row + (conversation_id, data.get("createdAt", row[6])))
                conn.commit()
                return True

        except sqlite3.Error as e:
            logger.error(f"Failed to save conversation {conversation_id}: {e}", exc_info=True)
            return False

    def load_conversation(self, conversation_id: str) -> Optional[str]:
        """
        Load an exported conversation.

        Returns:
            JSON string for StanceController.import_conversation(), or None
        """
        try:
            with self._get_connection() as conn:
                cursor = conn.execute(
                    "SELECT conversation_json FROM conversations WHERE conversation_id = ?",
                    (conversation_id,)
                )
                row = cursor.fetchone()
                return row['conversation_json'] if row else None

        except sqlite3.Error as e:
            logger.error(f"Failed to load conversation {conversation_id}: {e}", exc_info=True)
            return None

    def delete_conversation(self, conversation_id: str) -> bool:
        """Delete a conversation and its snapshots."""
        try:
            with self._get_connection() as conn:
                conn.execute(
                    "DELETE FROM conversations WHERE conversation_id = ?",
                    (conversation_id,)
                )
                conn.execute(
                    "DELETE FROM stance_snapshots WHERE conversation_id = ?",
                    (conversation_id,)
                )
                conn.commit()
                return True
        except sqlite3.Error as e:
            logger.error(f"Failed to delete conversation {conversation_id}: {e}", exc_info=True)
            return False

    def list_conversations(self,
                           frame: str = None,
                           limit: int = None) -> List[Dict[str, Any]]:
        """
        List conversations, most recently updated first.

        Returns list of {conversation_id, frame, self_model, objective,
        version, cumulative_drift, message_count, updated_at}
        """
        query = (
            "SELECT conversation_id, frame, self_model, objective, version, "
            "cumulative_drift, message_count, updated_at FROM conversations WHERE 1=1"
        )
        params = []

        if frame:
            query += " AND frame = ?"
            params.append(frame)

        query += " ORDER BY updated_at DESC"

        if limit:
            query += " LIMIT ?"
            params.append(limit)

        try:
            with self._get_connection() as conn:
                cursor = conn.execute(query, params)
                return [dict(row) for row in cursor.fetchall()]
        except sqlite3.Error as e:
            logger.error(f"Failed to list conversations: {e}", exc_info=True)
            return []

    def record_snapshot(self, conversation_id: str, stance: Stance) -> bool:
        """Append a stance snapshot, keeping the newest snapshot_limit per conversation."""
        try:
            with self._get_connection() as conn:
                conn.execute("""
                    INSERT INTO stance_snapshots (conversation_id, version, frame, recorded_at, stance_json)
                    VALUES (?, ?, ?, ?, ?)
                """, (
                    conversation_id,
                    stance.version,
                    stance.frame.value,
                    datetime.now().isoformat(),
                    json.dumps(stance.to_dict(), ensure_ascii=False),
                ))
                conn.execute("""
                    DELETE FROM stance_snapshots
                    WHERE conversation_id = ? AND id NOT IN (
                        SELECT id FROM stance_snapshots
                        WHERE conversation_id = ?
                        ORDER BY id DESC LIMIT ?
                    )
                """, (conversation_id, conversation_id, self.snapshot_limit))
                conn.commit()
                return True
        except sqlite3.Error as e:
            logger.error(f"Failed to record snapshot for {conversation_id}: {e}", exc_info=True)
            return False

    def get_snapshots(self, conversation_id: str, limit: int = None) -> List[Stance]:
        """Snapshots oldest first (the newest `limit` if given)."""
        query = "SELECT stance_json FROM stance_snapshots WHERE conversation_id = ? ORDER BY id DESC"
        params: List[Any] = [conversation_id]
        if limit:
            query += " LIMIT ?"
            params.append(limit)

        try:
            with self._get_connection() as conn:
                cursor = conn.execute(query, params)
                rows = cursor.fetchall()
        except sqlite3.Error as e:
            logger.error(f"Failed to get snapshots for {conversation_id}: {e}", exc_info=True)
            return []

        return [Stance.from_dict(json.loads(row['stance_json'])) for row in reversed(rows)]

    def get_statistics(self) -> Dict[str, Any]:
        """Get database statistics."""
        try:
            with self._get_connection() as conn:
                cursor = conn.execute("SELECT COUNT(*) as count FROM conversations")
                total = cursor.fetchone()['count']

                cursor = conn.execute("""
                    SELECT frame, COUNT(*) as count
                    FROM conversations
                    GROUP BY frame
                """)
                by_frame = {row['frame']: row['count'] for row in cursor.fetchall()}

                cursor = conn.execute("""
                    SELECT
                        AVG(version) as avg_version,
                        AVG(cumulative_drift) as avg_drift,
                        SUM(message_count) as total_messages
                    FROM conversations
                """)
                row = cursor.fetchone()

                cursor = conn.execute("SELECT COUNT(*) as count FROM stance_snapshots")
                snapshots = cursor.fetchone()['count']

                return {
                    "total_conversations": total,
                    "total_snapshots": snapshots,
                    "by_frame": by_frame,
                    "averages": {
                        "version": row['avg_version'],
                        "cumulative_drift": row['avg_drift'],
                    },
                    "total_messages": row['total_messages'] or 0,
                }
        except sqlite3.Error as e:
            logger.error(f"Failed to get statistics: {e}", exc_info=True)
            return {"error": str(e)}
