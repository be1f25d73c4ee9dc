"""
SQLite storage for guild settings and dashboard sessions.
"""
import sqlite3
import json
from datetime import datetime
from typing import Dict, Optional, Any


class Database:
    def __init__(self, db_path: str = "guildpanel.db"):
        self.db_path = db_path
        self.init_database()

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        return conn

    def init_database(self):
        """Initialize database tables"""
        conn = self._connect()
        cursor = conn.cursor()

        # Per-guild setting overrides, stored as a JSON object
        cursor.execute("""
            CREATE TABLE IF NOT EXISTS guild_settings (
                guild_id INTEGER PRIMARY KEY,
                settings_json TEXT NOT NULL DEFAULT '{}',
                updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
            )
        """)

        # Dashboard sessions
        cursor.execute("""
            CREATE TABLE IF NOT EXISTS dashboard_sessions (
                session_id TEXT PRIMARY KEY,
                user_id INTEGER NOT NULL,
                access_token TEXT NOT NULL,
                refresh_token TEXT,
                expires_at TIMESTAMP NOT NULL,
                created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
            )
        """)

        conn.commit()
        conn.close()

    # Guild Settings Methods
    def get_guild_settings(self, guild_id: int) -> Optional[Dict[str, Any]]:
        conn = self._connect()
        cursor = conn.cursor()

        cursor.execute("SELECT settings_json FROM guild_settings WHERE guild_id = ?", (guild_id,))
        row = cursor.fetchone()
        conn.close()

        if not row:
            return None
        data = json.loads(row["settings_json"] or "{}")
        return data if isinstance(data, dict) else {}

    def set_guild_settings(self, guild_id: int, settings: Dict[str, Any]):
        conn = self._connect()
        cursor = conn.cursor()

        cursor.execute("""
            INSERT INTO guild_settings (guild_id, settings_json)
            VALUES (?, ?)
            ON CONFLICT(guild_id) DO UPDATE SET
                settings_json = excluded.settings_json,
                updated_at = CURRENT_TIMESTAMP
        """, (guild_id, json.dumps(settings)))

        conn.commit()
        conn.close()

    def delete_guild_settings(self, guild_id: int) -> bool:
        conn = self._connect()
        cursor = conn.cursor()

        cursor.execute("DELETE FROM guild_settings WHERE guild_id = ?", (guild_id,))
        deleted = cursor.rowcount > 0

        conn.commit()
        conn.close()
        return deleted

    # Session Methods
    def create_session(self, session_id: str, user_id: int, access_token: str, refresh_token: Optional[str], expires_at: str):
        conn = self._connect()
        cursor = conn.cursor()

        cursor.execute("""
            INSERT INTO dashboard_sessions (session_id, user_id, access_token, refresh_token, expires_at)
            VALUES (?, ?, ?, ?, ?)
        """, (session_id, user_id, access_token, refresh_token, expires_at))

        conn.commit()
        conn.close()

    def get_session(self, session_id: str) -> Optional[Dict]:
        conn = self._connect()
        cursor = conn.cursor()

        cursor.execute("SELECT * FROM dashboard_sessions WHERE session_id = ?", (session_id,))
        row = cursor.fetchone()
        conn.close()

        return dict(row) if row else None

    def delete_session(self, session_id: str):
        conn = self._connect()
        cursor = conn.cursor()

        cursor.execute("DELETE FROM dashboard_sessions WHERE session_id = ?", (session_id,))

        conn.commit()
        conn.close()

    def purge_expired_sessions(self, now: Optional[datetime] = None) -> int:
        """Drop session rows whose expiry has passed. Returns the number removed."""
        cutoff = (now or datetime.utcnow()).isoformat()
        conn = self._connect()
        cursor = conn.cursor()

        cursor.execute("DELETE FROM dashboard_sessions WHERE expires_at <= ?", (cutoff,))
        removed = cursor.rowcount

        conn.commit()
        conn.close()
        return removed
