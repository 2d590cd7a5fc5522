# SQLite persistence for message mappings, last senders and active calls
import json
import os
import sqlite3
from typing import Dict, Optional

from core.models import MessageMapping


def _to_id(value) -> Optional[int]:
    if value is None or value == "":
        return None
    return int(value)


def _to_text(value: Optional[int]) -> Optional[str]:
    return None if value is None else str(value)


class StateRepository:
    def __init__(self, db_path: str, logger, legacy_json_path: Optional[str] = None):
        self.db_path = db_path
        self.logger = logger
        self.legacy_json_path = legacy_json_path
        self._init_db()
        if legacy_json_path:
            self.migrate_legacy_json()

    def _connect(self) -> sqlite3.Connection:
        return sqlite3.connect(self.db_path)

    def _id_pairs(self, rows, table: str) -> Dict[int, int]:
        result: Dict[int, int] = {}
        for gc_id, value in rows:
            try:
                result[int(gc_id)] = int(value)
            except (TypeError, ValueError):
                self.logger.warning(f"Skipping malformed {table} row {gc_id!r}")
        return result

    def _init_db(self):
        conn = self._connect()
        try:
            cursor = conn.cursor()
            cursor.execute("PRAGMA journal_mode = WAL")
            cursor.execute("""
                CREATE TABLE IF NOT EXISTS forwarded_messages (
                    key TEXT PRIMARY KEY,
                    gc1_id TEXT,
                    gc2_id TEXT
                )
            """)
            cursor.execute("""
                CREATE TABLE IF NOT EXISTS last_senders (
                    gc_id TEXT PRIMARY KEY,
                    user_id TEXT NOT NULL
                )
            """)
            cursor.execute("""
                CREATE TABLE IF NOT EXISTS active_voice_calls (
                    gc_id TEXT PRIMARY KEY,
                    call_id TEXT NOT NULL
                )
            """)
            conn.commit()
        finally:
            conn.close()
        self.logger.info("Database initialized: %s", self.db_path)

    def migrate_legacy_json(self) -> bool:
        """Import a legacy cache.json snapshot in one transaction, then keep it as a .bak file."""
        path = self.legacy_json_path
        if not path or not os.path.exists(path):
            return False
        try:
            self.logger.info(f"Migrating from {path} to SQLite...")
            with open(path, "r", encoding="utf-8") as handle:
                data = json.load(handle)

            conn = self._connect()
            try:
                with conn:
                    for key, value in (data.get("forwardedMessages") or {}).items():
                        conn.execute(
                            "INSERT OR REPLACE INTO forwarded_messages (key, gc1_id, gc2_id) VALUES (?, ?, ?)",
                            (str(key), value.get("1"), value.get("2")),
                        )
                    for gc_id, user_id in (data.get("lastSender") or {}).items():
                        conn.execute(
                            "INSERT OR REPLACE INTO last_senders (gc_id, user_id) VALUES (?, ?)",
                            (str(gc_id), str(user_id)),
                        )
                    for gc_id, call_id in (data.get("activeVoiceCalls") or {}).items():
                        conn.execute(
                            "INSERT OR REPLACE INTO active_voice_calls (gc_id, call_id) VALUES (?, ?)",
                            (str(gc_id), str(call_id)),
                        )
            finally:
                conn.close()

            backup_path = f"{path}.bak"
            os.replace(path, backup_path)
            self.logger.info(f"Migration complete! Backup: {os.path.basename(backup_path)}")
            return True
        except (OSError, ValueError, AttributeError, sqlite3.Error) as exc:
            self.logger.error(f"Migration from JSON failed: {exc}", exc_info=True)
            return False

    # --- forwarded_messages ---

    def save_mapping(self, key: int, mapping: MessageMapping):
        conn = self._connect()
        try:
            conn.execute(
                "INSERT OR REPLACE INTO forwarded_messages (key, gc1_id, gc2_id) VALUES (?, ?, ?)",
                (str(key), _to_text(mapping.side_1), _to_text(mapping.side_2)),
            )
            conn.commit()
        finally:
            conn.close()

    def delete_mapping(self, key: int):
        conn = self._connect()
        try:
            conn.execute("DELETE FROM forwarded_messages WHERE key = ?", (str(key),))
            conn.commit()
        finally:
            conn.close()

    def load_mappings(self) -> Dict[int, MessageMapping]:
        conn = self._connect()
        try:
            rows = conn.execute("SELECT key, gc1_id, gc2_id FROM forwarded_messages").fetchall()
        finally:
            conn.close()
        # Both rows of a pair share one object again after a restart
        shared: Dict[tuple, MessageMapping] = {}
        mappings: Dict[int, MessageMapping] = {}
        for key, gc1_id, gc2_id in rows:
            try:
                message_id = int(key)
                pair = (_to_id(gc1_id), _to_id(gc2_id))
            except (TypeError, ValueError):
                self.logger.warning(f"Skipping malformed mapping row {key!r}")
                continue
            if pair not in shared:
                shared[pair] = MessageMapping(side_1=pair[0], side_2=pair[1])
            mappings[message_id] = shared[pair]
        return mappings

    # --- last_senders ---

    def save_sender(self, channel_id: int, user_id: int):
        conn = self._connect()
        try:
            conn.execute(
                "INSERT OR REPLACE INTO last_senders (gc_id, user_id) VALUES (?, ?)",
                (str(channel_id), str(user_id)),
            )
            conn.commit()
        finally:
            conn.close()

    def delete_sender(self, channel_id: int):
        conn = self._connect()
        try:
            conn.execute("DELETE FROM last_senders WHERE gc_id = ?", (str(channel_id),))
            conn.commit()
        finally:
            conn.close()

    def load_senders(self) -> Dict[int, int]:
        conn = self._connect()
        try:
            rows = conn.execute("SELECT gc_id, user_id FROM last_senders").fetchall()
        finally:
            conn.close()
        return self._id_pairs(rows, "last_senders")

    # --- active_voice_calls ---

    def save_call(self, channel_id: int, message_id: int):
        conn = self._connect()
        try:
            conn.execute(
                "INSERT OR REPLACE INTO active_voice_calls (gc_id, call_id) VALUES (?, ?)",
                (str(channel_id), str(message_id)),
            )
            conn.commit()
        finally:
            conn.close()

    def delete_call(self, channel_id: int):
        conn = self._connect()
        try:
            conn.execute("DELETE FROM active_voice_calls WHERE gc_id = ?", (str(channel_id),))
            conn.commit()
        finally:
            conn.close()

    def load_calls(self) -> Dict[int, int]:
        conn = self._connect()
        try:
            rows = conn.execute("SELECT gc_id, call_id FROM active_voice_calls").fetchall()
        finally:
            conn.close()
        return self._id_pairs(rows, "active_voice_calls")

    def save_all(self, mappings: Dict[int, MessageMapping], senders: Dict[int, int], calls: Dict[int, int]):
        conn = self._connect()
        try:
            with conn:
                conn.executemany(
                    "INSERT OR REPLACE INTO forwarded_messages (key, gc1_id, gc2_id) VALUES (?, ?, ?)",
                    [(str(key), _to_text(m.side_1), _to_text(m.side_2)) for key, m in mappings.items()],
                )
                conn.executemany(
                    "INSERT OR REPLACE INTO last_senders (gc_id, user_id) VALUES (?, ?)",
                    [(str(gc_id), str(user_id)) for gc_id, user_id in senders.items()],
                )
                conn.executemany(
                    "INSERT OR REPLACE INTO active_voice_calls (gc_id, call_id) VALUES (?, ?)",
                    [(str(gc_id), str(call_id)) for gc_id, call_id in calls.items()],
                )
        finally:
            conn.close()

    def close(self):
        # Fold the WAL back into the main file so the .db is self-contained
        conn = self._connect()
        try:
            conn.execute("PRAGMA wal_checkpoint(TRUNCATE)")
        finally:
            conn.close()
        self.logger.info("Database closed")
