# In-memory mirror of bridge state with best-effort write-through to SQLite
import sqlite3
from typing import Dict, Optional

from core.models import MessageMapping, Side

PERSISTENCE_ERRORS = (sqlite3.Error, OSError, ValueError)


class MappingStore:
    """Owns message mappings, last senders and active calls.

    The in-memory maps are authoritative for the lifetime of the process. When a
    repository is given, every change is written through to it; failed writes are
    logged and otherwise ignored. Without a repository the store is memory-only.
    """

    def __init__(self, logger, repository=None):
        self.logger = logger
        self.repository = repository
        self.messages: Dict[int, MessageMapping] = {}
        self.last_senders: Dict[int, int] = {}
        self.active_calls: Dict[int, int] = {}

    def _persist(self, label: str, method: str, *args):
        if self.repository is None:
            return
        try:
            getattr(self.repository, method)(*args)
        except PERSISTENCE_ERRORS as exc:
            self.logger.error(f"Failed to {label}: {exc}")

    def load(self):
        if self.repository is None:
            self.logger.info("File caching disabled")
            return
        try:
            self.messages = self.repository.load_mappings()
            self.last_senders = self.repository.load_senders()
            self.active_calls = self.repository.load_calls()
        except PERSISTENCE_ERRORS as exc:
            self.logger.error(f"Failed to load cached state: {exc}")
            return
        self.logger.info(
            f"Loaded {len(self.messages)} messages, "
            f"{len(self.last_senders)} senders, "
            f"{len(self.active_calls)} calls"
        )

    def save_all(self):
        self._persist("save all state", "save_all", self.messages, self.last_senders, self.active_calls)

    # --- message mappings ---

    def get_mapping(self, message_id: int) -> Optional[MessageMapping]:
        return self.messages.get(message_id)

    def save_mapping(self, source_id: int, target_id: int, source_side: Side, target_side: Side) -> MessageMapping:
        mapping = MessageMapping.from_sides(source_side, source_id, target_side, target_id)
        self.messages[source_id] = mapping
        self.messages[target_id] = mapping
        self._persist("save message mapping", "save_mapping", source_id, mapping)
        self._persist("save message mapping", "save_mapping", target_id, mapping)
        return mapping

    def delete_mapping(self, message_id: int):
        mapping = self.messages.get(message_id)
        if mapping is None:
            return
        for key in mapping.ids():
            self.messages.pop(key, None)
            self._persist("delete message mapping", "delete_mapping", key)

    # --- last senders ---

    def get_last_sender(self, channel_id: int) -> Optional[int]:
        return self.last_senders.get(channel_id)

    def set_last_sender(self, channel_id: int, user_id: int):
        self.last_senders[channel_id] = user_id
        self._persist("save last sender", "save_sender", channel_id, user_id)

    def clear_last_sender(self, channel_id: int):
        if self.last_senders.pop(channel_id, None) is None:
            return
        self._persist("delete last sender", "delete_sender", channel_id)

    # --- active calls ---

    def get_active_call(self, channel_id: int) -> Optional[int]:
        return self.active_calls.get(channel_id)

    def set_active_call(self, channel_id: int, message_id: int):
        self.active_calls[channel_id] = message_id
        self._persist("save voice call", "save_call", channel_id, message_id)

    def clear_active_call(self, channel_id: int):
        if self.active_calls.pop(channel_id, None) is None:
            return
        self._persist("delete voice call", "delete_call", channel_id)

    def close(self):
        self._persist("close database", "close")
