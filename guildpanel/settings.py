"""
Per-guild settings backed by the SQLite store.

Only values that differ from DEFAULT_SETTINGS are persisted, so a guild
whose record is deleted falls back to the defaults.
"""
from typing import Any, Dict, Mapping

from .database import Database


DEFAULT_SETTINGS: Dict[str, str] = {
    "prefix": "~",
    "modLogChannel": "mod-log",
    "modRole": "Moderator",
    "adminRole": "Administrator",
    "systemNotice": "true",
    "welcomeChannel": "welcome",
    "welcomeMessage": "Say hello to {{user}}, everyone! We all need a warm welcome sometimes :D",
    "welcomeEnabled": "false",
}


class GuildSettings:
    def __init__(self, db: Database, defaults: Mapping[str, Any] = DEFAULT_SETTINGS):
        self.db = db
        self.defaults = dict(defaults)

    def overrides(self, guild_id: int) -> Dict[str, Any]:
        return self.db.get_guild_settings(guild_id) or {}

    def get(self, guild_id: int) -> Dict[str, Any]:
        """Return the effective settings: stored overrides layered over the defaults."""
        return {**self.defaults, **self.overrides(guild_id)}

    def write(self, guild_id: int, new_settings: Mapping[str, Any]) -> Dict[str, Any]:
        current = self.overrides(guild_id)
        for key, value in new_settings.items():
            if self.defaults.get(key) == value:
                current.pop(key, None)
            else:
                current[key] = value
        self.db.set_guild_settings(guild_id, current)
        return {**self.defaults, **current}

    def delete(self, guild_id: int) -> bool:
        return self.db.delete_guild_settings(guild_id)
