"""
Runtime configuration for the bot and its web dashboard.
"""
import os
import secrets
import urllib.parse
from dataclasses import dataclass, field
from typing import Optional, Tuple

from dotenv import load_dotenv


DEFAULT_PORT = 8003
DEFAULT_SESSION_LIFETIME = 604800
# MANAGE_GUILD | MANAGE_ROLES | MANAGE_CHANNELS | KICK_MEMBERS | BAN_MEMBERS | SEND_MESSAGES | EMBED_LINKS
DEFAULT_INVITE_PERMISSIONS = 0x20 | 0x10000000 | 0x10 | 0x2 | 0x4 | 0x800 | 0x4000


class ConfigError(RuntimeError):
    """Raised when required settings are missing from the environment."""


def _split_admins(raw: str) -> Tuple[str, ...]:
    return tuple(name.strip() for name in raw.split(",") if name.strip())


@dataclass(frozen=True)
class DashboardConfig:
    client_id: str = ""
    client_secret: str = ""
    callback_url: str = ""
    domain: str = "localhost"
    secret_key: str = field(default_factory=lambda: secrets.token_hex(32))
    bot_token: str = ""
    host: str = "0.0.0.0"
    port: int = DEFAULT_PORT
    admins: Tuple[str, ...] = ()
    database_path: str = "guildpanel.db"
    invite_permissions: int = DEFAULT_INVITE_PERMISSIONS
    session_lifetime: int = DEFAULT_SESSION_LIFETIME
    log_level: str = "INFO"

    def is_admin(self, username: Optional[str]) -> bool:
        return bool(username) and username in self.admins

    @property
    def public_url(self) -> str:
        """Base URL users reach the dashboard on, taken from the OAuth redirect when it has one."""
        parsed = urllib.parse.urlparse(self.callback_url)
        if parsed.scheme and parsed.netloc:
            return f"{parsed.scheme}://{parsed.netloc}"
        scheme = "http" if self.domain in ("localhost", "127.0.0.1") else "https"
        if self.port in (80, 443):
            return f"{scheme}://{self.domain}"
        return f"{scheme}://{self.domain}:{self.port}"

    def validate(self) -> None:
        if not self.bot_token:
            raise ConfigError("DISCORD_TOKEN missing in environment")
        if not self.client_id:
            raise ConfigError("DISCORD_CLIENT_ID missing in environment")
        if not self.client_secret:
            raise ConfigError("DISCORD_CLIENT_SECRET missing in environment")
        if not self.callback_url:
            raise ConfigError("DISCORD_REDIRECT_URI missing in environment")


def load_config(env_file: Optional[str] = None) -> DashboardConfig:
    """Build the configuration from the process environment (and .env)."""
    load_dotenv(dotenv_path=env_file)
    secret_key = os.getenv("FLASK_SECRET_KEY") or secrets.token_hex(32)
    return DashboardConfig(
        client_id=os.getenv("DISCORD_CLIENT_ID", ""),
        client_secret=os.getenv("DISCORD_CLIENT_SECRET", ""),
        callback_url=os.getenv("DISCORD_REDIRECT_URI", f"http://localhost:{DEFAULT_PORT}/callback"),
        domain=os.getenv("DASHBOARD_DOMAIN", "localhost"),
        secret_key=secret_key,
        bot_token=os.getenv("DISCORD_TOKEN", ""),
        host=os.getenv("DASHBOARD_HOST", "0.0.0.0"),
        port=int(os.getenv("DASHBOARD_PORT", DEFAULT_PORT)),
        admins=_split_admins(os.getenv("DASHBOARD_ADMINS", "")),
        database_path=os.getenv("DATABASE_PATH", "guildpanel.db"),
        invite_permissions=int(os.getenv("INVITE_PERMISSIONS", DEFAULT_INVITE_PERMISSIONS)),
        session_lifetime=int(os.getenv("SESSION_LIFETIME_SECONDS", DEFAULT_SESSION_LIFETIME)),
        log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
    )
