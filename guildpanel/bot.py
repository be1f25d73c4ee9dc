"""
Discord bot that owns the guild settings and hosts the web dashboard.
"""
import logging
import sys
import threading
from typing import Optional

import discord
from discord.ext import commands

from .config import ConfigError, DashboardConfig, load_config
from .database import Database
from .modules.settings_commands import setup_settings_commands
from .settings import GuildSettings
from .web.dashboard import create_app, run_dashboard


logger = logging.getLogger(__name__)


def start_dashboard_thread(bot: commands.Bot) -> threading.Thread:
    """Serve the dashboard next to the bot, once per process."""
    existing = getattr(bot, "dashboard_thread", None)
    if existing is not None and existing.is_alive():
        return existing
    config = bot.config
    app = create_app(bot, config, bot.db)
    thread = threading.Thread(
        target=run_dashboard,
        args=(app, config.host, config.port),
        name="dashboard",
        daemon=True,
    )
    thread.start()
    bot.dashboard_app = app
    bot.dashboard_thread = thread
    return thread


def create_bot(config: DashboardConfig, db: Optional[Database] = None) -> commands.Bot:
    intents = discord.Intents.default()
    intents.guilds = True
    intents.members = True
    intents.presences = True
    bot = commands.Bot(command_prefix=commands.when_mentioned, intents=intents)
    bot.config = config
    bot.db = db or Database(config.database_path)
    bot.settings = GuildSettings(bot.db)
    bot.started_at = None
    bot.dashboard_thread = None

    setup_settings_commands(bot)

    @bot.event
    async def on_ready():
        if bot.started_at is None:
            bot.started_at = discord.utils.utcnow()
        try:
            synced = await bot.tree.sync()
            logger.info("Synced %d application commands", len(synced))
        except discord.HTTPException as exc:
            logger.warning("Command sync failed: %s", exc)
        removed = bot.db.purge_expired_sessions()
        if removed:
            logger.info("Purged %d expired dashboard sessions", removed)
        logger.info("Bot logged in as %s (%d guilds)", bot.user, len(bot.guilds))
        start_dashboard_thread(bot)

    @bot.event
    async def on_guild_join(guild: discord.Guild):
        logger.info("Joined guild %s (%s)", guild.name, guild.id)

    @bot.event
    async def on_guild_remove(guild: discord.Guild):
        bot.settings.delete(guild.id)
        logger.info("Removed from guild %s (%s); settings deleted", guild.name, guild.id)

    return bot


def main(env_file: Optional[str] = None) -> None:
    config = load_config(env_file)
    discord.utils.setup_logging(level=logging.getLevelName(config.log_level))
    try:
        config.validate()
    except ConfigError as exc:
        logger.error("%s. Copy .env.example to .env and fill your values.", exc)
        sys.exit(1)
    bot = create_bot(config)
    bot.run(config.bot_token, log_handler=None)


if __name__ == "__main__":
    main()
